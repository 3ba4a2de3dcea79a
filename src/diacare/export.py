"""Exportacion de lecturas de glucosa a Excel formateado para el medico."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Any

import pandas as pd
from dateutil import tz
from openpyxl.styles import Alignment, Border, Font, Side

from diacare.log import get_logger
from diacare.model import GlucoseReading, Unit
from diacare.units import to_display

logger = get_logger(__name__)

_WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

COLUMNS: tuple[str, ...] = ("weekday", "datetime", "glucose", "reading_type", "notes")


@dataclass(frozen=True)
class ExcelLayout:
    """Layout/formatting configuration for the readings sheet."""

    sheet_name: str = "Glucose readings"
    row_height: float = 15
    datetime_format: str = "dd/mm/yyyy hh:mm"


def _headers(unit: Unit) -> dict[str, str]:
    return {
        "weekday": "Day",
        "datetime": "Date / Time",
        "glucose": f"Glucose ({unit.value})",
        "reading_type": "Type",
        "notes": "Notes",
    }


def readings_to_frame(
    readings: Sequence[GlucoseReading],
    unit: Unit | str = Unit.MG_PER_DL,
    zone: tzinfo | None = None,
) -> pd.DataFrame:
    """One row per reading, oldest first, values in the display unit.

    Args:
        readings: Readings of one user (stored in mg/dL).
        unit: Unit of the glucose column.
        zone: Timezone of the date/time column; defaults to local time.
    """
    unit = Unit(unit)
    zone = zone or tz.tzlocal()
    rows = [
        {
            "datetime": r.recorded_at.astimezone(zone).replace(tzinfo=None),
            "glucose": to_display(r.value, unit),
            "reading_type": r.reading_type.value.replace("_", " "),
            "notes": r.notes or "",
        }
        for r in readings
    ]
    df = pd.DataFrame(rows, columns=["datetime", "glucose", "reading_type", "notes"])
    if df.empty:
        return pd.DataFrame(columns=list(COLUMNS))
    df = df.sort_values("datetime").reset_index(drop=True)
    df.insert(0, "weekday", pd.to_datetime(df["datetime"]).dt.weekday.map(_weekday_label))
    return df


def _weekday_label(i: object) -> str:
    try:
        idx = int(i)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return ""
    return _WEEKDAYS[idx] if 0 <= idx < 7 else ""


def write_readings_xlsx(
    readings: Sequence[GlucoseReading],
    out_path: Path,
    unit: Unit | str = Unit.MG_PER_DL,
    layout: ExcelLayout | None = None,
    zone: tzinfo | None = None,
) -> int:
    """Write a formatted Excel file suitable for printing.

    Args:
        readings: Readings to export.
        out_path: Output path for the XLSX file.
        unit: Display unit of the glucose column.
        layout: Excel layout parameters.
        zone: Timezone of the date/time column.

    Returns:
        Number of exported rows.
    """
    unit = Unit(unit)
    layout = layout or ExcelLayout()
    out_path.parent.mkdir(parents=True, exist_ok=True)

    export_df = readings_to_frame(readings, unit, zone).rename(columns=_headers(unit))

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        export_df.to_excel(writer, index=False, sheet_name=layout.sheet_name)
        ws = writer.book[layout.sheet_name]
        _format_sheet(ws, unit, layout)
    logger.info("Exported %d readings to %s", len(export_df), out_path)
    return len(export_df)


def _style_header_row(ws: Any) -> None:
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    header_font = Font(bold=True)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = center
        cell.border = border


def _style_body_rows(ws: Any, height: float) -> None:
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = center
            cell.border = border
        ws.row_dimensions[row[0].row].height = height


def _format_sheet(ws: Any, unit: Unit, layout: ExcelLayout) -> None:
    """Apply borders, widths and number formats to the readings sheet."""
    _style_header_row(ws)
    _style_body_rows(ws, layout.row_height)
    headers = _headers(unit)
    col_index = {str(cell.value): idx + 1 for idx, cell in enumerate(ws[1])}

    widths = {
        headers["weekday"]: 6,
        headers["datetime"]: 18,
        headers["glucose"]: 16,
        headers["reading_type"]: 14,
        headers["notes"]: 30,
    }
    for header, width in widths.items():
        idx = col_index.get(header)
        if idx is not None:
            ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = width

    formats = {
        headers["datetime"]: layout.datetime_format,
        headers["glucose"]: "0" if unit is Unit.MG_PER_DL else "0.0",
    }
    for row in ws.iter_rows(min_row=2):
        for header, fmt in formats.items():
            idx = col_index.get(header)
            if idx is not None:
                row[idx - 1].number_format = fmt
