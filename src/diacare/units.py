"""Conversion y formato de valores de glucosa (mg/dL canonico)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from diacare.model import Unit

# mg/dL per mmol/L of glucose (molar mass 180.16 g/mol).
MGDL_PER_MMOL = 18.0182


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero (120.5 -> 121)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_display(value_mg_dl: float, unit: Unit | str) -> float:
    """Convert a canonical mg/dL value to the display unit.

    Args:
        value_mg_dl: Glucose value in mg/dL.
        unit: Target display unit.

    Returns:
        The mg/dL value rounded half away from zero, or ``value / 18.0182``
        for mmol/L.
    """
    if Unit(unit) is Unit.MMOL_PER_L:
        return value_mg_dl / MGDL_PER_MMOL
    return float(round_half_up(value_mg_dl))


def to_mg_dl(value: float, unit: Unit | str) -> float:
    """Normalize a value entered in ``unit`` back to mg/dL."""
    if Unit(unit) is Unit.MMOL_PER_L:
        return value * MGDL_PER_MMOL
    return float(value)


def format_glucose_value(
    value_mg_dl: float, unit: Unit | str, decimals: int = 1
) -> str:
    """Format the converted number only (no unit label)."""
    if Unit(unit) is Unit.MMOL_PER_L:
        return f"{value_mg_dl / MGDL_PER_MMOL:.{decimals}f}"
    return str(round_half_up(value_mg_dl))


def format_glucose(value_mg_dl: float, unit: Unit | str, decimals: int = 1) -> str:
    """Format a glucose value with its unit label, e.g. ``"5.5 mmol/L"``."""
    unit = Unit(unit)
    return f"{format_glucose_value(value_mg_dl, unit, decimals)} {unit.value}"
