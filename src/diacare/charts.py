"""Agregacion de datos para graficos: glucosa por hora y tarjetas por dia."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

import pandas as pd
from dateutil import tz

from diacare.log import get_logger
from diacare.model import CardType, GlucoseReading, HealthCard

logger = get_logger(__name__)

CHART_HOURS = 7
CHART_DAYS = 7
STEPS_PER_KM = 1312.0

BEFORE_MEAL = "before_meal"
AFTER_MEAL = "after_meal"

_DAY_NAMES: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass(frozen=True)
class GlucoseChart:
    """Two aligned hourly series plus their 12-hour clock labels."""

    before_meal: list[float]
    after_meal: list[float]
    hours: list[str]


@dataclass(frozen=True)
class WeeklyChart:
    """One value per day for the 7 days ending today (oldest first)."""

    values: list[float]
    days: list[str]
    has_data: list[bool]

    @property
    def total_records(self) -> int:
        return sum(self.has_data)


def hour_label(hour: int) -> str:
    """12-hour clock label: 0 -> ``12AM``, 13 -> ``1PM``."""
    if hour == 0:
        return "12AM"
    if hour < 12:
        return f"{hour}AM"
    if hour == 12:
        return "12PM"
    return f"{hour - 12}PM"


def day_label(day: date) -> str:
    return _DAY_NAMES[day.weekday()]


def chart_hours(now: datetime, zone: tzinfo | None = None) -> list[int]:
    """Hours of day of the 7 chart slots ending at ``now``, oldest first.

    Slots are spaced in absolute time, so a DST change repeats or skips a
    local hour.
    """
    zone = zone or now.tzinfo
    utc_now = now.astimezone(tz.UTC)
    return [
        (utc_now - timedelta(hours=i)).astimezone(zone).hour
        for i in range(CHART_HOURS - 1, -1, -1)
    ]


def readings_to_frame(
    readings: Sequence[GlucoseReading], zone: tzinfo
) -> pd.DataFrame:
    """Convert readings to a frame with local hour of day, series and value."""
    rows = []
    for r in readings:
        local = r.recorded_at.astimezone(zone)
        rows.append(
            {
                "hour": local.hour,
                "series": BEFORE_MEAL if r.is_before_meal else AFTER_MEAL,
                "value": r.value,
            }
        )
    return pd.DataFrame(rows, columns=["hour", "series", "value"])


def glucose_chart(
    readings: Sequence[GlucoseReading],
    now: datetime,
    zone: tzinfo | None = None,
) -> GlucoseChart:
    """Bucket readings of the last 7 hours into before/after-meal series.

    Readings are keyed by their local hour of day, so readings from
    different days that share an hour land in the same bucket. Each slot is
    the mean of its bucket; an empty slot repeats the previous slot of the
    same series, and an empty first slot is 0.

    Args:
        readings: Readings of one user, any order.
        now: End of the window (tz-aware; naive is taken as local time).
        zone: Timezone whose hour of day is charted. Defaults to ``now``'s
            zone, or the machine's local zone.

    Returns:
        GlucoseChart with 7 values per series.
    """
    zone = zone or now.tzinfo or tz.tzlocal()
    if now.tzinfo is None:
        now = now.replace(tzinfo=zone)
    local_now = now.astimezone(zone)
    utc_now = now.astimezone(tz.UTC)
    start = utc_now - timedelta(hours=CHART_HOURS)

    in_window = [
        r for r in readings if start <= r.recorded_at.astimezone(tz.UTC) <= utc_now
    ]
    frame = readings_to_frame(in_window, zone)
    means: dict[tuple[str, int], float] = {}
    if not frame.empty:
        grouped = frame.groupby(["series", "hour"])["value"].mean()
        means = {
            (str(series), int(hour)): float(value)
            for (series, hour), value in grouped.items()
        }
    logger.debug(
        "Chart window %s..%s: %d of %d readings",
        start.isoformat(),
        local_now.isoformat(),
        len(in_window),
        len(readings),
    )

    hours = chart_hours(now, zone)
    return GlucoseChart(
        before_meal=_carry_forward(means, BEFORE_MEAL, hours),
        after_meal=_carry_forward(means, AFTER_MEAL, hours),
        hours=[hour_label(h) for h in hours],
    )


def empty_glucose_chart(now: datetime) -> GlucoseChart:
    """All-zero chart with the same shape and labels."""
    hours = chart_hours(now)
    return GlucoseChart(
        before_meal=[0.0] * CHART_HOURS,
        after_meal=[0.0] * CHART_HOURS,
        hours=[hour_label(h) for h in hours],
    )


def build_calendar(min_day: date, max_day: date) -> pd.DataFrame:
    """Build inclusive day calendar DataFrame."""
    days = pd.date_range(start=min_day, end=max_day, freq="D")
    return pd.DataFrame({"date": days.date})


def weekly_card_chart(
    cards: Sequence[HealthCard],
    card_type: CardType,
    today: date,
    scale: float = 1.0,
) -> WeeklyChart:
    """Per-day values of one card type for the 7 days ending ``today``.

    Args:
        cards: Health cards of one user (any type, any date).
        card_type: Card type to chart.
        today: Last day of the chart.
        scale: Multiplier applied to stored values (e.g. steps to km).

    Returns:
        WeeklyChart; days without a card are 0 with ``has_data`` False.
    """
    cal = build_calendar(today - timedelta(days=CHART_DAYS - 1), today)
    selected = pd.DataFrame(
        [
            {"date": c.recorded_date, "value": c.value}
            for c in cards
            if c.card_type is card_type
        ],
        columns=["date", "value"],
    ).drop_duplicates(subset="date", keep="last")

    out = cal.merge(selected, on="date", how="left")
    has_data = out["value"].notna()
    values = (out["value"].fillna(0.0).astype(float) * scale).tolist()
    return WeeklyChart(
        values=values,
        days=[day_label(d) for d in out["date"]],
        has_data=[bool(flag) for flag in has_data],
    )


def carbs_chart(cards: Sequence[HealthCard], today: date) -> WeeklyChart:
    return weekly_card_chart(cards, CardType.CARBS, today)


def activity_chart(cards: Sequence[HealthCard], today: date) -> WeeklyChart:
    """Weekly activity in km (stored as steps)."""
    return weekly_card_chart(cards, CardType.ACTIVITY, today, scale=1.0 / STEPS_PER_KM)


def empty_weekly_chart(today: date) -> WeeklyChart:
    days = [today - timedelta(days=i) for i in range(CHART_DAYS - 1, -1, -1)]
    return WeeklyChart(
        values=[0.0] * CHART_DAYS,
        days=[day_label(d) for d in days],
        has_data=[False] * CHART_DAYS,
    )


def _carry_forward(
    means: dict[tuple[str, int], float], series: str, hours: list[int]
) -> list[float]:
    out: list[float] = []
    for hour in hours:
        value = means.get((series, hour))
        if value is not None:
            out.append(value)
        elif out:
            out.append(out[-1])
        else:
            out.append(0.0)
    return out
