"""Armado del tablero y de la pantalla de ajustes, independiente del backend."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from diacare.charts import GlucoseChart, empty_glucose_chart
from diacare.model import (
    CardType,
    DiabeticProfile,
    GlucoseReading,
    HealthCard,
    Reminder,
    Unit,
    UserPreferences,
    UserProfile,
)

LOW_GLUCOSE = 70.0
HIGH_GLUCOSE = 180.0

CARD_ORDER: tuple[CardType, ...] = (
    CardType.WATER,
    CardType.PILLS,
    CardType.ACTIVITY,
    CardType.CARBS,
    CardType.INSULIN,
)
CARD_TITLES: dict[CardType, str] = {
    CardType.WATER: "Water",
    CardType.PILLS: "Pills",
    CardType.ACTIVITY: "Activity",
    CardType.CARBS: "Carbs",
    CardType.INSULIN: "Insulin",
}
CARD_UNITS: dict[CardType, str] = {
    CardType.WATER: "L",
    CardType.PILLS: "taken",
    CardType.ACTIVITY: "steps",
    CardType.CARBS: "cal",
    CardType.INSULIN: "units",
}


@dataclass(frozen=True)
class CardView:
    card_type: CardType
    title: str
    value: float
    unit: str


@dataclass(frozen=True)
class GlucoseSummary:
    value: int
    unit: str
    status: str


@dataclass(frozen=True)
class DashboardData:
    greeting: str
    glucose: GlucoseSummary
    reminder: str
    health_cards: list[CardView]
    chart: GlucoseChart
    chart_title: str = "Blood Sugar"


@dataclass(frozen=True)
class SettingsData:
    email: str
    full_name: str
    username: str
    profile_image_url: str | None
    diabetic_profile: DiabeticProfile
    preferences: UserPreferences


def glucose_status(value: float) -> str:
    """Short status message for the latest reading (mg/dL)."""
    if value == 0:
        return "No readings"
    if value < LOW_GLUCOSE:
        return "Low - Please eat something"
    if value > HIGH_GLUCOSE:
        return "High - Monitor closely"
    return "You are fine"


def merge_health_cards(cards: Sequence[HealthCard]) -> list[CardView]:
    """Always five cards in display order; missing types read as 0."""
    by_type = {c.card_type: c for c in cards}
    out: list[CardView] = []
    for card_type in CARD_ORDER:
        existing = by_type.get(card_type)
        out.append(
            CardView(
                card_type=card_type,
                title=CARD_TITLES[card_type],
                value=existing.value if existing else 0.0,
                unit=(existing.unit or CARD_UNITS[card_type])
                if existing
                else CARD_UNITS[card_type],
            )
        )
    return out


def build_dashboard(
    profile: UserProfile | None,
    latest: GlucoseReading | None,
    cards: Sequence[HealthCard],
    reminders: Sequence[Reminder],
    chart: GlucoseChart,
) -> DashboardData:
    """Assemble the dashboard of a logged-in user.

    Args:
        profile: User profile (None renders as ``User``).
        latest: Most recent glucose reading, if any.
        cards: Today's health cards.
        reminders: Enabled reminders ordered by scheduled time.
        chart: Hourly glucose chart.
    """
    name = profile.display_name if profile else "User"
    value = latest.value if latest else 0.0
    return DashboardData(
        greeting=f"Hi, {name}",
        glucose=GlucoseSummary(
            value=int(value),
            unit=Unit.MG_PER_DL.value,
            status=glucose_status(value),
        ),
        reminder=reminders[0].title if reminders else "No reminders",
        health_cards=merge_health_cards(cards),
        chart=chart,
    )


def default_dashboard(now: datetime) -> DashboardData:
    """Payload shown before login."""
    return DashboardData(
        greeting="Welcome",
        glucose=GlucoseSummary(value=0, unit=Unit.MG_PER_DL.value, status="Please log in"),
        reminder="Log in to see reminders",
        health_cards=merge_health_cards([]),
        chart=empty_glucose_chart(now),
        chart_title="Blood Sugar (mg/dL)",
    )


def build_settings(
    profile: UserProfile,
    diabetic: DiabeticProfile | None,
    preferences: UserPreferences | None,
) -> SettingsData:
    return SettingsData(
        email=profile.email,
        full_name=profile.full_name,
        username=profile.username,
        profile_image_url=profile.profile_image_url,
        diabetic_profile=diabetic or DiabeticProfile(),
        preferences=preferences or UserPreferences(),
    )


def default_settings(preferences: UserPreferences | None = None) -> SettingsData:
    """Settings payload when logged out: blank identity, local preferences."""
    return SettingsData(
        email="",
        full_name="",
        username="",
        profile_image_url=None,
        diabetic_profile=DiabeticProfile(),
        preferences=preferences or UserPreferences(),
    )
