"""Modelos tipados: lecturas de glucosa, tarjetas diarias, recordatorios y perfiles."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from dateutil import tz


class ThemeMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class Unit(str, Enum):
    MG_PER_DL = "mg/dL"
    MMOL_PER_L = "mmol/L"


class ReadingType(str, Enum):
    FASTING = "fasting"
    BEFORE_MEAL = "before_meal"
    AFTER_MEAL = "after_meal"
    BEDTIME = "bedtime"
    RANDOM = "random"


class CardType(str, Enum):
    WATER = "water"
    PILLS = "pills"
    ACTIVITY = "activity"
    CARBS = "carbs"
    INSULIN = "insulin"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    NOT_DONE = "not_done"
    SKIPPED = "skipped"
    COMPLETED = "completed"


class ReminderType(str, Enum):
    MEDICATION = "medication"
    GLUCOSE = "glucose"
    WATER = "water"
    EXERCISE = "exercise"
    MEAL = "meal"
    CUSTOM = "custom"


class RecurrencePattern(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


DIABETIC_TYPES = ("Type 1", "Type 2", "Gestational", "Prediabetes", "Other")
TREATMENT_TYPES = ("Insulin", "Medication", "Diet", "Exercise", "Combination")
GENDERS = ("Male", "Female", "Other")


@dataclass(frozen=True)
class GlucoseReading:
    """One glucose measurement; ``value`` is always mg/dL."""

    id: str
    user_id: str
    value: float
    unit: Unit
    reading_type: ReadingType
    recorded_at: datetime
    notes: str | None = None

    @property
    def is_before_meal(self) -> bool:
        return self.reading_type in (ReadingType.BEFORE_MEAL, ReadingType.FASTING)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> GlucoseReading:
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            value=float(row["value"]),
            unit=Unit(row.get("unit") or Unit.MG_PER_DL.value),
            reading_type=ReadingType(row.get("reading_type") or "before_meal"),
            recorded_at=parse_timestamp(row["recorded_at"]),
            notes=row.get("notes"),
        )


@dataclass(frozen=True)
class HealthCard:
    """Daily metric, one per (user, card_type, recorded_date)."""

    card_type: CardType
    value: float
    unit: str
    recorded_date: date
    id: str | None = None
    user_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> HealthCard:
        return cls(
            id=_opt_str(row.get("id")),
            user_id=_opt_str(row.get("user_id")),
            card_type=CardType(row["card_type"]),
            value=float(row["value"]),
            unit=str(row["unit"]),
            recorded_date=parse_date(row["recorded_date"]),
        )


@dataclass(frozen=True)
class Reminder:
    id: str
    user_id: str
    title: str
    reminder_type: ReminderType
    scheduled_time: str
    status: ReminderStatus = ReminderStatus.PENDING
    description: str | None = None
    is_enabled: bool = True
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Reminder:
        pattern = row.get("recurrence_pattern")
        completed = row.get("completed_at")
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=str(row["title"]),
            reminder_type=ReminderType(row["reminder_type"]),
            scheduled_time=_normalize_time(row["scheduled_time"]),
            status=ReminderStatus(row.get("status") or "pending"),
            description=row.get("description"),
            is_enabled=bool(row.get("is_enabled", True)),
            is_recurring=bool(row.get("is_recurring", False)),
            recurrence_pattern=RecurrencePattern(pattern) if pattern else None,
            completed_at=parse_timestamp(completed) if completed else None,
        )


@dataclass(frozen=True)
class UserProfile:
    id: str
    email: str
    username: str
    full_name: str = ""
    profile_image_url: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    height: float | None = None
    weight: float | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "User"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UserProfile:
        dob = row.get("date_of_birth")
        return cls(
            id=str(row["id"]),
            email=str(row["email"]),
            username=str(row.get("username") or ""),
            full_name=str(row.get("full_name") or ""),
            profile_image_url=row.get("profile_image_url"),
            date_of_birth=parse_date(dob) if dob else None,
            gender=row.get("gender"),
            height=_opt_float(row.get("height")),
            weight=_opt_float(row.get("weight")),
        )


@dataclass(frozen=True)
class DiabeticProfile:
    diabetic_type: str = "Type 1"
    treatment_type: str = "Insulin"
    min_glucose: int = 70
    max_glucose: int = 180
    diagnosis_date: date | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None) -> DiabeticProfile:
        if not row:
            return cls()
        diagnosis = row.get("diagnosis_date")
        return cls(
            diabetic_type=row.get("diabetic_type") or "Type 1",
            treatment_type=row.get("treatment_type") or "Insulin",
            min_glucose=int(row.get("min_glucose", 70)),
            max_glucose=int(row.get("max_glucose", 180)),
            diagnosis_date=parse_date(diagnosis) if diagnosis else None,
        )


@dataclass(frozen=True)
class UserPreferences:
    theme: ThemeMode = ThemeMode.SYSTEM
    locale: str = "en"
    units: Unit = Unit.MG_PER_DL
    notifications_enabled: bool = True
    biometric_enabled: bool = False
    onboarding_complete: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None) -> UserPreferences:
        if not row:
            return cls()
        return cls(
            theme=ThemeMode(row.get("theme") or ThemeMode.SYSTEM.value),
            locale=row.get("locale") or "en",
            units=Unit(row.get("units") or Unit.MG_PER_DL.value),
            notifications_enabled=bool(row.get("notifications_enabled", True)),
            biometric_enabled=bool(row.get("biometric_enabled", False)),
            onboarding_complete=bool(row.get("onboarding_complete", False)),
        )


@dataclass(frozen=True)
class Registration:
    """Outcome of a sign-up.

    ``session_established`` is False when the backend defers the session
    until the email address is verified.
    """

    user_id: str
    session_established: bool


@dataclass(frozen=True)
class SignUpProfile:
    """Profile fields sent along with a new account."""

    username: str
    full_name: str = ""
    date_of_birth: str | None = None
    gender: str | None = None
    height: float | None = None
    weight: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_row(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "full_name": self.full_name,
            "date_of_birth": self.date_of_birth,
            "gender": self.gender,
            "height": self.height,
            "weight": self.weight,
            **self.extra,
        }


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through) as tz-aware.

    Naive values are taken as UTC, which is how every backend stores them.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz.UTC)
    return parsed


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date_parser.isoparse(str(value)).date()


def _normalize_time(value: Any) -> str:
    """Postgres TIME comes back as HH:MM:SS; keep HH:MM."""
    text = str(value)
    parts = text.split(":")
    if len(parts) >= 2:
        return f"{int(parts[0]):02d}:{int(parts[1]):02d}"
    return text


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)
