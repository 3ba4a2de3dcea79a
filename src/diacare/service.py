"""Fachada de datos: una superficie estable sobre cualquier backend.

Every write needs a session and raises :class:`NotLoggedIn` otherwise.
Reads degrade to the documented defaults while logged out. Input is
validated here, before any backend call, against the same constraints the
stores enforce.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from dateutil import tz

from diacare import validation
from diacare.backends.base import (
    DIABETIC_PROFILES,
    GLUCOSE_READINGS,
    HEALTH_CARD_CONFLICT,
    HEALTH_CARDS,
    PROFILES,
    REMINDERS,
    USER_PREFERENCES,
    Backend,
    RowQuery,
)
from diacare.charts import (
    CHART_DAYS,
    CHART_HOURS,
    GlucoseChart,
    WeeklyChart,
    activity_chart,
    carbs_chart,
    empty_glucose_chart,
    empty_weekly_chart,
    glucose_chart,
)
from diacare.dashboard import (
    CARD_UNITS,
    DashboardData,
    SettingsData,
    build_dashboard,
    build_settings,
    default_dashboard,
    default_settings,
    merge_health_cards,
)
from diacare.errors import (
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidInput,
    NotFound,
    NotLoggedIn,
    UniqueViolation,
)
from diacare.log import get_logger
from diacare.model import (
    DIABETIC_TYPES,
    GENDERS,
    TREATMENT_TYPES,
    CardType,
    DiabeticProfile,
    GlucoseReading,
    HealthCard,
    ReadingType,
    RecurrencePattern,
    Registration,
    Reminder,
    ReminderStatus,
    ReminderType,
    SignUpProfile,
    ThemeMode,
    Unit,
    UserPreferences,
    UserProfile,
    parse_date,
)
from diacare.preferences import (
    KEY_LOCALE,
    KEY_NOTIFICATIONS_ENABLED,
    KEY_ONBOARDING_COMPLETE,
    KEY_THEME,
    KEY_UNITS,
    SYNCED_KEYS,
    PreferenceStore,
)
from diacare.state import SUPPORTED_LANGUAGES
from diacare.units import to_mg_dl

logger = get_logger(__name__)

Clock = Callable[[], datetime]

PROFILE_FIELDS = (
    "username",
    "full_name",
    "profile_image_url",
    "date_of_birth",
    "gender",
    "height",
    "weight",
)
DIABETIC_FIELDS = (
    "diabetic_type",
    "treatment_type",
    "min_glucose",
    "max_glucose",
    "diagnosis_date",
)
REMINDER_FIELDS = (
    "title",
    "description",
    "reminder_type",
    "scheduled_time",
    "is_enabled",
    "is_recurring",
    "recurrence_pattern",
)

DEMO_GLUCOSE = (
    (95.0, ReadingType.FASTING),
    (110.0, ReadingType.BEFORE_MEAL),
    (125.0, ReadingType.AFTER_MEAL),
    (105.0, ReadingType.BEFORE_MEAL),
    (140.0, ReadingType.AFTER_MEAL),
    (98.0, ReadingType.BEFORE_MEAL),
    (115.0, ReadingType.RANDOM),
)
DEMO_CARDS = (
    (CardType.WATER, 1.2, "L"),
    (CardType.PILLS, 2.0, "taken"),
    (CardType.INSULIN, 5.0, "units"),
)
DEMO_ACTIVITY = (4500, 3200, 5800, 2900, 6100, 4000, 3250)
DEMO_CARBS = (180, 220, 150, 280, 200, 250, 190)


def local_now() -> datetime:
    return datetime.now(tz=tz.tzlocal())


class DataService:
    """Single entry point used by every front end.

    Args:
        backend: Storage and identity provider.
        preferences: Device preference store (theme, locale, units, ...).
        clock: Returns the current tz-aware time; charts and "today" use it.
    """

    def __init__(
        self,
        backend: Backend,
        preferences: PreferenceStore,
        clock: Clock | None = None,
    ) -> None:
        self._backend = backend
        self._prefs = preferences
        self._clock = clock or local_now

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def preferences(self) -> PreferenceStore:
        return self._prefs

    @property
    def current_user_id(self) -> str | None:
        return self._backend.current_user_id

    @property
    def is_logged_in(self) -> bool:
        return self._backend.current_user_id is not None

    def _require_user(self, operation: str) -> str:
        user_id = self._backend.current_user_id
        if user_id is None:
            raise NotLoggedIn(operation)
        return user_id

    def _today(self) -> date:
        return self._clock().date()

    # Authentication

    def login(self, email: str, password: str) -> UserProfile | None:
        """Open a session and pull the user's synced preferences.

        Raises:
            InvalidCredentials: If the backend rejects the pair.
        """
        email = validation.email(email)
        user_id = self._backend.sign_in(email, password)
        if user_id is None:
            raise InvalidCredentials(email)
        logger.info("Logged in %s on %s", user_id, self._backend.name)
        self._pull_preferences(user_id)
        return self.get_current_user()

    def logout(self) -> None:
        self._backend.sign_out()
        logger.info("Logged out")

    def register_user(
        self,
        email: str,
        password: str,
        username: str,
        full_name: str = "",
        date_of_birth: str | None = None,
        gender: str | None = None,
        height: float | None = None,
        weight: float | None = None,
        seed_demo_data: bool = False,
    ) -> Registration:
        """Create an account; logs in unless the backend defers the session.

        Raises:
            EmailAlreadyExists: If the email is taken.
            InvalidInput: For malformed email, short password or bad profile
                fields.
        """
        email = validation.email(email)
        validation.password(password)
        profile = SignUpProfile(
            username=_required_text(username, "username"),
            full_name=full_name or "",
            **_clean_profile(
                {
                    "date_of_birth": date_of_birth,
                    "gender": gender,
                    "height": height,
                    "weight": weight,
                }
            ),
        )
        if self._backend.email_exists(email):
            raise EmailAlreadyExists(email)
        try:
            registration = self._backend.sign_up(email, password, profile)
        except UniqueViolation as exc:
            raise EmailAlreadyExists(email) from exc

        if seed_demo_data:
            if registration.session_established:
                self.seed_demo_data()
            else:
                logger.warning("Demo data not seeded: session pending email confirmation")
        return registration

    def email_exists(self, email: str) -> bool:
        return self._backend.email_exists(validation.email(email))

    # User

    def get_current_user(self) -> UserProfile | None:
        user_id = self._backend.current_user_id
        if user_id is None:
            return None
        rows = self._backend.read_rows(PROFILES, user_id)
        return UserProfile.from_row(rows[0]) if rows else None

    def update_user_profile(self, data: Mapping[str, Any]) -> None:
        """Merge ``data`` into the profile; only known profile fields are accepted."""
        user_id = self._require_user("update_user_profile")
        values = _clean_profile(_known(data, PROFILE_FIELDS, "profile"))
        if "username" in values:
            values["username"] = _required_text(values["username"], "username")
        if not values:
            return
        if self._backend.update_rows(PROFILES, user_id, values) == 0:
            raise NotFound("profile", user_id)

    def update_password(self, new_password: str) -> None:
        user_id = self._require_user("update_password")
        self._backend.update_password(user_id, validation.password(new_password))
        logger.info("Password updated for %s", user_id)

    def delete_account(self) -> None:
        """Delete the user and all owned rows, then wipe local preferences."""
        user_id = self._require_user("delete_account")
        self._backend.delete_user(user_id)
        self._prefs.clear_all()
        logger.info("Deleted account %s", user_id)

    # Preferences

    def get_theme(self) -> str:
        return self._prefs.get_theme()

    def set_theme(self, theme: str) -> None:
        mode = validation.choice(ThemeMode, theme, "theme")
        self._save_preferences({KEY_THEME: mode.value})

    def get_locale(self) -> str:
        return self._prefs.get_locale()

    def set_locale(self, locale: str) -> None:
        code = validation.one_of(locale, SUPPORTED_LANGUAGES, "locale")
        self._save_preferences({KEY_LOCALE: code})

    def get_units(self) -> str:
        return self._prefs.get_units()

    def set_units(self, units: str) -> None:
        unit = validation.choice(Unit, units, "units")
        self._save_preferences({KEY_UNITS: unit.value})

    def get_notifications_enabled(self) -> bool:
        return self._prefs.get_notifications_enabled()

    def set_notifications_enabled(self, enabled: bool) -> None:
        self._save_preferences({KEY_NOTIFICATIONS_ENABLED: bool(enabled)})

    def is_onboarding_complete(self) -> bool:
        return self._prefs.is_onboarding_complete()

    def set_onboarding_complete(self, complete: bool) -> None:
        self._save_preferences({KEY_ONBOARDING_COMPLETE: bool(complete)})

    def get_all_preferences(self) -> dict[str, Any]:
        return self._prefs.get_all_preferences()

    def _save_preferences(self, values: dict[str, Any]) -> None:
        """Write locally, then mirror to the user's preference row if any."""
        self._prefs.set_many(values)
        user_id = self._backend.current_user_id
        if user_id is None or self._backend.read_only:
            return
        self._backend.upsert_row(USER_PREFERENCES, user_id, values, ("user_id",))

    def _pull_preferences(self, user_id: str) -> None:
        rows = self._backend.read_rows(USER_PREFERENCES, user_id)
        if rows:
            self._prefs.set_all_preferences(
                {k: v for k, v in rows[0].items() if k in SYNCED_KEYS and v is not None}
            )

    # Dashboard and settings

    def get_dashboard_data(self) -> DashboardData:
        user_id = self._backend.current_user_id
        if user_id is None:
            return default_dashboard(self._clock())
        profile = self.get_current_user()
        return build_dashboard(
            profile=profile,
            latest=self.get_latest_glucose_reading(),
            cards=self.get_health_cards(),
            reminders=self.get_reminders(enabled=True),
            chart=self.get_glucose_chart_data(),
        )

    def get_settings(self) -> SettingsData:
        user_id = self._backend.current_user_id
        local = _local_preferences(self._prefs)
        if user_id is None:
            return default_settings(local)
        profile = self.get_current_user()
        if profile is None:
            raise NotFound("profile", user_id)
        rows = self._backend.read_rows(USER_PREFERENCES, user_id)
        preferences = UserPreferences.from_row(rows[0]) if rows else local
        return build_settings(profile, self.get_diabetic_profile(), preferences)

    def update_settings(
        self,
        profile: Mapping[str, Any] | None = None,
        diabetic_profile: Mapping[str, Any] | None = None,
        preferences: Mapping[str, Any] | None = None,
    ) -> None:
        """Partial merge of profile, diabetic profile and preferences.

        Every part is validated before the first write, so a bad value in
        one part leaves the others untouched.
        """
        self._require_user("update_settings")
        prefs = dict(_known(preferences or {}, SYNCED_KEYS, "preferences"))
        if "theme" in prefs:
            prefs["theme"] = validation.choice(ThemeMode, prefs["theme"], "theme").value
        if "units" in prefs:
            prefs["units"] = validation.choice(Unit, prefs["units"], "units").value
        if "locale" in prefs:
            validation.one_of(prefs["locale"], SUPPORTED_LANGUAGES, "locale")
        _clean_profile(_known(profile or {}, PROFILE_FIELDS, "profile"))
        diabetic = self._clean_diabetic(diabetic_profile or {})

        if profile:
            self.update_user_profile(profile)
        if diabetic:
            self._write_diabetic(diabetic)
        if prefs:
            self._save_preferences(prefs)

    # Diabetic profile

    def get_diabetic_profile(self) -> DiabeticProfile | None:
        user_id = self._backend.current_user_id
        if user_id is None:
            return None
        rows = self._backend.read_rows(DIABETIC_PROFILES, user_id)
        return DiabeticProfile.from_row(rows[0]) if rows else None

    def update_diabetic_profile(self, data: Mapping[str, Any]) -> None:
        """Merge ``data`` into the diabetic profile.

        The target range is checked against the merged values, so a single
        bound can be changed on its own.
        """
        self._require_user("update_diabetic_profile")
        values = self._clean_diabetic(data)
        if values:
            self._write_diabetic(values)

    def _clean_diabetic(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(_known(data, DIABETIC_FIELDS, "diabetic_profile"))
        if "diabetic_type" in values:
            validation.one_of(values["diabetic_type"], DIABETIC_TYPES, "diabetic_type")
        if "treatment_type" in values:
            validation.one_of(values["treatment_type"], TREATMENT_TYPES, "treatment_type")
        if "diagnosis_date" in values and values["diagnosis_date"] is not None:
            values["diagnosis_date"] = _date_field(values["diagnosis_date"], "diagnosis_date")
        if "min_glucose" in values or "max_glucose" in values:
            current = self.get_diabetic_profile() or DiabeticProfile()
            low, high = validation.glucose_range(
                values.get("min_glucose", current.min_glucose),
                values.get("max_glucose", current.max_glucose),
            )
            values["min_glucose"], values["max_glucose"] = low, high
        return values

    def _write_diabetic(self, values: dict[str, Any]) -> None:
        user_id = self._require_user("update_diabetic_profile")
        if self._backend.update_rows(DIABETIC_PROFILES, user_id, values) == 0:
            raise NotFound("diabetic_profile", user_id)

    # Glucose readings

    def add_glucose_reading(
        self,
        value: float,
        unit: Unit | str = Unit.MG_PER_DL,
        reading_type: ReadingType | str = ReadingType.BEFORE_MEAL,
        notes: str | None = None,
        recorded_at: datetime | None = None,
    ) -> GlucoseReading:
        """Store a reading; ``value`` is in ``unit`` and is kept as mg/dL."""
        user_id = self._require_user("add_glucose_reading")
        unit = validation.choice(Unit, unit, "unit")
        kind = validation.choice(ReadingType, reading_type, "reading_type")
        entered = validation.non_negative(value, "value")
        mg_dl = validation.glucose_value(to_mg_dl(entered, unit))
        when = recorded_at or self._clock()
        if when.tzinfo is None:
            when = when.replace(tzinfo=tz.tzlocal())
        row = self._backend.insert_row(
            GLUCOSE_READINGS,
            user_id,
            {
                "value": mg_dl,
                "unit": unit,
                "reading_type": kind,
                "notes": notes,
                "recorded_at": when,
            },
        )
        logger.info("Added %s reading %.1f mg/dL", kind.value, mg_dl)
        return GlucoseReading.from_row(row)

    def get_glucose_readings(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[GlucoseReading]:
        """Readings newest first, optionally bounded in time and count."""
        user_id = self._backend.current_user_id
        if user_id is None:
            return []
        query = RowQuery(
            gte={"recorded_at": start} if start else {},
            lte={"recorded_at": end} if end else {},
            order_by="recorded_at",
            descending=True,
            limit=limit,
        )
        rows = self._backend.read_rows(GLUCOSE_READINGS, user_id, query)
        return [GlucoseReading.from_row(r) for r in rows]

    def get_latest_glucose_reading(self) -> GlucoseReading | None:
        readings = self.get_glucose_readings(limit=1)
        return readings[0] if readings else None

    def delete_glucose_reading(self, reading_id: str) -> None:
        user_id = self._require_user("delete_glucose_reading")
        if self._backend.delete_rows(GLUCOSE_READINGS, user_id, {"id": reading_id}) == 0:
            raise NotFound("glucose_reading", reading_id)

    # Charts

    def get_glucose_chart_data(self) -> GlucoseChart:
        now = self._clock()
        user_id = self._backend.current_user_id
        if user_id is None:
            return empty_glucose_chart(now)
        query = RowQuery(
            gte={"recorded_at": now - timedelta(hours=CHART_HOURS)},
            order_by="recorded_at",
        )
        rows = self._backend.read_rows(GLUCOSE_READINGS, user_id, query)
        return glucose_chart([GlucoseReading.from_row(r) for r in rows], now)

    def get_carbs_chart_data(self) -> WeeklyChart:
        return self._weekly_chart(CardType.CARBS)

    def get_activity_chart_data(self) -> WeeklyChart:
        return self._weekly_chart(CardType.ACTIVITY)

    def _weekly_chart(self, card_type: CardType) -> WeeklyChart:
        today = self._today()
        user_id = self._backend.current_user_id
        if user_id is None:
            return empty_weekly_chart(today)
        query = RowQuery(
            where={"card_type": card_type},
            gte={"recorded_date": today - timedelta(days=CHART_DAYS - 1)},
            lte={"recorded_date": today},
        )
        cards = [
            HealthCard.from_row(r)
            for r in self._backend.read_rows(HEALTH_CARDS, user_id, query)
        ]
        if card_type is CardType.ACTIVITY:
            return activity_chart(cards, today)
        return carbs_chart(cards, today)

    # Health cards

    def update_health_card(
        self,
        card_type: CardType | str,
        value: float,
        unit: str | None = None,
        recorded_date: date | None = None,
    ) -> HealthCard:
        """Upsert the card of ``card_type`` for ``recorded_date`` (today by default)."""
        user_id = self._require_user("update_health_card")
        kind = validation.choice(CardType, card_type, "card_type")
        amount = validation.non_negative(value, "value")
        row = self._backend.upsert_row(
            HEALTH_CARDS,
            user_id,
            {
                "card_type": kind,
                "value": amount,
                "unit": unit or CARD_UNITS[kind],
                "recorded_date": recorded_date or self._today(),
            },
            HEALTH_CARD_CONFLICT,
        )
        return HealthCard.from_row(row)

    def get_health_cards(self, day: date | None = None) -> list[HealthCard]:
        """Cards of ``day`` (today by default); logged out reads as five zero cards."""
        user_id = self._backend.current_user_id
        day = day or self._today()
        if user_id is None:
            return [
                HealthCard(card_type=c.card_type, value=c.value, unit=c.unit, recorded_date=day)
                for c in merge_health_cards([])
            ]
        rows = self._backend.read_rows(
            HEALTH_CARDS, user_id, RowQuery(where={"recorded_date": day})
        )
        return [HealthCard.from_row(r) for r in rows]

    # Reminders

    def get_reminders(self, enabled: bool | None = None) -> list[Reminder]:
        """Reminders ordered by scheduled time, optionally filtered on ``is_enabled``."""
        user_id = self._backend.current_user_id
        if user_id is None:
            return []
        query = RowQuery(
            where={} if enabled is None else {"is_enabled": enabled},
            order_by="scheduled_time",
        )
        rows = self._backend.read_rows(REMINDERS, user_id, query)
        return [Reminder.from_row(r) for r in rows]

    def add_reminder(
        self,
        title: str,
        reminder_type: ReminderType | str,
        scheduled_time: str,
        description: str | None = None,
        is_recurring: bool = False,
        recurrence_pattern: RecurrencePattern | str | None = None,
    ) -> Reminder:
        user_id = self._require_user("add_reminder")
        values = _clean_reminder(
            {
                "title": title,
                "reminder_type": reminder_type,
                "scheduled_time": scheduled_time,
                "description": description,
                "is_recurring": is_recurring,
                "recurrence_pattern": recurrence_pattern,
            }
        )
        values["is_enabled"] = True
        values["status"] = ReminderStatus.PENDING
        row = self._backend.insert_row(REMINDERS, user_id, values)
        return Reminder.from_row(row)

    def update_reminder(self, reminder_id: str, data: Mapping[str, Any]) -> None:
        user_id = self._require_user("update_reminder")
        values = _clean_reminder(_known(data, REMINDER_FIELDS, "reminder"))
        if not values:
            return
        if self._backend.update_rows(REMINDERS, user_id, values, {"id": reminder_id}) == 0:
            raise NotFound("reminder", reminder_id)

    def update_reminder_status(
        self, reminder_id: str, status: ReminderStatus | str
    ) -> None:
        """Set status; ``completed_at`` is stamped for done/completed, cleared otherwise."""
        user_id = self._require_user("update_reminder_status")
        new_status = validation.choice(ReminderStatus, status, "status")
        finished = new_status in (ReminderStatus.DONE, ReminderStatus.COMPLETED)
        values = {
            "status": new_status,
            "completed_at": self._clock() if finished else None,
        }
        if self._backend.update_rows(REMINDERS, user_id, values, {"id": reminder_id}) == 0:
            raise NotFound("reminder", reminder_id)

    def delete_reminder(self, reminder_id: str) -> None:
        user_id = self._require_user("delete_reminder")
        if self._backend.delete_rows(REMINDERS, user_id, {"id": reminder_id}) == 0:
            raise NotFound("reminder", reminder_id)

    # Utilities

    def seed_demo_data(self) -> None:
        """Fill the current account with a week of sample data."""
        self._require_user("seed_demo_data")
        now = self._clock()
        today = now.date()
        for offset, (value, kind) in zip(range(CHART_HOURS - 1, -1, -1), DEMO_GLUCOSE):
            self.add_glucose_reading(
                value, Unit.MG_PER_DL, kind, recorded_at=now - timedelta(hours=offset)
            )
        for kind, value, unit in DEMO_CARDS:
            self.update_health_card(kind, value, unit)
        for offset, steps, carbs in zip(
            range(CHART_DAYS - 1, -1, -1), DEMO_ACTIVITY, DEMO_CARBS
        ):
            day = today - timedelta(days=offset)
            self.update_health_card(CardType.ACTIVITY, steps, "steps", day)
            self.update_health_card(CardType.CARBS, carbs, "cal", day)
        self.add_reminder(
            "Drink Water",
            ReminderType.WATER,
            f"{(now.hour + 1) % 24:02d}:00",
            is_recurring=True,
            recurrence_pattern=RecurrencePattern.HOURLY,
        )
        self.add_reminder(
            "Take Medication",
            ReminderType.MEDICATION,
            "08:00",
            is_recurring=True,
            recurrence_pattern=RecurrencePattern.DAILY,
        )
        self.add_reminder(
            "Check Blood Sugar",
            ReminderType.GLUCOSE,
            "12:00",
            is_recurring=True,
            recurrence_pattern=RecurrencePattern.DAILY,
        )
        logger.info("Seeded demo data")

    def clear_all_data(self) -> None:
        """Reset this device: local rows (if any), session and preferences."""
        self._backend.clear_all_data()
        self._prefs.clear_all()

    def close(self) -> None:
        self._backend.close()


def _local_preferences(prefs: PreferenceStore) -> UserPreferences:
    return UserPreferences.from_row(prefs.get_all_preferences())


def _known(
    data: Mapping[str, Any], allowed: tuple[str, ...], field: str
) -> dict[str, Any]:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise InvalidInput(field, ", ".join(unknown), "unknown fields")
    return dict(data)


def _required_text(value: Any, field: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise InvalidInput(field, value, "must not be empty")
    return text


def _date_field(value: Any, field: str) -> date:
    try:
        return parse_date(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidInput(field, value, "expected YYYY-MM-DD") from None


def _clean_profile(values: dict[str, Any]) -> dict[str, Any]:
    """Validate profile fields; None values are kept out of the result."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if key == "gender":
            value = validation.one_of(value, GENDERS, "gender")
        elif key in ("height", "weight"):
            value = validation.non_negative(value, key)
        elif key == "date_of_birth":
            value = _date_field(value, key).isoformat()
        out[key] = value
    return out


def _clean_reminder(values: dict[str, Any]) -> dict[str, Any]:
    out = dict(values)
    if "title" in out:
        out["title"] = _required_text(out["title"], "title")
    if "reminder_type" in out:
        out["reminder_type"] = validation.choice(
            ReminderType, out["reminder_type"], "reminder_type"
        )
    if "scheduled_time" in out:
        out["scheduled_time"] = validation.scheduled_time(out["scheduled_time"])
    if out.get("recurrence_pattern") is not None:
        out["recurrence_pattern"] = validation.choice(
            RecurrencePattern, out["recurrence_pattern"], "recurrence_pattern"
        )
    for flag in ("is_enabled", "is_recurring"):
        if flag in out:
            out[flag] = bool(out[flag])
    return out
