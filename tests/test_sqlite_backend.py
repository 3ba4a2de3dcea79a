from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

import pytest
from dateutil import tz

from diacare.backends.base import (
    DIABETIC_PROFILES,
    GLUCOSE_READINGS,
    HEALTH_CARD_CONFLICT,
    HEALTH_CARDS,
    PROFILES,
    USER_PREFERENCES,
    RowQuery,
)
from diacare.backends.sqlite import SQLiteBackend
from diacare.errors import InvalidInput, NotFound, UniqueViolation
from diacare.model import SignUpProfile
from diacare.preferences import PreferenceStore


def _backend(tmp_path: Path, prefs: PreferenceStore | None = None) -> SQLiteBackend:
    return SQLiteBackend(tmp_path / "diacare.db", preferences=prefs)


def _reading(hour: int, value: float) -> dict:
    return {
        "value": value,
        "unit": "mg/dL",
        "reading_type": "fasting",
        "recorded_at": datetime(2026, 10, 18, hour, 0, tzinfo=tz.UTC),
    }


def test_sign_up_creates_profile_rows_and_session(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    reg = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))

    assert reg.session_established is True
    assert backend.current_user_id == reg.user_id
    assert backend.email_exists("ana@x.com")

    profile = backend.read_rows(PROFILES, reg.user_id)
    assert profile[0]["email"] == "ana@x.com"
    assert profile[0]["username"] == "ana"
    diabetic = backend.read_rows(DIABETIC_PROFILES, reg.user_id)
    assert (diabetic[0]["min_glucose"], diabetic[0]["max_glucose"]) == (70, 180)
    prefs = backend.read_rows(USER_PREFERENCES, reg.user_id)
    assert prefs[0]["theme"] == "system"
    assert prefs[0]["notifications_enabled"] is True


def test_duplicate_email_is_a_unique_violation(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))
    with pytest.raises(UniqueViolation):
        backend.sign_up("ana@x.com", "other-pass", SignUpProfile(username="ana2"))


def test_sign_in_checks_password(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    reg = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))
    backend.sign_out()
    assert backend.current_user_id is None

    assert backend.sign_in("ana@x.com", "wrong-pass") is None
    assert backend.sign_in("nobody@x.com", "pw123456") is None
    assert backend.sign_in("ana@x.com", "pw123456") == reg.user_id

    backend.update_password(reg.user_id, "new-pass-1")
    assert backend.sign_in("ana@x.com", "pw123456") is None
    assert backend.sign_in("ana@x.com", "new-pass-1") == reg.user_id


def test_session_restored_through_preferences(tmp_path: Path) -> None:
    prefs = PreferenceStore(tmp_path / "prefs.db")
    backend = _backend(tmp_path, prefs)
    reg = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))

    assert _backend(tmp_path, prefs).current_user_id == reg.user_id

    backend.sign_out()
    assert prefs.get_logged_in_user_id() is None
    assert _backend(tmp_path, prefs).current_user_id is None


def test_stale_session_is_cleared(tmp_path: Path) -> None:
    prefs = PreferenceStore(tmp_path / "prefs.db")
    prefs.set_logged_in_user_id("missing-user")
    assert _backend(tmp_path, prefs).current_user_id is None
    assert prefs.get_logged_in_user_id() is None


def test_read_rows_filters_orders_and_limits(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    user = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana")).user_id
    for hour, value in ((7, 95.0), (9, 110.0), (11, 125.0)):
        backend.insert_row(GLUCOSE_READINGS, user, _reading(hour, value))

    latest = backend.read_rows(
        GLUCOSE_READINGS,
        user,
        RowQuery(order_by="recorded_at", descending=True, limit=1),
    )
    assert [r["value"] for r in latest] == [125.0]

    window = backend.read_rows(
        GLUCOSE_READINGS,
        user,
        RowQuery(
            gte={"recorded_at": datetime(2026, 10, 18, 8, 0, tzinfo=tz.UTC)},
            lte={"recorded_at": datetime(2026, 10, 18, 10, 0, tzinfo=tz.UTC)},
        ),
    )
    assert [r["value"] for r in window] == [110.0]


def test_rows_are_isolated_per_owner(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    ana = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana")).user_id
    bob = backend.sign_up("bob@x.com", "pw123456", SignUpProfile(username="bob")).user_id
    row = backend.insert_row(GLUCOSE_READINGS, ana, _reading(7, 95.0))

    assert backend.read_rows(GLUCOSE_READINGS, bob) == []
    assert backend.delete_rows(GLUCOSE_READINGS, bob, {"id": row["id"]}) == 0
    assert backend.update_rows(GLUCOSE_READINGS, bob, {"notes": "x"}, {"id": row["id"]}) == 0
    assert backend.delete_rows(GLUCOSE_READINGS, ana, {"id": row["id"]}) == 1


def test_upsert_keeps_one_card_per_day(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    user = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana")).user_id
    day = date(2026, 10, 18)
    first = backend.upsert_row(
        HEALTH_CARDS,
        user,
        {"card_type": "water", "value": 1.0, "unit": "L", "recorded_date": day},
        HEALTH_CARD_CONFLICT,
    )
    second = backend.upsert_row(
        HEALTH_CARDS,
        user,
        {"card_type": "water", "value": 1.8, "unit": "L", "recorded_date": day},
        HEALTH_CARD_CONFLICT,
    )

    rows = backend.read_rows(HEALTH_CARDS, user)
    assert len(rows) == 1
    assert second["id"] == first["id"]
    assert rows[0]["value"] == 1.8


def test_delete_user_cascades(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    user = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana")).user_id
    backend.insert_row(GLUCOSE_READINGS, user, _reading(7, 95.0))

    backend.delete_user(user)

    assert backend.current_user_id is None
    assert not backend.email_exists("ana@x.com")
    assert backend.read_rows(GLUCOSE_READINGS, user) == []
    assert backend.read_rows(DIABETIC_PROFILES, user) == []


def test_constraint_and_column_errors_are_invalid_input(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    user = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana")).user_id

    with pytest.raises(InvalidInput):
        backend.insert_row(GLUCOSE_READINGS, user, _reading(7, 1500.0))
    with pytest.raises(InvalidInput):
        backend.update_rows(DIABETIC_PROFILES, user, {"min_glucose": 200})
    with pytest.raises(InvalidInput):
        backend.read_rows(GLUCOSE_READINGS, user, RowQuery(where={"colour": "red"}))


def test_update_password_of_unknown_user(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    with pytest.raises(NotFound):
        backend.update_password("missing", "pw123456")


def test_clear_all_data_drops_every_user(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))
    backend.clear_all_data()
    assert backend.current_user_id is None
    assert not backend.email_exists("ana@x.com")
