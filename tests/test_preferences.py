from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from dateutil import tz

from diacare.preferences import KEY_AUTH_SESSION, PreferenceStore


def test_defaults_when_nothing_stored(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    assert store.get_theme() == "system"
    assert store.get_locale() == "en"
    assert store.get_units() == "mg/dL"
    assert store.get_notifications_enabled() is True
    assert store.is_onboarding_complete() is False
    assert store.is_first_launch() is True
    assert store.get_logged_in_user_id() is None
    assert store.get_last_sync_time() is None


def test_values_survive_reopen_and_last_write_wins(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "prefs.db"
    store = PreferenceStore(path)
    store.set_theme("light")
    store.set_theme("dark")
    store.set_notifications_enabled(False)
    store.set_first_launch_complete()

    reopened = PreferenceStore(path)
    assert reopened.get_theme() == "dark"
    assert reopened.get_notifications_enabled() is False
    assert reopened.is_first_launch() is False


def test_set_all_preferences_ignores_unknown_keys(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    store.set_all_preferences({"units": "mmol/L", "locale": "fr", "colour": "blue"})
    prefs = store.get_all_preferences()
    assert prefs["units"] == "mmol/L"
    assert prefs["locale"] == "fr"
    assert "colour" not in prefs
    assert store.get("colour") is None


def test_clear_session_drops_user_and_token(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    store.set_logged_in_user_id("u-1")
    store.set_auth_session({"user_id": "u-1", "access_token": "tok"})
    store.set_units("mmol/L")

    store.clear_session()

    assert store.get_logged_in_user_id() is None
    assert store.get(KEY_AUTH_SESSION) is None
    assert store.get_units() == "mmol/L"


def test_clear_all_restores_defaults(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    store.set_locale("ar")
    store.set_onboarding_complete(True)
    store.clear_all()
    assert store.get_locale() == "en"
    assert store.is_onboarding_complete() is False


def test_last_sync_time_round_trips(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    when = datetime(2026, 10, 18, 9, 15, tzinfo=tz.UTC)
    store.set_last_sync_time(when)
    assert store.get_last_sync_time() == when


def test_connections_are_closed_after_each_call(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    opened: list[sqlite3.Connection] = []
    connect = sqlite3.connect

    def _tracking_connect(*args: Any, **kwargs: Any) -> sqlite3.Connection:
        conn = connect(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(sqlite3, "connect", _tracking_connect)
    store = PreferenceStore(tmp_path / "prefs.db")
    store.set_units("mmol/L")
    assert store.get_units() == "mmol/L"
    store.clear_session()

    assert len(opened) == 4
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
