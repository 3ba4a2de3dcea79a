"""Preferencias locales persistidas en SQLite (tabla clave/valor)."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from diacare.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

KEY_LOGGED_IN_USER_ID = "logged_in_user_id"
KEY_THEME = "theme"
KEY_LOCALE = "locale"
KEY_UNITS = "units"
KEY_NOTIFICATIONS_ENABLED = "notifications_enabled"
KEY_ONBOARDING_COMPLETE = "onboarding_complete"
KEY_BIOMETRIC_ENABLED = "biometric_enabled"
KEY_REMEMBER_ME = "remember_me"
KEY_FIRST_LAUNCH = "first_launch"
KEY_LAST_SYNC_TIME = "last_sync_time"
KEY_AUTH_SESSION = "auth_session"

DEFAULTS: dict[str, Any] = {
    KEY_THEME: "system",
    KEY_LOCALE: "en",
    KEY_UNITS: "mg/dL",
    KEY_NOTIFICATIONS_ENABLED: True,
    KEY_ONBOARDING_COMPLETE: False,
    KEY_BIOMETRIC_ENABLED: False,
    KEY_REMEMBER_ME: False,
    KEY_FIRST_LAUNCH: True,
    KEY_LAST_SYNC_TIME: None,
    KEY_LOGGED_IN_USER_ID: None,
    KEY_AUTH_SESSION: None,
}

# Keys mirrored to the backend's user_preferences row.
SYNCED_KEYS = (
    KEY_THEME,
    KEY_LOCALE,
    KEY_UNITS,
    KEY_NOTIFICATIONS_ENABLED,
    KEY_BIOMETRIC_ENABLED,
    KEY_ONBOARDING_COMPLETE,
)


class PreferenceStore:
    """Durable string-keyed store for device preferences.

    Writes are idempotent overwrites; concurrent writers to one key are
    last-write-wins.
    """

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for ``key`` or its default."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM app_config WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return DEFAULTS.get(key, default) if default is None else default
        return _decode(row["value"], DEFAULTS.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, Any]) -> None:
        """Upsert several keys in one transaction."""
        payload = [(key, json.dumps(value, default=str)) for key, value in values.items()]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                payload,
            )
        logger.debug("Saved preferences: %s", ", ".join(values))

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM app_config WHERE key = ?", (key,))

    # Session

    def get_logged_in_user_id(self) -> str | None:
        value = self.get(KEY_LOGGED_IN_USER_ID)
        return None if value is None else str(value)

    def set_logged_in_user_id(self, user_id: str) -> None:
        self.set(KEY_LOGGED_IN_USER_ID, user_id)

    def get_auth_session(self) -> dict[str, Any] | None:
        value = self.get(KEY_AUTH_SESSION)
        return value if isinstance(value, dict) else None

    def set_auth_session(self, session: dict[str, Any]) -> None:
        self.set(KEY_AUTH_SESSION, session)

    def clear_session(self) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM app_config WHERE key IN (?, ?)",
                (KEY_LOGGED_IN_USER_ID, KEY_AUTH_SESSION),
            )

    # Typed accessors

    def get_theme(self) -> str:
        return str(self.get(KEY_THEME))

    def set_theme(self, theme: str) -> None:
        self.set(KEY_THEME, theme)

    def get_locale(self) -> str:
        return str(self.get(KEY_LOCALE))

    def set_locale(self, language_code: str) -> None:
        self.set(KEY_LOCALE, language_code)

    def get_units(self) -> str:
        return str(self.get(KEY_UNITS))

    def set_units(self, units: str) -> None:
        self.set(KEY_UNITS, units)

    def get_notifications_enabled(self) -> bool:
        return bool(self.get(KEY_NOTIFICATIONS_ENABLED))

    def set_notifications_enabled(self, enabled: bool) -> None:
        self.set(KEY_NOTIFICATIONS_ENABLED, bool(enabled))

    def is_onboarding_complete(self) -> bool:
        return bool(self.get(KEY_ONBOARDING_COMPLETE))

    def set_onboarding_complete(self, complete: bool) -> None:
        self.set(KEY_ONBOARDING_COMPLETE, bool(complete))

    def is_first_launch(self) -> bool:
        return bool(self.get(KEY_FIRST_LAUNCH))

    def set_first_launch_complete(self) -> None:
        self.set(KEY_FIRST_LAUNCH, False)

    def get_last_sync_time(self) -> datetime | None:
        raw = self.get(KEY_LAST_SYNC_TIME)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(str(raw))
        except ValueError:
            return None

    def set_last_sync_time(self, when: datetime) -> None:
        self.set(KEY_LAST_SYNC_TIME, when.isoformat())

    def get_all_preferences(self) -> dict[str, Any]:
        """Return every synced preference, defaults filled in."""
        return {key: self.get(key) for key in SYNCED_KEYS}

    def set_all_preferences(self, prefs: dict[str, Any]) -> None:
        """Save the known keys of ``prefs``; unknown keys are ignored."""
        known = {key: value for key, value in prefs.items() if key in SYNCED_KEYS}
        if known:
            self.set_many(known)

    def clear_all(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM app_config")
        logger.info("Cleared all local preferences")


def _decode(raw: str, fallback: Any) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback
