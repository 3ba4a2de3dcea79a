"""Backend SQLite local (un dispositivo, CRUD completo)."""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from dateutil import tz

from diacare.backends.base import (
    PROFILES,
    TABLES,
    Backend,
    RowQuery,
    owner_column,
)
from diacare.backends.passwords import hash_password, verify_password
from diacare.errors import BackendUnavailable, InvalidInput, NotFound, UniqueViolation
from diacare.log import TRACE, get_logger
from diacare.model import Registration, SignUpProfile
from diacare.preferences import PreferenceStore

logger = get_logger(__name__)

_NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    created_at TEXT DEFAULT {_NOW_SQL}
);

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    email TEXT UNIQUE NOT NULL,
    username TEXT NOT NULL,
    full_name TEXT DEFAULT '',
    profile_image_url TEXT,
    date_of_birth TEXT,
    gender TEXT CHECK (gender IN ('Male', 'Female', 'Other') OR gender IS NULL),
    height REAL,
    weight REAL,
    created_at TEXT DEFAULT {_NOW_SQL},
    updated_at TEXT DEFAULT {_NOW_SQL}
);

CREATE TABLE IF NOT EXISTS diabetic_profiles (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    diabetic_type TEXT NOT NULL DEFAULT 'Type 1'
        CHECK (diabetic_type IN ('Type 1', 'Type 2', 'Gestational', 'Prediabetes', 'Other')),
    treatment_type TEXT NOT NULL DEFAULT 'Insulin'
        CHECK (treatment_type IN ('Insulin', 'Medication', 'Diet', 'Exercise', 'Combination')),
    min_glucose INTEGER NOT NULL DEFAULT 70 CHECK (min_glucose >= 0 AND min_glucose <= 500),
    max_glucose INTEGER NOT NULL DEFAULT 180 CHECK (max_glucose >= 0 AND max_glucose <= 500),
    diagnosis_date TEXT,
    created_at TEXT DEFAULT {_NOW_SQL},
    updated_at TEXT DEFAULT {_NOW_SQL},
    CHECK (min_glucose < max_glucose)
);

CREATE TABLE IF NOT EXISTS glucose_readings (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    value REAL NOT NULL CHECK (value >= 0 AND value <= 1000),
    unit TEXT NOT NULL DEFAULT 'mg/dL' CHECK (unit IN ('mg/dL', 'mmol/L')),
    reading_type TEXT NOT NULL DEFAULT 'before_meal'
        CHECK (reading_type IN ('fasting', 'before_meal', 'after_meal', 'bedtime', 'random')),
    notes TEXT,
    recorded_at TEXT NOT NULL,
    created_at TEXT DEFAULT {_NOW_SQL}
);

CREATE INDEX IF NOT EXISTS idx_glucose_user_date
ON glucose_readings(user_id, recorded_at);

CREATE TABLE IF NOT EXISTS health_cards (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    card_type TEXT NOT NULL
        CHECK (card_type IN ('water', 'pills', 'activity', 'carbs', 'insulin')),
    value REAL NOT NULL CHECK (value >= 0),
    unit TEXT NOT NULL,
    recorded_date TEXT NOT NULL,
    created_at TEXT DEFAULT {_NOW_SQL},
    UNIQUE (user_id, card_type, recorded_date)
);

CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    reminder_type TEXT NOT NULL
        CHECK (reminder_type IN ('medication', 'glucose', 'water', 'exercise', 'meal', 'custom')),
    scheduled_time TEXT NOT NULL,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurrence_pattern TEXT
        CHECK (recurrence_pattern IN ('hourly', 'daily', 'weekly', 'monthly') OR recurrence_pattern IS NULL),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'done', 'not_done', 'skipped', 'completed')),
    completed_at TEXT,
    created_at TEXT DEFAULT {_NOW_SQL},
    updated_at TEXT DEFAULT {_NOW_SQL}
);

CREATE INDEX IF NOT EXISTS idx_reminders_user
ON reminders(user_id, scheduled_time);

CREATE TABLE IF NOT EXISTS user_preferences (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    theme TEXT NOT NULL DEFAULT 'system' CHECK (theme IN ('light', 'dark', 'system')),
    locale TEXT NOT NULL DEFAULT 'en' CHECK (locale IN ('en', 'fr', 'ar')),
    units TEXT NOT NULL DEFAULT 'mg/dL' CHECK (units IN ('mg/dL', 'mmol/L')),
    notifications_enabled INTEGER NOT NULL DEFAULT 1,
    biometric_enabled INTEGER NOT NULL DEFAULT 0,
    onboarding_complete INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT {_NOW_SQL},
    updated_at TEXT DEFAULT {_NOW_SQL}
);
"""

BOOL_COLUMNS = frozenset(
    {
        "is_enabled",
        "is_recurring",
        "notifications_enabled",
        "biometric_enabled",
        "onboarding_complete",
    }
)


class SQLiteBackend(Backend):
    """Embedded relational store.

    The session survives restarts through the ``logged_in_user_id`` key of
    the preference store, when one is given.
    """

    name = "sqlite"

    def __init__(
        self, db_path: Path, preferences: PreferenceStore | None = None
    ) -> None:
        """Create backend and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._prefs = preferences
        self._user_id: str | None = None
        self._columns: dict[str, set[str]] = {}
        self._init_schema()
        self._restore_session()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise BackendUnavailable(self.name, str(exc)) from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise _integrity_error(exc) from exc
        except sqlite3.Error as exc:
            raise BackendUnavailable(self.name, str(exc)) from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.executescript(SCHEMA_SQL)
            for table in TABLES:
                self._columns[table] = {
                    row["name"] for row in conn.execute(f"PRAGMA table_info({table})")
                }

    def _restore_session(self) -> None:
        if self._prefs is None:
            return
        user_id = self._prefs.get_logged_in_user_id()
        if user_id is None:
            return
        with self._transaction() as conn:
            row = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            logger.warning("Stored session refers to a missing user; clearing it")
            self._prefs.clear_session()
            return
        self._user_id = user_id
        logger.debug("Restored session for %s", user_id)

    # Identity

    @property
    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_up(
        self, email: str, password: str, profile: SignUpProfile
    ) -> Registration:
        user_id = str(uuid.uuid4())
        profile_row = {k: v for k, v in profile.as_row().items() if v is not None}
        profile_row.update({"id": user_id, "email": email})
        self._check_columns(PROFILES, profile_row)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO users(id, email, password_hash) VALUES (?, ?, ?)",
                (user_id, email, hash_password(password)),
            )
            _insert(conn, PROFILES, profile_row)
            _insert(conn, "diabetic_profiles", {"id": _new_id(), "user_id": user_id})
            _insert(conn, "user_preferences", {"id": _new_id(), "user_id": user_id})
        self._open_session(user_id)
        logger.info("Registered %s", user_id)
        return Registration(user_id=user_id, session_established=True)

    def sign_in(self, email: str, password: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, password_hash FROM users WHERE email = ?", (email,)
            ).fetchone()
        if row is None or not verify_password(password, row["password_hash"]):
            return None
        self._open_session(row["id"])
        return str(row["id"])

    def sign_out(self) -> None:
        self._user_id = None
        if self._prefs is not None:
            self._prefs.clear_session()

    def email_exists(self, email: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone()
        return row is not None

    def update_password(self, user_id: str, new_password: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (hash_password(new_password), user_id),
            )
            changed = cur.rowcount
        if changed == 0:
            raise NotFound("user", user_id)

    def delete_user(self, user_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        self.sign_out()
        logger.info("Deleted user %s and its rows", user_id)

    def _open_session(self, user_id: str) -> None:
        self._user_id = user_id
        if self._prefs is not None:
            self._prefs.set_logged_in_user_id(user_id)

    # Rows

    def read_rows(
        self, table: str, owner_id: str, query: RowQuery | None = None
    ) -> list[dict[str, Any]]:
        query = query or RowQuery()
        clauses, params = self._owner_clause(table, owner_id, query.where)
        for op, bounds in ((">=", query.gte), ("<=", query.lte)):
            self._check_columns(table, bounds)
            for column, value in bounds.items():
                clauses.append(f"{column} {op} ?")
                params.append(_to_db(value))
        sql = f"SELECT * FROM {table} WHERE {' AND '.join(clauses)}"
        if query.order_by:
            self._check_columns(table, {query.order_by: None})
            sql += f" ORDER BY {query.order_by} {'DESC' if query.descending else 'ASC'}"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(int(query.limit))
        logger.log(TRACE, "%s %s", sql, params)
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_from_db(row) for row in rows]

    def insert_row(
        self, table: str, owner_id: str, values: dict[str, Any]
    ) -> dict[str, Any]:
        row = {"id": _new_id(), **values, owner_column(table): owner_id}
        self._check_columns(table, row)
        with self._transaction() as conn:
            _insert(conn, table, row)
            stored = conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row["id"],)
            ).fetchone()
        return _from_db(stored)

    def update_rows(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> int:
        if not values:
            return 0
        self._check_columns(table, values)
        changes = dict(values)
        if "updated_at" in self._columns[table]:
            changes.setdefault("updated_at", datetime.now(tz=tz.UTC))
        assignments = ", ".join(f"{column} = ?" for column in changes)
        clauses, params = self._owner_clause(table, owner_id, where or {})
        sql = f"UPDATE {table} SET {assignments} WHERE {' AND '.join(clauses)}"
        with self._transaction() as conn:
            cur = conn.execute(sql, [_to_db(v) for v in changes.values()] + params)
            changed = cur.rowcount
        return int(changed)

    def upsert_row(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        row = {"id": _new_id(), **values, owner_column(table): owner_id}
        self._check_columns(table, row)
        self._check_columns(table, dict.fromkeys(conflict))
        columns = list(row)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in columns if c not in conflict and c != "id"
        )
        sql = (
            f"INSERT INTO {table}({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT({', '.join(conflict)}) DO UPDATE SET {updates}"
        )
        key_sql = " AND ".join(f"{c} = ?" for c in conflict)
        with self._transaction() as conn:
            conn.execute(sql, [_to_db(row[c]) for c in columns])
            stored = conn.execute(
                f"SELECT * FROM {table} WHERE {key_sql}",
                [_to_db(row[c]) for c in conflict],
            ).fetchone()
        return _from_db(stored)

    def delete_rows(
        self, table: str, owner_id: str, where: dict[str, Any] | None = None
    ) -> int:
        clauses, params = self._owner_clause(table, owner_id, where or {})
        with self._transaction() as conn:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE {' AND '.join(clauses)}", params
            )
            removed = cur.rowcount
        return int(removed)

    def clear_all_data(self) -> None:
        """Drop every user and row (local reset)."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM users")
        self.sign_out()

    def _owner_clause(
        self, table: str, owner_id: str, where: dict[str, Any]
    ) -> tuple[list[str], list[Any]]:
        self._check_columns(table, where)
        clauses = [f"{owner_column(table)} = ?"]
        params: list[Any] = [owner_id]
        for column, value in where.items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(_to_db(value))
        return clauses, params

    def _check_columns(self, table: str, values: dict[str, Any]) -> None:
        known = self._columns.get(table)
        if known is None:
            raise InvalidInput("table", table, "unknown table")
        for column in values:
            if column not in known:
                raise InvalidInput(column, values[column], f"unknown column of {table}")


def _new_id() -> str:
    return str(uuid.uuid4())


def _insert(conn: sqlite3.Connection, table: str, row: dict[str, Any]) -> None:
    columns = list(row)
    conn.execute(
        f"INSERT INTO {table}({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})",
        [_to_db(row[c]) for c in columns],
    )


def _to_db(value: Any) -> Any:
    """Normalize Python values to SQLite; datetimes become UTC ISO text."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz.UTC)
        return value.astimezone(tz.UTC).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    return value


def _from_db(row: sqlite3.Row) -> dict[str, Any]:
    out = dict(row)
    for column in BOOL_COLUMNS & out.keys():
        if out[column] is not None:
            out[column] = bool(out[column])
    return out


def _integrity_error(exc: sqlite3.IntegrityError) -> Exception:
    message = str(exc)
    if message.startswith("UNIQUE constraint failed"):
        table = message.split(":", 1)[-1].strip().split(".", 1)[0]
        return UniqueViolation(table, message)
    if message.startswith("FOREIGN KEY constraint failed"):
        return NotFound("user")
    return InvalidInput("row", None, message)
