"""Backend de solo lectura sobre un documento JSON de tablas (modo demo)."""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from diacare.backends.base import TABLES, Backend, RowQuery, owner_column
from diacare.backends.passwords import verify_password
from diacare.errors import BackendUnavailable, ReadOnlyBackend
from diacare.log import get_logger
from diacare.model import Registration, SignUpProfile, parse_date, parse_timestamp
from diacare.preferences import PreferenceStore

logger = get_logger(__name__)

DEMO_PATH = Path(__file__).resolve().parent.parent / "data" / "demo.json"


def load_document(path: Path | None = None) -> dict[str, list[dict[str, Any]]]:
    """Load a tables document; None loads the packaged demo data.

    The document maps table names (plus ``users``) to lists of row objects.
    Missing tables read as empty.
    """
    try:
        text = (path or DEMO_PATH).read_text(encoding="utf-8")
        payload = json.loads(text)
    except (OSError, json.JSONDecodeError) as exc:
        raise BackendUnavailable("json", f"cannot load {path or 'demo data'}: {exc}") from exc
    if not isinstance(payload, dict):
        raise BackendUnavailable("json", "tables document must be a JSON object")
    return {
        name: [dict(row) for row in payload.get(name, [])]
        for name in ("users", *TABLES)
    }


class JsonAssetBackend(Backend):
    """Serves a fixed document.

    The session lives in memory, and in the preference store when one is
    given so that it survives restarts.
    """

    name = "json"
    read_only = True

    def __init__(
        self, path: Path | None = None, preferences: PreferenceStore | None = None
    ) -> None:
        self._tables = load_document(path)
        self._prefs = preferences
        self._user_id: str | None = None
        if preferences is not None:
            stored = preferences.get_logged_in_user_id()
            if stored and any(str(u.get("id")) == stored for u in self._tables["users"]):
                self._user_id = stored
        logger.debug(
            "Loaded %s: %s",
            path or "demo data",
            ", ".join(f"{k}={len(v)}" for k, v in self._tables.items()),
        )

    @property
    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_up(
        self, email: str, password: str, profile: SignUpProfile
    ) -> Registration:
        raise ReadOnlyBackend(self.name, "sign_up")

    def sign_in(self, email: str, password: str) -> str | None:
        for user in self._tables["users"]:
            if str(user.get("email", "")).lower() != email:
                continue
            if verify_password(password, str(user.get("password_hash", ""))):
                self._user_id = str(user["id"])
                if self._prefs is not None:
                    self._prefs.set_logged_in_user_id(self._user_id)
                return self._user_id
            return None
        return None

    def sign_out(self) -> None:
        self._user_id = None
        if self._prefs is not None:
            self._prefs.clear_session()

    def email_exists(self, email: str) -> bool:
        return any(str(u.get("email", "")).lower() == email for u in self._tables["users"])

    def update_password(self, user_id: str, new_password: str) -> None:
        raise ReadOnlyBackend(self.name, "update_password")

    def delete_user(self, user_id: str) -> None:
        raise ReadOnlyBackend(self.name, "delete_user")

    def read_rows(
        self, table: str, owner_id: str, query: RowQuery | None = None
    ) -> list[dict[str, Any]]:
        query = query or RowQuery()
        owner = owner_column(table)
        rows = [
            dict(row)
            for row in self._tables[table]
            if str(row.get(owner)) == owner_id
            and all(_equals(row.get(c), v) for c, v in query.where.items())
            and all(_compare(row.get(c), v) >= 0 for c, v in query.gte.items())
            and all(
                row.get(c) is not None and _compare(row.get(c), v) <= 0
                for c, v in query.lte.items()
            )
        ]
        if query.order_by:
            column = query.order_by
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: _sort_key(r[column]), reverse=query.descending)
            rows = present + missing
        if query.limit is not None:
            rows = rows[: query.limit]
        return rows

    def insert_row(
        self, table: str, owner_id: str, values: dict[str, Any]
    ) -> dict[str, Any]:
        raise ReadOnlyBackend(self.name, f"insert into {table}")

    def update_rows(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> int:
        raise ReadOnlyBackend(self.name, f"update {table}")

    def upsert_row(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        raise ReadOnlyBackend(self.name, f"upsert into {table}")

    def delete_rows(
        self, table: str, owner_id: str, where: dict[str, Any] | None = None
    ) -> int:
        raise ReadOnlyBackend(self.name, f"delete from {table}")


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _equals(stored: Any, wanted: Any) -> bool:
    wanted = _plain(wanted)
    if wanted is None:
        return stored is None
    if isinstance(wanted, (date, datetime)):
        return stored is not None and _compare(stored, wanted) == 0
    return stored == wanted


def _compare(stored: Any, bound: Any) -> int:
    """Three-way comparison; timestamps and dates compare as such."""
    bound = _plain(bound)
    if stored is None:
        return -1
    if isinstance(bound, datetime):
        left, right = parse_timestamp(stored), parse_timestamp(bound)
    elif isinstance(bound, date):
        left, right = parse_date(stored), bound
    else:
        left, right = stored, bound
    return (left > right) - (left < right)


def _sort_key(value: Any) -> Any:
    # ISO strings with offsets do not sort lexically across zones
    if isinstance(value, str) and len(value) >= 19 and value[4] == "-" and "T" in value:
        return parse_timestamp(value)
    return value
