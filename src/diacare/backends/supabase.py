"""Backend remoto: Postgres gestionado via API REST estilo Supabase.

Auth goes through ``/auth/v1`` and rows through PostgREST at ``/rest/v1``.
Profile, diabetic profile and preference rows are created server side by
the sign-up trigger; row level security scopes every row to its owner, and
the owner filter is sent anyway.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

import requests
from dateutil import tz
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from diacare.backends.base import PROFILES, Backend, RowQuery, owner_column
from diacare.errors import (
    BackendUnavailable,
    InvalidInput,
    NotFound,
    NotLoggedIn,
    UniqueViolation,
)
from diacare.log import TRACE, get_logger
from diacare.model import Registration, SignUpProfile
from diacare.preferences import PreferenceStore

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_RETRIES = 2

_PG_UNIQUE = "23505"
_PG_CHECK = "23514"
_PG_NOT_NULL = "23502"
_PG_FOREIGN_KEY = "23503"


def build_session(retries: int = DEFAULT_RETRIES) -> requests.Session:
    """HTTP session retrying idempotent GETs on connect errors and 502-504."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        allowed_methods=frozenset({"GET"}),
        status_forcelist=(502, 503, 504),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class SupabaseBackend(Backend):
    """Remote store; the access token is kept in the preference store."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        session: requests.Session | None = None,
        preferences: PreferenceStore | None = None,
    ) -> None:
        if not url or not anon_key:
            raise InvalidInput("supabase", url, "url and anon key are required")
        self._url = url.rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout
        self._http = session or build_session(retries)
        self._prefs = preferences
        self._user_id: str | None = None
        self._access_token: str | None = None
        self._restore_session()

    def _restore_session(self) -> None:
        if self._prefs is None:
            return
        stored = self._prefs.get_auth_session()
        if stored and stored.get("access_token") and stored.get("user_id"):
            self._access_token = str(stored["access_token"])
            self._user_id = str(stored["user_id"])
            logger.debug("Restored remote session for %s", self._user_id)

    # HTTP

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        resource: str,
        params: dict[str, str] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        url = f"{self._url}{path}"
        logger.debug("%s %s %s", method, path, params or "")
        logger.log(TRACE, "payload: %s", payload)
        try:
            response = self._http.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(headers),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise BackendUnavailable(self.name, f"{method} {path}: {exc}") from exc
        if response.status_code >= 400:
            raise _http_error(self.name, resource, response)
        return response

    # Identity

    @property
    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_up(
        self, email: str, password: str, profile: SignUpProfile
    ) -> Registration:
        response = self._request(
            "POST",
            "/auth/v1/signup",
            "users",
            payload={
                "email": email,
                "password": password,
                "data": {"username": profile.username, "full_name": profile.full_name},
            },
        )
        body = _json(response)
        user = body.get("user") or body
        user_id = user.get("id")
        if not user_id:
            raise BackendUnavailable(self.name, "sign-up response without user id")
        if not body.get("access_token"):
            logger.info("Registered %s; session pending email confirmation", user_id)
            return Registration(user_id=str(user_id), session_established=False)

        self._open_session(str(user_id), body)
        extra = {
            k: v
            for k, v in profile.as_row().items()
            if v is not None and k not in ("username", "full_name")
        }
        if extra:
            self.update_rows(PROFILES, str(user_id), extra)
        logger.info("Registered %s", user_id)
        return Registration(user_id=str(user_id), session_established=True)

    def sign_in(self, email: str, password: str) -> str | None:
        try:
            response = self._request(
                "POST",
                "/auth/v1/token",
                "users",
                params={"grant_type": "password"},
                payload={"email": email, "password": password},
            )
        except (InvalidInput, NotLoggedIn):
            # GoTrue answers 400 for wrong credentials
            return None
        body = _json(response)
        user_id = (body.get("user") or {}).get("id")
        if not user_id or not body.get("access_token"):
            return None
        self._open_session(str(user_id), body)
        return str(user_id)

    def sign_out(self) -> None:
        if self._access_token:
            try:
                self._request("POST", "/auth/v1/logout", "users")
            except BackendUnavailable as exc:
                logger.warning("Remote logout failed, dropping local session: %s", exc)
        self._user_id = None
        self._access_token = None
        if self._prefs is not None:
            self._prefs.clear_session()

    def email_exists(self, email: str) -> bool:
        response = self._request(
            "GET",
            f"/rest/v1/{PROFILES}",
            PROFILES,
            params={"select": "id", "email": f"eq.{email}", "limit": "1"},
        )
        return bool(_json(response))

    def update_password(self, user_id: str, new_password: str) -> None:
        if user_id != self._user_id:
            raise NotLoggedIn("update_password")
        self._request("PUT", "/auth/v1/user", "users", payload={"password": new_password})

    def delete_user(self, user_id: str) -> None:
        if user_id != self._user_id:
            raise NotLoggedIn("delete_user")
        self._request("POST", "/rest/v1/rpc/delete_user", "users", payload={})
        self.sign_out()

    def _open_session(self, user_id: str, body: dict[str, Any]) -> None:
        self._user_id = user_id
        self._access_token = str(body["access_token"])
        if self._prefs is not None:
            self._prefs.set_auth_session(
                {
                    "user_id": user_id,
                    "access_token": self._access_token,
                    "refresh_token": body.get("refresh_token"),
                }
            )
            self._prefs.set_logged_in_user_id(user_id)

    # Rows

    def read_rows(
        self, table: str, owner_id: str, query: RowQuery | None = None
    ) -> list[dict[str, Any]]:
        query = query or RowQuery()
        params: dict[str, Any] = {"select": "*", **self._filters(table, owner_id, query.where)}
        range_filters: dict[str, list[str]] = {}
        for op, bounds in (("gte", query.gte), ("lte", query.lte)):
            for column, value in bounds.items():
                range_filters.setdefault(column, []).append(f"{op}.{_filter_value(value)}")
        for column, values in range_filters.items():
            params[column] = values if len(values) > 1 else values[0]
        if query.order_by:
            params["order"] = f"{query.order_by}.{'desc' if query.descending else 'asc'}"
        if query.limit is not None:
            params["limit"] = str(int(query.limit))
        response = self._request("GET", f"/rest/v1/{table}", table, params=params)
        rows = _json(response)
        logger.log(TRACE, "%s rows: %s", table, rows)
        return list(rows)

    def insert_row(
        self, table: str, owner_id: str, values: dict[str, Any]
    ) -> dict[str, Any]:
        row = {k: _to_api(v) for k, v in values.items()}
        row[owner_column(table)] = owner_id
        response = self._request(
            "POST",
            f"/rest/v1/{table}",
            table,
            payload=row,
            headers={"Prefer": "return=representation"},
        )
        return _single(response, table)

    def update_rows(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> int:
        if not values:
            return 0
        response = self._request(
            "PATCH",
            f"/rest/v1/{table}",
            table,
            params=self._filters(table, owner_id, where or {}),
            payload={k: _to_api(v) for k, v in values.items()},
            headers={"Prefer": "return=representation"},
        )
        return len(_json(response))

    def upsert_row(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        row = {k: _to_api(v) for k, v in values.items()}
        row[owner_column(table)] = owner_id
        response = self._request(
            "POST",
            f"/rest/v1/{table}",
            table,
            params={"on_conflict": ",".join(conflict)},
            payload=row,
            headers={"Prefer": "return=representation,resolution=merge-duplicates"},
        )
        return _single(response, table)

    def delete_rows(
        self, table: str, owner_id: str, where: dict[str, Any] | None = None
    ) -> int:
        response = self._request(
            "DELETE",
            f"/rest/v1/{table}",
            table,
            params=self._filters(table, owner_id, where or {}),
            headers={"Prefer": "return=representation"},
        )
        return len(_json(response))

    def close(self) -> None:
        self._http.close()

    def _filters(
        self, table: str, owner_id: str, where: dict[str, Any]
    ) -> dict[str, str]:
        params = {owner_column(table): f"eq.{owner_id}"}
        for column, value in where.items():
            params[column] = "is.null" if value is None else f"eq.{_filter_value(value)}"
        return params


def _to_api(value: Any) -> Any:
    """JSON-friendly value; datetimes go out as UTC ISO text."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz.UTC)
        return value.astimezone(tz.UTC).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(_to_api(value))


def _json(response: requests.Response) -> Any:
    if not response.content:
        return []
    try:
        return response.json()
    except ValueError:
        return []


def _single(response: requests.Response, table: str) -> dict[str, Any]:
    rows = _json(response)
    if isinstance(rows, list):
        if not rows:
            raise NotFound(table)
        return dict(rows[0])
    return dict(rows)


def _http_error(backend: str, resource: str, response: requests.Response) -> Exception:
    """Map an error response of the auth or REST API to a domain error."""
    body = _json(response)
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("code") or body.get("error_code") or "")
    message = str(
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.text
        or response.reason
    )
    status = response.status_code

    if status >= 500:
        return BackendUnavailable(backend, f"HTTP {status}: {message}")
    if code == _PG_UNIQUE or status == 409 or code == "user_already_exists" or (
        "already registered" in message.lower()
    ):
        return UniqueViolation(resource, message)
    if code == _PG_FOREIGN_KEY:
        return NotFound("user")
    if code in (_PG_CHECK, _PG_NOT_NULL) or status in (400, 422):
        return InvalidInput(resource, None, message)
    if status in (401, 403):
        return NotLoggedIn(resource)
    if status == 404:
        return NotFound(resource)
    return BackendUnavailable(backend, f"HTTP {status}: {message}")
