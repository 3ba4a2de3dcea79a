from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import requests
from dateutil import tz

from diacare.backends.base import GLUCOSE_READINGS, HEALTH_CARD_CONFLICT, HEALTH_CARDS, RowQuery
from diacare.backends.supabase import SupabaseBackend, build_session
from diacare.errors import (
    BackendUnavailable,
    InvalidInput,
    NotLoggedIn,
    UniqueViolation,
)
from diacare.model import SignUpProfile
from diacare.preferences import PreferenceStore

URL = "https://demo.supabase.test"
KEY = "anon-key"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode("utf-8")
        self.text = self.content.decode("utf-8")
        self.reason = "Fake"

    def json(self) -> Any:
        return json.loads(self.content)


@dataclass
class FakeSession:
    responses: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self) -> None:
        self.closed = True


def _session_body(user_id: str = "u-1") -> dict[str, Any]:
    return {
        "access_token": "tok-1",
        "refresh_token": "ref-1",
        "user": {"id": user_id, "email": "ana@x.com"},
    }


def _backend(session: FakeSession, prefs: PreferenceStore | None = None) -> SupabaseBackend:
    return SupabaseBackend(URL, KEY, session=session, preferences=prefs)  # type: ignore[arg-type]


def _logged_in(session: FakeSession) -> SupabaseBackend:
    session.responses.append(FakeResponse(200, _session_body()))
    backend = _backend(session)
    assert backend.sign_in("ana@x.com", "pw123456") == "u-1"
    return backend


def test_requires_url_and_key() -> None:
    with pytest.raises(InvalidInput):
        SupabaseBackend("", KEY, session=FakeSession())  # type: ignore[arg-type]


def test_sign_in_posts_password_grant_and_uses_token() -> None:
    session = FakeSession()
    backend = _logged_in(session)

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{URL}/auth/v1/token"
    assert call["params"] == {"grant_type": "password"}
    assert call["headers"]["Authorization"] == f"Bearer {KEY}"
    assert call["timeout"] == 15.0

    session.responses.append(FakeResponse(200, []))
    backend.read_rows(GLUCOSE_READINGS, "u-1")
    assert session.calls[1]["headers"]["Authorization"] == "Bearer tok-1"
    assert session.calls[1]["headers"]["apikey"] == KEY


def test_bad_credentials_return_none() -> None:
    session = FakeSession([FakeResponse(400, {"error": "invalid_grant"})])
    backend = _backend(session)
    assert backend.sign_in("ana@x.com", "nope-nope") is None
    assert backend.current_user_id is None


def test_sign_up_without_session_waits_for_confirmation() -> None:
    session = FakeSession([FakeResponse(200, {"id": "u-9", "email": "ana@x.com"})])
    backend = _backend(session)
    reg = backend.sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))
    assert reg.user_id == "u-9"
    assert reg.session_established is False
    assert backend.current_user_id is None
    assert session.calls[0]["json"]["data"] == {"username": "ana", "full_name": ""}


def test_sign_up_with_session_patches_profile_extras() -> None:
    session = FakeSession(
        [FakeResponse(200, _session_body("u-2")), FakeResponse(200, [{"id": "u-2"}])]
    )
    backend = _backend(session)
    reg = backend.sign_up(
        "ana@x.com", "pw123456", SignUpProfile(username="ana", gender="Female")
    )
    assert reg.session_established is True
    patch = session.calls[1]
    assert patch["method"] == "PATCH"
    assert patch["params"] == {"id": "eq.u-2"}
    assert patch["json"] == {"gender": "Female"}


def test_duplicate_sign_up_is_unique_violation() -> None:
    session = FakeSession(
        [FakeResponse(422, {"code": "user_already_exists", "msg": "User already registered"})]
    )
    with pytest.raises(UniqueViolation):
        _backend(session).sign_up("ana@x.com", "pw123456", SignUpProfile(username="ana"))


def test_read_rows_builds_postgrest_filters() -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(200, [{"id": "r-1", "value": 95}]))

    rows = backend.read_rows(
        GLUCOSE_READINGS,
        "u-1",
        RowQuery(
            where={"reading_type": "fasting", "notes": None},
            gte={"recorded_at": datetime(2026, 10, 18, 7, 0, tzinfo=tz.UTC)},
            lte={"recorded_at": datetime(2026, 10, 18, 14, 0, tzinfo=tz.UTC)},
            order_by="recorded_at",
            descending=True,
            limit=5,
        ),
    )

    assert rows == [{"id": "r-1", "value": 95}]
    params = session.calls[-1]["params"]
    assert params["select"] == "*"
    assert params["user_id"] == "eq.u-1"
    assert params["reading_type"] == "eq.fasting"
    assert params["notes"] == "is.null"
    assert params["recorded_at"] == [
        "gte.2026-10-18T07:00:00+00:00",
        "lte.2026-10-18T14:00:00+00:00",
    ]
    assert params["order"] == "recorded_at.desc"
    assert params["limit"] == "5"


def test_boolean_filters_render_lowercase() -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(200, []))
    backend.read_rows("reminders", "u-1", RowQuery(where={"is_enabled": True}))
    assert session.calls[-1]["params"]["is_enabled"] == "eq.true"


def test_upsert_merges_duplicates_on_conflict_columns() -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(201, [{"id": "c-1", "value": 1.5}]))

    row = backend.upsert_row(
        HEALTH_CARDS,
        "u-1",
        {"card_type": "water", "value": 1.5, "unit": "L", "recorded_date": "2026-10-18"},
        HEALTH_CARD_CONFLICT,
    )

    assert row == {"id": "c-1", "value": 1.5}
    call = session.calls[-1]
    assert call["params"] == {"on_conflict": "user_id,card_type,recorded_date"}
    assert call["headers"]["Prefer"] == "return=representation,resolution=merge-duplicates"
    assert call["json"]["user_id"] == "u-1"


def test_update_and_delete_count_returned_rows() -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(200, [{"id": "m-1"}]))
    session.responses.append(FakeResponse(200, []))

    assert backend.update_rows("reminders", "u-1", {"status": "done"}, {"id": "m-1"}) == 1
    assert backend.delete_rows("reminders", "u-1", {"id": "m-2"}) == 0
    assert session.calls[-1]["method"] == "DELETE"
    assert session.calls[-1]["params"] == {"user_id": "eq.u-1", "id": "eq.m-2"}


@pytest.mark.parametrize(
    ("status", "body", "error"),
    [
        (409, {"code": "23505", "message": "duplicate key"}, UniqueViolation),
        (400, {"code": "23514", "message": "check violation"}, InvalidInput),
        (401, {"message": "JWT expired"}, NotLoggedIn),
        (503, None, BackendUnavailable),
    ],
)
def test_http_errors_map_to_domain_errors(
    status: int, body: Any, error: type[Exception]
) -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(status, body))
    with pytest.raises(error):
        backend.insert_row(GLUCOSE_READINGS, "u-1", {"value": 95})


def test_network_failure_is_backend_unavailable() -> None:
    session = FakeSession([requests.ConnectionError("no route to host")])
    with pytest.raises(BackendUnavailable):
        _backend(session).email_exists("ana@x.com")


def test_session_round_trips_through_preferences(tmp_path: Path) -> None:
    prefs = PreferenceStore(tmp_path / "prefs.db")
    session = FakeSession([FakeResponse(200, _session_body())])
    _backend(session, prefs).sign_in("ana@x.com", "pw123456")

    restored = _backend(FakeSession([FakeResponse(204)]), prefs)
    assert restored.current_user_id == "u-1"

    restored.sign_out()
    assert restored.current_user_id is None
    assert prefs.get_auth_session() is None


def test_sign_out_survives_remote_failure() -> None:
    session = FakeSession()
    backend = _logged_in(session)
    session.responses.append(FakeResponse(502, {"message": "bad gateway"}))
    backend.sign_out()
    assert backend.current_user_id is None


def test_retry_policy_only_covers_get() -> None:
    http = build_session(retries=3)
    retry = http.get_adapter(URL).max_retries
    assert retry.total == 3
    assert retry.allowed_methods == frozenset({"GET"})
    assert 503 in retry.status_forcelist
