from __future__ import annotations

import json
import logging

from diacare.errors import (
    BackendUnavailable,
    EmailAlreadyExists,
    ExitCode,
    InvalidInput,
    NotFound,
    NotLoggedIn,
    ReadOnlyBackend,
    exception_to_json,
    format_json_error,
)
from diacare.log import TRACE, get_logger, setup_logging


def test_exit_codes_per_error() -> None:
    assert NotLoggedIn("add_glucose_reading").exit_code == ExitCode.NOT_LOGGED_IN
    assert EmailAlreadyExists("a@x.com").exit_code == ExitCode.CONFLICT
    assert InvalidInput("value", 1500).exit_code == ExitCode.INVALID_INPUT
    assert NotFound("reminder", "m-1").exit_code == ExitCode.NOT_FOUND
    assert BackendUnavailable("supabase").exit_code == ExitCode.BACKEND_UNAVAILABLE
    assert ReadOnlyBackend("json", "insert").exit_code == ExitCode.GENERAL_ERROR


def test_messages() -> None:
    assert str(NotLoggedIn()) == "No user logged in"
    assert str(InvalidInput("units", "g/L", "expected one of mg/dL, mmol/L")) == (
        "Invalid units 'g/L': expected one of mg/dL, mmol/L"
    )
    assert str(NotFound("reminder", "m-1")) == "reminder not found: m-1"


def test_json_payload_carries_known_fields() -> None:
    payload = exception_to_json(InvalidInput("value", 1500, "too high"), {"command": "x"})
    assert payload["error"]["field"] == "value"
    assert payload["error"]["value"] == 1500
    assert payload["error"]["context"] == {"command": "x"}

    decoded = json.loads(format_json_error(NotFound("reminder", "m-1")))
    assert decoded["error"]["resource"] == "reminder"
    assert decoded["error"]["key"] == "m-1"
    assert decoded["error"]["exit_code"] == ExitCode.NOT_FOUND


def test_setup_logging_levels() -> None:
    assert setup_logging(0).level == logging.WARNING
    assert setup_logging(1).level == logging.INFO
    assert setup_logging(2).level == logging.DEBUG
    assert setup_logging(3).level == TRACE
    assert setup_logging(3, quiet=True).level == logging.ERROR
    assert len(get_logger().handlers) == 1
    assert get_logger("diacare.service").parent is get_logger()
