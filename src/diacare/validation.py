"""Validaciones de entrada compartidas por todos los backends."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, TypeVar

from diacare.errors import InvalidInput

E = TypeVar("E", bound=Enum)

GLUCOSE_MIN = 0.0
GLUCOSE_MAX = 1000.0
PROFILE_GLUCOSE_MAX = 500
PASSWORD_MIN_LENGTH = 8

_EMAIL_RX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TIME_RX = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")


def choice(enum_cls: type[E], value: Any, field: str) -> E:
    """Coerce ``value`` into ``enum_cls`` or raise InvalidInput."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(m.value) for m in enum_cls)  # type: ignore[attr-defined]
        raise InvalidInput(field, value, f"expected one of {allowed}") from None


def one_of(value: Any, allowed: tuple[str, ...], field: str) -> str:
    if value not in allowed:
        raise InvalidInput(field, value, f"expected one of {', '.join(allowed)}")
    return str(value)


def email(value: str) -> str:
    """Normalize (lowercase, trimmed) and validate an email address."""
    normalized = (value or "").strip().lower()
    if not _EMAIL_RX.match(normalized):
        raise InvalidInput("email", value, "not a valid email address")
    return normalized


def password(value: str) -> str:
    if not value or len(value) < PASSWORD_MIN_LENGTH:
        raise InvalidInput(
            "password", "***", f"must be at least {PASSWORD_MIN_LENGTH} characters"
        )
    return value


def glucose_value(value: float) -> float:
    number = _number(value, "value")
    if not GLUCOSE_MIN <= number <= GLUCOSE_MAX:
        raise InvalidInput("value", value, "glucose must be between 0 and 1000 mg/dL")
    return number


def non_negative(value: float, field: str) -> float:
    number = _number(value, field)
    if number < 0:
        raise InvalidInput(field, value, "must be >= 0")
    return number


def glucose_range(min_glucose: Any, max_glucose: Any) -> tuple[int, int]:
    """Validate a diabetic-profile target range: ``0 <= min < max <= 500``."""
    low = int(_number(min_glucose, "min_glucose"))
    high = int(_number(max_glucose, "max_glucose"))
    for name, number in (("min_glucose", low), ("max_glucose", high)):
        if not 0 <= number <= PROFILE_GLUCOSE_MAX:
            raise InvalidInput(name, number, "must be between 0 and 500")
    if low >= high:
        raise InvalidInput("min_glucose", low, f"must be lower than max_glucose {high}")
    return low, high


def scheduled_time(value: str) -> str:
    text = (value or "").strip()
    match = _TIME_RX.match(text)
    if not match:
        raise InvalidInput("scheduled_time", value, "expected HH:MM")
    return f"{match.group(1)}:{match.group(2)}"


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(field, value, "not a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(field, value, "not a number") from None
