"""Excepciones del dominio con codigos de salida para la CLI."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


class ExitCode:
    """Standard exit codes for the diacare CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    NOT_LOGGED_IN = 2
    INVALID_INPUT = 3
    CONFLICT = 4
    NOT_FOUND = 5
    BACKEND_UNAVAILABLE = 6
    AUTH_FAILED = 7


class DiaCareError(Exception):
    """Base class for every error raised by the data layer."""

    exit_code = ExitCode.GENERAL_ERROR


@dataclass
class NotLoggedIn(DiaCareError):
    """A write was attempted without an authenticated session."""

    operation: str = ""

    def __str__(self) -> str:
        if self.operation:
            return f"No user logged in ({self.operation})"
        return "No user logged in"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.NOT_LOGGED_IN


@dataclass
class EmailAlreadyExists(DiaCareError):
    """Registration conflict on the email address."""

    email: str

    def __str__(self) -> str:
        return f"Email already exists: {self.email}"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.CONFLICT


@dataclass
class InvalidInput(DiaCareError):
    """A value is outside its allowed set or range.

    Attributes:
        field: Name of the offending field.
        value: The rejected value.
        reason: Human-readable explanation.
    """

    field: str
    value: Any = None
    reason: str = ""

    def __str__(self) -> str:
        detail = f": {self.reason}" if self.reason else ""
        return f"Invalid {self.field} {self.value!r}{detail}"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.INVALID_INPUT


@dataclass
class InvalidCredentials(DiaCareError):
    """Email/password pair rejected by the backend."""

    email: str

    def __str__(self) -> str:
        return f"Login failed for {self.email}"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.AUTH_FAILED


@dataclass
class BackendUnavailable(DiaCareError):
    """Network or storage failure talking to a backend."""

    backend: str
    details: str = ""

    def __str__(self) -> str:
        detail = f": {self.details}" if self.details else ""
        return f"Backend {self.backend} unavailable{detail}"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.BACKEND_UNAVAILABLE


@dataclass
class NotFound(DiaCareError):
    """Read or update of a resource that does not exist for the caller."""

    resource: str
    key: str = ""

    def __str__(self) -> str:
        if self.key:
            return f"{self.resource} not found: {self.key}"
        return f"{self.resource} not found"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.NOT_FOUND


@dataclass
class ReadOnlyBackend(DiaCareError):
    """Write attempted against a read-only backend."""

    backend: str
    operation: str = ""

    def __str__(self) -> str:
        return f"Backend {self.backend} is read-only ({self.operation})"


@dataclass
class UniqueViolation(DiaCareError):
    """Backend reported a uniqueness constraint violation."""

    table: str
    details: str = ""

    def __str__(self) -> str:
        return f"Duplicate row in {self.table}: {self.details}"

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return ExitCode.CONFLICT


def exception_to_json(
    exc: Exception, context: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Convert an exception to a JSON-serializable dictionary.

    Args:
        exc: The exception to convert.
        context: Optional additional context (command, backend, ...).

    Returns:
        Dict with type, message, exit code and known fields.
    """
    error: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
        "exit_code": getattr(exc, "exit_code", ExitCode.GENERAL_ERROR),
    }
    if isinstance(exc, InvalidInput):
        error["field"] = exc.field
        error["value"] = exc.value
    elif isinstance(exc, BackendUnavailable):
        error["backend"] = exc.backend
    elif isinstance(exc, NotFound):
        error["resource"] = exc.resource
        if exc.key:
            error["key"] = exc.key
    if context:
        error["context"] = context
    return {"error": error}


def format_json_error(exc: Exception, context: dict[str, Any] | None = None) -> str:
    """Format an exception as a JSON string."""
    return json.dumps(exception_to_json(exc, context), indent=2, default=str)
