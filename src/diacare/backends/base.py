"""Clase base de backends: autenticacion y primitivas de filas por usuario."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from diacare.model import Registration, SignUpProfile

PROFILES = "profiles"
DIABETIC_PROFILES = "diabetic_profiles"
GLUCOSE_READINGS = "glucose_readings"
HEALTH_CARDS = "health_cards"
REMINDERS = "reminders"
USER_PREFERENCES = "user_preferences"

TABLES: tuple[str, ...] = (
    PROFILES,
    DIABETIC_PROFILES,
    GLUCOSE_READINGS,
    HEALTH_CARDS,
    REMINDERS,
    USER_PREFERENCES,
)

HEALTH_CARD_CONFLICT: tuple[str, ...] = ("user_id", "card_type", "recorded_date")


def owner_column(table: str) -> str:
    """Column holding the owning user id (``profiles`` is keyed by it)."""
    if table not in TABLES:
        raise KeyError(table)
    return "id" if table == PROFILES else "user_id"


@dataclass(frozen=True)
class RowQuery:
    """Filters for :meth:`Backend.read_rows`, always ANDed with the owner."""

    where: dict[str, Any] = field(default_factory=dict)
    gte: dict[str, Any] = field(default_factory=dict)
    lte: dict[str, Any] = field(default_factory=dict)
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None


class Backend(ABC):
    """Storage and identity provider behind the data service.

    Every row primitive is scoped to ``owner_id``: implementations never
    read or write rows of another user.
    """

    name = "backend"
    read_only = False

    @property
    @abstractmethod
    def current_user_id(self) -> str | None:
        """Id of the authenticated user, None when logged out."""

    @abstractmethod
    def sign_up(
        self, email: str, password: str, profile: SignUpProfile
    ) -> Registration:
        """Create an identity plus its profile, diabetic profile and preferences.

        Raises:
            UniqueViolation: If the email is already registered.
        """

    @abstractmethod
    def sign_in(self, email: str, password: str) -> str | None:
        """Open a session; returns the user id or None on bad credentials."""

    @abstractmethod
    def sign_out(self) -> None:
        """Close the current session (no-op when logged out)."""

    @abstractmethod
    def email_exists(self, email: str) -> bool:
        """Whether ``email`` is already registered."""

    @abstractmethod
    def update_password(self, user_id: str, new_password: str) -> None:
        """Replace the password of ``user_id``."""

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        """Delete ``user_id`` and every row it owns, then sign out."""

    @abstractmethod
    def read_rows(
        self, table: str, owner_id: str, query: RowQuery | None = None
    ) -> list[dict[str, Any]]:
        """Rows of ``table`` owned by ``owner_id`` matching ``query``."""

    @abstractmethod
    def insert_row(
        self, table: str, owner_id: str, values: dict[str, Any]
    ) -> dict[str, Any]:
        """Insert one row owned by ``owner_id`` and return it as stored."""

    @abstractmethod
    def update_rows(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> int:
        """Update matching owned rows; returns how many changed."""

    @abstractmethod
    def upsert_row(
        self,
        table: str,
        owner_id: str,
        values: dict[str, Any],
        conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        """Insert, or update the row that collides on ``conflict`` columns."""

    @abstractmethod
    def delete_rows(
        self, table: str, owner_id: str, where: dict[str, Any] | None = None
    ) -> int:
        """Delete matching owned rows; returns how many were removed."""

    def clear_all_data(self) -> None:
        """Drop data held on this device; remote stores only drop the session."""
        self.sign_out()

    def close(self) -> None:
        """Release resources held by the backend."""
