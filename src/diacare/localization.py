"""Tablas de textos por idioma, consultadas por ruta con puntos."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from diacare.log import get_logger
from diacare.state import SUPPORTED_LANGUAGES

logger = get_logger(__name__)

FALLBACK_LOCALE = "en"
STRINGS_DIR = Path(__file__).resolve().parent / "data" / "strings"


@dataclass(frozen=True)
class StringTable:
    """Nested key -> string document of one locale."""

    locale: str
    strings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, locale: str, directory: Path | None = None) -> StringTable:
        """Load ``<locale>.json`` from ``directory`` or the packaged tables.

        Unsupported locales load the English table.
        """
        if locale not in SUPPORTED_LANGUAGES:
            logger.warning("Unsupported locale %r, using %s", locale, FALLBACK_LOCALE)
            locale = FALLBACK_LOCALE
        name = f"{locale}.json"
        text = ((directory or STRINGS_DIR) / name).read_text(encoding="utf-8")
        strings = json.loads(text)
        if not isinstance(strings, dict):
            raise ValueError(f"{name}: string table must be a JSON object")
        return cls(locale=locale, strings=strings)

    def _lookup(self, path: str) -> Any:
        value: Any = self.strings
        for key in path.split("."):
            if not isinstance(value, dict) or key not in value:
                return None
            value = value[key]
        return value

    def get(self, path: str) -> str:
        """String at dotted ``path``; the path itself when missing."""
        value = self._lookup(path)
        if value is None or isinstance(value, (dict, list)):
            return path
        return str(value)

    def options(self, path: str) -> list[str]:
        """List of strings at ``path``, empty when missing or not a list."""
        value = self._lookup(path)
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]
