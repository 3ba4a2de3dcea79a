"""Contenedores de estado observables: ajustes (tema/unidades) e idioma.

Each container holds one immutable state value. Mutators build a new value
with :func:`dataclasses.replace` and emit it to every subscriber,
synchronously and in subscription order. Late subscribers read the current
value with :meth:`StateContainer.get_state`; nothing is replayed.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Generic, TypeVar

from diacare import units as unit_fmt
from diacare.errors import InvalidInput
from diacare.log import get_logger
from diacare.model import ThemeMode, Unit
from diacare.preferences import PreferenceStore

logger = get_logger(__name__)

S = TypeVar("S")
E = TypeVar("E", bound=Enum)
Observer = Callable[[S], None]


class StateContainer(Generic[S]):
    """Single-writer observable holder of one state value."""

    def __init__(self, initial: S) -> None:
        self._state = initial
        self._observers: list[Observer[S]] = []
        # Serializes read-modify-emit; re-entrant so observers may mutate.
        self._lock = threading.RLock()

    @property
    def state(self) -> S:
        return self._state

    def get_state(self) -> S:
        return self._state

    def subscribe(self, observer: Observer[S]) -> Callable[[], None]:
        """Register ``observer``; returns a function that unregisters it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def emit(self, new_state: S) -> None:
        with self._lock:
            self._state = new_state
            for observer in list(self._observers):
                observer(new_state)

    def _update(self, transform: Callable[[S], S]) -> S:
        with self._lock:
            new_state = transform(self._state)
            self.emit(new_state)
            return new_state


@dataclass(frozen=True)
class SettingsState:
    theme_mode: ThemeMode = ThemeMode.SYSTEM
    units: Unit = Unit.MG_PER_DL

    @property
    def is_mg_dl(self) -> bool:
        return self.units is Unit.MG_PER_DL

    @property
    def is_mmol_l(self) -> bool:
        return self.units is Unit.MMOL_PER_L

    @property
    def unit_label(self) -> str:
        return self.units.value

    def copy_with(
        self, theme_mode: ThemeMode | None = None, units: Unit | None = None
    ) -> SettingsState:
        changes: dict[str, object] = {}
        if theme_mode is not None:
            changes["theme_mode"] = theme_mode
        if units is not None:
            changes["units"] = units
        return replace(self, **changes)


_THEME_CYCLE = (ThemeMode.LIGHT, ThemeMode.DARK, ThemeMode.SYSTEM)


class SettingsContainer(StateContainer[SettingsState]):
    """Theme and glucose-unit settings, written through to the preference store."""

    def __init__(
        self,
        preferences: PreferenceStore | None = None,
        initial: SettingsState | None = None,
    ) -> None:
        super().__init__(initial or SettingsState())
        self._prefs = preferences

    def load(self) -> SettingsState:
        """Reload theme and units from the preference store.

        Unreadable stored values keep the current ones.
        """
        if self._prefs is None:
            return self.state
        theme = _parse_enum(ThemeMode, self._prefs.get_theme())
        units = _parse_enum(Unit, self._prefs.get_units())
        if theme is None or units is None:
            logger.warning("Ignoring invalid stored settings")
        return self._update(lambda s: s.copy_with(theme_mode=theme, units=units))

    def set_theme(self, theme: str) -> None:
        """Set theme from ``light``, ``dark`` or ``system``.

        Raises:
            InvalidInput: For any other value; nothing is emitted.
        """
        mode = _parse_enum(ThemeMode, theme)
        if mode is None:
            raise InvalidInput("theme", theme, "expected light, dark or system")
        self.set_theme_mode(mode)

    def set_theme_mode(self, mode: ThemeMode) -> None:
        self._update(lambda s: s.copy_with(theme_mode=mode))
        self._save_theme(mode)

    def toggle_theme(self) -> ThemeMode:
        """Swap light and dark; any non-light theme goes to light."""
        new_state = self._update(
            lambda s: s.copy_with(
                theme_mode=ThemeMode.DARK
                if s.theme_mode is ThemeMode.LIGHT
                else ThemeMode.LIGHT
            )
        )
        self._save_theme(new_state.theme_mode)
        return new_state.theme_mode

    def cycle_theme(self) -> ThemeMode:
        """Advance light -> dark -> system -> light."""

        def advance(s: SettingsState) -> SettingsState:
            index = _THEME_CYCLE.index(s.theme_mode)
            return s.copy_with(theme_mode=_THEME_CYCLE[(index + 1) % len(_THEME_CYCLE)])

        new_state = self._update(advance)
        self._save_theme(new_state.theme_mode)
        return new_state.theme_mode

    def set_units(self, units: str) -> None:
        """Set units from ``mg/dL`` or ``mmol/L``.

        Raises:
            InvalidInput: For any other value; nothing is emitted.
        """
        unit = _parse_enum(Unit, units)
        if unit is None:
            raise InvalidInput("units", units, "expected mg/dL or mmol/L")
        self._update(lambda s: s.copy_with(units=unit))
        self._save_units(unit)

    def toggle_units(self) -> Unit:
        new_state = self._update(
            lambda s: s.copy_with(
                units=Unit.MMOL_PER_L if s.units is Unit.MG_PER_DL else Unit.MG_PER_DL
            )
        )
        self._save_units(new_state.units)
        return new_state.units

    def convert_glucose(self, value_mg_dl: float) -> float:
        if self.state.is_mmol_l:
            return unit_fmt.to_display(value_mg_dl, Unit.MMOL_PER_L)
        return float(value_mg_dl)

    def format_glucose(self, value_mg_dl: float, decimals: int = 1) -> str:
        return unit_fmt.format_glucose(value_mg_dl, self.state.units, decimals)

    def format_glucose_value(self, value_mg_dl: float, decimals: int = 1) -> str:
        return unit_fmt.format_glucose_value(value_mg_dl, self.state.units, decimals)

    def _save_theme(self, mode: ThemeMode) -> None:
        if self._prefs is not None:
            self._prefs.set_theme(mode.value)

    def _save_units(self, unit: Unit) -> None:
        if self._prefs is not None:
            self._prefs.set_units(unit.value)


SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "fr", "ar")
RTL_LANGUAGES = frozenset({"ar"})
_LANGUAGE_NAMES = {"en": "English", "fr": "Français", "ar": "العربية"}


@dataclass(frozen=True)
class LocaleState:
    language_code: str = "en"

    @property
    def is_rtl(self) -> bool:
        return self.language_code in RTL_LANGUAGES

    @property
    def text_direction(self) -> str:
        return "rtl" if self.is_rtl else "ltr"

    @property
    def language_name(self) -> str:
        return language_name(self.language_code)


def language_name(code: str) -> str:
    """Display name of a language; unknown codes read as English."""
    return _LANGUAGE_NAMES.get(code, _LANGUAGE_NAMES["en"])


class LocaleContainer(StateContainer[LocaleState]):
    """Current UI language, one of :data:`SUPPORTED_LANGUAGES`."""

    def __init__(
        self,
        preferences: PreferenceStore | None = None,
        initial: LocaleState | None = None,
    ) -> None:
        super().__init__(initial or LocaleState())
        self._prefs = preferences

    def load(self) -> LocaleState:
        if self._prefs is None:
            return self.state
        code = self._prefs.get_locale()
        if code not in SUPPORTED_LANGUAGES:
            logger.warning("Ignoring unsupported stored locale %r", code)
            return self.state
        return self._update(lambda s: replace(s, language_code=code))

    def set_locale(self, language_code: str) -> None:
        """Switch language.

        Raises:
            InvalidInput: If ``language_code`` is not supported.
        """
        if language_code not in SUPPORTED_LANGUAGES:
            raise InvalidInput(
                "locale", language_code, f"expected one of {', '.join(SUPPORTED_LANGUAGES)}"
            )
        self._update(lambda s: replace(s, language_code=language_code))
        self._save(language_code)

    def cycle_language(self) -> str:
        """Advance to the next supported language (en -> fr -> ar -> en)."""

        def advance(s: LocaleState) -> LocaleState:
            index = SUPPORTED_LANGUAGES.index(s.language_code)
            return replace(
                s, language_code=SUPPORTED_LANGUAGES[(index + 1) % len(SUPPORTED_LANGUAGES)]
            )

        new_state = self._update(advance)
        self._save(new_state.language_code)
        return new_state.language_code

    def _save(self, code: str) -> None:
        if self._prefs is not None:
            self._prefs.set_locale(code)


def _parse_enum(enum_cls: type[E], value: object) -> E | None:
    try:
        return enum_cls(value)
    except ValueError:
        return None
