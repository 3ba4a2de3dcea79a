from __future__ import annotations

from pathlib import Path

import pytest

from diacare.errors import InvalidInput
from diacare.model import ThemeMode, Unit
from diacare.preferences import PreferenceStore
from diacare.state import (
    LocaleContainer,
    LocaleState,
    SettingsContainer,
    SettingsState,
    language_name,
)


def test_settings_default_is_system_theme_and_mg_dl() -> None:
    state = SettingsContainer().get_state()
    assert state == SettingsState(ThemeMode.SYSTEM, Unit.MG_PER_DL)
    assert state.is_mg_dl
    assert state.unit_label == "mg/dL"


def test_toggle_units_twice_restores_state_and_notifies_in_order() -> None:
    container = SettingsContainer()
    seen: list[Unit] = []
    container.subscribe(lambda s: seen.append(s.units))

    assert container.toggle_units() is Unit.MMOL_PER_L
    assert container.toggle_units() is Unit.MG_PER_DL
    assert seen == [Unit.MMOL_PER_L, Unit.MG_PER_DL]
    assert container.state == SettingsState()


def test_invalid_theme_raises_and_emits_nothing() -> None:
    container = SettingsContainer()
    seen: list[SettingsState] = []
    container.subscribe(seen.append)

    with pytest.raises(InvalidInput):
        container.set_theme("sepia")
    with pytest.raises(InvalidInput):
        container.set_units("g/L")
    assert seen == []
    assert container.state.theme_mode is ThemeMode.SYSTEM


def test_toggle_theme_from_system_goes_to_light() -> None:
    container = SettingsContainer()
    assert container.toggle_theme() is ThemeMode.LIGHT
    assert container.toggle_theme() is ThemeMode.DARK
    assert container.toggle_theme() is ThemeMode.LIGHT


def test_cycle_theme_visits_all_modes() -> None:
    container = SettingsContainer(initial=SettingsState(theme_mode=ThemeMode.LIGHT))
    assert [container.cycle_theme() for _ in range(3)] == [
        ThemeMode.DARK,
        ThemeMode.SYSTEM,
        ThemeMode.LIGHT,
    ]


def test_unsubscribe_stops_notifications() -> None:
    container = SettingsContainer()
    seen: list[SettingsState] = []
    unsubscribe = container.subscribe(seen.append)
    container.set_theme("dark")
    unsubscribe()
    container.set_theme("light")
    assert len(seen) == 1
    assert container.state.theme_mode is ThemeMode.LIGHT


def test_format_glucose_follows_current_unit() -> None:
    container = SettingsContainer()
    assert container.format_glucose(99.0) == "99 mg/dL"
    container.set_units("mmol/L")
    assert container.format_glucose(99.0) == "5.5 mmol/L"
    assert container.convert_glucose(180.0) == pytest.approx(180.0 / 18.0182)


def test_settings_write_through_and_reload(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    container = SettingsContainer(store)
    container.set_units("mmol/L")
    container.set_theme("dark")
    assert store.get_units() == "mmol/L"
    assert store.get_theme() == "dark"

    reloaded = SettingsContainer(store)
    assert reloaded.load() == SettingsState(ThemeMode.DARK, Unit.MMOL_PER_L)


def test_settings_load_keeps_state_on_bad_stored_value(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    store.set_theme("sepia")
    container = SettingsContainer(store)
    state = container.load()
    assert state.theme_mode is ThemeMode.SYSTEM


def test_cycle_language_has_period_three() -> None:
    container = LocaleContainer()
    codes = [container.cycle_language() for _ in range(3)]
    assert codes == ["fr", "ar", "en"]
    assert container.state == LocaleState("en")


def test_locale_rtl_and_names() -> None:
    assert LocaleState("ar").is_rtl
    assert LocaleState("ar").text_direction == "rtl"
    assert LocaleState("fr").text_direction == "ltr"
    assert language_name("fr") == "Français"
    assert language_name("xx") == "English"


def test_set_locale_rejects_unsupported_code(tmp_path: Path) -> None:
    store = PreferenceStore(tmp_path / "prefs.db")
    container = LocaleContainer(store)
    with pytest.raises(InvalidInput):
        container.set_locale("de")
    container.set_locale("ar")
    assert store.get_locale() == "ar"
    assert LocaleContainer(store).load().language_code == "ar"
