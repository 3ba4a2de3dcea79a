from __future__ import annotations

import json
from pathlib import Path

import pytest

from diacare.localization import StringTable


def test_english_table() -> None:
    strings = StringTable.load("en")
    assert strings.locale == "en"
    assert strings.get("login.title") == "Welcome back"
    assert strings.options("profile.genders") == ["Male", "Female", "Other"]


@pytest.mark.parametrize("locale", ["fr", "ar"])
def test_every_locale_has_the_same_keys(locale: str) -> None:
    english = StringTable.load("en")
    other = StringTable.load(locale)
    assert other.locale == locale
    assert set(other.strings) == set(english.strings)
    assert set(other.strings["settings"]) == set(english.strings["settings"])
    assert len(other.options("profile.genders")) == 3


def test_unsupported_locale_falls_back_to_english() -> None:
    assert StringTable.load("de").locale == "en"


def test_missing_paths_return_the_path() -> None:
    strings = StringTable.load("en")
    assert strings.get("login.nope") == "login.nope"
    assert strings.get("login") == "login"
    assert strings.options("login.title") == []


def test_custom_directory(tmp_path: Path) -> None:
    (tmp_path / "fr.json").write_text(json.dumps({"app": {"name": "DiaCare FR"}}), encoding="utf-8")
    (tmp_path / "en.json").write_text("[]", encoding="utf-8")
    assert StringTable.load("fr", tmp_path).get("app.name") == "DiaCare FR"
    with pytest.raises(ValueError):
        StringTable.load("en", tmp_path)
