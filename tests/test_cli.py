"""Tests for CLI entrypoints."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from diacare import cli
from diacare.errors import ExitCode

PASSWORD = "pw123456"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DIACARE_BACKEND", "DIACARE_DB_PATH", "DIACARE_JSON_PATH", "DIACARE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DIACARE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)


def _register(*extra: str) -> int:
    return cli.main(
        ["register", "ana@x.com", "--username", "ana", "--password", PASSWORD, *extra]
    )


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
    ns = cli.build_parser().parse_args(["-vv", "add-reading", "5.5", "--unit", "mmol/L"])
    assert ns.verbose == 2
    assert ns.value == 5.5
    assert ns.reading_type == "before_meal"


def test_register_add_and_show_latest(capsys: pytest.CaptureFixture[str]) -> None:
    assert _register() == ExitCode.SUCCESS
    assert capsys.readouterr().out.startswith("OK: Registered ")

    assert cli.main(["latest"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.strip() == "No readings"

    assert cli.main(["add-reading", "95", "--type", "fasting"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.strip() == "OK: 95 mg/dL (fasting)"

    assert cli.main(["latest"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.startswith("95 mg/dL  fasting")


def test_display_unit_applies_to_entered_values(capsys: pytest.CaptureFixture[str]) -> None:
    _register()
    assert cli.main(["set", "units", "mmol/L"]) == ExitCode.SUCCESS
    assert cli.main(["add-reading", "5.5"]) == ExitCode.SUCCESS
    out = capsys.readouterr().out
    assert "OK: 5.5 mmol/L (before_meal)" in out


def test_wrong_password_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    _register()
    cli.main(["logout"])
    capsys.readouterr()

    code = cli.main(["login", "ana@x.com", "--password", "wrong-pass"])
    assert code == ExitCode.AUTH_FAILED
    assert "Error: Login failed for ana@x.com" in capsys.readouterr().err

    assert cli.main(["login", "ana@x.com", "--password", PASSWORD]) == ExitCode.SUCCESS
    assert "OK: Logged in as ana" in capsys.readouterr().out


def test_json_errors(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--json-errors", "add-reading", "100"])
    assert code == ExitCode.NOT_LOGGED_IN
    payload = json.loads(capsys.readouterr().err)
    assert payload["error"]["type"] == "NotLoggedIn"
    assert payload["error"]["context"] == {"command": "add-reading"}


def test_invalid_input_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    _register()
    assert cli.main(["add-reading", "1500"]) == ExitCode.INVALID_INPUT
    assert cli.main(["set", "notifications", "maybe"]) == ExitCode.INVALID_INPUT
    assert "Error: Invalid" in capsys.readouterr().err


def test_reminders_flow(capsys: pytest.CaptureFixture[str]) -> None:
    _register()
    capsys.readouterr()
    assert (
        cli.main(["reminder-add", "Insulin", "--type", "medication", "--time", "08:00"])
        == ExitCode.SUCCESS
    )
    reminder_id = capsys.readouterr().out.strip().removeprefix("OK: ")

    assert cli.main(["reminder-status", reminder_id, "done"]) == ExitCode.SUCCESS
    assert cli.main(["reminders", "--enabled"]) == ExitCode.SUCCESS
    out = capsys.readouterr().out
    assert "08:00 Insulin - done" in out

    assert cli.main(["reminder-status", "missing", "done"]) == ExitCode.NOT_FOUND


def test_settings_are_localized(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["set", "locale", "fr"]) == ExitCode.SUCCESS
    assert cli.main(["settings"]) == ExitCode.SUCCESS
    out = capsys.readouterr().out
    assert "Paramètres" in out
    assert "Unités: mg/dL" in out


def test_seeded_export(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _register("--seed-demo")
    out_path = tmp_path / "export.xlsx"
    assert cli.main(["export", str(out_path)]) == ExitCode.SUCCESS
    out = capsys.readouterr().out
    assert "OK: Readings: 7" in out
    assert out_path.exists()

    assert cli.main(["chart", "carbs"]) == ExitCode.SUCCESS
    assert "Days with data: 7" in capsys.readouterr().out


def test_demo_backend_session_survives_invocations(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("DIACARE_BACKEND", "json")
    assert cli.main(["login", "demo@diacare.app", "--password", "demo1234"]) == 0
    assert "Sarah Demo" in capsys.readouterr().out

    assert cli.main(["dashboard"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.splitlines()[0] == "Hi, Sarah Demo"

    assert cli.main(["card", "water", "2"]) == ExitCode.GENERAL_ERROR
    assert "read-only" in capsys.readouterr().err
