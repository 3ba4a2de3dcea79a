"""CLI de DiaCare: sesion, lecturas, tarjetas, recordatorios, ajustes y exportacion."""

from __future__ import annotations

import argparse
import getpass
import sys
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path

from dateutil import tz

from diacare.charts import GlucoseChart, WeeklyChart
from diacare.config import build_service, load_config
from diacare.errors import DiaCareError, ExitCode, InvalidInput, format_json_error
from diacare.export import ExcelLayout, write_readings_xlsx
from diacare.localization import StringTable
from diacare.log import get_logger, setup_logging
from diacare.model import (
    CardType,
    ReadingType,
    RecurrencePattern,
    ReminderStatus,
    ReminderType,
    Unit,
)
from diacare.service import DataService
from diacare.state import SettingsContainer

logger = get_logger(__name__)

Handler = Callable[[DataService, argparse.Namespace], int]

_SETTABLE = ("theme", "locale", "units", "notifications", "onboarding")
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="diacare", description="DiaCare: registro y seguimiento de glucosa."
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vvv: trace).")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only show errors.")
    parser.add_argument("--config", type=Path, default=None, help="Path to .diacare.yaml.")
    parser.add_argument(
        "--json-errors", action="store_true", help="Report errors as JSON on stderr."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("register", help="Create an account.")
    p.add_argument("email")
    p.add_argument("--username", required=True)
    p.add_argument("--full-name", default="")
    p.add_argument("--password", default=None, help="Prompted when omitted.")
    p.add_argument("--seed-demo", action="store_true", help="Fill the account with sample data.")
    p.set_defaults(handler=cmd_register)

    p = sub.add_parser("login", help="Open a session.")
    p.add_argument("email")
    p.add_argument("--password", default=None, help="Prompted when omitted.")
    p.set_defaults(handler=cmd_login)

    p = sub.add_parser("logout", help="Close the session.")
    p.set_defaults(handler=cmd_logout)

    p = sub.add_parser("add-reading", help="Record a glucose reading.")
    p.add_argument("value", type=float)
    p.add_argument("--unit", choices=[u.value for u in Unit], default=None)
    p.add_argument(
        "--type",
        dest="reading_type",
        choices=[t.value for t in ReadingType],
        default=ReadingType.BEFORE_MEAL.value,
    )
    p.add_argument("--notes", default=None)
    p.set_defaults(handler=cmd_add_reading)

    p = sub.add_parser("latest", help="Show the latest glucose reading.")
    p.set_defaults(handler=cmd_latest)

    p = sub.add_parser("dashboard", help="Show the dashboard summary.")
    p.set_defaults(handler=cmd_dashboard)

    p = sub.add_parser("chart", help="Show chart series.")
    p.add_argument("kind", choices=("glucose", "carbs", "activity"), nargs="?", default="glucose")
    p.set_defaults(handler=cmd_chart)

    p = sub.add_parser("card", help="Set today's value of a health card.")
    p.add_argument("card_type", choices=[c.value for c in CardType])
    p.add_argument("value", type=float)
    p.add_argument("--unit", default=None)
    p.set_defaults(handler=cmd_card)

    p = sub.add_parser("reminders", help="List reminders.")
    p.add_argument("--enabled", action="store_true", help="Only enabled reminders.")
    p.set_defaults(handler=cmd_reminders)

    p = sub.add_parser("reminder-add", help="Add a reminder.")
    p.add_argument("title")
    p.add_argument("--type", dest="reminder_type", choices=[t.value for t in ReminderType], required=True)
    p.add_argument("--time", dest="scheduled_time", required=True, help="HH:MM")
    p.add_argument("--description", default=None)
    p.add_argument("--repeat", choices=[r.value for r in RecurrencePattern], default=None)
    p.set_defaults(handler=cmd_reminder_add)

    p = sub.add_parser("reminder-status", help="Update a reminder status.")
    p.add_argument("reminder_id")
    p.add_argument("status", choices=[s.value for s in ReminderStatus])
    p.set_defaults(handler=cmd_reminder_status)

    p = sub.add_parser("settings", help="Show profile and preferences.")
    p.set_defaults(handler=cmd_settings)

    p = sub.add_parser("set", help="Change a preference.")
    p.add_argument("key", choices=_SETTABLE)
    p.add_argument("value")
    p.set_defaults(handler=cmd_set)

    p = sub.add_parser("export", help="Export glucose readings to Excel.")
    p.add_argument("out", type=Path, nargs="?", default=None)
    p.add_argument("--days", type=int, default=None, help="Only the last N days.")
    p.set_defaults(handler=cmd_export)

    return parser


def _password(value: str | None) -> str:
    return value if value is not None else getpass.getpass("Password: ")


def _settings(service: DataService) -> SettingsContainer:
    settings = SettingsContainer(service.preferences)
    settings.load()
    return settings


def cmd_register(service: DataService, ns: argparse.Namespace) -> int:
    registration = service.register_user(
        ns.email,
        _password(ns.password),
        username=ns.username,
        full_name=ns.full_name,
        seed_demo_data=ns.seed_demo,
    )
    print(f"OK: Registered {registration.user_id}")
    if not registration.session_established:
        print("Check your inbox to confirm the email address, then log in.")
    return ExitCode.SUCCESS


def cmd_login(service: DataService, ns: argparse.Namespace) -> int:
    profile = service.login(ns.email, _password(ns.password))
    name = profile.display_name if profile else ns.email
    print(f"OK: Logged in as {name}")
    return ExitCode.SUCCESS


def cmd_logout(service: DataService, ns: argparse.Namespace) -> int:
    service.logout()
    print("OK: Logged out")
    return ExitCode.SUCCESS


def cmd_add_reading(service: DataService, ns: argparse.Namespace) -> int:
    settings = _settings(service)
    unit = ns.unit or settings.state.units
    reading = service.add_glucose_reading(ns.value, unit, ns.reading_type, notes=ns.notes)
    print(f"OK: {settings.format_glucose(reading.value)} ({reading.reading_type.value})")
    return ExitCode.SUCCESS


def cmd_latest(service: DataService, ns: argparse.Namespace) -> int:
    reading = service.get_latest_glucose_reading()
    if reading is None:
        print("No readings")
        return ExitCode.SUCCESS
    settings = _settings(service)
    when = reading.recorded_at.astimezone(tz.tzlocal()).strftime("%Y-%m-%d %H:%M")
    print(f"{settings.format_glucose(reading.value)}  {reading.reading_type.value}  {when}")
    return ExitCode.SUCCESS


def cmd_dashboard(service: DataService, ns: argparse.Namespace) -> int:
    data = service.get_dashboard_data()
    settings = _settings(service)
    print(data.greeting)
    if data.glucose.value:
        print(f"Glucose: {settings.format_glucose(data.glucose.value)} - {data.glucose.status}")
    else:
        print(f"Glucose: {data.glucose.status}")
    print(f"Next reminder: {data.reminder}")
    for card in data.health_cards:
        print(f"  {card.title:<9} {card.value:g} {card.unit}")
    _print_glucose_chart(data.chart, settings)
    return ExitCode.SUCCESS


def cmd_chart(service: DataService, ns: argparse.Namespace) -> int:
    if ns.kind == "glucose":
        _print_glucose_chart(service.get_glucose_chart_data(), _settings(service))
    elif ns.kind == "carbs":
        _print_weekly_chart(service.get_carbs_chart_data(), "g")
    else:
        _print_weekly_chart(service.get_activity_chart_data(), "km")
    return ExitCode.SUCCESS


def _print_glucose_chart(chart: GlucoseChart, settings: SettingsContainer) -> None:
    print(f"{'Hour':>6} {'Before':>8} {'After':>8}  ({settings.state.unit_label})")
    for label, before, after in zip(chart.hours, chart.before_meal, chart.after_meal):
        print(
            f"{label:>6} {settings.format_glucose_value(before):>8} "
            f"{settings.format_glucose_value(after):>8}"
        )


def _print_weekly_chart(chart: WeeklyChart, unit: str) -> None:
    for day, value, has_data in zip(chart.days, chart.values, chart.has_data):
        print(f"{day:>4} {value:>8.1f} {unit}" + ("" if has_data else "  -"))
    print(f"Days with data: {chart.total_records}")


def cmd_card(service: DataService, ns: argparse.Namespace) -> int:
    card = service.update_health_card(ns.card_type, ns.value, ns.unit)
    print(f"OK: {card.card_type.value} = {card.value:g} {card.unit} ({card.recorded_date})")
    return ExitCode.SUCCESS


def cmd_reminders(service: DataService, ns: argparse.Namespace) -> int:
    reminders = service.get_reminders(enabled=True if ns.enabled else None)
    if not reminders:
        print("No reminders")
    for r in reminders:
        flag = " " if r.is_enabled else "x"
        repeat = f" ({r.recurrence_pattern.value})" if r.recurrence_pattern else ""
        print(f"[{flag}] {r.scheduled_time} {r.title}{repeat} - {r.status.value}  {r.id}")
    return ExitCode.SUCCESS


def cmd_reminder_add(service: DataService, ns: argparse.Namespace) -> int:
    reminder = service.add_reminder(
        ns.title,
        ns.reminder_type,
        ns.scheduled_time,
        description=ns.description,
        is_recurring=ns.repeat is not None,
        recurrence_pattern=ns.repeat,
    )
    print(f"OK: {reminder.id}")
    return ExitCode.SUCCESS


def cmd_reminder_status(service: DataService, ns: argparse.Namespace) -> int:
    service.update_reminder_status(ns.reminder_id, ns.status)
    print(f"OK: {ns.reminder_id} -> {ns.status}")
    return ExitCode.SUCCESS


def cmd_settings(service: DataService, ns: argparse.Namespace) -> int:
    data = service.get_settings()
    strings = StringTable.load(data.preferences.locale)
    print(strings.get("settings.title"))
    if data.email:
        print(f"  {data.full_name or data.username} <{data.email}>")
    dp = data.diabetic_profile
    print(f"  {dp.diabetic_type}, {dp.treatment_type}, target {dp.min_glucose}-{dp.max_glucose} mg/dL")
    prefs = data.preferences
    print(f"  {strings.get('settings.theme')}: {prefs.theme.value}")
    print(f"  {strings.get('settings.units')}: {prefs.units.value}")
    print(f"  {strings.get('settings.language')}: {prefs.locale}")
    print(f"  notifications: {'on' if prefs.notifications_enabled else 'off'}")
    return ExitCode.SUCCESS


def _flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise InvalidInput("value", value, "expected on or off")


def cmd_set(service: DataService, ns: argparse.Namespace) -> int:
    if ns.key == "theme":
        service.set_theme(ns.value)
    elif ns.key == "locale":
        service.set_locale(ns.value)
    elif ns.key == "units":
        service.set_units(ns.value)
    elif ns.key == "notifications":
        service.set_notifications_enabled(_flag(ns.value))
    else:
        service.set_onboarding_complete(_flag(ns.value))
    print(f"OK: {ns.key} = {ns.value}")
    return ExitCode.SUCCESS


def cmd_export(service: DataService, ns: argparse.Namespace) -> int:
    now = datetime.now(tz=tz.tzlocal())
    start = now - timedelta(days=ns.days) if ns.days else None
    readings = service.get_glucose_readings(start=start)
    out = ns.out or Path.cwd() / f"diacare_glucosa_{now.strftime('%Y-%m-%d_%H-%M-%S')}.xlsx"
    count = write_readings_xlsx(readings, out, service.get_units(), ExcelLayout())
    print(f"OK: Readings: {count}")
    print(f"OK: Output: {out}")
    return ExitCode.SUCCESS


def main(argv: Sequence[str] | None = None) -> int:
    """Run the DiaCare CLI.

    Returns:
        Exit code (0 on success).
    """
    ns = build_parser().parse_args(argv)
    setup_logging(ns.verbose, ns.quiet)
    handler: Handler = ns.handler
    try:
        service = build_service(load_config(ns.config))
    except DiaCareError as exc:
        return _report(exc, ns)
    try:
        return handler(service, ns)
    except DiaCareError as exc:
        return _report(exc, ns)
    finally:
        service.close()


def _report(exc: DiaCareError, ns: argparse.Namespace) -> int:
    logger.debug("Command %s failed", ns.command, exc_info=True)
    if ns.json_errors:
        print(format_json_error(exc, {"command": ns.command}), file=sys.stderr)
    else:
        print(f"Error: {exc}", file=sys.stderr)
    return int(exc.exit_code)
