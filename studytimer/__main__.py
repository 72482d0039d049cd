"""Entry point for python -m studytimer."""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .categories import CategoryStore
from .errors import StudyTimerError
from .notifications import PhaseNotifier
from .scheduler import Phase, TimerStateMachine
from .settings import SettingsStore
from .storage import JsonFileStore
from .ui import format_countdown, format_minutes, run_ui

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2

console = Console()
err_console = Console(stderr=True)


def default_data_dir() -> Path:
    """Data directory from $STUDYTIMER_HOME, else ~/.studytimer."""
    env = os.environ.get("STUDYTIMER_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".studytimer"


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="studytimer",
        description="Terminal study/rest interval timer with per-category totals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls (run):
  Space    Start/Pause/Resume
  n        Skip to next phase
  r        Reset
  c        Choose next category (while idle)
  q        Quit

Examples:
  studytimer categories add Math
  studytimer settings set --work 50 --short 10
  studytimer run --category Math
  studytimer status
""",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        metavar="PATH",
        help="Where state and logs are kept (default: $STUDYTIMER_HOME or ~/.studytimer)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log file verbosity (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Open the timer UI (default)")
    run.add_argument(
        "--category",
        metavar="NAME",
        help="Category name or id; starts the timer right away when idle",
    )
    run.add_argument(
        "--no-notify",
        action="store_true",
        help="Disable notifications (bell and system)",
    )

    sub.add_parser("status", help="Print the timer state after catching up")

    cats = sub.add_parser("categories", help="Manage categories")
    cats_sub = cats.add_subparsers(dest="categories_command")
    cats_sub.add_parser("list", help="List categories and totals")
    add = cats_sub.add_parser("add", help="Add a category")
    add.add_argument("name")
    add.add_argument("--color", default=None, help="Display colour, e.g. '#6C63FF'")
    rename = cats_sub.add_parser("rename", help="Rename a category")
    rename.add_argument("category", metavar="NAME_OR_ID")
    rename.add_argument("name")
    remove = cats_sub.add_parser("remove", help="Delete a category")
    remove.add_argument("category", metavar="NAME_OR_ID")

    settings = sub.add_parser("settings", help="Show or change durations")
    settings_sub = settings.add_subparsers(dest="settings_command")
    settings_sub.add_parser("show", help="Print current settings")
    set_cmd = settings_sub.add_parser("set", help="Change settings")
    set_cmd.add_argument("--work", type=int, metavar="MINS", help="Study length, 1-180 minutes")
    set_cmd.add_argument("--short", type=int, metavar="MINS", help="Short rest length, 1-60 minutes")
    set_cmd.add_argument("--long", type=int, metavar="MINS", help="Long rest length, 1-120 minutes")
    set_cmd.add_argument("--cycle", type=int, metavar="N", help="Study blocks before a long rest, 1-10")
    set_cmd.add_argument("--sound", action="store_true", default=None, dest="sound", help="Ring the bell")
    set_cmd.add_argument("--no-sound", action="store_false", dest="sound", help="Don't ring the bell")
    set_cmd.add_argument(
        "--notify", action="store_true", default=None, dest="notify", help="Send desktop notifications"
    )
    set_cmd.add_argument(
        "--no-notify", action="store_false", dest="notify", help="Don't send desktop notifications"
    )

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def configure_logging(data_dir: Path, level: str, to_stderr: bool) -> None:
    """Log to a rotating file, plus stderr when no TUI owns the terminal."""
    log_dir = data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    handlers: List[logging.Handler] = [
        RotatingFileHandler(log_dir / "studytimer.log", maxBytes=1024 * 1024, backupCount=3)
    ]
    if to_stderr:
        stream = logging.StreamHandler()
        stream.setLevel(logging.WARNING)
        handlers.append(stream)
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


@dataclass
class Components:
    settings: SettingsStore
    categories: CategoryStore
    timer: TimerStateMachine
    notifier: PhaseNotifier


def build_components(data_dir: Path, notify_enabled: bool = True) -> Components:
    """Wire stores, notifier and timer around one data directory."""
    store = JsonFileStore(data_dir)
    settings = SettingsStore(store)
    categories = CategoryStore(store)
    notifier = PhaseNotifier(lambda: settings.settings, enabled=notify_enabled)
    timer = TimerStateMachine(settings, store, categories, on_phase_complete=notifier)
    return Components(settings=settings, categories=categories, timer=timer, notifier=notifier)


def cmd_run(args: argparse.Namespace, parts: Components) -> int:
    parts.timer.restore()
    selected = None
    if args.category:
        selected = parts.categories.find(args.category).id
        if parts.timer.phase == Phase.IDLE:
            parts.timer.start(selected)
        else:
            LOGGER.info("Timer already running; ignoring --category %s", args.category)

    try:
        run_ui(parts.timer, parts.categories, selected)
    except KeyboardInterrupt:
        pass
    finally:
        parts.timer.stop_ticking()
        parts.timer.flush()
    return EXIT_OK


def cmd_status(args: argparse.Namespace, parts: Components) -> int:
    state = parts.timer.restore()

    if state.phase == Phase.IDLE:
        console.print("Idle")
        return EXIT_OK

    try:
        category = parts.categories.get(state.category_id).name
    except StudyTimerError:
        category = f"{state.category_id} (deleted)"
    suffix = " [yellow](paused)[/yellow]" if state.is_paused else ""
    console.print(f"{parts.timer.phase_label} {parts.timer.cycle_display}{suffix}")
    console.print(f"Remaining: {format_countdown(parts.timer.remaining_ms())}")
    console.print(f"Category: {category}")
    console.print(f"Completed study blocks: {state.completed_cycles}")
    return EXIT_OK


def cmd_categories(args: argparse.Namespace, parts: Components) -> int:
    store = parts.categories
    command = args.categories_command or "list"
    if command == "add":
        category = store.add(args.name, color=args.color)
        console.print(f"Added {category.name} ({category.id})")
    elif command == "rename":
        category = store.update(store.find(args.category).id, args.name)
        console.print(f"Renamed to {category.name}")
    elif command == "remove":
        category = store.find(args.category)
        store.delete(category.id)
        console.print(f"Removed {category.name}")
    else:
        categories = store.list()
        if not categories:
            console.print("No categories yet. Add one with: studytimer categories add NAME")
            return EXIT_OK
        table = Table(title="Categories")
        table.add_column("Name")
        table.add_column("Total", justify="right")
        table.add_column("Id", style="dim")
        for category in categories:
            table.add_row(category.name, format_minutes(category.total_minutes), category.id)
        console.print(table)
    return EXIT_OK


def cmd_settings(args: argparse.Namespace, parts: Components) -> int:
    store = parts.settings
    if args.settings_command == "set":
        current = store.settings
        durations = (args.work, args.short, args.long, args.cycle)
        if any(value is not None for value in durations):
            store.update_timer_settings(
                args.work if args.work is not None else current.work_minutes,
                args.short if args.short is not None else current.break_minutes,
                args.long if args.long is not None else current.long_rest_minutes,
                args.cycle if args.cycle is not None else current.cycles_before_long_rest,
            )
        flags = {}
        if args.sound is not None:
            flags["sound_enabled"] = args.sound
        if args.notify is not None:
            flags["notification_enabled"] = args.notify
        if flags:
            store.update(**flags)

    current = store.settings
    table = Table(title="Settings", show_header=False)
    table.add_row("Study", f"{current.work_minutes} min")
    table.add_row("Short rest", f"{current.break_minutes} min")
    table.add_row("Long rest", f"{current.long_rest_minutes} min")
    table.add_row("Long rest every", f"{current.cycles_before_long_rest} study blocks")
    table.add_row("Sound", "on" if current.sound_enabled else "off")
    table.add_row("Notifications", "on" if current.notification_enabled else "off")
    console.print(table)
    return EXIT_OK


COMMANDS = {
    "run": cmd_run,
    "status": cmd_status,
    "categories": cmd_categories,
    "settings": cmd_settings,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    command = args.command or "run"
    if command == "run" and not hasattr(args, "category"):
        args.category = None
        args.no_notify = False

    data_dir = args.data_dir or default_data_dir()
    try:
        configure_logging(data_dir, args.log_level, to_stderr=command != "run")
        parts = build_components(data_dir, notify_enabled=not getattr(args, "no_notify", False))
        return COMMANDS[command](args, parts)
    except (StudyTimerError, OSError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
