#!/usr/bin/env python3
"""Desk-Sync command line.

Usage:
    desk-sync serve                          # Run the state server
    desk-sync watch                          # Live view of cycle list and timer
    desk-sync list                           # Print the cycle list once
    desk-sync timer start|pause|resume|reset|skip
    desk-sync timer-settings --work 30 --break 5
    desk-sync add-text "HELLO" --style bold
    desk-sync add-qr https://example.com
    desk-sync add-countdown "Launch" 2026-12-01
    desk-sync toggle <id> | delete <id>
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.live import Live

from .config import ClientConfig, ServerConfig, load_env
from .errors import AuthFailure, DeskSyncError, NetworkFailure, ValidationFailure
from .poller import DashboardPoller, build_dashboard, wait_for_server
from .render import render_cycle_table, render_dashboard, render_timer_panel
from .timer import TimerAction

console = Console()


def _client_config(args: argparse.Namespace, one_shot: bool = False) -> ClientConfig:
    config = ClientConfig.from_env()
    if getattr(args, "url", None):
        config.base_url = args.url.rstrip("/")
    if one_shot:
        # Push immediately; there is no scheduler running to debounce
        config.push_debounce_ms = 0
    return config


def _load_mirror(poller: DashboardPoller) -> bool:
    """Fill the cycle mirror before a one-shot edit, so the push carries the full list."""
    if not poller.poll_settings():
        console.print(f"[red]Error: could not read current state from {poller.client.base_url}[/red]")
        return False
    return True


def _pushed(poller: DashboardPoller) -> bool:
    if poller.cycle.tracker.last_success_ms is None:
        console.print("[red]Error: push failed, see log output[/red]")
        return False
    return True


# ---- Commands ----

def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    config = ServerConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.db:
        config.db_path = Path(args.db).expanduser()
    console.print(f"[cyan]Desk-Sync serving on {config.host}:{config.port} (db: {config.db_path})[/cyan]")
    uvicorn.run(create_app(config), host=config.host, port=config.port)
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    poller = build_dashboard(_client_config(args))
    if not wait_for_server(poller.client, attempts=3):
        console.print(f"[yellow]Server at {poller.client.base_url} not answering yet, polling anyway[/yellow]")

    def view():
        return render_dashboard(
            poller.cycle.items,
            poller.timer_session,
            poller.timer_settings.settings,
            poller.display,
            datetime.now(),
        )

    poller.start()
    try:
        with Live(view(), console=console, refresh_per_second=4) as live:
            poller.on_change(lambda: live.update(view()))
            poller.cycle.subscribe(lambda _items: live.update(view()))
            while True:
                time.sleep(0.25)
                live.update(view())
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop()
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    poller = build_dashboard(_client_config(args, one_shot=True))
    if not _load_mirror(poller):
        return 1
    console.print(render_cycle_table(poller.cycle.items))
    return 0


def cmd_timer(args: argparse.Namespace) -> int:
    poller = build_dashboard(_client_config(args, one_shot=True))
    poller.poll_timer()
    try:
        session = poller.timer_action(args.action)
    except (NetworkFailure, AuthFailure) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    console.print(render_timer_panel(session, poller.timer_settings.settings, datetime.now()))
    return 0


def cmd_timer_settings(args: argparse.Namespace) -> int:
    values = {}
    if args.work is not None:
        values["work_duration"] = args.work * 60
    if args.short_break is not None:
        values["break_duration"] = args.short_break * 60
    if args.long_break is not None:
        values["long_break_duration"] = args.long_break * 60
    if args.cycles is not None:
        values["cycles_until_long_break"] = args.cycles
    if args.show_in_cycle is not None:
        values["show_in_cycle"] = args.show_in_cycle == "on"
    if not values:
        console.print("[yellow]Nothing to change[/yellow]")
        return 0

    poller = build_dashboard(_client_config(args, one_shot=True))
    if not poller.poll_timer():
        console.print(f"[red]Error: could not read timer from {poller.client.base_url}[/red]")
        return 1
    poller.timer_settings.update(**values)
    if poller.timer_settings.tracker.last_success_ms is None:
        console.print("[red]Error: push failed, see log output[/red]")
        return 1
    poller.poll_timer()
    console.print(render_timer_panel(poller.timer_session, poller.timer_settings.settings, datetime.now()))
    return 0


def _run_edit(args: argparse.Namespace, edit) -> int:
    poller = build_dashboard(_client_config(args, one_shot=True))
    if not _load_mirror(poller):
        return 1
    edit(poller.cycle)
    if not _pushed(poller):
        return 1
    console.print(render_cycle_table(poller.cycle.items))
    return 0


def cmd_add_text(args: argparse.Namespace) -> int:
    return _run_edit(args, lambda cycle: cycle.add_text(args.text, style=args.style, size=args.size))


def cmd_add_qr(args: argparse.Namespace) -> int:
    return _run_edit(args, lambda cycle: cycle.add_qr(args.data))


def cmd_add_countdown(args: argparse.Namespace) -> int:
    return _run_edit(args, lambda cycle: cycle.add_countdown(args.label, args.date))


def cmd_toggle(args: argparse.Namespace) -> int:
    return _run_edit(args, lambda cycle: cycle.toggle(args.id))


def cmd_delete(args: argparse.Namespace) -> int:
    return _run_edit(args, lambda cycle: cycle.delete(args.id))


# ---- Parser ----

def _add_url_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", help="Server base URL (default: $DESK_SYNC_URL or http://localhost:7777)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="desk-sync",
        description="Desk display dashboard state server and client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the state server")
    serve_parser.add_argument("--host", help="Bind address (default: $DESK_SYNC_HOST or 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port (default: $DESK_SYNC_PORT or 7777)")
    serve_parser.add_argument("--db", help="SQLite path (default: $DESK_SYNC_DB)")
    serve_parser.set_defaults(func=cmd_serve)

    watch_parser = subparsers.add_parser("watch", help="Live view of the dashboard state")
    _add_url_arg(watch_parser)
    watch_parser.set_defaults(func=cmd_watch)

    list_parser = subparsers.add_parser("list", help="Print the cycle list")
    _add_url_arg(list_parser)
    list_parser.set_defaults(func=cmd_list)

    timer_parser = subparsers.add_parser("timer", help="Send a timer action")
    _add_url_arg(timer_parser)
    timer_parser.add_argument("action", choices=[a.value for a in TimerAction])
    timer_parser.set_defaults(func=cmd_timer)

    ts_parser = subparsers.add_parser("timer-settings", help="Change timer durations")
    _add_url_arg(ts_parser)
    ts_parser.add_argument("--work", type=int, help="Work minutes (1-60)")
    ts_parser.add_argument("--break", dest="short_break", type=int, help="Break minutes (1-30)")
    ts_parser.add_argument("--long-break", type=int, help="Long break minutes (5-45)")
    ts_parser.add_argument("--cycles", type=int, help="Work phases before a long break (2-8)")
    ts_parser.add_argument("--show-in-cycle", choices=["on", "off"])
    ts_parser.set_defaults(func=cmd_timer_settings)

    text_parser = subparsers.add_parser("add-text", help="Add a text message item")
    _add_url_arg(text_parser)
    text_parser.add_argument("text")
    text_parser.add_argument("--style", default="normal")
    text_parser.add_argument("--size", type=int, default=2)
    text_parser.set_defaults(func=cmd_add_text)

    qr_parser = subparsers.add_parser("add-qr", help="Add a QR code item")
    _add_url_arg(qr_parser)
    qr_parser.add_argument("data", help="Text or URL to encode")
    qr_parser.set_defaults(func=cmd_add_qr)

    countdown_parser = subparsers.add_parser("add-countdown", help="Add a countdown item")
    _add_url_arg(countdown_parser)
    countdown_parser.add_argument("label", help="Event name")
    countdown_parser.add_argument("date", help="Target date (YYYY-MM-DD)")
    countdown_parser.set_defaults(func=cmd_add_countdown)

    toggle_parser = subparsers.add_parser("toggle", help="Enable/disable an item")
    _add_url_arg(toggle_parser)
    toggle_parser.add_argument("id")
    toggle_parser.set_defaults(func=cmd_toggle)

    delete_parser = subparsers.add_parser("delete", help="Remove an item")
    _add_url_arg(delete_parser)
    delete_parser.add_argument("id")
    delete_parser.set_defaults(func=cmd_delete)

    return parser


def configure_logging(level_name: str | None = None, stream=None) -> logging.Handler:
    """Send log records at LOG_LEVEL and above to the console.

    The level sits on the handler, not only the root logger: desk_sync
    loggers keep INFO so the server's recent-log buffer still sees it.
    """
    level = (level_name or os.environ.get("LOG_LEVEL", "WARNING")).upper()
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(name)s | %(message)s"))
    logging.basicConfig(level=level, handlers=[handler])
    return handler


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    load_env()
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = args.func(args)
    except ValidationFailure as e:
        console.print(f"[red]{e}[/red]")
        exit_code = 1
    except KeyError as e:
        console.print(f"[red]Unknown item id: {e.args[0]}[/red]")
        exit_code = 1
    except DeskSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
