"""Rich projections of client state. Pure: no I/O, no mutation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .display_settings import DisplaySettings
from .models import CycleItem, ItemType
from .timer import TimerMode, TimerSession, TimerSettings

MODE_STYLES = {
    TimerMode.WORK: ("Work", "red"),
    TimerMode.BREAK: ("Break", "green"),
    TimerMode.LONG_BREAK: ("Long Break", "cyan"),
}


def format_clock(seconds: int) -> str:
    """Seconds as MM:SS, or H:MM:SS past an hour. Negative clamps to 0."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def describe_payload(item: CycleItem) -> str:
    if item.type == ItemType.TEXT:
        return item.text or ""
    if item.type == ItemType.QR:
        return item.qrData or ""
    if item.type == ItemType.COUNTDOWN:
        return f"{item.targetLabel or ''} @ {item.targetDate or '?'}"
    if item.type == ItemType.IMAGE and item.width and item.height:
        return f"{item.width}x{item.height}"
    return ""


def render_cycle_table(items: Sequence[CycleItem], selected_id: Optional[str] = None) -> Table:
    table = Table(
        title="Display Cycle",
        show_header=True,
        header_style="bold cyan",
        border_style="blue",
        expand=False,
    )
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("●", width=1, justify="center")
    table.add_column("Label", style="white", min_width=14)
    table.add_column("Type", style="yellow", width=10)
    table.add_column("Duration", width=8, justify="right")
    table.add_column("Content", style="dim", max_width=30)

    for i, item in enumerate(items, start=1):
        status = "[green]●[/green]" if item.enabled else "[dim]○[/dim]"
        label = item.label or item.id
        if item.id == selected_id:
            label = f"[bold yellow]{label}[/bold yellow]"
        elif not item.enabled:
            label = f"[dim]{label}[/dim]"
        duration = f"{item.duration / 1000:g}s" if item.duration else "[dim]default[/dim]"
        table.add_row(str(i), status, label, item.type.value, duration, describe_payload(item))

    if not items:
        table.add_row("-", "-", "[dim]No items[/dim]", "-", "-", "-")
    return table


def render_timer_panel(
    session: TimerSession,
    settings: TimerSettings,
    now: Optional[datetime] = None,
) -> Panel:
    """Timer as last reported by the server; time_remaining is not recomputed."""
    name, color = MODE_STYLES.get(session.mode, (session.mode.value, "white"))

    if not session.active:
        state = "[dim]idle[/dim]"
    elif session.is_paused:
        state = "[yellow]paused[/yellow]"
    else:
        state = "[green]running[/green]"

    clock = Text(format_clock(session.time_remaining), style=f"bold {color}")
    cycles_left = settings.cycles_until_long_break - (session.cycles_completed % settings.cycles_until_long_break)
    lines = [
        Text.from_markup(f"[{color}]{name}[/{color}]  {state}"),
        clock,
        Text.from_markup(
            f"[dim]cycles {session.cycles_completed} · long break in {cycles_left} · "
            f"{settings.work_duration // 60}/{settings.break_duration // 60}/"
            f"{settings.long_break_duration // 60} min[/dim]"
        ),
    ]
    subtitle = now.strftime("%H:%M:%S") if now else None
    return Panel(Group(*lines), title="Focus Timer", subtitle=subtitle, border_style=color)


def render_display_panel(display: DisplaySettings) -> Panel:
    rotation = "180°" if display.displayRotation == 2 else "0°"
    content = (
        f"autoPlay: {'on' if display.autoPlay else 'off'}\n"
        f"frame: {display.frameDuration}ms · refresh: {display.espRefreshDuration}ms · gif fps: {display.gifFps or 'orig'}\n"
        f"headers: {'on' if display.showHeaders else 'off'} · rotation: {rotation} · scale: {display.displayScale}"
    )
    return Panel(content, title="Display", border_style="magenta")


def render_dashboard(
    items: Sequence[CycleItem],
    session: TimerSession,
    settings: TimerSettings,
    display: DisplaySettings,
    now: Optional[datetime] = None,
) -> Group:
    return Group(
        render_timer_panel(session, settings, now),
        render_cycle_table(items),
        render_display_panel(display),
    )
