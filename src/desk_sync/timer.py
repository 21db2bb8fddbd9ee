"""Focus timer state machine. Pure logic, no I/O.

All durations are whole seconds. Wall-clock time is injected (`now`, epoch
seconds) so phase sequencing is deterministic under test. There is no
background countdown: remaining time is derived from `started_at` and phases
advance lazily whenever the session is read or mutated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

logger = logging.getLogger("desk_sync.timer")


class TimerMode(str, Enum):
    WORK = "work"
    BREAK = "break"
    LONG_BREAK = "longBreak"


class TimerAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    RESET = "reset"
    SKIP = "skip"


# Accepted ranges (inclusive). Out-of-range values are ignored by the server
# and rejected by the client editor.
SETTINGS_LIMITS: dict[str, tuple[int, int]] = {
    "work_duration": (60, 3600),
    "break_duration": (60, 1800),
    "long_break_duration": (300, 2700),
    "cycles_until_long_break": (2, 8),
}

# Python attribute -> JSON wire name
SETTINGS_WIRE_NAMES: dict[str, str] = {
    "work_duration": "workDuration",
    "break_duration": "breakDuration",
    "long_break_duration": "longBreak",
    "cycles_until_long_break": "cyclesUntilLong",
    "show_in_cycle": "showInCycle",
}


def setting_in_range(name: str, value) -> bool:
    """True if value is acceptable for the named setting."""
    if name == "show_in_cycle":
        return isinstance(value, bool)
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    low, high = SETTINGS_LIMITS[name]
    return low <= value <= high


@dataclass
class TimerSettings:
    work_duration: int = 25 * 60
    break_duration: int = 5 * 60
    long_break_duration: int = 15 * 60
    cycles_until_long_break: int = 4
    show_in_cycle: bool = False

    def duration_for(self, mode: TimerMode) -> int:
        if mode == TimerMode.WORK:
            return self.work_duration
        if mode == TimerMode.BREAK:
            return self.break_duration
        return self.long_break_duration

    def to_dict(self) -> dict:
        return {wire: getattr(self, attr) for attr, wire in SETTINGS_WIRE_NAMES.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSettings":
        """Build from wire names, keeping defaults for missing or invalid values."""
        settings = cls()
        for attr, wire in SETTINGS_WIRE_NAMES.items():
            if wire in data and setting_in_range(attr, data[wire]):
                setattr(settings, attr, data[wire])
        return settings


@dataclass
class TimerSession:
    """Countdown session.

    While running, `time_remaining` is the phase budget as of `started_at`;
    the live value comes from remaining_seconds(). While paused it equals
    `paused_remaining`.
    """

    mode: TimerMode = TimerMode.WORK
    active: bool = False
    is_paused: bool = False
    time_remaining: int = 25 * 60
    started_at: float | None = None
    paused_remaining: int = 0
    cycles_completed: int = 0

    @property
    def state(self) -> str:
        if not self.active:
            return "idle"
        return "paused" if self.is_paused else "running"

    def to_dict(self, now: float) -> dict:
        started = None
        if self.started_at is not None:
            started = datetime.fromtimestamp(self.started_at, tz=timezone.utc).isoformat()
        return {
            "active": self.active,
            "mode": self.mode.value,
            "timeRemaining": remaining_seconds(self, now),
            "startedAt": started,
            "isPaused": self.is_paused,
            "pausedRemaining": self.paused_remaining,
            "cyclesCompleted": self.cycles_completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSession":
        """Parse a server snapshot. timeRemaining is as reported at snapshot time."""
        started_at = None
        if data.get("startedAt"):
            started_at = datetime.fromisoformat(data["startedAt"]).timestamp()
        return cls(
            mode=TimerMode(data.get("mode", "work")),
            active=bool(data.get("active", False)),
            is_paused=bool(data.get("isPaused", False)),
            time_remaining=int(data.get("timeRemaining", 0)),
            started_at=started_at,
            paused_remaining=int(data.get("pausedRemaining", 0)),
            cycles_completed=int(data.get("cyclesCompleted", 0)),
        )


def idle_session(settings: TimerSettings, cycles_completed: int = 0) -> TimerSession:
    return TimerSession(
        mode=TimerMode.WORK,
        time_remaining=settings.work_duration,
        cycles_completed=cycles_completed,
    )


def remaining_seconds(session: TimerSession, now: float) -> int:
    """Live remaining time, clamped at zero."""
    if not session.active:
        return max(0, session.time_remaining)
    if session.is_paused or session.started_at is None:
        return max(0, session.paused_remaining if session.is_paused else session.time_remaining)
    elapsed = int(now - session.started_at)
    return max(0, session.time_remaining - elapsed)


# ---- Transitions ----

def next_mode(mode: TimerMode, cycles_completed: int, settings: TimerSettings) -> TimerMode:
    """Mode following a completed phase; cycles_completed already includes it."""
    if mode == TimerMode.WORK:
        if cycles_completed % settings.cycles_until_long_break == 0:
            return TimerMode.LONG_BREAK
        return TimerMode.BREAK
    return TimerMode.WORK


def complete_phase(session: TimerSession, settings: TimerSettings, started_at: float) -> TimerSession:
    """Finish the current phase and begin the next one at started_at."""
    cycles = session.cycles_completed + (1 if session.mode == TimerMode.WORK else 0)
    mode = next_mode(session.mode, cycles, settings)
    return replace(
        session,
        mode=mode,
        is_paused=False,
        time_remaining=settings.duration_for(mode),
        started_at=started_at,
        paused_remaining=0,
        cycles_completed=cycles,
    )


def resolve(session: TimerSession, settings: TimerSettings, now: float) -> TimerSession:
    """Advance through every phase that has elapsed by `now`.

    Each new phase starts at the instant the previous one expired, so a late
    read lands in the same phase a continuously ticking timer would be in.
    """
    current = session
    while (
        current.active
        and not current.is_paused
        and current.started_at is not None
        and now - current.started_at >= current.time_remaining
    ):
        expired_at = current.started_at + max(0, current.time_remaining)
        current = complete_phase(current, settings, expired_at)
    return current


def start(session: TimerSession, settings: TimerSettings, now: float) -> TimerSession:
    if session.active:
        return session
    return replace(
        session,
        mode=TimerMode.WORK,
        active=True,
        is_paused=False,
        time_remaining=settings.work_duration,
        started_at=now,
        paused_remaining=0,
    )


def pause(session: TimerSession, now: float) -> TimerSession:
    if not session.active or session.is_paused:
        return session
    remaining = remaining_seconds(session, now)
    return replace(session, is_paused=True, paused_remaining=remaining, time_remaining=remaining)


def resume(session: TimerSession, now: float) -> TimerSession:
    if not session.active or not session.is_paused:
        return session
    return replace(
        session,
        is_paused=False,
        started_at=now,
        time_remaining=session.paused_remaining,
    )


def skip(session: TimerSession, settings: TimerSettings, now: float) -> TimerSession:
    if not session.active:
        return session
    return complete_phase(session, settings, now)


def reset(session: TimerSession, settings: TimerSettings, clear_cycles: bool = False) -> TimerSession:
    return idle_session(settings, 0 if clear_cycles else session.cycles_completed)


class TimerMachine:
    """Owns the timer session and settings for the server.

    Every read and mutation resolves elapsed phases first. Not internally
    locked; the server serializes callers.
    """

    def __init__(
        self,
        settings: TimerSettings | None = None,
        clock: Callable[[], float] = time.time,
        reset_clears_cycles: bool = False,
    ):
        self._settings = settings or TimerSettings()
        self._session = idle_session(self._settings)
        self._clock = clock
        self.reset_clears_cycles = reset_clears_cycles

    # ---- Read-only properties ----

    @property
    def session(self) -> TimerSession:
        return self._resolve(self._clock())

    @property
    def settings(self) -> TimerSettings:
        return replace(self._settings)

    # ---- Core methods ----

    def snapshot(self) -> dict:
        now = self._clock()
        session = self._resolve(now)
        return {"session": session.to_dict(now), "settings": self._settings.to_dict()}

    def apply(self, action: TimerAction | str) -> dict:
        try:
            action = TimerAction(action)
        except ValueError:
            raise ValueError(f"Invalid action: {action}") from None

        now = self._clock()
        before = self._resolve(now)

        if action == TimerAction.START:
            after = start(before, self._settings, now)
        elif action == TimerAction.PAUSE:
            after = pause(before, now)
        elif action == TimerAction.RESUME:
            after = resume(before, now)
        elif action == TimerAction.SKIP:
            after = skip(before, self._settings, now)
        else:
            after = reset(before, self._settings, clear_cycles=self.reset_clears_cycles)

        if after is before:
            logger.info(f"Timer: '{action.value}' ignored in state {before.state}")
        else:
            logger.info(
                f"Timer: {action.value} -> mode={after.mode.value} state={after.state} "
                f"remaining={remaining_seconds(after, now)}s cycles={after.cycles_completed}"
            )
        self._session = after
        return {"session": after.to_dict(now), "settings": self._settings.to_dict()}

    def update_settings(self, **values) -> list[str]:
        """Apply in-range values; returns the names that changed.

        An active phase keeps its remaining time. An idle session picks up a
        new work duration.
        """
        now = self._clock()
        self._session = self._resolve(now)

        known = {f.name for f in fields(TimerSettings)}
        changed = []
        for name, value in values.items():
            if name not in known or value is None:
                continue
            if not setting_in_range(name, value):
                logger.warning(f"Timer: ignoring out-of-range {name}={value}")
                continue
            if getattr(self._settings, name) != value:
                setattr(self._settings, name, value)
                changed.append(name)

        if not self._session.active:
            self._session = replace(self._session, time_remaining=self._settings.work_duration)

        if changed:
            s = self._settings
            logger.info(
                f"Timer settings updated: work={s.work_duration // 60}min, break={s.break_duration // 60}min, "
                f"long={s.long_break_duration // 60}min, cycles={s.cycles_until_long_break}"
            )
        return changed

    # ---- Internal ----

    def _resolve(self, now: float) -> TimerSession:
        resolved = resolve(self._session, self._settings, now)
        if resolved is not self._session:
            logger.info(
                f"Timer: phase complete -> {resolved.mode.value} "
                f"(cycles={resolved.cycles_completed})"
            )
            self._session = resolved
        return resolved
