"""Optimistic local editing reconciled against a polling mirror.

Local edits apply to the mirror immediately and schedule a push of the whole
mirror. Incoming poll results are ignored while a push is outstanding or
recently completed, so a poll issued before an edit can't land after it and
put stale data back. Once suppression lapses a poll replaces the mirror
wholesale; nothing is merged field by field.

Time here is monotonic milliseconds from an injectable clock.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from .config import CYCLE_GRACE_MS, TIMER_SETTINGS_GRACE_MS
from .cycle import append_item, delete_item, reorder_items, toggle_item, update_item
from .errors import AuthFailure, NetworkFailure, ValidationFailure
from .models import CycleItem, IdGenerator, ItemType, fallback_item, new_item, new_item_problem
from .timer import SETTINGS_LIMITS, TimerSettings, setting_in_range

logger = logging.getLogger("desk_sync.reconciler")

S = TypeVar("S")


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def run_inline(job: Callable[[], object]) -> None:
    job()


class PushTracker:
    """Counts outstanding pushes and remembers the last successful one."""

    def __init__(self, grace_ms: int, clock: Callable[[], int] = monotonic_ms):
        self.grace_ms = grace_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = 0
        self._last_success_ms: Optional[int] = None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def last_success_ms(self) -> Optional[int]:
        return self._last_success_ms

    def begin(self) -> None:
        with self._lock:
            self._in_flight += 1

    def end(self, success: bool) -> None:
        """Release one slot. Clamped at zero for out-of-order completions."""
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
            if success:
                self._last_success_ms = self._clock()

    def is_suppressed(self, now_ms: Optional[int] = None) -> bool:
        with self._lock:
            if self._in_flight > 0:
                return True
            if self._last_success_ms is None:
                return False
            now = self._clock() if now_ms is None else now_ms
            return now - self._last_success_ms < self.grace_ms


class InteractionGuard:
    """Tracks fields that hold focus or are mid-drag."""

    def __init__(self):
        self._lock = threading.Lock()
        self._focused: set[str] = set()
        self._pressed: set[str] = set()

    def focus(self, field: str) -> None:
        with self._lock:
            self._focused.add(field)

    def blur(self, field: str) -> None:
        with self._lock:
            self._focused.discard(field)

    def pointer_down(self, field: str) -> None:
        with self._lock:
            self._pressed.add(field)

    def pointer_up(self, field: str) -> None:
        with self._lock:
            self._pressed.discard(field)

    @property
    def engaged(self) -> bool:
        with self._lock:
            return bool(self._focused or self._pressed)


class OptimisticEditQueue(Generic[S]):
    """Owned mirror state with immediate local mutation and full-state pushes.

    `push` sends a snapshot to the server and raises AuthFailure or
    NetworkFailure on failure. `submit` decides when the push job runs: inline
    by default, or through a scheduler that debounces repeated submissions.
    A scheduled push counts as outstanding from the moment it is scheduled.
    """

    def __init__(
        self,
        name: str,
        initial: S,
        push: Callable[[S], object],
        grace_ms: int,
        clock: Callable[[], int] = monotonic_ms,
        submit: Callable[[Callable[[], object]], None] = run_inline,
        guard: Optional[InteractionGuard] = None,
    ):
        self.name = name
        self.tracker = PushTracker(grace_ms, clock)
        self.guard = guard
        self._state = initial
        self._push = push
        self._submit = submit
        self._lock = threading.RLock()
        self._pending = False
        self._flushing = False
        self._listeners: list[Callable[[S], None]] = []

    @property
    def state(self) -> S:
        with self._lock:
            return copy.deepcopy(self._state)

    def subscribe(self, listener: Callable[[S], None]) -> Callable[[], None]:
        """Register for state changes; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def is_suppressed(self) -> bool:
        with self._lock:
            if self._pending or self.tracker.is_suppressed():
                return True
        return self.guard is not None and self.guard.engaged

    def mutate(self, change: Callable[[S], S]) -> S:
        """Apply change to the mirror now and schedule a push.

        If change raises, nothing is modified and nothing is pushed.
        """
        with self._lock:
            new_state = change(self._state)
            self._state = new_state
            if not self._pending:
                self._pending = True
                self.tracker.begin()
            result = copy.deepcopy(new_state)
        self._notify(result)
        self._submit(self.flush)
        return result

    def apply_poll(self, data: S) -> bool:
        """Replace the mirror with authoritative data unless suppressed."""
        with self._lock:
            if self.is_suppressed():
                logger.debug(f"{self.name}: poll suppressed (in_flight={self.tracker.in_flight})")
                return False
            self._state = data
            result = copy.deepcopy(data)
        self._notify(result)
        return True

    def flush(self) -> bool:
        """Push the mirror until no edit is pending. Returns the last push's success.

        Only one caller pushes at a time. Edits made while a push is running
        are sent by that same caller once it completes, so pushes reach the
        server in order and a skipped scheduler run loses nothing.
        """
        with self._lock:
            if self._flushing or not self._pending:
                return False
            self._flushing = True

        success = False
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._flushing = False
                        return success
                    self._pending = False
                    snapshot = copy.deepcopy(self._state)
                success = self._push_snapshot(snapshot)
        except Exception:
            with self._lock:
                self._flushing = False
            raise

    def _push_snapshot(self, snapshot: S) -> bool:
        success = False
        try:
            self._push(snapshot)
            success = True
        except AuthFailure as exc:
            logger.warning(f"{self.name}: push rejected, not retrying: {exc}")
        except NetworkFailure as exc:
            logger.error(f"{self.name}: push failed, keeping local state: {exc}")
        finally:
            self.tracker.end(success)
        return success

    def _notify(self, state: S) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception(f"{self.name}: listener failed")


class CycleListEditor(OptimisticEditQueue[List[CycleItem]]):
    """Client-side editor for the display cycle list."""

    def __init__(
        self,
        push: Callable[[List[CycleItem]], object],
        clock: Callable[[], int] = monotonic_ms,
        submit: Callable[[Callable[[], object]], None] = run_inline,
        grace_ms: int = CYCLE_GRACE_MS,
        wall_clock_ms: Optional[Callable[[], int]] = None,
    ):
        super().__init__("cycle", [], push, grace_ms, clock, submit)
        self._ids = IdGenerator(clock_ms=wall_clock_ms)

    @property
    def items(self) -> List[CycleItem]:
        return self.state

    def _fallback(self) -> CycleItem:
        return fallback_item(self._ids.next_id(ItemType.TIME))

    def toggle(self, item_id: str) -> List[CycleItem]:
        return self.mutate(lambda items: toggle_item(items, item_id))

    def delete(self, item_id: str) -> List[CycleItem]:
        return self.mutate(lambda items: delete_item(items, item_id, self._fallback))

    def reorder(self, ids: Iterable[str]) -> List[CycleItem]:
        ids = list(ids)
        return self.mutate(lambda items: reorder_items(items, ids))

    def add(self, item_type: ItemType | str, **payload) -> CycleItem:
        try:
            item_type = ItemType(item_type)
        except ValueError:
            raise ValidationFailure(f"Unknown item type: {item_type}", field="type") from None
        problem = new_item_problem(item_type, payload)
        if problem:
            raise ValidationFailure(problem, field="type")
        item = new_item(self._ids.next_id(item_type), item_type, **payload)
        self.mutate(lambda items: append_item(items, item))
        return item

    def add_text(self, text: str, style: str = "normal", size: int = 2) -> CycleItem:
        return self.add(ItemType.TEXT, text=(text or "").strip(), style=style, size=size)

    def add_qr(self, data: str) -> CycleItem:
        return self.add(ItemType.QR, qrData=(data or "").strip())

    def add_countdown(self, label: str, target_date: str) -> CycleItem:
        return self.add(ItemType.COUNTDOWN, targetLabel=(label or "").strip(), targetDate=target_date)

    def add_image(self, bitmap: List[int], width: int, height: int) -> CycleItem:
        return self.add(ItemType.IMAGE, bitmap=bitmap, width=width, height=height)

    def update_field(self, item_id: str, **fields) -> List[CycleItem]:
        try:
            return self.mutate(lambda items: update_item(items, item_id, fields))
        except KeyError:
            raise
        except ValueError as exc:
            raise ValidationFailure(str(exc)) from exc


class TimerSettingsEditor(OptimisticEditQueue[TimerSettings]):
    """Client-side editor for timer settings.

    Besides the push grace window, polls are also held off while any
    settings control has focus or is being dragged.
    """

    def __init__(
        self,
        push: Callable[[TimerSettings], object],
        clock: Callable[[], int] = monotonic_ms,
        submit: Callable[[Callable[[], object]], None] = run_inline,
        grace_ms: int = TIMER_SETTINGS_GRACE_MS,
    ):
        super().__init__("timer-settings", TimerSettings(), push, grace_ms, clock, submit, guard=InteractionGuard())

    @property
    def settings(self) -> TimerSettings:
        return self.state

    def update(self, **values) -> TimerSettings:
        for name, value in values.items():
            if name != "show_in_cycle" and name not in SETTINGS_LIMITS:
                raise ValidationFailure(f"Unknown timer setting: {name}", field=name)
            if not setting_in_range(name, value):
                if name == "show_in_cycle":
                    raise ValidationFailure(f"{name} must be true or false", field=name)
                low, high = SETTINGS_LIMITS[name]
                raise ValidationFailure(f"{name} must be between {low} and {high}", field=name)
        return self.mutate(lambda settings: replace(settings, **values))

    # Interaction signals from the settings controls

    def focus(self, field: str) -> None:
        self.guard.focus(field)

    def blur(self, field: str) -> None:
        self.guard.blur(field)

    def pointer_down(self, field: str) -> None:
        self.guard.pointer_down(field)

    def pointer_up(self, field: str) -> None:
        self.guard.pointer_up(field)
