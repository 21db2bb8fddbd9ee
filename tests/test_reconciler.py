"""Tests for optimistic editing and poll suppression.

Time is a fake monotonic millisecond clock; push submission is either inline,
queued by hand, or run on real threads where overlap matters.
"""

import threading

import pytest

from desk_sync.errors import AuthFailure, NetworkFailure, ValidationFailure
from desk_sync.models import ItemType, new_item
from desk_sync.reconciler import (
    CycleListEditor,
    InteractionGuard,
    PushTracker,
    TimerSettingsEditor,
)
from desk_sync.timer import TimerSettings


# ---- Helpers ----

class FakeClock:
    def __init__(self, now_ms: int = 10_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class ManualSubmit:
    """Collects push jobs so a test decides when they run."""

    def __init__(self):
        self.jobs = []

    def __call__(self, job):
        self.jobs.append(job)

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


def server_items():
    return [new_item("A", ItemType.TIME), new_item("B", ItemType.BCD)]


def ids_of(items):
    return [item.id for item in items]


def make_editor(push=None, submit=None, clock=None):
    clock = clock or FakeClock()
    pushes = []
    editor = CycleListEditor(
        push or pushes.append,
        clock=clock,
        submit=submit or (lambda job: job()),
        wall_clock_ms=lambda: 42,
    )
    editor.apply_poll(server_items())
    return editor, clock, pushes


# ---- PushTracker ----

class TestPushTracker:
    def test_not_suppressed_initially(self):
        assert PushTracker(5000, FakeClock()).is_suppressed() is False

    def test_suppressed_while_in_flight(self):
        tracker = PushTracker(5000, FakeClock())
        tracker.begin()
        assert tracker.is_suppressed() is True

    def test_grace_window_boundary(self):
        clock = FakeClock()
        tracker = PushTracker(5000, clock)
        tracker.begin()
        tracker.end(success=True)
        clock.advance(4999)
        assert tracker.is_suppressed() is True
        clock.advance(1)
        assert tracker.is_suppressed() is False

    def test_failed_push_does_not_start_grace(self):
        tracker = PushTracker(5000, FakeClock())
        tracker.begin()
        tracker.end(success=False)
        assert tracker.in_flight == 0
        assert tracker.last_success_ms is None
        assert tracker.is_suppressed() is False

    def test_counter_clamped_at_zero(self):
        tracker = PushTracker(5000, FakeClock())
        tracker.end(success=False)
        tracker.end(success=False)
        assert tracker.in_flight == 0
        tracker.begin()
        assert tracker.in_flight == 1


class TestInteractionGuard:
    def test_focus_and_drag(self):
        guard = InteractionGuard()
        assert guard.engaged is False
        guard.focus("work_duration")
        guard.pointer_down("break_duration")
        guard.blur("work_duration")
        assert guard.engaged is True
        guard.pointer_up("break_duration")
        assert guard.engaged is False

    def test_blur_of_other_field_keeps_engaged(self):
        guard = InteractionGuard()
        guard.focus("a")
        guard.blur("b")
        assert guard.engaged is True


# ---- Suppression ----

class TestCycleSuppression:
    def test_unsuppressed_poll_replaces_mirror(self):
        editor, _, _ = make_editor()
        assert ids_of(editor.items) == ["A", "B"]
        assert editor.apply_poll([new_item("C", ItemType.QR, qrData="x")]) is True
        assert ids_of(editor.items) == ["C"]

    def test_poll_ignored_while_push_in_flight(self):
        submit = ManualSubmit()
        editor, _, pushes = make_editor(submit=submit)
        editor.toggle("A")
        assert editor.tracker.in_flight == 1
        assert editor.apply_poll(server_items()) is False
        assert editor.items[0].enabled is False
        assert pushes == []

    def test_grace_window_after_push(self):
        editor, clock, pushes = make_editor()
        editor.toggle("A")
        assert len(pushes) == 1
        assert editor.tracker.in_flight == 0

        clock.advance(4999)
        assert editor.apply_poll(server_items()) is False
        assert editor.items[0].enabled is False

        clock.advance(1)
        assert editor.apply_poll(server_items()) is True
        assert editor.items[0].enabled is True

    def test_full_replacement_no_merge(self):
        editor, clock, _ = make_editor()
        editor.add_text("HELLO")
        clock.advance(5000)
        editor.apply_poll(server_items())
        assert ids_of(editor.items) == ["A", "B"]

    def test_add_survives_poll_with_two_pushes_in_flight(self):
        clock = FakeClock()
        release = threading.Event()
        push_started = threading.Semaphore(0)
        threads = []
        pushes = []

        def push(items):
            pushes.append(items)
            push_started.release()
            release.wait(5)

        def submit(job):
            t = threading.Thread(target=job)
            threads.append(t)
            t.start()

        editor = CycleListEditor(push, clock=clock, submit=submit)
        editor.apply_poll(server_items())

        # First push is on the wire; the second is queued behind it
        editor.toggle("A")
        assert push_started.acquire(timeout=5)
        editor.toggle("B")
        assert editor.tracker.in_flight == 2

        editor.add_text("HELLO")
        assert editor.apply_poll(server_items()) is False
        assert "HELLO" in [item.text for item in editor.items]

        release.set()
        for t in threads:
            t.join(5)
        assert editor.tracker.in_flight == 0
        assert len(pushes) == 2
        assert "HELLO" in [item.text for item in pushes[-1]]
        assert "HELLO" in [item.text for item in editor.items]


# ---- Push batching and failures ----

class TestPushes:
    def test_pushes_carry_whole_list(self):
        editor, _, pushes = make_editor()
        editor.toggle("B")
        assert ids_of(pushes[0]) == ["A", "B"]
        assert pushes[0][1].enabled is False

    def test_pending_edits_share_one_push(self):
        submit = ManualSubmit()
        editor, _, pushes = make_editor(submit=submit)
        editor.toggle("A")
        editor.add_text("one")
        editor.reorder(["B", "A"])
        assert editor.tracker.in_flight == 1

        submit.run_all()
        assert len(pushes) == 1
        assert ids_of(pushes[0])[:2] == ["B", "A"]
        assert pushes[0][-1].text == "one"
        assert editor.tracker.in_flight == 0

    def test_network_failure_keeps_local_state(self):
        calls = []

        def push(items):
            calls.append(items)
            raise NetworkFailure("connection refused")

        editor, _, _ = make_editor(push=push)
        editor.delete("A")
        assert ids_of(editor.items) == ["B"]
        assert editor.tracker.in_flight == 0
        assert len(calls) == 1

    def test_auth_failure_not_retried(self):
        calls = []

        def push(items):
            calls.append(items)
            raise AuthFailure("unauthorized")

        submit = ManualSubmit()
        editor, _, _ = make_editor(push=push, submit=submit)
        editor.toggle("A")
        submit.run_all()
        submit.run_all()
        assert len(calls) == 1
        assert editor.tracker.in_flight == 0
        assert editor.items[0].enabled is False

    def test_edit_during_push_sent_by_same_flush(self):
        pushes = []
        submit = ManualSubmit()

        def push(items):
            pushes.append([item.enabled for item in items])
            if len(pushes) == 1:
                # Arrives while the first push is on the wire
                editor.toggle("B")

        editor, _, _ = make_editor(push=push, submit=submit)
        editor.toggle("A")
        first_job = submit.jobs.pop(0)
        assert first_job() is True
        assert pushes == [[False, True], [False, False]]
        assert editor.tracker.in_flight == 0

        # The run scheduled by the second edit finds nothing left to send
        submit.run_all()
        assert len(pushes) == 2

    def test_only_one_flush_pushes_at_a_time(self):
        release = threading.Event()
        push_started = threading.Event()
        pushes = []

        def push(items):
            pushes.append(ids_of(items))
            push_started.set()
            release.wait(5)

        submit = ManualSubmit()
        editor, _, _ = make_editor(push=push, submit=submit)
        editor.toggle("A")
        worker = threading.Thread(target=submit.jobs.pop(0))
        worker.start()
        assert push_started.wait(5)

        editor.toggle("B")
        assert editor.flush() is False

        release.set()
        worker.join(5)
        assert len(pushes) == 2
        assert editor.tracker.in_flight == 0

    def test_unexpected_error_still_releases_slot(self):
        def push(items):
            raise RuntimeError("boom")

        submit = ManualSubmit()
        editor, _, _ = make_editor(push=push, submit=submit)
        editor.toggle("A")
        with pytest.raises(RuntimeError):
            submit.run_all()
        assert editor.tracker.in_flight == 0


# ---- Editor operations ----

class TestCycleEditor:
    def test_add_text_appends_enabled_item(self):
        editor, _, _ = make_editor()
        item = editor.add_text("  HELLO  ", style="bold")
        assert item.id == "text-42-1"
        assert item.text == "HELLO"
        assert item.enabled is True
        assert editor.items[-1].id == item.id

    def test_add_countdown_and_qr(self):
        editor, _, _ = make_editor()
        editor.add_qr("https://example.com")
        editor.add_countdown("Launch", "2026-12-01")
        types = [item.type for item in editor.items[-2:]]
        assert types == [ItemType.QR, ItemType.COUNTDOWN]
        assert editor.items[-1].targetLabel == "Launch"

    def test_add_image(self):
        editor, _, _ = make_editor()
        item = editor.add_image([0, 255, 0], width=3, height=1)
        assert item.bitmap == [0, 255, 0]

    @pytest.mark.parametrize("call", [
        lambda e: e.add_text("   "),
        lambda e: e.add_qr(""),
        lambda e: e.add_countdown("", "2026-01-01"),
        lambda e: e.add_countdown("Launch", ""),
        lambda e: e.add_image([], 0, 0),
        lambda e: e.add("hologram"),
        lambda e: e.update_field("A", id="other"),
    ])
    def test_validation_failure_mutates_nothing(self, call):
        editor, _, pushes = make_editor()
        before = editor.items
        with pytest.raises(ValidationFailure):
            call(editor)
        assert editor.items == before
        assert pushes == []
        assert editor.tracker.in_flight == 0

    def test_delete_last_item_pushes_fallback(self):
        editor, _, pushes = make_editor()
        editor.delete("A")
        editor.delete("B")
        assert len(editor.items) == 1
        assert editor.items[0].type == ItemType.TIME
        assert editor.items[0].id == "time-42-1"
        assert ids_of(pushes[-1]) == ["time-42-1"]

    def test_unknown_id_raises_without_push(self):
        editor, _, pushes = make_editor()
        with pytest.raises(KeyError):
            editor.toggle("missing")
        assert pushes == []
        assert editor.tracker.in_flight == 0

    def test_update_field(self):
        editor, _, _ = make_editor()
        editor.update_field("B", label="Binary", duration=8000)
        assert editor.items[1].label == "Binary"
        assert editor.items[1].duration == 8000

    def test_subscribers_notified_and_unsubscribed(self):
        editor, _, _ = make_editor()
        seen = []
        unsubscribe = editor.subscribe(lambda items: seen.append(ids_of(items)))
        editor.reorder(["B", "A"])
        unsubscribe()
        editor.toggle("A")
        assert seen == [["B", "A"]]

    def test_state_is_a_copy(self):
        editor, _, _ = make_editor()
        items = editor.items
        items.clear()
        assert ids_of(editor.items) == ["A", "B"]


# ---- Timer settings editor ----

class TestTimerSettingsEditor:
    def make(self):
        clock = FakeClock()
        pushes = []
        editor = TimerSettingsEditor(pushes.append, clock=clock)
        return editor, clock, pushes

    def test_update_pushes_full_settings(self):
        editor, _, pushes = self.make()
        editor.update(work_duration=1800, cycles_until_long_break=3)
        assert pushes == [TimerSettings(work_duration=1800, cycles_until_long_break=3)]

    def test_out_of_range_rejected(self):
        editor, _, pushes = self.make()
        with pytest.raises(ValidationFailure) as exc:
            editor.update(work_duration=30)
        assert exc.value.field == "work_duration"
        assert pushes == []
        assert editor.settings.work_duration == 1500

    def test_unknown_setting_rejected(self):
        editor, _, _ = self.make()
        with pytest.raises(ValidationFailure):
            editor.update(snooze=5)

    def test_grace_window_is_three_seconds(self):
        editor, clock, _ = self.make()
        editor.update(break_duration=600)
        clock.advance(2999)
        assert editor.apply_poll(TimerSettings()) is False
        assert editor.settings.break_duration == 600
        clock.advance(1)
        assert editor.apply_poll(TimerSettings()) is True
        assert editor.settings.break_duration == 300

    def test_focused_field_blocks_poll(self):
        editor, _, _ = self.make()
        editor.focus("work_duration")
        assert editor.apply_poll(TimerSettings(work_duration=600)) is False
        editor.blur("work_duration")
        assert editor.apply_poll(TimerSettings(work_duration=600)) is True
        assert editor.settings.work_duration == 600

    def test_drag_blocks_poll(self):
        editor, _, _ = self.make()
        editor.pointer_down("long_break_duration")
        assert editor.apply_poll(TimerSettings(long_break_duration=300)) is False
        editor.pointer_up("long_break_duration")
        assert editor.apply_poll(TimerSettings(long_break_duration=300)) is True
