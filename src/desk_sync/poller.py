"""
Polling client mirror.

Runs two interval jobs on an APScheduler BackgroundScheduler:
- settings/cycle list every 1.5s, fed through the cycle editor's suppression
- timer every 1.0s; the session mirror is always replaced, timer settings go
  through the timer-settings editor's suppression

Edits push through debounced one-shot jobs, so a burst of edits becomes one
push of the final state.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .client import DashboardClient
from .config import ClientConfig
from .display_settings import DisplaySettings
from .errors import AuthFailure, NetworkFailure, ValidationFailure
from .models import CycleItem
from .reconciler import CycleListEditor, TimerSettingsEditor, monotonic_ms
from .timer import TimerAction, TimerSession, TimerSettings

logger = logging.getLogger("desk_sync.poller")


class DashboardPoller:
    def __init__(
        self,
        client: DashboardClient,
        config: Optional[ClientConfig] = None,
        scheduler=None,
        clock: Callable[[], int] = monotonic_ms,
    ):
        self.client = client
        self.config = config or ClientConfig()
        self.scheduler = scheduler if scheduler is not None else BackgroundScheduler()
        self.cycle = CycleListEditor(
            self._push_cycle,
            clock=clock,
            submit=self._debounced("push_cycle"),
        )
        self.timer_settings = TimerSettingsEditor(
            self._push_timer_settings,
            clock=clock,
            submit=self._debounced("push_timer_settings"),
        )
        self._lock = threading.Lock()
        self._timer_session = TimerSession()
        self._display = DisplaySettings()
        self._listeners: List[Callable[[], None]] = []

    # ---- Mirrors ----

    @property
    def timer_session(self) -> TimerSession:
        with self._lock:
            return self._timer_session

    @property
    def display(self) -> DisplaySettings:
        with self._lock:
            return self._display

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call listener whenever the timer or display mirror changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Poller: listener failed")

    # ---- Pushes ----

    def _debounced(self, job_id: str):
        """Build a submit function that coalesces pushes into one delayed job."""
        def submit(job):
            delay_ms = self.config.push_debounce_ms
            if delay_ms <= 0:
                job()
                return
            self.scheduler.add_job(
                job,
                "date",
                run_date=datetime.now() + timedelta(milliseconds=delay_ms),
                id=job_id,
                replace_existing=True,
                misfire_grace_time=None,
                # A run skipped while the previous one is still pushing loses
                # nothing: the running flush sends whatever is pending before it exits
                max_instances=1,
            )
        return submit

    def _push_cycle(self, items: List[CycleItem]) -> None:
        self.client.push_cycle_items(items)
        logger.debug(f"Poller: pushed {len(items)} cycle items")

    def _push_timer_settings(self, settings: TimerSettings) -> None:
        # The response is not applied; the next unsuppressed poll catches up.
        self.client.update_timer_settings(settings)

    # ---- Poll jobs ----

    def poll_settings(self) -> bool:
        """Read the settings snapshot. Returns True if the cycle mirror was replaced."""
        try:
            data = self.client.get_settings()
            items = [CycleItem.model_validate(raw) for raw in data.get("cycleItems") or []]
        except AuthFailure as e:
            logger.warning(f"Poller: settings poll unauthorized: {e}")
            return False
        except NetworkFailure as e:
            logger.debug(f"Poller: settings poll failed: {e}")
            return False
        except ValueError as e:
            logger.warning(f"Poller: malformed settings snapshot: {e}")
            return False

        with self._lock:
            self._display = DisplaySettings.from_dict(data)
        applied = self.cycle.apply_poll(items)
        self._changed()
        return applied

    def poll_timer(self) -> bool:
        """Read the timer snapshot. Returns True if the settings mirror was replaced."""
        try:
            data = self.client.get_timer()
            session = TimerSession.from_dict(data.get("session") or {})
        except AuthFailure as e:
            logger.warning(f"Poller: timer poll unauthorized: {e}")
            return False
        except NetworkFailure as e:
            logger.debug(f"Poller: timer poll failed: {e}")
            return False
        except ValueError as e:
            logger.warning(f"Poller: malformed timer snapshot: {e}")
            return False

        with self._lock:
            self._timer_session = session
        applied = self.timer_settings.apply_poll(TimerSettings.from_dict(data.get("settings") or {}))
        self._changed()
        return applied

    # ---- User actions ----

    def timer_action(self, action) -> TimerSession:
        """Send a timer action and adopt the server's resulting session.

        Unlike list edits, timer actions are not optimistic. Transport errors
        propagate to the caller.
        """
        try:
            action = TimerAction(action)
        except ValueError:
            raise ValidationFailure(f"Invalid action: {action}", field="action") from None
        data = self.client.timer_action(action.value)
        session = TimerSession.from_dict(data.get("session") or {})
        with self._lock:
            self._timer_session = session
        self._changed()
        return session

    def update_display(self, **fields) -> DisplaySettings:
        """Partial display-settings update; adopts the returned snapshot."""
        data = self.client.update_settings(**fields)
        display = DisplaySettings.from_dict(data)
        with self._lock:
            self._display = display
        self._changed()
        return display

    # ---- Lifecycle ----

    def start(self) -> None:
        now = datetime.now()
        self.scheduler.add_job(
            self.poll_settings,
            trigger=IntervalTrigger(seconds=self.config.settings_poll_ms / 1000),
            id="poll_settings",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now,
        )
        self.scheduler.add_job(
            self.poll_timer,
            trigger=IntervalTrigger(seconds=self.config.timer_poll_ms / 1000),
            id="poll_timer",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Poller started against {self.client.base_url}")

    def stop(self) -> None:
        """Stop polling and send any edits still waiting on their debounce."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.cycle.flush()
        self.timer_settings.flush()
        logger.info("Poller stopped")


def build_dashboard(
    config: Optional[ClientConfig] = None,
    on_unauthorized: Optional[Callable[[], None]] = None,
) -> DashboardPoller:
    """Wire a client, both editors and a background scheduler from config."""
    config = config or ClientConfig.from_env()
    client = DashboardClient(
        config.base_url,
        token=config.auth_token,
        timeout=config.timeout,
        on_unauthorized=on_unauthorized,
    )
    return DashboardPoller(client, config)


def wait_for_server(client: DashboardClient, attempts: int = 10, delay: float = 0.5) -> bool:
    for _ in range(attempts):
        if client.health():
            return True
        time.sleep(delay)
    return False
