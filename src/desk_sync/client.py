"""HTTP client for the Desk-Sync server.

Maps transport problems onto the error taxonomy: a 401 becomes AuthFailure
(after notifying the login collaborator), everything else that goes wrong
becomes NetworkFailure.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

import requests

from .errors import AuthFailure, NetworkFailure
from .models import CycleItem
from .timer import TimerSettings

logger = logging.getLogger("desk_sync.client")


class DashboardClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        on_unauthorized: Optional[Callable[[], None]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkFailure(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 401:
            if self.on_unauthorized is not None:
                self.on_unauthorized()
            raise AuthFailure(f"{method} {path}: unauthorized")
        if not resp.ok:
            raise NetworkFailure(f"{method} {path}: HTTP {resp.status_code} {resp.text[:200]}", status=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"{method} {path}: invalid JSON response") from exc

    # ---- Settings / cycle list ----

    def get_settings(self) -> dict:
        return self._request("GET", "/api/settings")

    def update_settings(self, **fields) -> dict:
        """Partial settings merge; only the given fields are sent."""
        return self._request("POST", "/api/settings", fields)

    def push_cycle_items(self, items: Iterable[CycleItem]) -> dict:
        """Send the entire local list. The server replaces its list with it."""
        return self.update_settings(cycleItems=[item.to_dict() for item in items])

    # ---- Timer ----

    def get_timer(self) -> dict:
        return self._request("GET", "/api/pomodoro")

    def timer_action(self, action: str) -> dict:
        return self._request("POST", "/api/pomodoro", {"action": action})

    def update_timer_settings(self, settings: TimerSettings) -> dict:
        return self._request("PUT", "/api/pomodoro", settings.to_dict())

    def health(self) -> bool:
        try:
            self._request("GET", "/health")
            return True
        except (NetworkFailure, AuthFailure):
            return False
