"""Cycle item model and id generation.

Field names are the JSON wire names (camelCase) so the same model is used
for requests, responses and persistence.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class ItemType(str, Enum):
    TIME = "time"
    WEATHER = "weather"
    UPTIME = "uptime"
    TEXT = "text"
    IMAGE = "image"
    QR = "qr"
    COUNTDOWN = "countdown"
    POMODORO = "pomodoro"
    SPOTIFY = "spotify"
    BCD = "bcd"
    ANALOG = "analog"
    MOONPHASE = "moonphase"
    WORDCLOCK = "wordclock"


DEFAULT_ITEM_DURATION_MS = 3000
QR_ITEM_DURATION_MS = 5000

DEFAULT_LABELS: dict[ItemType, str] = {
    ItemType.TIME: "🕐 Time",
    ItemType.BCD: "🔢 BCD Clock",
    ItemType.ANALOG: "🧮 Analog Clock",
    ItemType.SPOTIFY: "🎵 Now Playing",
    ItemType.WEATHER: "🌤 Weather",
    ItemType.UPTIME: "⏱ Uptime",
    ItemType.TEXT: "💬 Message",
    ItemType.IMAGE: "🖼 Image",
    ItemType.POMODORO: "🍅 Pomodoro",
    ItemType.COUNTDOWN: "⏳ Countdown",
    ItemType.QR: "📱 QR Code",
    ItemType.MOONPHASE: "🌙 Moon Phase",
    ItemType.WORDCLOCK: "🔤 Word Clock",
}


class CycleItem(BaseModel):
    id: str
    type: ItemType
    label: str = ""
    enabled: bool = True
    duration: int = 0  # ms, 0 = display default
    text: Optional[str] = None
    style: Optional[str] = None
    size: Optional[int] = None
    bitmap: Optional[List[int]] = None
    width: Optional[int] = None
    height: Optional[int] = None
    qrData: Optional[str] = None
    targetDate: Optional[str] = None
    targetLabel: Optional[str] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


def make_item_id(item_type: ItemType | str, counter: int, now_ms: int) -> str:
    """Build an id that stays unique for same-millisecond additions."""
    type_value = item_type.value if isinstance(item_type, ItemType) else item_type
    return f"{type_value}-{now_ms}-{counter}"


class IdGenerator:
    """Process-local monotonic counter for cycle item ids. Thread-safe."""

    def __init__(self, start: int = 0, clock_ms=None):
        self._counter = start
        self._lock = threading.Lock()
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    @property
    def counter(self) -> int:
        return self._counter

    def next_id(self, item_type: ItemType | str) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        return make_item_id(item_type, counter, self._clock_ms())


def new_item(item_id: str, item_type: ItemType, **payload) -> CycleItem:
    """Create an enabled item with the type's default label and duration."""
    fields = {
        "label": DEFAULT_LABELS.get(item_type, item_type.value),
        "enabled": True,
        "duration": QR_ITEM_DURATION_MS if item_type == ItemType.QR else DEFAULT_ITEM_DURATION_MS,
    }
    fields.update({k: v for k, v in payload.items() if v is not None})
    return CycleItem(id=item_id, type=item_type, **fields)


def fallback_item(item_id: str = "time-fallback") -> CycleItem:
    return new_item(item_id, ItemType.TIME)


def default_cycle_items() -> list[CycleItem]:
    return [
        new_item("time-1", ItemType.TIME),
        new_item("bcd-1", ItemType.BCD),
        new_item("weather-1", ItemType.WEATHER),
    ]


DEFAULT_ID_COUNTER = 3


def new_item_problem(item_type: ItemType, payload: dict) -> str | None:
    """Reason a new item of this type can't be created from payload, if any."""
    if item_type == ItemType.TEXT and not (payload.get("text") or "").strip():
        return "Please enter some text!"
    if item_type == ItemType.QR and not (payload.get("qrData") or "").strip():
        return "Please enter text or URL!"
    if item_type == ItemType.COUNTDOWN:
        if not (payload.get("targetLabel") or "").strip():
            return "Please enter an event name!"
        if not payload.get("targetDate"):
            return "Please select a target date!"
    if item_type == ItemType.IMAGE and not payload.get("bitmap"):
        return "No image available to save! Upload an image first."
    return None
