"""Display cycle list: pure list operations and the server-side store.

The list operations never mutate their input; they return a new list so the
client mirror and the server store can share them.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from .models import (
    DEFAULT_ID_COUNTER,
    CycleItem,
    IdGenerator,
    ItemType,
    default_cycle_items,
    fallback_item,
    new_item,
)

logger = logging.getLogger("desk_sync.cycle")

# Fields a client may edit in place; id and type are fixed at creation.
EDITABLE_FIELDS = frozenset({
    "label", "enabled", "duration", "text", "style", "size",
    "bitmap", "width", "height", "qrData", "targetDate", "targetLabel",
})


# ---- Pure list operations ----

def _index_of(items: Sequence[CycleItem], item_id: str) -> int:
    for i, item in enumerate(items):
        if item.id == item_id:
            return i
    raise KeyError(item_id)


def append_item(items: Sequence[CycleItem], item: CycleItem) -> list[CycleItem]:
    return [*items, item]


def toggle_item(items: Sequence[CycleItem], item_id: str) -> list[CycleItem]:
    idx = _index_of(items, item_id)
    result = list(items)
    result[idx] = items[idx].model_copy(update={"enabled": not items[idx].enabled})
    return result


def delete_item(
    items: Sequence[CycleItem],
    item_id: str,
    make_fallback: Callable[[], CycleItem] = fallback_item,
) -> list[CycleItem]:
    """Remove an item. An emptied list gets one fallback time item."""
    idx = _index_of(items, item_id)
    result = [item for i, item in enumerate(items) if i != idx]
    if not result:
        result = [make_fallback()]
    return result


def reorder_items(items: Sequence[CycleItem], ids: Iterable[str]) -> list[CycleItem]:
    """Re-sequence to match ids.

    Unknown ids are dropped; known items missing from ids keep their relative
    order and go to the end.
    """
    by_id = {item.id: item for item in items}
    result: list[CycleItem] = []
    placed: set[str] = set()
    for item_id in ids:
        if item_id in by_id and item_id not in placed:
            result.append(by_id[item_id])
            placed.add(item_id)
    result.extend(item for item in items if item.id not in placed)
    return result


def update_item(items: Sequence[CycleItem], item_id: str, fields: dict) -> list[CycleItem]:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
    idx = _index_of(items, item_id)
    merged = {**items[idx].to_dict(), **fields}
    result = list(items)
    result[idx] = CycleItem.model_validate(merged)
    return result


def normalize_items(
    items: Sequence[CycleItem],
    make_fallback: Callable[[], CycleItem] = fallback_item,
) -> list[CycleItem]:
    """Drop repeated ids (first wins) and repair an empty list."""
    seen: set[str] = set()
    result = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    if not result:
        result = [make_fallback()]
    return result


# ---- Server store ----

class CycleListStore:
    """Canonical ordered list of cycle items.

    Not internally locked: the server serializes access with one lock per
    entity.
    """

    def __init__(self, items: Sequence[CycleItem] | None = None, counter: int = DEFAULT_ID_COUNTER, clock_ms=None):
        self._ids = IdGenerator(start=counter, clock_ms=clock_ms)
        self._items = normalize_items(items if items is not None else default_cycle_items(), self._make_fallback)

    def _make_fallback(self) -> CycleItem:
        return fallback_item(self._ids.next_id(ItemType.TIME))

    def items(self) -> list[CycleItem]:
        return list(self._items)

    @property
    def counter(self) -> int:
        return self._ids.counter

    def add(self, item_type: ItemType, **payload) -> CycleItem:
        item = new_item(self._ids.next_id(item_type), item_type, **payload)
        self._items = append_item(self._items, item)
        logger.info(f"Cycle: added {item.id}")
        return item

    def toggle(self, item_id: str) -> CycleItem:
        self._items = toggle_item(self._items, item_id)
        item = self._items[_index_of(self._items, item_id)]
        logger.info(f"Cycle: {item_id} enabled={item.enabled}")
        return item

    def delete(self, item_id: str) -> None:
        self._items = delete_item(self._items, item_id, self._make_fallback)
        logger.info(f"Cycle: deleted {item_id} ({len(self._items)} remaining)")

    def reorder(self, ids: Iterable[str]) -> list[CycleItem]:
        self._items = reorder_items(self._items, ids)
        logger.info(f"Cycle: reordered -> {[item.id for item in self._items]}")
        return self.items()

    def update(self, item_id: str, **fields) -> CycleItem:
        self._items = update_item(self._items, item_id, fields)
        return self._items[_index_of(self._items, item_id)]

    def replace_all(self, items: Sequence[CycleItem]) -> list[CycleItem]:
        """Full-list push from a client. Last writer wins."""
        self._items = normalize_items(items, self._make_fallback)
        logger.info(f"Cycle: replaced list ({len(self._items)} items)")
        return self.items()

    def reset(self) -> None:
        self._items = default_cycle_items()

    # ---- Serialization ----

    def to_dict(self) -> dict:
        return {
            "cycleItems": [item.to_dict() for item in self._items],
            "cycleItemCounter": self._ids.counter,
        }

    @classmethod
    def from_dict(cls, data: dict, clock_ms=None) -> "CycleListStore":
        raw_items = data.get("cycleItems") or []
        items = [CycleItem.model_validate(raw) for raw in raw_items]
        counter = int(data.get("cycleItemCounter", DEFAULT_ID_COUNTER))
        # Empty persisted lists fall back to defaults, like a fresh install.
        return cls(items or None, counter=counter, clock_ms=clock_ms)
