"""SQLite persistence for dashboard state.

One row per entity in a key/value table. The timer session is not persisted;
only its settings survive a restart.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger("desk_sync.storage")

CYCLE_KEY = "cycle"
DISPLAY_KEY = "display"
TIMER_SETTINGS_KEY = "timer_settings"


class StateRepository:
    """Reads and writes entity snapshots as JSON."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        # Prevent indefinite blocking on lock contention
        await db.execute("PRAGMA busy_timeout=5000")
        return db

    async def init_tables(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await self._connect()
        try:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS dashboard_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.commit()
        finally:
            await db.close()
        logger.info(f"Database initialized at {self.db_path}")

    async def load(self, key: str) -> dict | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value FROM dashboard_state WHERE key = ?", (key,))
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            logger.error(f"Corrupt state for '{key}', using defaults: {exc}")
            return None

    async def load_all(self) -> dict[str, dict]:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT key, value FROM dashboard_state")
            rows = await cursor.fetchall()
        finally:
            await db.close()
        state = {}
        for key, value in rows:
            try:
                state[key] = json.loads(value)
            except json.JSONDecodeError as exc:
                logger.error(f"Corrupt state for '{key}', using defaults: {exc}")
        return state

    async def save(self, key: str, value: dict) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """INSERT INTO dashboard_state (key, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, json.dumps(value)),
            )
            await db.commit()
        finally:
            await db.close()
