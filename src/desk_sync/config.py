"""Environment-driven configuration for the server and the polling client.

Values come from the process environment, optionally seeded from a `.env`
file in the working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_PORT = 7777
DEFAULT_DB_PATH = Path.home() / ".desk-sync" / "state.db"

# Client cadence and suppression windows (ms)
SETTINGS_POLL_MS = 1500
TIMER_POLL_MS = 1000
CYCLE_GRACE_MS = 5000
TIMER_SETTINGS_GRACE_MS = 3000


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_env(path: Optional[Path] = None) -> None:
    """Load a .env file without overriding variables already set."""
    load_dotenv(path or Path.cwd() / ".env")


@dataclass
class ServerConfig:
    db_path: Path = DEFAULT_DB_PATH
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    auth_token: Optional[str] = None  # None disables bearer checks
    reset_clears_cycles: bool = False

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            db_path=Path(os.environ.get("DESK_SYNC_DB", str(DEFAULT_DB_PATH))).expanduser(),
            host=os.environ.get("DESK_SYNC_HOST", "0.0.0.0"),
            port=int(os.environ.get("DESK_SYNC_PORT", DEFAULT_PORT)),
            auth_token=os.environ.get("DESK_SYNC_TOKEN") or None,
            reset_clears_cycles=_env_bool("DESK_SYNC_RESET_CLEARS_CYCLES"),
        )


@dataclass
class ClientConfig:
    base_url: str = f"http://localhost:{DEFAULT_PORT}"
    auth_token: Optional[str] = None
    timeout: float = 5.0
    push_debounce_ms: int = 300
    settings_poll_ms: int = SETTINGS_POLL_MS
    timer_poll_ms: int = TIMER_POLL_MS

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=os.environ.get("DESK_SYNC_URL", f"http://localhost:{DEFAULT_PORT}").rstrip("/"),
            auth_token=os.environ.get("DESK_SYNC_TOKEN") or None,
            timeout=float(os.environ.get("DESK_SYNC_TIMEOUT", "5")),
            push_debounce_ms=int(os.environ.get("DESK_SYNC_PUSH_DEBOUNCE_MS", "300")),
        )
