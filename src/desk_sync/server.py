"""
Desk-Sync: FastAPI server holding the authoritative dashboard state.

This server provides:
- The display cycle list (full-list pushes and item-level edits)
- Display settings with partial-merge updates
- The focus timer (actions and settings)
- A recent-log buffer for operator tools
"""

import asyncio
import logging
import secrets
import time
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Deque, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ServerConfig
from .cycle import CycleListStore
from .display_settings import DisplaySettings
from .models import CycleItem, ItemType, new_item_problem
from .storage import CYCLE_KEY, DISPLAY_KEY, TIMER_SETTINGS_KEY, StateRepository
from .timer import SETTINGS_WIRE_NAMES, TimerMachine, TimerSettings

logger = logging.getLogger("desk_sync.server")

# ============ Server-side Log Buffer ============

# Circular buffer of recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records into the circular buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
# Attach to the package root so timer/cycle/storage logs are captured too
_package_logger = logging.getLogger("desk_sync")
_package_logger.setLevel(logging.INFO)
# Console output is filtered by the CLI handler's level (LOG_LEVEL)
if not any(isinstance(h, LogBufferHandler) for h in _package_logger.handlers):
    _package_logger.addHandler(buffer_handler)

# Also capture uvicorn request/startup logs
uvicorn_logger = logging.getLogger("uvicorn")
if not any(isinstance(h, LogBufferHandler) for h in uvicorn_logger.handlers):
    uvicorn_logger.addHandler(buffer_handler)


# ============ Pydantic Models ============

class SettingsUpdateRequest(BaseModel):
    cycleItems: Optional[List[CycleItem]] = None
    autoPlay: Optional[bool] = None
    frameDuration: Optional[int] = None
    espRefreshDuration: Optional[int] = None
    gifFps: Optional[int] = None
    showHeaders: Optional[bool] = None
    displayRotation: Optional[int] = None
    displayScale: Optional[str] = None


class AddItemRequest(BaseModel):
    type: ItemType
    label: Optional[str] = None
    enabled: Optional[bool] = None
    duration: Optional[int] = None
    text: Optional[str] = None
    style: Optional[str] = None
    size: Optional[int] = None
    bitmap: Optional[List[int]] = None
    width: Optional[int] = None
    height: Optional[int] = None
    qrData: Optional[str] = None
    targetDate: Optional[str] = None
    targetLabel: Optional[str] = None


class UpdateItemRequest(BaseModel):
    label: Optional[str] = None
    enabled: Optional[bool] = None
    duration: Optional[int] = None
    text: Optional[str] = None
    style: Optional[str] = None
    size: Optional[int] = None
    qrData: Optional[str] = None
    targetDate: Optional[str] = None
    targetLabel: Optional[str] = None


class ReorderRequest(BaseModel):
    ids: List[str]


class TimerActionRequest(BaseModel):
    action: str  # "start", "pause", "resume", "reset", "skip"


class TimerSettingsRequest(BaseModel):
    workDuration: Optional[int] = None
    breakDuration: Optional[int] = None
    longBreak: Optional[int] = None
    cyclesUntilLong: Optional[int] = None
    showInCycle: Optional[bool] = None


# ============ Dashboard State ============

class DashboardState:
    """Canonical state with one lock per entity.

    Mutations on the same entity are serialized; different entities are
    independent.
    """

    def __init__(self, repo: StateRepository, clock: Callable[[], float], reset_clears_cycles: bool):
        self.repo = repo
        self._clock = clock
        self._reset_clears_cycles = reset_clears_cycles
        self.cycle = CycleListStore()
        self.display = DisplaySettings()
        self.timer = TimerMachine(clock=clock, reset_clears_cycles=reset_clears_cycles)
        self.cycle_lock = asyncio.Lock()
        self.display_lock = asyncio.Lock()
        self.timer_lock = asyncio.Lock()

    async def load(self) -> None:
        saved = await self.repo.load_all()
        if CYCLE_KEY in saved:
            self.cycle = CycleListStore.from_dict(saved[CYCLE_KEY])
        if DISPLAY_KEY in saved:
            self.display = DisplaySettings.from_dict(saved[DISPLAY_KEY])
        if TIMER_SETTINGS_KEY in saved:
            self.timer = TimerMachine(
                TimerSettings.from_dict(saved[TIMER_SETTINGS_KEY]),
                clock=self._clock,
                reset_clears_cycles=self._reset_clears_cycles,
            )
        logger.info(f"Loaded state: {len(self.cycle.items())} cycle items")

    def settings_snapshot(self) -> dict:
        return {
            "cycleItems": [item.to_dict() for item in self.cycle.items()],
            **self.display.to_dict(),
        }

    def cycle_snapshot(self) -> dict:
        return {"cycleItems": [item.to_dict() for item in self.cycle.items()]}

    async def persist_cycle(self) -> None:
        await self.repo.save(CYCLE_KEY, self.cycle.to_dict())

    async def persist_display(self) -> None:
        await self.repo.save(DISPLAY_KEY, self.display.to_dict())

    async def persist_timer_settings(self) -> None:
        await self.repo.save(TIMER_SETTINGS_KEY, self.timer.settings.to_dict())


def _timer_fields(wire: dict) -> dict:
    """Map wire names (workDuration, longBreak, ...) to TimerSettings attributes."""
    by_wire = {w: attr for attr, w in SETTINGS_WIRE_NAMES.items()}
    return {by_wire[k]: v for k, v in wire.items() if k in by_wire and v is not None}


def get_state(request: Request) -> DashboardState:
    return request.app.state.dashboard


def require_token(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """Bearer check. Disabled when no token is configured."""
    expected = request.app.state.config.auth_token
    if not expected:
        return
    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not secrets.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ============ Routes ============

router = APIRouter(prefix="/api", dependencies=[Depends(require_token)])


@router.get("/settings")
async def get_settings(state: DashboardState = Depends(get_state)):
    return state.settings_snapshot()


@router.post("/settings")
async def update_settings(request: SettingsUpdateRequest, state: DashboardState = Depends(get_state)):
    """Partial merge. A cycleItems list replaces the whole list."""
    update = request.model_dump(exclude_unset=True)
    cycle_items = update.pop("cycleItems", None)

    if cycle_items is not None:
        async with state.cycle_lock:
            state.cycle.replace_all(request.cycleItems)
            await state.persist_cycle()

    if update:
        async with state.display_lock:
            changes = state.display.apply(update)
            await state.persist_display()
        if changes:
            logger.info(f"Settings updated: {', '.join(changes)}")

    return state.settings_snapshot()


@router.get("/cycle")
async def get_cycle(state: DashboardState = Depends(get_state)):
    return state.cycle_snapshot()


@router.post("/cycle/items")
async def add_cycle_item(request: AddItemRequest, state: DashboardState = Depends(get_state)):
    payload = request.model_dump(exclude_unset=True, exclude={"type"})
    problem = new_item_problem(request.type, payload)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    async with state.cycle_lock:
        item = state.cycle.add(request.type, **payload)
        await state.persist_cycle()
    return {"item": item.to_dict(), **state.cycle_snapshot()}


@router.post("/cycle/items/{item_id}/toggle")
async def toggle_cycle_item(item_id: str, state: DashboardState = Depends(get_state)):
    async with state.cycle_lock:
        try:
            item = state.cycle.toggle(item_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Cycle item not found: {item_id}")
        await state.persist_cycle()
    return {"item": item.to_dict(), **state.cycle_snapshot()}


@router.patch("/cycle/items/{item_id}")
async def update_cycle_item(item_id: str, request: UpdateItemRequest, state: DashboardState = Depends(get_state)):
    fields = request.model_dump(exclude_unset=True)
    async with state.cycle_lock:
        try:
            item = state.cycle.update(item_id, **fields)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Cycle item not found: {item_id}")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        await state.persist_cycle()
    return {"item": item.to_dict(), **state.cycle_snapshot()}


@router.delete("/cycle/items/{item_id}")
async def delete_cycle_item(item_id: str, state: DashboardState = Depends(get_state)):
    async with state.cycle_lock:
        try:
            state.cycle.delete(item_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Cycle item not found: {item_id}")
        await state.persist_cycle()
    return state.cycle_snapshot()


@router.post("/cycle/reorder")
async def reorder_cycle(request: ReorderRequest, state: DashboardState = Depends(get_state)):
    async with state.cycle_lock:
        state.cycle.reorder(request.ids)
        await state.persist_cycle()
    return state.cycle_snapshot()


@router.get("/pomodoro")
async def get_timer(state: DashboardState = Depends(get_state)):
    async with state.timer_lock:
        return state.timer.snapshot()


@router.post("/pomodoro")
async def timer_action(request: TimerActionRequest, state: DashboardState = Depends(get_state)):
    async with state.timer_lock:
        try:
            return state.timer.apply(request.action)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))


@router.put("/pomodoro")
async def update_timer_settings(request: TimerSettingsRequest, state: DashboardState = Depends(get_state)):
    async with state.timer_lock:
        changed = state.timer.update_settings(**_timer_fields(request.model_dump(exclude_unset=True)))
        if changed:
            await state.persist_timer_settings()
        return state.timer.snapshot()


@router.post("/reset")
async def reset_dashboard(state: DashboardState = Depends(get_state)):
    """Restore the default cycle list and display settings."""
    async with state.cycle_lock:
        state.cycle.reset()
        await state.persist_cycle()
    async with state.display_lock:
        state.display = DisplaySettings()
        await state.persist_display()
    logger.info("🔄 Dashboard reset to defaults")
    return {"status": "reset_complete"}


@router.get("/logs/recent")
async def get_recent_logs(limit: int = 20):
    entries = list(log_buffer)
    return {"logs": entries[-limit:] if limit > 0 else []}


# ============ App Factory ============

def create_app(config: Optional[ServerConfig] = None, clock: Callable[[], float] = time.time) -> FastAPI:
    config = config or ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        repo = StateRepository(config.db_path)
        await repo.init_tables()
        state = DashboardState(repo, clock, config.reset_clears_cycles)
        await state.load()
        app.state.dashboard = state
        logger.info(f"Desk-Sync ready (auth {'enabled' if config.auth_token else 'disabled'})")
        yield
        logger.info("Desk-Sync stopping")

    app = FastAPI(
        title="Desk-Sync",
        description="Authoritative state for the desk display dashboard",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail, "status": exc.status_code})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"Invalid request body: {problems}", "status": 400})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(router)
    return app
