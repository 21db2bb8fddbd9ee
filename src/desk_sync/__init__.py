"""State synchronization for the desk display dashboard."""

from .client import DashboardClient
from .cycle import CycleListStore
from .errors import AuthFailure, DeskSyncError, NetworkFailure, ValidationFailure
from .models import CycleItem, ItemType
from .poller import DashboardPoller, build_dashboard
from .reconciler import CycleListEditor, OptimisticEditQueue, PushTracker, TimerSettingsEditor
from .timer import TimerAction, TimerMachine, TimerMode, TimerSession, TimerSettings

__all__ = [
    "AuthFailure",
    "CycleItem",
    "CycleListEditor",
    "CycleListStore",
    "DashboardClient",
    "DashboardPoller",
    "DeskSyncError",
    "ItemType",
    "NetworkFailure",
    "OptimisticEditQueue",
    "PushTracker",
    "TimerAction",
    "TimerMachine",
    "TimerMode",
    "TimerSession",
    "TimerSettings",
    "TimerSettingsEditor",
    "ValidationFailure",
    "build_dashboard",
]
