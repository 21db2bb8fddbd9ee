"""Error taxonomy shared by the server and the reconciling client."""


class DeskSyncError(Exception):
    """Base class for desk-sync errors."""


class NetworkFailure(DeskSyncError):
    """Transport error, timeout, or unexpected HTTP status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthFailure(DeskSyncError):
    """Server rejected the bearer credential. Never retried automatically."""


class ValidationFailure(DeskSyncError):
    """Local input rejected before any mutation or network call."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field
