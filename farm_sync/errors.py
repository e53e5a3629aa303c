"""Error taxonomy for the synchronization engine."""


class FarmSyncError(Exception):
    """Base class for farm-sync errors."""


class TransportError(FarmSyncError):
    """Push channel could not be opened, read or written."""


class NotConnected(FarmSyncError):
    """An operation needing a live connection was attempted without one."""


class MalformedMessage(FarmSyncError):
    """Inbound frame could not be decoded into a known message."""


class ApiError(FarmSyncError):
    """Bulk-pull request failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
