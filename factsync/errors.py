"""Exception types raised and absorbed by the sync engine."""

from typing import Optional


class FactSyncError(Exception):
    """Base class for all telemetry sync errors."""


class ConfigurationError(FactSyncError):
    """Malformed sink URL/key or invalid option. Fatal to the current cycle only."""


class ConsentDisabled(FactSyncError):
    """The user opted out of analytics sharing. Not a failure, a no-op branch."""


class NetworkError(FactSyncError):
    """Transport failure or timeout while talking to the sink."""


class RemoteRejection(FactSyncError):
    """The sink answered with a non-2xx status."""

    def __init__(self, status: int, body: Optional[str] = None):
        self.status = status
        self.body = body
        message = f"sink rejected request with status {status}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)


class IdentityDegraded(FactSyncError):
    """Client/session identity could not be generated or persisted."""


class ConcurrencyBusy(FactSyncError):
    """A sync cycle is already running and did not finish in time."""


class QueueWriteError(FactSyncError):
    """A pending queue append could not be persisted."""
