"""Exception taxonomy for mindmate.

Per-intent failures never escape the reconciler; they are converted to
entries in SyncOutcome.errors. Envelope and startup errors propagate.
"""

from typing import Optional


class MindmateError(Exception):
    """Base exception for mindmate errors."""

    pass


class RequestShapeError(MindmateError):
    """The batch envelope is malformed (e.g. ``queue`` is not a list)."""

    pass


class IntentValidationError(MindmateError):
    """A single intent's payload does not match its declared kind."""

    def __init__(self, change_id: str, message: str):
        super().__init__(message)
        self.change_id = change_id


class IntegrityError(MindmateError):
    """Wrapped ciphertext is malformed or failed authentication."""

    pass


class StartupConfigError(MindmateError):
    """Process configuration is invalid; the service must not start."""

    pass


class StorageError(MindmateError):
    """The record store failed to complete an operation."""

    pass


class TransportError(MindmateError):
    """The client could not reach the sync endpoint or got a bad response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
