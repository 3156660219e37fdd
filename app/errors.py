from __future__ import annotations

from enum import Enum


class TrackingError(Exception):
    """Base class for failures on the open-recording path."""

    kind = "tracking_error"


class StoreConnectionError(TrackingError, ConnectionError):
    """Document store unreachable, or rejected our credentials/config."""

    kind = "connection_error"


class RecordTimeoutError(TrackingError, TimeoutError):
    kind = "timeout"


class UpdateError(TrackingError):
    """The store rejected the open update."""

    kind = "update_error"


class RecordOutcome(str, Enum):
    RECORDED = "recorded"
    SKIPPED = "skipped"
    # A miss is logged, never raised.
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    UPDATE_FAILED = "update_failed"
