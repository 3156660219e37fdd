from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter

import structlog
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError
from starlette.requests import Request

from app.config import get_settings
from app.db.connection import get_collection, get_connection_manager
from app.db.tracking_store import apply_open
from app.errors import RecordOutcome, RecordTimeoutError, StoreConnectionError, TrackingError, UpdateError
from app.models.schemas import OpenEvent
from app.observability.metrics import get_metrics
from app.services.client_ip import UNKNOWN_IP, resolve_client_ip

logger = structlog.get_logger(__name__)

_pending: set[asyncio.Task[RecordOutcome]] = set()


@dataclass(frozen=True)
class OpenContext:
    user_agent: str = "unknown"
    ip: str = UNKNOWN_IP
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_request(cls, request: Request) -> "OpenContext":
        settings = get_settings()
        peer = request.client.host if request.client else None
        return cls(
            user_agent=request.headers.get("user-agent") or "unknown",
            ip=resolve_client_ip(request.headers, peer, trust_edge=settings.trust_cloudflare),
            timestamp=datetime.now(timezone.utc),
        )

    def to_event(self) -> OpenEvent:
        return OpenEvent(timestamp=self.timestamp, user_agent=self.user_agent, ip=self.ip)


async def _update(tracking_id: str, context: OpenContext) -> int | None:
    settings = get_settings()
    collection = await get_collection()
    try:
        return await apply_open(
            collection,
            tracking_id,
            context.to_event(),
            max_time_ms=settings.record_open_max_time_ms,
            history_limit=settings.open_history_limit,
        )
    except ExecutionTimeout as exc:
        raise RecordTimeoutError("store exceeded its execution budget") from exc
    except ConnectionFailure as exc:
        get_connection_manager().invalidate()
        raise StoreConnectionError(str(exc)) from exc
    except PyMongoError as exc:
        raise UpdateError(str(exc)) from exc


async def record_open(tracking_id: str | None, context: OpenContext) -> RecordOutcome:
    """Record one open against ``tracking_id``. Never raises.

    The store update races a wall-clock budget; when the budget wins the
    update may still land later, which is accepted.
    """

    if not tracking_id:
        return RecordOutcome.SKIPPED

    settings = get_settings()
    start = perf_counter()
    error: TrackingError | None = None
    open_count: int | None = None
    try:
        open_count = await asyncio.wait_for(
            _update(tracking_id, context),
            timeout=settings.record_open_timeout_seconds,
        )
    except TrackingError as exc:
        error = exc
    except asyncio.TimeoutError:
        error = RecordTimeoutError(f"no store result within {settings.record_open_timeout_seconds}s")

    elapsed_ms = round((perf_counter() - start) * 1000.0, 2)

    if error is not None:
        if isinstance(error, RecordTimeoutError):
            outcome = RecordOutcome.TIMEOUT
        elif isinstance(error, StoreConnectionError):
            outcome = RecordOutcome.CONNECTION_FAILED
        else:
            outcome = RecordOutcome.UPDATE_FAILED
        logger.warning(
            "open_record_failed",
            tracking_id=tracking_id,
            error_kind=error.kind,
            error=str(error),
            elapsed_ms=elapsed_ms,
        )
    elif open_count is None:
        outcome = RecordOutcome.NOT_FOUND
        logger.info("open_record_miss", tracking_id=tracking_id, elapsed_ms=elapsed_ms)
    else:
        outcome = RecordOutcome.RECORDED
        logger.info(
            "open_recorded",
            tracking_id=tracking_id,
            open_count=open_count,
            ip=context.ip,
            elapsed_ms=elapsed_ms,
        )

    get_metrics().observe_open(outcome.value, elapsed_ms)
    return outcome


def schedule_record_open(tracking_id: str | None, context: OpenContext) -> asyncio.Task[RecordOutcome]:
    """Start recording in the background; the caller does not wait for it."""

    task = asyncio.create_task(record_open(tracking_id, context))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain_pending(timeout: float | None = None) -> None:
    """Wait for in-flight recordings (shutdown, tests)."""

    if not _pending:
        return
    _, not_done = await asyncio.wait(set(_pending), timeout=timeout)
    if not_done:
        logger.warning("open_records_abandoned", count=len(not_done))
