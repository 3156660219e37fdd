from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable

import structlog
from pymongo import AsyncMongoClient, monitoring
from pymongo.errors import PyMongoError

from app.config import get_settings
from app.db.tracking_store import ensure_indexes
from app.errors import StoreConnectionError
from app.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

ClientFactory = Callable[..., Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class _TopologyObserver(monitoring.TopologyListener):
    """Tells the manager when a client's topology loses its last usable server."""

    def __init__(self, on_lost: Callable[["_TopologyObserver"], None]) -> None:
        self._on_lost = on_lost

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        pass

    def description_changed(self, event: monitoring.TopologyDescriptionChangedEvent) -> None:
        if event.previous_description.has_readable_server() and not event.new_description.has_readable_server():
            self._on_lost(self)

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        self._on_lost(self)


def default_client_factory(uri: str, **options: Any) -> AsyncMongoClient:
    return AsyncMongoClient(uri, **options)


class ConnectionManager:
    """Process-wide holder of the single document-store client.

    Callers that arrive while an attempt is in flight wait on that attempt
    instead of starting their own, so a cold start opens one connection.
    """

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or default_client_factory
        self._client: Any | None = None
        self._stale: Any | None = None
        self._observer: _TopologyObserver | None = None
        self._state = ConnectionState.DISCONNECTED
        self._pending: asyncio.Task[Any] | None = None
        self.connect_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_healthy(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._client is not None

    async def acquire(self) -> Any:
        while True:
            if self.is_healthy():
                return self._client

            if self._pending is None:
                self._pending = asyncio.create_task(self._establish())
                self._pending.add_done_callback(self._attempt_finished)

            # Shielded: a caller giving up must not abort the shared attempt.
            await asyncio.shield(self._pending)

    def invalidate(self) -> None:
        """Drop the cached client; the next acquire() reconnects."""

        if self._client is None:
            return
        logger.warning("store_connection_invalidated")
        self._stale, self._client = self._client, None
        self._observer = None
        if self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._observer = None
        for client in (self._client, self._stale):
            if client is not None:
                await _close_quietly(client)
        self._client = None
        self._stale = None
        self._state = ConnectionState.DISCONNECTED

    async def _establish(self) -> Any:
        settings = get_settings()
        self._state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        get_metrics().observe_store_connect()

        stale, self._stale = self._stale, None
        if self._client is not None:
            stale, self._client = self._client, None
        if stale is not None:
            await _close_quietly(stale)

        observer = _TopologyObserver(self._on_topology_lost)
        client = None
        try:
            client = self._client_factory(
                settings.mongodb_uri,
                maxPoolSize=settings.mongodb_max_pool_size,
                connectTimeoutMS=settings.mongodb_connect_timeout_ms,
                maxIdleTimeMS=settings.mongodb_max_idle_time_ms,
                serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
                event_listeners=[observer],
                tz_aware=True,
                appname="email-open-tracker",
            )
            await client.admin.command("ping")
        except (PyMongoError, OSError, ValueError) as exc:
            get_metrics().observe_store_connect_failure()
            logger.error("store_connect_failed", error=str(exc), error_type=type(exc).__name__)
            if client is not None:
                await _close_quietly(client)
            self._client = None
            self._observer = None
            self._state = ConnectionState.DISCONNECTED
            raise StoreConnectionError(f"Could not connect to document store: {type(exc).__name__}") from exc

        await _prepare_collection(client)

        self._client = client
        self._observer = observer
        self._state = ConnectionState.CONNECTED
        logger.info("store_connected", attempt=self.connect_attempts)
        return client

    def _attempt_finished(self, task: asyncio.Task[Any]) -> None:
        if self._pending is task:
            self._pending = None
        if task.cancelled():
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
            return
        # Every waiter may have given up already; mark the error as retrieved.
        task.exception()

    def _on_topology_lost(self, observer: _TopologyObserver) -> None:
        if observer is self._observer and self._state is ConnectionState.CONNECTED:
            self.invalidate()


async def _prepare_collection(client: Any) -> None:
    """Unique trackingId/messageId indexes, built on every fresh client."""

    settings = get_settings()
    collection = client[settings.database_name][settings.mongodb_collection]
    try:
        await ensure_indexes(collection)
    except PyMongoError as exc:
        # Opens still record without them; the next reconnect tries again.
        logger.error("store_index_setup_failed", error=str(exc), error_type=type(exc).__name__)


async def _close_quietly(client: Any) -> None:
    try:
        await client.close()
    except PyMongoError as exc:
        logger.warning("store_close_failed", error=str(exc))


_manager: ConnectionManager | None = None


def set_connection_manager(manager: ConnectionManager | None) -> None:
    global _manager
    _manager = manager


def get_connection_manager() -> ConnectionManager:
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager


async def get_collection(name: str | None = None) -> Any:
    settings = get_settings()
    client = await get_connection_manager().acquire()
    return client[settings.database_name][name or settings.mongodb_collection]
