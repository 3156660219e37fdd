from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from app.config import get_settings
from app.db.connection import ConnectionManager, set_connection_manager
from app.main import app
from app.observability.metrics import reset_metrics
from app.services.open_recorder import drain_pending


def _set_path(doc: dict, dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    target = doc
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


def _project(doc: dict, projection: dict | None) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [key for key, flag in projection.items() if flag]
    if included:
        return {key: doc[key] for key in included if key in doc}
    return {key: value for key, value in doc.items() if key not in projection}


class _UpdateResult:
    def __init__(self, matched_count: int) -> None:
        self.matched_count = matched_count


class FakeCollection:
    """Async stand-in for a PyMongo collection, covering what the store uses.

    Each write mutates the document with no await in between, which is the
    same single-document atomicity the real server gives us.
    """

    def __init__(self) -> None:
        self.docs: list[dict] = []
        self.indexes: list[tuple[str, bool]] = []
        self.calls: list[dict] = []
        self.delay: float = 0.0
        self.fail_with: Exception | None = None
        self.index_error: Exception | None = None

    def _match(self, filter: dict) -> dict | None:
        for doc in self.docs:
            if all(doc.get(key) == value for key, value in filter.items()):
                return doc
        return None

    async def create_index(self, key: str, unique: bool = False) -> str:
        if self.index_error is not None:
            raise self.index_error
        if (key, unique) not in self.indexes:
            self.indexes.append((key, unique))
        return f"{key}_1"

    async def insert_one(self, doc: dict) -> None:
        # Like the server: uniqueness only where a unique index exists.
        for key in (key for key, unique in self.indexes if unique):
            if any(existing.get(key) == doc.get(key) for existing in self.docs):
                raise DuplicateKeyError(f"duplicate {key}")
        self.docs.append(copy.deepcopy(doc))

    async def find_one(self, filter: dict, projection: dict | None = None) -> dict | None:
        doc = self._match(filter)
        return None if doc is None else _project(doc, projection)

    async def find_one_and_update(
        self,
        filter: dict,
        update: dict,
        projection: dict | None = None,
        return_document: Any = None,
        **kwargs: Any,
    ) -> dict | None:
        self.calls.append({"filter": filter, "update": update, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

        doc = self._match(filter)
        if doc is None:
            return None
        for path, value in update.get("$set", {}).items():
            _set_path(doc, path, copy.deepcopy(value))
        for path, value in update.get("$push", {}).items():
            items = doc.setdefault(path, [])
            if isinstance(value, dict) and "$each" in value:
                items.extend(copy.deepcopy(value["$each"]))
                if "$slice" in value:
                    doc[path] = items[value["$slice"]:]
            else:
                items.append(copy.deepcopy(value))
        for path, amount in update.get("$inc", {}).items():
            doc[path] = doc.get(path, 0) + amount
        return _project(doc, projection)

    async def update_one(self, filter: dict, update: dict) -> _UpdateResult:
        doc = self._match(filter)
        if doc is None:
            return _UpdateResult(0)
        for path, value in update.get("$set", {}).items():
            _set_path(doc, path, copy.deepcopy(value))
        return _UpdateResult(1)


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())


class _FakeAdmin:
    def __init__(self, factory: "FakeClientFactory") -> None:
        self._factory = factory

    async def command(self, name: str) -> dict:
        assert name == "ping"
        if self._factory.connect_delay:
            await asyncio.sleep(self._factory.connect_delay)
        if self._factory.fail_ping:
            raise ServerSelectionTimeoutError("no servers available")
        return {"ok": 1.0}


class FakeMongoClient:
    def __init__(self, factory: "FakeClientFactory", uri: str, options: dict) -> None:
        self.uri = uri
        self.options = options
        self.admin = _FakeAdmin(factory)
        self.closed = False
        self._databases = factory.databases

    def __getitem__(self, name: str) -> FakeDatabase:
        return self._databases.setdefault(name, FakeDatabase())

    async def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Builds fake clients that all share one in-memory server."""

    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.clients: list[FakeMongoClient] = []
        self.connect_delay: float = 0.0
        self.fail_ping = False

    def __call__(self, uri: str, **options: Any) -> FakeMongoClient:
        client = FakeMongoClient(self, uri, options)
        self.clients.append(client)
        return client

    @property
    def collection(self) -> FakeCollection:
        settings = get_settings()
        return self.databases.setdefault(settings.database_name, FakeDatabase())[settings.mongodb_collection]


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> FakeClientFactory:
    monkeypatch.setenv("MONGODB_URI", "mongodb://fake-host:27017/tracker-test")
    monkeypatch.setenv("MONGODB_COLLECTION", "emails")
    monkeypatch.setenv("TRACKING_BASE_URL", "https://track.example.com")
    get_settings.cache_clear()
    reset_metrics()

    factory = FakeClientFactory()
    manager = ConnectionManager(client_factory=factory)
    set_connection_manager(manager)

    yield factory

    set_connection_manager(None)
    get_settings.cache_clear()


@pytest.fixture
def fake_store(test_environment: FakeClientFactory) -> FakeClientFactory:
    return test_environment


@pytest.fixture
def collection(fake_store: FakeClientFactory) -> FakeCollection:
    return fake_store.collection


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, client=("203.0.113.9", 51234))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await drain_pending()
