"""Shared fixtures: local store, in-memory remote authority, engine."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from fieldsync.client.connectivity import ConnectivityMonitor
from fieldsync.client.store import LocalStore
from fieldsync.client.sync.engine import ReconciliationEngine
from fieldsync.core.errors import NotFoundError, RemoteRejected, Unreachable
from fieldsync.core.types import Collection, Session


class FakeRemote:
    """In-memory remote authority.

    Attributes:
        records: Server-side state per collection, keyed by server id.
        calls: (method, collection, id_or_payload) for every call made.
        unreachable: Raise Unreachable on every call.
        reject: Predicate (method, payload) -> True to answer 422.
        on_call: Hook run inside each mutating call, before it returns.
    """

    def __init__(self) -> None:
        self.records: dict[Collection, dict[int, dict[str, Any]]] = {c: {} for c in Collection}
        self.calls: list[tuple[str, Collection, Any]] = []
        self.idempotency_keys: list[str | None] = []
        self.unreachable = False
        self.reject: Callable[[str, dict[str, Any]], bool] | None = None
        self.on_call: Callable[[], None] | None = None
        self._next_id = 1
        self._seen: dict[str, dict[str, Any]] = {}

    def _check(self, method: str, payload: dict[str, Any]) -> None:
        if self.unreachable:
            raise Unreachable("connection refused")
        if self.reject is not None and self.reject(method, payload):
            raise RemoteRejected("validation failed", 422)
        if self.on_call is not None:
            self.on_call()

    def seed(self, collection: Collection, payload: dict[str, Any]) -> dict[str, Any]:
        """Put a record on the server directly."""
        record = {**payload, "id": self._next_id}
        self.records[collection][self._next_id] = record
        self._next_id += 1
        return dict(record)

    def list_records(self, collection: Collection, **filters: Any) -> list[dict[str, Any]]:
        self.calls.append(("list", collection, filters))
        if self.unreachable:
            raise Unreachable("connection refused")
        return [
            dict(r) for r in self.records[collection].values()
            if all(r.get(k) == v for k, v in filters.items())
        ]

    def create_record(
        self,
        collection: Collection,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("create", collection, payload))
        self.idempotency_keys.append(idempotency_key)
        self._check("create", payload)
        if idempotency_key and idempotency_key in self._seen:
            return dict(self._seen[idempotency_key])
        record = self.seed(collection, payload)
        if idempotency_key:
            self._seen[idempotency_key] = record
        return record

    def update_record(
        self,
        collection: Collection,
        record_id: int,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("update", collection, record_id))
        self.idempotency_keys.append(idempotency_key)
        self._check("update", payload)
        if record_id not in self.records[collection]:
            raise NotFoundError("not found", 404)
        record = {**payload, "id": record_id}
        self.records[collection][record_id] = record
        return dict(record)

    def delete_record(
        self,
        collection: Collection,
        record_id: int,
        idempotency_key: str | None = None,
    ) -> None:
        self.calls.append(("delete", collection, record_id))
        self.idempotency_keys.append(idempotency_key)
        self._check("delete", {"id": record_id})
        if record_id not in self.records[collection]:
            raise NotFoundError("not found", 404)
        del self.records[collection][record_id]

    def mutating_calls(self) -> list[tuple[str, Collection, Any]]:
        return [c for c in self.calls if c[0] != "list"]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalStore]:
    """Create a LocalStore instance."""
    s = LocalStore(tmp_path / "store.db")
    yield s
    s.close()


@pytest.fixture
def remote() -> FakeRemote:
    """Create an in-memory remote authority."""
    return FakeRemote()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    """Create a monitor that starts reachable."""
    return ConnectivityMonitor(initially_reachable=True)


@pytest.fixture
def session(store: LocalStore) -> Session:
    """Store a logged-in session."""
    s = Session(user={"id": 7, "username": "nurse"}, token="tok-1")
    store.save_session(s)
    return s


@pytest.fixture
def engine(
    store: LocalStore, remote: FakeRemote, monitor: ConnectivityMonitor
) -> Iterator[ReconciliationEngine]:
    """Create an engine wired to the fake remote."""
    e = ReconciliationEngine(store, remote, monitor, retry_sleep=lambda _: None)
    yield e
    e.shutdown(timeout=2.0)
