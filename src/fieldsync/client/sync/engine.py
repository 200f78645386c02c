"""Reconciliation engine: local-first mutations and queue replay.

State machine per record:

    | From     | Event                     | To       |
    |----------|---------------------------|----------|
    | synced   | local mutation            | pending  |
    | pending  | remote confirms           | synced   |
    | pending  | remote rejects / fails    | error    |
    | error    | next pass confirms        | synced   |

Key properties:
- Read-your-writes: ``mutate`` always leaves the caller's write visible in
  the local store, online or offline.
- Per-record ordering: a record with queued work is never written to the
  remote authority directly; new mutations join the queue behind it.
- Single-flight replay: a second ``sync_pending_operations`` call while
  one is running returns None immediately.
- Logout race: a remote answer that arrives after the session was cleared
  or replaced is discarded.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fieldsync.client.connectivity import ConnectivityEvent, ConnectivityMonitor
from fieldsync.client.store import LocalStore
from fieldsync.client.sync.queue import PendingOperationQueue
from fieldsync.client.sync.retry import retry_with_backoff
from fieldsync.client.sync.types import (
    RefreshResult,
    SyncCompleteCallback,
    SyncInfo,
    SyncResult,
)
from fieldsync.core.errors import (
    NotFoundError,
    RecordNotFound,
    RemoteRejected,
    Unauthenticated,
    Unreachable,
)
from fieldsync.core.types import (
    Collection,
    OperationKind,
    PendingOperation,
    Record,
    Session,
    SyncStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 300.0  # seconds
PERIODIC_JOB_ID = "pending_sync"


class RemoteAuthority(Protocol):
    """Record operations the engine needs from the remote authority.

    HTTPClient implements this interface; tests use an in-memory fake.
    """

    def list_records(self, collection: Collection, **filters: Any) -> list[dict[str, Any]]: ...

    def create_record(
        self,
        collection: Collection,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]: ...

    def update_record(
        self,
        collection: Collection,
        record_id: int,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]: ...

    def delete_record(
        self,
        collection: Collection,
        record_id: int,
        idempotency_key: str | None = None,
    ) -> None: ...


class ReconciliationEngine:
    """Mirrors local mutations to the remote authority.

    Usage:
        engine = ReconciliationEngine(store, client, monitor)
        engine.start_periodic_sync()

        record = engine.mutate(Collection.CHILDREN, OperationKind.CREATE, {...})
        ...
        engine.shutdown()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteAuthority,
        monitor: ConnectivityMonitor,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        refresh_retries: int = 3,
        retry_sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Durable local store.
            remote: Remote authority client.
            monitor: Connectivity monitor; the engine subscribes to it.
            sync_interval: Seconds between periodic replay passes.
            refresh_retries: Retries for a collection pull failing with 5xx.
            retry_sleep: Sleep function used between refresh retries.
        """
        self._store = store
        self._remote = remote
        self._monitor = monitor
        self._queue = PendingOperationQueue(store)
        self._sync_interval = sync_interval
        self._refresh_retries = refresh_retries
        self._retry_sleep = retry_sleep

        self._sync_lock = threading.Lock()
        self._syncing = False
        self._last_result: SyncResult | None = None
        self._scheduler: BackgroundScheduler | None = None
        self._trigger_thread: threading.Thread | None = None

        self._on_sync_complete: SyncCompleteCallback | None = None

        self._monitor.add_listener(self._on_connectivity_change)

    @property
    def queue(self) -> PendingOperationQueue:
        """The pending-operation queue."""
        return self._queue

    @property
    def is_syncing(self) -> bool:
        """Whether a replay pass is running."""
        return self._syncing

    @property
    def is_periodic_sync_running(self) -> bool:
        return self._scheduler is not None

    def set_on_sync_complete(self, callback: SyncCompleteCallback | None) -> None:
        """Set callback invoked with the result of every replay pass."""
        self._on_sync_complete = callback

    # === Session helpers ===

    def _require_session(self) -> Session:
        session = self._store.get_session()
        if session is None:
            raise Unauthenticated("No active session, login required")
        return session

    def _session_unchanged(self, session: Session) -> bool:
        current = self._store.get_session()
        return current is not None and current.token == session.token

    # === Mutations ===

    def mutate(
        self,
        collection: Collection,
        kind: OperationKind,
        payload: dict[str, Any] | None = None,
        key: str | None = None,
    ) -> Record:
        """Apply a local mutation, mirroring it remotely when possible.

        When the remote authority is reachable and the record has no queued
        work, the mutation is sent immediately and written through as
        synced. Otherwise (or if the call fails) it is stored as pending
        and queued for replay.

        A record that never reached the server and has no queued work
        (its create was discarded) is created again on update and removed
        locally on delete.

        Args:
            collection: Target collection.
            kind: create, update or delete.
            payload: Full record payload (create and update).
            key: Internal key of the record (update and delete).

        Returns:
            The record as now held locally. For a delete, the removed
            record (or its pending tombstone).

        Raises:
            Unauthenticated: If there is no session, or it was cleared while
                the remote call was in flight.
            RecordNotFound: If key does not name a live record.
            ValueError: If payload or key is missing for the kind.
            StoreUnavailable: If the local store fails.
        """
        session = self._require_session()

        existing: Record | None = None
        if kind == OperationKind.CREATE:
            if payload is None:
                raise ValueError("create requires a payload")
            key = uuid.uuid4().hex
        else:
            if key is None:
                raise ValueError(f"{kind.value} requires a record key")
            existing = self._store.get(collection, key)
            if existing is None:
                raise RecordNotFound(f"No {collection.value} record with key {key}")
            if kind == OperationKind.UPDATE and payload is None:
                raise ValueError("update requires a payload")

        server_id = existing.id if existing else None
        if existing is not None and server_id is None and not self._queue.has_pending(
            collection, key
        ):
            # Local-only record whose create was discarded
            if kind == OperationKind.DELETE:
                self._store.delete(collection, key)
                existing.deleted = True
                logger.info(f"Deleted local-only {collection.value}/{key}")
                return existing
            kind = OperationKind.CREATE

        can_send = (
            self._monitor.is_reachable
            and not self._queue.has_pending(collection, key)
            and (kind == OperationKind.CREATE or server_id is not None)
        )

        if can_send:
            try:
                response = self._send(collection, kind, server_id, payload, uuid.uuid4().hex)
            except Unreachable as e:
                self._monitor.report_failure(e)
                logger.info(f"{kind.value} on {collection.value} queued: {e}")
            except RemoteRejected as e:
                logger.warning(f"{kind.value} on {collection.value} rejected, queued: {e}")
            else:
                if not self._session_unchanged(session):
                    raise Unauthenticated("Session ended while the request was in flight")
                return self._write_through(collection, kind, key, existing, payload, response)

        return self._apply_pending(collection, kind, key, existing, payload, session)

    def _send(
        self,
        collection: Collection,
        kind: OperationKind,
        server_id: int | None,
        payload: dict[str, Any] | None,
        idempotency_key: str,
    ) -> dict[str, Any] | None:
        """Issue the remote call for one mutation.

        A completed call is reported to the monitor as proof of
        reachability.
        """
        response = None
        if kind == OperationKind.CREATE:
            response = self._remote.create_record(
                collection, payload or {}, idempotency_key=idempotency_key
            )
        elif server_id is None:
            raise RemoteRejected(f"{kind.value} needs a server id, record was never created")
        elif kind == OperationKind.UPDATE:
            response = self._remote.update_record(
                collection, server_id, payload or {}, idempotency_key=idempotency_key
            )
        else:
            try:
                self._remote.delete_record(
                    collection, server_id, idempotency_key=idempotency_key
                )
            except NotFoundError:
                logger.debug(f"{collection.value}/{server_id} already gone on server")
        self._monitor.report_success()
        return response

    def _write_through(
        self,
        collection: Collection,
        kind: OperationKind,
        key: str,
        existing: Record | None,
        payload: dict[str, Any] | None,
        response: dict[str, Any] | None,
    ) -> Record:
        if kind == OperationKind.DELETE:
            assert existing is not None
            self._store.delete(collection, key)
            existing.deleted = True
            return existing

        body = response if response is not None else dict(payload or {})
        server_id = body.get("id", existing.id if existing else None)
        record = Record(key=key, collection=collection, payload=body, id=server_id)
        return self._store.put(record, SyncStatus.SYNCED)

    def _apply_pending(
        self,
        collection: Collection,
        kind: OperationKind,
        key: str,
        existing: Record | None,
        payload: dict[str, Any] | None,
        session: Session,
    ) -> Record:
        """Store the mutation as pending and enqueue it, atomically."""
        server_id = existing.id if existing else None
        if kind == OperationKind.DELETE:
            assert existing is not None
            record = Record(
                key=key,
                collection=collection,
                payload=existing.payload,
                id=server_id,
                deleted=True,
            )
            op_payload: dict[str, Any] = {"id": server_id}
        else:
            record = Record(key=key, collection=collection, payload=payload or {}, id=server_id)
            op_payload = payload or {}

        with self._store.transaction():
            stored = self._store.put(record, SyncStatus.PENDING)
            self._queue.enqueue(collection, kind, key, op_payload, session.user_id)
        return stored

    # === Queue replay ===

    def sync_pending_operations(self) -> SyncResult | None:
        """Replay the pending queue against the remote authority.

        Each collection is replayed independently in enqueue order. A
        failing operation marks its record as error and the pass moves on;
        later operations for the same record are skipped so they are never
        applied out of order.

        Returns:
            SyncResult, or None if another pass was already running.

        Raises:
            Unreachable: If the remote authority is not reachable.
            Unauthenticated: If there is no session.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync pass already in progress, skipping")
            return None

        try:
            if not self._monitor.is_reachable:
                raise Unreachable("Cannot sync while the remote authority is unreachable")
            session = self._require_session()

            self._syncing = True
            result = SyncResult()
            for collection in Collection:
                if not self._replay_collection(collection, session, result):
                    result.aborted = True
                    logger.warning("Session ended during sync, remaining results discarded")
                    break

            if not result.is_empty:
                logger.info(
                    f"Sync pass: {len(result.confirmed)} confirmed, "
                    f"{len(result.failed)} failed, {len(result.skipped)} skipped"
                )
        finally:
            self._syncing = False
            self._sync_lock.release()

        self._last_result = result

        if self._on_sync_complete:
            try:
                self._on_sync_complete(result)
            except Exception:
                logger.exception("Sync completion callback failed")
        return result

    def _replay_collection(
        self, collection: Collection, session: Session, result: SyncResult
    ) -> bool:
        """Replay one collection's queue.

        Returns:
            False if the session changed and the pass must stop.
        """
        failed_keys: set[str] = set()

        for op in self._queue.list_operations(collection):
            if op.record_key in failed_keys or not self._monitor.is_reachable:
                result.skipped.append(op.seq)
                continue

            record = self._store.get(collection, op.record_key, include_deleted=True)
            server_id = record.id if record is not None else op.payload.get("id")

            try:
                response = self._send(
                    collection,
                    op.kind,
                    server_id,
                    None if op.kind == OperationKind.DELETE else op.payload,
                    op.op_id,
                )
            except (RemoteRejected, Unreachable) as e:
                if isinstance(e, Unreachable):
                    self._monitor.report_failure(e)
                if not self._session_unchanged(session):
                    return False
                self._mark_failed(op, str(e))
                failed_keys.add(op.record_key)
                result.failed.append(op.seq)
                continue

            if not self._session_unchanged(session):
                return False

            self._confirm(op, response)
            result.confirmed.append(op.seq)

        return True

    def _mark_failed(self, op: PendingOperation, error: str) -> None:
        logger.warning(
            f"{op.kind.value} on {op.collection.value}/{op.record_key} failed "
            f"(attempt {op.attempts + 1}): {error}"
        )
        with self._store.transaction():
            self._queue.record_failure(op.seq, error)
            self._store.set_sync_status(op.collection, op.record_key, SyncStatus.ERROR)

    def _confirm(self, op: PendingOperation, response: dict[str, Any] | None) -> None:
        """Remove a confirmed operation and update its record."""
        assert op.seq is not None
        with self._store.transaction():
            self._queue.remove(op.seq)
            # Re-read inside the transaction: a mutate may have run meanwhile
            record = self._store.get(op.collection, op.record_key, include_deleted=True)
            if record is None:
                return

            still_pending = self._queue.has_pending(op.collection, op.record_key)
            if op.kind == OperationKind.DELETE and not still_pending:
                self._store.delete(op.collection, op.record_key)
                return

            server_id = record.id
            if response is not None:
                server_id = response.get("id", server_id)

            if still_pending:
                # Later local edits win; only adopt the server id
                record.id = server_id
                self._store.put(record, SyncStatus.PENDING)
            else:
                body = response if response is not None else op.payload
                self._store.put(
                    Record(
                        key=record.key,
                        collection=op.collection,
                        payload=body,
                        id=server_id,
                    ),
                    SyncStatus.SYNCED,
                )

    def discard_operation(self, seq: int) -> bool:
        """Permanently drop a queued operation.

        The affected record is left in error so the divergence stays
        visible.

        Returns:
            True if an operation was removed.
        """
        op = self._queue.get(seq)
        if op is None:
            return False
        with self._store.transaction():
            self._queue.remove(seq)
            self._store.set_sync_status(op.collection, op.record_key, SyncStatus.ERROR)
        logger.warning(
            f"Discarded {op.kind.value} on {op.collection.value}/{op.record_key} (seq {seq})"
        )
        return True

    # === Inbound ===

    def refresh_all(self) -> RefreshResult:
        """Pull every collection and overwrite matching local records.

        Records with queued work are left alone; they are reconciled by
        the next replay pass. Records missing on the server are kept.

        Raises:
            Unreachable: If the remote authority is not reachable.
            Unauthenticated: If there is no session, or it ended mid-refresh.
            RemoteRejected: If a collection pull is refused.
        """
        if not self._monitor.is_reachable:
            raise Unreachable("Cannot refresh while the remote authority is unreachable")
        session = self._require_session()

        result = RefreshResult()
        for collection in Collection:
            items = self._pull(collection)
            if not self._session_unchanged(session):
                raise Unauthenticated("Session ended during refresh")
            updated, kept = self._cache_remote(collection, items)
            result.updated[collection] = updated
            result.kept_pending[collection] = kept

        self._store.set_last_full_sync(time.time())
        logger.info(f"Refresh complete: {result.total_updated} records updated")
        return result

    def _pull(self, collection: Collection, **filters: Any) -> list[dict[str, Any]]:
        try:
            items = retry_with_backoff(
                lambda: self._remote.list_records(collection, **filters),
                max_retries=self._refresh_retries,
                sleep=self._retry_sleep,
            )
        except Unreachable as e:
            self._monitor.report_failure(e)
            raise
        self._monitor.report_success()
        return items

    def _cache_remote(
        self, collection: Collection, items: list[dict[str, Any]]
    ) -> tuple[int, int]:
        """Write server payloads locally as synced, sparing queued records.

        Returns:
            Tuple of (updated, kept_pending).
        """
        pending = self._queue.pending_keys(collection)
        updated = kept = 0
        for item in items:
            server_id = item.get("id")
            if server_id is None:
                logger.warning(f"Ignoring {collection.value} item without id")
                continue
            existing = self._store.find_by_server_id(collection, server_id)
            if existing is not None and existing.key in pending:
                kept += 1
                continue
            key = existing.key if existing is not None else uuid.uuid4().hex
            self._store.put(
                Record(key=key, collection=collection, payload=item, id=server_id),
                SyncStatus.SYNCED,
            )
            updated += 1
        return updated, kept

    def fetch(self, collection: Collection, **filters: Any) -> list[Record]:
        """Query a collection, refreshing it from the server when possible.

        Online, matching server records are cached first (queued records
        are not overwritten). Offline, or if the server cannot be reached,
        the local store answers alone.

        Args:
            collection: Collection to query.
            **filters: Payload field filters, also sent as query parameters.

        Returns:
            Matching live records from the local store.

        Raises:
            RemoteRejected: If the server refuses the query.
        """
        session = self._store.get_session()
        if self._monitor.is_reachable and session is not None:
            try:
                items = self._pull(collection, **filters)
            except Unreachable:
                logger.info(f"Server unreachable, reading {collection.value} locally")
            else:
                if self._session_unchanged(session):
                    self._cache_remote(collection, items)
        return self._query_local(collection, filters)

    def _query_local(self, collection: Collection, filters: dict[str, Any]) -> list[Record]:
        if not filters:
            return self._store.get_all(collection)
        if len(filters) == 1:
            name, value = next(iter(filters.items()))
            if name in collection.indexes:
                return self._store.get_by_index(collection, name, value)
        return [
            r for r in self._store.get_all(collection)
            if all(r.payload.get(k) == v for k, v in filters.items())
        ]

    # === Status ===

    def get_sync_info(self) -> SyncInfo:
        """Summarize pending work and connectivity."""
        session = self._store.get_session()
        return SyncInfo(
            pending_total=self._queue.count(),
            pending_by_collection=self._queue.count_by_collection(),
            last_full_sync=session.last_full_sync if session else None,
            is_reachable=self._monitor.is_reachable,
            is_syncing=self._syncing,
            last_pass_failed=self._last_result is not None and self._last_result.has_failures,
        )

    # === Triggers ===

    def _on_connectivity_change(self, event: ConnectivityEvent) -> None:
        """Start a replay pass when the server becomes reachable."""
        if event != ConnectivityEvent.BECAME_REACHABLE:
            return
        if self._store.get_session() is None or self._queue.count() == 0:
            return
        # Never run the pass on the notifying thread
        self._trigger_thread = threading.Thread(
            target=self._run_triggered_sync,
            name="ReconnectSync",
            daemon=True,
        )
        self._trigger_thread.start()

    def _run_triggered_sync(self) -> None:
        try:
            self.sync_pending_operations()
        except (Unauthenticated, Unreachable) as e:
            logger.info(f"Reconnect sync skipped: {e}")
        except Exception:
            logger.exception("Error during reconnect sync")

    def _periodic_job(self) -> None:
        """Job function for the periodic replay."""
        if not self._monitor.is_reachable:
            return
        if self._store.get_session() is None or self._queue.count() == 0:
            return
        try:
            self.sync_pending_operations()
        except Exception:
            logger.exception("Error during periodic sync")

    def start_periodic_sync(self) -> None:
        """Start the periodic replay."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._periodic_job,
            trigger=IntervalTrigger(seconds=self._sync_interval),
            id=PERIODIC_JOB_ID,
            name="Pending operation sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Periodic sync started (every {self._sync_interval:.0f}s)")

    def stop_periodic_sync(self) -> None:
        """Stop the periodic replay. An in-flight pass completes on its own."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Periodic sync stopped")

    def shutdown(self, timeout: float = 10.0) -> bool:
        """Stop triggers and wait for an in-flight pass.

        Args:
            timeout: Maximum seconds to wait for a running pass.

        Returns:
            True if no pass was left running.
        """
        self.stop_periodic_sync()
        self._monitor.remove_listener(self._on_connectivity_change)
        if not self._sync_lock.acquire(timeout=timeout):
            logger.warning(f"Sync pass still running after {timeout}s")
            return False
        self._sync_lock.release()
        return True
