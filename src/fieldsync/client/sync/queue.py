"""Persistent pending-operation queue.

This module provides:
- PendingOperationQueue: FIFO log of local mutations awaiting remote
  confirmation, stored in the local store's ``pending_operations`` table

Ordering:
    Operations are ordered by their store-assigned sequence number, which
    reflects enqueue order. Replay walks each collection independently in
    that order. An operation leaves the queue only when the remote
    authority confirms it or when it is explicitly discarded.

Atomicity:
    ``enqueue`` joins any open store transaction, so the engine writes the
    pending record and its queue entry as one unit.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from fieldsync.core.types import Collection, OperationKind, PendingOperation

if TYPE_CHECKING:
    from fieldsync.client.store import LocalStore

logger = logging.getLogger(__name__)


class PendingOperationQueue:
    """FIFO queue of PendingOperations backed by the local store."""

    def __init__(self, store: LocalStore) -> None:
        """Initialize the queue.

        Args:
            store: Local store owning the pending_operations table.
        """
        self._store = store

    def enqueue(
        self,
        collection: Collection,
        kind: OperationKind,
        record_key: str,
        payload: dict[str, Any],
        user_id: int | None = None,
    ) -> PendingOperation:
        """Append an operation to the queue.

        Args:
            collection: Target collection.
            kind: Operation kind.
            record_key: Internal key of the affected record.
            payload: Full payload, or {"id": ...} for deletes.
            user_id: Originating user.

        Returns:
            The stored operation, with seq and op_id set.
        """
        op = PendingOperation(
            collection=collection,
            kind=kind,
            record_key=record_key,
            payload=payload,
            op_id=uuid.uuid4().hex,
            user_id=user_id,
            enqueued_at=time.time(),
        )
        with self._store.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO pending_operations (
                    op_id, collection, kind, record_key, payload, user_id, enqueued_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    op.op_id,
                    collection.value,
                    kind.value,
                    record_key,
                    json.dumps(payload),
                    user_id,
                    op.enqueued_at,
                ),
            )
            op.seq = cursor.lastrowid
        logger.debug(f"Queued {kind.value} on {collection.value}/{record_key} (seq {op.seq})")
        return op

    def list_operations(self, collection: Collection | None = None) -> list[PendingOperation]:
        """List queued operations in enqueue order.

        Args:
            collection: Restrict to one collection.
        """
        sql = "SELECT * FROM pending_operations"
        params: tuple[Any, ...] = ()
        if collection is not None:
            sql += " WHERE collection = ?"
            params = (collection.value,)
        sql += " ORDER BY seq"
        with self._store.cursor() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [PendingOperation.from_row(row) for row in rows]

    def get(self, seq: int) -> PendingOperation | None:
        """Get an operation by sequence number."""
        with self._store.cursor() as conn:
            row = conn.execute(
                "SELECT * FROM pending_operations WHERE seq = ?", (seq,)
            ).fetchone()
        if row is None:
            return None
        return PendingOperation.from_row(row)

    def remove(self, seq: int) -> bool:
        """Remove a confirmed or discarded operation.

        Returns:
            True if an operation was removed.
        """
        with self._store.cursor() as conn:
            cursor = conn.execute("DELETE FROM pending_operations WHERE seq = ?", (seq,))
        return cursor.rowcount > 0

    def record_failure(self, seq: int, error: str) -> None:
        """Count a failed attempt and remember its message."""
        with self._store.cursor() as conn:
            conn.execute(
                "UPDATE pending_operations SET attempts = attempts + 1, last_error = ? "
                "WHERE seq = ?",
                (error, seq),
            )

    def has_pending(self, collection: Collection, record_key: str) -> bool:
        """Check whether a record has queued work."""
        with self._store.cursor() as conn:
            row = conn.execute(
                "SELECT 1 FROM pending_operations WHERE collection = ? AND record_key = ? LIMIT 1",
                (collection.value, record_key),
            ).fetchone()
        return row is not None

    def pending_keys(self, collection: Collection) -> set[str]:
        """Keys of all records of a collection with queued work."""
        with self._store.cursor() as conn:
            rows = conn.execute(
                "SELECT DISTINCT record_key FROM pending_operations WHERE collection = ?",
                (collection.value,),
            ).fetchall()
        return {row["record_key"] for row in rows}

    def count(self) -> int:
        """Total number of queued operations."""
        with self._store.cursor() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM pending_operations").fetchone()
        return row["n"]

    def count_by_collection(self) -> dict[Collection, int]:
        """Number of queued operations per collection (zeros included)."""
        counts = {c: 0 for c in Collection}
        with self._store.cursor() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) AS n FROM pending_operations GROUP BY collection"
            ).fetchall()
        for row in rows:
            counts[Collection(row["collection"])] = row["n"]
        return counts

    def __len__(self) -> int:
        return self.count()
