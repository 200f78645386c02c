"""Durable local store for the sync client.

This module provides:
- LocalStore: SQLite-backed store holding the record collections, the
  pending-operation log, the session and the backup artifacts
- CollectionStore: the per-collection get/get_all/put/delete contract

Architecture:
    Every record lives in a single ``records`` table keyed by
    (collection, key). The key is assigned locally and never changes;
    the server id is a separate nullable column filled in once the remote
    authority confirms a create. Secondary indexes are expression indexes
    over the JSON payload.

    Each public method is atomic. Multi-row operations (bulk restore,
    record write + enqueue) run inside ``transaction()``, which nests and
    only commits at the outermost level.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from fieldsync.core.errors import StoreUnavailable
from fieldsync.core.types import (
    SYNC_STATUS_INDEX,
    Backup,
    BackupMetadata,
    Collection,
    PendingOperation,
    Record,
    Session,
    SyncStatus,
)

logger = logging.getLogger(__name__)

# Snapshot section names, in the order they are written
SNAPSHOT_SECTIONS = [c.value for c in Collection] + ["session", "pendingOperations"]


class LocalStore:
    """SQLite-based durable store for records, queue, session and backups.

    All sqlite3 errors are re-raised as StoreUnavailable so callers never
    see a partially applied operation without an exception.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize local store database.

        Args:
            db_path: Path to SQLite database file.

        Raises:
            StoreUnavailable: If the database cannot be opened.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._last_stamp = 0.0

        try:
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # Transactions are managed explicitly
            )
            self._conn.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrency
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()

            row = self._conn.execute("SELECT MAX(last_modified) AS m FROM records").fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open local store {self._db_path}: {e}") from e

        if row["m"] is not None:
            self._last_stamp = row["m"]

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            -- Domain records, all collections
            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                key TEXT NOT NULL,
                server_id INTEGER,
                payload TEXT NOT NULL,
                sync_status TEXT NOT NULL,
                last_modified REAL NOT NULL,
                deleted INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (collection, key)
            );
            CREATE INDEX IF NOT EXISTS idx_records_server_id
                ON records(collection, server_id);
            CREATE INDEX IF NOT EXISTS idx_records_sync_status
                ON records(collection, sync_status);

            -- Ordered log of local mutations awaiting confirmation
            CREATE TABLE IF NOT EXISTS pending_operations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                op_id TEXT NOT NULL UNIQUE,
                collection TEXT NOT NULL,
                kind TEXT NOT NULL,
                record_key TEXT NOT NULL,
                payload TEXT NOT NULL,
                user_id INTEGER,
                enqueued_at REAL NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            );

            -- Single authenticated session
            CREATE TABLE IF NOT EXISTS session (
                id TEXT PRIMARY KEY CHECK (id = 'current'),
                user TEXT NOT NULL,
                token TEXT NOT NULL,
                last_full_sync REAL
            );

            -- Backup artifacts keyed by creation timestamp
            CREATE TABLE IF NOT EXISTS backups (
                backup_id TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL,
                metadata TEXT NOT NULL,
                data BLOB NOT NULL
            );
        """)
        fields = sorted({f for c in Collection for f in c.indexes if f != SYNC_STATUS_INDEX})
        for field_name in fields:
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_records_{field_name} "
                f"ON records(collection, json_extract(payload, '$.{field_name}'))"
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # === Plumbing ===

    @contextmanager
    def _guard(self) -> Iterator[sqlite3.Connection]:
        """Serialize access and convert sqlite3 errors to StoreUnavailable."""
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StoreUnavailable(f"Local store failure: {e}") from e

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Connection]:
        """Give collaborators guarded access to the connection."""
        with self._guard() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically.

        Nested calls join the outermost transaction. Any exception rolls
        the whole outermost transaction back and propagates.
        """
        with self._guard() as conn:
            outermost = self._tx_depth == 0
            if outermost:
                conn.execute("BEGIN IMMEDIATE")
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                self._tx_depth -= 1
                if outermost and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            self._tx_depth -= 1
            if outermost:
                conn.execute("COMMIT")

    def _stamp(self) -> float:
        """Return a local timestamp strictly greater than any previous one."""
        now = time.time()
        if now <= self._last_stamp:
            now = self._last_stamp + 1e-6
        self._last_stamp = now
        return now

    # === Records ===

    def collection(self, collection: Collection) -> CollectionStore:
        """Get the capability interface for one collection."""
        return CollectionStore(self, collection)

    def get(self, collection: Collection, key: str, include_deleted: bool = False) -> Record | None:
        """Get a record by internal key.

        Args:
            collection: Collection to read.
            key: Internal record key.
            include_deleted: Also return tombstones.

        Returns:
            Record if found, None otherwise.
        """
        sql = "SELECT * FROM records WHERE collection = ? AND key = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        with self._guard() as conn:
            row = conn.execute(sql, (collection.value, key)).fetchone()
        if row is None:
            return None
        return Record.from_row(row)

    def get_all(self, collection: Collection) -> list[Record]:
        """List all live records of a collection, oldest write first."""
        with self._guard() as conn:
            rows = conn.execute(
                "SELECT * FROM records WHERE collection = ? AND deleted = 0 "
                "ORDER BY last_modified",
                (collection.value,),
            ).fetchall()
        return [Record.from_row(row) for row in rows]

    def get_by_index(self, collection: Collection, index_name: str, value: Any) -> list[Record]:
        """List live records whose indexed field equals value.

        Args:
            collection: Collection to query.
            index_name: Declared index name, or "syncStatus".
            value: Value to match.

        Returns:
            Matching records, oldest write first.

        Raises:
            KeyError: If the index is not declared for the collection.
        """
        if index_name == SYNC_STATUS_INDEX:
            expr = "sync_status"
            if isinstance(value, SyncStatus):
                value = value.value
        else:
            expr = f"json_extract(payload, '{collection.index_path(index_name)}')"
        with self._guard() as conn:
            rows = conn.execute(
                f"SELECT * FROM records WHERE collection = ? AND deleted = 0 AND {expr} = ? "
                "ORDER BY last_modified",
                (collection.value, value),
            ).fetchall()
        return [Record.from_row(row) for row in rows]

    def find_by_server_id(
        self, collection: Collection, server_id: int, include_deleted: bool = True
    ) -> Record | None:
        """Get the record carrying a server-assigned id."""
        sql = "SELECT * FROM records WHERE collection = ? AND server_id = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        with self._guard() as conn:
            row = conn.execute(sql, (collection.value, server_id)).fetchone()
        if row is None:
            return None
        return Record.from_row(row)

    def put(self, record: Record, sync_status: SyncStatus | None = None) -> Record:
        """Write a full record (upsert), stamping last_modified.

        The stored sync status is left as it was unless sync_status is
        given explicitly. New records take the status carried by record.

        Args:
            record: Record to write. Its key must be set.
            sync_status: Explicit status to store.

        Returns:
            The record as stored.
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT sync_status FROM records WHERE collection = ? AND key = ?",
                (record.collection.value, record.key),
            ).fetchone()
            if sync_status is not None:
                status = sync_status
            elif existing is not None:
                status = SyncStatus(existing["sync_status"])
            else:
                status = record.sync_status

            stored = Record(
                key=record.key,
                collection=record.collection,
                payload=record.payload,
                id=record.id,
                sync_status=status,
                last_modified=self._stamp(),
                deleted=record.deleted,
            )
            self._write_record(conn, stored)
        return stored

    def _write_record(self, conn: sqlite3.Connection, record: Record) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO records (
                collection, key, server_id, payload, sync_status, last_modified, deleted
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.collection.value,
                record.key,
                record.id,
                json.dumps(record.payload),
                record.sync_status.value,
                record.last_modified,
                int(record.deleted),
            ),
        )

    def set_sync_status(self, collection: Collection, key: str, status: SyncStatus) -> None:
        """Change only the sync status of a record (payload untouched)."""
        with self._guard() as conn:
            conn.execute(
                "UPDATE records SET sync_status = ? WHERE collection = ? AND key = ?",
                (status.value, collection.value, key),
            )

    def delete(self, collection: Collection, key: str) -> bool:
        """Remove a record permanently.

        Returns:
            True if a record was removed.
        """
        with self._guard() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE collection = ? AND key = ?",
                (collection.value, key),
            )
        return cursor.rowcount > 0

    # === Session ===

    def get_session(self) -> Session | None:
        """Get the current session, if any."""
        with self._guard() as conn:
            row = conn.execute("SELECT * FROM session WHERE id = 'current'").fetchone()
        if row is None:
            return None
        return Session(
            user=json.loads(row["user"]),
            token=row["token"],
            last_full_sync=row["last_full_sync"],
        )

    def save_session(self, session: Session) -> None:
        """Store the session, replacing any previous one."""
        with self._guard() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO session (id, user, token, last_full_sync) "
                "VALUES ('current', ?, ?, ?)",
                (json.dumps(session.user), session.token, session.last_full_sync),
            )

    def clear_session(self) -> None:
        """Remove the session."""
        with self._guard() as conn:
            conn.execute("DELETE FROM session")

    def set_last_full_sync(self, timestamp: float) -> None:
        """Record the time of the last successful full refresh."""
        with self._guard() as conn:
            conn.execute(
                "UPDATE session SET last_full_sync = ? WHERE id = 'current'",
                (timestamp,),
            )

    # === Backups ===

    def save_backup(self, backup: Backup) -> None:
        """Persist a backup artifact.

        Raises:
            StoreUnavailable: If a backup with the same id already exists.
        """
        with self._guard() as conn:
            conn.execute(
                "INSERT INTO backups (backup_id, created_at, metadata, data) VALUES (?, ?, ?, ?)",
                (
                    backup.metadata.backup_id,
                    backup.metadata.timestamp,
                    json.dumps(backup.metadata.to_dict()),
                    backup.data,
                ),
            )

    def get_backup(self, backup_id: str) -> Backup | None:
        """Load a backup artifact by id."""
        with self._guard() as conn:
            row = conn.execute(
                "SELECT metadata, data FROM backups WHERE backup_id = ?",
                (backup_id,),
            ).fetchone()
        if row is None:
            return None
        return Backup(
            metadata=BackupMetadata.from_dict(json.loads(row["metadata"])),
            data=bytes(row["data"]),
        )

    def list_backups(self) -> list[BackupMetadata]:
        """List backup metadata, newest first."""
        with self._guard() as conn:
            rows = conn.execute(
                "SELECT metadata FROM backups ORDER BY created_at DESC"
            ).fetchall()
        return [BackupMetadata.from_dict(json.loads(row["metadata"])) for row in rows]

    def delete_backup(self, backup_id: str) -> bool:
        """Delete a backup artifact.

        Returns:
            True if a backup was removed.
        """
        with self._guard() as conn:
            cursor = conn.execute("DELETE FROM backups WHERE backup_id = ?", (backup_id,))
        return cursor.rowcount > 0

    # === Snapshots ===

    def snapshot(self) -> dict[str, Any]:
        """Read every collection, the session and the queue consistently.

        Backups themselves are not part of a snapshot.

        Returns:
            Dictionary keyed by SNAPSHOT_SECTIONS.
        """
        with self.transaction() as conn:
            data: dict[str, Any] = {}
            for collection in Collection:
                rows = conn.execute(
                    "SELECT * FROM records WHERE collection = ? ORDER BY key",
                    (collection.value,),
                ).fetchall()
                data[collection.value] = [Record.from_row(row).to_dict() for row in rows]

            session = self.get_session()
            data["session"] = session.to_dict() if session else None

            rows = conn.execute("SELECT * FROM pending_operations ORDER BY seq").fetchall()
            data["pendingOperations"] = [PendingOperation.from_row(row).to_dict() for row in rows]
        return data

    def replace_all(self, snapshot: dict[str, Any]) -> None:
        """Atomically replace all collections, the session and the queue.

        Records keep the last_modified values of the snapshot and queued
        operations keep their sequence numbers. On any failure the store
        is left exactly as it was.

        Args:
            snapshot: Dictionary produced by snapshot().

        Raises:
            KeyError, ValueError: If the snapshot is malformed.
            StoreUnavailable: On persistence failure.
        """
        with self.transaction() as conn:
            conn.execute("DELETE FROM records")
            conn.execute("DELETE FROM pending_operations")
            conn.execute("DELETE FROM session")

            for collection in Collection:
                for entry in snapshot.get(collection.value) or []:
                    record = Record.from_dict(collection, entry)
                    self._write_record(conn, record)
                    self._last_stamp = max(self._last_stamp, record.last_modified)

            if snapshot.get("session"):
                self.save_session(Session.from_dict(snapshot["session"]))

            for entry in snapshot.get("pendingOperations") or []:
                op = PendingOperation.from_dict(entry)
                conn.execute(
                    """
                    INSERT INTO pending_operations (
                        seq, op_id, collection, kind, record_key, payload,
                        user_id, enqueued_at, attempts, last_error
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        op.seq,
                        op.op_id,
                        op.collection.value,
                        op.kind.value,
                        op.record_key,
                        json.dumps(op.payload),
                        op.user_id,
                        op.enqueued_at,
                        op.attempts,
                        op.last_error,
                    ),
                )
        logger.info("Local store replaced from snapshot")


class CollectionStore:
    """Uniform get/get_all/put/delete contract bound to one collection."""

    def __init__(self, store: LocalStore, collection: Collection) -> None:
        self._store = store
        self.collection = collection

    def get(self, key: str) -> Record | None:
        return self._store.get(self.collection, key)

    def get_all(self) -> list[Record]:
        return self._store.get_all(self.collection)

    def get_by_index(self, index_name: str, value: Any) -> list[Record]:
        return self._store.get_by_index(self.collection, index_name, value)

    def put(self, record: Record, sync_status: SyncStatus | None = None) -> Record:
        if record.collection is not self.collection:
            raise ValueError(
                f"Record belongs to '{record.collection.value}', not '{self.collection.value}'"
            )
        return self._store.put(record, sync_status)

    def delete(self, key: str) -> bool:
        return self._store.delete(self.collection, key)
