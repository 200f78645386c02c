"""Shared types for fieldsync.

This module defines the enums and record models used by the local store,
the reconciliation engine and the backup subsystem.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncState(str, Enum):
    """Engine-level synchronization state.

    Reported by the runtime and the CLI status command.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class SyncStatus(str, Enum):
    """Sync status of a single record relative to the remote authority."""

    SYNCED = "synced"  # Payload confirmed by the remote authority
    PENDING = "pending"  # Local mutation not yet confirmed
    ERROR = "error"  # Last replay attempt failed, retried next pass


class OperationKind(str, Enum):
    """Kind of a queued local mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Secondary indexes per collection: index name -> payload field
_INDEXES: dict[str, tuple[str, ...]] = {
    "children": ("childId", "district", "healthFacility", "registeredBy"),
    "screenings": ("childId", "screenedBy", "date", "result"),
    "tiers": ("district",),
    "referrals": ("childId", "tierId", "status"),
}

SYNC_STATUS_INDEX = "syncStatus"


class Collection(str, Enum):
    """Domain collections held by the local store.

    Each member is both the local collection name and the path segment
    of the matching remote endpoint.
    """

    CHILDREN = "children"
    SCREENINGS = "screenings"
    TIERS = "tiers"
    REFERRALS = "referrals"

    @property
    def indexes(self) -> tuple[str, ...]:
        """Names of the secondary indexes declared for this collection."""
        return _INDEXES[self.value] + (SYNC_STATUS_INDEX,)

    def index_path(self, index_name: str) -> str:
        """Get the JSON path of a payload index.

        Args:
            index_name: Declared index name (e.g. "childId").

        Returns:
            JSON path usable with SQLite json_extract().

        Raises:
            KeyError: If the index is not declared for this collection.
        """
        if index_name not in _INDEXES[self.value]:
            raise KeyError(f"Unknown index '{index_name}' for collection '{self.value}'")
        return f"$.{index_name}"


@dataclass
class Record:
    """One entity instance held in a collection.

    Attributes:
        key: Stable internal identifier, assigned locally and never changed.
        collection: Collection the record belongs to.
        payload: Full record payload as last written.
        id: Server-assigned identifier, None while the record is only local.
        sync_status: Status relative to the remote authority.
        last_modified: Local timestamp of the last write.
        deleted: True for a local delete awaiting remote confirmation.
    """

    key: str
    collection: Collection
    payload: dict[str, Any]
    id: int | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_modified: float = 0.0
    deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Record:
        """Create Record from database row."""
        return cls(
            key=row["key"],
            collection=Collection(row["collection"]),
            payload=json.loads(row["payload"]),
            id=row["server_id"],
            sync_status=SyncStatus(row["sync_status"]),
            last_modified=row["last_modified"],
            deleted=bool(row["deleted"]),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for snapshots."""
        return {
            "key": self.key,
            "id": self.id,
            "payload": self.payload,
            "syncStatus": self.sync_status.value,
            "lastModified": self.last_modified,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, collection: Collection, data: dict[str, Any]) -> Record:
        """Create Record from a snapshot entry."""
        return cls(
            key=data["key"],
            collection=collection,
            payload=data["payload"],
            id=data.get("id"),
            sync_status=SyncStatus(data["syncStatus"]),
            last_modified=data["lastModified"],
            deleted=data.get("deleted", False),
        )


@dataclass
class PendingOperation:
    """A queued local mutation awaiting remote confirmation.

    Attributes:
        collection: Target collection.
        kind: create, update or delete.
        record_key: Internal key of the affected record.
        payload: Record payload, or {"id": ...} for deletes.
        op_id: Client-generated identifier, sent as idempotency key.
        user_id: Identity of the user who made the change.
        enqueued_at: Enqueue timestamp.
        seq: Store-assigned sequence number (enqueue order).
        attempts: Number of failed replay attempts.
        last_error: Message of the last failure.
    """

    collection: Collection
    kind: OperationKind
    record_key: str
    payload: dict[str, Any]
    op_id: str
    user_id: int | None = None
    enqueued_at: float = 0.0
    seq: int | None = None
    attempts: int = 0
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PendingOperation:
        """Create PendingOperation from database row."""
        return cls(
            seq=row["seq"],
            op_id=row["op_id"],
            collection=Collection(row["collection"]),
            kind=OperationKind(row["kind"]),
            record_key=row["record_key"],
            payload=json.loads(row["payload"]),
            user_id=row["user_id"],
            enqueued_at=row["enqueued_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for snapshots."""
        return {
            "seq": self.seq,
            "opId": self.op_id,
            "collection": self.collection.value,
            "kind": self.kind.value,
            "recordKey": self.record_key,
            "payload": self.payload,
            "userId": self.user_id,
            "enqueuedAt": self.enqueued_at,
            "attempts": self.attempts,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingOperation:
        """Create PendingOperation from a snapshot entry."""
        return cls(
            seq=data["seq"],
            op_id=data["opId"],
            collection=Collection(data["collection"]),
            kind=OperationKind(data["kind"]),
            record_key=data["recordKey"],
            payload=data["payload"],
            user_id=data.get("userId"),
            enqueued_at=data["enqueuedAt"],
            attempts=data.get("attempts", 0),
            last_error=data.get("lastError"),
        )


@dataclass
class Session:
    """The single authenticated identity held by the store."""

    user: dict[str, Any]
    token: str
    last_full_sync: float | None = None

    @property
    def user_id(self) -> int | None:
        """Server identifier of the logged-in user."""
        return self.user.get("id")

    @property
    def username(self) -> str | None:
        """Login name of the logged-in user."""
        return self.user.get("username")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for snapshots."""
        return {
            "user": self.user,
            "token": self.token,
            "lastFullSync": self.last_full_sync,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Create Session from a snapshot entry."""
        return cls(
            user=data["user"],
            token=data["token"],
            last_full_sync=data.get("lastFullSync"),
        )


BACKUP_FORMAT_VERSION = "1.0.0"


@dataclass
class BackupMetadata:
    """Descriptive metadata stored alongside a compressed snapshot.

    Attributes:
        timestamp: Creation time in milliseconds, also the backup id.
        checksum: Hex SHA-256 of the uncompressed canonical snapshot.
        size: Length of the compressed payload in bytes.
        data_types: Names of the sections included in the snapshot.
        version: Snapshot format version.
        compression: Algorithm of the codec that produced the payload.
    """

    timestamp: int
    checksum: str
    size: int
    data_types: list[str] = field(default_factory=list)
    version: str = BACKUP_FORMAT_VERSION
    compression: str = "gzip"

    @property
    def backup_id(self) -> str:
        """Identifier of the backup (its creation timestamp)."""
        return str(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage and export."""
        return {
            "timestamp": self.timestamp,
            "version": self.version,
            "dataTypes": list(self.data_types),
            "checksum": self.checksum,
            "size": self.size,
            "compression": self.compression,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupMetadata:
        """Create from a stored or exported dictionary."""
        return cls(
            timestamp=int(data["timestamp"]),
            version=data.get("version", BACKUP_FORMAT_VERSION),
            data_types=list(data.get("dataTypes", [])),
            checksum=data["checksum"],
            size=int(data["size"]),
            compression=data.get("compression", "gzip"),
        )


@dataclass
class Backup:
    """A backup artifact: metadata plus compressed snapshot bytes."""

    metadata: BackupMetadata
    data: bytes
