"""Core module - Shared models, errors, codec and checksums."""

from fieldsync.core.codec import CompressionCodec, available_algorithms
from fieldsync.core.config import ServerConfig, SyncSettings
from fieldsync.core.errors import (
    AuthenticationError,
    BackupNotFound,
    ChecksumMismatch,
    CodecUnavailable,
    FieldSyncError,
    InvalidBackup,
    NotFoundError,
    RecordNotFound,
    RemoteRejected,
    ServerError,
    StoreUnavailable,
    Unauthenticated,
    Unreachable,
)
from fieldsync.core.hashing import canonical_dumps, compute_checksum
from fieldsync.core.types import (
    Backup,
    BackupMetadata,
    Collection,
    OperationKind,
    PendingOperation,
    Record,
    Session,
    SyncState,
    SyncStatus,
)

__all__ = [
    # Codec
    "CompressionCodec",
    "available_algorithms",
    # Config
    "ServerConfig",
    "SyncSettings",
    # Errors
    "AuthenticationError",
    "BackupNotFound",
    "ChecksumMismatch",
    "CodecUnavailable",
    "FieldSyncError",
    "InvalidBackup",
    "NotFoundError",
    "RecordNotFound",
    "RemoteRejected",
    "ServerError",
    "StoreUnavailable",
    "Unauthenticated",
    "Unreachable",
    # Hashing
    "canonical_dumps",
    "compute_checksum",
    # Types
    "Backup",
    "BackupMetadata",
    "Collection",
    "OperationKind",
    "PendingOperation",
    "Record",
    "Session",
    "SyncState",
    "SyncStatus",
]
