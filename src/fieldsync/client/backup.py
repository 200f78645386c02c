"""Backup and restore of the whole local store.

This module provides:
- BackupManager: create, list, restore, delete, export and import backups

Format:
    A snapshot (every collection, the session and the pending queue) is
    serialized to canonical JSON. The SHA-256 of those uncompressed bytes
    is stored in the metadata; the bytes are then compressed and stored
    together with the metadata, keyed by the creation timestamp in ms.

    An exported backup is a JSON document ``{"metadata": {...}, "data":
    "<base64>"}``. Import also accepts ``data`` as a list of byte values.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from fieldsync.client.store import SNAPSHOT_SECTIONS, LocalStore
from fieldsync.core.codec import CompressionCodec
from fieldsync.core.errors import (
    BackupNotFound,
    ChecksumMismatch,
    InvalidBackup,
)
from fieldsync.core.hashing import canonical_dumps, compute_checksum
from fieldsync.core.types import Backup, BackupMetadata

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 7


class BackupManager:
    """Creates and restores checksummed, compressed store snapshots."""

    def __init__(
        self,
        store: LocalStore,
        codec: CompressionCodec | None = None,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Local store to snapshot and restore.
            codec: Compression codec (default gzip, level 6).
            max_backups: Number of backups kept after each creation.
            clock: Time source in seconds.
        """
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self._store = store
        self._codec = codec or CompressionCodec()
        self._max_backups = max_backups
        self._clock = clock

    @property
    def max_backups(self) -> int:
        return self._max_backups

    def _next_timestamp(self) -> int:
        """Current time in ms, bumped past any existing backup id."""
        existing = {m.timestamp for m in self._store.list_backups()}
        timestamp = int(self._clock() * 1000)
        if existing:
            timestamp = max(timestamp, max(existing) + 1)
        return timestamp

    def create_backup(self) -> BackupMetadata:
        """Snapshot the store into a new backup, then prune old ones.

        Returns:
            Metadata of the new backup.

        Raises:
            StoreUnavailable: If the store cannot be read or written.
        """
        snapshot = self._store.snapshot()
        raw = canonical_dumps(snapshot)
        data = self._codec.compress(raw)

        metadata = BackupMetadata(
            timestamp=self._next_timestamp(),
            checksum=compute_checksum(raw),
            size=len(data),
            data_types=list(SNAPSHOT_SECTIONS),
            compression=self._codec.algorithm,
        )
        self._store.save_backup(Backup(metadata=metadata, data=data))
        logger.info(
            f"Backup {metadata.backup_id} created "
            f"({len(raw)} bytes, {metadata.size} compressed)"
        )

        self.cleanup_old_backups()
        return metadata

    def list_backups(self) -> list[BackupMetadata]:
        """List stored backups, newest first."""
        return self._store.list_backups()

    def get_backup(self, backup_id: str) -> Backup:
        """Load a stored backup.

        Raises:
            BackupNotFound: If no backup has this id.
        """
        backup = self._store.get_backup(backup_id)
        if backup is None:
            raise BackupNotFound(f"Backup {backup_id} not found")
        return backup

    def _open(self, backup: Backup) -> dict[str, Any]:
        """Decompress and verify a backup.

        Returns:
            The snapshot dictionary.

        Raises:
            CodecUnavailable: If the payload's algorithm is not available.
            ChecksumMismatch: If the payload is corrupt.
            InvalidBackup: If the verified payload is not a snapshot.
        """
        metadata = backup.metadata
        codec = self._codec
        if metadata.compression != codec.algorithm:
            codec = CompressionCodec.for_algorithm(metadata.compression)

        try:
            raw = codec.decompress(backup.data, algorithm=metadata.compression)
        except ValueError as e:
            logger.error(f"Backup {metadata.backup_id} payload is corrupt: {e}")
            raise ChecksumMismatch(metadata.checksum, "undecodable payload") from e

        actual = compute_checksum(raw)
        if actual != metadata.checksum:
            logger.error(f"Backup {metadata.backup_id} failed checksum verification")
            raise ChecksumMismatch(metadata.checksum, actual)

        try:
            snapshot = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise InvalidBackup(f"Backup {metadata.backup_id} is not a snapshot") from e
        if not isinstance(snapshot, dict):
            raise InvalidBackup(f"Backup {metadata.backup_id} is not a snapshot")
        return snapshot

    def restore_backup(self, backup_id: str) -> BackupMetadata:
        """Replace the store's contents with a verified backup.

        Verification happens before anything is written; on any failure
        the store is left untouched.

        Args:
            backup_id: Id of the backup to restore.

        Returns:
            Metadata of the restored backup.

        Raises:
            BackupNotFound: If no backup has this id.
            ChecksumMismatch: If the payload is corrupt.
            InvalidBackup: If the snapshot cannot be loaded.
            StoreUnavailable: If the store fails (rolled back).
        """
        backup = self.get_backup(backup_id)
        snapshot = self._open(backup)
        try:
            self._store.replace_all(snapshot)
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidBackup(f"Backup {backup_id} has malformed content: {e}") from e
        logger.info(f"Backup {backup_id} restored")
        return backup.metadata

    def delete_backup(self, backup_id: str) -> None:
        """Delete a stored backup.

        Raises:
            BackupNotFound: If no backup has this id.
        """
        if not self._store.delete_backup(backup_id):
            raise BackupNotFound(f"Backup {backup_id} not found")
        logger.info(f"Backup {backup_id} deleted")

    def cleanup_old_backups(self) -> list[str]:
        """Delete the oldest backups beyond the retention limit.

        Returns:
            Ids of the deleted backups, oldest first.
        """
        excess = self._store.list_backups()[self._max_backups:]
        deleted = []
        for metadata in reversed(excess):
            self._store.delete_backup(metadata.backup_id)
            deleted.append(metadata.backup_id)
        if deleted:
            logger.info(f"Pruned {len(deleted)} old backups")
        return deleted

    # === Portable files ===

    def export_backup(self, backup_id: str) -> bytes:
        """Package a backup as a portable JSON document.

        Raises:
            BackupNotFound: If no backup has this id.
        """
        backup = self.get_backup(backup_id)
        document = {
            "metadata": backup.metadata.to_dict(),
            "data": base64.b64encode(backup.data).decode("ascii"),
        }
        return json.dumps(document, indent=2).encode("utf-8")

    def import_backup(self, content: bytes) -> BackupMetadata:
        """Validate a portable backup and store it.

        The imported backup is stored, not restored. Importing the same
        file twice is a no-op.

        Args:
            content: Bytes of an exported backup file.

        Returns:
            Metadata of the stored backup.

        Raises:
            InvalidBackup: If the file is malformed or clashes with another
                backup of the same id.
            ChecksumMismatch: If the payload is corrupt.
        """
        try:
            document = json.loads(content)
        except ValueError as e:
            raise InvalidBackup(f"Backup file is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise InvalidBackup("Invalid backup file format")
        raw_metadata = document.get("metadata")
        raw_data = document.get("data")
        if not isinstance(raw_metadata, dict) or not raw_data or not raw_metadata.get("checksum"):
            raise InvalidBackup("Invalid backup file format")

        try:
            metadata = BackupMetadata.from_dict(raw_metadata)
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidBackup(f"Invalid backup metadata: {e}") from e

        data = self._decode_data(raw_data)
        if len(data) != metadata.size:
            raise InvalidBackup(
                f"Backup size mismatch: metadata says {metadata.size}, payload is {len(data)}"
            )

        backup = Backup(metadata=metadata, data=data)
        self._open(backup)

        existing = self._store.get_backup(metadata.backup_id)
        if existing is not None:
            if existing.metadata.checksum == metadata.checksum:
                logger.info(f"Backup {metadata.backup_id} already present")
                return existing.metadata
            raise InvalidBackup(f"A different backup {metadata.backup_id} already exists")

        self._store.save_backup(backup)
        logger.info(f"Backup {metadata.backup_id} imported")
        return metadata

    @staticmethod
    def _decode_data(raw_data: Any) -> bytes:
        if isinstance(raw_data, str):
            try:
                return base64.b64decode(raw_data, validate=True)
            except binascii.Error as e:
                raise InvalidBackup(f"Backup payload is not valid base64: {e}") from e
        if isinstance(raw_data, list):
            try:
                return bytes(raw_data)
            except (TypeError, ValueError) as e:
                raise InvalidBackup(f"Backup payload is not a byte list: {e}") from e
        raise InvalidBackup("Backup payload has an unsupported encoding")
