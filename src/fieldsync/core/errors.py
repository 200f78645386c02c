"""Error taxonomy shared by the store, the remote client and the engine.

Record-level sync failures never surface through these exceptions once a
mutation has been accepted locally; they are absorbed into the record's
sync status. Whole-operation failures propagate to the caller.
"""

from __future__ import annotations


class FieldSyncError(Exception):
    """Base exception for fieldsync errors."""


class Unauthenticated(FieldSyncError):
    """No valid session for an operation that requires one."""


class Unreachable(FieldSyncError):
    """The remote authority could not be reached."""


class RemoteRejected(FieldSyncError):
    """The remote authority answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = message


class AuthenticationError(RemoteRejected):
    """Credentials were refused (401)."""


class NotFoundError(RemoteRejected):
    """Resource not found (404)."""


class ServerError(RemoteRejected):
    """Remote authority failed internally (5xx)."""


class ChecksumMismatch(FieldSyncError):
    """Backup integrity verification failed."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Backup checksum verification failed: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class StoreUnavailable(FieldSyncError):
    """The local persistent store failed (quota, corruption, closed)."""


class RecordNotFound(FieldSyncError):
    """No local record with the given key."""


class BackupNotFound(FieldSyncError):
    """No stored backup with the given id."""


class InvalidBackup(FieldSyncError):
    """A backup file or artifact is malformed."""


class CodecUnavailable(FieldSyncError):
    """The compression algorithm required for a payload is not available."""
