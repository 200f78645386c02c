"""Reconciliation of local mutations with the remote authority.

Architecture:
    mutate() -> LocalStore + PendingOperationQueue -> ReconciliationEngine
             -> RemoteAuthority (HTTPClient)

Components:
- **PendingOperationQueue**: Persistent FIFO log of unconfirmed mutations
- **ReconciliationEngine**: Local-first mutations, queue replay, refresh,
  periodic and reconnect triggers
- **retry_with_backoff**: Exponential backoff for transient server errors
"""

from fieldsync.client.sync.engine import (
    DEFAULT_SYNC_INTERVAL,
    PERIODIC_JOB_ID,
    ReconciliationEngine,
    RemoteAuthority,
)
from fieldsync.client.sync.queue import PendingOperationQueue
from fieldsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    retry_with_backoff,
)
from fieldsync.client.sync.types import (
    RefreshResult,
    SyncCompleteCallback,
    SyncInfo,
    SyncResult,
)

__all__ = [
    # Engine
    "DEFAULT_SYNC_INTERVAL",
    "PERIODIC_JOB_ID",
    "ReconciliationEngine",
    "RemoteAuthority",
    # Queue
    "PendingOperationQueue",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "retry_with_backoff",
    # Types
    "RefreshResult",
    "SyncCompleteCallback",
    "SyncInfo",
    "SyncResult",
]
