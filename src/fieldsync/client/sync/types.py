"""Shared types and dataclasses for sync operations.

This module provides:
- SyncResult: Outcome of one replay pass over the pending queue
- RefreshResult: Outcome of a full refresh from the remote authority
- SyncInfo: Snapshot of the engine's status for display
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from fieldsync.core.types import Collection, SyncState


@dataclass
class SyncResult:
    """Result of a replay pass.

    Each list holds the sequence numbers of the operations concerned.
    """

    confirmed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    aborted: bool = False  # Session cleared mid-pass

    @property
    def has_failures(self) -> bool:
        """Check if any operation failed."""
        return len(self.failed) > 0

    @property
    def is_empty(self) -> bool:
        """Check if the pass had nothing to do."""
        return not (self.confirmed or self.failed or self.skipped)


@dataclass
class RefreshResult:
    """Result of a full refresh."""

    updated: dict[Collection, int] = field(default_factory=dict)
    kept_pending: dict[Collection, int] = field(default_factory=dict)

    @property
    def total_updated(self) -> int:
        return sum(self.updated.values())


@dataclass
class SyncInfo:
    """Engine status summary.

    Attributes:
        pending_total: Number of queued operations.
        pending_by_collection: Queued operations per collection.
        last_full_sync: Timestamp of the last successful refresh.
        is_reachable: Whether the remote authority is reachable.
        is_syncing: Whether a replay pass is running.
        last_pass_failed: Whether the last replay pass had failures.
    """

    pending_total: int
    pending_by_collection: dict[Collection, int]
    last_full_sync: float | None
    is_reachable: bool
    is_syncing: bool
    last_pass_failed: bool = False

    @property
    def state(self) -> SyncState:
        """Engine-level state derived from the summary."""
        if self.is_syncing:
            return SyncState.SYNCING
        if not self.is_reachable:
            return SyncState.OFFLINE
        if self.last_pass_failed:
            return SyncState.ERROR
        return SyncState.IDLE


# Type alias for pass completion callback
SyncCompleteCallback = Callable[[SyncResult], None]
