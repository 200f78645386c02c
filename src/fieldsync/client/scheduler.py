"""Scheduler for automatic backups.

This module provides:
- BackupScheduler: creates a backup every interval (default 24 hours)
- Manual trigger for CLI usage
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from fieldsync.client.backup import BackupManager
    from fieldsync.core.types import BackupMetadata

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "scheduled_backup"


class BackupScheduler:
    """Runs BackupManager.create_backup on a fixed interval.

    A failed scheduled backup is logged and not retried before the next
    window.
    """

    def __init__(self, manager: BackupManager, interval_hours: float = 24.0) -> None:
        """Initialize the scheduler.

        Args:
            manager: Backup manager to drive.
            interval_hours: Hours between backups.
        """
        self._manager = manager
        self._interval_hours = interval_hours
        self._scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _backup_job(self) -> None:
        """Job function for scheduled backup."""
        logger.info("Starting scheduled backup")
        try:
            metadata = self._manager.create_backup()
            logger.info("Scheduled backup %s completed", metadata.backup_id)
        except Exception:
            logger.exception("Error during scheduled backup")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._backup_job,
            trigger=IntervalTrigger(hours=self._interval_hours),
            id=BACKUP_JOB_ID,
            name="Scheduled backup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Backup scheduler started (every %.1f hours)", self._interval_hours)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Backup scheduler stopped")

    def run_now(self) -> BackupMetadata:
        """Create a backup immediately (manual trigger).

        Unlike the scheduled job, errors propagate to the caller.

        Returns:
            Metadata of the new backup.
        """
        return self._manager.create_backup()
