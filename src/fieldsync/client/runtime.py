"""Process-wide wiring of the sync client.

FieldSyncRuntime builds exactly one of each component and owns their
lifecycle. Construct it once at process start, pass it (or its members)
to whatever needs them, and call shutdown() on exit.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fieldsync.client.api import HTTPClient
from fieldsync.client.auth import AuthService
from fieldsync.client.backup import BackupManager
from fieldsync.client.connectivity import ConnectivityMonitor
from fieldsync.client.scheduler import BackupScheduler
from fieldsync.client.store import LocalStore
from fieldsync.client.sync.engine import ReconciliationEngine
from fieldsync.core.codec import CompressionCodec
from fieldsync.core.config import ServerConfig, SyncSettings
from fieldsync.core.errors import FieldSyncError
from fieldsync.core.types import Session

logger = logging.getLogger(__name__)


class FieldSyncRuntime:
    """One store, client, monitor, engine, auth service and backup stack.

    Usage:
        with FieldSyncRuntime(ServerConfig("https://..."), SyncSettings(), db) as rt:
            rt.start()
            rt.login("nurse", "secret")
            rt.engine.mutate(...)
    """

    def __init__(
        self,
        server_config: ServerConfig,
        settings: SyncSettings | None = None,
        db_path: Path | str = "store.db",
    ) -> None:
        """Build all components. Nothing is started yet.

        Args:
            server_config: Remote authority connection settings.
            settings: Engine and backup tunables.
            db_path: Path to the local store database.
        """
        self.settings = settings or SyncSettings()
        self.store = LocalStore(db_path)
        self.client = HTTPClient(server_config)
        self.monitor = ConnectivityMonitor(
            probe=self.client.health_check,
            probe_interval=self.settings.probe_interval,
        )
        self.engine = ReconciliationEngine(
            self.store,
            self.client,
            self.monitor,
            sync_interval=self.settings.sync_interval,
            refresh_retries=self.settings.refresh_retries,
        )
        self.auth = AuthService(self.store, self.client, self.monitor)
        self.backups = BackupManager(
            self.store,
            codec=CompressionCodec(level=self.settings.compression_level),
            max_backups=self.settings.max_backups,
        )
        self.backup_scheduler = BackupScheduler(
            self.backups, interval_hours=self.settings.backup_interval_hours
        )
        self._started = False

    def __enter__(self) -> FieldSyncRuntime:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.shutdown()

    def start(self) -> None:
        """Start the probe, the backup schedule and, with a session, periodic sync."""
        if self._started:
            return
        self._started = True
        self.monitor.probe_now()
        self.monitor.start()
        self.backup_scheduler.start()
        if self.auth.current_session() is not None:
            self.engine.start_periodic_sync()
        logger.info("Runtime started")

    def login(self, username: str, password: str) -> Session:
        """Log in, refresh all collections when online, start periodic sync.

        A failed refresh does not undo the login; it is logged and retried
        by the next manual full sync.
        """
        session = self.auth.login(username, password)
        if self.monitor.is_reachable:
            try:
                self.engine.refresh_all()
            except FieldSyncError as e:
                logger.warning(f"Refresh after login failed: {e}")
        self.engine.start_periodic_sync()
        return session

    def logout(self) -> None:
        """Stop periodic sync, then end the session."""
        self.engine.stop_periodic_sync()
        self.auth.logout()

    def shutdown(self) -> None:
        """Stop all timers, wait for an in-flight pass, release resources."""
        self.backup_scheduler.stop()
        self.monitor.stop()
        self.engine.shutdown(timeout=self.settings.shutdown_timeout)
        self.client.close()
        self.store.close()
        self._started = False
        logger.info("Runtime shut down")
