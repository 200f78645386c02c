"""Shared configuration classes for fieldsync.

This module defines the connection settings for the remote authority and
the tunables of the sync engine and backup subsystem.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


@dataclass
class ServerConfig:
    """Configuration for connecting to the remote authority.

    Attributes:
        server_url: Base URL of the server (e.g., "https://idec.example.org").
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        api_prefix: Path prefix of the record and auth endpoints.
    """

    server_url: str
    timeout: float = 30.0
    verify_ssl: bool = True
    api_prefix: str = "/api"

    def __post_init__(self) -> None:
        """Normalize server URL and prefix."""
        self.server_url = self.server_url.rstrip("/")
        self.api_prefix = "/" + self.api_prefix.strip("/") if self.api_prefix.strip("/") else ""

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """Tunables for the engine, the backup subsystem and the probe.

    Attributes:
        sync_interval: Seconds between periodic sync passes.
        backup_interval_hours: Hours between scheduled backups.
        max_backups: Number of backups retained after each creation.
        compression_level: Codec effort level, 0-9.
        probe_interval: Seconds between connectivity probes.
        refresh_retries: Retries for a failing collection pull (5xx only).
        shutdown_timeout: Seconds to wait for an in-flight pass on shutdown.
    """

    sync_interval: float = 300.0
    backup_interval_hours: float = 24.0
    max_backups: int = 7
    compression_level: int = 6
    probe_interval: float = 5.0
    refresh_retries: int = 3
    shutdown_timeout: float = 10.0

    def __post_init__(self) -> None:
        """Validate ranges."""
        if not 0 <= self.compression_level <= 9:
            raise ValueError("Compression level must be between 0 and 9")
        if self.max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        if self.sync_interval <= 0 or self.probe_interval <= 0:
            raise ValueError("Intervals must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Create settings from a config dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
