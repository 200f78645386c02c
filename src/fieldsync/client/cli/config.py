"""Configuration utilities for the fieldsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from fieldsync.client.runtime import FieldSyncRuntime
from fieldsync.core.config import ServerConfig, SyncSettings
from fieldsync.core.errors import FieldSyncError


def get_config_dir() -> Path:
    """Get the configuration directory for fieldsync.

    Returns:
        Path to ~/.fieldsync or equivalent.
    """
    return Path.home() / ".fieldsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_store_path() -> Path:
    """Get the path to the local store database."""
    return get_config_dir() / "store.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


@contextmanager
def open_runtime() -> Iterator[FieldSyncRuntime]:
    """Build the runtime from the saved configuration.

    Exits with an error if no server is configured or the settings are
    invalid. The runtime is shut down when the block exits.
    """
    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: No server configured. Run 'fieldsync configure' first.", err=True)
        sys.exit(1)

    try:
        server_config = ServerConfig(
            server_url=config["server_url"],
            timeout=float(config.get("timeout", 30.0)),
            verify_ssl=bool(config.get("verify_ssl", True)),
        )
        settings = SyncSettings.from_dict(config.get("settings", {}))
    except (TypeError, ValueError) as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)

    try:
        runtime = FieldSyncRuntime(server_config, settings, get_store_path())
    except FieldSyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        yield runtime
    finally:
        runtime.shutdown()
