"""Command-line interface for fieldsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the remote server
- login: Log in and download all records
- logout: End the session
- status: Show session, connectivity and pending work
- sync: Run one full sync pass
- run: Sync continuously until interrupted
- backup: Create, list, restore, export, import and delete backups
"""

from __future__ import annotations

import logging

import click

from fieldsync.client.cli.backup import backup
from fieldsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_store_path,
    load_config,
    save_config,
)
from fieldsync.client.cli.session import configure, login, logout, status
from fieldsync.client.cli.sync import run, sync

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool) -> None:
    """Configure the fieldsync logger on stderr.

    Args:
        verbose: Log at DEBUG instead of WARNING.
    """
    package_logger = logging.getLogger("fieldsync")
    package_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


@click.group()
@click.version_option(package_name="fieldsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """fieldsync - Offline-first record sync with local backups."""
    setup_logging(verbose)


# Session commands
cli.add_command(configure)
cli.add_command(login)
cli.add_command(logout)
cli.add_command(status)

# Sync commands
cli.add_command(sync)
cli.add_command(run)

# Backup commands
cli.add_command(backup)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_store_path",
    "load_config",
    "save_config",
]
