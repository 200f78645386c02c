"""Sync commands for the fieldsync CLI.

Commands:
- sync: Refresh all collections, then push pending operations once
- run: Keep syncing in the background until interrupted
"""

from __future__ import annotations

import logging
import sys
import threading

import click

from fieldsync.client.cli.config import open_runtime
from fieldsync.core.errors import FieldSyncError

logger = logging.getLogger(__name__)


@click.command()
def sync() -> None:
    """Run one full sync pass.

    Downloads every collection, then replays locally queued changes.
    """
    with open_runtime() as runtime:
        runtime.monitor.probe_now()
        try:
            refreshed = runtime.engine.refresh_all()
            result = runtime.engine.sync_pending_operations()
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"Downloaded {refreshed.total_updated} records.")
        if result is None:
            click.echo("Another sync is already running.")
            return
        click.echo(
            f"Pushed {len(result.confirmed)} changes "
            f"({len(result.failed)} failed, {len(result.skipped)} deferred)."
        )
        if result.has_failures:
            sys.exit(1)


@click.command()
def run() -> None:
    """Sync continuously until interrupted.

    Watches connectivity, replays queued changes periodically and on
    reconnect, and creates scheduled backups.
    """
    with open_runtime() as runtime:
        runtime.start()
        session = runtime.auth.current_session()
        if session is None:
            click.echo("Warning: Not logged in, only backups will run.", err=True)
        click.echo("fieldsync running. Press Ctrl+C to stop.")

        stop = threading.Event()
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            click.echo("\nStopping...")
