"""Backup commands for the fieldsync CLI.

Commands:
- backup create: Snapshot the local store
- backup list: List stored backups
- backup restore: Replace the local store with a backup
- backup export: Write a backup to a portable file
- backup import: Store a backup from a portable file
- backup delete: Delete a stored backup
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import click

from fieldsync.client.cli.config import open_runtime
from fieldsync.core.errors import FieldSyncError


@click.group()
def backup() -> None:
    """Manage local backups."""


@backup.command("create")
def create() -> None:
    """Create a backup now."""
    with open_runtime() as runtime:
        try:
            metadata = runtime.backup_scheduler.run_now()
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Created backup {metadata.backup_id} ({metadata.size} bytes)")


@backup.command("list")
def list_cmd() -> None:
    """List stored backups, newest first."""
    with open_runtime() as runtime:
        backups = runtime.backups.list_backups()
        if not backups:
            click.echo("No backups.")
            return
        for metadata in backups:
            created = datetime.fromtimestamp(metadata.timestamp / 1000)
            click.echo(
                f"{metadata.backup_id}  {created:%Y-%m-%d %H:%M:%S}  "
                f"{metadata.size:>10} bytes  {metadata.compression}"
            )


@backup.command("restore")
@click.argument("backup_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def restore(backup_id: str, yes: bool) -> None:
    """Replace all local data with BACKUP_ID."""
    if not yes and not click.confirm(
        "This replaces all local records and pending changes. Continue?"
    ):
        sys.exit(0)
    with open_runtime() as runtime:
        try:
            runtime.backups.restore_backup(backup_id)
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Restored backup {backup_id}")


@backup.command("export")
@click.argument("backup_id")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
def export(backup_id: str, output: Path) -> None:
    """Write BACKUP_ID to the file OUTPUT."""
    with open_runtime() as runtime:
        try:
            content = runtime.backups.export_backup(backup_id)
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    output.write_bytes(content)
    click.echo(f"Exported backup {backup_id} to {output}")


@backup.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_cmd(file: Path) -> None:
    """Store the backup contained in FILE."""
    with open_runtime() as runtime:
        try:
            metadata = runtime.backups.import_backup(file.read_bytes())
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Imported backup {metadata.backup_id}")


@backup.command("delete")
@click.argument("backup_id")
def delete(backup_id: str) -> None:
    """Delete BACKUP_ID."""
    with open_runtime() as runtime:
        try:
            runtime.backups.delete_backup(backup_id)
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Deleted backup {backup_id}")
