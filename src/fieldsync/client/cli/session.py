"""Session commands for the fieldsync CLI.

Commands:
- configure: Set the remote server
- login: Log in (online, or offline with a stored session)
- logout: End the session
- status: Show session and sync status
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from fieldsync.client.cli.config import load_config, open_runtime, save_config
from fieldsync.core.errors import AuthenticationError, FieldSyncError


@click.command()
@click.option(
    "--server",
    required=True,
    help="Server URL (e.g., https://idec.example.org).",
)
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds.")
@click.option("--insecure", is_flag=True, help="Do not verify SSL certificates.")
def configure(server: str, timeout: float | None, insecure: bool) -> None:
    """Set the remote server used for sync."""
    if not server.startswith(("http://", "https://")):
        click.echo("Error: Server URL must start with http:// or https://", err=True)
        sys.exit(1)

    config = load_config()
    config["server_url"] = server.rstrip("/")
    if timeout is not None:
        config["timeout"] = timeout
    config["verify_ssl"] = not insecure
    save_config(config)
    click.echo(f"Server set to {config['server_url']}")


@click.command()
@click.option("--username", "-u", prompt=True, help="Account name.")
@click.option("--password", "-p", prompt=True, hide_input=True, help="Account password.")
def login(username: str, password: str) -> None:
    """Log in and download all records.

    When the server cannot be reached, a previously stored session for the
    same user is reused.
    """
    with open_runtime() as runtime:
        runtime.monitor.probe_now()
        try:
            session = runtime.login(username, password)
        except AuthenticationError:
            click.echo("Error: Invalid username or password.", err=True)
            sys.exit(1)
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        mode = "" if runtime.monitor.is_reachable else " (offline)"
        click.echo(f"Logged in as {session.username}{mode}")


@click.command()
def logout() -> None:
    """End the session."""
    with open_runtime() as runtime:
        if runtime.auth.current_session() is None:
            click.echo("Not logged in.")
            return
        runtime.monitor.probe_now()
        try:
            runtime.logout()
        except FieldSyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo("Logged out.")


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@click.command()
def status() -> None:
    """Show session, connectivity and pending work."""
    with open_runtime() as runtime:
        runtime.monitor.probe_now()
        session = runtime.auth.current_session()
        info = runtime.engine.get_sync_info()

        click.echo(f"Server:        {runtime.client.config.server_url}")
        click.echo(f"Reachable:     {'yes' if info.is_reachable else 'no'}")
        click.echo(f"State:         {info.state.value}")
        click.echo(f"User:          {session.username if session else 'not logged in'}")
        click.echo(f"Last sync:     {_format_time(info.last_full_sync)}")
        click.echo(f"Pending:       {info.pending_total}")
        for collection, count in info.pending_by_collection.items():
            if count:
                click.echo(f"  {collection.value}: {count}")
