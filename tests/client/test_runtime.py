"""Tests for runtime wiring and lifecycle."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from fieldsync.client.api import HTTPClient
from fieldsync.client.runtime import FieldSyncRuntime
from fieldsync.core.config import ServerConfig, SyncSettings
from fieldsync.core.errors import ServerError, Unreachable
from fieldsync.core.types import Collection


@pytest.fixture
def runtime(tmp_path: Path) -> Iterator[FieldSyncRuntime]:
    """Create a runtime whose server answers the reachability probe."""
    settings = SyncSettings(max_backups=3, backup_interval_hours=6, probe_interval=60)
    with patch.object(HTTPClient, "health_check", return_value=True):
        rt = FieldSyncRuntime(ServerConfig("http://test"), settings, tmp_path / "store.db")
        yield rt
        rt.shutdown()


class TestFieldSyncRuntime:
    """Tests for FieldSyncRuntime."""

    def test_wiring(self, runtime: FieldSyncRuntime) -> None:
        """Components share the store and honour the settings."""
        assert runtime.backups.max_backups == 3
        assert runtime.backup_scheduler._interval_hours == 6
        assert runtime.engine._store is runtime.store
        assert runtime.auth._store is runtime.store

    def test_start_without_session(self, runtime: FieldSyncRuntime) -> None:
        """Should start the probe and backups but not periodic sync."""
        runtime.start()

        assert runtime.monitor.is_reachable is True
        assert runtime.backup_scheduler.is_running is True
        assert runtime.engine.is_periodic_sync_running is False

    def test_login_refreshes_and_starts_sync(self, runtime: FieldSyncRuntime) -> None:
        """Online login stores the session, refreshes and schedules sync."""
        runtime.monitor.probe_now()
        with (
            patch.object(
                HTTPClient, "login", return_value=({"id": 7, "username": "nurse"}, "tok")
            ),
            patch.object(HTTPClient, "list_records", return_value=[]) as list_records,
        ):
            session = runtime.login("nurse", "secret")

        assert session.username == "nurse"
        assert runtime.client.token == "tok"
        assert list_records.call_count == 4
        assert runtime.store.get_session().last_full_sync is not None
        assert runtime.engine.is_periodic_sync_running is True

    def test_login_survives_refresh_failure(self, runtime: FieldSyncRuntime) -> None:
        """A failed refresh does not undo the login."""
        runtime.monitor.probe_now()
        with (
            patch.object(HTTPClient, "login", return_value=({"id": 7, "username": "n"}, "t")),
            patch.object(HTTPClient, "list_records", side_effect=ServerError("down", 503)),
        ):
            runtime.engine._retry_sleep = lambda _: None
            runtime.login("n", "secret")

        assert runtime.auth.current_session() is not None

    def test_logout_stops_sync(self, runtime: FieldSyncRuntime) -> None:
        """Logout stops periodic sync and clears the session."""
        runtime.monitor.probe_now()
        with (
            patch.object(HTTPClient, "login", return_value=({"id": 7, "username": "n"}, "t")),
            patch.object(HTTPClient, "list_records", return_value=[]),
            patch.object(HTTPClient, "logout") as logout,
        ):
            runtime.login("n", "secret")
            runtime.logout()

        logout.assert_called_once_with("t")
        assert runtime.engine.is_periodic_sync_running is False
        assert runtime.auth.current_session() is None


@pytest.fixture
def served_runtime(tmp_path: Path, httpx_mock) -> Iterator[FieldSyncRuntime]:  # type: ignore[no-untyped-def]
    """Create a runtime talking to a mocked server through real HTTP calls."""
    settings = SyncSettings(probe_interval=60)
    rt = FieldSyncRuntime(ServerConfig("http://test"), settings, tmp_path / "store.db")
    yield rt
    rt.shutdown()


class TestRuntimeAgainstServer:
    """Tests for FieldSyncRuntime with only the record and auth routes served."""

    def test_reachable_without_health_route(  # type: ignore[no-untyped-def]
        self, served_runtime: FieldSyncRuntime, httpx_mock
    ) -> None:
        """Should probe a record endpoint, then log in and refresh."""
        httpx_mock.add_response(
            method="GET",
            url="http://test/api/children",
            json=[{"id": 1, "fullName": "Baby X"}],
            is_reusable=True,
        )
        for name in ("screenings", "tiers", "referrals"):
            httpx_mock.add_response(method="GET", url=f"http://test/api/{name}", json=[])
        httpx_mock.add_response(
            method="POST",
            url="http://test/api/auth/login",
            json={"user": {"id": 7, "username": "nurse"}, "token": "tok"},
        )

        served_runtime.start()
        assert served_runtime.monitor.is_reachable is True

        session = served_runtime.login("nurse", "secret")

        assert session.token == "tok"
        children = served_runtime.store.get_all(Collection.CHILDREN)
        assert [r.id for r in children] == [1]

    def test_unreachable_server(  # type: ignore[no-untyped-def]
        self, served_runtime: FieldSyncRuntime, httpx_mock
    ) -> None:
        """Transport failures keep the flag down and refuse a first login."""
        httpx_mock.add_exception(httpx.ConnectError("refused"), is_reusable=True)

        served_runtime.start()
        assert served_runtime.monitor.is_reachable is False

        with pytest.raises(Unreachable):
            served_runtime.login("nurse", "secret")
