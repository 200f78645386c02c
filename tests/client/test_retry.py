"""Tests for retry_with_backoff."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fieldsync.client.sync.retry import retry_with_backoff
from fieldsync.core.errors import RemoteRejected, ServerError


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    def test_success_first_try(self) -> None:
        """Should return without sleeping."""
        sleep = MagicMock()
        assert retry_with_backoff(lambda: 42, sleep=sleep) == 42
        sleep.assert_not_called()

    def test_retries_server_errors(self) -> None:
        """Should retry 5xx with exponential backoff."""
        func = MagicMock(side_effect=[ServerError("down", 503), ServerError("down", 503), "ok"])
        sleep = MagicMock()

        assert retry_with_backoff(func, sleep=sleep) == "ok"
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_gives_up(self) -> None:
        """Should re-raise after max_retries."""
        func = MagicMock(side_effect=ServerError("down", 500))

        with pytest.raises(ServerError):
            retry_with_backoff(func, max_retries=2, sleep=lambda _: None)
        assert func.call_count == 3

    def test_backoff_capped(self) -> None:
        """Should not exceed max_backoff."""
        func = MagicMock(side_effect=[ServerError("x", 500)] * 4 + ["ok"])
        sleep = MagicMock()

        retry_with_backoff(func, max_retries=4, initial_backoff=10, max_backoff=15, sleep=sleep)
        assert [c.args[0] for c in sleep.call_args_list] == [10, 15, 15, 15]

    def test_client_errors_not_retried(self) -> None:
        """4xx responses propagate immediately."""
        func = MagicMock(side_effect=RemoteRejected("bad", 422))

        with pytest.raises(RemoteRejected):
            retry_with_backoff(func, sleep=lambda _: None)
        assert func.call_count == 1
