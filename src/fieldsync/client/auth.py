"""Session management: online login, offline login and logout."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from fieldsync.client.connectivity import ConnectivityMonitor
from fieldsync.client.store import LocalStore
from fieldsync.core.errors import RemoteRejected, Unreachable
from fieldsync.core.types import Session

logger = logging.getLogger(__name__)


class AuthClient(Protocol):
    """Authentication operations of the remote client."""

    def login(self, username: str, password: str) -> tuple[dict[str, Any], str]: ...

    def logout(self, token: str | None = None) -> None: ...

    def set_token(self, token: str) -> None: ...

    def clear_token(self) -> None: ...


class AuthService:
    """Holds the single Session and keeps the client's token in step."""

    def __init__(
        self,
        store: LocalStore,
        client: AuthClient,
        monitor: ConnectivityMonitor,
    ) -> None:
        self._store = store
        self._client = client
        self._monitor = monitor

        session = store.get_session()
        if session is not None:
            client.set_token(session.token)

    def current_session(self) -> Session | None:
        """Get the stored session, if any."""
        return self._store.get_session()

    def login(self, username: str, password: str) -> Session:
        """Authenticate, online when possible.

        Online, the remote authority issues a token and the new Session
        replaces any previous one. Offline, a stored Session for the same
        username is reused.

        Args:
            username: Account name.
            password: Account password.

        Returns:
            The active Session.

        Raises:
            AuthenticationError: If the server refuses the credentials.
            Unreachable: If offline and no stored session matches.
        """
        if self._monitor.is_reachable:
            try:
                user, token = self._client.login(username, password)
            except Unreachable as e:
                self._monitor.report_failure(e)
                logger.info(f"Login request failed, trying offline login: {e}")
            else:
                self._monitor.report_success()
                session = Session(user=user, token=token)
                self._store.save_session(session)
                self._client.set_token(token)
                logger.info(f"Logged in as {username}")
                return session

        session = self._store.get_session()
        if session is not None and session.username == username:
            self._client.set_token(session.token)
            logger.info(f"Offline login as {username} using stored session")
            return session
        raise Unreachable("Server unreachable and no stored session for this user")

    def logout(self) -> None:
        """End the session.

        The local session and the client token are cleared first, so any
        in-flight result is discarded. The remote logout is best effort.
        """
        session = self._store.get_session()
        self._store.clear_session()
        self._client.clear_token()
        if session is None:
            return

        if not self._monitor.is_reachable:
            logger.info("Logged out locally, server not reachable")
            return

        try:
            self._client.logout(session.token)
        except (Unreachable, RemoteRejected) as e:
            logger.warning(f"Remote logout failed: {e}")
            return
        logger.info("Logged out")
