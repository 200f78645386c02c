"""HTTP client for the remote authority.

This module provides:
- HTTPClient: httpx-based client for the record and auth endpoints
- Record operations per collection (list, create, update, delete)
- Login/logout and a reachability probe
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from fieldsync.core.config import ServerConfig
from fieldsync.core.errors import (
    AuthenticationError,
    NotFoundError,
    RemoteRejected,
    ServerError,
    Unreachable,
)
from fieldsync.core.types import Collection

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
PROBE_COLLECTION = Collection.CHILDREN


class HTTPClient:
    """HTTP client for the remote authority's REST API.

    The bearer token is read on every request, so a token cleared by
    logout is never attached to a later call.
    """

    def __init__(self, config: ServerConfig, token: str | None = None) -> None:
        """Initialize the client.

        Args:
            config: Server connection settings.
            token: Bearer token of an existing session.
        """
        self._config = config
        self._token = token
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def token(self) -> str | None:
        """Bearer token currently attached to requests."""
        return self._token

    def set_token(self, token: str) -> None:
        """Attach a bearer token to subsequent requests."""
        self._token = token

    def clear_token(self) -> None:
        """Stop sending a bearer token."""
        self._token = None

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Plumbing ===

    def _url(self, *parts: object) -> str:
        return self._config.api_prefix + "/" + "/".join(str(p) for p in parts)

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    def _request(
        self,
        method: str,
        url: str,
        idempotency_key: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and map failures onto the error taxonomy.

        Raises:
            Unreachable: On any transport-level failure.
            RemoteRejected: On a non-2xx response.
        """
        try:
            headers = self._headers(idempotency_key)
            headers.update(kwargs.pop("headers", {}))
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.RequestError as e:
            raise Unreachable(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    @staticmethod
    def _detail(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or default
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("message") or default)
        return default

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError(self._detail(response, "Invalid or expired token"), 401)
        if response.status_code == 404:
            raise NotFoundError(self._detail(response, "Resource not found"), 404)
        if response.status_code >= 500:
            raise ServerError(self._detail(response, "Server error"), response.status_code)
        if response.status_code >= 300:
            raise RemoteRejected(
                self._detail(response, "Request rejected"), response.status_code
            )
        return response

    @staticmethod
    def _records(body: Any) -> list[dict[str, Any]]:
        if isinstance(body, dict):
            body = body.get("data", [])
        return list(body)

    # === Reachability probe ===

    def health_check(self) -> bool:
        """Check if the remote authority answers at all.

        The authority serves no dedicated health route, so the first
        collection endpoint is probed. Any HTTP response, including 401 or
        404, means the server is reachable; only transport failures do not.

        Returns:
            True if the server answered.
        """
        try:
            self._client.get(self._url(PROBE_COLLECTION.value), headers=self._headers())
        except httpx.RequestError as e:
            logger.debug(f"Reachability probe failed: {e}")
            return False
        return True

    # === Authentication ===

    def login(self, username: str, password: str) -> tuple[dict[str, Any], str]:
        """Authenticate and obtain a bearer token.

        The token is not attached automatically; callers decide when to
        arm it with set_token().

        Args:
            username: Account name.
            password: Account password.

        Returns:
            Tuple of (user, token).

        Raises:
            AuthenticationError: If credentials are refused.
            Unreachable: If the server cannot be reached.
        """
        response = self._request(
            "POST",
            self._url("auth", "login"),
            json={"username": username, "password": password},
        )
        body = response.json()
        return body["user"], body["token"]

    def logout(self, token: str | None = None) -> None:
        """Invalidate a token on the server.

        Args:
            token: Token to invalidate; defaults to the current one.
        """
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._request("POST", self._url("auth", "logout"), headers=headers)

    # === Record operations ===

    def list_records(self, collection: Collection, **filters: Any) -> list[dict[str, Any]]:
        """List records of a collection.

        Args:
            collection: Collection to list.
            **filters: Query parameters (e.g. childId=4).

        Returns:
            List of record payloads.
        """
        params = {k: v for k, v in filters.items() if v is not None}
        response = self._request("GET", self._url(collection.value), params=params)
        return self._records(response.json())

    def create_record(
        self,
        collection: Collection,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a record.

        Args:
            collection: Target collection.
            payload: Full record payload.
            idempotency_key: Key letting the server drop duplicate submissions.

        Returns:
            Authoritative payload including the server id.
        """
        response = self._request(
            "POST", self._url(collection.value), idempotency_key=idempotency_key, json=payload
        )
        return response.json()

    def update_record(
        self,
        collection: Collection,
        record_id: int,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Replace a record.

        Returns:
            Authoritative payload.

        Raises:
            NotFoundError: If record not found.
        """
        response = self._request(
            "PUT",
            self._url(collection.value, record_id),
            idempotency_key=idempotency_key,
            json=payload,
        )
        return response.json()

    def delete_record(
        self,
        collection: Collection,
        record_id: int,
        idempotency_key: str | None = None,
    ) -> None:
        """Delete a record.

        Raises:
            NotFoundError: If record not found.
        """
        self._request(
            "DELETE", self._url(collection.value, record_id), idempotency_key=idempotency_key
        )
