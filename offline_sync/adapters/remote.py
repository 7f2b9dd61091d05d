"""Remote table service contract and its httpx implementation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from offline_sync.domain.exceptions import SyncEngineError

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)

# HTTP status codes worth retrying on a later drain
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class RemoteCallError(SyncEngineError):
    """A remote table call failed.

    ``retryable`` is True for transport failures, timeouts and transient
    HTTP statuses; validation and permission errors are not.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = True,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"status_code": status_code, **(details or {})})
        self.status_code = status_code
        self.retryable = retryable


@runtime_checkable
class RemoteTableClient(Protocol):
    """Table-oriented operations the sync engine needs from the remote service."""

    async def insert(self, table: str, document: Mapping[str, Any]) -> dict[str, Any] | None:
        """Insert one row and return it as stored (with its server id) when available."""

    async def update_by_id(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> None:
        """Apply ``patch`` to the row with ``row_id``."""

    async def delete_by_id(self, table: str, row_id: Any) -> None:
        """Delete the row with ``row_id``."""

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching every equality filter."""


def _eq(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"eq.{value}"


def to_remote_call_error(exc: Exception, operation: str) -> RemoteCallError:
    """Translate an httpx failure into ``RemoteCallError``."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return RemoteCallError(
            f"{operation} failed with HTTP {status}",
            status_code=status,
            retryable=status in RETRYABLE_STATUS_CODES,
            details={"operation": operation, "body": exc.response.text[:500]},
        )
    return RemoteCallError(
        f"{operation} failed: {exc}",
        retryable=True,
        details={"operation": operation, "error_type": type(exc).__name__},
    )


class RestTableClient:
    """Async client for a PostgREST-style table API.

    Usage::

        async with RestTableClient("https://example.test/rest/v1", api_key) as remote:
            row = await remote.insert("orders", {"status": "pending"})
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 30.0,
        *,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: Base URL of the table API (e.g. https://host/rest/v1)
            api_key: Project API key sent as ``apikey``
            timeout: Default request timeout in seconds
            access_token: User bearer token; defaults to the API key
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.access_token = access_token or api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Client not initialized. Use async context manager."
            raise RemoteCallError(msg, retryable=False)
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        operation: str,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            error = to_remote_call_error(exc, operation)
            logger.warning(
                "remote_call_failed",
                extra={
                    "operation": operation,
                    "table": table,
                    "status_code": error.status_code,
                    "retryable": error.retryable,
                },
            )
            raise error from exc
        return response

    async def insert(self, table: str, document: Mapping[str, Any]) -> dict[str, Any] | None:
        response = await self._request(
            "POST",
            table,
            operation="insert",
            json=dict(document),
            headers={"Prefer": "return=representation"},
        )
        if not response.content:
            return None
        body = response.json()
        if isinstance(body, list):
            return body[0] if body else None
        return body

    async def update_by_id(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> None:
        await self._request(
            "PATCH",
            table,
            operation="update_by_id",
            params={"id": _eq(row_id)},
            json=dict(patch),
        )

    async def delete_by_id(self, table: str, row_id: Any) -> None:
        await self._request("DELETE", table, operation="delete_by_id", params={"id": _eq(row_id)})

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = _eq(value)
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        response = await self._request("GET", table, operation="select", params=params)
        return list(response.json())
