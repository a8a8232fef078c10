"""Client for the engine's local HTTP control API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self, final
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from relaybox.exceptions import NetworkError
from relaybox.utils import create_null_logger

from ._models import ConnectionInfo, ConnectionsPayload

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

_SUCCESS_CODES = frozenset({httpx.codes.OK, httpx.codes.NO_CONTENT})


@final
class ControlApiClient:
    """Async client for the engine control API.

    Query methods used by the poller raise NetworkError; command methods
    return False on any failure.
    """

    __slots__ = ("_base_url", "_client", "_logger", "_request_timeout", "_secret", "_transport")

    def __init__(
        self,
        base_url: str,
        *,
        secret: str = "",
        request_timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Control API base URL, e.g. ``http://127.0.0.1:9090``.
            secret: Bearer secret, empty for none.
            request_timeout: Timeout of each request in seconds.
            transport: Custom httpx transport, used by tests.
            logger: Logger; the client binds ``component="control_api"``.
        """
        self._base_url = base_url
        self._secret = secret
        self._request_timeout = request_timeout
        self._transport = transport
        self._logger = (logger or create_null_logger()).bind(component="control_api")
        self._client = self._build()

    def _build(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self._secret}"} if self._secret else {}
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._request_timeout,
            headers=headers,
            transport=self._transport,
        )

    @property
    def base_url(self) -> str:
        """Return the control API base URL."""
        return self._base_url

    async def configure(self, base_url: str, *, secret: str | None = None) -> None:
        """Point the client at a different control API."""
        if base_url == self._base_url and (secret is None or secret == self._secret):
            return
        await self._client.aclose()
        self._base_url = base_url
        if secret is not None:
            self._secret = secret
        self._client = self._build()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _command(self, method: str, path: str, *, json: object | None = None) -> bool:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            self._logger.warning("control_api_request_failed", method=method, path=path, error=str(e))
            return False
        ok = response.status_code in _SUCCESS_CODES
        if not ok:
            self._logger.warning(
                "control_api_rejected",
                method=method,
                path=path,
                status=response.status_code,
            )
        return ok

    async def ping(self) -> bool:
        """Check whether the control API answers ``GET /`` with 200."""
        try:
            response = await self._client.get("/")
        except httpx.HTTPError:
            return False
        return response.status_code == httpx.codes.OK

    async def fetch_connections(self) -> ConnectionsPayload:
        """Fetch cumulative traffic totals and the live connection list.

        Raises:
            NetworkError: If the request fails or returns an unexpected payload.
        """
        url = f"{self._base_url}/connections"
        try:
            response = await self._client.get("/connections")
            _ = response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Control API request failed: {e}"
            raise NetworkError(msg, url=url, cause=e) from e
        try:
            return ConnectionsPayload.model_validate_json(response.content)
        except ValidationError as e:
            msg = f"Unexpected connections payload: {e.error_count()} schema errors"
            raise NetworkError(msg, url=url, cause=e) from e

    async def get_connections(self) -> list[ConnectionInfo]:
        """Return the live connections, or an empty list on failure."""
        try:
            payload = await self.fetch_connections()
        except NetworkError as e:
            self._logger.debug("connections_unavailable", error=str(e))
            return []
        return [ConnectionInfo.from_payload(entry) for entry in payload.connection_list]

    async def close_connection(self, connection_id: str) -> bool:
        """Close one connection; True on 200/204."""
        return await self._command("DELETE", f"/connections/{quote(connection_id, safe='')}")

    async def close_all_connections(self) -> bool:
        """Close every connection; True on 200/204."""
        return await self._command("DELETE", "/connections")

    async def select_outbound(self, tag: str, group: str = "PROXY") -> bool:
        """Switch the active outbound of a selector group; True on 200/204."""
        return await self._command("PUT", f"/proxies/{quote(group, safe='')}", json={"name": tag})

    async def set_mode(self, mode: str) -> bool:
        """Apply a routing mode to the running engine; True on 200/204."""
        return await self._command("PATCH", "/configs", json={"mode": mode})
