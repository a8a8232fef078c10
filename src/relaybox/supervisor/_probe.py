"""Readiness probe for the engine control API."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import anyio
import httpx

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


@final
class ReadinessProbe:
    """Polls ``GET /`` on the control API until it answers 200.

    A refused connection or timeout on one attempt only means the engine is
    not ready yet. The probe gives up when its deadline passes or when the
    ``still_alive`` callback reports that the process is gone.
    """

    __slots__ = ("_headers", "_interval", "_request_timeout", "_timeout", "_transport", "_url")

    def __init__(
        self,
        url: str,
        *,
        interval: float = 0.2,
        timeout: float = 3.0,
        request_timeout: float = 0.5,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            url: URL polled for readiness.
            interval: Seconds between attempts.
            timeout: Total seconds before giving up.
            request_timeout: Timeout of a single attempt.
            headers: Extra request headers (authorization).
            transport: Custom httpx transport, used by tests.
        """
        self._url = url
        self._interval = interval
        self._timeout = timeout
        self._request_timeout = request_timeout
        self._headers = dict(headers or {})
        self._transport = transport

    async def _attempt(self, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get(self._url)
        except httpx.HTTPError:
            return False
        return response.status_code == httpx.codes.OK

    async def wait_ready(self, still_alive: Callable[[], bool]) -> bool:
        """Poll until the engine is ready.

        Args:
            still_alive: Returns False once the probed process has exited.

        Returns:
            True if the engine answered 200 before the deadline.
        """
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self._request_timeout,
            headers=self._headers,
        ) as client:
            with anyio.move_on_after(self._timeout):
                while still_alive():
                    if await self._attempt(client):
                        return True
                    await anyio.sleep(self._interval)
        return False
