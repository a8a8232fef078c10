"""Release feed client."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import httpx
from pydantic import TypeAdapter, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relaybox.exceptions import NetworkError, ReleaseFeedError

from ._models import ReleasePayload

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_LATEST_RELEASE_URL = "https://api.github.com/repos/SagerNet/sing-box/releases/latest"
DEFAULT_RECENT_RELEASES_URL = "https://api.github.com/repos/SagerNet/sing-box/releases?per_page=5"
DEFAULT_USER_AGENT = "relaybox/0.1"

_RELEASE_LIST = TypeAdapter(list[ReleasePayload])


@retry(
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    reraise=True,
)
async def _get(client: httpx.AsyncClient, url: str) -> httpx.Response:
    """Fetch a feed resource with retry logic.

    Raises:
        httpx.ConnectError: If connection fails after retries.
        httpx.TimeoutException: If request times out after retries.
    """
    response = await client.get(url)
    _ = response.raise_for_status()
    return response


@final
class ReleaseFeed:
    """Reads release metadata from a GitHub-style releases API.

    Schema violations raise ReleaseFeedError; transport failures raise
    NetworkError.
    """

    __slots__ = ("_headers", "_latest_url", "_recent_url", "_timeout", "_transport")

    def __init__(
        self,
        *,
        latest_url: str = DEFAULT_LATEST_RELEASE_URL,
        recent_url: str = DEFAULT_RECENT_RELEASES_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the feed.

        Args:
            latest_url: Resource returning the latest stable release.
            recent_url: Resource returning a short page of recent releases.
            user_agent: User-Agent header sent with every request.
            timeout: Request timeout in seconds.
            transport: Custom httpx transport, used by tests.
        """
        self._latest_url = latest_url
        self._recent_url = recent_url
        self._timeout = timeout
        self._transport = transport
        self._headers: Mapping[str, str] = {
            "User-Agent": user_agent,
            "Accept": "application/vnd.github+json",
        }

    def client(self) -> httpx.AsyncClient:
        """Create an HTTP client configured like the feed requests.

        Used for archive downloads so they share headers and transport.
        """
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._timeout,
            headers=self._headers,
            follow_redirects=True,
        )

    async def _fetch(self, url: str) -> bytes:
        try:
            async with self.client() as client:
                response = await _get(client, url)
        except httpx.HTTPError as e:
            msg = f"Release feed request failed: {e}"
            raise NetworkError(msg, url=url, cause=e) from e
        return response.content

    async def latest(self) -> ReleasePayload:
        """Return the latest stable release.

        Raises:
            NetworkError: If the request fails.
            ReleaseFeedError: If the payload does not match the schema.
        """
        content = await self._fetch(self._latest_url)
        try:
            return ReleasePayload.model_validate_json(content)
        except ValidationError as e:
            msg = f"Unexpected latest release payload: {e.error_count()} schema errors"
            raise ReleaseFeedError(msg) from e

    async def recent(self) -> list[ReleasePayload]:
        """Return the recent releases page, newest first.

        Raises:
            NetworkError: If the request fails.
            ReleaseFeedError: If the payload does not match the schema.
        """
        content = await self._fetch(self._recent_url)
        try:
            return _RELEASE_LIST.validate_json(content)
        except ValidationError as e:
            msg = f"Unexpected release list payload: {e.error_count()} schema errors"
            raise ReleaseFeedError(msg) from e
