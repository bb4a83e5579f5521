"""Async HTTP transport for public exchange REST APIs.

Wraps httpx.AsyncClient and hands back raw response bytes. Decoding is left
to the adapters. Any transport failure or non-2xx status becomes NetworkError;
there is no retry here, recovery is re-running the sync.
"""

from __future__ import annotations

from typing import Any

import httpx

from fundsync.exceptions import NetworkError
from fundsync.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "perp-funding-sync/0.1"


class HttpClient:
    """GET-only JSON API client bound to one base URL.

    Usage:
        async with HttpClient("https://api.prod.paradex.trade/v1") as http:
            raw = await http.get_bytes("/markets")
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def open(self) -> None:
        """Create the underlying httpx client if not already open."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                follow_redirects=True,
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def get_bytes(self, path: str, params: dict[str, Any] | None = None) -> bytes:
        """GET base_url + path and return the body.

        Params whose value is None are dropped.

        Raises:
            NetworkError: transport failure or non-success status.
        """
        if self._client is None:
            await self.open()
        assert self._client is not None

        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.get(path, params=query)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise NetworkError(
                f"HTTP {status} from {self._base_url}{path}",
                {"url": f"{self._base_url}{path}", "status": status},
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"request to {self._base_url}{path} failed: {exc!r}",
                {"url": f"{self._base_url}{path}"},
            ) from exc

        logger.debug("http_get", path=path, status=response.status_code, size=len(response.content))
        return response.content
