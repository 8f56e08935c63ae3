"""
HTTPX-based Async HTTP Client
Pooled text downloads from a Storybook server, one shared httpx client per run
"""

import asyncio
from typing import Optional

import httpx

from storybook_eyes import __version__
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.utils.httpx_async_client")

DEFAULT_USER_AGENT = f"storybook-eyes/{__version__}"


class AsyncHttpxClient:
    """
    Thin wrapper around ``httpx.AsyncClient`` for bundle downloads.

    The underlying client is opened on first use. 4xx/5xx answers raise
    ``httpx.HTTPStatusError``; retrying is left to the caller, which retries
    a whole preview+vendor round rather than single requests.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_connections: int = 4,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = httpx.Timeout(timeout)
        self.limits = httpx.Limits(max_connections=max_connections)
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock: Optional[asyncio.Lock] = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        # The lock must be created inside the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=self.limits,
                    headers={"User-Agent": self.user_agent, "Accept": "application/javascript, */*"},
                    follow_redirects=True,
                    transport=self._transport,
                )
                logger.debug(f"Opened httpx client (timeout {self.timeout.read}s)")
        return self._client

    async def get(self, url: str) -> httpx.Response:
        client = await self._ensure_client()
        response = await client.get(url)
        logger.debug(f"GET {url} -> {response.status_code}")
        response.raise_for_status()
        return response

    async def get_text(self, url: str) -> str:
        """Download a text resource such as a webpack bundle"""
        return (await self.get(url)).text

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed httpx client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def is_not_found(error: BaseException) -> bool:
    """True when an httpx error is a 404 response"""
    return isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 404
