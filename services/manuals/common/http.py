"""
Shared HTTP fetch primitive for the listing walker, the link crawler and the
PDF downloader.

- One reusable httpx.AsyncClient (connection pooling, redirects followed).
- An asyncio.Semaphore bounds how many requests are in flight at once.
- A fixed delay before every request keeps us polite towards the site.
- Transient failures (transport errors, 408/429/5xx) are retried with tenacity.

Callers only ever see FetchError; the httpx exception is chained as __cause__.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from common.errors import FetchError

logger = logging.getLogger("http")

# Same status list got retries on by default
RETRY_STATUSES = frozenset({408, 413, 429, 500, 502, 503, 504, 521, 522, 524})


@dataclass(frozen=True)
class FetchedPage:
    """
    One HTML response. url is the FINAL url after redirects, which the
    pagination walker inspects to detect a server-side page clamp.
    """
    url: str
    status_code: int
    text: str


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRY_STATUSES
    return isinstance(exc, httpx.TransportError)


def _status_of(exc: httpx.HTTPError) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


class FetchClient:
    """
    Bounded-concurrency, rate-limited, retrying fetch client.

    Use as an async context manager so the underlying connection pool is closed:

        async with FetchClient(concurrency=4, delay_ms=250) as client:
            page = await client.fetch_html(url)
    """

    def __init__(
        self,
        *,
        concurrency: int = 4,
        delay_ms: int = 0,
        timeout_ms: int = 30000,
        user_agent: Optional[str] = None,
        retries: int = 2,
        backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"user-agent": user_agent} if user_agent else {}
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout_ms / 1000,
            follow_redirects=True,
            transport=transport,
        )
        self._limit = asyncio.Semaphore(max(1, concurrency))
        self._delay = max(0, delay_ms) / 1000
        self._retries = max(0, retries)
        self._backoff = backoff

    @classmethod
    def from_settings(cls, settings, *, concurrency: Optional[int] = None, **kwargs) -> "FetchClient":
        return cls(
            concurrency=concurrency or settings.concurrency,
            delay_ms=settings.delay_ms,
            timeout_ms=settings.timeout_ms,
            user_agent=settings.user_agent,
            **kwargs,
        )

    async def __aenter__(self) -> "FetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._retries + 1),
            wait=wait_exponential(multiplier=self._backoff, max=8),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )

    async def _pause(self) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)

    # -------------------------------------------------------------------------
    # HTML
    # -------------------------------------------------------------------------
    async def fetch_html(self, url: str) -> FetchedPage:
        """
        GET url and return its decoded body plus the final url.
        Raises FetchError on non-2xx or transport failure once retries are spent.
        """
        async with self._limit:
            try:
                async for attempt in self._retrying():
                    with attempt:
                        await self._pause()
                        response = await self._client.get(url)
                        response.raise_for_status()
            except httpx.HTTPError as e:
                raise FetchError(url, _status_of(e), str(e)) from e
        return FetchedPage(url=str(response.url), status_code=response.status_code, text=response.text)

    # -------------------------------------------------------------------------
    # Streaming download
    # -------------------------------------------------------------------------
    async def download(self, url: str, dest: Path) -> Path:
        """
        Stream url into dest chunk by chunk (parents created as needed).

        Bytes go to "<dest>.part" first and are renamed onto dest only once
        the body is complete, so dest never holds a truncated PDF. Any
        failure, cancellation included, removes the .part file (best effort);
        HTTP failures surface as FetchError, everything else is re-raised.
        """
        dest = Path(dest)
        part = dest.with_name(dest.name + ".part")
        async with self._limit:
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                async for attempt in self._retrying():
                    with attempt:
                        await self._pause()
                        await self._stream_to(url, part)
                await aiofiles.os.replace(part, dest)
            except httpx.HTTPError as e:
                _discard(part)
                raise FetchError(url, _status_of(e), str(e)) from e
            except BaseException:
                _discard(part)
                raise
        return dest

    async def _stream_to(self, url: str, dest: Path) -> None:
        async with self._client.stream("GET", url) as response:
            response.raise_for_status()
            async with aiofiles.open(dest, "wb") as f:
                async for chunk in response.aiter_bytes():
                    await f.write(chunk)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("could not remove partial file %s: %s", path, e)
