# Exception types shared by the crawl, download and query paths.

from typing import Optional


class ManualsError(Exception):
    """Base class for errors raised by the manuals service."""


class FetchError(ManualsError):
    """
    A fetch (HTML page or PDF download) failed after retries.

    status_code is the HTTP status of the last response when the server
    answered, None for transport errors (DNS, connect, timeout).
    """

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        detail = f"status={status_code}" if status_code is not None else (reason or "transport error")
        super().__init__(f"fetch failed for {url} ({detail})")


class ManualNotFound(ManualsError):
    def __init__(self, manual_id: int):
        self.manual_id = manual_id
        super().__init__(f"manual {manual_id} not found")
