"""
Pagination walker for the manuals listing.

Fetches ?page=1, 2, 3, ... one page at a time and upserts every record of a
page before asking for the next one, so an interrupted run leaves the table
consistent up to the last complete page.

Stops when:
  A) a page has no extractable items,
  B) the server redirected us to a different ?page= (we asked past the end;
     the items on that page are NOT processed),
  C) max_pages pages were visited.

A page that cannot be fetched ends the run with FetchError. Pagination state
cannot be trusted without the response, so this differs on purpose from
LinkCrawler, which skips failed pages and keeps going.
"""

import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from common.http import FetchClient

from .downloader import DownloadOrchestrator
from .extractor import extract_page
from .models import ListingPage, RunSummary

logger = logging.getLogger("populate")


def with_page_param(url: str, page: int) -> str:
    """Set ?page=N, keeping every other query parameter and its position."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    replaced = False
    updated = []
    for key, value in query:
        if key == "page":
            if replaced:
                continue
            value, replaced = str(page), True
        updated.append((key, value))
    if not replaced:
        updated.append(("page", str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(updated), parts.fragment))


def page_param(url: str) -> Optional[int]:
    for key, value in parse_qsl(urlsplit(url).query):
        if key == "page":
            try:
                return int(value)
            except ValueError:
                return None
    return None


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class PaginationWalker:
    def __init__(
        self,
        client: FetchClient,
        store,
        *,
        list_url: str,
        max_pages: int = 500,
        downloader: Optional[DownloadOrchestrator] = None,
    ):
        self.client = client
        self.store = store
        self.list_url = list_url
        self.origin = origin_of(list_url)
        self.max_pages = max(1, max_pages)
        self.downloader = downloader

    async def fetch_page(self, page: int) -> ListingPage:
        fetched = await self.client.fetch_html(with_page_param(self.list_url, page))
        return ListingPage(
            requested_page=page,
            actual_page=page_param(fetched.url),
            records=extract_page(fetched.text, self.origin),
        )

    async def run(self) -> RunSummary:
        summary = RunSummary()
        logger.info("list: %s", self.list_url)

        page = 1
        while page <= self.max_pages:
            listing = await self.fetch_page(page)
            summary.pages_visited += 1
            logger.info("page %s -> items: %s", page, len(listing.records))

            if not listing.records:
                logger.info("no items found; stopping")
                break
            if listing.overflowed:
                logger.info("redirected to page=%s; stopping at page %s", listing.actual_page, page)
                break

            for record in listing.records:
                await self.store.upsert(record)

            if self.downloader is not None:
                for result in await self.downloader.run(listing.records):
                    summary.record(result)

            summary.items_processed += len(listing.records)
            page += 1
        else:
            logger.info("reached max pages (%s); stopping", self.max_pages)

        logger.info("total items processed: %s", summary.items_processed)
        return summary
