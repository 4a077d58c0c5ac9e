"""
Responsible for generic "discovery" on the manuals site:
- Breadth-first walk from a base URL, staying on allowed hosts
- Follow only links whose path matches an include pattern and no exclude pattern
- Collect every PDF link seen along the way

Unlike PaginationWalker, a page that fails to load is logged and skipped:
there is no pagination state to protect here, and the rest of the site is
still worth visiting.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence, Set, Union
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from common.errors import FetchError
from common.http import FetchClient

logger = logging.getLogger("crawler")

PathPattern = Union[str, Pattern[str]]

DEFAULT_INCLUDE: Sequence[PathPattern] = (
    re.compile(r"manual", re.I),
    re.compile(r"item", re.I),
    re.compile(r"catalog", re.I),
    re.compile(r"pdf$", re.I),
)
DEFAULT_EXCLUDE: Sequence[PathPattern] = (re.compile(r"\.(jpg|jpeg|png|gif|svg|webp)$", re.I),)


@dataclass
class CrawlConfig:
    base_url: str
    host_allowlist: Optional[List[str]] = None  # default: host of base_url
    include_patterns: Sequence[PathPattern] = DEFAULT_INCLUDE
    exclude_patterns: Sequence[PathPattern] = DEFAULT_EXCLUDE
    max_pages: int = 250


@dataclass
class CrawlResult:
    visited_count: int
    discovered: List[str] = field(default_factory=list)    # every followable URL, unique, sorted
    manual_pages: List[str] = field(default_factory=list)  # pages that link at least one PDF
    pdfs: List[str] = field(default_factory=list)


def _matches(value: str, pattern: PathPattern) -> bool:
    if isinstance(pattern, str):
        return pattern in value
    return bool(pattern.search(value))


def matches_any(value: str, patterns: Sequence[PathPattern]) -> bool:
    """No patterns means everything matches."""
    return not patterns or any(_matches(value, p) for p in patterns)


def matches_none(value: str, patterns: Sequence[PathPattern]) -> bool:
    return not patterns or not any(_matches(value, p) for p in patterns)


def absolute_url(base: str, href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    try:
        url = urljoin(base, href.strip())
    except ValueError:
        return None
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return url


class LinkCrawler:
    def __init__(self, client: FetchClient, config: CrawlConfig):
        self.client = client
        self.config = config
        self.allowed_hosts = set(config.host_allowlist or [urlsplit(config.base_url).netloc])

    def _collect_pdfs(self, soup: BeautifulSoup, page_url: str, pdfs: Set[str], manual_pages: Set[str]) -> None:
        for a in soup.select('a[href$=".pdf"]'):
            url = absolute_url(page_url, a.get("href"))
            if not url:
                continue
            # absolute PDFs are kept even when they live on a CDN
            pdfs.add(url)
            manual_pages.add(page_url)

    def _next_links(self, soup: BeautifulSoup, page_url: str) -> List[str]:
        links = []
        for a in soup.find_all("a", href=True):
            url = absolute_url(page_url, a["href"])
            if not url:
                continue
            parts = urlsplit(url)
            if parts.netloc not in self.allowed_hosts:
                continue
            target = parts.path + (f"?{parts.query}" if parts.query else "")
            if not matches_any(target, self.config.include_patterns):
                continue
            if not matches_none(target, self.config.exclude_patterns):
                continue
            links.append(url)
        return links

    async def crawl(self) -> CrawlResult:
        queue = deque([self.config.base_url])
        seen: Set[str] = set()
        discovered: Set[str] = set()
        manual_pages: Set[str] = set()
        pdfs: Set[str] = set()

        while queue and len(seen) < self.config.max_pages:
            url = queue.popleft()
            if url in seen:
                continue
            seen.add(url)

            try:
                page = await self.client.fetch_html(url)
            except FetchError as e:
                logger.warning("skipping %s: %s", url, e)
                continue

            soup = BeautifulSoup(page.text, "html.parser")
            self._collect_pdfs(soup, url, pdfs, manual_pages)

            for link in self._next_links(soup, url):
                discovered.add(link)
                if link not in seen:
                    queue.append(link)

        logger.info("visited=%s discovered=%s pdfs=%s", len(seen), len(discovered), len(pdfs))
        return CrawlResult(
            visited_count=len(seen),
            discovered=sorted(discovered),
            manual_pages=sorted(manual_pages),
            pdfs=sorted(pdfs),
        )
