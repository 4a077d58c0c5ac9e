"""
Responsible for "downloading":
- Work out where each manual's PDF belongs under FILES_ROOT/SUBDIR
- Skip anything already on disk (at most one network fetch per manual)
- Stream missing PDFs with bounded concurrency
- Persist the storage-root-relative path once the file is complete

A failed download is logged and reported, never raised: the manual keeps an
empty pdf_local_path and is picked up again by the next run. Database errors
do propagate, a run that cannot record its results should stop.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from common.errors import FetchError
from common.http import FetchClient

from .models import CatalogRecord, DownloadResult, Outcome
from .paths import PathResolver

logger = logging.getLogger("download")

_HOSTILE = re.compile(r'[\\/:*?"<>|]')
_WS = re.compile(r"\s+")


def sanitize_filename(value: str) -> str:
    """Replace characters filesystems reject with '-', collapse whitespace."""
    cleaned = _WS.sub(" ", _HOSTILE.sub("-", value or "")).strip()
    return cleaned or "file"


def expected_filename(record: CatalogRecord) -> str:
    return f"{record.id}-{sanitize_filename(record.display_name or 'manual')}.pdf"


# -----------------------------------------------------------------------------
# Legacy path normalisation
# -----------------------------------------------------------------------------
# Older runs stored absolute or working-directory-relative paths. Kept apart
# from the download decision so it can go once every stored path is relative.
async def normalize_existing_path(record: CatalogRecord, resolver: PathResolver, store) -> Optional[str]:
    """
    Look for the file record.local_path points at.

    Returns the path now stored for the manual when the file exists (rewritten
    to root-relative form if it was a legacy path inside the root), or None
    when nothing exists there and the manual still needs downloading.
    """
    stored = record.local_path
    if not stored:
        return None

    if not Path(stored).is_absolute() and resolver.to_absolute(stored).is_file():
        return stored

    legacy = resolver.resolve_legacy(stored)
    if not legacy.is_file():
        return None

    if resolver.is_inside_root(legacy):
        relative = resolver.to_relative(legacy)
        if relative != stored:
            await store.set_local_path(record.id, relative)
            logger.info("normalised path for %s: %s -> %s", record.id, stored, relative)
        return relative

    # outside the root: a valid external reference, leave it alone
    return stored


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------
class DownloadOrchestrator:
    def __init__(
        self,
        client: FetchClient,
        store,
        resolver: PathResolver,
        *,
        subdir: str = "manuals",
        concurrency: int = 3,
    ):
        self.client = client
        self.store = store
        self.resolver = resolver
        self.subdir = subdir
        self.concurrency = max(1, concurrency)

    def expected_path(self, record: CatalogRecord) -> Path:
        return self.resolver.join(self.subdir, expected_filename(record))

    async def download_one(self, record: CatalogRecord) -> DownloadResult:
        # 1) The database already knows a file for this manual
        existing = await normalize_existing_path(record, self.resolver, self.store)
        if existing is not None:
            return DownloadResult(record.id, Outcome.SKIPPED, existing)

        # 2) The file is where we would put it, only the path was never saved
        out_path = self.expected_path(record)
        if out_path.is_file():
            relative = self.resolver.to_relative(out_path)
            await self.store.set_local_path(record.id, relative)
            return DownloadResult(record.id, Outcome.SKIPPED, relative)

        # 3) Fetch it
        try:
            await self.client.download(record.pdf_url, out_path)
        except (FetchError, OSError) as e:
            logger.warning("failed %s: %s (%s)", record.id, record.pdf_url, e)
            return DownloadResult(record.id, Outcome.FAILED, error=str(e))

        relative = self.resolver.to_relative(out_path)
        await self.store.set_local_path(record.id, relative)
        return DownloadResult(record.id, Outcome.DOWNLOADED, relative)

    async def run(self, records: Iterable[CatalogRecord]) -> List[DownloadResult]:
        """
        Process records with at most `concurrency` in flight. Results come back
        in input order; completion order is whatever the network makes it.

        A task that raises (a database error while persisting) cancels the
        rest; they are awaited before the error propagates, so no download is
        left running behind the caller.
        """
        records = list(records)
        limit = asyncio.Semaphore(self.concurrency)
        done = 0

        async def _task(record: CatalogRecord) -> DownloadResult:
            nonlocal done
            async with limit:
                result = await self.download_one(record)
            done += 1
            if done % 10 == 0 or result.downloaded:
                logger.info("%s/%s %s %s", done, len(records), result.outcome.value, record.id)
            return result

        tasks = [asyncio.ensure_future(_task(r)) for r in records]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
