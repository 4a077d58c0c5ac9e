"""
Job entry points shared by the CLI and the API background tasks.

Each run builds its own FetchClient from settings, works against the
ManualStore it is given, logs a summary and (optionally) publishes it as an
event. The caller owns the database pool.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Optional, Sequence

from common.config import Settings
from common.events import EVENT_DOWNLOADED, EVENT_POPULATED, publish_run_summary
from common.http import FetchClient

from .crawler import CrawlConfig, CrawlResult, LinkCrawler
from .downloader import DownloadOrchestrator
from .export import export_csv
from .models import RunSummary
from .paths import PathResolver
from .walker import PaginationWalker

logger = logging.getLogger("runs")


def _orchestrator(client: FetchClient, store, settings: Settings) -> DownloadOrchestrator:
    return DownloadOrchestrator(
        client,
        store,
        PathResolver(settings.files_root),
        subdir=settings.subdir,
        concurrency=settings.dl_concurrency,
    )


async def run_populate(
    store,
    settings: Settings,
    *,
    list_url: Optional[str] = None,
    download: Optional[bool] = None,
    max_pages: Optional[int] = None,
    client: Optional[FetchClient] = None,
    correlation_id: Optional[str] = None,
) -> RunSummary:
    """
    Walk the listing and upsert every manual found; with download on, fetch
    each page's PDFs before moving to the next page.
    """
    inline = settings.download_inline if download is None else download
    owned = client is None
    client = client or FetchClient.from_settings(settings)
    try:
        walker = PaginationWalker(
            client,
            store,
            list_url=list_url or settings.base_list_url,
            max_pages=max_pages or settings.max_pages,
            downloader=_orchestrator(client, store, settings) if inline else None,
        )
        summary = await walker.run()
    finally:
        if owned:
            await client.aclose()

    logger.info("populate done %s", summary.as_dict())
    await publish_run_summary(EVENT_POPULATED, summary.as_dict(), correlation_id, enabled=settings.publish_events)
    return summary


async def run_download(
    store,
    settings: Settings,
    *,
    only_missing: Optional[bool] = None,
    grades: Optional[Sequence[str]] = None,
    ids: Optional[Sequence[int]] = None,
    limit: Optional[int] = None,
    client: Optional[FetchClient] = None,
    correlation_id: Optional[str] = None,
) -> RunSummary:
    """Download PDFs for manuals already in the store (missing ones by default)."""
    records = await store.select_for_download(
        only_missing=settings.only_missing if only_missing is None else only_missing,
        grades=settings.grades if grades is None else grades,
        ids=settings.ids if ids is None else ids,
        limit=limit if limit is not None else settings.limit,
    )
    logger.info("%s manuals selected for download", len(records))

    summary = RunSummary(items_processed=len(records))
    owned = client is None
    client = client or FetchClient.from_settings(settings, concurrency=settings.dl_concurrency)
    try:
        for result in await _orchestrator(client, store, settings).run(records):
            summary.record(result)
    finally:
        if owned:
            await client.aclose()

    logger.info("download done %s", summary.as_dict())
    await publish_run_summary(EVENT_DOWNLOADED, summary.as_dict(), correlation_id, enabled=settings.publish_events)
    return summary


async def run_crawl(
    settings: Settings,
    *,
    base_url: Optional[str] = None,
    max_pages: Optional[int] = None,
    client: Optional[FetchClient] = None,
) -> CrawlResult:
    """Generic discovery crawl; writes discovered.json and pdfs.json under DATA_ROOT."""
    config = CrawlConfig(base_url=base_url or settings.site_url)
    if max_pages:
        config.max_pages = max_pages

    owned = client is None
    client = client or FetchClient.from_settings(settings)
    try:
        result = await LinkCrawler(client, config).crawl()
    finally:
        if owned:
            await client.aclose()

    out_dir = Path(settings.data_root)
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "discovered.json").write_text(
        json.dumps({"manual_pages": result.manual_pages, "discovered": result.discovered}, indent=2),
        encoding="utf-8",
    )
    (out_dir / "pdfs.json").write_text(json.dumps(result.pdfs, indent=2), encoding="utf-8")
    logger.info("wrote %s and %s", out_dir / "discovered.json", out_dir / "pdfs.json")
    return result


async def run_export(store, settings: Settings, out_path: Optional[Path] = None) -> int:
    path = Path(out_path) if out_path else Path(settings.csv_out_dir) / settings.csv_out_file
    return await export_csv(store, path, settings.csv_batch)


def new_job_id() -> str:
    return f"job:{uuid.uuid4()}"
