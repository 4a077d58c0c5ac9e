"""
Command line entry point.

    python -m app.cli populate [--url URL] [--download] [--max-pages N]
    python -m app.cli download [--grade HG --grade MG] [--ids 1,2,3] [--limit N] [--all]
    python -m app.cli crawl [--url URL] [--max-pages N]
    python -m app.cli export-csv [--out PATH]
    python -m app.cli init-db
    python -m app.cli serve
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from common.config import settings
from common.db import create_pool
from common.errors import ManualsError

from .runs import run_crawl, run_download, run_export, run_populate
from .store import ManualStore

logger = logging.getLogger("cli")


def _ids(value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated integers, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manuals", description="Manuals catalog crawler")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("populate", help="walk the listing and upsert every manual")
    p.add_argument("-u", "--url", help="listing url (default: BASE_LIST_URL)")
    p.add_argument("--download", action="store_true", default=None, help="download PDFs page by page")
    p.add_argument("--max-pages", type=int)

    d = sub.add_parser("download", help="download PDFs for manuals already in the database")
    d.add_argument("--grade", action="append", help="repeatable, e.g. --grade HG --grade MG")
    d.add_argument("--ids", type=_ids, help="comma separated manual ids")
    d.add_argument("--limit", type=int)
    d.add_argument("--all", action="store_true", help="also re-check manuals that already have a path")

    c = sub.add_parser("crawl", help="generic link discovery, writes discovered.json and pdfs.json")
    c.add_argument("-u", "--url", help="start url (default: BASE_URL)")
    c.add_argument("--max-pages", type=int)

    e = sub.add_parser("export-csv", help="dump the manuals table to CSV")
    e.add_argument("-o", "--out", help="output file (default: CSV_OUT_DIR/CSV_OUT_FILE)")

    sub.add_parser("init-db", help="create schema, table and indexes")
    sub.add_parser("serve", help="run the query API")
    return parser


async def _with_store(args: argparse.Namespace) -> None:
    async with create_pool(settings) as pool:
        store = ManualStore(pool, settings.db_schema)

        if args.command == "init-db":
            await store.init_schema()
        elif args.command == "populate":
            await run_populate(store, settings, list_url=args.url, download=args.download, max_pages=args.max_pages)
        elif args.command == "download":
            await run_download(
                store,
                settings,
                only_missing=False if args.all else None,
                grades=args.grade,
                ids=args.ids,
                limit=args.limit,
            )
        elif args.command == "export-csv":
            await run_export(store, settings, args.out)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("app.main:app", host="0.0.0.0", port=settings.service_port)
        return 0

    try:
        if args.command == "crawl":
            asyncio.run(run_crawl(settings, base_url=args.url, max_pages=args.max_pages))
        else:
            asyncio.run(_with_store(args))
    except ManualsError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        logger.warning("interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
