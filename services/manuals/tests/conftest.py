import os
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from app.models import CatalogRecord
from common.http import FetchClient

ORIGIN = "https://manual.example.test"
LIST_URL = f"{ORIGIN}/?sort=new&categories%5B%5D=1&categories%5B%5D=2"


class FakeStore:
    """
    In-memory stand-in for ManualStore with the same coroutine methods.
    upsert() never touches local_path, just like the real UPSERT statement.
    """

    def __init__(self, records: Iterable[CatalogRecord] = ()):
        self.rows: Dict[int, CatalogRecord] = {}
        self.upserts: List[int] = []
        self.path_updates: List[Tuple[int, str]] = []
        for record in records:
            self.rows[record.id] = record.model_copy()

    async def upsert(self, record: CatalogRecord) -> None:
        self.upserts.append(record.id)
        existing = self.rows.get(record.id)
        local_path = existing.local_path if existing else None
        self.rows[record.id] = record.model_copy(update={"local_path": local_path})

    async def set_local_path(self, manual_id: int, local_path: str) -> None:
        self.path_updates.append((manual_id, local_path))
        self.rows[manual_id] = self.rows[manual_id].model_copy(update={"local_path": local_path})

    async def select_for_download(self, *, only_missing=True, grades=(), ids=(), limit=None):
        out = []
        for record in sorted(self.rows.values(), key=lambda r: r.id):
            if only_missing and record.local_path:
                continue
            if grades and record.grade not in grades:
                continue
            if ids and record.id not in ids:
                continue
            out.append(record)
        return out[:limit] if limit else out

    async def get_by_id(self, manual_id: int) -> Optional[CatalogRecord]:
        return self.rows.get(manual_id)

    async def count(self) -> int:
        return len(self.rows)

    async def iter_batches(self, batch_size: int = 1000):
        rows = [self._row(r) for r in sorted(self.rows.values(), key=lambda r: r.id)]
        for i in range(0, len(rows), batch_size):
            yield rows[i:i + batch_size]

    @staticmethod
    def _row(record: CatalogRecord) -> dict:
        return {
            "manual_id": record.id,
            "detail_path": record.detail_path,
            "detail_url": record.detail_url,
            "pdf_url": record.pdf_url,
            "pdf_local_path": record.local_path,
            "name_jp": record.name_native,
            "name_en": record.name_foreign,
            "grade": record.grade,
            "release_date": record.release_date,
            "release_date_text": record.release_date_text,
            "image_url": record.image_url,
        }


def make_record(
    manual_id: int, name: str = "HG Zaku", local_path: Optional[str] = None, grade: Optional[str] = None, **kwargs
) -> CatalogRecord:
    return CatalogRecord(
        id=manual_id,
        detail_path=f"/menus/detail/{manual_id}",
        detail_url=f"{ORIGIN}/menus/detail/{manual_id}",
        pdf_url=f"{ORIGIN}/pdf/{manual_id}.pdf",
        name_foreign=name,
        grade=grade or (name.split()[0] if name else None),
        local_path=local_path,
        **kwargs,
    )


def item_html(manual_id: int, name_jp: str, name_en: str = "", release: Optional[str] = "2024年11月8日") -> str:
    en = f'<span class="bl_result_name_en">{name_en}</span>' if name_en else ""
    caption = (
        f'<dl class="bl_result_caption"><dt>発売日</dt><dd>{release}</dd></dl>' if release is not None else ""
    )
    return (
        '<div class="bl_result_item">'
        f'<a href="/menus/detail/{manual_id}">'
        f'<div class="bl_result_img"><img src="/img/{manual_id}.jpg"></div>'
        f'<p class="bl_result_name">{name_jp}{en}</p>'
        "</a>"
        f"{caption}"
        "</div>"
    )


def listing_html(items: Sequence[str]) -> str:
    return f"<html><body><div class='bl_result'>{''.join(items)}</div></body></html>"


def page_of(request: httpx.Request) -> Optional[int]:
    for key, value in parse_qsl(urlsplit(str(request.url)).query):
        if key == "page":
            return int(value)
    return None


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> FetchClient:
    kwargs.setdefault("retries", 0)
    kwargs.setdefault("backoff", 0)
    return FetchClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def rel() -> Callable[..., str]:
    """Platform-correct root-relative path, e.g. rel("manuals", "1-HG Zaku.pdf")."""
    return lambda *parts: os.path.join(*parts)
