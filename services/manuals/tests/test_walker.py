from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from app.downloader import DownloadOrchestrator
from app.paths import PathResolver
from app.walker import PaginationWalker, origin_of, page_param, with_page_param
from common.errors import FetchError
from conftest import LIST_URL, ORIGIN, FakeStore, item_html, listing_html, make_client, page_of


def _page_items(page: int, per_page: int = 2):
    start = (page - 1) * per_page + 1
    return [item_html(i, f"HG ガンダム {i}", f"HG Gundam {i}") for i in range(start, start + per_page)]


def test_with_page_param_keeps_other_params():
    url = with_page_param(LIST_URL, 3)
    query = parse_qsl(urlsplit(url).query)
    assert ("sort", "new") in query
    assert [v for k, v in query if k == "categories[]"] == ["1", "2"]
    assert ("page", "3") in query

    again = with_page_param(url, 4)
    assert [v for k, v in parse_qsl(urlsplit(again).query) if k == "page"] == ["4"]


def test_page_param_and_origin():
    assert page_param(f"{ORIGIN}/?sort=new&page=7") == 7
    assert page_param(f"{ORIGIN}/?sort=new") is None
    assert page_param(f"{ORIGIN}/?page=last") is None
    assert origin_of(LIST_URL) == ORIGIN


@pytest.mark.asyncio
async def test_stops_on_first_empty_page():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = page_of(request)
        requested.append(page)
        items = _page_items(page) if page <= 2 else []
        return httpx.Response(200, text=listing_html(items))

    store = FakeStore()
    async with make_client(handler) as client:
        summary = await PaginationWalker(client, store, list_url=LIST_URL).run()

    assert requested == [1, 2, 3]
    assert summary.pages_visited == 3
    assert summary.items_processed == 4
    assert sorted(store.rows) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_stops_when_server_redirects_past_the_end():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = page_of(request)
        requested.append(page)
        if page == 5:
            return httpx.Response(302, headers={"location": with_page_param(LIST_URL, 4)})
        return httpx.Response(200, text=listing_html(_page_items(page)))

    store = FakeStore()
    async with make_client(handler) as client:
        summary = await PaginationWalker(client, store, list_url=LIST_URL).run()

    # the redirected page 4 content is not processed a second time
    assert requested == [1, 2, 3, 4, 5, 4]
    assert summary.pages_visited == 5
    assert summary.items_processed == 8
    assert store.upserts == list(range(1, 9))


@pytest.mark.asyncio
async def test_stops_at_max_pages():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(page_of(request))
        return httpx.Response(200, text=listing_html(_page_items(page_of(request))))

    store = FakeStore()
    async with make_client(handler) as client:
        summary = await PaginationWalker(client, store, list_url=LIST_URL, max_pages=3).run()

    assert requested == [1, 2, 3]
    assert summary.pages_visited == 3
    assert len(store.rows) == 6


@pytest.mark.asyncio
async def test_fetch_failure_ends_run_but_keeps_earlier_pages():
    def handler(request: httpx.Request) -> httpx.Response:
        page = page_of(request)
        if page == 2:
            return httpx.Response(404)
        return httpx.Response(200, text=listing_html(_page_items(page)))

    store = FakeStore()
    async with make_client(handler) as client:
        with pytest.raises(FetchError) as exc:
            await PaginationWalker(client, store, list_url=LIST_URL).run()

    assert exc.value.status_code == 404
    assert sorted(store.rows) == [1, 2]


@pytest.mark.asyncio
async def test_rerun_is_idempotent():
    def handler(request: httpx.Request) -> httpx.Response:
        page = page_of(request)
        return httpx.Response(200, text=listing_html(_page_items(page) if page == 1 else []))

    store = FakeStore()
    async with make_client(handler) as client:
        await PaginationWalker(client, store, list_url=LIST_URL).run()
        first = {k: v.model_dump() for k, v in store.rows.items()}
        await PaginationWalker(client, store, list_url=LIST_URL).run()

    assert {k: v.model_dump() for k, v in store.rows.items()} == first
    assert store.upserts == [1, 2, 1, 2]


@pytest.mark.asyncio
async def test_inline_download_runs_page_by_page(tmp_path):
    pdf_requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/pdf/"):
            pdf_requests.append(request.url.path)
            return httpx.Response(200, content=b"%PDF-1.4 test")
        page = page_of(request)
        return httpx.Response(200, text=listing_html(_page_items(page) if page == 1 else []))

    store = FakeStore()
    resolver = PathResolver(tmp_path)
    async with make_client(handler) as client:
        downloader = DownloadOrchestrator(client, store, resolver, subdir="manuals")
        summary = await PaginationWalker(client, store, list_url=LIST_URL, downloader=downloader).run()

    assert summary.downloaded == 2
    assert sorted(pdf_requests) == ["/pdf/1.pdf", "/pdf/2.pdf"]
    for manual_id in (1, 2):
        local_path = store.rows[manual_id].local_path
        assert local_path is not None
        assert (tmp_path / local_path).read_bytes() == b"%PDF-1.4 test"
