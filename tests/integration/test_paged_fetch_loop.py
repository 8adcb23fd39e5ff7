"""
End-to-end pagination: the client fetch loop talking to the real FastAPI app
in-process, with an in-memory search backend behind it.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from media_search.adapters.search.adapter_elasticsearch import ElasticsearchGateway
from media_search.api.app import fastapi_app
from media_search.client.api_client import MediaSearchClient, SearchRequestError
from media_search.client.fetch_loop import PagedFetchLoop
from media_search.client.mirror import ClientCursorMirror, InMemoryMirrorStorage
from media_search.config.dependencies import cursor_cache as cursor_cache_dependency

SIGNATURE = "sunset:all"


@pytest_asyncio.fixture
async def api_client(fake_backend, cursor_cache):
    fastapi_app.dependency_overrides[ElasticsearchGateway] = lambda: fake_backend
    fastapi_app.dependency_overrides[cursor_cache_dependency] = lambda: cursor_cache
    httpx_client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=fastapi_app), base_url="http://testserver"
    )
    async with MediaSearchClient(httpx_client=httpx_client) as client:
        yield client
    await httpx_client.aclose()
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def mirror(clock):
    return ClientCursorMirror(storage=InMemoryMirrorStorage(), clock=clock)


@pytest_asyncio.fixture
async def fetch_loop(api_client, mirror):
    loop = PagedFetchLoop(api_client, mirror, query="sunset", limit=50)
    await loop.start()
    return loop


@pytest.mark.integration
class TestPagedFetchLoop:
    @pytest.mark.asyncio
    async def test_walks_every_page_once(self, fetch_loop, fake_backend, mirror):
        # When
        items = await fetch_loop.fetch_all()

        # Then
        assert len(items) == 120
        assert len({item.id for item in items}) == 120
        assert fetch_loop.page == 3
        assert fetch_loop.has_more is False
        assert [call["continuation_key"] for call in fake_backend.query_calls] == [
            None,
            [49],
            [99],
        ]
        assert len(fake_backend.open_calls) == 1

        entry = await mirror.load(SIGNATURE)
        assert entry.cursor_id == "pit-1"
        assert entry.continuation_key == [119]
        assert entry.page == 3

        # Exhausted walks make no further calls
        assert await fetch_loop.fetch_next_page() is None
        assert len(fake_backend.query_calls) == 3

    @pytest.mark.asyncio
    async def test_fetch_all_stops_at_max_pages(self, fetch_loop):
        items = await fetch_loop.fetch_all(max_pages=2)

        assert len(items) == 100
        assert fetch_loop.has_more is True

    @pytest.mark.asyncio
    async def test_reset_keeps_shown_items_and_continues(
        self, fetch_loop, fake_backend, mirror, clock
    ):
        # Given one page shown and a cursor the backend has since dropped
        await fetch_loop.fetch_next_page()
        fake_backend.invalidate("pit-1")
        clock.advance(60)

        # When the next page is requested
        response = await fetch_loop.fetch_next_page()

        # Then the server restarted the walk and the mirror follows it
        assert response.metadata.pit_reset is True
        assert response.page == 1
        assert fetch_loop.reset_count == 1
        assert len(fetch_loop.items) == 100
        entry = await mirror.load(SIGNATURE)
        assert entry.cursor_id == "pit-2"
        assert entry.page == 1
        assert entry.timestamp == clock.now

        # And the walk carries on from the new cursor to the end
        await fetch_loop.fetch_all()
        assert len(fetch_loop.items) == 170
        assert fetch_loop.has_more is False

    @pytest.mark.asyncio
    async def test_only_one_request_in_flight(self, fetch_loop, fake_backend):
        fake_backend.gate = asyncio.Event()
        pending = asyncio.create_task(fetch_loop.fetch_next_page())
        while not fetch_loop.in_flight:
            await asyncio.sleep(0)

        assert await fetch_loop.fetch_next_page() is None

        fake_backend.gate.set()
        response = await pending
        assert response.page == 1
        assert len(fake_backend.query_calls) == 1
        assert fetch_loop.in_flight is False

    @pytest.mark.asyncio
    async def test_new_loop_resumes_from_the_mirror(
        self, fetch_loop, api_client, mirror, fake_backend
    ):
        await fetch_loop.fetch_next_page()

        resumed = PagedFetchLoop(api_client, mirror, query="  Sunset ", limit=50)
        await resumed.start()
        response = await resumed.fetch_next_page()

        assert response.page == 2
        assert resumed.items[0].id == "doc-50"
        assert fake_backend.query_calls[-1]["cursor_id"] == "pit-1"
        assert len(fake_backend.open_calls) == 1

    @pytest.mark.asyncio
    async def test_restart_switches_the_walk(self, fetch_loop, mirror):
        await fetch_loop.fetch_next_page()

        await fetch_loop.restart("harbour", type_filter="st")

        assert fetch_loop.items == []
        assert fetch_loop.page == 0
        assert fetch_loop.cursor_id is None
        assert fetch_loop.signature == "harbour:st"
        assert await mirror.load(SIGNATURE) is None

        response = await fetch_loop.fetch_next_page()
        assert response.page == 1
        entry = await mirror.load("harbour:st")
        assert entry.cursor_id == response.metadata.pit_id

    @pytest.mark.asyncio
    async def test_cursor_invalid_failure_clears_the_mirror(
        self, fetch_loop, fake_backend, mirror
    ):
        await fetch_loop.fetch_next_page()
        fake_backend.always_invalid = True

        with pytest.raises(SearchRequestError) as exc_info:
            await fetch_loop.fetch_next_page()

        assert exc_info.value.cursor_invalid is True
        assert await mirror.load(SIGNATURE) is None
        assert fetch_loop.cursor_id is None
        assert fetch_loop.page == 0
        assert len(fetch_loop.items) == 50
        assert fetch_loop.last_error is exc_info.value
