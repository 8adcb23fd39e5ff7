import asyncio
import itertools

import pytest

from media_search.adapters.search.exceptions import CursorInvalidError
from media_search.adapters.search.port import SearchBackend
from media_search.config.environment_variables import EnvironmentVariables
from media_search.domain.entities.cursors import (
    DEFAULT_TYPE_FILTER,
    normalize_type_filter,
)
from media_search.domain.entities.media import BackendPage, MediaItemEntity
from media_search.domain.services.cursor_cache import CursorCache

T0 = 1_700_000_000.0


class ManualClock:
    """Wall clock that only moves when a test advances it."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_documents(
    count: int, db: str = "st", missing_image_every: int | None = None
) -> list[MediaItemEntity]:
    documents = []
    for i in range(count):
        has_image = not (missing_image_every and i % missing_image_every == 0)
        documents.append(
            MediaItemEntity(
                id=f"doc-{i}",
                bildnummer=str(100000 + i) if has_image else None,
                suchtext=f"Sunset over the harbour number {i}",
                fotografen="Jane Doe",
                db=db,
            )
        )
    return documents


class FakeSearchBackend(SearchBackend):
    """
    In-memory point-in-time search. Continuation keys are ``[position]`` in the
    filtered result list. Cursors stay valid until invalidated.
    """

    def __init__(self, documents: list[MediaItemEntity] | None = None):
        self.documents = documents or []
        self.live_cursors: set[str] = set()
        self.rotate_ids = False
        self.healthy = True
        self.always_invalid = False
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.open_calls: list[str | None] = []
        self.query_calls: list[dict] = []
        self.closed: list[str] = []
        self._ids = itertools.count(1)

    def _new_cursor(self) -> str:
        cursor_id = f"pit-{next(self._ids)}"
        self.live_cursors.add(cursor_id)
        return cursor_id

    def invalidate(self, cursor_id: str) -> None:
        self.live_cursors.discard(cursor_id)

    def _matches(
        self, document: MediaItemEntity, query: str, type_filter: str | None
    ) -> bool:
        db = normalize_type_filter(type_filter)
        if db != DEFAULT_TYPE_FILTER and document.db != db:
            return False
        text = query.strip().lower()
        return not text or text in (document.suchtext or "").lower()

    async def open_cursor(self, keep_alive: str | None = None) -> str:
        self.open_calls.append(keep_alive)
        return self._new_cursor()

    async def query_page(
        self,
        cursor_id,
        limit,
        continuation_key,
        query,
        type_filter=None,
    ) -> BackendPage:
        self.query_calls.append(
            {
                "cursor_id": cursor_id,
                "limit": limit,
                "continuation_key": continuation_key,
                "query": query,
                "type_filter": type_filter,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.always_invalid or cursor_id not in self.live_cursors:
            raise CursorInvalidError(
                f"search_context_missing_exception: No search context found for id [{cursor_id}]",
                backend_status=404,
            )

        matches = [d for d in self.documents if self._matches(d, query, type_filter)]
        start = continuation_key[0] + 1 if continuation_key else 0
        window = matches[start : start + limit]

        next_cursor_id = cursor_id
        if self.rotate_ids:
            next_cursor_id = self._new_cursor()

        return BackendPage(
            items=window,
            total=len(matches),
            continuation_key=[start + len(window) - 1] if window else continuation_key,
            cursor_id=next_cursor_id,
        )

    async def close_cursor(self, cursor_id: str) -> bool:
        self.closed.append(cursor_id)
        if cursor_id not in self.live_cursors:
            return False
        self.live_cursors.discard(cursor_id)
        return True

    async def check_connection(self) -> bool:
        return self.healthy


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def environment_variables():
    return EnvironmentVariables()


@pytest.fixture
def cursor_cache(clock):
    return CursorCache(ttl_seconds=240, clock=clock)


@pytest.fixture
def fake_backend():
    return FakeSearchBackend(make_documents(120))
