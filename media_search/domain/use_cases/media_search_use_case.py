import math
from dataclasses import dataclass
from typing import Annotated

from datadog import statsd
from fastapi import Depends

from media_search.adapters.search.adapter_elasticsearch import DSearchBackend
from media_search.adapters.search.exceptions import (
    CursorInvalidError,
    SearchBackendError,
)
from media_search.config.dependencies import DCursorCache, DEnvironmentVariables
from media_search.domain.entities.cursors import (
    ContinuationKey,
    CursorHandle,
    query_signature,
)
from media_search.domain.entities.media import BackendPage, PageResultEntity
from media_search.utils.logging import make_logger

logger = make_logger(__name__)

METRIC_CURSOR_CREATED = "media_search.cursor.created"
METRIC_CURSOR_CACHE_HIT = "media_search.cursor.cache_hit"
METRIC_CURSOR_CALLER_SUPPLIED = "media_search.cursor.caller_supplied"
METRIC_CURSOR_RESET = "media_search.cursor.reset"
METRIC_BACKEND_FAILURE = "media_search.backend.failure"


@dataclass(frozen=True)
class QueryOk:
    page: BackendPage


@dataclass(frozen=True)
class QueryCursorInvalid:
    error: CursorInvalidError


@dataclass(frozen=True)
class QueryFailed:
    error: SearchBackendError


QueryOutcome = QueryOk | QueryCursorInvalid | QueryFailed


@dataclass(frozen=True)
class ResolvedCursor:
    cursor_id: str
    fresh: bool


def compute_has_more(raw_count: int, limit: int, total: int, page: int) -> bool:
    """
    More pages exist only if this page came back full and the backend's total
    exceeds everything handed out so far in the walk.
    """
    reported_so_far = (page - 1) * limit + raw_count
    return raw_count == limit and total > reported_so_far


def narrowed_total(
    backend_total: int,
    raw_count: int,
    visible_count: int,
    page: int,
    has_more: bool,
    limit: int,
) -> int:
    """
    Total to report after unrenderable records were dropped from a page.

    Earlier pages of the walk are counted as full, since no per-walk tally
    is kept, so ``(page - 1) * limit + visible_count`` stands for what the
    caller holds after this page. On the last page that count is reported.
    Otherwise the backend total is scaled by this page's visible ratio,
    never below that count and never above the backend total.
    ``has_more`` is computed from raw counts and is unaffected by this.
    """
    if raw_count == 0 or visible_count == raw_count:
        return backend_total
    delivered = (page - 1) * limit + visible_count
    if not has_more:
        return min(backend_total, delivered)
    estimate = math.ceil(backend_total * visible_count / raw_count)
    return min(backend_total, max(estimate, delivered))


class MediaSearchUseCase:
    def __init__(
        self,
        search_backend: DSearchBackend,
        cursor_cache: DCursorCache,
        environment_variables: DEnvironmentVariables,
    ):
        self.search_backend = search_backend
        self.cursor_cache = cursor_cache
        self.keep_alive = environment_variables.PIT_KEEP_ALIVE

    async def _open_and_cache(self, signature: str) -> str:
        cursor_id = await self.search_backend.open_cursor(self.keep_alive)
        await self.cursor_cache.put(signature, CursorHandle(cursor_id=cursor_id))
        statsd.increment(METRIC_CURSOR_CREATED)
        return cursor_id

    async def _resolve_cursor(
        self, signature: str, caller_cursor_id: str | None
    ) -> ResolvedCursor:
        # A caller mid-walk wins over whatever the cache holds
        cached = await self.cursor_cache.get(signature)
        if caller_cursor_id:
            # Re-sending the cached cursor must not restart its clock
            if cached is None or cached.cursor_id != caller_cursor_id:
                await self.cursor_cache.put(
                    signature, CursorHandle(cursor_id=caller_cursor_id)
                )
            statsd.increment(METRIC_CURSOR_CALLER_SUPPLIED)
            return ResolvedCursor(cursor_id=caller_cursor_id, fresh=False)

        if cached is not None:
            statsd.increment(METRIC_CURSOR_CACHE_HIT)
            logger.debug(f"Cursor cache hit for signature '{signature}'")
            return ResolvedCursor(cursor_id=cached.cursor_id, fresh=False)

        cursor_id = await self._open_and_cache(signature)
        logger.info(f"Started a new walk for signature '{signature}'")
        return ResolvedCursor(cursor_id=cursor_id, fresh=True)

    @staticmethod
    def _resolve_page(
        requested_page: int,
        fresh: bool,
        continuation_key: ContinuationKey | None,
        page_hint: int | None,
    ) -> int:
        # Page numbers are a caller-tracked counter; the backend only knows
        # "the next N after this key".
        if fresh or not continuation_key:
            return 1
        if page_hint is not None:
            return max(1, page_hint)
        return max(1, requested_page)

    async def _attempt(
        self,
        cursor_id: str,
        limit: int,
        continuation_key: ContinuationKey | None,
        query: str,
        type_filter: str | None,
    ) -> QueryOutcome:
        try:
            page = await self.search_backend.query_page(
                cursor_id=cursor_id,
                limit=limit,
                continuation_key=continuation_key,
                query=query,
                type_filter=type_filter,
            )
        except CursorInvalidError as e:
            return QueryCursorInvalid(error=e)
        except SearchBackendError as e:
            return QueryFailed(error=e)
        return QueryOk(page=page)

    async def fetch_page(
        self,
        query: str,
        type_filter: str | None,
        requested_page: int,
        limit: int,
        caller_cursor_id: str | None = None,
        caller_continuation_key: ContinuationKey | None = None,
        caller_page_hint: int | None = None,
    ) -> PageResultEntity:
        """
        Fetch one page of a walk over the results of ``query``.

        Reuses the caller's cursor, else the cached one for the query's
        signature, else opens a new one. If the backend reports the cursor
        invalid, the walk is restarted exactly once on a fresh cursor and the
        result is flagged ``reset``. Any other failure, and any failure of the
        restarted attempt, propagates.
        """
        signature = query_signature(query, type_filter)
        resolved = await self._resolve_cursor(signature, caller_cursor_id)
        page_number = self._resolve_page(
            requested_page,
            resolved.fresh,
            caller_continuation_key,
            caller_page_hint,
        )
        cursor_id = resolved.cursor_id
        reset = False

        outcome = await self._attempt(
            cursor_id, limit, caller_continuation_key, query, type_filter
        )

        if isinstance(outcome, QueryCursorInvalid):
            logger.warning(
                f"Cursor for signature '{signature}' is no longer valid, "
                f"restarting walk: {outcome.error}"
            )
            statsd.increment(METRIC_CURSOR_RESET)
            await self.cursor_cache.delete(signature)
            cursor_id = await self._open_and_cache(signature)
            outcome = await self._attempt(cursor_id, limit, None, query, type_filter)
            page_number = 1
            reset = True
            if isinstance(outcome, QueryCursorInvalid):
                # No second retry
                statsd.increment(METRIC_BACKEND_FAILURE)
                raise outcome.error

        if isinstance(outcome, QueryFailed):
            statsd.increment(METRIC_BACKEND_FAILURE)
            logger.error(f"Search failed for signature '{signature}': {outcome.error}")
            raise outcome.error

        backend_page = outcome.page
        if backend_page.cursor_id != cursor_id:
            await self.cursor_cache.rotate(
                signature,
                cursor_id,
                CursorHandle(
                    cursor_id=backend_page.cursor_id,
                    continuation_key=backend_page.continuation_key,
                ),
            )

        return self._shape(backend_page, page_number, limit, reset)

    @staticmethod
    def _shape(
        backend_page: BackendPage, page: int, limit: int, reset: bool
    ) -> PageResultEntity:
        raw_count = len(backend_page.items)
        has_more = compute_has_more(raw_count, limit, backend_page.total, page)
        visible = [item for item in backend_page.items if item.is_renderable]
        if len(visible) != raw_count:
            logger.info(
                f"Dropped {raw_count - len(visible)} unrenderable records from page {page}"
            )

        return PageResultEntity(
            items=visible,
            total=narrowed_total(
                backend_page.total, raw_count, len(visible), page, has_more, limit
            ),
            page=page,
            has_more=has_more,
            cursor_id=backend_page.cursor_id,
            continuation_key=backend_page.continuation_key,
            reset=reset,
        )

    async def create_cursor(self, keep_alive: str | None = None) -> str:
        cursor_id = await self.search_backend.open_cursor(keep_alive or self.keep_alive)
        statsd.increment(METRIC_CURSOR_CREATED)
        return cursor_id

    async def delete_cursor(self, cursor_id: str) -> bool:
        return await self.search_backend.close_cursor(cursor_id)

    async def check_backend(self) -> bool:
        return await self.search_backend.check_connection()


DMediaSearchUseCase = Annotated[MediaSearchUseCase, Depends(MediaSearchUseCase)]
