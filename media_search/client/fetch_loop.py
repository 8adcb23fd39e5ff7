from __future__ import annotations

from media_search.api.schemas.media import MediaItem, SearchResponse
from media_search.client.api_client import MediaSearchClient, SearchRequestError
from media_search.client.mirror import ClientCursorMirror
from media_search.domain.entities.cursors import ContinuationKey, query_signature
from media_search.utils.logging import make_logger

logger = make_logger(__name__)


class PagedFetchLoop:
    """
    Walks a result set page by page, as an infinite-scroll view would.

    Items accumulate across pages. When the server replaces the cursor
    mid-walk (``pitReset``), items already shown are kept and new pages are
    appended after them, so a reset can repeat records that were shown
    before. At most one page request is in flight at a time.
    """

    def __init__(
        self,
        client: MediaSearchClient,
        mirror: ClientCursorMirror,
        query: str = "",
        type_filter: str | None = None,
        limit: int | None = None,
    ):
        self.client = client
        self.mirror = mirror
        self.limit = limit
        self.query = query
        self.type_filter = type_filter
        self._in_flight = False
        self._reset_state()

    def _reset_state(self) -> None:
        self.items: list[MediaItem] = []
        self.total: int = 0
        self.page: int = 0
        self.has_more: bool = True
        self.cursor_id: str | None = None
        self.continuation_key: ContinuationKey | None = None
        self.last_error: SearchRequestError | None = None
        self.reset_count: int = 0

    @property
    def signature(self) -> str:
        return query_signature(self.query, self.type_filter)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def start(self) -> None:
        """Activate this walk's signature and resume from a live mirrored cursor."""
        entry = await self.mirror.switch(self.signature)
        if entry is None:
            return
        logger.info(f"Resuming '{self.signature}' after page {entry.page}")
        self.cursor_id = entry.cursor_id
        self.continuation_key = entry.continuation_key
        self.page = entry.page

    async def restart(self, query: str, type_filter: str | None = None) -> None:
        """Abandon the current walk and begin a new one for ``query``."""
        self.query = query
        self.type_filter = type_filter
        self._reset_state()
        await self.start()

    async def fetch_next_page(self) -> SearchResponse | None:
        """
        Fetch the page after the last one received.

        Returns None without calling the server when a request is already in
        flight or the walk is exhausted.

        Raises:
            SearchRequestError: If the server call fails. A cursor-invalid
                failure also clears the mirrored cursor so the next call
                starts a fresh walk.
        """
        if self._in_flight:
            logger.debug(f"Fetch for '{self.signature}' already in flight")
            return None
        if not self.has_more:
            return None

        self._in_flight = True
        try:
            resuming = self.cursor_id is not None
            response = await self.client.search(
                self.query,
                type_filter=self.type_filter,
                page=self.page + 1,
                limit=self.limit,
                cursor_id=self.cursor_id,
                continuation_key=self.continuation_key,
                page_hint=self.page + 1 if resuming else None,
            )
            await self._apply(response)
        except SearchRequestError as e:
            self.last_error = e
            if e.cursor_invalid:
                logger.warning(f"Cursor for '{self.signature}' rejected, clearing mirror")
                await self.mirror.clear(self.signature)
                self.cursor_id = None
                self.continuation_key = None
                self.page = 0
            raise
        finally:
            self._in_flight = False

        return response

    async def _apply(self, response: SearchResponse) -> None:
        metadata = response.metadata
        if metadata.pit_reset:
            self.reset_count += 1
            logger.info(f"Server replaced the cursor for '{self.signature}'")
            await self.mirror.save(
                self.signature,
                metadata.pit_id,
                metadata.search_after,
                page=response.page,
                overwrite=True,
            )
        else:
            await self.mirror.save(
                self.signature,
                metadata.pit_id,
                metadata.search_after,
                page=response.page,
            )

        self.items.extend(response.items)
        self.total = response.total
        self.page = response.page
        self.has_more = response.has_more
        self.cursor_id = metadata.pit_id
        self.continuation_key = metadata.search_after
        self.last_error = None

    async def fetch_all(self, max_pages: int | None = None) -> list[MediaItem]:
        """Fetch pages until the walk is exhausted or ``max_pages`` were fetched."""
        fetched = 0
        while self.has_more and (max_pages is None or fetched < max_pages):
            if await self.fetch_next_page() is None:
                break
            fetched += 1
        return self.items
