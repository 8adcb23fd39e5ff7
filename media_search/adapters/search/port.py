from abc import ABC, abstractmethod

from media_search.domain.entities.cursors import ContinuationKey
from media_search.domain.entities.media import BackendPage


class SearchBackend(ABC):
    """
    Interface for search engines that page through results with
    point-in-time cursors.
    """

    @abstractmethod
    async def open_cursor(self, keep_alive: str | None = None) -> str:
        """
        Open a point-in-time cursor over the collection.

        Args:
            keep_alive: Backend time unit string, e.g. "5m"

        Returns:
            The new cursor id
        """
        raise NotImplementedError

    @abstractmethod
    async def query_page(
        self,
        cursor_id: str,
        limit: int,
        continuation_key: ContinuationKey | None,
        query: str,
        type_filter: str | None = None,
    ) -> BackendPage:
        """
        Fetch the next ``limit`` hits after ``continuation_key`` inside a cursor.

        The backend may rotate the cursor id; callers must persist
        ``BackendPage.cursor_id`` rather than the id they passed in.

        Raises:
            CursorInvalidError: If the cursor no longer exists
            SearchBackendError: For any other backend failure
        """
        raise NotImplementedError

    @abstractmethod
    async def close_cursor(self, cursor_id: str) -> bool:
        """
        Release a cursor.

        Returns:
            True if the backend closed it, False if it was already gone
        """
        raise NotImplementedError

    @abstractmethod
    async def check_connection(self) -> bool:
        raise NotImplementedError
