from __future__ import annotations

from typing import Any

import httpx

from media_search.adapters.search.exceptions import is_cursor_invalid_message
from media_search.api.schemas.media import CreatePitResponse, SearchResponse
from media_search.domain.entities.cursors import (
    ContinuationKey,
    serialize_continuation_key,
)
from media_search.utils.logging import make_logger

logger = make_logger(__name__)

SEARCH_PATH = "/api/v1/media/search"
PIT_PATH = "/api/v1/media/pit"


class SearchRequestError(Exception):
    """
    A failed call to the search API, classified for the fetch loop.

    ``status_code`` is None when the request never got a response.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500

    @property
    def cursor_invalid(self) -> bool:
        return is_cursor_invalid_message(self.message)

    def __repr__(self) -> str:
        return f"SearchRequestError(status_code={self.status_code}, message={self.message!r})"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return response.text


class MediaSearchClient:
    """Async client for the media search API that carries cursor state in headers."""

    def __init__(
        self,
        base_url: str | None = None,
        httpx_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        if httpx_client is None and base_url is None:
            raise ValueError("Either base_url or httpx_client is required")
        self._owns_client = httpx_client is None
        self.httpx_client = httpx_client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout)
        )

    async def __aenter__(self) -> MediaSearchClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.httpx_client.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.httpx_client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.warning(
                f"{method} {url} failed with {e.response.status_code}: {message}"
            )
            raise SearchRequestError(message, e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            raise SearchRequestError(str(e) or type(e).__name__) from e
        return response

    async def search(
        self,
        query: str,
        type_filter: str | None = None,
        page: int = 1,
        limit: int | None = None,
        cursor_id: str | None = None,
        continuation_key: ContinuationKey | None = None,
        page_hint: int | None = None,
    ) -> SearchResponse:
        params: dict[str, Any] = {"q": query, "page": page}
        if limit is not None:
            params["limit"] = limit
        if type_filter:
            params["type"] = type_filter

        headers: dict[str, str] = {}
        if cursor_id:
            headers["x-pit-id"] = cursor_id
        if continuation_key is not None:
            headers["x-search-after"] = serialize_continuation_key(continuation_key)
        if page_hint is not None:
            headers["x-current-page"] = str(page_hint)

        response = await self._send("GET", SEARCH_PATH, params=params, headers=headers)
        return SearchResponse.model_validate(response.json())

    async def create_pit(self, keep_alive: str = "5m") -> str:
        response = await self._send("POST", PIT_PATH, json={"keepAlive": keep_alive})
        return CreatePitResponse.model_validate(response.json()).pit_id

    async def delete_pit(self, pit_id: str) -> None:
        await self._send("DELETE", f"{PIT_PATH}/{pit_id}")
