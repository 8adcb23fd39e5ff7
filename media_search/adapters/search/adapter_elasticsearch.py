from typing import Annotated, Any

import httpx
from fastapi import Depends
from httpx import ConnectError, HTTPStatusError, TimeoutException

from media_search.adapters.search.exceptions import (
    CursorInvalidError,
    SearchBackendError,
    SearchBackendTimeoutError,
    SearchBackendUnavailableError,
    is_cursor_invalid_message,
)
from media_search.adapters.search.port import SearchBackend
from media_search.config.dependencies import DEnvironmentVariables, DHttpxClient
from media_search.domain.entities.cursors import (
    DEFAULT_TYPE_FILTER,
    ContinuationKey,
    normalize_type_filter,
)
from media_search.domain.entities.media import (
    BackendPage,
    MediaItemEntity,
    MediaType,
)
from media_search.utils.logging import make_logger

logger = make_logger(__name__)

SEARCH_FIELDS = ["suchtext", "fotografen", "bildnummer"]
TYPE_FIELD = "db"
SOURCE_FIELDS = (
    "bildnummer",
    "datum",
    "suchtext",
    "fotografen",
    "hoehe",
    "breite",
    "db",
    "description",
)
# _shard_doc is the cheapest unique tiebreaker inside a point in time
SORT = [{"_score": "desc"}, {"_shard_doc": "asc"}]
IMAGE_NUMBER_WIDTH = 10


def build_query(query: str, type_filter: str | None) -> dict[str, Any]:
    text = query.strip() if query else ""
    must: dict[str, Any] = (
        {
            "multi_match": {
                "query": text,
                "fields": SEARCH_FIELDS,
                "operator": "and",
                "lenient": True,
            }
        }
        if text
        else {"match_all": {}}
    )
    # Normalised like the query signature
    db = normalize_type_filter(type_filter)
    if db == DEFAULT_TYPE_FILTER:
        return must
    return {
        "bool": {
            "must": [must],
            "filter": [{"term": {TYPE_FIELD: db}}],
        }
    }


def build_image_url(base_url: str, db: str | None, bildnummer: str | None) -> str | None:
    if not bildnummer or not bildnummer.strip():
        return None
    padded = bildnummer.strip().zfill(IMAGE_NUMBER_WIDTH)
    return f"{base_url.rstrip('/')}/bild/{db or MediaType.STOCK.value}/{padded}/s.jpg"


def _error_message(response: httpx.Response) -> str:
    """Flatten an Elasticsearch error body into a single line."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, str):
        return error
    if not isinstance(error, dict):
        return response.text or f"HTTP {response.status_code}"

    parts = [f"{error.get('type', 'error')}: {error.get('reason', '')}".strip()]
    for cause in error.get("root_cause") or []:
        reason = f"{cause.get('type', '')}: {cause.get('reason', '')}".strip(": ")
        if reason and reason not in parts:
            parts.append(reason)
    return "; ".join(parts)


class ElasticsearchGateway(SearchBackend):
    """
    Search backend speaking the Elasticsearch REST API over a shared httpx client.

    The client owns the transport timeout and connect retries; nothing here
    retries a request.
    """

    def __init__(
        self,
        environment_variables: DEnvironmentVariables,
        httpx_client: DHttpxClient,
    ):
        self.environment_variables = environment_variables
        self.client = httpx_client
        self.base_url = environment_variables.es_base_url
        self.index = environment_variables.ES_INDEX
        self.keep_alive = environment_variables.PIT_KEEP_ALIVE

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            logger.debug(f"Making {method} request to {url}")
            response = await self.client.request(
                method, url, json=payload, params=params
            )
            response.raise_for_status()
            return response.json()

        except HTTPStatusError as e:
            message = _error_message(e.response)
            if is_cursor_invalid_message(message) or is_cursor_invalid_message(
                e.response.text
            ):
                logger.warning(f"Cursor no longer valid for {method} {path}: {message}")
                raise CursorInvalidError(
                    message, backend_status=e.response.status_code
                ) from e
            logger.error(
                f"HTTP error {e.response.status_code} for {method} {path}: {message}"
            )
            raise SearchBackendError(
                message, backend_status=e.response.status_code
            ) from e
        except TimeoutException as e:
            logger.error(f"Timeout error for {method} {path}: {e}")
            raise SearchBackendTimeoutError(
                f"Search backend timed out: {e}"
            ) from e
        except ConnectError as e:
            logger.error(f"Connection error for {method} {path}: {e}")
            raise SearchBackendUnavailableError(
                f"Search backend unavailable: {e}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Unexpected transport error for {method} {path}: {e}")
            raise SearchBackendError(str(e)) from e

    async def open_cursor(self, keep_alive: str | None = None) -> str:
        result = await self._request(
            "POST",
            f"/{self.index}/_pit",
            params={"keep_alive": keep_alive or self.keep_alive},
        )
        cursor_id = result.get("id")
        if not cursor_id:
            raise SearchBackendError("Search backend did not return a cursor id")
        logger.info(f"Opened cursor on index '{self.index}'")
        return cursor_id

    async def query_page(
        self,
        cursor_id: str,
        limit: int,
        continuation_key: ContinuationKey | None,
        query: str,
        type_filter: str | None = None,
    ) -> BackendPage:
        body: dict[str, Any] = {
            "size": limit,
            "pit": {"id": cursor_id, "keep_alive": self.keep_alive},
            "sort": SORT,
            "query": build_query(query, type_filter),
            "track_total_hits": True,
        }
        if continuation_key:
            body["search_after"] = continuation_key

        result = await self._request("POST", "/_search", payload=body)

        hits = result.get("hits", {})
        raw_hits = hits.get("hits", [])
        total = hits.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)

        return BackendPage(
            items=[self._to_media_item(hit) for hit in raw_hits],
            total=total,
            continuation_key=raw_hits[-1].get("sort") if raw_hits else continuation_key,
            cursor_id=result.get("pit_id") or cursor_id,
        )

    async def close_cursor(self, cursor_id: str) -> bool:
        try:
            result = await self._request("DELETE", "/_pit", payload={"id": cursor_id})
        except SearchBackendError as e:
            if isinstance(e, CursorInvalidError) or e.backend_status == 404:
                logger.info("Cursor was already closed by the backend")
                return False
            raise
        return bool(result.get("succeeded", False))

    async def check_connection(self) -> bool:
        try:
            health = await self._request("GET", "/_cluster/health")
        except SearchBackendError as e:
            logger.error(f"Search backend health check failed: {e}")
            return False
        logger.info(f"Search backend reachable, cluster status: {health.get('status')}")
        return True

    def _to_media_item(self, hit: dict[str, Any]) -> MediaItemEntity:
        source = hit.get("_source") or {}
        fields = {
            key: str(source[key])
            for key in SOURCE_FIELDS
            if source.get(key) is not None
        }
        return MediaItemEntity(
            id=str(hit.get("_id")),
            url=build_image_url(
                self.environment_variables.MEDIA_BASE_URL,
                fields.get("db"),
                fields.get("bildnummer"),
            ),
            **fields,
        )


DSearchBackend = Annotated[SearchBackend, Depends(ElasticsearchGateway)]
