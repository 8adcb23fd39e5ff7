from fastapi import APIRouter, Body, Header, Query, Response, status

from media_search.adapters.search.exceptions import SearchBackendError
from media_search.api.logged_api_route import LoggedAPIRoute
from media_search.api.schemas.media import (
    CreatePitRequest,
    CreatePitResponse,
    MediaItem,
    SearchMetadata,
    SearchResponse,
)
from media_search.config.dependencies import DEnvironmentVariables
from media_search.domain.entities.cursors import parse_continuation_key
from media_search.domain.exceptions import ClientError
from media_search.domain.use_cases.media_search_use_case import DMediaSearchUseCase
from media_search.utils.logging import make_logger
from media_search.utils.timestamp import parse_keep_alive

logger = make_logger(__name__)


router = APIRouter(prefix="/media", tags=["Media"], route_class=LoggedAPIRoute)


def _parse_positive_int(value: str | None, default: int | None) -> int | None:
    """Lenient integer parsing: anything unparseable or < 1 yields ``default``."""
    if value is None:
        return default
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return default
    return parsed if parsed >= 1 else default


@router.get(
    "/search",
    response_model=SearchResponse,
    summary="Search media",
    description="Keyword search with cursor-based deep pagination. Send back the "
    "returned metadata as x-pit-id, x-search-after and x-current-page headers "
    "to fetch the next page.",
)
async def search_media(
    media_search_use_case: DMediaSearchUseCase,
    environment_variables: DEnvironmentVariables,
    q: str = Query("", description="Search text"),
    page: str | None = Query(None, description="Page number"),
    limit: str | None = Query(None, description="Page size"),
    type: str | None = Query(None, description="Collection filter (st or sp)"),
    x_pit_id: str | None = Header(None, description="Cursor from a previous page"),
    x_search_after: str | None = Header(
        None, description="JSON array continuation key from a previous page"
    ),
    x_current_page: str | None = Header(
        None, description="Page number the caller is requesting"
    ),
) -> SearchResponse:
    # Validated before anything touches the backend
    continuation_key = parse_continuation_key(x_search_after)

    query = q.strip() if q else ""
    page_limit = min(
        _parse_positive_int(limit, environment_variables.SEARCH_DEFAULT_LIMIT),
        environment_variables.SEARCH_MAX_LIMIT,
    )

    result = await media_search_use_case.fetch_page(
        query=query,
        type_filter=type or None,
        requested_page=_parse_positive_int(page, 1),
        limit=page_limit,
        caller_cursor_id=x_pit_id or None,
        caller_continuation_key=continuation_key,
        caller_page_hint=_parse_positive_int(x_current_page, None),
    )
    return SearchResponse(
        items=[MediaItem.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        has_more=result.has_more,
        metadata=SearchMetadata(
            pit_id=result.cursor_id,
            search_after=result.continuation_key,
            current_page=result.page,
            pit_reset=True if result.reset else None,
        ),
    )


@router.post(
    "/pit",
    response_model=CreatePitResponse,
    summary="Open a cursor",
)
async def create_pit(
    media_search_use_case: DMediaSearchUseCase,
    request: CreatePitRequest | None = Body(None),
) -> CreatePitResponse:
    keep_alive = request.keep_alive if request else "5m"
    try:
        parse_keep_alive(keep_alive)
    except ValueError as e:
        raise ClientError(str(e), error="Invalid keepAlive parameter") from e

    try:
        pit_id = await media_search_use_case.create_cursor(keep_alive)
    except SearchBackendError as e:
        raise SearchBackendError(e.message, error="Failed to create PIT") from e
    return CreatePitResponse(pit_id=pit_id)


@router.delete(
    "/pit/{pit_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a cursor",
)
async def delete_pit(
    pit_id: str,
    media_search_use_case: DMediaSearchUseCase,
) -> Response:
    try:
        closed = await media_search_use_case.delete_cursor(pit_id)
    except SearchBackendError as e:
        raise SearchBackendError(e.message, error="Failed to delete PIT") from e
    if not closed:
        logger.info("Delete requested for a cursor the backend no longer holds")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
