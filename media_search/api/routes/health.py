from fastapi import APIRouter, status
from starlette.responses import Response

from media_search.domain.use_cases.media_search_use_case import DMediaSearchUseCase

router = APIRouter(tags=["Health"])


@router.get("/healthcheck")
def healthcheck() -> Response:
    """Returns 200 if the process is up."""
    return Response(status_code=status.HTTP_200_OK)


@router.get("/healthz")
async def readiness(media_search_use_case: DMediaSearchUseCase) -> Response:
    """Returns 200 if the search backend answers, 503 otherwise."""
    if await media_search_use_case.check_backend():
        return Response(status_code=status.HTTP_200_OK)
    return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
