import os
from contextlib import asynccontextmanager

from datadog import initialize, statsd
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from media_search.api.logged_api_route import LoggedAPIRoute
from media_search.api.RequestLoggingMiddleware import RequestLoggingMiddleware
from media_search.api.routes import health, media
from media_search.config import dependencies
from media_search.config.dependencies import resolve_environment_variable_dependency
from media_search.config.environment_variables import EnvVarKeys
from media_search.domain.exceptions import GenericException
from media_search.utils.logging import make_logger

logger = make_logger(__name__)

API_PREFIX = "/api/v1"


def configure_statsd():
    """Configure the global DataDog StatsD client"""
    initialize(
        statsd_host=os.getenv("DD_AGENT_HOST", "localhost"),
        statsd_port=int(os.getenv("DD_STATSD_PORT", "8125")),
    )
    return statsd


@asynccontextmanager
async def lifespan(_: FastAPI):
    await dependencies.startup_global_dependencies()
    configure_statsd()
    yield
    await dependencies.async_shutdown()


fastapi_app = FastAPI(
    title="Media Search API",
    openapi_url="/openapi.json",
    docs_url="/swagger",
    redoc_url="/api",
    root_path="",
    root_path_in_servers=False,
    lifespan=lifespan,
    route_class=LoggedAPIRoute,
    separate_input_output_schemas=False,
)

allowed_origins = resolve_environment_variable_dependency(EnvVarKeys.ALLOWED_ORIGINS)
allowed_origins_list = (
    [origin.strip() for origin in allowed_origins.split(",")]
    if allowed_origins and isinstance(allowed_origins, str)
    else ["*"]
)
fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    # Browsers only expose these to scripts when listed
    expose_headers=["x-request-id"],
)
fastapi_app.add_middleware(RequestLoggingMiddleware)


def format_error_response(
    error: str, message: str, status_code: int, detail=None
) -> JSONResponse:
    content = {"error": error, "message": message, "code": status_code}
    if detail is not None:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


@fastapi_app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    exc_str = f"{exc}".replace("\n", " ").replace("   ", " ")
    logger.error(f"{request.method} {request.url.path}: {exc_str}")
    return format_error_response(
        "Validation Error", exc_str, status.HTTP_422_UNPROCESSABLE_ENTITY
    )


@fastapi_app.exception_handler(GenericException)
async def handle_generic(request: Request, exc: GenericException):
    if exc.code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc!r}")
    return format_error_response(exc.error, exc.message, exc.code, exc.detail)


@fastapi_app.exception_handler(HTTPException)
async def handle_http_exc(request: Request, exc: HTTPException):
    return format_error_response("HTTP Error", str(exc.detail), exc.status_code)


@fastapi_app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled exception caught by exception handler", exc_info=exc)
    return format_error_response("Internal Server Error", str(exc), 500)


fastapi_app.include_router(health.router)
fastapi_app.include_router(media.router, prefix=API_PREFIX)

app = fastapi_app
