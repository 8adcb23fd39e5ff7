from typing import Annotated

import httpx
from fastapi import Depends
from httpx import Limits, Timeout

from media_search.config.environment_variables import EnvironmentVariables
from media_search.domain.services.cursor_cache import CursorCache
from media_search.utils.logging import make_logger
from media_search.utils.timestamp import parse_keep_alive

logger = make_logger(__name__)

DEFAULT_LIMITS = Limits(
    max_keepalive_connections=100,
    max_connections=200,
    keepalive_expiry=30,  # Seconds to keep connections alive
)


class Singleton(type):
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super().__call__(*args, **kwargs)
        return cls._instances[cls]


def create_search_httpx_client(
    environment_variables: EnvironmentVariables,
) -> httpx.AsyncClient:
    """Build the shared client used to talk to Elasticsearch."""
    auth = None
    if environment_variables.ES_USER:
        auth = httpx.BasicAuth(
            environment_variables.ES_USER, environment_variables.ES_PASSWORD or ""
        )
    return httpx.AsyncClient(
        auth=auth,
        timeout=Timeout(environment_variables.ES_REQUEST_TIMEOUT),
        # Connect-level retries only; a request that reached the backend is never replayed
        transport=httpx.AsyncHTTPTransport(
            retries=environment_variables.ES_MAX_RETRIES,
            verify=environment_variables.ES_VERIFY_CERTS,
            limits=DEFAULT_LIMITS,
        ),
        headers={"Content-Type": "application/json"},
    )


class GlobalDependencies(metaclass=Singleton):
    def __init__(self):
        self.environment_variables: EnvironmentVariables = (
            EnvironmentVariables.refresh()
        )
        self.httpx_client: httpx.AsyncClient | None = None
        self.cursor_cache: CursorCache = CursorCache(
            ttl_seconds=self.environment_variables.PIT_CACHE_TTL_SECONDS,
            max_size=self.environment_variables.PIT_CACHE_MAX_SIZE,
        )
        self._loaded = False

    async def load(self):
        if self._loaded:
            return

        self.environment_variables = EnvironmentVariables.refresh()
        keep_alive_seconds = parse_keep_alive(self.environment_variables.PIT_KEEP_ALIVE)
        if self.environment_variables.PIT_CACHE_TTL_SECONDS >= keep_alive_seconds:
            logger.warning(
                f"PIT_CACHE_TTL_SECONDS ({self.environment_variables.PIT_CACHE_TTL_SECONDS}) "
                f"is not below PIT_KEEP_ALIVE ({self.environment_variables.PIT_KEEP_ALIVE}); "
                "cached cursors may be handed out after the backend dropped them"
            )
        self.httpx_client = create_search_httpx_client(self.environment_variables)
        logger.info(
            f"Search client initialized for {self.environment_variables.es_base_url}"
        )
        self._loaded = True


async def startup_global_dependencies():
    global_dependencies = GlobalDependencies()
    await global_dependencies.load()


async def async_shutdown():
    global_dependencies = GlobalDependencies()

    if global_dependencies.httpx_client:
        await global_dependencies.httpx_client.aclose()
        global_dependencies.httpx_client = None
    global_dependencies._loaded = False

    await global_dependencies.cursor_cache.clear()


def resolve_environment_variable_dependency(environment_variable_key: str):
    return getattr(GlobalDependencies().environment_variables, environment_variable_key)


def httpx_client() -> httpx.AsyncClient:
    return GlobalDependencies().httpx_client


def cursor_cache() -> CursorCache:
    return GlobalDependencies().cursor_cache


DEnvironmentVariables = Annotated[
    EnvironmentVariables, Depends(lambda: GlobalDependencies().environment_variables)
]
DHttpxClient = Annotated[httpx.AsyncClient, Depends(httpx_client)]
DCursorCache = Annotated[CursorCache, Depends(cursor_cache)]
