from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

from media_search.utils.logging import make_logger
from media_search.utils.model_utils import BaseModel

PROJECT_ROOT = Path(__file__).resolve().parents[2]
logger = make_logger(__name__)


class EnvVarKeys(str, Enum):
    ENVIRONMENT = "ENVIRONMENT"
    ES_HOST = "ES_HOST"
    ES_PORT = "ES_PORT"
    ES_USER = "ES_USER"
    ES_PASSWORD = "ES_PASSWORD"
    ES_INDEX = "ES_INDEX"
    ES_VERIFY_CERTS = "ES_VERIFY_CERTS"
    ES_REQUEST_TIMEOUT = "ES_REQUEST_TIMEOUT"
    ES_MAX_RETRIES = "ES_MAX_RETRIES"
    PIT_KEEP_ALIVE = "PIT_KEEP_ALIVE"
    PIT_CACHE_TTL_SECONDS = "PIT_CACHE_TTL_SECONDS"
    PIT_CACHE_MAX_SIZE = "PIT_CACHE_MAX_SIZE"
    MEDIA_BASE_URL = "MEDIA_BASE_URL"
    SEARCH_DEFAULT_LIMIT = "SEARCH_DEFAULT_LIMIT"
    SEARCH_MAX_LIMIT = "SEARCH_MAX_LIMIT"
    ALLOWED_ORIGINS = "ALLOWED_ORIGINS"
    DD_AGENT_HOST = "DD_AGENT_HOST"
    DD_STATSD_PORT = "DD_STATSD_PORT"


class Environment(str, Enum):
    DEV = "development"
    STAGING = "staging"
    PROD = "production"


refreshed_environment_variables = None


class EnvironmentVariables(BaseModel):
    ENVIRONMENT: str | None = Environment.DEV
    ES_HOST: str = "http://localhost"
    ES_PORT: int = 9200
    ES_USER: str | None = None
    ES_PASSWORD: str | None = None
    ES_INDEX: str = "media"
    ES_VERIFY_CERTS: bool = False
    ES_REQUEST_TIMEOUT: float = 60.0  # Elasticsearch request timeout in seconds
    ES_MAX_RETRIES: int = 5  # Transport-level retries for connect errors
    PIT_KEEP_ALIVE: str = "5m"  # Backend-side cursor keep-alive
    PIT_CACHE_TTL_SECONDS: int = 240  # Stale strictly before the backend expires it
    PIT_CACHE_MAX_SIZE: int = 1000  # Least recently used entries evicted past this
    MEDIA_BASE_URL: str = "https://www.imago-images.de"
    SEARCH_DEFAULT_LIMIT: int = 50
    SEARCH_MAX_LIMIT: int = 200
    ALLOWED_ORIGINS: str | None = None
    DD_AGENT_HOST: str | None = None
    DD_STATSD_PORT: str | None = None

    @property
    def es_base_url(self) -> str:
        return f"{self.ES_HOST.rstrip('/')}:{self.ES_PORT}"

    @classmethod
    def refresh(cls, force_refresh: bool = False) -> EnvironmentVariables | None:
        global refreshed_environment_variables
        if refreshed_environment_variables is not None and not force_refresh:
            return refreshed_environment_variables

        if os.environ.get(EnvVarKeys.ENVIRONMENT, Environment.DEV) == Environment.DEV:
            load_dotenv(dotenv_path=Path(PROJECT_ROOT / ".env"), override=False)
        environment_variables = EnvironmentVariables(
            ENVIRONMENT=os.environ.get(EnvVarKeys.ENVIRONMENT, Environment.DEV),
            ES_HOST=os.environ.get(EnvVarKeys.ES_HOST, "http://localhost"),
            ES_PORT=int(os.environ.get(EnvVarKeys.ES_PORT, "9200")),
            ES_USER=os.environ.get(EnvVarKeys.ES_USER),
            ES_PASSWORD=os.environ.get(EnvVarKeys.ES_PASSWORD),
            ES_INDEX=os.environ.get(EnvVarKeys.ES_INDEX, "media"),
            ES_VERIFY_CERTS=(
                os.environ.get(EnvVarKeys.ES_VERIFY_CERTS, "false") == "true"
            ),
            ES_REQUEST_TIMEOUT=float(
                os.environ.get(EnvVarKeys.ES_REQUEST_TIMEOUT, "60.0")
            ),
            ES_MAX_RETRIES=int(os.environ.get(EnvVarKeys.ES_MAX_RETRIES, "5")),
            PIT_KEEP_ALIVE=os.environ.get(EnvVarKeys.PIT_KEEP_ALIVE, "5m"),
            PIT_CACHE_TTL_SECONDS=int(
                os.environ.get(EnvVarKeys.PIT_CACHE_TTL_SECONDS, "240")
            ),
            PIT_CACHE_MAX_SIZE=int(
                os.environ.get(EnvVarKeys.PIT_CACHE_MAX_SIZE, "1000")
            ),
            MEDIA_BASE_URL=os.environ.get(
                EnvVarKeys.MEDIA_BASE_URL, "https://www.imago-images.de"
            ),
            SEARCH_DEFAULT_LIMIT=int(
                os.environ.get(EnvVarKeys.SEARCH_DEFAULT_LIMIT, "50")
            ),
            SEARCH_MAX_LIMIT=int(os.environ.get(EnvVarKeys.SEARCH_MAX_LIMIT, "200")),
            ALLOWED_ORIGINS=os.environ.get(EnvVarKeys.ALLOWED_ORIGINS, "*"),
            DD_AGENT_HOST=os.environ.get(EnvVarKeys.DD_AGENT_HOST),
            DD_STATSD_PORT=os.environ.get(EnvVarKeys.DD_STATSD_PORT),
        )
        logger.info(
            f"Loaded environment '{environment_variables.ENVIRONMENT}' "
            f"(index={environment_variables.ES_INDEX}, "
            f"pit_keep_alive={environment_variables.PIT_KEEP_ALIVE}, "
            f"pit_cache_ttl={environment_variables.PIT_CACHE_TTL_SECONDS}s)"
        )
        refreshed_environment_variables = environment_variables
        return refreshed_environment_variables

    @classmethod
    def clear_cache(cls):
        """Clear the cached environment variables to force refresh on next access"""
        global refreshed_environment_variables
        refreshed_environment_variables = None
