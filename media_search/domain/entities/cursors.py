import json
from datetime import datetime
from typing import Any

from pydantic import Field

from media_search.domain.exceptions import MalformedContinuationKeyError
from media_search.utils.model_utils import BaseModel

# Sort values of the last record on a page. Only the search adapter interprets
# the individual values; everywhere else this is an opaque JSON array.
ContinuationKey = list[Any]

DEFAULT_TYPE_FILTER = "all"


class CursorHandle(BaseModel):
    """
    A backend-issued point-in-time cursor plus the position reached inside it.

    The backend expires ``cursor_id`` after its own keep-alive window. Caches
    holding a handle consider it stale earlier than that, so ``expires_at`` is
    the cache's view of the deadline, not the backend's.
    """

    cursor_id: str = Field(..., description="Opaque cursor (PIT) id")
    continuation_key: ContinuationKey | None = Field(
        None, description="Sort values of the last record returned"
    )
    created_at: datetime | None = Field(
        None, description="When the cache first stored this cursor"
    )
    expires_at: datetime | None = Field(
        None, description="When the cache stops handing this cursor out"
    )


def normalize_query(query: str | None) -> str:
    if not query:
        return ""
    return " ".join(query.split()).lower()


def normalize_type_filter(type_filter: str | None) -> str:
    if not type_filter or not type_filter.strip():
        return DEFAULT_TYPE_FILTER
    return type_filter.strip().lower()


def query_signature(query: str | None, type_filter: str | None) -> str:
    """
    Deterministic cache key for a logical walk over a result set.

    Two requests whose query text differs only in case or surrounding /
    repeated whitespace, with the same type filter, share a signature.
    """
    return f"{normalize_query(query)}:{normalize_type_filter(type_filter)}"


def parse_continuation_key(raw: str | None) -> ContinuationKey | None:
    """
    Parse a continuation key received at the protocol boundary.

    Raises:
        MalformedContinuationKeyError: If the value is not a JSON array
    """
    if raw is None or raw == "":
        return None
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedContinuationKeyError(
            "The search_after parameter could not be parsed as JSON",
            detail=str(e),
        ) from e
    if not isinstance(value, list):
        raise MalformedContinuationKeyError(
            "The search_after parameter must be a JSON array"
        )
    return value


def serialize_continuation_key(key: ContinuationKey | None) -> str | None:
    if key is None:
        return None
    return json.dumps(key, separators=(",", ":"))
