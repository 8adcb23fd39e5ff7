from media_search.domain.exceptions import ServiceError

# Phrases Elasticsearch uses when a point-in-time / scroll context is gone.
CURSOR_INVALID_PHRASES: tuple[str, ...] = (
    "No search context found",
    "PIT not found",
    "search_context_missing_exception",
)


def is_cursor_invalid_message(message: str | None) -> bool:
    if not message:
        return False
    return any(phrase in message for phrase in CURSOR_INVALID_PHRASES)


class SearchBackendError(ServiceError):
    """Base exception for all search backend failures."""

    code = 500
    backend_status: int | None = None

    def __init__(self, message: str, backend_status: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if backend_status is not None:
            self.backend_status = backend_status


class SearchBackendUnavailableError(SearchBackendError):
    """
    Exception raised when the search backend cannot be reached.
    This includes connection refusals and DNS failures.
    """

    code = 500


class SearchBackendTimeoutError(SearchBackendError):
    """
    Exception raised when a search backend call exceeds its transport timeout.
    Not retried by the pagination layer.
    """

    code = 500


class CursorInvalidError(SearchBackendError):
    """
    Exception raised when the backend no longer knows the cursor it was given,
    typically because its keep-alive elapsed.
    """

    code = 500
