class GenericException(Exception):
    message: str
    code: int = 500  # Default code is 500
    error: str = "Internal Server Error"
    detail: str | list[str] | None = None

    def __init__(
        self,
        message: str,
        code: int | None = None,
        detail: str | list[str] | None = None,
        error: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if detail is not None:
            self.detail = detail
        if error is not None:
            self.error = error

    def __str__(self):
        return self.message

    def __repr__(self):
        return f"{self.__class__.__name__}: {self.message}"


class ClientError(GenericException):
    """
    Raised when a client error occurs. Use this as an exception base class for all client
    exceptions.
    """

    code: int = 400
    error: str = "Bad Request"


class ServiceError(GenericException):
    """
    Raised when an error that is not caused by bad user input occurs within the service
    """

    code: int = 500
    error: str = "Search failed"


class MalformedContinuationKeyError(ClientError):
    """
    Raised when the caller-supplied continuation key (``x-search-after``) is not
    a JSON array.
    """

    code = 400
    error = "Invalid search_after parameter"
