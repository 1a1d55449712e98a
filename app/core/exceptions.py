"""
Core exceptions for the application.
"""

import enum


class ErrorKind(str, enum.Enum):
    INVALID_INPUT = "InvalidInput"
    INVALID_CREDENTIALS = "InvalidCredentials"
    FORBIDDEN = "Forbidden"
    RATE_LIMITED = "RateLimited"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    NETWORK_ERROR = "NetworkError"
    TIMEOUT = "Timeout"
    UNSUPPORTED_PROVIDER = "UnsupportedProvider"
    PERMISSION_DENIED = "PermissionDenied"
    NOT_FOUND = "NotFound"
    INTERNAL_ERROR = "InternalError"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.NETWORK_ERROR: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.UNSUPPORTED_PROVIDER: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL_ERROR: 500,
}


class APIException(Exception):
    """Base class for API exceptions."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class ProviderError(APIException):
    """A failure normalized into the error taxonomy.

    `diagnostic` keeps the raw provider detail for logs; it is never sent
    back to the caller.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        diagnostic: str | None = None,
    ):
        self.kind = kind
        self.diagnostic = diagnostic
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, message={self.message!r})"


class PermissionDeniedError(APIException):
    """Raised when a user doesn't have permission to perform an action."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NotFoundError(APIException):
    """Raised when a requested resource is not found."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class InvalidStatusTransition(APIException):
    """Raised when an account lifecycle transition is not allowed."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move account from '{current}' to '{target}'")
