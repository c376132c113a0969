from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """OAuth 2.0 / OIDC error codes returned to clients."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    INVALID_SCOPE = "invalid_scope"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_TOKEN = "invalid_token"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    ACCESS_DENIED = "access_denied"
    LOGIN_REQUIRED = "login_required"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self]


HTTP_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.INVALID_CLIENT: 401,
    ErrorKind.INVALID_GRANT: 400,
    ErrorKind.INVALID_SCOPE: 400,
    ErrorKind.UNAUTHORIZED_CLIENT: 400,
    ErrorKind.UNSUPPORTED_GRANT_TYPE: 400,
    ErrorKind.UNSUPPORTED_RESPONSE_TYPE: 400,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.INSUFFICIENT_SCOPE: 403,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.LOGIN_REQUIRED: 401,
    ErrorKind.SERVER_ERROR: 500,
    ErrorKind.TEMPORARILY_UNAVAILABLE: 503,
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    description: str | None = None


# Every domain operation returns one of the two; the route layer maps Err
# to an HTTP response through ErrorKind.status_code.
Result = Union[Ok[T], Err]
