from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorKind(str, Enum):
    NETWORK = "NetworkError"
    TIMEOUT = "TimeoutError"
    AUTH = "AuthError"
    FORBIDDEN = "ForbiddenError"
    NOT_FOUND = "NotFoundError"
    SERVER = "ServerError"
    CLIENT = "ClientError"
    PARSE = "ParseError"


RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER})


class ErrorRecord(BaseModel):
    kind: ErrorKind
    message: str
    http_status: Optional[int] = None


class ConfigError(ValueError):
    """Invalid client configuration."""


class ApiError(RuntimeError):
    """Base error for the HTTP client.

    Every subclass pins a `kind`; the kind alone decides whether the
    client retries the request.
    """

    kind: ErrorKind = ErrorKind.CLIENT

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def record(self) -> ErrorRecord:
        return ErrorRecord(kind=self.kind, message=self.message, http_status=self.status)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_payload(self) -> Dict[str, Any]:
        """Shape handed to UI collaborators: `{message, status?}`."""
        payload: Dict[str, Any] = {"message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, status={self.status!r})"


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK


class RequestTimeoutError(ApiError):
    kind = ErrorKind.TIMEOUT


class AuthError(ApiError):
    kind = ErrorKind.AUTH


class ForbiddenError(ApiError):
    kind = ErrorKind.FORBIDDEN


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND


class ServerError(ApiError):
    kind = ErrorKind.SERVER


class ClientError(ApiError):
    kind = ErrorKind.CLIENT


class ParseError(ApiError):
    kind = ErrorKind.PARSE


def error_for_status(status: int, message: str) -> ApiError:
    """Map a non-2xx HTTP status onto the error taxonomy."""
    if status == 401:
        return AuthError(message, status=status)
    if status == 403:
        return ForbiddenError(message, status=status)
    if status == 404:
        return NotFoundError(message, status=status)
    if 500 <= status < 600:
        return ServerError(message, status=status)
    return ClientError(message, status=status)


def should_retry(error: BaseException) -> bool:
    """True for transport failures, timeouts and 5xx; False for everything else."""
    return isinstance(error, ApiError) and error.retryable


__all__ = [
    "ApiError",
    "AuthError",
    "ClientError",
    "ConfigError",
    "ErrorKind",
    "ErrorRecord",
    "ForbiddenError",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "RequestTimeoutError",
    "ServerError",
    "error_for_status",
    "should_retry",
]
