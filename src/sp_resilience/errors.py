"""
SP Resilience - Error Types and Translation

Defines the error hierarchy for the resilience layer and the translation
from raw transport failures into classified domain errors.

- ErrorKind enum: closed set of failure kinds (values double as wire codes)
- DomainError: one exception type discriminated by ErrorKind
- translate_api_error: pure classification of transport-shaped errors
- translate_to_error_response: user-facing structured error rendering
"""

import json
import logging
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_MS = 1000

VALIDATION_CODES = frozenset({"InvalidInput", "InvalidParameterValue", "ValidationError"})
THROTTLING_CODES = frozenset({"Throttled", "ThrottlingException", "RequestThrottled"})
QUOTA_CODES = frozenset({"QuotaExceeded"})

ERROR_RESOURCE_URI = "error://sp-resilience/error"


class ErrorKind(str, Enum):
    """
    Closed set of classified failure kinds.

    The value of each member is the error code surfaced to clients.
    """

    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    THROTTLING = "THROTTLING_ERROR"
    SERVER = "SERVER_ERROR"
    NETWORK = "NETWORK_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_BREAKER_OPEN"
    CLIENT = "CLIENT_ERROR"


_MESSAGE_PREFIXES: dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION: "Authentication failed",
    ErrorKind.AUTHORIZATION: "Authorization failed",
    ErrorKind.VALIDATION: "Validation error",
    ErrorKind.RESOURCE_NOT_FOUND: "Resource not found",
    ErrorKind.RATE_LIMIT_EXCEEDED: "Rate limit exceeded",
    ErrorKind.THROTTLING: "Throttling error",
    ErrorKind.SERVER: "Server error",
    ErrorKind.NETWORK: "Network error",
    ErrorKind.CLIENT: "Client error",
}


class ResilienceError(Exception):
    """Base exception for all SP Resilience errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ResilienceError):
    """Raised when configuration is invalid or missing."""

    pass


class DomainError(ResilienceError):
    """
    A classified API failure.

    Attributes are read-only once constructed; a handled DomainError is
    discarded rather than mutated.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
        retry_after_ms: int | None = None,
        status_code: int | None = None,
    ):
        Exception.__init__(self, message)
        self._message = message
        self._details = MappingProxyType(dict(details or {}))
        self._kind = kind
        self._retry_after_ms = retry_after_ms
        self._status_code = status_code

    @property
    def message(self) -> str:
        return self._message

    @property
    def details(self) -> Mapping[str, Any]:
        return self._details

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def code(self) -> str:
        return self._kind.value

    @property
    def retry_after_ms(self) -> int | None:
        return self._retry_after_ms

    @property
    def status_code(self) -> int | None:
        return self._status_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["details"] = dict(self._details)
        data["code"] = self.code
        if self._retry_after_ms is not None:
            data["retry_after_ms"] = self._retry_after_ms
        return data

    def __repr__(self) -> str:
        return f"DomainError(kind={self._kind.name}, message={self.message!r})"


class ApiError(Exception):
    """
    Transport-shaped error raised by the API client layer.

    Carries the raw HTTP status (None for connection-level failures),
    response headers, decoded body and an optional error code.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self.body = body
        self.code = code


def _body_error_code(body: Any) -> str | None:
    """Extract the first error code from an API error body."""
    if not isinstance(body, Mapping):
        return None

    code = body.get("code")
    if isinstance(code, str):
        return code

    errors = body.get("errors")
    if isinstance(errors, list):
        for entry in errors:
            if isinstance(entry, Mapping) and isinstance(entry.get("code"), str):
                return str(entry["code"])

    return None


def _parse_retry_after(headers: httpx.Headers) -> int:
    """Convert a retry-after header in seconds to milliseconds."""
    raw = headers.get("retry-after")
    if raw is None:
        return DEFAULT_RETRY_AFTER_MS
    try:
        seconds = int(raw.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_MS
    if seconds < 0:
        return DEFAULT_RETRY_AFTER_MS
    return seconds * 1000


def _decode_response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except httpx.ResponseNotRead:
        return None
    except ValueError:
        return response.text


def _extract_transport_fields(error: BaseException) -> tuple[str, int | None, httpx.Headers, Any, str | None]:
    """Normalize supported error shapes into (message, status, headers, body, code)."""
    if isinstance(error, ApiError):
        return error.message, error.status_code, error.headers, error.body, error.code

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return str(error), response.status_code, response.headers, _decode_response_body(response), None

    return str(error) or type(error).__name__, None, httpx.Headers(), None, None


def _is_connection_failure(error: BaseException) -> bool:
    if isinstance(error, ApiError):
        return error.status_code is None
    return isinstance(error, httpx.TransportError | ConnectionError | TimeoutError)


def _classify(
    status_code: int | None, code: str | None, connection_failure: bool
) -> ErrorKind:
    if status_code is None:
        return ErrorKind.NETWORK if connection_failure else ErrorKind.CLIENT

    if status_code == 401:
        return ErrorKind.AUTHENTICATION
    if status_code == 403:
        return ErrorKind.AUTHORIZATION
    if status_code >= 500:
        return ErrorKind.SERVER
    if status_code == 404:
        return ErrorKind.RESOURCE_NOT_FOUND
    if status_code == 400 or (400 <= status_code < 500 and code in VALIDATION_CODES):
        return ErrorKind.VALIDATION
    if 400 <= status_code < 500 and code in THROTTLING_CODES:
        return ErrorKind.THROTTLING
    if status_code == 429 or (400 <= status_code < 500 and code in QUOTA_CODES):
        return ErrorKind.RATE_LIMIT_EXCEEDED

    return ErrorKind.CLIENT


def translate_api_error(error: BaseException) -> DomainError:
    """
    Translate a raw transport error into a classified DomainError.

    Pure with respect to the input shape: the same status, headers, body and
    code always yield the same kind.

    Args:
        error: ApiError, httpx error, connection error or DomainError

    Returns:
        Classified DomainError (the input itself if already classified)
    """
    if isinstance(error, DomainError):
        return error

    message, status_code, headers, body, transport_code = _extract_transport_fields(error)
    code = transport_code or _body_error_code(body)
    kind = _classify(status_code, code, _is_connection_failure(error))

    details: dict[str, Any] = {"status_code": status_code, "body": body}
    if code:
        details["error_code"] = code

    retry_after_ms = None
    if kind in (ErrorKind.RATE_LIMIT_EXCEEDED, ErrorKind.THROTTLING):
        retry_after_ms = _parse_retry_after(headers)

    prefix = _MESSAGE_PREFIXES[kind] if status_code is not None or kind is ErrorKind.NETWORK else "Unknown error"
    translated = DomainError(
        kind,
        f"{prefix}: {message}",
        details=details,
        retry_after_ms=retry_after_ms,
        status_code=status_code,
    )

    log_extra = {
        "status_code": status_code,
        "error_code": translated.code,
        "retry_after_ms": retry_after_ms,
    }
    if kind in (ErrorKind.RATE_LIMIT_EXCEEDED, ErrorKind.THROTTLING, ErrorKind.RESOURCE_NOT_FOUND):
        logger.warning(f"{prefix} (status={status_code})", extra=log_extra)
    else:
        logger.error(f"{prefix} (status={status_code})", extra=log_extra)

    return translated


def translate_to_error_response(error: BaseException) -> dict[str, Any]:
    """
    Render an error as a structured MCP tool error response.

    Example:
        >>> translate_to_error_response(DomainError(ErrorKind.VALIDATION, "Bad SKU"))
        {
            "content": [{"type": "text", "text": "Bad SKU"}],
            "isError": True,
            "errorDetails": {"code": "VALIDATION_ERROR", "message": "Bad SKU", "details": {}}
        }
    """
    if isinstance(error, DomainError):
        return {
            "content": [{"type": "text", "text": error.message}],
            "isError": True,
            "errorDetails": {
                "code": error.code,
                "message": error.message,
                "details": dict(error.details),
            },
        }

    message = str(error) or "An unknown error occurred"
    return {
        "content": [{"type": "text", "text": message}],
        "isError": True,
        "errorDetails": {
            "code": "UNKNOWN_ERROR",
            "message": message,
            "details": {},
        },
    }


def handle_tool_error(error: object) -> dict[str, Any]:
    """Log and render an error raised inside an MCP tool."""
    logger.error("Tool error", extra={"error": str(error), "error_type": type(error).__name__})

    if isinstance(error, DomainError):
        return translate_to_error_response(error)

    if isinstance(error, BaseException):
        return {
            "content": [{"type": "text", "text": f"Error: {error}"}],
            "isError": True,
            "errorDetails": {"code": "UNKNOWN_ERROR", "message": str(error), "details": {}},
        }

    return {
        "content": [{"type": "text", "text": f"An unknown error occurred: {error}"}],
        "isError": True,
        "errorDetails": {"code": "UNKNOWN_ERROR", "message": str(error), "details": {}},
    }


def handle_resource_error(error: object) -> dict[str, Any]:
    """Log and render an error raised while reading an MCP resource."""
    logger.error("Resource error", extra={"error": str(error), "error_type": type(error).__name__})

    if isinstance(error, DomainError):
        payload: dict[str, Any] = {
            "error": True,
            "code": error.code,
            "message": error.message,
            "details": dict(error.details),
        }
    else:
        payload = {"error": True, "code": "UNKNOWN_ERROR", "message": str(error)}

    return {
        "contents": [
            {
                "uri": ERROR_RESOURCE_URI,
                "text": json.dumps(payload, indent=2, default=str),
                "mimeType": "application/json",
            }
        ]
    }
