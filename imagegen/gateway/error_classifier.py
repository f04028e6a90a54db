"""Error Classifier — turns adapter failures into structured GenerationErrors.

Resolution order:
  1. Structured vendor code set by the adapter (BackendError.error_code)
  2. HTTP status (httpx.HTTPStatusError or BackendError.status_code)
  3. Transport class (httpx.TimeoutException, httpx.TransportError)
  4. Free-text fallback: substring match on the message
"""

from __future__ import annotations

import logging

import httpx

from imagegen.gateway.errors import BackendError, CapabilityUnsupportedError, ConfigurationError
from imagegen.gateway.types import ErrorCode, GenerationError

logger = logging.getLogger(__name__)

# Case-insensitive substrings that mark a free-text failure as retryable
RETRYABLE_PATTERNS = (
    "rate limit",
    "timeout",
    "temporarily unavailable",
    "503",
    "429",
    "quota",
)

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.AUTHENTICATION_FAILED,
    402: ErrorCode.QUOTA_EXCEEDED,
    403: ErrorCode.AUTHENTICATION_FAILED,
    408: ErrorCode.TIMEOUT,
    413: ErrorCode.INVALID_REQUEST,
    422: ErrorCode.INVALID_REQUEST,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.SERVICE_UNAVAILABLE,
    502: ErrorCode.SERVICE_UNAVAILABLE,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.TIMEOUT,
}


def is_retryable_message(message: str) -> bool:
    """Last-resort heuristic for adapters that only expose free text."""
    lowered = message.lower()
    return any(pattern in lowered for pattern in RETRYABLE_PATTERNS)


def code_for_status(status_code: int) -> ErrorCode | None:
    if status_code in _STATUS_CODES:
        return _STATUS_CODES[status_code]
    if status_code >= 500:
        return ErrorCode.SERVICE_UNAVAILABLE
    return None


def classify_error(exc: BaseException) -> GenerationError:
    """Map any failure raised during adapter execution to a GenerationError."""
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, CapabilityUnsupportedError):
        return _from_code(ErrorCode.CAPABILITY_UNSUPPORTED, message)

    if isinstance(exc, ConfigurationError):
        return _from_code(ErrorCode.CONFIGURATION, message)

    if isinstance(exc, BackendError):
        if exc.error_code is not None:
            return _from_code(exc.error_code, message, exc.retry_after)
        code = code_for_status(exc.status_code)
        if code is not None:
            return _from_code(code, message, exc.retry_after)

    if isinstance(exc, httpx.HTTPStatusError):
        code = code_for_status(exc.response.status_code)
        if code is not None:
            return _from_code(code, message, _retry_after(exc.response))

    if isinstance(exc, httpx.TimeoutException):
        return _from_code(ErrorCode.TIMEOUT, message or "Request timeout")

    if isinstance(exc, httpx.TransportError):
        return _from_code(ErrorCode.SERVICE_UNAVAILABLE, message)

    return GenerationError(
        code=ErrorCode.GENERATION_FAILED,
        message=message,
        retryable=is_retryable_message(message),
    )


def _from_code(code: ErrorCode, message: str, retry_after: float | None = None) -> GenerationError:
    return GenerationError(code=code, message=message, retryable=code.retryable, retry_after=retry_after)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.debug("Ignoring non-numeric Retry-After header: %s", value)
        return None
