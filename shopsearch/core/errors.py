"""Error taxonomy for shopsearch.

Adapter-level problems never cross the adapter boundary as exceptions; they
are captured as :class:`ErrorInfo` values on the returned result.  Only
orchestration-level hard failures (no usable sources, a timeout without
fallback, an invalid query) are raised to the caller, always as a
:class:`ShopSearchError` carrying a machine-readable ``code``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCode(str, Enum):
    """Machine-readable error codes shared by results and exceptions."""

    NO_VALID_SOURCES = "NO_VALID_SOURCES"
    INVALID_QUERY = "INVALID_QUERY"
    CONFIG_ERROR = "CONFIG_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    ENRICHMENT_FAILED = "ENRICHMENT_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Configuration and validation problems will not fix themselves on retry.
_NON_RETRYABLE = {
    ErrorCode.NO_VALID_SOURCES,
    ErrorCode.INVALID_QUERY,
    ErrorCode.CONFIG_ERROR,
    ErrorCode.UNAUTHORIZED,
    ErrorCode.INVALID_RESPONSE,
}


def is_retryable(code: str) -> bool:
    """Return True when a later attempt with the same input may succeed."""
    try:
        return ErrorCode(code) not in _NON_RETRYABLE
    except ValueError:
        return False


@dataclass(frozen=True)
class ErrorInfo:
    """Describes why a source (or enrichment) call produced no data."""

    message: str
    code: str
    source_id: str

    @property
    def retryable(self) -> bool:
        return is_retryable(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "source_id": self.source_id}


class ShopSearchError(Exception):
    """Base class for every exception raised by shopsearch."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ConfigurationError(ShopSearchError):
    """Invalid configuration or options."""

    default_code = ErrorCode.CONFIG_ERROR


class NoValidSourcesError(ConfigurationError):
    """None of the requested sources is registered and able to search."""

    default_code = ErrorCode.NO_VALID_SOURCES

    def __init__(self, requested: Any) -> None:
        super().__init__(
            f"No valid sources selected for search (requested: {list(requested)})",
            details={"requested": list(requested)},
        )


class InvalidQueryError(ShopSearchError):
    """The search query is empty or malformed."""

    default_code = ErrorCode.INVALID_QUERY


class SourceTimeoutError(ShopSearchError):
    """A source exceeded its timeout while fallback was disabled."""

    default_code = ErrorCode.TIMEOUT

    def __init__(self, source_id: str, timeout_ms: float) -> None:
        super().__init__(
            f"{source_id} search timeout after {timeout_ms:.0f}ms",
            details={"source_id": source_id, "timeout_ms": timeout_ms},
        )
        self.source_id = source_id
        self.timeout_ms = timeout_ms


class AdapterError(ShopSearchError):
    """Raised inside adapters; converted to ErrorInfo before leaving them."""

    default_code = ErrorCode.UPSTREAM_ERROR


class RateLimitExceededError(AdapterError):
    default_code = ErrorCode.RATE_LIMITED


class InvalidResponseError(AdapterError):
    """Upstream answered with something that does not fit the contract."""

    default_code = ErrorCode.INVALID_RESPONSE


class UpstreamError(AdapterError):
    default_code = ErrorCode.UPSTREAM_ERROR


def _status_code_to_error(status: int) -> ErrorCode:
    if status == 429:
        return ErrorCode.RATE_LIMITED
    if status in (401, 403):
        return ErrorCode.UNAUTHORIZED
    if status >= 500:
        return ErrorCode.UPSTREAM_UNAVAILABLE
    return ErrorCode.UPSTREAM_ERROR


def classify_exception(exc: BaseException, source_id: str) -> ErrorInfo:
    """Translate an exception raised while talking to a source into ErrorInfo."""
    if isinstance(exc, ShopSearchError):
        code, message = exc.code, exc.message
    elif isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        code = _status_code_to_error(status)
        message = f"HTTP {status} from {source_id}"
    elif isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        code, message = ErrorCode.UPSTREAM_TIMEOUT, f"Request to {source_id} timed out"
    elif isinstance(exc, httpx.RequestError):
        code, message = ErrorCode.UPSTREAM_UNAVAILABLE, f"{type(exc).__name__}: {exc}"
    elif isinstance(exc, (ValueError, KeyError, TypeError)):
        code, message = ErrorCode.INVALID_RESPONSE, f"Malformed response: {exc}"
    else:
        code, message = ErrorCode.UPSTREAM_ERROR, str(exc) or type(exc).__name__
    return ErrorInfo(message=message, code=code.value, source_id=source_id)
