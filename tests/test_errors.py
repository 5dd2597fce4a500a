"""Tests for the error taxonomy."""

import asyncio

import httpx
import pytest

from shopsearch.core.errors import (
    ConfigurationError,
    ErrorCode,
    ErrorInfo,
    InvalidQueryError,
    InvalidResponseError,
    NoValidSourcesError,
    ShopSearchError,
    SourceTimeoutError,
    classify_exception,
    is_retryable,
)


def _status_error(status):
    request = httpx.Request("POST", "http://upstream.test/tool")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_default_codes(self):
        """Test that each exception carries its code."""
        assert InvalidQueryError("empty").code == ErrorCode.INVALID_QUERY
        assert NoValidSourcesError(["x"]).code == ErrorCode.NO_VALID_SOURCES
        assert SourceTimeoutError("serpapi", 800).code == ErrorCode.TIMEOUT
        assert ConfigurationError("bad").code == ErrorCode.CONFIG_ERROR

    def test_hierarchy(self):
        """Test that no-valid-sources is a configuration error."""
        assert issubclass(NoValidSourcesError, ConfigurationError)
        assert issubclass(ConfigurationError, ShopSearchError)

    def test_str_includes_code(self):
        """Test the string form."""
        assert str(InvalidQueryError("Query is empty")) == "[INVALID_QUERY] Query is empty"

    def test_timeout_details(self):
        """Test that timeout errors name the source."""
        exc = SourceTimeoutError("search1api", 800)
        assert exc.source_id == "search1api"
        assert exc.to_dict()["details"] == {"source_id": "search1api", "timeout_ms": 800}
        assert "800ms" in exc.message

    def test_no_valid_sources_details(self):
        """Test that the requested ids are kept."""
        exc = NoValidSourcesError(("a", "b"))
        assert exc.details["requested"] == ["a", "b"]


class TestRetryable:
    """Tests for retryability."""

    @pytest.mark.parametrize(
        "code",
        [ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT, ErrorCode.UPSTREAM_UNAVAILABLE],
    )
    def test_retryable_codes(self, code):
        """Test transient failures are retryable."""
        assert is_retryable(code.value)

    @pytest.mark.parametrize(
        "code",
        [ErrorCode.INVALID_QUERY, ErrorCode.UNAUTHORIZED, ErrorCode.CONFIG_ERROR],
    )
    def test_non_retryable_codes(self, code):
        """Test permanent failures are not retryable."""
        assert not is_retryable(code.value)

    def test_unknown_code(self):
        """Test unknown codes are treated as permanent."""
        assert not is_retryable("SOMETHING_ELSE")

    def test_error_info_retryable(self):
        """Test the ErrorInfo property."""
        assert ErrorInfo("x", ErrorCode.RATE_LIMITED.value, "s").retryable


class TestClassifyException:
    """Tests for mapping exceptions to ErrorInfo."""

    @pytest.mark.parametrize(
        "status,code",
        [
            (429, ErrorCode.RATE_LIMITED),
            (401, ErrorCode.UNAUTHORIZED),
            (403, ErrorCode.UNAUTHORIZED),
            (503, ErrorCode.UPSTREAM_UNAVAILABLE),
            (404, ErrorCode.UPSTREAM_ERROR),
        ],
    )
    def test_http_status(self, status, code):
        """Test HTTP status mapping."""
        info = classify_exception(_status_error(status), "serpapi")
        assert info.code == code.value
        assert info.source_id == "serpapi"
        assert str(status) in info.message

    def test_timeout(self):
        """Test httpx timeouts."""
        info = classify_exception(httpx.ReadTimeout("slow"), "s")
        assert info.code == ErrorCode.UPSTREAM_TIMEOUT.value

    def test_asyncio_timeout(self):
        """Test asyncio timeouts."""
        info = classify_exception(asyncio.TimeoutError(), "s")
        assert info.code == ErrorCode.UPSTREAM_TIMEOUT.value

    def test_connection_error(self):
        """Test transport failures."""
        info = classify_exception(httpx.ConnectError("refused"), "s")
        assert info.code == ErrorCode.UPSTREAM_UNAVAILABLE.value

    def test_parse_errors(self):
        """Test parsing failures map to invalid response."""
        for exc in (ValueError("bad json"), KeyError("products"), TypeError("none")):
            assert classify_exception(exc, "s").code == ErrorCode.INVALID_RESPONSE.value

    def test_own_errors_keep_code(self):
        """Test that package exceptions keep their code and message."""
        info = classify_exception(InvalidResponseError("not a list"), "s")
        assert info.code == ErrorCode.INVALID_RESPONSE.value
        assert info.message == "not a list"

    def test_unknown_error(self):
        """Test the fallback mapping."""
        info = classify_exception(RuntimeError("weird"), "s")
        assert info.code == ErrorCode.UPSTREAM_ERROR.value
        assert info.message == "weird"
