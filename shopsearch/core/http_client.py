"""Asynchronous HTTP client helper.

Wraps :class:`httpx.AsyncClient` with the retry/backoff policy configured
per source (``error_retry`` in the source registry).  Adapters create one
client each and reuse it for connection pooling.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Set

import httpx

# HTTP status codes that should not trigger retries
NON_RETRYABLE_STATUS_CODES: Set[int] = {
    400,  # Bad Request
    401,  # Unauthorized
    403,  # Forbidden
    404,  # Not Found
    405,  # Method Not Allowed
    410,  # Gone
    422,  # Unprocessable Entity
}


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one upstream source."""

    max_attempts: int = 1
    initial_delay_ms: float = 500
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        return self.initial_delay_ms * (self.backoff_factor ** (attempt - 1)) / 1000

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=max(int(data.get("max_attempts", data.get("maxAttempts", 1))), 1),
            initial_delay_ms=float(data.get("initial_delay_ms", data.get("initialDelayMs", 500))),
            backoff_factor=float(data.get("backoff_factor", data.get("backoffFactor", 2.0))),
        )


class AsyncHTTPClient:
    """A small async HTTP client with retry logic.

    The underlying ``httpx.AsyncClient`` is created lazily so adapters can
    build their client at startup, outside a running event loop.  Callers
    own the overall deadline: the orchestrator cancels a request that runs
    past the source's timeout, including any pending backoff sleep.
    """

    DEFAULT_USER_AGENT = "shopsearch/0.1"

    def __init__(
        self,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        retry_on_status: Optional[Set[int]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialize the HTTP client.

        Parameters
        ----------
        timeout : float
            Default request timeout in seconds.
        retry_policy : RetryPolicy, optional
            Attempts and backoff; defaults to a single attempt.
        retry_on_status : set, optional
            HTTP status codes that should trigger retries.
            Defaults to 429, 500, 502, 503, 504.
        transport : httpx.AsyncBaseTransport, optional
            Custom transport (used by tests to stub upstreams).
        headers : dict, optional
            Extra default headers (e.g. API keys).
        """
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._retry_on_status = retry_on_status or {429, 500, 502, 503, 504}
        self._transport = transport
        self._headers = {"User-Agent": self.DEFAULT_USER_AGENT, **(headers or {})}
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._request_count = 0
        self._total_request_time = 0.0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AsyncHTTPClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _should_retry(self, status_code: int) -> bool:
        if status_code in NON_RETRYABLE_STATUS_CODES:
            return False
        return status_code in self._retry_on_status

    async def post_json(
        self,
        url: str,
        payload: Any,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """POST ``payload`` as JSON and return the decoded JSON body.

        Raises
        ------
        httpx.HTTPStatusError
            For error statuses, once retries are exhausted.
        httpx.RequestError
            For transport failures, once retries are exhausted.
        ValueError
            If the body is not valid JSON.
        """
        client = self._get_client()
        attempts = self._retry_policy.max_attempts
        last_exc: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            start_time = time.perf_counter()
            try:
                response = await client.post(
                    url,
                    json=payload,
                    timeout=timeout if timeout is not None else self._timeout,
                )
                elapsed = time.perf_counter() - start_time
                self._request_count += 1
                self._total_request_time += elapsed
                self.logger.debug(
                    "POST %s -> %d (%.2fms)", url[:100], response.status_code, elapsed * 1000
                )
                if response.status_code >= 400 and self._should_retry(response.status_code):
                    last_exc = httpx.HTTPStatusError(
                        f"Retryable status {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                    self.logger.warning(
                        "Retryable status %d for %s (attempt %d/%d)",
                        response.status_code,
                        url[:100],
                        attempt,
                        attempts,
                    )
                else:
                    response.raise_for_status()
                    return response.json()
            except (httpx.TimeoutException, httpx.RequestError) as exc:
                last_exc = exc
                self.logger.warning(
                    "Request error on POST %s (attempt %d/%d): %s",
                    url[:100],
                    attempt,
                    attempts,
                    exc,
                )

            if attempt < attempts:
                await asyncio.sleep(self._retry_policy.delay_for(attempt))

        self.logger.error("All %d attempts failed for POST %s", attempts, url[:100])
        if last_exc:
            raise last_exc
        raise RuntimeError("HTTP request failed without exception")

    @property
    def stats(self) -> Dict[str, Any]:
        """Request count and average latency."""
        return {
            "request_count": self._request_count,
            "total_time_ms": self._total_request_time * 1000,
            "avg_time_ms": (
                (self._total_request_time / self._request_count * 1000)
                if self._request_count > 0
                else 0
            ),
        }
