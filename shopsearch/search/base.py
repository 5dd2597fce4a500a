"""Standard contract for product source adapters.

Every adapter wraps one upstream provider.  Subclasses implement the raw
calls (:meth:`SourceAdapter._fetch_products`, :meth:`SourceAdapter._fetch_enrichment`);
the base class supplies the behaviour shared by all of them:

- adapter-private result cache (skipped when ``no_cache`` is set)
- adapter-private token bucket, refusing the call with ``RATE_LIMITED``
- normalization of raw payloads into :class:`Product`
- conversion of every upstream failure into an :class:`ErrorInfo`

``search`` and ``enrich`` therefore never raise for upstream problems.
Cancellation (``asyncio.CancelledError``) is always propagated so the
orchestrator can abandon a call that exceeded its timeout.
"""

from __future__ import annotations

import logging
import time
from abc import ABC
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence

from shopsearch.core.cache import TTLCache, make_cache_key
from shopsearch.core.data_models import (
    EnrichmentResult,
    EnrichOptions,
    Product,
    SearchOptions,
    SearchResult,
)
from shopsearch.core.errors import ErrorCode, ErrorInfo, InvalidResponseError, classify_exception
from shopsearch.core.http_client import AsyncHTTPClient, RetryPolicy
from shopsearch.core.rate_limiter import TokenBucket


class RawPage(NamedTuple):
    """One page of raw upstream products."""

    products: Sequence[Mapping[str, Any]]
    total: Optional[int] = None
    cursor: Optional[str] = None



class SourceAdapter(ABC):
    """Base class for all product sources.

    Class attributes give the defaults for a concrete adapter; the
    constructor may override them from configuration.
    """

    source_id: str = ""
    display_name: str = ""
    priority: int = 99
    # Upper bound on products per call; larger requested limits are clamped.
    max_page_size: int = 20
    supports_search: bool = True
    supports_enrichment: bool = False

    def __init__(
        self,
        *,
        source_id: Optional[str] = None,
        display_name: Optional[str] = None,
        priority: Optional[int] = None,
        rate_limiter: Optional[TokenBucket] = None,
        cache: Optional[TTLCache] = None,
        default_params: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            source_id: Registry id (defaults to the class attribute)
            display_name: Human readable name
            priority: Merge/truncation rank, lower is preferred
            rate_limiter: Token bucket owned by this adapter only
            cache: Result cache owned by this adapter only
            default_params: Upstream parameters merged into every call
        """
        self.source_id = source_id or self.source_id
        if not self.source_id:
            raise ValueError(f"{self.__class__.__name__} needs a source_id")
        self.display_name = display_name or self.display_name or self.source_id
        self.priority = self.priority if priority is None else int(priority)
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.default_params = dict(default_params or {})
        self.logger = logging.getLogger(f"shopsearch.source.{self.source_id}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_id={self.source_id!r}, priority={self.priority})"

    # -- search -----------------------------------------------------------------

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResult:
        """Search the upstream for ``query``.

        Returns a :class:`SearchResult`; upstream failures are reported via
        its ``error`` field with an empty product list.
        """
        if not self.supports_search:
            raise NotImplementedError(f"{self.source_id} does not support search")

        options = options or SearchOptions()
        limit = max(1, min(options.limit, self.max_page_size))
        params = {**self.default_params, **options.params}
        start = time.perf_counter()

        cache_key = None
        if self.cache is not None:
            cache_parts = {**options.cache_parts(), "limit": limit, "params": params}
            cache_key = make_cache_key(self.source_id, "search", query, cache_parts)
            if not options.no_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    self.logger.debug("Returning cached results for %r", query)
                    return cached.with_latency(self._elapsed_ms(start))

        if not self._acquire_token():
            self.logger.warning("%s search rate limit exceeded for %r", self.display_name, query)
            return self._failure(
                ErrorInfo(
                    message=f"{self.display_name} search rate limit exceeded",
                    code=ErrorCode.RATE_LIMITED.value,
                    source_id=self.source_id,
                ),
                start,
            )

        try:
            self.logger.info("Searching %s for %r", self.display_name, query)
            fetched = await self._fetch_products(
                query,
                limit=limit,
                filters=options.filters,
                params=params,
                timeout_ms=options.timeout_ms,
            )
            page = RawPage(*fetched)
            products = self.normalize_products(page.products)[:limit]
        except NotImplementedError:
            raise
        except Exception as exc:
            error = classify_exception(exc, self.source_id)
            self.logger.error(
                "%s search failed for %r: [%s] %s", self.display_name, query, error.code, error.message
            )
            return self._failure(error, start)

        result = SearchResult(
            source_id=self.source_id,
            products=products,
            total_count=page.total if page.total is not None else len(products),
            latency_ms=self._elapsed_ms(start),
            display_name=self.display_name,
            cursor=page.cursor,
        )
        self.logger.info(
            "%s search completed: %d products in %.0fms",
            self.display_name,
            len(products),
            result.latency_ms,
        )

        if cache_key is not None and not options.no_cache:
            self.cache.set(cache_key, result)
        return result

    async def _fetch_products(
        self,
        query: str,
        *,
        limit: int,
        filters: Mapping[str, Any],
        params: Mapping[str, Any],
        timeout_ms: int,
    ) -> RawPage:
        """Call the upstream and return a :class:`RawPage` (or ``(raw products, total)``)."""
        raise NotImplementedError

    def normalize_products(self, raw_products: Sequence[Mapping[str, Any]]) -> List[Product]:
        """Map raw upstream products onto the closed schema.

        Individual malformed products are skipped; a payload that is not a
        list at all fails the whole call.
        """
        if not isinstance(raw_products, (list, tuple)):
            raise InvalidResponseError(
                f"Expected a list of products, got {type(raw_products).__name__}"
            )
        products = []
        for raw in raw_products:
            try:
                products.append(self.normalize_product(raw))
            except InvalidResponseError as exc:
                self.logger.warning("Skipping malformed product from %s: %s", self.source_id, exc)
        return products

    def normalize_product(self, raw: Mapping[str, Any]) -> Product:
        return Product.from_raw(raw, self.source_id)

    # -- enrichment -------------------------------------------------------------

    async def enrich(self, query: str, options: Optional[EnrichOptions] = None) -> EnrichmentResult:
        """Fetch contextual information for ``query``.

        Failures are reported via the ``error`` field of the result.
        """
        if not self.supports_enrichment:
            raise NotImplementedError(f"{self.source_id} does not support enrichment")

        options = options or EnrichOptions()
        params = {**self.default_params, **options.params}
        start = time.perf_counter()

        cache_key = None
        if self.cache is not None:
            cache_key = make_cache_key(self.source_id, "enrich", query, params)
            if not options.no_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    return cached

        if not self._acquire_token():
            self.logger.warning("%s enrichment rate limit exceeded", self.display_name)
            return EnrichmentResult(
                latency_ms=self._elapsed_ms(start),
                error=ErrorInfo(
                    message=f"{self.display_name} enrichment rate limit exceeded",
                    code=ErrorCode.RATE_LIMITED.value,
                    source_id=self.source_id,
                ),
            )

        try:
            self.logger.info("Enriching with %s: %r", self.display_name, query)
            result = await self._fetch_enrichment(
                query, params=params, timeout_ms=options.timeout_ms, no_cache=options.no_cache
            )
        except NotImplementedError:
            raise
        except Exception as exc:
            error = classify_exception(exc, self.source_id)
            self.logger.error("%s enrichment failed: [%s] %s", self.display_name, error.code, error.message)
            return EnrichmentResult(latency_ms=self._elapsed_ms(start), error=error)

        if cache_key is not None and not options.no_cache and result.ok:
            self.cache.set(cache_key, result)
        return result

    async def _fetch_enrichment(
        self,
        query: str,
        *,
        params: Mapping[str, Any],
        timeout_ms: int,
        no_cache: bool,
    ) -> EnrichmentResult:
        raise NotImplementedError

    def enhance_products(
        self, products: Sequence[Product], enrichment: EnrichmentResult
    ) -> List[Product]:
        """Attach enrichment to the top product only; the rest are untouched."""
        enhanced = list(products)
        if not enrichment.content or not enhanced:
            return enhanced
        enhanced[0] = enhanced[0].annotate(
            description=enrichment.content, citations=enrichment.citations
        )
        return enhanced

    # -- lifecycle / helpers ----------------------------------------------------

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""

    def _acquire_token(self) -> bool:
        return self.rate_limiter is None or self.rate_limiter.try_consume(1)

    def _failure(self, error: ErrorInfo, start: float) -> SearchResult:
        return SearchResult.failure(
            self.source_id,
            error,
            latency_ms=self._elapsed_ms(start),
            display_name=self.display_name,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000


class ToolEndpointAdapter(SourceAdapter):
    """Adapter for a provider exposed as a JSON tool endpoint over HTTP."""

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str = "",
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[AsyncHTTPClient] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not endpoint:
            raise ValueError(f"{self.source_id} needs an endpoint")
        self.endpoint = endpoint
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self.http_client = http_client or AsyncHTTPClient(
            retry_policy=retry_policy, headers=headers
        )

    async def _call_tool(self, payload: Mapping[str, Any], timeout_ms: int) -> Dict[str, Any]:
        data = await self.http_client.post_json(self.endpoint, payload, timeout=timeout_ms / 1000)
        if not isinstance(data, dict):
            raise InvalidResponseError(
                f"{self.source_id} returned {type(data).__name__}, expected an object"
            )
        return data

    async def aclose(self) -> None:
        await self.http_client.aclose()
