"""Multi-source search orchestrator.

A search moves through a fixed sequence of states::

    CACHE_CHECK -> DISPATCH -> COLLECT -> MERGE -> ENRICH -> FINALIZE

The composite cache is consulted first; on a miss the selected adapters are
called (in parallel or one after another) under a per-call timeout, their
results are merged, the top product is optionally enriched and the final
response is cached.  A single failing source never fails the whole search.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from shopsearch.core.cache import COMPOSITE_TTL, TTLCache, make_cache_key
from shopsearch.core.config import parse_bool, snake_case
from shopsearch.core.data_models import (
    EnrichmentResult,
    EnrichOptions,
    MultiSourceResult,
    Product,
    SearchOptions,
    SearchResult,
    SourceSummary,
)
from shopsearch.core.errors import (
    ErrorCode,
    ErrorInfo,
    InvalidQueryError,
    NoValidSourcesError,
    SourceTimeoutError,
)
from shopsearch.core.logging_setup import PERFORMANCE_BUDGETS, log_performance
from shopsearch.core.merge import MergeStrategy, merge_results

if TYPE_CHECKING:
    from shopsearch.core.registry import AdapterRegistry
    from shopsearch.search.base import SourceAdapter

logger = logging.getLogger(__name__)

ENRICHMENT_QUERY = (
    "Tell me about {title}. Include details about key features, "
    "price comparisons, and user reviews."
)

# (low, high) for each numeric option; out-of-range values are clamped.
OPTION_BOUNDS: Dict[str, Tuple[int, int]] = {
    "max_results": (1, 50),
    "max_parallel": (1, 5),
    "timeout_ms": (100, 5000),
    "results_per_source": (1, 20),
}


def _clamp(name: str, value: Any, default: int) -> int:
    low, high = OPTION_BOUNDS[name]
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r, using %d", name, value, default)
        return default
    clamped = min(max(number, low), high)
    if clamped != number:
        logger.debug("Clamped %s from %d to %d", name, number, clamped)
    return clamped


@dataclass(frozen=True)
class MultiSourceOptions:
    """Options for one multi-source search.

    ``sources`` of ``None`` means the configured default set.
    """

    sources: Optional[Tuple[str, ...]] = None
    parallel: bool = True
    merge_strategy: MergeStrategy = MergeStrategy.INTERLEAVE
    max_results: int = 10
    max_parallel: int = 3
    timeout_ms: int = 800
    fallback_on_timeout: bool = True
    results_per_source: int = 3
    include_enrichment: bool = True
    filters: Dict[str, Any] = field(default_factory=dict)
    no_cache: bool = False

    @classmethod
    def from_dict(
        cls,
        data: Optional[Mapping[str, Any]] = None,
        defaults: Optional["MultiSourceOptions"] = None,
    ) -> "MultiSourceOptions":
        """Build options from a plain mapping.

        Keys may be snake_case or camelCase; ``default_sources`` is accepted
        as an alias of ``sources``.  Missing or ``None`` values fall back to
        ``defaults`` (or the built-in defaults).
        """
        base = defaults or cls()
        raw = {snake_case(str(key)): value for key, value in (data or {}).items()}
        if raw.get("sources") is None and raw.get("default_sources") is not None:
            raw["sources"] = raw["default_sources"]

        def pick(name: str) -> Any:
            value = raw.get(name)
            return getattr(base, name) if value is None else value

        sources = pick("sources")
        if isinstance(sources, str):
            sources = [s.strip() for s in sources.split(",") if s.strip()]

        return cls(
            sources=tuple(sources) if sources is not None else None,
            parallel=parse_bool(pick("parallel")),
            merge_strategy=MergeStrategy.parse(pick("merge_strategy")),
            max_results=_clamp("max_results", pick("max_results"), base.max_results),
            max_parallel=_clamp("max_parallel", pick("max_parallel"), base.max_parallel),
            timeout_ms=_clamp("timeout_ms", pick("timeout_ms"), base.timeout_ms),
            fallback_on_timeout=parse_bool(pick("fallback_on_timeout")),
            results_per_source=_clamp(
                "results_per_source", pick("results_per_source"), base.results_per_source
            ),
            include_enrichment=parse_bool(pick("include_enrichment")),
            filters=dict(pick("filters") or {}),
            no_cache=parse_bool(pick("no_cache")),
        )

    def cache_key(self, query: str, sources: Sequence[str]) -> str:
        """Composite cache key; independent of source order and of timing options."""
        return make_cache_key(
            "multi_source",
            query,
            sorted(sources),
            self.merge_strategy.value,
            self.max_results,
            self.filters,
            self.results_per_source,
            self.include_enrichment,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": list(self.sources) if self.sources is not None else None,
            "parallel": self.parallel,
            "merge_strategy": self.merge_strategy.value,
            "max_results": self.max_results,
            "max_parallel": self.max_parallel,
            "timeout_ms": self.timeout_ms,
            "fallback_on_timeout": self.fallback_on_timeout,
            "results_per_source": self.results_per_source,
            "include_enrichment": self.include_enrichment,
            "filters": dict(self.filters),
            "no_cache": self.no_cache,
        }


class MultiSourceOrchestrator:
    """Coordinates product searches across the registered sources."""

    def __init__(
        self,
        registry: "AdapterRegistry",
        composite_cache: Optional[TTLCache] = None,
        defaults: Optional[MultiSourceOptions] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Registered source adapters
            composite_cache: Cache of merged responses (a private one is created if omitted)
            defaults: Options used for anything a call leaves unspecified
        """
        self.registry = registry
        if composite_cache is None:
            composite_cache = TTLCache("composite", default_ttl=COMPOSITE_TTL)
        self.composite_cache = composite_cache
        self.defaults = defaults or MultiSourceOptions()
        self.logger = logging.getLogger(self.__class__.__name__)

    async def search(
        self,
        query: str,
        options: "MultiSourceOptions | Mapping[str, Any] | None" = None,
    ) -> MultiSourceResult:
        """Search every selected source for ``query`` and merge the results.

        Raises:
            InvalidQueryError: If ``query`` is empty or blank
            NoValidSourcesError: If no requested source is registered for search
            SourceTimeoutError: If a source timed out and ``fallback_on_timeout`` is off
        """
        if not isinstance(options, MultiSourceOptions):
            options = MultiSourceOptions.from_dict(options, defaults=self.defaults)
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Search query must not be empty")
        query = query.strip()

        start = time.perf_counter()
        if options.sources is not None:
            requested = list(options.sources)
        else:
            requested = [a.source_id for a in self.registry.search_adapters()]

        # CACHE_CHECK
        cache_key = options.cache_key(query, requested)
        if not options.no_cache:
            cached = self.composite_cache.get(cache_key)
            if cached is not None:
                self.logger.info(
                    "Returning cached results for %r (%.1fms)", query, self._elapsed_ms(start)
                )
                return cached

        adapters = self._select_adapters(requested, options.max_parallel)
        self.logger.info(
            "Searching %d sources for %r (%s): %s",
            len(adapters),
            query,
            "parallel" if options.parallel else "sequential",
            ", ".join(a.source_id for a in adapters),
        )

        # DISPATCH / COLLECT
        with log_performance(
            "dispatch",
            PERFORMANCE_BUDGETS["PARALLEL_TOOLS"] if options.parallel else None,
            self.logger,
        ):
            if options.parallel:
                results = await self._dispatch_parallel(adapters, query, options)
            else:
                results = await self._dispatch_sequential(adapters, query, options)

        # MERGE
        with log_performance("merge", PERFORMANCE_BUDGETS["DATA_PROCESSING"], self.logger):
            products = merge_results(
                results,
                strategy=options.merge_strategy,
                max_results=options.max_results,
                priorities=self.registry.priorities(),
            )

        # ENRICH
        enrichment = None
        if options.include_enrichment and products:
            products, enrichment = await self._enrich(products, options)

        # FINALIZE
        latency_ms = self._elapsed_ms(start)
        result = MultiSourceResult(
            products=products,
            source_summaries=[SourceSummary.from_result(r) for r in results],
            latency_ms=latency_ms,
            enrichment=enrichment,
        )
        if not options.no_cache:
            self.composite_cache.set(cache_key, result)

        if result.is_failed:
            self.logger.warning("All %d sources failed for %r", len(results), query)
        budget = PERFORMANCE_BUDGETS["TOTAL_RESPONSE"]
        log = self.logger.warning if latency_ms > budget else self.logger.info
        log(
            "Search for %r completed: %d products from %d sources in %.0fms (budget %dms)",
            query,
            result.total_count,
            len(results),
            latency_ms,
            budget,
        )
        return result

    def _select_adapters(self, requested: Sequence[str], max_parallel: int) -> List["SourceAdapter"]:
        """Resolve requested ids to search adapters, best priority first."""
        selected: List["SourceAdapter"] = []
        for source_id in requested:
            adapter = self.registry.get(source_id)
            if adapter is None or not adapter.supports_search:
                self.logger.warning("Source '%s' is not registered for search, skipping", source_id)
                continue
            if adapter not in selected:
                selected.append(adapter)

        if not selected:
            raise NoValidSourcesError(requested)

        selected.sort(key=lambda a: a.priority)
        if len(selected) > max_parallel:
            self.logger.info(
                "Limiting search to %d of %d sources: dropping %s",
                max_parallel,
                len(selected),
                ", ".join(a.source_id for a in selected[max_parallel:]),
            )
        return selected[:max_parallel]

    async def _dispatch_parallel(
        self, adapters: Sequence["SourceAdapter"], query: str, options: MultiSourceOptions
    ) -> List[SearchResult]:
        outcomes = await asyncio.gather(
            *(self._call_adapter(adapter, query, options) for adapter in adapters),
            return_exceptions=True,
        )
        results = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                # Only SourceTimeoutError and cancellation escape _call_adapter.
                raise outcome
            results.append(outcome)
        return results

    async def _dispatch_sequential(
        self, adapters: Sequence["SourceAdapter"], query: str, options: MultiSourceOptions
    ) -> List[SearchResult]:
        results = []
        elapsed_ms = 0.0
        for adapter in adapters:
            result = await self._call_adapter(adapter, query, options)
            elapsed_ms += result.latency_ms
            self.logger.debug(
                "%s finished after %.0fms (%.0fms elapsed)",
                adapter.source_id,
                result.latency_ms,
                elapsed_ms,
            )
            results.append(result)
        return results

    async def _call_adapter(
        self, adapter: "SourceAdapter", query: str, options: MultiSourceOptions
    ) -> SearchResult:
        """Run one adapter search under the per-call timeout.

        Always returns a result, except for a timeout with fallback disabled.
        """
        search_options = SearchOptions(
            limit=options.results_per_source,
            filters=dict(options.filters),
            timeout_ms=options.timeout_ms,
            no_cache=options.no_cache,
        )
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                adapter.search(query, search_options), timeout=options.timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            if not options.fallback_on_timeout:
                self.logger.error(
                    "%s timed out after %dms, failing search", adapter.source_id, options.timeout_ms
                )
                raise SourceTimeoutError(adapter.source_id, options.timeout_ms)
            self.logger.warning("%s timed out after %dms", adapter.source_id, options.timeout_ms)
            error = ErrorInfo(
                message=f"{adapter.source_id} search timeout after {options.timeout_ms}ms",
                code=ErrorCode.TIMEOUT.value,
                source_id=adapter.source_id,
            )
        except Exception as exc:
            self.logger.exception("Unexpected error from %s", adapter.source_id)
            error = ErrorInfo(
                message=f"{type(exc).__name__}: {exc}",
                code=ErrorCode.INTERNAL_ERROR.value,
                source_id=adapter.source_id,
            )
        return SearchResult.failure(
            adapter.source_id,
            error,
            latency_ms=self._elapsed_ms(start),
            display_name=adapter.display_name,
        )

    async def _enrich(
        self, products: List[Product], options: MultiSourceOptions
    ) -> Tuple[List[Product], Optional[EnrichmentResult]]:
        """Enrich the top product; failures leave ``products`` untouched."""
        adapters = self.registry.enrichment_adapters()
        if not adapters:
            return products, None
        adapter = adapters[0]
        timeout_ms = options.timeout_ms * 2
        enrich_query = ENRICHMENT_QUERY.format(title=products[0].title)
        enrich_options = EnrichOptions(timeout_ms=timeout_ms, no_cache=options.no_cache)

        try:
            with log_performance(
                "enrichment", PERFORMANCE_BUDGETS["RESULT_ENRICHMENT"], self.logger
            ):
                enrichment = await asyncio.wait_for(
                    adapter.enrich(enrich_query, enrich_options), timeout=timeout_ms / 1000
                )
        except asyncio.TimeoutError:
            self.logger.warning("Enrichment via %s timed out after %dms", adapter.source_id, timeout_ms)
            return products, None
        except Exception:
            self.logger.exception("Enrichment via %s failed", adapter.source_id)
            return products, None

        if enrichment.error is not None:
            self.logger.warning(
                "Enrichment via %s failed: [%s] %s",
                adapter.source_id,
                enrichment.error.code,
                enrichment.error.message,
            )
            return products, None
        return adapter.enhance_products(products, enrichment), enrichment

    async def aclose(self) -> None:
        await self.registry.aclose()

    async def __aenter__(self) -> "MultiSourceOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000


async def multi_source_search(
    orchestrator: MultiSourceOrchestrator,
    query: str,
    options: Optional[Mapping[str, Any]] = None,
) -> MultiSourceResult:
    """Entry point taking plain-dict options (snake_case or camelCase).

    The whole call is measured against the ``TOOL_CALL`` budget.
    """
    parsed = MultiSourceOptions.from_dict(options, defaults=orchestrator.defaults)
    with log_performance("multi_source_search", PERFORMANCE_BUDGETS["TOOL_CALL"], logger):
        return await orchestrator.search(query, parsed)
