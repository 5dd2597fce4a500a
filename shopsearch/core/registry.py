"""Adapter registry and wiring.

Rate limiters, caches and HTTP clients are built here, once, from the
configuration and handed to the components that own them.  Nothing in the
package keeps a module-level instance.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Type

from shopsearch.core.cache import COMPOSITE_TTL, SOURCE_TTL, TTLCache
from shopsearch.core.config import Config
from shopsearch.core.http_client import RetryPolicy
from shopsearch.core.orchestrator import MultiSourceOrchestrator, MultiSourceOptions
from shopsearch.core.rate_limiter import RateLimitConfig, TokenBucket
from shopsearch.search.base import SourceAdapter
from shopsearch.search.perplexity import PerplexityAdapter
from shopsearch.search.search1api import Search1ApiAdapter
from shopsearch.search.serpapi import SerpApiAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: Dict[str, Type[SourceAdapter]] = {
    SerpApiAdapter.source_id: SerpApiAdapter,
    Search1ApiAdapter.source_id: Search1ApiAdapter,
    PerplexityAdapter.source_id: PerplexityAdapter,
}


class AdapterRegistry:
    """Maps source ids to adapter instances."""

    def __init__(self, adapters: Optional[List[SourceAdapter]] = None) -> None:
        self._adapters: Dict[str, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        if adapter.source_id in self._adapters:
            raise ValueError(f"Source '{adapter.source_id}' is already registered")
        self._adapters[adapter.source_id] = adapter
        logger.debug("Registered source %s (priority %d)", adapter.source_id, adapter.priority)

    def get(self, source_id: str) -> Optional[SourceAdapter]:
        return self._adapters.get(source_id)

    def ids(self) -> List[str]:
        return list(self._adapters)

    def search_adapters(self) -> List[SourceAdapter]:
        return [a for a in self._adapters.values() if a.supports_search]

    def enrichment_adapters(self) -> List[SourceAdapter]:
        """Enrichment-capable adapters, preferred (lowest priority number) first."""
        adapters = [a for a in self._adapters.values() if a.supports_enrichment]
        return sorted(adapters, key=lambda a: a.priority)

    def priorities(self) -> Dict[str, int]:
        return {source_id: a.priority for source_id, a in self._adapters.items()}

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._adapters

    def __iter__(self) -> Iterator[SourceAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_adapter(config: Config, entry: Dict) -> Optional[SourceAdapter]:
    """Create one adapter from its source registry entry.

    Returns ``None`` for ids without an adapter implementation.
    """
    source_id = entry.get("id")
    adapter_cls = ADAPTER_CLASSES.get(source_id)
    if adapter_cls is None:
        logger.warning("No adapter implementation for source '%s', skipping", source_id)
        return None

    rate_limiter = None
    if entry.get("rate_limit"):
        rate_limiter = TokenBucket.from_config(
            RateLimitConfig.from_dict(entry["rate_limit"]), name=source_id
        )
    ttl = config.get("cache.source_ttl_seconds", SOURCE_TTL)
    retry_policy = RetryPolicy.from_dict(entry.get("error_retry") or {})

    return adapter_cls(
        source_id=source_id,
        display_name=entry.get("name"),
        priority=entry.get("priority"),
        endpoint=entry.get("endpoint", ""),
        api_key=config.get_api_key(source_id),
        retry_policy=retry_policy,
        rate_limiter=rate_limiter,
        cache=TTLCache(source_id, default_ttl=ttl),
        default_params=entry.get("default_params"),
    )


def build_registry(config: Config) -> AdapterRegistry:
    """Populate a registry with every enabled source in ``config``."""
    registry = AdapterRegistry()
    for entry in config.get_sources():
        adapter = build_adapter(config, entry)
        if adapter is not None:
            registry.register(adapter)
    logger.info("Registered %d sources: %s", len(registry), ", ".join(registry.ids()))
    return registry


def build_orchestrator(config: Optional[Config] = None) -> MultiSourceOrchestrator:
    """Build a ready-to-use orchestrator (registry, caches, defaults) from ``config``."""
    config = config or Config()
    registry = build_registry(config)
    composite_cache: TTLCache = TTLCache(
        "composite", default_ttl=config.get("cache.composite_ttl_seconds", COMPOSITE_TTL)
    )
    # Read key by key so environment overrides apply.
    section = {key: config.get(f"multi_source.{key}") for key in config.get_section("multi_source")}
    defaults = MultiSourceOptions.from_dict(section)
    return MultiSourceOrchestrator(registry, composite_cache=composite_cache, defaults=defaults)
