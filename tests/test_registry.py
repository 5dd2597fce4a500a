"""Tests for the adapter registry and wiring."""

import pytest

from shopsearch.core.config import Config
from shopsearch.core.merge import MergeStrategy
from shopsearch.core.registry import (
    ADAPTER_CLASSES,
    AdapterRegistry,
    build_adapter,
    build_orchestrator,
    build_registry,
)
from shopsearch.search import PerplexityAdapter, Search1ApiAdapter, SerpApiAdapter


@pytest.fixture
def config(monkeypatch, tmp_path):
    """Default configuration, isolated from files and the environment."""
    monkeypatch.chdir(tmp_path)
    return Config(load_env=False)


class TestAdapterRegistry:
    """Tests for AdapterRegistry."""

    def test_register_and_lookup(self):
        """Test registering adapters and looking them up."""
        serp = SerpApiAdapter(endpoint="http://serp")
        registry = AdapterRegistry([serp])

        assert registry.get("serpapi") is serp
        assert registry.get("missing") is None
        assert "serpapi" in registry
        assert len(registry) == 1
        assert list(registry) == [serp]

    def test_duplicate_register_raises(self):
        """Test that a source id can only be registered once."""
        registry = AdapterRegistry([SerpApiAdapter(endpoint="http://serp")])
        with pytest.raises(ValueError):
            registry.register(SerpApiAdapter(endpoint="http://other"))

    def test_capability_filters(self):
        """Test splitting search and enrichment adapters."""
        registry = AdapterRegistry(
            [
                PerplexityAdapter(endpoint="http://pplx"),
                Search1ApiAdapter(endpoint="http://s1"),
                SerpApiAdapter(endpoint="http://serp"),
            ]
        )

        assert {a.source_id for a in registry.search_adapters()} == {"serpapi", "search1api"}
        assert [a.source_id for a in registry.enrichment_adapters()] == ["perplexity"]
        assert registry.priorities() == {"perplexity": 3, "search1api": 2, "serpapi": 1}

    def test_enrichment_adapters_sorted_by_priority(self):
        """Test that the preferred enricher comes first."""
        registry = AdapterRegistry(
            [
                PerplexityAdapter(source_id="backup", endpoint="http://b", priority=7),
                PerplexityAdapter(endpoint="http://pplx", priority=4),
            ]
        )
        assert [a.source_id for a in registry.enrichment_adapters()] == ["perplexity", "backup"]

    @pytest.mark.asyncio
    async def test_aclose(self):
        """Test closing every adapter."""
        serp = SerpApiAdapter(endpoint="http://serp")
        serp.http_client._get_client()
        await AdapterRegistry([serp]).aclose()
        assert serp.http_client._client is None


class TestBuildRegistry:
    """Tests for building adapters from configuration."""

    def test_known_adapters(self):
        """Test the adapter implementations available to the registry."""
        assert ADAPTER_CLASSES == {
            "serpapi": SerpApiAdapter,
            "search1api": Search1ApiAdapter,
            "perplexity": PerplexityAdapter,
        }

    def test_build_from_defaults(self, config):
        """Test that every default source is built and wired."""
        registry = build_registry(config)

        assert registry.ids() == ["serpapi", "search1api", "perplexity"]
        serp = registry.get("serpapi")
        assert serp.endpoint == "http://localhost:3001/tool/serpapi_search"
        assert serp.display_name == "Google Shopping"
        assert serp.rate_limiter.capacity == 10
        assert serp.cache.default_ttl == 600
        assert serp.default_params["num_results"] == 5
        assert serp.http_client._retry_policy.max_attempts == 3

    def test_state_is_per_adapter(self, config):
        """Test that adapters never share a cache or rate limiter."""
        registry = build_registry(config)
        adapters = list(registry)

        assert len({id(a.cache) for a in adapters}) == len(adapters)
        assert len({id(a.rate_limiter) for a in adapters}) == len(adapters)

    def test_overrides_applied(self, monkeypatch, tmp_path):
        """Test building from a customized registry."""
        monkeypatch.chdir(tmp_path)
        config = Config(
            overrides={
                "sources": [
                    {
                        "id": "search1api",
                        "name": "Index",
                        "endpoint": "http://index",
                        "priority": 1,
                        "rateLimit": {"maxRequests": 2, "perMinutes": 1},
                    },
                    {"id": "serpapi", "endpoint": "http://serp", "priority": 5},
                ],
                "cache": {"source_ttl_seconds": 30},
            },
            load_env=False,
        )

        registry = build_registry(config)

        assert registry.priorities() == {"search1api": 1, "serpapi": 5}
        assert registry.get("search1api").rate_limiter.capacity == 2
        assert registry.get("search1api").cache.default_ttl == 30
        # No rate_limit entry means no limiter
        assert registry.get("serpapi").rate_limiter is None

    def test_disabled_rate_limit(self, config):
        """Test that enabled: false turns the limiter off."""
        adapter = build_adapter(
            config,
            {"id": "serpapi", "endpoint": "http://serp", "rate_limit": {"max_requests": 1, "enabled": False}},
        )
        assert adapter.rate_limiter is None

    def test_unknown_source_skipped(self, config, caplog):
        """Test that ids without an implementation are skipped."""
        assert build_adapter(config, {"id": "mystery", "endpoint": "http://x"}) is None
        assert "No adapter implementation for source 'mystery'" in caplog.text

    def test_api_key_sent_as_bearer(self, monkeypatch, tmp_path):
        """Test that the configured API key reaches the HTTP client."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SERPAPI_API_KEY", "secret")
        registry = build_registry(Config())
        assert registry.get("serpapi").http_client._headers["Authorization"] == "Bearer secret"


class TestBuildOrchestrator:
    """Tests for build_orchestrator."""

    def test_defaults_from_config(self, monkeypatch, tmp_path):
        """Test that the multi_source section becomes the default options."""
        monkeypatch.chdir(tmp_path)
        config = Config(
            overrides={
                "multi_source": {"mergeStrategy": "priority", "maxResults": 7, "timeoutMs": 400},
                "cache": {"composite_ttl_seconds": 60},
            },
            load_env=False,
        )

        orchestrator = build_orchestrator(config)

        assert orchestrator.defaults.merge_strategy is MergeStrategy.PRIORITY
        assert orchestrator.defaults.max_results == 7
        assert orchestrator.defaults.timeout_ms == 400
        assert orchestrator.defaults.sources == ("serpapi", "search1api")
        assert orchestrator.composite_cache.default_ttl == 60
        assert len(orchestrator.registry) == 3

    def test_environment_overrides_defaults(self, monkeypatch, tmp_path):
        """Test that environment overrides reach the default options."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MULTI_SOURCE_MAX_PARALLEL", "1")

        orchestrator = build_orchestrator(Config())

        assert orchestrator.defaults.max_parallel == 1
