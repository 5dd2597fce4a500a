"""Core functionality for shopsearch.

This package contains the components the orchestrator is built from:
- data_models: Product schema and result types
- errors: Error codes and exception hierarchy
- rate_limiter: Non-blocking token bucket per source
- cache: TTL caches for per-source and merged results
- merge: Pure merging of per-source results
- orchestrator: Multi-source search state machine
- http_client: httpx client with retry policy
- config: Source registry and settings
- logging_setup: Logging configuration and performance budgets

The adapter registry lives in :mod:`shopsearch.core.registry`; it imports
the concrete adapters and is not re-exported here.
"""

from .cache import TTLCache, make_cache_key  # noqa: F401
from .config import Config, ValidationResult  # noqa: F401
from .data_models import (  # noqa: F401
    Citation,
    EnrichmentResult,
    MultiSourceResult,
    Product,
    SearchResult,
    SourceSummary,
)
from .errors import (  # noqa: F401
    ErrorCode,
    ErrorInfo,
    InvalidQueryError,
    NoValidSourcesError,
    ShopSearchError,
    SourceTimeoutError,
)
from .http_client import AsyncHTTPClient, RetryPolicy  # noqa: F401
from .logging_setup import configure_logging, log_performance  # noqa: F401
from .merge import MergeStrategy, merge_results  # noqa: F401
from .orchestrator import MultiSourceOptions, MultiSourceOrchestrator  # noqa: F401
from .rate_limiter import RateLimitConfig, TokenBucket  # noqa: F401

__all__ = [
    # Models
    "Citation",
    "EnrichmentResult",
    "MultiSourceResult",
    "Product",
    "SearchResult",
    "SourceSummary",
    # Errors
    "ErrorCode",
    "ErrorInfo",
    "InvalidQueryError",
    "NoValidSourcesError",
    "ShopSearchError",
    "SourceTimeoutError",
    # Infrastructure
    "AsyncHTTPClient",
    "RetryPolicy",
    "Config",
    "ValidationResult",
    "TTLCache",
    "make_cache_key",
    "RateLimitConfig",
    "TokenBucket",
    "configure_logging",
    "log_performance",
    # Search
    "MergeStrategy",
    "merge_results",
    "MultiSourceOptions",
    "MultiSourceOrchestrator",
]
