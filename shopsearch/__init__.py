"""shopsearch - multi-source product search.

Fans a product query out to several upstream sources, merges their results
into one de-duplicated list and optionally enriches the top product.
"""

__version__ = "0.1.0"

from shopsearch.core.data_models import MultiSourceResult, Product
from shopsearch.core.orchestrator import (
    MultiSourceOptions,
    MultiSourceOrchestrator,
    multi_source_search,
)
from shopsearch.core.registry import AdapterRegistry, build_orchestrator, build_registry

__all__ = [
    "AdapterRegistry",
    "MultiSourceOptions",
    "MultiSourceOrchestrator",
    "MultiSourceResult",
    "Product",
    "build_orchestrator",
    "build_registry",
    "multi_source_search",
    "__version__",
]
