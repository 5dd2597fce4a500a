"""Product source adapters.

- serpapi: Google Shopping results
- search1api: Smart Shopper product index with facets
- perplexity: Enrichment of the top product with citations
"""

from .base import SourceAdapter, ToolEndpointAdapter  # noqa: F401
from .perplexity import PerplexityAdapter  # noqa: F401
from .search1api import Search1ApiAdapter  # noqa: F401
from .serpapi import SerpApiAdapter  # noqa: F401

__all__ = [
    "SourceAdapter",
    "ToolEndpointAdapter",
    "SerpApiAdapter",
    "Search1ApiAdapter",
    "PerplexityAdapter",
]
