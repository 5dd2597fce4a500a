"""Smart Shopper product index via the Search1API tool endpoint.

The index supports facets, relevance boosts and cursor pagination.  Facet
and attribute values come back as lists; they are flattened into the scalar
``attributes`` map of :class:`~shopsearch.core.data_models.Product`.
"""

from __future__ import annotations

from typing import Any, Mapping

from shopsearch.search.base import RawPage, ToolEndpointAdapter

DEFAULT_FACETS = ["brand", "category", "price_range", "rating"]
DEFAULT_BOOST = {"field": "rating", "factor": 1.2}


class Search1ApiAdapter(ToolEndpointAdapter):
    """Queries the elastic product index for rich product data."""

    source_id = "search1api"
    display_name = "Smart Shopper Index"
    priority = 2
    max_page_size = 50

    async def _fetch_products(
        self,
        query: str,
        *,
        limit: int,
        filters: Mapping[str, Any],
        params: Mapping[str, Any],
        timeout_ms: int,
    ) -> RawPage:
        payload = {
            "q": query,
            "filters": dict(filters),
            "facets": params.get("facets", DEFAULT_FACETS),
            "boost": params.get("boost", DEFAULT_BOOST),
            "cursor": params.get("cursor"),
            "limit": limit,
        }
        data = await self._call_tool(payload, timeout_ms)
        cursor = data.get("cursor")
        return RawPage(
            data.get("products") or [],
            data.get("totalCount", data.get("total_count")),
            str(cursor) if cursor else None,
        )
