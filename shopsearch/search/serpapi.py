"""Google Shopping results via the SerpAPI tool endpoint."""

from __future__ import annotations

from typing import Any, Mapping

from shopsearch.search.base import RawPage, ToolEndpointAdapter

DEFAULT_FIELDS = "shopping_results.price,title,thumbnail,link,source,reviews,rating"


class SerpApiAdapter(ToolEndpointAdapter):
    """Searches Google Shopping through SerpAPI."""

    source_id = "serpapi"
    display_name = "Google Shopping"
    priority = 1
    max_page_size = 20

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
            "query": query,
            # The configured page size is a ceiling, the caller's limit wins below it.
            "num_results": min(limit, int(params.get("num_results", limit))),
            "fields": params.get("fields", DEFAULT_FIELDS),
            "no_cache": bool(params.get("no_cache", False)),
            **filters,
        }
        data = await self._call_tool(payload, timeout_ms)
        products = data.get("products") or []
        return RawPage(products, data.get("totalCount", data.get("total_count")))

    def normalize_product(self, raw: Mapping[str, Any]):
        # SerpAPI reports the merchant as "seller"; use it as brand when none is given.
        if not raw.get("brand") and raw.get("seller"):
            raw = {**raw, "brand": raw["seller"]}
        return super().normalize_product(raw)
