"""Product enrichment through the Perplexity tool endpoint.

This source does not search for products.  Given a question about the top
merged product it returns a written answer plus citations, which the
orchestrator attaches to the response and to that product.
"""

from __future__ import annotations

import time
from typing import Any, List, Mapping

from shopsearch.core.data_models import Citation, EnrichmentResult
from shopsearch.core.errors import InvalidResponseError
from shopsearch.search.base import ToolEndpointAdapter

DEFAULT_MODEL = "sonar-small-online"


class PerplexityAdapter(ToolEndpointAdapter):
    """Enriches product data with citations and additional information."""

    source_id = "perplexity"
    display_name = "Product Enrichment"
    priority = 3
    supports_search = False
    supports_enrichment = True

    async def _fetch_enrichment(
        self,
        query: str,
        *,
        params: Mapping[str, Any],
        timeout_ms: int,
        no_cache: bool,
    ) -> EnrichmentResult:
        model = params.get("model", DEFAULT_MODEL)
        payload = {
            "query": query,
            "model": model,
            "context_size": params.get("context_size", "medium"),
            "domain_filter": params.get("domain_filter"),
            "no_cache": no_cache or bool(params.get("no_cache", False)),
        }
        start = time.perf_counter()
        data = await self._call_tool(payload, timeout_ms)
        citations = self._parse_citations(data.get("citations") or [])
        return EnrichmentResult(
            content=str(data.get("content") or ""),
            citations=citations,
            latency_ms=float(data.get("latency") or (time.perf_counter() - start) * 1000),
            model=str(data.get("model") or model),
        )

    def _parse_citations(self, raw_citations: Any) -> List[Citation]:
        if not isinstance(raw_citations, list):
            return []
        citations = []
        for raw in raw_citations:
            try:
                citations.append(Citation.from_raw(raw))
            except InvalidResponseError as exc:
                self.logger.debug("Skipping citation: %s", exc)
        return citations
