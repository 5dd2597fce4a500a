"""Merging of per-source search results.

:func:`merge_results` is a pure function: the output depends only on the
results passed in, the source priorities and the strategy, never on the
order in which asynchronous calls completed.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Set

from shopsearch.core.data_models import Product, SearchResult

logger = logging.getLogger(__name__)

# Priority assumed for sources that did not declare one.
DEFAULT_PRIORITY = 99
# Interleave loop bound, per valid source.
INTERLEAVE_ITERATIONS_PER_SOURCE = 100


class MergeStrategy(str, Enum):
    """How products from several sources are combined."""

    INTERLEAVE = "interleave"
    SEQUENTIAL = "sequential"
    PRIORITY = "priority"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MergeStrategy":
        """Parse a strategy name; unknown names fall back to interleave."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning("Unknown merge strategy %r, using interleave", value)
            return cls.INTERLEAVE


class _UniqueCollector:
    """Accumulates products up to a bound, dropping repeated ids."""

    def __init__(self, max_results: int) -> None:
        self.max_results = max_results
        self.products: List[Product] = []
        self._seen: Set[str] = set()
        self.dropped = 0

    @property
    def full(self) -> bool:
        return len(self.products) >= self.max_results

    def add(self, product: Product) -> None:
        if product.id in self._seen:
            self.dropped += 1
            return
        self._seen.add(product.id)
        self.products.append(product)

    def extend(self, products: Iterable[Product]) -> None:
        for product in products:
            if self.full:
                return
            self.add(product)


def _interleave(results: Sequence[SearchResult], collector: _UniqueCollector) -> None:
    """Round-robin: one product per source per round, in priority order."""
    cursors = [0] * len(results)
    active = list(range(len(results)))
    max_iterations = len(results) * INTERLEAVE_ITERATIONS_PER_SOURCE
    iterations = 0

    while active and not collector.full and iterations < max_iterations:
        still_active = []
        for index in active:
            if collector.full:
                break
            products = results[index].products
            if cursors[index] < len(products):
                collector.add(products[cursors[index]])
                cursors[index] += 1
            if cursors[index] < len(products):
                still_active.append(index)
        active = still_active
        iterations += 1

    if iterations >= max_iterations:
        logger.warning("Interleave merge stopped at its iteration limit (%d)", max_iterations)


def merge_results(
    results: Sequence[SearchResult],
    strategy: "MergeStrategy | str" = MergeStrategy.INTERLEAVE,
    max_results: int = 10,
    priorities: Optional[Mapping[str, int]] = None,
) -> List[Product]:
    """Merge product lists from multiple sources into one bounded list.

    Parameters
    ----------
    results:
        One :class:`SearchResult` per source.  Results carrying an error or
        no products are ignored.
    strategy:
        ``interleave`` (round-robin), ``sequential`` (concatenate by
        priority) or ``priority`` (highest-priority source only).  Unknown
        values fall back to ``interleave``.
    max_results:
        Upper bound on the number of products returned.
    priorities:
        Source id to priority (lower is preferred).  Missing ids get
        ``DEFAULT_PRIORITY``; equal priorities keep their input order.

    Returns
    -------
    list of Product
        Products with unique ids; when two sources return the same id the
        first one in merge order wins.
    """
    if max_results <= 0:
        return []

    strategy = MergeStrategy.parse(strategy)
    priorities = priorities or {}

    valid = [r for r in results if r.error is None and r.products]
    if not valid:
        return []

    collector = _UniqueCollector(max_results)

    if len(valid) == 1:
        collector.extend(valid[0].products)
        return collector.products

    valid.sort(key=lambda r: priorities.get(r.source_id, DEFAULT_PRIORITY))

    if strategy is MergeStrategy.SEQUENTIAL:
        for result in valid:
            collector.extend(result.products)
            if collector.full:
                break
    elif strategy is MergeStrategy.PRIORITY:
        collector.extend(valid[0].products)
    else:
        _interleave(valid, collector)

    if collector.dropped:
        logger.debug("Dropped %d duplicate products while merging", collector.dropped)
    return collector.products
