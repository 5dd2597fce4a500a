"""Data models used throughout shopsearch.

Adapters translate upstream payloads into the closed :class:`Product` schema
and wrap them in a :class:`SearchResult`.  The orchestrator combines those
into a :class:`MultiSourceResult`, which is what callers (and the composite
cache) receive.  All models serialise to JSON-friendly dictionaries through
``to_dict``.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar
from urllib.parse import urlparse

from shopsearch.core.errors import ErrorInfo, InvalidResponseError

# Bumped whenever a field is added to or removed from Product.
PRODUCT_SCHEMA_VERSION = 1

Scalar = Any  # str | int | float | bool
T = TypeVar("T")


@dataclass(frozen=True)
class Citation:
    """A reference backing an enrichment answer."""

    title: str
    url: str
    domain: str = ""
    snippet: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.domain and self.url:
            object.__setattr__(self, "domain", urlparse(self.url).netloc.lower())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "url": self.url, "domain": self.domain}
        if self.snippet is not None:
            data["snippet"] = self.snippet
        return data

    @classmethod
    def from_raw(cls, raw: Any) -> "Citation":
        """Build a citation from an upstream value (a URL string or a mapping)."""
        if isinstance(raw, str):
            return cls(title=raw, url=raw)
        if not isinstance(raw, Mapping):
            raise InvalidResponseError(f"Unsupported citation payload: {type(raw).__name__}")
        url = str(raw.get("url") or raw.get("link") or "")
        return cls(
            title=str(raw.get("title") or url),
            url=url,
            domain=str(raw.get("domain") or ""),
            snippet=raw.get("snippet"),
        )


def _format_price(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        raise InvalidResponseError(f"Invalid price value: {value!r}")
    if isinstance(value, int):
        return f"${value:,}"
    if isinstance(value, float):
        return f"${value:,.2f}"
    return str(value).strip()


def _scalar_attributes(raw: Any) -> Dict[str, Scalar]:
    if not isinstance(raw, Mapping):
        return {}
    attributes: Dict[str, Scalar] = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            attributes[str(key)] = value
        elif isinstance(value, (list, tuple)):
            attributes[str(key)] = ", ".join(str(v) for v in value if v is not None)
        # nested objects are not part of the schema
    return attributes


def _optional_rating(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rating):
        return None
    return min(max(rating, 0.0), 5.0)


def _optional_count(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return max(int(str(value).replace(",", "")), 0)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Product:
    """A single product offer in the closed, versioned schema.

    Attributes
    ----------
    id: str
        Identifier, unique within one search session.
    title: str
        Human readable product title.
    price: str
        Formatted price string (e.g. ``"$1,299.00"``).
    source_id: str
        Id of the adapter that produced the product.
    thumbnail_url, link: Optional[str]
        Image and landing page URLs.
    rating: Optional[float]
        Average rating in ``[0, 5]``.
    review_count: Optional[int]
        Number of reviews behind ``rating``.
    attributes: Dict[str, scalar]
        Flat map of additional scalar attributes (brand, category, ...).
    description, enriched, citations:
        Derived fields added by enrichment.  Never set by search adapters.
    """

    id: str
    title: str
    price: str
    source_id: str
    thumbnail_url: Optional[str] = None
    link: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    attributes: Dict[str, Scalar] = field(default_factory=dict)
    description: Optional[str] = None
    enriched: bool = False
    citations: Tuple[Citation, ...] = ()
    schema_version: int = PRODUCT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id cannot be empty")
        if not self.source_id:
            raise ValueError("source_id cannot be empty")
        if self.rating is not None and not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"rating {self.rating} outside [0, 5]")

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], source_id: str) -> "Product":
        """Normalize an upstream product payload into the schema.

        Every adapter must route its products through here before returning
        them.  Raises :class:`InvalidResponseError` when the payload cannot be
        expressed as a product (no title, unsupported price).
        """
        if not isinstance(raw, Mapping):
            raise InvalidResponseError(f"Product payload must be an object, got {type(raw).__name__}")

        title = str(raw.get("title") or "").strip()
        if not title:
            raise InvalidResponseError("Product payload has no title")

        link = raw.get("link") or raw.get("url") or None
        thumbnail = raw.get("thumbnail") or raw.get("thumbnail_url") or raw.get("thumbnailUrl")
        if not thumbnail:
            images = raw.get("images")
            if isinstance(images, (list, tuple)) and images:
                thumbnail = images[0]

        product_id = raw.get("id") or raw.get("product_id")
        if not product_id:
            digest = hashlib.sha1(f"{source_id}|{link or ''}|{title}".encode()).hexdigest()
            product_id = f"{source_id}-{digest[:16]}"

        attributes = _scalar_attributes(raw.get("attributes"))
        for key in ("brand", "category", "seller", "currency", "shipping"):
            value = raw.get(key)
            if value not in (None, "") and key not in attributes:
                attributes[key] = str(value)

        return cls(
            id=str(product_id),
            title=title,
            price=_format_price(raw.get("price")),
            source_id=source_id,
            thumbnail_url=str(thumbnail) if thumbnail else None,
            link=str(link) if link else None,
            rating=_optional_rating(raw.get("rating")),
            review_count=_optional_count(
                raw.get("review_count", raw.get("reviewCount", raw.get("reviews")))
            ),
            attributes=attributes,
        )

    def annotate(
        self,
        *,
        description: Optional[str] = None,
        citations: Sequence[Citation] = (),
    ) -> "Product":
        """Return a copy carrying enrichment annotations; identity is untouched."""
        return replace(
            self,
            description=description if description is not None else self.description,
            citations=tuple(citations) or self.citations,
            enriched=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "source_id": self.source_id,
            "thumbnail_url": self.thumbnail_url,
            "link": self.link,
            "rating": self.rating,
            "review_count": self.review_count,
            "attributes": dict(self.attributes),
            "description": self.description,
            "enriched": self.enriched,
            "citations": [c.to_dict() for c in self.citations],
            "schema_version": self.schema_version,
        }


@dataclass(frozen=True)
class SearchResult:
    """Outcome of one adapter ``search`` call.

    A result carrying ``error`` never carries products.
    """

    source_id: str
    products: Tuple[Product, ...] = ()
    total_count: int = 0
    latency_ms: float = 0.0
    error: Optional[ErrorInfo] = None
    display_name: Optional[str] = None
    # Opaque token for the next page; pass it back as params["cursor"].
    cursor: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "products", tuple(self.products))
        if self.error is not None and self.products:
            raise ValueError("A failed SearchResult must not carry products")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls,
        source_id: str,
        error: ErrorInfo,
        latency_ms: float = 0.0,
        display_name: Optional[str] = None,
    ) -> "SearchResult":
        return cls(
            source_id=source_id,
            latency_ms=latency_ms,
            error=error,
            display_name=display_name,
        )

    def with_latency(self, latency_ms: float) -> "SearchResult":
        return replace(self, latency_ms=latency_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "display_name": self.display_name,
            "products": [p.to_dict() for p in self.products],
            "total_count": self.total_count,
            "latency_ms": self.latency_ms,
            "error": self.error.to_dict() if self.error else None,
            "cursor": self.cursor,
        }


@dataclass(frozen=True)
class EnrichmentResult:
    """Contextual information about a product returned by an enrichment source."""

    content: str = ""
    citations: Tuple[Citation, ...] = ()
    latency_ms: float = 0.0
    model: Optional[str] = None
    error: Optional[ErrorInfo] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "citations", tuple(self.citations))

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "citations": [c.to_dict() for c in self.citations],
            "latency_ms": self.latency_ms,
            "model": self.model,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class SourceSummary:
    """Per-adapter outcome reported alongside merged products."""

    source_id: str
    count: int
    latency_ms: float
    error: Optional[ErrorInfo] = None
    display_name: Optional[str] = None

    @classmethod
    def from_result(cls, result: SearchResult) -> "SourceSummary":
        return cls(
            source_id=result.source_id,
            count=len(result.products),
            latency_ms=result.latency_ms,
            error=result.error,
            display_name=result.display_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "display_name": self.display_name or self.source_id,
            "count": self.count,
            "latency_ms": self.latency_ms,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class MultiSourceResult:
    """Merged response returned to callers and stored in the composite cache."""

    products: Tuple[Product, ...]
    source_summaries: Tuple[SourceSummary, ...]
    latency_ms: float
    enrichment: Optional[EnrichmentResult] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "products", tuple(self.products))
        object.__setattr__(self, "source_summaries", tuple(self.source_summaries))

    @property
    def total_count(self) -> int:
        return len(self.products)

    @property
    def failed_sources(self) -> List[str]:
        return [s.source_id for s in self.source_summaries if s.error is not None]

    @property
    def is_partial(self) -> bool:
        """Some sources failed but results are available."""
        return bool(self.failed_sources) and bool(self.products)

    @property
    def is_failed(self) -> bool:
        """Every selected source failed."""
        return bool(self.source_summaries) and all(
            s.error is not None for s in self.source_summaries
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "total_count": self.total_count,
            "sources": [s.to_dict() for s in self.source_summaries],
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the monotonic time after which it is stale."""

    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class SearchOptions:
    """Per-adapter search parameters.

    ``params`` holds the adapter's configured default parameters; adapters
    decide how (and whether) to forward them upstream.
    """

    limit: int = 3
    filters: Dict[str, Any] = field(default_factory=dict)
    timeout_ms: int = 800
    no_cache: bool = False
    params: Dict[str, Any] = field(default_factory=dict)

    def cache_parts(self) -> Dict[str, Any]:
        """Options that influence the adapter's answer (timeout and no_cache do not)."""
        return {"limit": self.limit, "filters": self.filters, "params": self.params}


@dataclass(frozen=True)
class EnrichOptions:
    """Parameters for an enrichment call."""

    timeout_ms: int = 1600
    no_cache: bool = False
    params: Dict[str, Any] = field(default_factory=dict)
