"""Tests for data models."""

import json

import pytest

from shopsearch.core.data_models import (
    PRODUCT_SCHEMA_VERSION,
    Citation,
    EnrichmentResult,
    MultiSourceResult,
    Product,
    SearchOptions,
    SearchResult,
    SourceSummary,
)
from shopsearch.core.errors import ErrorCode, ErrorInfo, InvalidResponseError


def make_product(product_id="p1", source_id="serpapi", **kwargs):
    return Product(
        id=product_id,
        title=kwargs.pop("title", f"Product {product_id}"),
        price=kwargs.pop("price", "$10.00"),
        source_id=source_id,
        **kwargs,
    )


class TestProduct:
    """Tests for the Product model."""

    def test_creation(self):
        """Test creating a product with required fields."""
        product = make_product()
        assert product.id == "p1"
        assert product.enriched is False
        assert product.citations == ()
        assert product.schema_version == PRODUCT_SCHEMA_VERSION

    def test_empty_id_rejected(self):
        """Test that an empty id is rejected."""
        with pytest.raises(ValueError):
            make_product(product_id="")

    def test_rating_out_of_range_rejected(self):
        """Test that ratings outside 0-5 are rejected."""
        with pytest.raises(ValueError):
            make_product(rating=7.5)

    def test_is_frozen(self):
        """Test that products are immutable."""
        product = make_product()
        with pytest.raises(AttributeError):
            product.title = "changed"

    def test_to_dict(self):
        """Test dictionary conversion."""
        product = make_product(attributes={"brand": "Acme"})
        data = product.to_dict()
        assert data["id"] == "p1"
        assert data["attributes"] == {"brand": "Acme"}
        assert data["citations"] == []
        assert data["schema_version"] == PRODUCT_SCHEMA_VERSION
        json.dumps(data)


class TestProductFromRaw:
    """Tests for normalization of upstream product payloads."""

    def test_full_payload(self):
        """Test normalizing a complete payload."""
        product = Product.from_raw(
            {
                "id": "abc",
                "title": "  Noise Cancelling Headphones ",
                "price": 199.5,
                "thumbnail": "https://img.example.com/a.jpg",
                "link": "https://shop.example.com/a",
                "rating": "4.6",
                "reviews": "1,204",
                "brand": "Acme",
            },
            "serpapi",
        )
        assert product.id == "abc"
        assert product.title == "Noise Cancelling Headphones"
        assert product.price == "$199.50"
        assert product.thumbnail_url == "https://img.example.com/a.jpg"
        assert product.rating == 4.6
        assert product.review_count == 1204
        assert product.attributes["brand"] == "Acme"
        assert product.source_id == "serpapi"

    def test_integer_price_formatting(self):
        """Test that integer prices get thousands separators and no cents."""
        product = Product.from_raw({"id": "x", "title": "Laptop", "price": 1299}, "s")
        assert product.price == "$1,299"

    def test_string_price_kept(self):
        """Test that preformatted prices pass through."""
        product = Product.from_raw({"id": "x", "title": "Laptop", "price": "€999"}, "s")
        assert product.price == "€999"

    def test_missing_title_rejected(self):
        """Test that a payload without a title is invalid."""
        with pytest.raises(InvalidResponseError):
            Product.from_raw({"id": "x", "price": 10}, "s")

    def test_non_mapping_rejected(self):
        """Test that non-object payloads are invalid."""
        with pytest.raises(InvalidResponseError):
            Product.from_raw(["not", "a", "product"], "s")

    def test_missing_id_is_synthesized_deterministically(self):
        """Test that missing ids are derived from source, link and title."""
        raw = {"title": "Kettle", "link": "https://example.com/kettle"}
        first = Product.from_raw(raw, "search1api")
        second = Product.from_raw(raw, "search1api")
        other = Product.from_raw(raw, "serpapi")
        assert first.id == second.id
        assert first.id.startswith("search1api-")
        assert first.id != other.id

    def test_list_attributes_flattened(self):
        """Test that list attributes become comma-separated strings."""
        product = Product.from_raw(
            {
                "id": "x",
                "title": "Shoe",
                "attributes": {"sizes": [8, 9, 10], "color": "red", "nested": {"a": 1}},
            },
            "search1api",
        )
        assert product.attributes == {"sizes": "8, 9, 10", "color": "red"}

    def test_thumbnail_from_images(self):
        """Test that the first image is used when no thumbnail is given."""
        product = Product.from_raw(
            {"id": "x", "title": "Lamp", "images": ["https://img/1.jpg", "https://img/2.jpg"]}, "s"
        )
        assert product.thumbnail_url == "https://img/1.jpg"

    def test_rating_clamped(self):
        """Test that out-of-range upstream ratings are clamped."""
        product = Product.from_raw({"id": "x", "title": "Lamp", "rating": 9}, "s")
        assert product.rating == 5.0

    def test_unparseable_rating_dropped(self):
        """Test that invalid ratings are dropped rather than failing."""
        product = Product.from_raw({"id": "x", "title": "Lamp", "rating": "great"}, "s")
        assert product.rating is None

    @pytest.mark.parametrize("rating", [float("nan"), float("inf"), float("-inf"), "NaN"])
    def test_non_finite_rating_dropped(self, rating):
        """Test that NaN and infinite ratings are dropped instead of failing the product."""
        product = Product.from_raw({"id": "x", "title": "Lamp", "rating": rating}, "s")
        assert product.rating is None


class TestProductAnnotate:
    """Tests for enrichment annotations."""

    def test_annotate_sets_enriched(self):
        """Test that annotate returns an enriched copy."""
        product = make_product()
        citation = Citation(title="Review", url="https://reviews.example.com/p1")
        annotated = product.annotate(description="Great value", citations=[citation])

        assert annotated.enriched is True
        assert annotated.description == "Great value"
        assert annotated.citations == (citation,)
        assert annotated.id == product.id
        assert product.enriched is False


class TestCitation:
    """Tests for Citation."""

    def test_domain_derived_from_url(self):
        """Test that the domain is taken from the URL."""
        citation = Citation(title="t", url="https://WWW.Example.com/page")
        assert citation.domain == "www.example.com"

    def test_from_raw_string(self):
        """Test building a citation from a bare URL."""
        citation = Citation.from_raw("https://example.com/x")
        assert citation.url == "https://example.com/x"
        assert citation.title == "https://example.com/x"

    def test_from_raw_mapping(self):
        """Test building a citation from an object."""
        citation = Citation.from_raw({"title": "Doc", "url": "https://a.io/d", "snippet": "s"})
        assert citation.title == "Doc"
        assert citation.domain == "a.io"
        assert citation.to_dict()["snippet"] == "s"

    def test_from_raw_invalid(self):
        """Test that unsupported payloads are rejected."""
        with pytest.raises(InvalidResponseError):
            Citation.from_raw(42)


class TestSearchResult:
    """Tests for SearchResult."""

    def test_failed_result_cannot_carry_products(self):
        """Test the error/products exclusivity."""
        error = ErrorInfo("boom", ErrorCode.UPSTREAM_ERROR.value, "s")
        with pytest.raises(ValueError):
            SearchResult(source_id="s", products=[make_product()], error=error)

    def test_failure_factory(self):
        """Test building a failed result."""
        error = ErrorInfo("slow", ErrorCode.TIMEOUT.value, "s")
        result = SearchResult.failure("s", error, latency_ms=12.0)
        assert not result.ok
        assert result.products == ()
        assert result.latency_ms == 12.0

    def test_products_stored_as_tuple(self):
        """Test that product lists are frozen into tuples."""
        result = SearchResult(source_id="s", products=[make_product()])
        assert isinstance(result.products, tuple)

    def test_with_latency(self):
        """Test that with_latency returns a copy."""
        result = SearchResult(source_id="s", products=[make_product()], latency_ms=100.0)
        updated = result.with_latency(1.0)
        assert updated.latency_ms == 1.0
        assert result.latency_ms == 100.0
        assert updated.products == result.products


class TestMultiSourceResult:
    """Tests for MultiSourceResult."""

    def _summary(self, source_id, count=1, error=None):
        return SourceSummary(source_id=source_id, count=count, latency_ms=5.0, error=error)

    def test_partial_result(self):
        """Test partial failure detection."""
        error = ErrorInfo("timeout", ErrorCode.TIMEOUT.value, "b")
        result = MultiSourceResult(
            products=[make_product()],
            source_summaries=[self._summary("a"), self._summary("b", 0, error)],
            latency_ms=10.0,
        )
        assert result.is_partial
        assert not result.is_failed
        assert result.failed_sources == ["b"]
        assert result.total_count == 1

    def test_failed_result(self):
        """Test total failure detection."""
        error = ErrorInfo("down", ErrorCode.UPSTREAM_UNAVAILABLE.value, "a")
        result = MultiSourceResult(
            products=[], source_summaries=[self._summary("a", 0, error)], latency_ms=1.0
        )
        assert result.is_failed
        assert not result.is_partial

    def test_to_json(self):
        """Test JSON serialization."""
        enrichment = EnrichmentResult(
            content="About", citations=[Citation(title="c", url="https://c.io")], model="m"
        )
        result = MultiSourceResult(
            products=[make_product()],
            source_summaries=[self._summary("a")],
            latency_ms=3.0,
            enrichment=enrichment,
        )
        data = json.loads(result.to_json())
        assert data["total_count"] == 1
        assert data["sources"][0]["source_id"] == "a"
        assert data["sources"][0]["display_name"] == "a"
        assert data["enrichment"]["citations"][0]["domain"] == "c.io"
        assert data["timestamp"].endswith("+00:00")

    def test_summary_from_result(self):
        """Test summarizing a search result."""
        result = SearchResult(
            source_id="s", products=[make_product("1"), make_product("2")], latency_ms=7.0
        )
        summary = SourceSummary.from_result(result)
        assert summary.count == 2
        assert summary.latency_ms == 7.0
        assert summary.error is None


class TestSearchOptions:
    """Tests for SearchOptions."""

    def test_cache_parts_ignore_timing(self):
        """Test that timeout and no_cache do not affect cache identity."""
        fast = SearchOptions(limit=3, timeout_ms=100, no_cache=True)
        slow = SearchOptions(limit=3, timeout_ms=5000)
        assert fast.cache_parts() == slow.cache_parts()
