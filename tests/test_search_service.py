from unittest.mock import MagicMock

import pytest

from models.errors import IndexUnavailable, ValidationError
from models.provider import SubscriptionTier
from models.search import SearchQuery
from services.search_service import SearchService


def _query(**overrides):
    fields = dict(latitude=-23.561414, longitude=-46.656559, radius_km=10, page_size=2)
    fields.update(overrides)
    return SearchQuery(**fields)


def test_search_returns_paged_result(search_service, index, make_provider):
    p1 = make_provider(km=2, tier=SubscriptionTier.GOLD, rating=4.8, name="P1")
    p2 = make_provider(km=5, tier=SubscriptionTier.PLATINUM, rating=4.0, name="P2")
    p3 = make_provider(km=1, tier=SubscriptionTier.GOLD, rating=4.8, name="P3")
    for p in (p1, p2, p3):
        index.upsert(p)

    page = search_service.search(_query())
    assert [item["name"] for item in page.items] == ["P2", "P3"]
    assert page.total_count == 3
    assert page.total_pages == 2
    assert page.has_next_page is True
    assert page.has_previous_page is False

    second = search_service.search(_query(page_number=2))
    assert [item["name"] for item in second.items] == ["P1"]
    assert second.has_next_page is False
    assert second.has_previous_page is True


def test_item_shape(search_service, index, make_provider):
    index.upsert(make_provider(km=1.5, tier=SubscriptionTier.STANDARD, rating=4.2, reviews=8, name="Ana"))
    item = search_service.search(_query()).items[0]
    assert item["subscriptionTier"] == "Standard"
    assert item["averageRating"] == 4.2
    assert item["totalReviews"] == 8
    assert item["distanceInKm"] == pytest.approx(1.5, abs=0.001)
    assert set(item["location"]) == {"latitude", "longitude"}


def test_invalid_query_never_reaches_index(cache):
    index = MagicMock()
    service = SearchService(index, cache)
    with pytest.raises(ValidationError):
        service.search(_query(radius_km=0))
    index.search.assert_not_called()


def test_repeated_search_is_served_from_cache(cache):
    index = MagicMock()
    index.search.return_value.hits.return_value = []
    index.search.return_value.total_count = 0
    service = SearchService(index, cache)

    service.search(_query())
    service.search(_query(latitude=-23.56141))
    assert index.search.call_count == 1


def test_search_after_invalidation_sees_new_entries(search_service, index, cache, make_provider):
    assert search_service.search(_query()).total_count == 0

    index.upsert(make_provider(km=1))
    cache.invalidate_search_results()

    assert search_service.search(_query()).total_count == 1


def test_index_failure_propagates_and_is_not_cached(cache):
    index = MagicMock()
    index.search.side_effect = IndexUnavailable("redis down")
    service = SearchService(index, cache)

    with pytest.raises(IndexUnavailable):
        service.search(_query())
    with pytest.raises(IndexUnavailable):
        service.search(_query())
    assert index.search.call_count == 2


def test_is_available(search_service):
    assert search_service.is_available() is True


def test_is_available_false_when_index_fails(cache):
    index = MagicMock()
    index.search.side_effect = IndexUnavailable("redis down")
    assert SearchService(index, cache).is_available() is False
