import random
import uuid

import pytest

from models.errors import InvalidArgument, OperationCancelled
from models.geo import GeoPoint
from models.provider import SearchableProvider, SubscriptionTier
from models.search import SearchFilters
from services.geo_index import GeoSearchIndex, rank_key
from services.geo_store import InMemoryGeoStore
from utils.cancellation import Deadline

ELECTRICAL = "8d7c6b5a-4e3f-4a1b-9c8d-7e6f5a4b3c2d"


def _ids(result):
    return result.provider_ids()


def test_example_ranking_and_first_page(index, make_provider):
    p1 = make_provider(km=2, tier=SubscriptionTier.GOLD, rating=4.8, name="P1")
    p2 = make_provider(km=5, tier=SubscriptionTier.PLATINUM, rating=4.0, name="P2")
    p3 = make_provider(km=1, tier=SubscriptionTier.GOLD, rating=4.8, name="P3")
    for p in (p1, p2, p3):
        index.upsert(p)

    center = GeoPoint(-23.561414, -46.656559)
    full = index.search(center, 10, take=10)
    assert _ids(full) == [p2.provider_id, p3.provider_id, p1.provider_id]

    page = index.search(center, 10, skip=0, take=2)
    assert _ids(page) == [p2.provider_id, p3.provider_id]
    assert page.total_count == 3
    assert page.has_more


def test_radius_uses_great_circle_distance(index, center, make_provider):
    inside = make_provider(km=9.99)
    near = make_provider(km=0.5)
    outside = make_provider(km=10.01)
    for p in (inside, near, outside):
        index.upsert(p)

    result = index.search(center, 10)
    assert set(_ids(result)) == {inside.provider_id, near.provider_id}
    assert all(d <= 10 for d in result.distances_km)


def test_radius_correctness_against_brute_force(index, center):
    rng = random.Random(7)
    entries = []
    for i in range(300):
        location = GeoPoint(center.latitude + rng.uniform(-0.5, 0.5), center.longitude + rng.uniform(-0.5, 0.5))
        entry = SearchableProvider(
            id=str(uuid.uuid4()),
            provider_id=str(uuid.uuid4()),
            name=f"Provider {i}",
            location=location,
            subscription_tier=rng.choice(list(SubscriptionTier)),
            average_rating=round(rng.uniform(0, 5), 1),
            active=rng.random() > 0.1,
        )
        entries.append(entry)
        index.upsert(entry)

    result = index.search(center, 25, take=100)
    expected = sorted(
        ((e, e.location.distance_km(center)) for e in entries if e.active and e.location.distance_km(center) <= 25),
        key=rank_key,
    )
    assert result.total_count == len(expected)
    assert _ids(result) == [e.provider_id for e, _ in expected[:100]]


def test_ranking_order_holds_for_consecutive_results(index, center, make_provider):
    rng = random.Random(3)
    for _ in range(60):
        index.upsert(make_provider(
            km=rng.uniform(0, 20),
            tier=rng.choice(list(SubscriptionTier)),
            rating=rng.choice([3.0, 4.0, 4.5]),
        ))

    result = index.search(center, 20, take=100)
    pairs = list(zip(result.entries, result.distances_km))
    for (a, da), (b, db) in zip(pairs, pairs[1:]):
        assert rank_key((a, da)) <= rank_key((b, db))


def test_provider_id_breaks_full_ties(index, center, make_provider):
    a = make_provider(km=3, provider_id="00000000-0000-4000-8000-000000000002")
    b = make_provider(km=3, provider_id="00000000-0000-4000-8000-000000000001")
    index.upsert(a)
    index.upsert(b)
    assert _ids(index.search(center, 5)) == [b.provider_id, a.provider_id]


def test_pagination_concatenates_to_full_result(index, center, make_provider):
    rng = random.Random(11)
    for _ in range(47):
        index.upsert(make_provider(km=rng.uniform(0, 29), tier=rng.choice(list(SubscriptionTier)), rating=4.0))

    full = _ids(index.search(center, 30, take=100))
    pages = []
    skip = 0
    while True:
        page = index.search(center, 30, skip=skip, take=10)
        if not page.entries:
            break
        pages.extend(_ids(page))
        skip += 10
    assert pages == full
    assert len(set(pages)) == len(pages) == 47


def test_inactive_entries_are_excluded(index, center, make_provider):
    index.upsert(make_provider(km=1, active=False))
    assert index.search(center, 5).total_count == 0


def test_filters(index, center, make_provider):
    plumber = make_provider(km=1, rating=4.5, tier=SubscriptionTier.GOLD, name="Fast Plumbing")
    electrician = make_provider(
        km=2, rating=3.0, services=(ELECTRICAL,), name="Sparky", description="Residential wiring"
    )
    index.upsert(plumber)
    index.upsert(electrician)

    by_service = index.search(center, 5, SearchFilters(service_ids=frozenset({ELECTRICAL})))
    assert _ids(by_service) == [electrician.provider_id]

    by_rating = index.search(center, 5, SearchFilters(min_rating=4.0))
    assert _ids(by_rating) == [plumber.provider_id]

    by_tier = index.search(center, 5, SearchFilters(tiers=frozenset({"Gold"})))
    assert _ids(by_tier) == [plumber.provider_id]

    by_term = index.search(center, 5, SearchFilters(term="WIRING"))
    assert _ids(by_term) == [electrician.provider_id]


def test_empty_filter_sets_do_not_filter(index, center, make_provider):
    index.upsert(make_provider(km=1))
    result = index.search(center, 5, SearchFilters(service_ids=frozenset(), tiers=frozenset()))
    assert result.total_count == 1


def test_skip_past_end_returns_empty_page_with_total(index, center, make_provider):
    index.upsert(make_provider(km=1))
    result = index.search(center, 5, skip=20, take=10)
    assert result.entries == []
    assert result.total_count == 1


def test_upsert_replaces_by_provider_id(index, center, make_provider):
    entry = make_provider(km=1, name="Old")
    index.upsert(entry)
    newer = entry.copy()
    newer.update_basic_info("New")
    index.upsert(newer)

    assert index.count() == 1
    assert index.get(entry.provider_id).name == "New"


def test_remove_absent_is_noop(index):
    assert index.remove(str(uuid.uuid4())) is False


def test_remove(index, center, make_provider):
    entry = make_provider(km=1)
    index.upsert(entry)
    assert index.remove(entry.provider_id) is True
    assert index.search(center, 5).total_count == 0


def test_returned_entries_are_copies(index, center, make_provider):
    entry = make_provider(km=1, name="Original")
    index.upsert(entry)
    found = index.search(center, 5).entries[0]
    found.update_basic_info("Changed")
    assert index.get(entry.provider_id).name == "Original"


def test_update_runs_mutator_on_current_entry(index, make_provider):
    entry = make_provider(km=1, rating=3.0)
    index.upsert(entry)

    def bump(current):
        current.update_rating(4.9, 10)
        return current

    index.update(entry.provider_id, bump)
    assert index.get(entry.provider_id).average_rating == 4.9


def test_update_cannot_change_provider_id(index, make_provider):
    entry = make_provider(km=1)
    index.upsert(entry)
    other = make_provider(km=1)
    with pytest.raises(InvalidArgument):
        index.update(entry.provider_id, lambda current: other)


@pytest.mark.parametrize("radius,skip,take", [
    (0, 0, 20),
    (-1, 0, 20),
    (501, 0, 20),
    (float("nan"), 0, 20),
    (10, -1, 20),
    (10, 0, 0),
    (10, 0, 101),
])
def test_search_preconditions(index, center, radius, skip, take):
    with pytest.raises(InvalidArgument):
        index.search(center, radius, skip=skip, take=take)


def test_cancelled_search_raises(index, center):
    deadline = Deadline()
    deadline.cancel()
    with pytest.raises(OperationCancelled):
        index.search(center, 5, deadline=deadline)


def test_cancelled_write_leaves_index_untouched(index, make_provider):
    deadline = Deadline()
    deadline.cancel()
    with pytest.raises(OperationCancelled):
        index.upsert(make_provider(km=1), deadline=deadline)
    assert index.count() == 0


def test_custom_limits():
    custom = GeoSearchIndex(max_radius_km=50, max_take=5)
    with pytest.raises(InvalidArgument):
        custom.search(GeoPoint(0, 0), 60)
    with pytest.raises(InvalidArgument):
        custom.search(GeoPoint(0, 0), 10, take=6)


def test_in_memory_tree_is_built_on_first_search(center, make_provider):
    store = InMemoryGeoStore()
    custom = GeoSearchIndex(store)
    for km in (1, 2, 3):
        custom.upsert(make_provider(km=km))
    assert not store._snapshot.built

    assert custom.search(center, 5).total_count == 3
    assert store._snapshot.built
    custom.upsert(make_provider(km=4))
    assert not store._snapshot.built
    assert custom.search(center, 5).total_count == 4
