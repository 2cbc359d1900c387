import threading
import time

import pytest

from models.errors import OperationCancelled
from models.search import SearchQuery
from services.query_cache import (
    InMemoryCacheBackend,
    QueryCache,
    SEARCH_CACHE_TAGS,
    build_search_cache_key,
    format_number,
)
from utils.cancellation import Deadline

PLUMBING = "3f2b8c1e-6a4d-4e8f-9b1a-2c3d4e5f6a7b"
ELECTRICAL = "8d7c6b5a-4e3f-4a1b-9c8d-7e6f5a4b3c2d"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _query(**overrides):
    fields = dict(latitude=-23.561414, longitude=-46.656559, radius_km=10)
    fields.update(overrides)
    return SearchQuery(**fields)


def test_key_format_without_filters():
    key = build_search_cache_key(_query())
    assert key == (
        "search:providers:lat:-23.5614:lng:-46.6566:radius:10"
        ":services:all:rating::tiers:all:page:1:size:20"
    )


def test_key_format_with_filters():
    key = build_search_cache_key(_query(
        radius_km=7.5,
        service_ids=[ELECTRICAL, PLUMBING],
        min_rating=4,
        subscription_tiers=["Platinum", "gold"],
        page_number=2,
        page_size=10,
    ))
    assert key == (
        f"search:providers:lat:-23.5614:lng:-46.6566:radius:7.5"
        f":services:{PLUMBING}-{ELECTRICAL}:rating:4:tiers:Gold-Platinum:page:2:size:10"
    )


def test_key_quantizes_coordinates():
    a = build_search_cache_key(_query(latitude=-23.56141, longitude=-46.65658))
    b = build_search_cache_key(_query(latitude=-23.56139, longitude=-46.65662))
    assert a == b


def test_key_ignores_filter_order_and_case():
    a = build_search_cache_key(_query(service_ids=[PLUMBING, ELECTRICAL], subscription_tiers=["Gold", 3]))
    b = build_search_cache_key(_query(service_ids=[ELECTRICAL.upper(), PLUMBING], subscription_tiers=["PLATINUM", "2"]))
    assert a == b


def test_key_distinguishes_pages():
    assert build_search_cache_key(_query(page_number=1)) != build_search_cache_key(_query(page_number=2))


def test_key_appends_term_only_when_present():
    assert build_search_cache_key(_query(term="  Encanador ")).endswith(":size:20:term:encanador")
    assert build_search_cache_key(_query(term="")) == build_search_cache_key(_query())


@pytest.mark.parametrize("value,expected", [(10, "10"), (10.0, "10"), (4.5, "4.5"), (0.1, "0.1")])
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_get_or_compute_caches_value():
    cache = QueryCache()
    calls = []

    def compute():
        calls.append(1)
        return {"items": []}

    assert cache.get_or_compute("k", compute) == {"items": []}
    assert cache.get_or_compute("k", compute) == {"items": []}
    assert len(calls) == 1
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = QueryCache(InMemoryCacheBackend(clock=clock), default_ttl=300)
    cache.get_or_compute("k", lambda: "old")

    clock.now += 299
    assert cache.get_or_compute("k", lambda: "new") == "old"
    clock.now += 2
    assert cache.get_or_compute("k", lambda: "new") == "new"


def test_failed_compute_is_not_cached():
    cache = QueryCache()

    def boom():
        raise RuntimeError("index down")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", boom)
    assert cache.get_or_compute("k", lambda: "ok") == "ok"


def test_single_flight_runs_compute_once():
    cache = QueryCache()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow():
        calls.append(1)
        started.set()
        release.wait(5)
        return "value"

    results = []

    def worker():
        results.append(cache.get_or_compute("k", slow))

    leader = threading.Thread(target=worker)
    leader.start()
    started.wait(5)
    followers = [threading.Thread(target=worker) for _ in range(4)]
    for t in followers:
        t.start()
    time.sleep(0.05)
    release.set()
    for t in [leader] + followers:
        t.join(5)

    assert calls == [1]
    assert results == ["value"] * 5


class StallingBackend(InMemoryCacheBackend):
    """Returns a miss to the "late" thread, then holds it until released"""

    def __init__(self):
        super().__init__()
        self.missed = threading.Event()
        self.release = threading.Event()
        self._stalled = False

    def get(self, key):
        value = super().get(key)
        if threading.current_thread().name == "late" and not self._stalled:
            self._stalled = True
            self.missed.set()
            self.release.wait(5)
        return value


def test_single_flight_when_leader_finishes_between_read_and_lock():
    backend = StallingBackend()
    cache = QueryCache(backend)
    calls = []

    def compute():
        calls.append(1)
        return "value"

    results = []
    late = threading.Thread(target=lambda: results.append(cache.get_or_compute("k", compute)), name="late")
    late.start()
    backend.missed.wait(5)

    assert cache.get_or_compute("k", compute) == "value"
    backend.release.set()
    late.join(5)

    assert calls == [1]
    assert results == ["value"]


def test_empty_backend_passed_in_is_used():
    backend = InMemoryCacheBackend()
    cache = QueryCache(backend)
    assert cache.backend is backend

    cache.get_or_compute("k", lambda: "v", tags=["providers"])
    assert backend.get("k") == "v"


def test_single_flight_waiters_see_the_error():
    cache = QueryCache()
    started = threading.Event()
    release = threading.Event()
    errors = []

    def failing():
        started.set()
        release.wait(5)
        raise RuntimeError("index down")

    def worker():
        try:
            cache.get_or_compute("k", failing)
        except RuntimeError as e:
            errors.append(str(e))

    leader = threading.Thread(target=worker)
    leader.start()
    started.wait(5)
    follower = threading.Thread(target=worker)
    follower.start()
    time.sleep(0.05)
    release.set()
    leader.join(5)
    follower.join(5)

    assert errors == ["index down", "index down"]
    assert cache.stats()["in_flight"] == 0


def test_invalidate_tags_drops_tagged_entries():
    cache = QueryCache()
    cache.get_or_compute("search", lambda: "v1", tags=SEARCH_CACHE_TAGS)
    cache.get_or_compute("other", lambda: "x", tags=["unrelated"])

    assert cache.invalidate_search_results() == 1
    assert cache.get_or_compute("search", lambda: "v2", tags=SEARCH_CACHE_TAGS) == "v2"
    assert cache.get_or_compute("other", lambda: "y", tags=["unrelated"]) == "x"


def test_invalidation_during_compute_is_not_overwritten():
    cache = QueryCache()

    def compute_then_invalidate():
        cache.invalidate_tags(["providers"])
        return "stale"

    assert cache.get_or_compute("k", compute_then_invalidate, tags=["providers"]) == "stale"
    assert cache.get_or_compute("k", lambda: "fresh", tags=["providers"]) == "fresh"


def test_cancelled_compute_stores_nothing():
    cache = QueryCache()
    deadline = Deadline()

    def compute():
        deadline.cancel()
        return "late"

    with pytest.raises(OperationCancelled):
        cache.get_or_compute("k", compute, deadline=deadline)
    assert cache.get_or_compute("k", lambda: "fresh") == "fresh"


def test_clear_resets_entries_and_stats():
    cache = QueryCache()
    cache.get_or_compute("k", lambda: 1)
    cache.clear()
    assert cache.stats() == {"hits": 0, "misses": 0, "in_flight": 0, "hit_rate": 0.0}
    assert cache.get_or_compute("k", lambda: 2) == 2
