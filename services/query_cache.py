"""Search result cache with tag invalidation and single-flight misses"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

import redis

from models.errors import OperationCancelled
from models.search import SearchQuery
from models.provider import SubscriptionTier
from utils.cancellation import Deadline, check_deadline
from utils.data_processor import DataProcessor

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes
SEARCH_CACHE_TAGS = ("search", "providers", "search-results")


def format_number(value: float) -> str:
    """Shortest round-trip form without a trailing ".0" (10.0 -> "10", 4.5 -> "4.5")"""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _sorted_dash_joined(values: Iterable[str]) -> str:
    items = sorted(set(values))
    return "-".join(items) if items else "all"


def build_search_cache_key(query: SearchQuery) -> str:
    """
    Cache key for a search, stable across processes sharing the cache.

    Coordinates are quantised to 4 decimal places (~11 m); list filters are
    canonicalised and sorted so their order does not matter.
    """
    service_ids = [DataProcessor.normalize_uuid(s, "serviceIds") for s in query.service_ids or []]
    tiers = sorted({SubscriptionTier.parse(t) for t in query.subscription_tiers or []})
    rating = format_number(query.min_rating) if query.min_rating is not None else ""

    key = (
        f"search:providers"
        f":lat:{query.latitude:.4f}"
        f":lng:{query.longitude:.4f}"
        f":radius:{format_number(query.radius_km)}"
        f":services:{_sorted_dash_joined(service_ids)}"
        f":rating:{rating}"
        f":tiers:{'-'.join(t.label for t in tiers) if tiers else 'all'}"
        f":page:{query.page_number}"
        f":size:{query.page_size}"
    )
    term = DataProcessor.clean_text(query.term or "").lower()
    if term:
        key += f":term:{term}"
    return key


class CacheBackend(ABC):
    """Key/value store with TTLs and tag membership"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Cached value or None on miss"""

    @abstractmethod
    def generation(self, tags: Iterable[str]) -> Any:
        """Opaque token that changes whenever any of ``tags`` is invalidated"""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str], expected_generation: Any = None) -> bool:
        """Store unless the tags were invalidated since ``expected_generation`` was taken"""

    @abstractmethod
    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of the tags; returns the number of keys dropped"""

    @abstractmethod
    def clear(self) -> None:
        """Drop everything"""


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float, Tuple[str, ...]]] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._tag_versions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at, tags = entry
            if self._clock() >= expires_at:
                self._drop(key, tags)
                return None
            return value

    def _drop(self, key: str, tags: Iterable[str]) -> None:
        self._entries.pop(key, None)
        for tag in tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]

    def generation(self, tags: Iterable[str]) -> Any:
        with self._lock:
            return tuple(sorted((tag, self._tag_versions.get(tag, 0)) for tag in set(tags)))

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str], expected_generation: Any = None) -> bool:
        tags = tuple(sorted(set(tags)))
        with self._lock:
            if expected_generation is not None:
                current = tuple((tag, self._tag_versions.get(tag, 0)) for tag in tags)
                if current != expected_generation:
                    return False
            old = self._entries.get(key)
            if old is not None:
                self._drop(key, old[2])
            self._entries[key] = (value, self._clock() + ttl, tags)
            for tag in tags:
                self._tag_index.setdefault(tag, set()).add(key)
            return True

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        with self._lock:
            keys: Set[str] = set()
            for tag in set(tags):
                self._tag_versions[tag] = self._tag_versions.get(tag, 0) + 1
                keys.update(self._tag_index.get(tag, ()))
            for key in keys:
                entry = self._entries.get(key)
                if entry is not None:
                    self._drop(key, entry[2])
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()
            for tag in self._tag_versions:
                self._tag_versions[tag] += 1


class RedisCacheBackend(CacheBackend):
    """
    Redis backend shared by every service instance.

    Each tag keeps a set of member keys and a version counter; a store is
    skipped (WATCH/MULTI) when a version moved while the result was computed.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "cache"):
        self.redis = redis_client
        self.prefix = prefix

    def _value_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def _version_key(self, tag: str) -> str:
        return f"{self.prefix}:tag-version:{tag}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.redis.get(self._value_key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def generation(self, tags: Iterable[str]) -> Any:
        tags = sorted(set(tags))
        if not tags:
            return ()
        versions = self.redis.mget([self._version_key(tag) for tag in tags])
        return tuple((tag, int(v or 0)) for tag, v in zip(tags, versions))

    def set(self, key: str, value: Any, ttl: int, tags: Iterable[str], expected_generation: Any = None) -> bool:
        tags = sorted(set(tags))
        version_keys = [self._version_key(tag) for tag in tags]
        payload = json.dumps(value)
        stored = {"ok": False}

        def apply(pipe) -> None:
            if expected_generation is not None and version_keys:
                versions = pipe.mget(version_keys)
                current = tuple((tag, int(v or 0)) for tag, v in zip(tags, versions))
                if current != expected_generation:
                    return
            pipe.multi()
            pipe.setex(self._value_key(key), ttl, payload)
            for tag in tags:
                pipe.sadd(self._tag_key(tag), key)
                pipe.expire(self._tag_key(tag), ttl)
            stored["ok"] = True

        self.redis.transaction(apply, *version_keys)
        return stored["ok"]

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        tags = sorted(set(tags))
        if not tags:
            return 0
        pipe = self.redis.pipeline(transaction=True)
        for tag in tags:
            pipe.incr(self._version_key(tag))
        for tag in tags:
            pipe.smembers(self._tag_key(tag))
        results = pipe.execute()

        keys: Set[str] = set()
        for members in results[len(tags):]:
            keys.update(members or ())

        pipe = self.redis.pipeline(transaction=True)
        if keys:
            pipe.delete(*[self._value_key(k) for k in keys])
        pipe.delete(*[self._tag_key(tag) for tag in tags])
        pipe.execute()
        return len(keys)

    def clear(self) -> None:
        for key in self.redis.scan_iter(match=f"{self.prefix}:*"):
            if ":tag-version:" in key:
                self.redis.incr(key)
            else:
                self.redis.delete(key)


class _Flight:
    """One in-progress computation that concurrent callers wait on"""

    def __init__(self):
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class QueryCache:
    """
    Cache port used by the search path.

    ``get_or_compute`` runs ``compute_fn`` at most once per key among
    concurrent callers; failed computations are never cached.
    """

    def __init__(self, backend: Optional[CacheBackend] = None, default_ttl: int = DEFAULT_TTL_SECONDS):
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self.default_ttl = default_ttl
        self._inflight: Dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _read(self, key: str) -> Optional[Any]:
        try:
            return self.backend.get(key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache read failed for '{key}', computing directly: {e}")
            return None

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Any:
        check_deadline(deadline, "cache lookup")
        ttl = ttl or self.default_ttl
        tags = tuple(tags or ())

        cached = self._read(key)
        if cached is not None:
            with self._lock:
                self._hits += 1
            logger.debug(f"Cache hit: {key}")
            return cached

        with self._lock:
            self._misses += 1
            flight = self._inflight.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[key] = flight

        if not leader:
            logger.debug(f"Cache miss, waiting on in-flight computation: {key}")
            timeout = deadline.remaining() if deadline is not None else None
            if not flight.done.wait(timeout):
                raise OperationCancelled(f"Timed out waiting for in-flight search '{key}'")
            if flight.error is not None:
                raise flight.error
            return flight.value

        try:
            # A previous leader may have stored the value since our first read
            cached = self._read(key)
            if cached is not None:
                logger.debug(f"Cache hit after in-flight computation finished: {key}")
                flight.value = cached
                return cached

            logger.debug(f"Cache miss: {key}")
            generation = self._generation(tags)
            value = compute_fn()
            check_deadline(deadline, "cache store")
            self._store(key, value, ttl, tags, generation)
            flight.value = value
            return value
        except BaseException as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            flight.done.set()

    def _generation(self, tags: Tuple[str, ...]) -> Any:
        try:
            return self.backend.generation(tags)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache generation read failed: {e}")
            return None

    def _store(self, key: str, value: Any, ttl: int, tags: Tuple[str, ...], generation: Any) -> None:
        if generation is None and tags:
            # Without a generation token a concurrent invalidation could be missed
            return
        try:
            stored = self.backend.set(key, value, ttl, tags, expected_generation=generation)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Cache write failed for '{key}': {e}")
            return
        if not stored:
            logger.debug(f"Skipped caching '{key}': tags invalidated during computation")

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Drop all entries under the tags; failures propagate to the caller"""
        tags = list(tags)
        removed = self.backend.invalidate_tags(tags)
        logger.info(f"Invalidated cache tags {tags}: {removed} entr{'y' if removed == 1 else 'ies'} dropped")
        return removed

    def invalidate_search_results(self) -> int:
        return self.invalidate_tags(SEARCH_CACHE_TAGS)

    def clear(self) -> None:
        self.backend.clear()
        with self._lock:
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "in_flight": len(self._inflight),
                "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            }
