"""Spatial storage backends for the provider search index"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import redis
from scipy.spatial import cKDTree

from models.errors import IndexUnavailable, InvalidArgument
from models.geo import GeoPoint, chord_length
from models.provider import SearchableProvider
from utils.cancellation import Deadline, check_deadline

logger = logging.getLogger(__name__)

# Receives a private copy of the current entry (or None) and returns the entry
# to store, or None to leave the store unchanged.
EntryMutator = Callable[[Optional[SearchableProvider]], Optional[SearchableProvider]]

Candidate = Tuple[SearchableProvider, float]


class GeoStore(ABC):
    """Storage engine with point storage and radius queries"""

    @abstractmethod
    def within_radius(self, center: GeoPoint, radius_km: float) -> List[Candidate]:
        """
        All stored entries (active or not) within ``radius_km`` of ``center``.

        Returns (entry, distance_km) pairs read from a single consistent
        snapshot. Distances are exact haversine distances.
        """

    @abstractmethod
    def get(self, provider_id: str) -> Optional[SearchableProvider]:
        """Copy of the entry for a provider, or None"""

    @abstractmethod
    def upsert(self, entry: SearchableProvider, deadline: Optional[Deadline] = None) -> None:
        """Insert or replace the entry keyed by its provider id"""

    @abstractmethod
    def update(
        self,
        provider_id: str,
        mutate: EntryMutator,
        deadline: Optional[Deadline] = None,
    ) -> Optional[SearchableProvider]:
        """Atomic read-modify-write of one provider's entry; returns the stored entry"""

    @abstractmethod
    def delete(self, provider_id: str, deadline: Optional[Deadline] = None) -> bool:
        """Remove the entry; False when the provider was not indexed"""

    @abstractmethod
    def count(self) -> int:
        """Number of stored entries, active or not"""

    def ping(self) -> bool:
        return True


class _Snapshot:
    """
    Immutable view of the in-memory store with its k-d tree.

    The tree is built on the first radius query, so consecutive writes with no
    read in between only pay for the dict copy.
    """

    def __init__(self, entries: Dict[str, SearchableProvider]):
        self.entries = entries
        self.provider_ids = list(entries.keys())
        self._tree: Optional[cKDTree] = None
        self._build_lock = threading.Lock()

    @property
    def built(self) -> bool:
        return self._tree is not None

    @property
    def tree(self) -> Optional[cKDTree]:
        if self._tree is None and self.entries:
            with self._build_lock:
                if self._tree is None:
                    points = np.array([self.entries[pid].location.to_unit_vector() for pid in self.provider_ids])
                    self._tree = cKDTree(points)
                    logger.debug(f"Built k-d tree over {len(self.provider_ids)} entries")
        return self._tree

    def within_radius(self, center: GeoPoint, radius_km: float) -> List[Candidate]:
        tree = self.tree
        if tree is None:
            return []
        # Chord radius on the unit sphere, widened slightly so float error
        # never drops a boundary point; exact haversine decides membership.
        chord = chord_length(radius_km) * (1 + 1e-9) + 1e-12
        indexes = tree.query_ball_point(center.to_unit_vector(), r=chord)

        candidates = []
        for i in indexes:
            entry = self.entries[self.provider_ids[i]]
            distance = entry.location.distance_km(center)
            if distance <= radius_km:
                candidates.append((entry, distance))
        return candidates


class InMemoryGeoStore(GeoStore):
    """
    In-process store backed by a scipy k-d tree over unit-sphere coordinates.

    Writes copy the entry dict into a new snapshot and swap it in under a
    writer lock, so reads always see one complete snapshot. Each write is
    O(n); the tree is rebuilt lazily by the next search.
    """

    def __init__(self):
        self._snapshot = _Snapshot({})
        self._write_lock = threading.Lock()

    def within_radius(self, center: GeoPoint, radius_km: float) -> List[Candidate]:
        snapshot = self._snapshot
        return snapshot.within_radius(center, radius_km)

    def get(self, provider_id: str) -> Optional[SearchableProvider]:
        entry = self._snapshot.entries.get(provider_id)
        return entry.copy() if entry is not None else None

    def upsert(self, entry: SearchableProvider, deadline: Optional[Deadline] = None) -> None:
        stored = entry.copy()
        with self._write_lock:
            entries = dict(self._snapshot.entries)
            entries[stored.provider_id] = stored
            snapshot = _Snapshot(entries)
            check_deadline(deadline, "index upsert")
            self._snapshot = snapshot

    def update(
        self,
        provider_id: str,
        mutate: EntryMutator,
        deadline: Optional[Deadline] = None,
    ) -> Optional[SearchableProvider]:
        with self._write_lock:
            current = self._snapshot.entries.get(provider_id)
            updated = mutate(current.copy() if current is not None else None)
            if updated is None:
                return current.copy() if current is not None else None
            if updated.provider_id != provider_id:
                raise InvalidArgument("An update cannot change the provider id of an entry")
            stored = updated.copy()
            entries = dict(self._snapshot.entries)
            entries[provider_id] = stored
            snapshot = _Snapshot(entries)
            check_deadline(deadline, "index update")
            self._snapshot = snapshot
            return stored.copy()

    def delete(self, provider_id: str, deadline: Optional[Deadline] = None) -> bool:
        with self._write_lock:
            if provider_id not in self._snapshot.entries:
                return False
            entries = dict(self._snapshot.entries)
            del entries[provider_id]
            snapshot = _Snapshot(entries)
            check_deadline(deadline, "index delete")
            self._snapshot = snapshot
            return True

    def count(self) -> int:
        return len(self._snapshot.entries)


# GEOSEARCH and HMGET in one script so the read is a single snapshot.
_WITHIN_RADIUS_SCRIPT = """
local members = redis.call('GEOSEARCH', KEYS[1], 'FROMLONLAT', ARGV[1], ARGV[2], 'BYRADIUS', ARGV[3], 'km')
local docs = {}
local batch = 500
for i = 1, #members, batch do
    local chunk = {}
    for j = i, math.min(i + batch - 1, #members) do
        chunk[#chunk + 1] = members[j]
    end
    local values = redis.call('HMGET', KEYS[2], unpack(chunk))
    for k = 1, #chunk do
        if values[k] then
            docs[#docs + 1] = values[k]
        end
    end
end
return docs
"""

# Redis GEO cannot index latitudes beyond the Web Mercator limit
REDIS_GEO_MAX_LATITUDE = 85.05112878
# Redis uses a slightly larger Earth radius and geohash cells; widen the
# query and let the exact haversine check decide membership.
_REDIS_RADIUS_FACTOR = 1.001
_REDIS_RADIUS_SLACK_KM = 0.01


class RedisGeoStore(GeoStore):
    """
    Redis-backed store: a GEO set for positions plus a hash of JSON entries.

    Writes go through MULTI/EXEC pipelines; read-modify-write uses WATCH so
    concurrent writers for the same provider retry instead of clobbering.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "search:index"):
        self.redis = redis_client
        self.geo_key = f"{key_prefix}:geo"
        self.entries_key = f"{key_prefix}:entries"
        self._within_radius = self.redis.register_script(_WITHIN_RADIUS_SCRIPT)

    @staticmethod
    def _decode(raw) -> SearchableProvider:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return SearchableProvider.from_dict(json.loads(raw))

    @staticmethod
    def _check_storable(entry: SearchableProvider) -> None:
        if abs(entry.location.latitude) > REDIS_GEO_MAX_LATITUDE:
            raise InvalidArgument(
                f"Latitude {entry.location.latitude} is outside the range Redis GEO can index"
            )

    def within_radius(self, center: GeoPoint, radius_km: float) -> List[Candidate]:
        query_radius = radius_km * _REDIS_RADIUS_FACTOR + _REDIS_RADIUS_SLACK_KM
        try:
            docs = self._within_radius(
                keys=[self.geo_key, self.entries_key],
                args=[center.longitude, center.latitude, query_radius],
            )
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis radius query failed: {e}")
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e

        candidates = []
        for raw in docs or []:
            entry = self._decode(raw)
            distance = entry.location.distance_km(center)
            if distance <= radius_km:
                candidates.append((entry, distance))
        return candidates

    def get(self, provider_id: str) -> Optional[SearchableProvider]:
        try:
            raw = self.redis.hget(self.entries_key, provider_id)
        except redis.exceptions.RedisError as e:
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e
        return self._decode(raw) if raw else None

    def _write(self, pipe, entry: SearchableProvider) -> None:
        pipe.geoadd(self.geo_key, [entry.location.longitude, entry.location.latitude, entry.provider_id])
        pipe.hset(self.entries_key, entry.provider_id, json.dumps(entry.to_dict()))

    def upsert(self, entry: SearchableProvider, deadline: Optional[Deadline] = None) -> None:
        self._check_storable(entry)
        check_deadline(deadline, "index upsert")
        try:
            pipe = self.redis.pipeline(transaction=True)
            self._write(pipe, entry)
            pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to upsert provider {entry.provider_id}: {e}")
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e

    def update(
        self,
        provider_id: str,
        mutate: EntryMutator,
        deadline: Optional[Deadline] = None,
    ) -> Optional[SearchableProvider]:
        result: Dict[str, Optional[SearchableProvider]] = {}

        def apply(pipe) -> None:
            raw = pipe.hget(self.entries_key, provider_id)
            current = self._decode(raw) if raw else None
            updated = mutate(current)
            if updated is None:
                result["entry"] = current
                return
            if updated.provider_id != provider_id:
                raise InvalidArgument("An update cannot change the provider id of an entry")
            self._check_storable(updated)
            check_deadline(deadline, "index update")
            pipe.multi()
            self._write(pipe, updated)
            result["entry"] = updated

        try:
            self.redis.transaction(apply, self.entries_key)
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to update provider {provider_id}: {e}")
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e
        return result.get("entry")

    def delete(self, provider_id: str, deadline: Optional[Deadline] = None) -> bool:
        check_deadline(deadline, "index delete")
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.zrem(self.geo_key, provider_id)
            pipe.hdel(self.entries_key, provider_id)
            _, removed = pipe.execute()
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to delete provider {provider_id}: {e}")
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e
        return bool(removed)

    def count(self) -> int:
        try:
            return int(self.redis.hlen(self.entries_key))
        except redis.exceptions.RedisError as e:
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.exceptions.RedisError as e:
            raise IndexUnavailable(f"Search index is unavailable: {e}") from e
