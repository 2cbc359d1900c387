"""Geospatial provider search index"""
import logging
import math
from typing import Optional, Tuple

from models.errors import InvalidArgument
from models.geo import GeoPoint
from models.provider import SearchableProvider
from models.search import SearchFilters, SearchResult
from services.geo_store import Candidate, EntryMutator, GeoStore, InMemoryGeoStore
from utils.cancellation import Deadline, check_deadline

logger = logging.getLogger(__name__)

MAX_RADIUS_KM = 500.0
MAX_TAKE = 100


def rank_key(candidate: Candidate) -> Tuple[int, float, float, str]:
    """Tier desc, rating desc, distance asc, provider id asc"""
    entry, distance = candidate
    return (-int(entry.subscription_tier), -entry.average_rating, distance, entry.provider_id)


class GeoSearchIndex:
    """
    Radius search over the provider projection.

    Reads are side-effect free and run against one store snapshot; the
    mutating methods are meant for the index projector only.
    """

    def __init__(
        self,
        store: Optional[GeoStore] = None,
        max_radius_km: float = MAX_RADIUS_KM,
        max_take: int = MAX_TAKE,
    ):
        self.store = store if store is not None else InMemoryGeoStore()
        self.max_radius_km = max_radius_km
        self.max_take = max_take

    def _check_preconditions(self, center: GeoPoint, radius_km: float, skip: int, take: int) -> None:
        problems = []
        if not isinstance(center, GeoPoint):
            problems.append("center must be a GeoPoint")
        if not isinstance(radius_km, (int, float)) or math.isnan(radius_km) or not 0 < radius_km <= self.max_radius_km:
            problems.append(f"radius_km must be in (0, {self.max_radius_km:g}], got {radius_km}")
        if not isinstance(take, int) or not 0 < take <= self.max_take:
            problems.append(f"take must be in (0, {self.max_take}], got {take}")
        if not isinstance(skip, int) or skip < 0:
            problems.append(f"skip must be >= 0, got {skip}")
        if problems:
            raise InvalidArgument("; ".join(problems))

    def search(
        self,
        center: GeoPoint,
        radius_km: float,
        filters: Optional[SearchFilters] = None,
        skip: int = 0,
        take: int = 20,
        deadline: Optional[Deadline] = None,
    ) -> SearchResult:
        """Filter, rank and paginate the active entries within ``radius_km`` of ``center``

        The whole filtered set is ranked before ``skip``/``take`` are applied,
        so page boundaries are stable while the index is not mutated.
        Storage failures surface as ``IndexUnavailable`` and are not retried here.
        """
        self._check_preconditions(center, radius_km, skip, take)
        filters = filters or SearchFilters()
        check_deadline(deadline, "search")

        candidates = self.store.within_radius(center, radius_km)
        check_deadline(deadline, "search")

        matched = [(entry, distance) for entry, distance in candidates if entry.active and filters.matches(entry)]
        matched.sort(key=rank_key)

        page = matched[skip:skip + take]
        logger.info(
            f"Radius search center=({center.latitude:.4f}, {center.longitude:.4f}) "
            f"radius={radius_km}km matched={len(matched)} returned={len(page)}"
        )
        return SearchResult(
            entries=[entry.copy() for entry, _ in page],
            distances_km=[distance for _, distance in page],
            total_count=len(matched),
        )

    def get(self, provider_id: str) -> Optional[SearchableProvider]:
        return self.store.get(provider_id)

    def count(self) -> int:
        return self.store.count()

    def ping(self) -> bool:
        return self.store.ping()

    def upsert(self, entry: SearchableProvider, deadline: Optional[Deadline] = None) -> None:
        """Insert or replace by provider id, so replays leave one entry"""
        if not isinstance(entry, SearchableProvider):
            raise InvalidArgument("upsert expects a SearchableProvider")
        check_deadline(deadline, "index upsert")
        self.store.upsert(entry, deadline=deadline)
        logger.debug(f"Upserted provider {entry.provider_id} (active={entry.active})")

    def update(
        self,
        provider_id: str,
        mutate: EntryMutator,
        deadline: Optional[Deadline] = None,
    ) -> Optional[SearchableProvider]:
        """Read-modify-write one entry under the store's per-entry exclusion"""
        check_deadline(deadline, "index update")
        return self.store.update(provider_id, mutate, deadline=deadline)

    def remove(self, provider_id: str, deadline: Optional[Deadline] = None) -> bool:
        """Hard-remove an entry; absent providers are a no-op"""
        check_deadline(deadline, "index remove")
        removed = self.store.delete(provider_id, deadline=deadline)
        if not removed:
            logger.debug(f"Provider {provider_id} not indexed, nothing to remove")
        return removed
