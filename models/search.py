"""Search request and result models"""
import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Optional

from models.errors import FieldError, ValidationError
from models.geo import GeoPoint
from models.provider import SearchableProvider, SubscriptionTier
from utils.data_processor import DataProcessor

logger = logging.getLogger(__name__)

DEFAULT_PAGE_NUMBER = 1
DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class SearchFilters:
    """Attribute filters applied after the spatial filter; None means not filtered"""
    service_ids: Optional[FrozenSet[str]] = None
    min_rating: Optional[float] = None
    tiers: Optional[FrozenSet[SubscriptionTier]] = None
    term: Optional[str] = None

    def __post_init__(self):
        # An empty filter set filters nothing
        if self.service_ids is not None:
            object.__setattr__(
                self, "service_ids", DataProcessor.normalize_service_ids(self.service_ids) or None
            )
        if self.tiers is not None:
            object.__setattr__(
                self, "tiers", frozenset(SubscriptionTier.parse(t) for t in self.tiers) or None
            )
        if self.term is not None:
            object.__setattr__(self, "term", DataProcessor.clean_text(self.term).lower() or None)

    def matches(self, entry: SearchableProvider) -> bool:
        """Service, rating, tier and term filters, in that order"""
        if self.service_ids is not None and not (entry.service_ids & self.service_ids):
            return False
        if self.min_rating is not None and entry.average_rating < self.min_rating:
            return False
        if self.tiers is not None and entry.subscription_tier not in self.tiers:
            return False
        if self.term is not None:
            name = entry.name.lower()
            description = (entry.description or "").lower()
            if self.term not in name and self.term not in description:
                return False
        return True


def _multi(args: Any, key: str) -> List[str]:
    """All values of a query arg, accepting repeated and comma-separated forms"""
    if hasattr(args, "getlist"):
        raw = args.getlist(key)
    else:
        value = args.get(key)
        if value is None:
            raw = []
        elif isinstance(value, (list, tuple, set, frozenset)):
            raw = list(value)
        else:
            raw = [value]

    values = []
    for item in raw:
        if isinstance(item, str):
            values.extend(part.strip() for part in item.split(",") if part.strip())
        elif item is not None:
            values.append(item)
    return values


@dataclass
class SearchQuery:
    """Inbound provider search request"""
    latitude: float
    longitude: float
    radius_km: float
    service_ids: List[Any] = field(default_factory=list)
    min_rating: Optional[float] = None
    subscription_tiers: List[Any] = field(default_factory=list)
    term: Optional[str] = None
    page_number: int = DEFAULT_PAGE_NUMBER
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_args(cls, args: Any) -> "SearchQuery":
        """Parse HTTP query args, reporting every unparseable field at once"""
        errors = []

        def number(key: str, cast, required: bool = False, default=None):
            value = args.get(key)
            if value is None or value == "":
                if required:
                    errors.append(FieldError(key, f"{key} is required"))
                return default
            try:
                return cast(value)
            except (TypeError, ValueError):
                errors.append(FieldError(key, f"{key} must be a valid number"))
                return default

        latitude = number("latitude", float, required=True)
        longitude = number("longitude", float, required=True)
        radius_km = number("radiusInKm", float, required=True)
        min_rating = number("minRating", float)
        page_number = number("pageNumber", int, default=DEFAULT_PAGE_NUMBER)
        page_size = number("pageSize", int, default=DEFAULT_PAGE_SIZE)

        if errors:
            raise ValidationError(errors)

        return cls(
            latitude=latitude,
            longitude=longitude,
            radius_km=radius_km,
            service_ids=_multi(args, "serviceIds"),
            min_rating=min_rating,
            subscription_tiers=_multi(args, "subscriptionTiers"),
            term=args.get("term") or None,
            page_number=page_number,
            page_size=page_size,
        )

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)

    @property
    def skip(self) -> int:
        return (self.page_number - 1) * self.page_size

    def to_filters(self) -> SearchFilters:
        """Typed filters; only valid after the query passed validation"""
        return SearchFilters(
            service_ids=frozenset(self.service_ids) if self.service_ids else None,
            min_rating=self.min_rating,
            tiers=frozenset(self.subscription_tiers) if self.subscription_tiers else None,
            term=self.term,
        )


@dataclass
class ProviderSearchHit:
    """One ranked search result with its distance from the search center"""
    provider: SearchableProvider
    distance_km: float

    def to_dict(self) -> dict:
        """Convert to the public (camelCase) representation"""
        p = self.provider
        return {
            "providerId": p.provider_id,
            "name": p.name,
            "description": p.description,
            "location": p.location.to_dict(),
            "averageRating": p.average_rating,
            "totalReviews": p.total_reviews,
            "subscriptionTier": p.subscription_tier.label,
            "serviceIds": sorted(p.service_ids),
            "distanceInKm": round(self.distance_km, 3),
            "city": p.city,
            "state": p.state,
        }


@dataclass
class SearchResult:
    """Ranked page of index entries plus the size of the whole filtered set"""
    entries: List[SearchableProvider] = field(default_factory=list)
    distances_km: List[float] = field(default_factory=list)
    total_count: int = 0

    def __post_init__(self):
        if len(self.entries) != len(self.distances_km):
            raise ValueError("entries and distances_km must be index-aligned")

    @property
    def has_more(self) -> bool:
        return len(self.entries) < self.total_count

    def hits(self) -> List[ProviderSearchHit]:
        return [ProviderSearchHit(entry, distance) for entry, distance in zip(self.entries, self.distances_km)]

    def provider_ids(self) -> List[str]:
        return [entry.provider_id for entry in self.entries]
