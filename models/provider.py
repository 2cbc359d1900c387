"""Searchable provider read model"""
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from models.errors import FieldError, ValidationError
from models.geo import GeoPoint
from utils.data_processor import DataProcessor

logger = logging.getLogger(__name__)


class SubscriptionTier(IntEnum):
    """Subscription tiers, ordered by search priority"""
    FREE = 0
    STANDARD = 1
    GOLD = 2
    PLATINUM = 3

    @classmethod
    def parse(cls, value: Any) -> "SubscriptionTier":
        """Accept a tier member, its integer value or its (case-insensitive) name"""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unknown subscription tier: {value!r}")
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return cls(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown subscription tier: {value!r}") from None

    @property
    def label(self) -> str:
        return self.name.capitalize()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


def _check_rating(average_rating: float, total_reviews: int) -> None:
    errors = []
    if average_rating is None or not 0 <= float(average_rating) <= 5:
        errors.append(FieldError("averageRating", "Rating must be between 0 and 5"))
    if total_reviews is None or int(total_reviews) < 0:
        errors.append(FieldError("totalReviews", "Total reviews cannot be negative"))
    if errors:
        raise ValidationError(errors)


def _check_name(name: Optional[str]) -> str:
    if name is None or not str(name).strip():
        raise ValidationError.single("name", "Provider name cannot be empty")
    return str(name).strip()


@dataclass
class SearchableProvider:
    """Denormalised index entry for one provider.

    Owned by the search index; only the index projector mutates it.
    ``provider_id`` references the Providers module aggregate, while ``id``
    identifies the index entry itself.
    """
    id: str
    provider_id: str
    name: str
    location: GeoPoint
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    average_rating: float = 0.0
    total_reviews: int = 0
    service_ids: FrozenSet[str] = field(default_factory=frozenset)
    active: bool = True
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    updated_at: int = field(default_factory=_now_ms)

    def __post_init__(self):
        self.provider_id = DataProcessor.normalize_uuid(self.provider_id, "providerId")
        self.name = _check_name(self.name)
        if not isinstance(self.location, GeoPoint):
            raise ValidationError.single("location", "Location is required")
        self.subscription_tier = SubscriptionTier.parse(self.subscription_tier)
        _check_rating(self.average_rating, self.total_reviews)
        self.average_rating = float(self.average_rating)
        self.total_reviews = int(self.total_reviews)
        self.service_ids = DataProcessor.normalize_service_ids(self.service_ids)
        self.description = _clean(self.description)
        self.city = _clean(self.city)
        self.state = _clean(self.state)

    @classmethod
    def create(
        cls,
        provider_id: str,
        name: str,
        location: GeoPoint,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
        description: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> "SearchableProvider":
        """Create a fresh, active entry with a new entry id"""
        return cls(
            id=str(uuid.uuid4()),
            provider_id=provider_id,
            name=name,
            location=location,
            subscription_tier=subscription_tier,
            description=description,
            city=city,
            state=state,
        )

    @classmethod
    def from_snapshot(cls, snapshot: "ProviderSnapshot", entry_id: Optional[str] = None) -> "SearchableProvider":
        """Build a complete entry from a provider snapshot"""
        return cls(
            id=entry_id or str(uuid.uuid4()),
            provider_id=snapshot.provider_id,
            name=snapshot.name,
            location=snapshot.location,
            subscription_tier=snapshot.subscription_tier,
            average_rating=snapshot.average_rating,
            total_reviews=snapshot.total_reviews,
            service_ids=snapshot.service_ids,
            active=snapshot.is_active,
            description=snapshot.description,
            city=snapshot.city,
            state=snapshot.state,
        )

    def _touch(self) -> None:
        self.updated_at = _now_ms()

    def update_basic_info(
        self,
        name: str,
        description: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        self.name = _check_name(name)
        self.description = _clean(description)
        self.city = _clean(city)
        self.state = _clean(state)
        self._touch()

    def update_location(self, location: GeoPoint) -> None:
        if not isinstance(location, GeoPoint):
            raise ValidationError.single("location", "Location is required")
        self.location = location
        self._touch()

    def update_rating(self, average_rating: float, total_reviews: int) -> None:
        _check_rating(average_rating, total_reviews)
        self.average_rating = float(average_rating)
        self.total_reviews = int(total_reviews)
        self._touch()

    def update_subscription_tier(self, tier: SubscriptionTier) -> None:
        self.subscription_tier = SubscriptionTier.parse(tier)
        self._touch()

    def update_services(self, service_ids: Optional[Iterable[str]]) -> None:
        self.service_ids = DataProcessor.normalize_service_ids(service_ids)
        self._touch()

    def activate(self) -> None:
        if self.active:
            return
        self.active = True
        self._touch()

    def deactivate(self) -> None:
        if not self.active:
            return
        self.active = False
        self._touch()

    def distance_to_km(self, target: GeoPoint) -> float:
        return self.location.distance_km(target)

    def copy(self) -> "SearchableProvider":
        return replace(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchableProvider":
        """Create from the dict produced by ``to_dict``"""
        return cls(
            id=str(data["id"]),
            provider_id=str(data["provider_id"]),
            name=data["name"],
            location=GeoPoint.from_dict(data["location"]),
            subscription_tier=SubscriptionTier.parse(data.get("subscription_tier", 0)),
            average_rating=float(data.get("average_rating", 0.0)),
            total_reviews=int(data.get("total_reviews", 0)),
            service_ids=data.get("service_ids") or [],
            active=bool(data.get("active", True)),
            description=data.get("description"),
            city=data.get("city"),
            state=data.get("state"),
            updated_at=int(data.get("updated_at") or 0),
        )

    def to_dict(self) -> dict:
        """Convert to dict"""
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "name": self.name,
            "location": self.location.to_dict(),
            "subscription_tier": int(self.subscription_tier),
            "average_rating": self.average_rating,
            "total_reviews": self.total_reviews,
            "service_ids": sorted(self.service_ids),
            "active": self.active,
            "description": self.description,
            "city": self.city,
            "state": self.state,
            "updated_at": self.updated_at,
        }


@dataclass
class ProviderSnapshot:
    """Current state of a provider as published by the Providers module"""
    provider_id: str
    name: str
    location: GeoPoint
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    average_rating: float = 0.0
    total_reviews: int = 0
    service_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_active: bool = True
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderSnapshot":
        """Create from a Providers module payload (camelCase or snake_case)"""
        normalized = DataProcessor.normalize_provider_fields(data)
        errors = []
        for required in ("provider_id", "name", "latitude", "longitude"):
            if normalized.get(required) in (None, ""):
                errors.append(FieldError(required, f"{required} is required"))
        if errors:
            raise ValidationError(errors)

        try:
            tier = SubscriptionTier.parse(normalized.get("subscription_tier", SubscriptionTier.FREE))
        except ValueError as e:
            raise ValidationError.single("subscriptionTier", str(e)) from e

        return cls(
            provider_id=DataProcessor.normalize_uuid(normalized["provider_id"], "providerId"),
            name=_check_name(normalized["name"]),
            location=GeoPoint(float(normalized["latitude"]), float(normalized["longitude"])),
            subscription_tier=tier,
            average_rating=float(normalized.get("average_rating") or 0.0),
            total_reviews=int(normalized.get("total_reviews") or 0),
            service_ids=DataProcessor.normalize_service_ids(normalized.get("service_ids")),
            is_active=bool(normalized.get("is_active", True)),
            description=normalized.get("description"),
            city=normalized.get("city"),
            state=normalized.get("state"),
        )
