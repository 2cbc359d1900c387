import math
import uuid

import pytest

from models.geo import EARTH_RADIUS_KM, GeoPoint
from models.provider import SearchableProvider, SubscriptionTier
from services.geo_index import GeoSearchIndex
from services.query_cache import QueryCache
from services.search_service import SearchService

# Av. Paulista, São Paulo
CENTER = GeoPoint(-23.561414, -46.656559)

PLUMBING = "3f2b8c1e-6a4d-4e8f-9b1a-2c3d4e5f6a7b"
ELECTRICAL = "8d7c6b5a-4e3f-4a1b-9c8d-7e6f5a4b3c2d"


def north_of(center: GeoPoint, km: float) -> GeoPoint:
    """Point exactly ``km`` great-circle kilometres due north of ``center``"""
    return GeoPoint(center.latitude + math.degrees(km / EARTH_RADIUS_KM), center.longitude)


@pytest.fixture
def center():
    return CENTER


@pytest.fixture
def make_provider():
    def factory(
        km=1.0,
        tier=SubscriptionTier.FREE,
        rating=0.0,
        reviews=0,
        services=(PLUMBING,),
        active=True,
        name="Provider",
        description=None,
        provider_id=None,
    ):
        return SearchableProvider(
            id=str(uuid.uuid4()),
            provider_id=provider_id or str(uuid.uuid4()),
            name=name,
            location=north_of(CENTER, km),
            subscription_tier=tier,
            average_rating=rating,
            total_reviews=reviews,
            service_ids=list(services),
            active=active,
            description=description,
        )

    return factory


@pytest.fixture
def index():
    return GeoSearchIndex()


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def search_service(index, cache):
    return SearchService(index, cache)


@pytest.fixture
def point_at():
    """Point the given distance due north of the search center"""
    return lambda km: north_of(CENTER, km)
