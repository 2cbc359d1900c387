"""Geographic point model and great-circle distance"""
import math
from dataclasses import dataclass
from typing import Tuple

from models.errors import FieldError, ValidationError

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push h slightly past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def chord_length(distance_km: float) -> float:
    """Straight-line distance on the unit sphere for a great-circle distance"""
    angle = min(math.pi, distance_km / EARTH_RADIUS_KM)
    return 2.0 * math.sin(angle / 2.0)


@dataclass(frozen=True)
class GeoPoint:
    """Immutable latitude/longitude pair in decimal degrees"""
    latitude: float
    longitude: float

    def __post_init__(self):
        errors = []
        lat, lon = self.latitude, self.longitude
        if not isinstance(lat, (int, float)) or isinstance(lat, bool) or not math.isfinite(lat) or not -90 <= lat <= 90:
            errors.append(FieldError("latitude", "Latitude must be between -90 and 90"))
        if not isinstance(lon, (int, float)) or isinstance(lon, bool) or not math.isfinite(lon) or not -180 <= lon <= 180:
            errors.append(FieldError("longitude", "Longitude must be between -180 and 180"))
        if errors:
            raise ValidationError(errors)
        object.__setattr__(self, "latitude", float(lat))
        object.__setattr__(self, "longitude", float(lon))

    def distance_km(self, other: "GeoPoint") -> float:
        """Haversine distance to another point"""
        return haversine_km(self.latitude, self.longitude, other.latitude, other.longitude)

    def to_unit_vector(self) -> Tuple[float, float, float]:
        """Cartesian coordinates on the unit sphere, used by the spatial index"""
        phi = math.radians(self.latitude)
        lam = math.radians(self.longitude)
        return (
            math.cos(phi) * math.cos(lam),
            math.cos(phi) * math.sin(lam),
            math.sin(phi),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "GeoPoint":
        """Create from dict"""
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
        )

    def to_dict(self) -> dict:
        """Convert to dict"""
        return {"latitude": self.latitude, "longitude": self.longitude}
