"""Search request validation"""
import math
from typing import Any, List

from models.errors import FieldError, ValidationError
from models.provider import SubscriptionTier
from models.search import SearchQuery
from utils.data_processor import DataProcessor

MAX_RADIUS_KM = 500
MAX_PAGE_SIZE = 100
MAX_TERM_LENGTH = 100


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class SearchRequestValidator:
    """Bounds-checks search parameters and reports every violated field at once"""

    def __init__(self, max_radius_km: float = MAX_RADIUS_KM, max_page_size: int = MAX_PAGE_SIZE):
        self.max_radius_km = max_radius_km
        self.max_page_size = max_page_size

    def errors(self, query: SearchQuery) -> List[FieldError]:
        errors = []

        if not _is_number(query.latitude) or not -90 <= query.latitude <= 90:
            errors.append(FieldError("latitude", "Latitude must be between -90 and 90"))
        if not _is_number(query.longitude) or not -180 <= query.longitude <= 180:
            errors.append(FieldError("longitude", "Longitude must be between -180 and 180"))

        if not _is_number(query.radius_km) or query.radius_km <= 0:
            errors.append(FieldError("radiusInKm", "Radius must be greater than 0"))
        elif query.radius_km > self.max_radius_km:
            errors.append(FieldError("radiusInKm", f"Radius cannot exceed {self.max_radius_km:g} km"))

        if query.min_rating is not None and (not _is_number(query.min_rating) or not 0 <= query.min_rating <= 5):
            errors.append(FieldError("minRating", "Minimum rating must be between 0 and 5"))

        if not isinstance(query.page_number, int) or query.page_number <= 0:
            errors.append(FieldError("pageNumber", "Page number must be greater than 0"))

        if not isinstance(query.page_size, int) or query.page_size <= 0:
            errors.append(FieldError("pageSize", "Page size must be greater than 0"))
        elif query.page_size > self.max_page_size:
            errors.append(FieldError("pageSize", f"Page size cannot exceed {self.max_page_size}"))

        for service_id in query.service_ids or []:
            try:
                DataProcessor.normalize_uuid(service_id, "serviceIds")
            except ValidationError:
                errors.append(FieldError("serviceIds", f"'{service_id}' is not a valid service id"))

        for tier in query.subscription_tiers or []:
            try:
                SubscriptionTier.parse(tier)
            except ValueError:
                names = ", ".join(t.label for t in SubscriptionTier)
                errors.append(FieldError("subscriptionTiers", f"'{tier}' is not a valid tier ({names})"))

        if query.term is not None and len(query.term) > MAX_TERM_LENGTH:
            errors.append(FieldError("term", f"Search term cannot exceed {MAX_TERM_LENGTH} characters"))

        return errors

    def validate(self, query: SearchQuery) -> None:
        """Raise ValidationError listing every violation"""
        errors = self.errors(query)
        if errors:
            raise ValidationError(errors)

    def is_valid(self, query: SearchQuery) -> bool:
        return not self.errors(query)
