"""Data processing utilities"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from models.errors import ValidationError

logger = logging.getLogger(__name__)


class DataProcessor:
    """Data processing utilities"""

    @staticmethod
    def clean_text(text: str) -> str:
        """Basic text cleaning"""
        if not text:
            return ""
        return " ".join(text.strip().split())

    @staticmethod
    def normalize_uuid(value: Any, field_name: str = "id") -> str:
        """Canonical lower-case hyphenated form of a UUID"""
        if isinstance(value, uuid.UUID):
            return str(value)
        try:
            return str(uuid.UUID(str(value).strip()))
        except (ValueError, AttributeError, TypeError):
            raise ValidationError.single(field_name, f"'{value}' is not a valid UUID") from None

    @staticmethod
    def extract_service_ids(services: Any) -> List[str]:
        """
        Extract service ids from a services array.
        Handles both formats:
        - Array of ids: ["5f0c...", "9a1e..."]
        - Array of objects: [{"id": "5f0c...", "name": "Plumbing"}, ...]
        - Comma-separated string: "5f0c...,9a1e..."
        """
        if not services:
            return []
        if isinstance(services, str):
            return [s.strip() for s in services.split(",") if s.strip()]
        if not isinstance(services, (list, tuple, set, frozenset)):
            return []

        service_ids = []
        for service in services:
            if isinstance(service, dict):
                service_id = service.get("id") or service.get("serviceId") or service.get("service_id")
                if service_id:
                    service_ids.append(str(service_id))
            elif service:
                service_ids.append(str(service))
        return service_ids

    @staticmethod
    def normalize_service_ids(services: Optional[Iterable[Any]]) -> FrozenSet[str]:
        """Deduplicated set of canonical service UUIDs"""
        if services is not None and not isinstance(services, str):
            services = list(services)
        raw = DataProcessor.extract_service_ids(services)
        return frozenset(DataProcessor.normalize_uuid(s, "serviceIds") for s in raw)

    @staticmethod
    def normalize_provider_fields(provider: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize provider fields from camelCase (API format) to snake_case (internal format)
        Also handles field name variations
        """
        field_mapping = {
            "providerId": "provider_id",
            "averageRating": "average_rating",
            "totalReviews": "total_reviews",
            "subscriptionTier": "subscription_tier",
            "serviceIds": "service_ids",
            "isActive": "is_active",
        }
        # Looser spellings only fill fields that are otherwise missing
        alias_mapping = {
            "id": "provider_id",
            "rating": "average_rating",
            "tier": "subscription_tier",
            "services": "service_ids",
            "lat": "latitude",
            "lng": "longitude",
            "lon": "longitude",
        }

        normalized = {}
        for key, value in provider.items():
            if key not in alias_mapping:
                normalized[field_mapping.get(key, key)] = value
        for key, target in alias_mapping.items():
            if key in provider:
                normalized.setdefault(target, provider[key])

        location = provider.get("location")
        if isinstance(location, dict):
            normalized.setdefault("latitude", location.get("latitude", location.get("lat")))
            normalized.setdefault("longitude", location.get("longitude", location.get("lng", location.get("lon"))))
            normalized.pop("location", None)

        if "service_ids" in normalized:
            normalized["service_ids"] = DataProcessor.extract_service_ids(normalized["service_ids"])

        for text_field in ("name", "description", "city", "state"):
            if isinstance(normalized.get(text_field), str):
                normalized[text_field] = DataProcessor.clean_text(normalized[text_field])

        return normalized

    @staticmethod
    def parse_timestamp_ms(value: Any) -> int:
        """Convert an ISO-8601 string or epoch value to epoch milliseconds (0 if unparseable)"""
        if value is None or value == "":
            return 0
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)

        date_str = str(value).strip()
        if date_str.isdigit():
            return int(date_str)

        if date_str.endswith("Z"):
            date_str = date_str[:-1] + "+00:00"

        # datetime.fromisoformat supports at most 6 fractional digits
        # 2025-11-02T18:51:50.1635356+07:00 -> 2025-11-02T18:51:50.163535+07:00
        if "." in date_str:
            dot_idx = date_str.index(".")
            tz_idx = len(date_str)
            for i in range(dot_idx + 1, len(date_str)):
                if date_str[i] in "+-":
                    tz_idx = i
                    break
            fraction = date_str[dot_idx + 1:tz_idx][:6]
            date_str = f"{date_str[:dot_idx]}.{fraction}{date_str[tz_idx:]}"

        try:
            return int(datetime.fromisoformat(date_str).timestamp() * 1000)
        except ValueError as e:
            logger.warning(f"Failed to parse timestamp '{value}': {e}")
            return 0
