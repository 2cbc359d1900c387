"""Provider lifecycle integration events"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from models.errors import ValidationError
from utils.data_processor import DataProcessor

logger = logging.getLogger(__name__)


class AggregateType(str, Enum):
    """Aggregates publishing to the provider events stream"""
    PROVIDER = "Provider"


class EventType(str, Enum):
    """Provider lifecycle events consumed by the index projector"""
    PROVIDER_ACTIVATED = "ProviderActivated"
    PROVIDER_VERIFIED = "ProviderVerified"
    PROVIDER_PROFILE_UPDATED = "ProviderProfileUpdated"
    PROVIDER_RATING_CHANGED = "ProviderRatingChanged"
    PROVIDER_SUBSCRIPTION_CHANGED = "ProviderSubscriptionChanged"
    PROVIDER_SUSPENDED = "ProviderSuspended"
    PROVIDER_REJECTED = "ProviderRejected"
    PROVIDER_DELETED = "ProviderDeleted"

    @classmethod
    def parse(cls, value: str) -> Optional["EventType"]:
        """Accept the event name, its IntegrationEvent-suffixed form or the upper snake-case member name"""
        if not value:
            return None
        text = str(value).strip()
        if text.endswith("IntegrationEvent"):
            text = text[: -len("IntegrationEvent")]
        for member in cls:
            if text == member.value or text.upper() == member.name:
                return member
        return None


@dataclass
class OutboxEvent:
    """Event envelope as written by the Providers module outbox"""
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: int = 0
    trace_id: Optional[str] = None
    attempts: int = 0

    @property
    def kind(self) -> Optional[EventType]:
        return EventType.parse(self.event_type)

    @property
    def provider_id(self) -> str:
        """Provider the event refers to; the payload wins over the envelope"""
        normalized = DataProcessor.normalize_provider_fields(self.payload)
        raw = normalized.get("provider_id") or self.aggregate_id
        return DataProcessor.normalize_uuid(raw, "providerId")

    @classmethod
    def from_stream_fields(cls, fields: Dict[str, Any]) -> "OutboxEvent":
        """
        Create from Redis stream fields

        Fields contain: id, aggregateType, aggregateId, eventType,
        payload (JSON string), occurredAt, traceId, attempts
        """
        payload = fields.get("payload") or {}
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ValidationError.single("payload", f"payload is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ValidationError.single("payload", "payload must be a JSON object")

        event_type = fields.get("eventType") or fields.get("event_type") or payload.get("eventType")
        if not event_type:
            raise ValidationError.single("eventType", "eventType is required")

        try:
            attempts = int(fields.get("attempts") or 0)
        except (TypeError, ValueError):
            attempts = 0

        return cls(
            id=str(fields.get("id") or ""),
            aggregate_type=str(fields.get("aggregateType") or AggregateType.PROVIDER.value),
            aggregate_id=str(fields.get("aggregateId") or ""),
            event_type=str(event_type),
            payload=payload,
            occurred_at=DataProcessor.parse_timestamp_ms(fields.get("occurredAt")),
            trace_id=fields.get("traceId") or None,
            attempts=attempts,
        )

    def to_stream_fields(self) -> Dict[str, str]:
        """Convert to flat string fields suitable for XADD"""
        return {
            "id": self.id,
            "aggregateType": self.aggregate_type,
            "aggregateId": self.aggregate_id,
            "eventType": self.event_type,
            "payload": json.dumps(self.payload),
            "occurredAt": str(self.occurred_at),
            "traceId": self.trace_id or "",
            "attempts": str(self.attempts),
        }
