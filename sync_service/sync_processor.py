"""Decodes stream messages and hands them to the index projector"""
import logging
from typing import Any, Dict, Optional

from models.errors import ProjectionError, ValidationError
from models.event import AggregateType, OutboxEvent
from models.sync import SyncResult
from sync_service.projector import IndexProjector
from utils.cancellation import Deadline

logger = logging.getLogger(__name__)


class SyncProcessor:
    """Processes outbox events from the provider events stream"""

    def __init__(self, projector: IndexProjector):
        self.projector = projector

    def process_stream_message(self, fields: Dict[str, Any], deadline: Optional[Deadline] = None) -> SyncResult:
        """
        Process one Redis stream message

        Fields contain: id, aggregateType, aggregateId, eventType,
        payload (JSON string), occurredAt, traceId, attempts

        Raises:
            ProjectionError: the message could not be decoded or applied
        """
        try:
            event = OutboxEvent.from_stream_fields(fields)
        except ValidationError as e:
            raise ProjectionError(
                f"Malformed provider event: {e}",
                event_id=fields.get("id"),
                event_type=fields.get("eventType"),
            ) from e

        if event.aggregate_type != AggregateType.PROVIDER.value:
            logger.info(f"Ignoring event {event.id}: aggregate '{event.aggregate_type}' is not indexed")
            return SyncResult(processed=1, skipped=1)

        logger.info(
            f"Processing {event.event_type} event {event.id} "
            f"(aggregate={event.aggregate_id}, trace={event.trace_id}, attempts={event.attempts})"
        )
        return self.projector.handle(event, deadline=deadline)
