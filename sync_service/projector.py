"""Projects provider lifecycle events onto the search index"""
import logging
from typing import Any, Callable, Dict, Optional

from models.errors import (
    OperationCancelled,
    ProjectionError,
    UnknownEventType,
    ValidationError,
)
from models.event import EventType, OutboxEvent
from models.geo import GeoPoint
from models.provider import ProviderSnapshot, SearchableProvider, SubscriptionTier
from models.sync import SyncResult
from services.geo_index import GeoSearchIndex
from services.providers_client import ProvidersClient, ProvidersClientError
from services.query_cache import QueryCache
from utils.cancellation import Deadline, check_deadline
from utils.data_processor import DataProcessor

logger = logging.getLogger(__name__)

Handler = Callable[[OutboxEvent, str, Optional[Deadline]], SyncResult]

# Invalidate even when the index was already up to date: a redelivery after a
# failed invalidation finds nothing to remove but cached pages may still list the provider
HIDING_EVENTS = frozenset({
    EventType.PROVIDER_SUSPENDED,
    EventType.PROVIDER_REJECTED,
    EventType.PROVIDER_DELETED,
})


class IndexProjector:
    """
    Keeps the search index eventually consistent with the Providers module.

    Handlers are keyed by provider id rather than event id, so redelivered or
    replayed events converge on the same entry. Failures are raised as
    ProjectionError for the transport to retry or dead-letter.
    """

    def __init__(
        self,
        index: GeoSearchIndex,
        cache: Optional[QueryCache] = None,
        providers_client: Optional[ProvidersClient] = None,
    ):
        self.index = index
        self.cache = cache
        self.providers_client = providers_client
        self._handlers: Dict[EventType, Handler] = {
            EventType.PROVIDER_ACTIVATED: self._on_activated,
            EventType.PROVIDER_VERIFIED: self._on_activated,
            EventType.PROVIDER_PROFILE_UPDATED: self._on_profile_updated,
            EventType.PROVIDER_RATING_CHANGED: self._on_rating_changed,
            EventType.PROVIDER_SUBSCRIPTION_CHANGED: self._on_subscription_changed,
            EventType.PROVIDER_SUSPENDED: self._on_hidden,
            EventType.PROVIDER_REJECTED: self._on_hidden,
            EventType.PROVIDER_DELETED: self._on_deleted,
        }

    def register(self, event_type: EventType, handler: Handler) -> None:
        """Register or replace the handler for an event type"""
        self._handlers[event_type] = handler

    def handle(self, event: OutboxEvent, deadline: Optional[Deadline] = None) -> SyncResult:
        """Apply one event to the index and invalidate cached searches on change"""
        kind = event.kind
        handler = self._handlers.get(kind) if kind is not None else None
        if handler is None:
            raise UnknownEventType(
                f"No handler registered for event type '{event.event_type}'",
                event_id=event.id,
                event_type=event.event_type,
            )

        try:
            provider_id = event.provider_id
        except ValidationError as e:
            raise ProjectionError(
                f"Event {event.id} does not identify a provider: {e}",
                event_id=event.id,
                event_type=event.event_type,
            ) from e

        try:
            check_deadline(deadline, "event projection")
            result = handler(event, provider_id, deadline)
            if (result.mutated or kind in HIDING_EVENTS) and self.cache is not None:
                self.cache.invalidate_search_results()
        except OperationCancelled:
            logger.warning(f"Projection of event {event.id} ({event.event_type}) was cancelled")
            raise
        except ProjectionError as e:
            logger.error(f"✗ Projection failed for event {event.id} ({event.event_type}), provider {provider_id}: {e}")
            raise
        except Exception as e:
            logger.exception(
                f"✗ Projection failed for event {event.id} ({event.event_type}), provider {provider_id}: {e}"
            )
            raise ProjectionError(
                f"Failed to apply {event.event_type} for provider {provider_id}: {e}",
                event_id=event.id,
                event_type=event.event_type,
                provider_id=provider_id,
            ) from e

        result.processed = 1
        logger.info(f"✓ Applied {event.event_type} for provider {provider_id}: {result.to_dict()}")
        return result

    def index_provider(self, provider_id: str, deadline: Optional[Deadline] = None) -> SyncResult:
        """Rebuild one provider's entry from a fresh Providers module snapshot"""
        if self.providers_client is None:
            raise ProjectionError("Re-indexing requires a Providers API client", provider_id=provider_id)
        snapshot = self._fetch_snapshot(provider_id)
        if snapshot is None:
            removed = self.index.remove(provider_id, deadline=deadline)
            result = SyncResult(processed=1, deleted=int(removed), skipped=int(not removed))
        else:
            result = self._apply_full_snapshot(snapshot, active=snapshot.is_active, deadline=deadline)
            result.processed = 1
        if result.mutated and self.cache is not None:
            self.cache.invalidate_search_results()
        return result

    # Snapshot sources

    def _fetch_snapshot(self, provider_id: str) -> Optional[ProviderSnapshot]:
        try:
            return self.providers_client.get_provider_for_indexing(provider_id)
        except ProvidersClientError as e:
            raise ProjectionError(f"Could not fetch provider snapshot: {e}", provider_id=provider_id) from e

    def _snapshot_for(self, event: OutboxEvent, provider_id: str) -> Optional[ProviderSnapshot]:
        """Fresh snapshot from the Providers API, or the one carried by the event"""
        if self.providers_client is not None:
            return self._fetch_snapshot(provider_id)
        payload = dict(event.payload)
        payload["providerId"] = provider_id
        return ProviderSnapshot.from_dict(payload)

    def _changed_fields(self, event: OutboxEvent, provider_id: str) -> Dict[str, Any]:
        """Fields to merge: the full fresh snapshot when available, else the event payload"""
        if self.providers_client is not None:
            snapshot = self._fetch_snapshot(provider_id)
            if snapshot is None:
                return {}
            return {
                "name": snapshot.name,
                "description": snapshot.description,
                "city": snapshot.city,
                "state": snapshot.state,
                "latitude": snapshot.location.latitude,
                "longitude": snapshot.location.longitude,
                "service_ids": sorted(snapshot.service_ids),
                "average_rating": snapshot.average_rating,
                "total_reviews": snapshot.total_reviews,
                "subscription_tier": snapshot.subscription_tier,
            }
        fields = DataProcessor.normalize_provider_fields(event.payload)
        fields.pop("provider_id", None)
        return fields

    # Handlers

    def _apply_full_snapshot(
        self, snapshot: ProviderSnapshot, active: bool, deadline: Optional[Deadline]
    ) -> SyncResult:
        def mutate(current: Optional[SearchableProvider]) -> SearchableProvider:
            entry = SearchableProvider.from_snapshot(snapshot, entry_id=current.id if current else None)
            entry.active = active
            return entry

        self.index.update(snapshot.provider_id, mutate, deadline=deadline)
        if active:
            return SyncResult(upserted=1)
        return SyncResult(deactivated=1)

    def _on_activated(self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]) -> SyncResult:
        snapshot = self._snapshot_for(event, provider_id)
        if snapshot is None:
            logger.warning(f"Provider {provider_id} no longer exists, skipping activation")
            return SyncResult(skipped=1)
        return self._apply_full_snapshot(snapshot, active=True, deadline=deadline)

    def _merge(
        self,
        provider_id: str,
        apply: Callable[[SearchableProvider], None],
        deadline: Optional[Deadline],
    ) -> SyncResult:
        """Apply ``apply`` to the existing entry; entries are only created by activation"""
        found = {"entry": False}

        def mutate(current: Optional[SearchableProvider]) -> Optional[SearchableProvider]:
            if current is None:
                return None
            found["entry"] = True
            apply(current)
            return current

        self.index.update(provider_id, mutate, deadline=deadline)
        if not found["entry"]:
            logger.info(f"Provider {provider_id} is not indexed yet, nothing to update")
            return SyncResult(skipped=1)
        return SyncResult(upserted=1)

    def _on_profile_updated(self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]) -> SyncResult:
        fields = self._changed_fields(event, provider_id)
        if not fields:
            return SyncResult(skipped=1)

        location = None
        if fields.get("latitude") is not None and fields.get("longitude") is not None:
            location = GeoPoint(float(fields["latitude"]), float(fields["longitude"]))
        service_ids = (
            DataProcessor.normalize_service_ids(fields["service_ids"]) if "service_ids" in fields else None
        )

        def apply(entry: SearchableProvider) -> None:
            if "name" in fields:
                entry.update_basic_info(
                    fields["name"],
                    fields.get("description", entry.description),
                    fields.get("city", entry.city),
                    fields.get("state", entry.state),
                )
            if location is not None:
                entry.update_location(location)
            if service_ids is not None:
                entry.update_services(service_ids)

        return self._merge(provider_id, apply, deadline)

    def _on_rating_changed(self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]) -> SyncResult:
        fields = self._changed_fields(event, provider_id)
        if "average_rating" not in fields:
            raise ProjectionError(
                "Rating event carries no averageRating",
                event_id=event.id,
                event_type=event.event_type,
                provider_id=provider_id,
            )
        average_rating = float(fields["average_rating"])
        total_reviews = fields.get("total_reviews")

        def apply(entry: SearchableProvider) -> None:
            reviews = entry.total_reviews if total_reviews is None else int(total_reviews)
            entry.update_rating(average_rating, reviews)

        return self._merge(provider_id, apply, deadline)

    def _on_subscription_changed(
        self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]
    ) -> SyncResult:
        fields = self._changed_fields(event, provider_id)
        if fields.get("subscription_tier") is None:
            raise ProjectionError(
                "Subscription event carries no subscriptionTier",
                event_id=event.id,
                event_type=event.event_type,
                provider_id=provider_id,
            )
        tier = SubscriptionTier.parse(fields["subscription_tier"])

        def apply(entry: SearchableProvider) -> None:
            entry.update_subscription_tier(tier)

        return self._merge(provider_id, apply, deadline)

    def _on_hidden(self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]) -> SyncResult:
        result = self._merge(provider_id, lambda entry: entry.deactivate(), deadline)
        if result.upserted:
            return SyncResult(deactivated=1)
        return result

    def _on_deleted(self, event: OutboxEvent, provider_id: str, deadline: Optional[Deadline]) -> SyncResult:
        if self.index.remove(provider_id, deadline=deadline):
            return SyncResult(deleted=1)
        return SyncResult(skipped=1)
