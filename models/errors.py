"""Error taxonomy for provider discovery"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class FieldError:
    """A single violated field"""
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class DiscoveryError(Exception):
    """Base class for all provider discovery errors"""


class ValidationError(DiscoveryError, ValueError):
    """Malformed input; carries every violated field, not just the first"""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(summary or "validation failed")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])

    def fields(self) -> List[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict:
        return {
            "status": "error",
            "type": "validation_error",
            "message": "One or more search parameters are invalid",
            "errors": [e.to_dict() for e in self.errors],
        }


class InvalidArgument(DiscoveryError, ValueError):
    """Index query preconditions were violated"""


class IndexUnavailable(DiscoveryError):
    """The storage layer behind the search index failed"""


class OperationCancelled(DiscoveryError):
    """A deadline expired or the caller cancelled the operation"""


class ProjectionError(DiscoveryError):
    """Applying a provider lifecycle event to the index failed"""

    def __init__(
        self,
        message: str,
        event_id: Optional[str] = None,
        event_type: Optional[str] = None,
        provider_id: Optional[str] = None,
    ):
        self.event_id = event_id
        self.event_type = event_type
        self.provider_id = provider_id
        super().__init__(message)


class UnknownEventType(ProjectionError):
    """No handler is registered for the event type"""
