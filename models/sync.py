"""Sync operation result models"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class SyncResult:
    """Result of applying provider events to the search index"""
    processed: int = 0
    upserted: int = 0
    deactivated: int = 0
    deleted: int = 0
    skipped: int = 0
    error: Optional[str] = None

    @property
    def mutated(self) -> bool:
        return bool(self.upserted or self.deactivated or self.deleted)

    def to_dict(self) -> dict:
        """Convert to dict"""
        result = {
            "processed": self.processed,
            "upserted": self.upserted,
            "deactivated": self.deactivated,
            "deleted": self.deleted,
            "skipped": self.skipped,
        }
        if self.error:
            result["error"] = self.error
        return result
