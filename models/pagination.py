"""Pagination models"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List


def total_pages_for(total_count: int, page_size: int) -> int:
    """Page count; a non-positive page size yields zero pages"""
    if page_size <= 0 or total_count <= 0:
        return 0
    return math.ceil(total_count / page_size)


@dataclass
class PagedResult:
    """One page of search results plus paging metadata"""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    page_number: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        return total_pages_for(self.total_count, self.page_size)

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.total_pages > 0 and self.page_number > 1

    @classmethod
    def from_dict(cls, data: dict) -> "PagedResult":
        """Create from dict"""
        return cls(
            items=list(data.get("items", [])),
            total_count=int(data.get("totalCount", 0)),
            page_number=int(data.get("pageNumber", 1)),
            page_size=int(data.get("pageSize", 20)),
        )

    def to_dict(self) -> dict:
        """Convert to dict"""
        return {
            "items": self.items,
            "totalCount": self.total_count,
            "pageNumber": self.page_number,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }
