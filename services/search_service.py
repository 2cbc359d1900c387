"""Search service for provider discovery"""
import logging
from typing import Optional

from models.errors import IndexUnavailable
from models.geo import GeoPoint
from models.pagination import PagedResult
from models.search import SearchQuery
from services.geo_index import GeoSearchIndex
from services.query_cache import SEARCH_CACHE_TAGS, QueryCache, build_search_cache_key
from utils.cancellation import Deadline
from utils.validators import SearchRequestValidator

logger = logging.getLogger(__name__)

# Probe point used by the availability check (São Paulo, Av. Paulista)
_PROBE_POINT = GeoPoint(-23.561414, -46.656559)


class SearchService:
    """Validates a search, serves it from cache or runs it against the index"""

    def __init__(
        self,
        index: GeoSearchIndex,
        cache: Optional[QueryCache] = None,
        validator: Optional[SearchRequestValidator] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.index = index
        self.cache = cache if cache is not None else QueryCache()
        self.validator = validator if validator is not None else SearchRequestValidator()
        self.cache_ttl = cache_ttl

    def search(self, query: SearchQuery, deadline: Optional[Deadline] = None) -> PagedResult:
        """Perform a paginated radius search for providers

        Args:
            query: Search request (coordinates, radius, filters, paging)
            deadline: Optional cancellation/deadline signal

        Returns:
            PagedResult with ranked items and paging metadata

        Raises:
            ValidationError: the request is malformed
            IndexUnavailable: the index storage failed
        """
        self.validator.validate(query)
        cache_key = build_search_cache_key(query)

        def compute() -> dict:
            result = self.index.search(
                center=query.center,
                radius_km=query.radius_km,
                filters=query.to_filters(),
                skip=query.skip,
                take=query.page_size,
                deadline=deadline,
            )
            page = PagedResult(
                items=[hit.to_dict() for hit in result.hits()],
                total_count=result.total_count,
                page_number=query.page_number,
                page_size=query.page_size,
            )
            return page.to_dict()

        data = self.cache.get_or_compute(
            cache_key,
            compute,
            ttl=self.cache_ttl,
            tags=SEARCH_CACHE_TAGS,
            deadline=deadline,
        )
        return PagedResult.from_dict(data)

    def is_available(self) -> bool:
        """Run a tiny uncached search to check the index can serve queries"""
        try:
            self.index.search(_PROBE_POINT, 1.0, take=1)
            return True
        except IndexUnavailable as e:
            logger.warning(f"Search index availability check failed: {e}")
            return False
