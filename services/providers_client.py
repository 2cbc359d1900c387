"""HTTP client for provider snapshots owned by the Providers module"""
import logging
from typing import Optional

import requests

from models.errors import ValidationError
from models.provider import ProviderSnapshot

logger = logging.getLogger(__name__)


class ProvidersClientError(Exception):
    """The Providers module could not be reached or answered with an error"""


class ProvidersClient:
    """Fetches the current indexing snapshot of a provider"""

    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_provider_for_indexing(self, provider_id: str) -> Optional[ProviderSnapshot]:
        """
        Get the provider snapshot used to (re)build its index entry.

        Returns:
            ProviderSnapshot, or None when the provider does not exist

        Raises:
            ProvidersClientError: transport failure or unexpected status
        """
        url = f"{self.base_url}/api/v1/providers/{provider_id}/indexing"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Providers API request failed for {provider_id}: {e}")
            raise ProvidersClientError(f"Providers API unreachable: {e}") from e

        if response.status_code == 404:
            logger.warning(f"Provider {provider_id} not found in Providers module")
            return None
        if response.status_code != 200:
            raise ProvidersClientError(
                f"Providers API returned {response.status_code} for provider {provider_id}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ProvidersClientError(f"Providers API returned invalid JSON: {e}") from e

        data = body.get("data", body) if isinstance(body, dict) else body
        try:
            return ProviderSnapshot.from_dict(data)
        except (ValidationError, TypeError, ValueError) as e:
            raise ProvidersClientError(f"Providers API returned an unusable snapshot: {e}") from e
