"""
Registry Client

HTTP client for an external funding source registry. Implements the
funding-source, connector-health and transaction-history ports over REST.
"""

import logging
from typing import Dict, List, Optional

import httpx

from flowrail.config import settings
from flowrail.registry.models import ConnectorStatus, FundingSource
from flowrail.registry.ports import (
    ConnectorHealthRepository,
    FundingSourceRepository,
    TransactionHistoryRepository,
)


logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """The registry could not be reached or returned an error."""


class RegistryClient(FundingSourceRepository, ConnectorHealthRepository, TransactionHistoryRepository):
    """
    Client for the Funding Source Registry.

    Calls are synchronous; resolution reads happen before any suspension
    point. ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url or settings.registry_base_url
        self.timeout = timeout if timeout is not None else settings.registry_timeout_seconds
        self._transport = transport
        self.logger = logger

    def _get(self, path: str, params: Optional[dict] = None):
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                response = client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            self.logger.error(f"Registry request {path} failed: {e}")
            raise RegistryError(f"Registry error: {e}") from e

    def list_linked(self, user_id: str) -> List[FundingSource]:
        data = self._get(f"/users/{user_id}/sources")
        sources = [FundingSource(**item) for item in data]
        self.logger.info(f"Fetched {len(sources)} funding sources for user: {user_id}")
        return sources

    def status_of(self, rail_id: str) -> ConnectorStatus:
        try:
            data = self._get(f"/connectors/{rail_id}/health")
        except RegistryError:
            # Health is advisory; an unreachable health endpoint degrades the rail
            return ConnectorStatus.DEGRADED
        return ConnectorStatus(data["status"])

    def recent_by_rail(self, user_id: str, days: int = 30) -> Dict[str, int]:
        data = self._get(f"/users/{user_id}/history/by-rail", params={"days": days})
        return {rail_id: int(count) for rail_id, count in data.items()}
