"""
Customer purchase history.

Reads the sales platform's customer events to answer: which products
has this customer engaged with recently, which products do they have,
and do they own a given product.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Protocol, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import CustomerEventRepository, ProductCatalogRepository

logger = logging.getLogger(__name__)


class OwnershipStatus(str, Enum):
    APPROVED = "APPROVED"
    REFUND = "REFUND"
    UNKNOWN = "UNKNOWN"


@dataclass
class CustomerProduct:
    """A catalog product the customer has an event for (latest event wins)."""
    product_id: str
    platform_product_id: str
    product_name: str
    event_type: str
    occurred_at: Optional[datetime] = None


class CustomerHistory(Protocol):
    async def recent_platform_ids(self, team_id: str, customer_phone: str) -> Set[str]:
        ...

    async def customer_products(
        self,
        team_id: str,
        customer_phone: str,
        event_types: Optional[List[str]] = None,
    ) -> List[CustomerProduct]:
        ...

    async def ownership_status(
        self, team_id: str, customer_phone: str, platform_product_id: str
    ) -> OwnershipStatus:
        ...

    async def purchased_product_ids(self, team_id: str, customer_phone: str) -> Set[str]:
        ...


class CustomerHistoryService:
    """Customer history backed by the customer_events table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lookback_days: int = 7,
    ):
        self._session_factory = session_factory
        self.lookback_days = lookback_days

    async def recent_platform_ids(self, team_id: str, customer_phone: str) -> Set[str]:
        """Platform product ids with any event inside the lookback window."""
        since = datetime.utcnow() - timedelta(days=self.lookback_days)
        async with self._session_factory() as session:
            return await CustomerEventRepository(session).platform_ids_since(
                team_id, customer_phone, since
            )

    async def customer_products(
        self,
        team_id: str,
        customer_phone: str,
        event_types: Optional[List[str]] = None,
    ) -> List[CustomerProduct]:
        """
        Products the customer has events for, newest first.

        Args:
            team_id: Tenant
            customer_phone: Digits-only phone
            event_types: Restrict to these event types (e.g. ["ABANDONED"])

        Returns:
            One entry per catalog product; events for products missing
            from the catalog are skipped.
        """
        async with self._session_factory() as session:
            events = await CustomerEventRepository(session).latest_per_product(
                team_id, customer_phone, event_types
            )
            catalog = await ProductCatalogRepository(session).get_by_platform_ids(
                team_id, [e.platform_product_id for e in events]
            )

        by_platform_id = {p.platform_product_id: p for p in catalog}
        products = []
        for event in events:
            product = by_platform_id.get(event.platform_product_id)
            if product is None:
                logger.debug(f"No catalog entry for platform product {event.platform_product_id}")
                continue
            products.append(CustomerProduct(
                product_id=product.id,
                platform_product_id=event.platform_product_id,
                product_name=product.name or event.product_name or "",
                event_type=event.event_type.upper(),
                occurred_at=event.occurred_at,
            ))
        return products

    async def ownership_status(
        self, team_id: str, customer_phone: str, platform_product_id: str
    ) -> OwnershipStatus:
        async with self._session_factory() as session:
            latest = await CustomerEventRepository(session).latest_event_type(
                team_id, customer_phone, platform_product_id
            )
        if latest == OwnershipStatus.APPROVED.value:
            return OwnershipStatus.APPROVED
        if latest == OwnershipStatus.REFUND.value:
            return OwnershipStatus.REFUND
        return OwnershipStatus.UNKNOWN

    async def purchased_product_ids(self, team_id: str, customer_phone: str) -> Set[str]:
        """Catalog ids whose latest event is APPROVED (refunds excluded)."""
        products = await self.customer_products(
            team_id, customer_phone, event_types=["APPROVED", "REFUND"]
        )
        return {p.product_id for p in products if p.event_type == OwnershipStatus.APPROVED.value}
