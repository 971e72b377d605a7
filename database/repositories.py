"""
Repository classes for the Luvia data access layer.

Each repository encapsulates queries for a specific model.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, delete, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ConversationStateRecord, ProductCatalog, ProductRule, CustomerEvent,
    SalesStrategy, EscalationTicketRecord,
)

logger = logging.getLogger(__name__)


class ConversationStateRepository:
    """Data access for persisted conversation state."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, conversation_key: str) -> Optional[ConversationStateRecord]:
        result = await self.session.execute(
            select(ConversationStateRecord).where(
                ConversationStateRecord.conversation_key == conversation_key
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        conversation_key: str,
        team_id: Optional[str],
        schema_version: int,
        state_json: Dict[str, Any],
    ) -> ConversationStateRecord:
        record = await self.get(conversation_key)
        if record is None:
            record = ConversationStateRecord(
                conversation_key=conversation_key,
                team_id=team_id,
                schema_version=schema_version,
                state_json=state_json,
            )
            self.session.add(record)
        else:
            record.team_id = team_id
            record.schema_version = schema_version
            record.state_json = state_json
            record.updated_at = datetime.utcnow()
        await self.session.flush()
        return record

    async def delete(self, conversation_key: str) -> bool:
        result = await self.session.execute(
            delete(ConversationStateRecord).where(
                ConversationStateRecord.conversation_key == conversation_key
            )
        )
        return (result.rowcount or 0) > 0


class ProductCatalogRepository:
    """Data access for the product catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, team_id: str, product_id: str) -> Optional[ProductCatalog]:
        result = await self.session.execute(
            select(ProductCatalog).where(
                ProductCatalog.id == product_id,
                ProductCatalog.team_id == team_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_with_embeddings(self, team_id: str) -> List[ProductCatalog]:
        result = await self.session.execute(
            select(ProductCatalog).where(
                ProductCatalog.team_id == team_id,
                ProductCatalog.is_active == True,  # noqa: E712
                ProductCatalog.embedding.isnot(None),
            )
        )
        return list(result.scalars().all())

    async def get_by_platform_ids(
        self, team_id: str, platform_ids: Iterable[str]
    ) -> List[ProductCatalog]:
        ids = list(platform_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(ProductCatalog).where(
                ProductCatalog.team_id == team_id,
                ProductCatalog.platform_product_id.in_(ids),
            )
        )
        return list(result.scalars().all())


class ProductRuleRepository:
    """Data access for authorized product rules."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self, product_id: str) -> List[ProductRule]:
        result = await self.session.execute(
            select(ProductRule)
            .where(ProductRule.product_id == product_id, ProductRule.is_active == True)  # noqa: E712
            .order_by(ProductRule.priority.desc())
        )
        return list(result.scalars().all())


class CustomerEventRepository:
    """Data access for customer purchase events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def platform_ids_since(
        self, team_id: str, customer_phone: str, since: datetime
    ) -> Set[str]:
        result = await self.session.execute(
            select(CustomerEvent.platform_product_id).where(
                CustomerEvent.team_id == team_id,
                CustomerEvent.customer_phone == customer_phone,
                CustomerEvent.occurred_at >= since,
                CustomerEvent.platform_product_id.isnot(None),
            )
        )
        return {row[0] for row in result.all()}

    async def latest_per_product(
        self,
        team_id: str,
        customer_phone: str,
        event_types: Optional[List[str]] = None,
    ) -> List[CustomerEvent]:
        """Most recent event for each platform product, newest first."""
        query = select(CustomerEvent).where(
            CustomerEvent.team_id == team_id,
            CustomerEvent.customer_phone == customer_phone,
            CustomerEvent.platform_product_id.isnot(None),
        )
        if event_types:
            upper = [e.upper() for e in event_types]
            lower = [e.lower() for e in event_types]
            query = query.where(or_(
                CustomerEvent.event_type.in_(upper),
                CustomerEvent.event_type.in_(lower),
            ))
        result = await self.session.execute(query.order_by(CustomerEvent.occurred_at.desc()))

        latest: Dict[str, CustomerEvent] = {}
        for event in result.scalars().all():
            latest.setdefault(event.platform_product_id, event)
        return list(latest.values())

    async def latest_event_type(
        self, team_id: str, customer_phone: str, platform_product_id: str
    ) -> Optional[str]:
        result = await self.session.execute(
            select(CustomerEvent.event_type)
            .where(
                CustomerEvent.team_id == team_id,
                CustomerEvent.customer_phone == customer_phone,
                CustomerEvent.platform_product_id == platform_product_id,
            )
            .order_by(CustomerEvent.occurred_at.desc())
            .limit(1)
        )
        row = result.first()
        return row[0].upper() if row and row[0] else None


class SalesStrategyRepository:
    """Data access for sales strategies."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self, team_id: str) -> List[SalesStrategy]:
        result = await self.session.execute(
            select(SalesStrategy)
            .where(
                SalesStrategy.is_active == True,  # noqa: E712
                or_(SalesStrategy.team_id == team_id, SalesStrategy.team_id.is_(None)),
            )
            .order_by(SalesStrategy.priority.desc())
        )
        return list(result.scalars().all())


class EscalationTicketRepository:
    """Data access for escalation tickets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> EscalationTicketRecord:
        record = EscalationTicketRecord(**kwargs)
        self.session.add(record)
        await self.session.flush()
        return record

    async def resolve(self, ticket_id: str, notes: Optional[str] = None) -> bool:
        result = await self.session.execute(
            update(EscalationTicketRecord)
            .where(EscalationTicketRecord.ticket_id == ticket_id)
            .values(status="resolved", resolved_at=datetime.utcnow(), notes=notes)
        )
        return (result.rowcount or 0) > 0
