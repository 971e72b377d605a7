"""
SQLAlchemy ORM models for the Luvia product assistant.

Persistent entities: conversation state, product catalog and rules,
customer purchase events, sales strategies and escalation tickets.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, ForeignKey,
    JSON, Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ConversationStateRecord(Base):
    __tablename__ = "conversation_states"

    conversation_key = Column(String(255), primary_key=True)
    team_id = Column(String(36), nullable=True, index=True)
    schema_version = Column(Integer, nullable=False)
    state_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProductCatalog(Base):
    __tablename__ = "product_catalog"

    id = Column(String(36), primary_key=True, default=_uuid)
    team_id = Column(String(36), nullable=False, index=True)
    platform_product_id = Column(String(100), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    sales_page_url = Column(String(500), nullable=True)
    checkout_url = Column(String(500), nullable=True)
    price_cents = Column(Integer, nullable=True)
    embedding = Column(JSON, nullable=True)  # list of floats
    metadata_json = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    rules = relationship("ProductRule", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_catalog_team_platform", "team_id", "platform_product_id"),
    )


class ProductRule(Base):
    __tablename__ = "product_rules"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("product_catalog.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    rule_text = Column(Text, nullable=False)
    category = Column(String(50), nullable=True)  # pricing, refund, bonus, access
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    product = relationship("ProductCatalog", back_populates="rules")


class CustomerEvent(Base):
    __tablename__ = "customer_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    team_id = Column(String(36), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=True, index=True)
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    platform_product_id = Column(String(100), nullable=True)
    product_name = Column(String(255), nullable=True)
    event_type = Column(String(20), nullable=False)  # APPROVED, ABANDONED, REFUND
    occurred_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_events_team_phone_time", "team_id", "customer_phone", "occurred_at"),
    )


class SalesStrategy(Base):
    __tablename__ = "sales_strategies"

    id = Column(String(36), primary_key=True, default=_uuid)
    team_id = Column(String(36), nullable=True, index=True)  # null = shared
    name = Column(String(100), nullable=False)
    trigger_keywords = Column(JSON, default=list)
    approach = Column(Text, nullable=False)
    call_to_action = Column(Text, nullable=True)
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)


class EscalationTicketRecord(Base):
    __tablename__ = "escalation_tickets"

    ticket_id = Column(String(40), primary_key=True)
    conversation_key = Column(String(255), nullable=False, index=True)
    team_id = Column(String(36), nullable=True, index=True)
    reason = Column(String(30), nullable=False)
    priority = Column(String(10), default="normal")
    status = Column(String(15), default="open")  # open, resolved
    payload_json = Column(JSON, default=dict)
    webhook_called = Column(Boolean, default=False)
    webhook_error = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
