"""
Human escalation for the Luvia product assistant.

Opens escalation tickets, notifies the support team through a webhook,
and tracks which conversations are currently handed off to a human.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import EscalationTicketRepository

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


class EscalationReason(str, Enum):
    """Why a conversation is handed to a human."""
    NO_INFO = "no_info"
    RISK_DETECTED = "risk_detected"
    USER_REQUESTED = "user_requested"
    SENTIMENT_NEGATIVE = "sentiment_negative"
    PII_LEAK = "pii_leak"
    HALLUCINATION = "hallucination"
    UNAUTHORIZED_PROMISE = "unauthorized_promise"


class EscalationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


REASON_DESCRIPTIONS: Dict[EscalationReason, str] = {
    EscalationReason.NO_INFO: "Assistente não encontrou informação para responder",
    EscalationReason.RISK_DETECTED: "Risco detectado na conversa",
    EscalationReason.USER_REQUESTED: "Cliente pediu atendimento humano",
    EscalationReason.SENTIMENT_NEGATIVE: "Sentimento negativo do cliente",
    EscalationReason.PII_LEAK: "Resposta continha dados pessoais",
    EscalationReason.HALLUCINATION: "Possível informação inventada",
    EscalationReason.UNAUTHORIZED_PROMISE: "Promessa não autorizada na resposta",
}

HIGH_PRIORITY_REASONS = {EscalationReason.PII_LEAK, EscalationReason.UNAUTHORIZED_PROMISE}


@dataclass
class EscalationTicket:
    """A ticket handed to the support team."""
    ticket_id: str
    conversation_key: str
    reason: EscalationReason
    priority: EscalationPriority
    team_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    webhook_called: bool = False
    webhook_error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "conversation_id": self.conversation_key,
            "team_id": self.team_id,
            "reason": self.reason.value,
            "priority": self.priority.value,
            "webhook_called": self.webhook_called,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


def generate_ticket_id(now_ms: Optional[int] = None) -> str:
    """ESC-{epoch_ms}-{9 base36 chars}."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ESC-{now_ms}-{suffix}"


def _mask_phone(phone: Optional[str]) -> str:
    return f"***{phone[-4:]}" if phone else "-"


class EscalationService:
    """
    Creates escalation tickets and tracks active handoffs.

    The webhook is fire-and-acknowledge: a delivery failure is logged
    and recorded on the ticket, and the ticket is still returned.
    """

    SOURCE = "luvia-assistant"
    VERSION = "1.0"

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 30.0,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._session_factory = session_factory
        self._client = client
        self._active: Dict[str, EscalationTicket] = {}

    async def escalate(
        self,
        conversation_key: str,
        reason: EscalationReason,
        team_id: Optional[str] = None,
        customer_phone: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        product_id: Optional[str] = None,
        product_name: Optional[str] = None,
        last_message: str = "",
        summary: str = "",
        priority: Optional[EscalationPriority] = None,
    ) -> EscalationTicket:
        """
        Open a ticket and notify the support webhook.

        Args:
            conversation_key: Conversation being handed off
            reason: Escalation reason code
            team_id: Tenant
            customer_phone: Digits-only phone, if known
            customer_email: Email, if known
            customer_name: Name, if known
            product_id: Product in context, if any
            product_name: Product name in context, if any
            last_message: The customer's last message
            summary: Short conversation summary
            priority: Override the reason's default priority

        Returns:
            The created ticket; never raises for webhook failures
        """
        if priority is None:
            priority = (
                EscalationPriority.HIGH if reason in HIGH_PRIORITY_REASONS
                else EscalationPriority.NORMAL
            )

        ticket = EscalationTicket(
            ticket_id=generate_ticket_id(),
            conversation_key=conversation_key,
            reason=reason,
            priority=priority,
            team_id=team_id,
        )
        ticket.payload = {
            "ticket_id": ticket.ticket_id,
            "escalation_time": ticket.created_at.isoformat() + "Z",
            "priority": priority.value,
            "reason": {"code": reason.value, "description": REASON_DESCRIPTIONS[reason]},
            "customer": {"phone": customer_phone, "email": customer_email, "name": customer_name},
            "product": {"id": product_id, "name": product_name},
            "team_id": team_id,
            "conversation": {"last_message": last_message, "summary": summary},
            "metadata": {"source": self.SOURCE, "version": self.VERSION},
        }

        await self._notify(ticket)
        self._active[conversation_key] = ticket
        await self._persist(ticket)

        logger.info(
            f"Escalation {ticket.ticket_id} opened: reason={reason.value}, "
            f"priority={priority.value}, customer={_mask_phone(customer_phone)}, "
            f"webhook_called={ticket.webhook_called}"
        )
        return ticket

    async def _notify(self, ticket: EscalationTicket):
        if not self.webhook_url:
            logger.warning(f"No escalation webhook configured, ticket {ticket.ticket_id} kept locally")
            return

        try:
            if self._client is not None:
                response = await self._client.post(self.webhook_url, json=ticket.payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.webhook_url, json=ticket.payload)
            response.raise_for_status()
            ticket.webhook_called = True
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            ticket.webhook_error = repr(e)
            logger.warning(f"Escalation webhook failed for {ticket.ticket_id}: {e!r}")

    async def _persist(self, ticket: EscalationTicket):
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                await EscalationTicketRepository(session).create(
                    ticket_id=ticket.ticket_id,
                    conversation_key=ticket.conversation_key,
                    team_id=ticket.team_id,
                    reason=ticket.reason.value,
                    priority=ticket.priority.value,
                    payload_json=ticket.payload,
                    webhook_called=ticket.webhook_called,
                    webhook_error=ticket.webhook_error,
                    created_at=ticket.created_at,
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to persist escalation {ticket.ticket_id}: {e}")

    def is_in_handoff(self, conversation_key: str) -> bool:
        return conversation_key in self._active

    def get_ticket(self, conversation_key: str) -> Optional[EscalationTicket]:
        return self._active.get(conversation_key)

    def get_active_tickets(self) -> List[EscalationTicket]:
        return list(self._active.values())

    async def resolve(self, conversation_key: str, notes: str = "") -> Optional[EscalationTicket]:
        """Close the active ticket so the assistant takes the conversation back."""
        ticket = self._active.pop(conversation_key, None)
        if ticket is None:
            return None

        ticket.resolved_at = datetime.utcnow()
        ticket.notes = notes
        if self._session_factory is not None:
            try:
                async with self._session_factory() as session:
                    await EscalationTicketRepository(session).resolve(ticket.ticket_id, notes or None)
                    await session.commit()
            except Exception as e:
                logger.error(f"Failed to persist resolution of {ticket.ticket_id}: {e}")

        logger.info(f"Handoff resolved: {ticket.ticket_id}")
        return ticket
