"""
Human handoff API routes for the Luvia product assistant.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.middleware.auth import require_operator_key
from api.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/handoff", tags=["handoff"], dependencies=[Depends(require_operator_key)])


class HandoffResolveRequest(BaseModel):
    notes: str = ""


@router.get("/active")
async def list_active_handoffs(services: Services = Depends(get_services)):
    """List all conversations currently handed off to a human."""
    if services.escalation is None:
        return {"tickets": []}
    return {"tickets": [t.to_dict() for t in services.escalation.get_active_tickets()]}


@router.post("/{conversation_id}/resolve")
async def resolve_handoff(
    conversation_id: str,
    request: HandoffResolveRequest,
    services: Services = Depends(get_services),
):
    """Close the active ticket so the assistant takes the conversation back."""
    if services.escalation is None:
        raise HTTPException(status_code=404, detail="Handoff not found")
    ticket = await services.escalation.resolve(conversation_id, request.notes)
    if not ticket:
        raise HTTPException(status_code=404, detail="No active handoff for this conversation")
    return {"status": "resolved", "conversation_id": conversation_id, "ticket_id": ticket.ticket_id}
