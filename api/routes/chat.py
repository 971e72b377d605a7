"""
Chat API Routes for the Luvia product assistant.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from llm.orchestrator import ChatRequest as OrchestratorRequest
from llm.orchestrator import ChatResponse as OrchestratorResponse
from security import RateLimitError, SecurityError

from ..middleware.auth import require_operator_key
from ..middleware.metrics import record_chat_turn
from ..services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

MessageType = Literal["text", "image", "audio", "video", "document", "sticker"]


# ── Request / Response Models ─────────────────────────────────────

class ChatRequest(BaseModel):
    team_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)
    phone: Optional[str] = Field(default=None, pattern=r"^\d{10,15}$")
    email: Optional[str] = None
    customer_name: Optional[str] = None
    user_confirmation: bool = False
    message_type: MessageType = "text"


class ValidationIssue(BaseModel):
    type: str
    severity: str
    description: str


class ChatResponse(BaseModel):
    response: str
    workflow_status: Literal["success", "escalated", "error"]
    agent_used: str
    needs_human: bool = False
    ticket_id: Optional[str] = None
    validation_issues: List[ValidationIssue] = []
    conversation_id: str
    product_id: Optional[str] = None
    processing_time_ms: float = 0.0


class ResetRequest(BaseModel):
    team_id: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, services: Services = Depends(get_services)):
    """
    Process a customer message through the full pipeline.

    1. Security gate  2. Disambiguation or product resolution
    3. Context enrichment  4. Reply generation  5. Guardrails / escalation
    """
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Service not ready")

    orch_request = OrchestratorRequest(
        team_id=request.team_id,
        message=request.message,
        phone=request.phone,
        email=request.email,
        user_confirmation=request.user_confirmation,
        message_type=request.message_type,
        customer_name=request.customer_name,
    )

    async def _process(text: str) -> OrchestratorResponse:
        return await services.orchestrator.process(replace(orch_request, message=text))

    try:
        buffer = services.message_buffer
        if buffer is not None and buffer.enabled and request.message_type == "text":
            result = await buffer.submit(orch_request.conversation_key, request.message, _process)
        else:
            result = await _process(request.message)
    except RateLimitError as e:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(max(1, math.ceil(e.retry_after)))},
        )
    except SecurityError as e:
        raise HTTPException(status_code=400, detail=e.reason)

    payload = result.to_dict()
    record_chat_turn(payload)

    return ChatResponse(
        response=result.response,
        workflow_status=result.workflow_status,
        agent_used=result.agent_used,
        needs_human=result.needs_human,
        ticket_id=result.ticket_id,
        validation_issues=[ValidationIssue(**i) for i in result.validation_issues],
        conversation_id=result.conversation_id,
        product_id=result.product_id,
        processing_time_ms=result.processing_time_ms,
    )


@router.post("/reset", dependencies=[Depends(require_operator_key)])
async def reset_conversation(
    request: ResetRequest,
    services: Services = Depends(get_services),
) -> Dict[str, object]:
    """Delete a conversation's state (operator only)."""
    if services.state_store is None:
        raise HTTPException(status_code=503, detail="Service not ready")

    key = OrchestratorRequest(
        team_id=request.team_id,
        message="",
        phone=request.phone,
        email=request.email,
    ).conversation_key
    existed = await services.state_store.reset(key)
    logger.info(f"Conversation reset by operator (existed={existed})")
    return {"status": "reset", "conversation_id": key, "existed": existed}
