"""
Chat Orchestrator for the Luvia product assistant.

Runs one inbound message through the full pipeline: security gate,
greeting short-circuit, pending disambiguation, product resolution,
context enrichment, reply generation, guardrails and escalation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from api.handoff.manager import EscalationReason, EscalationService, EscalationTicket
from conversation import messages
from conversation.disambiguation import (
    DisambiguationState,
    DisambiguationStateMachine,
    TransitionKind,
)
from conversation.greeting import greeting_reply, is_greeting_only
from conversation.state import (
    ConversationMode,
    ConversationState,
    EventType,
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProduct,
    PendingProductConfirmation,
)
from conversation.store import ConversationStateStore
from retrieval.context_enricher import ContextEnricher
from retrieval.customer_history import CustomerHistory
from retrieval.product_resolver import (
    AmbiguousEmpty,
    BestMatch,
    NoCandidates,
    ProductResolver,
    Resolution,
    ResolutionOutcome,
    apply_context_override,
)
from security.gate import GateResult, SecurityGate

from .guardrails import GuardrailValidator
from .oracles import InteractionType, MessageInterpretation, MessageInterpreter
from .reply_generator import SUPPORT_INTERACTIONS, ReplyGenerator, select_agent

logger = logging.getLogger(__name__)

TEXT_MESSAGE = "text"
ALL_EVENT_TYPES = [e.value for e in EventType]

DISAMBIGUATION_AGENTS = {
    DisambiguationState.PENDING_SINGLE_CONFIRM: "productConfirmation",
    DisambiguationState.PENDING_MULTI_SELECT: "multiProductClarification",
    DisambiguationState.PENDING_CONTEXT_SWITCH: "contextSwitchConfirmation",
}


@dataclass
class ChatRequest:
    """One inbound customer message."""
    team_id: str
    message: str
    phone: Optional[str] = None
    email: Optional[str] = None
    user_confirmation: bool = False
    message_type: str = TEXT_MESSAGE
    customer_name: Optional[str] = None

    @property
    def conversation_key(self) -> str:
        """Phone digits, else email, else the team."""
        digits = SecurityGate.normalize_phone(self.phone) if self.phone else ""
        if digits:
            return digits
        if self.email:
            return self.email.strip().lower()
        return f"team-{self.team_id}"


@dataclass
class ChatResponse:
    """Response from the chat pipeline."""
    response: str
    conversation_id: str
    workflow_status: str = "success"  # success | escalated | error
    agent_used: str = ""
    needs_human: bool = False
    ticket_id: Optional[str] = None
    validation_issues: List[Dict[str, str]] = field(default_factory=list)
    product_id: Optional[str] = None
    processing_time_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "response": self.response,
            "workflow_status": self.workflow_status,
            "agent_used": self.agent_used,
            "needs_human": self.needs_human,
            "ticket_id": self.ticket_id,
            "validation_issues": self.validation_issues,
            "conversation_id": self.conversation_id,
            "product_id": self.product_id,
            "processing_time_ms": self.processing_time_ms,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


def outcome_label(outcome: ResolutionOutcome) -> str:
    if isinstance(outcome, NoCandidates):
        return "no_candidates" if outcome.reason == "empty" else outcome.reason
    if isinstance(outcome, AmbiguousEmpty):
        return "ambiguous_empty"
    if outcome.overridden:
        return "overridden"
    if outcome.is_ambiguous:
        return "ambiguous"
    if outcome.needs_confirmation:
        return "needs_confirmation"
    return "resolved"


class ChatOrchestrator:
    """
    Orchestrates the chat pipeline.

    Pipeline:
    1. Security gate (rate limit, injection screen, phone normalization)
    2. Media and handoff short-circuits
    3. Load conversation state
    4. Greeting short-circuit
    5. Pending disambiguation (single confirm, product list, context switch)
    6. Interpret the message
    7. Offer the customer's own products when no product is named
    8. Resolve the product and apply the continuity override
    9. Context switch confirmation when leaving an active support product
    10. Enrich context and generate the reply
    11. Guardrails, escalation, persist state
    """

    def __init__(
        self,
        gate: SecurityGate,
        state_store: ConversationStateStore,
        disambiguation: DisambiguationStateMachine,
        interpreter: MessageInterpreter,
        resolver: ProductResolver,
        enricher: ContextEnricher,
        reply_generator: ReplyGenerator,
        guardrails: GuardrailValidator,
        escalation: EscalationService,
        customer_history: Optional[CustomerHistory] = None,
        agent_name: str = "Luvia",
        escalate_on_failure: bool = True,
        handoff_pauses_bot: bool = False,
        timeout_seconds: float = 15.0,
    ):
        self.gate = gate
        self.state_store = state_store
        self.disambiguation = disambiguation
        self.interpreter = interpreter
        self.resolver = resolver
        self.enricher = enricher
        self.reply_generator = reply_generator
        self.guardrails = guardrails
        self.escalation = escalation
        self.customer_history = customer_history
        self.agent_name = agent_name
        self.escalate_on_failure = escalate_on_failure
        self.handoff_pauses_bot = handoff_pauses_bot
        self.timeout_seconds = timeout_seconds

    async def process(self, request: ChatRequest) -> ChatResponse:
        """
        Process a chat request through the full pipeline.

        Args:
            request: Chat request

        Returns:
            Chat response. Unexpected failures become a generic reply with
            workflow_status "error".

        Raises:
            RateLimitError: the conversation exceeded its request budget
            SecurityError: the message or phone was rejected by the gate
        """
        start_time = time.time()
        key = request.conversation_key

        gate = self.gate.check(key, request.message, request.phone)

        if request.message_type != TEXT_MESSAGE:
            response = ChatResponse(
                response=messages.MEDIA_NOT_SUPPORTED,
                conversation_id=key,
                agent_used="mediaHandler",
                metadata={"message_type": request.message_type},
            )
        elif self.handoff_pauses_bot and self.escalation.is_in_handoff(key):
            ticket = self.escalation.get_ticket(key)
            response = ChatResponse(
                response=messages.IN_HANDOFF,
                conversation_id=key,
                agent_used="humanHandoff",
                needs_human=True,
                ticket_id=ticket.ticket_id if ticket else None,
                metadata={"handoff_active": True},
            )
        else:
            try:
                response = await self._run(request, key, gate)
            except Exception as e:
                logger.error(f"Pipeline failed for conversation {_mask(key)}: {e}", exc_info=True)
                response = await self._hard_failure(request, key, gate, "pipeline_error")

        response.processing_time_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            f"Turn done: status={response.workflow_status}, agent={response.agent_used}, "
            f"product={response.product_id}, {response.processing_time_ms}ms"
        )
        return response

    async def _run(self, request: ChatRequest, key: str, gate: GateResult) -> ChatResponse:
        message = gate.sanitized_message
        phone = gate.sanitized_phone
        team_id = request.team_id

        state = await self.state_store.load(key, team_id)

        if not state.has_pending and is_greeting_only(message, state.recent_messages):
            return await self._finish(state, message, ChatResponse(
                response=greeting_reply(message, self.agent_name),
                conversation_id=key,
                agent_used="greetingHandler",
            ))

        question = message
        original_intent = None
        settled: Optional[BestMatch] = None

        if state.has_pending:
            pending_state = self.disambiguation.current_state(state)
            previous_question = _last_user_message(state)
            transition = await self.disambiguation.handle(state, message)

            if not transition.continues_pipeline:
                return await self._finish(state, message, ChatResponse(
                    response=transition.reply,
                    conversation_id=key,
                    agent_used=DISAMBIGUATION_AGENTS[pending_state],
                    product_id=state.current_product_id,
                    metadata={"disambiguation": transition.kind.value},
                ))

            question = transition.question or message
            if (
                transition.kind == TransitionKind.CONFIRMED
                and transition.question is None
                and previous_question
            ):
                # Pending objects saved without the original question
                question = previous_question
            original_intent = transition.intent
            if transition.resolved:
                settled = BestMatch(
                    product_id=transition.product_id,
                    name=transition.product_name,
                    score=1.0,
                )

        current_name = await self._product_name(team_id, state.current_product_id)
        interpretation = await self.interpreter.interpret(question, current_name)
        if original_intent:
            interpretation.interaction_type = _interaction(original_intent)
        state.last_intent = interpretation.interaction_type.value

        if settled is not None:
            outcome: ResolutionOutcome = Resolution(
                best_match=settled, is_ambiguous=False, needs_confirmation=False, overridden=True
            )
        else:
            if self._should_offer_customer_products(request, state, phone, interpretation):
                offered = await self._offer_customer_products(state, team_id, phone, question, interpretation)
                if offered is not None:
                    text, agent_used = offered
                    return await self._finish(state, message, ChatResponse(
                        response=text, conversation_id=key, agent_used=agent_used,
                    ))

            search_query = interpretation.product_name or interpretation.normalized_query or question
            outcome = await self.resolver.resolve(question, team_id, phone, search_query=search_query)
            outcome = apply_context_override(
                outcome,
                question,
                state.current_product_id,
                names_product_confidently=interpretation.names_product_confidently,
            )

        label = outcome_label(outcome)
        if not isinstance(outcome, Resolution):
            logger.warning(f"No product resolved ({label}) for team {team_id}")
            return await self._hard_failure(request, key, gate, label, state=state)

        needs_clarification = outcome.needs_clarification and not request.user_confirmation
        best = outcome.best_match

        switch_question = await self._arm_context_switch(
            state, team_id, best, question, interpretation, needs_clarification,
            request.user_confirmation,
        )
        if switch_question is not None:
            return await self._finish(state, message, ChatResponse(
                response=switch_question,
                conversation_id=key,
                agent_used="contextSwitchConfirmation",
                product_id=state.current_product_id,
                metadata={"resolution_outcome": label},
            ))

        if not needs_clarification:
            update = state.switch_product(best.product_id)
            if update.context_switched:
                logger.info(f"Current product is now {best.product_id}")

        enriched = await self.enricher.enrich(
            team_id,
            product_id=best.product_id,
            customer_phone=phone,
            user_intent=question,
        )
        if phone and "purchased_products" not in enriched.degraded:
            state.purchased_products = set(enriched.purchased_product_ids)
        if (
            not needs_clarification
            and interpretation.interaction_type in SUPPORT_INTERACTIONS
            and enriched.owns_product
        ):
            state.set_active_support_product(best.product_id)

        agent = select_agent(interpretation.interaction_type, enriched, needs_clarification)
        reply = await self.reply_generator.generate(
            agent,
            question,
            enriched,
            history=state.recent_messages,
            candidate_names=outcome.alternative_names,
        )

        metadata = {
            "resolution_outcome": label,
            "intent": interpretation.interaction_type.value,
            "reranked": outcome.reranked,
            "degraded": enriched.degraded,
        }

        verdict = await self.guardrails.validate(
            reply.text, enriched.rules, check_promises=enriched.product is not None
        )
        response = ChatResponse(
            response=verdict.sanitized_response,
            conversation_id=key,
            agent_used=reply.agent_used.value,
            validation_issues=[i.to_dict() for i in verdict.issues],
            product_id=state.current_product_id,
            metadata=metadata,
        )

        reason = None
        if verdict.escalate:
            reason = EscalationReason(verdict.escalation_reason)
        elif reply.needs_escalation:
            reason = EscalationReason(reply.escalation_reason)

        if reason is not None:
            product_name = enriched.product.name if enriched.product else best.name
            ticket = await self._escalate(
                request, key, phone, reason, state,
                last_message=message, product_id=best.product_id, product_name=product_name,
            )
            response.workflow_status = "escalated"
            response.needs_human = True
            response.ticket_id = ticket.ticket_id
            metadata["escalation_reason"] = reason.value

        return await self._finish(state, message, response)

    # ── Customer products ──

    def _should_offer_customer_products(
        self,
        request: ChatRequest,
        state: ConversationState,
        phone: Optional[str],
        interpretation: MessageInterpretation,
    ) -> bool:
        return bool(
            phone
            and self.customer_history is not None
            and not request.user_confirmation
            and interpretation.interaction_type != InteractionType.PURCHASE
            and not interpretation.has_clear_product
            and not state.active_support_product_id
            and not state.current_product_id
        )

    async def _offer_customer_products(
        self,
        state: ConversationState,
        team_id: str,
        phone: str,
        question: str,
        interpretation: MessageInterpretation,
    ) -> Optional[Tuple[str, str]]:
        """Arm a confirmation (one product) or a numbered list (several)."""
        if interpretation.interaction_type == InteractionType.PRICING:
            event_types = [EventType.ABANDONED.value]
        else:
            event_types = ALL_EVENT_TYPES

        try:
            products = await asyncio.wait_for(
                self.customer_history.customer_products(team_id, phone, event_types),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Customer products unavailable, skipping history step: {e!r}")
            return None

        products = [p for p in products if p.product_name]
        if not products:
            return None

        if len(products) == 1:
            product = products[0]
            pending = PendingProductConfirmation(
                suggested_product_id=product.product_id,
                suggested_product_name=product.product_name,
                event_type=EventType(product.event_type),
                original_message=question,
            )
            state.set_pending_product_confirmation(pending)
            logger.info(f"Asking customer to confirm '{product.product_name}' ({product.event_type})")
            return messages.confirmation_question(pending), "productConfirmation"

        pending = PendingMultiProductSelection(
            products=[
                PendingProduct(
                    index=i,
                    product_id=p.product_id,
                    product_name=p.product_name,
                    event_type=p.event_type,
                )
                for i, p in enumerate(products, 1)
            ],
            original_message=question,
            original_intent=interpretation.interaction_type.value,
        )
        state.set_pending_multi_product_selection(pending)
        logger.info(f"Asking customer to pick one of {len(products)} products")
        return messages.product_list(pending), "multiProductClarification"

    # ── Context switch ──

    async def _arm_context_switch(
        self,
        state: ConversationState,
        team_id: str,
        best: BestMatch,
        question: str,
        interpretation: MessageInterpretation,
        needs_clarification: bool,
        user_confirmation: bool,
    ) -> Optional[str]:
        """Ask before leaving an active support product for a different one."""
        active = state.active_support_product_id
        if not active or best.product_id == active or needs_clarification or user_confirmation:
            return None

        from_name = await self._product_name(team_id, active) or "produto atual"
        to_name = best.name or await self._product_name(team_id, best.product_id) or "outro produto"
        to_mode = (
            ConversationMode.SUPPORT
            if interpretation.interaction_type in SUPPORT_INTERACTIONS
            else ConversationMode.SALES
        )
        pending = PendingContextSwitch(
            from_product_id=active,
            from_product_name=from_name,
            from_mode=ConversationMode.SUPPORT,
            to_product_id=best.product_id,
            to_product_name=to_name,
            to_mode=to_mode,
            original_message=question,
        )
        state.set_pending_context_switch(pending)
        logger.info(f"Context switch armed: '{from_name}' -> '{to_name}' ({to_mode.value})")
        return messages.context_switch_question(pending)

    # ── Helpers ──

    async def _product_name(self, team_id: str, product_id: Optional[str]) -> Optional[str]:
        if not product_id or self.enricher.catalog is None:
            return None
        try:
            product = await asyncio.wait_for(
                self.enricher.catalog.get_product(team_id, product_id),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Product name lookup failed for {product_id}: {e!r}")
            return None
        return product.name if product else None

    async def _escalate(
        self,
        request: ChatRequest,
        key: str,
        phone: Optional[str],
        reason: EscalationReason,
        state: Optional[ConversationState] = None,
        last_message: str = "",
        product_id: Optional[str] = None,
        product_name: Optional[str] = None,
    ) -> EscalationTicket:
        summary = ""
        if state is not None:
            summary = " | ".join(
                f"{m['role']}: {m['content'][:80]}" for m in state.recent_messages[-4:]
            )
        return await self.escalation.escalate(
            conversation_key=key,
            reason=reason,
            team_id=request.team_id,
            customer_phone=phone,
            customer_email=request.email,
            customer_name=request.customer_name,
            product_id=product_id,
            product_name=product_name,
            last_message=last_message,
            summary=summary,
        )

    async def _hard_failure(
        self,
        request: ChatRequest,
        key: str,
        gate: GateResult,
        label: str,
        state: Optional[ConversationState] = None,
    ) -> ChatResponse:
        """Generic reply, plus an automatic ticket when configured."""
        response = ChatResponse(
            response=messages.COULD_NOT_PROCESS_NO_HANDOFF,
            conversation_id=key,
            workflow_status="error",
            agent_used="errorHandler",
            metadata={"resolution_outcome": label},
        )

        if self.escalate_on_failure:
            try:
                ticket = await self._escalate(
                    request, key, gate.sanitized_phone, EscalationReason.NO_INFO, state,
                    last_message=gate.sanitized_message,
                )
            except Exception as e:
                logger.error(f"Automatic escalation failed: {e}")
            else:
                response.response = messages.COULD_NOT_PROCESS
                response.needs_human = True
                response.ticket_id = ticket.ticket_id
                response.metadata["escalation_reason"] = EscalationReason.NO_INFO.value

        if state is not None:
            await self._finish(state, gate.sanitized_message, response)
        return response

    async def _finish(
        self, state: ConversationState, user_message: str, response: ChatResponse
    ) -> ChatResponse:
        state.add_message("user", user_message)
        state.add_message("assistant", response.response)
        await self.state_store.save(state)
        return response


def _last_user_message(state: ConversationState) -> Optional[str]:
    for turn in reversed(state.recent_messages):
        if turn.get("role") == "user":
            return turn.get("content")
    return None


def _interaction(value: str) -> InteractionType:
    try:
        return InteractionType(value)
    except ValueError:
        return InteractionType.GENERAL


def _mask(key: str) -> str:
    return f"***{key[-4:]}" if key and key.isdigit() else key
