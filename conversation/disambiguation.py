"""
Disambiguation state machine.

Interprets the customer's reply to the single outstanding pending
object (single product confirmation, numbered product list, or context
switch) and mutates the ConversationState accordingly.

    NONE -> PENDING_SINGLE_CONFIRM -> CONFIRMED | REJECTED | INDECISIVE (re-armed)
    NONE -> PENDING_MULTI_SELECT   -> SELECTED | AMBIGUOUS (same list) | NEW_QUESTION
    NONE -> PENDING_CONTEXT_SWITCH -> CONFIRMED | REJECTED | INDECISIVE (re-armed)

Classification is delegated to the injected oracles; this module only
picks the oracle, validates what it returns and applies the transition.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from llm.oracles import ConfirmationOracle, ConfirmationVerdict, SelectionOracle

from . import messages
from .state import (
    ConversationMode,
    ConversationState,
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProductConfirmation,
)

logger = logging.getLogger(__name__)


class DisambiguationState(Enum):
    NONE = "none"
    PENDING_SINGLE_CONFIRM = "pending_single_confirm"
    PENDING_MULTI_SELECT = "pending_multi_select"
    PENDING_CONTEXT_SWITCH = "pending_context_switch"


class TransitionKind(Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    INDECISIVE = "indecisive"
    SELECTED = "selected"
    AMBIGUOUS = "ambiguous"
    NEW_QUESTION = "new_question"


@dataclass
class Transition:
    """
    Result of handling one reply.

    ``product_id``/``product_name`` is the product the next turn should
    be about, if one was settled. ``reply`` is set when the machine wants
    to answer with a canned message instead of generating one.
    ``question`` is the message to answer once the product is settled;
    None leaves the choice to the caller.
    """
    kind: TransitionKind
    from_state: DisambiguationState
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    reply: Optional[str] = None
    question: Optional[str] = None
    intent: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.product_id is not None

    @property
    def continues_pipeline(self) -> bool:
        """True when the turn should proceed to enrichment and reply generation."""
        return self.reply is None


class DisambiguationStateMachine:
    """Handles replies to pending disambiguation questions."""

    def __init__(
        self,
        confirmation_oracle: ConfirmationOracle,
        selection_oracle: SelectionOracle,
    ):
        self.confirmation_oracle = confirmation_oracle
        self.selection_oracle = selection_oracle

    @staticmethod
    def current_state(state: ConversationState) -> DisambiguationState:
        if state.pending_product_confirmation is not None:
            return DisambiguationState.PENDING_SINGLE_CONFIRM
        if state.pending_multi_product_selection is not None:
            return DisambiguationState.PENDING_MULTI_SELECT
        if state.pending_context_switch is not None:
            return DisambiguationState.PENDING_CONTEXT_SWITCH
        return DisambiguationState.NONE

    async def handle(self, state: ConversationState, reply: str) -> Transition:
        """
        Apply the customer's reply to the pending object.

        Args:
            state: Conversation state holding exactly one pending object
            reply: The customer's raw reply

        Returns:
            The transition taken. ``state`` is mutated in place; the
            caller persists it.
        """
        current = self.current_state(state)
        if current == DisambiguationState.PENDING_SINGLE_CONFIRM:
            return await self._handle_single(state, state.pending_product_confirmation, reply)
        if current == DisambiguationState.PENDING_MULTI_SELECT:
            return await self._handle_multi(state, state.pending_multi_product_selection, reply)
        if current == DisambiguationState.PENDING_CONTEXT_SWITCH:
            return await self._handle_context_switch(state, state.pending_context_switch, reply)
        raise ValueError("No pending disambiguation object to handle")

    async def _handle_single(
        self,
        state: ConversationState,
        pending: PendingProductConfirmation,
        reply: str,
    ) -> Transition:
        verdict = await self.confirmation_oracle.classify(pending, reply)
        logger.info(
            f"Single confirmation for '{pending.suggested_product_name}': {verdict.value}"
        )

        if verdict == ConfirmationVerdict.CONFIRMED:
            state.clear_pending()
            state.switch_product(pending.suggested_product_id)
            return Transition(
                kind=TransitionKind.CONFIRMED,
                from_state=DisambiguationState.PENDING_SINGLE_CONFIRM,
                product_id=pending.suggested_product_id,
                product_name=pending.suggested_product_name,
                question=pending.original_message or None,
            )

        if verdict == ConfirmationVerdict.REJECTED:
            state.clear_pending()
            return Transition(
                kind=TransitionKind.REJECTED,
                from_state=DisambiguationState.PENDING_SINGLE_CONFIRM,
                reply=messages.ASK_WHICH_PRODUCT,
            )

        # Indecisive: the pending object stays exactly as it was.
        return Transition(
            kind=TransitionKind.INDECISIVE,
            from_state=DisambiguationState.PENDING_SINGLE_CONFIRM,
            reply=messages.confirmation_reask(pending),
        )

    async def _handle_multi(
        self,
        state: ConversationState,
        pending: PendingMultiProductSelection,
        reply: str,
    ) -> Transition:
        verdict = await self.selection_oracle.detect(pending, reply, state.recent_messages)

        index = verdict.selected_index
        if index is not None and index not in pending.valid_indexes:
            logger.warning(
                f"Selection index {index} outside 1..{len(pending.products)}, ignoring"
            )
            index = None

        if verdict.is_selection and index is not None:
            chosen = pending.product_at(index)
            state.clear_pending()
            state.switch_product(chosen.product_id)
            logger.info(f"Multi-product selection resolved to #{index} '{chosen.product_name}'")
            return Transition(
                kind=TransitionKind.SELECTED,
                from_state=DisambiguationState.PENDING_MULTI_SELECT,
                product_id=chosen.product_id,
                product_name=chosen.product_name,
                question=pending.original_message or reply,
                intent=pending.original_intent,
            )

        if verdict.is_new_question:
            state.clear_pending()
            logger.info("Reply to product list is a new question, clearing selection")
            return Transition(
                kind=TransitionKind.NEW_QUESTION,
                from_state=DisambiguationState.PENDING_MULTI_SELECT,
                question=reply,
            )

        return Transition(
            kind=TransitionKind.AMBIGUOUS,
            from_state=DisambiguationState.PENDING_MULTI_SELECT,
            reply=messages.product_list_reask(pending),
        )

    async def _handle_context_switch(
        self,
        state: ConversationState,
        pending: PendingContextSwitch,
        reply: str,
    ) -> Transition:
        verdict = await self.confirmation_oracle.classify(pending, reply)
        logger.info(
            f"Context switch '{pending.from_product_name}' -> '{pending.to_product_name}': "
            f"{verdict.value}"
        )

        if verdict == ConfirmationVerdict.CONFIRMED:
            state.clear_pending()
            state.switch_product(pending.to_product_id)
            if pending.to_mode == ConversationMode.SALES:
                state.clear_active_support_product()
            else:
                state.set_active_support_product(pending.to_product_id, time.time())
            return Transition(
                kind=TransitionKind.CONFIRMED,
                from_state=DisambiguationState.PENDING_CONTEXT_SWITCH,
                product_id=pending.to_product_id,
                product_name=pending.to_product_name,
                question=pending.original_message or None,
            )

        if verdict == ConfirmationVerdict.REJECTED:
            state.clear_pending()
            state.switch_product(pending.from_product_id)
            return Transition(
                kind=TransitionKind.REJECTED,
                from_state=DisambiguationState.PENDING_CONTEXT_SWITCH,
                product_id=pending.from_product_id,
                product_name=pending.from_product_name,
                question=reply,
            )

        return Transition(
            kind=TransitionKind.INDECISIVE,
            from_state=DisambiguationState.PENDING_CONTEXT_SWITCH,
            reply=messages.context_switch_reask(pending),
        )
