"""
Reply generation.

Renders the role-played agent prompt for one turn and calls the
completion provider. A failed or timed-out generation falls back to the
dontKnowAgent canned answer and asks for an escalation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from conversation import messages
from retrieval.context_enricher import EnrichedContext

from .oracles import InteractionType
from .prompt_templates import AgentType, PromptTemplates
from .providers import LLMProvider

logger = logging.getLogger(__name__)

SUPPORT_INTERACTIONS = {InteractionType.SUPPORT, InteractionType.REFUND}


@dataclass
class AgentReply:
    text: str
    agent_used: AgentType
    needs_escalation: bool = False
    escalation_reason: Optional[str] = None


def select_agent(
    interaction: InteractionType,
    enriched: EnrichedContext,
    needs_clarification: bool = False,
) -> AgentType:
    """
    Route the turn to an agent.

    Clarification wins when the product is still uncertain. Support and
    refund questions, and questions about owned products, go to support.
    Any other resolved product goes to sales. Without a product there is
    nothing grounded to say.
    """
    if needs_clarification:
        return AgentType.CLARIFICATION
    if enriched.product is None:
        return AgentType.DONT_KNOW
    if interaction in SUPPORT_INTERACTIONS or enriched.owns_product:
        return AgentType.SUPPORT
    return AgentType.SALES


class ReplyGenerator:
    """Generates agent replies through the configured completion provider."""

    def __init__(
        self,
        provider: LLMProvider,
        agent_name: str = "Luvia",
        timeout_seconds: float = 15.0,
    ):
        self.provider = provider
        self.agent_name = agent_name
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        agent: AgentType,
        message: str,
        enriched: EnrichedContext,
        history: Optional[List[Dict[str, str]]] = None,
        candidate_names: Optional[List[str]] = None,
    ) -> AgentReply:
        """
        Generate the reply for one turn.

        Args:
            agent: Agent selected for the turn
            message: Customer message (or the original question after a selection)
            enriched: Enriched product and customer context
            history: Recent turns for conversational continuity
            candidate_names: Top candidates to offer during clarification

        Returns:
            AgentReply; dontKnowAgent with needs_escalation on any failure
        """
        if agent == AgentType.DONT_KNOW:
            return self._dont_know()

        context = enriched.to_prompt_context()
        if agent == AgentType.CLARIFICATION and candidate_names:
            context += f"\nProdutos possíveis: {messages.candidate_names(candidate_names)}"

        custom = None
        if agent == AgentType.SALES:
            custom = enriched.sales_strategy.instruction

        system = PromptTemplates.get_system_prompt(
            agent=agent, agent_name=self.agent_name, custom_instructions=custom
        )
        prompt = PromptTemplates.build_agent_prompt(message, context)

        try:
            text = await asyncio.wait_for(
                self.provider.agenerate(prompt, system=system, history=history),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Reply generation failed for {agent.value}: {e!r}")
            return self._dont_know()

        text = (text or "").strip()
        if not text:
            logger.warning(f"{agent.value} returned an empty reply")
            return self._dont_know()

        logger.info(f"Reply generated by {agent.value} ({len(text)} chars)")
        return AgentReply(text=text, agent_used=agent)

    @staticmethod
    def _dont_know() -> AgentReply:
        return AgentReply(
            text=messages.DONT_KNOW,
            agent_used=AgentType.DONT_KNOW,
            needs_escalation=True,
            escalation_reason="no_info",
        )
