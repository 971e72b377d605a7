"""
Sales strategy selection.

Picks the sales framework the reply should follow. Strategies are
stored per team with trigger keywords; when none matches, or the store
is unavailable, a deterministic keyword fallback is used.
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import SalesStrategyRepository

logger = logging.getLogger(__name__)

PRICE_OBJECTION = re.compile(r"preço|caro|alto", re.IGNORECASE)
URGENCY = re.compile(r"urgênc|urgenc|agora|hoje", re.IGNORECASE)
DEFAULT_CTA = "Clique agora para garantir sua oferta."


@dataclass
class SalesStrategyPlan:
    framework: str
    instruction: str
    cta_suggested: str = DEFAULT_CTA
    should_offer: bool = True
    source: str = "fallback"


def fallback_strategy(message: str) -> SalesStrategyPlan:
    """Keyword fallback: price objection, then urgency, then generic."""
    if PRICE_OBJECTION.search(message or ""):
        return SalesStrategyPlan(
            framework="Objeção de Preço",
            instruction="Reforce o valor agregado antes de mencionar preço.",
        )
    if URGENCY.search(message or ""):
        return SalesStrategyPlan(
            framework="Escassez Real",
            instruction="Reforce que a oferta tem tempo limitado.",
        )
    return SalesStrategyPlan(
        framework="Genérico",
        instruction="Adapte a mensagem ao contexto do cliente.",
    )


class SalesStrategyService:
    """Strategy lookup backed by the sales_strategies table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def select(self, team_id: str, message: str) -> SalesStrategyPlan:
        async with self._session_factory() as session:
            strategies = await SalesStrategyRepository(session).list_active(team_id)

        lowered = (message or "").lower()
        for strategy in strategies:
            keywords = [str(k).lower() for k in (strategy.trigger_keywords or [])]
            if any(k and k in lowered for k in keywords):
                logger.info(f"Sales strategy matched: {strategy.name}")
                return SalesStrategyPlan(
                    framework=strategy.name,
                    instruction=strategy.approach,
                    cta_suggested=strategy.call_to_action or DEFAULT_CTA,
                    source="store",
                )

        logger.info("No stored sales strategy matched, using fallback")
        return fallback_strategy(message)
