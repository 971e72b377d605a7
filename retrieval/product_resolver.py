"""
Product resolution.

Turns hybrid-search candidates into a single best match with two
independent flags:

- ambiguity: the top two candidates are within AMBIGUITY_GAP of each other
- confirmation: the best candidate scores below CONFIRMATION_THRESHOLD

Scores come from the search (or the optional reranker) and are boosted
additively for products the customer has recently engaged with.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Set, Tuple, Union

from .customer_history import CustomerHistory
from .embedder import EmbeddingService
from .hybrid_search import ProductSearch, RankedCandidate
from .reranker import Reranker

logger = logging.getLogger(__name__)

# Policy constants. These are fixed thresholds, not derived quantities.
AMBIGUITY_GAP = 0.05
CONFIRMATION_THRESHOLD = 0.9
HISTORY_BOOST = 0.15
SHORT_FOLLOW_UP_MAX_CHARS = 60

PRODUCT_NOUNS = re.compile(r"\b(curso|produto|congresso|treinamento)\b", re.IGNORECASE)
OTHER_PRODUCT = re.compile(r"\b(outro|outra|nao e|não é)\b", re.IGNORECASE)


@dataclass
class BestMatch:
    product_id: str
    name: Optional[str]
    score: float
    platform_product_id: Optional[str] = None


@dataclass
class Resolution:
    """A best match was found."""
    best_match: BestMatch
    is_ambiguous: bool
    needs_confirmation: bool
    candidates: List[RankedCandidate] = field(default_factory=list)
    reranked: bool = False
    overridden: bool = False

    @property
    def needs_clarification(self) -> bool:
        return self.is_ambiguous or self.needs_confirmation

    @property
    def alternative_names(self) -> List[str]:
        return [c.name for c in self.candidates[:3] if c.name]


@dataclass
class NoCandidates:
    """The search returned nothing (or was unavailable)."""
    query: str
    team_id: str
    reason: str = "empty"


@dataclass
class AmbiguousEmpty:
    """Candidates were returned but none carries a usable product name."""
    query: str
    candidates: List[RankedCandidate] = field(default_factory=list)


ResolutionOutcome = Union[Resolution, NoCandidates, AmbiguousEmpty]


def rank_candidates(
    candidates: Iterable[RankedCandidate],
    boosted_platform_ids: Set[str],
    boost: float = HISTORY_BOOST,
) -> List[RankedCandidate]:
    """
    Apply the history boost and sort by score, best first.

    Boosts are purely additive; no candidate's score is ever lowered.
    The sort is stable so equal scores keep their search order.
    """
    ranked = []
    for candidate in candidates:
        candidate = replace(candidate)
        if candidate.platform_product_id and candidate.platform_product_id in boosted_platform_ids:
            candidate.score += boost
            candidate.boost_applied = True
            logger.info(f"History boost applied to '{candidate.name}'")
        ranked.append(candidate)
    return sorted(ranked, key=lambda c: c.score, reverse=True)


def assess(ranked: List[RankedCandidate]) -> Tuple[bool, bool]:
    """Return (is_ambiguous, needs_confirmation) for a ranked, non-empty list."""
    best = ranked[0]
    is_ambiguous = len(ranked) > 1 and (best.score - ranked[1].score) < AMBIGUITY_GAP
    needs_confirmation = best.score < CONFIRMATION_THRESHOLD
    return is_ambiguous, needs_confirmation


def is_short_follow_up(message: str) -> bool:
    """A short message with no product nouns and no "other product" language."""
    return (
        len(message) <= SHORT_FOLLOW_UP_MAX_CHARS
        and not PRODUCT_NOUNS.search(message)
        and not OTHER_PRODUCT.search(message)
    )


def apply_context_override(
    outcome: ResolutionOutcome,
    message: str,
    current_product_id: Optional[str],
    names_product_confidently: bool = False,
) -> ResolutionOutcome:
    """
    Prefer conversational continuity over raw similarity.

    (a) With a current product and a short follow-up, the current product
        wins and both flags are cleared, even when the search came back
        empty.
    (b) When the interpreter is confident a product was named, the flags
        are cleared but the best match is kept.
    """
    if current_product_id and is_short_follow_up(message):
        candidates = outcome.candidates if isinstance(outcome, (Resolution, AmbiguousEmpty)) else []
        logger.info(f"Short follow-up, keeping current product {current_product_id}")
        return Resolution(
            best_match=BestMatch(product_id=current_product_id, name=None, score=1.0),
            is_ambiguous=False,
            needs_confirmation=False,
            candidates=candidates,
            reranked=isinstance(outcome, Resolution) and outcome.reranked,
            overridden=True,
        )

    if names_product_confidently and isinstance(outcome, Resolution):
        return replace(outcome, is_ambiguous=False, needs_confirmation=False, overridden=True)

    return outcome


class ProductResolver:
    """
    Resolves which product a message refers to.

    Collaborators are injected: the embedding service, the hybrid search,
    and optionally the customer history and a reranker.
    """

    def __init__(
        self,
        embedder: EmbeddingService,
        search: Optional[ProductSearch],
        customer_history: Optional[CustomerHistory] = None,
        reranker: Optional[Reranker] = None,
        timeout_seconds: float = 15.0,
        result_limit: int = 20,
    ):
        self.embedder = embedder
        self.search = search
        self.customer_history = customer_history
        self.reranker = reranker
        self.timeout_seconds = timeout_seconds
        self.result_limit = result_limit

    async def resolve(
        self,
        message: str,
        team_id: str,
        customer_phone: Optional[str] = None,
        search_query: Optional[str] = None,
    ) -> ResolutionOutcome:
        """
        Resolve the product for a message.

        Args:
            message: Sanitized customer message (used for reranking)
            team_id: Tenant
            customer_phone: Digits-only phone, enables the history boost
            search_query: Query for the search, defaults to the message

        Returns:
            Resolution, NoCandidates or AmbiguousEmpty
        """
        query = search_query or message
        if self.search is None:
            logger.warning("Product search is not configured")
            return NoCandidates(query=query, team_id=team_id, reason="search_unavailable")

        try:
            embedding = await asyncio.wait_for(
                self.embedder.embed_text(query), timeout=self.timeout_seconds
            )
            candidates = await asyncio.wait_for(
                self.search.search(embedding, query, team_id, limit=self.result_limit),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Product search unavailable for team {team_id}: {e!r}")
            return NoCandidates(query=query, team_id=team_id, reason="search_unavailable")

        if not candidates:
            logger.info(f"No product candidates for '{query[:60]}'")
            return NoCandidates(query=query, team_id=team_id)

        reranked = False
        if self.reranker is not None:
            candidates, reranked = await self._rerank(message, candidates)

        recent = await self._recent_platform_ids(team_id, customer_phone)
        ranked = [c for c in rank_candidates(candidates, recent) if c.name]
        if not ranked:
            return AmbiguousEmpty(query=query, candidates=candidates)

        is_ambiguous, needs_confirmation = assess(ranked)
        best = ranked[0]

        for i, c in enumerate(ranked[:3], 1):
            logger.info(f"Candidate {i}: {c.name} (score={c.score:.4f}, boosted={c.boost_applied})")

        return Resolution(
            best_match=BestMatch(
                product_id=best.product_id,
                name=best.name,
                score=best.score,
                platform_product_id=best.platform_product_id,
            ),
            is_ambiguous=is_ambiguous,
            needs_confirmation=needs_confirmation,
            candidates=ranked,
            reranked=reranked,
        )

    async def _rerank(
        self, message: str, candidates: List[RankedCandidate]
    ) -> Tuple[List[RankedCandidate], bool]:
        """Replace scores with reranker relevance; keep search scores on any failure."""
        try:
            scores = await asyncio.wait_for(
                self.reranker.rerank(message, [c.document_text() for c in candidates]),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Reranking failed, falling back to search scores: {e!r}")
            return candidates, False

        if not scores:
            logger.warning("Reranker returned no results, falling back to search scores")
            return candidates, False

        reranked = []
        for s in scores:
            candidate = replace(candidates[s.index])
            candidate.score = s.relevance_score
            reranked.append(candidate)
        return reranked, True

    async def _recent_platform_ids(self, team_id: str, customer_phone: Optional[str]) -> Set[str]:
        if not customer_phone or self.customer_history is None:
            return set()
        try:
            return await asyncio.wait_for(
                self.customer_history.recent_platform_ids(team_id, customer_phone),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Customer history unavailable, skipping boost: {e!r}")
            return set()
