"""
Hybrid product search client.

Calls the ``match_products_hybrid`` Postgres function, which fuses
pgvector cosine similarity with full-text (BM25-style) relevance and
returns a weighted ``combined_score`` per product.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass
class RankedCandidate:
    """
    A product considered during one resolution.

    ``score`` starts as ``combined_score`` and is what reranking and
    history boosting adjust; the raw signals are kept untouched.
    """
    product_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    lexical_score: float = 0.0
    vector_score: float = 0.0
    combined_score: float = 0.0
    platform_product_id: Optional[str] = None
    source_text: str = ""
    boost_applied: bool = False
    score: Optional[float] = None

    def __post_init__(self):
        if self.score is None:
            self.score = self.combined_score

    @property
    def name(self) -> str:
        return self.metadata.get("nome") or self.metadata.get("name") or ""

    def document_text(self) -> str:
        """Text sent to the reranker: name, sales page and price."""
        price = self.metadata.get("preco")
        parts = [
            self.name,
            self.metadata.get("pagina_vendas") or "",
            f"R$ {price}" if isinstance(price, (int, float)) else "",
        ]
        text = " ".join(p for p in parts if p).strip()
        return text or self.source_text


class ProductSearch(Protocol):
    """Anything that returns ranked product candidates for a query."""

    async def search(
        self,
        embedding: List[float],
        query_text: str,
        team_id: str,
        limit: Optional[int] = None,
    ) -> List[RankedCandidate]:
        ...


class HybridSearchClient:
    """Executes the hybrid search function over an async SQLAlchemy session."""

    QUERY = text(
        """
        SELECT product_id, product_id_plataforma, source_text, metadata,
               similarity, bm25_score, combined_score
        FROM match_products_hybrid(
            query_embedding => CAST(:query_embedding AS vector),
            query_text => :query_text,
            team_id_filter => CAST(:team_id AS uuid),
            match_threshold => :match_threshold,
            bm25_weight => :bm25_weight,
            vector_weight => :vector_weight,
            result_limit => :result_limit
        )
        """
    )

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        match_threshold: float = 0.15,
        bm25_weight: float = 0.3,
        vector_weight: float = 0.7,
        result_limit: int = 20,
    ):
        self._session_factory = session_factory
        self.match_threshold = match_threshold
        self.bm25_weight = bm25_weight
        self.vector_weight = vector_weight
        self.result_limit = result_limit

    async def search(
        self,
        embedding: List[float],
        query_text: str,
        team_id: str,
        limit: Optional[int] = None,
    ) -> List[RankedCandidate]:
        """
        Run the hybrid search.

        Args:
            embedding: Query embedding
            query_text: Raw query for the lexical side
            team_id: Tenant filter
            limit: Override the result limit

        Returns:
            Candidates ordered by combined score, best first
        """
        params = {
            "query_embedding": json.dumps(embedding),
            "query_text": query_text,
            "team_id": team_id,
            "match_threshold": self.match_threshold,
            "bm25_weight": self.bm25_weight,
            "vector_weight": self.vector_weight,
            "result_limit": limit or self.result_limit,
        }

        async with self._session_factory() as session:
            result = await session.execute(self.QUERY, params)
            rows = result.mappings().all()

        candidates = [
            RankedCandidate(
                product_id=str(row["product_id"]),
                platform_product_id=row["product_id_plataforma"],
                source_text=row["source_text"] or "",
                metadata=_as_dict(row["metadata"]),
                vector_score=float(row["similarity"] or 0.0),
                lexical_score=float(row["bm25_score"] or 0.0),
                combined_score=float(row["combined_score"] or 0.0),
            )
            for row in rows
        ]
        logger.debug(f"Hybrid search returned {len(candidates)} candidates for team {team_id}")
        return candidates


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        return json.loads(value)
    return {}
