"""
Reranker for the Luvia product assistant.

Optional relevance reranking of product candidates through the Cohere
rerank API. Callers must tolerate this service being absent or failing.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass
class RerankScore:
    """Relevance score for the document at ``index`` of the request."""
    index: int
    relevance_score: float


class Reranker(Protocol):
    async def rerank(self, query: str, documents: List[str]) -> List[RerankScore]:
        ...


class CohereReranker:
    """
    Cohere rerank client.

    Raises on any transport or API error; the product resolver decides
    how to fall back.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "rerank-multilingual-v3.0",
        api_url: str = "https://api.cohere.com/v2/rerank",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    async def rerank(self, query: str, documents: List[str]) -> List[RerankScore]:
        """
        Score documents against the query.

        Args:
            query: Customer message
            documents: One text per candidate, in candidate order

        Returns:
            Scores ordered by relevance, best first
        """
        if not documents:
            return []

        payload = {"model": self.model, "query": query, "documents": documents}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(self.api_url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        response.raise_for_status()

        results = response.json().get("results", [])
        scores = [
            RerankScore(index=int(r["index"]), relevance_score=float(r.get("relevance_score") or 0.0))
            for r in results
            if 0 <= int(r["index"]) < len(documents)
        ]
        logger.debug(f"Cohere reranked {len(scores)}/{len(documents)} documents")
        return scores
