"""
Retrieval Module for the Luvia product assistant.

This module provides product retrieval capabilities:
- Embedding generation (OpenAI/Bedrock)
- Hybrid (vector + lexical) product search
- Optional Cohere reranking
- Customer history, product resolution and context enrichment
"""

from .embedder import EmbeddingConfig, EmbeddingProvider, EmbeddingService
from .hybrid_search import HybridSearchClient, RankedCandidate
from .reranker import CohereReranker, RerankScore

__all__ = [
    "CohereReranker",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EmbeddingService",
    "HybridSearchClient",
    "RankedCandidate",
    "RerankScore",
]
