"""
Embedding Service for the Luvia product assistant.

Turns customer messages and product names into vectors using OpenAI or
AWS Bedrock Titan. Repeated short follow-ups are common, so an LRU cache
sits in front of the provider.
"""

import asyncio
import hashlib
import json
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

import boto3
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    In-memory LRU cache for embeddings.

    Key: MD5 hash of normalized text.
    Value: embedding vector.
    """

    def __init__(self, maxsize: int = 2000):
        self.maxsize = maxsize
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def _make_key(self, text: str) -> str:
        normalized = text.strip().lower()
        return hashlib.md5(normalized.encode()).hexdigest()

    def get(self, text: str) -> Optional[List[float]]:
        key = self._make_key(text)
        if key in self._cache:
            self._cache.move_to_end(key)
            self.hits += 1
            return self._cache[key]
        self.misses += 1
        return None

    def put(self, text: str, embedding: List[float]) -> None:
        key = self._make_key(text)
        if key in self._cache:
            self._cache.move_to_end(key)
        elif len(self._cache) >= self.maxsize:
            self._cache.popitem(last=False)
        self._cache[key] = embedding

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._cache), "hits": self.hits, "misses": self.misses}


class EmbeddingProvider(Enum):
    """Supported embedding providers."""
    BEDROCK_TITAN = "bedrock_titan"
    OPENAI = "openai"


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    model_id: str = "text-embedding-3-small"
    aws_region: str = "us-east-1"
    openai_api_key: Optional[str] = None
    max_chars: int = 25000


class EmbeddingService:
    """Service for generating text embeddings."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, cache_size: int = 2000):
        """
        Initialize the embedding service.

        Args:
            config: Embedding configuration
            cache_size: If > 0, enable the LRU embedding cache
        """
        self.config = config or EmbeddingConfig()
        self._bedrock = None
        self._openai: Optional[AsyncOpenAI] = None
        self._cache: Optional[EmbeddingCache] = EmbeddingCache(cache_size) if cache_size > 0 else None

        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            self._bedrock = boto3.client("bedrock-runtime", region_name=self.config.aws_region)
            logger.info(f"Bedrock embedding client initialized in {self.config.aws_region}")
        else:
            self._openai = AsyncOpenAI(api_key=self.config.openai_api_key)
            logger.info(f"OpenAI embedding client initialized: {self.config.model_id}")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text

        Returns:
            Embedding vector
        """
        if self._cache:
            cached = self._cache.get(text)
            if cached is not None:
                return cached

        text = text[: self.config.max_chars]
        if self.config.provider == EmbeddingProvider.BEDROCK_TITAN:
            result = await asyncio.to_thread(self._embed_bedrock, text)
        else:
            result = await self._embed_openai(text)

        if self._cache:
            self._cache.put(text, result)
        return result

    def _embed_bedrock(self, text: str) -> List[float]:
        try:
            response = self._bedrock.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps({"inputText": text}),
                contentType="application/json",
                accept="application/json",
            )
        except Exception as e:
            logger.error(f"Bedrock embedding failed: {e}")
            raise
        return json.loads(response["body"].read())["embedding"]

    async def _embed_openai(self, text: str) -> List[float]:
        try:
            response = await self._openai.embeddings.create(model=self.config.model_id, input=text)
        except Exception as e:
            logger.error(f"OpenAI embedding failed: {e}")
            raise
        return response.data[0].embedding


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 when either is zero)."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
