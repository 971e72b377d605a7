"""
LLM Provider implementations.
"""

from typing import Dict, List, Optional, Protocol, runtime_checkable

from config.settings import Settings

from .bedrock import BedrockProvider
from .openai_provider import OpenAIProvider


@runtime_checkable
class LLMProvider(Protocol):
    """Anything that can produce a completion asynchronously."""

    async def agenerate(
        self,
        prompt: str,
        system: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        ...


def create_provider(settings: Settings, model_id: Optional[str] = None) -> LLMProvider:
    """Build the configured provider, optionally with a model override."""
    if settings.is_openai:
        return OpenAIProvider(
            api_key=settings.openai_api_key,
            model_id=model_id or settings.openai_llm_model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
    return BedrockProvider(
        model_id=model_id or settings.bedrock_llm_model_id,
        region=settings.aws_region,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )


__all__ = ["BedrockProvider", "LLMProvider", "OpenAIProvider", "create_provider"]
