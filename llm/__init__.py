"""
LLM Module for the Luvia product assistant.

This module handles:
- Completion provider abstraction (OpenAI, Bedrock)
- Agent and oracle prompt templates
- Reply generation, guardrails and the chat pipeline
"""

from .prompt_templates import AgentType, PromptTemplates

__all__ = [
    "AgentType",
    "PromptTemplates",
]
