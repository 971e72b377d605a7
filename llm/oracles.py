"""
Classification oracles.

Small LLM calls that return a fixed JSON shape. Every oracle catches its
own failures (timeout, provider error, unparseable output) and returns
its most conservative answer instead of raising.
"""

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from conversation.state import (
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProductConfirmation,
)
from .prompt_templates import OracleType, PromptTemplates
from .providers import LLMProvider

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class OracleParseError(Exception):
    """Oracle output did not contain the expected JSON object."""


def parse_json_object(text: str) -> Dict[str, Any]:
    """Extract the first JSON object from free-form model output."""
    match = JSON_OBJECT.search(text or "")
    if not match:
        raise OracleParseError(f"No JSON object in oracle output: {(text or '')[:80]!r}")
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError as e:
        raise OracleParseError(f"Invalid JSON in oracle output: {e}") from e
    if not isinstance(data, dict):
        raise OracleParseError("Oracle output is not a JSON object")
    return data


class ConfirmationVerdict(Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    INDECISIVE = "indecisive"


@dataclass
class SelectionVerdict:
    selected_index: Optional[int] = None
    is_selection: bool = False
    is_new_question: bool = False
    confidence: float = 0.0


class InteractionType(Enum):
    SUPPORT = "support"
    PRICING = "pricing"
    PURCHASE = "purchase"
    UPGRADE = "upgrade"
    REFUND = "refund"
    GENERAL = "general"


@dataclass
class MessageInterpretation:
    interaction_type: InteractionType = InteractionType.GENERAL
    has_clear_product: bool = False
    product_name: Optional[str] = None
    normalized_query: str = ""
    confidence: float = 0.0

    @property
    def names_product_confidently(self) -> bool:
        return self.has_clear_product and self.confidence >= 0.8


@dataclass
class UnauthorizedPromise:
    promise: str
    reason: str
    severity: str


@dataclass
class ArbiterVerdict:
    unauthorized: List[UnauthorizedPromise] = field(default_factory=list)
    confidence: float = 0.0


class JsonOracle:
    """Base class: prompt the provider and parse a JSON object, with a timeout."""

    def __init__(self, provider: LLMProvider, timeout_seconds: float = 15.0):
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    async def _ask(self, prompt: str) -> Dict[str, Any]:
        raw = await asyncio.wait_for(
            self.provider.agenerate(prompt, temperature=0.0, max_tokens=300, json_mode=True),
            timeout=self.timeout_seconds,
        )
        return parse_json_object(raw)


class ConfirmationOracle(JsonOracle):
    """Classifies a reply to a yes/no product or context-switch question."""

    async def classify(
        self,
        pending: Union[PendingProductConfirmation, PendingContextSwitch],
        reply: str,
    ) -> ConfirmationVerdict:
        if isinstance(pending, PendingContextSwitch):
            prompt = PromptTemplates.get_oracle_prompt(
                OracleType.CONTEXT_SWITCH,
                from_product=pending.from_product_name,
                from_mode=pending.from_mode.value,
                to_product=pending.to_product_name,
                to_mode=pending.to_mode.value,
                reply=reply,
            )
        else:
            prompt = PromptTemplates.get_oracle_prompt(
                OracleType.PRODUCT_CONFIRMATION,
                product_name=pending.suggested_product_name,
                event_context=PromptTemplates.EVENT_CONTEXT.get(
                    pending.event_type.value, "produto do histórico"
                ),
                reply=reply,
            )

        try:
            data = await self._ask(prompt)
        except Exception as e:
            logger.warning(f"Confirmation oracle degraded to indecisive: {e!r}")
            return ConfirmationVerdict.INDECISIVE

        return self._verdict_from(data)

    @staticmethod
    def _verdict_from(data: Dict[str, Any]) -> ConfirmationVerdict:
        response_type = str(data.get("user_response_type", "")).lower()
        try:
            return ConfirmationVerdict(response_type)
        except ValueError:
            pass

        confirmed = data.get("confirmed") is True
        rejected = data.get("rejected") is True or data.get("keep_current_context") is True
        if confirmed and not rejected:
            return ConfirmationVerdict.CONFIRMED
        if rejected and not confirmed:
            return ConfirmationVerdict.REJECTED
        return ConfirmationVerdict.INDECISIVE


class SelectionOracle(JsonOracle):
    """Detects which entry of a numbered product list the customer picked."""

    async def detect(
        self,
        pending: PendingMultiProductSelection,
        reply: str,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> SelectionVerdict:
        product_list = "\n".join(f"{p.index}. {p.product_name}" for p in pending.products)
        prompt = PromptTemplates.get_oracle_prompt(
            OracleType.PRODUCT_SELECTION,
            product_list=product_list,
            history=PromptTemplates.format_history(history or []),
            reply=reply,
        )

        try:
            data = await self._ask(prompt)
        except Exception as e:
            logger.warning(f"Selection oracle degraded to no selection: {e}")
            return SelectionVerdict()

        index = _as_index(data.get("selected_index"))

        return SelectionVerdict(
            selected_index=index,
            is_selection=index is not None and data.get("is_selection") is True,
            is_new_question=data.get("is_new_question") is True,
            confidence=_as_float(data.get("confidence")),
        )


class MessageInterpreter(JsonOracle):
    """Classifies the interaction type and whether a product was named."""

    async def interpret(
        self,
        message: str,
        current_product_name: Optional[str] = None,
    ) -> MessageInterpretation:
        current_line = (
            f'Produto atual da conversa: "{current_product_name}"\n' if current_product_name else ""
        )
        prompt = PromptTemplates.get_oracle_prompt(
            OracleType.INTERPRET_MESSAGE,
            current_product_line=current_line,
            message=message,
        )

        try:
            data = await self._ask(prompt)
        except Exception as e:
            logger.warning(f"Message interpreter degraded to general: {e}")
            return MessageInterpretation(normalized_query=message)

        try:
            interaction = InteractionType(str(data.get("interaction_type", "general")).lower())
        except ValueError:
            interaction = InteractionType.GENERAL

        return MessageInterpretation(
            interaction_type=interaction,
            has_clear_product=data.get("has_clear_product") is True,
            product_name=data.get("product_name") or None,
            normalized_query=data.get("normalized_query") or message,
            confidence=_as_float(data.get("confidence")),
        )


class PromiseArbiter(JsonOracle):
    """Judges whether promise-like spans are backed by authorized rules."""

    SEVERITIES = {"critical", "high", "medium", "low"}

    async def judge(
        self,
        promises: List[str],
        authorized_rules: List[str],
    ) -> Optional[ArbiterVerdict]:
        """Returns None when the oracle could not produce a verdict."""
        prompt = PromptTemplates.get_oracle_prompt(
            OracleType.PROMISE_ARBITER,
            promises="\n".join(f"- {p}" for p in promises),
            rules="\n".join(f"- {r}" for r in authorized_rules) or "(nenhuma regra cadastrada)",
        )

        try:
            data = await self._ask(prompt)
        except Exception as e:
            logger.warning(f"Promise arbiter unavailable: {e}")
            return None

        items = data.get("unauthorized") or []
        if not isinstance(items, list):
            logger.warning(f"Promise arbiter returned malformed verdict: {type(items).__name__}")
            return None

        unauthorized = []
        for item in items:
            if not isinstance(item, dict):
                continue
            severity = str(item.get("severity", "medium")).lower()
            unauthorized.append(UnauthorizedPromise(
                promise=str(item.get("promise", "")),
                reason=str(item.get("reason", "")),
                severity=severity if severity in self.SEVERITIES else "medium",
            ))

        return ArbiterVerdict(unauthorized=unauthorized, confidence=_as_float(data.get("confidence")))


def _as_index(value: Any) -> Optional[int]:
    """Whole-number list index, or None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
