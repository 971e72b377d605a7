"""
Greeting detection.

A message made only of greeting words and punctuation is answered
directly without running product resolution. Short greetings inside an
ongoing conversation are follow-ups, not new greetings.
"""

import re
from typing import List, Optional

GREETING_TOKENS = (
    "oi", "oii", "oiii", "ola", "olá", "opa", "eai", "e ai", "e aí",
    "bom dia", "boa tarde", "boa noite", "hello", "hi", "hey",
    "tudo bem", "tudo bom", "tudo certo", "como vai",
)

_TOKEN_ALTERNATION = "|".join(
    re.escape(t) for t in sorted(GREETING_TOKENS, key=len, reverse=True)
)
GREETING_ONLY = re.compile(
    rf"^(?:(?:{_TOKEN_ALTERNATION})[\s,!.?¿¡]*)+$",
    re.IGNORECASE,
)
NON_TEXT = re.compile(r"[^\w\s,!.?¿¡]", re.UNICODE)


def is_greeting_only(message: str, history: Optional[List[dict]] = None) -> bool:
    """True when the message is a bare greeting at the start of a conversation."""
    if history:
        return False
    text = NON_TEXT.sub("", message or "").strip()
    if not text:
        return False
    return bool(GREETING_ONLY.match(text))


def greeting_reply(message: str, agent_name: str) -> str:
    lowered = (message or "").lower()
    if "bom dia" in lowered:
        salutation = "Bom dia"
    elif "boa tarde" in lowered:
        salutation = "Boa tarde"
    elif "boa noite" in lowered:
        salutation = "Boa noite"
    else:
        salutation = "Olá"

    reply = f"{salutation}! Eu sou a {agent_name}."
    if any(t in lowered for t in ("tudo bem", "tudo bom", "tudo certo", "como vai")):
        reply += " Tudo ótimo por aqui, e com você?"
    return reply + " Como posso te ajudar hoje?"
