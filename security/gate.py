"""
Security gate for inbound messages.

Combines the rate limiter with deterministic message sanitation:
trimming, phone normalization and a prompt-injection substring screen.
No network calls are made here.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class SecurityError(Exception):
    """Raised when a message fails the sanitation policy."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RateLimitError(Exception):
    """Raised when a conversation key exceeds its request budget."""

    def __init__(self, retry_after: float):
        super().__init__(f"Rate limit exceeded, retry in {retry_after:.1f}s")
        self.retry_after = retry_after


@dataclass
class GateResult:
    """Sanitized inbound request."""
    sanitized_message: str
    sanitized_phone: Optional[str] = None


class SecurityGate:
    """
    Inbound gate run before any state is touched.

    Rejections never mutate conversation state.
    """

    INJECTION_PATTERNS: Tuple[str, ...] = (
        "ignore previous instructions",
        "system prompt",
        "dan mode",
    )

    NON_DIGITS = re.compile(r"\D")

    def __init__(self, rate_limiter: RateLimiter):
        self.rate_limiter = rate_limiter

    def check(
        self,
        key: str,
        message: str,
        phone: Optional[str] = None,
    ) -> GateResult:
        """
        Rate-limit and sanitize a message.

        Args:
            key: Conversation key the rate limit is accounted against
            message: Raw message text
            phone: Optional raw phone number

        Returns:
            GateResult with the trimmed message and digits-only phone

        Raises:
            RateLimitError: too many requests for this key in the window
            SecurityError: injection attempt or unusable phone number
        """
        retry_after = self.rate_limiter.hit(key)
        if retry_after is not None:
            raise RateLimitError(retry_after)

        sanitized = (message or "").strip()
        lowered = sanitized.lower()
        for pattern in self.INJECTION_PATTERNS:
            if pattern in lowered:
                logger.warning(f"Prompt injection pattern blocked: '{pattern}'")
                raise SecurityError("Potential prompt injection detected")

        sanitized_phone = None
        if phone is not None:
            sanitized_phone = self.normalize_phone(phone)
            if not sanitized_phone:
                raise SecurityError("Invalid phone number")

        return GateResult(sanitized_message=sanitized, sanitized_phone=sanitized_phone)

    @classmethod
    def normalize_phone(cls, phone: str) -> str:
        return cls.NON_DIGITS.sub("", phone or "")
