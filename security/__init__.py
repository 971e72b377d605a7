"""
Security Module for the Luvia product assistant.

This module provides the inbound request gate:
- Per-conversation sliding-window rate limiting
- Message sanitation and prompt-injection screening
"""

from .gate import GateResult, RateLimitError, SecurityError, SecurityGate
from .rate_limiter import RateLimiter

__all__ = [
    "GateResult",
    "RateLimitError",
    "RateLimiter",
    "SecurityError",
    "SecurityGate",
]
