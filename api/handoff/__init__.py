"""
Human handoff for the Luvia product assistant.
"""

from .manager import (
    EscalationPriority,
    EscalationReason,
    EscalationService,
    EscalationTicket,
)

__all__ = [
    "EscalationPriority",
    "EscalationReason",
    "EscalationService",
    "EscalationTicket",
]
