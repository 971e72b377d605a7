"""
API Routes for the Luvia product assistant.
"""

from . import chat, handoff

__all__ = ["chat", "handoff"]
