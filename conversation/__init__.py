"""
Conversation Module for the Luvia product assistant.

This module handles:
- The per-conversation state record and its pending disambiguation objects
- State persistence (in-memory and database)
- Greeting detection and canned customer-facing messages
"""

from .state import (
    ConversationMode,
    ConversationState,
    EventType,
    PendingContextSwitch,
    PendingMultiProductSelection,
    PendingProduct,
    PendingProductConfirmation,
    StateSchemaError,
)
from .store import ConversationStateStore, InMemoryStateStore

__all__ = [
    "ConversationMode",
    "ConversationState",
    "ConversationStateStore",
    "EventType",
    "InMemoryStateStore",
    "PendingContextSwitch",
    "PendingMultiProductSelection",
    "PendingProduct",
    "PendingProductConfirmation",
    "StateSchemaError",
]
