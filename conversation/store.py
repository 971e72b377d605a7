"""
ConversationStateStore protocol and in-memory implementation.

Abstracts state persistence so the orchestrator can work with either
an in-process dict or a database backend. Stores hold the serialized
record, never live objects, so every load returns an independent copy.
"""

import logging
import time
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from .state import ConversationState, StateSchemaError

logger = logging.getLogger(__name__)


@runtime_checkable
class ConversationStateStore(Protocol):
    """Protocol for conversation state persistence."""

    async def load(self, conversation_key: str, team_id: Optional[str] = None) -> ConversationState:
        """Load the state for a key, creating a fresh one if none exists."""
        ...

    async def save(self, state: ConversationState) -> None:
        """Persist the state."""
        ...

    async def reset(self, conversation_key: str) -> bool:
        """Delete the state for a key. Returns True if something was deleted."""
        ...


class BaseStateStore:
    """
    Shared load/save logic.

    Subclasses implement ``_read``, ``_write`` and ``_delete`` over
    serialized dicts.
    """

    def __init__(self, pending_ttl_seconds: Optional[float] = None):
        self.pending_ttl_seconds = pending_ttl_seconds

    async def load(self, conversation_key: str, team_id: Optional[str] = None) -> ConversationState:
        data = await self._read(conversation_key)
        if data is None:
            return ConversationState.new(conversation_key, team_id=team_id)

        try:
            state = ConversationState.from_dict(data)
        except StateSchemaError as e:
            logger.error(f"Unreadable state for ***{conversation_key[-4:]}: {e}; starting fresh")
            return ConversationState.new(conversation_key, team_id=team_id)

        if team_id and not state.team_id:
            state.team_id = team_id
        if self.pending_ttl_seconds is not None:
            state.expire_stale_pending(self.pending_ttl_seconds)
        return state

    async def save(self, state: ConversationState) -> None:
        state.updated_at = time.time()
        await self._write(state.conversation_key, state.team_id, state.to_dict())

    async def reset(self, conversation_key: str) -> bool:
        deleted = await self._delete(conversation_key)
        if deleted:
            logger.info(f"Conversation state reset for ***{conversation_key[-4:]}")
        return deleted

    async def _read(self, conversation_key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def _write(self, conversation_key: str, team_id: Optional[str], data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def _delete(self, conversation_key: str) -> bool:
        raise NotImplementedError


class InMemoryStateStore(BaseStateStore):
    """Process-local store, used when no database is configured and in tests."""

    def __init__(self, pending_ttl_seconds: Optional[float] = None):
        super().__init__(pending_ttl_seconds)
        self._states: Dict[str, Dict[str, Any]] = {}

    async def _read(self, conversation_key: str) -> Optional[Dict[str, Any]]:
        data = self._states.get(conversation_key)
        return dict(data) if data is not None else None

    async def _write(self, conversation_key: str, team_id: Optional[str], data: Dict[str, Any]) -> None:
        self._states[conversation_key] = data

    async def _delete(self, conversation_key: str) -> bool:
        return self._states.pop(conversation_key, None) is not None

    def __len__(self) -> int:
        return len(self._states)
