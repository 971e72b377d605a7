"""
Database-backed ConversationStateStore.

Implements the ConversationStateStore protocol using the repository layer.
The record is stored as JSON next to its schema version.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import ConversationStateRepository

from .store import BaseStateStore

logger = logging.getLogger(__name__)


class DbStateStore(BaseStateStore):
    """Persistent state store backed by PostgreSQL or SQLite."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pending_ttl_seconds: Optional[float] = None,
    ):
        super().__init__(pending_ttl_seconds)
        self._session_factory = session_factory

    async def _read(self, conversation_key: str) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as session:
            record = await ConversationStateRepository(session).get(conversation_key)
            if record is None:
                return None
            data = dict(record.state_json or {})
            # The column is authoritative for the version.
            data["schema_version"] = record.schema_version
            return data

    async def _write(self, conversation_key: str, team_id: Optional[str], data: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            await ConversationStateRepository(session).upsert(
                conversation_key=conversation_key,
                team_id=team_id,
                schema_version=data["schema_version"],
                state_json=data,
            )
            await session.commit()

    async def _delete(self, conversation_key: str) -> bool:
        async with self._session_factory() as session:
            deleted = await ConversationStateRepository(session).delete(conversation_key)
            await session.commit()
            return deleted
