import json
from datetime import datetime, timezone

import structlog
from pydantic import TypeAdapter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import chatrelay.core.database as db_module
from chatrelay.core.database import ConversationSnapshot
from chatrelay.schemas.conversations import Conversation

logger = structlog.get_logger()

_conversation_list = TypeAdapter(list[Conversation])


class ConversationStore:
    """Whole-collection load/save of a user's conversations."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def load(self, user_id: str) -> list[Conversation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConversationSnapshot).where(ConversationSnapshot.user_id == user_id)
            )
            snapshot = result.scalar_one_or_none()
            if snapshot is None:
                return []
            return _conversation_list.validate_python(json.loads(snapshot.data))

    async def save(self, user_id: str, conversations: list[Conversation]) -> int:
        """Replace the stored collection for ``user_id`` (insert or update)."""
        data = _conversation_list.dump_json(conversations, by_alias=True).decode("utf-8")
        async with self._session_factory() as session:
            snapshot = await session.get(ConversationSnapshot, user_id)
            if snapshot is None:
                session.add(ConversationSnapshot(user_id=user_id, data=data))
            else:
                snapshot.data = data
                snapshot.updated_at = datetime.now(timezone.utc)
            await session.commit()

        logger.info("conversations_saved", user_id=user_id, count=len(conversations))
        return len(conversations)
