import asyncio
from collections.abc import Awaitable, Callable

import httpx
import structlog
from pydantic import TypeAdapter

from chatrelay.core.exceptions import RelayError
from chatrelay.schemas.conversations import Conversation

logger = structlog.get_logger()

CONVERSATIONS_ENDPOINT = "/api/conversations"
SAVE_DEBOUNCE_SECONDS = 1.5

_conversation_list = TypeAdapter(list[Conversation])


class ConversationStoreClient:
    """Client for the conversation persistence endpoints."""

    def __init__(self, http_client: httpx.AsyncClient, endpoint: str = CONVERSATIONS_ENDPOINT):
        self._client = http_client
        self._endpoint = endpoint

    async def load(self, user_id: str) -> list[Conversation]:
        response = await self._client.get(self._endpoint, params={"userId": user_id})
        response.raise_for_status()
        return _conversation_list.validate_python(response.json())

    async def save(self, user_id: str, conversations: list[Conversation]) -> None:
        payload = {
            "userId": user_id,
            "conversations": _conversation_list.dump_python(conversations, by_alias=True, mode="json"),
        }
        response = await self._client.post(self._endpoint, json=payload)
        response.raise_for_status()


class DebouncedSaver:
    """Saves the latest snapshot once no new snapshot arrived for ``delay`` seconds."""

    def __init__(
        self,
        save: Callable[[str, list[Conversation]], Awaitable[object]],
        delay: float = SAVE_DEBOUNCE_SECONDS,
    ):
        self._save = save
        self._delay = delay
        self._pending: tuple[str, list[Conversation]] | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, user_id: str, conversations: list[Conversation]) -> None:
        self._pending = (user_id, conversations)
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._wait_and_save())

    async def flush(self) -> None:
        """Save the pending snapshot now; waits for a save already in flight."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        await self._save_pending()

    async def aclose(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._pending = None

    async def _wait_and_save(self) -> None:
        await asyncio.sleep(self._delay)
        self._task = None
        await self._save_pending()

    async def _save_pending(self) -> None:
        async with self._lock:
            if self._pending is None:
                return
            user_id, conversations = self._pending
            self._pending = None
            try:
                await self._save(user_id, conversations)
            except (RelayError, httpx.HTTPError) as exc:
                logger.warning("conversation_save_failed", user_id=user_id, error=str(exc))
                return
        logger.debug("conversations_synced", user_id=user_id, count=len(conversations))
