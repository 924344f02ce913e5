"""Conversation state owner for the client.

The reconciler is the only writer of the conversation collection. Every change
replaces the collection (and the touched conversation/message) with an updated
copy, keyed by id. All work runs on one event loop, so the only interleaving
points are awaits on the stream and the flush timer.

Per conversation: Idle -> Generating -> Idle. The ``is_generating`` flag and the
conversation's cancellation token are set and cleared together; a second
send/edit/regenerate on a generating conversation is ignored.
"""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable, Sequence

import httpx
import structlog

from chatrelay.client.cancellation import CancellationToken
from chatrelay.client.persistence import ConversationStoreClient, DebouncedSaver
from chatrelay.client.prompt import PromptBuilder
from chatrelay.client.stream import FrameStream
from chatrelay.client.throttle import FLUSH_INTERVAL, FlushThrottle
from chatrelay.client.titles import TitleGenerator
from chatrelay.core.exceptions import GenerationError, RelayError
from chatrelay.schemas.conversations import DEFAULT_MODEL, Attachment, Conversation, Message
from chatrelay.schemas.frames import FinishReason, Frame, GroundingCitation

logger = structlog.get_logger()

StreamOpener = Callable[[dict, CancellationToken], Awaitable[FrameStream]]
Notifier = Callable[[str, str], None]

SAFETY_NOTE = "\n\n---\n**Stopped for safety reasons.**"
LENGTH_NOTE = "\n\n---\n**Response length limit reached.**"
INTERRUPTED_NOTE = "\n\n---\n**Response interrupted.**"

_NOTES = {
    FinishReason.SAFETY: SAFETY_NOTE,
    FinishReason.LENGTH: LENGTH_NOTE,
}


def interruption_note(finish_reason: FinishReason | None) -> str:
    """Annotation for an abnormal finish; empty for a normal stop or no reason."""
    if finish_reason is None or finish_reason == FinishReason.STOP:
        return ""
    return _NOTES.get(finish_reason, INTERRUPTED_NOTE)


def dedupe_citations(citations: Iterable[GroundingCitation]) -> list[GroundingCitation]:
    """First occurrence of each URI wins; order of first occurrence is kept."""
    unique: dict[str, GroundingCitation] = {}
    for citation in citations:
        unique.setdefault(citation.uri, citation)
    return list(unique.values())


def _log_notification(message: str, level: str) -> None:
    logger.info("notification", message=message, level=level)


class ConversationReconciler:
    def __init__(
        self,
        open_stream: StreamOpener,
        titles: TitleGenerator | None = None,
        prompt_builder: PromptBuilder | None = None,
        notify: Notifier | None = None,
        store: ConversationStoreClient | None = None,
        saver: DebouncedSaver | None = None,
        default_model: str = DEFAULT_MODEL,
        flush_interval: float = FLUSH_INTERVAL,
    ):
        self._open_stream = open_stream
        self._titles = titles
        self._prompts = prompt_builder or PromptBuilder()
        self._notify = notify or _log_notification
        self._store = store
        self._saver = saver
        self._default_model = default_model
        self._flush_interval = flush_interval

        self._conversations: tuple[Conversation, ...] = ()
        self._active_id: str | None = None
        self._tokens: dict[str, CancellationToken] = {}
        self._background: set[asyncio.Task] = set()

        self.user_id: str | None = None
        self.loaded = False

    # ── Read access ─────────────────────────────────────────────────────────

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._conversations

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_conversation(self) -> Conversation | None:
        return self.get(self._active_id) if self._active_id else None

    def get(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    # ── Conversation management ─────────────────────────────────────────────

    def new_conversation(self) -> str:
        """Activate an empty conversation, reusing an existing one when possible."""
        empty = next((c for c in self._conversations if not c.messages), None)
        if empty is not None:
            self._active_id = empty.id
            return empty.id

        conversation = Conversation(model_id=self._default_model)
        self._commit([conversation, *self._conversations])
        self._active_id = conversation.id
        return conversation.id

    def select_conversation(self, conversation_id: str) -> None:
        # Switching away suppresses any stream still applying to the old conversation
        if self.get(conversation_id) is not None:
            self._active_id = conversation_id

    def update_system_instruction(self, instruction: str) -> None:
        if self.active_conversation is None:
            return
        self._update(self._active_id, lambda c: c.model_copy(update={"system_instruction": instruction or None}))
        self._notify("Instructions updated", "success")

    def update_model(self, model_id: str) -> None:
        if self.active_conversation is None:
            return
        self._update(self._active_id, lambda c: c.model_copy(update={"model_id": model_id}))
        self._notify(f"Model changed to {model_id}", "info")

    def clear_history(self) -> None:
        for token in self._tokens.values():
            token.cancel()
        self._tokens.clear()
        self._commit([])
        self._active_id = None
        self._notify("History cleared", "success")

    async def load(self, user_id: str) -> None:
        """Replace the collection with the user's stored conversations."""
        self.user_id = user_id
        self.loaded = False
        conversations: list[Conversation] = []
        if self._store is not None:
            try:
                conversations = await self._store.load(user_id)
            except (RelayError, httpx.HTTPError) as exc:
                logger.warning("conversation_load_failed", user_id=user_id, error=str(exc))
                self._notify("Failed to load previous conversations.", "error")

        # No generation survives a reload
        self._conversations = tuple(c.model_copy(update={"is_generating": False}) for c in conversations)
        self._active_id = self._conversations[0].id if self._conversations else None
        self.loaded = True
        logger.info("conversations_loaded", user_id=user_id, count=len(self._conversations))

    async def sign_out(self) -> None:
        if self._saver is not None:
            await self._saver.flush()
        for token in self._tokens.values():
            token.cancel()
        self._tokens.clear()
        self.user_id = None
        self.loaded = False
        self._conversations = ()
        self._active_id = None

    async def wait_idle(self) -> None:
        """Wait for background title generations and any pending save."""
        while self._background:
            await asyncio.gather(*list(self._background))
        if self._saver is not None:
            await self._saver.flush()

    # ── Generation ──────────────────────────────────────────────────────────

    async def send(self, text: str, attachment: Attachment | None = None) -> None:
        if not text.strip() and attachment is None:
            return
        conversation_id = self._ensure_conversation()
        conversation = self.get(conversation_id)
        if conversation.is_generating:
            logger.info("generation_in_progress", conversation_id=conversation_id)
            return

        history = list(conversation.messages)
        user_message = Message(role="user", content=text, attachment=attachment)
        self._update(conversation_id, lambda c: c.model_copy(update={"messages": [*c.messages, user_message]}))
        await self._generate(conversation_id, history, text, attachment)

    async def edit(self, message_id: str, new_text: str) -> None:
        """Replace a message and drop everything after it, then regenerate."""
        conversation = self.active_conversation
        if conversation is None or conversation.is_generating:
            return
        index = next((i for i, m in enumerate(conversation.messages) if m.id == message_id), -1)
        if index < 0:
            return

        truncated = conversation.messages[:index]
        replacement = Message(
            role="user",
            content=new_text,
            attachment=conversation.messages[index].attachment,
        )
        self._update(conversation.id, lambda c: c.model_copy(update={"messages": [*truncated, replacement]}))
        await self._generate(conversation.id, truncated, new_text, replacement.attachment)

    async def regenerate(self) -> None:
        """Drop the last model reply and answer the preceding user message again."""
        conversation = self.active_conversation
        if conversation is None or conversation.is_generating or not conversation.messages:
            return
        if conversation.messages[-1].role != "model":
            return
        remaining = conversation.messages[:-1]
        if not remaining or remaining[-1].role != "user":
            return

        last_user = remaining[-1]
        self._update(conversation.id, lambda c: c.model_copy(update={"messages": remaining}))
        await self._generate(conversation.id, remaining[:-1], last_user.content, last_user.attachment)

    def stop(self) -> None:
        """Stop applying frames to the active conversation and clear its flag now."""
        conversation_id = self._active_id
        if conversation_id is None or self.get(conversation_id) is None:
            return
        token = self._tokens.pop(conversation_id, None)
        if token is not None:
            token.cancel()
        self._update(conversation_id, lambda c: c.model_copy(update={"is_generating": False}))
        self._notify("Generation stopped", "info")

    async def _generate(
        self,
        conversation_id: str,
        history: Sequence[Message],
        prompt: str,
        attachment: Attachment | None,
    ) -> None:
        conversation = self.get(conversation_id)
        placeholder = Message(role="model")
        token = CancellationToken()
        self._tokens[conversation_id] = token
        self._update(
            conversation_id,
            lambda c: c.model_copy(update={"messages": [*c.messages, placeholder], "is_generating": True}),
        )

        content = ""
        pending: list[str] = []
        citations: list[GroundingCitation] = []
        last_frame: Frame | None = None
        interrupted = False

        def flush() -> None:
            nonlocal content
            content += "".join(pending)
            pending.clear()
            self._update_message(conversation_id, placeholder.id, content=content)

        throttle = FlushThrottle(flush, self._flush_interval)

        try:
            request = self._prompts.build(
                history, prompt, conversation.model_id, attachment, conversation.system_instruction
            )
            stream = await self._open_stream(request.to_payload(), token)
            async with stream:
                async for frame in stream:
                    if token.cancelled or self._active_id != conversation_id:
                        interrupted = True
                        break
                    if frame.error:
                        raise GenerationError(frame.error)
                    last_frame = frame
                    citations.extend(frame.citations)
                    if frame.text:
                        pending.append(frame.text)
                        throttle.schedule()
        except (RelayError, httpx.HTTPError, ValueError) as exc:
            throttle.cancel()
            self._fail(conversation_id, placeholder.id, token, exc)
            return

        # The last flush is never throttled away
        throttle.cancel()
        content += "".join(pending)
        pending.clear()

        note = interruption_note(last_frame.finish_reason if last_frame else None)
        final_message = placeholder.model_copy(update={"content": content + note})
        unique = dedupe_citations(citations)
        changes = {"content": final_message.content}
        if unique:
            changes["citations"] = unique
        self._update_message(conversation_id, placeholder.id, **changes)
        self._release(conversation_id, token)
        logger.debug(
            "generation_finalized",
            conversation_id=conversation_id,
            chars=len(final_message.content),
            citations=len(unique),
            interrupted=interrupted,
        )

        if not history and not note and not interrupted and not token.cancelled and self._titles is not None:
            user_message = Message(role="user", content=prompt, attachment=attachment)
            self._spawn(self._retitle(conversation_id, [user_message, final_message]))

    def _fail(self, conversation_id: str, message_id: str, token: CancellationToken, exc: Exception) -> None:
        error = exc.message if isinstance(exc, RelayError) else str(exc)
        logger.warning("generation_error", conversation_id=conversation_id, error=error)
        self._notify("Error generating the response", "error")
        self._update_message(conversation_id, message_id, content=f"**Error: {error}**")
        self._release(conversation_id, token)

    async def _retitle(self, conversation_id: str, messages: list[Message]) -> None:
        title = await self._titles.generate(messages)
        if title:
            self._update(conversation_id, lambda c: c.model_copy(update={"title": title}))

    # ── State plumbing ──────────────────────────────────────────────────────

    def _ensure_conversation(self) -> str:
        if self._active_id is not None and self.get(self._active_id) is not None:
            return self._active_id
        return self.new_conversation()

    def _release(self, conversation_id: str, token: CancellationToken) -> None:
        """Clear the generating flag, unless a newer generation owns it."""
        if self._tokens.get(conversation_id) is not token:
            return
        del self._tokens[conversation_id]
        self._update(conversation_id, lambda c: c.model_copy(update={"is_generating": False}))

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _update(self, conversation_id: str, updater: Callable[[Conversation], Conversation]) -> None:
        # Unknown ids are a no-op
        self._commit(updater(c) if c.id == conversation_id else c for c in self._conversations)

    def _update_message(self, conversation_id: str, message_id: str, **changes) -> None:
        self._update(
            conversation_id,
            lambda c: c.model_copy(
                update={"messages": [m.model_copy(update=changes) if m.id == message_id else m for m in c.messages]}
            ),
        )

    def _commit(self, conversations: Iterable[Conversation]) -> None:
        self._conversations = tuple(conversations)
        if self._saver is not None and self.user_id is not None and self.loaded:
            self._saver.schedule(self.user_id, list(self._conversations))
