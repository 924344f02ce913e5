import re
from collections.abc import Awaitable, Callable, Sequence

import httpx
import structlog

from chatrelay.client.cancellation import CancellationToken
from chatrelay.client.prompt import PromptBuilder
from chatrelay.client.stream import FrameStream
from chatrelay.core.exceptions import GenerationError, RelayError
from chatrelay.schemas.conversations import DEFAULT_TITLE, Message

logger = structlog.get_logger()

# Cheap model used for titles regardless of the conversation's model
TITLE_MODEL = "gemini-2.5-flash"
MAX_TITLE_WORDS = 5

_LABEL = re.compile(r"^\s*(suggested\s+)?title\s*:\s*", re.IGNORECASE)
_WRAPPERS = "\"'`“”‘’*"
_TRAILING_PUNCTUATION = re.compile(r"[.,!?;:]$")


def clean_title(raw: str, max_words: int = MAX_TITLE_WORDS) -> str:
    """Strip labels, wrapping quotes and final punctuation; cap the word count."""
    title = _LABEL.sub("", raw.strip())
    title = title.strip().strip(_WRAPPERS).strip()
    title = _TRAILING_PUNCTUATION.sub("", title).strip()
    return " ".join(title.split()[:max_words])


class TitleGenerator:
    def __init__(
        self,
        open_stream: Callable[[dict, CancellationToken], Awaitable[FrameStream]],
        prompt_builder: PromptBuilder | None = None,
        model: str = TITLE_MODEL,
        max_words: int = MAX_TITLE_WORDS,
    ):
        self._open_stream = open_stream
        self._prompts = prompt_builder or PromptBuilder()
        self.model = model
        self.max_words = max_words

    def build_prompt(self, messages: Sequence[Message]) -> str:
        lines = []
        for message in messages[:2]:
            text = message.content
            if message.attachment is not None:
                text = f"[FILE: {message.attachment.name}] {text}".strip()
            speaker = "User" if message.role == "user" else "Assistant"
            lines.append(f"{speaker}: {text}")
        context = "\n\n".join(lines)
        return (
            "Analyze the following conversation and write a short, descriptive title of at most "
            f"{self.max_words} words that captures its subject. Do not add quotes or final punctuation.\n\n"
            f"Conversation:\n---\n{context}\n---\n\nSuggested title:"
        )

    async def generate(self, messages: Sequence[Message]) -> str:
        """One non-interactive generation; never raises, never retries."""
        request = self._prompts.build([], self.build_prompt(messages), self.model)
        text = ""
        try:
            stream = await self._open_stream(request.to_payload(), CancellationToken())
            async with stream:
                async for frame in stream:
                    if frame.error:
                        raise GenerationError(frame.error)
                    text += frame.text
        except (RelayError, httpx.HTTPError) as exc:
            logger.warning("title_generation_failed", error=str(exc))
            return DEFAULT_TITLE

        return clean_title(text, self.max_words) or DEFAULT_TITLE
