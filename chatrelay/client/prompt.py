"""Builds gateway requests from conversation history.

History is windowed to the most recent ``max_history`` messages; older turns
are dropped wholesale. Attachments become inline-binary parts (images) or
framed text parts (everything else).
"""

from collections.abc import Sequence

from chatrelay.schemas.chat import Content, GenerationConfig, GenerationRequest, InlineData, Part
from chatrelay.schemas.conversations import Attachment, Message

MAX_HISTORY = 20
DEFAULT_MAX_OUTPUT_TOKENS = 8192
DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a helpful and friendly AI assistant. Format your answers using Markdown."
)


def window_history(history: Sequence[Message], max_history: int = MAX_HISTORY) -> list[Message]:
    if len(history) > max_history:
        return list(history[len(history) - max_history:])
    return list(history)


def _inline_part(attachment: Attachment) -> Part:
    return Part(inline_data=InlineData(mime_type=attachment.mime_type, data=attachment.data))


def _history_attachment_part(message: Message) -> Part | None:
    attachment = message.attachment
    if attachment.is_image:
        return _inline_part(attachment)
    if message.role != "user":
        return None
    if attachment.data:
        return Part(
            text=(
                f'Context from a previously attached file "{attachment.name}":\n\n'
                f"--- CONTENT ---\n{attachment.data}\n--- END ---"
            )
        )
    return Part(text=f'[The user had attached the file "{attachment.name}" but its content was not read.]')


def _prompt_attachment_part(attachment: Attachment) -> Part:
    if attachment.is_image:
        return _inline_part(attachment)
    if attachment.data:
        return Part(
            text=(
                f'Use the content of the file "{attachment.name}" below to answer the user\'s question.\n\n'
                f"--- BEGIN ---\n{attachment.data}\n--- END ---"
            )
        )
    return Part(
        text=(
            f'[The user attached the file "{attachment.name}" ({attachment.mime_type}), but its content '
            "could not be read. Politely tell the user that you cannot access the content of this type of file.]"
        )
    )


def message_to_content(message: Message) -> Content:
    parts = []
    if message.attachment is not None:
        part = _history_attachment_part(message)
        if part is not None:
            parts.append(part)
    if message.content:
        parts.append(Part(text=message.content))
    return Content(role=message.role, parts=parts)


def _has_payload(content: Content) -> bool:
    return any(not part.is_blank() for part in content.parts)


class PromptBuilder:
    def __init__(
        self,
        max_history: int = MAX_HISTORY,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        default_system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION,
        temperature: float | None = None,
    ):
        self.max_history = max_history
        self.max_output_tokens = max_output_tokens
        self.default_system_instruction = default_system_instruction
        self.temperature = temperature

    def build(
        self,
        history: Sequence[Message],
        prompt: str,
        model_id: str,
        attachment: Attachment | None = None,
        system_instruction: str | None = None,
    ) -> GenerationRequest:
        """History (windowed) plus the new user turn, as one gateway request."""
        contents = [message_to_content(m) for m in window_history(history, self.max_history)]

        user_parts = []
        if attachment is not None:
            user_parts.append(_prompt_attachment_part(attachment))
        if prompt.strip():
            user_parts.append(Part(text=prompt))
        if user_parts:
            contents.append(Content(role="user", parts=user_parts))

        return GenerationRequest(
            model=model_id,
            contents=[c for c in contents if _has_payload(c)],
            config=GenerationConfig(
                system_instruction=system_instruction or self.default_system_instruction,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            ),
        )
