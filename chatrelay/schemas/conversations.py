import time
import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatrelay.schemas.frames import GroundingCitation

DEFAULT_TITLE = "New Conversation"
DEFAULT_MODEL = "gemini-2.5-flash"


def _new_id() -> str:
    return str(uuid.uuid4())


def _now_ms() -> float:
    return time.time() * 1000


class Attachment(BaseModel):
    """Small inlined file: text content or base64 bytes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    data: str
    mime_type: str
    name: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=_new_id)
    role: Literal["user", "model"]
    content: str = ""
    attachment: Attachment | None = None
    citations: list[GroundingCitation] = Field(default_factory=list)


class Conversation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=_new_id)
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: float = Field(default_factory=_now_ms)  # Unix epoch ms
    is_generating: bool = False
    system_instruction: str | None = None
    model_id: str = DEFAULT_MODEL


class SaveConversationsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Presence is checked by the endpoint so a missing field answers 400
    user_id: str | None = None
    conversations: list[Conversation] | None = None


class SaveConversationsResponse(BaseModel):
    message: str = "Conversations saved."
    count: int
