from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    SAFETY = "safety"
    OTHER = "other"


class GroundingCitation(BaseModel):
    uri: str
    title: str


class Usage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Frame(BaseModel):
    """One unit of the uniform streaming protocol.

    ``finish_reason`` is normally only present on the last frame of a stream.
    A frame with ``error`` set is terminal: the gateway ends the stream after it.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = ""
    finish_reason: FinishReason | None = None
    citations: list[GroundingCitation] = Field(default_factory=list)
    usage: Usage | None = None
    error: str | None = None
