from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InlineData(_CamelModel):
    mime_type: str
    data: str  # base64


class Part(_CamelModel):
    """Provider-neutral content part: either text or inline binary data."""

    text: str | None = None
    inline_data: InlineData | None = None

    def is_blank(self) -> bool:
        return self.inline_data is None and not (self.text or "").strip()


class Content(_CamelModel):
    role: Literal["user", "model"]
    parts: list[Part]


class GenerationConfig(_CamelModel):
    system_instruction: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_output_tokens: int | None = Field(default=None, ge=1)


class GenerationRequest(_CamelModel):
    model: str
    contents: list[Content] = Field(min_length=1)
    config: GenerationConfig = Field(default_factory=GenerationConfig)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
