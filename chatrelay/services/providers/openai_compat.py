from collections.abc import AsyncIterator

from chatrelay.schemas.chat import GenerationRequest
from chatrelay.schemas.frames import FinishReason, Frame, Usage
from chatrelay.services.providers.base import ProviderClient

REASONING_PREFIX = "> "

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.SAFETY,
}

_ROLES = {"model": "assistant", "user": "user"}


def map_finish_reason(value: str | None) -> FinishReason | None:
    if not value:
        return None
    return _FINISH_REASONS.get(value, FinishReason.OTHER)


def build_messages(request: GenerationRequest) -> list[dict]:
    """Flatten provider-neutral contents into a chat-completions message list."""
    messages = []
    if request.config.system_instruction:
        messages.append({"role": "system", "content": request.config.system_instruction})
    for content in request.contents:
        text = "\n".join(part.text for part in content.parts if part.text is not None)
        messages.append({"role": _ROLES[content.role], "content": text})
    return messages


def delta_text(delta: dict) -> str:
    """Reasoning (if any) rendered as a quote, followed directly by the answer text."""
    text = ""
    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
    if reasoning:
        text += f"{REASONING_PREFIX}{reasoning}"
    if delta.get("content"):
        text += delta["content"]
    return text


def chunk_to_frame(chunk: dict) -> Frame | None:
    """Translate one chat-completion chunk into zero or one frame."""
    choices = chunk.get("choices") or []
    first = choices[0] if choices else {}
    text = delta_text(first.get("delta") or {})
    finish_reason = map_finish_reason(first.get("finish_reason"))

    usage = None
    usage_raw = chunk.get("usage") or (chunk.get("x_groq") or {}).get("usage")
    if usage_raw:
        usage = Usage(
            prompt_tokens=usage_raw.get("prompt_tokens") or 0,
            completion_tokens=usage_raw.get("completion_tokens") or 0,
            total_tokens=usage_raw.get("total_tokens") or 0,
        )

    if not text and finish_reason is None and usage is None:
        return None
    return Frame(text=text, finish_reason=finish_reason, usage=usage)


class OpenAICompatClient(ProviderClient):
    """Chat-completions SSE client; endpoint, credential and knobs come from the profile."""

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Frame]:
        api_key = self._require_key()
        model = self.profile.remap(request.model)

        temperature = request.config.temperature
        body = {
            "model": model,
            "messages": build_messages(request),
            "stream": True,
            "temperature": self.profile.default_temperature if temperature is None else temperature,
        }
        # Provider-specific knobs win over the caller's generic config
        body.update(self.profile.overrides)

        headers = {"Authorization": f"Bearer {api_key}", **self.profile.headers}
        async for event in self._stream_events(
            f"{self.profile.base_url}/chat/completions", body, headers=headers, model=model
        ):
            frame = self._translate(chunk_to_frame, event, model)
            if frame is not None:
                yield frame
