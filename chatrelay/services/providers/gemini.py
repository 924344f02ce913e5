from collections.abc import AsyncIterator

import httpx

from chatrelay.schemas.chat import GenerationRequest
from chatrelay.schemas.frames import FinishReason, Frame, GroundingCitation, Usage
from chatrelay.services.providers.base import ProviderClient
from chatrelay.services.routing import ProviderProfile

_FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.SAFETY,
    "BLOCKLIST": FinishReason.SAFETY,
    "PROHIBITED_CONTENT": FinishReason.SAFETY,
    "SPII": FinishReason.SAFETY,
}


def map_finish_reason(value: str | None) -> FinishReason | None:
    if not value:
        return None
    return _FINISH_REASONS.get(value, FinishReason.OTHER)


def extract_citations(candidate: dict) -> list[GroundingCitation]:
    """Flatten grounding chunks into citations, keeping only complete web sources."""
    metadata = candidate.get("groundingMetadata") or {}
    citations = []
    for chunk in metadata.get("groundingChunks") or []:
        web = chunk.get("web") or {}
        if web.get("uri") and web.get("title"):
            citations.append(GroundingCitation(uri=web["uri"], title=web["title"]))
    return citations


def chunk_to_frame(chunk: dict) -> Frame:
    """Translate one native streaming chunk into exactly one frame."""
    candidates = chunk.get("candidates") or []
    first = candidates[0] if candidates else {}
    parts = (first.get("content") or {}).get("parts") or []
    # Thought summaries are not part of the answer
    text = "".join(part.get("text", "") for part in parts if not part.get("thought"))

    usage = None
    usage_meta = chunk.get("usageMetadata")
    if usage_meta:
        usage = Usage(
            prompt_tokens=usage_meta.get("promptTokenCount") or 0,
            completion_tokens=usage_meta.get("candidatesTokenCount") or 0,
            total_tokens=usage_meta.get("totalTokenCount") or 0,
        )

    return Frame(
        text=text,
        finish_reason=map_finish_reason(first.get("finishReason")),
        citations=extract_citations(first),
        usage=usage,
    )


class GeminiClient(ProviderClient):
    """Native multimodal streaming client (streamGenerateContent over SSE)."""

    def __init__(self, profile: ProviderProfile, http_client: httpx.AsyncClient, enable_search: bool = False):
        super().__init__(profile, http_client)
        self._enable_search = enable_search

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Frame]:
        api_key = self._require_key()
        model = self.profile.remap(request.model)
        url = f"{self.profile.base_url}/v1beta/models/{model}:streamGenerateContent"

        async for event in self._stream_events(
            url,
            self._build_payload(request),
            headers={"x-goog-api-key": api_key},
            model=model,
            params={"alt": "sse"},
        ):
            yield self._translate(chunk_to_frame, event, model)

    def _build_payload(self, request: GenerationRequest) -> dict:
        """Contents pass through unchanged; the generic config maps onto native fields."""
        payload: dict = {
            "contents": [content.model_dump(by_alias=True, exclude_none=True) for content in request.contents],
        }
        config = request.config
        generation_config = {}
        if config.temperature is not None:
            generation_config["temperature"] = config.temperature
        if config.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = config.max_output_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        if config.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}
        if self._enable_search:
            payload["tools"] = [{"google_search": {}}]
        return payload
