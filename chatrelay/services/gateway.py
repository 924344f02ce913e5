from collections.abc import AsyncIterator, Mapping

import httpx
import structlog

from chatrelay.config import Settings
from chatrelay.core.exceptions import RelayError
from chatrelay.schemas.chat import GenerationRequest
from chatrelay.schemas.frames import Frame
from chatrelay.services.providers.base import ProviderClient
from chatrelay.services.providers.gemini import GeminiClient
from chatrelay.services.providers.openai_compat import OpenAICompatClient
from chatrelay.services.routing import Provider, build_profiles, resolve_provider

logger = structlog.get_logger()


class Gateway:
    """Routes a normalized request to its provider and re-emits uniform frames.

    Stateless across calls: every ``stream`` call makes exactly one upstream request.
    """

    def __init__(self, clients: Mapping[Provider, ProviderClient]):
        missing = set(Provider) - set(clients)
        if missing:
            raise ValueError(f"No client for providers: {sorted(p.value for p in missing)}")
        self._clients = dict(clients)

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "Gateway":
        profiles = build_profiles(settings)
        return cls({
            Provider.GEMINI: GeminiClient(
                profiles[Provider.GEMINI], http_client, enable_search=settings.gemini_enable_search
            ),
            Provider.OPENROUTER: OpenAICompatClient(profiles[Provider.OPENROUTER], http_client),
            Provider.GROQ: OpenAICompatClient(profiles[Provider.GROQ], http_client),
        })

    async def stream(self, request: GenerationRequest) -> AsyncIterator[Frame]:
        """Yield frames until the provider finishes; failures end in one error frame."""
        frames = 0
        try:
            provider = resolve_provider(request.model)
            logger.info("generation_started", model=request.model, provider=provider.value, contents=len(request.contents))
            async for frame in self._clients[provider].stream(request):
                frames += 1
                yield frame
        except RelayError as exc:
            logger.warning("generation_failed", model=request.model, code=exc.code, error=exc.message, frames=frames)
            yield Frame(error=exc.message)
            return
        except httpx.HTTPError as exc:
            logger.warning("generation_failed", model=request.model, code="http_error", error=str(exc), frames=frames)
            yield Frame(error=f"Upstream request failed: {exc}")
            return
        logger.info("generation_completed", model=request.model, frames=frames)

    def provider_status(self) -> dict[str, bool]:
        """Which providers have a credential configured."""
        return {provider.value: bool(client.profile.api_key) for provider, client in self._clients.items()}
