from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

import httpx
import structlog

from chatrelay.core.exceptions import (
    ConfigurationError,
    MalformedChunkError,
    UpstreamError,
    UpstreamUnavailableError,
)
from chatrelay.schemas.chat import GenerationRequest
from chatrelay.schemas.frames import Frame
from chatrelay.services.providers.sse import iter_sse_json
from chatrelay.services.routing import ProviderProfile

logger = structlog.get_logger()


class ProviderClient(ABC):
    """Submits one generation to an upstream provider and yields uniform frames."""

    def __init__(self, profile: ProviderProfile, http_client: httpx.AsyncClient):
        self.profile = profile
        self._client = http_client

    @abstractmethod
    async def stream(self, request: GenerationRequest) -> AsyncIterator[Frame]:
        """Stream the provider's response as frames, in arrival order."""
        ...

    def _require_key(self) -> str:
        if not self.profile.api_key:
            raise ConfigurationError(
                f"{self.profile.label} API key is not configured.",
                details={"provider": self.profile.label},
            )
        return self.profile.api_key

    def _translate(self, translate: Callable[[dict], Frame | None], event: dict, model: str) -> Frame | None:
        """Map one upstream event to a frame; an unexpected shape ends the stream."""
        try:
            return translate(event)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            logger.warning("upstream_chunk_malformed", provider=self.profile.label, model=model, error=str(e))
            raise MalformedChunkError(model, f"{type(e).__name__}: {e}")

    async def _stream_events(
        self,
        url: str,
        payload: dict,
        headers: dict[str, str],
        model: str,
        params: dict[str, str] | None = None,
    ) -> AsyncIterator[dict]:
        """POST ``payload`` and yield every JSON object carried by the SSE response."""
        try:
            async with self._client.stream("POST", url, json=payload, headers=headers, params=params) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "upstream_error",
                        provider=self.profile.label,
                        model=model,
                        status=response.status_code,
                    )
                    raise UpstreamError(model, response.status_code, body)
                async for event in iter_sse_json(response.aiter_text()):
                    yield event
        except httpx.ConnectError as e:
            raise UpstreamUnavailableError(f"Cannot connect to {self.profile.label}: {e}")
        except httpx.TimeoutException:
            raise UpstreamUnavailableError(f"{self.profile.label} request timed out.")
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(f"Connection to {self.profile.label} failed: {e}")
