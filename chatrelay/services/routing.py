"""Model-id routing to the closed set of upstream providers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chatrelay.config import Settings
from chatrelay.core.exceptions import UnknownModelError


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    GROQ = "groq"


NATIVE_MARKERS = ("gemini", "veo")
OPENROUTER_MARKERS = ("deepseek", "openrouter")
GROQ_MODEL = "openai/gpt-oss-20b"
GROQ_MARKERS = ("groq",)

# Preview aliases downgraded to a stable id before dispatch
GEMINI_ALIASES = {"gemini-3-flash-preview": "gemini-2.5-flash"}


def resolve_provider(model_id: str) -> Provider:
    """Map a requested model id to its provider family."""
    if any(marker in model_id for marker in NATIVE_MARKERS):
        return Provider.GEMINI
    if any(marker in model_id for marker in OPENROUTER_MARKERS):
        return Provider.OPENROUTER
    if model_id == GROQ_MODEL or any(marker in model_id for marker in GROQ_MARKERS):
        return Provider.GROQ
    raise UnknownModelError(model_id)


@dataclass(frozen=True)
class ProviderProfile:
    """Fixed endpoint, credential and parameter policy for one provider."""

    provider: Provider
    base_url: str
    api_key: str | None
    target_model: str | None = None  # None = pass the (aliased) request model through
    aliases: dict[str, str] = field(default_factory=dict)
    default_temperature: float = 0.7
    overrides: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.provider.value

    def remap(self, model_id: str) -> str:
        if self.target_model is not None:
            return self.target_model
        return self.aliases.get(model_id, model_id)


def build_profiles(settings: Settings) -> dict[Provider, ProviderProfile]:
    """Build the provider table from settings. Every Provider gets exactly one profile."""
    return {
        Provider.GEMINI: ProviderProfile(
            provider=Provider.GEMINI,
            base_url=settings.gemini_base_url.rstrip("/"),
            api_key=settings.gemini_api_key,
            aliases=dict(GEMINI_ALIASES),
        ),
        Provider.OPENROUTER: ProviderProfile(
            provider=Provider.OPENROUTER,
            base_url=settings.openrouter_base_url.rstrip("/"),
            api_key=settings.openrouter_api_key,
            target_model="deepseek/deepseek-r1-0528:free",
            headers={
                "HTTP-Referer": settings.openrouter_referer,
                "X-Title": settings.openrouter_title,
            },
        ),
        Provider.GROQ: ProviderProfile(
            provider=Provider.GROQ,
            base_url=settings.groq_base_url.rstrip("/"),
            api_key=settings.groq_api_key,
            target_model=GROQ_MODEL,
            overrides={
                "temperature": 1,
                "max_completion_tokens": 8192,
                "top_p": 1,
                "reasoning_effort": "medium",
            },
        ),
    }
