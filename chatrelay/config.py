from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Provider credentials (read once at startup, shared read-only)
    gemini_api_key: str | None = None
    openrouter_api_key: str | None = None
    groq_api_key: str | None = None

    # Provider endpoints
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    groq_base_url: str = "https://api.groq.com/openai/v1"

    # OpenRouter attribution headers
    openrouter_referer: str = "https://chatrelay.local"
    openrouter_title: str = "Chat Relay"

    # Attach the google_search tool to native requests (enables grounding citations)
    gemini_enable_search: bool = False

    # Logging
    relay_log_level: str = "info"

    # Database (conversation snapshots)
    relay_db_url: str = "sqlite+aiosqlite:///./chatrelay.db"

    # CORS
    relay_cors_origins: str = "http://localhost:5173"

    # HTTP client timeouts (seconds)
    relay_http_connect_timeout: float = 5.0
    relay_http_read_timeout: float = 120.0

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
