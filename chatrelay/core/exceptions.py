from fastapi import Request
from fastapi.responses import JSONResponse


class RelayError(Exception):
    """Base exception for Chat Relay errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


# ── Gateway-side errors (become one terminal error frame) ───────────────────


class ConfigurationError(RelayError):
    def __init__(self, message: str = "Provider credential is not configured.", details: dict | None = None):
        super().__init__(code="provider_not_configured", message=message, status=500, details=details)


class UnknownModelError(RelayError):
    def __init__(self, model: str):
        super().__init__(
            code="unknown_model",
            message=f"Unknown model provider for: {model}",
            status=400,
            details={"model": model},
        )


class UpstreamError(RelayError):
    def __init__(self, model: str, status_code: int, body: str):
        super().__init__(
            code="upstream_error",
            message=f"Provider Error ({model}): {status_code} - {body}",
            status=502,
            details={"model": model, "upstream_status": status_code},
        )


class UpstreamUnavailableError(RelayError):
    def __init__(self, message: str = "Upstream provider is unavailable.", details: dict | None = None):
        super().__init__(code="upstream_unavailable", message=message, status=503, details=details)


class MalformedChunkError(RelayError):
    def __init__(self, model: str, detail: str):
        super().__init__(
            code="upstream_malformed",
            message=f"Provider Error ({model}): malformed stream chunk - {detail}",
            status=502,
            details={"model": model},
        )


# ── Client-side errors ──────────────────────────────────────────────────────


class StreamOpenError(RelayError):
    def __init__(self, message: str = "Could not open the chat stream.", status: int = 503):
        super().__init__(code="stream_open_failed", message=message, status=status)


class StreamInterruptedError(RelayError):
    def __init__(self, message: str = "The chat stream was interrupted."):
        super().__init__(code="stream_interrupted", message=message, status=503)


class GenerationError(RelayError):
    """Terminal error frame received from the gateway."""

    def __init__(self, message: str):
        super().__init__(code="generation_failed", message=message, status=502)


# ── Persistence endpoint errors ─────────────────────────────────────────────


class ValidationError(RelayError):
    def __init__(self, message: str = "Invalid request.", details: dict | None = None):
        super().__init__(code="invalid_request", message=message, status=400, details=details)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Global exception handler for RelayError and subclasses."""
    return JSONResponse(status_code=exc.status, content=exc.to_dict())
