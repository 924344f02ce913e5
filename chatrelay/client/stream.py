import json
from collections.abc import AsyncIterator

import httpx
import structlog

from chatrelay.client.cancellation import CancellationToken
from chatrelay.core.exceptions import StreamInterruptedError, StreamOpenError
from chatrelay.schemas.frames import Frame
from chatrelay.services.frames import FrameDecoder

logger = structlog.get_logger()

CHAT_ENDPOINT = "/api/chat"


def _error_message(body: bytes, status: int) -> str:
    """Pull a human-readable message out of an error response body."""
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        for key in ("message", "detail"):
            if isinstance(data.get(key), str):
                return data[key]
    return f"Server error: {status}"


class FrameStream:
    """Single-pass, cancellable sequence of frames decoded from one response.

    Use as an async context manager so the response is released even when the
    caller stops iterating early.
    """

    def __init__(self, response: httpx.Response, token: CancellationToken):
        self._response = response
        self._token = token
        self._frames = self._iterate()

    def __aiter__(self) -> AsyncIterator[Frame]:
        return self._frames

    async def __aenter__(self) -> "FrameStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._frames.aclose()
        await self._response.aclose()

    async def _iterate(self) -> AsyncIterator[Frame]:
        decoder = FrameDecoder()
        try:
            async for chunk in self._response.aiter_bytes():
                for frame in decoder.feed(chunk):
                    if self._token.cancelled:
                        return
                    yield frame
            for frame in decoder.finish():
                if self._token.cancelled:
                    return
                yield frame
        except httpx.TransportError as e:
            raise StreamInterruptedError(f"Chat stream interrupted: {e}")
        finally:
            await self._response.aclose()


class StreamConsumer:
    """Opens gateway streams. Each ``open`` issues exactly one fresh request."""

    def __init__(self, http_client: httpx.AsyncClient, endpoint: str = CHAT_ENDPOINT):
        self._client = http_client
        self._endpoint = endpoint

    async def open(self, payload: dict, token: CancellationToken | None = None) -> FrameStream:
        """Start a generation; raises StreamOpenError before any frame on failure."""
        request = self._client.build_request("POST", self._endpoint, json=payload)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise StreamOpenError(f"Cannot reach chat gateway: {e}")

        if not response.is_success:
            body = await response.aread()
            await response.aclose()
            logger.warning("stream_open_failed", status=response.status_code)
            raise StreamOpenError(_error_message(body, response.status_code), status=response.status_code)

        return FrameStream(response, token or CancellationToken())
