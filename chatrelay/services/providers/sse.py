"""Server-sent-event line handling shared by the provider clients."""

import json
from collections.abc import AsyncIterable, AsyncIterator

import structlog

logger = structlog.get_logger()

SSE_DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSELineBuffer:
    """Splits arbitrarily fragmented text into complete lines.

    The unterminated tail of each feed is kept until a later feed completes it.
    """

    def __init__(self) -> None:
        self._partial = ""

    def feed(self, text: str) -> list[str]:
        self._partial += text
        *lines, self._partial = self._partial.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        rest, self._partial = self._partial, ""
        return [rest] if rest else []


def parse_data_line(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, or None for anything to skip."""
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX):].strip()
    if not data or data == DONE_SENTINEL:
        return None
    return data


async def iter_sse_data(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    buffer = SSELineBuffer()
    async for chunk in chunks:
        for line in buffer.feed(chunk):
            data = parse_data_line(line)
            if data is not None:
                yield data
    for line in buffer.flush():
        data = parse_data_line(line)
        if data is not None:
            yield data


async def iter_sse_json(chunks: AsyncIterable[str]) -> AsyncIterator[dict]:
    """Yield decoded JSON objects; keep-alives and non-JSON payloads are dropped."""
    async for data in iter_sse_data(chunks):
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("sse_line_skipped", size=len(data))
            continue
        if isinstance(event, dict):
            yield event
