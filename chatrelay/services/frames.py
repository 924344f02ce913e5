"""Frame protocol codec.

Frames travel as one compact JSON record each, followed by ``FRAME_DELIMITER``.
The delimiter is pure ASCII, so it can never appear inside a multi-byte UTF-8
sequence and the decoder can scan raw bytes without decoding them first.
"""

import structlog
from pydantic import ValidationError

from chatrelay.schemas.frames import Frame

logger = structlog.get_logger()

FRAME_DELIMITER = b"\n__CHUNK__\n"


def encode_frame(frame: Frame) -> bytes:
    """Serialize one frame as a JSON record terminated by the delimiter."""
    record = frame.model_dump_json(by_alias=True, exclude_defaults=True)
    return record.encode("utf-8") + FRAME_DELIMITER


def _parse_record(record: bytes) -> Frame:
    return Frame.model_validate_json(record)


class FrameDecoder:
    """Incremental decoder for a delimiter-framed byte stream.

    Feed bytes as they arrive; every complete record found in the buffer is
    returned immediately. Decoding is a pure function of the bytes supplied so far.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a delimiter."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[Frame]:
        self._buffer.extend(data)
        frames: list[Frame] = []
        while True:
            index = self._buffer.find(FRAME_DELIMITER)
            if index < 0:
                break
            record = bytes(self._buffer[:index])
            del self._buffer[: index + len(FRAME_DELIMITER)]
            if not record.strip():
                continue
            try:
                frames.append(_parse_record(record))
            except ValidationError as exc:
                logger.warning("frame_decode_failed", size=len(record), errors=exc.error_count())
        return frames

    def finish(self) -> list[Frame]:
        """Decode whatever trails the last delimiter once the stream has ended.

        A severed connection leaves a partial record here, so a parse failure
        is dropped without a warning.
        """
        record = bytes(self._buffer)
        self._buffer.clear()
        if not record.strip():
            return []
        try:
            return [_parse_record(record)]
        except ValidationError:
            logger.debug("trailing_frame_discarded", size=len(record))
            return []
