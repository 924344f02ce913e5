import asyncio
from collections.abc import Callable

# One flush per display refresh at 60 Hz
FLUSH_INTERVAL = 1 / 60


class FlushThrottle:
    """Coalesces flush requests so at most one flush runs per tick.

    ``schedule`` is a no-op while a flush is already pending. Callers that need
    a final flush call ``cancel`` and flush themselves.
    """

    def __init__(self, flush: Callable[[], None], interval: float = FLUSH_INTERVAL):
        self._flush = flush
        self._interval = interval
        self._handle: asyncio.TimerHandle | None = None

    @property
    def scheduled(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        if self._handle is not None:
            return
        self._handle = asyncio.get_running_loop().call_later(self._interval, self._run)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        self._flush()
