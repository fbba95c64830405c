import collections
import logging
from typing import Callable

log = logging.getLogger("ok_duino.buffer")


class WriteBuffer:
    """Unbounded FIFO of command payloads held until the device is ready"""

    def __init__(self) -> None:
        self._pending: collections.deque[str] = collections.deque()

    def __len__(self) -> int:
        return len(self._pending)

    def __repr__(self) -> str:
        return f"WriteBuffer({list(self._pending)!r})"

    def enqueue(self, payload: str) -> None:
        self._pending.append(payload)
        log.debug("Buffered %r (%d pending)", payload, len(self._pending))

    def drain_into(self, sink: Callable[[str], None]) -> int:
        """Pops every entry in order into 'sink', returns the count"""

        count = 0
        while self._pending:
            sink(self._pending.popleft())
            count += 1
        if count:
            log.debug("Drained %d buffered message(s)", count)
        return count

    def clear(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        if count:
            log.debug("Discarded %d buffered message(s)", count)
        return count
