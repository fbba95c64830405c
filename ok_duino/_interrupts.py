import asyncio
import logging
import signal
import sys
import typing
from typing import Callable

log = logging.getLogger("ok_duino.interrupts")


@typing.runtime_checkable
class InterruptSource(typing.Protocol):
    """Delivers the process interrupt and ends the process afterwards"""

    def subscribe(self, handler: Callable[[], None]) -> None: ...

    def unsubscribe(self) -> None: ...

    def terminate(self) -> None: ...


class SignalInterrupts:
    """SIGINT via the running asyncio loop; terminate() raises SystemExit"""

    def __init__(self, signum: int = signal.SIGINT, exit_code: int = 0):
        self._signum = signum
        self._exit_code = exit_code
        self._loop: asyncio.AbstractEventLoop | None = None

    def __repr__(self) -> str:
        return f"SignalInterrupts({signal.Signals(self._signum).name})"

    def subscribe(self, handler: Callable[[], None]) -> None:
        self._loop = asyncio.get_running_loop()
        self._loop.add_signal_handler(self._signum, handler)
        log.debug("Handling %s", signal.Signals(self._signum).name)

    def unsubscribe(self) -> None:
        if self._loop and not self._loop.is_closed():
            self._loop.remove_signal_handler(self._signum)
        self._loop = None

    def terminate(self) -> None:
        log.debug("Exiting (%d)", self._exit_code)
        sys.exit(self._exit_code)
