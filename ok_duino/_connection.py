import asyncio
import contextlib
import errno
import logging
import serial
import threading

import pydantic

from ok_duino import _exceptions

log = logging.getLogger("ok_duino.connection")
data_log = logging.getLogger(log.name + ".data")

DEFAULT_BAUD = 115200


class SerialConnection(contextlib.AbstractContextManager):
    """A serial port read line by line on behalf of an asyncio loop.

    A reader thread splits inbound bytes on newlines and hands complete
    lines to the loop that opened the port. A writer thread feeds queued
    output to the port, so write() never blocks the loop.
    """

    @pydantic.validate_call
    def __init__(
        self,
        port: str,
        baud: int = DEFAULT_BAUD,
        *,
        newline: bytes = b"\n",
    ):
        self._loop = asyncio.get_running_loop()

        log.debug("Opening %s (%d baud)", port, baud)
        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=baud,
                exclusive=True,
                write_timeout=0.1,
            )
        except (OSError, serial.SerialException) as ex:
            if getattr(ex, "errno", None) == errno.EBUSY:
                message = "Serial port busy (EBUSY)"
                raise _exceptions.OpenBusy(message, port) from ex
            else:
                message = "Serial port open error"
                raise _exceptions.OpenError(message, port) from ex

        self._newline = newline
        self._lines: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self._monitor = threading.Condition()
        self._outgoing = bytearray()
        self._error: _exceptions.TransportIoException | None = None
        self._drainers: list[asyncio.Future[None]] = []

        self._threads = [
            threading.Thread(target=t, name=f"{port} {n}", daemon=True)
            for t, n in ((self._readloop, "reader"), (self._writeloop, "writer"))
        ]
        for thread in self._threads:
            thread.start()

    def __del__(self) -> None:
        if hasattr(self, "_threads"):
            self.close()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialConnection({self.port_name!r})"

    @property
    def port_name(self) -> str:
        return self._serial.port

    async def read_line(self) -> bytes:
        """Next inbound line, without its newline (or a trailing CR)"""

        item = await self._lines.get()
        if isinstance(item, Exception):
            self._lines.put_nowait(item)  # later readers fail the same way
            raise item
        return item

    def write(self, data: bytes) -> None:
        with self._monitor:
            if self._error:
                raise self._error
            self._outgoing.extend(data)
            self._monitor.notify_all()

    async def drain(self, timeout: float | None = None) -> bool:
        """Waits for queued output to reach the port; False on timeout"""

        future = self._loop.create_future()
        with self._monitor:
            if self._error:
                raise self._error
            if not self._outgoing:
                return True
            self._drainers.append(future)

        try:
            await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            log.debug("%s: %db unflushed", self.port_name, len(self._outgoing))
            return False

        with self._monitor:
            if self._error:
                raise self._error
        return True

    def close(self) -> None:
        self._set_error(
            _exceptions.TransportClosed("Serial port was closed", self.port_name)
        )

        try:
            self._serial.cancel_read()
            self._serial.cancel_write()
        except (OSError, serial.SerialException):
            log.warning("Can't cancel %s I/O", self.port_name, exc_info=True)

        for thread in self._threads:
            if thread.is_alive() and thread is not threading.current_thread():
                thread.join()
        self._serial.close()

    def _readloop(self) -> None:
        log.debug("Starting thread")
        partial = bytearray()
        while not self._error:
            try:
                # Block for at least one byte, then grab all available
                incoming = self._serial.read(size=1)
                if incoming and (waiting := self._serial.in_waiting) > 0:
                    incoming += self._serial.read(size=waiting)
            except (OSError, serial.SerialException) as ex:
                message = "Serial read error"
                self._set_error(
                    _exceptions.TransportIoException(message, self.port_name),
                    cause=ex,
                )
                return

            partial.extend(incoming)
            *lines, rest = partial.split(self._newline)
            partial = bytearray(rest)
            for line in lines:
                data_log.debug("Read %r", bytes(line))
                self._post(self._lines.put_nowait, bytes(line.rstrip(b"\r")))

    def _writeloop(self) -> None:
        log.debug("Starting thread")

        # Avoid blocking on writes to avoid pyserial bugs:
        # https://github.com/pyserial/pyserial/issues/280
        # https://github.com/pyserial/pyserial/issues/281
        while True:
            with self._monitor:
                while not self._error and not self._outgoing:
                    self._monitor.wait()
                if self._error:
                    return
                chunk = bytes(self._outgoing[:256])

            try:
                self._serial.write(chunk)
                self._serial.flush()
            except (OSError, serial.SerialException) as ex:
                message = "Serial write error"
                self._set_error(
                    _exceptions.TransportIoException(message, self.port_name),
                    cause=ex,
                )
                return

            with self._monitor:
                del self._outgoing[: len(chunk)]
                left = len(self._outgoing)
            data_log.debug("Wrote %db (%db left)", len(chunk), left)
            if not left:
                self._wake_drainers()

    def _set_error(
        self,
        error: _exceptions.TransportIoException,
        cause: BaseException | None = None,
    ) -> None:
        """First error wins; later ones (e.g. from closing) are dropped"""

        with self._monitor:
            if self._error:
                return
            error.__cause__ = cause
            self._error = error
            self._monitor.notify_all()

        if cause:
            data_log.warning("%s", error, exc_info=cause)
        self._post(self._lines.put_nowait, error)
        self._wake_drainers()

    def _wake_drainers(self) -> None:
        with self._monitor:
            drainers, self._drainers = self._drainers, []
        for future in drainers:
            self._post(_resolve, future)

    def _post(self, callback, *args) -> None:
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)
