import asyncio
import contextlib
import enum
import logging
from typing import Any, Callable

import pydantic

from ok_duino import _buffer
from ok_duino import _connection
from ok_duino import _events
from ok_duino import _exceptions
from ok_duino import _interrupts
from ok_duino import _protocol
from ok_duino import _scanning

log = logging.getLogger("ok_duino.session")
data_log = logging.getLogger(log.name + ".data")

OnReady = Callable[[BaseException | None, Any], None]


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    READY = "ready"
    CLOSED = "closed"


class SessionOptions(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    debug: bool = False
    baud: int = _connection.DEFAULT_BAUD
    port_pattern: str = _scanning.DEFAULT_PORT_PATTERN
    handshake_delay: pydantic.NonNegativeFloat = 0.5
    identify_interval: pydantic.NonNegativeFloat = 0.5
    exit_grace: pydantic.NonNegativeFloat = 0.1
    legacy_identify: bool = False


class Session(contextlib.AbstractAsyncContextManager):
    """A live link to one board running the duino firmware.

    Construct inside a running asyncio loop. Discovery starts immediately;
    'on_ready(error, session)' is called once the port is open (or with
    DeviceNotFound if nothing opened). Commands may be issued at any time:
    until the board has talked back and the startup handshake has been
    sent they are buffered, then flushed in order.
    """

    def __init__(
        self,
        opts: SessionOptions | None = None,
        on_ready: OnReady | None = None,
        *,
        discovery: _scanning.DeviceDiscovery | None = None,
        interrupts: _interrupts.InterruptSource | None = None,
    ):
        self._opts = opts or SessionOptions()
        self._on_ready = on_ready
        self._discovery = discovery or _scanning.SerialDiscovery(
            self._opts.port_pattern
        )
        self._interrupts = interrupts or _interrupts.SignalInterrupts()
        self.events = _events.EventSource()

        self._state = SessionState.DISCONNECTED
        self._port: str | None = None
        self._transport: _scanning.Transport | None = None
        self._buffer = _buffer.WriteBuffer()
        self._handshaken = False
        self._live = False
        self._interrupt_subscribed = False
        self._timers: list[asyncio.TimerHandle] = []
        self._reader: asyncio.Task | None = None
        self._releaser: asyncio.Task | None = None

        self._loop = asyncio.get_running_loop()
        self._connected: asyncio.Future = self._loop.create_future()
        self._connected.add_done_callback(_consume_exception)

        log.debug("Initializing (debug=%s)", self._opts.debug)
        self._starter = self._loop.create_task(self._start())

    async def __aenter__(self) -> "Session":
        return await self.wait_connected()

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"Session({self._port!r}, {self._state.name})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def debug(self) -> bool:
        return self._opts.debug

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def wait_connected(self) -> "Session":
        """Returns once the port is open, or raises DeviceNotFound"""

        return await asyncio.shield(self._connected)

    def write(self, command: str | _protocol.Command) -> None:
        """Sends one command payload framed, or buffers it if not yet live"""

        payload = str(command)
        if self._state is SessionState.CLOSED:
            raise _exceptions.SessionClosed("Session is closed", self._port)
        elif self._live:
            self._send(_protocol.frame(payload))
        else:
            log.debug("Not ready, buffering %r", payload)
            self._buffer.enqueue(payload)

    def close(self) -> None:
        """Closes the session without waiting; buffered commands are dropped.

        Output already handed to the transport gets up to 'exit_grace' to
        flush before the port is released in the background. Use aclose()
        to wait for the release.
        """

        if self._state is SessionState.CLOSED:
            return

        log.debug("Closing from %s", self._state.name)
        self._state = SessionState.CLOSED
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._interrupt_subscribed:
            self._interrupts.unsubscribe()
            self._interrupt_subscribed = False
        self._buffer.clear()

        if self._reader and self._reader is not asyncio.current_task():
            self._reader.cancel()

        transport, self._transport = self._transport, None
        if transport:
            self._releaser = self._loop.create_task(self._release(transport))

        if not self._connected.done():
            message = "Session closed before connecting"
            self._connected.set_exception(_exceptions.SessionClosed(message))

        self.events.fire("closed")

    async def aclose(self) -> None:
        """Closes the session and waits until the port is released"""

        self.close()
        if self._releaser:
            await asyncio.shield(self._releaser)

    async def _release(self, transport: _scanning.Transport) -> None:
        try:
            if not await transport.drain(self._opts.exit_grace):
                log.debug("Unflushed output on %s", self._port)
        except _exceptions.TransportIoException as exc:
            log.debug("Unflushed output on %s (%s)", self._port, exc)
        finally:
            transport.close()
            log.debug("Released %s", self._port)

    #
    # Pin operations
    #

    @pydantic.validate_call
    def pin_mode(self, pin: _protocol.Pin, mode: _protocol.Mode) -> None:
        log.debug("Set pin %s mode to %s", _protocol.normalize_pin(pin), mode)
        value = _protocol.mode_value(mode)
        self.write(_protocol.encode(_protocol.PIN_MODE, pin, value))

    @pydantic.validate_call
    def digital_write(self, pin: _protocol.Pin, value: int | str) -> None:
        level = _protocol.parse_level(value)
        log.debug("digitalWrite to pin %s: %d", pin, level)
        self.write(_protocol.encode(_protocol.DIGITAL_WRITE, pin, level))

    @pydantic.validate_call
    def digital_read(self, pin: _protocol.Pin) -> None:
        log.debug("digitalRead from pin %s", pin)
        self.write(_protocol.encode(_protocol.DIGITAL_READ, pin, 0))

    @pydantic.validate_call
    def analog_write(self, pin: _protocol.Pin, value: _protocol.Level) -> None:
        log.debug("analogWrite to pin %s: %d", pin, value)
        self.write(_protocol.encode(_protocol.ANALOG_WRITE, pin, value))

    @pydantic.validate_call
    def analog_read(self, pin: _protocol.Pin) -> None:
        log.debug("analogRead from pin %s", pin)
        self.write(_protocol.encode(_protocol.ANALOG_READ, pin, 0))

    #
    # State machine
    #

    async def _start(self) -> None:
        try:
            port, transport = await _scanning.discover(
                self._discovery, self._opts.baud
            )
        except _exceptions.DuinoException as exc:
            log.warning("%s", exc)
            if not self._connected.done():
                self._connected.set_exception(exc)
            if self._on_ready:
                self._on_ready(exc, None)
            return

        if self._state is SessionState.CLOSED:
            log.debug("Closed during discovery, releasing %s", port)
            transport.close()
            return

        self._port, self._transport = port, transport
        self._state = SessionState.CONNECTED
        self.events.fire("connected", port)

        # A "connected" listener may have closed the session already
        if not self._connected.done():
            self._connected.set_result(self)
        if self._on_ready and self._state is not SessionState.CLOSED:
            self._on_ready(None, self)

        if self._state is SessionState.CONNECTED:
            log.debug("Binding %s events", port)
            self._reader = self._loop.create_task(self._readloop())
            self._schedule(self._opts.handshake_delay, self._handshake)

    async def _readloop(self) -> None:
        while (transport := self._transport) is not None:
            try:
                line = await transport.read_line()
            except _exceptions.TransportClosed:
                return
            except _exceptions.TransportIoException as exc:
                self._fail(exc)
                return

            if self._state is SessionState.CLOSED:
                return
            self._on_line(line)

    def _on_line(self, line: bytes) -> None:
        if self._state is SessionState.CONNECTED:
            self._state = SessionState.READY
            log.info("Board ready on %s", self._port)
            self.events.fire("ready")
            self._go_live()

        data_log.debug("Received %r", line)
        if self._state is not SessionState.CLOSED:
            self.events.fire("data", line)

    def _handshake(self) -> None:
        log.debug("Sending clearing bytes")
        self._send(_protocol.CLEARING_BYTES)
        if self._state is SessionState.CLOSED:
            return

        if self._opts.debug:
            log.info("Sending debug mode toggle on to board")
            self._send(_protocol.frame(_protocol.encode(_protocol.DEBUG, 0, 1)))
            if self._state is SessionState.CLOSED:
                return
            self._interrupts.subscribe(self._on_interrupt)
            self._interrupt_subscribed = True

        self._handshaken = True
        self._go_live()
        self._identify()
        self._schedule(self._opts.identify_interval, self._identify)

    def _go_live(self) -> None:
        # Buffered commands go out once, after the handshake and the first
        # inbound line, whichever comes last
        if self._live or not self._handshaken:
            return
        if self._state is not SessionState.READY:
            return

        self._live = True
        if len(self._buffer):
            log.debug("Processing %d buffered message(s)", len(self._buffer))
        self._buffer.drain_into(lambda p: self._send(_protocol.frame(p)))

    def _identify(self) -> None:
        log.debug("Identifying")
        if self._opts.legacy_identify:
            self._send(_protocol.LEGACY_IDENTIFY)
            self._send(_protocol.frame(_protocol.LEGACY_IDENTIFY))
        else:
            payload = _protocol.encode(_protocol.IDENTIFY, 0, 0)
            self._send(_protocol.frame(payload))

    def _on_interrupt(self) -> None:
        log.info("Sending debug mode toggle off to board")
        self._send(_protocol.frame(_protocol.encode(_protocol.DEBUG, 0, 0)))
        self.close()
        if self._releaser:
            self._releaser.add_done_callback(lambda _: self._exit_later())
        else:
            self._exit_later()

    def _exit_later(self) -> None:
        self._loop.call_later(self._opts.exit_grace, self._interrupts.terminate)

    def _send(self, message: str) -> None:
        if not (transport := self._transport):
            log.debug("No transport, dropping %r", message)
            return

        data_log.debug("Writing %r", message)
        try:
            transport.write(message.encode("ascii"))
        except _exceptions.TransportIoException as exc:
            self._fail(exc)

    def _fail(self, exc: _exceptions.TransportIoException) -> None:
        log.warning("Transport failed on %s (%s)", self._port, exc)
        self.events.fire("error", exc)
        self.close()

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._timers = [t for t in self._timers if not t.cancelled()]
        self._timers.append(self._loop.call_later(delay, callback))


async def connect(
    opts: SessionOptions | None = None,
    *,
    discovery: _scanning.DeviceDiscovery | None = None,
    interrupts: _interrupts.InterruptSource | None = None,
) -> Session:
    """Starts a Session and waits for its port to open"""

    session = Session(opts, discovery=discovery, interrupts=interrupts)
    return await session.wait_connected()


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
