import asyncio
import contextlib
import io
import json
import ok_logging_setup
import os
import pty
import pytest
import typing

import ok_duino

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "ok_duino=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


@pytest.fixture
def set_scan_override(monkeypatch, tmp_path):
    path = tmp_path / "scan.json"
    path.write_text("{}")
    monkeypatch.setenv("OK_DUINO_SCAN_OVERRIDE", str(path))

    def set_ports(ports: dict[str, dict[str, str]]):
        path.write_text(json.dumps(ports))

    return set_ports


class FakeTransport:
    """In-memory stand-in for an open serial port, already split into lines"""

    def __init__(self):
        self.written: list[bytes] = []
        self.incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self.closed = False
        self.fail_writes = False
        self.fail_on: bytes | None = None
        self.stuck_output = False

    @property
    def messages(self) -> list[str]:
        return [w.decode("ascii") for w in self.written]

    def feed(self, *lines: bytes) -> None:
        for line in lines:
            self.incoming.put_nowait(line)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ok_duino.TransportClosed("Fake port was closed")
        if self.fail_writes or data == self.fail_on:
            raise ok_duino.TransportIoException("Fake write error")
        self.written.append(data)

    async def read_line(self) -> bytes:
        return await self.incoming.get()

    async def drain(self, timeout: float | None = None) -> bool:
        if self.stuck_output:
            await asyncio.sleep(timeout)
            return False
        return not self.closed

    def close(self) -> None:
        self.closed = True


class FakeDiscovery:
    """Candidates mapped to a transport, or None to fail opening"""

    def __init__(self, endpoints: dict[str, FakeTransport | None]):
        self.endpoints = endpoints
        self.opened: list[tuple[str, int]] = []

    def list_candidates(self) -> list[str]:
        return list(self.endpoints)

    async def open(self, endpoint: str, baud: int) -> FakeTransport:
        self.opened.append((endpoint, baud))
        if (transport := self.endpoints[endpoint]) is None:
            raise ok_duino.OpenError("Fake open error", endpoint)
        return transport


class FakeInterrupts:
    def __init__(self):
        self.handler: typing.Callable[[], None] | None = None
        self.unsubscribed = False
        self.terminated = False

    def subscribe(self, handler: typing.Callable[[], None]) -> None:
        self.handler = handler

    def unsubscribe(self) -> None:
        self.unsubscribed = True

    def terminate(self) -> None:
        self.terminated = True


class FakeBoard(typing.NamedTuple):
    transport: FakeTransport
    discovery: FakeDiscovery
    interrupts: FakeInterrupts


@pytest.fixture
def fake_board():
    transport = FakeTransport()
    discovery = FakeDiscovery({"/dev/ttyUSB0": transport})
    return FakeBoard(transport, discovery, FakeInterrupts())
