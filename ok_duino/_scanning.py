import dataclasses
import json
import logging
import natsort
import os
import pathlib
import re
import typing
from serial.tools import list_ports
from serial.tools import list_ports_common

from ok_duino import _connection
from ok_duino import _exceptions

log = logging.getLogger("ok_duino.scanning")

DEFAULT_PORT_PATTERN = r"usb|ttyACM"


@dataclasses.dataclass(frozen=True)
class SerialPort:
    """What we know about a potentially available serial port on the system"""

    name: str
    attr: dict[str, str]

    def __str__(self):
        return self.name


@typing.runtime_checkable
class Transport(typing.Protocol):
    """What a Session needs from an open endpoint"""

    def write(self, data: bytes) -> None: ...

    async def read_line(self) -> bytes: ...

    async def drain(self, timeout: float | None = None) -> bool: ...

    def close(self) -> None: ...


@typing.runtime_checkable
class DeviceDiscovery(typing.Protocol):
    """Supplies candidate endpoints and opens them"""

    def list_candidates(self) -> list[str]: ...

    async def open(self, endpoint: str, baud: int) -> Transport: ...


def scan_serial_ports() -> list[SerialPort]:
    """Returns a list of serial ports found on the current system"""

    if ov := os.getenv("OK_DUINO_SCAN_OVERRIDE"):
        try:
            ov_data = json.loads(pathlib.Path(ov).read_text())
            if not isinstance(ov_data, dict) or not all(
                isinstance(attr, dict)
                and all(isinstance(aval, str) for aval in attr.values())
                for attr in ov_data.values()
            ):
                raise ValueError("Override data is not a dict of dicts")
        except (OSError, ValueError) as ex:
            msg = f"Can't read $OK_DUINO_SCAN_OVERRIDE {ov}"
            raise _exceptions.ScanException(msg) from ex

        out = [SerialPort(name=p, attr=a) for p, a in ov_data.items()]
        log.debug("$OK_DUINO_SCAN_OVERRIDE (%s): %d ports", ov, len(out))
    else:
        try:
            ports = list_ports.comports()
        except OSError as ex:
            raise _exceptions.ScanException("Can't scan serial") from ex

        out = [_convert_port(p) for p in ports]

    out.sort(key=natsort.natsort_keygen(key=lambda p: p.name, alg=natsort.ns.P))
    log.debug("Found %d ports", len(out))
    return out


def _convert_port(p: list_ports_common.ListPortInfo) -> SerialPort:
    _NA = (None, "", "n/a")
    attr = {k.lower(): str(v) for k, v in vars(p).items() if v not in _NA}
    return SerialPort(name=p.device, attr=attr)


class SerialDiscovery:
    """Finds USB serial adapters and CDC ACM devices by device name"""

    def __init__(self, pattern: str = DEFAULT_PORT_PATTERN):
        try:
            self._pattern = re.compile(pattern)
        except re.error as ex:
            raise ValueError(f"Bad port pattern /{pattern}/") from ex

    def __repr__(self) -> str:
        return f"SerialDiscovery({self._pattern.pattern!r})"

    def list_candidates(self) -> list[str]:
        found = scan_serial_ports()
        matched = [p.name for p in found if self._pattern.search(p.name)]
        nf, nm, rx = len(found), len(matched), self._pattern.pattern
        log.debug("%d/%d ports match /%s/", nm, nf, rx)
        return matched

    async def open(self, endpoint: str, baud: int) -> Transport:
        return _connection.SerialConnection(endpoint, baud=baud)


async def discover(
    discovery: DeviceDiscovery, baud: int = _connection.DEFAULT_BAUD
) -> tuple[str, Transport]:
    """Opens the first candidate that opens cleanly.

    There is no handshake here; whatever opens first is taken to be the
    board. Raises DeviceNotFound if nothing opens.
    """

    candidates = discovery.list_candidates()
    log.debug("Trying %d candidate(s): %s", len(candidates), candidates)
    for endpoint in candidates:
        try:
            transport = await discovery.open(endpoint, baud)
        except _exceptions.OpenError as exc:
            log.warning("Can't open %s (%s)", endpoint, exc)
            continue

        log.info("Found board at %s", endpoint)
        return endpoint, transport

    raise _exceptions.DeviceNotFound("Could not find a board")
