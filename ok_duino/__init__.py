"""
Session library for boards running the duino pin-control firmware,
with serial discovery, startup handshake and command buffering.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from ok_duino._connection import SerialConnection

from ok_duino._events import EventSource, SessionEvent

from ok_duino._exceptions import (
    DeviceNotFound,
    DuinoException,
    OpenBusy,
    OpenError,
    ScanException,
    SessionClosed,
    TransportClosed,
    TransportIoException,
)

from ok_duino._interrupts import InterruptSource, SignalInterrupts

from ok_duino._protocol import (
    HIGH,
    LOW,
    Command,
    encode,
    frame,
    normalize_pin,
    normalize_value,
)

from ok_duino._scanning import (
    DeviceDiscovery,
    SerialDiscovery,
    SerialPort,
    Transport,
    discover,
    scan_serial_ports,
)

from ok_duino._session import Session, SessionOptions, SessionState, connect

__all__ = [n for n in dir() if not n.startswith("_")]
