"""Wire encoding for the duino pin-control firmware.

Every command is a 2-digit opcode, a 2-digit pin and a 3-digit value, all
zero-padded decimal ASCII, framed as ``!<7 chars>.`` on the wire.
"""

import re
from typing import Annotated

import msgspec
import pydantic

PIN_MODE = "00"
DIGITAL_WRITE = "01"
DIGITAL_READ = "02"
ANALOG_WRITE = "03"
ANALOG_READ = "04"
IDENTIFY = "90"
DEBUG = "99"

HIGH = "255"
LOW = "000"

FRAME_START = "!"
FRAME_END = "."

# The firmware eats the first bytes of every session
CLEARING_BYTES = "00000000"

# Ping payload as older firmware expects it, one digit longer than a command
LEGACY_IDENTIFY = "90000000"

Pin = Annotated[int, pydantic.Field(ge=0, le=99)]
Value = Annotated[int, pydantic.Field(ge=0, le=999)]
Level = Annotated[int, pydantic.Field(ge=0, le=255)]
Opcode = Annotated[str, pydantic.Field(pattern=r"^[0-9]{2}$")]
Mode = Annotated[str, pydantic.Field(pattern=r"^(in|out)$")]

_FRAMED_RE = re.compile(r"![0-9]{7}\.")


@pydantic.validate_call
def normalize_pin(pin: Pin) -> str:
    """Zero-pads a pin number to 2 digits"""

    return f"{pin:02d}"


@pydantic.validate_call
def normalize_value(value: Value) -> str:
    """Zero-pads a value to 3 digits"""

    return f"{value:03d}"


@pydantic.validate_call
def encode(opcode: Opcode, pin: Pin, value: Value) -> str:
    """Builds the 7-character payload for one command"""

    return opcode + normalize_pin(pin) + normalize_value(value)


def frame(payload: str) -> str:
    return FRAME_START + payload + FRAME_END


def is_framed_command(message: str) -> bool:
    """True if 'message' is exactly one framed 7-character command"""

    return bool(_FRAMED_RE.fullmatch(message))


class Command(msgspec.Struct, frozen=True):
    """One pin-control command, already range-checked"""

    opcode: str
    pin: int
    value: int = 0

    def __post_init__(self) -> None:
        # encode() raises ValueError for anything outside the wire format
        encode(self.opcode, self.pin, self.value)

    def __str__(self) -> str:
        return self.payload

    @property
    def payload(self) -> str:
        return encode(self.opcode, self.pin, self.value)

    def framed(self) -> str:
        return frame(self.payload)


def mode_value(mode: str) -> int:
    """Pin mode value on the wire: 1 for 'out', 0 for 'in'"""

    if mode not in ("in", "out"):
        raise ValueError(f"Bad pin mode {mode!r} (need 'in' or 'out')")
    return 1 if mode == "out" else 0


def parse_level(value: int | str) -> int:
    """Converts a digital level (0..255 or "HIGH"/"LOW" or "255"/"000")"""

    if isinstance(value, str):
        named = {"high": HIGH, "low": LOW}.get(value.strip().lower(), value)
        try:
            level = int(named, 10)
        except ValueError as ex:
            raise ValueError(f"Bad digital level {value!r}") from ex
    else:
        level = value

    if not 0 <= level <= 255:
        raise ValueError(f"Digital level {value!r} out of range 0..255")
    return level
