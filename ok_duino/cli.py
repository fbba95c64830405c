#!/usr/bin/env python3

"""CLI tool to find duino boards and send them pin commands"""

import argparse
import asyncio
import logging
import ok_logging_setup
import re

import ok_duino
from ok_duino import _protocol

ok_logging_setup.skip_traceback_for(ok_duino.DeviceNotFound)
ok_logging_setup.skip_traceback_for(ok_duino.ScanException)

COMMAND_HELP = """
commands:
  mode:PIN:in|out   set pin mode
  write:PIN:LEVEL   digital write (0-255, high, low)
  read:PIN          digital read request
  awrite:PIN:VALUE  analog write (0-255)
  aread:PIN         analog read request
"""


def main():
    parser = argparse.ArgumentParser(
        epilog=COMMAND_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(title="actions", dest="command")
    scan_parser = subparsers.add_parser("scan", help="List candidate ports")
    scan_parser.add_argument(
        "--pattern",
        "-p",
        default=ok_duino.SessionOptions().port_pattern,
        help="regex on device name",
    )
    scan_parser.add_argument(
        "--verbose", "-v", action="store_true", help="print port properties"
    )

    run_parser = subparsers.add_parser("run", help="Send commands to a board")
    run_parser.add_argument("ops", nargs="*", help="commands (see below)")
    run_parser.add_argument(
        "--debug", "-d", action="store_true", help="enable firmware debug mode"
    )
    run_parser.add_argument(
        "--pattern",
        "-p",
        default=ok_duino.SessionOptions().port_pattern,
        help="regex on device name",
    )
    run_parser.add_argument(
        "--wait",
        "-w",
        default=0.0,
        type=float,
        help="seconds to listen after sending (default: until ^C)",
    )

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args(["scan"])

    ok_logging_setup.install({"OK_LOGGING_LEVEL": "info"})

    if args.command == "scan":
        discovery = ok_duino.SerialDiscovery(args.pattern)
        found = discovery.list_candidates()
        if not found:
            ok_logging_setup.exit(f"❌ No ports match /{args.pattern}/")
        if args.verbose:
            ports = {p.name: p for p in ok_duino.scan_serial_ports()}
            for name in found:
                print(format_verbose(ports[name]), end="\n\n")
        else:
            for name in found:
                print(name)

    if args.command == "run":
        try:
            ops = [parse_op(op) for op in args.ops]
        except ValueError as exc:
            ok_logging_setup.exit(f"🚫 {exc}")
        opts = ok_duino.SessionOptions(debug=args.debug, port_pattern=args.pattern)
        asyncio.run(run_session(opts, ops, args.wait))


OPCODES = {
    "mode": _protocol.PIN_MODE,
    "write": _protocol.DIGITAL_WRITE,
    "read": _protocol.DIGITAL_READ,
    "awrite": _protocol.ANALOG_WRITE,
    "aread": _protocol.ANALOG_READ,
}

ARITY = {"mode": 2, "write": 2, "read": 1, "awrite": 2, "aread": 1}


def parse_op(text: str) -> ok_duino.Command:
    """Turns "write:13:high" and friends into a range-checked Command"""

    name, *params = text.split(":")
    if name not in OPCODES:
        raise ValueError(f"Unknown command {text!r}")
    if len(params) != ARITY[name]:
        raise ValueError(f"Command {text!r} needs {ARITY[name]} argument(s)")

    try:
        pin = _decimal(params[0])
        if name == "mode":
            value = _protocol.mode_value(params[1])
        elif name == "write":
            value = _protocol.parse_level(params[1])
        elif name == "awrite":
            value = _decimal(params[1])
            if value > 255:
                raise ValueError(f"Analog value {value} out of range 0..255")
        else:
            value = 0
        return ok_duino.Command(OPCODES[name], pin, value)
    except ValueError as exc:
        raise ValueError(f"Bad command {text!r}: {exc}") from exc


def _decimal(text: str) -> int:
    if not re.fullmatch(r"[0-9]+", text):
        raise ValueError(f"{text!r} is not a decimal number")
    return int(text, 10)


async def run_session(
    opts: ok_duino.SessionOptions,
    ops: list[ok_duino.Command],
    wait: float,
) -> None:
    session = ok_duino.Session(opts)

    def on_event(event: ok_duino.SessionEvent) -> None:
        if event.kind == "connected":
            logging.info("🔌 Connected to %s", event.data)
        elif event.kind == "ready":
            logging.info("✅ Board ready")
        elif event.kind == "data":
            print(event.data.decode("ascii", "replace"))
        elif event.kind == "error":
            logging.error("💥 %s", event.data)

    session.events.add(on_event)
    for command in ops:
        session.write(command)

    async with session:
        if wait > 0:
            await asyncio.sleep(wait)
        else:
            await asyncio.Event().wait()


def format_verbose(port: ok_duino.SerialPort) -> str:
    return f"Serial port: {port.name}" + "".join(
        f"\n   {k}={v!r}" for k, v in port.attr.items()
    )


if __name__ == "__main__":
    main()
