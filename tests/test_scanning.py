"""Unit tests for ok_duino._scanning."""

import json
import pytest
from serial.tools import list_ports
from serial.tools import list_ports_common

import ok_duino
from ok_duino import SerialPort
from ok_duino import _scanning


def test_scan_ports(mocker):
    mocker.patch("serial.tools.list_ports.comports")

    bare_port = list_ports_common.ListPortInfo("/dev/ttyUSB10")

    full_port = list_ports_common.ListPortInfo("/dev/ttyUSB2")
    full_port.description = "Description"
    full_port.vid = 0x2341
    full_port.pid = 0x43
    full_port.serial_number = "Serial"
    full_port.manufacturer = "Arduino"

    list_ports.comports.return_value = [bare_port, full_port]

    found = ok_duino.scan_serial_ports()
    assert [p.name for p in found] == ["/dev/ttyUSB2", "/dev/ttyUSB10"]
    assert found[0].attr["vid"] == str(0x2341)
    assert found[0].attr["manufacturer"] == "Arduino"
    assert found[1].attr == {"device": "/dev/ttyUSB10", "name": "ttyUSB10"}


def test_scan_ports_with_override(monkeypatch, tmp_path):
    override_path = tmp_path / "scan_override.json"
    monkeypatch.setenv("OK_DUINO_SCAN_OVERRIDE", str(override_path))
    with pytest.raises(ok_duino.ScanException):
        ok_duino.scan_serial_ports()  # fails: file does not exist

    override_path.write_text("bad json")
    with pytest.raises(ok_duino.ScanException):
        ok_duino.scan_serial_ports()  # fails: format is invalid

    override_path.write_text(json.dumps({"bad": {"entry": None}}))
    with pytest.raises(ok_duino.ScanException):
        ok_duino.scan_serial_ports()  # fails: structure is invalid

    override = {"port1": {"aname": "avalue"}, "port2": {}}
    override_path.write_text(json.dumps(override))

    assert ok_duino.scan_serial_ports() == [
        SerialPort(name="port1", attr={"aname": "avalue"}),
        SerialPort(name="port2", attr={}),
    ]


def test_serial_discovery_filters_by_name(set_scan_override):
    set_scan_override(
        {
            "/dev/ttyS0": {},
            "/dev/ttyACM1": {},
            "/dev/tty.usbmodem1411": {},
            "/dev/ttyACM0": {},
            "/dev/cu.Bluetooth": {},
        }
    )

    discovery = ok_duino.SerialDiscovery()
    assert discovery.list_candidates() == [
        "/dev/tty.usbmodem1411",
        "/dev/ttyACM0",
        "/dev/ttyACM1",
    ]

    assert ok_duino.SerialDiscovery("S0").list_candidates() == ["/dev/ttyS0"]


def test_serial_discovery_bad_pattern():
    with pytest.raises(ValueError):
        ok_duino.SerialDiscovery("(unclosed")


#
# First-open-wins policy
#


async def test_discover_takes_first_openable(fake_board):
    discovery = fake_board.discovery
    discovery.endpoints = {
        "/dev/ttyACM0": None,
        "/dev/ttyACM1": fake_board.transport,
        "/dev/ttyACM2": None,
    }

    port, transport = await _scanning.discover(discovery)
    assert port == "/dev/ttyACM1"
    assert transport is fake_board.transport
    assert discovery.opened == [("/dev/ttyACM0", 115200), ("/dev/ttyACM1", 115200)]


async def test_discover_nothing_opens(fake_board):
    discovery = fake_board.discovery
    discovery.endpoints = {"/dev/ttyACM0": None}
    with pytest.raises(ok_duino.DeviceNotFound):
        await _scanning.discover(discovery)

    discovery.endpoints = {}
    with pytest.raises(ok_duino.DeviceNotFound):
        await _scanning.discover(discovery)


async def test_discover_real_port(pty_serial, set_scan_override):
    set_scan_override({"/dev/missing_usb0": {}, pty_serial.path: {}})
    discovery = ok_duino.SerialDiscovery(r"usb|pts")

    # /dev/missing_usb0 sorts first, fails to open and is skipped
    port, transport = await _scanning.discover(discovery)
    with transport:
        assert port == pty_serial.path
        assert transport.port_name == pty_serial.path
