"""Unit tests for ok_duino.cli."""

import pytest
from unittest import mock

import ok_duino
from ok_duino import cli


def test_parse_op():
    assert cli.parse_op("mode:13:out") == ok_duino.Command("00", 13, 1)
    assert cli.parse_op("mode:08:in") == ok_duino.Command("00", 8, 0)
    assert cli.parse_op("write:13:high") == ok_duino.Command("01", 13, 255)
    assert cli.parse_op("write:13:000") == ok_duino.Command("01", 13, 0)
    assert cli.parse_op("read:2") == ok_duino.Command("02", 2, 0)
    assert cli.parse_op("awrite:9:128") == ok_duino.Command("03", 9, 128)
    assert cli.parse_op("aread:09").framed() == "!0409000."

    with pytest.raises(ValueError):
        cli.parse_op("blink:13")
    with pytest.raises(ValueError):
        cli.parse_op("write:13")
    with pytest.raises(ValueError):
        cli.parse_op("read:13:1")


@pytest.mark.parametrize(
    "op",
    [
        "mode:13:sideways",
        "mode:100:out",
        "write:13:300",
        "write:13:bright",
        "awrite:9:256",
        "awrite:9:-1",
        "aread:0x0e",
        "read:",
    ],
)
def test_parse_op_rejects_bad_values(op):
    with pytest.raises(ValueError, match="Bad command"):
        cli.parse_op(op)


def test_run_rejects_bad_op_without_traceback(monkeypatch):
    monkeypatch.setattr("sys.argv", ["okduino", "run", "mode:13:sideways"])
    monkeypatch.setattr(cli.ok_logging_setup, "install", mock.Mock())
    run_session = mock.Mock()
    monkeypatch.setattr(cli, "run_session", run_session)
    exit_mock = mock.Mock(side_effect=SystemExit(1))
    monkeypatch.setattr(cli.ok_logging_setup, "exit", exit_mock)

    with pytest.raises(SystemExit):
        cli.main()

    (message,), _ = exit_mock.call_args
    assert "mode:13:sideways" in message
    run_session.assert_not_called()


def test_scan_lists_candidates(set_scan_override, monkeypatch, capsys):
    set_scan_override({"/dev/ttyACM0": {}, "/dev/ttyS0": {}})
    monkeypatch.setattr("sys.argv", ["okduino", "scan"])
    monkeypatch.setattr(cli.ok_logging_setup, "install", mock.Mock())
    cli.main()

    lines = capsys.readouterr().out.splitlines()
    assert "/dev/ttyACM0" in lines
    assert "/dev/ttyS0" not in lines
