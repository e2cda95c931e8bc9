from __future__ import annotations

import time

import pytest
import serial

from sensorctl.core.errors import TransportFailure, TransportUnavailable
from sensorctl.transports.serial_line import SerialLineChannel


class FakeSerial:
    incoming = bytearray()
    fail_reads = False

    def __init__(self, port: str, baudrate: int, timeout: float, write_timeout: float) -> None:
        self.port = port
        self.baudrate = baudrate
        self.written: list[bytes] = []
        self.flushes = 0
        self.resets = 0
        self.is_open = True

    @property
    def in_waiting(self) -> int:
        return len(FakeSerial.incoming)

    def read(self, size: int = 1) -> bytes:
        if FakeSerial.fail_reads:
            raise serial.SerialException("device reports readiness to read but returned no data")
        chunk = bytes(FakeSerial.incoming[:size])
        del FakeSerial.incoming[:size]
        return chunk

    def write(self, data: bytes) -> int:
        self.written.append(data)
        return len(data)

    def flush(self) -> None:
        self.flushes += 1

    def reset_input_buffer(self) -> None:
        self.resets += 1
        FakeSerial.incoming.clear()

    def close(self) -> None:
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch: pytest.MonkeyPatch) -> type[FakeSerial]:
    FakeSerial.incoming = bytearray()
    FakeSerial.fail_reads = False
    monkeypatch.setattr(serial, "Serial", FakeSerial)
    return FakeSerial


def _soon() -> float:
    return time.monotonic() + 0.05


def test_open_failure_is_transport_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(**kwargs):
        raise serial.SerialException("could not open port COM5: PermissionError(13)")

    monkeypatch.setattr(serial, "Serial", refuse)

    with pytest.raises(TransportUnavailable, match="COM5"):
        SerialLineChannel("COM5").open()


def test_reads_crlf_framed_lines(fake_serial: type[FakeSerial]) -> None:
    fake_serial.incoming.extend(b"READY:AS608\r\nSensor contains 3 templates\r\nPlace fin")

    with SerialLineChannel("/dev/ttyUSB0", baudrate=9600) as channel:
        assert channel.read_line(_soon()) == "READY:AS608"
        assert channel.read_line(_soon()) == "Sensor contains 3 templates"
        assert channel.read_line(_soon()) is None

        fake_serial.incoming.extend(b"ger\n")
        assert channel.read_line(_soon()) == "Place finger"


def test_drain_discards_partial_and_buffered_input(fake_serial: type[FakeSerial]) -> None:
    fake_serial.incoming.extend(b"Found ID #1 with conf")
    channel = SerialLineChannel("/dev/ttyUSB0")
    channel.open()
    assert channel.read_line(_soon()) is None

    fake_serial.incoming.extend(b"idence of 40\n")
    channel.drain_stale()
    fake_serial.incoming.extend(b"PONG\n")

    assert channel.read_line(_soon()) == "PONG"
    assert channel._serial.resets == 1
    channel.close()


def test_write_line_appends_newline_and_flushes(fake_serial: type[FakeSerial]) -> None:
    with SerialLineChannel("/dev/ttyUSB0") as channel:
        port = channel._serial
        channel.write_line("DELETE 4")
    assert port.written == [b"DELETE 4\n"]
    assert port.flushes == 1
    assert port.is_open is False


def test_read_error_is_transport_failure(fake_serial: type[FakeSerial]) -> None:
    fake_serial.fail_reads = True
    with SerialLineChannel("/dev/ttyUSB0") as channel:
        with pytest.raises(TransportFailure):
            channel.read_line(_soon())


def test_close_is_idempotent_and_io_after_close_fails(fake_serial: type[FakeSerial]) -> None:
    channel = SerialLineChannel("/dev/ttyUSB0")
    channel.open()
    channel.close()
    channel.close()
    with pytest.raises(TransportFailure):
        channel.write_line("PING")


def test_partial_bytes_update_last_rx(fake_serial: type[FakeSerial]) -> None:
    with SerialLineChannel("/dev/ttyUSB0") as channel:
        assert channel.last_rx is None
        fake_serial.incoming.extend(b"Place fin")
        before = time.monotonic()

        assert channel.read_line(_soon()) is None
        assert channel.last_rx is not None
        assert channel.last_rx >= before
