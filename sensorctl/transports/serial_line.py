"""Serial transport implementation using pyserial."""

from __future__ import annotations

import logging
import time

import serial

from sensorctl.core.errors import TransportFailure, TransportUnavailable

_POLL_S = 0.05
_MAX_LINE_BYTES = 4096
LOGGER = logging.getLogger(__name__)


class SerialLineChannel:
    def __init__(self, port: str, *, baudrate: int = 9600, write_timeout_s: float = 2.0) -> None:
        self.port = port
        self.baudrate = baudrate
        self.write_timeout_s = write_timeout_s
        self._serial: serial.Serial | None = None
        self._buffer = bytearray()
        self.last_rx: float | None = None

    def open(self) -> None:
        if self._serial is not None:
            return
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=_POLL_S,
                write_timeout=self.write_timeout_s,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportUnavailable(f"Could not open serial port {self.port}: {exc}") from exc
        LOGGER.info("Serial port %s open at %d baud", self.port, self.baudrate)

    def read_line(self, deadline: float) -> str | None:
        port = self._require_open()
        while True:
            line = self._pop_line()
            if line is not None:
                return line
            if time.monotonic() >= deadline:
                return None
            try:
                chunk = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError) as exc:
                raise TransportFailure(f"Serial read failed on {self.port}: {exc}") from exc
            if chunk:
                self.last_rx = time.monotonic()
                self._buffer.extend(chunk)
                if len(self._buffer) > _MAX_LINE_BYTES and b"\n" not in self._buffer:
                    LOGGER.warning("Dropping %d unframed bytes from %s", len(self._buffer), self.port)
                    self._buffer.clear()

    def write_line(self, text: str) -> None:
        port = self._require_open()
        try:
            port.write((text + "\n").encode("ascii"))
            port.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportFailure(f"Serial write failed on {self.port}: {exc}") from exc

    def drain_stale(self) -> None:
        port = self._require_open()
        if self._buffer:
            LOGGER.debug("Discarding %d buffered bytes", len(self._buffer))
        self._buffer.clear()
        try:
            port.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            raise TransportFailure(f"Could not drain {self.port}: {exc}") from exc

    def close(self) -> None:
        port, self._serial = self._serial, None
        self._buffer.clear()
        if port is None:
            return
        try:
            port.close()
        except (serial.SerialException, OSError) as exc:
            LOGGER.warning("Error closing serial port %s: %s", self.port, exc)
        else:
            LOGGER.info("Serial port %s closed", self.port)

    def __enter__(self) -> SerialLineChannel:
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _require_open(self) -> serial.Serial:
        if self._serial is None:
            raise TransportFailure(f"Serial port {self.port} is not open")
        return self._serial

    def _pop_line(self) -> str | None:
        index = self._buffer.find(b"\n")
        if index < 0:
            return None
        raw = bytes(self._buffer[:index])
        del self._buffer[: index + 1]
        return raw.decode("ascii", errors="replace").rstrip("\r")
