"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class TransportChannel(Protocol):
    """Half-duplex, line-oriented stream to the terminal.

    Deadlines are absolute `time.monotonic()` values. `last_rx` is the
    monotonic time any byte last arrived, complete line or not.
    """

    last_rx: float | None

    def open(self) -> None:
        """Acquire the medium or raise `TransportUnavailable`."""

    def read_line(self, deadline: float) -> str | None:
        """Return the next complete line, or None once `deadline` passes."""

    def write_line(self, text: str) -> None:
        """Send one command line and flush it."""

    def drain_stale(self) -> None:
        """Discard anything buffered from earlier traffic."""

    def close(self) -> None:
        """Release the medium. Safe to call more than once."""
