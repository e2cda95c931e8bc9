from __future__ import annotations

from collections import deque

from sensorctl.core.dialects import get_dialect
from sensorctl.core.model import RetryPolicy, TimeoutPolicy
from sensorctl.core.protocol import CommandProtocol

Event = str | tuple[float, str | None]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class ScriptedChannel:
    """Stand-in for a serial stream driven by a fake clock.

    Writing a command appends that command's next scripted reply to the
    pending stream, so bytes left over from an abandoned command stay visible
    until `drain_stale()` runs. An event is a line or `(delay_s, line)`;
    a `None` line stands for bytes that arrive without completing a line.
    """

    def __init__(
        self,
        clock: FakeClock,
        replies: dict[str, list[list[Event]]] | None = None,
        *,
        boot: list[Event] | None = None,
        write_errors: dict[str, list[Exception | None]] | None = None,
        open_error: Exception | None = None,
    ) -> None:
        self.clock = clock
        self.replies = {name: list(scripts) for name, scripts in (replies or {}).items()}
        self.boot = list(boot or [])
        self.write_errors = {name: list(errors) for name, errors in (write_errors or {}).items()}
        self.open_error = open_error
        self.pending: deque[tuple[float, str | None]] = deque()
        self.written: list[str] = []
        self.last_rx: float | None = None
        self.drains = 0
        self.opened = 0
        self.closed = 0

    def open(self) -> None:
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error
        self.pending.extend(_normalize(self.boot))

    def read_line(self, deadline: float) -> str | None:
        while self.pending:
            delay, line = self.pending[0]
            if self.clock.now + delay > deadline:
                waited = max(0.0, deadline - self.clock.now)
                self.pending[0] = (delay - waited, line)
                break
            self.pending.popleft()
            self.clock.now += delay
            self.last_rx = self.clock.now
            if line is not None:
                return line
        self.clock.now = max(self.clock.now, deadline)
        return None

    def write_line(self, text: str) -> None:
        self.written.append(text)
        name = text.split(" ", 1)[0]
        errors = self.write_errors.get(name)
        if errors:
            error = errors.pop(0)
            if error is not None:
                raise error
        scripts = self.replies.get(name)
        if scripts:
            self.pending.extend(_normalize(scripts.pop(0)))

    def drain_stale(self) -> None:
        self.drains += 1
        self.pending.clear()

    def close(self) -> None:
        self.closed += 1


def _normalize(events: list[Event]) -> list[tuple[float, str | None]]:
    return [event if isinstance(event, tuple) else (0.0, event) for event in events]


def make_protocol(
    channel: ScriptedChannel,
    *,
    dialect: str = "verbose",
    timeouts: TimeoutPolicy | None = None,
    retry: RetryPolicy | None = None,
    sleeps: list[float] | None = None,
) -> CommandProtocol:
    recorded = sleeps if sleeps is not None else []
    return CommandProtocol(
        channel,
        get_dialect(dialect),
        timeouts=timeouts or TimeoutPolicy(handshake_s=5, quick_s=5, progressive_s=60, idle_gap_s=30),
        retry=retry or RetryPolicy(max_retries=3, delay_s=0.5),
        clock=channel.clock,
        sleep=recorded.append,
    )
