"""Command/response state machine on top of a TransportChannel.

One command is in flight at a time. Each attempt drains stale input, writes
the command once, then collects lines until the active dialect reports a
terminal marker the command accepts, the device reports an error, or one of
two deadlines passes: the overall command timeout or the idle-gap ceiling.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum

from sensorctl.core.dialects import Dialect
from sensorctl.core.errors import (
    DeviceRejected,
    ProtocolTimeout,
    TransportFailure,
    TransportUnavailable,
)
from sensorctl.core.model import (
    Command,
    CommandTier,
    LineKind,
    Outcome,
    ProtocolResult,
    ResponseLine,
    RetryPolicy,
    TimeoutPolicy,
)
from sensorctl.transports.base import TransportChannel

LOGGER = logging.getLogger(__name__)

LineCallback = Callable[[ResponseLine], None]


class ProtocolState(str, Enum):
    IDLE = "idle"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    READY = "ready"
    SENDING = "sending"
    COLLECTING = "collecting"
    DONE = "done"
    FAILED = "failed"


class CommandProtocol:
    def __init__(
        self,
        channel: TransportChannel,
        dialect: Dialect,
        *,
        timeouts: TimeoutPolicy | None = None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel = channel
        self.dialect = dialect
        self.timeouts = timeouts or TimeoutPolicy()
        self.retry = retry or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.RLock()
        self.state = ProtocolState.IDLE

    @property
    def is_open(self) -> bool:
        return self.state is not ProtocolState.IDLE

    def open(self) -> None:
        if self.is_open:
            return
        try:
            self.channel.open()
            self.state = ProtocolState.AWAITING_HANDSHAKE
            self._handshake()
        except BaseException:
            self.channel.close()
            self.state = ProtocolState.IDLE
            raise
        self.state = ProtocolState.READY

    def close(self) -> None:
        self.channel.close()
        self.state = ProtocolState.IDLE

    def __enter__(self) -> CommandProtocol:
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def execute(self, command: Command, on_line: LineCallback | None = None) -> ProtocolResult:
        """Run one command and return its retained lines and terminal.

        Retryable commands are re-sent on timeouts and transport failures, up to
        `retry.max_retries` extra attempts; everything else runs exactly once.
        """
        if not self.is_open:
            raise TransportUnavailable("Channel is not open")

        with self.exclusive(command.name):
            attempts = 1 + (self.retry.max_retries if command.retryable else 0)
            attempt = 1
            while True:
                try:
                    return self._run_once(command, on_line)
                except (ProtocolTimeout, TransportFailure) as exc:
                    if attempt >= attempts:
                        raise
                    LOGGER.warning(
                        "%s attempt %d/%d failed: %s; retrying in %.1fs",
                        command.name,
                        attempt,
                        attempts,
                        exc,
                        self.retry.delay_s,
                    )
                    self._sleep(self.retry.delay_s)
                    attempt += 1

    @contextmanager
    def exclusive(self, label: str = "session") -> Iterator[None]:
        """Hold the channel across several commands.

        Other threads wait at most `progressive_s + quick_s` before getting a
        busy `ProtocolTimeout`; `execute` calls from the holding thread nest.
        """
        wait_s = self.timeouts.progressive_s + self.timeouts.quick_s
        if not self._lock.acquire(timeout=wait_s):
            raise ProtocolTimeout(f"{label}: channel busy for more than {wait_s}s")
        try:
            yield
        finally:
            self._lock.release()

    def _handshake(self) -> None:
        deadline = self._clock() + self.timeouts.handshake_s
        while True:
            line = self.channel.read_line(deadline)
            if line is None:
                LOGGER.warning(
                    "No '%s' sentinel within %.1fs; continuing without handshake",
                    self.dialect.ready_sentinel,
                    self.timeouts.handshake_s,
                )
                return
            text = line.strip()
            if self.dialect.is_ready(text):
                LOGGER.info("Device ready (%s)", text)
                return
            if text:
                LOGGER.debug("Discarding pre-handshake line: %s", text)

    def _run_once(self, command: Command, on_line: LineCallback | None) -> ProtocolResult:
        self.state = ProtocolState.SENDING
        try:
            self.channel.drain_stale()
            LOGGER.debug(">>> %s", command.wire)
            self.channel.write_line(command.wire)
        except TransportFailure:
            self.state = ProtocolState.FAILED
            raise

        self.state = ProtocolState.COLLECTING
        try:
            result = self._collect(command, on_line)
        except DeviceRejected:
            self.state = ProtocolState.DONE
            raise
        except (ProtocolTimeout, TransportFailure):
            self.state = ProtocolState.FAILED
            raise
        self.state = ProtocolState.DONE
        return result

    def _collect(self, command: Command, on_line: LineCallback | None) -> ProtocolResult:
        overall_s = (
            self.timeouts.quick_s
            if command.tier is CommandTier.QUICK
            else self.timeouts.progressive_s
        )
        idle_s = self.timeouts.idle_gap_s
        started = self._clock()
        deadline = started + overall_s
        last_activity = started
        retained: list[ResponseLine] = []

        while True:
            now = self._clock()
            if now >= deadline:
                raise self._timeout(command, retained, f"no terminal line within {overall_s}s")
            if now - last_activity >= idle_s:
                raise self._timeout(command, retained, f"device silent for {idle_s}s")

            line = self.channel.read_line(min(deadline, last_activity + idle_s))
            # Partial lines still count as activity for the idle gap.
            last_rx = self.channel.last_rx
            if last_rx is not None and last_rx > last_activity:
                last_activity = last_rx
            if line is None:
                continue
            last_activity = self._clock()
            text = line.strip()
            if not text:
                continue

            response = self.dialect.classify(text)
            if response.kind is LineKind.BANNER:
                LOGGER.debug("Discarding banner: %s", text)
                continue

            if response.outcome is Outcome.DEVICE_ERROR:
                retained.append(response)
                LOGGER.info("<<< %s (device error)", text)
                raise DeviceRejected(str(response.value), messages=[r.text for r in retained])

            if response.kind is LineKind.TERMINAL and response.outcome in command.accepts:
                retained.append(response)
                LOGGER.info("<<< %s (done)", text)
                return ProtocolResult(command=command, lines=tuple(retained), terminal=response)

            continuation = ResponseLine(
                text=text,
                kind=LineKind.CONTINUATION,
                outcome=response.outcome,
                value=response.value,
            )
            retained.append(continuation)
            LOGGER.info("<<< %s", text)
            if on_line is not None:
                on_line(continuation)

    def _timeout(self, command: Command, retained: list[ResponseLine], reason: str) -> ProtocolTimeout:
        messages = [r.text for r in retained]
        if not messages:
            reason = f"{reason}; no response received"
        LOGGER.error("%s timed out: %s", command.name, reason)
        return ProtocolTimeout(f"{command.name} timed out: {reason}", messages=messages)
