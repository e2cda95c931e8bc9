"""Count-based recovery for enrollments that fail ambiguously.

A tunnel timeout (HTTP 502) or a dropped serial line can hide an enroll that
the sensor actually completed. The coordinator snapshots the template count
before enrolling and, on failure, checks whether it grew.

Known limitation: the recovered id is assumed to equal the new count, which
only holds while the sensor assigns ids densely and in increasing order. A
free low slot left behind by a deletion breaks that assumption.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

from sensorctl.core import commands
from sensorctl.core.errors import SensorctlError
from sensorctl.core.model import (
    DeviceSnapshot,
    EnrollmentOutcome,
    EnrollStatus,
    Outcome,
    ProtocolResult,
    ResponseLine,
)
from sensorctl.core.protocol import CommandProtocol

LOGGER = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"\d+")

ProgressCallback = Callable[[EnrollmentOutcome], None]


class EnrollmentRecoveryCoordinator:
    def __init__(
        self,
        protocol: CommandProtocol,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.protocol = protocol
        self._clock = clock

    def snapshot(self) -> DeviceSnapshot:
        result = self.protocol.execute(commands.count())
        return DeviceSnapshot(count=int(result.value), taken_at=self._clock())

    def enroll(self, on_progress: ProgressCallback | None = None) -> EnrollmentOutcome:
        """Snapshot, enroll and, on failure, recount under one channel session.

        No other caller's command can change the template count in between.
        """
        with self.protocol.exclusive("ENROLL"):
            return self._enroll(on_progress)

    def _enroll(self, on_progress: ProgressCallback | None) -> EnrollmentOutcome:
        before: DeviceSnapshot | None
        try:
            before = self.snapshot()
        except SensorctlError as exc:
            LOGGER.warning("Could not read initial template count: %s", exc)
            before = None
        LOGGER.info(
            "Enrolling fingerprint (initial count: %s)",
            before.count if before else "unknown",
        )

        progress: list[str] = []

        def _on_line(line: ResponseLine) -> None:
            progress.append(line.text)
            if on_progress is not None:
                on_progress(EnrollmentOutcome(status=EnrollStatus.PROCESSING, messages=tuple(progress)))

        try:
            result = self.protocol.execute(commands.enroll(), on_line=_on_line)
        except SensorctlError as exc:
            LOGGER.error("Enroll failed: %s", exc)
            recovered = self._recover(before, exc)
            if recovered is None:
                raise
            return recovered

        assigned_id = _assigned_id(result)
        LOGGER.info("Fingerprint enrolled with id %s", assigned_id)
        return EnrollmentOutcome(
            status=EnrollStatus.SUCCESS,
            messages=result.messages,
            assigned_id=assigned_id,
            template=_captured_template(result),
        )

    def _recover(self, before: DeviceSnapshot | None, error: SensorctlError) -> EnrollmentOutcome | None:
        if before is None:
            return None
        LOGGER.info("Checking template count to see whether the enroll completed anyway")
        try:
            after = self.snapshot()
        except SensorctlError as exc:
            LOGGER.error("Recovery count query failed: %s", exc)
            return None
        if after.count <= before.count:
            LOGGER.info("Template count unchanged at %d; enroll did not complete", after.count)
            return None

        LOGGER.info(
            "Recovered enroll: count went from %d to %d, assuming id %d",
            before.count,
            after.count,
            after.count,
        )
        return EnrollmentOutcome(
            status=EnrollStatus.SUCCESS,
            messages=(
                *error.messages,
                f"Error: {error}",
                "Fingerprint was stored on the sensor despite the communication failure",
                f"Recovered ID: {after.count}",
            ),
            assigned_id=after.count,
            recovered=True,
        )


def _assigned_id(result: ProtocolResult) -> int | None:
    if result.outcome is Outcome.NUMERIC_ID:
        return int(result.value)
    match = _DIGITS_RE.search(str(result.value or ""))
    return int(match.group(0)) if match else None


def _captured_template(result: ProtocolResult) -> str | None:
    for line in result.lines:
        if line.outcome is Outcome.TEMPLATE_PAYLOAD:
            return str(line.value)
    return None
