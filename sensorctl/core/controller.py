"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from sensorctl.core import commands
from sensorctl.core.dialects import get_dialect
from sensorctl.core.errors import (
    ProfileValidationError,
    RecoveryFailed,
    SensorctlError,
    TransportUnavailable,
)
from sensorctl.core.matcher import DEFAULT_MATCH_THRESHOLD, compare
from sensorctl.core.model import (
    EnrollmentOutcome,
    EnrollStatus,
    MatchResult,
    Outcome,
    Profile,
    ResponseLine,
)
from sensorctl.core.protocol import CommandProtocol
from sensorctl.core.recovery import EnrollmentRecoveryCoordinator, ProgressCallback
from sensorctl.transports.base import TransportChannel
from sensorctl.transports.http_tunnel import HttpTunnelChannel
from sensorctl.transports.serial_line import SerialLineChannel

LOGGER = logging.getLogger(__name__)


class DeviceController:
    def __init__(
        self,
        protocol: CommandProtocol,
        *,
        match_threshold: int = DEFAULT_MATCH_THRESHOLD,
        recovery: EnrollmentRecoveryCoordinator | None = None,
    ) -> None:
        self.protocol = protocol
        self.match_threshold = match_threshold
        self.recovery = recovery or EnrollmentRecoveryCoordinator(protocol)

    @classmethod
    def from_profile(cls, profile: Profile) -> DeviceController:
        dialect = get_dialect(profile.dialect)
        protocol = CommandProtocol(
            build_channel(profile),
            dialect,
            timeouts=profile.timeouts,
            retry=profile.retry,
        )
        return cls(protocol, match_threshold=profile.match_threshold)

    def open(self) -> None:
        self.protocol.open()

    def close(self) -> None:
        self.protocol.close()

    def __enter__(self) -> DeviceController:
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def ping(self) -> str:
        return self.protocol.execute(commands.ping()).terminal.text

    def count(self) -> int:
        return int(self.protocol.execute(commands.count()).value)

    def delete_by_id(self, template_id: int) -> str:
        if template_id < 1:
            raise ValueError(f"Template id must be positive, got {template_id}")
        LOGGER.info("Deleting template %d from the sensor", template_id)
        return self.protocol.execute(commands.delete(template_id)).terminal.text

    def empty_all(self) -> str:
        LOGGER.info("Emptying the sensor template database")
        return self.protocol.execute(commands.empty()).terminal.text

    def scan_card(self) -> str:
        uid = str(self.protocol.execute(commands.scan_card()).value)
        LOGGER.info("Card detected with UID %s", uid)
        return uid

    def enroll(self, on_progress: ProgressCallback | None = None) -> EnrollmentOutcome:
        try:
            return self.recovery.enroll(on_progress)
        except TransportUnavailable:
            raise
        except SensorctlError as exc:
            outcome = EnrollmentOutcome(status=EnrollStatus.ERROR, messages=exc.messages)
            raise RecoveryFailed(
                str(exc),
                messages=exc.messages,
                original=exc,
                outcome=outcome,
            ) from exc

    def verify_against_device(
        self,
        on_progress: Callable[[str], None] | None = None,
    ) -> MatchResult:
        LOGGER.info("Verifying fingerprint against the sensor database")
        result = self.protocol.execute(commands.verify(), on_line=_text_callback(on_progress))
        if result.outcome is Outcome.MATCH:
            template_id, confidence = result.value
            return MatchResult(
                found=True,
                template_id=template_id,
                confidence=confidence,
                messages=result.messages,
            )
        return MatchResult(found=False, messages=result.messages)

    def capture_template(self, on_progress: Callable[[str], None] | None = None) -> str:
        result = self.protocol.execute(commands.capture(), on_line=_text_callback(on_progress))
        return str(result.value)

    def verify_against_store(
        self,
        candidate_template: str | None,
        stored_templates: Mapping[int, str],
    ) -> MatchResult:
        """Score a candidate against stored templates and keep the best one.

        Without a candidate a fresh template is captured from the sensor first.
        Only scores at or above `match_threshold` count; ties keep the first id.
        """
        candidate = candidate_template
        if candidate is None:
            candidate = self.capture_template()

        best_id: int | None = None
        best_score = -1
        for template_id, stored in stored_templates.items():
            score = compare(candidate, stored)
            LOGGER.debug("Template %s scored %d", template_id, score)
            if score >= self.match_threshold and score > best_score:
                best_id, best_score = template_id, score

        if best_id is None:
            LOGGER.info("No stored template reached threshold %d", self.match_threshold)
            return MatchResult(found=False)
        LOGGER.info("Stored template %s matched with score %d", best_id, best_score)
        return MatchResult(found=True, template_id=best_id, confidence=best_score)


def build_channel(profile: Profile) -> TransportChannel:
    spec = profile.transport
    if spec.type == "serial":
        if not spec.port:
            raise ProfileValidationError(f"Profile '{profile.id}' has no serial port configured.")
        return SerialLineChannel(spec.port, baudrate=spec.baudrate)
    if spec.type == "http":
        if not spec.base_url:
            raise ProfileValidationError(f"Profile '{profile.id}' has no base_url configured.")
        return HttpTunnelChannel(
            spec.base_url,
            get_dialect(profile.dialect),
            timeouts=profile.timeouts,
            connect_timeout_s=spec.connect_timeout_s,
        )
    raise ProfileValidationError(
        f"Unsupported transport type '{spec.type}' for profile '{profile.id}'."
    )


def _text_callback(
    on_progress: Callable[[str], None] | None,
) -> Callable[[ResponseLine], None] | None:
    if on_progress is None:
        return None

    def _forward(line: ResponseLine) -> None:
        on_progress(line.text)

    return _forward
