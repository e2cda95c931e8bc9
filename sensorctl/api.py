"""Stable public API for building tooling on top of sensorctl.

This module is the supported integration surface for collaborators such as a
REST layer or a persistence service. They get assigned ids, match results and
card UIDs; no wire-level detail crosses this boundary.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

from sensorctl.core.controller import DeviceController
from sensorctl.core.errors import (
    CommandError,
    DeviceRejected,
    ProfileLoadError,
    ProfileSelectionError,
    ProfileValidationError,
    ProtocolTimeout,
    RecoveryFailed,
    SensorctlError,
    TransportError,
    TransportFailure,
    TransportUnavailable,
)
from sensorctl.core.matcher import compare
from sensorctl.core.model import EnrollmentOutcome, EnrollStatus, MatchResult, Profile
from sensorctl.core.profile_loader import load_profiles, select_profile

__all__ = [
    "SensorctlError",
    "ProfileLoadError",
    "ProfileSelectionError",
    "ProfileValidationError",
    "TransportError",
    "TransportUnavailable",
    "TransportFailure",
    "CommandError",
    "ProtocolTimeout",
    "DeviceRejected",
    "RecoveryFailed",
    "EnrollmentOutcome",
    "EnrollStatus",
    "MatchResult",
    "Profile",
    "Client",
]


class Client:
    """Public client for one access terminal.

    Use it as a context manager; the transport is opened on enter and released
    on exit, including when opening fails half-way.
    """

    def __init__(
        self,
        profile_id: str | None = None,
        *,
        controller: DeviceController | None = None,
    ) -> None:
        if controller is None:
            profile = select_profile(load_profiles(), profile_id)
            controller = DeviceController.from_profile(profile)
        self._controller = controller

    def __enter__(self) -> Client:
        self._controller.open()
        return self

    def __exit__(self, *_: object) -> None:
        self._controller.close()

    def close(self) -> None:
        self._controller.close()

    def ping(self) -> str:
        return self._controller.ping()

    def count(self) -> int:
        return self._controller.count()

    def enroll(
        self,
        on_progress: Callable[[EnrollmentOutcome], None] | None = None,
    ) -> EnrollmentOutcome:
        return self._controller.enroll(on_progress)

    def verify(self, on_progress: Callable[[str], None] | None = None) -> MatchResult:
        return self._controller.verify_against_device(on_progress)

    def verify_against_store(
        self,
        stored_templates: Mapping[int, str],
        candidate_template: str | None = None,
    ) -> MatchResult:
        return self._controller.verify_against_store(candidate_template, stored_templates)

    def delete(self, template_id: int) -> str:
        return self._controller.delete_by_id(template_id)

    def empty(self) -> str:
        return self._controller.empty_all()

    def scan_card(self) -> str:
        return self._controller.scan_card()

    @staticmethod
    def compare(first: str, second: str) -> int:
        return compare(first, second)
