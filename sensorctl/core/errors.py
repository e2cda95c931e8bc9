"""Domain-specific errors for sensorctl."""

from __future__ import annotations

from collections.abc import Sequence


class SensorctlError(Exception):
    """Base error for sensorctl.

    `messages` holds the device lines collected before the failure, so callers
    can show which step an operation reached.
    """

    def __init__(self, message: str, *, messages: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.messages: tuple[str, ...] = tuple(messages)


class ProfileValidationError(SensorctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(SensorctlError):
    """Raised when loading profile sources fails."""


class ProfileSelectionError(SensorctlError):
    """Raised when no profile matches the requested id."""


class TransportError(SensorctlError):
    """Base transport error."""


class TransportUnavailable(TransportError):
    """Raised when the serial port or HTTP tunnel cannot be acquired."""


class TransportFailure(TransportError):
    """Raised on I/O errors while a command is in flight."""


class CommandError(SensorctlError):
    """Base error for a command that reached the device layer."""


class ProtocolTimeout(CommandError):
    """Raised when no terminal line arrives within the applicable deadline."""


class DeviceRejected(CommandError):
    """Raised when the device answers with an explicit error terminal."""


class RecoveryFailed(CommandError):
    """Raised when enroll failed and the count check did not confirm success."""

    def __init__(
        self,
        message: str,
        *,
        messages: Sequence[str] = (),
        original: SensorctlError,
        outcome: object | None = None,
    ) -> None:
        super().__init__(message, messages=messages)
        self.original = original
        self.outcome = outcome
