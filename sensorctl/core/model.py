"""Core data models used across loader, protocol, controller, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class TransportSpec:
    type: str
    port: str | None = None
    baudrate: int = 9600
    base_url: str | None = None
    connect_timeout_s: float = 5.0


@dataclass(frozen=True)
class TimeoutPolicy:
    handshake_s: float = 5.0
    quick_s: float = 5.0
    progressive_s: float = 60.0
    idle_gap_s: float = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    delay_s: float = 0.5


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    dialect: str
    transport: TransportSpec
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    match_threshold: int = 65


class CommandTier(str, Enum):
    QUICK = "quick"
    PROGRESSIVE = "progressive"


class LineKind(str, Enum):
    BANNER = "banner"
    CONTINUATION = "continuation"
    TERMINAL = "terminal"


class Outcome(str, Enum):
    PONG = "pong"
    COUNT = "count"
    SUCCESS = "success"
    DEVICE_ERROR = "device_error"
    NOT_FOUND = "not_found"
    MATCH = "match"
    NUMERIC_ID = "numeric_id"
    TEMPLATE_PAYLOAD = "template_payload"
    CARD = "card"


@dataclass(frozen=True)
class Command:
    name: str
    tier: CommandTier
    accepts: frozenset[Outcome]
    argument: str | None = None
    retryable: bool = False

    @property
    def wire(self) -> str:
        if self.argument is None:
            return self.name
        return f"{self.name} {self.argument}"


@dataclass(frozen=True)
class ResponseLine:
    """One classified line.

    `outcome` is set for anything a dialect recognises as a marker, even when
    the active command treats it as a continuation.
    """

    text: str
    kind: LineKind
    outcome: Outcome | None = None
    value: Any = None


@dataclass(frozen=True)
class ProtocolResult:
    command: Command
    lines: tuple[ResponseLine, ...]
    terminal: ResponseLine

    @property
    def outcome(self) -> Outcome | None:
        return self.terminal.outcome

    @property
    def value(self) -> Any:
        return self.terminal.value

    @property
    def messages(self) -> tuple[str, ...]:
        return tuple(line.text for line in self.lines)


@dataclass(frozen=True)
class DeviceSnapshot:
    count: int
    taken_at: float


@dataclass(frozen=True)
class MatchResult:
    found: bool
    template_id: int | None = None
    confidence: int = 0
    messages: tuple[str, ...] = ()


class EnrollStatus(str, Enum):
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass(frozen=True)
class EnrollmentOutcome:
    status: EnrollStatus
    messages: tuple[str, ...] = ()
    assigned_id: int | None = None
    recovered: bool = False
    template: str | None = None
