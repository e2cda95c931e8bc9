"""Wire dialects spoken by the terminal firmware.

A dialect classifies each received line as banner, continuation or terminal
marker, and renders the same tokens for transports that receive structured
responses (the HTTP tunnel) instead of raw lines.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from sensorctl.core.model import LineKind, Outcome, ResponseLine

Rule = tuple[re.Pattern[str], Outcome, Callable[[re.Match[str]], Any]]

_TEMPLATE_RE = re.compile(r"^TEMPLATE:([0-9A-Fa-f]+)$")


def _no_value(_: re.Match[str]) -> None:
    return None


def _first_int(match: re.Match[str]) -> int:
    return int(match.group(1))


def _id_and_confidence(match: re.Match[str]) -> tuple[int, int]:
    return int(match.group(1)), int(match.group(2))


def _text(match: re.Match[str]) -> str:
    return match.group(1).strip()


def _whole_line(match: re.Match[str]) -> str:
    return match.group(0)


class Dialect(ABC):
    name = ""
    ready_sentinel = ""
    banner_prefixes: tuple[str, ...] = ()
    rules: tuple[Rule, ...] = ()

    def is_ready(self, line: str) -> bool:
        return line.startswith(self.ready_sentinel)

    def is_banner(self, line: str) -> bool:
        return line.startswith(self.banner_prefixes)

    def classify(self, line: str) -> ResponseLine:
        """Classify one stripped line.

        Lines matching a marker come back as TERMINAL with their parsed value;
        whether the marker ends collection is decided per command.
        """
        if self.is_banner(line):
            return ResponseLine(text=line, kind=LineKind.BANNER)
        for pattern, outcome, extract in self.rules:
            match = pattern.search(line)
            if match:
                return ResponseLine(
                    text=line,
                    kind=LineKind.TERMINAL,
                    outcome=outcome,
                    value=extract(match),
                )
        return ResponseLine(text=line, kind=LineKind.CONTINUATION)

    @abstractmethod
    def render_ready(self, detail: str = "") -> str:
        """Line announcing the firmware finished booting."""

    def render_pong(self) -> str:
        return "PONG"

    @abstractmethod
    def render_count(self, count: int) -> str:
        """Template count reply."""

    @abstractmethod
    def render_deleted(self) -> str:
        """Single-template delete success."""

    @abstractmethod
    def render_emptied(self) -> str:
        """Database wipe success."""

    @abstractmethod
    def render_enrolled(self, template_id: int) -> str:
        """Enroll success carrying the stored id."""

    @abstractmethod
    def render_error(self, message: str) -> str:
        """Device error terminal."""

    @abstractmethod
    def render_match(self, template_id: int, confidence: int) -> str:
        """Sensor-side verify hit."""

    @abstractmethod
    def render_no_match(self) -> str:
        """Sensor-side verify miss."""

    def render_template(self, template_hex: str) -> str:
        return f"TEMPLATE:{template_hex}"

    @abstractmethod
    def render_card(self, uid: str) -> str:
        """RFID card read."""


_VERBOSE_ERRORS = (
    "Could not clear database",
    "Could not delete in that location",
    "No finger detected",
    "Image too messy",
    "Unknown error",
    "Communication error",
    "Error writing to flash",
    "Could not store in that location",
    "Fingerprints did not match",
    "Could not find fingerprint features",
    "Imaging error",
    "No card detected",
)


class VerboseDialect(Dialect):
    """Human-readable messages printed by the Adafruit-style sketch."""

    name = "verbose"
    ready_sentinel = "READY:"
    banner_prefixes = ("READY:", "SENSOR_OK", "SENSOR_NOT_FOUND")
    rules = (
        (re.compile(r"^PONG$"), Outcome.PONG, _no_value),
        (re.compile(r"(\d+) templates$"), Outcome.COUNT, _first_int),
        (re.compile(r"^(Deleted!|Database emptied!)$"), Outcome.SUCCESS, _text),
        (
            re.compile(r"^Found ID #(\d+) with confidence of (\d+)$"),
            Outcome.MATCH,
            _id_and_confidence,
        ),
        (re.compile(r"^Did not find a match$"), Outcome.NOT_FOUND, _no_value),
        (re.compile(r"^(\d+)$"), Outcome.NUMERIC_ID, _first_int),
        (_TEMPLATE_RE, Outcome.TEMPLATE_PAYLOAD, _text),
        (re.compile(r"^Card UID: (\S+)$"), Outcome.CARD, _text),
        (re.compile(r"^Error: (.*)$"), Outcome.DEVICE_ERROR, _text),
        (
            re.compile("^(?:" + "|".join(re.escape(e) for e in _VERBOSE_ERRORS) + ")$"),
            Outcome.DEVICE_ERROR,
            _whole_line,
        ),
    )

    def render_ready(self, detail: str = "") -> str:
        return f"READY:{detail}"

    def render_count(self, count: int) -> str:
        return f"Sensor contains {count} templates"

    def render_deleted(self) -> str:
        return "Deleted!"

    def render_emptied(self) -> str:
        return "Database emptied!"

    def render_enrolled(self, template_id: int) -> str:
        return str(template_id)

    def render_error(self, message: str) -> str:
        return f"Error: {message}"

    def render_match(self, template_id: int, confidence: int) -> str:
        return f"Found ID #{template_id} with confidence of {confidence}"

    def render_no_match(self) -> str:
        return "Did not find a match"

    def render_card(self, uid: str) -> str:
        return f"Card UID: {uid}"


class CompactDialect(Dialect):
    """Machine-oriented `KEY:value` tokens."""

    name = "compact"
    ready_sentinel = "READY"
    banner_prefixes = ("READY", "SENSOR_OK", "SENSOR_NOT_FOUND")
    rules = (
        (re.compile(r"^PONG$"), Outcome.PONG, _no_value),
        (re.compile(r"^COUNT:(\d+)$"), Outcome.COUNT, _first_int),
        (re.compile(r"^SUCCESS:(.*)$"), Outcome.SUCCESS, _text),
        (re.compile(r"^ERROR:(.*)$"), Outcome.DEVICE_ERROR, _text),
        (re.compile(r"^VERIFIED:(\d+):(\d+)$"), Outcome.MATCH, _id_and_confidence),
        (re.compile(r"^NOT_FOUND$"), Outcome.NOT_FOUND, _no_value),
        (_TEMPLATE_RE, Outcome.TEMPLATE_PAYLOAD, _text),
        (re.compile(r"^CARD:(\S+)$"), Outcome.CARD, _text),
    )

    def render_ready(self, detail: str = "") -> str:
        return f"READY:{detail}" if detail else "READY"

    def render_count(self, count: int) -> str:
        return f"COUNT:{count}"

    def render_deleted(self) -> str:
        return "SUCCESS:DELETED"

    def render_emptied(self) -> str:
        return "SUCCESS:EMPTIED"

    def render_enrolled(self, template_id: int) -> str:
        return f"SUCCESS:{template_id}"

    def render_error(self, message: str) -> str:
        return f"ERROR:{message}"

    def render_match(self, template_id: int, confidence: int) -> str:
        return f"VERIFIED:{template_id}:{confidence}"

    def render_no_match(self) -> str:
        return "NOT_FOUND"

    def render_card(self, uid: str) -> str:
        return f"CARD:{uid}"


DIALECTS: dict[str, Dialect] = {
    VerboseDialect.name: VerboseDialect(),
    CompactDialect.name: CompactDialect(),
}


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name]
    except KeyError:
        available = ", ".join(sorted(DIALECTS))
        raise ValueError(f"Unknown dialect '{name}'. Available: {available}") from None
