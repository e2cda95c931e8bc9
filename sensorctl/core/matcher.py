"""Zone-weighted correlation score between two sensor templates.

A template is the 512-byte feature buffer the sensor exports, carried as
1024 hex characters. The buffer is split into four byte ranges. Each range
contributes a zero-mean normalized correlation mapped to [0, 1], and the
ranges are combined with fixed weights into a 0-100 score.

Ranges are inclusive and overlap at offsets 200 and 350.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

import numpy as np

TEMPLATE_BYTES = 512
TEMPLATE_HEX_CHARS = TEMPLATE_BYTES * 2
DEFAULT_MATCH_THRESHOLD = 65

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
# Absorbs float rounding so an exact self-match floors to 100, not 99.
_EPSILON = 1e-9


@dataclass(frozen=True)
class Zone:
    name: str
    start: int
    end: int
    weight: float

    def slice(self, data: np.ndarray) -> np.ndarray:
        return data[self.start : self.end + 1]


ZONES: tuple[Zone, ...] = (
    Zone("header", 0, 8, 0.5),
    Zone("primary", 9, 200, 3.0),
    Zone("secondary", 200, 350, 2.0),
    Zone("tail", 350, 511, 1.0),
)
_TOTAL_WEIGHT = sum(zone.weight for zone in ZONES)


def decode_template(text: object) -> np.ndarray | None:
    """Decode a hex template to 512 unsigned values, or None if malformed."""
    if not isinstance(text, str) or len(text) != TEMPLATE_HEX_CHARS:
        return None
    if not _HEX_RE.fullmatch(text):
        return None
    return np.frombuffer(bytes.fromhex(text), dtype=np.uint8).astype(np.float64)


def zone_similarity(first: np.ndarray, second: np.ndarray) -> float:
    """Correlation of two equal-length samples mapped from [-1, 1] to [0, 1].

    Zero variance on either side scores 0.
    """
    a = first - first.mean()
    b = second - second.mean()
    energy = float(np.dot(a, a)) * float(np.dot(b, b))
    if energy == 0.0:
        return 0.0
    r = float(np.dot(a, b)) / math.sqrt(energy)
    r = max(-1.0, min(1.0, r))
    return (r + 1.0) / 2.0


def compare(first: object, second: object) -> int:
    """Score two hex templates from 0 (unrelated or malformed) to 100."""
    a = decode_template(first)
    b = decode_template(second)
    if a is None or b is None:
        return 0

    weighted = 0.0
    for zone in ZONES:
        weighted += zone_similarity(zone.slice(a), zone.slice(b)) * zone.weight
    return int(math.floor(100.0 * weighted / _TOTAL_WEIGHT + _EPSILON))
