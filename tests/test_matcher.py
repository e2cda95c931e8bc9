from __future__ import annotations

import numpy as np
import pytest

from sensorctl.core.matcher import ZONES, compare, decode_template


def _template(seed: int) -> str:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=512, dtype=np.uint8).tobytes().hex()


def test_identical_templates_score_100() -> None:
    template = _template(1)
    assert compare(template, template) == 100
    assert compare(template.upper(), template) == 100


def test_inverted_template_scores_0() -> None:
    data = bytes.fromhex(_template(2))
    inverted = bytes(255 - b for b in data).hex()
    assert compare(data.hex(), inverted) == 0


@pytest.mark.parametrize(
    "bad",
    ["", "ab" * 511, "ab" * 513, "zz" + "ab" * 511, " " + "ab" * 511 + "a", None, 42],
)
def test_malformed_input_scores_0(bad: object) -> None:
    assert compare(bad, _template(3)) == 0
    assert compare(_template(3), bad) == 0


def test_compare_is_symmetric() -> None:
    for seed in range(5):
        a, b = _template(seed), _template(seed + 100)
        assert compare(a, b) == compare(b, a)


def test_unrelated_templates_land_near_the_middle() -> None:
    score = compare(_template(10), _template(11))
    assert 35 <= score <= 65


def test_flat_zone_contributes_nothing() -> None:
    data = bytearray(bytes.fromhex(_template(4)))
    data[0:9] = bytes(9)
    template = data.hex()
    # Header weight 0.5 of 6.5 is lost: floor(100 * 6.0 / 6.5) == 92.
    assert compare(template, template) == 92


def test_zone_layout_overlaps_at_200_and_350() -> None:
    bounds = [(zone.start, zone.end, zone.weight) for zone in ZONES]
    assert bounds == [(0, 8, 0.5), (9, 200, 3.0), (200, 350, 2.0), (350, 511, 1.0)]


def test_decode_template_length() -> None:
    decoded = decode_template(_template(5))
    assert decoded is not None
    assert decoded.shape == (512,)
    assert decode_template("ab" * 100) is None
