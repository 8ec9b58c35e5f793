"""Tests for strategy.signal."""
import pytest

from helpers import make_event
from strategy.signal import (
    confidence_score,
    score_consensus,
    score_liquidity,
    score_magnitude,
    score_persistence,
)
from strategy.thresholds import V1_3


def test_score_consensus():
    # 1 sharp + 2 soft = 2 effective of 4
    assert score_consensus(3, 1) == 0.5
    assert score_consensus(4, 4) == 1.0
    assert score_consensus(10, 10) == 1.0
    assert score_consensus(0, 0) == 0.0


def test_score_magnitude_saturates_at_twice_threshold():
    assert score_magnitude(0.05, 0.05) == 0.5
    assert score_magnitude(0.2, 0.05) == 1.0
    assert score_magnitude(-0.05, 0.05) == 0.5


def test_score_persistence_clamped():
    assert score_persistence(1.5) == 1.0
    assert score_persistence(-0.2) == 0.0


def test_score_liquidity():
    assert score_liquidity(None, 5000) == 0.5
    assert score_liquidity(10000, 5000) == 1.0
    assert score_liquidity(2500, 5000) == 0.5
    assert score_liquidity(0, 5000) == 0.0


def test_confidence_score():
    # 0.5*35 + 0.84*25 + 1*20 + 0.5*20 = 68.5
    assert confidence_score(make_event(), None, V1_3) == pytest.approx(68.5)


def test_confidence_score_bounded():
    strong = make_event(consensus_count=8, sharp_count=8, magnitude=0.5)
    assert confidence_score(strong, 1e9, V1_3) == 100.0
    weak = make_event(consensus_count=0, sharp_count=0, magnitude=0.0, persistence=0.0)
    assert confidence_score(weak, 0.0, V1_3) == 0.0
