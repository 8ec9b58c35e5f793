"""Tests for strategy.movement_detector."""
from datetime import timedelta

import pytest

from helpers import NOW, make_market, moving_quotes, two_way
from shared.schemas import Direction
from strategy.movement_detector import MovementDetector, home_probability_series
from strategy.thresholds import V1_3


def test_series_needs_both_sides():
    quotes = two_way("a", 2.0, 1.9, at=NOW - timedelta(minutes=2)) + two_way("a", 1.9, 2.0, at=NOW)
    series = home_probability_series(quotes)
    assert len(series["a"]) == 3  # first home-only update emits nothing


def test_consensus_move_detected():
    detector = MovementDetector(V1_3)
    events = detector.detect(make_market(), moving_quotes(), NOW)
    assert len(events) == 1
    event = events[0]
    assert event.direction == Direction.UP
    assert event.backed_side == "home"
    assert event.consensus_count == 3
    assert event.sharp_count == 1
    # 0.50 -> 0.588 raw with a 1.05 overround
    assert event.magnitude == pytest.approx(0.088 / 1.05, rel=1e-6)
    assert event.velocity == pytest.approx(0.088 / 1.05 / 10, rel=1e-6)
    assert event.persistence == 1.0


def test_downward_move_backs_away():
    quotes = moving_quotes(home_from=0.588, home_to=0.50)
    events = MovementDetector(V1_3).detect(make_market(), quotes, NOW)
    assert len(events) == 1
    assert events[0].direction == Direction.DOWN
    assert events[0].backed_side == "away"


def test_small_move_ignored():
    quotes = moving_quotes(home_to=0.52)
    assert MovementDetector(V1_3).detect(make_market(), quotes, NOW) == []


def test_single_source_is_not_consensus():
    quotes = moving_quotes(sources=("pinnacle",))
    assert MovementDetector(V1_3).detect(make_market(), quotes, NOW) == []


def test_draw_capable_market_skipped():
    market = make_market(draw_capable=True)
    assert MovementDetector(V1_3).detect(market, moving_quotes(), NOW) == []


def test_overlapping_window_emits_once():
    detector = MovementDetector(V1_3)
    market = make_market()
    quotes = moving_quotes()
    assert len(detector.detect(market, quotes, NOW)) == 1
    assert detector.detect(market, quotes, NOW + timedelta(minutes=1)) == []


def test_next_window_can_fire_again():
    detector = MovementDetector(V1_3)
    market = make_market()
    assert len(detector.detect(market, moving_quotes(), NOW)) == 1
    later = moving_quotes(start=NOW, home_from=0.588, home_to=0.68)
    assert len(detector.detect(market, later, NOW + timedelta(minutes=10))) == 1


def test_reset_clears_emission_memory():
    detector = MovementDetector(V1_3)
    market = make_market()
    quotes = moving_quotes()
    detector.detect(market, quotes, NOW)
    detector.reset(market.market_key)
    assert len(detector.detect(market, quotes, NOW)) == 1
