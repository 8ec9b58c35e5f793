"""Tests for strategy.quality_gate and strategy.rate_limiter."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from helpers import NOW, make_market, make_signal, two_way
from shared.schemas import LiquidityReport, PolyDataStatus, ProviderReading, SignalState
from strategy.quality_gate import (
    RATE_LIMITED,
    TEAM_MATCH_FAILURE,
    QualityGate,
    apply_degradation,
    check_quote_integrity,
    classify,
    reason_tags,
)
from strategy.rate_limiter import PromotionRateLimiter
from strategy.thresholds import V1_0, V1_3


def _boundary(**overrides):
    fields = dict(confidence=55.0, book_implied_probability=0.50, minutes_to_start=10.0)
    fields.update(overrides)
    return make_signal(**fields)


def _report(status=PolyDataStatus.OK, reachable=True):
    return LiquidityReport(
        readings=[ProviderReading(provider="gamma", reachable=reachable, liquidity=20000.0)],
        liquidity_estimate=20000.0,
        status=status,
    )


def _limiter(capacity=True):
    limiter = MagicMock()
    limiter.has_capacity = AsyncMock(return_value=capacity)
    return limiter


def test_s2_at_exact_floors():
    assert classify(_boundary(), V1_3) == (SignalState.S2_EXECUTION_ELIGIBLE, "s2_floors_met")


def test_confidence_just_below_floor_is_s1():
    state, reason = classify(_boundary(confidence=54.0), V1_3)
    assert state == SignalState.S1_PROMOTE
    assert reason == "s1_band:confidence"


def test_probability_just_below_floor_is_s1():
    state, reason = classify(_boundary(book_implied_probability=0.49), V1_3)
    assert state == SignalState.S1_PROMOTE
    assert reason == "s1_band:probability"


def test_close_to_start_is_s1():
    state, reason = classify(_boundary(minutes_to_start=9.0), V1_3)
    assert state == SignalState.S1_PROMOTE
    assert reason == "s1_band:time"


def test_below_every_band_is_watch():
    signal = _boundary(confidence=30.0, book_implied_probability=0.40, minutes_to_start=2.0)
    assert classify(signal, V1_3) == (SignalState.WATCH, "below_s1_bands")


def test_hard_rejects():
    assert classify(_boundary(), V1_3, draw_capable=True)[0] == SignalState.REJECT
    assert classify(_boundary(sharp_count=0), V1_3) == (SignalState.REJECT, "no_sharp_sources")
    assert classify(_boundary(minutes_to_start=-1.0), V1_3) == (SignalState.REJECT, "event_started")
    assert classify(_boundary(), V1_3, integrity_issue="stale_quotes") == (
        SignalState.REJECT, "stale_quotes"
    )


def test_team_mismatch_depends_on_version():
    assert classify(_boundary(), V1_3, teams_matched=False) == (SignalState.WATCH, TEAM_MATCH_FAILURE)
    assert classify(_boundary(), V1_0, teams_matched=False) == (SignalState.REJECT, "unresolved_team")


def test_missing_probability_is_watch():
    signal = _boundary(book_implied_probability=None)
    assert classify(signal, V1_3) == (SignalState.WATCH, "insufficient_book_data")


def test_no_reachable_provider_holds_at_s1():
    state, reason = classify(_boundary(), V1_3, providers_reachable=False)
    assert state == SignalState.S1_PROMOTE
    assert reason == "providers_unavailable"


def test_degradation():
    assert apply_degradation(80.0, _report(PolyDataStatus.DEGRADED), V1_3) == (65.0, PolyDataStatus.DEGRADED)
    assert apply_degradation(80.0, _report(PolyDataStatus.UNAVAILABLE), V1_3)[0] == 65.0
    assert apply_degradation(80.0, _report(PolyDataStatus.DISAGREE), V1_3)[0] == 70.0
    assert apply_degradation(50.0, _report(), V1_3) == (50.0, PolyDataStatus.OK)


def test_quote_integrity():
    fresh = two_way("a", 1.9, 1.9, at=NOW)
    assert check_quote_integrity(fresh, NOW, V1_3) is None
    clash = fresh + two_way("a", 2.0, 1.8, at=NOW)
    assert check_quote_integrity(clash, NOW, V1_3) == "duplicate_timestamps"
    old = two_way("a", 1.9, 1.9, at=NOW - timedelta(hours=1))
    assert check_quote_integrity(old, NOW, V1_3) == "stale_quotes"
    assert check_quote_integrity([], NOW, V1_3) == "stale_quotes"


def test_reason_tags():
    assert reason_tags("rate_limited;degraded") == ["rate_limited", "degraded"]
    assert reason_tags("") == []


@pytest.mark.asyncio
async def test_evaluate_rate_limited_s2_held_at_s1():
    gate = QualityGate(V1_3, _limiter(capacity=False))
    decision = await gate.evaluate(_boundary(), make_market(), _report(), NOW)
    assert decision.state == SignalState.S1_PROMOTE
    assert decision.reason == RATE_LIMITED


@pytest.mark.asyncio
async def test_evaluate_tags_degraded_providers():
    gate = QualityGate(V1_3, _limiter())
    signal = _boundary(confidence=80.0)
    decision = await gate.evaluate(signal, make_market(), _report(PolyDataStatus.DEGRADED), NOW)
    assert decision.state == SignalState.S2_EXECUTION_ELIGIBLE
    assert decision.confidence == 65.0
    assert decision.reason == "s2_floors_met;degraded"
    assert decision.poly_data_status == PolyDataStatus.DEGRADED


@pytest.mark.asyncio
async def test_evaluate_disagreement_can_drop_below_floor():
    gate = QualityGate(V1_3, _limiter())
    signal = _boundary(confidence=60.0)
    decision = await gate.evaluate(signal, make_market(), _report(PolyDataStatus.DISAGREE), NOW)
    assert decision.confidence == 50.0
    assert decision.state == SignalState.S1_PROMOTE


@pytest.mark.asyncio
async def test_auto_promote_on_confidence_crossing():
    gate = QualityGate(V1_3, _limiter())
    before = make_signal(state=SignalState.S1_PROMOTE, confidence=50.0)
    after = before.model_copy(update={"confidence": 56.0})
    assert await gate.auto_promote(before, after, NOW) == "auto_promote:confidence_crossed"


@pytest.mark.asyncio
async def test_auto_promote_on_sharp_source_joining():
    gate = QualityGate(V1_3, _limiter())
    before = make_signal(state=SignalState.S1_PROMOTE, confidence=50.0, sharp_count=2)
    after = before.model_copy(update={"sharp_count": V1_3.auto_promote_books})
    assert await gate.auto_promote(before, after, NOW) == "auto_promote:sharp_source_joined"


@pytest.mark.asyncio
async def test_auto_promote_needs_sharp_count_to_reach_threshold():
    gate = QualityGate(V1_3, _limiter())
    before = make_signal(state=SignalState.S1_PROMOTE, confidence=50.0, sharp_count=1)
    second_book = before.model_copy(update={"sharp_count": 2})
    assert await gate.auto_promote(before, second_book, NOW) is None

    already_there = before.model_copy(update={"sharp_count": 3})
    more = already_there.model_copy(update={"sharp_count": 4})
    assert await gate.auto_promote(already_there, more, NOW) is None


@pytest.mark.asyncio
async def test_auto_promote_never_demotes_or_repeats():
    gate = QualityGate(V1_3, _limiter())
    s2 = make_signal(state=SignalState.S2_EXECUTION_ELIGIBLE, confidence=40.0)
    assert await gate.auto_promote(s2, s2, NOW) is None

    before = make_signal(state=SignalState.S1_PROMOTE, confidence=56.0)
    weaker = before.model_copy(update={"confidence": 45.0})
    assert await gate.auto_promote(before, weaker, NOW) is None


@pytest.mark.asyncio
async def test_auto_promote_blocked():
    before = make_signal(state=SignalState.S1_PROMOTE, confidence=50.0)
    after = before.model_copy(update={"confidence": 56.0})

    assert await QualityGate(V1_3, _limiter(capacity=False)).auto_promote(before, after, NOW) is None

    gate = QualityGate(V1_3, _limiter())
    unavailable = after.model_copy(update={"poly_data_status": PolyDataStatus.UNAVAILABLE})
    assert await gate.auto_promote(before, unavailable, NOW) is None

    too_late = NOW + timedelta(hours=2) - timedelta(minutes=5)
    assert await gate.auto_promote(before, after, too_late) is None


@pytest.mark.asyncio
async def test_auto_promote_when_capacity_frees():
    gate = QualityGate(V1_3, _limiter())
    held = make_signal(state=SignalState.S1_PROMOTE, state_reason=RATE_LIMITED, confidence=70.0)
    assert await gate.auto_promote(held, held, NOW) == "auto_promote:capacity_freed"


@pytest.mark.asyncio
async def test_rate_limiter_global_cap():
    db = MagicMock()
    db.count_s2_promotions = AsyncMock(return_value=V1_3.max_s2_per_hour)
    limiter = PromotionRateLimiter(db, V1_3)
    assert await limiter.has_capacity("nba", NOW) is False
    db.count_s2_promotions.assert_awaited_once()


@pytest.mark.asyncio
async def test_rate_limiter_sport_cap():
    db = MagicMock()
    db.count_s2_promotions = AsyncMock(side_effect=[3, V1_3.max_s2_per_sport_per_hour])
    limiter = PromotionRateLimiter(db, V1_3)
    assert await limiter.has_capacity("nba", NOW) is False
    _, kwargs = db.count_s2_promotions.await_args
    assert kwargs["sport"] == "nba"


@pytest.mark.asyncio
async def test_rate_limiter_has_capacity():
    db = MagicMock()
    db.count_s2_promotions = AsyncMock(side_effect=[3, 2])
    limiter = PromotionRateLimiter(db, V1_3)
    assert await limiter.has_capacity("nba", NOW) is True
    since = db.count_s2_promotions.await_args_list[0].args[0]
    assert since == NOW - timedelta(hours=1)
