"""Tests for strategy.candidate_builder."""
from datetime import datetime, timedelta, timezone

import pytest

from helpers import NOW, make_event, make_market
from shared.schemas import Direction, SignalState
from strategy.candidate_builder import (
    CONFLICT,
    NEW,
    RETRIGGER,
    SUPPRESSED,
    CandidateBuilder,
    dedupe_key,
    minutes_until,
)
from strategy.thresholds import V1_3


def test_dedupe_key_normalizes_names_and_timezone():
    start_utc = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)
    start_est = start_utc.astimezone(timezone(timedelta(hours=-5)))
    a = dedupe_key("NBA", "Boston Celtics", "New York Knicks", "h2h", start_utc)
    b = dedupe_key("nba", "boston celtics.", "New York  Knicks", "H2H", start_est)
    assert a == b
    assert a.startswith("nba|boston celtics|new york knicks|h2h|")


def test_minutes_until():
    assert minutes_until(NOW + timedelta(hours=1), NOW) == 60.0


async def _create(db, builder, now=NOW):
    result = await builder.build(make_event(), make_market(), 0.56, 20000.0, now)
    signal = result.signal.model_copy(update={"state": SignalState.WATCH, "state_reason": "test"})
    signal_id = await db.create_signal(signal)
    return result, signal_id


@pytest.mark.asyncio
async def test_new_candidate(db):
    builder = CandidateBuilder(db, V1_3)
    result = await builder.build(make_event(), make_market(), 0.56, 20000.0, NOW)
    assert result.action == NEW
    assert result.existing is None
    signal = result.signal
    assert signal.side == "home"
    assert signal.core_logic_version == "v1.3"
    assert signal.minutes_to_start == 120.0
    assert signal.book_implied_probability == 0.56
    assert 0 <= signal.confidence <= 100


@pytest.mark.asyncio
async def test_same_direction_within_cooldown_suppressed(db):
    builder = CandidateBuilder(db, V1_3)
    _, signal_id = await _create(db, builder)

    stronger = make_event(consensus_count=4, sharp_count=2, magnitude=0.1)
    later = NOW + timedelta(minutes=5)
    result = await builder.build(stronger, make_market(), 0.57, 20000.0, later)
    assert result.action == SUPPRESSED
    assert result.existing.id == signal_id
    # Metrics merge upward, cooldown clock is not reset
    assert result.signal.sharp_count == 2
    assert result.signal.confidence >= result.existing.confidence
    assert result.signal.last_event_at == result.existing.last_event_at


@pytest.mark.asyncio
async def test_opposite_direction_is_conflict(db):
    builder = CandidateBuilder(db, V1_3)
    await _create(db, builder)
    down = make_event(direction=Direction.DOWN)
    result = await builder.build(down, make_market(), 0.44, 20000.0, NOW + timedelta(minutes=5))
    assert result.action == CONFLICT
    assert result.signal.side == "home"


@pytest.mark.asyncio
async def test_retrigger_after_cooldown(db):
    builder = CandidateBuilder(db, V1_3)
    await _create(db, builder)
    later = NOW + timedelta(minutes=V1_3.cooldown_minutes + 1)
    result = await builder.build(make_event(), make_market(), 0.58, 20000.0, later)
    assert result.action == RETRIGGER
    assert result.signal.last_event_at == later
    assert result.signal.book_implied_probability == 0.58


@pytest.mark.asyncio
async def test_suppressed_merge_uses_ungated_confidence(db):
    builder = CandidateBuilder(db, V1_3)
    result, signal_id = await _create(db, builder)
    raw = result.signal.confidence
    # Stored confidence carries a provider penalty; the raw score does not
    await db.update_signal_metrics(
        result.signal.model_copy(update={"id": signal_id, "confidence": raw - 10.0})
    )

    weaker = make_event(consensus_count=2, magnitude=0.05, velocity=0.005, persistence=0.5)
    merged = await builder.build(weaker, make_market(), 0.56, 20000.0, NOW + timedelta(minutes=5))
    assert merged.action == SUPPRESSED
    assert merged.existing.confidence == pytest.approx(raw - 10.0)
    assert merged.signal.confidence == pytest.approx(raw)
    assert merged.signal.raw_confidence == pytest.approx(raw)


@pytest.mark.asyncio
async def test_key_stays_on_market_names_when_teams_map(db):
    builder = CandidateBuilder(db, V1_3)
    market = make_market(home_team="BOS", away_team="NYK")
    held = await builder.build(make_event(), market, 0.56, 20000.0, NOW)
    await db.create_signal(held.signal.model_copy(update={"state": SignalState.WATCH}))

    mapped = await builder.build(
        make_event(), market, 0.56, 20000.0, NOW + timedelta(minutes=5),
        home_team="Boston Celtics", away_team="New York Knicks",
    )
    assert mapped.action == SUPPRESSED
    assert mapped.signal.dedupe_key == held.signal.dedupe_key
    assert held.signal.dedupe_key.startswith("nba|bos|nyk|h2h|")
