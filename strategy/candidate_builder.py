"""Turn movement events into deduplicated candidate signals."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.normalize import normalize_key
from shared.schemas import MarketRef, MovementEvent, Signal
from storage.db import Database
from strategy.signal import confidence_score
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

NEW = "new"
SUPPRESSED = "suppressed"
RETRIGGER = "retrigger"
CONFLICT = "conflict"


@dataclass
class CandidateResult:
    """What the builder decided for one movement event.

    ``signal`` is the record to gate or persist; ``existing`` is the live row
    it was matched against, if any.
    """
    action: str
    signal: Signal
    existing: Optional[Signal] = None


def dedupe_key(league: str, home_team: str, away_team: str, market_type: str, start_time: datetime) -> str:
    parts = [
        normalize_key(league),
        normalize_key(home_team),
        normalize_key(away_team),
        normalize_key(market_type),
        start_time.astimezone(timezone.utc).isoformat(),
    ]
    return "|".join(parts)


def minutes_until(start_time: datetime, now: datetime) -> float:
    return (start_time - now).total_seconds() / 60.0


class CandidateBuilder:
    def __init__(self, db: Database, version: CoreLogicVersion):
        self.db = db
        self.version = version

    async def build(
        self,
        event: MovementEvent,
        market: MarketRef,
        book_probability: Optional[float],
        liquidity_estimate: Optional[float],
        now: datetime,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
    ) -> CandidateResult:
        home = home_team or market.home_team
        away = away_team or market.away_team
        # Keyed on the market's own team strings so a later mapping never forks the signal
        key = dedupe_key(
            market.league, market.home_team, market.away_team, market.market_type, market.start_time
        )
        confidence = confidence_score(event, liquidity_estimate, self.version)
        side = event.backed_side
        minutes = minutes_until(market.start_time, now)

        existing = await self.db.get_live_signal(key)
        if existing is None:
            signal = Signal(
                dedupe_key=key,
                market_key=market.market_key,
                league=market.league,
                sport=market.sport,
                home_team=home,
                away_team=away,
                market_type=market.market_type,
                start_time=market.start_time,
                side=side,
                direction=event.direction,
                confidence=confidence,
                raw_confidence=confidence,
                book_implied_probability=book_probability,
                minutes_to_start=minutes,
                liquidity_estimate=liquidity_estimate,
                consensus_count=event.consensus_count,
                sharp_count=event.sharp_count,
                magnitude=event.magnitude,
                velocity=event.velocity,
                condition_id=market.condition_id,
                market_url=market.market_url,
                core_logic_version=self.version.version,
                created_at=now,
                updated_at=now,
                last_event_at=now,
            )
            return CandidateResult(action=NEW, signal=signal)

        if existing.side != side:
            logger.info(
                "Conflicting movement suppressed",
                extra={"signal_id": existing.id, "dedupe_key": key, "side": side},
            )
            return CandidateResult(action=CONFLICT, signal=existing, existing=existing)

        cooldown = timedelta(minutes=self.version.cooldown_minutes)
        if now - existing.last_event_at < cooldown:
            raw = max(existing.ungated_confidence, confidence)
            merged = existing.model_copy(update={
                "confidence": raw,
                "raw_confidence": raw,
                "consensus_count": max(existing.consensus_count, event.consensus_count),
                "sharp_count": max(existing.sharp_count, event.sharp_count),
                "magnitude": max(existing.magnitude, event.magnitude),
                "velocity": max(existing.velocity, event.velocity),
                "book_implied_probability": book_probability if book_probability is not None
                else existing.book_implied_probability,
                "liquidity_estimate": liquidity_estimate if liquidity_estimate is not None
                else existing.liquidity_estimate,
                "minutes_to_start": minutes,
            })
            logger.info(
                "Movement suppressed by cooldown",
                extra={
                    "signal_id": existing.id,
                    "dedupe_key": key,
                    "confidence": merged.confidence,
                },
            )
            return CandidateResult(action=SUPPRESSED, signal=merged, existing=existing)

        retriggered = existing.model_copy(update={
            "confidence": confidence,
            "raw_confidence": confidence,
            "consensus_count": event.consensus_count,
            "sharp_count": event.sharp_count,
            "magnitude": event.magnitude,
            "velocity": event.velocity,
            "book_implied_probability": book_probability,
            "liquidity_estimate": liquidity_estimate,
            "minutes_to_start": minutes,
            "last_event_at": now,
        })
        return CandidateResult(action=RETRIGGER, signal=retriggered, existing=existing)
