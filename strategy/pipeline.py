"""Scan and refresh passes over the shared signal store.

Each market (scan) or signal (refresh) is an independent unit of work: a
failure is logged and counted, and the rest of the batch carries on.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from feeds.feed_aggregator import LiquidityAggregator
from feeds.instrument_resolver import InstrumentResolver
from shared.errors import ConcurrentUpdateError, InvalidTransitionError
from shared.schemas import (
    InstrumentQuery,
    LiquidityReport,
    MarketRef,
    MovementEvent,
    Quote,
    STATE_RANK,
    SignalState,
    utcnow,
)
from storage.db import Database
from strategy.candidate_builder import (
    CONFLICT,
    NEW,
    SUPPRESSED,
    CandidateBuilder,
    minutes_until,
)
from strategy.fair_probability import FairProbabilityEstimator
from strategy.movement_detector import MovementDetector
from strategy.quality_gate import (
    TEAM_MATCH_FAILURE,
    QualityGate,
    apply_degradation,
    check_quote_integrity,
    reason_tags,
)
from strategy.rate_limiter import PromotionRateLimiter
from strategy.team_resolution import TeamResolver
from strategy.thresholds import CoreLogicVersion, get_version

logger = logging.getLogger(__name__)


@dataclass
class PassReport:
    markets: int = 0
    events: int = 0
    created: int = 0
    suppressed: int = 0
    promoted: int = 0
    expired: int = 0
    errors: int = 0
    states: dict[str, int] = field(default_factory=dict)

    def count_state(self, state: SignalState):
        self.states[state.value] = self.states.get(state.value, 0) + 1


class SignalPipeline:
    """Quotes -> movement -> candidate -> gate -> persisted signal."""

    def __init__(
        self,
        db: Database,
        version: CoreLogicVersion,
        liquidity: LiquidityAggregator,
        resolver: Optional[InstrumentResolver] = None,
    ):
        self.db = db
        self.version = version
        self.liquidity = liquidity
        self.resolver = resolver
        self.estimator = FairProbabilityEstimator(version)
        self.detector = MovementDetector(version)
        self.builder = CandidateBuilder(db, version)
        self.gate = QualityGate(version, PromotionRateLimiter(db, version))
        self.teams = TeamResolver(db)

    async def scan(self, now: Optional[datetime] = None) -> PassReport:
        now = now or utcnow()
        report = PassReport()
        markets = await self.db.get_upcoming_markets(now)
        for market in markets:
            report.markets += 1
            try:
                await self.scan_market(market, now, report)
            except Exception:
                report.errors += 1
                logger.exception("Scan failed for market", extra={"market_key": market.market_key})
        logger.info("Scan complete", extra={"report": report.__dict__})
        return report

    async def scan_market(self, market: MarketRef, now: datetime, report: Optional[PassReport] = None):
        report = report or PassReport()
        if market.draw_capable:
            return
        since = now - timedelta(minutes=self.version.window)
        quotes = await self.db.get_quotes(market.market_key, since=since)
        for event in self.detector.detect(market, quotes, now):
            report.events += 1
            try:
                await self.process_event(event, market, quotes, now, report)
            except (InvalidTransitionError, ConcurrentUpdateError) as e:
                report.errors += 1
                logger.error(
                    f"Signal update rejected: {e}",
                    extra={"market_key": market.market_key},
                )

    async def process_event(
        self,
        event: MovementEvent,
        market: MarketRef,
        quotes: list[Quote],
        now: datetime,
        report: PassReport,
    ):
        home = await self.teams.resolve(market.league, market.home_team, now)
        away = await self.teams.resolve(market.league, market.away_team, now)
        teams_matched = home is not None and away is not None

        fair = self.estimator.estimate(market.market_key, quotes, collapse_draw=True)
        book_prob = fair.probabilities.get(event.backed_side) if fair.sufficient else None
        if not fair.sufficient:
            logger.info(
                "Insufficient data for fair probability",
                extra={"market_key": market.market_key, "reason": fair.reason},
            )

        market = await self._link_instrument(market, home, away)
        liquidity = await self.liquidity.report(market.condition_id)

        result = await self.builder.build(
            event, market, book_prob, liquidity.liquidity_estimate, now, home_team=home, away_team=away
        )
        if result.action == CONFLICT:
            report.suppressed += 1
            return
        if result.action == SUPPRESSED:
            report.suppressed += 1
            await self._feed_existing(result.existing, result.signal, liquidity, now, report)
            return

        integrity = check_quote_integrity(quotes, now, self.version)
        decision = await self.gate.evaluate(
            result.signal, market, liquidity, now, teams_matched=teams_matched, integrity_issue=integrity
        )
        signal = result.signal.model_copy(update={
            "confidence": decision.confidence,
            "poly_data_status": decision.poly_data_status,
            "condition_id": market.condition_id,
        })

        if result.action == NEW:
            signal = signal.model_copy(update={"state": decision.state, "state_reason": decision.reason})
            signal_id = await self.db.create_signal(signal)
            if signal_id is None:
                # Lost a race for the dedupe key; the winner's row stands
                report.suppressed += 1
                logger.info("Duplicate candidate dropped", extra={"dedupe_key": signal.dedupe_key})
                return
            report.created += 1
            report.count_state(decision.state)
            logger.info(
                "Signal created",
                extra={
                    "signal_id": signal_id,
                    "dedupe_key": signal.dedupe_key,
                    "state": decision.state.value,
                    "reason": decision.reason,
                    "confidence": decision.confidence,
                },
            )
            return

        # Re-triggered after cooldown: metrics refresh, state may only move up
        existing = result.existing
        await self.db.update_signal_metrics(signal)
        if STATE_RANK.get(decision.state, 0) > STATE_RANK[existing.state]:
            await self.db.transition_signal(
                existing.id, existing.state, decision.state, decision.reason, now
            )
            report.promoted += 1
            report.count_state(decision.state)

    async def _feed_existing(self, before, after, liquidity: LiquidityReport, now: datetime, report: PassReport):
        """Suppressed events still update the live signal and may auto-promote it."""
        v = get_version(after.core_logic_version)
        confidence, status = apply_degradation(after.ungated_confidence, liquidity, v)
        after = after.model_copy(update={"confidence": confidence, "poly_data_status": status})
        await self.db.update_signal_metrics(after)
        reason = await self.gate.auto_promote(before, after, now)
        if reason:
            await self.db.transition_signal(
                after.id, after.state, SignalState.S2_EXECUTION_ELIGIBLE, reason, now
            )
            report.promoted += 1

    async def _link_instrument(self, market: MarketRef, home: Optional[str], away: Optional[str]) -> MarketRef:
        if market.condition_id or self.resolver is None:
            return market
        query = InstrumentQuery(
            market_url=market.market_url,
            team_home=home or market.home_team,
            team_away=away or market.away_team,
            sport=market.sport or None,
        )
        resolution = await self.resolver.resolve(query)
        if not resolution.tradeable or not resolution.condition_id:
            return market
        await self.db.link_market_instrument(market.market_key, resolution.condition_id)
        return market.model_copy(update={"condition_id": resolution.condition_id})

    async def refresh(self, now: Optional[datetime] = None) -> PassReport:
        """Expire started events, release rate-limited holds, retry promotion on fresh liquidity."""
        now = now or utcnow()
        report = PassReport()

        for signal in await self.db.get_started_signals(now):
            try:
                await self.db.transition_signal(
                    signal.id, signal.state, SignalState.EXPIRED, "event_started", now
                )
                report.expired += 1
            except (InvalidTransitionError, ConcurrentUpdateError) as e:
                report.errors += 1
                logger.error(f"Expiry skipped: {e}", extra={"signal_id": signal.id})

        for signal in await self.db.get_live_signals():
            if signal.state == SignalState.S2_EXECUTION_ELIGIBLE:
                continue
            try:
                await self._refresh_signal(signal, now, report)
            except Exception:
                report.errors += 1
                logger.exception("Refresh failed for signal", extra={"signal_id": signal.id})

        logger.info("Refresh complete", extra={"report": report.__dict__})
        return report

    async def _refresh_signal(self, signal, now: datetime, report: PassReport):
        liquidity = await self.liquidity.report(signal.condition_id)
        updated = signal.model_copy(update={
            "minutes_to_start": minutes_until(signal.start_time, now),
            "liquidity_estimate": liquidity.liquidity_estimate
            if liquidity.liquidity_estimate is not None else signal.liquidity_estimate,
            "poly_data_status": liquidity.status,
        })
        await self.db.update_signal_metrics(updated)

        if signal.state == SignalState.WATCH:
            if TEAM_MATCH_FAILURE in reason_tags(signal.state_reason):
                await self._retry_team_hold(updated, liquidity, now, report)
            return

        reason = await self.gate.auto_promote(signal, updated, now)
        if reason:
            await self.db.transition_signal(
                signal.id, SignalState.S1_PROMOTE, SignalState.S2_EXECUTION_ELIGIBLE, reason, now
            )
            report.promoted += 1

    async def _retry_team_hold(self, signal, liquidity: LiquidityReport, now: datetime, report: PassReport):
        """Re-gate a WATCH signal held for a team mismatch once both names map."""
        home = await self.db.get_team_mapping(signal.league, signal.home_team)
        away = await self.db.get_team_mapping(signal.league, signal.away_team)
        if home is None or away is None:
            return
        market = await self.db.get_market(signal.market_key)
        if market is None:
            return
        gate = QualityGate(get_version(signal.core_logic_version), self.gate.rate_limiter)
        decision = await gate.evaluate(signal, market, liquidity, now, teams_matched=True)
        if STATE_RANK.get(decision.state, 0) > STATE_RANK[SignalState.WATCH]:
            await self.db.update_signal_metrics(
                signal.model_copy(update={"confidence": decision.confidence})
            )
            await self.db.transition_signal(
                signal.id, SignalState.WATCH, decision.state, f"mapping_confirmed;{decision.reason}", now
            )
            report.promoted += 1

    async def housekeeping(
        self, watch_retention: timedelta, quote_retention: timedelta, now: Optional[datetime] = None
    ) -> dict:
        now = now or utcnow()
        purged_watch = await self.db.purge_watch_signals(now - watch_retention)
        purged_quotes = await self.db.purge_quotes(now - quote_retention)
        logger.info(
            "Housekeeping complete",
            extra={"purged_watch": purged_watch, "purged_quotes": purged_quotes},
        )
        return {"purged_watch": purged_watch, "purged_quotes": purged_quotes}
