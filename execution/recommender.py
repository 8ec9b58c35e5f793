"""Recommendation cycle: S2 signals -> priced, costed, sized and selected bets."""
import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Union

from execution.execution_engine import analyze
from execution.portfolio import PortfolioCandidate, PortfolioSelector, bet_score
from execution.position_sizer import size_position
from feeds.feed_aggregator import LiquidityAggregator
from feeds.instrument_resolver import InstrumentResolver
from feeds.polymarket_odds import ClobPriceClient
from shared.schemas import (
    BetResult,
    CycleReport,
    ExecutionDecision,
    InstrumentQuery,
    InstrumentResolution,
    RecommendedBet,
    Rejection,
    RejectionReason,
    Signal,
    SignalState,
    utcnow,
)
from storage.db import Database
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

NO_BETS_MESSAGE = "No bets met criteria"


def confidence_tier(confidence: float) -> str:
    if confidence >= 75:
        return "high"
    if confidence >= 60:
        return "medium"
    return "low"


def instrument_query(signal: Signal) -> InstrumentQuery:
    return InstrumentQuery(
        condition_id=signal.condition_id,
        market_url=signal.market_url,
        team_home=signal.home_team,
        team_away=signal.away_team,
        sport=signal.sport or None,
    )


def settlement_profit(result: BetResult, stake_units: float, odds: float) -> Optional[float]:
    if result == BetResult.WON:
        return round(stake_units * (odds - 1.0), 4)
    if result == BetResult.LOST:
        return -stake_units
    if result == BetResult.VOID:
        return 0.0
    return None


class Recommender:
    """Runs recommendation cycles and records the human-driven bet lifecycle."""

    def __init__(
        self,
        db: Database,
        resolver: InstrumentResolver,
        prices: ClobPriceClient,
        version: CoreLogicVersion,
        liquidity: Optional[LiquidityAggregator] = None,
        bankroll: float = 100.0,
        stake_usd: float = 100.0,
    ):
        self.db = db
        self.resolver = resolver
        self.prices = prices
        self.version = version
        self.liquidity = liquidity
        self.bankroll = bankroll
        self.stake_usd = stake_usd

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        now = now or utcnow()
        cycle_id = f"cycle-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"
        report = CycleReport(cycle_id=cycle_id, core_logic_version=self.version.version)

        signals = []
        for s in await self.db.get_signals(SignalState.S2_EXECUTION_ELIGIBLE, limit=500):
            if not await self.db.has_recommendation_for_signal(s.id):
                signals.append(s)
        report.signals_considered = len(signals)

        resolutions = await self.resolver.resolve_many([instrument_query(s) for s in signals], now)
        outcomes = await asyncio.gather(
            *(self._evaluate(s, r, now) for s, r in zip(signals, resolutions)),
            return_exceptions=True,
        )

        candidates: list[PortfolioCandidate] = []
        for signal, outcome in zip(signals, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Signal evaluation failed: {outcome!r}",
                    extra={"signal_id": signal.id},
                )
                report.rejected.append(Rejection(
                    signal_id=signal.id,
                    event_name=signal.event_name,
                    reason=RejectionReason.ERROR,
                    detail=str(outcome) or type(outcome).__name__,
                ))
            elif isinstance(outcome, Rejection):
                report.rejected.append(outcome)
                if outcome.reason == RejectionReason.EDGE_COLLAPSED:
                    report.expired_signal_ids.append(signal.id)
            else:
                candidates.append(outcome)

        day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        existing_exposure = await self.db.get_exposure_since(day_start)
        selection = PortfolioSelector(self.version, self.bankroll).select(candidates, existing_exposure)
        report.rejected.extend(selection.rejected)

        for c in selection.accepted:
            bet = c.payload["bet"].model_copy(update={
                "cycle_id": cycle_id,
                "bet_score": c.bet_score,
                "stake_units": c.stake_units,
                "rationale": "; ".join([c.payload["bet"].rationale] + c.penalties),
                "created_at": now,
            })
            bet.id = await self.db.save_recommendation(bet)
            report.accepted.append(bet)
            report.total_stake_units += bet.stake_units
            report.expected_value_units += bet.stake_units * (bet.fair_probability * bet.odds - 1.0)

        report.total_stake_units = round(report.total_stake_units, 4)
        report.expected_value_units = round(report.expected_value_units, 4)
        report.rejection_counts = dict(Counter(r.reason.value for r in report.rejected))
        if not report.accepted:
            if report.signals_considered == 0:
                report.message = f"{NO_BETS_MESSAGE}: no execution-eligible signals"
            else:
                summary = ", ".join(f"{k}={v}" for k, v in sorted(report.rejection_counts.items()))
                report.message = f"{NO_BETS_MESSAGE}: {summary}"
        else:
            report.message = f"{len(report.accepted)} bet(s) recommended"

        logger.info(
            "Recommendation cycle complete",
            extra={
                "cycle_id": cycle_id,
                "considered": report.signals_considered,
                "accepted": len(report.accepted),
                "rejected": len(report.rejected),
                "rejection_counts": report.rejection_counts,
                "total_stake_units": report.total_stake_units,
            },
        )
        return report

    async def _evaluate(
        self, signal: Signal, resolution: InstrumentResolution, now: datetime
    ) -> Union[PortfolioCandidate, Rejection]:
        def reject(reason: RejectionReason, detail: str) -> Rejection:
            return Rejection(
                signal_id=signal.id, event_name=signal.event_name, reason=reason, detail=detail
            )

        if not resolution.tradeable:
            return reject(RejectionReason.UNTRADEABLE, resolution.reason_if_untradeable)

        token_id = resolution.token_for(signal.side)
        price = await self.prices.get_midpoint(token_id)
        if price is None:
            return reject(RejectionReason.NO_PRICE, f"no midpoint for token {token_id}")
        fair = signal.book_implied_probability
        if fair is None:
            return reject(RejectionReason.NO_BET, "no fair probability on signal")

        volume = signal.liquidity_estimate or 0.0
        if self.liquidity is not None and resolution.condition_id:
            liquidity = await self.liquidity.report(resolution.condition_id)
            volume = liquidity.volume or liquidity.liquidity_estimate or volume

        raw_edge = (fair - price) * 100.0
        analysis = analyze(raw_edge, volume, self.stake_usd)

        if analysis.net_edge < self.version.expire_net_edge:
            await self.db.transition_signal(
                signal.id,
                SignalState.S2_EXECUTION_ELIGIBLE,
                SignalState.EXPIRED,
                f"net_edge_collapsed:{analysis.net_edge:.2f}",
                now,
            )
            return reject(
                RejectionReason.EDGE_COLLAPSED,
                f"net edge collapsed to {analysis.net_edge:.2f}pp; signal expired",
            )
        if analysis.decision == ExecutionDecision.NO_BET:
            return reject(RejectionReason.NO_BET, analysis.reason)

        kelly = size_position(price, analysis.net_edge, signal.confidence, self.bankroll, self.version)
        if kelly.stake_units <= 0:
            return reject(RejectionReason.STAKE_SUPPRESSED, "; ".join(kelly.warnings) or "zero stake")

        score = bet_score(
            analysis.net_edge, signal.confidence, analysis.liquidity_tier, self.version.bet_score_formula
        )
        bet = RecommendedBet(
            cycle_id="",
            signal_id=signal.id,
            instrument_ref=resolution.condition_id,
            token_id=token_id,
            league=signal.league,
            event_name=signal.event_name,
            side=signal.side,
            start_time=signal.start_time,
            odds=round(1.0 / price, 4),
            price=price,
            fair_probability=fair,
            edge=round(analysis.net_edge, 4),
            bet_score=score,
            stake_units=kelly.stake_units,
            confidence_tier=confidence_tier(signal.confidence),
            rationale=(
                f"{analysis.decision.value} {signal.backed_team}: {analysis.reason}, "
                f"confidence {signal.confidence:.0f}, kelly {kelly.sizing_tier}"
            ),
        )
        return PortfolioCandidate(
            signal_id=signal.id,
            event_key=signal.dedupe_key,
            event_name=signal.event_name,
            league=signal.league,
            start_time=signal.start_time,
            bet_score=score,
            stake_units=kelly.stake_units,
            payload={"bet": bet, "analysis": analysis, "kelly": kelly},
        )

    async def mark_placed(self, bet_id: int) -> bool:
        placed = await self.db.mark_placed(bet_id)
        if placed:
            logger.info("Recommendation marked placed", extra={"bet_id": bet_id})
        return placed

    async def settle(
        self, bet_id: int, result: BetResult, now: Optional[datetime] = None
    ) -> Optional[RecommendedBet]:
        """Attach an outcome to a recommendation and settle its signal."""
        now = now or utcnow()
        bet = await self.db.get_recommendation(bet_id)
        if bet is None:
            return None
        profit = settlement_profit(result, bet.stake_units, bet.odds)
        await self.db.settle_recommendation(bet_id, result, profit, now)

        if result != BetResult.PENDING:
            signal = await self.db.get_signal(bet.signal_id)
            if signal is not None and signal.state in (
                SignalState.S2_EXECUTION_ELIGIBLE, SignalState.EXPIRED
            ):
                await self.db.transition_signal(
                    signal.id, signal.state, SignalState.SETTLED, f"bet {result.value}", now
                )
        logger.info(
            "Recommendation settled",
            extra={"bet_id": bet_id, "result": result.value, "profit_units": profit},
        )
        return await self.db.get_recommendation(bet_id)
