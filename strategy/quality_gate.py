"""Signal quality gate: REJECT / WATCH / S1_PROMOTE / S2_EXECUTION_ELIGIBLE.

Entry classification runs once per candidate (and again when a signal is
re-triggered after its cooldown). Auto-promotion moves S1 signals to S2 as
confirming data arrives and never moves anything down.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from shared.schemas import (
    LiquidityReport,
    MarketRef,
    PolyDataStatus,
    Quote,
    Signal,
    SignalState,
)
from strategy.rate_limiter import PromotionRateLimiter
from strategy.thresholds import CoreLogicVersion, get_version

logger = logging.getLogger(__name__)

RATE_LIMITED = "rate_limited"
TEAM_MATCH_FAILURE = "team_match_failure"


@dataclass
class GateDecision:
    state: SignalState
    reason: str
    confidence: float
    poly_data_status: PolyDataStatus = PolyDataStatus.OK


def reason_tags(reason: str) -> list[str]:
    return [t for t in (reason or "").split(";") if t]


def apply_degradation(
    confidence: float, report: LiquidityReport, version: CoreLogicVersion
) -> tuple[float, PolyDataStatus]:
    """Cap or penalize confidence according to provider health."""
    if report.status in (PolyDataStatus.DEGRADED, PolyDataStatus.UNAVAILABLE):
        return min(confidence, version.degraded_confidence_cap), report.status
    if report.status == PolyDataStatus.DISAGREE:
        return max(confidence - version.disagree_confidence_penalty, 0.0), report.status
    return confidence, report.status


def check_quote_integrity(
    quotes: Iterable[Quote], now: datetime, version: CoreLogicVersion
) -> Optional[str]:
    """'stale_quotes' or 'duplicate_timestamps' when the window cannot be trusted."""
    seen: dict[tuple[str, str, datetime], float] = {}
    newest: Optional[datetime] = None
    for q in quotes:
        key = (q.source_id, q.outcome, q.observed_at)
        if key in seen and seen[key] != q.price:
            return "duplicate_timestamps"
        seen[key] = q.price
        if newest is None or q.observed_at > newest:
            newest = q.observed_at
    if newest is None or now - newest > timedelta(minutes=version.stale_quote_minutes):
        return "stale_quotes"
    return None


def classify(
    signal: Signal,
    version: CoreLogicVersion,
    *,
    draw_capable: bool = False,
    teams_matched: bool = True,
    integrity_issue: Optional[str] = None,
    providers_reachable: bool = True,
) -> tuple[SignalState, str]:
    """Entry state ignoring rate limits. Pure function of the signal and version."""
    v = version
    if draw_capable:
        return SignalState.REJECT, "draw_capable"
    if signal.sharp_count <= 0:
        return SignalState.REJECT, "no_sharp_sources"
    if integrity_issue:
        return SignalState.REJECT, integrity_issue
    if signal.minutes_to_start < 0:
        return SignalState.REJECT, "event_started"
    if not teams_matched:
        if v.match_failure_force_watch:
            return SignalState.WATCH, TEAM_MATCH_FAILURE
        return SignalState.REJECT, "unresolved_team"

    prob = signal.book_implied_probability
    if prob is None:
        return SignalState.WATCH, "insufficient_book_data"

    conf = signal.confidence
    minutes = signal.minutes_to_start
    s2_conf = conf >= v.s2_confidence_min
    s2_prob = prob >= v.s2_book_prob_min
    s2_time = minutes >= v.s2_time_to_start_min

    if s2_conf and s2_prob and s2_time:
        if providers_reachable:
            return SignalState.S2_EXECUTION_ELIGIBLE, "s2_floors_met"
        return SignalState.S1_PROMOTE, "providers_unavailable"

    bands = []
    if v.s1_confidence_min <= conf < v.s2_confidence_min:
        bands.append("confidence")
    if v.s1_book_prob_min <= prob < v.s2_book_prob_min:
        bands.append("probability")
    if v.s1_time_to_start_min <= minutes < v.s2_time_to_start_min:
        bands.append("time")
    if bands:
        return SignalState.S1_PROMOTE, "s1_band:" + ",".join(bands)
    return SignalState.WATCH, "below_s1_bands"


class QualityGate:
    """Applies degradation, classification and S2 rate limits."""

    def __init__(self, version: CoreLogicVersion, rate_limiter: PromotionRateLimiter):
        self.version = version
        self.rate_limiter = rate_limiter

    async def evaluate(
        self,
        signal: Signal,
        market: MarketRef,
        liquidity: LiquidityReport,
        now: datetime,
        teams_matched: bool = True,
        integrity_issue: Optional[str] = None,
    ) -> GateDecision:
        confidence, status = apply_degradation(signal.ungated_confidence, liquidity, self.version)
        gated = signal.model_copy(update={"confidence": confidence})
        state, reason = classify(
            gated,
            self.version,
            draw_capable=market.draw_capable,
            teams_matched=teams_matched,
            integrity_issue=integrity_issue,
            providers_reachable=liquidity.reachable_count > 0,
        )

        if state == SignalState.S2_EXECUTION_ELIGIBLE:
            if not await self.rate_limiter.has_capacity(signal.sport, now, self.version):
                state, reason = SignalState.S1_PROMOTE, RATE_LIMITED

        tags = [reason]
        if status == PolyDataStatus.DEGRADED:
            tags.append("degraded")
        elif status == PolyDataStatus.DISAGREE:
            tags.append("disagreement")
        elif status == PolyDataStatus.UNAVAILABLE:
            tags.append("providers_down")

        decision = GateDecision(
            state=state, reason=";".join(tags), confidence=confidence, poly_data_status=status
        )
        logger.info(
            "Gate decision",
            extra={
                "dedupe_key": signal.dedupe_key,
                "state": state.value,
                "reason": decision.reason,
                "confidence": confidence,
                "poly_status": status.value,
            },
        )
        return decision

    async def auto_promote(self, before: Signal, after: Signal, now: datetime) -> Optional[str]:
        """Reason to promote ``after`` from S1 to S2, or None.

        Thresholds come from the version the signal was created under.
        """
        if after.state != SignalState.S1_PROMOTE:
            return None
        v = get_version(after.core_logic_version)

        minutes = (after.start_time - now).total_seconds() / 60.0
        if minutes < v.s2_time_to_start_min:
            return None
        if after.poly_data_status == PolyDataStatus.UNAVAILABLE:
            return None

        triggers = []
        if before.confidence < v.auto_promote_confidence <= after.confidence:
            triggers.append("confidence_crossed")
        before_liq = before.liquidity_estimate or 0.0
        if after.liquidity_estimate is not None and before_liq < v.auto_promote_liquidity <= after.liquidity_estimate:
            triggers.append("liquidity_crossed")
        if before.sharp_count < v.auto_promote_books <= after.sharp_count:
            triggers.append("sharp_source_joined")
        if RATE_LIMITED in reason_tags(after.state_reason):
            refreshed = after.model_copy(update={"minutes_to_start": minutes})
            state, _ = classify(refreshed, v)
            if state == SignalState.S2_EXECUTION_ELIGIBLE:
                triggers.append("capacity_freed")
        if not triggers:
            return None

        if not await self.rate_limiter.has_capacity(after.sport, now, v):
            return None
        return "auto_promote:" + ",".join(triggers)
