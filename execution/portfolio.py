"""Bet scoring and greedy portfolio selection under correlation and exposure caps."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from shared.schemas import LiquidityTier, Rejection, RejectionReason
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

TIER_ADJUSTMENT = {
    LiquidityTier.HIGH: 3.0,
    LiquidityTier.MEDIUM: 0.0,
    LiquidityTier.LOW: -3.0,
    LiquidityTier.INSUFFICIENT: -10.0,
}


def bet_score(
    net_edge: float,
    confidence: float,
    tier: LiquidityTier,
    formula: str = "signal_v1",
) -> float:
    """0-100 ranking score. ``net_edge`` in percentage points."""
    if formula != "signal_v1":
        raise ValueError(f"Unknown bet score formula {formula!r}")
    score = 50.0 + net_edge * 2.5 + (confidence - 50.0) * 0.5 + TIER_ADJUSTMENT[tier]
    return round(max(0.0, min(score, 100.0)), 2)


@dataclass
class PortfolioCandidate:
    signal_id: int
    event_key: str
    event_name: str
    league: str
    start_time: datetime
    bet_score: float
    stake_units: float
    payload: dict[str, Any] = field(default_factory=dict)
    penalties: list[str] = field(default_factory=list)


@dataclass
class Selection:
    accepted: list[PortfolioCandidate] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)


class PortfolioSelector:
    """Deterministic greedy pass in bet-score order.

    League and time-cluster caps penalize the score instead of banning
    outright; a penalized candidate that stays above the floor is accepted
    with its stake reduced for correlation.
    """

    def __init__(self, version: CoreLogicVersion, bankroll: float):
        self.version = version
        self.bankroll = bankroll

    def select(
        self, candidates: list[PortfolioCandidate], existing_exposure: float = 0.0
    ) -> Selection:
        v = self.version
        selection = Selection()
        exposure = existing_exposure
        event_stakes: dict[str, float] = defaultdict(float)
        league_counts: dict[str, int] = defaultdict(int)
        cluster = timedelta(hours=v.time_cluster_hours)

        # sorted() is stable, so equal scores keep their input order
        for c in sorted(candidates, key=lambda c: -c.bet_score):
            def reject(reason: RejectionReason, detail: str, score: float = c.bet_score):
                selection.rejected.append(Rejection(
                    signal_id=c.signal_id,
                    event_name=c.event_name,
                    reason=reason,
                    detail=detail,
                    bet_score=score,
                ))

            if c.bet_score < v.min_bet_score:
                reject(RejectionReason.SCORE_FLOOR, f"bet score {c.bet_score:.1f} below {v.min_bet_score:.0f}")
                continue
            if len(selection.accepted) >= v.max_bets:
                reject(RejectionReason.MAX_BETS, f"already selected {v.max_bets} bets")
                continue

            score = c.bet_score
            penalties: list[tuple[RejectionReason, str]] = []
            if league_counts[c.league] >= v.max_per_league:
                score -= v.league_cap_penalty
                penalties.append((
                    RejectionReason.LEAGUE_CAP,
                    f"league cap {v.max_per_league} reached for {c.league}",
                ))
            in_cluster = sum(
                1 for a in selection.accepted if abs(a.start_time - c.start_time) <= cluster
            )
            if in_cluster >= v.max_per_time_cluster:
                score -= v.cluster_cap_penalty
                penalties.append((
                    RejectionReason.CLUSTER_CAP,
                    f"time cluster cap {v.max_per_time_cluster} within {v.time_cluster_hours:g}h reached",
                ))

            stake = c.stake_units
            if penalties:
                if score < v.min_bet_score:
                    reason, detail = penalties[0]
                    reject(reason, f"{detail}; penalized score {score:.1f} below {v.min_bet_score:.0f}", score)
                    continue
                stake = round(stake * v.correlation_reduction, 4)
                if stake < v.kelly_min_bankroll_pct * self.bankroll:
                    reject(RejectionReason.STAKE_SUPPRESSED, "correlation-reduced stake below minimum", score)
                    continue

            event_cap = v.max_per_event_exposure_pct * self.bankroll
            if event_stakes[c.event_key] + stake > event_cap:
                reject(RejectionReason.EVENT_CAP, f"event exposure would exceed {event_cap:.2f} units", score)
                continue
            daily_cap = v.max_daily_exposure_pct * self.bankroll
            if exposure + stake > daily_cap:
                reject(RejectionReason.EXPOSURE_CAP, f"daily exposure would exceed {daily_cap:.2f} units", score)
                continue

            c.bet_score = score
            c.stake_units = stake
            c.penalties = [detail for _, detail in penalties]
            selection.accepted.append(c)
            exposure += stake
            event_stakes[c.event_key] += stake
            league_counts[c.league] += 1

        logger.info(
            "Portfolio selected",
            extra={
                "candidates": len(candidates),
                "accepted": len(selection.accepted),
                "rejected": len(selection.rejected),
                "exposure": round(exposure, 4),
            },
        )
        return selection
