"""Net-of-cost execution decision.

All edges and costs are percentage points (a 0.55 fair probability against a
0.50 price is a 5.0 raw edge).
"""
import logging

from shared.schemas import ExecutionAnalysis, ExecutionDecision, LiquidityTier

logger = logging.getLogger(__name__)

PLATFORM_FEE_RATE = 0.01  # of positive edge

# (minimum volume, spread cost) - first match wins
SPREAD_STEPS = [
    (500_000, 0.5),
    (100_000, 1.0),
    (50_000, 1.5),
    (10_000, 2.0),
]
SPREAD_FLOOR = 3.0

# (stake / volume below, slippage cost)
SLIPPAGE_STEPS = [
    (0.001, 0.2),
    (0.005, 0.5),
    (0.01, 1.0),
    (0.02, 2.0),
]
SLIPPAGE_CEILING = 3.0

TIER_STEPS = [
    (100_000, LiquidityTier.HIGH),
    (50_000, LiquidityTier.MEDIUM),
    (10_000, LiquidityTier.LOW),
]

MAX_STAKE_VOLUME_FRACTION = 0.01

STRONG_BET_EDGE = 4.0
BET_EDGE = 2.0
MARGINAL_EDGE = 1.0


def fee_cost(raw_edge: float) -> float:
    return raw_edge * PLATFORM_FEE_RATE if raw_edge > 0 else 0.0


def spread_cost(volume: float) -> float:
    for floor, cost in SPREAD_STEPS:
        if volume >= floor:
            return cost
    return SPREAD_FLOOR


def slippage_cost(stake: float, volume: float) -> float:
    if volume <= 0:
        return SLIPPAGE_CEILING
    ratio = stake / volume
    for ceiling, cost in SLIPPAGE_STEPS:
        if ratio < ceiling:
            return cost
    return SLIPPAGE_CEILING


def liquidity_tier(volume: float) -> LiquidityTier:
    for floor, tier in TIER_STEPS:
        if volume >= floor:
            return tier
    return LiquidityTier.INSUFFICIENT


def analyze(raw_edge: float, volume: float, stake: float) -> ExecutionAnalysis:
    """Estimate costs and grade the opportunity."""
    volume = max(volume or 0.0, 0.0)
    fee = fee_cost(raw_edge)
    spread = spread_cost(volume)
    slippage = slippage_cost(stake, volume)
    total = fee + spread + slippage
    net = raw_edge - total
    tier = liquidity_tier(volume)

    if tier == LiquidityTier.INSUFFICIENT:
        decision = ExecutionDecision.NO_BET
        reason = f"volume {volume:,.0f} below liquidity floor"
    elif net >= STRONG_BET_EDGE:
        decision = ExecutionDecision.STRONG_BET
        reason = f"net edge {net:.2f}pp >= {STRONG_BET_EDGE}"
    elif net >= BET_EDGE:
        decision = ExecutionDecision.BET
        reason = f"net edge {net:.2f}pp >= {BET_EDGE}"
    elif net >= MARGINAL_EDGE and tier == LiquidityTier.HIGH:
        decision = ExecutionDecision.MARGINAL
        reason = f"net edge {net:.2f}pp on high liquidity"
    else:
        decision = ExecutionDecision.NO_BET
        reason = f"net edge {net:.2f}pp after {total:.2f}pp costs"

    return ExecutionAnalysis(
        raw_edge=raw_edge,
        fee_cost=round(fee, 4),
        spread_cost=spread,
        slippage_cost=slippage,
        total_cost=round(total, 4),
        net_edge=round(net, 4),
        liquidity_tier=tier,
        max_stake_without_impact=round(volume * MAX_STAKE_VOLUME_FRACTION, 2),
        decision=decision,
        reason=reason,
    )
