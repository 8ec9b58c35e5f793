"""Fractional Kelly sizing with bankroll bounds."""
import logging

from shared.schemas import KellyResult
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

SIZING_TIERS = [
    (0.01, "micro"),
    (0.03, "small"),
    (0.06, "medium"),
    (0.10, "large"),
]

LOW_CONFIDENCE = 50.0
HIGH_FULL_KELLY = 0.25


def sizing_tier(bankroll_pct: float) -> str:
    for ceiling, name in SIZING_TIERS:
        if bankroll_pct <= ceiling:
            return name
    return "max"


def kelly_fraction(price: float, win_probability: float) -> float:
    """Full Kelly f = (b*p - q) / b for a binary contract bought at ``price``."""
    if not 0 < price < 1:
        return 0.0
    b = (1.0 - price) / price
    q = 1.0 - win_probability
    return (b * win_probability - q) / b


def size_position(
    price: float,
    edge: float,
    confidence: float,
    bankroll: float,
    version: CoreLogicVersion,
    correlated: bool = False,
) -> KellyResult:
    """Stake for one signal. ``edge`` is in percentage points, ``confidence`` 0-100.

    Zero or negative edge always sizes to zero; stakes under the minimum
    bankroll fraction are suppressed rather than placed as micro-bets.
    """
    warnings: list[str] = []
    if edge <= 0:
        return KellyResult(warnings=["non-positive edge"])

    p = price + edge / 100.0
    if p > version.win_probability_cap:
        p = version.win_probability_cap
        warnings.append(f"win probability capped at {version.win_probability_cap:.0%}")

    full = kelly_fraction(price, p)
    if full <= 0:
        return KellyResult(warnings=warnings + ["kelly fraction not positive"])
    if full > HIGH_FULL_KELLY:
        warnings.append(f"full kelly {full:.1%} is aggressive; check the edge estimate")

    multiplier = max(0.0, min(confidence, 100.0)) / 100.0
    if confidence < LOW_CONFIDENCE:
        warnings.append(f"low confidence {confidence:.0f}")

    pct = full * version.kelly_fraction * multiplier
    if correlated:
        pct *= version.correlation_reduction
        warnings.append("reduced for correlation")

    if pct > version.kelly_max_bankroll_pct:
        pct = version.kelly_max_bankroll_pct
        warnings.append(f"capped at {version.kelly_max_bankroll_pct:.2%} of bankroll")
    if pct < version.kelly_min_bankroll_pct:
        warnings.append(f"stake {pct:.3%} below minimum {version.kelly_min_bankroll_pct:.2%}; suppressed")
        return KellyResult(kelly_fraction=round(full, 6), sizing_tier="micro", warnings=warnings)

    return KellyResult(
        kelly_fraction=round(full, 6),
        stake_units=round(pct * bankroll, 4),
        bankroll_pct=round(pct, 6),
        sizing_tier=sizing_tier(pct),
        warnings=warnings,
    )
