"""Signal scoring: composite 0-100 confidence from consensus, magnitude, persistence, liquidity."""
from typing import Optional

from shared.schemas import MovementEvent
from strategy.thresholds import CoreLogicVersion

# Effective sources at which the consensus component saturates
CONSENSUS_SATURATION = 4.0


def score_consensus(consensus_count: int, sharp_count: int) -> float:
    """Score consensus strength (0-1). Sharp sources count double."""
    soft = max(consensus_count - sharp_count, 0)
    effective = sharp_count + 0.5 * soft
    return min(effective / CONSENSUS_SATURATION, 1.0)


def score_magnitude(magnitude: float, threshold: float) -> float:
    """Score move size relative to the trigger (0-1). Saturates at twice the threshold."""
    if threshold <= 0:
        return 1.0
    return min(abs(magnitude) / (2.0 * threshold), 1.0)


def score_persistence(persistence: float) -> float:
    return max(0.0, min(persistence, 1.0))


def score_liquidity(liquidity: Optional[float], floor: float) -> float:
    """Full score at or above the floor, linear penalty below it. Unknown scores 0.5."""
    if liquidity is None:
        return 0.5
    if floor <= 0 or liquidity >= floor:
        return 1.0
    return max(liquidity, 0.0) / floor


def confidence_score(
    event: MovementEvent,
    liquidity: Optional[float],
    version: CoreLogicVersion,
) -> float:
    """Weighted confidence clamped to [0, 100]."""
    c = score_consensus(event.consensus_count, event.sharp_count) * version.weight_consensus
    m = score_magnitude(event.magnitude, version.movement_threshold) * version.weight_magnitude
    p = score_persistence(event.persistence) * version.weight_velocity
    liq = score_liquidity(liquidity, version.liquidity_preference) * version.weight_liquidity
    total = (c + m + p + liq) * 100.0
    return round(max(0.0, min(total, 100.0)), 1)
