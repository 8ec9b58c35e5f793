"""Versioned, immutable core-logic thresholds.

A shipped version is never edited. A new tuning is registered under a new id,
and every signal records the id it was produced under so it can be
re-evaluated against exactly the same numbers later.
"""
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict

from shared.errors import UnknownVersionError, VersionConflictError


class CoreLogicVersion(BaseModel):
    """One frozen set of thresholds for the whole signal/execution core."""
    model_config = ConfigDict(frozen=True)

    version: str
    status: str = "experimental"  # "frozen" for the canonical baseline

    # Movement detector
    movement_threshold: float = 0.05       # absolute de-vigged probability change
    velocity_threshold: float = 0.003      # probability change per minute
    sharp_consensus_min: int = 2           # independent sources moving together
    source_move_min: float = 0.02          # a source counts toward consensus above this move
    window_minutes: int = 10
    window_min_minutes: int = 5
    window_max_minutes: int = 15

    # Fair-probability estimator
    min_sources: int = 2
    outlier_sigma: float = 2.0
    plausible_prob_min: float = 0.08
    plausible_prob_max: float = 0.92

    # Candidate builder
    cooldown_minutes: int = 20
    liquidity_preference: float = 5000.0
    weight_consensus: float = 0.35
    weight_magnitude: float = 0.25
    weight_velocity: float = 0.20
    weight_liquidity: float = 0.20

    # Quality gate
    s2_confidence_min: float = 55.0
    s2_book_prob_min: float = 0.50
    s2_time_to_start_min: float = 10.0
    s1_confidence_min: float = 40.0
    s1_book_prob_min: float = 0.45
    s1_time_to_start_min: float = 5.0
    stale_quote_minutes: float = 30.0

    # Auto-promotion
    auto_promote_confidence: float = 55.0
    auto_promote_liquidity: float = 5000.0
    auto_promote_books: int = 3

    # Rate limiting (S2 promotions per rolling hour)
    max_s2_per_hour: int = 20
    max_s2_per_sport_per_hour: int = 8

    # Degradation
    degraded_confidence_cap: float = 65.0
    disagree_confidence_penalty: float = 10.0
    disagreement_ratio: float = 0.5
    match_failure_force_watch: bool = True

    # Sizing
    kelly_fraction: float = 0.25
    kelly_min_bankroll_pct: float = 0.0025
    kelly_max_bankroll_pct: float = 0.02
    correlation_reduction: float = 0.5
    win_probability_cap: float = 0.95

    # Portfolio selection
    bet_score_formula: str = "signal_v1"
    min_bet_score: float = 60.0
    max_bets: int = 10
    max_per_league: int = 2
    max_per_time_cluster: int = 3
    time_cluster_hours: float = 2.0
    league_cap_penalty: float = 25.0
    cluster_cap_penalty: float = 25.0
    max_daily_exposure_pct: float = 0.10
    max_per_event_exposure_pct: float = 0.03

    # Refresh
    expire_net_edge: float = 0.0

    @property
    def window(self) -> int:
        """Evaluation window clamped to the allowed range."""
        return max(self.window_min_minutes, min(self.window_max_minutes, self.window_minutes))


V1_0 = CoreLogicVersion(
    version="v1.0",
    status="frozen",
    movement_threshold=0.06,
    velocity_threshold=0.004,
    cooldown_minutes=30,
    liquidity_preference=10000.0,
    s2_confidence_min=60.0,
    s2_book_prob_min=0.52,
    s1_confidence_min=45.0,
    s1_book_prob_min=0.48,
    auto_promote_confidence=60.0,
    auto_promote_liquidity=10000.0,
    max_s2_per_hour=12,
    max_s2_per_sport_per_hour=4,
    match_failure_force_watch=False,
    kelly_fraction=0.10,
)

V1_1 = CoreLogicVersion(
    version="v1.1",
    match_failure_force_watch=False,
)

V1_3 = CoreLogicVersion(version="v1.3")

DEFAULT_VERSION_ID = "v1.3"

_REGISTRY: dict[str, CoreLogicVersion] = {}
VERSIONS: Mapping[str, CoreLogicVersion] = MappingProxyType(_REGISTRY)


def register_version(version: CoreLogicVersion) -> CoreLogicVersion:
    """Add a new version. Re-registering an existing id is refused."""
    if version.version in _REGISTRY:
        raise VersionConflictError(
            f"Core logic {version.version} already shipped; register a new version id"
        )
    _REGISTRY[version.version] = version
    return version


def get_version(version_id: str) -> CoreLogicVersion:
    try:
        return _REGISTRY[version_id]
    except KeyError:
        raise UnknownVersionError(
            f"Unknown core logic version {version_id!r} (known: {', '.join(sorted(_REGISTRY))})"
        ) from None


for _v in (V1_0, V1_1, V1_3):
    register_version(_v)
