"""De-vig quoted prices into fair probabilities.

A market needs at least ``min_sources`` distinct sharp sources. Sharp
sources are trusted alone when every outcome has one; otherwise all sources
are averaged after a sigma outlier cut. Per-outcome averages outside
the plausibility band are dropped before the survivors are normalized to 1.
"""
import logging
import statistics
from collections import defaultdict
from typing import Iterable

from shared.schemas import FairProbabilityResult, Quote
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

DRAW_OUTCOMES = {"draw", "tie"}


def latest_quotes(quotes: Iterable[Quote]) -> list[Quote]:
    """Keep the most recent quote per (source, outcome)."""
    latest: dict[tuple[str, str], Quote] = {}
    for q in quotes:
        key = (q.source_id, q.outcome)
        if key not in latest or q.observed_at >= latest[key].observed_at:
            latest[key] = q
    return list(latest.values())


def devig(raw: dict[str, float]) -> dict[str, float]:
    """Proportional normalization of raw implied probabilities."""
    total = sum(raw.values())
    if total <= 0:
        return {}
    return {k: v / total for k, v in raw.items()}


def drop_outliers(values: list[tuple[str, float]], sigma: float) -> tuple[list[tuple[str, float]], list[str]]:
    """Remove (source, prob) pairs further than ``sigma`` std devs from the mean."""
    if len(values) < 3:
        return values, []
    probs = [p for _, p in values]
    mean = statistics.fmean(probs)
    std = statistics.pstdev(probs)
    if std == 0:
        return values, []
    kept, dropped = [], []
    for source, p in values:
        if abs(p - mean) > sigma * std:
            dropped.append(source)
        else:
            kept.append((source, p))
    return kept, dropped


def estimate_fair_probabilities(
    market_key: str,
    quotes: Iterable[Quote],
    min_sources: int = 2,
    outlier_sigma: float = 2.0,
    plausible_min: float = 0.08,
    plausible_max: float = 0.92,
    collapse_draw: bool = False,
) -> FairProbabilityResult:
    """Fair probability and price per outcome, or an insufficient-data result."""
    current = latest_quotes(quotes)
    if collapse_draw:
        current = [q for q in current if q.outcome.lower() not in DRAW_OUTCOMES]

    by_outcome: dict[str, list[Quote]] = defaultdict(list)
    for q in current:
        by_outcome[q.outcome].append(q)

    if len(by_outcome) < 2:
        return FairProbabilityResult(
            market_key=market_key,
            sufficient=False,
            reason=f"quotes cover {len(by_outcome)} outcome(s), need at least 2",
        )

    n_sharp = len({q.source_id for q in current if q.is_sharp})
    if n_sharp < min_sources:
        return FairProbabilityResult(
            market_key=market_key,
            sufficient=False,
            reason=f"{n_sharp} independent sharp source(s) quote the market, need {min_sources}",
        )

    sharp_only = all(any(q.is_sharp for q in qs) for qs in by_outcome.values())

    raw: dict[str, float] = {}
    sources_used: dict[str, int] = {}
    discarded: list[str] = []
    for outcome, qs in sorted(by_outcome.items()):
        pool = [(q.source_id, q.implied_probability) for q in qs if q.is_sharp or not sharp_only]
        if not sharp_only:
            pool, dropped = drop_outliers(pool, outlier_sigma)
            discarded.extend(f"{outcome}:{source}" for source in dropped)

        n_sources = len({source for source, _ in pool})
        sources_used[outcome] = n_sources
        if n_sources < min_sources:
            return FairProbabilityResult(
                market_key=market_key,
                sufficient=False,
                reason=(
                    f"{outcome}: {n_sources} independent "
                    f"{'sharp ' if sharp_only else ''}source(s), need {min_sources}"
                ),
                sources_used=sources_used,
                sharp_only=sharp_only,
            )

        avg = statistics.fmean(p for _, p in pool)
        if not plausible_min <= avg <= plausible_max:
            discarded.append(f"{outcome}:implausible={avg:.3f}")
            logger.debug(
                "Implausible outcome probability discarded",
                extra={"market_key": market_key, "outcome": outcome, "prob": round(avg, 4)},
            )
            continue
        raw[outcome] = avg

    if len(raw) < 2:
        return FairProbabilityResult(
            market_key=market_key,
            sufficient=False,
            reason="fewer than two plausible outcomes after outlier rejection",
            sources_used=sources_used,
            sharp_only=sharp_only,
            discarded=discarded,
        )

    fair = devig(raw)
    return FairProbabilityResult(
        market_key=market_key,
        sufficient=True,
        probabilities=fair,
        fair_prices={k: 1.0 / p for k, p in fair.items()},
        overround=sum(raw.values()),
        sources_used=sources_used,
        sharp_only=sharp_only,
        discarded=discarded,
    )


class FairProbabilityEstimator:
    """Estimator bound to one core-logic version's parameters."""

    def __init__(self, version: CoreLogicVersion):
        self.version = version

    def estimate(
        self, market_key: str, quotes: Iterable[Quote], collapse_draw: bool = False
    ) -> FairProbabilityResult:
        v = self.version
        return estimate_fair_probabilities(
            market_key,
            quotes,
            min_sources=v.min_sources,
            outlier_sigma=v.outlier_sigma,
            plausible_min=v.plausible_prob_min,
            plausible_max=v.plausible_prob_max,
            collapse_draw=collapse_draw,
        )
