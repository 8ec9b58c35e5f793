"""Detect consensus-backed odds movement over a rolling window."""
import logging
import statistics
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from shared.schemas import Direction, MarketRef, MovementEvent, Quote
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

SUB_WINDOWS = 3


def home_probability_series(quotes: Iterable[Quote]) -> dict[str, list[tuple[datetime, float]]]:
    """Per-source series of de-vigged home probability.

    A point is emitted each time a source updates either side once both
    sides have been seen.
    """
    by_source: dict[str, list[Quote]] = defaultdict(list)
    for q in quotes:
        if q.outcome in ("home", "away"):
            by_source[q.source_id].append(q)

    series: dict[str, list[tuple[datetime, float]]] = {}
    for source, qs in by_source.items():
        qs.sort(key=lambda q: q.observed_at)
        last: dict[str, float] = {}
        points: list[tuple[datetime, float]] = []
        for q in qs:
            last[q.outcome] = q.implied_probability
            if len(last) == 2:
                total = last["home"] + last["away"]
                points.append((q.observed_at, last["home"] / total))
        if len(points) >= 2:
            series[source] = points
    return series


def _value_at(points: list[tuple[datetime, float]], at: datetime) -> float:
    value = points[0][1]
    for ts, p in points:
        if ts > at:
            break
        value = p
    return value


def persistence(
    series: dict[str, list[tuple[datetime, float]]],
    sources: list[str],
    direction: Direction,
    start: datetime,
    end: datetime,
) -> float:
    """Fraction of equal sub-windows in which the consensus sources moved in ``direction``."""
    if not sources:
        return 0.0
    step = (end - start) / SUB_WINDOWS
    sign = 1.0 if direction == Direction.UP else -1.0
    hits = 0
    for i in range(SUB_WINDOWS):
        lo, hi = start + step * i, start + step * (i + 1)
        deltas = [_value_at(series[s], hi) - _value_at(series[s], lo) for s in sources]
        if statistics.fmean(deltas) * sign > 0:
            hits += 1
    return hits / SUB_WINDOWS


class MovementDetector:
    """Emits at most one MovementEvent per market, window and direction."""

    def __init__(self, version: CoreLogicVersion):
        self.version = version
        # (market_key, direction) -> end of the last window that fired
        self._last_emitted: dict[tuple[str, Direction], datetime] = {}

    def detect(self, market: MarketRef, quotes: Iterable[Quote], now: datetime) -> list[MovementEvent]:
        if market.draw_capable:
            return []

        v = self.version
        window_start = now - timedelta(minutes=v.window)
        in_window = [
            q for q in quotes
            if q.market_key == market.market_key and window_start <= q.observed_at <= now
        ]
        series = home_probability_series(in_window)
        if not series:
            return []

        sharp = {q.source_id for q in in_window if q.is_sharp}
        events = []
        for direction in (Direction.UP, Direction.DOWN):
            event = self._evaluate(market, series, sharp, direction, window_start, now)
            if event is None:
                continue
            key = (market.market_key, direction)
            previous = self._last_emitted.get(key)
            if previous is not None and previous > window_start:
                logger.debug(
                    "Overlapping window suppressed",
                    extra={"market_key": market.market_key, "direction": direction.value},
                )
                continue
            self._last_emitted[key] = now
            events.append(event)
            logger.info(
                "Movement detected",
                extra={
                    "market_key": market.market_key,
                    "direction": direction.value,
                    "magnitude": round(event.magnitude, 4),
                    "velocity": round(event.velocity, 5),
                    "consensus": event.consensus_count,
                },
            )
        return events

    def _evaluate(
        self,
        market: MarketRef,
        series: dict[str, list[tuple[datetime, float]]],
        sharp: set[str],
        direction: Direction,
        window_start: datetime,
        window_end: datetime,
    ) -> Optional[MovementEvent]:
        v = self.version
        sign = 1.0 if direction == Direction.UP else -1.0

        moves: dict[str, float] = {}
        velocities: list[float] = []
        for source, points in series.items():
            move = (points[-1][1] - points[0][1]) * sign
            if move < v.source_move_min:
                continue
            span = (points[-1][0] - points[0][0]).total_seconds() / 60.0
            if span <= 0:
                continue
            moves[source] = move
            velocities.append(move / span)

        if len(moves) < v.sharp_consensus_min:
            return None

        magnitude = statistics.fmean(moves.values())
        velocity = statistics.fmean(velocities)
        if magnitude < v.movement_threshold or velocity < v.velocity_threshold:
            return None

        sources = sorted(moves)
        return MovementEvent(
            market_key=market.market_key,
            outcome="home",
            direction=direction,
            magnitude=magnitude,
            velocity=velocity,
            persistence=persistence(series, sources, direction, window_start, window_end),
            consensus_count=len(sources),
            sharp_count=sum(1 for s in sources if s in sharp),
            sources=sources,
            window_start=window_start,
            window_end=window_end,
        )

    def reset(self, market_key: Optional[str] = None):
        if market_key is None:
            self._last_emitted.clear()
            return
        for key in [k for k in self._last_emitted if k[0] == market_key]:
            del self._last_emitted[key]
