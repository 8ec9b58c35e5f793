"""SQLite database via aiosqlite."""
import aiosqlite
import json
import logging
import os
from datetime import datetime, timezone
from typing import Iterable, Optional

from shared.errors import ConcurrentUpdateError, InvalidTransitionError
from shared.normalize import normalize_key
from shared.schemas import (
    BetResult,
    InstrumentResolution,
    LIVE_STATES,
    MarketRef,
    Quote,
    RecommendedBet,
    Signal,
    SignalState,
    SignalTransition,
    TeamMatchFailure,
    can_transition,
    utcnow,
)
from storage.models import ALL_TABLES

logger = logging.getLogger(__name__)

_LIVE = tuple(s.value for s in LIVE_STATES)
_LIVE_SQL = "(" + ", ".join(f"'{s}'" for s in _LIVE) + ")"

SIGNAL_COLUMNS = [
    "dedupe_key", "market_key", "league", "sport", "home_team", "away_team",
    "market_type", "start_time", "side", "direction", "confidence",
    "raw_confidence", "book_implied_probability", "minutes_to_start", "liquidity_estimate",
    "consensus_count", "sharp_count", "magnitude", "velocity",
    "poly_data_status", "state", "state_reason", "condition_id", "market_url",
    "core_logic_version", "created_at", "updated_at", "last_event_at",
    "last_promoted_at",
]

# Fields refresh and re-triggering may rewrite; identity and state are not among them
SIGNAL_METRIC_COLUMNS = [
    "confidence", "raw_confidence", "book_implied_probability", "minutes_to_start",
    "liquidity_estimate", "consensus_count", "sharp_count", "magnitude",
    "velocity", "poly_data_status", "condition_id", "last_event_at",
]


def _ts(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO string so lexical order in SQL matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _db_value(value):
    if isinstance(value, datetime):
        return _ts(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if hasattr(value, "value"):
        return value.value
    return value


class Database:
    """Async SQLite store shared by the scan, refresh and recommendation loops."""

    def __init__(self, db_path: str = "data/linewatch.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self):
        """Initialize database and create tables."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        for ddl in ALL_TABLES:
            await self._db.execute(ddl)
        await self._db.commit()
        logger.info("Database initialized", extra={"path": self.db_path})

    async def close(self):
        if self._db:
            await self._db.close()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self._db.execute(sql, params)
        rows = await cursor.fetchall()
        columns = [d[0] for d in cursor.description]
        return [dict(zip(columns, row)) for row in rows]

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[dict]:
        cursor = await self._db.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        columns = [d[0] for d in cursor.description]
        return dict(zip(columns, row))

    # --- markets and quotes ---

    async def upsert_market(self, market: MarketRef):
        await self._db.execute(
            """INSERT INTO markets
               (market_key, league, sport, home_team, away_team, market_type,
                start_time, draw_capable, condition_id, market_url)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(market_key) DO UPDATE SET
                 league=excluded.league, sport=excluded.sport,
                 home_team=excluded.home_team, away_team=excluded.away_team,
                 market_type=excluded.market_type, start_time=excluded.start_time,
                 draw_capable=excluded.draw_capable,
                 condition_id=COALESCE(excluded.condition_id, markets.condition_id),
                 market_url=COALESCE(excluded.market_url, markets.market_url)""",
            (
                market.market_key, market.league, market.sport, market.home_team,
                market.away_team, market.market_type, _ts(market.start_time),
                1 if market.draw_capable else 0, market.condition_id, market.market_url,
            ),
        )
        await self._db.commit()

    async def get_market(self, market_key: str) -> Optional[MarketRef]:
        row = await self._fetchone("SELECT * FROM markets WHERE market_key=?", (market_key,))
        return MarketRef(**row) if row else None

    async def get_upcoming_markets(self, now: datetime) -> list[MarketRef]:
        rows = await self._fetchall(
            "SELECT * FROM markets WHERE start_time > ? ORDER BY start_time", (_ts(now),)
        )
        return [MarketRef(**r) for r in rows]

    async def link_market_instrument(self, market_key: str, condition_id: str):
        await self._db.execute(
            "UPDATE markets SET condition_id=? WHERE market_key=?", (condition_id, market_key)
        )
        await self._db.commit()

    async def add_quotes(self, quotes: Iterable[Quote]) -> int:
        """Append quotes. Existing rows are never updated."""
        rows = [
            (q.source_id, q.market_key, q.outcome, q.price, 1 if q.is_sharp else 0, _ts(q.observed_at))
            for q in quotes
        ]
        if not rows:
            return 0
        await self._db.executemany(
            """INSERT INTO quotes (source_id, market_key, outcome, price, is_sharp, observed_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            rows,
        )
        await self._db.commit()
        return len(rows)

    async def get_quotes(self, market_key: str, since: Optional[datetime] = None) -> list[Quote]:
        if since is None:
            rows = await self._fetchall(
                "SELECT * FROM quotes WHERE market_key=? ORDER BY observed_at, id", (market_key,)
            )
        else:
            rows = await self._fetchall(
                """SELECT * FROM quotes WHERE market_key=? AND observed_at >= ?
                   ORDER BY observed_at, id""",
                (market_key, _ts(since)),
            )
        return [Quote(**r) for r in rows]

    async def purge_quotes(self, before: datetime) -> int:
        cursor = await self._db.execute("DELETE FROM quotes WHERE observed_at < ?", (_ts(before),))
        await self._db.commit()
        return cursor.rowcount

    # --- signals ---

    async def create_signal(self, signal: Signal, reason: str = "") -> Optional[int]:
        """Insert a signal and its creation transition.

        Returns None when a live signal already owns the dedupe key.
        """
        values = tuple(_db_value(getattr(signal, c)) for c in SIGNAL_COLUMNS)
        cursor = await self._db.execute(
            f"""INSERT OR IGNORE INTO signals ({", ".join(SIGNAL_COLUMNS)})
                VALUES ({", ".join("?" for _ in SIGNAL_COLUMNS)})""",
            values,
        )
        if cursor.rowcount == 0:
            await self._db.commit()
            return None
        signal_id = cursor.lastrowid
        await self._db.execute(
            """INSERT INTO signal_transitions (signal_id, from_state, to_state, reason, at)
               VALUES (?, NULL, ?, ?, ?)""",
            (signal_id, signal.state.value, reason or signal.state_reason, _ts(signal.created_at)),
        )
        await self._db.commit()
        return signal_id

    async def get_signal(self, signal_id: int) -> Optional[Signal]:
        row = await self._fetchone("SELECT * FROM signals WHERE id=?", (signal_id,))
        return Signal(**row) if row else None

    async def get_live_signal(self, dedupe_key: str) -> Optional[Signal]:
        row = await self._fetchone(
            f"SELECT * FROM signals WHERE dedupe_key=? AND state IN {_LIVE_SQL}", (dedupe_key,)
        )
        return Signal(**row) if row else None

    async def get_signals(
        self, state: Optional[SignalState] = None, limit: int = 100
    ) -> list[Signal]:
        if state is None:
            rows = await self._fetchall(
                "SELECT * FROM signals ORDER BY updated_at DESC LIMIT ?", (limit,)
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM signals WHERE state=? ORDER BY updated_at DESC LIMIT ?",
                (state.value, limit),
            )
        return [Signal(**r) for r in rows]

    async def get_live_signals(self) -> list[Signal]:
        rows = await self._fetchall(
            f"SELECT * FROM signals WHERE state IN {_LIVE_SQL} ORDER BY start_time"
        )
        return [Signal(**r) for r in rows]

    async def update_signal_metrics(self, signal: Signal):
        """Rewrite the mutable metric fields. State is untouched."""
        assignments = ", ".join(f"{c}=?" for c in SIGNAL_METRIC_COLUMNS)
        values = tuple(_db_value(getattr(signal, c)) for c in SIGNAL_METRIC_COLUMNS)
        await self._db.execute(
            f"UPDATE signals SET {assignments}, updated_at=? WHERE id=?",
            values + (_ts(utcnow()), signal.id),
        )
        await self._db.commit()

    async def transition_signal(
        self,
        signal_id: int,
        from_state: SignalState,
        to_state: SignalState,
        reason: str,
        now: Optional[datetime] = None,
    ) -> SignalTransition:
        """Compare-and-set state change with an audit row."""
        if not can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state.value, to_state.value)
        now = now or utcnow()
        promoted = to_state in (SignalState.S1_PROMOTE, SignalState.S2_EXECUTION_ELIGIBLE)
        cursor = await self._db.execute(
            """UPDATE signals
               SET state=?, state_reason=?, updated_at=?,
                   last_promoted_at=CASE WHEN ? THEN ? ELSE last_promoted_at END
               WHERE id=? AND state=?""",
            (
                to_state.value, reason, _ts(now), 1 if promoted else 0, _ts(now),
                signal_id, from_state.value,
            ),
        )
        if cursor.rowcount == 0:
            await self._db.commit()
            raise ConcurrentUpdateError(
                f"Signal {signal_id} is no longer in state {from_state.value}"
            )
        await self._db.execute(
            """INSERT INTO signal_transitions (signal_id, from_state, to_state, reason, at)
               VALUES (?, ?, ?, ?, ?)""",
            (signal_id, from_state.value, to_state.value, reason, _ts(now)),
        )
        await self._db.commit()
        logger.info(
            "Signal transition",
            extra={
                "signal_id": signal_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "reason": reason,
            },
        )
        return SignalTransition(
            signal_id=signal_id, from_state=from_state, to_state=to_state, reason=reason, at=now
        )

    async def get_transitions(self, signal_id: int) -> list[SignalTransition]:
        rows = await self._fetchall(
            "SELECT * FROM signal_transitions WHERE signal_id=? ORDER BY id", (signal_id,)
        )
        return [SignalTransition(**{k: v for k, v in r.items() if k != "id"}) for r in rows]

    async def count_s2_promotions(self, since: datetime, sport: Optional[str] = None) -> int:
        """S2 entries in the rolling window, optionally for one sport."""
        sql = """SELECT COUNT(*) FROM signal_transitions t
                 JOIN signals s ON s.id = t.signal_id
                 WHERE t.to_state = ? AND t.at >= ?"""
        params: tuple = (SignalState.S2_EXECUTION_ELIGIBLE.value, _ts(since))
        if sport is not None:
            sql += " AND s.sport = ?"
            params += (sport,)
        cursor = await self._db.execute(sql, params)
        row = await cursor.fetchone()
        return row[0]

    async def get_started_signals(self, now: datetime) -> list[Signal]:
        rows = await self._fetchall(
            f"SELECT * FROM signals WHERE state IN {_LIVE_SQL} AND start_time <= ?", (_ts(now),)
        )
        return [Signal(**r) for r in rows]

    async def purge_watch_signals(self, before: datetime) -> int:
        """Drop WATCH signals older than the retention window, with their transitions."""
        await self._db.execute(
            """DELETE FROM signal_transitions WHERE signal_id IN
               (SELECT id FROM signals WHERE state=? AND created_at < ?)""",
            (SignalState.WATCH.value, _ts(before)),
        )
        cursor = await self._db.execute(
            "DELETE FROM signals WHERE state=? AND created_at < ?",
            (SignalState.WATCH.value, _ts(before)),
        )
        await self._db.commit()
        return cursor.rowcount

    # --- instrument cache ---

    async def get_cached_resolution(self, cache_key: str) -> Optional[InstrumentResolution]:
        row = await self._fetchone(
            "SELECT * FROM instrument_cache WHERE cache_key=?", (cache_key,)
        )
        if row is None:
            return None
        row.pop("cache_key")
        row["extractor_log"] = json.loads(row["extractor_log"] or "[]")
        return InstrumentResolution(**row, from_cache=True)

    async def save_resolution(self, cache_key: str, resolution: InstrumentResolution):
        await self._db.execute(
            """INSERT OR REPLACE INTO instrument_cache
               (cache_key, query_ref, condition_id, outcome_token_a, outcome_token_b,
                source, confidence, tradeable, reason_if_untradeable, extractor_log,
                resolved_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                cache_key, resolution.query_ref, resolution.condition_id,
                resolution.outcome_token_a, resolution.outcome_token_b,
                resolution.source, resolution.confidence,
                1 if resolution.tradeable else 0, resolution.reason_if_untradeable,
                json.dumps(resolution.extractor_log), _ts(resolution.resolved_at),
            ),
        )
        await self._db.commit()

    async def get_cached_resolutions(self, limit: int = 100) -> list[InstrumentResolution]:
        rows = await self._fetchall(
            "SELECT * FROM instrument_cache ORDER BY resolved_at DESC LIMIT ?", (limit,)
        )
        results = []
        for row in rows:
            row.pop("cache_key")
            row["extractor_log"] = json.loads(row["extractor_log"] or "[]")
            results.append(InstrumentResolution(**row, from_cache=True))
        return results

    # --- recommended bets ---

    async def save_recommendation(self, bet: RecommendedBet) -> int:
        cursor = await self._db.execute(
            """INSERT INTO recommended_bets
               (cycle_id, signal_id, instrument_ref, token_id, league, event_name,
                side, start_time, odds, price, fair_probability, edge, bet_score,
                stake_units, confidence_tier, rationale, placed, result,
                profit_units, created_at, settled_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                bet.cycle_id, bet.signal_id, bet.instrument_ref, bet.token_id,
                bet.league, bet.event_name, bet.side, _ts(bet.start_time),
                bet.odds, bet.price, bet.fair_probability, bet.edge, bet.bet_score,
                bet.stake_units, bet.confidence_tier, bet.rationale,
                1 if bet.placed else 0, bet.result.value, bet.profit_units,
                _ts(bet.created_at), _ts(bet.settled_at),
            ),
        )
        await self._db.commit()
        return cursor.lastrowid

    async def get_recommendation(self, bet_id: int) -> Optional[RecommendedBet]:
        row = await self._fetchone("SELECT * FROM recommended_bets WHERE id=?", (bet_id,))
        return RecommendedBet(**row) if row else None

    async def get_recommendations(
        self, cycle_id: Optional[str] = None, limit: int = 50
    ) -> list[RecommendedBet]:
        if cycle_id is None:
            rows = await self._fetchall(
                "SELECT * FROM recommended_bets ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM recommended_bets WHERE cycle_id=? ORDER BY bet_score DESC",
                (cycle_id,),
            )
        return [RecommendedBet(**r) for r in rows]

    async def get_exposure_since(self, since: datetime) -> float:
        """Stake units recommended since ``since`` that are still pending."""
        cursor = await self._db.execute(
            """SELECT COALESCE(SUM(stake_units), 0) FROM recommended_bets
               WHERE created_at >= ? AND result = ?""",
            (_ts(since), BetResult.PENDING.value),
        )
        row = await cursor.fetchone()
        return float(row[0])

    async def has_recommendation_for_signal(self, signal_id: int) -> bool:
        cursor = await self._db.execute(
            "SELECT 1 FROM recommended_bets WHERE signal_id=? LIMIT 1", (signal_id,)
        )
        return await cursor.fetchone() is not None

    async def mark_placed(self, bet_id: int) -> bool:
        cursor = await self._db.execute(
            "UPDATE recommended_bets SET placed=1 WHERE id=?", (bet_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def settle_recommendation(
        self, bet_id: int, result: BetResult, profit_units: Optional[float], now: datetime
    ) -> bool:
        cursor = await self._db.execute(
            """UPDATE recommended_bets SET result=?, profit_units=?, settled_at=?
               WHERE id=?""",
            (result.value, profit_units, _ts(now), bet_id),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def get_performance_summary(self) -> dict:
        """Aggregate results over settled recommendations."""
        row = await self._fetchone(
            """SELECT
                 COUNT(*) as total_bets,
                 SUM(CASE WHEN result='won' THEN 1 ELSE 0 END) as wins,
                 SUM(CASE WHEN result='lost' THEN 1 ELSE 0 END) as losses,
                 SUM(CASE WHEN result='pending' THEN 1 ELSE 0 END) as pending,
                 SUM(CASE WHEN placed=1 THEN 1 ELSE 0 END) as placed,
                 COALESCE(SUM(profit_units), 0) as total_profit_units,
                 COALESCE(SUM(stake_units), 0) as total_stake_units
               FROM recommended_bets"""
        )
        wins = row["wins"] or 0
        losses = row["losses"] or 0
        total = wins + losses
        row["win_rate"] = (wins / total * 100) if total > 0 else 0
        return row

    # --- team mapping ---

    async def get_team_mapping(self, league: str, raw_team: str) -> Optional[str]:
        cursor = await self._db.execute(
            "SELECT canonical_name FROM team_mappings WHERE league=? AND raw_key=?",
            (league, normalize_key(raw_team)),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def save_team_mapping(self, league: str, raw_team: str, canonical_name: str):
        await self._db.execute(
            """INSERT OR REPLACE INTO team_mappings (league, raw_key, canonical_name, created_at)
               VALUES (?, ?, ?, ?)""",
            (league, normalize_key(raw_team), canonical_name, _ts(utcnow())),
        )
        await self._db.commit()

    async def record_team_failure(
        self, league: str, raw_team: str, now: Optional[datetime] = None
    ) -> TeamMatchFailure:
        """Upsert the failure row and bump its occurrence counter."""
        now = now or utcnow()
        await self._db.execute(
            """INSERT INTO team_match_failures
               (league, raw_team, occurrences, status, first_seen_at, last_seen_at)
               VALUES (?, ?, 1, 'open', ?, ?)
               ON CONFLICT(league, raw_team) DO UPDATE SET
                 occurrences = occurrences + 1,
                 last_seen_at = excluded.last_seen_at""",
            (league, raw_team, _ts(now), _ts(now)),
        )
        await self._db.commit()
        row = await self._fetchone(
            "SELECT * FROM team_match_failures WHERE league=? AND raw_team=?", (league, raw_team)
        )
        return TeamMatchFailure(**row)

    async def get_team_failures(self, status: Optional[str] = None) -> list[TeamMatchFailure]:
        if status is None:
            rows = await self._fetchall(
                "SELECT * FROM team_match_failures ORDER BY occurrences DESC, id"
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM team_match_failures WHERE status=? ORDER BY occurrences DESC, id",
                (status,),
            )
        return [TeamMatchFailure(**r) for r in rows]

    async def set_team_failure_status(
        self, league: str, raw_team: str, status: str, canonical_name: Optional[str] = None
    ) -> bool:
        cursor = await self._db.execute(
            """UPDATE team_match_failures SET status=?, canonical_name=?
               WHERE league=? AND raw_team=?""",
            (status, canonical_name, league, raw_team),
        )
        await self._db.commit()
        return cursor.rowcount > 0
