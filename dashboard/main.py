"""FastAPI JSON surface: signal views plus the human write paths."""
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from execution.recommender import Recommender
from feeds.instrument_resolver import InstrumentResolver
from shared.schemas import BetResult, InstrumentQuery, MarketRef, Quote, SignalState
from storage.db import Database
from strategy.team_resolution import TeamResolver

app = FastAPI(title="Linewatch")

# Shared services (set by agent.py)
_db: Database | None = None
_resolver: InstrumentResolver | None = None
_recommender: Recommender | None = None


def set_services(
    db: Database,
    resolver: Optional[InstrumentResolver] = None,
    recommender: Optional[Recommender] = None,
):
    global _db, _resolver, _recommender
    _db = db
    _resolver = resolver
    _recommender = recommender


def _get_db() -> Database:
    if _db is None:
        raise RuntimeError("Database not initialized")
    return _db


class TeamMappingRequest(BaseModel):
    league: str
    raw_team: str
    canonical_name: Optional[str] = None


class SettleRequest(BaseModel):
    result: BetResult


class QuoteBatch(BaseModel):
    market: Optional[MarketRef] = None
    quotes: list[Quote] = []


@app.get("/api/status")
async def api_status():
    db = _get_db()
    summary = await db.get_performance_summary()
    live = await db.get_live_signals()
    counts: dict[str, int] = {}
    for s in live:
        counts[s.state.value] = counts.get(s.state.value, 0) + 1
    open_failures = await db.get_team_failures(status="open")
    return {
        "status": "running",
        "live_signals": counts,
        "open_team_failures": len(open_failures),
        "performance": summary,
    }


@app.get("/api/signals")
async def api_signals(state: Optional[SignalState] = None, limit: int = 100):
    db = _get_db()
    signals = await db.get_signals(state=state, limit=limit)
    return {"signals": [s.model_dump(mode="json") for s in signals]}


@app.get("/api/signals/{signal_id}/transitions")
async def api_signal_transitions(signal_id: int):
    db = _get_db()
    signal = await db.get_signal(signal_id)
    if signal is None:
        raise HTTPException(status_code=404, detail="signal not found")
    transitions = await db.get_transitions(signal_id)
    return {
        "signal": signal.model_dump(mode="json"),
        "transitions": [t.model_dump(mode="json") for t in transitions],
    }


@app.get("/api/recommendations")
async def api_recommendations(cycle_id: Optional[str] = None, limit: int = 50):
    db = _get_db()
    bets = await db.get_recommendations(cycle_id=cycle_id, limit=limit)
    return {"recommendations": [b.model_dump(mode="json") for b in bets]}


@app.post("/api/recommendations/{bet_id}/placed")
async def api_mark_placed(bet_id: int):
    if _recommender is None:
        raise HTTPException(status_code=503, detail="recommender not running")
    if not await _recommender.mark_placed(bet_id):
        raise HTTPException(status_code=404, detail="recommendation not found")
    return {"id": bet_id, "placed": True}


@app.post("/api/recommendations/{bet_id}/settle")
async def api_settle(bet_id: int, body: SettleRequest):
    if _recommender is None:
        raise HTTPException(status_code=503, detail="recommender not running")
    bet = await _recommender.settle(bet_id, body.result)
    if bet is None:
        raise HTTPException(status_code=404, detail="recommendation not found")
    return bet.model_dump(mode="json")


@app.get("/api/team-failures")
async def api_team_failures(status: Optional[str] = "open"):
    db = _get_db()
    failures = await db.get_team_failures(status=status)
    return {"failures": [f.model_dump(mode="json") for f in failures]}


@app.post("/api/team-failures/resolve")
async def api_resolve_team(body: TeamMappingRequest):
    if not body.canonical_name:
        raise HTTPException(status_code=422, detail="canonical_name is required")
    await TeamResolver(_get_db()).confirm_mapping(body.league, body.raw_team, body.canonical_name)
    return {"league": body.league, "raw_team": body.raw_team, "status": "resolved"}


@app.post("/api/team-failures/ignore")
async def api_ignore_team(body: TeamMappingRequest):
    if not await TeamResolver(_get_db()).ignore_failure(body.league, body.raw_team):
        raise HTTPException(status_code=404, detail="failure not found")
    return {"league": body.league, "raw_team": body.raw_team, "status": "ignored"}


@app.get("/api/instruments")
async def api_instruments(limit: int = 100):
    db = _get_db()
    cached = await db.get_cached_resolutions(limit=limit)
    return {"instruments": [r.model_dump(mode="json") for r in cached]}


@app.get("/api/instruments/{cache_key:path}")
async def api_instrument(cache_key: str):
    db = _get_db()
    cached = await db.get_cached_resolution(cache_key)
    if cached is None:
        raise HTTPException(status_code=404, detail="not cached")
    return cached.model_dump(mode="json")


@app.post("/api/resolve")
async def api_resolve(query: InstrumentQuery, force: bool = False):
    if _resolver is None:
        raise HTTPException(status_code=503, detail="resolver not running")
    if not query.query_ref:
        raise HTTPException(status_code=422, detail="query needs a condition id, teams or a url")
    resolution = await _resolver.resolve(query, force=force)
    return resolution.model_dump(mode="json")


@app.post("/api/quotes")
async def api_quotes(batch: QuoteBatch):
    """Write path for ingestion collaborators."""
    db = _get_db()
    if batch.market is not None:
        await db.upsert_market(batch.market)
    written = await db.add_quotes(batch.quotes)
    return {"written": written}
