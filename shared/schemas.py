"""Pydantic models for all data flowing through the pipeline."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class SignalState(str, Enum):
    REJECT = "REJECT"
    WATCH = "WATCH"
    S1_PROMOTE = "S1_PROMOTE"
    S2_EXECUTION_ELIGIBLE = "S2_EXECUTION_ELIGIBLE"
    EXPIRED = "EXPIRED"
    SETTLED = "SETTLED"


# States whose rows own their dedupe key
LIVE_STATES = (SignalState.WATCH, SignalState.S1_PROMOTE, SignalState.S2_EXECUTION_ELIGIBLE)

# Forward-only state machine; REJECT and SETTLED are terminal
ALLOWED_TRANSITIONS: dict[SignalState, frozenset[SignalState]] = {
    SignalState.WATCH: frozenset(
        {SignalState.S1_PROMOTE, SignalState.S2_EXECUTION_ELIGIBLE, SignalState.EXPIRED}
    ),
    SignalState.S1_PROMOTE: frozenset({SignalState.S2_EXECUTION_ELIGIBLE, SignalState.EXPIRED}),
    SignalState.S2_EXECUTION_ELIGIBLE: frozenset({SignalState.EXPIRED, SignalState.SETTLED}),
    SignalState.EXPIRED: frozenset({SignalState.SETTLED}),
    SignalState.REJECT: frozenset(),
    SignalState.SETTLED: frozenset(),
}

# Ordering used when a re-triggered signal may only move up
STATE_RANK = {
    SignalState.REJECT: 0,
    SignalState.WATCH: 1,
    SignalState.S1_PROMOTE: 2,
    SignalState.S2_EXECUTION_ELIGIBLE: 3,
}


def can_transition(from_state: Optional[SignalState], to_state: SignalState) -> bool:
    if from_state is None:
        return True
    return to_state in ALLOWED_TRANSITIONS[from_state]


class PolyDataStatus(str, Enum):
    """Health of the liquidity providers at the time a signal was gated."""
    OK = "OK"
    DEGRADED = "DEGRADED"
    DISAGREE = "DISAGREE"
    UNAVAILABLE = "UNAVAILABLE"


class LiquidityTier(str, Enum):
    INSUFFICIENT = "insufficient"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExecutionDecision(str, Enum):
    STRONG_BET = "STRONG_BET"
    BET = "BET"
    MARGINAL = "MARGINAL"
    NO_BET = "NO_BET"


class RejectionReason(str, Enum):
    UNTRADEABLE = "untradeable"
    NO_PRICE = "no_price"
    NO_BET = "no_bet"
    EDGE_COLLAPSED = "edge_collapsed"
    STAKE_SUPPRESSED = "stake_suppressed"
    SCORE_FLOOR = "score_floor"
    MAX_BETS = "max_bets"
    EVENT_CAP = "event_cap"
    EXPOSURE_CAP = "exposure_cap"
    LEAGUE_CAP = "league_cap"
    CLUSTER_CAP = "cluster_cap"
    ERROR = "error"


class BetResult(str, Enum):
    WON = "won"
    LOST = "lost"
    VOID = "void"
    PENDING = "pending"


class MarketRef(BaseModel):
    """Market metadata written by the ingestion jobs."""
    market_key: str
    league: str
    sport: str = ""
    home_team: str
    away_team: str
    market_type: str = "h2h"
    start_time: datetime
    draw_capable: bool = False
    condition_id: Optional[str] = None
    market_url: Optional[str] = None

    @property
    def event_name(self) -> str:
        return f"{self.away_team} @ {self.home_team}"


class Quote(BaseModel):
    """One source's price for one outcome of one market at one instant."""
    source_id: str
    market_key: str
    outcome: str  # "home", "away" or "draw"
    price: float = Field(gt=0.0)
    observed_at: datetime = Field(default_factory=utcnow)
    is_sharp: bool = False

    @property
    def implied_probability(self) -> float:
        # Prediction-market prices are already probabilities; book prices are decimal odds
        if self.price < 1.0:
            return self.price
        return 1.0 / self.price


class FairProbabilityResult(BaseModel):
    """De-vigged probabilities for one market, or the reason there are none."""
    market_key: str
    sufficient: bool
    reason: str = ""
    probabilities: dict[str, float] = Field(default_factory=dict)
    fair_prices: dict[str, float] = Field(default_factory=dict)
    overround: float = 0.0
    sources_used: dict[str, int] = Field(default_factory=dict)
    sharp_only: bool = False
    discarded: list[str] = Field(default_factory=list)


class MovementEvent(BaseModel):
    """Directional, consensus-backed odds movement over one window."""
    market_key: str
    outcome: str
    direction: Direction
    magnitude: float
    velocity: float
    persistence: float = 1.0
    consensus_count: int
    sharp_count: int = 0
    sources: list[str] = Field(default_factory=list)
    window_start: datetime
    window_end: datetime

    @property
    def backed_side(self) -> str:
        """The outcome the move favours."""
        if self.direction == Direction.UP:
            return self.outcome
        return "away" if self.outcome == "home" else "home"


class ProviderReading(BaseModel):
    provider: str
    reachable: bool
    liquidity: Optional[float] = None
    volume: Optional[float] = None
    error: str = ""


class LiquidityReport(BaseModel):
    """Combined view of the liquidity providers for one market."""
    readings: list[ProviderReading] = Field(default_factory=list)
    liquidity_estimate: Optional[float] = None
    volume: Optional[float] = None
    status: PolyDataStatus = PolyDataStatus.OK

    @property
    def reachable_count(self) -> int:
        return sum(1 for r in self.readings if r.reachable)


class Signal(BaseModel):
    """Candidate signal: the long-lived record the quality gate moves through states."""
    id: Optional[int] = None
    dedupe_key: str
    market_key: str
    league: str
    sport: str = ""
    home_team: str
    away_team: str
    market_type: str = "h2h"
    start_time: datetime
    side: str
    direction: Direction
    confidence: float = Field(ge=0.0, le=100.0)
    # Confidence before provider-health degradation; the gate always degrades from this
    raw_confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    book_implied_probability: Optional[float] = None
    minutes_to_start: float = 0.0
    liquidity_estimate: Optional[float] = None
    consensus_count: int = 0
    sharp_count: int = 0
    magnitude: float = 0.0
    velocity: float = 0.0
    poly_data_status: PolyDataStatus = PolyDataStatus.OK
    state: SignalState = SignalState.WATCH
    state_reason: str = ""
    condition_id: Optional[str] = None
    market_url: Optional[str] = None
    core_logic_version: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_event_at: datetime = Field(default_factory=utcnow)
    last_promoted_at: Optional[datetime] = None

    @property
    def event_name(self) -> str:
        return f"{self.away_team} @ {self.home_team}"

    @property
    def backed_team(self) -> str:
        return self.home_team if self.side == "home" else self.away_team

    @property
    def ungated_confidence(self) -> float:
        return self.raw_confidence if self.raw_confidence is not None else self.confidence


class SignalTransition(BaseModel):
    signal_id: int
    from_state: Optional[SignalState] = None
    to_state: SignalState
    reason: str = ""
    at: datetime = Field(default_factory=utcnow)


class InstrumentQuery(BaseModel):
    """Any combination of references to one tradable market."""
    condition_id: Optional[str] = None
    market_url: Optional[str] = None
    team_home: Optional[str] = None
    team_away: Optional[str] = None
    sport: Optional[str] = None

    @property
    def query_ref(self) -> str:
        if self.condition_id:
            return self.condition_id
        if self.team_home and self.team_away:
            return f"{(self.sport or 'sports').lower()}:{self.team_home.lower()}|{self.team_away.lower()}"
        return self.market_url or ""

    @property
    def has_teams(self) -> bool:
        return bool(self.team_home and self.team_away)


class InstrumentResolution(BaseModel):
    query_ref: str
    condition_id: Optional[str] = None
    outcome_token_a: Optional[str] = None
    outcome_token_b: Optional[str] = None
    source: Optional[str] = None
    confidence: int = Field(default=0, ge=0, le=100)
    tradeable: bool = False
    reason_if_untradeable: str = ""
    extractor_log: list[str] = Field(default_factory=list)
    resolved_at: datetime = Field(default_factory=utcnow)
    from_cache: bool = False

    def token_for(self, side: str) -> Optional[str]:
        return self.outcome_token_a if side == "home" else self.outcome_token_b


class ExecutionAnalysis(BaseModel):
    """Net-of-cost view of one signal. Edges and costs are percentage points."""
    raw_edge: float
    fee_cost: float = 0.0
    spread_cost: float = 0.0
    slippage_cost: float = 0.0
    total_cost: float = 0.0
    net_edge: float = 0.0
    liquidity_tier: LiquidityTier = LiquidityTier.INSUFFICIENT
    max_stake_without_impact: float = 0.0
    decision: ExecutionDecision = ExecutionDecision.NO_BET
    reason: str = ""


class KellyResult(BaseModel):
    kelly_fraction: float = 0.0
    stake_units: float = 0.0
    bankroll_pct: float = 0.0
    sizing_tier: str = "micro"
    warnings: list[str] = Field(default_factory=list)


class RecommendedBet(BaseModel):
    id: Optional[int] = None
    cycle_id: str
    signal_id: int
    instrument_ref: Optional[str] = None
    token_id: Optional[str] = None
    league: str
    event_name: str
    side: str
    start_time: datetime
    odds: float
    price: float
    fair_probability: float
    edge: float
    bet_score: float
    stake_units: float
    confidence_tier: str
    rationale: str = ""
    placed: bool = False
    result: BetResult = BetResult.PENDING
    profit_units: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    settled_at: Optional[datetime] = None


class Rejection(BaseModel):
    signal_id: Optional[int] = None
    event_name: str = ""
    reason: RejectionReason
    detail: str
    bet_score: Optional[float] = None


class CycleReport(BaseModel):
    """Structured result of one recommendation cycle, including empty ones."""
    cycle_id: str
    core_logic_version: str
    signals_considered: int = 0
    accepted: list[RecommendedBet] = Field(default_factory=list)
    rejected: list[Rejection] = Field(default_factory=list)
    rejection_counts: dict[str, int] = Field(default_factory=dict)
    expired_signal_ids: list[int] = Field(default_factory=list)
    total_stake_units: float = 0.0
    expected_value_units: float = 0.0
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class TeamMatchFailure(BaseModel):
    id: Optional[int] = None
    league: str
    raw_team: str
    occurrences: int = 1
    status: str = "open"  # open / resolved / ignored
    canonical_name: Optional[str] = None
    first_seen_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow)
