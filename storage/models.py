"""SQLite table definitions."""

CREATE_MARKETS_TABLE = """
CREATE TABLE IF NOT EXISTS markets (
    market_key TEXT PRIMARY KEY,
    league TEXT NOT NULL,
    sport TEXT NOT NULL DEFAULT '',
    home_team TEXT NOT NULL,
    away_team TEXT NOT NULL,
    market_type TEXT NOT NULL DEFAULT 'h2h',
    start_time TEXT NOT NULL,
    draw_capable INTEGER NOT NULL DEFAULT 0,
    condition_id TEXT,
    market_url TEXT
);
"""

CREATE_QUOTES_TABLE = """
CREATE TABLE IF NOT EXISTS quotes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id TEXT NOT NULL,
    market_key TEXT NOT NULL,
    outcome TEXT NOT NULL,
    price REAL NOT NULL,
    is_sharp INTEGER NOT NULL DEFAULT 0,
    observed_at TEXT NOT NULL
);
"""

CREATE_QUOTES_INDEX = """
CREATE INDEX IF NOT EXISTS idx_quotes_market_time ON quotes (market_key, observed_at);
"""

CREATE_SIGNALS_TABLE = """
CREATE TABLE IF NOT EXISTS signals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    dedupe_key TEXT NOT NULL,
    market_key TEXT NOT NULL,
    league TEXT NOT NULL,
    sport TEXT NOT NULL DEFAULT '',
    home_team TEXT NOT NULL,
    away_team TEXT NOT NULL,
    market_type TEXT NOT NULL,
    start_time TEXT NOT NULL,
    side TEXT NOT NULL,
    direction TEXT NOT NULL,
    confidence REAL NOT NULL,
    raw_confidence REAL,
    book_implied_probability REAL,
    minutes_to_start REAL NOT NULL DEFAULT 0,
    liquidity_estimate REAL,
    consensus_count INTEGER NOT NULL DEFAULT 0,
    sharp_count INTEGER NOT NULL DEFAULT 0,
    magnitude REAL NOT NULL DEFAULT 0,
    velocity REAL NOT NULL DEFAULT 0,
    poly_data_status TEXT NOT NULL DEFAULT 'OK',
    state TEXT NOT NULL,
    state_reason TEXT NOT NULL DEFAULT '',
    condition_id TEXT,
    market_url TEXT,
    core_logic_version TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_event_at TEXT NOT NULL,
    last_promoted_at TEXT
);
"""

# One live signal per dedupe key; REJECT/EXPIRED/SETTLED rows are history
CREATE_SIGNALS_DEDUPE_INDEX = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_signals_live_dedupe ON signals (dedupe_key)
WHERE state IN ('WATCH', 'S1_PROMOTE', 'S2_EXECUTION_ELIGIBLE');
"""

CREATE_TRANSITIONS_TABLE = """
CREATE TABLE IF NOT EXISTS signal_transitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    signal_id INTEGER NOT NULL,
    from_state TEXT,
    to_state TEXT NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    at TEXT NOT NULL
);
"""

CREATE_INSTRUMENT_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS instrument_cache (
    cache_key TEXT PRIMARY KEY,
    query_ref TEXT NOT NULL,
    condition_id TEXT,
    outcome_token_a TEXT,
    outcome_token_b TEXT,
    source TEXT,
    confidence INTEGER NOT NULL DEFAULT 0,
    tradeable INTEGER NOT NULL DEFAULT 0,
    reason_if_untradeable TEXT NOT NULL DEFAULT '',
    extractor_log TEXT NOT NULL DEFAULT '[]',
    resolved_at TEXT NOT NULL
);
"""

CREATE_RECOMMENDED_BETS_TABLE = """
CREATE TABLE IF NOT EXISTS recommended_bets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id TEXT NOT NULL,
    signal_id INTEGER NOT NULL,
    instrument_ref TEXT,
    token_id TEXT,
    league TEXT NOT NULL,
    event_name TEXT NOT NULL,
    side TEXT NOT NULL,
    start_time TEXT NOT NULL,
    odds REAL NOT NULL,
    price REAL NOT NULL,
    fair_probability REAL NOT NULL,
    edge REAL NOT NULL,
    bet_score REAL NOT NULL,
    stake_units REAL NOT NULL,
    confidence_tier TEXT NOT NULL,
    rationale TEXT NOT NULL DEFAULT '',
    placed INTEGER NOT NULL DEFAULT 0,
    result TEXT NOT NULL DEFAULT 'pending',
    profit_units REAL,
    created_at TEXT NOT NULL,
    settled_at TEXT,
    UNIQUE (cycle_id, signal_id)
);
"""

CREATE_TEAM_MAPPINGS_TABLE = """
CREATE TABLE IF NOT EXISTS team_mappings (
    league TEXT NOT NULL,
    raw_key TEXT NOT NULL,
    canonical_name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (league, raw_key)
);
"""

CREATE_TEAM_FAILURES_TABLE = """
CREATE TABLE IF NOT EXISTS team_match_failures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    league TEXT NOT NULL,
    raw_team TEXT NOT NULL,
    occurrences INTEGER NOT NULL DEFAULT 1,
    status TEXT NOT NULL DEFAULT 'open',
    canonical_name TEXT,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    UNIQUE (league, raw_team)
);
"""

ALL_TABLES = [
    CREATE_MARKETS_TABLE,
    CREATE_QUOTES_TABLE,
    CREATE_QUOTES_INDEX,
    CREATE_SIGNALS_TABLE,
    CREATE_SIGNALS_DEDUPE_INDEX,
    CREATE_TRANSITIONS_TABLE,
    CREATE_INSTRUMENT_CACHE_TABLE,
    CREATE_RECOMMENDED_BETS_TABLE,
    CREATE_TEAM_MAPPINGS_TABLE,
    CREATE_TEAM_FAILURES_TABLE,
]
