"""Test helpers shared across test files."""
from datetime import datetime, timedelta, timezone

from shared.schemas import Direction, MarketRef, MovementEvent, Quote, Signal

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
MARKET_KEY = "nba-bos-nyk"


def make_market(**overrides) -> MarketRef:
    fields = dict(
        market_key=MARKET_KEY,
        league="NBA",
        sport="nba",
        home_team="Boston Celtics",
        away_team="New York Knicks",
        start_time=NOW + timedelta(hours=2),
    )
    fields.update(overrides)
    return MarketRef(**fields)


def quote(source, outcome, price, at=NOW, sharp=False, market_key=MARKET_KEY) -> Quote:
    return Quote(
        source_id=source, market_key=market_key, outcome=outcome,
        price=price, observed_at=at, is_sharp=sharp,
    )


def two_way(source, home_price, away_price, at=NOW, sharp=False, market_key=MARKET_KEY) -> list[Quote]:
    return [
        quote(source, "home", home_price, at, sharp, market_key),
        quote(source, "away", away_price, at, sharp, market_key),
    ]


def moving_quotes(
    sources=("pinnacle", "circa", "draftkings"),
    sharp=("pinnacle",),
    start=NOW - timedelta(minutes=10),
    minutes=10,
    home_from=0.50,
    home_to=0.588,
    overround=1.05,
    market_key=MARKET_KEY,
) -> list[Quote]:
    """One quote pair per source per minute, home probability moving linearly.

    Prices are decimal odds with a constant overround, so the de-vigged home
    probability moves by (home_to - home_from) / overround.
    """
    quotes = []
    for i in range(minutes + 1):
        p = home_from + (home_to - home_from) * i / minutes
        at = start + timedelta(minutes=i)
        for source in sources:
            quotes += two_way(
                source, 1.0 / p, 1.0 / (overround - p), at, source in sharp, market_key
            )
    return quotes


def make_event(**overrides) -> MovementEvent:
    fields = dict(
        market_key=MARKET_KEY,
        outcome="home",
        direction=Direction.UP,
        magnitude=0.084,
        velocity=0.0084,
        persistence=1.0,
        consensus_count=3,
        sharp_count=1,
        sources=["circa", "draftkings", "pinnacle"],
        window_start=NOW - timedelta(minutes=10),
        window_end=NOW,
    )
    fields.update(overrides)
    return MovementEvent(**fields)


def make_signal(**overrides) -> Signal:
    start = overrides.pop("start_time", NOW + timedelta(hours=2))
    fields = dict(
        dedupe_key=f"nba|boston celtics|new york knicks|h2h|{start.isoformat()}",
        market_key=MARKET_KEY,
        league="NBA",
        sport="nba",
        home_team="Boston Celtics",
        away_team="New York Knicks",
        start_time=start,
        side="home",
        direction=Direction.UP,
        confidence=70.0,
        book_implied_probability=0.56,
        minutes_to_start=(start - NOW).total_seconds() / 60.0,
        liquidity_estimate=20000.0,
        consensus_count=3,
        sharp_count=1,
        magnitude=0.084,
        velocity=0.0084,
        core_logic_version="v1.3",
        created_at=NOW,
        updated_at=NOW,
        last_event_at=NOW,
    )
    fields.update(overrides)
    return Signal(**fields)
