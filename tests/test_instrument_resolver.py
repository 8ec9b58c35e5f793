"""Tests for feeds.instrument_resolver and feeds.extractors."""
import json
from datetime import timedelta

import httpx
import pytest

from feeds.extractors import (
    ClobDirectExtractor,
    ClobSearchExtractor,
    Extractor,
    ExtractorResult,
    GammaSearchExtractor,
    PageDataExtractor,
    assign_tokens,
    is_winner_market,
)
from feeds.instrument_resolver import ALL_EXTRACTORS_FAILED, InstrumentResolver
from helpers import NOW
from shared.schemas import InstrumentQuery

CLOB = "https://clob.test"
GAMMA = "https://gamma.test"

QUERY = InstrumentQuery(
    condition_id="0xabc",
    team_home="Boston Celtics",
    team_away="New York Knicks",
    sport="nba",
)

GAMMA_EVENTS = [
    {
        "title": "Knicks vs. Celtics",
        "markets": [
            {
                "question": "Knicks vs. Celtics: O/U 220.5",
                "conditionId": "0xtotal",
                "clobTokenIds": json.dumps(["901", "902"]),
            },
            {
                "question": "Knicks vs. Celtics",
                "conditionId": "0xabc",
                "clobTokenIds": json.dumps(["111", "222"]),
                "outcomes": json.dumps(["Knicks", "Celtics"]),
            },
        ],
    }
]


class FakeExtractor(Extractor):
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    async def attempt(self, query, client):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


def _ok(name, confidence=100):
    return ExtractorResult(
        success=True, condition_id="0xabc", token_a="111", token_b="222",
        confidence=confidence, log=[f"[{name}] resolved"],
    )


def _fail(name):
    return ExtractorResult(success=False, log=[f"[{name}] nothing found"])


def _transport(clob_status=404):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "clob.test" and request.url.path.startswith("/markets/"):
            return httpx.Response(clob_status, json={"error": "not found"})
        if request.url.host == "gamma.test" and request.url.path == "/events":
            assert request.url.params["tag_slug"] == "nba"
            return httpx.Response(200, json=GAMMA_EVENTS)
        return httpx.Response(500)
    return httpx.MockTransport(handler)


def test_assign_tokens_by_team_label():
    ids = ["111", "222"]
    assert assign_tokens(ids, ["Knicks", "Celtics"], QUERY) == ("222", "111")
    assert assign_tokens(ids, ["No", "Yes"], InstrumentQuery()) == ("222", "111")
    assert assign_tokens(ids, None, QUERY) == ("111", "222")
    assert assign_tokens(["111"], None, QUERY) is None


def test_is_winner_market():
    assert is_winner_market("Knicks vs. Celtics")
    assert not is_winner_market("Spread: Celtics (-4.5)")


@pytest.mark.asyncio
async def test_first_success_stops_chain(db):
    first = FakeExtractor("first", _ok("first"))
    second = FakeExtractor("second", _ok("second", 95))
    resolver = InstrumentResolver(db, extractors=[first, second], client=httpx.AsyncClient())
    resolution = await resolver.resolve(QUERY, NOW)
    assert resolution.tradeable is True
    assert resolution.source == "first"
    assert second.calls == 0


@pytest.mark.asyncio
async def test_fallback_to_gamma_search(db):
    async with httpx.AsyncClient(transport=_transport()) as client:
        resolver = InstrumentResolver(
            db,
            extractors=[ClobDirectExtractor(CLOB), GammaSearchExtractor(GAMMA)],
            client=client,
        )
        resolution = await resolver.resolve(QUERY, NOW)

    assert resolution.tradeable is True
    assert resolution.source == "gamma_search"
    assert resolution.confidence == 95
    assert resolution.condition_id == "0xabc"
    # Outcome labels put the Celtics (home) second in the payload
    assert resolution.outcome_token_a == "222"
    assert resolution.outcome_token_b == "111"
    assert any(line.startswith("[clob_direct]") for line in resolution.extractor_log)
    assert any(line.startswith("[gamma_search]") for line in resolution.extractor_log)


@pytest.mark.asyncio
async def test_provider_errors_recorded_and_skipped(db):
    broken = FakeExtractor("broken", error=httpx.ConnectError("refused"))
    garbled = FakeExtractor("garbled", error=KeyError("tokens"))
    good = FakeExtractor("good", _ok("good", 80))
    resolver = InstrumentResolver(db, extractors=[broken, garbled, good], client=httpx.AsyncClient())
    resolution = await resolver.resolve(QUERY, NOW)
    assert resolution.source == "good"
    assert resolution.extractor_log[0].startswith("[broken] provider error")
    assert resolution.extractor_log[1].startswith("[garbled] malformed payload")


@pytest.mark.asyncio
async def test_inapplicable_extractor_skipped(db):
    page = PageDataExtractor()
    good = FakeExtractor("good", _ok("good"))
    resolver = InstrumentResolver(db, extractors=[page, good], client=httpx.AsyncClient())
    resolution = await resolver.resolve(QUERY, NOW)
    assert resolution.extractor_log[0] == "[page_data] skipped: query lacks required fields"


@pytest.mark.asyncio
async def test_all_fail_is_cached_then_retried(db):
    a = FakeExtractor("a", _fail("a"))
    b = FakeExtractor("b", _fail("b"))
    resolver = InstrumentResolver(db, extractors=[a, b], client=httpx.AsyncClient())

    resolution = await resolver.resolve(QUERY, NOW)
    assert resolution.tradeable is False
    assert resolution.reason_if_untradeable == ALL_EXTRACTORS_FAILED
    assert resolution.extractor_log == ["[a] nothing found", "[b] nothing found"]

    cached = await resolver.resolve(QUERY, NOW + timedelta(minutes=5))
    assert cached.from_cache is True
    assert a.calls == 1

    await resolver.resolve(QUERY, NOW + timedelta(minutes=16))
    assert a.calls == 2


@pytest.mark.asyncio
async def test_success_cached_until_ttl(db):
    first = FakeExtractor("first", _ok("first"))
    resolver = InstrumentResolver(db, extractors=[first], client=httpx.AsyncClient())
    await resolver.resolve(QUERY, NOW)
    cached = await resolver.resolve(QUERY, NOW + timedelta(hours=5))
    assert cached.from_cache is True
    assert cached.outcome_token_a == "111"
    await resolver.resolve(QUERY, NOW + timedelta(hours=7))
    assert first.calls == 2

    forced = await resolver.resolve(QUERY, NOW + timedelta(hours=7), force=True)
    assert forced.from_cache is False
    assert first.calls == 3


@pytest.mark.asyncio
async def test_page_data_reads_next_payload():
    payload = {
        "props": {"pageProps": {"event": {"markets": [
            {"question": "Knicks vs. Celtics", "conditionId": "0xabc",
             "clobTokenIds": json.dumps(["111", "222"]),
             "outcomes": json.dumps(["Celtics", "Knicks"])},
        ]}}}
    }
    html = f'<html><script id="__NEXT_DATA__" type="application/json">{json.dumps(payload)}</script></html>'

    def handler(request):
        return httpx.Response(200, text=html)

    query = QUERY.model_copy(update={"market_url": "https://polymarket.test/event/nba-nyk-bos"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await PageDataExtractor().attempt(query, client)
    assert result.success is True
    assert result.condition_id == "0xabc"
    assert (result.token_a, result.token_b) == ("111", "222")
    assert result.confidence == 80


@pytest.mark.asyncio
async def test_clob_search_matches_by_nickname():
    markets = {"data": [
        {"question": "Lakers vs. Suns", "condition_id": "0xother", "tokens": [
            {"token_id": "1", "outcome": "Lakers"}, {"token_id": "2", "outcome": "Suns"}]},
        {"question": "Celtics vs. Knicks", "condition_id": "0xabc", "tokens": [
            {"token_id": "111", "outcome": "Celtics"}, {"token_id": "222", "outcome": "Knicks"}]},
    ]}

    def handler(request):
        return httpx.Response(200, json=markets)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await ClobSearchExtractor(CLOB).attempt(QUERY, client)
    assert result.success is True
    assert result.condition_id == "0xabc"
    assert result.token_a == "111"
