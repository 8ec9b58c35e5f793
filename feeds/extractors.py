"""Instrument extractors, tried in priority order by the resolver.

Each extractor answers one question: can I find the condition id and the two
outcome tokens for this query? Network and payload errors propagate to the
resolver, which records them in the audit log and moves on.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from shared.fields import (
    CONDITION_ID,
    OUTCOMES,
    QUESTION,
    TOKEN_IDS,
    as_token_ids,
    dig,
    pick,
)
from shared.normalize import mentions_team
from shared.schemas import InstrumentQuery

CLOB_BASE = "https://clob.polymarket.com"
GAMMA_BASE = "https://gamma-api.polymarket.com"

# Markets on the same event that are not the head-to-head winner
NON_WINNER_MARKERS = ("spread", "handicap", "o/u", "over/under", "total", "1st half", "first half")

NEXT_DATA_RE = re.compile(
    r'<script[^>]*id="__NEXT_DATA__"[^>]*>(.*?)</script>', re.DOTALL
)
CONDITION_ID_RE = re.compile(r'"conditionId"\s*:\s*"(0x[0-9a-fA-F]+)"')
CLOB_TOKEN_IDS_RE = re.compile(r'"clobTokenIds"\s*:\s*"?\[([^\]]*)\]')


@dataclass
class ExtractorResult:
    success: bool
    condition_id: Optional[str] = None
    token_a: Optional[str] = None
    token_b: Optional[str] = None
    confidence: int = 0
    log: list[str] = field(default_factory=list)


def assign_tokens(
    token_ids: list[str], outcomes: Optional[list], query: InstrumentQuery
) -> Optional[tuple[str, str]]:
    """Order two tokens as (home, away).

    Outcome labels naming a team win; "Yes"/"No" labels map yes->home;
    otherwise the payload order is trusted.
    """
    if len(token_ids) < 2:
        return None
    labels = [str(o) for o in (outcomes or [])][: len(token_ids)]
    if len(labels) >= 2 and query.has_teams:
        for i, label in enumerate(labels[:2]):
            if mentions_team(label, query.team_home):
                return token_ids[i], token_ids[1 - i]
            if mentions_team(label, query.team_away):
                return token_ids[1 - i], token_ids[i]
    if len(labels) >= 2:
        lowered = [label.lower() for label in labels[:2]]
        if lowered == ["no", "yes"]:
            return token_ids[1], token_ids[0]
    return token_ids[0], token_ids[1]


def is_winner_market(text: str) -> bool:
    lowered = (text or "").lower()
    return not any(marker in lowered for marker in NON_WINNER_MARKERS)


def names_both_teams(text: str, query: InstrumentQuery) -> bool:
    return mentions_team(text, query.team_home) and mentions_team(text, query.team_away)


class Extractor:
    """One strategy for locating an instrument."""

    name = "base"
    confidence = 0

    def applies(self, query: InstrumentQuery) -> bool:
        return True

    async def attempt(self, query: InstrumentQuery, client: httpx.AsyncClient) -> ExtractorResult:
        raise NotImplementedError

    def _fail(self, message: str) -> ExtractorResult:
        return ExtractorResult(success=False, log=[f"[{self.name}] {message}"])

    def _ok(
        self,
        condition_id: Optional[str],
        tokens: tuple[str, str],
        message: str,
        confidence: Optional[int] = None,
    ) -> ExtractorResult:
        return ExtractorResult(
            success=True,
            condition_id=condition_id,
            token_a=tokens[0],
            token_b=tokens[1],
            confidence=self.confidence if confidence is None else confidence,
            log=[f"[{self.name}] {message}"],
        )


class ClobDirectExtractor(Extractor):
    """Direct lookup by condition id on the CLOB API."""

    name = "clob_direct"
    confidence = 100

    def __init__(self, clob_base: str = CLOB_BASE):
        self.clob_base = clob_base.rstrip("/")

    def applies(self, query: InstrumentQuery) -> bool:
        return bool(query.condition_id)

    async def attempt(self, query: InstrumentQuery, client: httpx.AsyncClient) -> ExtractorResult:
        resp = await client.get(f"{self.clob_base}/markets/{query.condition_id}")
        if resp.status_code == 404:
            return self._fail(f"condition {query.condition_id} not found")
        resp.raise_for_status()
        data = resp.json()

        tokens = data.get("tokens") or []
        ids = as_token_ids(tokens) or []
        outcomes = [t.get("outcome") for t in tokens if isinstance(t, dict)]
        pair = assign_tokens(ids, outcomes, query)
        if pair is None:
            return self._fail(f"market has {len(ids)} token(s)")
        condition_id = pick(data, CONDITION_ID, default=query.condition_id)
        return self._ok(condition_id, pair, f"resolved {condition_id}")


class GammaSearchExtractor(Extractor):
    """Search active events of the sport's category on the Gamma API by team names."""

    name = "gamma_search"
    confidence = 95
    tokens_array_confidence = 90

    def __init__(self, gamma_base: str = GAMMA_BASE, limit: int = 200):
        self.gamma_base = gamma_base.rstrip("/")
        self.limit = limit

    def applies(self, query: InstrumentQuery) -> bool:
        return query.has_teams

    async def attempt(self, query: InstrumentQuery, client: httpx.AsyncClient) -> ExtractorResult:
        params = {"closed": "false", "limit": self.limit}
        if query.sport:
            params["tag_slug"] = query.sport.lower()
        resp = await client.get(f"{self.gamma_base}/events", params=params)
        resp.raise_for_status()
        events = resp.json()
        if not isinstance(events, list):
            return self._fail("unexpected events payload")

        for event in events:
            event_title = event.get("title", "")
            for market in event.get("markets", []):
                question = pick(market, QUESTION, default="")
                if not names_both_teams(f"{event_title} {question}", query):
                    continue
                if not is_winner_market(question):
                    continue
                ids, confidence = pick(market, TOKEN_IDS[:1]), self.confidence
                if not ids:
                    ids, confidence = pick(market, TOKEN_IDS[1:]), self.tokens_array_confidence
                if not ids:
                    continue
                pair = assign_tokens(ids, pick(market, OUTCOMES), query)
                if pair is None:
                    continue
                return self._ok(
                    pick(market, CONDITION_ID),
                    pair,
                    f"matched '{question[:80]}' in {len(events)} events",
                    confidence=confidence,
                )
        return self._fail(f"no winner market for {query.team_home} vs {query.team_away} in {len(events)} events")


class PageDataExtractor(Extractor):
    """Fetch the public market page and read its embedded Next.js payload."""

    name = "page_data"
    confidence = 80

    JSON_PATHS = (
        ("props", "pageProps", "market"),
        ("props", "pageProps", "event"),
    )

    def applies(self, query: InstrumentQuery) -> bool:
        return bool(query.market_url)

    async def attempt(self, query: InstrumentQuery, client: httpx.AsyncClient) -> ExtractorResult:
        resp = await client.get(query.market_url, follow_redirects=True)
        resp.raise_for_status()
        html = resp.text

        match = NEXT_DATA_RE.search(html)
        if match:
            try:
                payload = json.loads(match.group(1))
            except json.JSONDecodeError:
                payload = None
            if payload is not None:
                for candidate in self._candidates(payload):
                    found = self._from_market(candidate, query)
                    if found:
                        return found

        cid = CONDITION_ID_RE.search(html)
        ids = CLOB_TOKEN_IDS_RE.search(html)
        if ids:
            token_ids = re.findall(r'\\?"(\d{6,})\\?"', ids.group(1))
            pair = assign_tokens(token_ids, None, query)
            if pair:
                return self._ok(
                    cid.group(1) if cid else None, pair, "text-pattern scan found clobTokenIds"
                )
        return self._fail("no instrument ids in page")

    def _candidates(self, payload: dict) -> list[Any]:
        found = []
        queries = dig(payload, ("props", "pageProps", "dehydratedState", "queries")) or []
        for q in queries:
            data = dig(q, ("state", "data"))
            if data is not None:
                found.append(data)
        for path in self.JSON_PATHS:
            data = dig(payload, path)
            if data is not None:
                found.append(data)
        return found

    def _from_market(self, data: Any, query: InstrumentQuery) -> Optional[ExtractorResult]:
        if isinstance(data, list):
            for item in data:
                result = self._from_market(item, query)
                if result:
                    return result
            return None
        if isinstance(data, dict) and isinstance(data.get("markets"), list):
            markets = data["markets"]
            if query.has_teams:
                markets = [
                    m for m in markets
                    if is_winner_market(pick(m, QUESTION, default=""))
                ] or markets
            for market in markets:
                result = self._from_market(market, query)
                if result:
                    return result
            return None
        ids = pick(data, TOKEN_IDS)
        if not ids:
            return None
        pair = assign_tokens(ids, pick(data, OUTCOMES), query)
        if pair is None:
            return None
        return self._ok(pick(data, CONDITION_ID), pair, "embedded JSON payload")


class ClobSearchExtractor(Extractor):
    """Fuzzy search over the CLOB market list by team names and nicknames."""

    name = "clob_search"
    confidence = 75

    def __init__(self, clob_base: str = CLOB_BASE, limit: int = 500):
        self.clob_base = clob_base.rstrip("/")
        self.limit = limit

    def applies(self, query: InstrumentQuery) -> bool:
        return query.has_teams

    async def attempt(self, query: InstrumentQuery, client: httpx.AsyncClient) -> ExtractorResult:
        resp = await client.get(f"{self.clob_base}/markets", params={"limit": self.limit})
        resp.raise_for_status()
        data = resp.json()
        markets = data.get("data", []) if isinstance(data, dict) else data
        if not isinstance(markets, list):
            return self._fail("unexpected markets payload")

        for market in markets:
            question = pick(market, QUESTION, default="")
            if not names_both_teams(question, query) or not is_winner_market(question):
                continue
            tokens = market.get("tokens") or []
            ids = as_token_ids(tokens) or []
            outcomes = [t.get("outcome") for t in tokens if isinstance(t, dict)]
            pair = assign_tokens(ids, outcomes, query)
            if pair is None:
                continue
            return self._ok(pick(market, CONDITION_ID), pair, f"matched '{question[:80]}'")
        return self._fail(f"no match among {len(markets)} markets")


def default_extractors(clob_base: str = CLOB_BASE, gamma_base: str = GAMMA_BASE) -> list[Extractor]:
    return [
        ClobDirectExtractor(clob_base),
        GammaSearchExtractor(gamma_base),
        PageDataExtractor(),
        ClobSearchExtractor(clob_base),
    ]
