"""Poll the liquidity providers for one market and merge their readings."""
import asyncio
import logging
from typing import Optional

import httpx

from shared.fields import LIQUIDITY, VOLUME, as_token_ids, pick
from shared.schemas import LiquidityReport, PolyDataStatus, ProviderReading

logger = logging.getLogger(__name__)

CLOB_BASE = "https://clob.polymarket.com"
GAMMA_BASE = "https://gamma-api.polymarket.com"


class LiquidityProvider:
    name = "base"

    async def read(self, condition_id: str, client: httpx.AsyncClient) -> ProviderReading:
        raise NotImplementedError


class GammaLiquidityProvider(LiquidityProvider):
    """Market metadata liquidity and volume from the Gamma API (primary)."""

    name = "gamma"

    def __init__(self, gamma_base: str = GAMMA_BASE):
        self.gamma_base = gamma_base.rstrip("/")

    async def read(self, condition_id: str, client: httpx.AsyncClient) -> ProviderReading:
        resp = await client.get(
            f"{self.gamma_base}/markets", params={"condition_ids": condition_id}
        )
        resp.raise_for_status()
        data = resp.json()
        market = data[0] if isinstance(data, list) and data else None
        if market is None:
            return ProviderReading(provider=self.name, reachable=True, error="market not listed")
        return ProviderReading(
            provider=self.name,
            reachable=True,
            liquidity=pick(market, LIQUIDITY),
            volume=pick(market, VOLUME),
        )


class ClobBookProvider(LiquidityProvider):
    """Resting order-book notional on the first outcome token (secondary)."""

    name = "clob_book"

    def __init__(self, clob_base: str = CLOB_BASE):
        self.clob_base = clob_base.rstrip("/")

    async def read(self, condition_id: str, client: httpx.AsyncClient) -> ProviderReading:
        resp = await client.get(f"{self.clob_base}/markets/{condition_id}")
        resp.raise_for_status()
        tokens = as_token_ids(resp.json().get("tokens") or [])
        if not tokens:
            return ProviderReading(provider=self.name, reachable=True, error="no tokens")

        resp = await client.get(f"{self.clob_base}/book", params={"token_id": tokens[0]})
        resp.raise_for_status()
        book = resp.json()
        depth = 0.0
        for level in (book.get("bids") or []) + (book.get("asks") or []):
            depth += float(level.get("price", 0)) * float(level.get("size", 0))
        return ProviderReading(provider=self.name, reachable=True, liquidity=depth)


def merge_readings(
    readings: list[ProviderReading], disagreement_ratio: float
) -> LiquidityReport:
    """Primary is the first reading. Its loss degrades; losing all is unavailable."""
    primary = readings[0] if readings else None
    reachable = [r for r in readings if r.reachable]
    if not reachable:
        return LiquidityReport(readings=readings, status=PolyDataStatus.UNAVAILABLE)

    if primary is None or not primary.reachable:
        fallback = reachable[0]
        return LiquidityReport(
            readings=readings,
            liquidity_estimate=fallback.liquidity,
            volume=fallback.volume,
            status=PolyDataStatus.DEGRADED,
        )

    status = PolyDataStatus.OK
    values = [r.liquidity for r in reachable if r.liquidity is not None]
    if len(values) >= 2:
        hi, lo = max(values), min(values)
        if hi > 0 and (hi - lo) / hi > disagreement_ratio:
            status = PolyDataStatus.DISAGREE
    return LiquidityReport(
        readings=readings,
        liquidity_estimate=primary.liquidity,
        volume=primary.volume,
        status=status,
    )


class LiquidityAggregator:
    """Concurrent provider polling with a per-call timeout.

    A timeout or HTTP error marks that provider unreachable; it never blocks
    the other provider or the caller.
    """

    def __init__(
        self,
        providers: Optional[list[LiquidityProvider]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        disagreement_ratio: float = 0.5,
    ):
        self.providers = providers if providers is not None else [
            GammaLiquidityProvider(),
            ClobBookProvider(),
        ]
        self.client = client
        self.timeout = timeout
        self.disagreement_ratio = disagreement_ratio

    async def report(self, condition_id: Optional[str]) -> LiquidityReport:
        if not condition_id:
            readings = [
                ProviderReading(provider=p.name, reachable=False, error="no linked instrument")
                for p in self.providers
            ]
            return merge_readings(readings, self.disagreement_ratio)

        if self.client is not None:
            readings = await self._poll(condition_id, self.client)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                readings = await self._poll(condition_id, client)

        report = merge_readings(readings, self.disagreement_ratio)
        if report.status != PolyDataStatus.OK:
            logger.warning(
                "Liquidity providers degraded",
                extra={
                    "condition_id": condition_id,
                    "status": report.status.value,
                    "errors": {r.provider: r.error for r in readings if r.error},
                },
            )
        return report

    async def _poll(self, condition_id: str, client: httpx.AsyncClient) -> list[ProviderReading]:
        return list(await asyncio.gather(
            *(self._read_one(p, condition_id, client) for p in self.providers)
        ))

    async def _read_one(
        self, provider: LiquidityProvider, condition_id: str, client: httpx.AsyncClient
    ) -> ProviderReading:
        try:
            return await asyncio.wait_for(provider.read(condition_id, client), timeout=self.timeout)
        except asyncio.TimeoutError:
            return ProviderReading(provider=provider.name, reachable=False, error="timeout")
        except httpx.HTTPError as e:
            return ProviderReading(provider=provider.name, reachable=False, error=str(e) or type(e).__name__)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return ProviderReading(provider=provider.name, reachable=False, error=f"malformed payload: {e}")
