"""Polymarket CLOB midpoint prices for resolved outcome tokens."""
import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

CLOB_BASE = "https://clob.polymarket.com"


class ClobPriceClient:
    """Fetches midpoints on demand. A failed fetch is logged and returns None."""

    def __init__(
        self,
        clob_base: str = CLOB_BASE,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.clob_base = clob_base.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def get_midpoint(self, token_id: Optional[str]) -> Optional[float]:
        if not token_id:
            return None
        try:
            if self.client is not None:
                return await self._fetch_midpoint(self.client, token_id)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._fetch_midpoint(client, token_id)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning(f"CLOB midpoint error: {e}", extra={"token_id": token_id})
            return None

    async def get_midpoints(self, token_ids: list[Optional[str]]) -> list[Optional[float]]:
        return list(await asyncio.gather(*(self.get_midpoint(t) for t in token_ids)))

    async def _fetch_midpoint(self, client: httpx.AsyncClient, token_id: str) -> Optional[float]:
        resp = await asyncio.wait_for(
            client.get(f"{self.clob_base}/midpoint", params={"token_id": token_id}),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        mid = float(resp.json().get("mid", 0))
        if mid <= 0 or mid >= 1:
            return None
        return mid
