"""Read-through resolution of tradable instrument ids.

Extractors run strictly in priority order and the first success wins. Every
attempt, failed or not, appends to one audit log that is returned and cached
with the result. Failures are cached too, and retried after a short interval.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from feeds.extractors import Extractor, default_extractors
from shared.schemas import InstrumentQuery, InstrumentResolution, utcnow
from storage.db import Database

logger = logging.getLogger(__name__)

ALL_EXTRACTORS_FAILED = "all extractors failed"


class InstrumentResolver:
    def __init__(
        self,
        db: Database,
        extractors: Optional[list[Extractor]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        cache_ttl: timedelta = timedelta(hours=6),
        failure_retry: timedelta = timedelta(minutes=15),
    ):
        self.db = db
        self.extractors = extractors if extractors is not None else default_extractors()
        self.client = client
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.failure_retry = failure_retry

    async def resolve(
        self, query: InstrumentQuery, now: Optional[datetime] = None, force: bool = False
    ) -> InstrumentResolution:
        now = now or utcnow()
        key = query.query_ref
        if not force:
            cached = await self.db.get_cached_resolution(key)
            if cached is not None and self._is_fresh(cached, now):
                logger.debug(
                    "Resolution cache hit",
                    extra={"query_ref": key, "tradeable": cached.tradeable},
                )
                return cached

        if self.client is not None:
            resolution = await self._run_chain(query, self.client, now)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resolution = await self._run_chain(query, client, now)

        await self.db.save_resolution(key, resolution)
        if resolution.tradeable and resolution.condition_id and resolution.condition_id != key:
            await self.db.save_resolution(resolution.condition_id, resolution)
        return resolution

    async def resolve_many(
        self, queries: list[InstrumentQuery], now: Optional[datetime] = None
    ) -> list[InstrumentResolution]:
        """Resolve independent queries concurrently, preserving order."""
        return list(await asyncio.gather(*(self.resolve(q, now) for q in queries)))

    def _is_fresh(self, cached: InstrumentResolution, now: datetime) -> bool:
        age = now - cached.resolved_at
        if cached.tradeable:
            return age < self.cache_ttl
        return age < self.failure_retry

    async def _run_chain(
        self, query: InstrumentQuery, client: httpx.AsyncClient, now: datetime
    ) -> InstrumentResolution:
        audit: list[str] = []
        for extractor in self.extractors:
            if not extractor.applies(query):
                audit.append(f"[{extractor.name}] skipped: query lacks required fields")
                continue
            try:
                result = await asyncio.wait_for(
                    extractor.attempt(query, client), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                audit.append(f"[{extractor.name}] timeout after {self.timeout}s")
                continue
            except httpx.HTTPError as e:
                audit.append(f"[{extractor.name}] provider error: {e}")
                continue
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                audit.append(f"[{extractor.name}] malformed payload: {e}")
                continue

            audit.extend(result.log)
            if result.success:
                logger.info(
                    "Instrument resolved",
                    extra={
                        "query_ref": query.query_ref,
                        "source": extractor.name,
                        "confidence": result.confidence,
                        "condition_id": result.condition_id,
                    },
                )
                return InstrumentResolution(
                    query_ref=query.query_ref,
                    condition_id=result.condition_id or query.condition_id,
                    outcome_token_a=result.token_a,
                    outcome_token_b=result.token_b,
                    source=extractor.name,
                    confidence=result.confidence,
                    tradeable=True,
                    extractor_log=audit,
                    resolved_at=now,
                )

        logger.warning(
            "Instrument resolution failed",
            extra={"query_ref": query.query_ref, "attempts": len(audit)},
        )
        return InstrumentResolution(
            query_ref=query.query_ref,
            condition_id=query.condition_id,
            tradeable=False,
            reason_if_untradeable=ALL_EXTRACTORS_FAILED,
            extractor_log=audit,
            resolved_at=now,
        )
