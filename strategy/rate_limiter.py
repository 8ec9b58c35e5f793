"""Rolling-hour caps on S2 promotions, global and per sport."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from storage.db import Database
from strategy.thresholds import CoreLogicVersion

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)


class PromotionRateLimiter:
    """Counts S2 entries in the transition log; holds no state of its own."""

    def __init__(self, db: Database, version: CoreLogicVersion):
        self.db = db
        self.version = version

    async def has_capacity(
        self, sport: str, now: datetime, version: Optional[CoreLogicVersion] = None
    ) -> bool:
        v = version or self.version
        since = now - WINDOW
        total = await self.db.count_s2_promotions(since)
        if total >= v.max_s2_per_hour:
            logger.info(
                "Global S2 cap reached",
                extra={"count": total, "cap": v.max_s2_per_hour},
            )
            return False
        per_sport = await self.db.count_s2_promotions(since, sport=sport)
        if per_sport >= v.max_s2_per_sport_per_hour:
            logger.info(
                "Sport S2 cap reached",
                extra={"sport": sport, "count": per_sport, "cap": v.max_s2_per_sport_per_hour},
            )
            return False
        return True
