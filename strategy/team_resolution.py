"""Team-name canonicalization with a human-in-the-loop failure log.

An unmatched team string is never dropped: it is upserted into
``team_match_failures`` with an occurrence counter and the owning signal is
held at WATCH. Confirming a mapping applies it to every later occurrence.
"""
import logging
from datetime import datetime
from typing import Optional

from storage.db import Database

logger = logging.getLogger(__name__)


class TeamResolver:
    def __init__(self, db: Database):
        self.db = db

    async def resolve(self, league: str, raw_team: str, now: Optional[datetime] = None) -> Optional[str]:
        """Canonical team name, or None after logging the miss."""
        canonical = await self.db.get_team_mapping(league, raw_team)
        if canonical:
            return canonical

        failure = await self.db.record_team_failure(league, raw_team, now)
        logger.warning(
            "Unmatched team",
            extra={
                "league": league,
                "raw_team": raw_team,
                "occurrences": failure.occurrences,
                "status": failure.status,
            },
        )
        return None

    async def seed(self, league: str, canonical_names: list[str]):
        """Register canonical names as mappings to themselves."""
        for name in canonical_names:
            await self.db.save_team_mapping(league, name, name)

    async def confirm_mapping(self, league: str, raw_team: str, canonical_name: str):
        await self.db.save_team_mapping(league, raw_team, canonical_name)
        await self.db.set_team_failure_status(league, raw_team, "resolved", canonical_name)
        logger.info(
            "Team mapping confirmed",
            extra={"league": league, "raw_team": raw_team, "canonical": canonical_name},
        )

    async def ignore_failure(self, league: str, raw_team: str) -> bool:
        updated = await self.db.set_team_failure_status(league, raw_team, "ignored")
        if updated:
            logger.info("Team failure ignored", extra={"league": league, "raw_team": raw_team})
        return updated
