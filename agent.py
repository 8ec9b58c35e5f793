"""Main entry point: wires all layers together."""
import asyncio
import logging
import signal
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

from shared.config import Config
from shared.logging import setup_logging
from strategy.thresholds import get_version
from strategy.pipeline import SignalPipeline
from feeds.extractors import default_extractors
from feeds.feed_aggregator import ClobBookProvider, GammaLiquidityProvider, LiquidityAggregator
from feeds.instrument_resolver import InstrumentResolver
from feeds.polymarket_odds import ClobPriceClient
from execution.recommender import Recommender
from storage.db import Database
from dashboard.main import app as dashboard_app, set_services

logger = setup_logging("linewatch")


class LinewatchAgent:
    """Runs the scan, refresh, recommendation and housekeeping loops."""

    def __init__(self, config: Config):
        self.config = config
        self._shutdown = asyncio.Event()
        # Resolved once; every component receives it explicitly
        self.version = get_version(config.CORE_LOGIC_VERSION)

        self.db: Database | None = None
        self.pipeline: SignalPipeline | None = None
        self.resolver: InstrumentResolver | None = None
        self.recommender: Recommender | None = None

    async def start(self):
        """Initialize and run all components."""
        logger.info(
            "Starting linewatch",
            extra={
                "core_logic_version": self.version.version,
                "version_status": self.version.status,
                "db_path": self.config.DB_PATH,
            },
        )

        self.db = Database(self.config.DB_PATH)
        await self.db.init()

        timeout = self.config.PROVIDER_TIMEOUT_SECONDS
        liquidity = LiquidityAggregator(
            providers=[
                GammaLiquidityProvider(self.config.GAMMA_BASE),
                ClobBookProvider(self.config.CLOB_BASE),
            ],
            timeout=timeout,
            disagreement_ratio=self.version.disagreement_ratio,
        )
        self.resolver = InstrumentResolver(
            self.db,
            extractors=default_extractors(self.config.CLOB_BASE, self.config.GAMMA_BASE),
            timeout=timeout,
            cache_ttl=timedelta(minutes=self.config.RESOLUTION_CACHE_TTL_MINUTES),
            failure_retry=timedelta(minutes=self.config.RESOLUTION_FAILURE_RETRY_MINUTES),
        )
        self.pipeline = SignalPipeline(self.db, self.version, liquidity, resolver=self.resolver)
        self.recommender = Recommender(
            self.db,
            self.resolver,
            ClobPriceClient(self.config.CLOB_BASE, timeout=timeout),
            self.version,
            liquidity=liquidity,
            bankroll=self.config.BANKROLL_UNITS,
            stake_usd=self.config.DEFAULT_STAKE_USD,
        )

        set_services(self.db, resolver=self.resolver, recommender=self.recommender)

        tasks = [
            asyncio.create_task(self._every(self.config.SCAN_INTERVAL_SECONDS, self._scan), name="scan"),
            asyncio.create_task(self._every(self.config.REFRESH_INTERVAL_SECONDS, self._refresh), name="refresh"),
            asyncio.create_task(self._every(self.config.RECOMMEND_INTERVAL_SECONDS, self._recommend), name="recommend"),
            asyncio.create_task(self._every(3600, self._housekeeping), name="housekeeping"),
            asyncio.create_task(self._run_dashboard(), name="dashboard"),
        ]

        logger.info("All components started")

        await self._shutdown.wait()

        logger.info("Shutting down...")
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.db.close()
        logger.info("Shutdown complete")

    async def _every(self, seconds: float, job):
        """Run ``job`` on a fixed interval until shutdown. One failed run never stops the loop."""
        while not self._shutdown.is_set():
            try:
                await job()
            except Exception as e:
                logger.error(f"{job.__name__} error: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                continue

    async def _scan(self):
        await self.pipeline.scan()

    async def _refresh(self):
        await self.pipeline.refresh()

    async def _recommend(self):
        report = await self.recommender.run_cycle()
        logger.info(
            "Cycle report",
            extra={
                "cycle_id": report.cycle_id,
                "message": report.message,
                "expected_value_units": report.expected_value_units,
            },
        )

    async def _housekeeping(self):
        await self.pipeline.housekeeping(
            watch_retention=timedelta(hours=self.config.WATCH_RETENTION_HOURS),
            quote_retention=timedelta(hours=self.config.QUOTE_RETENTION_HOURS),
        )

    async def _run_dashboard(self):
        """Run the FastAPI JSON API."""
        import uvicorn
        config = uvicorn.Config(
            dashboard_app,
            host="0.0.0.0",
            port=self.config.DASHBOARD_PORT,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        logger.info(
            "Dashboard starting",
            extra={"port": self.config.DASHBOARD_PORT},
        )
        await server.serve()

    def shutdown(self):
        self._shutdown.set()


def main():
    config = Config.from_env()
    logging.getLogger().setLevel(config.log_level)

    agent = LinewatchAgent(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        agent.shutdown()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        loop.run_until_complete(agent.start())
    except KeyboardInterrupt:
        agent.shutdown()
        loop.run_until_complete(asyncio.sleep(1))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
