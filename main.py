"""Main application entry point for the arbitrage and MEV risk engine"""

import asyncio
import signal
import sys
from decimal import Decimal
from typing import Dict, List, Optional

import structlog
from dotenv import load_dotenv

from arbsentry.cache.manager import CacheManager
from arbsentry.chains.connector import ChainConnector
from arbsentry.config.models import ChainConfig, EngineConfig, Settings
from arbsentry.detectors.actor_registry import KnownActorRegistry
from arbsentry.detectors.cross_chain import CrossChainOpportunityMatcher, StaticBridgeCatalog
from arbsentry.detectors.pattern_detector import TransactionPatternDetector
from arbsentry.engine import ArbitrageEngine
from arbsentry.feeds.market_data import ChainMarketDataProvider
from arbsentry.feeds.price_aggregator import PriceAggregator
from arbsentry.feeds.venues import UniswapV2PoolVenue
from arbsentry.monitoring.metrics import start_metrics_server
from arbsentry.monitors.mev_monitor import MevMonitor
from arbsentry.utils.logging import setup_logging

load_dotenv()

logger = structlog.get_logger()

STABLECOIN_PRICES = {"USDT": Decimal("1"), "USDC": Decimal("1"), "BUSD": Decimal("1")}


class Application:
    """Main application orchestrator"""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.config: Optional[EngineConfig] = None
        self.cache_manager: Optional[CacheManager] = None

        self.chains: Dict[int, ChainConfig] = {}
        self.connectors: Dict[int, ChainConnector] = {}
        self.aggregators: Dict[int, PriceAggregator] = {}
        self.monitors: Dict[int, MevMonitor] = {}
        self.engine: Optional[ArbitrageEngine] = None

        self._shutdown_event = asyncio.Event()

        self._logger = logger.bind(component="application")

    async def initialize(self) -> None:
        """Initialize all application components"""
        self._logger.info("application_initializing")

        try:
            self.settings = Settings()
            setup_logging(self.settings.log_level)

            self.config = self.settings.get_engine_config()
            polling = self.config.polling

            self._logger.info(
                "settings_loaded",
                log_level=self.settings.log_level.upper(),
                capital=float(self.settings.trading_capital_usd),
            )

            # Optional Redis publishing
            if self.settings.redis_url:
                try:
                    self.cache_manager = CacheManager(self.settings.redis_url)
                    await self.cache_manager.connect()
                except Exception as e:
                    self._logger.warning(
                        "cache_initialization_failed",
                        error=str(e),
                        message="Continuing without cache",
                    )
                    self.cache_manager = None

            self.chains = {
                chain.chain_id: chain
                for chain in (self.settings.get_bsc_config(), self.settings.get_polygon_config())
            }
            registry = KnownActorRegistry(self.config.detector.known_actors)
            venue_configs = self.settings.get_venue_configs()
            tokens: Dict[int, List[str]] = {}

            for chain_id, chain in self.chains.items():
                self._logger.info("initializing_chain_components", chain=chain.name)

                connector = ChainConnector(chain, timeout_seconds=polling.rpc_timeout_seconds)
                self.connectors[chain_id] = connector

                venues = [
                    UniswapV2PoolVenue(connector, venue, timeout_seconds=polling.quote_timeout_seconds)
                    for venue in venue_configs
                    if venue.chain_id == chain_id
                ]
                self.aggregators[chain_id] = PriceAggregator(venues, config=polling, name=chain.name)
                tokens[chain_id] = sorted({venue.token for venue in venue_configs if venue.chain_id == chain_id})

                detector = TransactionPatternDetector(
                    self.config.detector,
                    registry=registry,
                    chain_name=chain.name,
                )
                self.monitors[chain_id] = MevMonitor(
                    connector,
                    detector,
                    poll_interval_seconds=polling.mev_poll_interval_seconds,
                    shutdown_timeout_seconds=polling.shutdown_timeout_seconds,
                )

            market_data = ChainMarketDataProvider(
                self.connectors,
                self.aggregators,
                self.chains,
                fixed_prices=STABLECOIN_PRICES,
            )

            cross_chain = CrossChainOpportunityMatcher(
                self.config.cross_chain,
                market_data,
                bridge_catalog=StaticBridgeCatalog(self.config.cross_chain.bridges),
                risk_thresholds=self.config.risk,
                scan_interval_seconds=polling.cross_chain_interval_seconds,
                shutdown_timeout_seconds=polling.shutdown_timeout_seconds,
            )

            self.engine = ArbitrageEngine(
                self.config,
                market_data,
                aggregators=self.aggregators,
                tokens=tokens,
                monitors=self.monitors,
                cross_chain=cross_chain,
                capital=self.settings.trading_capital_usd,
                cache_manager=self.cache_manager,
            )

            self._logger.info("application_initialized", chains=sorted(self.chains))

        except Exception as e:
            self._logger.error(
                "application_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def start(self) -> None:
        """Start all application components"""
        self._logger.info("application_starting")

        await self.engine.start()

        self._logger.info("starting_metrics_server", port=self.settings.prometheus_port)
        start_metrics_server(port=self.settings.prometheus_port)

        self._logger.info("application_started")

    async def report(self) -> None:
        """Log the current opportunities and risk once per quote poll"""
        while not self._shutdown_event.is_set():
            try:
                opportunities = await self.engine.get_opportunities()
                for opportunity in opportunities:
                    risk = self.engine.analyze_risk(opportunity.token, opportunity.amount)
                    self._logger.info(
                        "opportunity_available",
                        token=opportunity.token,
                        buy_venue=opportunity.buy_venue,
                        sell_venue=opportunity.sell_venue,
                        net_profit=float(opportunity.net_profit),
                        risk_level=opportunity.risk_level.value,
                        mev_confidence=risk.confidence,
                        strategy=risk.recommended_strategy.key,
                    )
                for opportunity in self.engine.get_cross_chain_opportunities():
                    self._logger.info(
                        "cross_chain_opportunity_available",
                        token=opportunity.token,
                        source_chain=opportunity.source_chain,
                        target_chain=opportunity.target_chain,
                        bridge=opportunity.bridge_protocol,
                        net_profit=float(opportunity.net_profit),
                        risk_score=opportunity.risk_score,
                    )
            except Exception as e:
                self._logger.error(
                    "report_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.config.polling.quote_poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        """Stop all application components gracefully"""
        self._logger.info("application_stopping")

        try:
            if self.engine:
                await self.engine.stop()

            if self.cache_manager:
                self._logger.info("closing_cache_connection")
                await self.cache_manager.disconnect()

            self._logger.info("application_stopped")

        except Exception as e:
            self._logger.error(
                "application_stop_error",
                error=str(e),
                error_type=type(e).__name__,
            )

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown"""
        def signal_handler(signum, frame):
            self._logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
            self._shutdown_event.set()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        self._logger.info("signal_handlers_registered")


async def main() -> None:
    """Main application entry point"""
    app = Application()

    try:
        await app.initialize()
        app.setup_signal_handlers()
        await app.start()

        await app.report()

        await app.stop()
        logger.info("application_shutdown_complete")

    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
        await app.stop()
    except Exception as e:
        logger.error(
            "application_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        await app.stop()
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("application_terminated")
