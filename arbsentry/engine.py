"""Arbitrage engine: the public face of the feeds, scorers and detectors"""

import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import structlog

from arbsentry.cache.manager import CacheManager
from arbsentry.cache.result_cache import ResultCache
from arbsentry.config.models import EngineConfig
from arbsentry.detectors.cross_chain import CrossChainOpportunityMatcher
from arbsentry.detectors.opportunity_scorer import OpportunityScorer, estimate_gas_cost
from arbsentry.detectors.protection import ProtectionStrategySelector
from arbsentry.feeds.market_data import MarketDataProvider
from arbsentry.feeds.price_aggregator import PriceAggregator
from arbsentry.models import (
    AggregatedQuote,
    ArbitrageOpportunity,
    AttackPattern,
    CrossChainOpportunity,
    CrossChainThreat,
    GasCost,
    OpportunityReport,
    RiskAssessment,
    ScoreOutcome,
)
from arbsentry.monitoring import metrics
from arbsentry.monitors.mev_monitor import MevMonitor

logger = structlog.get_logger()


class ArbitrageEngine:
    """
    Wires price aggregation, opportunity scoring and MEV detection together.

    Opportunities are derived on demand from the last aggregate of every
    tracked token and served only while unexpired. Scoring results are
    deduplicated through the result cache; when a CacheManager is given the
    served opportunities are also published to Redis.
    """

    def __init__(
        self,
        config: EngineConfig,
        market_data: MarketDataProvider,
        aggregators: Dict[int, PriceAggregator],
        tokens: Dict[int, List[str]],
        monitors: Optional[Dict[int, MevMonitor]] = None,
        cross_chain: Optional[CrossChainOpportunityMatcher] = None,
        capital: Decimal = Decimal("1000000"),
        scorer: Optional[OpportunityScorer] = None,
        selector: Optional[ProtectionStrategySelector] = None,
        result_cache: Optional[ResultCache] = None,
        cache_manager: Optional[CacheManager] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize arbitrage engine.

        Args:
            config: Validated engine configuration
            market_data: Gas and token price source
            aggregators: Price aggregator per chain id
            tokens: Tokens polled per chain id
            monitors: MEV monitor per chain id
            cross_chain: Cross-chain matcher, if cross-chain scanning is enabled
            capital: Capital available per trade (USD)
            scorer: Opportunity scorer (built from config when omitted)
            selector: Protection strategy selector (built from config when omitted)
            result_cache: Scoring result cache (built from config when omitted)
            cache_manager: Optional Redis publisher
            clock: Time source returning epoch seconds (default time.time)
        """
        self.config = config
        self.market_data = market_data
        self.aggregators = aggregators
        self.tokens = {chain_id: list(t) for chain_id, t in tokens.items()}
        self.monitors = monitors or {}
        self.cross_chain = cross_chain
        self.capital = capital
        self._clock = clock or time.time
        self.scorer = scorer or OpportunityScorer(config)
        self.selector = selector or ProtectionStrategySelector(config.protection)
        self.result_cache = result_cache or ResultCache(config.cache, clock=self._clock)
        self.cache_manager = cache_manager

        self._logger = logger.bind(component="arbitrage_engine")

    def chain_for_token(self, token: str) -> Optional[int]:
        """Chain whose aggregator tracks the token"""
        for chain_id, tokens in self.tokens.items():
            if token in tokens:
                return chain_id
        for chain_id, aggregator in self.aggregators.items():
            if token in aggregator.tokens:
                return chain_id
        return None

    async def gas_cost(self, chain_id: int) -> GasCost:
        """Gas cost of one arbitrage execution on a chain"""
        gas_price = await self.market_data.get_gas_price(chain_id)
        native_usd = await self.market_data.get_native_token_usd(chain_id)
        return estimate_gas_cost(self.config.scoring.gas_units, gas_price, native_usd)

    async def _score(self, chain_id: int, aggregate: AggregatedQuote) -> ScoreOutcome:
        params = {
            "chain_id": chain_id,
            "token": aggregate.token,
            "capital": self.capital,
            "quoted_at": aggregate.timestamp,
            "quotes": [[q.venue_id, q.price, q.liquidity] for q in aggregate.quotes],
        }

        async def compute() -> ScoreOutcome:
            outcome = self.scorer.score(aggregate, self.capital, await self.gas_cost(chain_id))
            if outcome.accepted:
                metrics.opportunities_detected.labels(kind="single_chain").inc()
            return outcome

        return await self.result_cache.get_or_compute(params, compute)

    async def get_opportunities(self, now: Optional[float] = None) -> OpportunityReport:
        """
        Ranked, unexpired opportunities across all tracked tokens.

        Aggregates at least one opportunity TTL old are not scored and are
        rejected as "stale_quotes".

        Returns:
            OpportunityReport with the ranked opportunities and the rejection
            reason for every (chain_id, token) that yielded none
        """
        now = self._clock() if now is None else now
        ttl = self.config.scoring.opportunity_ttl_seconds
        report = OpportunityReport()
        found: List[ArbitrageOpportunity] = []

        for chain_id, aggregator in self.aggregators.items():
            for token in self.tokens.get(chain_id, aggregator.tokens):
                key = (chain_id, token)
                aggregate = aggregator.get_latest(token)
                if aggregate is None:
                    report.rejected[key] = "no_quotes"
                    continue
                if now - aggregate.timestamp >= ttl:
                    self._logger.debug(
                        "opportunity_rejected",
                        chain_id=chain_id,
                        token=token,
                        reason="stale_quotes",
                        age_seconds=now - aggregate.timestamp,
                    )
                    metrics.opportunities_rejected.labels(reason="stale_quotes").inc()
                    report.rejected[key] = "stale_quotes"
                    continue

                try:
                    outcome = await self._score(chain_id, aggregate)
                except Exception as e:
                    self._logger.warning(
                        "opportunity_scoring_failed",
                        chain_id=chain_id,
                        token=token,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    report.rejected[key] = "market_data_unavailable"
                    continue

                if not outcome.accepted:
                    report.rejected[key] = outcome.reason
                elif outcome.opportunity.is_expired(now):
                    report.rejected[key] = "expired"
                else:
                    found.append(outcome.opportunity)

        report.opportunities = self.scorer.rank(found)

        if self.cache_manager is not None and report.opportunities:
            await self.cache_manager.cache_opportunities(report.opportunities, now)

        self._logger.debug(
            "opportunities_served",
            count=len(report.opportunities),
            rejected=len(report.rejected),
        )
        return report

    def get_cross_chain_opportunities(self, now: Optional[float] = None) -> List[CrossChainOpportunity]:
        if self.cross_chain is None:
            return []
        return self.cross_chain.get_opportunities(now)

    def get_cross_chain_threats(self, limit: int = 50) -> List[CrossChainThreat]:
        if self.cross_chain is None:
            return []
        return self.cross_chain.get_threats(limit)

    def _monitors_for(self, token: str) -> List[MevMonitor]:
        chain_id = self.chain_for_token(token)
        if chain_id in self.monitors:
            return [self.monitors[chain_id]]
        return list(self.monitors.values())

    def analyze_risk(self, token: str, amount: Decimal, now: Optional[float] = None) -> RiskAssessment:
        """
        MEV risk verdict for trading a token.

        Uses recent patterns and the activity score of the token's chain, or of
        every monitored chain when the token is not tracked.
        """
        now = self._clock() if now is None else now
        monitors = self._monitors_for(token)

        patterns: List[AttackPattern] = []
        for monitor in monitors:
            patterns.extend(monitor.detector.recent_patterns(now=now))
        activity = max((m.activity_score for m in monitors), default=0)

        return self.selector.assess(token, amount, patterns, activity)

    def get_attack_patterns(self, limit: int = 50) -> List[AttackPattern]:
        """Newest patterns across all chains, in chronological order"""
        if limit <= 0:
            return []
        patterns: List[AttackPattern] = []
        for monitor in self.monitors.values():
            patterns.extend(monitor.detector.get_attack_patterns(limit))
        patterns.sort(key=lambda p: (p.detected_at, p.block_number))
        return patterns[-limit:]

    async def refresh(self, token: str) -> ScoreOutcome:
        """
        Re-aggregate a token now and score the fresh quotes.

        Returns:
            ScoreOutcome, with reason "unknown_token" when no chain tracks it
        """
        chain_id = self.chain_for_token(token)
        if chain_id is None or chain_id not in self.aggregators:
            return ScoreOutcome(opportunity=None, reason="unknown_token")

        aggregate = await self.aggregators[chain_id].aggregate(token)
        return await self._score(chain_id, aggregate)

    async def revalidate(self, opportunity: ArbitrageOpportunity) -> ScoreOutcome:
        """
        Check an opportunity still holds against fresh quotes.

        Returns:
            ScoreOutcome with the fresh opportunity, or the reason it no longer holds
        """
        chain_id = self.chain_for_token(opportunity.token)
        if chain_id is None or chain_id not in self.aggregators:
            return ScoreOutcome(opportunity=None, reason="unknown_token")

        fresh = await self.aggregators[chain_id].aggregate(opportunity.token)
        outcome = self.scorer.revalidate(opportunity, fresh, self.capital, await self.gas_cost(chain_id))

        self._logger.info(
            "opportunity_revalidated",
            opportunity_id=opportunity.id,
            valid=outcome.accepted,
            reason=outcome.reason,
        )
        return outcome

    async def start(self) -> None:
        """Start aggregators, MEV monitors and the cross-chain scan"""
        for chain_id, aggregator in self.aggregators.items():
            await aggregator.start(self.tokens.get(chain_id, []))
        for monitor in self.monitors.values():
            await monitor.start()
        if self.cross_chain is not None:
            await self.cross_chain.start()

        self._logger.info(
            "arbitrage_engine_started",
            chains=sorted(self.aggregators),
            cross_chain=self.cross_chain is not None,
        )

    async def stop(self) -> None:
        """Stop every periodic task"""
        if self.cross_chain is not None:
            await self.cross_chain.stop()
        for monitor in self.monitors.values():
            await monitor.stop()
        for aggregator in self.aggregators.values():
            await aggregator.stop()

        self._logger.info("arbitrage_engine_stopped")
