"""Cross-chain opportunity matcher and cross-chain MEV threat detection"""

import asyncio
import itertools
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Optional

import structlog

from arbsentry.config.models import BridgeConfig, ChainConfig, CrossChainConfig, RiskThresholds
from arbsentry.detectors.opportunity_scorer import (
    BPS,
    classify_risk,
    estimate_gas_cost,
    opportunity_id,
    rank_opportunities,
)
from arbsentry.feeds.market_data import MarketDataProvider
from arbsentry.models import CostBreakdown, CrossChainOpportunity, CrossChainThreat
from arbsentry.monitoring import metrics

logger = structlog.get_logger()


class BridgeCatalog(ABC):
    """Source of bridge fees, limits and supported tokens"""

    @abstractmethod
    async def fetch_bridge_catalog(self) -> List[BridgeConfig]:
        pass


class StaticBridgeCatalog(BridgeCatalog):
    """Bridge catalog backed by configuration"""

    def __init__(self, bridges: List[BridgeConfig]):
        self.bridges = list(bridges)

    async def fetch_bridge_catalog(self) -> List[BridgeConfig]:
        return list(self.bridges)


class CrossChainOpportunityMatcher:
    """
    Finds price gaps for the same token across chains and prices the bridge route.

    Every ordered pair of enabled chains is checked for the tokens both chains
    list. A gap wider than the minimum spread is sized to the bridge limits and
    charged the bridge fee and the gas on both chains; the route risk score
    grows with amount, transit time and the chains involved.
    """

    def __init__(
        self,
        config: CrossChainConfig,
        market_data: MarketDataProvider,
        bridge_catalog: Optional[BridgeCatalog] = None,
        risk_thresholds: Optional[RiskThresholds] = None,
        clock: Optional[Callable[[], float]] = None,
        scan_interval_seconds: float = 10.0,
        shutdown_timeout_seconds: float = 5.0,
    ):
        self.config = config
        self.market_data = market_data
        self.bridge_catalog = bridge_catalog or StaticBridgeCatalog(config.bridges)
        self.risk_thresholds = risk_thresholds or RiskThresholds()
        self.scan_interval_seconds = scan_interval_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self._clock = clock or time.time

        self._bridges: List[BridgeConfig] = list(config.bridges)
        self._opportunities: List[CrossChainOpportunity] = []
        self._threats: Deque[CrossChainThreat] = deque(maxlen=100)

        self._running = False
        self._scan_task: Optional[asyncio.Task] = None

        self._logger = logger.bind(component="cross_chain_matcher")

    @property
    def bridges(self) -> List[BridgeConfig]:
        """Last successfully fetched bridge catalog"""
        return list(self._bridges)

    async def refresh_bridges(self) -> None:
        try:
            self._bridges = await self.bridge_catalog.fetch_bridge_catalog()
        except Exception as e:
            self._logger.warning(
                "bridge_catalog_refresh_failed",
                error=str(e),
                error_type=type(e).__name__,
                bridges_kept=len(self._bridges),
            )

    def select_bridge(self, token: str, source: ChainConfig, target: ChainConfig) -> Optional[BridgeConfig]:
        """Lowest-fee bridge supporting the token on both chains"""
        candidates = [b for b in self._bridges if b.supports(token, source.chain_id, target.chain_id)]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda b: (self.bridge_fee(b, self.trade_amount(b)), b.protocol),
        )

    def trade_amount(self, bridge: BridgeConfig) -> Decimal:
        return min(bridge.max_amount, self.config.max_trade_usd)

    def bridge_fee(self, bridge: BridgeConfig, amount: Decimal) -> Decimal:
        return bridge.fee_usd + amount * bridge.fee_bps / BPS

    def transit_seconds(self, source: ChainConfig, target: ChainConfig) -> float:
        """Confirmations on both chains plus bridge processing"""
        return (
            source.block_time_seconds * source.confirmation_blocks
            + self.config.bridge_processing_seconds
            + target.block_time_seconds * target.confirmation_blocks
        )

    def risk_score(self, source: ChainConfig, target: ChainConfig, amount: Decimal, transit: float) -> int:
        risk = self.config.base_risk
        risk += sum(bump for threshold, bump in self.config.amount_risk_tiers if amount > threshold)
        risk += sum(bump for threshold, bump in self.config.transit_risk_tiers if transit > threshold)
        for chain in (source, target):
            risk += self.config.chain_risk_weights.get(chain.chain_id, self.config.default_chain_risk)
        return min(100, risk)

    async def gas_cost_usd(self, source: ChainConfig, target: ChainConfig) -> Decimal:
        """Gas on both chains, in USD"""
        total = Decimal("0")
        for chain in (source, target):
            gas_price = await self.market_data.get_gas_price(chain.chain_id)
            native_usd = await self.market_data.get_native_token_usd(chain.chain_id)
            total += estimate_gas_cost(chain.gas_limit, gas_price, native_usd).gas_cost_usd
        return total

    async def evaluate(
        self,
        source: ChainConfig,
        target: ChainConfig,
        token: str,
        source_price: Decimal,
        target_price: Decimal,
        now: float,
    ) -> Optional[CrossChainOpportunity]:
        """
        Price one source -> target route for a token.

        Returns:
            CrossChainOpportunity, or None when no bridge fits or the route loses money
        """
        if source_price <= 0 or target_price <= source_price:
            return None

        spread_pct = (target_price - source_price) / source_price * 100
        if spread_pct <= self.config.min_spread_pct:
            return None

        bridge = self.select_bridge(token, source, target)
        if bridge is None:
            self._logger.debug("no_bridge_for_route", token=token, source=source.name, target=target.name)
            return None

        amount = self.trade_amount(bridge)
        if amount < bridge.min_amount:
            self._logger.debug("route_below_bridge_minimum", token=token, bridge=bridge.protocol)
            return None

        bridge_fee = self.bridge_fee(bridge, amount)
        gas_cost = await self.gas_cost_usd(source, target)
        transit = self.transit_seconds(source, target)

        gross_profit = amount * spread_pct / 100
        costs = CostBreakdown(
            flashloan_fee=Decimal("0"),
            dex_fees=Decimal("0"),
            gas_cost=gas_cost,
            slippage_cost=Decimal("0"),
            bridge_fee=bridge_fee,
        )
        net_profit = gross_profit - costs.total
        if net_profit <= 0:
            return None

        margin_pct = net_profit / amount * 100
        risk = self.risk_score(source, target, amount, transit)

        return CrossChainOpportunity(
            id=opportunity_id(
                f"{token}:{source.chain_id}->{target.chain_id}",
                source.name,
                target.name,
                source_price,
                target_price,
                amount,
            ),
            token=token,
            pair=f"{token}/USD",
            buy_venue=source.name,
            sell_venue=target.name,
            buy_price=source_price,
            sell_price=target_price,
            spread_pct=spread_pct,
            amount=amount,
            gross_profit=gross_profit,
            costs=costs,
            net_profit=net_profit,
            profit_margin_pct=margin_pct,
            risk_level=classify_risk(spread_pct, margin_pct, self.risk_thresholds),
            created_at=now,
            ttl_seconds=self.config.opportunity_ttl_seconds,
            source_chain=source.chain_id,
            target_chain=target.chain_id,
            bridge_protocol=bridge.protocol,
            bridge_fee=bridge_fee,
            gas_estimate=gas_cost,
            transit_seconds=transit,
            risk_score=risk,
            is_valid=net_profit > self.config.min_net_profit_usd and risk < self.config.max_risk_score,
        )

    async def scan(self, now: Optional[float] = None) -> List[CrossChainOpportunity]:
        """
        Scan every ordered pair of enabled chains.

        Returns:
            Opportunities found in this scan (valid or not)
        """
        now = self._clock() if now is None else now
        await self.refresh_bridges()

        chains = [c for c in self.config.chains if c.enabled]
        found: List[CrossChainOpportunity] = []

        for source, target in itertools.permutations(chains, 2):
            for token in sorted(set(source.tokens) & set(target.tokens)):
                try:
                    source_price = await self.market_data.get_token_price(source.chain_id, token)
                    target_price = await self.market_data.get_token_price(target.chain_id, token)
                    opportunity = await self.evaluate(
                        source, target, token, source_price, target_price, now
                    )
                except Exception as e:
                    self._logger.warning(
                        "cross_chain_token_skipped",
                        token=token,
                        source=source.name,
                        target=target.name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue

                if opportunity is not None:
                    found.append(opportunity)

        self._store(found, now)

        valid = [o for o in found if o.is_valid]
        if valid:
            metrics.opportunities_detected.labels(kind="cross_chain").inc(len(valid))

        self._logger.info(
            "cross_chain_scan_completed",
            chain_pairs=len(chains) * (len(chains) - 1),
            opportunities=len(found),
            valid=len(valid),
        )
        return found

    def _store(self, found: List[CrossChainOpportunity], now: float) -> None:
        fresh_ids = {o.id for o in found}
        kept = [
            o for o in self._opportunities
            if o.id not in fresh_ids and not o.is_expired(now)
        ]
        merged = sorted(kept + found, key=lambda o: -o.created_at)
        self._opportunities = merged[: self.config.max_opportunities]

    def get_opportunities(self, now: Optional[float] = None) -> List[CrossChainOpportunity]:
        """Valid, unexpired opportunities ranked by net profit"""
        now = self._clock() if now is None else now
        live = [o for o in self._opportunities if o.is_valid and not o.is_expired(now)]
        return rank_opportunities(live)

    def detect_threats(self, now: Optional[float] = None) -> List[CrossChainThreat]:
        """
        Flag cross-chain sandwich setups and arbitrage competition.

        Returns:
            Threats raised by this check
        """
        now = self._clock() if now is None else now
        live = [o for o in self._opportunities if not o.is_expired(now)]
        threats: List[CrossChainThreat] = []

        for opportunity in live:
            if (
                opportunity.amount > self.config.sandwich_threat_amount
                and opportunity.risk_score > self.config.sandwich_threat_risk
            ):
                threats.append(CrossChainThreat(
                    type="cross_chain_sandwich",
                    source_chain=opportunity.source_chain,
                    target_chain=opportunity.target_chain,
                    severity="high",
                    description=f"Potential cross-chain sandwich setup detected for {opportunity.token}",
                    recommendation="Use MEV protection for cross-chain transactions",
                    detected_at=now,
                ))

        by_token: Dict[str, List[CrossChainOpportunity]] = defaultdict(list)
        for opportunity in live:
            by_token[opportunity.token].append(opportunity)

        for token, opportunities in sorted(by_token.items()):
            if len(opportunities) > self.config.competition_threshold:
                threats.append(CrossChainThreat(
                    type="arbitrage_competition",
                    source_chain=opportunities[0].source_chain,
                    target_chain=opportunities[0].target_chain,
                    severity="medium",
                    description=f"High arbitrage competition detected for {token}: {len(opportunities)} opportunities",
                    recommendation="Increase gas price or use MEV protection",
                    detected_at=now,
                ))

        for threat in threats:
            self._threats.append(threat)
            self._logger.warning(
                "cross_chain_threat_detected",
                type=threat.type,
                source_chain=threat.source_chain,
                target_chain=threat.target_chain,
                severity=threat.severity,
            )
        return threats

    def get_threats(self, limit: int = 50) -> List[CrossChainThreat]:
        """Most recent threats, oldest first"""
        if limit <= 0:
            return []
        return list(self._threats)[-limit:]

    async def start(self) -> None:
        """Start periodic cross-chain scanning"""
        if self._running:
            self._logger.warning("cross_chain_matcher_already_running")
            return

        self._running = True
        self._scan_task = asyncio.create_task(self._scan_loop())

        self._logger.info("cross_chain_matcher_started")

    async def stop(self) -> None:
        """Stop scanning, waiting at most the shutdown deadline"""
        if not self._running:
            self._logger.warning("cross_chain_matcher_not_running")
            return

        self._running = False

        if self._scan_task:
            self._scan_task.cancel()
            try:
                await asyncio.wait_for(self._scan_task, timeout=self.shutdown_timeout_seconds)
            except asyncio.CancelledError:
                self._logger.info("cross_chain_scan_task_cancelled")
            except asyncio.TimeoutError:
                self._logger.warning("cross_chain_matcher_stop_timeout")

        self._logger.info("cross_chain_matcher_stopped")

    async def _scan_loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.scan()
                    self.detect_threats()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._logger.error(
                        "cross_chain_scan_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                await asyncio.sleep(self.scan_interval_seconds)

        except asyncio.CancelledError:
            self._logger.info("cross_chain_scan_loop_cancelled")
