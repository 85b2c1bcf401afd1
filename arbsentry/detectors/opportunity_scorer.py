"""Opportunity scorer turning aggregated quotes into cost-adjusted opportunities"""

from decimal import Decimal
from typing import List, Optional

import structlog
from web3 import Web3

from arbsentry.config.models import EngineConfig, FlashloanProviderConfig, RiskThresholds
from arbsentry.errors import InsufficientData
from arbsentry.models import (
    WEI_PER_GWEI,
    WEI_PER_NATIVE,
    AggregatedQuote,
    ArbitrageOpportunity,
    CostBreakdown,
    GasCost,
    Quote,
    RiskLevel,
    ScoreOutcome,
)
from arbsentry.monitoring import metrics

logger = structlog.get_logger()

BPS = Decimal("10000")


def estimate_gas_cost(gas_used: int, gas_price_wei: int, native_token_usd: Decimal) -> GasCost:
    """
    Calculate gas cost in native token and USD.

    Args:
        gas_used: Gas units consumed
        gas_price_wei: Gas price in wei
        native_token_usd: USD price of the native token

    Returns:
        GasCost with wei, gwei, native and USD figures
    """
    gas_cost_native = Decimal(gas_used * gas_price_wei) / WEI_PER_NATIVE
    gas_price_gwei = Decimal(gas_price_wei) / WEI_PER_GWEI

    return GasCost(
        gas_used=gas_used,
        gas_price_wei=gas_price_wei,
        gas_price_gwei=gas_price_gwei,
        gas_cost_native=gas_cost_native,
        gas_cost_usd=gas_cost_native * native_token_usd,
    )


def classify_risk(spread_pct: Decimal, margin_pct: Decimal, thresholds: RiskThresholds) -> RiskLevel:
    """Classify an opportunity from its spread and margin percentages"""
    if spread_pct < thresholds.high_spread_pct or margin_pct < thresholds.high_margin_pct:
        return RiskLevel.HIGH
    if spread_pct < thresholds.medium_spread_pct or margin_pct < thresholds.medium_margin_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def opportunity_id(pair: str, buy_venue: str, sell_venue: str, buy_price: Decimal,
                   sell_price: Decimal, amount: Decimal) -> str:
    """Deterministic id from the inputs that define an opportunity"""
    key = f"{pair}|{buy_venue}|{sell_venue}|{buy_price}|{sell_price}|{amount}"
    return Web3.to_hex(Web3.keccak(text=key))


def rank_opportunities(opportunities: List[ArbitrageOpportunity]) -> List[ArbitrageOpportunity]:
    """Order by net profit (desc), then risk (LOW first), then newest first"""
    return sorted(
        opportunities,
        key=lambda o: (-o.net_profit, o.risk_level.rank, -o.created_at),
    )


class OpportunityScorer:
    """
    Scores aggregated quotes as buy-low/sell-high flashloan opportunities.

    The trade size is capped by capital utilization, quoted liquidity and a
    hard cap. Flashloan, DEX, gas and slippage costs are deducted from the
    gross spread profit; anything not clearing the profit floor is rejected
    with a reason. An opportunity lives from the moment its quotes were
    aggregated, not from the moment it was scored.
    """

    def __init__(self, config: EngineConfig):
        self.config = config
        self.scoring = config.scoring
        self._logger = logger.bind(component="opportunity_scorer")

    def select_flashloan_provider(self, token: str, amount: Decimal) -> Optional[FlashloanProviderConfig]:
        """Cheapest active provider supporting the token with enough liquidity"""
        candidates = [
            p for p in self.config.flashloan_providers
            if p.is_active and p.supports(token) and p.max_liquidity >= amount
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda p: (p.fee_bps, p.name))

    def dex_fee_bps(self, quote: Quote) -> int:
        return self.config.dex_fees_bps.get(quote.venue_id, quote.fee_bps)

    def _select_route(self, aggregate: AggregatedQuote):
        if len(aggregate.quotes) < 2:
            raise InsufficientData(aggregate.token, len(aggregate.quotes))
        ordered = sorted(aggregate.quotes, key=lambda q: (q.price, q.venue_id))
        return ordered[0], ordered[-1]

    def _reject(self, aggregate: AggregatedQuote, reason: str, **context) -> ScoreOutcome:
        metrics.opportunities_rejected.labels(reason=reason).inc()
        self._logger.debug("opportunity_rejected", token=aggregate.token, reason=reason, **context)
        return ScoreOutcome(opportunity=None, reason=reason)

    def score(self, aggregate: AggregatedQuote, capital: Decimal, gas_cost: GasCost) -> ScoreOutcome:
        """
        Score one aggregated quote.

        Args:
            aggregate: Aggregated quotes for a token
            capital: Capital available for the trade (USD)
            gas_cost: Current gas cost estimate for the trade

        Returns:
            ScoreOutcome with the opportunity, or the rejection reason
        """
        try:
            buy, sell = self._select_route(aggregate)
        except InsufficientData:
            return self._reject(aggregate, "insufficient_data", quote_count=len(aggregate.quotes))

        if sell.price <= buy.price:
            return self._reject(aggregate, "zero_spread")

        spread_pct = (sell.price - buy.price) / buy.price * 100

        available_liquidity = min(buy.liquidity, sell.liquidity)
        amount = min(
            capital * self.scoring.utilization_cap,
            available_liquidity * self.scoring.liquidity_cap,
            self.scoring.hard_cap,
        )
        if amount <= 0:
            return self._reject(aggregate, "no_liquidity")

        provider = self.select_flashloan_provider(aggregate.token, amount)
        if provider is None:
            return self._reject(aggregate, "no_flashloan_provider", amount=float(amount))

        gross_profit = amount * spread_pct / 100
        costs = CostBreakdown(
            flashloan_fee=amount * provider.fee_bps / BPS,
            dex_fees=amount * (self.dex_fee_bps(buy) + self.dex_fee_bps(sell)) / BPS,
            gas_cost=gas_cost.gas_cost_usd,
            slippage_cost=amount * self.scoring.slippage_bps / BPS,
        )
        net_profit = gross_profit - costs.total

        if net_profit <= 0:
            return self._reject(aggregate, "unprofitable", net_profit=float(net_profit))
        if net_profit < self.scoring.min_net_profit_usd:
            return self._reject(aggregate, "below_min_profit", net_profit=float(net_profit))

        margin_pct = net_profit / amount * 100
        risk_level = classify_risk(spread_pct, margin_pct, self.config.risk)

        opportunity = ArbitrageOpportunity(
            id=opportunity_id(aggregate.pair, buy.venue_id, sell.venue_id, buy.price, sell.price, amount),
            token=aggregate.token,
            pair=aggregate.pair,
            buy_venue=buy.venue_id,
            sell_venue=sell.venue_id,
            buy_price=buy.price,
            sell_price=sell.price,
            spread_pct=spread_pct,
            amount=amount,
            gross_profit=gross_profit,
            costs=costs,
            net_profit=net_profit,
            profit_margin_pct=margin_pct,
            risk_level=risk_level,
            created_at=aggregate.timestamp,
            ttl_seconds=self.scoring.opportunity_ttl_seconds,
            flashloan_provider=provider.name,
        )

        self._logger.info(
            "opportunity_scored",
            token=aggregate.token,
            buy_venue=buy.venue_id,
            sell_venue=sell.venue_id,
            amount=float(amount),
            net_profit=float(net_profit),
            risk_level=risk_level.value,
        )

        return ScoreOutcome(opportunity=opportunity)

    def rank(self, opportunities: List[ArbitrageOpportunity]) -> List[ArbitrageOpportunity]:
        return rank_opportunities(opportunities)

    def revalidate(
        self,
        opportunity: ArbitrageOpportunity,
        fresh: AggregatedQuote,
        capital: Decimal,
        gas_cost: GasCost,
    ) -> ScoreOutcome:
        """
        Re-score an opportunity against fresh quotes.

        The opportunity stays valid when the fresh net profit is at least the
        revalidation ratio of the original.

        Returns:
            ScoreOutcome with the fresh opportunity, or reason "profit_degraded"
        """
        outcome = self.score(fresh, capital, gas_cost)
        if not outcome.accepted:
            return outcome

        floor = opportunity.net_profit * self.scoring.revalidation_ratio
        if outcome.opportunity.net_profit < floor:
            self._logger.info(
                "opportunity_degraded",
                opportunity_id=opportunity.id,
                original_profit=float(opportunity.net_profit),
                current_profit=float(outcome.opportunity.net_profit),
            )
            return ScoreOutcome(opportunity=None, reason="profit_degraded")

        return outcome
