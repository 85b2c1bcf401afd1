"""Protection strategy selection and MEV risk assessment"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from arbsentry.config.models import ProtectionConfig
from arbsentry.models import AttackPattern, PatternType, ProtectionStrategy, RiskAssessment

logger = structlog.get_logger()

STRATEGY_CATALOG: Dict[str, ProtectionStrategy] = {
    "stealth": ProtectionStrategy(
        key="stealth",
        name="Stealth Mode",
        description="Random delays and gas prices to avoid detection",
        effectiveness=85,
        cost_multiplier=Decimal("1.2"),
        delay_blocks=2,
        uses_private_channel=False,
        conditions=("Low MEV activity", "Standard transactions"),
    ),
    "flashbots": ProtectionStrategy(
        key="flashbots",
        name="Flashbots Protection",
        description="Private mempool submission via Flashbots",
        effectiveness=95,
        cost_multiplier=Decimal("1.1"),
        delay_blocks=0,
        uses_private_channel=True,
        conditions=("High MEV risk", "Large transactions"),
    ),
    "aggressive": ProtectionStrategy(
        key="aggressive",
        name="Aggressive Protection",
        description="Maximum gas price and immediate execution",
        effectiveness=90,
        cost_multiplier=Decimal("2.5"),
        delay_blocks=0,
        uses_private_channel=False,
        conditions=("Critical transactions", "Emergency situations"),
    ),
    "bundle": ProtectionStrategy(
        key="bundle",
        name="Bundle Submission",
        description="Submit transactions in protected bundles",
        effectiveness=92,
        cost_multiplier=Decimal("1.3"),
        delay_blocks=1,
        uses_private_channel=True,
        conditions=("Multiple transactions", "Complex arbitrage"),
    ),
    "jit_protection": ProtectionStrategy(
        key="jit_protection",
        name="JIT Protection",
        description="Just-in-time liquidity protection",
        effectiveness=88,
        cost_multiplier=Decimal("1.4"),
        delay_blocks=0,
        uses_private_channel=False,
        conditions=("DEX interactions", "Liquidity sensitive trades"),
    ),
}

# label -> (description, recommendation); cut-offs live in ProtectionConfig
RISK_TIER_TEXT: Dict[str, Tuple[str, str]] = {
    "high_risk": ("High MEV activity detected - multiple attack vectors present",
                  "Use Flashbots or delay execution"),
    "medium_risk": ("Moderate MEV risk - some suspicious activity detected",
                    "Consider using MEV protection or smaller amounts"),
    "low_risk": ("Low MEV risk - minimal suspicious activity",
                 "Proceed with caution, monitor execution"),
}

SAFE_RECOMMENDATION = "Safe to proceed"

RulePredicate = Callable[[Decimal, int, Sequence[AttackPattern]], bool]


@dataclass(frozen=True)
class ProtectionRule:
    """Selection rule: when the predicate holds, the first enabled candidate wins"""

    name: str
    predicate: RulePredicate
    candidates: Tuple[str, ...]


def build_rules(config: ProtectionConfig) -> List[ProtectionRule]:
    """Ordered rule table for the configured thresholds (first match wins)"""
    return [
        ProtectionRule(
            name="large_or_critical",
            predicate=lambda amount, confidence, patterns: (
                amount > config.max_protection_amount
                or confidence > config.max_protection_confidence
            ),
            candidates=("flashbots", "aggressive"),
        ),
        ProtectionRule(
            name="confident_sandwich",
            predicate=lambda amount, confidence, patterns: any(
                p.type == PatternType.SANDWICH and p.confidence > config.sandwich_confidence
                for p in patterns
            ),
            candidates=("bundle", "flashbots"),
        ),
        ProtectionRule(
            name="jit_liquidity",
            predicate=lambda amount, confidence, patterns: any(
                p.type == PatternType.JIT_LIQUIDITY for p in patterns
            ),
            candidates=("jit_protection",),
        ),
        ProtectionRule(
            name="elevated_risk",
            predicate=lambda amount, confidence, patterns: confidence > config.delay_confidence,
            candidates=("stealth",),
        ),
        ProtectionRule(
            name="default",
            predicate=lambda amount, confidence, patterns: True,
            candidates=("stealth",),
        ),
    ]


def confidence_boost(patterns: Sequence[AttackPattern], config: Optional[ProtectionConfig] = None) -> int:
    """More patterns, and confident ones, raise the overall confidence"""
    config = config or ProtectionConfig()
    strong = sum(1 for p in patterns if p.confidence > config.strong_pattern_confidence)
    return (
        min(config.boost_cap, config.boost_per_pattern * len(patterns))
        + config.strong_pattern_bonus * strong
    )


def risk_tier(confidence: int, config: Optional[ProtectionConfig] = None) -> Tuple[str, str, str]:
    """(label, description, recommendation) for a confidence level"""
    config = config or ProtectionConfig()
    for label, threshold in config.risk_tiers():
        if confidence > threshold:
            description, recommendation = RISK_TIER_TEXT[label]
            return label, description, recommendation
    return "none", "No MEV activity detected", SAFE_RECOMMENDATION


class ProtectionStrategySelector:
    """
    Picks an execution protection strategy for a trade.

    Rules are evaluated in order; a matching rule yields its first candidate
    that is enabled (private-channel strategies need the private channel).
    """

    def __init__(
        self,
        config: ProtectionConfig,
        catalog: Optional[Dict[str, ProtectionStrategy]] = None,
    ):
        self.config = config
        self.catalog = dict(catalog or STRATEGY_CATALOG)
        self.rules = build_rules(config)
        self._logger = logger.bind(component="protection_selector")

    def is_available(self, key: str) -> bool:
        strategy = self.catalog.get(key)
        if strategy is None or key not in self.config.enabled_strategies:
            return False
        if strategy.uses_private_channel and not self.config.private_channel_enabled:
            return False
        return True

    def get_strategies(self) -> List[ProtectionStrategy]:
        """Available strategies"""
        return [s for key, s in self.catalog.items() if self.is_available(key)]

    def select(
        self,
        amount: Decimal,
        confidence: int,
        patterns: Sequence[AttackPattern] = (),
    ) -> ProtectionStrategy:
        """
        Select the protection strategy for a trade.

        Args:
            amount: Trade amount (USD)
            confidence: MEV risk confidence (0-100)
            patterns: Attack patterns observed recently

        Returns:
            Selected ProtectionStrategy
        """
        for rule in self.rules:
            if not rule.predicate(amount, confidence, patterns):
                continue
            for key in rule.candidates:
                if self.is_available(key):
                    self._logger.debug(
                        "protection_strategy_selected",
                        rule=rule.name,
                        strategy=key,
                        confidence=confidence,
                    )
                    return self.catalog[key]

        return self.catalog["stealth"]

    def recommendations(self, confidence: int, strategy: Optional[ProtectionStrategy] = None) -> List[str]:
        """Textual guidance for a confidence level"""
        _, _, recommendation = risk_tier(confidence, self.config)
        advice = [recommendation]
        if strategy is not None and confidence > self.config.risky_confidence:
            advice.append(f"Execute with {strategy.name}: {strategy.description}")
        return advice

    def risk_factors(
        self,
        amount: Decimal,
        patterns: Sequence[AttackPattern],
        mev_activity: int,
    ) -> List[str]:
        factors = []
        if amount > self.config.max_protection_amount:
            factors.append("Large transaction amount")
        if len(patterns) > self.config.many_patterns_threshold:
            factors.append("High MEV activity detected")
        if any(p.type == PatternType.SANDWICH for p in patterns):
            factors.append("Sandwich attacks present")
        if any(p.type == PatternType.JIT_LIQUIDITY for p in patterns):
            factors.append("JIT liquidity attacks detected")
        if mev_activity > self.config.high_risk_confidence:
            factors.append("High network MEV activity")
        return factors

    def assess(
        self,
        token: str,
        amount: Decimal,
        patterns: Sequence[AttackPattern],
        mev_activity: int,
    ) -> RiskAssessment:
        """
        Build the risk verdict for a prospective trade.

        The base confidence is the higher of the current MEV activity and the
        most confident recent pattern; the pattern boost is added on top and
        the result capped at 100.
        """
        patterns = list(patterns)
        base = max([mev_activity] + [p.confidence for p in patterns])
        confidence = max(0, min(100, base + confidence_boost(patterns, self.config)))

        label, _, _ = risk_tier(confidence, self.config)
        strategy = self.select(amount, confidence, patterns)

        estimated_profit = Decimal("0")
        if patterns:
            average = sum((p.profit_estimate for p in patterns), Decimal("0")) / len(patterns)
            estimated_profit = average * amount / self.config.mev_profit_reference_amount

        assessment = RiskAssessment(
            token=token,
            amount=amount,
            is_risky=confidence > self.config.risky_confidence,
            confidence=confidence,
            risk_label=label,
            recommended_strategy=strategy,
            patterns=patterns,
            estimated_mev_profit=estimated_profit,
            risk_factors=self.risk_factors(amount, patterns, mev_activity),
            recommendations=self.recommendations(confidence, strategy),
            mev_activity=mev_activity,
        )

        self._logger.info(
            "risk_assessed",
            token=token,
            amount=float(amount),
            confidence=confidence,
            risk_label=label,
            strategy=strategy.key,
            pattern_count=len(patterns),
        )
        return assessment
