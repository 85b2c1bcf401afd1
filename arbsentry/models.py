"""Domain models shared by feeds, detectors and the engine"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

WEI_PER_NATIVE = Decimal(10**18)
WEI_PER_GWEI = Decimal(10**9)


class RiskLevel(Enum):
    """Opportunity risk level, ordered from safest to riskiest"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class PatternType(Enum):
    """MEV attack pattern types"""

    SANDWICH = "sandwich"
    FRONTRUN = "frontrun"
    BACKRUN = "backrun"
    JIT_LIQUIDITY = "jit_liquidity"
    ARBITRAGE = "arbitrage"


@dataclass
class Quote:
    """Single venue price/liquidity quote"""

    venue_id: str
    pair: str
    price: Decimal
    liquidity: Decimal
    fee_bps: int
    timestamp: float


@dataclass
class AggregatedQuote:
    """Fused view of all quotes collected for a token in one cycle"""

    token: str
    pair: str
    quotes: List[Quote]
    average_price: Decimal
    spread_pct: Decimal
    best_bid: Decimal
    best_ask: Decimal
    total_liquidity: Decimal
    timestamp: float
    failed_venues: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def is_arbitrageable(self) -> bool:
        return len(self.quotes) >= 2


@dataclass
class GasCost:
    """Gas cost information"""

    gas_used: int
    gas_price_wei: int
    gas_price_gwei: Decimal
    gas_cost_native: Decimal
    gas_cost_usd: Decimal


@dataclass
class CostBreakdown:
    """Costs deducted from gross profit"""

    flashloan_fee: Decimal
    dex_fees: Decimal
    gas_cost: Decimal
    slippage_cost: Decimal
    bridge_fee: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return (
            self.flashloan_fee
            + self.dex_fees
            + self.gas_cost
            + self.slippage_cost
            + self.bridge_fee
        )


@dataclass
class ArbitrageOpportunity:
    """Cost-adjusted buy-low/sell-high opportunity between two venues"""

    id: str
    token: str
    pair: str
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    spread_pct: Decimal
    amount: Decimal
    gross_profit: Decimal
    costs: CostBreakdown
    net_profit: Decimal
    profit_margin_pct: Decimal
    risk_level: RiskLevel
    created_at: float
    ttl_seconds: float
    flashloan_provider: Optional[str] = None

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CrossChainOpportunity(ArbitrageOpportunity):
    """Opportunity bridging a token from a cheaper chain to a dearer one"""

    source_chain: int = 0
    target_chain: int = 0
    bridge_protocol: str = ""
    bridge_fee: Decimal = Decimal("0")
    gas_estimate: Decimal = Decimal("0")
    transit_seconds: float = 0.0
    risk_score: int = 0
    is_valid: bool = False


@dataclass
class CrossChainThreat:
    """MEV threat spanning two chains"""

    type: str
    source_chain: int
    target_chain: int
    severity: str
    description: str
    recommendation: str
    detected_at: float


@dataclass
class TransactionRecord:
    """Normalized transaction used by the pattern detector"""

    hash: str
    sender: str
    recipient: str
    value: Decimal
    gas_price: int
    gas_limit: int
    block_number: int
    timestamp: float
    position: int = 0
    gas_used: Optional[int] = None

    @property
    def gas_usage(self) -> int:
        """Gas used when known, else the gas limit"""
        return self.gas_used if self.gas_used is not None else self.gas_limit

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], timestamp: float = 0.0) -> "TransactionRecord":
        """
        Build a record from a web3-style transaction dict.

        Args:
            raw: Transaction dict (hash, from, to, value in wei, gasPrice, gas, ...)
            timestamp: Block timestamp used when the dict carries none

        Returns:
            TransactionRecord

        Raises:
            ValueError: If a required field is missing or has an invalid value
        """
        try:
            tx_hash = raw["hash"]
            if isinstance(tx_hash, bytes):
                tx_hash = "0x" + bytes(tx_hash).hex()
            sender = raw["from"]
            if not sender:
                raise ValueError("empty sender")
            gas_price = int(raw.get("gasPrice") or 0)
            gas_limit = int(raw.get("gas") or 0)
            block_number = int(raw["blockNumber"])
            gas_used = raw.get("gasUsed")
            value_wei = int(raw.get("value") or 0)
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed transaction: {e!r}") from e

        if gas_price < 0 or gas_limit < 0 or block_number < 0 or value_wei < 0:
            raise ValueError("malformed transaction: negative field")

        return cls(
            hash=str(tx_hash),
            sender=str(sender).lower(),
            recipient=str(raw.get("to") or "").lower(),
            value=Decimal(value_wei) / WEI_PER_NATIVE,
            gas_price=gas_price,
            gas_limit=gas_limit,
            block_number=block_number,
            timestamp=float(raw.get("timestamp", timestamp)),
            position=int(raw.get("transactionIndex") or 0),
            gas_used=int(gas_used) if gas_used is not None else None,
        )


@dataclass
class AttackPattern:
    """Detected MEV attack pattern"""

    type: PatternType
    confidence: int
    attacker: str
    victim: str
    profit_estimate: Decimal
    gas_used: int
    block_number: int
    tx_hashes: List[str]
    detected_at: float

    @property
    def key(self) -> tuple:
        return (self.type, tuple(self.tx_hashes))


@dataclass(frozen=True)
class ProtectionStrategy:
    """Execution protection strategy"""

    key: str
    name: str
    description: str
    effectiveness: int
    cost_multiplier: Decimal
    delay_blocks: int
    uses_private_channel: bool
    conditions: tuple = ()


@dataclass
class ScoreOutcome:
    """Result of scoring one aggregated quote"""

    opportunity: Optional[ArbitrageOpportunity]
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.opportunity is not None


@dataclass
class OpportunityReport:
    """
    Ranked opportunities with the rejection reason for every other token.

    Rejections are keyed by (chain_id, token) so a token tracked on several
    chains keeps one reason per chain.
    """

    opportunities: List[ArbitrageOpportunity] = field(default_factory=list)
    rejected: Dict[Tuple[int, str], str] = field(default_factory=dict)

    def __iter__(self) -> Iterator[ArbitrageOpportunity]:
        return iter(self.opportunities)

    def __len__(self) -> int:
        return len(self.opportunities)

    def __getitem__(self, index):
        return self.opportunities[index]


@dataclass
class RiskAssessment:
    """MEV risk verdict for a prospective trade"""

    token: str
    amount: Decimal
    is_risky: bool
    confidence: int
    risk_label: str
    recommended_strategy: ProtectionStrategy
    patterns: List[AttackPattern] = field(default_factory=list)
    estimated_mev_profit: Decimal = Decimal("0")
    risk_factors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    mev_activity: int = 0
