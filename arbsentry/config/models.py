"""Configuration models for chains, venues and the scoring engine"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from arbsentry.errors import InvalidConfiguration

ALL_STRATEGIES = ["stealth", "flashbots", "aggressive", "bundle", "jit_protection"]

DEFAULT_KNOWN_ACTORS = [
    "0x0000000000000000000000000000000000000001",
    "0x0000000000000000000000000000000000000002",
    "0x5050e08626c499411b5d0e0b5af0e83d3fd82edf",
    "0x00000000003b3cc22af3ae1eac0440bcee416b40",
]


class ChainConfig(BaseSettings):
    """Configuration for a blockchain network"""

    name: str
    chain_id: int
    rpc_urls: List[str]
    block_time_seconds: float
    native_token: str
    native_token_usd: Decimal
    gas_limit: int = 300000
    confirmation_blocks: int = 12
    enabled: bool = True
    tokens: List[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(frozen=True, env_prefix="CHAIN_")


class VenueConfig(BaseModel):
    """Uniswap V2-style pool quoting a token against a USD stablecoin"""

    venue_id: str
    chain_id: int
    token: str
    pool_address: str
    fee_bps: int = Field(default=30, ge=0, le=10000)
    base_token_index: int = Field(default=0, ge=0, le=1)
    base_decimals: int = 18
    quote_decimals: int = 18
    quote_symbol: str = "USD"


class FlashloanProviderConfig(BaseModel):
    """Flashloan provider fee table entry"""

    name: str
    fee_bps: int = Field(ge=0, le=10000)
    max_liquidity: Decimal = Field(ge=0)
    is_active: bool = True
    supported_tokens: List[str] = Field(default_factory=list)

    def supports(self, token: str) -> bool:
        return not self.supported_tokens or token in self.supported_tokens


class BridgeConfig(BaseModel):
    """Bridge catalog entry"""

    protocol: str
    fee_usd: Decimal = Field(ge=0)
    min_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_amount: Decimal = Field(gt=0)
    supported_tokens: List[str] = Field(default_factory=list)
    fee_bps: int = Field(default=0, ge=0, le=10000)
    supported_chains: List[int] = Field(default_factory=list)
    address: str = ""

    def supports(self, token: str, source_chain: int, target_chain: int) -> bool:
        if token not in self.supported_tokens:
            return False
        if not self.supported_chains:
            return True
        return source_chain in self.supported_chains and target_chain in self.supported_chains


class ScoringConfig(BaseModel):
    """Opportunity sizing and cost model"""

    utilization_cap: Decimal = Field(default=Decimal("0.04"), gt=0, le=1)
    liquidity_cap: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)
    hard_cap: Decimal = Field(default=Decimal("3000000"), gt=0)
    slippage_bps: int = Field(default=100, ge=0, le=10000)
    gas_units: int = Field(default=400000, ge=0)
    min_net_profit_usd: Decimal = Field(default=Decimal("50"), ge=0)
    opportunity_ttl_seconds: float = Field(default=30.0, gt=0)
    revalidation_ratio: Decimal = Field(default=Decimal("0.8"), ge=0, le=1)


class RiskThresholds(BaseModel):
    """Spread/margin cut-offs for opportunity risk levels (percent)"""

    high_spread_pct: Decimal = Field(default=Decimal("0.5"), ge=0)
    high_margin_pct: Decimal = Field(default=Decimal("0.2"), ge=0)
    medium_spread_pct: Decimal = Field(default=Decimal("1.0"), ge=0)
    medium_margin_pct: Decimal = Field(default=Decimal("0.5"), ge=0)

    @model_validator(mode="after")
    def check_ordering(self) -> "RiskThresholds":
        if self.high_spread_pct > self.medium_spread_pct:
            raise ValueError("high_spread_pct must not exceed medium_spread_pct")
        if self.high_margin_pct > self.medium_margin_pct:
            raise ValueError("high_margin_pct must not exceed medium_margin_pct")
        return self


class DetectorConfig(BaseModel):
    """Transaction pattern detector heuristics"""

    window_blocks: int = Field(default=5, ge=1)
    frontrun_gas_ratio: Decimal = Field(default=Decimal("1.5"), gt=1)
    frontrun_strong_gas_ratio: Decimal = Field(default=Decimal("2"), gt=1)
    jit_gas_threshold: int = Field(default=200000, ge=0)
    arbitrage_gas_threshold: int = Field(default=300000, ge=0)
    high_gas_price_wei: int = Field(default=50 * 10**9, ge=0)
    high_gas_usage: int = Field(default=500000, ge=0)

    known_actor_weight: Decimal = Field(default=Decimal("50"), ge=0)
    high_gas_price_weight: Decimal = Field(default=Decimal("30"), ge=0)
    high_gas_usage_weight: Decimal = Field(default=Decimal("20"), ge=0)

    sandwich_base_confidence: int = Field(default=60, ge=0, le=100)
    sandwich_same_sender_bonus: int = Field(default=20, ge=0, le=100)
    sandwich_gas_bonus: int = Field(default=15, ge=0, le=100)
    known_actor_bonus: int = Field(default=10, ge=0, le=100)
    frontrun_base_confidence: int = Field(default=50, ge=0, le=100)
    frontrun_gas_bonus: int = Field(default=30, ge=0, le=100)
    frontrun_known_actor_bonus: int = Field(default=20, ge=0, le=100)
    jit_confidence: int = Field(default=85, ge=0, le=100)
    arbitrage_confidence: int = Field(default=70, ge=0, le=100)

    sandwich_profit_rate: Decimal = Field(default=Decimal("0.001"), ge=0)
    frontrun_profit_rate: Decimal = Field(default=Decimal("0.0005"), ge=0)
    jit_profit_rate: Decimal = Field(default=Decimal("0.002"), ge=0)
    arbitrage_profit_rate: Decimal = Field(default=Decimal("0.001"), ge=0)

    buffer_max_size: int = Field(default=1000, ge=1)
    buffer_max_age_seconds: float = Field(default=3600.0, gt=0)
    recent_pattern_seconds: float = Field(default=300.0, gt=0)
    auto_flag_attackers: bool = False
    known_actors: List[str] = Field(default_factory=lambda: list(DEFAULT_KNOWN_ACTORS))

    @model_validator(mode="after")
    def check_ratios(self) -> "DetectorConfig":
        if self.frontrun_strong_gas_ratio < self.frontrun_gas_ratio:
            raise ValueError("frontrun_strong_gas_ratio must be >= frontrun_gas_ratio")
        return self


class ProtectionConfig(BaseModel):
    """Protection rule thresholds (T1-T4), risk tiers, confidence boost and enabled strategies"""

    max_protection_amount: Decimal = Field(default=Decimal("100000"), ge=0)
    max_protection_confidence: int = Field(default=80, ge=0, le=100)
    sandwich_confidence: int = Field(default=80, ge=0, le=100)
    delay_confidence: int = Field(default=40, ge=0, le=100)
    risky_confidence: int = Field(default=20, ge=0, le=100)
    high_risk_confidence: int = Field(default=70, ge=0, le=100)
    medium_risk_confidence: int = Field(default=40, ge=0, le=100)
    low_risk_confidence: int = Field(default=20, ge=0, le=100)
    boost_per_pattern: int = Field(default=2, ge=0, le=100)
    boost_cap: int = Field(default=20, ge=0, le=100)
    strong_pattern_confidence: int = Field(default=80, ge=0, le=100)
    strong_pattern_bonus: int = Field(default=5, ge=0, le=100)
    many_patterns_threshold: int = Field(default=3, ge=0)
    mev_profit_reference_amount: Decimal = Field(default=Decimal("100000"), gt=0)
    private_channel_enabled: bool = True
    enabled_strategies: List[str] = Field(default_factory=lambda: list(ALL_STRATEGIES))

    @model_validator(mode="after")
    def check_strategies(self) -> "ProtectionConfig":
        unknown = set(self.enabled_strategies) - set(ALL_STRATEGIES)
        if unknown:
            raise ValueError(f"unknown strategies: {sorted(unknown)}")
        if "stealth" not in self.enabled_strategies:
            raise ValueError("stealth strategy is the default and must stay enabled")
        if self.delay_confidence > self.max_protection_confidence:
            raise ValueError("delay_confidence must not exceed max_protection_confidence")
        if not self.high_risk_confidence > self.medium_risk_confidence > self.low_risk_confidence:
            raise ValueError("risk tier cut-offs must be strictly descending (high > medium > low)")
        return self

    def risk_tiers(self) -> List[Tuple[str, int]]:
        """(label, cut-off) pairs, highest first"""
        return [
            ("high_risk", self.high_risk_confidence),
            ("medium_risk", self.medium_risk_confidence),
            ("low_risk", self.low_risk_confidence),
        ]


class CrossChainConfig(BaseModel):
    """Bridge cost/time model and chain-pair risk tables"""

    chains: List[ChainConfig] = Field(default_factory=list)
    bridges: List[BridgeConfig] = Field(default_factory=list)
    min_spread_pct: Decimal = Field(default=Decimal("2"), ge=0)
    max_trade_usd: Decimal = Field(default=Decimal("100000"), gt=0)
    bridge_processing_seconds: float = Field(default=300.0, ge=0)
    base_risk: int = Field(default=20, ge=0, le=100)
    amount_risk_tiers: List[Tuple[Decimal, int]] = Field(
        default_factory=lambda: [(Decimal("50000"), 20), (Decimal("100000"), 20)]
    )
    transit_risk_tiers: List[Tuple[float, int]] = Field(
        default_factory=lambda: [(600.0, 15), (1800.0, 15)]
    )
    chain_risk_weights: Dict[int, int] = Field(
        default_factory=lambda: {1: 5, 42161: 5, 137: 10, 56: 15}
    )
    default_chain_risk: int = Field(default=20, ge=0, le=100)
    min_net_profit_usd: Decimal = Field(default=Decimal("100"), ge=0)
    max_risk_score: int = Field(default=70, ge=0, le=100)
    opportunity_ttl_seconds: float = Field(default=300.0, gt=0)
    max_opportunities: int = Field(default=50, ge=1)
    sandwich_threat_amount: Decimal = Field(default=Decimal("50000"), ge=0)
    sandwich_threat_risk: int = Field(default=60, ge=0, le=100)
    competition_threshold: int = Field(default=2, ge=1)


class CacheConfig(BaseModel):
    """Result cache bounds"""

    ttl_seconds: float = Field(default=30.0, gt=0)
    bucket_seconds: float = Field(default=30.0, gt=0)
    capacity: int = Field(default=100, ge=1)


class PollingConfig(BaseModel):
    """Schedules, per-call timeouts and shutdown deadline"""

    quote_poll_interval_seconds: float = Field(default=15.0, gt=0)
    quote_timeout_seconds: float = Field(default=5.0, gt=0)
    mev_poll_interval_seconds: float = Field(default=10.0, gt=0)
    cross_chain_interval_seconds: float = Field(default=10.0, gt=0)
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0)
    price_history_size: int = Field(default=100, ge=1)
    price_comparison_threshold_pct: Decimal = Field(default=Decimal("0.5"), ge=0)


def _default_flashloan_providers() -> List[FlashloanProviderConfig]:
    return [
        FlashloanProviderConfig(name="Aave V3", fee_bps=5, max_liquidity=Decimal("50000000")),
        FlashloanProviderConfig(name="Balancer V2", fee_bps=0, max_liquidity=Decimal("25000000")),
        FlashloanProviderConfig(name="dYdX", fee_bps=2, max_liquidity=Decimal("15000000")),
        FlashloanProviderConfig(
            name="Euler", fee_bps=0, max_liquidity=Decimal("0"), is_active=False
        ),
    ]


class EngineConfig(BaseModel):
    """Single configuration object consumed by every engine component"""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    risk: RiskThresholds = Field(default_factory=RiskThresholds)
    flashloan_providers: List[FlashloanProviderConfig] = Field(
        default_factory=_default_flashloan_providers
    )
    dex_fees_bps: Dict[str, int] = Field(default_factory=dict)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    protection: ProtectionConfig = Field(default_factory=ProtectionConfig)
    cross_chain: CrossChainConfig = Field(default_factory=CrossChainConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)

    @model_validator(mode="after")
    def check_dex_fees(self) -> "EngineConfig":
        for venue_id, fee_bps in self.dex_fees_bps.items():
            if not 0 <= fee_bps <= 10000:
                raise ValueError(f"dex fee for {venue_id} out of range: {fee_bps}")
        return self


def build_engine_config(**overrides: Any) -> EngineConfig:
    """
    Build and validate the engine configuration.

    Args:
        **overrides: Section values (models or plain dicts) replacing defaults

    Returns:
        Validated EngineConfig

    Raises:
        InvalidConfiguration: If any value is out of its valid range
    """
    try:
        return EngineConfig(**overrides)
    except ValidationError as e:
        raise InvalidConfiguration(str(e)) from e


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Redis
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    # BSC Configuration
    bsc_rpc_primary: str = Field(alias="BSC_RPC_PRIMARY")
    bsc_rpc_fallback: str = Field(alias="BSC_RPC_FALLBACK")

    # Polygon Configuration
    polygon_rpc_primary: str = Field(alias="POLYGON_RPC_PRIMARY")
    polygon_rpc_fallback: str = Field(alias="POLYGON_RPC_FALLBACK")

    # Engine
    trading_capital_usd: Decimal = Field(default=Decimal("1000000"), alias="TRADING_CAPITAL_USD")
    min_net_profit_usd: Decimal = Field(default=Decimal("50"), alias="MIN_NET_PROFIT_USD")
    quote_poll_interval_seconds: float = Field(default=15.0, alias="QUOTE_POLL_INTERVAL_SECONDS")
    mev_poll_interval_seconds: float = Field(default=10.0, alias="MEV_POLL_INTERVAL_SECONDS")

    # Monitoring
    prometheus_port: int = Field(default=9090, alias="PROMETHEUS_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def get_bsc_config(self) -> ChainConfig:
        """Get BSC chain configuration"""
        return ChainConfig(
            name="BSC",
            chain_id=56,
            rpc_urls=[self.bsc_rpc_primary, self.bsc_rpc_fallback],
            block_time_seconds=3.0,
            native_token="BNB",
            native_token_usd=Decimal("300.0"),
            gas_limit=300000,
            tokens=["WBNB", "USDT"],
        )

    def get_polygon_config(self) -> ChainConfig:
        """Get Polygon chain configuration"""
        return ChainConfig(
            name="Polygon",
            chain_id=137,
            rpc_urls=[self.polygon_rpc_primary, self.polygon_rpc_fallback],
            block_time_seconds=2.0,
            native_token="MATIC",
            native_token_usd=Decimal("0.80"),
            gas_limit=300000,
            tokens=["WMATIC", "USDT"],
        )

    def get_venue_configs(self) -> List[VenueConfig]:
        """Get the pools quoted by the price aggregators"""
        return [
            VenueConfig(
                venue_id="pancakeswap-wbnb-busd",
                chain_id=56,
                token="WBNB",
                pool_address="0x58F876857a02D6762E0101bb5C46A8c1ED44Dc16",
                fee_bps=25,
                base_token_index=0,
            ),
            VenueConfig(
                venue_id="pancakeswap-wbnb-usdt",
                chain_id=56,
                token="WBNB",
                pool_address="0x16b9a82891338f9bA80E2D6970FddA79D1eb0daE",
                fee_bps=25,
                base_token_index=1,
            ),
            VenueConfig(
                venue_id="quickswap-wmatic-usdc",
                chain_id=137,
                token="WMATIC",
                pool_address="0x6e7a5FAFcec6BB1e78bAA2A0430e3B1B64B5c0D7",
                fee_bps=30,
                base_token_index=0,
                quote_decimals=6,
            ),
            VenueConfig(
                venue_id="quickswap-wmatic-usdt",
                chain_id=137,
                token="WMATIC",
                pool_address="0x604229c960e5CACF2aaEAc8Be68Ac07BA9dF81c3",
                fee_bps=30,
                base_token_index=0,
                quote_decimals=6,
            ),
        ]

    def get_engine_config(self) -> EngineConfig:
        """
        Get validated engine configuration.

        Raises:
            InvalidConfiguration: If an environment value is out of its valid range
        """
        try:
            chains = [self.get_bsc_config(), self.get_polygon_config()]
        except ValidationError as e:
            raise InvalidConfiguration(str(e)) from e

        return build_engine_config(
            scoring={"min_net_profit_usd": self.min_net_profit_usd},
            polling={
                "quote_poll_interval_seconds": self.quote_poll_interval_seconds,
                "mev_poll_interval_seconds": self.mev_poll_interval_seconds,
            },
            cross_chain={
                "chains": chains,
                "bridges": [
                    {
                        "protocol": "stargate",
                        "fee_usd": Decimal("6"),
                        "fee_bps": 6,
                        "min_amount": Decimal("100"),
                        "max_amount": Decimal("500000"),
                        "supported_tokens": ["USDT", "USDC"],
                    },
                    {
                        "protocol": "cbridge",
                        "fee_usd": Decimal("10"),
                        "min_amount": Decimal("50"),
                        "max_amount": Decimal("250000"),
                        "supported_tokens": ["USDT", "USDC", "WETH"],
                    },
                ],
            },
        )
