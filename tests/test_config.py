"""Tests for configuration models"""

from decimal import Decimal

import pytest

from arbsentry.config.models import (
    BridgeConfig,
    ChainConfig,
    EngineConfig,
    FlashloanProviderConfig,
    RiskThresholds,
    Settings,
    build_engine_config,
)
from arbsentry.errors import InvalidConfiguration


@pytest.fixture
def rpc_env(monkeypatch):
    """Minimal environment required by Settings"""
    monkeypatch.setenv("BSC_RPC_PRIMARY", "https://bsc-primary.example.com")
    monkeypatch.setenv("BSC_RPC_FALLBACK", "https://bsc-fallback.example.com")
    monkeypatch.setenv("POLYGON_RPC_PRIMARY", "https://polygon-primary.example.com")
    monkeypatch.setenv("POLYGON_RPC_FALLBACK", "https://polygon-fallback.example.com")
    return monkeypatch


def test_chain_config_creation():
    """Test ChainConfig model creation"""
    config = ChainConfig(
        name="BSC",
        chain_id=56,
        rpc_urls=["https://bsc-dataseed.bnbchain.org"],
        block_time_seconds=3.0,
        native_token="BNB",
        native_token_usd=Decimal("300.0"),
    )

    assert config.name == "BSC"
    assert config.chain_id == 56
    assert config.gas_limit == 300000
    assert config.confirmation_blocks == 12
    assert config.enabled is True
    assert config.tokens == []


def test_engine_config_defaults():
    """Test default engine configuration values"""
    config = EngineConfig()

    assert config.scoring.utilization_cap == Decimal("0.04")
    assert config.scoring.liquidity_cap == Decimal("0.8")
    assert config.scoring.hard_cap == Decimal("3000000")
    assert config.scoring.min_net_profit_usd == Decimal("50")
    assert config.risk.high_spread_pct == Decimal("0.5")
    assert config.detector.window_blocks == 5
    assert config.detector.buffer_max_size == 1000
    assert config.protection.max_protection_amount == Decimal("100000")
    assert config.cross_chain.min_spread_pct == Decimal("2")
    assert config.cache.ttl_seconds == 30.0
    assert config.cache.capacity == 100
    assert [p.name for p in config.flashloan_providers][:3] == ["Aave V3", "Balancer V2", "dYdX"]


def test_build_engine_config_accepts_dict_sections():
    """Test section overrides given as plain dicts"""
    config = build_engine_config(scoring={"min_net_profit_usd": "10"}, dex_fees_bps={"a": 30})

    assert config.scoring.min_net_profit_usd == Decimal("10")
    assert config.dex_fees_bps == {"a": 30}


def test_build_engine_config_rejects_out_of_range():
    """Test range violations surface as InvalidConfiguration"""
    with pytest.raises(InvalidConfiguration):
        build_engine_config(scoring={"utilization_cap": "1.5"})

    with pytest.raises(InvalidConfiguration):
        build_engine_config(dex_fees_bps={"a": 20000})


def test_build_engine_config_rejects_bad_ordering():
    """Test threshold ordering violations surface as InvalidConfiguration"""
    with pytest.raises(InvalidConfiguration):
        build_engine_config(risk={"high_spread_pct": "2", "medium_spread_pct": "1"})

    with pytest.raises(InvalidConfiguration):
        build_engine_config(detector={"frontrun_gas_ratio": "3", "frontrun_strong_gas_ratio": "2"})


def test_build_engine_config_requires_stealth_strategy():
    """Test the default strategy cannot be disabled"""
    with pytest.raises(InvalidConfiguration):
        build_engine_config(protection={"enabled_strategies": ["flashbots"]})

    with pytest.raises(InvalidConfiguration):
        build_engine_config(protection={"enabled_strategies": ["stealth", "teleport"]})


def test_risk_thresholds_ordering_is_checked():
    """Test RiskThresholds validator accepts ordered values"""
    thresholds = RiskThresholds(high_spread_pct=Decimal("0.1"), medium_spread_pct=Decimal("0.1"))
    assert thresholds.high_spread_pct == thresholds.medium_spread_pct


def test_flashloan_provider_supports():
    """Test provider token support (empty list supports all)"""
    open_provider = FlashloanProviderConfig(name="Aave V3", fee_bps=5, max_liquidity=Decimal("1"))
    restricted = FlashloanProviderConfig(
        name="dYdX", fee_bps=2, max_liquidity=Decimal("1"), supported_tokens=["WETH"]
    )

    assert open_provider.supports("WBNB") is True
    assert restricted.supports("WETH") is True
    assert restricted.supports("WBNB") is False


def test_bridge_supports_chains():
    """Test bridge token and chain support"""
    bridge = BridgeConfig(
        protocol="stargate",
        fee_usd=Decimal("5"),
        max_amount=Decimal("1000"),
        supported_tokens=["USDT"],
        supported_chains=[56, 137],
    )

    assert bridge.supports("USDT", 56, 137) is True
    assert bridge.supports("USDT", 1, 137) is False
    assert bridge.supports("WETH", 56, 137) is False


def test_settings_with_env_vars(rpc_env):
    """Test Settings loading from environment variables"""
    rpc_env.setenv("REDIS_URL", "redis://localhost:6379")
    rpc_env.setenv("TRADING_CAPITAL_USD", "250000")
    rpc_env.setenv("LOG_LEVEL", "DEBUG")

    settings = Settings()

    assert settings.redis_url == "redis://localhost:6379"
    assert settings.bsc_rpc_primary == "https://bsc-primary.example.com"
    assert settings.polygon_rpc_fallback == "https://polygon-fallback.example.com"
    assert settings.trading_capital_usd == Decimal("250000")
    assert settings.log_level == "DEBUG"


def test_settings_get_bsc_config(rpc_env):
    """Test getting BSC chain configuration"""
    bsc_config = Settings().get_bsc_config()

    assert bsc_config.name == "BSC"
    assert bsc_config.chain_id == 56
    assert bsc_config.rpc_urls == [
        "https://bsc-primary.example.com",
        "https://bsc-fallback.example.com",
    ]
    assert bsc_config.native_token == "BNB"
    assert "USDT" in bsc_config.tokens


def test_settings_get_polygon_config(rpc_env):
    """Test getting Polygon chain configuration"""
    polygon_config = Settings().get_polygon_config()

    assert polygon_config.name == "Polygon"
    assert polygon_config.chain_id == 137
    assert polygon_config.native_token == "MATIC"
    assert "USDT" in polygon_config.tokens


def test_settings_get_venue_configs(rpc_env):
    """Test venue configuration covers both chains"""
    venues = Settings().get_venue_configs()

    assert {v.chain_id for v in venues} == {56, 137}
    assert len({v.venue_id for v in venues}) == len(venues)


def test_settings_get_engine_config(rpc_env):
    """Test engine configuration built from settings"""
    rpc_env.setenv("MIN_NET_PROFIT_USD", "75")

    engine_config = Settings().get_engine_config()

    assert engine_config.scoring.min_net_profit_usd == Decimal("75")
    assert [c.chain_id for c in engine_config.cross_chain.chains] == [56, 137]
    assert {b.protocol for b in engine_config.cross_chain.bridges} == {"stargate", "cbridge"}


@pytest.mark.parametrize(
    "name,value",
    [("QUOTE_POLL_INTERVAL_SECONDS", "0"), ("MEV_POLL_INTERVAL_SECONDS", "-1"), ("MIN_NET_PROFIT_USD", "-5")],
)
def test_settings_out_of_range_value(rpc_env, name, value):
    """Test a bad environment value surfaces as InvalidConfiguration"""
    rpc_env.setenv(name, value)

    with pytest.raises(InvalidConfiguration):
        Settings().get_engine_config()
