"""Configuration module"""

from .models import (
    BridgeConfig,
    ChainConfig,
    EngineConfig,
    FlashloanProviderConfig,
    Settings,
    VenueConfig,
    build_engine_config,
)

__all__ = [
    "BridgeConfig",
    "ChainConfig",
    "EngineConfig",
    "FlashloanProviderConfig",
    "Settings",
    "VenueConfig",
    "build_engine_config",
]
