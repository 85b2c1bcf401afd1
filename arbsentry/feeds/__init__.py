"""Venue clients, price aggregation and market data"""

from arbsentry.feeds.market_data import (
    ChainMarketDataProvider,
    MarketDataProvider,
    StaticMarketDataProvider,
)
from arbsentry.feeds.price_aggregator import PriceAggregator, build_aggregate
from arbsentry.feeds.venues import UniswapV2PoolVenue, VenueClient

__all__ = [
    "ChainMarketDataProvider",
    "MarketDataProvider",
    "PriceAggregator",
    "StaticMarketDataProvider",
    "UniswapV2PoolVenue",
    "VenueClient",
    "build_aggregate",
]
