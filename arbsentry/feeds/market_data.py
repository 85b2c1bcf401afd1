"""Market data (gas prices, token prices) consumed by the scorers"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional, Tuple

import structlog

from arbsentry.chains.connector import ChainConnector
from arbsentry.config.models import ChainConfig
from arbsentry.errors import SourceUnavailable
from arbsentry.feeds.price_aggregator import PriceAggregator

logger = structlog.get_logger()


class MarketDataProvider(ABC):
    """Source of live gas and token prices per chain"""

    @abstractmethod
    async def get_gas_price(self, chain_id: int) -> int:
        """Current gas price in wei"""
        pass

    @abstractmethod
    async def get_token_price(self, chain_id: int, token: str) -> Decimal:
        """Current USD price of a token on a chain"""
        pass

    @abstractmethod
    async def get_native_token_usd(self, chain_id: int) -> Decimal:
        """Current USD price of the chain's native gas token"""
        pass


class StaticMarketDataProvider(MarketDataProvider):
    """Fixed market data, used for tests and dry runs"""

    def __init__(
        self,
        gas_prices: Optional[Dict[int, int]] = None,
        token_prices: Optional[Dict[Tuple[int, str], Decimal]] = None,
        native_token_usd: Optional[Dict[int, Decimal]] = None,
    ):
        self.gas_prices = dict(gas_prices or {})
        self.token_prices = dict(token_prices or {})
        self.native_token_usd = dict(native_token_usd or {})

    async def get_gas_price(self, chain_id: int) -> int:
        if chain_id not in self.gas_prices:
            raise SourceUnavailable(f"chain:{chain_id}", "no gas price")
        return self.gas_prices[chain_id]

    async def get_token_price(self, chain_id: int, token: str) -> Decimal:
        key = (chain_id, token)
        if key not in self.token_prices:
            raise SourceUnavailable(f"chain:{chain_id}", f"no price for {token}")
        return self.token_prices[key]

    async def get_native_token_usd(self, chain_id: int) -> Decimal:
        if chain_id not in self.native_token_usd:
            raise SourceUnavailable(f"chain:{chain_id}", "no native token price")
        return self.native_token_usd[chain_id]


class ChainMarketDataProvider(MarketDataProvider):
    """
    Market data read from live chains.

    Gas prices come from the chain connectors. Token prices come from the
    last aggregate of the chain's price aggregator, falling back to fixed
    prices (stablecoins). The native token price uses the aggregate of its
    wrapped token when available, else the configured reference price.
    """

    def __init__(
        self,
        connectors: Dict[int, ChainConnector],
        aggregators: Dict[int, PriceAggregator],
        chains: Dict[int, ChainConfig],
        fixed_prices: Optional[Dict[str, Decimal]] = None,
    ):
        self.connectors = connectors
        self.aggregators = aggregators
        self.chains = chains
        self.fixed_prices = dict(fixed_prices or {})
        self._logger = logger.bind(component="chain_market_data")

    async def get_gas_price(self, chain_id: int) -> int:
        connector = self.connectors.get(chain_id)
        if connector is None:
            raise SourceUnavailable(f"chain:{chain_id}", "no connector")
        return await connector.get_gas_price()

    def _aggregated_price(self, chain_id: int, token: str) -> Optional[Decimal]:
        aggregator = self.aggregators.get(chain_id)
        if aggregator is None:
            return None
        aggregate = aggregator.get_latest(token)
        if aggregate is None or not aggregate.quotes:
            return None
        return aggregate.average_price

    async def get_token_price(self, chain_id: int, token: str) -> Decimal:
        price = self._aggregated_price(chain_id, token)
        if price is not None:
            return price
        if token in self.fixed_prices:
            return self.fixed_prices[token]
        raise SourceUnavailable(f"chain:{chain_id}", f"no price for {token}")

    async def get_native_token_usd(self, chain_id: int) -> Decimal:
        chain = self.chains.get(chain_id)
        if chain is None:
            raise SourceUnavailable(f"chain:{chain_id}", "unknown chain")

        price = self._aggregated_price(chain_id, f"W{chain.native_token}")
        if price is not None:
            return price

        self._logger.debug(
            "native_price_from_config",
            chain_id=chain_id,
            native_token=chain.native_token,
        )
        return chain.native_token_usd
