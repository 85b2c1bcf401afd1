"""Venue clients producing price/liquidity quotes"""

import asyncio
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Optional

import structlog
from web3 import Web3

from arbsentry.chains.connector import ChainConnector
from arbsentry.config.models import VenueConfig
from arbsentry.errors import SourceTimeout, SourceUnavailable
from arbsentry.models import Quote

logger = structlog.get_logger()


# Uniswap V2-style pool ABI (getReserves function)
POOL_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"internalType": "uint112", "name": "_reserve0", "type": "uint112"},
            {"internalType": "uint112", "name": "_reserve1", "type": "uint112"},
            {"internalType": "uint32", "name": "_blockTimestampLast", "type": "uint32"},
        ],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    }
]


class VenueClient(ABC):
    """Source of quotes for one trading venue"""

    venue_id: str

    @abstractmethod
    async def fetch_quote(self, token: str) -> Quote:
        """
        Fetch the current quote for a token.

        Raises:
            SourceUnavailable: If the venue cannot produce a quote
            SourceTimeout: If the venue does not answer in time
        """
        pass


class UniswapV2PoolVenue(VenueClient):
    """
    Quotes a token from the reserves of a Uniswap V2-style pool.

    The pool pairs the token (base) with a USD stablecoin (quote); price is the
    quote reserve over the base reserve and liquidity is twice the quote
    reserve, both adjusted for token decimals.
    """

    def __init__(
        self,
        chain_connector: ChainConnector,
        config: VenueConfig,
        timeout_seconds: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.chain_connector = chain_connector
        self.config = config
        self.venue_id = config.venue_id
        self.timeout_seconds = timeout_seconds
        self._clock = clock or time.time
        self._logger = logger.bind(
            component="pool_venue",
            venue=self.venue_id,
            chain_id=config.chain_id,
        )

    def _get_reserves(self):
        checksum_address = Web3.to_checksum_address(self.config.pool_address)
        contract = self.chain_connector.w3.eth.contract(
            address=checksum_address,
            abi=POOL_ABI,
        )
        return contract.functions.getReserves().call()

    async def fetch_quote(self, token: str) -> Quote:
        if token != self.config.token:
            raise SourceUnavailable(self.venue_id, f"token {token} not quoted")

        try:
            reserves = await asyncio.wait_for(
                asyncio.to_thread(self._get_reserves),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise SourceTimeout(self.venue_id, self.timeout_seconds) from e
        except Exception as e:
            self._logger.debug(
                "pool_reserves_fetch_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SourceUnavailable(self.venue_id, str(e)) from e

        base_index = self.config.base_token_index
        base_reserve = Decimal(reserves[base_index]) / Decimal(10**self.config.base_decimals)
        quote_reserve = Decimal(reserves[1 - base_index]) / Decimal(10**self.config.quote_decimals)

        if base_reserve <= 0 or quote_reserve <= 0:
            raise SourceUnavailable(self.venue_id, "empty pool reserves")

        price = quote_reserve / base_reserve

        self._logger.debug(
            "pool_quote_fetched",
            token=token,
            price=float(price),
            quote_reserve=float(quote_reserve),
        )

        return Quote(
            venue_id=self.venue_id,
            pair=f"{token}/{self.config.quote_symbol}",
            price=price,
            liquidity=quote_reserve * 2,
            fee_bps=self.config.fee_bps,
            timestamp=self._clock(),
        )
