"""Tests for venue clients"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from arbsentry.config.models import VenueConfig
from arbsentry.errors import SourceUnavailable
from arbsentry.feeds.venues import UniswapV2PoolVenue


@pytest.fixture
def venue_config():
    """WBNB/BUSD pool with WBNB as token0"""
    return VenueConfig(
        venue_id="pancakeswap-wbnb-busd",
        chain_id=56,
        token="WBNB",
        pool_address="0x58F876857a02D6762E0101bb5C46A8c1ED44Dc16",
        fee_bps=25,
    )


def make_connector(reserves=None, error=None):
    """Chain connector mock whose pool contract returns the given reserves"""
    connector = MagicMock()
    call = connector.w3.eth.contract.return_value.functions.getReserves.return_value.call
    if error is not None:
        call.side_effect = error
    else:
        call.return_value = reserves
    return connector


class TestUniswapV2PoolVenue:
    """Test pool reserve based quotes"""

    @pytest.mark.asyncio
    async def test_quote_from_reserves(self, venue_config):
        """Test price and liquidity derived from reserves"""
        connector = make_connector(reserves=(1000 * 10**18, 300000 * 10**18, 0))
        venue = UniswapV2PoolVenue(connector, venue_config, clock=lambda: 42.0)

        quote = await venue.fetch_quote("WBNB")

        assert quote.venue_id == "pancakeswap-wbnb-busd"
        assert quote.pair == "WBNB/USD"
        assert quote.price == Decimal("300")
        assert quote.liquidity == Decimal("600000")
        assert quote.fee_bps == 25
        assert quote.timestamp == 42.0

    @pytest.mark.asyncio
    async def test_quote_respects_base_index_and_decimals(self, venue_config):
        """Test token1 base with a 6-decimals stablecoin"""
        config = venue_config.model_copy(update={"base_token_index": 1, "quote_decimals": 6})
        connector = make_connector(reserves=(50000 * 10**6, 100 * 10**18, 0))
        venue = UniswapV2PoolVenue(connector, config)

        quote = await venue.fetch_quote("WBNB")

        assert quote.price == Decimal("500")
        assert quote.liquidity == Decimal("100000")

    @pytest.mark.asyncio
    async def test_rpc_error_raises_source_unavailable(self, venue_config):
        """Test RPC failures surface as SourceUnavailable"""
        venue = UniswapV2PoolVenue(make_connector(error=ConnectionError("down")), venue_config)

        with pytest.raises(SourceUnavailable):
            await venue.fetch_quote("WBNB")

    @pytest.mark.asyncio
    async def test_empty_pool_raises_source_unavailable(self, venue_config):
        """Test empty reserves are not quoted"""
        venue = UniswapV2PoolVenue(make_connector(reserves=(0, 0, 0)), venue_config)

        with pytest.raises(SourceUnavailable):
            await venue.fetch_quote("WBNB")

    @pytest.mark.asyncio
    async def test_other_token_raises_source_unavailable(self, venue_config):
        """Test a venue only quotes its configured token"""
        venue = UniswapV2PoolVenue(make_connector(reserves=(1, 1, 0)), venue_config)

        with pytest.raises(SourceUnavailable):
            await venue.fetch_quote("WMATIC")
