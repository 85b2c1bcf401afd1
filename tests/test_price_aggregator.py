"""Tests for the price aggregator"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from arbsentry.config.models import PollingConfig
from arbsentry.errors import SourceUnavailable
from arbsentry.feeds.price_aggregator import PriceAggregator, build_aggregate
from arbsentry.feeds.venues import VenueClient
from arbsentry.models import Quote


class FakeVenue(VenueClient):
    """Venue returning a fixed quote, optionally after a delay or with an error"""

    def __init__(self, venue_id, price="100", liquidity="1000000", error=None, delay=0.0):
        self.venue_id = venue_id
        self.price = Decimal(price)
        self.liquidity = Decimal(liquidity)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch_quote(self, token):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Quote(
            venue_id=self.venue_id,
            pair=f"{token}/USD",
            price=self.price,
            liquidity=self.liquidity,
            fee_bps=30,
            timestamp=1.0,
        )


def quote(venue_id, price, liquidity):
    return Quote(venue_id, "WETH/USD", Decimal(price), Decimal(liquidity), 30, 0.0)


@pytest.fixture
def polling_config():
    """Short timeouts for fast tests"""
    return PollingConfig(
        quote_timeout_seconds=0.1,
        quote_poll_interval_seconds=0.01,
        shutdown_timeout_seconds=0.5,
    )


class TestBuildAggregate:
    """Test quote fusion"""

    def test_liquidity_weighted_average_and_spread(self):
        """Test weighted price, spread and best bid/ask"""
        aggregate = build_aggregate(
            "WETH",
            [quote("a", "100", "1000"), quote("b", "102", "3000")],
            timestamp=5.0,
        )

        assert aggregate.average_price == Decimal("101.5")
        assert aggregate.spread_pct == Decimal("2")
        assert aggregate.best_ask == Decimal("100")
        assert aggregate.best_bid == Decimal("102")
        assert aggregate.total_liquidity == Decimal("4000")
        assert aggregate.is_arbitrageable is True
        assert aggregate.reason is None

    def test_quotes_ordered_by_liquidity_then_venue(self):
        """Test deterministic quote ordering"""
        aggregate = build_aggregate(
            "WETH",
            [quote("c", "100", "10"), quote("b", "101", "50"), quote("a", "102", "10")],
            timestamp=0.0,
        )

        assert [q.venue_id for q in aggregate.quotes] == ["b", "a", "c"]

    def test_zero_liquidity_uses_plain_mean(self):
        """Test arithmetic mean when no quote carries liquidity"""
        aggregate = build_aggregate(
            "WETH",
            [quote("a", "100", "0"), quote("b", "104", "0")],
            timestamp=0.0,
        )

        assert aggregate.average_price == Decimal("102")

    def test_single_quote_is_insufficient(self):
        """Test fewer than two quotes is flagged, not raised"""
        aggregate = build_aggregate("WETH", [quote("a", "100", "10")], timestamp=0.0)

        assert aggregate.is_arbitrageable is False
        assert aggregate.reason == "insufficient_data"

    def test_no_quotes_is_insufficient(self):
        """Test an empty cycle yields an empty aggregate"""
        aggregate = build_aggregate("WETH", [], timestamp=0.0, failed_venues=["a"])

        assert aggregate.quotes == []
        assert aggregate.reason == "insufficient_data"
        assert aggregate.failed_venues == ["a"]


class TestPriceAggregator:
    """Test concurrent venue polling"""

    @pytest.mark.asyncio
    async def test_aggregate_collects_all_venues(self, polling_config):
        """Test every venue is queried and fused"""
        venues = [FakeVenue("a", "100"), FakeVenue("b", "102")]
        aggregator = PriceAggregator(venues, polling_config, clock=lambda: 10.0)

        aggregate = await aggregator.aggregate("WETH")

        assert len(aggregate.quotes) == 2
        assert aggregate.spread_pct == Decimal("2")
        assert aggregate.timestamp == 10.0
        assert aggregator.get_latest("WETH") is aggregate

    @pytest.mark.asyncio
    async def test_failing_venue_is_excluded(self, polling_config):
        """Test a venue failure does not abort the cycle"""
        venues = [
            FakeVenue("a", "100"),
            FakeVenue("b", "101"),
            FakeVenue("c", error=SourceUnavailable("c", "down")),
        ]
        aggregator = PriceAggregator(venues, polling_config)

        aggregate = await aggregator.aggregate("WETH")

        assert [q.venue_id for q in aggregate.quotes] == ["a", "b"]
        assert aggregate.failed_venues == ["c"]
        assert aggregate.is_arbitrageable is True

    @pytest.mark.asyncio
    async def test_slow_venue_is_dropped_after_timeout(self, polling_config):
        """Test venues exceeding the quote timeout are excluded"""
        venues = [FakeVenue("a", "100"), FakeVenue("slow", "150", delay=1.0)]
        aggregator = PriceAggregator(venues, polling_config)

        aggregate = await aggregator.aggregate("WETH")

        assert [q.venue_id for q in aggregate.quotes] == ["a"]
        assert "slow" in aggregate.failed_venues
        assert aggregate.reason == "insufficient_data"

    @pytest.mark.asyncio
    async def test_invalid_quote_is_excluded(self, polling_config):
        """Test non-positive prices are rejected"""
        venues = [FakeVenue("a", "100"), FakeVenue("b", "0"), FakeVenue("c", "101")]
        aggregator = PriceAggregator(venues, polling_config)

        aggregate = await aggregator.aggregate("WETH")

        assert {q.venue_id for q in aggregate.quotes} == {"a", "c"}
        assert aggregate.failed_venues == ["b"]

    @pytest.mark.asyncio
    async def test_latest_is_replaced_wholesale(self, polling_config):
        """Test a new cycle replaces the previous aggregate"""
        venue_b = FakeVenue("b", "102")
        aggregator = PriceAggregator([FakeVenue("a", "100"), venue_b], polling_config)

        await aggregator.aggregate("WETH")
        venue_b.error = SourceUnavailable("b")
        second = await aggregator.aggregate("WETH")

        assert aggregator.get_latest("WETH") is second
        assert len(second.quotes) == 1
        assert len(aggregator.get_price_history("WETH")) == 2

    @pytest.mark.asyncio
    async def test_subscribers_are_notified_and_isolated(self, polling_config):
        """Test subscriber callbacks are awaited and failures isolated"""
        aggregator = PriceAggregator([FakeVenue("a"), FakeVenue("b")], polling_config)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        receiver = AsyncMock()
        aggregator.subscribe(failing)
        aggregator.subscribe(receiver)

        aggregate = await aggregator.aggregate("WETH")

        failing.assert_awaited_once_with(aggregate)
        receiver.assert_awaited_once_with(aggregate)

        aggregator.unsubscribe(receiver)
        await aggregator.aggregate("WETH")
        assert receiver.await_count == 1

    @pytest.mark.asyncio
    async def test_price_comparison(self, polling_config):
        """Test cheapest/dearest venue comparison"""
        aggregator = PriceAggregator(
            [FakeVenue("a", "100"), FakeVenue("b", "101"), FakeVenue("c", "100.2")],
            polling_config,
        )
        await aggregator.aggregate("WETH")

        comparison = aggregator.get_price_comparison("WETH")

        assert comparison["best_price"]["venue"] == "a"
        assert comparison["worst_price"]["venue"] == "b"
        assert comparison["spread_pct"] == Decimal("1")
        assert comparison["arbitrage_opportunity"] is True
        assert aggregator.get_price_comparison("UNKNOWN") is None

    @pytest.mark.asyncio
    async def test_start_and_stop_poll_loop(self, polling_config):
        """Test the poll loop aggregates periodically and stops cleanly"""
        venue = FakeVenue("a")
        aggregator = PriceAggregator([venue, FakeVenue("b")], polling_config)

        await aggregator.start(["WETH"])
        await asyncio.sleep(0.05)
        await aggregator.stop()

        assert venue.calls >= 1
        assert aggregator.get_latest("WETH") is not None
        assert aggregator._running is False
