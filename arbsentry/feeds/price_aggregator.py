"""Price aggregator fusing venue quotes into a per-token market view"""

import asyncio
import time
from collections import deque
from decimal import Decimal
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import structlog

from arbsentry.config.models import PollingConfig
from arbsentry.errors import SourceTimeout
from arbsentry.feeds.venues import VenueClient
from arbsentry.models import AggregatedQuote, Quote
from arbsentry.monitoring import metrics

logger = structlog.get_logger()

INSUFFICIENT_DATA = "insufficient_data"

QuoteSubscriber = Callable[[AggregatedQuote], Awaitable[None]]


def build_aggregate(
    token: str,
    quotes: List[Quote],
    timestamp: float,
    failed_venues: Optional[List[str]] = None,
) -> AggregatedQuote:
    """
    Fuse venue quotes into a single aggregated view.

    Quotes are ordered by liquidity (descending, venue id breaking ties). The
    average price is liquidity-weighted when total liquidity is positive and
    the plain mean otherwise.

    Args:
        token: Token symbol
        quotes: Valid quotes collected this cycle
        timestamp: Aggregation time
        failed_venues: Venue ids that produced no usable quote

    Returns:
        AggregatedQuote (not arbitrageable when fewer than two quotes)
    """
    ordered = sorted(quotes, key=lambda q: (-q.liquidity, q.venue_id))
    failed = list(failed_venues or [])

    if not ordered:
        return AggregatedQuote(
            token=token,
            pair=f"{token}/USD",
            quotes=[],
            average_price=Decimal("0"),
            spread_pct=Decimal("0"),
            best_bid=Decimal("0"),
            best_ask=Decimal("0"),
            total_liquidity=Decimal("0"),
            timestamp=timestamp,
            failed_venues=failed,
            reason=INSUFFICIENT_DATA,
        )

    prices = [q.price for q in ordered]
    total_liquidity = sum((q.liquidity for q in ordered), Decimal("0"))

    if total_liquidity > 0:
        average_price = sum((q.price * q.liquidity for q in ordered), Decimal("0")) / total_liquidity
    else:
        average_price = sum(prices, Decimal("0")) / len(prices)

    low = min(prices)
    high = max(prices)
    spread_pct = (high - low) / low * 100

    return AggregatedQuote(
        token=token,
        pair=ordered[0].pair,
        quotes=ordered,
        average_price=average_price,
        spread_pct=spread_pct,
        best_bid=high,
        best_ask=low,
        total_liquidity=total_liquidity,
        timestamp=timestamp,
        failed_venues=failed,
        reason=None if len(ordered) >= 2 else INSUFFICIENT_DATA,
    )


def _is_valid_quote(quote: Any) -> bool:
    return isinstance(quote, Quote) and quote.price > 0 and quote.liquidity >= 0


class PriceAggregator:
    """
    Polls a set of venues concurrently and keeps the last-known aggregate per token.

    Each aggregation cycle starts one task per venue, waits at most the quote
    timeout and fuses whatever arrived. Failed or late venues are dropped from
    the cycle, never retried inline.
    """

    def __init__(
        self,
        venues: List[VenueClient],
        config: Optional[PollingConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        name: str = "default",
    ):
        """
        Initialize price aggregator.

        Args:
            venues: Venue clients to query
            config: Poll interval, per-venue timeout and shutdown deadline
            clock: Time source returning epoch seconds (default time.time)
            name: Label used in logs (usually the chain name)
        """
        self.venues = list(venues)
        self.config = config or PollingConfig()
        self.name = name
        self._clock = clock or time.time

        self._latest: Dict[str, AggregatedQuote] = {}
        self._history: Dict[str, Deque[AggregatedQuote]] = {}
        self._subscribers: List[QuoteSubscriber] = []
        self._in_flight: Dict[str, asyncio.Task] = {}

        self._tokens: List[str] = []
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None

        self._logger = logger.bind(component="price_aggregator", aggregator=name)

    async def _fetch(self, venue: VenueClient, token: str) -> Quote:
        started = time.monotonic()
        try:
            return await venue.fetch_quote(token)
        finally:
            metrics.venue_fetch_latency.labels(venue=venue.venue_id).observe(
                time.monotonic() - started
            )

    def _record_failure(self, venue_id: str, token: str, error: BaseException) -> None:
        error_type = type(error).__name__
        metrics.venue_fetch_errors.labels(venue=venue_id, error_type=error_type).inc()
        self._logger.warning(
            "venue_quote_failed",
            venue=venue_id,
            token=token,
            error=str(error),
            error_type=error_type,
        )

    async def aggregate(self, token: str) -> AggregatedQuote:
        """
        Collect quotes for a token from every venue and fuse them.

        Never raises for venue failures; a cycle with fewer than two usable
        quotes yields an aggregate with reason "insufficient_data".

        Args:
            token: Token symbol

        Returns:
            AggregatedQuote for this cycle
        """
        tasks: Dict[str, asyncio.Task] = {}
        failed: List[str] = []

        for venue in self.venues:
            previous = self._in_flight.get(venue.venue_id)
            if previous is not None and not previous.done():
                self._logger.debug("venue_call_in_flight", venue=venue.venue_id, token=token)
                failed.append(venue.venue_id)
                continue

            task = asyncio.create_task(self._fetch(venue, token))
            self._in_flight[venue.venue_id] = task
            tasks[venue.venue_id] = task

        done = set()
        if tasks:
            done, pending = await asyncio.wait(
                tasks.values(),
                timeout=self.config.quote_timeout_seconds,
            )
            for task in pending:
                task.cancel()

        quotes: List[Quote] = []
        for venue_id, task in tasks.items():
            if task not in done:
                failed.append(venue_id)
                self._record_failure(
                    venue_id, token, SourceTimeout(venue_id, self.config.quote_timeout_seconds)
                )
                continue

            if self._in_flight.get(venue_id) is task:
                del self._in_flight[venue_id]

            if task.cancelled():
                failed.append(venue_id)
                continue

            error = task.exception()
            if error is not None:
                failed.append(venue_id)
                self._record_failure(venue_id, token, error)
                continue

            quote = task.result()
            if not _is_valid_quote(quote):
                failed.append(venue_id)
                metrics.venue_fetch_errors.labels(venue=venue_id, error_type="InvalidQuote").inc()
                self._logger.warning("venue_quote_invalid", venue=venue_id, token=token)
                continue

            quotes.append(quote)

        aggregate = build_aggregate(token, quotes, self._clock(), failed)
        await self._publish(aggregate)
        return aggregate

    async def _publish(self, aggregate: AggregatedQuote) -> None:
        token = aggregate.token
        self._latest[token] = aggregate

        if aggregate.quotes:
            history = self._history.setdefault(
                token, deque(maxlen=self.config.price_history_size)
            )
            history.append(aggregate)

        metrics.aggregated_quotes.labels(token=token).set(len(aggregate.quotes))

        self._logger.debug(
            "quotes_aggregated",
            token=token,
            quote_count=len(aggregate.quotes),
            failed_venues=aggregate.failed_venues,
            spread_pct=float(aggregate.spread_pct),
        )

        for callback in list(self._subscribers):
            try:
                await callback(aggregate)
            except Exception as e:
                self._logger.error(
                    "quote_subscriber_error",
                    token=token,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def get_latest(self, token: str) -> Optional[AggregatedQuote]:
        """Last aggregate computed for a token, if any"""
        return self._latest.get(token)

    @property
    def tokens(self) -> List[str]:
        """Tokens with a last-known aggregate"""
        return list(self._latest.keys())

    def get_price_history(self, token: str) -> List[AggregatedQuote]:
        """Aggregates with at least one quote, oldest first"""
        return list(self._history.get(token, ()))

    def get_price_comparison(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Compare the cheapest and dearest venue for a token.

        Returns:
            Dict with best/worst venue and spread, or None with fewer than two quotes
        """
        aggregate = self._latest.get(token)
        if aggregate is None or len(aggregate.quotes) < 2:
            return None

        ordered = sorted(aggregate.quotes, key=lambda q: (q.price, q.venue_id))
        best = ordered[0]
        worst = ordered[-1]
        spread_pct = (worst.price - best.price) / best.price * 100

        return {
            "token": token,
            "best_price": {"venue": best.venue_id, "price": best.price},
            "worst_price": {"venue": worst.venue_id, "price": worst.price},
            "spread_pct": spread_pct,
            "arbitrage_opportunity": spread_pct > self.config.price_comparison_threshold_pct,
        }

    def subscribe(self, callback: QuoteSubscriber) -> None:
        """Register an async callback awaited with every new aggregate"""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: QuoteSubscriber) -> None:
        """Remove a previously registered callback"""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def start(self, tokens: List[str]) -> None:
        """Start polling the given tokens"""
        if self._running:
            self._logger.warning("price_aggregator_already_running")
            return

        self._tokens = list(tokens)
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())

        self._logger.info("price_aggregator_started", tokens=self._tokens)

    async def stop(self) -> None:
        """Stop polling, waiting at most the shutdown deadline"""
        if not self._running:
            self._logger.warning("price_aggregator_not_running")
            return

        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await asyncio.wait_for(
                    self._poll_task,
                    timeout=self.config.shutdown_timeout_seconds,
                )
            except asyncio.CancelledError:
                self._logger.info("price_aggregator_task_cancelled")
            except asyncio.TimeoutError:
                self._logger.warning("price_aggregator_stop_timeout")

        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()

        self._logger.info("price_aggregator_stopped")

    async def _poll_loop(self) -> None:
        """Aggregate every token once per poll interval"""
        self._logger.info("price_aggregator_loop_started")

        try:
            while self._running:
                for token in self._tokens:
                    if not self._running:
                        break
                    try:
                        await self.aggregate(token)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        self._logger.error(
                            "price_aggregation_error",
                            token=token,
                            error=str(e),
                            error_type=type(e).__name__,
                        )

                await asyncio.sleep(self.config.quote_poll_interval_seconds)

        except asyncio.CancelledError:
            self._logger.info("price_aggregator_loop_cancelled")
        finally:
            self._logger.info("price_aggregator_loop_exited")
