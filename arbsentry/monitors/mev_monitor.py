"""MEV monitor polling recent blocks of one chain for attack patterns"""

import asyncio
from typing import List, Optional

import structlog

from arbsentry.chains.connector import ChainConnector
from arbsentry.detectors.pattern_detector import TransactionPatternDetector
from arbsentry.models import AttackPattern
from arbsentry.monitoring import metrics

logger = structlog.get_logger()


class MevMonitor:
    """
    Feeds the recent-block window of a chain to the pattern detector.

    Responsibilities:
    - Poll the most recent blocks on a fixed interval
    - Scan them for sandwich, frontrun, JIT liquidity and bot arbitrage patterns
    - Track the chain's MEV activity score
    - Evict stale patterns and observed actors
    """

    def __init__(
        self,
        chain_connector: ChainConnector,
        detector: TransactionPatternDetector,
        poll_interval_seconds: float = 10.0,
        shutdown_timeout_seconds: float = 5.0,
        with_receipts: bool = False,
    ):
        """
        Initialize MEV monitor.

        Args:
            chain_connector: ChainConnector for the monitored chain
            detector: Pattern detector owning the rolling pattern buffer
            poll_interval_seconds: Delay between polls
            shutdown_timeout_seconds: Maximum wait for the loop on stop
            with_receipts: Fetch receipts for actual gas used (one RPC per transaction)
        """
        self.chain_connector = chain_connector
        self.detector = detector
        self.poll_interval_seconds = poll_interval_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self.with_receipts = with_receipts

        self.chain_name = chain_connector.chain_name
        self.chain_id = chain_connector.chain_id

        self.activity_score = 0
        self.last_scanned_block: Optional[int] = None

        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None

        self._logger = logger.bind(
            component="mev_monitor",
            chain=self.chain_name,
            chain_id=self.chain_id,
        )

    @property
    def window_blocks(self) -> int:
        return self.detector.config.window_blocks

    async def poll_once(self) -> List[AttackPattern]:
        """
        Scan the current window once.

        Returns:
            Patterns matched in the window
        """
        records = await self.chain_connector.fetch_recent_transactions(
            self.window_blocks,
            with_receipts=self.with_receipts,
        )

        patterns = self.detector.scan(records)
        self.activity_score = self.detector.activity_score(records)
        metrics.mev_activity_score.labels(chain=self.chain_name).set(self.activity_score)

        self.detector.clear_old_data()

        if records:
            self.last_scanned_block = records[-1].block_number

        self._logger.debug(
            "mev_window_scanned",
            transactions=len(records),
            patterns=len(patterns),
            activity_score=self.activity_score,
            last_block=self.last_scanned_block,
        )
        return patterns

    async def start(self) -> None:
        """Start monitoring the chain"""
        if self._running:
            self._logger.warning("mev_monitor_already_running")
            return

        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())

        self._logger.info("mev_monitor_started")

    async def stop(self) -> None:
        """Stop monitoring, waiting at most the shutdown deadline"""
        if not self._running:
            self._logger.warning("mev_monitor_not_running")
            return

        self._running = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await asyncio.wait_for(self._monitor_task, timeout=self.shutdown_timeout_seconds)
            except asyncio.CancelledError:
                self._logger.info("mev_monitor_task_cancelled")
            except asyncio.TimeoutError:
                self._logger.warning("mev_monitor_stop_timeout")

        self._logger.info("mev_monitor_stopped")

    async def _monitor_loop(self) -> None:
        self._logger.info("mev_monitor_loop_started")

        try:
            while self._running:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._logger.error(
                        "mev_monitor_loop_error",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                await asyncio.sleep(self.poll_interval_seconds)

        except asyncio.CancelledError:
            self._logger.info("mev_monitor_loop_cancelled")
        finally:
            self._logger.info("mev_monitor_loop_exited")
