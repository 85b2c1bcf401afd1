"""Chain connector with RPC connection management and circuit breaker"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.types import BlockData, TxReceipt

from arbsentry.config.models import ChainConfig
from arbsentry.errors import SourceTimeout, SourceUnavailable
from arbsentry.models import TransactionRecord
from arbsentry.monitoring import metrics

logger = structlog.get_logger()

RETRYABLE_ERRORS = (Web3Exception, ConnectionError, TimeoutError, asyncio.TimeoutError)


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures detected, stop calling
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding one RPC endpoint"""

    failure_threshold: int = 5
    timeout_seconds: float = 60
    failure_count: int = 0
    state: CircuitState = CircuitState.CLOSED
    last_failure_time: float = 0.0

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            logger.info("circuit_breaker_closed", state=self.state.value)

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            logger.warning("circuit_breaker_reopened", failure_count=self.failure_count)
        elif self.failure_count >= self.failure_threshold and self.state == CircuitState.CLOSED:
            self.state = CircuitState.OPEN
            logger.warning(
                "circuit_breaker_opened",
                state=self.state.value,
                failure_count=self.failure_count,
            )

    def can_attempt(self) -> bool:
        """Check if a call may be attempted, moving OPEN to HALF_OPEN after the timeout"""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if time.time() - self.last_failure_time >= self.timeout_seconds:
                self.state = CircuitState.HALF_OPEN
                logger.info("circuit_breaker_half_open", state=self.state.value)
                return True
            return False

        return True


class ChainConnector:
    """
    Web3 connector for one chain with RPC failover and per-endpoint circuit breakers.

    Blocking web3 calls run in worker threads and are bounded by a per-call
    timeout. Failed calls are retried against the next healthy endpoint.
    """

    def __init__(
        self,
        config: ChainConfig,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
    ):
        self.config = config
        self.chain_name = config.name
        self.chain_id = config.chain_id
        self.rpc_urls = config.rpc_urls
        self.current_rpc_index = 0
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds

        self.w3: Optional[Web3] = None
        self._circuit_breakers: Dict[str, CircuitBreaker] = {
            url: CircuitBreaker() for url in self.rpc_urls
        }
        self._logger = logger.bind(component="chain_connector", chain=self.chain_name)
        self._connect()

    def _connect(self) -> None:
        """Establish connection to the current RPC endpoint"""
        rpc_url = self.rpc_urls[self.current_rpc_index]
        try:
            self.w3 = Web3(Web3.HTTPProvider(rpc_url))
            if self.w3.is_connected():
                self._logger.info(
                    "rpc_connected",
                    rpc_url=rpc_url,
                    index=self.current_rpc_index,
                )
            else:
                raise ConnectionError(f"Failed to connect to {rpc_url}")
        except Exception as e:
            self._logger.error(
                "rpc_connection_failed",
                rpc_url=rpc_url,
                error=str(e),
            )
            raise

    def _failover(self) -> bool:
        """Switch to the next endpoint whose circuit allows a call"""
        original_index = self.current_rpc_index

        for _ in range(len(self.rpc_urls)):
            self.current_rpc_index = (self.current_rpc_index + 1) % len(self.rpc_urls)
            rpc_url = self.rpc_urls[self.current_rpc_index]

            circuit_breaker = self._circuit_breakers[rpc_url]
            if not circuit_breaker.can_attempt():
                self._logger.debug("rpc_circuit_breaker_open", rpc_url=rpc_url)
                continue

            try:
                self._connect()
                self._logger.info(
                    "rpc_failover_success",
                    from_index=original_index,
                    to_index=self.current_rpc_index,
                    rpc_url=rpc_url,
                )
                return True
            except Exception as e:
                self._logger.warning(
                    "rpc_failover_attempt_failed",
                    rpc_url=rpc_url,
                    error=str(e),
                )
                circuit_breaker.record_failure()

        self._logger.error(
            "rpc_failover_exhausted",
            attempted_endpoints=len(self.rpc_urls),
        )
        return False

    async def _retry_with_failover(self, operation: str, func: Callable[[], Any]) -> Any:
        """
        Run a blocking web3 call with timeout, retry and automatic failover.

        Raises:
            SourceTimeout: If the last attempt timed out
            SourceUnavailable: If every attempt failed otherwise
        """
        source = f"{self.chain_name}:{operation}"
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries):
            current_rpc_url = self.rpc_urls[self.current_rpc_index]
            circuit_breaker = self._circuit_breakers[current_rpc_url]

            if not circuit_breaker.can_attempt():
                self._logger.debug(
                    "rpc_circuit_breaker_blocking",
                    operation=operation,
                    rpc_url=current_rpc_url,
                )
                if not self._failover():
                    last_error = last_error or ConnectionError("All RPC endpoints unavailable")
                    break
                continue

            start_time = time.time()
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(func),
                    timeout=self.timeout_seconds,
                )

                metrics.chain_rpc_latency.labels(
                    chain=self.chain_name,
                    endpoint=current_rpc_url,
                    method=operation,
                ).observe(time.time() - start_time)

                circuit_breaker.record_success()
                return result

            except RETRYABLE_ERRORS as e:
                last_error = e
                circuit_breaker.record_failure()

                error_type = type(e).__name__
                metrics.chain_rpc_errors.labels(
                    chain=self.chain_name,
                    error_type=error_type,
                ).inc()

                self._logger.warning(
                    "rpc_operation_failed",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=str(e),
                    error_type=error_type,
                    rpc_url=current_rpc_url,
                )

                if attempt < self.max_retries - 1:
                    if len(self.rpc_urls) > 1 and not self._failover():
                        break
                    await asyncio.sleep(self.backoff_base_seconds * 2**attempt)

        self._logger.error(
            "rpc_operation_failed_all_retries",
            operation=operation,
            max_retries=self.max_retries,
            error=str(last_error),
        )
        if isinstance(last_error, (TimeoutError, asyncio.TimeoutError)):
            raise SourceTimeout(source, self.timeout_seconds) from last_error
        raise SourceUnavailable(source, str(last_error)) from last_error

    async def get_latest_block(self) -> int:
        """Get latest block number from chain"""
        return await self._retry_with_failover(
            "get_latest_block",
            lambda: self.w3.eth.block_number,
        )

    async def get_block(self, block_number: int, full_transactions: bool = True) -> BlockData:
        """Get block data by block number"""
        return await self._retry_with_failover(
            "get_block",
            lambda: self.w3.eth.get_block(block_number, full_transactions=full_transactions),
        )

    async def get_transaction_receipt(self, tx_hash: str) -> TxReceipt:
        """Get transaction receipt by hash"""
        return await self._retry_with_failover(
            "get_transaction_receipt",
            lambda: self.w3.eth.get_transaction_receipt(tx_hash),
        )

    async def get_gas_price(self) -> int:
        """Get current gas price in wei"""
        return int(
            await self._retry_with_failover(
                "get_gas_price",
                lambda: self.w3.eth.gas_price,
            )
        )

    async def fetch_recent_transactions(
        self,
        block_range: int,
        with_receipts: bool = False,
    ) -> List[TransactionRecord]:
        """
        Fetch the transactions of the most recent blocks as normalized records.

        Malformed transactions are skipped and counted. A block that cannot be
        fetched is logged and skipped.

        Args:
            block_range: Number of most recent blocks to read
            with_receipts: Also fetch receipts to fill in actual gas used

        Returns:
            TransactionRecords ordered by block then position
        """
        latest_block = await self.get_latest_block()
        first_block = max(0, latest_block - block_range + 1)

        records: List[TransactionRecord] = []
        for block_number in range(first_block, latest_block + 1):
            try:
                block = await self.get_block(block_number, full_transactions=True)
            except (SourceUnavailable, SourceTimeout) as e:
                self._logger.warning(
                    "block_fetch_skipped",
                    block_number=block_number,
                    error=str(e),
                )
                continue

            timestamp = float(block.get("timestamp") or 0)
            for tx in block.get("transactions", []):
                if not hasattr(tx, "get"):
                    continue

                raw = dict(tx)
                raw.setdefault("blockNumber", block_number)

                if with_receipts and raw.get("hash") is not None:
                    try:
                        receipt = await self.get_transaction_receipt(raw["hash"])
                        raw["gasUsed"] = receipt.get("gasUsed")
                    except (SourceUnavailable, SourceTimeout) as e:
                        self._logger.debug("receipt_fetch_skipped", error=str(e))

                try:
                    records.append(TransactionRecord.from_raw(raw, timestamp=timestamp))
                except ValueError as e:
                    metrics.malformed_transactions.inc()
                    self._logger.warning(
                        "malformed_transaction_skipped",
                        block_number=block_number,
                        error=str(e),
                    )

        records.sort(key=lambda r: (r.block_number, r.position))
        return records
