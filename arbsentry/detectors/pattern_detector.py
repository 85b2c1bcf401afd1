"""Transaction pattern detector for MEV attacks (sandwich, frontrun, JIT liquidity, bot arbitrage)"""

import time
from collections import defaultdict, deque
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Union

import structlog

from arbsentry.config.models import DetectorConfig
from arbsentry.detectors.actor_registry import KnownActorRegistry
from arbsentry.models import AttackPattern, PatternType, TransactionRecord
from arbsentry.monitoring import metrics

logger = structlog.get_logger()

RawRecord = Union[TransactionRecord, Dict[str, Any]]


class TransactionPatternDetector:
    """
    Detects MEV attack patterns in recent blocks.

    Transactions are grouped by block and ordered by position; the detectors
    look at consecutive pairs and triples inside one block. Liquidity
    operations are recognized by gas usage alone, a coarse proxy since call
    data is not decoded.

    Matches are kept in a rolling buffer bounded by size and age, oldest
    evicted first, and deduplicated by (type, evidence hashes).
    """

    def __init__(
        self,
        config: DetectorConfig,
        registry: Optional[KnownActorRegistry] = None,
        clock: Optional[Callable[[], float]] = None,
        chain_name: str = "default",
    ):
        """
        Initialize pattern detector.

        Args:
            config: Detector thresholds, confidences and buffer bounds
            registry: Known actor registry (built from config when omitted)
            clock: Time source returning epoch seconds (default time.time)
            chain_name: Label used in logs
        """
        self.config = config
        self.registry = registry or KnownActorRegistry(config.known_actors)
        self.chain_name = chain_name
        self._clock = clock or time.time

        self._buffer: Deque[AttackPattern] = deque()
        self._keys: Set[tuple] = set()

        self._logger = logger.bind(component="pattern_detector", chain=chain_name)

    def normalize(self, records: Iterable[RawRecord]) -> List[TransactionRecord]:
        """Convert raw transactions to records, skipping malformed ones"""
        normalized = []
        for raw in records:
            try:
                if isinstance(raw, TransactionRecord):
                    if not raw.sender or raw.gas_price < 0 or raw.gas_limit < 0:
                        raise ValueError("malformed transaction record")
                    normalized.append(raw)
                elif isinstance(raw, dict):
                    normalized.append(TransactionRecord.from_raw(raw))
                else:
                    raise ValueError(f"unsupported record type {type(raw).__name__}")
            except (ValueError, TypeError) as e:
                metrics.malformed_transactions.inc()
                self._logger.warning("malformed_transaction_skipped", error=str(e))
        return normalized

    def _group_by_block(self, records: List[TransactionRecord]) -> Dict[int, List[TransactionRecord]]:
        blocks: Dict[int, List[TransactionRecord]] = defaultdict(list)
        for record in records:
            blocks[record.block_number].append(record)

        recent = sorted(blocks)[-self.config.window_blocks:]
        return {
            number: sorted(blocks[number], key=lambda r: (r.position, r.hash))
            for number in recent
        }

    def _profit(self, value: Decimal, rate: Decimal) -> Decimal:
        return value * rate

    def detect_sandwiches(self, txs: List[TransactionRecord], now: float) -> List[AttackPattern]:
        """A and C from one sender bracket B with higher gas prices"""
        patterns = []
        for a, b, c in zip(txs, txs[1:], txs[2:]):
            if a.sender != c.sender or a.sender == b.sender:
                continue
            if not (a.gas_price > b.gas_price and c.gas_price > b.gas_price):
                continue

            confidence = (
                self.config.sandwich_base_confidence
                + self.config.sandwich_same_sender_bonus
                + self.config.sandwich_gas_bonus
            )
            if self.registry.is_known(a.sender):
                confidence += self.config.known_actor_bonus

            patterns.append(AttackPattern(
                type=PatternType.SANDWICH,
                confidence=min(100, confidence),
                attacker=a.sender,
                victim=b.sender,
                profit_estimate=self._profit(b.value, self.config.sandwich_profit_rate),
                gas_used=a.gas_usage + c.gas_usage,
                block_number=a.block_number,
                tx_hashes=[a.hash, b.hash, c.hash],
                detected_at=now,
            ))
        return patterns

    def detect_frontruns(self, txs: List[TransactionRecord], now: float) -> List[AttackPattern]:
        """A known actor outbids the next transaction's gas price by a wide margin"""
        patterns = []
        for a, b in zip(txs, txs[1:]):
            if not a.gas_price > self.config.frontrun_gas_ratio * b.gas_price:
                continue
            if not self.registry.is_known(a.sender):
                continue

            confidence = self.config.frontrun_base_confidence
            if a.gas_price > self.config.frontrun_strong_gas_ratio * b.gas_price:
                confidence += self.config.frontrun_gas_bonus
            confidence += self.config.frontrun_known_actor_bonus

            patterns.append(AttackPattern(
                type=PatternType.FRONTRUN,
                confidence=min(100, confidence),
                attacker=a.sender,
                victim=b.sender,
                profit_estimate=self._profit(b.value, self.config.frontrun_profit_rate),
                gas_used=a.gas_usage,
                block_number=a.block_number,
                tx_hashes=[a.hash, b.hash],
                detected_at=now,
            ))
        return patterns

    def _is_liquidity_operation(self, tx: TransactionRecord) -> bool:
        return tx.gas_usage > self.config.jit_gas_threshold

    def detect_jit_liquidity(self, txs: List[TransactionRecord], now: float) -> List[AttackPattern]:
        """Add liquidity, unrelated trade, remove liquidity by the same sender"""
        patterns = []
        for add, trade, remove in zip(txs, txs[1:], txs[2:]):
            if add.sender != remove.sender or add.sender == trade.sender:
                continue
            if not (self._is_liquidity_operation(add) and self._is_liquidity_operation(remove)):
                continue

            patterns.append(AttackPattern(
                type=PatternType.JIT_LIQUIDITY,
                confidence=min(100, self.config.jit_confidence),
                attacker=add.sender,
                victim=trade.sender,
                profit_estimate=self._profit(trade.value, self.config.jit_profit_rate),
                gas_used=add.gas_usage + remove.gas_usage,
                block_number=add.block_number,
                tx_hashes=[add.hash, trade.hash, remove.hash],
                detected_at=now,
            ))
        return patterns

    def detect_bot_arbitrage(self, txs: List[TransactionRecord], now: float) -> List[AttackPattern]:
        """Gas-heavy transactions sent by known actors"""
        patterns = []
        for tx in txs:
            if tx.gas_usage <= self.config.arbitrage_gas_threshold:
                continue
            if not self.registry.is_known(tx.sender):
                continue

            patterns.append(AttackPattern(
                type=PatternType.ARBITRAGE,
                confidence=min(100, self.config.arbitrage_confidence),
                attacker=tx.sender,
                victim="",
                profit_estimate=self._profit(tx.value, self.config.arbitrage_profit_rate),
                gas_used=tx.gas_usage,
                block_number=tx.block_number,
                tx_hashes=[tx.hash],
                detected_at=now,
            ))
        return patterns

    def scan(self, records: Iterable[RawRecord], now: Optional[float] = None) -> List[AttackPattern]:
        """
        Scan a window of transactions for attack patterns.

        Args:
            records: Transaction records or raw web3-style dicts
            now: Detection time (default: clock)

        Returns:
            Every pattern matched in the window, in block order
        """
        now = self._clock() if now is None else now
        blocks = self._group_by_block(self.normalize(records))

        matches: List[AttackPattern] = []
        for block_number, txs in blocks.items():
            matches.extend(self.detect_sandwiches(txs, now))
            matches.extend(self.detect_frontruns(txs, now))
            matches.extend(self.detect_jit_liquidity(txs, now))
            matches.extend(self.detect_bot_arbitrage(txs, now))

        new_patterns = 0
        for pattern in matches:
            if self._remember(pattern):
                new_patterns += 1

        self._evict(now)

        if matches:
            self._logger.info(
                "pattern_scan_completed",
                blocks=len(blocks),
                matches=len(matches),
                new_patterns=new_patterns,
            )
        return matches

    def _remember(self, pattern: AttackPattern) -> bool:
        if pattern.key in self._keys:
            return False

        self._buffer.append(pattern)
        self._keys.add(pattern.key)
        metrics.attack_patterns_detected.labels(type=pattern.type.value).inc()

        self._logger.info(
            "attack_pattern_detected",
            type=pattern.type.value,
            confidence=pattern.confidence,
            attacker=pattern.attacker,
            victim=pattern.victim,
            block_number=pattern.block_number,
        )

        if self.config.auto_flag_attackers and pattern.type in (
            PatternType.SANDWICH,
            PatternType.FRONTRUN,
        ):
            self.registry.record_attack(pattern.attacker, pattern.profit_estimate, pattern.detected_at)

        return True

    def _evict(self, now: float) -> None:
        cutoff = now - self.config.buffer_max_age_seconds
        while self._buffer and (
            len(self._buffer) > self.config.buffer_max_size
            or self._buffer[0].detected_at < cutoff
        ):
            evicted = self._buffer.popleft()
            self._keys.discard(evicted.key)

    def activity_score(self, records: Iterable[RawRecord]) -> int:
        """
        Current MEV activity (0-100) for a window of transactions.

        Weighted sum of the known-actor rate, the high gas price rate and the
        high gas usage rate.
        """
        txs = self.normalize(records)
        if not txs:
            return 0

        total = Decimal(len(txs))
        known_rate = sum(1 for tx in txs if self.registry.is_known(tx.sender)) / total
        high_gas_rate = sum(1 for tx in txs if tx.gas_price > self.config.high_gas_price_wei) / total
        high_usage_rate = sum(1 for tx in txs if tx.gas_usage > self.config.high_gas_usage) / total

        score = (
            self.config.known_actor_weight * known_rate
            + self.config.high_gas_price_weight * high_gas_rate
            + self.config.high_gas_usage_weight * high_usage_rate
        )
        score = score.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(min(Decimal("100"), score))

    def get_attack_patterns(self, limit: int = 50) -> List[AttackPattern]:
        """Newest patterns, in chronological order"""
        if limit <= 0:
            return []
        return list(self._buffer)[-limit:]

    def recent_patterns(self, max_age: Optional[float] = None, now: Optional[float] = None) -> List[AttackPattern]:
        """Patterns detected within max_age seconds (default: recent pattern window)"""
        now = self._clock() if now is None else now
        max_age = self.config.recent_pattern_seconds if max_age is None else max_age
        cutoff = now - max_age
        return [p for p in self._buffer if p.detected_at >= cutoff]

    def clear_old_data(self, now: Optional[float] = None) -> None:
        """Evict expired patterns and stale observed actors"""
        now = self._clock() if now is None else now
        self._evict(now)
        self.registry.prune(now - self.config.buffer_max_age_seconds)
