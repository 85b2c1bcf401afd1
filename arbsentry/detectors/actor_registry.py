"""Registry of known MEV actors (bots, searchers) and their observed activity"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Set

import structlog

logger = structlog.get_logger()


@dataclass
class ActorStats:
    """Observed attack activity of one actor"""

    address: str
    attack_count: int
    total_profit: Decimal
    last_seen: float


class KnownActorRegistry:
    """
    Case-insensitive set of known MEV actor addresses.

    Addresses added explicitly stay until removed. Addresses recorded through
    observed attacks also carry statistics and are dropped by prune() once
    they have not been seen for a while.
    """

    def __init__(self, addresses: Iterable[str] = ()):
        self._static: Set[str] = {a.lower() for a in addresses}
        self._observed: Dict[str, ActorStats] = {}
        self._logger = logger.bind(component="actor_registry")

    def is_known(self, address: str) -> bool:
        if not address:
            return False
        address = address.lower()
        return address in self._static or address in self._observed

    def add(self, address: str) -> None:
        self._static.add(address.lower())
        self._logger.info("known_actor_added", address=address.lower())

    def remove(self, address: str) -> None:
        address = address.lower()
        self._static.discard(address)
        self._observed.pop(address, None)
        self._logger.info("known_actor_removed", address=address)

    @property
    def known_actors(self) -> Set[str]:
        return self._static | set(self._observed)

    def record_attack(self, address: str, profit: Decimal, now: float) -> ActorStats:
        """Count one attack by an actor, registering it when new"""
        address = address.lower()
        existing = self._observed.get(address)

        stats = ActorStats(
            address=address,
            attack_count=(existing.attack_count if existing else 0) + 1,
            total_profit=(existing.total_profit if existing else Decimal("0")) + profit,
            last_seen=now,
        )
        self._observed[address] = stats

        if existing is None:
            self._logger.info("actor_flagged", address=address)
        return stats

    def get_stats(self, address: str):
        return self._observed.get(address.lower())

    def top_actors(self, limit: int = 10) -> List[ActorStats]:
        """Observed actors ordered by total profit (desc)"""
        ranked = sorted(
            self._observed.values(),
            key=lambda s: (-s.total_profit, -s.attack_count, s.address),
        )
        return ranked[:limit]

    def prune(self, older_than: float) -> int:
        """
        Drop observed actors last seen before a timestamp.

        Returns:
            Number of actors removed
        """
        stale = [a for a, s in self._observed.items() if s.last_seen < older_than]
        for address in stale:
            del self._observed[address]

        if stale:
            self._logger.debug("observed_actors_pruned", count=len(stale))
        return len(stale)
