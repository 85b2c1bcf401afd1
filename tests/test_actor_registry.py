"""Tests for the known actor registry"""

from decimal import Decimal

from arbsentry.config.models import DEFAULT_KNOWN_ACTORS
from arbsentry.detectors.actor_registry import KnownActorRegistry


class TestKnownActorRegistry:
    """Test lookup and mutation of known actors"""

    def test_lookup_is_case_insensitive(self):
        registry = KnownActorRegistry(["0xABCdef"])

        assert registry.is_known("0xabcdef")
        assert registry.is_known("0xABCDEF")
        assert not registry.is_known("0x123")
        assert not registry.is_known("")

    def test_default_actors(self):
        registry = KnownActorRegistry(DEFAULT_KNOWN_ACTORS)

        assert registry.is_known("0x00000000003B3CC22AF3AE1EAC0440BCEE416B40")
        assert len(registry.known_actors) == len(DEFAULT_KNOWN_ACTORS)

    def test_add_and_remove(self):
        registry = KnownActorRegistry()

        registry.add("0xBot")
        assert registry.is_known("0xbot")

        registry.remove("0xBOT")
        assert not registry.is_known("0xbot")

    def test_record_attack_accumulates(self):
        registry = KnownActorRegistry()

        registry.record_attack("0xBot", Decimal("1.5"), now=10.0)
        stats = registry.record_attack("0xbot", Decimal("2.5"), now=20.0)

        assert stats.attack_count == 2
        assert stats.total_profit == Decimal("4.0")
        assert stats.last_seen == 20.0
        assert registry.is_known("0xBOT")

    def test_top_actors_by_profit(self):
        registry = KnownActorRegistry()
        registry.record_attack("0xa", Decimal("1"), now=0.0)
        registry.record_attack("0xb", Decimal("5"), now=0.0)
        registry.record_attack("0xc", Decimal("3"), now=0.0)

        top = registry.top_actors(limit=2)

        assert [s.address for s in top] == ["0xb", "0xc"]

    def test_prune_keeps_static_actors(self):
        registry = KnownActorRegistry(["0xstatic"])
        registry.record_attack("0xold", Decimal("1"), now=0.0)
        registry.record_attack("0xnew", Decimal("1"), now=500.0)

        removed = registry.prune(older_than=100.0)

        assert removed == 1
        assert not registry.is_known("0xold")
        assert registry.is_known("0xnew")
        assert registry.is_known("0xstatic")
