"""Detectors for arbitrage opportunities, MEV patterns and cross-chain routes"""

from arbsentry.detectors.actor_registry import KnownActorRegistry
from arbsentry.detectors.cross_chain import (
    BridgeCatalog,
    CrossChainOpportunityMatcher,
    StaticBridgeCatalog,
)
from arbsentry.detectors.opportunity_scorer import OpportunityScorer
from arbsentry.detectors.pattern_detector import TransactionPatternDetector
from arbsentry.detectors.protection import ProtectionStrategySelector

__all__ = [
    "BridgeCatalog",
    "CrossChainOpportunityMatcher",
    "KnownActorRegistry",
    "OpportunityScorer",
    "ProtectionStrategySelector",
    "StaticBridgeCatalog",
    "TransactionPatternDetector",
]
