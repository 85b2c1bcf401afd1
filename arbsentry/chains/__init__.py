"""Blockchain interaction layer"""

from arbsentry.chains.connector import ChainConnector, CircuitBreaker, CircuitState

__all__ = [
    "ChainConnector",
    "CircuitBreaker",
    "CircuitState",
]
