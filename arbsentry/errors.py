"""Error kinds raised by data sources and configuration"""


class ArbSentryError(Exception):
    """Base class for engine errors"""


class SourceUnavailable(ArbSentryError):
    """Venue or chain could not be reached"""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        message = f"{source} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SourceTimeout(ArbSentryError):
    """Venue or chain call exceeded its deadline"""

    def __init__(self, source: str, timeout_seconds: float):
        self.source = source
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{source} timed out after {timeout_seconds}s")


class InsufficientData(ArbSentryError):
    """Fewer than two usable quotes for a token"""

    def __init__(self, token: str, quote_count: int):
        self.token = token
        self.quote_count = quote_count
        super().__init__(f"{token}: {quote_count} quote(s), at least 2 required")


class InvalidConfiguration(ArbSentryError):
    """Configuration value out of its valid range"""
