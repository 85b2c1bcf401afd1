"""Prometheus metrics for feeds, detectors and caches"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST, start_http_server

# Venue Feed Metrics
venue_fetch_latency = Histogram(
    'venue_fetch_latency_seconds',
    'Venue quote fetch latency in seconds',
    ['venue'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0)
)

venue_fetch_errors = Counter(
    'venue_fetch_errors_total',
    'Total number of failed venue quote fetches',
    ['venue', 'error_type']
)

aggregated_quotes = Gauge(
    'aggregated_quotes',
    'Number of quotes fused in the last aggregation cycle',
    ['token']
)

# Chain Health Metrics
chain_rpc_latency = Histogram(
    'chain_rpc_latency_seconds',
    'RPC call latency in seconds',
    ['chain', 'endpoint', 'method'],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
)

chain_rpc_errors = Counter(
    'chain_rpc_errors_total',
    'Total number of RPC errors',
    ['chain', 'error_type']
)

# Detection Metrics
opportunities_detected = Counter(
    'opportunities_detected_total',
    'Total number of opportunities emitted',
    ['kind']
)

opportunities_rejected = Counter(
    'opportunities_rejected_total',
    'Total number of scoring rejections',
    ['reason']
)

attack_patterns_detected = Counter(
    'attack_patterns_detected_total',
    'Total number of MEV attack patterns detected',
    ['type']
)

malformed_transactions = Counter(
    'malformed_transactions_total',
    'Transaction records skipped during pattern scanning'
)

mev_activity_score = Gauge(
    'mev_activity_score',
    'Current MEV activity score (0-100)',
    ['chain']
)

# Cache Metrics
result_cache_hits = Counter(
    'result_cache_hits_total',
    'Result cache hits'
)

result_cache_misses = Counter(
    'result_cache_misses_total',
    'Result cache misses'
)


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default 9090)
    """
    start_http_server(port)
