"""Unit tests for monitoring metrics"""

from arbsentry.monitoring import metrics


class TestMetricsEmission:
    """Test that metrics are properly emitted"""

    def test_venue_fetch_errors_emission(self):
        """Test venue_fetch_errors counter emission"""
        metrics.venue_fetch_errors.labels(venue="pancakeswap-wbnb-busd", error_type="SourceTimeout").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'venue_fetch_errors_total{error_type="SourceTimeout",venue="pancakeswap-wbnb-busd"}' in metric_output

    def test_venue_fetch_latency_emission(self):
        """Test venue_fetch_latency histogram emission"""
        metrics.venue_fetch_latency.labels(venue="quickswap-wmatic-usdc").observe(0.2)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'venue_fetch_latency_seconds_count{venue="quickswap-wmatic-usdc"}' in metric_output

    def test_aggregated_quotes_emission(self):
        """Test aggregated_quotes gauge emission"""
        metrics.aggregated_quotes.labels(token="WBNB").set(3)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'aggregated_quotes{token="WBNB"} 3.0' in metric_output

    def test_chain_rpc_latency_emission(self):
        """Test chain_rpc_latency histogram emission"""
        metrics.chain_rpc_latency.labels(
            chain="Polygon",
            endpoint="https://polygon-rpc.com",
            method="get_block"
        ).observe(0.5)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'chain_rpc_latency_seconds_count{chain="Polygon"' in metric_output
        assert 'endpoint="https://polygon-rpc.com"' in metric_output
        assert 'method="get_block"' in metric_output

    def test_chain_rpc_errors_emission(self):
        """Test chain_rpc_errors counter emission"""
        metrics.chain_rpc_errors.labels(chain="BSC", error_type="ConnectionError").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'chain_rpc_errors_total{chain="BSC",error_type="ConnectionError"}' in metric_output

    def test_opportunities_detected_emission(self):
        """Test opportunities_detected counter emission"""
        metrics.opportunities_detected.labels(kind="single_chain").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'opportunities_detected_total{kind="single_chain"}' in metric_output

    def test_opportunities_rejected_emission(self):
        """Test opportunities_rejected counter emission"""
        metrics.opportunities_rejected.labels(reason="below_min_profit").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'opportunities_rejected_total{reason="below_min_profit"}' in metric_output

    def test_attack_patterns_detected_emission(self):
        """Test attack_patterns_detected counter emission"""
        metrics.attack_patterns_detected.labels(type="sandwich").inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'attack_patterns_detected_total{type="sandwich"}' in metric_output

    def test_mev_activity_score_emission(self):
        """Test mev_activity_score gauge emission"""
        metrics.mev_activity_score.labels(chain="BSC").set(42)

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'mev_activity_score{chain="BSC"} 42.0' in metric_output

    def test_cache_counters_emission(self):
        """Test result cache hit/miss counters"""
        metrics.result_cache_hits.inc()
        metrics.result_cache_misses.inc()

        metric_output = metrics.get_metrics().decode('utf-8')
        assert 'result_cache_hits_total' in metric_output
        assert 'result_cache_misses_total' in metric_output
        assert 'malformed_transactions_total' in metric_output


class TestMetricsFormat:
    """Test metrics output format"""

    def test_get_metrics_returns_bytes(self):
        """Test that get_metrics returns bytes"""
        assert isinstance(metrics.get_metrics(), bytes)

    def test_get_content_type(self):
        """Test that content type is the Prometheus text format"""
        content_type = metrics.get_content_type()
        assert 'text/plain' in content_type
