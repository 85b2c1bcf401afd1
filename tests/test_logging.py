"""Tests for structured logging setup"""

import json

import pytest

from arbsentry.utils.logging import get_logger, setup_logging


def events(caplog):
    """Decode every captured JSON log line"""
    return [json.loads(record.getMessage()) for record in caplog.records]


class TestJsonOutput:
    """Test the rendered log lines"""

    def test_bound_component_rendered_as_json(self, caplog):
        setup_logging("INFO")
        logger = get_logger("arbsentry.engine").bind(component="arbitrage_engine")

        logger.info("opportunity_scored", token="WBNB", net_profit=130.0)

        entry = events(caplog)[-1]
        assert entry["event"] == "opportunity_scored"
        assert entry["component"] == "arbitrage_engine"
        assert entry["token"] == "WBNB"
        assert entry["net_profit"] == 130.0
        assert entry["level"] == "info"
        assert entry["logger"] == "arbsentry.engine"
        assert "timestamp" in entry

    def test_error_fields_rendered(self, caplog):
        setup_logging("INFO")
        logger = get_logger().bind(component="mev_monitor", chain="BSC")

        logger.error("mev_poll_error", error="timeout", error_type="TimeoutError")

        entry = events(caplog)[-1]
        assert entry["event"] == "mev_poll_error"
        assert entry["chain"] == "BSC"
        assert entry["error_type"] == "TimeoutError"
        assert entry["level"] == "error"


class TestLevels:
    """Test the configured minimum level"""

    @pytest.fixture(autouse=True)
    def restore_level(self):
        yield
        setup_logging("INFO")

    def test_debug_events_visible_at_debug(self, caplog):
        setup_logging("DEBUG")
        logger = get_logger("arbsentry.scorer").bind(component="opportunity_scorer")

        logger.debug("opportunity_rejected", token="X", reason="stale_quotes")

        entry = events(caplog)[-1]
        assert entry["event"] == "opportunity_rejected"
        assert entry["reason"] == "stale_quotes"
        assert entry["level"] == "debug"

    def test_debug_events_dropped_at_info(self, caplog):
        setup_logging("INFO")
        logger = get_logger("arbsentry.scorer").bind(component="opportunity_scorer")

        logger.debug("opportunity_rejected", token="X", reason="stale_quotes")
        logger.info("opportunity_scored", token="X")

        assert [e["event"] for e in events(caplog)] == ["opportunity_scored"]

    def test_unknown_level_falls_back_to_info(self, caplog):
        setup_logging("VERBOSE")
        logger = get_logger("arbsentry.scorer")

        logger.debug("quote_polled")
        logger.warning("venue_quote_failed", venue="venue-a")

        assert [e["event"] for e in events(caplog)] == ["venue_quote_failed"]
