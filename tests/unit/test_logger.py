"""
Tests for structured logging helpers (factorlab/utils/logger.py).
"""

import json
import logging

import pytest

from factorlab.config.settings import load_settings
from factorlab.utils.logger import (
    LogContext,
    StructlogHandler,
    TimedOperation,
    generate_run_id,
    get_logger,
    get_run_id,
    set_run_id,
    setup_logging,
)


class TestRunId:
    """Test run id propagation."""

    def test_generate_unique(self):
        first, second = generate_run_id(), generate_run_id()
        assert first.startswith("run_")
        assert first != second

    def test_set_and_get(self):
        set_run_id("run_test")
        assert get_run_id() == "run_test"


class TestSetupLogging:
    """Test structlog configuration."""

    def test_json_output_carries_context(self, capsys):
        setup_logging(json_format=True, level="DEBUG")
        set_run_id("run_json")
        with LogContext(stage="statistics"):
            get_logger("factorlab.test").info("hello", factors=2)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "hello"
        assert payload["stage"] == "statistics"
        assert payload["run_id"] == "run_json"
        assert payload["level"] == "INFO"
        assert payload["factors"] == 2

    def test_context_unbound_on_exit(self, capsys):
        setup_logging(json_format=True)
        with LogContext(stage="portfolio"):
            pass
        get_logger().info("after")
        payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert "stage" not in payload

    def test_level_from_settings(self, capsys):
        setup_logging(load_settings(logging={"level": "warning", "json_format": True}))
        logger = get_logger("factorlab.test")
        logger.info("hidden")
        logger.warning("shown")
        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_standard_logging_bridge(self, capsys):
        setup_logging(json_format=True, level="INFO")
        assert any(isinstance(h, StructlogHandler) for h in logging.getLogger("factorlab").handlers)
        logging.getLogger("factorlab.portfolio.constraints").info("bridged %d", 3)
        payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert payload["event"] == "bridged 3"
        assert payload["component"] == "factorlab.portfolio.constraints"


class TestTimedOperation:
    """Test TimedOperation."""

    def test_duration_recorded(self):
        with TimedOperation("unit") as timer:
            pass
        assert timer.duration_ms >= 0.0
        assert timer.end_time >= timer.start_time

    def test_error_propagates(self):
        with pytest.raises(RuntimeError):
            with TimedOperation("failing"):
                raise RuntimeError("boom")
