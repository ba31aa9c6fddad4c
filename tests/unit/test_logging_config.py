"""
Unit tests for structured JSON logging and poll cycle IDs.
"""
import pytest
import logging
import json

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.common.logging_config import JSONFormatter, setup_logging, get_logger, set_level
from src.common.correlation import (
    CycleContext,
    CycleFilter,
    get_cycle_id,
    set_component,
    get_component,
)


def _record(msg="msg", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test", level=level,
        pathname="", lineno=1, msg=msg, args=(), exc_info=exc_info
    )


class TestJSONFormatter:
    """Test JSONFormatter output"""

    def setup_method(self):
        self.formatter = JSONFormatter()

    def test_format_basic_fields(self):
        record = logging.LogRecord(
            name="test.logger",
            level=logging.INFO,
            pathname="test.py",
            lineno=42,
            msg="Hello %s",
            args=("world",),
            exc_info=None
        )
        data = json.loads(self.formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["message"] == "Hello world"
        assert data["line"] == 42
        assert data["timestamp"].endswith("Z")

    def test_format_includes_cycle_id(self):
        record = _record()
        record.cycle_id = "abc123"
        data = json.loads(self.formatter.format(record))
        assert data["cycle_id"] == "abc123"

    def test_format_excludes_empty_cycle_id(self):
        record = _record()
        record.cycle_id = ""
        data = json.loads(self.formatter.format(record))
        assert "cycle_id" not in data

    def test_format_includes_component(self):
        record = _record()
        record.component = "exporter"
        data = json.loads(self.formatter.format(record))
        assert data["component"] == "exporter"

    def test_format_includes_upstream(self):
        record = _record()
        record.upstream = "nats-1:8222"
        data = json.loads(self.formatter.format(record))
        assert data["upstream"] == "nats-1:8222"

    def test_format_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(self.formatter.format(_record("error", logging.ERROR, exc_info)))
        assert "ValueError: boom" in data["exception"]


class TestSetupLogging:

    def test_sets_level(self):
        logger = setup_logging("test.level", level="WARNING")
        assert logger.level == logging.WARNING

    def test_uses_json_formatter_and_cycle_filter(self):
        logger = setup_logging("test.formatter")
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert any(isinstance(f, CycleFilter) for f in logger.filters)

    def test_no_duplicate_handlers(self):
        setup_logging("test.dedup")
        logger = setup_logging("test.dedup")
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_get_logger_reuses_configured(self):
        first = get_logger("test.reuse")
        second = get_logger("test.reuse")
        assert first is second
        assert len(second.handlers) == 1

    def test_set_level_applies_to_configured_loggers(self):
        logger = get_logger("test.set_level")
        set_level("ERROR")
        try:
            assert logger.level == logging.ERROR
        finally:
            set_level("INFO")


class TestCycleContext:

    def test_sets_and_clears_cycle_id(self):
        assert get_cycle_id() is None
        with CycleContext() as ctx:
            assert get_cycle_id() == ctx.cycle_id
            assert len(ctx.cycle_id) == 12
        assert get_cycle_id() is None

    def test_nested_restores_outer(self):
        with CycleContext("outer"):
            with CycleContext("inner"):
                assert get_cycle_id() == "inner"
            assert get_cycle_id() == "outer"

    def test_each_cycle_gets_new_id(self):
        with CycleContext() as a:
            pass
        with CycleContext() as b:
            pass
        assert a.cycle_id != b.cycle_id

    def test_filter_injects_fields(self):
        set_component("poller")
        record = _record()
        with CycleContext("cyc-1"):
            assert CycleFilter().filter(record) is True
        assert record.cycle_id == "cyc-1"
        assert record.component == get_component() == "poller"
