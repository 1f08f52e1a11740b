"""
Structured logger tests.

Covers:
- trace_context binds and restores trace/channel ids
- TraceIDFilter stamps records
- JSON and human formatters
- setup_structured_logging handler wiring and env detection
"""

import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from yesimbot.core.structured_logger import (
    HumanFormatter, StructuredFormatter, TraceIDFilter,
    current_trace_id, new_trace_id, setup_structured_logging, trace_context,
)


def _record(msg="hello") -> logging.LogRecord:
    return logging.LogRecord("yesimbot.test", logging.INFO, __file__, 1, msg, None, None)


class TestTraceContext:

    def test_new_trace_id_shape(self):
        trace_id = new_trace_id()
        assert len(trace_id) == 12
        int(trace_id, 16)

    def test_binds_and_restores(self):
        assert current_trace_id() == ""
        with trace_context("chan-1", "abc123") as trace_id:
            assert trace_id == "abc123"
            assert current_trace_id() == "abc123"
            with trace_context("chan-2") as inner:
                assert current_trace_id() == inner
            assert current_trace_id() == "abc123"
        assert current_trace_id() == ""

    def test_filter_stamps_record(self):
        record = _record()
        with trace_context("chan-9", "t1"):
            assert TraceIDFilter().filter(record)
        assert record.trace_id == "t1"
        assert record.channel_id == "chan-9"


class TestFormatters:

    def test_json_formatter(self):
        record = _record("value=%s")
        record.args = (5,)
        record.trace_id = "t2"
        record.channel_id = ""
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["message"] == "value=5"
        assert entry["level"] == "INFO"
        assert entry["trace_id"] == "t2"
        assert "channel_id" not in entry

    def test_human_formatter_prefix(self):
        record = _record()
        record.trace_id = "t3"
        assert HumanFormatter().format(record).startswith("[t3] ")

    def test_human_formatter_without_trace(self):
        line = HumanFormatter().format(_record())
        assert not line.startswith("[")
        assert line.endswith("yesimbot.test: hello")


class TestSetup:

    def test_json_mode_from_env(self, monkeypatch):
        monkeypatch.setenv("YESIMBOT_LOG_FORMAT", "json")
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_structured_logging(level="DEBUG")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            handler = root.handlers[0]
            assert isinstance(handler.formatter, StructuredFormatter)
            assert any(isinstance(f, TraceIDFilter) for f in handler.filters)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_explicit_human_mode(self, monkeypatch):
        monkeypatch.setenv("YESIMBOT_LOG_FORMAT", "json")
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_structured_logging(json_mode=False)
            assert isinstance(root.handlers[0].formatter, HumanFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
