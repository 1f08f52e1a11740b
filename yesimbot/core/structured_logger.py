"""
Structured Logger — JSON or human log lines with per-request trace ids.

The orchestrator opens a `trace_context` for every top-level request; any
record emitted inside it (including from adapters and tools) is stamped with
the trace id and channel id. Two output modes:

- **JSON mode** (`YESIMBOT_LOG_FORMAT=json`): each line is a JSON object.
- **Human mode** (default): traditional format with a `[trace_id]` prefix.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

_trace_id: contextvars.ContextVar[str] = contextvars.ContextVar("yesimbot_trace_id", default="")
_channel_id: contextvars.ContextVar[str] = contextvars.ContextVar("yesimbot_channel_id", default="")


def new_trace_id() -> str:
    """Generate a short 12-char hex trace ID."""
    return uuid.uuid4().hex[:12]


def current_trace_id() -> str:
    return _trace_id.get()


@contextmanager
def trace_context(channel_id: str = "", trace_id: Optional[str] = None) -> Iterator[str]:
    """Bind a trace id (and channel) to every record logged inside the block."""
    trace_id = trace_id or new_trace_id()
    trace_token = _trace_id.set(trace_id)
    channel_token = _channel_id.set(channel_id)
    try:
        yield trace_id
    finally:
        _trace_id.reset(trace_token)
        _channel_id.reset(channel_token)


# ── JSON formatter ──────────────────────────────────────────────────

class StructuredFormatter(logging.Formatter):
    """Emits each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for ctx_field in ("trace_id", "channel_id"):
            val = getattr(record, ctx_field, "")
            if val:
                entry[ctx_field] = val
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


# ── Human-readable formatter (with trace_id) ───────────────────────

class HumanFormatter(logging.Formatter):
    """Traditional format with optional [trace_id] prefix."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(
            fmt=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt=datefmt or "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        trace_id = getattr(record, "trace_id", "")
        if trace_id:
            return f"[{trace_id}] {line}"
        return line


# ── TraceIDFilter ───────────────────────────────────────────────────

class TraceIDFilter(logging.Filter):
    """Injects the current trace_id and channel_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = getattr(record, "trace_id", "") or _trace_id.get()
        record.channel_id = getattr(record, "channel_id", "") or _channel_id.get()
        return True


# ── Module-level setup function ─────────────────────────────────────

def setup_structured_logging(
    json_mode: Optional[bool] = None,
    level: str = "INFO",
) -> None:
    """
    Configure the root logger for structured output.

    Parameters
    ----------
    json_mode : bool or None
        If None, auto-detect from ``YESIMBOT_LOG_FORMAT`` env var
        (set to ``"json"`` to enable JSON mode).
    level : str
        Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    if json_mode is None:
        json_mode = os.getenv("YESIMBOT_LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    if json_mode:
        handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(HumanFormatter())
    handler.addFilter(TraceIDFilter())
    root.addHandler(handler)

    # request bodies are logged at debug by adapters; keep httpx quiet
    logging.getLogger("httpx").setLevel(logging.WARNING)
