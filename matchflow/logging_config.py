"""
Logging for the engagement engine.

Every record carries the pair being worked on (``client:trainer``), bound
with ``engagement_context()`` around each transition, so one pair's history
can be grepped out of the interleaved webhook traffic. Output is text or
single-line JSON (LOG_FORMAT) on stderr at LOG_LEVEL.
"""
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone

from matchflow.config import settings

SERVICE = "matchflow"

_current_pair = ContextVar("engagement_pair", default=None)
_current_source = ContextVar("engagement_source", default=None)

TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s [%(pair)s] - %(message)s"

# Chatty at INFO; engine logs are what we want to read
_QUIET = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")


@contextmanager
def engagement_context(pair, source=None):
    """Tag every log record emitted inside the block with `pair` and `source`."""
    pair_token = _current_pair.set(str(pair))
    source_token = _current_source.set(source)
    try:
        yield
    finally:
        _current_pair.reset(pair_token)
        _current_source.reset(source_token)


class EngagementContextFilter(logging.Filter):
    """Copies the bound pair/source onto the record ('-' outside a transition)."""

    def filter(self, record):
        record.pair = _current_pair.get() or "-"
        record.source = _current_source.get()
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        pair = getattr(record, "pair", "-")
        if pair != "-":
            entry["pair"] = pair
        source = getattr(record, "source", None)
        if source:
            entry["source"] = source
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level_name=None, log_format=None):
    """Install the stderr handler on the root logger. Safe to call repeatedly."""
    level = getattr(logging, (level_name or settings.LOG_LEVEL).upper(), logging.INFO)
    as_json = (log_format or settings.LOG_FORMAT).lower() == "json"

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(EngagementContextFilter())
    handler.setFormatter(
        JSONFormatter() if as_json
        else logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
