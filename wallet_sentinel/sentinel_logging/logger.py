"""
Structured logging for the monitor: one JSON object per event.

Every record carries event_type, level, timestamp and the module logger name.
Events raised while a wallet's inbox is being processed also carry wallet_id
(see wallet_context). Provider URLs and bearer tokens are redacted before
rendering, since RPC endpoints often embed an API key in the query string.

LOG_LEVEL (default INFO) and LOG_FORMAT (json | console, default json) are read
on first import; configure_logging() can be called again to override them.
No other wallet_sentinel imports here, so any module may log at import time.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

SHORT_ID_LENGTH = 16

_SECRET_QUERY_RE = re.compile(r"(api[-_]?key=)[^&\s\"']+", re.IGNORECASE)
_BEARER_RE = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)
_SECRET_KEYS = frozenset({"api_key", "authorization", "enrichment_api_key"})


def _redact(value: str) -> str:
    return _BEARER_RE.sub(r"\1***", _SECRET_QUERY_RE.sub(r"\1***", value))


def _redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key in _SECRET_KEYS and value:
            event_dict[key] = "***"
        elif isinstance(value, str):
            event_dict[key] = _redact(value)
    return event_dict


def _level_from_name(name: str | None) -> int:
    value = getattr(logging, (name or "INFO").strip().upper(), None)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """(Re)configure structlog. Arguments default to LOG_LEVEL / LOG_FORMAT."""
    level_value = _level_from_name(level or os.getenv("LOG_LEVEL"))
    fmt = (fmt or os.getenv("LOG_FORMAT") or "json").strip().lower()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_secrets,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.EventRenamer("event_type"))
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> Any:
    """
    Module logger with the logger name bound.

        logger = get_logger(__name__)
        logger.info("alert_delivered", wallet_id=short_id(addr), severity="CRITICAL", score=90)
    """
    return structlog.get_logger(name).bind(logger=name)


@contextmanager
def wallet_context(address: str) -> Iterator[None]:
    """Bind wallet_id to every event logged inside the block (current task only)."""
    with structlog.contextvars.bound_contextvars(wallet_id=short_id(address)):
        yield


def short_id(value: str | None) -> str:
    """Shorten an address or signature for log output."""
    if not value:
        return "?"
    if len(value) > SHORT_ID_LENGTH:
        return value[:SHORT_ID_LENGTH] + "..."
    return value
