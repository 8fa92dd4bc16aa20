"""
Structured logging for Wallet Sentinel.

JSON logs with timestamp, event_type and per-event context.
Use get_logger() in all engine modules for aggregation-friendly output.
"""

from wallet_sentinel.sentinel_logging.logger import (
    configure_logging,
    get_logger,
    short_id,
    wallet_context,
)

__all__ = ["configure_logging", "get_logger", "short_id", "wallet_context"]
