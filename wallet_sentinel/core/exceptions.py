"""
Application-level exceptions.

Every error the engine raises on purpose derives from SentinelError, so callers
can isolate per-wallet failures without catching unrelated bugs.
"""

from __future__ import annotations


class SentinelError(Exception):
    """Base class for wallet_sentinel errors."""


class InvalidAddress(SentinelError, ValueError):
    """Address is not a well-formed Solana public key; rejected before any state is created."""

    def __init__(self, address: str, reason: str | None = None) -> None:
        self.address = address
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid Solana wallet address {address!r}{detail}")


class ProviderUnavailable(SentinelError):
    """RPC provider call failed (transport, timeout, JSON-RPC error). Retried on the next sweep tick."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class EnrichmentUnavailable(SentinelError):
    """AI enrichment timed out or returned an unusable response."""


class AnalysisError(SentinelError):
    """Event payload had an unexpected shape."""
