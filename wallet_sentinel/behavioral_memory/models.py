"""
Data models for wallet behavioral memory.

Per-wallet rolling profile: first-seen time, transaction count, observed
pattern tags and last activity. Immutable snapshots; the store replaces a
profile on every update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class WalletBehaviorProfile:
    """Rolling statistics used to contextualize scoring and enrichment prompts."""

    address: str
    first_seen: float
    total_transactions: int = 0
    patterns: frozenset[str] = field(default_factory=frozenset)
    last_activity: float | None = None

    def account_age_days(self, now: float) -> int:
        """Whole days since the wallet was first seen by this process."""
        return max(0, int((now - self.first_seen) // SECONDS_PER_DAY))

    def to_dict(self, now: float | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {
            "address": self.address,
            "first_seen": self.first_seen,
            "total_transactions": self.total_transactions,
            "patterns": sorted(self.patterns),
            "last_activity": self.last_activity,
        }
        if now is not None:
            out["account_age_days"] = self.account_age_days(now)
        return out
