"""
Behavioral memory engine: concurrency-safe store of wallet behavior profiles.

Profiles are created on first transaction, updated on every transaction
event (thresholded or not) and dropped when the wallet is unwatched.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Iterable

from wallet_sentinel.behavioral_memory.models import WalletBehaviorProfile
from wallet_sentinel.sentinel_logging import get_logger, short_id

logger = get_logger(__name__)

# (substring in lower-cased log line, pattern tag)
PATTERN_RULES: tuple[tuple[str, str], ...] = (
    ("transfer", "transfer"),
    ("approve", "approve"),
    ("authority", "authority_change"),
    ("invoke", "program_invoke"),
)


def extract_patterns(log_lines: Iterable[str]) -> frozenset[str]:
    """Pattern tags present in a batch of log lines."""
    tags: set[str] = set()
    for line in log_lines:
        lowered = str(line).lower()
        for needle, tag in PATTERN_RULES:
            if needle in lowered:
                tags.add(tag)
    return frozenset(tags)


class ProfileStore:
    """Thread-safe map of address -> WalletBehaviorProfile."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._profiles: dict[str, WalletBehaviorProfile] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def get(self, address: str) -> WalletBehaviorProfile | None:
        with self._lock:
            return self._profiles.get(address)

    def record_transaction(
        self,
        address: str,
        log_lines: Iterable[str],
        now: float | None = None,
    ) -> WalletBehaviorProfile:
        """Count one transaction and accumulate its pattern tags."""
        ts = time.time() if now is None else now
        tags = extract_patterns(log_lines)
        with self._lock:
            current = self._profiles.get(address) or WalletBehaviorProfile(address=address, first_seen=ts)
            updated = replace(
                current,
                total_transactions=current.total_transactions + 1,
                patterns=current.patterns | tags,
                last_activity=ts,
            )
            self._profiles[address] = updated
        return updated

    def add_patterns(self, address: str, tags: Iterable[str], now: float | None = None) -> WalletBehaviorProfile:
        """Union extra tags (e.g. finding kinds) into the profile."""
        ts = time.time() if now is None else now
        extra = frozenset(str(t) for t in tags)
        with self._lock:
            current = self._profiles.get(address) or WalletBehaviorProfile(address=address, first_seen=ts)
            updated = replace(current, patterns=current.patterns | extra)
            self._profiles[address] = updated
        return updated

    def drop(self, address: str) -> None:
        with self._lock:
            removed = self._profiles.pop(address, None)
        if removed is not None:
            logger.debug("profile_dropped", wallet_id=short_id(address))

    def summary(self, address: str, now: float | None = None) -> dict | None:
        profile = self.get(address)
        if profile is None:
            return None
        return profile.to_dict(now=time.time() if now is None else now)
