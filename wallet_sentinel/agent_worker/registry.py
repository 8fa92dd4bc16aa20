"""
Wallet registry: single source of truth for what is being watched.

One immutable WatchedWallet record per address holds the subscription
handles, the alert callback, rolling counters and timestamps. Records are
replaced, never mutated, so list_all() snapshots can be iterated while other
tasks update wallets. update() is an atomic read-modify-write for one address;
operations on different addresses only share a short structure lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from wallet_sentinel.analysis_engine.scorer import ActivityWindow
from wallet_sentinel.sentinel_logging import get_logger, short_id
from wallet_sentinel.solana_listener.models import SubscriptionHandle
from wallet_sentinel.utils.wallet_utils import validate_wallet

logger = get_logger(__name__)

STATUS_REALTIME = "real-time"
STATUS_BASIC = "basic"


class WalletState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    STOPPED = "stopped"


class WatchResult(str, Enum):
    ALREADY_WATCHED = "already_watched"
    NEWLY_WATCHED = "newly_watched"


@dataclass(frozen=True)
class WatchedWallet:
    """Watched-wallet state; replaced as a whole on every change."""

    address: str
    user_id: str | None
    on_alert: Callable[[Any], Any] | None
    created_at: float
    window_started_at: float
    state: WalletState = WalletState.PENDING
    account_subscription: SubscriptionHandle | None = None
    logs_subscription: SubscriptionHandle | None = None
    had_account: bool | None = None
    last_lamports: int | None = None
    tx_count: int = 0
    last_reconciled_at: float | None = None
    last_activity_at: float | None = None

    @property
    def realtime(self) -> bool:
        return self.account_subscription is not None or self.logs_subscription is not None

    @property
    def status(self) -> str:
        return STATUS_REALTIME if self.realtime else STATUS_BASIC

    def window(self, now: float) -> ActivityWindow:
        return ActivityWindow(tx_count=self.tx_count, elapsed_sec=max(0.0, now - self.window_started_at))


class WalletRegistry:
    """Concurrency-safe keyed store of WatchedWallet records."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._wallets: dict[str, WatchedWallet] = {}
        self._slot_locks: dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._wallets)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._wallets

    def watch(
        self,
        address: str,
        user_id: str | None = None,
        on_alert: Callable[[Any], Any] | None = None,
    ) -> WatchResult:
        """
        Register an address. Re-watching an address is a no-op success.

        Raises InvalidAddress before any state is created.
        """
        address = validate_wallet(address)
        now = self._clock()
        with self._lock:
            if address in self._wallets:
                return WatchResult.ALREADY_WATCHED
            self._wallets[address] = WatchedWallet(
                address=address,
                user_id=user_id,
                on_alert=on_alert,
                created_at=now,
                window_started_at=now,
            )
            self._slot_locks[address] = threading.Lock()
        logger.info("registry_wallet_added", wallet_id=short_id(address), user_id=user_id)
        return WatchResult.NEWLY_WATCHED

    def unwatch(self, address: str) -> WatchedWallet | None:
        """Remove an address; returns the removed record, None if it was not watched."""
        with self._lock:
            removed = self._wallets.pop(address, None)
            self._slot_locks.pop(address, None)
        if removed is not None:
            logger.info("registry_wallet_removed", wallet_id=short_id(address))
        return removed

    def get(self, address: str) -> WatchedWallet | None:
        with self._lock:
            return self._wallets.get(address)

    def list_all(self) -> tuple[WatchedWallet, ...]:
        """Immutable snapshot of every record."""
        with self._lock:
            return tuple(self._wallets.values())

    def addresses_for_user(self, user_id: str) -> list[str]:
        with self._lock:
            return [w.address for w in self._wallets.values() if w.user_id == user_id]

    def update(
        self,
        address: str,
        fn: Callable[[WatchedWallet], WatchedWallet],
    ) -> WatchedWallet | None:
        """
        Atomically replace one record with fn(record).

        Returns the new record, or None when the address is not watched (or
        was removed while fn ran). fn must be a pure in-memory transformation.
        """
        with self._lock:
            slot = self._slot_locks.get(address)
        if slot is None:
            return None
        with slot:
            with self._lock:
                current = self._wallets.get(address)
            if current is None:
                return None
            updated = fn(current)
            with self._lock:
                if self._wallets.get(address) is not current:
                    # Removed (or re-added) concurrently
                    return None
                self._wallets[address] = updated
        return updated

    def set_fields(self, address: str, **changes: Any) -> WatchedWallet | None:
        return self.update(address, lambda w: replace(w, **changes))
