"""
Pytest fixtures for Wallet Sentinel tests.

FakeGateway implements the RpcGateway protocol in memory: accounts and
transactions are plain dicts, failures are toggled per test, and emit_*()
pushes notifications to whoever subscribed. Async code is driven with
asyncio.run inside each test.
"""

from __future__ import annotations

import asyncio
from itertools import count
from typing import Any

import pytest
from solders.pubkey import Pubkey

from wallet_sentinel.core.exceptions import ProviderUnavailable
from wallet_sentinel.solana_listener.models import (
    AccountInfo,
    AccountNotification,
    LogNotification,
    SubscriptionHandle,
    SubscriptionKind,
    TransactionInfo,
    TransactionMeta,
)

LAMPORTS_PER_SOL = 1_000_000_000


class FakeGateway:
    """In-memory RpcGateway with switchable failures."""

    def __init__(self) -> None:
        self.accounts: dict[str, AccountInfo | None] = {}
        self.default_account: AccountInfo | None = AccountInfo(lamports=5 * LAMPORTS_PER_SOL)
        self.transactions: dict[str, TransactionInfo] = {}
        self.failing_accounts: set[str] = set()
        self.fail_subscribe = False
        self.fail_unsubscribe = False
        self.fail_transactions = False
        self.tx_delay = 0.0
        self.subscriptions: dict[int, tuple[SubscriptionHandle, Any]] = {}
        self.unsubscribed: list[SubscriptionHandle] = []
        self.account_calls: list[str] = []
        self.closed = False
        self._ids = count(1)

    async def get_account_info(self, address: str) -> AccountInfo | None:
        self.account_calls.append(address)
        if address in self.failing_accounts:
            raise ProviderUnavailable("getAccountInfo", "simulated network error")
        if address in self.accounts:
            return self.accounts[address]
        return self.default_account

    async def get_transaction(self, signature: str) -> TransactionInfo | None:
        if self.tx_delay:
            await asyncio.sleep(self.tx_delay)
        if self.fail_transactions:
            raise ProviderUnavailable("getTransaction", "simulated network error")
        return self.transactions.get(signature)

    async def _subscribe(self, kind: SubscriptionKind, address: str, handler: Any) -> SubscriptionHandle:
        if self.fail_subscribe:
            raise ProviderUnavailable(f"{kind.value}Subscribe", "simulated network error")
        handle = SubscriptionHandle(handle_id=next(self._ids), kind=kind, address=address)
        self.subscriptions[handle.handle_id] = (handle, handler)
        return handle

    async def subscribe_account_changes(self, address: str, handler: Any) -> SubscriptionHandle:
        return await self._subscribe(SubscriptionKind.ACCOUNT, address, handler)

    async def subscribe_logs(self, address: str, handler: Any) -> SubscriptionHandle:
        return await self._subscribe(SubscriptionKind.LOGS, address, handler)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.unsubscribed.append(handle)
        self.subscriptions.pop(handle.handle_id, None)
        if self.fail_unsubscribe:
            raise ProviderUnavailable("unsubscribe", "simulated network error")

    async def close(self) -> None:
        self.closed = True

    def active(self, address: str) -> list[SubscriptionHandle]:
        return [h for h, _ in self.subscriptions.values() if h.address == address]

    def emit_account(self, address: str, account: AccountInfo | None, slot: int = 1) -> None:
        for handle, handler in list(self.subscriptions.values()):
            if handle.kind is SubscriptionKind.ACCOUNT and handle.address == address:
                handler(AccountNotification(address=address, slot=slot, account=account))

    def emit_logs(self, address: str, signature: str, logs: list[str], slot: int = 1) -> None:
        for handle, handler in list(self.subscriptions.values()):
            if handle.kind is SubscriptionKind.LOGS and handle.address == address:
                handler(LogNotification(address=address, signature=signature, slot=slot, logs=tuple(logs)))


class RecordingSink:
    """Output sink that keeps every delivered alert."""

    def __init__(self) -> None:
        self.alerts: list[Any] = []

    def __call__(self, alert: Any) -> None:
        self.alerts.append(alert)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_transaction(
    signature: str = "sig-1",
    *,
    err: Any = None,
    account_keys: int = 3,
    pre_balances: tuple[int, ...] = (5 * LAMPORTS_PER_SOL, 0, 1),
    post_balances: tuple[int, ...] = (5 * LAMPORTS_PER_SOL - 5000, 0, 1),
    fee: int = 5000,
    with_meta: bool = True,
) -> TransactionInfo:
    meta = None
    if with_meta:
        meta = TransactionMeta(
            err=err,
            fee=fee,
            pre_balances=pre_balances,
            post_balances=post_balances,
        )
    return TransactionInfo(
        signature=signature,
        slot=100,
        block_time=1_700_000_000,
        account_keys=tuple(str(Pubkey.new_unique()) for _ in range(account_keys)),
        meta=meta,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def new_address():
    """Factory of fresh, valid Solana addresses."""
    return lambda: str(Pubkey.new_unique())


@pytest.fixture
def make_tx():
    """Factory of TransactionInfo objects (see build_transaction)."""
    return build_transaction
