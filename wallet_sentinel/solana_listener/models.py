"""
Data models for Solana RPC payloads consumed by the monitor.

Account snapshots, fetched transactions, subscription notifications and
subscription handles. Everything is frozen so one event can be shared by the
scorer, the enrichment prompt and the alert without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wallet_sentinel.core.exceptions import AnalysisError


class SubscriptionKind(str, Enum):
    ACCOUNT = "account"
    LOGS = "logs"


@dataclass(frozen=True)
class SubscriptionHandle:
    """
    Local handle for one provider subscription.

    handle_id is assigned by the gateway and stays stable across websocket
    reconnects; the provider-side subscription id may change underneath it.
    """

    handle_id: int
    kind: SubscriptionKind
    address: str


@dataclass(frozen=True)
class AccountInfo:
    """Account snapshot from getAccountInfo / accountNotification."""

    lamports: int
    owner: str | None = None
    executable: bool = False
    rent_epoch: int | None = None
    data_len: int = 0

    @classmethod
    def from_rpc_value(cls, value: dict[str, Any] | None) -> "AccountInfo | None":
        """Build from the RPC `value` object; None when the account does not exist."""
        if value is None:
            return None
        if not isinstance(value, dict) or "lamports" not in value:
            raise AnalysisError(f"unexpected account payload: {type(value).__name__}")
        data = value.get("data")
        data_len = 0
        if isinstance(data, list) and data and isinstance(data[0], str):
            data_len = len(data[0])
        elif isinstance(data, str):
            data_len = len(data)
        return cls(
            lamports=int(value["lamports"]),
            owner=value.get("owner"),
            executable=bool(value.get("executable", False)),
            rent_epoch=value.get("rentEpoch"),
            data_len=data_len,
        )


@dataclass(frozen=True)
class TransactionMeta:
    """Status metadata of a confirmed transaction."""

    err: Any
    fee: int
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    log_messages: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.err is not None

    def balance_changes(self) -> list[int]:
        """Post minus pre balance per account index (missing pre counts as 0)."""
        changes = []
        for i, post in enumerate(self.post_balances):
            pre = self.pre_balances[i] if i < len(self.pre_balances) else 0
            changes.append(post - pre)
        return changes


def _account_key(raw: Any) -> str:
    # jsonParsed encoding returns {"pubkey": ..., "signer": ..., "writable": ...}
    if isinstance(raw, dict):
        return str(raw.get("pubkey", ""))
    return str(raw)


@dataclass(frozen=True)
class TransactionInfo:
    """
    Transaction fetched by signature (getTransaction).

    meta is None when the provider returned the transaction without status
    metadata (not yet finalized or pruned).
    """

    signature: str
    slot: int | None
    block_time: int | None
    account_keys: tuple[str, ...]
    meta: TransactionMeta | None

    @classmethod
    def from_rpc_result(cls, signature: str, result: dict[str, Any]) -> "TransactionInfo":
        """Build from a getTransaction result; raises AnalysisError on an unexpected shape."""
        if not isinstance(result, dict):
            raise AnalysisError(f"unexpected transaction payload: {type(result).__name__}")
        try:
            message = (result.get("transaction") or {}).get("message") or {}
            keys = tuple(_account_key(k) for k in message.get("accountKeys") or [])
            loaded = (result.get("meta") or {}).get("loadedAddresses") or {}
            keys += tuple(str(k) for k in loaded.get("writable") or [])
            keys += tuple(str(k) for k in loaded.get("readonly") or [])
            raw_meta = result.get("meta")
            meta = None
            if isinstance(raw_meta, dict):
                meta = TransactionMeta(
                    err=raw_meta.get("err"),
                    fee=int(raw_meta.get("fee") or 0),
                    pre_balances=tuple(int(b) for b in raw_meta.get("preBalances") or []),
                    post_balances=tuple(int(b) for b in raw_meta.get("postBalances") or []),
                    log_messages=tuple(str(m) for m in raw_meta.get("logMessages") or []),
                )
            slot = result.get("slot")
            return cls(
                signature=signature,
                slot=int(slot) if slot is not None else None,
                block_time=result.get("blockTime"),
                account_keys=keys,
                meta=meta,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise AnalysisError(f"malformed transaction {signature}: {e}") from e


@dataclass(frozen=True)
class AccountNotification:
    """accountNotification for a watched wallet."""

    address: str
    slot: int | None
    account: AccountInfo | None


@dataclass(frozen=True)
class LogNotification:
    """logsNotification for a watched wallet (one transaction mentioning it)."""

    address: str
    signature: str
    slot: int | None
    logs: tuple[str, ...] = field(default_factory=tuple)
    err: Any = None
