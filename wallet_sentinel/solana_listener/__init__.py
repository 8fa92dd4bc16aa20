"""
Solana listener package.

RPC gateway for account lookups, transaction fetches and websocket
subscriptions (accountSubscribe / logsSubscribe), plus the frozen payload
models the monitor consumes.
"""

from wallet_sentinel.solana_listener.gateway import (
    GatewayConfig,
    NotificationHandler,
    RpcGateway,
    SolanaRpcGateway,
)
from wallet_sentinel.solana_listener.models import (
    AccountInfo,
    AccountNotification,
    LogNotification,
    SubscriptionHandle,
    SubscriptionKind,
    TransactionInfo,
    TransactionMeta,
)

__all__ = [
    "AccountInfo",
    "AccountNotification",
    "GatewayConfig",
    "LogNotification",
    "NotificationHandler",
    "RpcGateway",
    "SolanaRpcGateway",
    "SubscriptionHandle",
    "SubscriptionKind",
    "TransactionInfo",
    "TransactionMeta",
]
