"""
Agent worker package — wallet registry, monitoring coordinator and the
long-running runtime.

The coordinator owns subscriptions per watched wallet, routes provider events
to the scorer, runs the reconciliation sweep and forwards qualifying findings
to the alert synthesizer.
"""

from wallet_sentinel.agent_worker.monitor import (
    MonitorConfig,
    MonitoringCoordinator,
    MonitorStats,
    SweepReport,
    WalletSummary,
)
from wallet_sentinel.agent_worker.registry import (
    WalletRegistry,
    WalletState,
    WatchedWallet,
    WatchResult,
)

__all__ = [
    "MonitorConfig",
    "MonitorStats",
    "MonitoringCoordinator",
    "SweepReport",
    "WalletRegistry",
    "WalletState",
    "WalletSummary",
    "WatchResult",
    "WatchedWallet",
]
