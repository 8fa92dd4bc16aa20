"""
Monitoring coordinator: per-wallet subscription lifecycle, event routing and
the periodic reconciliation sweep.

Each watched wallet gets an inbox queue drained by one worker task, so events
for one wallet (account changes, log notifications, sweep results) are
evaluated strictly in order while different wallets proceed concurrently.
Network calls (subscribe, transaction fetch, account lookup) are awaited
outside every lock; the registry and the alert synthesizer's dedup table are
the only shared mutable state.

Lifecycle per wallet: PENDING (registered) -> ACTIVE (at least one provider
channel confirmed) -> STOPPED (unwatched; handles released, entry removed).
Subscription failures leave the wallet registered in "basic" status; the next
sweep tick retries them.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from wallet_sentinel.agent_worker.registry import (
    WalletRegistry,
    WalletState,
    WatchedWallet,
    WatchResult,
)
from wallet_sentinel.ai_engine.enrichment import AIEnrichmentAdapter, TransactionContext
from wallet_sentinel.alerts.engine import AlertSynthesizer
from wallet_sentinel.alerts.models import Alert, DedupKey
from wallet_sentinel.analysis_engine.scorer import (
    ScorerConfig,
    evaluate_account_snapshot,
    evaluate_existence_check,
    evaluate_transaction,
)
from wallet_sentinel.behavioral_memory import ProfileStore, WalletBehaviorProfile
from wallet_sentinel.config.settings import Settings
from wallet_sentinel.core.exceptions import SentinelError
from wallet_sentinel.sentinel_logging import get_logger, short_id, wallet_context
from wallet_sentinel.solana_listener.gateway import RpcGateway
from wallet_sentinel.solana_listener.models import (
    AccountInfo,
    AccountNotification,
    LogNotification,
    SubscriptionHandle,
    TransactionInfo,
)

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SEC = 30.0
DEFAULT_OBSERVATION_WINDOW_SEC = 300.0
DEFAULT_TX_FETCH_TIMEOUT_SEC = 10.0
DEFAULT_SWEEP_CONCURRENCY = 16
DEFAULT_DEDUP_TTL_SEC = 3600.0


@dataclass
class MonitorConfig:
    """Timing and concurrency knobs of the coordinator."""

    sweep_interval_sec: float = DEFAULT_SWEEP_INTERVAL_SEC
    observation_window_sec: float = DEFAULT_OBSERVATION_WINDOW_SEC
    tx_fetch_timeout_sec: float = DEFAULT_TX_FETCH_TIMEOUT_SEC
    sweep_concurrency: int = DEFAULT_SWEEP_CONCURRENCY
    dedup_ttl_sec: float = DEFAULT_DEDUP_TTL_SEC
    scorer: ScorerConfig = field(default_factory=ScorerConfig)

    def __post_init__(self) -> None:
        self.sweep_concurrency = max(1, int(self.sweep_concurrency))

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitorConfig":
        return cls(
            sweep_interval_sec=settings.sweep_interval_sec,
            observation_window_sec=settings.observation_window_sec,
            tx_fetch_timeout_sec=settings.tx_fetch_timeout_sec,
            sweep_concurrency=settings.sweep_concurrency,
            dedup_ttl_sec=settings.dedup_ttl_sec,
            scorer=ScorerConfig(min_rate_window_sec=settings.min_rate_window_sec),
        )


@dataclass(frozen=True)
class _AccountChanged:
    notification: AccountNotification


@dataclass(frozen=True)
class _LogsReceived:
    notification: LogNotification


@dataclass(frozen=True)
class _WindowExpired:
    at: float


@dataclass(frozen=True)
class _Reconciled:
    tick_id: int
    account: AccountInfo | None


@dataclass
class _Worker:
    inbox: asyncio.Queue
    task: asyncio.Task


@dataclass(frozen=True)
class WalletSummary:
    address: str
    user_id: str | None
    tx_count: int
    last_activity_at: float | None
    state: WalletState
    status: str
    profile: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "user_id": self.user_id,
            "tx_count": self.tx_count,
            "last_activity_at": self.last_activity_at,
            "state": self.state.value,
            "status": self.status,
            "profile": self.profile,
        }


@dataclass(frozen=True)
class MonitorStats:
    count: int
    wallets: tuple[WalletSummary, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "wallets": [w.to_dict() for w in self.wallets]}


@dataclass(frozen=True)
class SweepReport:
    tick_id: int
    visited: int
    failed: int
    pruned: int = 0


class MonitoringCoordinator:
    """
    Owns the registry, profiles and synthesizer for one process.

    Construct once at startup, call start() to run the sweep, and stop() on
    shutdown to flush in-flight work and release every subscription.
    """

    def __init__(
        self,
        gateway: RpcGateway,
        config: MonitorConfig | None = None,
        *,
        registry: WalletRegistry | None = None,
        profiles: ProfileStore | None = None,
        synthesizer: AlertSynthesizer | None = None,
        enricher: AIEnrichmentAdapter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._config = config or MonitorConfig()
        self._clock = clock
        self._registry = registry if registry is not None else WalletRegistry(clock=clock)
        self._profiles = profiles if profiles is not None else ProfileStore()
        if synthesizer is None:
            synthesizer = AlertSynthesizer(
                enricher,
                dedup_ttl_sec=self._config.dedup_ttl_sec,
                clock=clock,
            )
        self._synthesizer = synthesizer
        self._synthesizer.set_watch_guard(lambda address: address in self._registry)
        self._workers: dict[str, _Worker] = {}
        self._tick = 0
        self._stop = asyncio.Event()
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> WalletRegistry:
        return self._registry

    @property
    def profiles(self) -> ProfileStore:
        return self._profiles

    @property
    def synthesizer(self) -> AlertSynthesizer:
        return self._synthesizer

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def watch(
        self,
        address: str,
        user_id: str | None = None,
        on_alert: Callable[[Alert], Any] | None = None,
    ) -> bool:
        """
        Start monitoring an address for a user.

        Returns True when at least one real-time subscription is live, False
        when the wallet is registered in basic status (retried by the sweep).
        Raises InvalidAddress before creating any state.
        """
        result = self._registry.watch(address, user_id=user_id, on_alert=on_alert)
        address = address.strip()
        if result is WatchResult.ALREADY_WATCHED:
            existing = self._registry.get(address)
            return bool(existing and existing.realtime)

        self._start_worker(address)
        await self._seed_account(address)
        realtime = await self._ensure_subscriptions(address)
        logger.info(
            "monitor_wallet_watched",
            wallet_id=short_id(address),
            user_id=user_id,
            status="real-time" if realtime else "basic",
        )
        return realtime

    async def unwatch(self, address: str) -> None:
        """Stop monitoring an address. No-op when it is not watched."""
        address = address.strip()
        record = self._registry.set_fields(address, state=WalletState.STOPPED)
        if record is None:
            return
        for handle in (record.account_subscription, record.logs_subscription):
            if handle is not None:
                await self._release(handle)
        self._registry.unwatch(address)
        worker = self._workers.pop(address, None)
        if worker is not None:
            worker.inbox.put_nowait(None)
        self._profiles.drop(address)
        self._synthesizer.forget_wallet(address)
        logger.info("monitor_wallet_unwatched", wallet_id=short_id(address))

    async def remove_user(self, user_id: str) -> int:
        """Unwatch every wallet owned by user_id; returns how many were removed."""
        addresses = self._registry.addresses_for_user(user_id)
        for address in addresses:
            await self.unwatch(address)
        logger.info("monitor_user_removed", user_id=user_id, wallets=len(addresses))
        return len(addresses)

    def stats(self) -> MonitorStats:
        wallets = self._registry.list_all()
        now = self._clock()
        return MonitorStats(
            count=len(wallets),
            wallets=tuple(
                WalletSummary(
                    address=short_id(w.address),
                    user_id=w.user_id,
                    tx_count=w.tx_count,
                    last_activity_at=w.last_activity_at,
                    state=w.state,
                    status=w.status,
                    profile=self._profile_summary(w.address, now),
                )
                for w in wallets
            ),
        )

    def recent_alerts(self, address: str | None = None) -> list[Alert]:
        return self._synthesizer.recent_alerts(address)

    def profile(self, address: str) -> WalletBehaviorProfile | None:
        """Behaviour profile of a watched wallet; None when unwatched or never seen."""
        address = address.strip()
        if address not in self._registry:
            return None
        return self._profiles.get(address)

    def _profile_summary(self, address: str, now: float) -> dict[str, Any] | None:
        summary = self._profiles.summary(address, now=now)
        if summary is not None:
            # stats only ever shows shortened addresses
            summary.pop("address", None)
        return summary

    async def _seed_account(self, address: str) -> None:
        """Record initial existence and balance; failure leaves them unknown."""
        try:
            account = await self._gateway.get_account_info(address)
        except SentinelError as e:
            logger.warning("monitor_seed_failed", wallet_id=short_id(address), error=str(e))
            return
        self._registry.set_fields(
            address,
            had_account=account is not None,
            last_lamports=account.lamports if account is not None else None,
        )

    async def _ensure_subscriptions(self, address: str) -> bool:
        """Create whichever provider subscriptions are missing; returns real-time status."""
        record = self._registry.get(address)
        if record is None or record.state is WalletState.STOPPED:
            return False
        if record.account_subscription is None:
            await self._subscribe(address, "account_subscription", self._gateway.subscribe_account_changes)
        if record.logs_subscription is None:
            await self._subscribe(address, "logs_subscription", self._gateway.subscribe_logs)

        def activate(w: WatchedWallet) -> WatchedWallet:
            if w.state is WalletState.PENDING and w.realtime:
                return replace(w, state=WalletState.ACTIVE)
            return w

        updated = self._registry.update(address, activate)
        return bool(updated and updated.realtime)

    async def _subscribe(self, address: str, slot: str, subscribe: Callable[..., Any]) -> None:
        try:
            handle = await subscribe(address, self._on_notification)
        except SentinelError as e:
            logger.warning(
                "monitor_subscribe_failed",
                wallet_id=short_id(address),
                channel=slot,
                error=str(e),
            )
            return

        def attach(w: WatchedWallet) -> WatchedWallet:
            if w.state is WalletState.STOPPED or getattr(w, slot) is not None:
                return w
            return replace(w, **{slot: handle})

        updated = self._registry.update(address, attach)
        if updated is None or getattr(updated, slot) is not handle:
            # Unwatched while subscribing
            await self._release(handle)

    async def _release(self, handle: SubscriptionHandle) -> None:
        try:
            await self._gateway.unsubscribe(handle)
        except Exception as e:
            logger.warning(
                "monitor_unsubscribe_failed",
                wallet_id=short_id(handle.address),
                kind=handle.kind.value,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Event routing
    # ------------------------------------------------------------------

    def _on_notification(self, payload: AccountNotification | LogNotification) -> None:
        """Gateway callback: queue the event on the wallet's inbox."""
        if isinstance(payload, AccountNotification):
            event: Any = _AccountChanged(payload)
        elif isinstance(payload, LogNotification):
            event = _LogsReceived(payload)
        else:
            logger.warning("monitor_unknown_notification", payload_type=type(payload).__name__)
            return
        self._enqueue(payload.address, event)

    def _enqueue(self, address: str, event: Any) -> bool:
        worker = self._workers.get(address)
        if worker is None:
            return False
        worker.inbox.put_nowait(event)
        return True

    def _start_worker(self, address: str) -> None:
        inbox: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_worker(address, inbox))
        self._workers[address] = _Worker(inbox=inbox, task=task)

    async def _run_worker(self, address: str, inbox: asyncio.Queue) -> None:
        while True:
            event = await inbox.get()
            try:
                if event is None:
                    return
                with wallet_context(address):
                    await self._handle_event(address, event)
            except Exception as e:
                logger.exception(
                    "monitor_event_failed",
                    wallet_id=short_id(address),
                    event=type(event).__name__,
                    error=str(e),
                )
            finally:
                inbox.task_done()

    async def _handle_event(self, address: str, event: Any) -> None:
        if isinstance(event, _AccountChanged):
            await self._handle_account_change(address, event.notification)
        elif isinstance(event, _LogsReceived):
            await self._handle_logs(address, event.notification)
        elif isinstance(event, _WindowExpired):
            self._registry.set_fields(address, tx_count=0, window_started_at=event.at)
        elif isinstance(event, _Reconciled):
            await self._handle_reconciled(address, event)

    async def _handle_account_change(self, address: str, notification: AccountNotification) -> None:
        record = self._registry.get(address)
        if record is None:
            return
        account = notification.account
        evaluation = evaluate_account_snapshot(
            record.had_account,
            account,
            previous_lamports=record.last_lamports,
            config=self._config.scorer,
        )
        self._registry.set_fields(
            address,
            had_account=account is not None,
            last_lamports=account.lamports if account is not None else None,
            last_activity_at=self._clock(),
        )
        if not evaluation.reportable:
            return
        await self._synthesizer.submit(
            evaluation,
            DedupKey.for_slot(address, notification.slot),
            user_id=record.user_id,
            sink=record.on_alert,
            context=TransactionContext(address=address, log_lines=evaluation.labels),
        )

    async def _handle_logs(self, address: str, notification: LogNotification) -> None:
        now = self._clock()
        record = self._registry.update(
            address,
            lambda w: replace(w, tx_count=w.tx_count + 1, last_activity_at=now),
        )
        if record is None:
            return
        self._profiles.record_transaction(address, notification.logs, now=now)

        transaction = await self._fetch_transaction(address, notification.signature)
        evaluation = evaluate_transaction(
            notification.logs,
            transaction,
            window=record.window(now),
            config=self._config.scorer,
        )
        if not evaluation.reportable:
            logger.debug(
                "monitor_tx_below_threshold",
                wallet_id=short_id(address),
                signature=short_id(notification.signature),
                score=evaluation.score,
            )
            return

        if notification.signature:
            key = DedupKey.for_signature(address, notification.signature)
        else:
            key = DedupKey.for_slot(address, notification.slot)
        context = TransactionContext(
            address=address,
            signature=notification.signature or None,
            log_lines=notification.logs,
            transaction=transaction,
        )
        await self._synthesizer.submit(
            evaluation,
            key,
            user_id=record.user_id,
            sink=record.on_alert,
            signature=notification.signature or None,
            context=context,
        )

    async def _fetch_transaction(self, address: str, signature: str) -> TransactionInfo | None:
        """Bounded fetch; any failure yields None so the logs are still evaluated."""
        if not signature:
            return None
        try:
            return await asyncio.wait_for(
                self._gateway.get_transaction(signature),
                timeout=self._config.tx_fetch_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "monitor_tx_fetch_timeout",
                wallet_id=short_id(address),
                signature=short_id(signature),
                timeout_sec=self._config.tx_fetch_timeout_sec,
            )
        except SentinelError as e:
            logger.warning(
                "monitor_tx_fetch_failed",
                wallet_id=short_id(address),
                signature=short_id(signature),
                error=str(e),
            )
        return None

    async def _handle_reconciled(self, address: str, event: _Reconciled) -> None:
        record = self._registry.get(address)
        if record is None:
            return
        evaluation = evaluate_existence_check(record.had_account, event.account, config=self._config.scorer)
        self._registry.set_fields(
            address,
            had_account=event.account is not None,
            last_lamports=event.account.lamports if event.account is not None else None,
            last_reconciled_at=self._clock(),
        )
        if not evaluation.reportable:
            return
        await self._synthesizer.submit(
            evaluation,
            DedupKey.for_tick(address, event.tick_id),
            user_id=record.user_id,
            sink=record.on_alert,
            context=TransactionContext(address=address, log_lines=evaluation.labels),
        )

    # ------------------------------------------------------------------
    # Reconciliation sweep
    # ------------------------------------------------------------------

    async def run_sweep_once(self) -> SweepReport:
        """
        Visit every registered wallet once: reset expired windows, retry
        missing subscriptions, re-check account existence. One wallet's
        failure never aborts the others.
        """
        self._tick += 1
        tick_id = self._tick
        started = time.monotonic()
        wallets = self._registry.list_all()
        semaphore = asyncio.Semaphore(self._config.sweep_concurrency)

        async def visit(wallet: WatchedWallet) -> bool:
            async with semaphore:
                try:
                    await self._reconcile_wallet(wallet, tick_id)
                    return True
                except Exception as e:
                    logger.warning(
                        "monitor_sweep_wallet_failed",
                        wallet_id=short_id(wallet.address),
                        tick_id=tick_id,
                        error=str(e),
                        exc_info=True,
                    )
                    return False

        results = await asyncio.gather(*(visit(w) for w in wallets))
        pruned = self._synthesizer.prune()
        report = SweepReport(
            tick_id=tick_id,
            visited=len(wallets),
            failed=sum(1 for ok in results if not ok),
            pruned=pruned,
        )
        logger.info(
            "monitor_sweep_done",
            tick_id=tick_id,
            visited=report.visited,
            failed=report.failed,
            pruned=pruned,
            duration_sec=round(time.monotonic() - started, 2),
        )
        return report

    async def _reconcile_wallet(self, wallet: WatchedWallet, tick_id: int) -> None:
        address = wallet.address
        if wallet.state is WalletState.STOPPED:
            return
        now = self._clock()
        if now - wallet.window_started_at >= self._config.observation_window_sec:
            self._enqueue(address, _WindowExpired(at=now))
        if wallet.account_subscription is None or wallet.logs_subscription is None:
            await self._ensure_subscriptions(address)
        account = await self._gateway.get_account_info(address)
        self._enqueue(address, _Reconciled(tick_id=tick_id, account=account))

    async def _sweep_loop(self) -> None:
        interval = self._config.sweep_interval_sec
        logger.info("monitor_sweep_started", interval_sec=interval)
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_sweep_once()
            except Exception as e:
                logger.exception("monitor_sweep_failed", tick_id=self._tick, error=str(e))
        logger.info("monitor_sweep_stopped", ticks=self._tick)

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep (idempotent)."""
        if self._sweep_task is None or self._sweep_task.done():
            self._stop.clear()
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def flush(self) -> None:
        """Wait until every queued event and in-flight enrichment has been processed."""
        for worker in list(self._workers.values()):
            await worker.inbox.join()
        await self._synthesizer.drain()

    async def stop(self) -> None:
        """Stop the sweep, flush in-flight work, release all subscriptions and close clients."""
        self._stop.set()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.flush()
        workers = [w.task for w in self._workers.values()]
        for wallet in self._registry.list_all():
            await self.unwatch(wallet.address)
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        await self._synthesizer.close()
        await self._gateway.close()
        logger.info("monitor_stopped", ticks=self._tick)
