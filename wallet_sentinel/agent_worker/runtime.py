"""
Long-running monitor process.

Builds the gateway, enrichment adapter and coordinator from settings, watches
the wallets listed in WALLETS (address[:user], comma separated), runs the
reconciliation sweep and logs every alert. Graceful shutdown on SIGINT/SIGTERM:
the sweep stops, in-flight events and enrichment are flushed, subscriptions
are released.

Usage: python -m wallet_sentinel.agent_worker.runtime
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Any

from wallet_sentinel.agent_worker.monitor import MonitorConfig, MonitoringCoordinator
from wallet_sentinel.ai_engine.enrichment import AIEnrichmentAdapter, EnrichmentConfig
from wallet_sentinel.alerts.models import Alert
from wallet_sentinel.behavioral_memory import ProfileStore
from wallet_sentinel.config.env import mask_url
from wallet_sentinel.config.settings import Settings, get_settings
from wallet_sentinel.core.exceptions import InvalidAddress
from wallet_sentinel.sentinel_logging import get_logger, short_id
from wallet_sentinel.solana_listener.gateway import GatewayConfig, SolanaRpcGateway

logger = get_logger(__name__)


def parse_wallet_entries(entries: tuple[str, ...] | list[str]) -> list[tuple[str, str | None]]:
    """Split 'address[:user]' entries; blank users become None."""
    out: list[tuple[str, str | None]] = []
    for raw in entries:
        address, _, user = raw.strip().partition(":")
        if not address.strip():
            continue
        out.append((address.strip(), user.strip() or None))
    return out


def log_alert(alert: Alert) -> None:
    """Default output sink: one structured log line per delivered alert."""
    logger.warning(
        "alert_raised",
        wallet_id=short_id(alert.address),
        user_id=alert.user_id,
        sequence=alert.sequence,
        supersedes=alert.supersedes,
        severity=alert.severity.value,
        score=alert.score,
        labels=list(alert.labels),
        signature=short_id(alert.signature) if alert.signature else None,
        known_threats=[t.name for t in alert.known_threats],
        explanation=alert.narrative.explanation if alert.narrative else None,
        recommendation=alert.narrative.recommendation if alert.narrative else None,
    )


def build_coordinator(settings: Settings) -> MonitoringCoordinator:
    """Wire gateway, profiles, enrichment and coordinator from settings."""
    gateway = SolanaRpcGateway(GatewayConfig.from_settings(settings))
    profiles = ProfileStore()
    enricher = AIEnrichmentAdapter(EnrichmentConfig.from_settings(settings), profiles)
    return MonitoringCoordinator(
        gateway,
        MonitorConfig.from_settings(settings),
        profiles=profiles,
        enricher=enricher,
    )


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def request_shutdown(*args: Any) -> None:
        logger.info("runtime_shutdown_signal")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except (NotImplementedError, RuntimeError):
            # Windows: no loop signal handlers
            try:
                signal.signal(sig, lambda *a: loop.call_soon_threadsafe(stop.set))
            except (AttributeError, ValueError):
                pass


async def run(settings: Settings) -> None:
    """Run the monitor until SIGINT/SIGTERM."""
    coordinator = build_coordinator(settings)
    stop = asyncio.Event()
    _install_signal_handlers(stop)

    logger.info(
        "runtime_started",
        network=settings.solana_network,
        rpc_url=mask_url(settings.solana_rpc_url),
        ws_url=mask_url(settings.solana_ws_url),
        enrichment_enabled=settings.enrichment_enabled,
        sweep_interval_sec=settings.sweep_interval_sec,
    )

    for address, user_id in parse_wallet_entries(settings.wallets):
        try:
            await coordinator.watch(address, user_id=user_id, on_alert=log_alert)
        except InvalidAddress as e:
            logger.error("runtime_invalid_wallet", wallet_id=short_id(address), error=str(e))

    if not coordinator.registry.list_all():
        logger.warning("runtime_no_wallets", hint="set WALLETS=address[:user],...")

    coordinator.start()
    try:
        await stop.wait()
    finally:
        await coordinator.stop()
        logger.info("runtime_stopped", stats=coordinator.stats().to_dict())


def main() -> int:
    """CLI entrypoint: load settings from env and run until stopped."""
    try:
        asyncio.run(run(get_settings()))
        return 0
    except KeyboardInterrupt:
        logger.info("runtime_shutdown_signal")
        return 0
    except Exception as e:
        logger.exception("runtime_fatal", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
