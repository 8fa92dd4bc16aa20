"""
Alert synthesizer: dedup table, delivery and late enrichment join.

At most one alert is synthesized per dedup key while the key is in the table
(entries expire after a TTL, pruned by the sweep). Evaluations repeating a key
are merged into the stored alert; a merge that adds finding kinds is
redelivered as a superseding alert. Enrichment runs as a background task per
alert and is joined back by key; it triggers a second delivery only when it
changes the tier or adds labels or known-threat matches.

Delivery is one attempt per synthesized alert. Sink failures are logged and
never retried; alerts for wallets no longer watched are dropped.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, replace
from itertools import count
from typing import Awaitable, Callable

from wallet_sentinel.ai_engine.enrichment import (
    AIEnrichmentAdapter,
    EnrichmentResult,
    TransactionContext,
)
from wallet_sentinel.alerts.models import (
    Alert,
    DedupKey,
    apply_known_threats,
    merge_enrichment,
    merge_findings,
)
from wallet_sentinel.analysis_engine.models import ThreatEvaluation, classify
from wallet_sentinel.sentinel_logging import get_logger, short_id

logger = get_logger(__name__)

AlertSink = Callable[[Alert], "Awaitable[None] | None"]

DEFAULT_DEDUP_TTL_SEC = 3600.0


@dataclass
class _Entry:
    alert: Alert
    sink: AlertSink | None
    created: float
    critical_score: int


class AlertSynthesizer:
    """
    Turns reportable evaluations into alerts and hands them to output sinks.

    is_watched, when given, is consulted right before every delivery; alerts
    for wallets it rejects are dropped silently.
    """

    def __init__(
        self,
        enricher: AIEnrichmentAdapter | None = None,
        *,
        is_watched: Callable[[str], bool] | None = None,
        dedup_ttl_sec: float = DEFAULT_DEDUP_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._enricher = enricher
        self._is_watched = is_watched
        self._ttl = dedup_ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[DedupKey, _Entry] = {}
        self._sequence = count(1)
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def set_watch_guard(self, is_watched: Callable[[str], bool]) -> None:
        self._is_watched = is_watched

    async def submit(
        self,
        evaluation: ThreatEvaluation,
        key: DedupKey,
        *,
        user_id: str | None = None,
        sink: AlertSink | None = None,
        signature: str | None = None,
        context: TransactionContext | None = None,
    ) -> Alert | None:
        """
        Synthesize and deliver an alert for a reportable evaluation.

        Returns the delivered alert, or None when the evaluation is below
        threshold or was folded silently into the alert already stored under
        its key. A repeat evaluation that adds finding kinds is redelivered
        as a superseding alert. Enrichment is scheduled in the background
        when context is given.
        """
        if not evaluation.reportable:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                alert, redeliver = merge_findings(entry.alert, evaluation, entry.critical_score)
                if redeliver:
                    alert = replace(alert, sequence=next(self._sequence), supersedes=entry.alert.sequence)
                entry.alert = alert
                sink = entry.sink
            else:
                redeliver = False
                alert = apply_known_threats(
                    Alert(
                        sequence=next(self._sequence),
                        dedup_key=key,
                        address=key.address,
                        user_id=user_id,
                        severity=classify(evaluation.score, evaluation.critical_score),
                        score=evaluation.score,
                        findings=evaluation.findings,
                        labels=evaluation.labels,
                        source=evaluation.source,
                        created_at=now,
                        signature=signature,
                    ),
                    evaluation.critical_score,
                )
                self._entries[key] = _Entry(
                    alert=alert, sink=sink, created=now, critical_score=evaluation.critical_score
                )
        if entry is not None:
            if not redeliver:
                logger.info(
                    "alert_merged",
                    wallet_id=short_id(key.address),
                    trigger=key.trigger,
                    sequence=alert.sequence,
                )
                return None
            logger.info(
                "alert_merged_redelivered",
                wallet_id=short_id(key.address),
                trigger=key.trigger,
                sequence=alert.sequence,
                supersedes=alert.supersedes,
                severity=alert.severity.value,
                score=alert.score,
            )
            await self._deliver(alert, sink)
            return alert

        logger.info(
            "alert_synthesized",
            wallet_id=short_id(alert.address),
            trigger=key.trigger,
            sequence=alert.sequence,
            severity=alert.severity.value,
            score=alert.score,
            known_threats=[t.name for t in alert.known_threats],
        )
        await self._deliver(alert, sink)
        if context is not None and self._enricher is not None:
            self._schedule_enrichment(key, evaluation, context)
        return alert

    def _schedule_enrichment(
        self,
        key: DedupKey,
        evaluation: ThreatEvaluation,
        context: TransactionContext,
    ) -> None:
        task = asyncio.create_task(self._enrich(key, evaluation, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _enrich(
        self,
        key: DedupKey,
        evaluation: ThreatEvaluation,
        context: TransactionContext,
    ) -> None:
        if self._enricher is None:
            return
        if self._is_watched is not None and not self._is_watched(key.address):
            return
        try:
            result = await self._enricher.enrich(evaluation, context)
            if result is None:
                return
            await self.apply_enrichment(key, result)
        except Exception as e:
            logger.exception("alert_enrichment_failed", wallet_id=short_id(key.address), error=str(e))

    async def apply_enrichment(self, key: DedupKey, result: EnrichmentResult) -> Alert | None:
        """
        Join a verdict to the alert stored under key.

        Returns the new alert when it was redelivered, None when the verdict was
        folded in silently or the key is no longer in the table.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            merged, redeliver = merge_enrichment(
                entry.alert,
                result,
                critical_score=entry.critical_score,
            )
            if redeliver:
                merged = replace(merged, sequence=next(self._sequence), supersedes=entry.alert.sequence)
            entry.alert = merged
            sink = entry.sink
        if not redeliver:
            logger.info(
                "alert_enrichment_merged",
                wallet_id=short_id(key.address),
                trigger=key.trigger,
                confidence=result.confidence,
            )
            return None
        logger.info(
            "alert_enrichment_redelivered",
            wallet_id=short_id(key.address),
            trigger=key.trigger,
            sequence=merged.sequence,
            supersedes=merged.supersedes,
            severity=merged.severity.value,
            score=merged.score,
        )
        await self._deliver(merged, sink)
        return merged

    async def _deliver(self, alert: Alert, sink: AlertSink | None) -> None:
        if sink is None:
            return
        if self._is_watched is not None and not self._is_watched(alert.address):
            logger.info("alert_dropped_unwatched", wallet_id=short_id(alert.address), sequence=alert.sequence)
            return
        try:
            result = sink(alert)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(
                "alert_delivery_failed",
                wallet_id=short_id(alert.address),
                sequence=alert.sequence,
                error=str(e),
                exc_info=True,
            )
            return
        logger.info(
            "alert_delivered",
            wallet_id=short_id(alert.address),
            sequence=alert.sequence,
            severity=alert.severity.value,
            score=alert.score,
        )

    def get(self, key: DedupKey) -> Alert | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.alert if entry is not None else None

    def recent_alerts(self, address: str | None = None) -> list[Alert]:
        """Latest alert per key still in the table, oldest first."""
        with self._lock:
            alerts = [
                e.alert for k, e in self._entries.items() if address is None or k.address == address
            ]
        return sorted(alerts, key=lambda a: a.sequence)

    def prune(self, now: float | None = None) -> int:
        """Drop entries older than the TTL; their keys may alert again."""
        cutoff = (self._clock() if now is None else now) - self._ttl
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.created <= cutoff]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("alert_dedup_pruned", removed=len(expired))
        return len(expired)

    def forget_wallet(self, address: str) -> None:
        with self._lock:
            for k in [k for k in self._entries if k.address == address]:
                del self._entries[k]

    async def drain(self) -> None:
        """Wait for in-flight enrichment tasks (including ones scheduled meanwhile)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        if self._enricher is not None:
            await self._enricher.close()
