"""
Heuristic risk scorer — pure evaluation of account snapshots and transactions.

No I/O and no shared state: every entry point takes immutable inputs and
returns a ThreatEvaluation. Rule failures never raise; they become a single
low-weight analysis-error finding so the monitoring loop keeps going.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from wallet_sentinel.analysis_engine.models import (
    DEFAULT_CRITICAL_SCORE,
    EvaluationSource,
    Finding,
    FindingKind,
    ThreatEvaluation,
)
from wallet_sentinel.analysis_engine.signals import LOG_SIGNALS, STRUCTURAL_SIGNALS
from wallet_sentinel.sentinel_logging import get_logger
from wallet_sentinel.solana_listener.models import AccountInfo, TransactionInfo

logger = get_logger(__name__)

ANALYSIS_ERROR_FINDING = Finding(FindingKind.ANALYSIS_ERROR, "Analysis error occurred", 10)
ACCOUNT_CLOSED_FINDING = Finding(FindingKind.ACCOUNT_CLOSED, "Account closed or emptied", 80)
ACCOUNT_DRAINED_FINDING = Finding(FindingKind.ACCOUNT_DRAINED, "Account drained of SOL", 80)
ACCOUNT_MISSING_FINDING = Finding(
    FindingKind.ACCOUNT_MISSING, "Account no longer exists - possible drain", 90
)
HIGH_FREQUENCY_FINDING = Finding(
    FindingKind.HIGH_TX_FREQUENCY, "High transaction frequency detected", 35
)


@dataclass
class ScorerConfig:
    """
    Reporting thresholds (exclusive) and frequency-rule parameters.

    min_rate_window_sec clamps the elapsed-time denominator of the
    per-minute rate so a freshly reset window cannot produce an unbounded rate.
    """

    transaction_threshold: int = 40
    account_threshold: int = 50
    reconciliation_threshold: int = 50
    critical_score: int = DEFAULT_CRITICAL_SCORE
    frequency_min_tx: int = 5
    frequency_max_per_minute: float = 2.0
    min_rate_window_sec: float = 60.0


@dataclass(frozen=True)
class ActivityWindow:
    """Rolling transaction counter of one wallet at evaluation time."""

    tx_count: int
    elapsed_sec: float

    def rate_per_minute(self, min_window_sec: float) -> float:
        minutes = max(self.elapsed_sec, min_window_sec, 1e-9) / 60.0
        return self.tx_count / minutes


def evaluate_account_snapshot(
    previous_existence: bool | None,
    current: AccountInfo | None,
    previous_lamports: int | None = None,
    config: ScorerConfig | None = None,
) -> ThreatEvaluation:
    """
    Evaluate an account-change event.

    A vanished account (unless it is known to have never existed) or a
    balance that dropped to zero from non-zero (or unknown) is critical.
    """
    cfg = config or ScorerConfig()
    findings: list[Finding] = []
    if current is None:
        if previous_existence is not False:
            findings.append(ACCOUNT_CLOSED_FINDING)
    elif current.lamports == 0 and (previous_lamports is None or previous_lamports > 0):
        findings.append(ACCOUNT_DRAINED_FINDING)
    return ThreatEvaluation.from_findings(
        EvaluationSource.ACCOUNT_CHANGE,
        findings,
        threshold=cfg.account_threshold,
        critical_score=cfg.critical_score,
    )


def evaluate_existence_check(
    previous_existence: bool | None,
    current: AccountInfo | None,
    config: ScorerConfig | None = None,
) -> ThreatEvaluation:
    """Evaluate a reconciliation-sweep existence check: present before, absent now."""
    cfg = config or ScorerConfig()
    findings: list[Finding] = []
    if previous_existence is True and current is None:
        findings.append(ACCOUNT_MISSING_FINDING)
    return ThreatEvaluation.from_findings(
        EvaluationSource.RECONCILIATION,
        findings,
        threshold=cfg.reconciliation_threshold,
        critical_score=cfg.critical_score,
    )


def _scan_logs(log_lines: Iterable[str]) -> tuple[list[Finding], bool]:
    findings: list[Finding] = []
    failed = False
    for line in log_lines:
        try:
            lowered = line.lower()
        except AttributeError:
            failed = True
            continue
        for signal in LOG_SIGNALS:
            try:
                hit = signal.predicate(line, lowered)
            except Exception as e:
                logger.warning("scorer_rule_failed", rule=signal.kind.value, error=str(e))
                failed = True
                continue
            if hit:
                findings.append(Finding(signal.kind, signal.description, signal.weight))
    return findings, failed


def _scan_structure(transaction: TransactionInfo) -> tuple[list[Finding], bool]:
    findings: list[Finding] = []
    failed = False
    for signal in STRUCTURAL_SIGNALS:
        try:
            n = signal.occurrences(transaction)
        except Exception as e:
            logger.warning("scorer_rule_failed", rule=signal.kind.value, error=str(e))
            failed = True
            continue
        findings.extend(Finding(signal.kind, signal.description, signal.weight) for _ in range(n))
    return findings, failed


def evaluate_transaction(
    log_lines: Iterable[str],
    transaction: TransactionInfo | None,
    window: ActivityWindow | None = None,
    config: ScorerConfig | None = None,
) -> ThreatEvaluation:
    """
    Evaluate one transaction-log event.

    Log rules run on every line regardless of transaction availability.
    Structural rules need transaction metadata; when it is absent they are
    replaced by a single analysis-error finding. The frequency rule uses the
    wallet's rolling window when one is given.

    Args:
        log_lines: Program log lines from the logs notification.
        transaction: Fetched transaction, or None if the fetch failed.
        window: Rolling counter snapshot for the frequency rule.
        config: Thresholds; defaults when None.

    Returns:
        ThreatEvaluation with source TRANSACTION.
    """
    cfg = config or ScorerConfig()
    findings, failed = _scan_logs(log_lines)

    if transaction is None or transaction.meta is None:
        failed = True
    else:
        structural, structural_failed = _scan_structure(transaction)
        findings.extend(structural)
        failed = failed or structural_failed

    if window is not None and window.tx_count > cfg.frequency_min_tx:
        rate = window.rate_per_minute(cfg.min_rate_window_sec)
        if rate > cfg.frequency_max_per_minute:
            findings.append(HIGH_FREQUENCY_FINDING)

    if failed:
        findings.append(ANALYSIS_ERROR_FINDING)

    return ThreatEvaluation.from_findings(
        EvaluationSource.TRANSACTION,
        findings,
        threshold=cfg.transaction_threshold,
        critical_score=cfg.critical_score,
    )
