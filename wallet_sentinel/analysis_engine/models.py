"""
Finding and evaluation models for the heuristic risk scorer.

A Finding is one detected signal with a fixed weight. A ThreatEvaluation is
the scored result for one trigger event: findings in detection order, score
(sum of weights clamped to [0, 100]) and the reporting threshold that applies
to its source.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

MAX_SCORE = 100
DEFAULT_CRITICAL_SCORE = 70


class FindingKind(str, Enum):
    ACCOUNT_CLOSED = "account-closed"
    ACCOUNT_DRAINED = "account-drained"
    ACCOUNT_MISSING = "account-missing"
    AUTHORITY_TRANSFER = "authority-transfer"
    UNKNOWN_PROGRAM_CALL = "unknown-program-call"
    LARGE_TRANSFER = "large-transfer"
    FLAGGED_PROGRAM_CALL = "flagged-program-call"
    APPROVAL_DETECTED = "approval-detected"
    TX_FAILED = "tx-failed"
    HIGH_ACCOUNT_FANOUT = "high-account-fanout"
    BALANCE_DROP = "balance-drop"
    HIGH_TX_FREQUENCY = "high-tx-frequency"
    ANALYSIS_ERROR = "analysis-error"


class Severity(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class EvaluationSource(str, Enum):
    ACCOUNT_CHANGE = "account_change"
    TRANSACTION = "transaction"
    RECONCILIATION = "reconciliation"


@dataclass(frozen=True)
class Finding:
    """Single detected signal; immutable once created."""

    kind: FindingKind
    description: str
    weight: int

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "description": self.description, "weight": self.weight}


def clamp_score(value: float) -> int:
    return int(max(0, min(MAX_SCORE, value)))


def classify(score: int, critical_score: int = DEFAULT_CRITICAL_SCORE) -> Severity:
    """Severity tier for a reportable score."""
    return Severity.CRITICAL if score >= critical_score else Severity.WARNING


@dataclass(frozen=True)
class ThreatEvaluation:
    """
    Scored result of analyzing one event.

    threshold is exclusive: the evaluation is reportable only when
    score > threshold. Sub-threshold evaluations never become alerts.
    """

    source: EvaluationSource
    findings: tuple[Finding, ...]
    score: int
    threshold: int
    critical_score: int = DEFAULT_CRITICAL_SCORE

    @classmethod
    def from_findings(
        cls,
        source: EvaluationSource,
        findings: Iterable[Finding],
        threshold: int,
        critical_score: int = DEFAULT_CRITICAL_SCORE,
    ) -> "ThreatEvaluation":
        items = tuple(findings)
        return cls(
            source=source,
            findings=items,
            score=clamp_score(sum(f.weight for f in items)),
            threshold=threshold,
            critical_score=critical_score,
        )

    @property
    def reportable(self) -> bool:
        return self.score > self.threshold

    @property
    def severity(self) -> Severity | None:
        """Tier of a reportable evaluation; None below the reporting threshold."""
        if not self.reportable:
            return None
        return classify(self.score, self.critical_score)

    @property
    def kinds(self) -> frozenset[FindingKind]:
        return frozenset(f.kind for f in self.findings)

    @property
    def labels(self) -> tuple[str, ...]:
        """Finding descriptions, first occurrence order, without duplicates."""
        return tuple(dict.fromkeys(f.description for f in self.findings))

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "findings": [f.to_dict() for f in self.findings],
            "score": self.score,
            "threshold": self.threshold,
            "severity": self.severity.value if self.severity else None,
        }
