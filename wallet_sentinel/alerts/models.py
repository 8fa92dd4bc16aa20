"""
Alert models and the pure merge rules.

An Alert is immutable. A repeat evaluation for the same key or a late
enrichment verdict either produces a new Alert (new sequence, supersedes the
previous one) or is folded silently into the stored record. Both re-match the
known threat catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from wallet_sentinel.ai_engine.enrichment import EnrichmentResult
from wallet_sentinel.analysis_engine.models import (
    DEFAULT_CRITICAL_SCORE,
    EvaluationSource,
    Finding,
    FindingKind,
    Severity,
    ThreatEvaluation,
    clamp_score,
    classify,
)
from wallet_sentinel.analysis_engine.threat_catalog import (
    KNOWN_THREAT_MIN_SCORE,
    KnownThreatMatch,
    match_known_threats,
)

ENRICHMENT_MIN_CONFIDENCE = 80
# Floor applied to the score when a confident opinion is at this level
ENRICHMENT_SCORE_FLOORS = {"CRITICAL": 90, "HIGH": 75}


@dataclass(frozen=True)
class DedupKey:
    """
    (address, trigger) identity of one alert.

    trigger is "sig:<signature>" for transactions, "tick:<n>" for sweep
    findings and "slot:<n>" for account-change notifications.
    """

    address: str
    trigger: str

    @classmethod
    def for_signature(cls, address: str, signature: str) -> "DedupKey":
        return cls(address, f"sig:{signature}")

    @classmethod
    def for_tick(cls, address: str, tick_id: int) -> "DedupKey":
        return cls(address, f"tick:{tick_id}")

    @classmethod
    def for_slot(cls, address: str, slot: int | None) -> "DedupKey":
        return cls(address, f"slot:{slot if slot is not None else 'unknown'}")

    def __str__(self) -> str:
        return f"{self.address}:{self.trigger}"


@dataclass(frozen=True)
class EnrichmentNarrative:
    """Supplementary text attached from the reasoning service."""

    threat_level: str
    confidence: int
    explanation: str = ""
    recommendation: str = ""

    @classmethod
    def from_result(cls, result: EnrichmentResult) -> "EnrichmentNarrative":
        return cls(
            threat_level=result.threat_level,
            confidence=result.confidence,
            explanation=result.explanation,
            recommendation=result.recommendation,
        )


@dataclass(frozen=True)
class Alert:
    """Outward-facing, immutable alert record handed to the output sink."""

    sequence: int
    dedup_key: DedupKey
    address: str
    user_id: str | None
    severity: Severity
    score: int
    findings: tuple[Finding, ...]
    labels: tuple[str, ...]
    source: EvaluationSource
    created_at: float
    signature: str | None = None
    narrative: EnrichmentNarrative | None = None
    known_threats: tuple[KnownThreatMatch, ...] = field(default_factory=tuple)
    supersedes: int | None = None

    @property
    def kinds(self) -> frozenset[FindingKind]:
        return frozenset(f.kind for f in self.findings)

    @property
    def enriched(self) -> bool:
        return self.narrative is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "sequence": self.sequence,
            "dedup_key": str(self.dedup_key),
            "address": self.address,
            "user_id": self.user_id,
            "severity": self.severity.value,
            "score": self.score,
            "findings": [f.to_dict() for f in self.findings],
            "labels": list(self.labels),
            "source": self.source.value,
            "signature": self.signature,
            "created_at": self.created_at,
            "known_threats": [t.to_dict() for t in self.known_threats],
            "supersedes": self.supersedes,
        }
        if self.narrative is not None:
            out["narrative"] = {
                "threat_level": self.narrative.threat_level,
                "confidence": self.narrative.confidence,
                "explanation": self.narrative.explanation,
                "recommendation": self.narrative.recommendation,
            }
        return out


def enriched_score(score: int, result: EnrichmentResult) -> int:
    """Score after a verdict: only raised, and only for confidence above the minimum."""
    if result.confidence <= ENRICHMENT_MIN_CONFIDENCE:
        return score
    floor = ENRICHMENT_SCORE_FLOORS.get(result.threat_level)
    if floor is None:
        return score
    return max(score, floor)


def apply_known_threats(alert: Alert, critical_score: int = DEFAULT_CRITICAL_SCORE) -> Alert:
    """
    Re-match the threat catalog against the alert's findings and its
    non-finding labels (enrichment threats); a match floors the score.
    """
    descriptions = {f.description for f in alert.findings}
    extra_labels = [label for label in alert.labels if label not in descriptions]
    known = match_known_threats(alert.kinds, extra_labels)
    score = max(alert.score, KNOWN_THREAT_MIN_SCORE) if known else alert.score
    return replace(
        alert,
        known_threats=known,
        score=score,
        severity=classify(score, critical_score),
    )


def _known_names(alert: Alert) -> frozenset[str]:
    return frozenset(t.name for t in alert.known_threats)


def merge_findings(
    alert: Alert,
    evaluation: ThreatEvaluation,
    critical_score: int = DEFAULT_CRITICAL_SCORE,
) -> tuple[Alert, bool]:
    """
    Fold a later evaluation for the same dedup key into an alert.

    Findings of unseen kinds are appended and the score becomes the larger of
    the current score and the merged weight sum. Returns (merged alert,
    redeliver); redeliver is True when unseen kinds were added or the tier
    changed.
    """
    present = alert.kinds
    extra = tuple(f for f in evaluation.findings if f.kind not in present)
    if not extra:
        return alert, False
    findings = alert.findings + extra
    labels = alert.labels + tuple(
        d for d in dict.fromkeys(f.description for f in extra) if d not in alert.labels
    )
    score = clamp_score(max(alert.score, sum(f.weight for f in findings)))
    merged = apply_known_threats(
        replace(alert, findings=findings, labels=labels, score=score),
        critical_score,
    )
    return merged, True


def merge_enrichment(
    alert: Alert,
    result: EnrichmentResult,
    critical_score: int = DEFAULT_CRITICAL_SCORE,
) -> tuple[Alert, bool]:
    """
    Apply a verdict to an alert.

    Returns (merged alert, redeliver). redeliver is True when the tier changed,
    previously unseen labels were added or a new known threat matched; the
    caller then assigns a new sequence. Otherwise the merged alert keeps the
    original sequence.
    """
    known = set(alert.labels)
    added = tuple(t for t in result.threats if t not in known)
    merged = apply_known_threats(
        replace(
            alert,
            score=enriched_score(alert.score, result),
            labels=alert.labels + added,
            narrative=EnrichmentNarrative.from_result(result),
        ),
        critical_score,
    )
    redeliver = (
        merged.severity != alert.severity
        or bool(added)
        or _known_names(merged) != _known_names(alert)
    )
    return merged, redeliver
