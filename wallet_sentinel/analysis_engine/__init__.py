"""
Analysis engine package — heuristic threat scoring for watched wallets.

Turns account snapshots and transaction logs into weighted findings and a
clamped 0-100 score, and matches findings against known threat signatures.
"""

from wallet_sentinel.analysis_engine.models import (
    EvaluationSource,
    Finding,
    FindingKind,
    Severity,
    ThreatEvaluation,
    classify,
    clamp_score,
)
from wallet_sentinel.analysis_engine.scorer import (
    ActivityWindow,
    ScorerConfig,
    evaluate_account_snapshot,
    evaluate_existence_check,
    evaluate_transaction,
)
from wallet_sentinel.analysis_engine.threat_catalog import (
    KNOWN_THREAT_MIN_SCORE,
    KnownThreatMatch,
    match_known_threats,
)

__all__ = [
    "ActivityWindow",
    "EvaluationSource",
    "Finding",
    "FindingKind",
    "KNOWN_THREAT_MIN_SCORE",
    "KnownThreatMatch",
    "ScorerConfig",
    "Severity",
    "ThreatEvaluation",
    "classify",
    "clamp_score",
    "evaluate_account_snapshot",
    "evaluate_existence_check",
    "evaluate_transaction",
    "match_known_threats",
]
