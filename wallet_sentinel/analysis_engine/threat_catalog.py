"""
Known threat signatures matched against an alert's findings and threat labels.

Each signature lists finding kinds. A kind counts as matched when a finding of
that kind is present, or when a free-text threat label (e.g. from an
enrichment verdict) mentions one of the kind's keywords. A signature matches
when at least MIN_MATCHED_KINDS of its kinds are matched; a matched alert is
raised to at least KNOWN_THREAT_MIN_SCORE.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from wallet_sentinel.analysis_engine.models import FindingKind

MIN_MATCHED_KINDS = 2
KNOWN_THREAT_MIN_SCORE = 80

# Lower-cased phrases in free-text threat labels that stand for a finding kind
KIND_KEYWORDS: dict[FindingKind, tuple[str, ...]] = {
    FindingKind.APPROVAL_DETECTED: ("approve", "approval", "allowance"),
    FindingKind.AUTHORITY_TRANSFER: ("authority",),
    FindingKind.LARGE_TRANSFER: ("large transfer", "transfer_all", "transfer all"),
    FindingKind.BALANCE_DROP: ("balance drop", "balance decrease"),
    FindingKind.UNKNOWN_PROGRAM_CALL: ("unknown program", "unknown_program"),
    FindingKind.FLAGGED_PROGRAM_CALL: ("flagged program", "malicious program", "malicious contract"),
    FindingKind.ACCOUNT_DRAINED: ("drained",),
    FindingKind.ACCOUNT_CLOSED: ("account closed",),
    FindingKind.ACCOUNT_MISSING: ("no longer exists",),
    FindingKind.HIGH_TX_FREQUENCY: ("frequency",),
}


@dataclass(frozen=True)
class ThreatSignature:
    name: str
    description: str
    risk_level: str
    kinds: frozenset[FindingKind]


@dataclass(frozen=True)
class KnownThreatMatch:
    """Signature matched by an alert, with the finding kinds that matched it."""

    name: str
    description: str
    risk_level: str
    matched: tuple[FindingKind, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "description": self.description,
            "risk_level": self.risk_level,
            "matched": [k.value for k in self.matched],
        }


THREAT_SIGNATURES: tuple[ThreatSignature, ...] = (
    ThreatSignature(
        name="token_drainer",
        description="Token drainer contract detected",
        risk_level="CRITICAL",
        kinds=frozenset({
            FindingKind.APPROVAL_DETECTED,
            FindingKind.AUTHORITY_TRANSFER,
            FindingKind.LARGE_TRANSFER,
            FindingKind.BALANCE_DROP,
        }),
    ),
    ThreatSignature(
        name="phishing_attack",
        description="Phishing attack pattern",
        risk_level="HIGH",
        kinds=frozenset({
            FindingKind.APPROVAL_DETECTED,
            FindingKind.UNKNOWN_PROGRAM_CALL,
            FindingKind.FLAGGED_PROGRAM_CALL,
        }),
    ),
    ThreatSignature(
        name="account_takeover",
        description="Account takeover activity detected",
        risk_level="CRITICAL",
        kinds=frozenset({
            FindingKind.AUTHORITY_TRANSFER,
            FindingKind.ACCOUNT_DRAINED,
            FindingKind.ACCOUNT_CLOSED,
            FindingKind.ACCOUNT_MISSING,
            FindingKind.HIGH_TX_FREQUENCY,
        }),
    ),
)


def kinds_mentioned(labels: Iterable[str]) -> frozenset[FindingKind]:
    """Finding kinds whose keywords appear in any of the free-text labels."""
    lowered = [str(label).lower() for label in labels]
    return frozenset(
        kind
        for kind, keywords in KIND_KEYWORDS.items()
        if any(word in label for label in lowered for word in keywords)
    )


def match_known_threats(
    kinds: Iterable[FindingKind],
    threat_labels: Iterable[str] = (),
    signatures: Iterable[ThreatSignature] = THREAT_SIGNATURES,
) -> tuple[KnownThreatMatch, ...]:
    """
    Signatures with at least MIN_MATCHED_KINDS of their kinds matched, in catalog order.

    threat_labels are free-text labels that did not come from a finding;
    finding descriptions must not be passed here.
    """
    present = frozenset(kinds) | kinds_mentioned(threat_labels)
    matches = []
    for sig in signatures:
        hit = sig.kinds & present
        if len(hit) >= MIN_MATCHED_KINDS:
            matches.append(
                KnownThreatMatch(
                    name=sig.name,
                    description=sig.description,
                    risk_level=sig.risk_level,
                    matched=tuple(sorted(hit, key=lambda k: k.value)),
                )
            )
    return tuple(matches)
