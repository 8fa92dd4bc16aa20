"""
Alerts package — alert records, dedup keys and the alert synthesizer.
"""

from wallet_sentinel.alerts.engine import AlertSink, AlertSynthesizer
from wallet_sentinel.alerts.models import (
    Alert,
    DedupKey,
    EnrichmentNarrative,
    enriched_score,
    merge_enrichment,
)

__all__ = [
    "Alert",
    "AlertSink",
    "AlertSynthesizer",
    "DedupKey",
    "EnrichmentNarrative",
    "enriched_score",
    "merge_enrichment",
]
