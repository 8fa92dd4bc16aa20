"""
AI engine package — optional enrichment of heuristic findings by an external
reasoning service.
"""

from wallet_sentinel.ai_engine.enrichment import (
    AIEnrichmentAdapter,
    EnrichmentConfig,
    EnrichmentResult,
    TransactionContext,
    build_prompt,
    parse_response,
)

__all__ = [
    "AIEnrichmentAdapter",
    "EnrichmentConfig",
    "EnrichmentResult",
    "TransactionContext",
    "build_prompt",
    "parse_response",
]
