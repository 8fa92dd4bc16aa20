"""
AI enrichment adapter — optional, best-effort reasoning over a finding.

Posts a chat-completion request (OpenAI-compatible API, httpx) describing the
heuristic evaluation, a bounded log excerpt and a transaction digest, and
parses a JSON verdict: threatLevel, confidence, threats, recommendation,
explanation. Timeouts, non-2xx responses and malformed bodies all degrade to
an absent result; the base alert never waits on this path.

Every invocation also folds the evaluation's finding kinds into the wallet's
behavior profile, whether or not the remote call succeeds.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from wallet_sentinel.analysis_engine.models import ThreatEvaluation
from wallet_sentinel.behavioral_memory import ProfileStore, WalletBehaviorProfile
from wallet_sentinel.config.settings import Settings
from wallet_sentinel.core.exceptions import EnrichmentUnavailable
from wallet_sentinel.sentinel_logging import get_logger, short_id
from wallet_sentinel.solana_listener.models import TransactionInfo
from wallet_sentinel.utils.rate_limit import RateLimiter

logger = get_logger(__name__)

THREAT_LEVELS = ("CRITICAL", "HIGH", "MEDIUM", "LOW")
MAX_PROMPT_LOG_LINES = 10
MAX_LOG_LINE_CHARS = 300
MAX_TOKENS = 500
TEMPERATURE = 0.1

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are an expert Solana blockchain security analyst. Analyze transactions for threats like:
- Token drainers and phishing attacks
- Rug pulls and exit scams
- Malicious contract interactions
- Unusual transfer patterns

Respond with JSON containing:
{
  "threatLevel": "CRITICAL|HIGH|MEDIUM|LOW",
  "confidence": 0-100,
  "threats": ["threat1", "threat2"],
  "recommendation": "action to take",
  "explanation": "brief explanation"
}"""


@dataclass(frozen=True)
class TransactionContext:
    """What the adapter may show the reasoning service about one event."""

    address: str
    signature: str | None = None
    log_lines: tuple[str, ...] = ()
    transaction: TransactionInfo | None = None


@dataclass(frozen=True)
class EnrichmentResult:
    threat_level: str
    confidence: int
    threats: tuple[str, ...] = field(default_factory=tuple)
    recommendation: str = ""
    explanation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "threatLevel": self.threat_level,
            "confidence": self.confidence,
            "threats": list(self.threats),
            "recommendation": self.recommendation,
            "explanation": self.explanation,
        }


@dataclass
class EnrichmentConfig:
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4"
    timeout_sec: float = 10.0
    max_concurrency: int = 4
    rate_per_sec: float = 2.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnrichmentConfig":
        return cls(
            api_key=settings.enrichment_api_key,
            base_url=settings.enrichment_base_url,
            model=settings.enrichment_model,
            timeout_sec=settings.enrichment_timeout_sec,
            max_concurrency=settings.enrichment_max_concurrency,
            rate_per_sec=settings.enrichment_rate_per_sec,
        )


def build_prompt(
    evaluation: ThreatEvaluation,
    context: TransactionContext,
    profile: WalletBehaviorProfile | None = None,
    now: float | None = None,
) -> str:
    """
    User prompt: initial score and labels, first log lines, transaction digest, profile.

    Alerts without a transaction (account changes, sweep findings) pass their
    finding labels as log lines.
    """
    subject = "transaction" if context.signature or context.transaction is not None else "wallet activity"
    parts = [f"Analyze this Solana {subject} for security threats:", ""]
    parts.append("Initial Analysis:")
    parts.append(f"- Risk Score: {evaluation.score}/100")
    parts.append(f"- Threats: {', '.join(evaluation.labels)}")
    parts.append("")

    if context.log_lines:
        parts.append("Transaction Logs:" if subject == "transaction" else "Observed Signals:")
        for i, line in enumerate(context.log_lines[:MAX_PROMPT_LOG_LINES], start=1):
            parts.append(f"{i}. {line[:MAX_LOG_LINE_CHARS]}")
        parts.append("")

    tx = context.transaction
    if tx is not None and tx.meta is not None:
        parts.append("Transaction Metadata:")
        parts.append(f"- Status: {'Failed' if tx.meta.failed else 'Success'}")
        parts.append(f"- Fee: {tx.meta.fee} lamports")
        if tx.meta.post_balances:
            changes = ", ".join(str(c) for c in tx.meta.balance_changes())
            parts.append(f"- Balance Changes: {changes} lamports")
        parts.append("")

    if profile is not None:
        ts = time.time() if now is None else now
        parts.append("Wallet Profile:")
        parts.append(f"- Total Transactions: {profile.total_transactions}")
        parts.append(f"- Account Age: {profile.account_age_days(ts)} days")
        parts.append(f"- Patterns: {', '.join(sorted(profile.patterns))}")
        parts.append("")

    parts.append("Provide your security assessment:")
    return "\n".join(parts)


def parse_response(content: str) -> EnrichmentResult:
    """
    Extract and validate the JSON verdict from a model reply.

    Raises EnrichmentUnavailable when no JSON object is present or a field
    is missing or of the wrong type.
    """
    m = _JSON_OBJECT_RE.search(content or "")
    if m is None:
        raise EnrichmentUnavailable("no JSON object in response")
    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise EnrichmentUnavailable(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise EnrichmentUnavailable("response JSON is not an object")

    level = str(data.get("threatLevel") or "").strip().upper()
    if level not in THREAT_LEVELS:
        raise EnrichmentUnavailable(f"unknown threatLevel {data.get('threatLevel')!r}")
    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise EnrichmentUnavailable(f"confidence is not a number: {confidence!r}")
    threats = data.get("threats") or []
    if not isinstance(threats, list):
        raise EnrichmentUnavailable("threats is not a list")

    return EnrichmentResult(
        threat_level=level,
        confidence=int(max(0, min(100, round(confidence)))),
        threats=tuple(dict.fromkeys(str(t).strip() for t in threats if str(t).strip())),
        recommendation=str(data.get("recommendation") or ""),
        explanation=str(data.get("explanation") or ""),
    )


class AIEnrichmentAdapter:
    """
    Rate-limited, concurrency-bounded client for the reasoning service.

    Disabled (always returns None) when no API key is configured.
    """

    def __init__(
        self,
        config: EnrichmentConfig,
        profiles: ProfileStore,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._profiles = profiles
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout_sec))
        self._rate_limiter = RateLimiter(config.rate_per_sec)
        self._semaphore = asyncio.Semaphore(max(1, config.max_concurrency))

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def enrich(
        self,
        evaluation: ThreatEvaluation,
        context: TransactionContext,
    ) -> EnrichmentResult | None:
        """
        Ask the reasoning service for a verdict on one evaluation.

        Returns None when disabled or on any failure (timeout, HTTP error,
        malformed body). Never raises.
        """
        profile = self._profiles.add_patterns(context.address, (k.value for k in evaluation.kinds))
        if not self.enabled:
            return None
        prompt = build_prompt(evaluation, context, profile)
        try:
            async with self._semaphore:
                await self._rate_limiter.acquire()
                result = await asyncio.wait_for(self._request(prompt), timeout=self._config.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                "enrichment_timeout",
                wallet_id=short_id(context.address),
                signature=short_id(context.signature),
                timeout_sec=self._config.timeout_sec,
            )
            return None
        except EnrichmentUnavailable as e:
            logger.warning(
                "enrichment_unavailable",
                wallet_id=short_id(context.address),
                signature=short_id(context.signature),
                error=str(e),
            )
            return None
        logger.info(
            "enrichment_received",
            wallet_id=short_id(context.address),
            signature=short_id(context.signature),
            threat_level=result.threat_level,
            confidence=result.confidence,
        )
        return result

    async def _request(self, prompt: str) -> EnrichmentResult:
        body = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        try:
            resp = await self._http.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise EnrichmentUnavailable(f"{type(e).__name__}: {e}") from e
        if resp.status_code < 200 or resp.status_code >= 300:
            raise EnrichmentUnavailable(f"HTTP {resp.status_code}")
        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EnrichmentUnavailable(f"unexpected response shape: {e}") from e
        if not isinstance(content, str):
            raise EnrichmentUnavailable("message content is not a string")
        return parse_response(content)
