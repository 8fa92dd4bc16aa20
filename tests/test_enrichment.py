"""
Tests for the AI enrichment adapter against httpx.MockTransport: request
shape, response parsing, failure degradation and the profile side effect.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from wallet_sentinel.ai_engine.enrichment import (
    AIEnrichmentAdapter,
    EnrichmentConfig,
    TransactionContext,
    build_prompt,
    parse_response,
)
from wallet_sentinel.analysis_engine.models import (
    EvaluationSource,
    Finding,
    FindingKind,
    ThreatEvaluation,
)
from wallet_sentinel.behavioral_memory import ProfileStore
from wallet_sentinel.core.exceptions import EnrichmentUnavailable

VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"

VERDICT = {
    "threatLevel": "CRITICAL",
    "confidence": 92,
    "threats": ["Drainer contract", "Drainer contract", "Approval abuse"],
    "recommendation": "Revoke approvals",
    "explanation": "Approval to unknown program",
}

EVALUATION = ThreatEvaluation.from_findings(
    EvaluationSource.TRANSACTION,
    [Finding(FindingKind.APPROVAL_DETECTED, "Token approval detected - potential drainer", 50)],
    threshold=40,
)


def _completion(content: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def _adapter(handler, profiles=None, api_key="sk-test", timeout_sec=1.0):
    config = EnrichmentConfig(api_key=api_key, timeout_sec=timeout_sec, rate_per_sec=0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = profiles if profiles is not None else ProfileStore()
    return AIEnrichmentAdapter(config, store, http_client=client), client


def _context(make_tx=None, lines=("Program log: Instruction: Approve",)):
    return TransactionContext(
        address=VALID_WALLET,
        signature="sig-1",
        log_lines=tuple(lines),
        transaction=make_tx() if make_tx else None,
    )


def test_parse_response_extracts_json_from_prose():
    """JSON embedded in surrounding text is extracted and validated."""
    result = parse_response("Here is my assessment:\n" + json.dumps(VERDICT) + "\nStay safe.")
    assert result.threat_level == "CRITICAL"
    assert result.confidence == 92
    assert result.threats == ("Drainer contract", "Approval abuse")
    assert result.recommendation == "Revoke approvals"


def test_parse_response_clamps_confidence():
    """Confidence outside 0-100 is clamped."""
    result = parse_response(json.dumps({**VERDICT, "confidence": 250}))
    assert result.confidence == 100


@pytest.mark.parametrize(
    "content",
    [
        "no json here",
        "{not json}",
        json.dumps({**VERDICT, "threatLevel": "SEVERE"}),
        json.dumps({**VERDICT, "confidence": "high"}),
        json.dumps({**VERDICT, "threats": "one"}),
    ],
)
def test_parse_response_rejects_malformed(content):
    """Missing or invalid fields raise EnrichmentUnavailable."""
    with pytest.raises(EnrichmentUnavailable):
        parse_response(content)


def test_enrich_success_sends_expected_request(make_tx):
    """Successful call posts a chat completion and returns the parsed verdict."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return _completion(json.dumps(VERDICT))

    async def run():
        adapter, client = _adapter(handler)
        async with client:
            return await adapter.enrich(EVALUATION, _context(make_tx))

    result = asyncio.run(run())
    assert result is not None and result.confidence == 92
    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    body = seen["body"]
    assert body["model"] == "gpt-4"
    assert body["max_tokens"] == 500
    assert body["temperature"] == 0.1
    assert body["messages"][0]["role"] == "system"
    assert "Risk Score: 50/100" in body["messages"][1]["content"]


@pytest.mark.parametrize("status", [401, 429, 500])
def test_enrich_non_2xx_returns_none(status):
    """Non-2xx responses degrade to absent enrichment."""

    async def run():
        adapter, client = _adapter(lambda request: _completion(json.dumps(VERDICT), status=status))
        async with client:
            return await adapter.enrich(EVALUATION, _context())

    assert asyncio.run(run()) is None


def test_enrich_malformed_body_returns_none():
    """Bodies without choices or with unusable content degrade to None."""

    async def run():
        bad_shape, c1 = _adapter(lambda request: httpx.Response(200, json={"error": "x"}))
        bad_text, c2 = _adapter(lambda request: _completion("I cannot help with that"))
        async with c1, c2:
            return (
                await bad_shape.enrich(EVALUATION, _context()),
                await bad_text.enrich(EVALUATION, _context()),
            )

    assert asyncio.run(run()) == (None, None)


def test_enrich_transport_error_returns_none():
    """Transport failures degrade to None."""

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        adapter, client = _adapter(handler)
        async with client:
            return await adapter.enrich(EVALUATION, _context())

    assert asyncio.run(run()) is None


def test_enrich_timeout_returns_none():
    """A response slower than the bounded timeout degrades to None."""

    async def slow(request):
        await asyncio.sleep(1.0)
        return _completion(json.dumps(VERDICT))

    async def run():
        adapter, client = _adapter(slow, timeout_sec=0.05)
        async with client:
            return await adapter.enrich(EVALUATION, _context())

    assert asyncio.run(run()) is None


def test_disabled_adapter_skips_call_but_updates_profile():
    """Without an API key nothing is sent, yet finding kinds still reach the profile."""
    calls = []
    profiles = ProfileStore()

    def handler(request):
        calls.append(request)
        return _completion(json.dumps(VERDICT))

    async def run():
        adapter, client = _adapter(handler, profiles=profiles, api_key=None)
        async with client:
            assert not adapter.enabled
            return await adapter.enrich(EVALUATION, _context())

    assert asyncio.run(run()) is None
    assert calls == []
    assert "approval-detected" in profiles.get(VALID_WALLET).patterns


def test_failed_call_still_updates_profile():
    """Profile tags are accumulated even when the remote call fails."""
    profiles = ProfileStore()

    async def run():
        adapter, client = _adapter(lambda r: httpx.Response(503), profiles=profiles)
        async with client:
            return await adapter.enrich(EVALUATION, _context())

    asyncio.run(run())
    assert profiles.get(VALID_WALLET).patterns == frozenset({"approval-detected"})


def test_build_prompt_contents(make_tx):
    """Prompt carries score, labels, at most 10 log lines, status, fee and balance changes."""
    lines = [f"Program log: line {i}" for i in range(15)]
    tx = make_tx(err={"InstructionError": [0, "Custom"]}, fee=7000, pre_balances=(100, 0), post_balances=(40, 60))
    ctx = TransactionContext(address=VALID_WALLET, signature="s", log_lines=tuple(lines), transaction=tx)
    profiles = ProfileStore()
    profile = profiles.record_transaction(VALID_WALLET, lines, now=0.0)
    prompt = build_prompt(EVALUATION, ctx, profile, now=3 * 86_400.0)
    assert "Risk Score: 50/100" in prompt
    assert "Threats: Token approval detected - potential drainer" in prompt
    assert "10. Program log: line 9" in prompt
    assert "line 10" not in prompt
    assert "Status: Failed" in prompt
    assert "Fee: 7000 lamports" in prompt
    assert "Balance Changes: -60, 60 lamports" in prompt
    assert "Account Age: 3 days" in prompt


def test_build_prompt_without_transaction_uses_signals():
    """Account and sweep alerts are described as wallet activity with their labels listed."""
    evaluation = ThreatEvaluation.from_findings(
        EvaluationSource.ACCOUNT_CHANGE,
        [Finding(FindingKind.ACCOUNT_CLOSED, "Account closed or emptied", 80)],
        threshold=50,
    )
    ctx = TransactionContext(address=VALID_WALLET, log_lines=evaluation.labels)
    prompt = build_prompt(evaluation, ctx)
    assert prompt.startswith("Analyze this Solana wallet activity")
    assert "Observed Signals:" in prompt
    assert "1. Account closed or emptied" in prompt
    assert "Transaction Metadata" not in prompt
