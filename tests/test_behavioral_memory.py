"""
Tests for wallet behavior profiles: pattern extraction, counters and lifecycle.
"""

from __future__ import annotations

from wallet_sentinel.behavioral_memory import ProfileStore, extract_patterns

VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"


def test_extract_patterns():
    """Log lines map to transfer / approve / authority_change / program_invoke tags."""
    tags = extract_patterns(
        [
            "Program 11111111111111111111111111111111 invoke [1]",
            "Program log: Instruction: Transfer",
            "Program log: Instruction: Approve",
            "Program log: Instruction: SetAuthority",
        ]
    )
    assert tags == frozenset({"program_invoke", "transfer", "approve", "authority_change"})
    assert extract_patterns(["Program log: memo"]) == frozenset()


def test_record_transaction_accumulates():
    """Each transaction bumps the counter, unions tags and moves last_activity."""
    store = ProfileStore()
    first = store.record_transaction(VALID_WALLET, ["transfer"], now=100.0)
    second = store.record_transaction(VALID_WALLET, ["approve"], now=160.0)
    assert first.total_transactions == 1
    assert second.total_transactions == 2
    assert second.first_seen == 100.0
    assert second.last_activity == 160.0
    assert second.patterns == frozenset({"transfer", "approve"})
    # Snapshots are immutable
    assert first.patterns == frozenset({"transfer"})


def test_add_patterns_and_drop():
    """Extra tags are unioned; drop forgets the wallet."""
    store = ProfileStore()
    store.add_patterns(VALID_WALLET, ["approval-detected"], now=5.0)
    profile = store.get(VALID_WALLET)
    assert profile.total_transactions == 0
    assert "approval-detected" in profile.patterns
    store.drop(VALID_WALLET)
    assert store.get(VALID_WALLET) is None
    assert len(store) == 0
    store.drop(VALID_WALLET)


def test_summary_includes_account_age():
    """summary() reports account age in whole days."""
    store = ProfileStore()
    store.record_transaction(VALID_WALLET, [], now=0.0)
    summary = store.summary(VALID_WALLET, now=2.5 * 86_400)
    assert summary["account_age_days"] == 2
    assert summary["total_transactions"] == 1
    assert store.summary("missing") is None
