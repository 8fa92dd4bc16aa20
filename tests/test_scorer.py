"""
Tests for the heuristic risk scorer: account snapshots, transaction log
signals, structural checks, the frequency rule and error handling.
"""

from __future__ import annotations

from unittest import mock

from wallet_sentinel.analysis_engine import scorer as scorer_module
from wallet_sentinel.analysis_engine.models import (
    EvaluationSource,
    FindingKind,
    Severity,
)
from wallet_sentinel.analysis_engine.scorer import (
    ActivityWindow,
    ScorerConfig,
    evaluate_account_snapshot,
    evaluate_existence_check,
    evaluate_transaction,
)
from wallet_sentinel.analysis_engine.signals import LogSignal
from wallet_sentinel.analysis_engine.threat_catalog import kinds_mentioned, match_known_threats
from wallet_sentinel.solana_listener.models import AccountInfo

CLEAN_LOGS = [
    "Program 11111111111111111111111111111111 invoke [1]",
    "Program 11111111111111111111111111111111 success",
]


def _weights(evaluation, kind):
    return [f.weight for f in evaluation.findings if f.kind is kind]


def test_funded_account_drained_to_zero_is_critical():
    """Previously funded account now at zero lamports scores >= 80, CRITICAL."""
    ev = evaluate_account_snapshot(True, AccountInfo(lamports=0), previous_lamports=5_000_000_000)
    assert ev.source is EvaluationSource.ACCOUNT_CHANGE
    assert ev.score >= 80
    assert ev.reportable
    assert ev.severity is Severity.CRITICAL
    assert "Account drained of SOL" in ev.labels


def test_closed_account_is_critical():
    """An existing account that disappears is reported as closed or emptied."""
    ev = evaluate_account_snapshot(True, None, previous_lamports=5_000_000_000)
    assert ev.score >= 80
    assert ev.severity is Severity.CRITICAL
    assert ev.labels == ("Account closed or emptied",)


def test_account_unknown_history_vanishing_still_reported():
    """Unknown prior existence is treated as existing."""
    ev = evaluate_account_snapshot(None, None)
    assert ev.reportable


def test_account_that_never_existed_is_not_reported():
    """No finding when the account was already known to be absent."""
    ev = evaluate_account_snapshot(False, None)
    assert ev.score == 0
    assert not ev.reportable
    assert ev.severity is None


def test_zero_balance_that_was_already_zero_is_not_reported():
    """Zero-balance rule needs a previous non-zero balance."""
    ev = evaluate_account_snapshot(True, AccountInfo(lamports=0), previous_lamports=0)
    assert ev.findings == ()
    funded = evaluate_account_snapshot(True, AccountInfo(lamports=10))
    assert funded.findings == ()


def test_authority_transfer_weight_and_warning_floor(make_tx):
    """transfer + authority yields a 60-point finding and a reportable score."""
    logs = ["Program log: Instruction: Transfer authority to new owner"]
    clean = evaluate_transaction(logs, make_tx())
    assert _weights(clean, FindingKind.AUTHORITY_TRANSFER) == [60]
    assert clean.score >= 60
    assert clean.reportable
    no_meta = evaluate_transaction(logs, None)
    assert no_meta.score > 60


def test_clean_transaction_scores_zero(make_tx):
    """No recognized patterns and no structural anomaly: score 0, never reportable."""
    ev = evaluate_transaction(CLEAN_LOGS, make_tx())
    assert ev.score == 0
    assert ev.findings == ()
    assert not ev.reportable
    assert ev.severity is None


def test_drainer_scenario_is_critical(make_tx):
    """Unknown drainer program plus approval language scores >= 80, CRITICAL."""
    logs = ["Program invoke: SomeDrainerProgram", "Instruction: approve allowance 500000"]
    ev = evaluate_transaction(logs, make_tx())
    assert ev.score >= 80
    assert ev.severity is Severity.CRITICAL
    assert {
        FindingKind.UNKNOWN_PROGRAM_CALL,
        FindingKind.FLAGGED_PROGRAM_CALL,
        FindingKind.APPROVAL_DETECTED,
    } <= ev.kinds


def test_known_programs_are_not_unknown(make_tx):
    """Invocations of allow-listed programs (by name or id) add nothing."""
    logs = [
        "Program TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA invoke [1]",
        "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 invoke [1]",
        "Invoke Raydium swap",
    ]
    ev = evaluate_transaction(logs, make_tx())
    assert FindingKind.UNKNOWN_PROGRAM_CALL not in ev.kinds


def test_large_transfer_threshold(make_tx):
    """Only transfer amounts above 1,000,000 count as large."""
    big = evaluate_transaction(["Program log: transfer 5000000 lamports"], make_tx())
    small = evaluate_transaction(["Program log: transfer 1000000 lamports"], make_tx())
    assert _weights(big, FindingKind.LARGE_TRANSFER) == [40]
    assert FindingKind.LARGE_TRANSFER not in small.kinds


def test_signals_fire_per_line(make_tx):
    """Each matching line contributes its own finding."""
    logs = ["approve delegate", "approve delegate again"]
    ev = evaluate_transaction(logs, make_tx())
    assert _weights(ev, FindingKind.APPROVAL_DETECTED) == [50, 50]
    assert ev.score == 100


def test_structural_checks(make_tx):
    """Failed tx, account fan-out and every large balance drop are counted."""
    tx = make_tx(
        err={"InstructionError": [0, "Custom"]},
        account_keys=11,
        pre_balances=(5_000_000_000, 3_000_000, 10),
        post_balances=(1_000_000_000, 1_000_000, 10),
    )
    ev = evaluate_transaction([], tx)
    assert _weights(ev, FindingKind.TX_FAILED) == [20]
    assert _weights(ev, FindingKind.HIGH_ACCOUNT_FANOUT) == [25]
    assert _weights(ev, FindingKind.BALANCE_DROP) == [30, 30]
    assert ev.score == 100


def test_missing_meta_adds_single_analysis_error(make_tx):
    """Absent metadata never raises: logs still scored plus one +10 analysis error."""
    ev = evaluate_transaction(["approve token"], make_tx(with_meta=False))
    assert _weights(ev, FindingKind.ANALYSIS_ERROR) == [10]
    assert ev.score == 60
    none_tx = evaluate_transaction([], None)
    assert none_tx.score == 10
    assert not none_tx.reportable


def test_rule_exception_becomes_analysis_error(make_tx):
    """A failing rule is converted into an analysis-error finding."""

    def boom(line, lowered):
        raise RuntimeError("bad rule")

    broken = (LogSignal(FindingKind.APPROVAL_DETECTED, "broken", 50, boom),)
    with mock.patch.object(scorer_module, "LOG_SIGNALS", broken):
        ev = evaluate_transaction(["anything"], make_tx())
    assert [f.kind for f in ev.findings] == [FindingKind.ANALYSIS_ERROR]
    assert ev.score == 10


def test_high_frequency_rule(make_tx):
    """More than 5 txs at over 2/min adds 35."""
    tx = make_tx()
    busy = evaluate_transaction([], tx, window=ActivityWindow(tx_count=6, elapsed_sec=60))
    assert _weights(busy, FindingKind.HIGH_TX_FREQUENCY) == [35]
    slow = evaluate_transaction([], tx, window=ActivityWindow(tx_count=6, elapsed_sec=600))
    assert FindingKind.HIGH_TX_FREQUENCY not in slow.kinds
    few = evaluate_transaction([], tx, window=ActivityWindow(tx_count=5, elapsed_sec=10))
    assert FindingKind.HIGH_TX_FREQUENCY not in few.kinds


def test_frequency_rate_denominator_is_clamped(make_tx):
    """Right after a window reset the elapsed time is clamped to the minimum window."""
    window = ActivityWindow(tx_count=6, elapsed_sec=0.0)
    assert window.rate_per_minute(60.0) == 6.0
    cfg = ScorerConfig(min_rate_window_sec=240.0)
    ev = evaluate_transaction([], make_tx(), window=window, config=cfg)
    assert FindingKind.HIGH_TX_FREQUENCY not in ev.kinds


def test_score_is_clamped_to_100(make_tx):
    """Sum of weights above 100 is clamped."""
    logs = ["Program invoke: drainer transfer authority 99999999 approve"]
    ev = evaluate_transaction(logs, make_tx())
    assert sum(f.weight for f in ev.findings) > 100
    assert ev.score == 100


def test_transaction_threshold_is_exclusive(make_tx):
    """Exactly 40 points is not reportable."""
    ev = evaluate_transaction(["Program log: transfer 2000000"], make_tx())
    assert ev.score == 40
    assert not ev.reportable


def test_existence_check_flip_is_critical():
    """Reconciliation: present before, missing now yields a 90-point finding."""
    ev = evaluate_existence_check(True, None)
    assert ev.source is EvaluationSource.RECONCILIATION
    assert ev.score == 90
    assert ev.severity is Severity.CRITICAL
    assert ev.labels == ("Account no longer exists - possible drain",)


def test_existence_check_without_flip_is_quiet():
    """No finding unless the account was known to exist."""
    assert not evaluate_existence_check(None, None).reportable
    assert not evaluate_existence_check(False, None).reportable
    assert not evaluate_existence_check(True, AccountInfo(lamports=1)).reportable


def test_threat_labels_map_to_finding_kinds():
    """Free-text threat labels are mapped to kinds by keyword, case-insensitively."""
    kinds = kinds_mentioned(["Unknown Program interaction", "Wallet DRAINED", "suspicious memo"])
    assert kinds == {FindingKind.UNKNOWN_PROGRAM_CALL, FindingKind.ACCOUNT_DRAINED}
    assert kinds_mentioned([]) == frozenset()


def test_known_threats_combine_kinds_and_labels():
    """One observed kind plus one label-mentioned kind completes a signature."""
    assert match_known_threats({FindingKind.APPROVAL_DETECTED}) == ()
    matches = match_known_threats({FindingKind.APPROVAL_DETECTED}, ["malicious contract"])
    assert [m.name for m in matches] == ["phishing_attack"]
    assert matches[0].matched == (FindingKind.APPROVAL_DETECTED, FindingKind.FLAGGED_PROGRAM_CALL)
