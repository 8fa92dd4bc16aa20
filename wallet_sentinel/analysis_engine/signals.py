"""
Declarative signal tables for the heuristic risk scorer.

Each log signal is a (kind, description, weight, predicate) row evaluated
against every log line; each structural signal counts occurrences in a
fetched transaction. Adding a signal means adding a row here, not new
control flow in the scorer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from wallet_sentinel.analysis_engine.models import FindingKind
from wallet_sentinel.solana_listener.models import TransactionInfo

LARGE_TRANSFER_AMOUNT = 1_000_000
BALANCE_DROP_LAMPORTS = 1_000_000
MAX_ACCOUNT_KEYS = 10

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
COMPUTE_BUDGET_PROGRAM_ID = "ComputeBudget111111111111111111111111111111"

# Names as they appear in program logs plus mainnet program IDs (lower-cased for matching)
KNOWN_PROGRAMS = frozenset(
    p.lower()
    for p in (
        "system program",
        "token program",
        "associated token",
        "spl-token",
        "jupiter",
        "raydium",
        "serum",
        "orca",
        SYSTEM_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        TOKEN_2022_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",  # Jupiter v6
        "JUP5cHjnnCx2DppVsufsLrXs8EBZeEZz2j1o2HvLF4n4",  # Jupiter v4
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # Raydium AMM
        "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK",  # Raydium CLMM
        "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX",  # Serum
        "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",  # Orca Whirlpool
    )
)

FLAGGED_TERMS = ("drainer", "stealer", "malicious", "phishing", "unknown_program")

_TRANSFER_AMOUNT_RE = re.compile(r"transfer.*?(\d+)", re.IGNORECASE)


def is_known_program(lowered: str) -> bool:
    return any(p in lowered for p in KNOWN_PROGRAMS)


def transfer_amount(line: str) -> int | None:
    """First integer after the word 'transfer' in a log line, if any."""
    m = _TRANSFER_AMOUNT_RE.search(line)
    if m is None:
        return None
    return int(m.group(1))


def _is_large_transfer(line: str, lowered: str) -> bool:
    if "transfer" not in lowered:
        return False
    amount = transfer_amount(line)
    return amount is not None and amount > LARGE_TRANSFER_AMOUNT


@dataclass(frozen=True)
class LogSignal:
    """One log-line rule. predicate receives (line, line.lower())."""

    kind: FindingKind
    description: str
    weight: int
    predicate: Callable[[str, str], bool]


@dataclass(frozen=True)
class StructuralSignal:
    """One transaction-structure rule. occurrences returns how many times it fires."""

    kind: FindingKind
    description: str
    weight: int
    occurrences: Callable[[TransactionInfo], int]


LOG_SIGNALS: tuple[LogSignal, ...] = (
    LogSignal(
        FindingKind.AUTHORITY_TRANSFER,
        "Token authority transfer detected",
        60,
        lambda line, low: "transfer" in low and "authority" in low,
    ),
    LogSignal(
        FindingKind.UNKNOWN_PROGRAM_CALL,
        "Interaction with unknown program",
        30,
        lambda line, low: "invoke" in low and not is_known_program(low),
    ),
    LogSignal(
        FindingKind.LARGE_TRANSFER,
        "Large token transfer detected",
        40,
        _is_large_transfer,
    ),
    LogSignal(
        FindingKind.FLAGGED_PROGRAM_CALL,
        "Interaction with flagged program",
        80,
        lambda line, low: any(term in low for term in FLAGGED_TERMS),
    ),
    LogSignal(
        FindingKind.APPROVAL_DETECTED,
        "Token approval detected - potential drainer",
        50,
        lambda line, low: "approve" in low or "allowance" in low,
    ),
)


def _failed(tx: TransactionInfo) -> int:
    return 1 if tx.meta is not None and tx.meta.failed else 0


def _fanout(tx: TransactionInfo) -> int:
    return 1 if len(tx.account_keys) > MAX_ACCOUNT_KEYS else 0


def _balance_drops(tx: TransactionInfo) -> int:
    if tx.meta is None:
        return 0
    return sum(1 for change in tx.meta.balance_changes() if change < -BALANCE_DROP_LAMPORTS)


STRUCTURAL_SIGNALS: tuple[StructuralSignal, ...] = (
    StructuralSignal(
        FindingKind.TX_FAILED,
        "Transaction failed - possible attack attempt",
        20,
        _failed,
    ),
    StructuralSignal(
        FindingKind.HIGH_ACCOUNT_FANOUT,
        "High number of account interactions",
        25,
        _fanout,
    ),
    StructuralSignal(
        FindingKind.BALANCE_DROP,
        "Significant SOL balance decrease",
        30,
        _balance_drops,
    ),
)
