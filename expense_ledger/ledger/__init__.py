"""Ledger core: store, splitter, settlement and currency repair."""

from expense_ledger.ledger.store import ConversionCandidate, LedgerStore, chronological_order
from expense_ledger.ledger.splitter import (
    MovementSplitter,
    split_from_comment,
    split_into_comment,
)
from expense_ledger.ledger.settlement import (
    PARTIAL_THRESHOLD,
    SETTLED_THRESHOLD,
    SettlementDecision,
    SettlementMatcher,
    SettlementOutcome,
    repayment_ratio,
)
from expense_ledger.ledger.repair import CurrencyRepairPass, RepairOutcome

__all__ = [
    "ConversionCandidate",
    "CurrencyRepairPass",
    "LedgerStore",
    "MovementSplitter",
    "PARTIAL_THRESHOLD",
    "RepairOutcome",
    "SETTLED_THRESHOLD",
    "SettlementDecision",
    "SettlementMatcher",
    "SettlementOutcome",
    "chronological_order",
    "repayment_ratio",
    "split_from_comment",
    "split_into_comment",
]
