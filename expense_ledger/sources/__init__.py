"""Transaction source interfaces."""

from expense_ledger.sources.interface import (
    BankingSource,
    EmailSource,
    SplitwisePublisher,
    SplitwiseSource,
)

__all__ = [
    "BankingSource",
    "EmailSource",
    "SplitwisePublisher",
    "SplitwiseSource",
]
