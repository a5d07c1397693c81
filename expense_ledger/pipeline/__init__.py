"""Run stages: ingestion, analysis and Splitwise push."""

from expense_ledger.pipeline.ingestion import IngestionPipeline
from expense_ledger.pipeline.analysis import (
    AnalysisFlow,
    SplitwisePushFlow,
    personal_portion,
)
from expense_ledger.pipeline.normalizers import (
    bank_transaction_to_movement,
    email_to_movement,
    splitwise_to_movement,
    supported_currency,
)

__all__ = [
    "AnalysisFlow",
    "IngestionPipeline",
    "SplitwisePushFlow",
    "bank_transaction_to_movement",
    "email_to_movement",
    "personal_portion",
    "splitwise_to_movement",
    "supported_currency",
]
