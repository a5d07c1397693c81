"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements Google Sheets as the backend, but designed to be swappable.
"""

from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateIdError,
    InvalidSettlementReferenceError,
    StorageError,
    TabularStore,
)
from expense_ledger.services.storage.movement_rows import (
    COLUMN_INDEX,
    FAILED_CONVERSION_SENTINEL,
    MOVEMENT_COLUMNS,
    column_number,
    movement_to_row,
    parse_decimal,
    parse_row_id,
    row_to_movement,
)
from expense_ledger.services.storage.memory import InMemoryTable
from expense_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTable,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "TabularStore",
    # Exceptions
    "ConnectionError",
    "DuplicateIdError",
    "InvalidSettlementReferenceError",
    "StorageError",
    # Row mapping
    "COLUMN_INDEX",
    "FAILED_CONVERSION_SENTINEL",
    "MOVEMENT_COLUMNS",
    "column_number",
    "movement_to_row",
    "parse_decimal",
    "parse_row_id",
    "row_to_movement",
    # Implementations
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTable",
    "InMemoryTable",
]
