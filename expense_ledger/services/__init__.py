"""Services package."""

from expense_ledger.services.currency import (
    CurrencyConversionService,
    ExchangeRateError,
    ExchangeRateProvider,
    OpenExchangeRateProvider,
)
from expense_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateIdError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTable,
    InMemoryTable,
    InvalidSettlementReferenceError,
    StorageError,
    TabularStore,
)

__all__ = [
    # Currency services
    "CurrencyConversionService",
    "ExchangeRateError",
    "ExchangeRateProvider",
    "OpenExchangeRateProvider",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateIdError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTable",
    "InMemoryTable",
    "InvalidSettlementReferenceError",
    "StorageError",
    "TabularStore",
]
