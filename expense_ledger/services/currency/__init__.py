"""Currency conversion package."""

from expense_ledger.services.currency.rates import (
    ExchangeRateError,
    ExchangeRateProvider,
    OpenExchangeRateProvider,
)
from expense_ledger.services.currency.conversion import CurrencyConversionService

__all__ = [
    "CurrencyConversionService",
    "ExchangeRateError",
    "ExchangeRateProvider",
    "OpenExchangeRateProvider",
]
