"""
Currency Conversion Service

Every movement carries its amount in each reporting currency. This service
produces those values, splits them when a movement is split, and repairs
them when a conversion failed.

CRITICAL: Split arithmetic never calls the rate provider. Rates move
between ingestion and a later split, so re-converting would break
conservation (part A + part B != original).
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union

import structlog

from expense_ledger.models.movement import REPORTING_CURRENCIES, Currency, CurrencyValues
from expense_ledger.services.currency.rates import ExchangeRateError, ExchangeRateProvider
from expense_ledger.services.storage.movement_rows import parse_decimal


logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


class CurrencyConversionService:
    """Converts amounts into the reporting currencies."""

    def __init__(self, provider: ExchangeRateProvider, max_retries: int = 3):
        self._provider = provider
        self._max_retries = max(1, max_retries)

    def convert(self, amount: Decimal, currency: Currency) -> CurrencyValues:
        """
        Express `amount` in every reporting currency.

        The value in `currency` itself is `amount` unchanged. A currency
        whose rate cannot be obtained after `max_retries` attempts gets
        None (the failed-conversion sentinel).
        """
        values: dict[Currency, Optional[Decimal]] = {}
        for target in REPORTING_CURRENCIES:
            if target == currency:
                values[target] = amount
                continue
            values[target] = self._convert_one(amount, currency, target)
        return CurrencyValues.from_mapping(values)

    def _convert_one(
        self,
        amount: Decimal,
        base: Currency,
        target: Currency,
    ) -> Optional[Decimal]:
        for attempt in range(1, self._max_retries + 1):
            try:
                rate = self._provider.get_rate(base, target)
            except ExchangeRateError as e:
                logger.warning(
                    "currency_conversion_attempt_failed",
                    base=base.value,
                    target=target.value,
                    attempt=attempt,
                    error=str(e),
                )
                continue
            return (amount * rate).quantize(CENTS, rounding=ROUND_HALF_UP)

        logger.error(
            "currency_conversion_failed",
            base=base.value,
            target=target.value,
            amount=str(amount),
        )
        return None

    def split_proportionally(
        self,
        original_amount: Decimal,
        part_amount: Decimal,
        original_values: CurrencyValues,
    ) -> CurrencyValues:
        """
        Scale each currency value by part_amount / original_amount.

        Failed values stay failed.
        """
        if original_amount <= 0:
            raise ValueError("Cannot split a movement with a non-positive amount")

        ratio = part_amount / original_amount
        return CurrencyValues.from_mapping({
            currency: (
                None if self.is_failed_conversion(original_values.get(currency))
                else original_values.get(currency) * ratio
            )
            for currency in REPORTING_CURRENCIES
        })

    def split_pair(
        self,
        original_amount: Decimal,
        first_amount: Decimal,
        original_values: CurrencyValues,
    ) -> tuple[CurrencyValues, CurrencyValues]:
        """
        Split currency values into two parts that sum exactly to the original.

        The first part is the proportional share rounded to cents; the
        second part is whatever remains.
        """
        first = self.split_proportionally(original_amount, first_amount, original_values)

        first_values: dict[Currency, Optional[Decimal]] = {}
        second_values: dict[Currency, Optional[Decimal]] = {}
        for currency in REPORTING_CURRENCIES:
            share = first.get(currency)
            if share is None:
                first_values[currency] = None
                second_values[currency] = None
                continue
            share = share.quantize(CENTS, rounding=ROUND_HALF_UP)
            first_values[currency] = share
            second_values[currency] = original_values.get(currency) - share

        return (
            CurrencyValues.from_mapping(first_values),
            CurrencyValues.from_mapping(second_values),
        )

    @staticmethod
    def is_failed_conversion(value: Any) -> bool:
        """
        True for anything that is not a usable converted value.

        Recognizes None, blanks, spreadsheet error strings ("#N/A",
        "#NUM!", ...), "Loading...", other non-numeric text and NaN.
        """
        if value is None:
            return True
        if isinstance(value, float) and math.isnan(value):
            return True
        if isinstance(value, str):
            text = value.strip()
            if not text or text.startswith("#") or text.startswith("Loading"):
                return True
        return parse_decimal(value) is None

    def repair(
        self,
        amount: Any,
        currency: Union[Currency, str, None],
    ) -> Optional[CurrencyValues]:
        """
        Re-run the conversion for a movement with failed values.

        Returns None when the amount or currency is itself unusable,
        meaning the caller must not touch the row.
        """
        parsed_amount = parse_decimal(amount)
        if parsed_amount is None or parsed_amount <= 0:
            logger.warning("currency_repair_invalid_amount", amount=str(amount))
            return None

        if isinstance(currency, Currency):
            currency = currency.value
        try:
            parsed_currency = Currency(str(currency or "").strip().upper())
        except ValueError:
            logger.warning("currency_repair_invalid_currency", currency=str(currency))
            return None

        return self.convert(parsed_amount, parsed_currency)
