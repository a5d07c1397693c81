"""
Exchange Rate Providers

DESIGN DECISION: Rates come from a plain HTTP API rather than a spreadsheet
formula. A formula result can be "Loading..." at read time; an API call
either returns a number or fails loudly, and the failure becomes a
sentinel the repair pass picks up later.

Rates are cached per base currency for the life of the provider, so one
run converts every movement at the same rates.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from expense_ledger.config import ExchangeRateSettings, get_settings
from expense_ledger.models.movement import Currency


logger = structlog.get_logger(__name__)


class ExchangeRateError(Exception):
    """A rate could not be obtained."""
    pass


class ExchangeRateProvider(ABC):
    """Abstract source of exchange rates."""

    @abstractmethod
    def get_rate(self, base: Currency, target: Currency) -> Decimal:
        """
        Units of `target` per one unit of `base`.

        Raises:
            ExchangeRateError: If the rate is unavailable
        """
        pass


class OpenExchangeRateProvider(ExchangeRateProvider):
    """
    Rates from the open.er-api.com "latest" endpoint.

    Response shape: {"result": "success", "rates": {"USD": 1.0, ...}}
    """

    def __init__(
        self,
        settings: Optional[ExchangeRateSettings] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._settings = settings or get_settings().exchange_rates
        self._client = client or httpx.Client(timeout=self._settings.timeout_seconds)
        self._rates: dict[Currency, dict[str, Decimal]] = {}

    def get_rate(self, base: Currency, target: Currency) -> Decimal:
        if base == target:
            return Decimal("1")

        if base not in self._rates:
            try:
                self._rates[base] = self._fetch_rates(base)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("exchange_rate_fetch_failed", base=base.value, error=str(e))
                raise ExchangeRateError(f"Failed to fetch {base.value} rates: {e}") from e

        rate = self._rates[base].get(target.value)
        if rate is None:
            raise ExchangeRateError(f"No {base.value}->{target.value} rate available")
        return rate

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _fetch_rates(self, base: Currency) -> dict[str, Decimal]:
        url = f"{self._settings.base_url.rstrip('/')}/latest/{base.value}"
        resp = self._client.get(url)
        resp.raise_for_status()
        data = resp.json()

        if data.get("result") != "success":
            raise ValueError(f"Rate API returned {data.get('result')!r}")

        rates = {}
        for code, value in (data.get("rates") or {}).items():
            try:
                rate = Decimal(str(value))
            except InvalidOperation:
                continue
            if rate.is_finite() and rate > 0:
                rates[code] = rate

        logger.debug("exchange_rates_fetched", base=base.value, count=len(rates))
        return rates
