"""Tests for currency conversion, splitting and the rate provider."""

import pytest
from decimal import Decimal

import httpx

from expense_ledger.config import ExchangeRateSettings
from expense_ledger.models.movement import Currency, CurrencyValues
from expense_ledger.services.currency import (
    CurrencyConversionService,
    ExchangeRateError,
    OpenExchangeRateProvider,
)

from conftest import FixedRateProvider


class TestConvert:
    """Tests for CurrencyConversionService.convert."""

    def test_source_currency_kept_as_is(self, conversion):
        """Test the movement's own currency is never converted."""
        values = conversion.convert(Decimal("12.345"), Currency.USD)
        assert values.usd_value == Decimal("12.345")
        assert values.clp_value == Decimal("11110.50")
        assert values.gbp_value == Decimal("9.88")

    def test_failed_rate_becomes_none_after_retries(self):
        """Test an unavailable rate is retried then recorded as failed."""
        provider = FixedRateProvider({(Currency.USD, Currency.CLP): Decimal("900")})
        service = CurrencyConversionService(provider, max_retries=3)

        values = service.convert(Decimal("10"), Currency.USD)

        assert values.clp_value == Decimal("9000.00")
        assert values.gbp_value is None
        # One call for CLP, three attempts for GBP
        assert provider.calls == 4


class TestSplit:
    """Tests for proportional splitting."""

    def test_split_pair_conserves_every_value(self, conversion):
        """Test 100 split 30/70 sums back exactly in every currency."""
        original = CurrencyValues(
            clp_value=Decimal("90001"),
            usd_value=Decimal("100"),
            gbp_value=Decimal("79.99"),
        )
        first, second = conversion.split_pair(Decimal("100"), Decimal("30"), original)

        assert first.usd_value == Decimal("30.00")
        assert second.usd_value == Decimal("70.00")
        for field in ("clp_value", "usd_value", "gbp_value"):
            assert getattr(first, field) + getattr(second, field) == getattr(original, field)

    def test_split_keeps_failed_values_failed(self, conversion):
        """Test a failed conversion is not turned into a number by a split."""
        original = CurrencyValues(usd_value=Decimal("100"), clp_value=Decimal("90000"))
        first, second = conversion.split_pair(Decimal("100"), Decimal("25"), original)
        assert first.gbp_value is None
        assert second.gbp_value is None

    def test_split_never_calls_provider(self, provider, conversion):
        """Test splits use stored values, not fresh rates."""
        conversion.split_pair(
            Decimal("100"),
            Decimal("40"),
            CurrencyValues(clp_value=Decimal("1"), usd_value=Decimal("2"), gbp_value=Decimal("3")),
        )
        assert provider.calls == 0

    def test_non_positive_original_rejected(self, conversion):
        """Test splitting a zero amount is an error."""
        with pytest.raises(ValueError):
            conversion.split_proportionally(Decimal("0"), Decimal("1"), CurrencyValues())


class TestRepair:
    """Tests for failure detection and repair."""

    @pytest.mark.parametrize("value", [None, "", "#N/A", "#NUM!", "Loading...", "n/a", float("nan")])
    def test_failed_values(self, value):
        """Test every kind of unusable value is recognized."""
        assert CurrencyConversionService.is_failed_conversion(value) is True

    @pytest.mark.parametrize("value", ["12.5", "1,200", Decimal("3"), 7])
    def test_valid_values(self, value):
        """Test numbers are not failures."""
        assert CurrencyConversionService.is_failed_conversion(value) is False

    def test_repair_rejects_invalid_amount(self, conversion):
        """Test zero, negative and non-numeric amounts are not repaired."""
        assert conversion.repair(Decimal("0"), Currency.USD) is None
        assert conversion.repair("-4", "USD") is None
        assert conversion.repair("abc", "USD") is None

    def test_repair_rejects_unsupported_currency(self, conversion):
        """Test unknown currencies are not repaired."""
        assert conversion.repair("10", "EUR") is None

    def test_repair_converts(self, conversion):
        """Test a valid amount is converted again."""
        values = conversion.repair("10", Currency.GBP)
        assert values.usd_value == Decimal("12.50")
        assert values.gbp_value == Decimal("10")


class TestOpenExchangeRateProvider:
    """Tests for the HTTP rate provider (mocked transport)."""

    @pytest.fixture
    def settings(self):
        return ExchangeRateSettings(base_url="https://rates.test/v6")

    def test_rates_fetched_once_per_base(self, settings):
        """Test one request serves every target of the same base."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request.url.path)
            return httpx.Response(
                200,
                json={"result": "success", "rates": {"USD": 1, "CLP": 950.5, "GBP": 0.79}},
            )

        client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = OpenExchangeRateProvider(settings, client=client)

        assert provider.get_rate(Currency.USD, Currency.CLP) == Decimal("950.5")
        assert provider.get_rate(Currency.USD, Currency.GBP) == Decimal("0.79")
        assert provider.get_rate(Currency.USD, Currency.USD) == Decimal("1")
        assert requests == ["/v6/latest/USD"]

    def test_error_result_raises(self, settings, monkeypatch):
        """Test an unsuccessful API answer becomes ExchangeRateError."""
        monkeypatch.setattr(OpenExchangeRateProvider._fetch_rates.retry, "sleep", lambda seconds: None)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"result": "error", "error-type": "unsupported-code"})

        provider = OpenExchangeRateProvider(
            settings,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(ExchangeRateError):
            provider.get_rate(Currency.CLP, Currency.USD)
        assert len(calls) == 3

    def test_missing_target_raises(self, settings):
        """Test a rate absent from the response is an error."""
        client = httpx.Client(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"result": "success", "rates": {"USD": 1}})
        ))
        provider = OpenExchangeRateProvider(settings, client=client)
        with pytest.raises(ExchangeRateError):
            provider.get_rate(Currency.USD, Currency.GBP)
