"""
Shared test fixtures and fakes.

No real API calls in tests: every external collaborator (rate API,
Gemini, sources, Splitwise) is replaced by a fake defined here.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from expense_ledger.agents.interface import MovementClassifier, RepaymentMatcher
from expense_ledger.ledger.store import LedgerStore
from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.movement import (
    Currency,
    Direction,
    Movement,
    MovementType,
)
from expense_ledger.services.currency import (
    CurrencyConversionService,
    ExchangeRateError,
    ExchangeRateProvider,
)
from expense_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryTable,
    StorageError,
    movement_to_row,
)
from expense_ledger.sources.interface import (
    BankingSource,
    EmailSource,
    SplitwisePublisher,
    SplitwiseSource,
)


RATES = {
    (Currency.USD, Currency.CLP): Decimal("900"),
    (Currency.USD, Currency.GBP): Decimal("0.8"),
    (Currency.GBP, Currency.USD): Decimal("1.25"),
    (Currency.GBP, Currency.CLP): Decimal("1125"),
    (Currency.CLP, Currency.USD): Decimal("0.001"),
    (Currency.CLP, Currency.GBP): Decimal("0.0008"),
}


class FixedRateProvider(ExchangeRateProvider):
    """Rates from a dict; missing pairs raise like an unreachable API."""

    def __init__(self, rates: Optional[dict] = None):
        self.rates = dict(RATES if rates is None else rates)
        self.calls = 0

    def get_rate(self, base: Currency, target: Currency) -> Decimal:
        self.calls += 1
        try:
            return self.rates[(base, target)]
        except KeyError:
            raise ExchangeRateError(f"No rate for {base.value}->{target.value}")


class FakeClassifier(MovementClassifier):
    """
    Answers from dicts.

    classify() is keyed by the request description, parse_email() by
    message id. An Exception value is raised instead of returned.
    """

    def __init__(self, classifications: Optional[dict] = None, parses: Optional[dict] = None):
        self.classifications = classifications or {}
        self.parses = parses or {}
        self.classify_calls = []
        self.parse_calls = []

    async def classify(self, request) -> Any:
        self.classify_calls.append(request)
        answer = self.classifications.get(request.description)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def parse_email(self, email) -> Any:
        self.parse_calls.append(email.message_id)
        answer = self.parses.get(email.message_id)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeMatcher(RepaymentMatcher):
    def __init__(self, answer=None):
        self.answer = answer
        self.calls = []

    async def match(self, repayment, candidates):
        self.calls.append((repayment.id, [c.id for c in candidates]))
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class FakeEmailSource(EmailSource):
    def __init__(self, messages):
        self.messages = list(messages)

    async def fetch_messages(self):
        return list(self.messages)


class FakeBankingSource(BankingSource):
    def __init__(self, transactions=None, error: Optional[Exception] = None):
        self.transactions = list(transactions or [])
        self.error = error

    async def fetch_transactions(self):
        if self.error:
            raise self.error
        return list(self.transactions)


class FakeSplitwiseSource(SplitwiseSource):
    def __init__(self, movements):
        self.movements = list(movements)

    async def fetch_movements(self):
        return list(self.movements)


class FakePublisher(SplitwisePublisher):
    def __init__(self, expense_id: str = "sw-1", error: Optional[Exception] = None):
        self.expense_id = expense_id
        self.error = error
        self.expenses = []

    async def create_expense(self, expense):
        if self.error:
            raise self.error
        self.expenses.append(expense)
        return self.expense_id


class RecordingAuditStorage(AuditStorageInterface):
    def __init__(self, fail: bool = False):
        self.events: list[AuditEvent] = []
        self.fail = fail

    async def append_event(self, event: AuditEvent) -> bool:
        if self.fail:
            raise RuntimeError("audit sheet unavailable")
        self.events.append(event)
        return True


def make_movement(movement_id: int, **overrides) -> Movement:
    """A settled-looking 100 USD expense with every currency value filled."""
    fields = dict(
        id=movement_id,
        timestamp=datetime(2024, 3, movement_id % 28 + 1, 12, 0, tzinfo=timezone.utc),
        direction=Direction.OUTFLOW,
        type=MovementType.EXPENSE,
        amount=Decimal("100"),
        currency=Currency.USD,
        source_description="CARD PURCHASE",
        clp_value=Decimal("90000"),
        usd_value=Decimal("100"),
        gbp_value=Decimal("80"),
    )
    fields.update(overrides)
    return Movement(**fields)


def make_table(*movements: Movement) -> InMemoryTable:
    return InMemoryTable(rows=[movement_to_row(m) for m in movements])


class FlakyTable(InMemoryTable):
    """An InMemoryTable whose writes to some sheet rows always fail."""

    def __init__(self, *movements: Movement, failing_rows=()):
        super().__init__(rows=[movement_to_row(m) for m in movements])
        self.failing_rows = set(failing_rows)

    def update_cells(self, row_number: int, values: dict[int, object]) -> None:
        if row_number in self.failing_rows:
            raise StorageError(f"Transient write failure on row {row_number}")
        super().update_cells(row_number, values)


@pytest.fixture
def provider():
    return FixedRateProvider()


@pytest.fixture
def conversion(provider):
    return CurrencyConversionService(provider, max_retries=3)


@pytest.fixture
def table():
    return InMemoryTable()


@pytest.fixture
def store(table):
    return LedgerStore(table)
