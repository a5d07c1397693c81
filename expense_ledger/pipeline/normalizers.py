"""
Source Record Normalizers

One explicit conversion per source shape into the canonical Movement.
Every function is total: it returns a Movement or None (record rejected,
reason logged). It never raises for bad upstream data.

Direction/type rules:
- Email: Expense/Cash/Debit -> Outflow, Credit -> Inflow,
  Debit Repayment -> Neutral. Debits and credits start Pending Settlement.
- Banking API: money out -> Outflow/Expense, money in -> Inflow/Debit
  Repayment. Zero-amount and declined transactions are rejected.
- Splitwise: paid by someone else -> Outflow/Credit, owed to the user ->
  Neutral/Debit Repayment. No status; keyed by accounting_system_id.
"""

from decimal import Decimal
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from expense_ledger.models.classification import ParsedEmailTransaction
from expense_ledger.models.movement import (
    Currency,
    CurrencyValues,
    Direction,
    Movement,
    MovementCategory,
    MovementSource,
    MovementType,
    direction_for_type,
    status_for_type,
)
from expense_ledger.models.sources import (
    BankTransaction,
    SplitwiseMovement,
    SplitwiseMovementKind,
)


logger = structlog.get_logger(__name__)

Converter = Callable[[Decimal, Currency], CurrencyValues]


def supported_currency(code: Optional[str]) -> Optional[Currency]:
    if not code:
        return None
    try:
        return Currency(code.strip().upper())
    except ValueError:
        return None


def _build(source: MovementSource, key: str, **fields) -> Optional[Movement]:
    try:
        return Movement(source=source, **fields)
    except ValidationError as e:
        logger.warning("source_record_rejected", source=source.value, key=key, error=str(e))
        return None


def email_to_movement(
    parsed: ParsedEmailTransaction,
    movement_id: int,
    convert: Converter,
) -> Optional[Movement]:
    values = convert(parsed.amount, parsed.currency)
    return _build(
        MovementSource.GMAIL,
        parsed.message_id,
        id=movement_id,
        timestamp=parsed.timestamp,
        direction=direction_for_type(parsed.movement_type),
        type=parsed.movement_type,
        amount=parsed.amount,
        currency=parsed.currency,
        source_description=parsed.source_description,
        status=status_for_type(parsed.movement_type),
        source_id=parsed.message_id,
        **values.as_fields(),
    )


def bank_transaction_to_movement(
    transaction: BankTransaction,
    movement_id: int,
    convert: Converter,
) -> Optional[Movement]:
    key = transaction.transaction_id
    if transaction.declined:
        logger.info("bank_transaction_rejected", transaction_id=key, reason="declined")
        return None
    if transaction.amount == 0:
        logger.info("bank_transaction_rejected", transaction_id=key, reason="zero_amount")
        return None
    currency = supported_currency(transaction.currency)
    if currency is None:
        logger.warning(
            "bank_transaction_rejected",
            transaction_id=key,
            reason="unsupported_currency",
            currency=transaction.currency,
        )
        return None

    if transaction.amount < 0:
        direction, movement_type = Direction.OUTFLOW, MovementType.EXPENSE
    else:
        direction, movement_type = Direction.INFLOW, MovementType.DEBIT_REPAYMENT

    amount = abs(transaction.amount)
    values = convert(amount, currency)
    return _build(
        MovementSource.MONZO,
        key,
        id=movement_id,
        timestamp=transaction.created,
        direction=direction,
        type=movement_type,
        amount=amount,
        currency=currency,
        source_description=transaction.merchant_name or transaction.description,
        user_description=transaction.notes,
        source_id=key,
        **values.as_fields(),
    )


def splitwise_to_movement(
    record: SplitwiseMovement,
    movement_id: int,
    convert: Converter,
) -> Optional[Movement]:
    currency = supported_currency(record.currency)
    if currency is None:
        logger.warning(
            "splitwise_movement_rejected",
            splitwise_id=record.splitwise_id,
            reason="unsupported_currency",
            currency=record.currency,
        )
        return None

    if record.kind == SplitwiseMovementKind.PAID_BY_OTHER:
        direction, movement_type = Direction.OUTFLOW, MovementType.CREDIT
    else:
        direction, movement_type = Direction.NEUTRAL, MovementType.DEBIT_REPAYMENT

    # Splitwise's own categories are kept only when they match ours
    category = None
    if record.category:
        try:
            category = MovementCategory(record.category.strip().lower()).value
        except ValueError:
            category = None

    values = convert(record.amount, currency)
    return _build(
        MovementSource.SPLITWISE,
        record.splitwise_id,
        id=movement_id,
        timestamp=record.date,
        direction=direction,
        type=movement_type,
        amount=record.amount,
        currency=currency,
        source_description=record.description,
        category=category,
        status=None,
        accounting_system_id=record.splitwise_id,
        **values.as_fields(),
    )
