"""
Classifier Output Models

The AI classifier returns schema-less JSON. Nothing it says is trusted
until it passes through the validators in this module.

DESIGN DECISION: Validation is all-or-nothing. If any field of a
classification is unusable, the whole result is discarded and the movement
stays unclassified, so the next run retries it.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from expense_ledger.models.movement import (
    Currency,
    Direction,
    Movement,
    MovementCategory,
    MovementType,
    parse_timestamp,
)


logger = structlog.get_logger(__name__)


class SplitType(str, Enum):
    """
    DEBIT: part of the payment is owed by other people.
    EXPENSE: one payment spans two personal expense categories.
    """
    DEBIT = "DEBIT"
    EXPENSE = "EXPENSE"


class ClassificationRequest(BaseModel):
    """What the classifier is told about a movement."""
    model_config = ConfigDict(frozen=True)

    description: str
    amount: Decimal
    currency: Currency
    source_description: str = ""
    type: MovementType
    direction: Direction

    @classmethod
    def from_movement(cls, movement: Movement) -> "ClassificationRequest":
        return cls(
            description=movement.analysis_text,
            amount=movement.amount,
            currency=movement.currency,
            source_description=movement.source_description,
            type=movement.type,
            direction=movement.direction,
        )


class ClassificationResult(BaseModel):
    """A classifier result that passed validation."""
    model_config = ConfigDict(frozen=True)

    category: Optional[MovementCategory] = None
    needs_split: bool = False
    split_type: Optional[SplitType] = None
    split_amount: Optional[Decimal] = None
    split_description: Optional[str] = None
    split_category: Optional[MovementCategory] = None
    clean_description: Optional[str] = None

    @property
    def is_debit_split(self) -> bool:
        return self.needs_split and self.split_type == SplitType.DEBIT

    @property
    def is_expense_split(self) -> bool:
        return self.needs_split and self.split_type == SplitType.EXPENSE


class ParsedEmailTransaction(BaseModel):
    """A bank notification email turned into a transaction by the classifier."""
    model_config = ConfigDict(frozen=True)

    message_id: str = Field(..., min_length=1)
    timestamp: datetime
    amount: Decimal = Field(..., gt=0)
    currency: Currency
    source_description: str
    movement_type: MovementType


_TRANSACTION_TYPES = {
    "expense": MovementType.EXPENSE,
    "cash": MovementType.CASH,
    "debit": MovementType.DEBIT,
    "credit": MovementType.CREDIT,
    "debit repayment": MovementType.DEBIT_REPAYMENT,
    "debit_repayment": MovementType.DEBIT_REPAYMENT,
}


def _category_or_none(value: Any) -> Optional[MovementCategory]:
    if not isinstance(value, str):
        return None
    try:
        return MovementCategory(value.strip().lower())
    except ValueError:
        return None


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_classification(raw: Any) -> Optional[ClassificationResult]:
    """
    Validate a raw classification dict.

    Rules:
    - `category`, when present, must be in the vocabulary. It may only be
      absent for an EXPENSE split.
    - If `needs_split` is true, `split_amount` must be a number and
      `split_type` must be DEBIT or EXPENSE.
    - A DEBIT split also needs a valid `split_category`.

    Returns None (and logs why) when any rule fails.
    """
    if not isinstance(raw, dict):
        logger.warning("classification_rejected", reason="not_an_object")
        return None

    needs_split = raw.get("needs_split") is True

    split_type = None
    if raw.get("split_type") is not None:
        try:
            split_type = SplitType(str(raw["split_type"]).strip().upper())
        except ValueError:
            logger.warning("classification_rejected", reason="unknown_split_type", raw=raw)
            return None

    raw_category = raw.get("category")
    category = _category_or_none(raw_category)
    if raw_category not in (None, "") and category is None:
        logger.warning("classification_rejected", reason="invalid_category", raw=raw)
        return None

    is_expense_split = needs_split and split_type == SplitType.EXPENSE
    if category is None and not is_expense_split:
        logger.warning("classification_rejected", reason="missing_category", raw=raw)
        return None

    split_amount = None
    split_category = None
    if needs_split:
        amount = raw.get("split_amount")
        # bool is an int subclass; "true" is not an amount
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or split_type is None:
            logger.warning("classification_rejected", reason="invalid_split_data", raw=raw)
            return None
        try:
            split_amount = Decimal(str(amount))
        except InvalidOperation:
            logger.warning("classification_rejected", reason="invalid_split_amount", raw=raw)
            return None
        if not split_amount.is_finite():
            logger.warning("classification_rejected", reason="invalid_split_amount", raw=raw)
            return None

        if split_type == SplitType.DEBIT:
            split_category = _category_or_none(raw.get("split_category"))
            if split_category is None:
                logger.warning("classification_rejected", reason="invalid_split_category", raw=raw)
                return None

    clean_description = _text_or_none(raw.get("clean_description"))
    if clean_description is None and category is not None:
        clean_description = category.value

    return ClassificationResult(
        category=category,
        needs_split=needs_split,
        split_type=split_type if needs_split else None,
        split_amount=split_amount,
        split_description=_text_or_none(raw.get("split_description")) if needs_split else None,
        split_category=split_category,
        clean_description=clean_description,
    )


def validate_email_parse(raw: Any, message_id: str) -> Optional[ParsedEmailTransaction]:
    """
    Validate the classifier's parse of a bank notification email.

    Amount and currency are required. A missing timestamp defaults to now;
    an unknown transaction type defaults to Expense.
    """
    if not isinstance(raw, dict):
        logger.warning("email_parse_rejected", message_id=message_id, reason="not_an_object")
        return None

    amount = raw.get("amount")
    currency = raw.get("currency")
    if amount in (None, "") or not currency:
        logger.warning("email_parse_rejected", message_id=message_id, reason="missing_amount_or_currency")
        return None

    try:
        parsed_amount = Decimal(str(amount).replace(",", ""))
        parsed_currency = Currency(str(currency).strip().upper())
    except (InvalidOperation, ValueError):
        logger.warning("email_parse_rejected", message_id=message_id, reason="invalid_amount_or_currency", raw=raw)
        return None
    if not parsed_amount.is_finite() or parsed_amount <= 0:
        logger.warning("email_parse_rejected", message_id=message_id, reason="non_positive_amount", raw=raw)
        return None

    timestamp = parse_timestamp(raw.get("timestamp")) or datetime.now(timezone.utc)
    transaction_type = str(raw.get("transaction_type") or "").strip().lower()

    return ParsedEmailTransaction(
        message_id=message_id,
        timestamp=timestamp,
        amount=parsed_amount,
        currency=parsed_currency,
        source_description=_text_or_none(raw.get("source_description")) or "AI Parsed Transaction",
        movement_type=_TRANSACTION_TYPES.get(transaction_type, MovementType.EXPENSE),
    )
