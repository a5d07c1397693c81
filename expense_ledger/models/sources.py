"""
Source Record Models

Each transaction source hands the ingestion pipeline its own record
shape. These models are the normalized forms the source collaborators
must return; the pipeline converts them into Movements.

Currencies are kept as plain strings here. A source may report a
currency the ledger does not support, and rejecting it is the
normalizer's job, not the source's.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EmailMessage(BaseModel):
    """A bank notification email, not yet parsed."""
    model_config = ConfigDict(frozen=True)

    message_id: str = Field(..., min_length=1)
    body: str
    received_at: Optional[datetime] = None


class BankTransaction(BaseModel):
    """
    A transaction from the banking API.

    `amount` is signed and in major units: negative is money leaving the
    account.
    """
    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(..., min_length=1)
    created: datetime
    settled: Optional[datetime] = None
    amount: Decimal
    currency: str
    description: str = ""
    merchant_name: Optional[str] = None
    notes: str = ""
    declined: bool = False


class SplitwiseMovementKind(str, Enum):
    """
    PAID_BY_OTHER: someone else paid, the user owes them (a credit).
    OWED_TO_USER: the user paid, others owe their share back.
    """
    PAID_BY_OTHER = "paid_by_other"
    OWED_TO_USER = "owed_to_user"


class SplitwiseMovement(BaseModel):
    """One side of a Splitwise expense, from the user's point of view."""
    model_config = ConfigDict(frozen=True)

    splitwise_id: str = Field(..., min_length=1)
    date: datetime
    amount: Decimal = Field(..., gt=0)
    currency: str
    description: str = ""
    category: Optional[str] = None
    kind: SplitwiseMovementKind


class SplitwiseExpense(BaseModel):
    """An expense to create in Splitwise for a pending debit."""
    model_config = ConfigDict(frozen=True)

    movement_id: int
    total_amount: Decimal = Field(..., gt=0)
    personal_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str
    description: str
    date: date
    group_id: Optional[int] = None
