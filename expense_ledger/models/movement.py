"""
Core Data Models for Expense Ledger

A Movement is one ledger row: a transaction, a split fragment or a
settlement leg. These models define the strict schema every movement
must satisfy before it reaches storage.

DESIGN DECISION: The enum values are the human-readable strings shown in
the spreadsheet. The user reads (and occasionally edits) the ledger
directly, so the stored values stay friendly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Currency(str, Enum):
    """Supported currencies. Every one of them is also a reporting currency."""
    CLP = "CLP"
    USD = "USD"
    GBP = "GBP"


REPORTING_CURRENCIES: tuple[Currency, ...] = (Currency.CLP, Currency.USD, Currency.GBP)


class Direction(str, Enum):
    """Which way money moved from the user's point of view."""
    OUTFLOW = "Outflow"
    INFLOW = "Inflow"
    NEUTRAL = "Neutral"


class MovementType(str, Enum):
    """
    What kind of movement a row is.

    DEBIT: the user paid for someone else and expects to be paid back.
    CREDIT: someone else paid for the user.
    DEBIT_REPAYMENT: someone paying the user back for a DEBIT.
    """
    EXPENSE = "Expense"
    CASH = "Cash"
    DEBIT = "Debit"
    CREDIT = "Credit"
    DEBIT_REPAYMENT = "Debit Repayment"


class MovementStatus(str, Enum):
    """Settlement status of debit/credit movements."""
    SETTLED = "Settled"
    PENDING_DIRECT_SETTLEMENT = "Pending Settlement"
    PENDING_SPLITWISE_SETTLEMENT = "Awaiting Splitwise Upload"
    IN_SPLITWISE = "In Splitwise"


class MovementSource(str, Enum):
    """Where a movement was ingested from."""
    GMAIL = "gmail"
    MONZO = "monzo"
    SPLITWISE = "splitwise"


class MovementCategory(str, Enum):
    """
    Fixed category vocabulary.

    DESIGN DECISION: The classifier may only pick from this list.
    Anything else is rejected at the classification boundary.
    """
    GROCERIES = "groceries"
    RESTAURANTS = "restaurants"
    TRANSPORT = "transport"
    HOUSEHOLD = "household"
    RENT = "rent"
    UTILITIES = "utilities"
    HEALTH = "health"
    PERSONAL_CARE = "personal_care"
    CLOTHING = "clothing"
    ENTERTAINMENT = "entertainment"
    SUBSCRIPTIONS = "subscriptions"
    TRAVEL = "travel"
    EDUCATION = "education"
    GIFTS = "gifts"
    SPORTS = "sports"
    FEES = "fees"
    SALARY = "salary"
    OTHER = "other"

    @classmethod
    def values(cls) -> list[str]:
        return [category.value for category in cls]


# Types that carry a settlement status and can be the target of a
# settled_movement_id reference.
SETTLEABLE_TYPES = frozenset({MovementType.DEBIT, MovementType.CREDIT})


def direction_for_type(movement_type: MovementType) -> Direction:
    """Default direction of a freshly ingested movement of this type."""
    if movement_type == MovementType.CREDIT:
        return Direction.INFLOW
    if movement_type == MovementType.DEBIT_REPAYMENT:
        return Direction.NEUTRAL
    return Direction.OUTFLOW


def status_for_type(movement_type: MovementType) -> Optional[MovementStatus]:
    """Debits and credits start out waiting for settlement."""
    if movement_type in SETTLEABLE_TYPES:
        return MovementStatus.PENDING_DIRECT_SETTLEMENT
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored or source timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Anything unparsable returns None,
    which sorts first in chronological ordering.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# CURRENCY VALUES
# =============================================================================

class CurrencyValues(BaseModel):
    """
    An amount expressed in every reporting currency.

    None marks a failed conversion. It is written to the sheet as a
    sentinel and picked up later by the repair pass.
    """
    model_config = ConfigDict(frozen=True)

    clp_value: Optional[Decimal] = None
    usd_value: Optional[Decimal] = None
    gbp_value: Optional[Decimal] = None

    def get(self, currency: Currency) -> Optional[Decimal]:
        return getattr(self, _VALUE_FIELDS[currency])

    @classmethod
    def from_mapping(cls, values: dict[Currency, Optional[Decimal]]) -> "CurrencyValues":
        return cls(**{_VALUE_FIELDS[currency]: value for currency, value in values.items()})

    @property
    def has_failures(self) -> bool:
        return any(
            value is None or not value.is_finite()
            for value in (self.clp_value, self.usd_value, self.gbp_value)
        )

    def as_fields(self) -> dict[str, Optional[Decimal]]:
        return {
            "clp_value": self.clp_value,
            "usd_value": self.usd_value,
            "gbp_value": self.gbp_value,
        }


_VALUE_FIELDS = {
    Currency.CLP: "clp_value",
    Currency.USD: "usd_value",
    Currency.GBP: "gbp_value",
}


# =============================================================================
# MOVEMENT
# =============================================================================

class Movement(BaseModel):
    """
    One ledger row.

    Identity: `id` is globally unique and never reused. Ingested rows are
    also keyed by (source, source_id) or by accounting_system_id.

    CRITICAL: settled_movement_id is a one-way reference. A repayment
    points at the debit it settles, never the reverse.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: int = Field(..., ge=1, description="Ledger-wide movement id")
    timestamp: Optional[datetime] = Field(
        default=None,
        description="Transaction time (UTC)"
    )
    direction: Direction
    type: MovementType
    amount: Decimal = Field(..., gt=0, description="Amount in `currency`")
    currency: Currency

    source_description: str = ""
    user_description: str = ""
    comment: str = ""
    ai_comment: str = ""

    category: Optional[str] = Field(
        default=None,
        description="Category from the fixed vocabulary, once assigned"
    )
    status: Optional[MovementStatus] = None
    settled_movement_id: Optional[int] = Field(default=None, ge=1)

    clp_value: Optional[Decimal] = None
    usd_value: Optional[Decimal] = None
    gbp_value: Optional[Decimal] = None
    original_amount: Optional[Decimal] = Field(default=None, ge=0)

    source: Optional[MovementSource] = None
    source_id: Optional[str] = None
    accounting_system_id: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @field_validator(
        "source_description", "user_description", "comment", "ai_comment",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return "" if v is None else v

    @field_validator("category", "source_id", "accounting_system_id", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def currency_values(self) -> CurrencyValues:
        return CurrencyValues(
            clp_value=self.clp_value,
            usd_value=self.usd_value,
            gbp_value=self.gbp_value,
        )

    @property
    def analysis_text(self) -> str:
        """User description and comment joined, as sent to the classifier."""
        return " ".join(part for part in (self.user_description, self.comment) if part)

    @property
    def needs_category_analysis(self) -> bool:
        return bool(self.user_description) and not self.category
