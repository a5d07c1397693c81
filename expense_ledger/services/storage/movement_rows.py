"""
Movement <-> Row Mapping

The movements sheet has 20 fixed columns. This module is the only place
that knows their order; the rest of the ledger works with named fields.

CRITICAL: Never reorder MOVEMENT_COLUMNS. Existing sheets depend on the
positions, and the user reads the sheet directly.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from expense_ledger.models.movement import Movement


# Written in place of a failed currency conversion
FAILED_CONVERSION_SENTINEL = "#N/A"

MOVEMENT_COLUMNS = [
    "timestamp",
    "direction",
    "type",
    "amount",
    "currency",
    "source_description",
    "user_description",
    "comment",
    "ai_comment",
    "category",
    "status",
    "settled_movement_id",
    "clp_value",
    "usd_value",
    "gbp_value",
    "original_amount",
    "id",
    "source",
    "source_id",
    "accounting_system_id",
]

# 0-based position of each field within a row
COLUMN_INDEX = {name: index for index, name in enumerate(MOVEMENT_COLUMNS)}

CURRENCY_VALUE_FIELDS = ("clp_value", "usd_value", "gbp_value")


def column_number(field: str) -> int:
    """1-based sheet column of a field."""
    return COLUMN_INDEX[field] + 1


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a cell into a Decimal.

    Blanks, spreadsheet error strings, non-numeric text and NaN all return
    None. Thousands separators are tolerated.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_row_id(row: list) -> Optional[int]:
    """Read the id column of a raw row, or None if it isn't a positive integer."""
    try:
        cell = row[COLUMN_INDEX["id"]]
    except IndexError:
        return None
    parsed = parse_decimal(cell)
    if parsed is None or parsed != parsed.to_integral_value() or parsed < 1:
        return None
    return int(parsed)


def serialize_cell(field: str, value: Any) -> str:
    """Convert one field value to the string stored in the sheet."""
    if value is None:
        if field in CURRENCY_VALUE_FIELDS:
            return FAILED_CONVERSION_SENTINEL
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def movement_to_row(movement: Movement) -> list[str]:
    """Convert a Movement to a spreadsheet row in column order."""
    return [
        serialize_cell(field, getattr(movement, field))
        for field in MOVEMENT_COLUMNS
    ]


def row_to_movement(row: list) -> Movement:
    """
    Convert a spreadsheet row to a Movement.

    Raises:
        ValueError: If the row cannot form a valid Movement (pydantic's
            ValidationError is a ValueError subclass)
    """
    # Handle missing columns gracefully
    def safe_get(field: str, default: str = "") -> str:
        try:
            value = row[COLUMN_INDEX[field]]
        except IndexError:
            return default
        return str(value).strip() if value not in (None, "") else default

    row_id = parse_row_id(row)
    if row_id is None:
        raise ValueError(f"Invalid movement id: {safe_get('id')!r}")

    amount = parse_decimal(safe_get("amount"))
    if amount is None:
        raise ValueError(f"Movement #{row_id} has no valid amount")

    settled_movement_id = parse_decimal(safe_get("settled_movement_id"))

    return Movement(
        id=row_id,
        timestamp=safe_get("timestamp") or None,
        direction=safe_get("direction"),
        type=safe_get("type"),
        amount=amount,
        currency=safe_get("currency").upper(),
        source_description=safe_get("source_description"),
        user_description=safe_get("user_description"),
        comment=safe_get("comment"),
        ai_comment=safe_get("ai_comment"),
        category=safe_get("category") or None,
        status=safe_get("status") or None,
        settled_movement_id=int(settled_movement_id) if settled_movement_id is not None else None,
        clp_value=parse_decimal(safe_get("clp_value")),
        usd_value=parse_decimal(safe_get("usd_value")),
        gbp_value=parse_decimal(safe_get("gbp_value")),
        original_amount=parse_decimal(safe_get("original_amount")),
        source=safe_get("source").lower() or None,
        source_id=safe_get("source_id") or None,
        accounting_system_id=safe_get("accounting_system_id") or None,
    )
