"""
Movement Splitter

Two split algorithms, both conserving the amount and each currency value
exactly:

1. Shared-expense split (DEBIT): the original row keeps the user's
   personal portion; a new Debit row holds the part others owe.
2. Re-categorization split (EXPENSE): one payment spanning two of the
   user's own categories. Both halves are left uncategorized so the next
   analysis pass can categorize each one.

Each half carries a cross-reference in `ai_comment` ("Split into #N" on
the original, "Split from #M" on the new row) and `original_amount`.

CRITICAL: Currency values are split proportionally from the stored
values, never re-converted. See CurrencyConversionService.split_pair.

DESIGN DECISION: The new row is inserted BEFORE the original is rewritten.
If the insert fails (for example a duplicate-id race with another run),
the ledger is left exactly as it was.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from expense_ledger.ledger.store import LedgerStore
from expense_ledger.models.classification import ClassificationResult
from expense_ledger.models.movement import (
    Direction,
    Movement,
    MovementStatus,
    MovementType,
)
from expense_ledger.services.currency import CurrencyConversionService


logger = structlog.get_logger(__name__)


def split_into_comment(new_id: int) -> str:
    return f"Split into #{new_id}"


def split_from_comment(original_id: int) -> str:
    return f"Split from #{original_id}"


class MovementSplitter:
    """Splits ledger movements in two."""

    def __init__(self, store: LedgerStore, conversion: CurrencyConversionService):
        self._store = store
        self._conversion = conversion

    def _load(self, movement_id: int, split_amount: Optional[Decimal], kind: str) -> Optional[Movement]:
        """Fetch the original and check the split amount; None means abort."""
        original = self._store.find_by_id(movement_id)
        if original is None:
            logger.warning("split_original_not_found", movement_id=movement_id, kind=kind)
            return None

        if split_amount is None or not (0 < split_amount < original.amount):
            logger.warning(
                "invalid_split_amount",
                movement_id=movement_id,
                kind=kind,
                split_amount=str(split_amount),
                original_amount=str(original.amount),
            )
            return None

        return original

    def split_shared_expense(
        self,
        movement_id: int,
        result: ClassificationResult,
    ) -> Optional[int]:
        """
        Keep the personal portion on the original row and move the rest
        to a new pending Debit.

        Returns the new movement's id, or None if the split did not happen.
        """
        split_amount = result.split_amount
        original = self._load(movement_id, split_amount, kind="shared_expense")
        if original is None:
            return None

        remaining = original.amount - split_amount
        personal_values, shared_values = self._conversion.split_pair(
            original.amount, split_amount, original.currency_values
        )
        category = result.split_category.value if result.split_category else None
        new_id = self._store.next_id()

        shared = _derive(
            original,
            id=new_id,
            amount=remaining,
            direction=Direction.NEUTRAL,
            type=MovementType.DEBIT,
            status=MovementStatus.PENDING_DIRECT_SETTLEMENT,
            category=category,
            user_description=result.split_description or "",
            ai_comment=split_from_comment(original.id),
            **shared_values.as_fields(),
        )
        self._store.insert(shared)

        self._store.update_fields(
            original.id,
            amount=split_amount,
            category=category,
            user_description=result.clean_description or original.user_description,
            comment="",
            ai_comment=split_into_comment(new_id),
            original_amount=original.amount,
            **personal_values.as_fields(),
        )

        logger.info(
            "movement_split",
            kind="shared_expense",
            movement_id=original.id,
            new_movement_id=new_id,
            personal_amount=str(split_amount),
            shared_amount=str(remaining),
        )
        return new_id

    def split_for_recategorization(
        self,
        movement_id: int,
        result: ClassificationResult,
    ) -> Optional[int]:
        """
        Move `split_amount` into a new uncategorized movement; the original
        keeps the remainder and loses its category.

        Returns the new movement's id, or None if the split did not happen.
        """
        split_amount = result.split_amount
        original = self._load(movement_id, split_amount, kind="recategorization")
        if original is None:
            return None

        remaining = original.amount - split_amount
        split_values, remaining_values = self._conversion.split_pair(
            original.amount, split_amount, original.currency_values
        )
        new_id = self._store.next_id()

        split_off = _derive(
            original,
            id=new_id,
            amount=split_amount,
            category=None,
            user_description=result.split_description or "",
            ai_comment=split_from_comment(original.id),
            **split_values.as_fields(),
        )
        self._store.insert(split_off)

        self._store.update_fields(
            original.id,
            amount=remaining,
            category=None,
            user_description=result.clean_description or original.user_description,
            comment="",
            ai_comment=split_into_comment(new_id),
            original_amount=original.amount,
            **remaining_values.as_fields(),
        )

        logger.info(
            "movement_split",
            kind="recategorization",
            movement_id=original.id,
            new_movement_id=new_id,
            split_amount=str(split_amount),
            remaining_amount=str(remaining),
        )
        return new_id


def _derive(original: Movement, **changes: Any) -> Movement:
    """
    A new movement based on `original`.

    Idempotency keys and the settlement reference are NOT inherited, so
    the one-movement-per-key rule survives the split.
    """
    fields = original.model_dump()
    fields.update(
        comment="",
        original_amount=original.amount,
        source_id=None,
        accounting_system_id=None,
        settled_movement_id=None,
    )
    fields.update(changes)
    return Movement(**fields)
