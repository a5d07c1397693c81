"""
Ledger Store

Identity, idempotency and every field-level mutation of the ledger live
here, on top of a TabularStore.

DESIGN DECISION: No state is cached between calls. `next_id`, the
idempotency key sets and every update re-read the table, so edits made by
the user (or by an overlapping run) are always respected. Mutual exclusion
across runs is NOT provided; at most one run at a time is an operational
assumption.

Error handling:
- Integrity violations (duplicate id, bad settlement reference) raise.
- Updates aimed at an id that isn't in the table log and return False.
  Retried batches routinely reference ids from an earlier partial run, so
  this must never abort a batch.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, NamedTuple, Optional, Union

import structlog

from expense_ledger.models.classification import ClassificationResult
from expense_ledger.models.movement import (
    SETTLEABLE_TYPES,
    CurrencyValues,
    Movement,
    MovementCategory,
    MovementSource,
    MovementStatus,
    MovementType,
)
from expense_ledger.services.storage import (
    COLUMN_INDEX,
    DuplicateIdError,
    InvalidSettlementReferenceError,
    TabularStore,
    column_number,
    movement_to_row,
    parse_row_id,
    row_to_movement,
)
from expense_ledger.services.storage.movement_rows import (
    CURRENCY_VALUE_FIELDS,
    parse_decimal,
    serialize_cell,
)


logger = structlog.get_logger(__name__)

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def chronological_order(movements: Iterable[Movement]) -> list[Movement]:
    """
    Sort by timestamp ascending. Missing timestamps sort first.

    The sort is stable, so movements with equal timestamps keep their
    input order.
    """
    return sorted(
        movements,
        key=lambda m: (m.timestamp is not None, m.timestamp or _EARLIEST),
    )


class ConversionCandidate(NamedTuple):
    """
    A row with at least one failed currency value, read from raw cells.

    `amount` and `currency` are the cells as stored, so a row whose amount
    or currency is unusable still reaches the repair pass.
    """
    movement_id: int
    amount: str
    currency: str
    values: CurrencyValues


class LedgerStore:
    """The movements ledger."""

    def __init__(self, table: TabularStore):
        self._table = table

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def initialize(self) -> int:
        """
        Check the table is reachable.

        Returns the number of data rows. Raises StorageError (or
        ConnectionError) if the table cannot be read; a run must not
        continue past that.
        """
        count = len(self._table.read_rows())
        logger.info("ledger_initialized", rows=count)
        return count

    def _scan(self) -> list[tuple[int, Movement]]:
        """Every parsable movement with its sheet row number."""
        movements = []
        for row_number, row in enumerate(self._table.read_rows(), start=2):
            if not any(str(cell).strip() for cell in row):
                continue
            try:
                movements.append((row_number, row_to_movement(row)))
            except ValueError as e:
                logger.warning("malformed_ledger_row", row_number=row_number, error=str(e))
        return movements

    def _raw_ids(self) -> set[int]:
        """Ids of every row, parsable or not."""
        ids = set()
        for row in self._table.read_rows():
            row_id = parse_row_id(row)
            if row_id is not None:
                ids.add(row_id)
        return ids

    def _locate(self, movement_id: int) -> Optional[tuple[int, Movement]]:
        for row_number, row in enumerate(self._table.read_rows(), start=2):
            if parse_row_id(row) != movement_id:
                continue
            try:
                return row_number, row_to_movement(row)
            except ValueError as e:
                logger.warning(
                    "malformed_ledger_row",
                    row_number=row_number,
                    movement_id=movement_id,
                    error=str(e),
                )
                return None
        return None

    def all_movements(self) -> list[Movement]:
        return [movement for _, movement in self._scan()]

    def find_by_id(self, movement_id: int) -> Optional[Movement]:
        located = self._locate(movement_id)
        return located[1] if located else None

    # -------------------------------------------------------------------------
    # Identity and idempotency
    # -------------------------------------------------------------------------

    def next_id(self) -> int:
        """max(existing ids) + 1, or 1 for an empty ledger."""
        ids = self._raw_ids()
        return max(ids) + 1 if ids else 1

    def existing_keys(self, source: Optional[MovementSource] = None) -> set[str]:
        """
        source_id values already in the ledger.

        Filtered by source when one is given. Read from raw cells so a row
        that no longer parses still blocks re-ingestion of its key.
        """
        wanted = source.value if source is not None else None
        keys = set()
        for row in self._table.read_rows():
            source_id = _cell(row, "source_id")
            if not source_id:
                continue
            if wanted is not None and _cell(row, "source").lower() != wanted:
                continue
            keys.add(source_id)
        return keys

    def existing_accounting_system_ids(self) -> set[str]:
        return {
            accounting_id
            for accounting_id in (_cell(row, "accounting_system_id") for row in self._table.read_rows())
            if accounting_id
        }

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def insert(self, movement: Movement) -> None:
        """
        Append a movement.

        Raises:
            DuplicateIdError: If the id is already taken
        """
        if movement.id in self._raw_ids():
            raise DuplicateIdError(f"Movement id {movement.id} already exists")
        self._table.append_row(movement_to_row(movement))
        logger.info(
            "movement_inserted",
            movement_id=movement.id,
            type=movement.type.value,
            amount=str(movement.amount),
            currency=movement.currency.value,
        )

    def insert_batch(self, movements: Iterable[Movement]) -> list[Movement]:
        """
        Insert movements oldest first.

        If an insert fails, the rows already written form a chronological
        prefix of the batch. Returns the movements in insertion order.
        """
        ordered = chronological_order(movements)
        for movement in ordered:
            self.insert(movement)
        return ordered

    # -------------------------------------------------------------------------
    # Field updates
    # -------------------------------------------------------------------------

    def update_fields(self, movement_id: int, **fields: Any) -> bool:
        """
        Overwrite named fields of one movement.

        The result is validated as a whole Movement before anything is
        written. Returns False (and logs) if the id is absent.
        """
        located = self._locate(movement_id)
        if located is None:
            logger.warning(
                "movement_not_found",
                movement_id=movement_id,
                fields=sorted(fields),
            )
            return False

        row_number, movement = located
        updated = Movement(**{**movement.model_dump(), **fields})
        self._table.update_cells(
            row_number,
            {
                column_number(field): serialize_cell(field, getattr(updated, field))
                for field in fields
            },
        )
        logger.debug("movement_updated", movement_id=movement_id, fields=sorted(fields))
        return True

    def set_category(
        self,
        movement_id: int,
        category: Union[MovementCategory, str, None],
    ) -> bool:
        if isinstance(category, Enum):
            category = category.value
        return self.update_fields(movement_id, category=category)

    def set_status(self, movement_id: int, status: Optional[MovementStatus]) -> bool:
        return self.update_fields(movement_id, status=status)

    def set_settled_movement_id(self, repayment_id: int, target_id: int) -> bool:
        """
        Record that `repayment_id` settles `target_id`.

        Raises:
            InvalidSettlementReferenceError: If the target is not a debit or
                credit, or the repayment already points elsewhere
        """
        target = self.find_by_id(target_id)
        if target is None:
            logger.warning(
                "settlement_target_not_found",
                repayment_id=repayment_id,
                target_id=target_id,
            )
            return False
        if target.type not in SETTLEABLE_TYPES:
            raise InvalidSettlementReferenceError(
                f"Movement #{target_id} is a {target.type.value}, not a debit or credit"
            )

        repayment = self.find_by_id(repayment_id)
        if repayment is None:
            logger.warning("movement_not_found", movement_id=repayment_id, fields=["settled_movement_id"])
            return False
        if repayment.settled_movement_id == target_id:
            return True
        if repayment.settled_movement_id is not None:
            raise InvalidSettlementReferenceError(
                f"Movement #{repayment_id} already settles #{repayment.settled_movement_id}"
            )

        return self.update_fields(repayment_id, settled_movement_id=target_id)

    def set_accounting_system_id_and_status(
        self,
        movement_id: int,
        accounting_system_id: str,
        status: MovementStatus = MovementStatus.IN_SPLITWISE,
    ) -> bool:
        return self.update_fields(
            movement_id,
            accounting_system_id=accounting_system_id,
            status=status,
        )

    def set_currency_values(self, movement_id: int, values: CurrencyValues) -> bool:
        return self.update_fields(movement_id, **values.as_fields())

    def apply_classification(self, movement_id: int, result: ClassificationResult) -> bool:
        """
        Store a non-split classification.

        Sets the category; a clean description replaces the user
        description and the comment is cleared, since it has been read.
        """
        fields: dict[str, Any] = {
            "category": result.category.value if result.category else None,
        }
        if result.clean_description:
            fields["user_description"] = result.clean_description
            fields["comment"] = ""
        return self.update_fields(movement_id, **fields)

    # -------------------------------------------------------------------------
    # Filters
    # -------------------------------------------------------------------------

    def rows_needing_category_analysis(self) -> list[Movement]:
        return [m for m in self.all_movements() if m.needs_category_analysis]

    def rows_pending_direct_settlement(self) -> list[Movement]:
        return [
            m for m in self.all_movements()
            if m.type == MovementType.DEBIT
            and m.status == MovementStatus.PENDING_DIRECT_SETTLEMENT
        ]

    def rows_pending_splitwise_settlement(self) -> list[Movement]:
        return [
            m for m in self.all_movements()
            if m.status == MovementStatus.PENDING_SPLITWISE_SETTLEMENT
        ]

    def rows_with_failed_currency_conversion(self) -> list[ConversionCandidate]:
        """
        Rows whose clp/usd/gbp value is a failed conversion.

        Scans raw cells rather than parsed movements; rows whose amount or
        currency is invalid are returned too. Rows without a usable id
        cannot be written back and are skipped.
        """
        candidates = []
        for row_number, row in enumerate(self._table.read_rows(), start=2):
            if not any(str(cell).strip() for cell in row):
                continue
            values = CurrencyValues(**{
                field: parse_decimal(_cell(row, field)) for field in CURRENCY_VALUE_FIELDS
            })
            if not values.has_failures:
                continue
            movement_id = parse_row_id(row)
            if movement_id is None:
                logger.warning("failed_conversion_row_without_id", row_number=row_number)
                continue
            candidates.append(ConversionCandidate(
                movement_id=movement_id,
                amount=_cell(row, "amount"),
                currency=_cell(row, "currency"),
                values=values,
            ))
        return candidates


def _cell(row: list, field: str) -> str:
    try:
        value = row[COLUMN_INDEX[field]]
    except IndexError:
        return ""
    return str(value).strip() if value is not None else ""
