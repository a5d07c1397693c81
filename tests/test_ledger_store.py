"""Tests for LedgerStore: identity, idempotency keys, updates and filters."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from expense_ledger.ledger.store import LedgerStore, chronological_order
from expense_ledger.models.classification import ClassificationResult
from expense_ledger.models.movement import (
    MovementCategory,
    MovementSource,
    MovementStatus,
    MovementType,
)
from expense_ledger.services.storage import (
    COLUMN_INDEX,
    DuplicateIdError,
    InMemoryTable,
    InvalidSettlementReferenceError,
    StorageError,
    movement_to_row,
)

from conftest import make_movement, make_table


def ts(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


class UnreachableTable(InMemoryTable):
    def read_rows(self):
        raise StorageError("spreadsheet unreachable")


class TestIdentity:
    """Tests for id allocation."""

    def test_empty_ledger_starts_at_one(self, store):
        """Test next_id on an empty ledger."""
        assert store.next_id() == 1

    def test_next_id_is_max_plus_one(self):
        """Test gaps are not reused."""
        store = LedgerStore(make_table(make_movement(1), make_movement(5)))
        assert store.next_id() == 6

    def test_malformed_row_still_holds_its_id(self):
        """Test an unparsable row's id is never handed out again."""
        row = movement_to_row(make_movement(7))
        row[COLUMN_INDEX["amount"]] = "not a number"
        store = LedgerStore(InMemoryTable(rows=[movement_to_row(make_movement(1)), row]))

        assert store.next_id() == 8
        assert [m.id for m in store.all_movements()] == [1]

    def test_insert_duplicate_id_raises(self):
        """Test two rows never share an id."""
        store = LedgerStore(make_table(make_movement(3)))
        with pytest.raises(DuplicateIdError):
            store.insert(make_movement(3))

    def test_initialize_raises_when_unreachable(self):
        """Test an unreachable ledger stops the run."""
        with pytest.raises(StorageError):
            LedgerStore(UnreachableTable()).initialize()


class TestBatchInsert:
    """Tests for chronological batch insertion."""

    def test_batch_is_written_oldest_first(self, store, table):
        """Test T3, T1, T2 are written as T1, T2, T3."""
        batch = [
            make_movement(3, timestamp=ts(3)),
            make_movement(1, timestamp=ts(1)),
            make_movement(2, timestamp=ts(2)),
        ]
        inserted = store.insert_batch(batch)

        assert [m.id for m in inserted] == [1, 2, 3]
        assert [m.id for m in store.all_movements()] == [1, 2, 3]
        assert len(table.rows) == 3

    def test_missing_timestamp_sorts_first(self):
        """Test movements without a timestamp come first."""
        ordered = chronological_order([
            make_movement(1, timestamp=ts(2)),
            make_movement(2, timestamp=None),
        ])
        assert [m.id for m in ordered] == [2, 1]

    def test_equal_timestamps_keep_input_order(self):
        """Test the sort is stable."""
        ordered = chronological_order([
            make_movement(9, timestamp=ts(1)),
            make_movement(4, timestamp=ts(1)),
        ])
        assert [m.id for m in ordered] == [9, 4]

    def test_failed_insert_leaves_chronological_prefix(self):
        """Test a duplicate id stops the batch after the rows before it."""
        store = LedgerStore(make_table(make_movement(2)))
        batch = [
            make_movement(3, timestamp=ts(1)),
            make_movement(2, timestamp=ts(2)),
            make_movement(4, timestamp=ts(3)),
        ]
        with pytest.raises(DuplicateIdError):
            store.insert_batch(batch)
        assert [m.id for m in store.all_movements()] == [2, 3]


class TestIdempotencyKeys:
    """Tests for existing_keys and existing_accounting_system_ids."""

    def test_keys_filtered_by_source(self):
        """Test keys of one source don't block another."""
        store = LedgerStore(make_table(
            make_movement(1, source=MovementSource.GMAIL, source_id="msg-1"),
            make_movement(2, source=MovementSource.MONZO, source_id="tx-1"),
        ))
        assert store.existing_keys(MovementSource.GMAIL) == {"msg-1"}
        assert store.existing_keys() == {"msg-1", "tx-1"}

    def test_accounting_ids(self):
        """Test Splitwise keys are read from accounting_system_id."""
        store = LedgerStore(make_table(
            make_movement(1, accounting_system_id="sw-9"),
            make_movement(2),
        ))
        assert store.existing_accounting_system_ids() == {"sw-9"}


class TestUpdates:
    """Tests for field updates."""

    def test_update_missing_id_returns_false(self, store, table):
        """Test updates to unknown ids are logged, not raised."""
        store.insert(make_movement(1))
        before = table.rows

        assert store.set_category(99, MovementCategory.RENT) is False
        assert table.rows == before

    def test_update_touches_only_named_cells(self):
        """Test other columns keep their raw cell text."""
        table = make_table(make_movement(1, user_description="Taxi"))
        table.update_cells(2, {COLUMN_INDEX["comment"] + 1: "typed by hand"})
        store = LedgerStore(table)

        assert store.set_category(1, MovementCategory.TRANSPORT) is True
        row = table.rows[0]
        assert row[COLUMN_INDEX["category"]] == "transport"
        assert row[COLUMN_INDEX["comment"]] == "typed by hand"

    def test_invalid_update_writes_nothing(self, store, table):
        """Test the updated movement is validated before writing."""
        store.insert(make_movement(1))
        before = table.rows
        with pytest.raises(ValueError):
            store.update_fields(1, amount=Decimal("-1"))
        assert table.rows == before

    def test_apply_classification(self, store):
        """Test a clean description replaces the text and clears the comment."""
        store.insert(make_movement(1, user_description="uber airport", comment="work trip"))
        result = ClassificationResult(
            category=MovementCategory.TRANSPORT,
            clean_description="Uber to airport",
        )
        assert store.apply_classification(1, result) is True

        movement = store.find_by_id(1)
        assert movement.category == "transport"
        assert movement.user_description == "Uber to airport"
        assert movement.comment == ""

    def test_accounting_id_and_status(self, store):
        """Test marking a debit as published."""
        store.insert(make_movement(1, type=MovementType.DEBIT,
                                   status=MovementStatus.PENDING_SPLITWISE_SETTLEMENT))
        assert store.set_accounting_system_id_and_status(1, "sw-77") is True

        movement = store.find_by_id(1)
        assert movement.accounting_system_id == "sw-77"
        assert movement.status == MovementStatus.IN_SPLITWISE


class TestSettlementReference:
    """Tests for set_settled_movement_id."""

    @pytest.fixture
    def settle_store(self):
        return LedgerStore(make_table(
            make_movement(1, type=MovementType.DEBIT, status=MovementStatus.PENDING_DIRECT_SETTLEMENT),
            make_movement(2, type=MovementType.DEBIT_REPAYMENT),
            make_movement(3),
            make_movement(4, type=MovementType.DEBIT, status=MovementStatus.PENDING_DIRECT_SETTLEMENT),
        ))

    def test_reference_recorded(self, settle_store):
        """Test a repayment can point at a debit."""
        assert settle_store.set_settled_movement_id(2, 1) is True
        assert settle_store.find_by_id(2).settled_movement_id == 1

    def test_target_must_be_debit_or_credit(self, settle_store):
        """Test a plain expense is not a valid target."""
        with pytest.raises(InvalidSettlementReferenceError):
            settle_store.set_settled_movement_id(2, 3)

    def test_missing_target_returns_false(self, settle_store):
        """Test unknown targets are not written."""
        assert settle_store.set_settled_movement_id(2, 42) is False
        assert settle_store.find_by_id(2).settled_movement_id is None

    def test_reference_cannot_be_repointed(self, settle_store):
        """Test an existing reference is never overwritten."""
        settle_store.set_settled_movement_id(2, 1)
        assert settle_store.set_settled_movement_id(2, 1) is True
        with pytest.raises(InvalidSettlementReferenceError):
            settle_store.set_settled_movement_id(2, 4)


class TestFilters:
    """Tests for the row filters."""

    def test_filters(self):
        """Test each filter picks the right rows."""
        table = make_table(
            make_movement(1, user_description="Pizza"),
            make_movement(2, user_description="Pizza", category="restaurants"),
            make_movement(3, type=MovementType.DEBIT, status=MovementStatus.PENDING_DIRECT_SETTLEMENT),
            make_movement(4, type=MovementType.DEBIT, status=MovementStatus.PENDING_SPLITWISE_SETTLEMENT),
            make_movement(5, gbp_value=None),
            make_movement(6, type=MovementType.DEBIT_REPAYMENT),
            make_movement(7, type=MovementType.DEBIT_REPAYMENT, settled_movement_id=3),
        )
        store = LedgerStore(table)

        assert [m.id for m in store.rows_needing_category_analysis()] == [1]
        assert [m.id for m in store.rows_pending_direct_settlement()] == [3]
        assert [m.id for m in store.rows_pending_splitwise_settlement()] == [4]
        assert [c.movement_id for c in store.rows_with_failed_currency_conversion()] == [5]

    def test_spreadsheet_error_counts_as_failed_conversion(self):
        """Test error strings typed or computed in the sheet are picked up."""
        row = movement_to_row(make_movement(1))
        row[COLUMN_INDEX["clp_value"]] = "Loading..."
        store = LedgerStore(InMemoryTable(rows=[row]))
        assert [c.movement_id for c in store.rows_with_failed_currency_conversion()] == [1]

    def test_failed_conversion_rows_read_from_raw_cells(self):
        """Test a row that no longer parses as a movement is still listed for repair."""
        row = movement_to_row(make_movement(1, gbp_value=None))
        row[COLUMN_INDEX["currency"]] = "EUR"
        store = LedgerStore(InMemoryTable(rows=[row]))

        assert store.all_movements() == []
        [candidate] = store.rows_with_failed_currency_conversion()
        assert candidate.movement_id == 1
        assert candidate.currency == "EUR"
        assert candidate.amount == "100"
        assert candidate.values.gbp_value is None

    def test_blank_rows_are_skipped(self):
        """Test empty sheet rows are ignored."""
        table = InMemoryTable(rows=[movement_to_row(make_movement(1)), [""] * 20])
        assert [m.id for m in LedgerStore(table).all_movements()] == [1]
