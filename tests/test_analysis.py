"""Tests for the analysis flow and the Splitwise push flow."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

from expense_ledger.audit import AuditLogger
from expense_ledger.ledger import LedgerStore, MovementSplitter, SettlementMatcher
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.movement import (
    Direction,
    MovementStatus,
    MovementType,
)
from expense_ledger.pipeline import AnalysisFlow, SplitwisePushFlow, personal_portion

from conftest import (
    FakeClassifier,
    FakeMatcher,
    FakePublisher,
    FlakyTable,
    RecordingAuditStorage,
    make_movement,
    make_table,
)


def analysis(store, conversion, classifier, matcher=None, audit=None):
    return AnalysisFlow(
        store=store,
        splitter=MovementSplitter(store, conversion),
        settlement=SettlementMatcher(store, matcher or FakeMatcher(None)),
        classifier=classifier,
        audit=audit,
        correlation_id=uuid4() if audit else None,
        ai_call_delay_seconds=0,
    )


class TestAnalysisFlow:
    """Tests for AnalysisFlow."""

    def test_plain_classification(self, conversion):
        """Test a movement gets its category and clean description."""
        store = LedgerStore(make_table(make_movement(1, user_description="pizza", comment="friday")))
        classifier = FakeClassifier(classifications={
            "pizza friday": {"category": "restaurants", "needs_split": False, "clean_description": "Pizza night"},
        })

        report = asyncio.run(analysis(store, conversion, classifier).run())

        movement = store.find_by_id(1)
        assert report.succeeded == 1
        assert movement.category == "restaurants"
        assert movement.user_description == "Pizza night"
        assert movement.comment == ""

    def test_rejected_classification_leaves_movement(self, conversion):
        """Test invalid output is discarded and audited."""
        table = make_table(make_movement(1, user_description="bitcoin"))
        before = table.rows
        storage = RecordingAuditStorage()
        classifier = FakeClassifier(classifications={"bitcoin": {"category": "crypto"}})

        report = asyncio.run(analysis(
            LedgerStore(table), conversion, classifier, audit=AuditLogger(storage)
        ).run())

        assert report.failed == 1
        assert table.rows == before
        assert [e.event_type for e in storage.events] == [AuditEventType.CLASSIFICATION_REJECTED]

    def test_classifier_error_counted(self, conversion):
        """Test a classifier failure doesn't stop the other movements."""
        store = LedgerStore(make_table(
            make_movement(1, user_description="one"),
            make_movement(2, user_description="two"),
        ))
        classifier = FakeClassifier(classifications={
            "one": RuntimeError("timeout"),
            "two": {"category": "other"},
        })

        report = asyncio.run(analysis(store, conversion, classifier).run())

        assert (report.succeeded, report.failed) == (1, 1)
        assert store.find_by_id(2).category == "other"

    def test_write_failure_does_not_stop_later_movements(self, conversion):
        """Test a storage error on one movement is counted and the rest still analyzed."""
        table = FlakyTable(
            make_movement(1, user_description="bus"),
            make_movement(2, user_description="train"),
            failing_rows={2},
        )
        store = LedgerStore(table)
        classifier = FakeClassifier(classifications={
            "bus": {"category": "transport"},
            "train": {"category": "transport"},
        })

        report = asyncio.run(analysis(store, conversion, classifier).run())

        assert (report.succeeded, report.failed) == (1, 1)
        assert store.find_by_id(1).category is None
        assert store.find_by_id(2).category == "transport"

    def test_debit_split(self, conversion):
        """Test a shared expense is split into personal part and debit."""
        store = LedgerStore(make_table(make_movement(1, user_description="dinner, mine was 30")))
        classifier = FakeClassifier(classifications={
            "dinner, mine was 30": {
                "category": "restaurants",
                "needs_split": True,
                "split_type": "DEBIT",
                "split_amount": 30,
                "split_category": "restaurants",
                "split_description": "Dinner owed by friends",
            },
        })

        report = asyncio.run(analysis(store, conversion, classifier).run())

        assert report.details["split"] == 1
        assert store.find_by_id(1).amount == Decimal("30")
        shared = store.find_by_id(2)
        assert shared.type == MovementType.DEBIT
        assert shared.amount == Decimal("70")

    def test_invalid_split_counted_failed(self, conversion):
        """Test a split bigger than the movement is not applied."""
        table = make_table(make_movement(1, amount=Decimal("50"), usd_value=Decimal("50"), user_description="taxi"))
        before = table.rows
        classifier = FakeClassifier(classifications={
            "taxi": {"needs_split": True, "split_type": "EXPENSE", "split_amount": 60},
        })

        report = asyncio.run(analysis(LedgerStore(table), conversion, classifier).run())

        assert report.failed == 1
        assert table.rows == before

    def test_analyzed_repayment_is_settled(self, conversion):
        """Test a described repayment goes on to settlement."""
        store = LedgerStore(make_table(
            make_movement(1, type=MovementType.DEBIT, status=MovementStatus.PENDING_DIRECT_SETTLEMENT,
                          user_description="Concert tickets", category="entertainment"),
            make_movement(2, type=MovementType.DEBIT_REPAYMENT, direction=Direction.INFLOW,
                          user_description="Ana paying back tickets"),
        ))
        classifier = FakeClassifier(classifications={
            "Ana paying back tickets": {"category": "entertainment"},
        })

        report = asyncio.run(analysis(store, conversion, classifier, matcher=FakeMatcher(1)).run())

        assert report.details["settled"] == 1
        assert store.find_by_id(2).settled_movement_id == 1
        assert store.find_by_id(1).status == MovementStatus.SETTLED

    def test_nothing_to_analyze(self, store, conversion):
        """Test an empty ledger makes no AI calls."""
        classifier = FakeClassifier()
        report = asyncio.run(analysis(store, conversion, classifier).run())
        assert report.succeeded == 0
        assert classifier.classify_calls == []


class TestSplitwisePushFlow:
    """Tests for SplitwisePushFlow."""

    def awaiting(self, movement_id: int, **overrides):
        fields = dict(
            type=MovementType.DEBIT,
            direction=Direction.NEUTRAL,
            status=MovementStatus.PENDING_SPLITWISE_SETTLEMENT,
            user_description="Groceries for the flat",
        )
        fields.update(overrides)
        return make_movement(movement_id, **fields)

    def test_personal_portion_from_split(self):
        """Test the personal half is found through the split reference."""
        store = LedgerStore(make_table(
            make_movement(1, amount=Decimal("30"), ai_comment="Split into #2"),
            self.awaiting(2, amount=Decimal("70"), ai_comment="Split from #1"),
        ))
        assert personal_portion(store, store.find_by_id(2)) == Decimal("30")
        assert personal_portion(store, make_movement(3)) == Decimal("0")

    def test_push_marks_movement_in_splitwise(self):
        """Test a published debit gets the expense id and new status."""
        store = LedgerStore(make_table(
            make_movement(1, amount=Decimal("30"), ai_comment="Split into #2"),
            self.awaiting(2, amount=Decimal("70"), ai_comment="Split from #1"),
        ))
        publisher = FakePublisher("sw-500")

        report = asyncio.run(SplitwisePushFlow(store, publisher, group_id=7, call_delay_seconds=0).run())

        assert report.succeeded == 1
        expense = publisher.expenses[0]
        assert expense.total_amount == Decimal("100")
        assert expense.personal_amount == Decimal("30")
        assert expense.group_id == 7
        assert expense.date == date(2024, 3, 3)

        movement = store.find_by_id(2)
        assert movement.accounting_system_id == "sw-500"
        assert movement.status == MovementStatus.IN_SPLITWISE

    def test_publisher_failure_leaves_status(self):
        """Test a failed push is retried next run."""
        store = LedgerStore(make_table(self.awaiting(1)))
        storage = RecordingAuditStorage()

        report = asyncio.run(SplitwisePushFlow(
            store,
            FakePublisher(error=RuntimeError("401 Unauthorized")),
            audit=AuditLogger(storage),
            correlation_id=uuid4(),
            call_delay_seconds=0,
        ).run())

        assert report.failed == 1
        assert store.find_by_id(1).status == MovementStatus.PENDING_SPLITWISE_SETTLEMENT
        assert storage.events[0].event_type == AuditEventType.EXTERNAL_SERVICE_ERROR

    def test_already_published_only_fixes_status(self):
        """Test a movement with an expense id isn't published twice."""
        store = LedgerStore(make_table(self.awaiting(1, accounting_system_id="sw-9")))
        publisher = FakePublisher()

        report = asyncio.run(SplitwisePushFlow(store, publisher, call_delay_seconds=0).run())

        assert report.skipped == 1
        assert publisher.expenses == []
        assert store.find_by_id(1).status == MovementStatus.IN_SPLITWISE

    def test_status_write_failure_does_not_stop_later_pushes(self):
        """Test a failed status update is counted and the next debit is still pushed."""
        store = LedgerStore(FlakyTable(self.awaiting(1), self.awaiting(2), failing_rows={2}))
        publisher = FakePublisher("sw-77")

        report = asyncio.run(SplitwisePushFlow(store, publisher, call_delay_seconds=0).run())

        assert (report.succeeded, report.failed) == (1, 1)
        assert len(publisher.expenses) == 2
        assert store.find_by_id(1).status == MovementStatus.PENDING_SPLITWISE_SETTLEMENT
        assert store.find_by_id(2).status == MovementStatus.IN_SPLITWISE
