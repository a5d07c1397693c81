"""
Analysis and Splitwise Push Flows

AnalysisFlow: for every movement the user has described but not yet
categorized, ask the classifier, validate the answer, then either split
the movement or store the category. Analyzed repayments are then offered
to the settlement matcher.

SplitwisePushFlow: debits the user marked "Awaiting Splitwise Upload" are
created in the bill-splitting service and marked "In Splitwise".

CRITICAL: Classifier output is untrusted. Anything that fails validation
is discarded and the movement stays uncategorized for the next run.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.agents.interface import MovementClassifier
from expense_ledger.audit.logger import AuditLogger
from expense_ledger.ledger.settlement import SettlementMatcher, SettlementOutcome
from expense_ledger.ledger.splitter import MovementSplitter
from expense_ledger.ledger.store import LedgerStore
from expense_ledger.models.classification import (
    ClassificationRequest,
    ClassificationResult,
    validate_classification,
)
from expense_ledger.models.movement import Movement, MovementType
from expense_ledger.models.reports import StageReport
from expense_ledger.models.sources import SplitwiseExpense
from expense_ledger.pipeline.throttle import Throttle
from expense_ledger.sources.interface import SplitwisePublisher


logger = structlog.get_logger(__name__)

_SPLIT_FROM = re.compile(r"Split from #(\d+)")


class AnalysisFlow:
    """Classification, splitting and settlement for one run."""

    def __init__(
        self,
        store: LedgerStore,
        splitter: MovementSplitter,
        settlement: SettlementMatcher,
        classifier: MovementClassifier,
        audit: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
        ai_call_delay_seconds: float = 1.0,
    ):
        self._store = store
        self._splitter = splitter
        self._settlement = settlement
        self._classifier = classifier
        self._audit = audit
        self._correlation_id = correlation_id
        self._throttle = Throttle(ai_call_delay_seconds)

    @property
    def _auditing(self) -> bool:
        return self._audit is not None and self._correlation_id is not None

    async def run(self) -> StageReport:
        report = StageReport(
            stage="analysis",
            details={"split": 0, "settled": 0, "settlement_references": 0, "settlement_errors": 0},
        )

        pending = self._store.rows_needing_category_analysis()
        if not pending:
            logger.info("no_movements_need_analysis")
            return report

        logger.info("analysis_started", count=len(pending))
        for movement in pending:
            try:
                result = await self._classify(movement)
                analyzed = result is not None and await self._apply(movement, result, report)
            except Exception as e:
                logger.error("movement_analysis_failed", movement_id=movement.id, error=str(e))
                analyzed = False

            if not analyzed:
                report.failed += 1
                continue
            report.succeeded += 1

            if movement.type == MovementType.DEBIT_REPAYMENT:
                try:
                    await self._settle(movement, report)
                except Exception as e:
                    logger.error("settlement_failed", movement_id=movement.id, error=str(e))
                    report.details["settlement_errors"] += 1

        logger.info(
            "analysis_completed",
            analyzed=report.succeeded,
            failed=report.failed,
            **report.details,
        )
        return report

    async def _classify(self, movement: Movement) -> Optional[ClassificationResult]:
        await self._throttle.wait()
        try:
            raw = await self._classifier.classify(ClassificationRequest.from_movement(movement))
        except Exception as e:
            logger.warning("classification_failed", movement_id=movement.id, error=str(e))
            return None

        result = validate_classification(raw)
        if result is None and self._auditing:
            await self._audit.log_classification_rejected(movement.id, self._correlation_id)
        return result

    async def _apply(
        self,
        movement: Movement,
        result: ClassificationResult,
        report: StageReport,
    ) -> bool:
        """Split or categorize. False means nothing was written."""
        if result.is_expense_split or result.is_debit_split:
            if result.is_expense_split:
                new_id = self._splitter.split_for_recategorization(movement.id, result)
            else:
                new_id = self._splitter.split_shared_expense(movement.id, result)

            if self._auditing:
                await self._audit.log_movement_split(
                    original_id=movement.id,
                    new_id=new_id,
                    split_type=result.split_type.value,
                    correlation_id=self._correlation_id,
                )
            if new_id is None:
                return False
            report.details["split"] += 1
            return True

        if not self._store.apply_classification(movement.id, result):
            return False
        if self._auditing:
            await self._audit.log_movement_classified(
                movement_id=movement.id,
                category=result.category.value if result.category else None,
                correlation_id=self._correlation_id,
            )
        return True

    async def _settle(self, repayment: Movement, report: StageReport) -> None:
        await self._throttle.wait()
        decision = await self._settlement.settle(repayment.id)
        if not decision.reference_recorded:
            return

        report.details["settlement_references"] += 1
        settled = decision.outcome == SettlementOutcome.SETTLED
        if settled:
            report.details["settled"] += 1
        if self._auditing:
            await self._audit.log_settlement(
                repayment_id=repayment.id,
                debit_id=decision.debit_id,
                ratio=float(decision.ratio),
                settled=settled,
                correlation_id=self._correlation_id,
            )


def personal_portion(store: LedgerStore, debit: Movement) -> Decimal:
    """
    Amount of the personal half a debit was split from, or 0.

    Shared-expense splits leave "Split from #N" on the debit, where N is
    the row holding the user's own share.
    """
    match = _SPLIT_FROM.search(debit.ai_comment or "")
    if not match:
        return Decimal("0")
    personal = store.find_by_id(int(match.group(1)))
    if personal is None:
        logger.warning("personal_portion_not_found", debit_id=debit.id, personal_id=int(match.group(1)))
        return Decimal("0")
    return personal.amount


class SplitwisePushFlow:
    """Publishes debits awaiting upload to the bill-splitting service."""

    def __init__(
        self,
        store: LedgerStore,
        publisher: SplitwisePublisher,
        audit: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
        group_id: Optional[int] = None,
        call_delay_seconds: float = 1.0,
    ):
        self._store = store
        self._publisher = publisher
        self._audit = audit
        self._correlation_id = correlation_id
        self._group_id = group_id or None
        self._throttle = Throttle(call_delay_seconds)

    def build_expense(self, movement: Movement) -> SplitwiseExpense:
        personal = personal_portion(self._store, movement)
        timestamp = movement.timestamp or datetime.now(timezone.utc)
        return SplitwiseExpense(
            movement_id=movement.id,
            total_amount=movement.amount + personal,
            personal_amount=personal,
            currency=movement.currency.value,
            description=movement.user_description or movement.source_description or f"Movement #{movement.id}",
            date=timestamp.date(),
            group_id=self._group_id,
        )

    async def run(self) -> StageReport:
        report = StageReport(stage="splitwise_push")

        pending = self._store.rows_pending_splitwise_settlement()
        if not pending:
            logger.info("no_movements_awaiting_splitwise")
            return report

        for movement in pending:
            if movement.accounting_system_id:
                # Already published; only the status update was lost
                try:
                    self._store.set_accounting_system_id_and_status(movement.id, movement.accounting_system_id)
                except Exception as e:
                    logger.error("splitwise_status_update_failed", movement_id=movement.id, error=str(e))
                    report.failed += 1
                    continue
                report.skipped += 1
                continue

            await self._throttle.wait()
            try:
                expense = self.build_expense(movement)
                expense_id = await self._publisher.create_expense(expense)
            except Exception as e:
                logger.warning("splitwise_push_failed", movement_id=movement.id, error=str(e))
                if self._audit:
                    await self._audit.log_external_service_error(
                        service="splitwise",
                        error_message=str(e),
                        correlation_id=self._correlation_id,
                    )
                report.failed += 1
                continue

            if not expense_id:
                report.failed += 1
                continue

            try:
                recorded = self._store.set_accounting_system_id_and_status(movement.id, str(expense_id))
            except Exception as e:
                logger.error(
                    "splitwise_status_update_failed",
                    movement_id=movement.id,
                    splitwise_id=str(expense_id),
                    error=str(e),
                )
                recorded = False

            if recorded:
                report.succeeded += 1
                logger.info("pushed_to_splitwise", movement_id=movement.id, splitwise_id=str(expense_id))
                if self._audit and self._correlation_id:
                    await self._audit.log_pushed_to_splitwise(movement.id, str(expense_id), self._correlation_id)
            else:
                report.failed += 1

        return report
