"""
Currency Repair Pass

Re-runs conversion for every row with a failed currency value.
Per-row failures are logged and counted; nothing here raises.
"""

from enum import Enum

import structlog

from expense_ledger.ledger.store import ConversionCandidate, LedgerStore
from expense_ledger.models.movement import REPORTING_CURRENCIES, CurrencyValues
from expense_ledger.models.reports import RepairReport
from expense_ledger.services.currency import CurrencyConversionService


logger = structlog.get_logger(__name__)


class RepairOutcome(str, Enum):
    REPAIRED = "repaired"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class CurrencyRepairPass:
    """Fixes failed-conversion sentinels in the ledger."""

    def __init__(self, store: LedgerStore, conversion: CurrencyConversionService):
        self._store = store
        self._conversion = conversion

    def repair_movement(self, candidate: ConversionCandidate) -> RepairOutcome:
        """
        Repair one row.

        An invalid amount or currency leaves the row untouched. Values that
        are already valid are never overwritten. If only some currencies
        convert, those are written and the row still counts as failed so
        the next pass retries the rest.
        """
        current = candidate.values
        if not current.has_failures:
            return RepairOutcome.SKIPPED

        repaired = self._conversion.repair(candidate.amount, candidate.currency)
        if repaired is None:
            logger.warning(
                "currency_repair_rejected",
                movement_id=candidate.movement_id,
                amount=candidate.amount,
                currency=candidate.currency,
            )
            return RepairOutcome.FAILED

        merged = CurrencyValues.from_mapping({
            currency: current.get(currency) if current.get(currency) is not None else repaired.get(currency)
            for currency in REPORTING_CURRENCIES
        })
        if merged == current:
            logger.warning("currency_repair_failed", movement_id=candidate.movement_id)
            return RepairOutcome.FAILED

        if not self._store.set_currency_values(candidate.movement_id, merged):
            return RepairOutcome.FAILED
        if merged.has_failures:
            logger.warning("currency_repair_partial", movement_id=candidate.movement_id)
            return RepairOutcome.PARTIAL

        logger.info("currency_repaired", movement_id=candidate.movement_id)
        return RepairOutcome.REPAIRED

    def run(self) -> RepairReport:
        report = RepairReport()
        for candidate in self._store.rows_with_failed_currency_conversion():
            try:
                outcome = self.repair_movement(candidate)
            except Exception as e:
                logger.error("currency_repair_error", movement_id=candidate.movement_id, error=str(e))
                outcome = RepairOutcome.FAILED

            if outcome == RepairOutcome.REPAIRED:
                report.success_count += 1
            elif outcome in (RepairOutcome.FAILED, RepairOutcome.PARTIAL):
                report.failure_count += 1

        logger.info(
            "currency_repair_pass_completed",
            success_count=report.success_count,
            failure_count=report.failure_count,
        )
        return report
