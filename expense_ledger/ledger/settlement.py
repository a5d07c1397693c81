"""
Settlement Matcher

Matches a Debit Repayment to the pending Debit it pays back.

State machine on the debit's status:
    Pending Settlement -> Settled        (repayment >= 95% of the debit)
    Pending Settlement -> (unchanged)    (anything less)

The repayment's settled_movement_id is ALWAYS recorded for a match,
whatever the ratio. Partial (50-95%) and low (<50%) matches differ only
in how they are logged; in both the debit stays pending.

The thresholds are fixed policy, not learned.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict

from expense_ledger.agents.interface import RepaymentMatcher
from expense_ledger.ledger.store import LedgerStore
from expense_ledger.models.movement import Movement, MovementStatus, MovementType


logger = structlog.get_logger(__name__)

SETTLED_THRESHOLD = Decimal("0.95")
PARTIAL_THRESHOLD = Decimal("0.50")


class SettlementOutcome(str, Enum):
    SETTLED = "settled"
    PARTIAL = "partial"
    LOW_CONFIDENCE = "low_confidence"
    NO_MATCH = "no_match"
    SKIPPED = "skipped"


class SettlementDecision(BaseModel):
    """What happened to one repayment."""
    model_config = ConfigDict(frozen=True)

    repayment_id: int
    outcome: SettlementOutcome
    debit_id: Optional[int] = None
    ratio: Optional[Decimal] = None

    @property
    def reference_recorded(self) -> bool:
        return self.outcome in (
            SettlementOutcome.SETTLED,
            SettlementOutcome.PARTIAL,
            SettlementOutcome.LOW_CONFIDENCE,
        )


def repayment_ratio(repayment: Movement, debit: Movement) -> Decimal:
    """
    repayment / debit, compared in the debit's currency.

    When the currencies differ the repayment's stored value in the debit's
    currency is used; if that conversion failed, the raw amounts are
    compared.
    """
    if debit.amount <= 0:
        return Decimal("0")
    repaid = repayment.amount
    if repayment.currency != debit.currency:
        converted = repayment.currency_values.get(debit.currency)
        if converted is not None:
            repaid = converted
    return repaid / debit.amount


class SettlementMatcher:
    """Records settlement references and settles debits."""

    def __init__(self, store: LedgerStore, matcher: RepaymentMatcher):
        self._store = store
        self._matcher = matcher

    async def settle(self, repayment_id: int) -> SettlementDecision:
        repayment = self._store.find_by_id(repayment_id)
        if repayment is None:
            logger.warning("repayment_not_found", repayment_id=repayment_id)
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        if repayment.type != MovementType.DEBIT_REPAYMENT or repayment.settled_movement_id is not None:
            logger.debug("settlement_skipped", repayment_id=repayment_id)
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.SKIPPED)

        candidates = self._store.rows_pending_direct_settlement()
        if not candidates:
            logger.info("no_pending_debits", repayment_id=repayment_id)
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        try:
            matched_id = await self._matcher.match(repayment, candidates)
        except Exception as e:
            logger.warning("repayment_matcher_failed", repayment_id=repayment_id, error=str(e))
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        if matched_id is None:
            logger.info("no_settlement_match", repayment_id=repayment_id)
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        debit = next((c for c in candidates if c.id == matched_id), None)
        if debit is None:
            logger.warning(
                "match_not_a_pending_debit",
                repayment_id=repayment_id,
                matched_id=matched_id,
            )
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        ratio = repayment_ratio(repayment, debit)
        if not self._store.set_settled_movement_id(repayment.id, debit.id):
            return SettlementDecision(repayment_id=repayment_id, outcome=SettlementOutcome.NO_MATCH)

        if ratio >= SETTLED_THRESHOLD:
            self._store.set_status(debit.id, MovementStatus.SETTLED)
            outcome = SettlementOutcome.SETTLED
            logger.info("debit_settled", repayment_id=repayment.id, debit_id=debit.id, ratio=str(ratio))
        elif ratio >= PARTIAL_THRESHOLD:
            outcome = SettlementOutcome.PARTIAL
            logger.info("partial_settlement_match", repayment_id=repayment.id, debit_id=debit.id, ratio=str(ratio))
        else:
            outcome = SettlementOutcome.LOW_CONFIDENCE
            logger.info("low_confidence_settlement_match", repayment_id=repayment.id, debit_id=debit.id, ratio=str(ratio))

        return SettlementDecision(
            repayment_id=repayment.id,
            outcome=outcome,
            debit_id=debit.id,
            ratio=ratio,
        )
