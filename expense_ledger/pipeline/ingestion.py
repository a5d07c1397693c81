"""
Ingestion Pipeline

Pulls records from each transaction source into the ledger.

Every stage follows the same steps:
1. Read the idempotency keys already in the ledger
2. Drop records whose key is present
3. Normalize the rest (rejects are counted, not raised)
4. Assign ids in chronological order, starting at next_id()
5. insert_batch

CRITICAL: Re-ingesting a record is a no-op. A source is free to return
the same record on every run.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog

from expense_ledger.agents.interface import MovementClassifier
from expense_ledger.audit.logger import AuditLogger
from expense_ledger.ledger.store import LedgerStore
from expense_ledger.models.classification import ParsedEmailTransaction, validate_email_parse
from expense_ledger.models.movement import Movement, MovementSource, parse_timestamp
from expense_ledger.models.reports import StageReport
from expense_ledger.pipeline.normalizers import (
    Converter,
    bank_transaction_to_movement,
    email_to_movement,
    splitwise_to_movement,
)
from expense_ledger.pipeline.throttle import Throttle
from expense_ledger.sources.interface import BankingSource, EmailSource, SplitwiseSource


logger = structlog.get_logger(__name__)

T = TypeVar("T")

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _oldest_first(records: Iterable[T], timestamp_of: Callable[[T], object]) -> list[T]:
    def key(record: T):
        timestamp = parse_timestamp(timestamp_of(record))
        return (timestamp is not None, timestamp or _EARLIEST)
    return sorted(records, key=key)


class IngestionPipeline:
    """Idempotent, timestamp-ordered ingestion from every source."""

    def __init__(
        self,
        store: LedgerStore,
        convert: Converter,
        classifier: Optional[MovementClassifier] = None,
        audit: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
        ai_call_delay_seconds: float = 1.0,
    ):
        self._store = store
        self._convert = convert
        self._classifier = classifier
        self._audit = audit
        self._correlation_id = correlation_id
        self._ai_call_delay = ai_call_delay_seconds

    def _assign_and_insert(
        self,
        records: list[T],
        normalize: Callable[[T, int, Converter], Optional[Movement]],
        report: StageReport,
    ) -> list[Movement]:
        movements = []
        next_id = self._store.next_id()
        for record in records:
            movement = normalize(record, next_id, self._convert)
            if movement is None:
                report.failed += 1
                continue
            movements.append(movement)
            next_id += 1

        inserted = self._store.insert_batch(movements)
        report.succeeded += len(inserted)
        return inserted

    async def _record(self, source: MovementSource, report: StageReport) -> None:
        logger.info(
            "ingestion_completed",
            source=source.value,
            inserted=report.succeeded,
            skipped=report.skipped,
            failed=report.failed,
        )
        if self._audit and self._correlation_id and report.succeeded:
            await self._audit.log_movements_ingested(
                source=source.value,
                count=report.succeeded,
                correlation_id=self._correlation_id,
            )

    async def ingest_bank_emails(self, source: EmailSource) -> StageReport:
        """Parse new bank notification emails with the classifier and insert them."""
        report = StageReport(stage="bank_emails")
        if self._classifier is None:
            raise ValueError("Email ingestion needs a classifier")

        known = self._store.existing_keys(MovementSource.GMAIL)
        messages = await source.fetch_messages()

        parsed: list[ParsedEmailTransaction] = []
        throttle = Throttle(self._ai_call_delay)
        for message in messages:
            if message.message_id in known:
                report.skipped += 1
                continue
            known.add(message.message_id)

            await throttle.wait()

            try:
                raw = await self._classifier.parse_email(message)
            except Exception as e:
                logger.warning("email_parse_failed", message_id=message.message_id, error=str(e))
                report.failed += 1
                continue

            transaction = validate_email_parse(raw, message.message_id)
            if transaction is None:
                report.failed += 1
                continue
            parsed.append(transaction)

        self._assign_and_insert(
            _oldest_first(parsed, lambda t: t.timestamp),
            email_to_movement,
            report,
        )
        await self._record(MovementSource.GMAIL, report)
        return report

    async def ingest_banking_transactions(self, source: BankingSource) -> StageReport:
        report = StageReport(stage="banking_api")
        known = self._store.existing_keys(MovementSource.MONZO)
        transactions = await source.fetch_transactions()

        fresh = []
        for transaction in transactions:
            if transaction.transaction_id in known:
                report.skipped += 1
                continue
            known.add(transaction.transaction_id)
            fresh.append(transaction)

        self._assign_and_insert(
            _oldest_first(fresh, lambda t: t.created),
            bank_transaction_to_movement,
            report,
        )
        await self._record(MovementSource.MONZO, report)
        return report

    async def ingest_splitwise_movements(self, source: SplitwiseSource) -> StageReport:
        report = StageReport(stage="splitwise_ingest")
        known = self._store.existing_accounting_system_ids()
        records = await source.fetch_movements()

        fresh = []
        for record in records:
            if record.splitwise_id in known:
                report.skipped += 1
                continue
            known.add(record.splitwise_id)
            fresh.append(record)

        self._assign_and_insert(
            _oldest_first(fresh, lambda r: r.date),
            splitwise_to_movement,
            report,
        )
        await self._record(MovementSource.SPLITWISE, report)
        return report
