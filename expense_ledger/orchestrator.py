"""
Main Orchestrator for Expense Ledger

This module ties together all the components and defines one run:
1. Bank emails      (notification email -> AI parse -> ledger)
2. Banking API      (bank transactions -> ledger)
3. Splitwise ingest (bill-splitting balances -> ledger)
4. Analysis         (classify, split, settle repayments)
5. Splitwise push   (debits awaiting upload -> bill-splitting service)
6. Currency repair  (retry failed conversions)

DESIGN DECISION: Each stage is isolated. A stage that raises is reported
as aborted and the run moves on to the next stage. The one hard
prerequisite is reaching the ledger itself: if the store cannot be read,
the run stops before any stage starts.

A stage whose collaborator isn't configured is skipped, not failed.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.agents import GeminiMovementAgent, MovementClassifier, RepaymentMatcher
from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.config import Settings, get_settings
from expense_ledger.ledger import (
    CurrencyRepairPass,
    LedgerStore,
    MovementSplitter,
    SettlementMatcher,
)
from expense_ledger.models.reports import StageReport
from expense_ledger.pipeline import AnalysisFlow, IngestionPipeline, SplitwisePushFlow
from expense_ledger.services.currency import CurrencyConversionService, OpenExchangeRateProvider
from expense_ledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTable,
    StorageError,
)
from expense_ledger.sources import (
    BankingSource,
    EmailSource,
    SplitwisePublisher,
    SplitwiseSource,
)


logger = structlog.get_logger(__name__)


class RunStage(str, Enum):
    BANK_EMAILS = "bank_emails"
    BANKING_API = "banking_api"
    SPLITWISE_INGEST = "splitwise_ingest"
    ANALYSIS = "analysis"
    SPLITWISE_PUSH = "splitwise_push"
    CURRENCY_REPAIR = "currency_repair"


STAGE_ORDER = [
    RunStage.BANK_EMAILS,
    RunStage.BANKING_API,
    RunStage.SPLITWISE_INGEST,
    RunStage.ANALYSIS,
    RunStage.SPLITWISE_PUSH,
    RunStage.CURRENCY_REPAIR,
]


class ExpenseTracker:
    """
    Runs the ledger stages in order.

    Collaborators are optional; the stages that need a missing one are
    skipped.
    """

    def __init__(
        self,
        store: LedgerStore,
        conversion: CurrencyConversionService,
        audit_logger: Optional[AuditLogger] = None,
        classifier: Optional[MovementClassifier] = None,
        matcher: Optional[RepaymentMatcher] = None,
        email_source: Optional[EmailSource] = None,
        banking_source: Optional[BankingSource] = None,
        splitwise_source: Optional[SplitwiseSource] = None,
        splitwise_publisher: Optional[SplitwisePublisher] = None,
        ai_call_delay_seconds: float = 1.0,
        splitwise_group_id: Optional[int] = None,
    ):
        self.store = store
        self.conversion = conversion
        self.audit = audit_logger or AuditLogger()
        self.classifier = classifier
        self.matcher = matcher
        self.email_source = email_source
        self.banking_source = banking_source
        self.splitwise_source = splitwise_source
        self.splitwise_publisher = splitwise_publisher
        self.ai_call_delay_seconds = ai_call_delay_seconds
        self.splitwise_group_id = splitwise_group_id

    async def run_all(self) -> list[StageReport]:
        """
        Run every stage in order.

        Raises:
            StorageError: If the ledger cannot be read (nothing else runs)
        """
        correlation_id = create_correlation_id()
        await self._initialize_store(correlation_id)
        logger.info("run_started", correlation_id=str(correlation_id))

        reports = []
        for stage in STAGE_ORDER:
            reports.append(await self._run_isolated(stage, correlation_id))

        logger.info(
            "run_completed",
            correlation_id=str(correlation_id),
            aborted=[r.stage for r in reports if r.aborted],
        )
        return reports

    async def run_stage(self, stage: RunStage) -> StageReport:
        """Run a single stage on its own (same prerequisite as run_all)."""
        correlation_id = create_correlation_id()
        await self._initialize_store(correlation_id)
        return await self._run_isolated(stage, correlation_id)

    async def _initialize_store(self, correlation_id: UUID) -> None:
        try:
            self.store.initialize()
        except StorageError as e:
            await self.audit.log_error(
                error_type="ledger_unavailable",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _run_isolated(self, stage: RunStage, correlation_id: UUID) -> StageReport:
        try:
            report = await self._dispatch(stage, correlation_id)
        except Exception as e:
            logger.error(
                "stage_aborted",
                stage=stage.value,
                error=str(e),
                exc_info=True,
            )
            report = StageReport(stage=stage.value, error=f"{type(e).__name__}: {e}")

        logger.info("stage_report", summary=report.summary())
        await self.audit.log_stage_report(report, correlation_id)
        return report

    def _not_configured(self, stage: RunStage, missing: str) -> StageReport:
        logger.info("stage_skipped", stage=stage.value, missing=missing)
        return StageReport(stage=stage.value, details={"not_configured": 1})

    async def _dispatch(self, stage: RunStage, correlation_id: UUID) -> StageReport:
        if stage == RunStage.CURRENCY_REPAIR:
            return await self.run_currency_repair(correlation_id)
        if stage == RunStage.ANALYSIS:
            return await self.run_analysis(correlation_id)
        if stage == RunStage.SPLITWISE_PUSH:
            return await self.run_splitwise_push(correlation_id)

        ingestion = IngestionPipeline(
            store=self.store,
            convert=self.conversion.convert,
            classifier=self.classifier,
            audit=self.audit,
            correlation_id=correlation_id,
            ai_call_delay_seconds=self.ai_call_delay_seconds,
        )
        if stage == RunStage.BANK_EMAILS:
            if self.email_source is None or self.classifier is None:
                return self._not_configured(stage, "email_source/classifier")
            return await ingestion.ingest_bank_emails(self.email_source)
        if stage == RunStage.BANKING_API:
            if self.banking_source is None:
                return self._not_configured(stage, "banking_source")
            return await ingestion.ingest_banking_transactions(self.banking_source)
        if stage == RunStage.SPLITWISE_INGEST:
            if self.splitwise_source is None:
                return self._not_configured(stage, "splitwise_source")
            return await ingestion.ingest_splitwise_movements(self.splitwise_source)

        raise ValueError(f"Unknown stage: {stage}")

    async def run_analysis(self, correlation_id: UUID) -> StageReport:
        if self.classifier is None or self.matcher is None:
            return self._not_configured(RunStage.ANALYSIS, "classifier/matcher")

        flow = AnalysisFlow(
            store=self.store,
            splitter=MovementSplitter(self.store, self.conversion),
            settlement=SettlementMatcher(self.store, self.matcher),
            classifier=self.classifier,
            audit=self.audit,
            correlation_id=correlation_id,
            ai_call_delay_seconds=self.ai_call_delay_seconds,
        )
        return await flow.run()

    async def run_splitwise_push(self, correlation_id: UUID) -> StageReport:
        if self.splitwise_publisher is None:
            return self._not_configured(RunStage.SPLITWISE_PUSH, "splitwise_publisher")

        flow = SplitwisePushFlow(
            store=self.store,
            publisher=self.splitwise_publisher,
            audit=self.audit,
            correlation_id=correlation_id,
            group_id=self.splitwise_group_id,
            call_delay_seconds=self.ai_call_delay_seconds,
        )
        return await flow.run()

    async def run_currency_repair(self, correlation_id: UUID) -> StageReport:
        repair = CurrencyRepairPass(self.store, self.conversion).run()
        await self.audit.log_currency_repair(
            success_count=repair.success_count,
            failure_count=repair.failure_count,
            correlation_id=correlation_id,
        )
        return StageReport(
            stage=RunStage.CURRENCY_REPAIR.value,
            succeeded=repair.success_count,
            failed=repair.failure_count,
        )


def create_tracker(
    settings: Optional[Settings] = None,
    email_source: Optional[EmailSource] = None,
    banking_source: Optional[BankingSource] = None,
    splitwise_source: Optional[SplitwiseSource] = None,
    splitwise_publisher: Optional[SplitwisePublisher] = None,
    use_ai: bool = True,
) -> ExpenseTracker:
    """
    Factory function to create a tracker wired to Google Sheets.

    Args:
        settings: Settings to use (defaults to get_settings())
        email_source, banking_source, splitwise_source, splitwise_publisher:
            Source clients; stages without one are skipped
        use_ai: Whether to create the Gemini agent.
                Set to False to run only the non-AI stages.

    Returns:
        A ready ExpenseTracker
    """
    settings = settings or get_settings()
    app_settings = settings.app

    sheets_client = GoogleSheetsClient(settings.google_sheets)
    store = LedgerStore(GoogleSheetsTable(sheets_client))
    audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))

    conversion = CurrencyConversionService(
        OpenExchangeRateProvider(settings.exchange_rates),
        max_retries=settings.exchange_rates.max_retries,
    )

    agent = None
    if use_ai:
        try:
            agent = GeminiMovementAgent(settings.gemini)
        except Exception as e:
            # AI not configured - continue without the AI stages
            logger.warning("gemini_not_configured", error=str(e))
            agent = None

    return ExpenseTracker(
        store=store,
        conversion=conversion,
        audit_logger=audit_logger,
        classifier=agent,
        matcher=agent,
        email_source=email_source,
        banking_source=banking_source,
        splitwise_source=splitwise_source,
        splitwise_publisher=splitwise_publisher,
        ai_call_delay_seconds=app_settings.ai_call_delay_seconds,
        splitwise_group_id=app_settings.splitwise_group_id or None,
    )
