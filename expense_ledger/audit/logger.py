"""
Audit Logger

DESIGN DECISION: Every ledger mutation a run makes is logged.
This provides:
1. Traceability of automated edits to a sheet the user also edits by hand
2. Debugging capability
3. A per-run summary the user can read in the audit worksheet

The audit logger:
- Is async so flows can await it next to their collaborator calls
- Gracefully handles failures (doesn't crash the run if logging fails)
- Supports correlation IDs to group the events of one run
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_ledger.models.reports import StageReport
from expense_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def setup_logging(debug: bool = False) -> None:
    """
    Route structlog output to stderr at the requested level.

    structlog renders the JSON; the stdlib handler only writes the line.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=logging.DEBUG if debug else logging.INFO,
    )


class AuditLogger:
    """
    Records ledger events.

    Every event goes to the structured log. When an audit storage is
    given, it is also appended to the audit worksheet next to the ledger.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Args:
            storage: Audit worksheet backend. None keeps events in the
                    local log only (tests, dry runs).
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Write one event.

        Returns False only when the audit worksheet write failed; the
        failure is logged and never raised.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_movements_ingested(
        self,
        source: str,
        count: int,
        correlation_id: UUID,
    ) -> None:
        """Log a batch insertion from one source."""
        event = AuditEventBuilder.movements_ingested(
            source=source,
            count=count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_movement_classified(
        self,
        movement_id: int,
        category: Optional[str],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.movement_classified(
            movement_id=movement_id,
            category=category,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_classification_rejected(
        self,
        movement_id: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.classification_rejected(
            movement_id=movement_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_movement_split(
        self,
        original_id: int,
        new_id: Optional[int],
        split_type: str,
        correlation_id: UUID,
    ) -> None:
        """Log a split, or its failure when `new_id` is None."""
        if new_id is None:
            event = AuditEventBuilder.split_failed(
                movement_id=original_id,
                split_type=split_type,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.movement_split(
                original_id=original_id,
                new_id=new_id,
                split_type=split_type,
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_settlement(
        self,
        repayment_id: int,
        debit_id: int,
        ratio: float,
        settled: bool,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.settlement_recorded(
            repayment_id=repayment_id,
            debit_id=debit_id,
            ratio=ratio,
            settled=settled,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_pushed_to_splitwise(
        self,
        movement_id: int,
        expense_id: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.pushed_to_splitwise(
            movement_id=movement_id,
            expense_id=expense_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_currency_repair(
        self,
        success_count: int,
        failure_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.currency_repair_completed(
            success_count=success_count,
            failure_count=failure_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_stage_report(self, report: StageReport, correlation_id: UUID) -> None:
        """Log the end of a run stage, aborted or not."""
        if report.aborted:
            event = AuditEventBuilder.stage_failed(
                stage=report.stage,
                error_message=report.error or "",
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.stage_completed(
                stage=report.stage,
                counts={
                    "succeeded": report.succeeded,
                    "skipped": report.skipped,
                    "failed": report.failed,
                    **report.details,
                },
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a run-level failure (e.g. the ledger is unreachable)."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed call to an external service (Splitwise, banking API)."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a run and pass it through every stage.
    """
    return uuid4()
