"""
Audit Models for Expense Ledger

Every ledger mutation that a run performs on the user's behalf is
recorded, so the user can reconstruct why a row looks the way it does.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ingestion
    MOVEMENTS_INGESTED = "movements_ingested"

    # Classification and splitting
    MOVEMENT_CLASSIFIED = "movement_classified"
    CLASSIFICATION_REJECTED = "classification_rejected"
    MOVEMENT_SPLIT = "movement_split"
    SPLIT_FAILED = "split_failed"

    # Settlement
    SETTLEMENT_RECORDED = "settlement_recorded"
    DEBIT_SETTLED = "debit_settled"

    # Bill-splitting service
    PUSHED_TO_SPLITWISE = "pushed_to_splitwise"

    # Currency
    CURRENCY_REPAIR_COMPLETED = "currency_repair_completed"

    # Run stages
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Which movement is this about?
    movement_id: Optional[int] = Field(
        default=None,
        description="Ledger id of the movement this event relates to"
    )

    # Groups every event of one run
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "movement_id": self.movement_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the audit worksheet.

        Columns: [event_id, timestamp, event_type, severity, movement_id,
        correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            str(self.movement_id) if self.movement_id is not None else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.movement_split(12, 40, "DEBIT", run_id)
    """

    @staticmethod
    def movements_ingested(source: str, count: int, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENTS_INGESTED,
            correlation_id=correlation_id,
            description=f"Ingested {count} movement(s) from {source}",
            details={"source": source, "count": count},
        )

    @staticmethod
    def movement_classified(movement_id: int, category: Optional[str], correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_CLASSIFIED,
            movement_id=movement_id,
            correlation_id=correlation_id,
            description=f"Movement #{movement_id} classified as {category}",
            details={"category": category},
        )

    @staticmethod
    def classification_rejected(movement_id: int, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFICATION_REJECTED,
            severity=AuditSeverity.WARNING,
            movement_id=movement_id,
            correlation_id=correlation_id,
            description=f"Classifier output for movement #{movement_id} was discarded",
        )

    @staticmethod
    def movement_split(
        original_id: int,
        new_id: int,
        split_type: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MOVEMENT_SPLIT,
            movement_id=original_id,
            correlation_id=correlation_id,
            description=f"Movement #{original_id} split into #{new_id} ({split_type})",
            details={"new_movement_id": new_id, "split_type": split_type},
        )

    @staticmethod
    def split_failed(movement_id: int, split_type: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_FAILED,
            severity=AuditSeverity.WARNING,
            movement_id=movement_id,
            correlation_id=correlation_id,
            description=f"{split_type} split of movement #{movement_id} did not happen",
            details={"split_type": split_type},
        )

    @staticmethod
    def settlement_recorded(
        repayment_id: int,
        debit_id: int,
        ratio: float,
        settled: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.DEBIT_SETTLED if settled
            else AuditEventType.SETTLEMENT_RECORDED
        )
        return AuditEvent(
            event_type=event_type,
            movement_id=repayment_id,
            correlation_id=correlation_id,
            description=(
                f"Repayment #{repayment_id} matched debit #{debit_id} "
                f"({ratio:.0%} of amount)"
            ),
            details={"debit_id": debit_id, "ratio": round(ratio, 4), "settled": settled},
        )

    @staticmethod
    def pushed_to_splitwise(movement_id: int, expense_id: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSHED_TO_SPLITWISE,
            movement_id=movement_id,
            correlation_id=correlation_id,
            description=f"Movement #{movement_id} pushed to Splitwise as {expense_id}",
            details={"splitwise_id": expense_id},
        )

    @staticmethod
    def currency_repair_completed(
        success_count: int,
        failure_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURRENCY_REPAIR_COMPLETED,
            severity=AuditSeverity.WARNING if failure_count else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=(
                f"Currency repair: {success_count} fixed, {failure_count} failed"
            ),
            details={"success_count": success_count, "failure_count": failure_count},
        )

    @staticmethod
    def stage_completed(stage: str, counts: dict[str, int], correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STAGE_COMPLETED,
            correlation_id=correlation_id,
            description=f"Stage {stage} completed",
            details={"stage": stage, **counts},
        )

    @staticmethod
    def stage_failed(stage: str, error_message: str, correlation_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STAGE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Stage {stage} aborted",
            error_message=error_message,
            details={"stage": stage},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
