"""
Data Models Package

All data flowing through the ledger must conform to these schemas.
"""

from expense_ledger.models.movement import (
    REPORTING_CURRENCIES,
    SETTLEABLE_TYPES,
    Currency,
    CurrencyValues,
    Direction,
    Movement,
    MovementCategory,
    MovementSource,
    MovementStatus,
    MovementType,
    direction_for_type,
    parse_timestamp,
    status_for_type,
)
from expense_ledger.models.classification import (
    ClassificationRequest,
    ClassificationResult,
    ParsedEmailTransaction,
    SplitType,
    validate_classification,
    validate_email_parse,
)
from expense_ledger.models.sources import (
    BankTransaction,
    EmailMessage,
    SplitwiseExpense,
    SplitwiseMovement,
    SplitwiseMovementKind,
)
from expense_ledger.models.reports import RepairReport, StageReport
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Movement models
    "REPORTING_CURRENCIES",
    "SETTLEABLE_TYPES",
    "Currency",
    "CurrencyValues",
    "Direction",
    "Movement",
    "MovementCategory",
    "MovementSource",
    "MovementStatus",
    "MovementType",
    "direction_for_type",
    "parse_timestamp",
    "status_for_type",
    # Classifier boundary
    "ClassificationRequest",
    "ClassificationResult",
    "ParsedEmailTransaction",
    "SplitType",
    "validate_classification",
    "validate_email_parse",
    # Source records
    "BankTransaction",
    "EmailMessage",
    "SplitwiseExpense",
    "SplitwiseMovement",
    "SplitwiseMovementKind",
    # Reports
    "RepairReport",
    "StageReport",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
