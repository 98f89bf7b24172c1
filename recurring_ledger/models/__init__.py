"""
Data Models Package

This package contains all Pydantic models used by the recurring scheduler.
All data flowing through the system must conform to these schemas.
"""

from recurring_ledger.models.template import (
    AUTO_GENERATED_NOTE,
    DEFAULT_FREQUENCY,
    BatchStats,
    Frequency,
    LedgerTransaction,
    MalformedTemplateError,
    MaterializationOutcome,
    OutcomeKind,
    RecurringTemplate,
    RejectedTemplate,
    TemplateStatus,
    TransactionKind,
    load_active,
    parse_calendar_date,
    record_is_active,
)
from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Template / ledger models
    "AUTO_GENERATED_NOTE",
    "DEFAULT_FREQUENCY",
    "BatchStats",
    "Frequency",
    "LedgerTransaction",
    "MalformedTemplateError",
    "MaterializationOutcome",
    "OutcomeKind",
    "RecurringTemplate",
    "RejectedTemplate",
    "TemplateStatus",
    "TransactionKind",
    "load_active",
    "parse_calendar_date",
    "record_is_active",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
