"""
Audit Models for Recurring Ledger

Every batch run leaves a trail: what was created, what was skipped and why,
what failed. This provides:
1. Traceability of every auto-generated transaction back to its template
2. Debugging information when a template silently stops posting
3. Evidence for "why was I charged twice / not at all" questions

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every decision the scheduler makes about a template has its own type.
    """
    # Batch lifecycle
    BATCH_STARTED = "batch_started"
    BATCH_COMPLETED = "batch_completed"
    BATCH_ABORTED = "batch_aborted"

    # Per-template decisions
    TEMPLATE_NOT_DUE = "template_not_due"
    TEMPLATE_MALFORMED = "template_malformed"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    CLAIM_LOST = "claim_lost"

    # Writes
    TRANSACTION_MATERIALIZED = "transaction_materialized"
    NEXT_RUN_UPDATED = "next_run_updated"
    CLAIM_ROLLED_BACK = "claim_rolled_back"
    MATERIALIZATION_FAILED = "materialization_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="User whose templates are being processed"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'template', 'transaction', 'batch')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one batch run share this
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID of the batch run that produced this event"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, user_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.batch_started(user_id, run_date, True, correlation_id)
        event = AuditEventBuilder.transaction_materialized(...)
    """

    @staticmethod
    def batch_started(
        user_id: str,
        business_date: str,
        past_cutover: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_STARTED,
            user_id=user_id,
            entity_type="batch",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=f"Recurring batch started for {business_date}",
            details={
                "business_date": business_date,
                "past_cutover": past_cutover,
            },
        )

    @staticmethod
    def batch_completed(
        user_id: str,
        stats: dict[str, int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_COMPLETED,
            severity=AuditSeverity.WARNING if stats.get("errors") else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="batch",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description=(
                f"Recurring batch completed: {stats.get('created', 0)} created, "
                f"{stats.get('skipped', 0)} skipped, {stats.get('errors', 0)} errors"
            ),
            details=dict(stats),
        )

    @staticmethod
    def batch_aborted(
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_ABORTED,
            severity=AuditSeverity.CRITICAL,
            user_id=user_id,
            entity_type="batch",
            entity_id=str(correlation_id),
            correlation_id=correlation_id,
            description="Recurring batch aborted: templates could not be listed",
            error_message=error_message,
        )

    @staticmethod
    def template_not_due(
        user_id: str,
        template_id: str,
        next_run_date: str,
        past_cutover: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        reason = "before daily cutover" if not past_cutover else "not yet due"
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_NOT_DUE,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Template skipped: {reason}",
            details={
                "next_run_date": next_run_date,
                "past_cutover": past_cutover,
            },
        )

    @staticmethod
    def template_malformed(
        user_id: str,
        template_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_MALFORMED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Template skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def duplicate_skipped(
        user_id: str,
        template_id: str,
        due_date: str,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SKIPPED,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Occurrence on {due_date} already materialized",
            details={
                "due_date": due_date,
                "reason": reason,
            },
        )

    @staticmethod
    def claim_lost(
        user_id: str,
        template_id: str,
        due_date: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_LOST,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=(
                f"Occurrence on {due_date} was claimed by another run"
            ),
            details={"due_date": due_date},
        )

    @staticmethod
    def transaction_materialized(
        user_id: str,
        template_id: str,
        transaction_id: str,
        due_date: str,
        amount: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_MATERIALIZED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created for {due_date}: ₹{amount}",
            details={
                "template_id": template_id,
                "due_date": due_date,
                "amount": amount,
            },
        )

    @staticmethod
    def next_run_updated(
        user_id: str,
        template_id: str,
        previous: str,
        new: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NEXT_RUN_UPDATED,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Next run moved from {previous} to {new}",
            details={
                "previous": previous,
                "new": new,
            },
        )

    @staticmethod
    def claim_rolled_back(
        user_id: str,
        template_id: str,
        due_date: str,
        restored: bool,
        correlation_id: Optional[UUID],
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_ROLLED_BACK,
            severity=AuditSeverity.WARNING if restored else AuditSeverity.CRITICAL,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=(
                f"Claim on {due_date} released after failed write"
                if restored
                else f"Claim on {due_date} could NOT be released; occurrence needs manual repair"
            ),
            details={
                "due_date": due_date,
                "restored": restored,
            },
            error_message=error_message,
        )

    @staticmethod
    def materialization_failed(
        user_id: str,
        template_id: str,
        due_date: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MATERIALIZATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Could not materialize occurrence on {due_date}",
            details={"due_date": due_date},
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
