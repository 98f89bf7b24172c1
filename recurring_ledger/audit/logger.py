"""
Audit Logger

DESIGN DECISION: Every decision the scheduler makes is logged.
This provides:
1. Complete traceability (which run created which transaction)
2. Debugging capability ("why didn't my rent post?")
3. Evidence when a duplicate or a missed occurrence is reported

The audit logger:
- Is async so it composes with the async stores
- Gracefully handles failures (a broken audit sheet never stops a batch)
- Supports correlation IDs so all events of one batch run can be traced
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from recurring_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from recurring_ledger.services.storage import AuditStorageInterface


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


def configure_logging(level: str = "INFO") -> None:
    """
    Route structlog's JSON lines to stderr at the given level.

    structlog filters through the stdlib logger level, so without this
    only warnings and above would be emitted.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, if one is configured (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("recurring_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. DEBUG events stay local; everything else is
        persisted to storage if available.

        Returns True if storage write succeeded (or wasn't needed).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage and event.severity != AuditSeverity.DEBUG:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_batch_started(
        self,
        user_id: str,
        business_date: date,
        past_cutover: bool,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a batch run."""
        event = AuditEventBuilder.batch_started(
            user_id=user_id,
            business_date=business_date.isoformat(),
            past_cutover=past_cutover,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_completed(
        self,
        user_id: str,
        stats: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        """Log batch completion with its counters."""
        event = AuditEventBuilder.batch_completed(
            user_id=user_id,
            stats=stats,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_aborted(
        self,
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a batch that could not even list its templates."""
        event = AuditEventBuilder.batch_aborted(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_template_not_due(
        self,
        user_id: str,
        template_id: str,
        next_run_date: date,
        past_cutover: bool,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.template_not_due(
            user_id=user_id,
            template_id=template_id,
            next_run_date=next_run_date.isoformat(),
            past_cutover=past_cutover,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_template_malformed(
        self,
        user_id: str,
        template_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.template_malformed(
            user_id=user_id,
            template_id=template_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_duplicate_skipped(
        self,
        user_id: str,
        template_id: str,
        due_date: date,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> None:
        event = AuditEventBuilder.duplicate_skipped(
            user_id=user_id,
            template_id=template_id,
            due_date=due_date.isoformat(),
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_claim_lost(
        self,
        user_id: str,
        template_id: str,
        due_date: date,
        correlation_id: Optional[UUID],
    ) -> None:
        event = AuditEventBuilder.claim_lost(
            user_id=user_id,
            template_id=template_id,
            due_date=due_date.isoformat(),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_materialized(
        self,
        user_id: str,
        template_id: str,
        transaction_id: str,
        due_date: date,
        amount: Decimal,
        correlation_id: Optional[UUID],
    ) -> None:
        """Log a newly created ledger transaction."""
        event = AuditEventBuilder.transaction_materialized(
            user_id=user_id,
            template_id=template_id,
            transaction_id=transaction_id,
            due_date=due_date.isoformat(),
            amount=str(amount),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_next_run_updated(
        self,
        user_id: str,
        template_id: str,
        previous: date,
        new: date,
        correlation_id: Optional[UUID],
    ) -> None:
        event = AuditEventBuilder.next_run_updated(
            user_id=user_id,
            template_id=template_id,
            previous=previous.isoformat(),
            new=new.isoformat(),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_claim_rolled_back(
        self,
        user_id: str,
        template_id: str,
        due_date: date,
        restored: bool,
        correlation_id: Optional[UUID],
        error_message: Optional[str] = None,
    ) -> None:
        event = AuditEventBuilder.claim_rolled_back(
            user_id=user_id,
            template_id=template_id,
            due_date=due_date.isoformat(),
            restored=restored,
            correlation_id=correlation_id,
            error_message=error_message,
        )
        await self.log(event)

    async def log_materialization_failed(
        self,
        user_id: str,
        template_id: str,
        due_date: date,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> None:
        """Log a failed occurrence; the batch continues with the next template."""
        event = AuditEventBuilder.materialization_failed(
            user_id=user_id,
            template_id=template_id,
            due_date=due_date.isoformat(),
            error_type=type(error).__name__,
            error_message=str(error),
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
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a batch run and pass it through
    every materialization in that run.
    """
    return uuid4()
