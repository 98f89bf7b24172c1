"""
Main Orchestrator for Recurring Ledger

This module ties together all the components and defines the batch flow:

    list active templates -> (per template) due? -> materialize -> tally

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing posts before the daily cutover
- Nothing posts for a template that isn't active
- One failing template never aborts the batch
- The only fatal error is not being able to list templates at all
- Every decision is audited under one correlation ID per run

The driver holds no state between runs. A run that dies halfway is safe to
repeat: posted occurrences are protected by their claim and the duplicate
guard, unposted ones are still due.
"""

from datetime import date, timedelta
from typing import Optional, Union
from uuid import UUID

from recurring_ledger.audit import AuditLogger, create_correlation_id
from recurring_ledger.clock import Clock, SystemClock
from recurring_ledger.config import get_settings
from recurring_ledger.config.settings import SchedulerSettings
from recurring_ledger.materialization import IdempotencyGuard, Materializer
from recurring_ledger.models.template import (
    BatchStats,
    MalformedTemplateError,
    OutcomeKind,
    RecurringTemplate,
    RejectedTemplate,
)
from recurring_ledger.scheduling import Cutover, occurrences_between
from recurring_ledger.services.storage import (
    FatalConnectivityError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    GoogleSheetsTemplateStore,
    InMemoryLedgerStore,
    InMemoryTemplateStore,
    LedgerStoreInterface,
    StorageError,
    TemplateStoreInterface,
)


class SchedulerDriver:
    """
    Orchestrates one batch pass over a user's recurring templates.

    Flow:
    1. Read the clock once; derive business "today" and cutover state
    2. List active templates (failure here aborts the run)
    3. For each template, sequentially:
       - no usable next run date   -> skipped
       - not due / before cutover  -> skipped
       - due                       -> Materializer
    4. Return {created, skipped, errors}
    """

    def __init__(
        self,
        template_store: TemplateStoreInterface,
        materializer: Materializer,
        clock: Optional[Clock] = None,
        cutover: Optional[Cutover] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._template_store = template_store
        self._materializer = materializer
        self._clock = clock or SystemClock()
        self._cutover = cutover or Cutover()
        self._audit_logger = audit_logger or AuditLogger()

    async def run_batch(self, user_id: str) -> BatchStats:
        """
        Run one batch pass for a user.

        Returns:
            Aggregated counters for the run

        Raises:
            FatalConnectivityError: If the template list can't be loaded
        """
        correlation_id = create_correlation_id()
        now = self._clock.now()
        today = self._cutover.business_today(now)
        past_cutover = self._cutover.is_past(now)

        await self._audit_logger.log_batch_started(
            user_id=user_id,
            business_date=today,
            past_cutover=past_cutover,
            correlation_id=correlation_id,
        )

        try:
            templates = await self._template_store.list_active(user_id)
        except StorageError as e:
            await self._audit_logger.log_batch_aborted(
                user_id=user_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            if isinstance(e, FatalConnectivityError):
                raise
            raise FatalConnectivityError(f"Could not list templates: {e}") from e

        created = skipped = errors = 0

        for template in templates:
            try:
                outcome = await self._process_template(
                    user_id, template, today, past_cutover, correlation_id
                )
            except Exception as e:
                # Unexpected failure; isolate it to this template
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"template_id": template.id},
                    correlation_id=correlation_id,
                )
                errors += 1
                continue

            if outcome == OutcomeKind.CREATED:
                created += 1
            elif outcome == OutcomeKind.FAILED:
                errors += 1
            else:
                skipped += 1

        stats = BatchStats(created=created, skipped=skipped, errors=errors)
        await self._audit_logger.log_batch_completed(
            user_id=user_id,
            stats=stats.to_dict(),
            correlation_id=correlation_id,
        )
        return stats

    async def _process_template(
        self,
        user_id: str,
        template: Union[RecurringTemplate, RejectedTemplate],
        today: date,
        past_cutover: bool,
        correlation_id: UUID,
    ) -> Optional[OutcomeKind]:
        """
        Decide and act on one template.

        Returns the materialization outcome kind, or None when the template
        was skipped without reaching the materializer.
        """
        if isinstance(template, RejectedTemplate):
            await self._audit_logger.log_template_malformed(
                user_id=user_id,
                template_id=template.id,
                reason=template.reason,
                correlation_id=correlation_id,
            )
            return None

        if not template.is_active:
            return None

        try:
            next_run = template.require_next_run()
        except MalformedTemplateError as e:
            await self._audit_logger.log_template_malformed(
                user_id=user_id,
                template_id=template.id,
                reason=e.reason,
                correlation_id=correlation_id,
            )
            return None

        if next_run > today or not past_cutover:
            await self._audit_logger.log_template_not_due(
                user_id=user_id,
                template_id=template.id,
                next_run_date=next_run,
                past_cutover=past_cutover,
                correlation_id=correlation_id,
            )
            return None

        outcome = await self._materializer.materialize(
            user_id, template, next_run, correlation_id=correlation_id
        )
        return outcome.kind

    async def upcoming(
        self,
        user_id: str,
        within_days: int = 7,
    ) -> list[tuple[RecurringTemplate, date]]:
        """
        Preview the occurrences due in the next ``within_days`` days.

        Read-only. Overdue occurrences (next run before today) are included
        since the next batch will post them.

        Returns:
            (template, due_date) pairs ordered by date
        """
        today = self._cutover.business_today(self._clock.now())
        horizon = today + timedelta(days=within_days)

        templates = await self._template_store.list_active(user_id)
        upcoming = []
        for template in templates:
            if not isinstance(template, RecurringTemplate):
                continue
            if template.next_run_date is None or template.next_run_date > horizon:
                continue
            for due_date in occurrences_between(
                template.anchor_date or template.next_run_date,
                template.frequency,
                template.next_run_date,
                horizon,
            ):
                upcoming.append((template, due_date))

        upcoming.sort(key=lambda pair: (pair[1], pair[0].name))
        return upcoming


def create_scheduler(
    template_store: TemplateStoreInterface,
    ledger_store: LedgerStoreInterface,
    clock: Optional[Clock] = None,
    audit_logger: Optional[AuditLogger] = None,
    scheduler_settings: Optional[SchedulerSettings] = None,
) -> SchedulerDriver:
    """
    Wire a SchedulerDriver around the given stores.

    Scheduler behaviour (cutover, claim mode, transaction note) comes
    from ``scheduler_settings`` or, if omitted, the environment.
    """
    scheduler_settings = scheduler_settings or get_settings().scheduler
    clock = clock or SystemClock()
    audit_logger = audit_logger or AuditLogger()

    materializer = Materializer(
        template_store=template_store,
        ledger_store=ledger_store,
        guard=IdempotencyGuard(ledger_store),
        clock=clock,
        audit_logger=audit_logger,
        use_atomic_claims=scheduler_settings.use_atomic_claims,
        transaction_note=scheduler_settings.transaction_note,
    )
    return SchedulerDriver(
        template_store=template_store,
        materializer=materializer,
        clock=clock,
        cutover=Cutover.from_settings(scheduler_settings),
        audit_logger=audit_logger,
    )


def create_app_components(
    use_storage: bool = True,
    clock: Optional[Clock] = None,
) -> tuple[SchedulerDriver, TemplateStoreInterface, LedgerStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Set to False for in-memory stores (tests, dry runs).

    Returns:
        (scheduler, template_store, ledger_store)
    """
    scheduler_settings = get_settings().scheduler

    if use_storage:
        sheets_client = GoogleSheetsClient()
        template_store = GoogleSheetsTemplateStore(
            sheets_client,
            default_frequency=scheduler_settings.default_frequency,
        )
        ledger_store = GoogleSheetsLedgerStore(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    else:
        template_store = InMemoryTemplateStore(
            default_frequency=scheduler_settings.default_frequency,
        )
        ledger_store = InMemoryLedgerStore()
        audit_logger = AuditLogger()  # Local-only logging

    scheduler = create_scheduler(
        template_store,
        ledger_store,
        clock=clock,
        audit_logger=audit_logger,
        scheduler_settings=scheduler_settings,
    )
    return scheduler, template_store, ledger_store
