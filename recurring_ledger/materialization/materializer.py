"""
Materializer

Turns ONE due occurrence of a template into ONE ledger transaction and
moves the template's next-run pointer forward.

Two write orders are supported:

CLAIM MODE (default):
1. Guard check - already posted? -> SkippedDuplicate, no writes
2. Claim - compare-and-set next_run_date: due_date -> next due
   Lost the swap? Another run owns this occurrence -> SkippedDuplicate
3. Insert the transaction
   Insert failed? Release the claim (next due -> due_date) -> Failed
4. Created

PLAIN MODE (stores without compare-and-set):
1. Guard check
2. Insert the transaction
3. Update next_run_date
4. Created
If step 3 fails the pointer stays stale; next run the guard reports the
occurrence as a duplicate instead of posting it twice.

In both modes the next due date is computed from the occurrence just
posted, not from "now", so a late batch never shifts the anchor chain.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from recurring_ledger.audit import AuditLogger
from recurring_ledger.clock import Clock, SystemClock
from recurring_ledger.materialization.guard import IdempotencyGuard
from recurring_ledger.models.template import (
    AUTO_GENERATED_NOTE,
    LedgerTransaction,
    MaterializationOutcome,
    RecurringTemplate,
)
from recurring_ledger.scheduling.recurrence import next_due
from recurring_ledger.services.storage import (
    LedgerStoreInterface,
    StorageError,
    TemplateStoreInterface,
)


class Materializer:
    """
    Idempotently materializes a single template occurrence.

    Store failures never escape ``materialize``; they come back as a
    ``Failed`` outcome so the driver can count them and move on.
    """

    def __init__(
        self,
        template_store: TemplateStoreInterface,
        ledger_store: LedgerStoreInterface,
        guard: Optional[IdempotencyGuard] = None,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
        use_atomic_claims: bool = True,
        transaction_note: str = AUTO_GENERATED_NOTE,
    ):
        self._template_store = template_store
        self._ledger_store = ledger_store
        self._guard = guard or IdempotencyGuard(ledger_store)
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger or AuditLogger()
        self._use_atomic_claims = use_atomic_claims
        self._transaction_note = transaction_note

    async def materialize(
        self,
        user_id: str,
        template: RecurringTemplate,
        due_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> MaterializationOutcome:
        """
        Post the occurrence of ``template`` due on ``due_date``.

        Returns:
            Created(transaction_id), SkippedDuplicate or Failed(error)
        """
        try:
            if await self._guard.already_materialized(user_id, template.id, due_date):
                await self._audit_logger.log_duplicate_skipped(
                    user_id=user_id,
                    template_id=template.id,
                    due_date=due_date,
                    reason="transaction already exists",
                    correlation_id=correlation_id,
                )
                return MaterializationOutcome.skipped_duplicate(
                    "transaction already exists"
                )

            new_next_run = next_due(
                template.anchor_date or due_date,
                template.frequency,
                due_date,
            )
            transaction = LedgerTransaction.from_template(
                user_id=user_id,
                template=template,
                due_date=due_date,
                created_at=self._clock.now(),
                note=self._transaction_note,
            )

            if self._use_atomic_claims:
                outcome = await self._claim_then_write(
                    user_id, template, due_date, new_next_run, transaction, correlation_id
                )
            else:
                outcome = await self._write_then_advance(
                    user_id, template, due_date, new_next_run, transaction, correlation_id
                )
        except StorageError as e:
            await self._audit_logger.log_materialization_failed(
                user_id=user_id,
                template_id=template.id,
                due_date=due_date,
                error=e,
                correlation_id=correlation_id,
            )
            return MaterializationOutcome.failed(e)

        return outcome

    async def _claim_then_write(
        self,
        user_id: str,
        template: RecurringTemplate,
        due_date: date,
        new_next_run: date,
        transaction: LedgerTransaction,
        correlation_id: Optional[UUID],
    ) -> MaterializationOutcome:
        claimed = await self._template_store.claim_next_run(
            user_id, template.id, expected=due_date, new_date=new_next_run
        )
        if not claimed:
            await self._audit_logger.log_claim_lost(
                user_id=user_id,
                template_id=template.id,
                due_date=due_date,
                correlation_id=correlation_id,
            )
            return MaterializationOutcome.skipped_duplicate(
                "occurrence claimed by another run"
            )

        try:
            transaction_id = await self._ledger_store.insert_transaction(
                user_id, transaction
            )
        except StorageError:
            await self._release_claim(
                user_id, template.id, due_date, new_next_run, correlation_id
            )
            raise

        await self._record_success(
            user_id, template, due_date, new_next_run, transaction_id, correlation_id
        )
        return MaterializationOutcome.created(transaction_id)

    async def _write_then_advance(
        self,
        user_id: str,
        template: RecurringTemplate,
        due_date: date,
        new_next_run: date,
        transaction: LedgerTransaction,
        correlation_id: Optional[UUID],
    ) -> MaterializationOutcome:
        transaction_id = await self._ledger_store.insert_transaction(
            user_id, transaction
        )
        await self._template_store.update_next_run_date(
            user_id, template.id, new_next_run
        )
        await self._record_success(
            user_id, template, due_date, new_next_run, transaction_id, correlation_id
        )
        return MaterializationOutcome.created(transaction_id)

    async def _release_claim(
        self,
        user_id: str,
        template_id: str,
        due_date: date,
        claimed_next_run: date,
        correlation_id: Optional[UUID],
    ) -> None:
        """
        Put next_run_date back to the occurrence whose write failed.

        Only swaps back if nobody moved the pointer since our claim. A
        failed release is reported loudly but never replaces the original
        write error.
        """
        try:
            restored = await self._template_store.claim_next_run(
                user_id, template_id, expected=claimed_next_run, new_date=due_date
            )
            error_message = None
        except StorageError as e:
            restored = False
            error_message = str(e)

        await self._audit_logger.log_claim_rolled_back(
            user_id=user_id,
            template_id=template_id,
            due_date=due_date,
            restored=restored,
            correlation_id=correlation_id,
            error_message=error_message,
        )

    async def _record_success(
        self,
        user_id: str,
        template: RecurringTemplate,
        due_date: date,
        new_next_run: date,
        transaction_id: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self._audit_logger.log_transaction_materialized(
            user_id=user_id,
            template_id=template.id,
            transaction_id=transaction_id,
            due_date=due_date,
            amount=template.amount,
            correlation_id=correlation_id,
        )
        await self._audit_logger.log_next_run_updated(
            user_id=user_id,
            template_id=template.id,
            previous=due_date,
            new=new_next_run,
            correlation_id=correlation_id,
        )
