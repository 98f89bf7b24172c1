"""
Idempotency Guard

Answers one question: has this template already produced a transaction
dated this calendar day?

DESIGN DECISION: The guard is independent of the write path. Even with
claims in place it catches the cases a claim cannot: a stale next-run
pointer left behind by an older run, or a transaction that was posted
manually for the same template and day.
"""

from datetime import date

from recurring_ledger.services.storage import LedgerStoreInterface


class IdempotencyGuard:
    """Read-only duplicate check against the ledger store."""

    def __init__(self, ledger_store: LedgerStoreInterface):
        self._ledger_store = ledger_store

    async def already_materialized(
        self,
        user_id: str,
        template_id: str,
        on_date: date,
    ) -> bool:
        """
        Check for an existing transaction for (template, calendar day).

        Lookup failures propagate as store errors; "can't tell" must never
        be read as "not there".
        """
        return await self._ledger_store.find_by_template_and_date(
            user_id, template_id, on_date
        )
