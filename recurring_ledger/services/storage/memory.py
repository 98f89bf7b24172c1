"""
In-Memory Storage Implementation

Used by the test suite and by ``--templates-file`` dry runs of the CLI.

Template records are kept RAW (exactly as a document store would hold them,
legacy keys included) and normalized on every read, so this backend
exercises the same read-boundary normalization as Google Sheets.

Failures can be injected per operation to simulate a flaky backend:

    store.inject_failure("insert_transaction", TransientStoreError("quota"))
"""

from copy import deepcopy
from datetime import date
from typing import Optional, Union
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.template import (
    DEFAULT_FREQUENCY,
    Frequency,
    LedgerTransaction,
    RecurringTemplate,
    RejectedTemplate,
    load_active,
)
from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    TemplateStoreInterface,
)


logger = structlog.get_logger(__name__)


class _FailureInjector:
    """Raise configured errors on the next N calls of an operation."""

    def __init__(self):
        self._failures: dict[str, list[StorageError]] = {}
        self.calls: dict[str, int] = {}

    def inject_failure(
        self,
        operation: str,
        error: StorageError,
        times: int = 1,
    ) -> None:
        self._failures.setdefault(operation, []).extend([error] * times)

    def _check(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)


class InMemoryTemplateStore(_FailureInjector, TemplateStoreInterface):
    """Template store backed by a dict of raw records per user."""

    def __init__(self, default_frequency: Frequency = DEFAULT_FREQUENCY):
        super().__init__()
        self._default_frequency = default_frequency
        self._records: dict[str, dict[str, dict]] = {}

    def add_record(self, user_id: str, record: dict) -> str:
        """Store a raw template record; returns its ID."""
        record = deepcopy(record)
        template_id = str(record.get("id") or uuid4().hex)
        record["id"] = template_id
        self._records.setdefault(user_id, {})[template_id] = record
        return template_id

    def raw_record(self, user_id: str, template_id: str) -> dict:
        """The stored record as-is (for assertions in tests)."""
        return deepcopy(self._require(user_id, template_id))

    def _require(self, user_id: str, template_id: str) -> dict:
        try:
            return self._records[user_id][template_id]
        except KeyError:
            raise NotFoundError(f"Template not found: {template_id}")

    def _to_template(self, record: dict) -> Optional[RecurringTemplate]:
        try:
            return RecurringTemplate.from_record(
                record, default_frequency=self._default_frequency
            )
        except ValidationError as e:
            logger.warning(
                "template_record_invalid",
                template_id=record.get("id"),
                error=str(e),
            )
            return None

    async def list_active(
        self,
        user_id: str,
    ) -> list[Union[RecurringTemplate, RejectedTemplate]]:
        self._check("list_active")
        templates = []
        for record in self._records.get(user_id, {}).values():
            entry = load_active(record, default_frequency=self._default_frequency)
            if isinstance(entry, RejectedTemplate):
                logger.warning(
                    "template_record_invalid",
                    template_id=entry.id,
                    error=entry.reason,
                )
            if entry is not None:
                templates.append(entry)
        return templates

    async def get_template(
        self,
        user_id: str,
        template_id: str,
    ) -> Optional[RecurringTemplate]:
        self._check("get_template")
        record = self._records.get(user_id, {}).get(template_id)
        return self._to_template(record) if record is not None else None

    async def update_next_run_date(
        self,
        user_id: str,
        template_id: str,
        new_date: date,
    ) -> bool:
        self._check("update_next_run_date")
        record = self._require(user_id, template_id)
        record["next_run_date"] = new_date.isoformat()
        return True

    async def claim_next_run(
        self,
        user_id: str,
        template_id: str,
        expected: date,
        new_date: date,
    ) -> bool:
        self._check("claim_next_run")
        record = self._require(user_id, template_id)
        current = self._to_template(record)
        if current is None or current.next_run_date != expected:
            return False
        record["next_run_date"] = new_date.isoformat()
        return True


class InMemoryLedgerStore(_FailureInjector, LedgerStoreInterface):
    """Ledger store backed by a list of transactions per user."""

    def __init__(self):
        super().__init__()
        self._transactions: dict[str, list[LedgerTransaction]] = {}

    async def find_by_template_and_date(
        self,
        user_id: str,
        template_id: str,
        on_date: date,
    ) -> bool:
        self._check("find_by_template_and_date")
        return any(
            txn.recurring_template_id == template_id
            and txn.transaction_date == on_date
            for txn in self._transactions.get(user_id, [])
        )

    async def insert_transaction(
        self,
        user_id: str,
        transaction: LedgerTransaction,
    ) -> str:
        self._check("insert_transaction")
        self._transactions.setdefault(user_id, []).append(transaction)
        return transaction.id

    async def list_transactions(
        self,
        user_id: str,
        template_id: Optional[str] = None,
    ) -> list[LedgerTransaction]:
        self._check("list_transactions")
        transactions = [
            txn
            for txn in self._transactions.get(user_id, [])
            if template_id is None or txn.recurring_template_id == template_id
        ]
        return sorted(transactions, key=lambda t: t.transaction_date)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
