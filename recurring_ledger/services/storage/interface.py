"""
Abstract Storage Interfaces

DESIGN DECISION: The scheduler never talks to a database directly.
It needs exactly three collaborators:
1. A template store (list active templates, move their next-run pointer)
2. A ledger store (look up and append transactions)
3. An audit store (append-only event log, optional)

Keeping these as small async interfaces lets us:
1. Run against Google Sheets in production
2. Use in-memory storage for testing
3. Swap in a real database later without touching the scheduler
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional, Union
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.template import (
    LedgerTransaction,
    RecurringTemplate,
    RejectedTemplate,
)


class TemplateStoreInterface(ABC):
    """
    Abstract interface for recurring template storage.

    The scheduler only ever writes ONE field: ``next_run_date``.
    """

    @abstractmethod
    async def list_active(
        self,
        user_id: str,
    ) -> list[Union[RecurringTemplate, RejectedTemplate]]:
        """
        List the user's templates eligible for materialization.

        Records must go through ``load_active`` so the legacy ``isActive``
        flag is already folded into ``status``. Active records that fail
        validation are listed as RejectedTemplate, never dropped silently.

        Raises:
            FatalConnectivityError: If the store cannot be reached at all
        """
        pass

    @abstractmethod
    async def get_template(
        self,
        user_id: str,
        template_id: str,
    ) -> Optional[RecurringTemplate]:
        """
        Retrieve one template regardless of status.

        Returns:
            The template if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_next_run_date(
        self,
        user_id: str,
        template_id: str,
        new_date: date,
    ) -> bool:
        """
        Unconditionally set a template's next run date.

        Returns:
            True if updated successfully

        Raises:
            NotFoundError: If the template doesn't exist
            TransientStoreError: If the write fails
        """
        pass

    @abstractmethod
    async def claim_next_run(
        self,
        user_id: str,
        template_id: str,
        expected: date,
        new_date: date,
    ) -> bool:
        """
        Compare-and-set the next run date.

        Moves ``next_run_date`` from ``expected`` to ``new_date`` only if it
        still equals ``expected``. Whoever wins the swap owns the occurrence.

        Returns:
            True if this caller performed the swap, False if the stored
            value had already moved on

        Raises:
            NotFoundError: If the template doesn't exist
            TransientStoreError: If the store call fails
        """
        pass


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger transaction storage.

    Transactions are append-only from the scheduler's point of view.
    """

    @abstractmethod
    async def find_by_template_and_date(
        self,
        user_id: str,
        template_id: str,
        on_date: date,
    ) -> bool:
        """
        Check whether a transaction already exists for a template occurrence.

        Matches on ``recurring_template_id`` and calendar date only.

        Raises:
            TransientStoreError: If the lookup fails
        """
        pass

    @abstractmethod
    async def insert_transaction(
        self,
        user_id: str,
        transaction: LedgerTransaction,
    ) -> str:
        """
        Append a transaction to the user's ledger.

        Returns:
            The stored transaction's ID

        Raises:
            TransientStoreError: If persistence fails
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        template_id: Optional[str] = None,
    ) -> list[LedgerTransaction]:
        """
        List the user's transactions, optionally for one template.

        Returns:
            Transactions ordered by date (oldest first)
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one batch run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class TransientStoreError(StorageError):
    """
    A single read or write failed (network blip, quota, timeout).

    Scoped to one template: the batch counts it and moves on.
    """
    pass


class FatalConnectivityError(StorageError):
    """
    The store cannot be reached at all.

    Raised when templates can't even be listed; aborts the whole batch.
    """
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass
