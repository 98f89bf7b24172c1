"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the template
store, the ledger store and the audit log. Google Sheets is the production
backend; the in-memory backend serves tests and dry runs.
"""

from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    FatalConnectivityError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    TemplateStoreInterface,
    TransientStoreError,
)
from recurring_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryTemplateStore,
)
from recurring_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    GoogleSheetsTemplateStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "TemplateStoreInterface",
    # Exceptions
    "FatalConnectivityError",
    "NotFoundError",
    "StorageError",
    "TransientStoreError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "InMemoryTemplateStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "GoogleSheetsTemplateStore",
]
