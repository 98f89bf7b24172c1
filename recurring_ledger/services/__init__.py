"""Services package."""

from recurring_ledger.services.storage import (
    AuditStorageInterface,
    FatalConnectivityError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    GoogleSheetsTemplateStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryTemplateStore,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    TemplateStoreInterface,
    TransientStoreError,
)

__all__ = [
    "AuditStorageInterface",
    "FatalConnectivityError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "GoogleSheetsTemplateStore",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "InMemoryTemplateStore",
    "LedgerStoreInterface",
    "NotFoundError",
    "StorageError",
    "TemplateStoreInterface",
    "TransientStoreError",
]
