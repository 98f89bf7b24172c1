"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the production backend because:
1. Users can see their recurring payments and generated transactions directly
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- No transactions and no conditional writes. ``claim_next_run`` is a
  read-compare-write inside one call; it narrows the race between two
  overlapping batch runs but cannot close it. A real database should
  implement the claim as a single conditional UPDATE.
- Limited query capabilities (we filter in Python, one full sheet read per lookup)

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL/SQLite later without changing the scheduler.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recurring_ledger.config import get_settings
from recurring_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from recurring_ledger.models.template import (
    DEFAULT_FREQUENCY,
    Frequency,
    LedgerTransaction,
    RecurringTemplate,
    RejectedTemplate,
    TransactionKind,
    load_active,
    parse_calendar_date,
)
from recurring_ledger.services.storage.interface import (
    AuditStorageInterface,
    FatalConnectivityError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
    TemplateStoreInterface,
    TransientStoreError,
)


logger = structlog.get_logger(__name__)


# Column mappings for the RecurringPayments sheet.
# is_active and next_date are legacy columns kept for older rows.
TEMPLATE_COLUMNS = [
    "id",
    "user_id",
    "name",
    "amount",
    "type",
    "frequency",
    "start_date",
    "next_run_date",
    "category",
    "payment_method",
    "status",
    "is_active",
    "next_date",
]

# Column mappings for the Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "recurring_template_id",
    "title",
    "date",
    "amount",
    "type",
    "category",
    "payment_method",
    "note",
    "is_recurring",
    "created_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# 1-based column number used by update_cell
NEXT_RUN_DATE_COLUMN = TEMPLATE_COLUMNS.index("next_run_date") + 1


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    reraise=True,
)
def _read_rows(sheet: gspread.Worksheet) -> list[list[str]]:
    """All data rows of a worksheet (header excluded). Reads are safe to retry."""
    return sheet.get_all_values()[1:]


def _row_to_dict(row: list, columns: list[str]) -> dict[str, str]:
    return {
        column: (row[index] if index < len(row) else "")
        for index, column in enumerate(columns)
    }


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise FatalConnectivityError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise FatalConnectivityError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise FatalConnectivityError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_templates_sheet(self) -> gspread.Worksheet:
        """Get or create the recurring templates worksheet."""
        return self._get_or_create_sheet(
            self._settings.templates_sheet_name, TEMPLATE_COLUMNS, rows=500
        )

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsTemplateStore(TemplateStoreInterface):
    """
    Google Sheets implementation of template storage.

    One template per row, all users in one sheet (scoped by user_id).
    Rows are handed to ``RecurringTemplate.from_record`` untouched, so
    legacy columns are normalized in the model, not here.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        default_frequency: Frequency = DEFAULT_FREQUENCY,
    ):
        self._client = client or GoogleSheetsClient()
        self._default_frequency = default_frequency

    def _row_to_template(self, row: list) -> Optional[RecurringTemplate]:
        record = _row_to_dict(row, TEMPLATE_COLUMNS)
        try:
            return RecurringTemplate.from_record(
                record, default_frequency=self._default_frequency
            )
        except ValidationError as e:
            logger.warning(
                "template_row_invalid",
                template_id=record.get("id"),
                error=str(e),
            )
            return None

    def _user_rows(self, user_id: str) -> list[tuple[int, list]]:
        """(sheet row number, row) pairs belonging to the user."""
        sheet = self._client.get_templates_sheet()
        user_column = TEMPLATE_COLUMNS.index("user_id")
        return [
            (index, row)
            for index, row in enumerate(_read_rows(sheet), start=2)  # row 1 is header
            if row and len(row) > user_column and row[user_column] == user_id
        ]

    def _find_row(self, user_id: str, template_id: str) -> tuple[int, list]:
        for index, row in self._user_rows(user_id):
            if row[0] == template_id:
                return index, row
        raise NotFoundError(f"Template not found: {template_id}")

    async def list_active(
        self,
        user_id: str,
    ) -> list[Union[RecurringTemplate, RejectedTemplate]]:
        """List active templates; any failure here is fatal for the batch."""
        try:
            rows = self._user_rows(user_id)
        except FatalConnectivityError:
            raise
        except Exception as e:
            raise FatalConnectivityError(f"Failed to list templates: {e}")

        templates = []
        for _, row in rows:
            entry = load_active(
                _row_to_dict(row, TEMPLATE_COLUMNS),
                default_frequency=self._default_frequency,
            )
            if isinstance(entry, RejectedTemplate):
                logger.warning(
                    "template_row_invalid",
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
        try:
            _, row = self._find_row(user_id, template_id)
        except NotFoundError:
            return None
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to get template: {e}")
        return self._row_to_template(row)

    async def update_next_run_date(
        self,
        user_id: str,
        template_id: str,
        new_date: date,
    ) -> bool:
        try:
            index, _ = self._find_row(user_id, template_id)
            sheet = self._client.get_templates_sheet()
            sheet.update_cell(index, NEXT_RUN_DATE_COLUMN, new_date.isoformat())
            return True
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to update next run date: {e}")

    async def claim_next_run(
        self,
        user_id: str,
        template_id: str,
        expected: date,
        new_date: date,
    ) -> bool:
        try:
            index, row = self._find_row(user_id, template_id)
            template = self._row_to_template(row)
            if template is None or template.next_run_date != expected:
                return False
            sheet = self._client.get_templates_sheet()
            sheet.update_cell(index, NEXT_RUN_DATE_COLUMN, new_date.isoformat())
            return True
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to claim next run: {e}")


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger.

    Transactions are appended as rows. The duplicate check is a full scan
    of the sheet; fine for a household ledger, the first thing to replace
    with an indexed (template_id, date) lookup at scale.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _transaction_to_row(self, txn: LedgerTransaction) -> list:
        """Convert a LedgerTransaction to a spreadsheet row."""
        return [
            txn.id,
            txn.user_id,
            txn.recurring_template_id,
            txn.title,
            txn.transaction_date.isoformat(),
            str(txn.amount),
            txn.kind.value,
            txn.category,
            txn.payment_method or "",
            txn.note,
            str(txn.is_recurring),
            txn.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> LedgerTransaction:
        """Convert a spreadsheet row to a LedgerTransaction."""
        record = _row_to_dict(row, TRANSACTION_COLUMNS)
        return LedgerTransaction(
            id=record["id"],
            user_id=record["user_id"],
            recurring_template_id=record["recurring_template_id"],
            title=record["title"],
            transaction_date=date.fromisoformat(record["date"][:10]),
            amount=Decimal(record["amount"]),
            kind=TransactionKind(record["type"] or TransactionKind.EXPENSE.value),
            category=record["category"],
            payment_method=record["payment_method"] or None,
            note=record["note"],
            is_recurring=record["is_recurring"].lower() == "true",
            created_at=datetime.fromisoformat(record["created_at"]),
        )

    async def find_by_template_and_date(
        self,
        user_id: str,
        template_id: str,
        on_date: date,
    ) -> bool:
        try:
            rows = _read_rows(self._client.get_transactions_sheet())
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to read transactions: {e}")

        for row in rows:
            record = _row_to_dict(row, TRANSACTION_COLUMNS)
            if (
                record["user_id"] == user_id
                and record["recurring_template_id"] == template_id
                and parse_calendar_date(record["date"]) == on_date
            ):
                return True
        return False

    async def insert_transaction(
        self,
        user_id: str,
        transaction: LedgerTransaction,
    ) -> str:
        """
        Append a transaction row.

        NOTE: Deliberately not retried; a timed-out append may still have
        landed, and the claim/guard pair handles the next attempt.
        """
        if transaction.user_id != user_id:
            transaction = transaction.model_copy(update={"user_id": user_id})
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(
                self._transaction_to_row(transaction),
                value_input_option="RAW",
            )
            return transaction.id
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to save transaction: {e}")

    async def list_transactions(
        self,
        user_id: str,
        template_id: Optional[str] = None,
    ) -> list[LedgerTransaction]:
        try:
            rows = _read_rows(self._client.get_transactions_sheet())
        except StorageError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Failed to list transactions: {e}")

        transactions = []
        for row in rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                txn = self._row_to_transaction(row)
            except (ValueError, ArithmeticError):
                continue  # Skip malformed rows
            if txn.user_id != user_id:
                continue
            if template_id and txn.recurring_template_id != template_id:
                continue
            transactions.append(txn)

        transactions.sort(key=lambda t: t.transaction_date)
        return transactions


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        record = _row_to_dict(row, AUDIT_COLUMNS)
        return AuditEvent(
            event_id=UUID(record["event_id"]),
            timestamp=datetime.fromisoformat(record["timestamp"]),
            event_type=AuditEventType(record["event_type"]),
            severity=AuditSeverity(record["severity"]),
            user_id=record["user_id"] or None,
            entity_type=record["entity_type"] or None,
            entity_id=record["entity_id"] or None,
            correlation_id=UUID(record["correlation_id"]) if record["correlation_id"] else None,
            description=record["description"],
            details=json.loads(record["details_json"]) if record["details_json"] else {},
            error_message=record["error_message"] or None,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the batch; report and carry on
            logger.error("audit_sheet_write_failed", error=str(e))
            return False

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in _read_rows(self._client.get_audit_sheet()):
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, ValidationError):
                continue
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [
                e for e in self._read_events() if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise TransientStoreError(f"Failed to get audit events: {e}")

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events()
        except Exception as e:
            raise TransientStoreError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
