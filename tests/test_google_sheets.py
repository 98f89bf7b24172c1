"""
Tests for the Google Sheets stores.

No real API calls: the client is replaced by in-process fake worksheets
that mimic the handful of gspread calls the stores make.
"""

import asyncio
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from recurring_ledger.models.audit import AuditEventBuilder
from recurring_ledger.models.template import (
    LedgerTransaction,
    RecurringTemplate,
    RejectedTemplate,
    TemplateStatus,
)
from recurring_ledger.services.storage import (
    FatalConnectivityError,
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStore,
    GoogleSheetsTemplateStore,
    TransientStoreError,
)
from recurring_ledger.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    TEMPLATE_COLUMNS,
    TRANSACTION_COLUMNS,
)


class FakeWorksheet:
    """Stand-in for gspread.Worksheet backed by a list of rows."""

    def __init__(self, header, rows=None):
        self.rows = [list(header)] + [list(r) for r in (rows or [])]
        self.fail_reads = False
        self.fail_writes = False

    def get_all_values(self):
        if self.fail_reads:
            raise ConnectionError("sheets unreachable")
        return [list(r) for r in self.rows]

    def update_cell(self, row, col, value):
        if self.fail_writes:
            raise ConnectionError("write rejected")
        target = self.rows[row - 1]
        target.extend([""] * (col - len(target)))
        target[col - 1] = value

    def append_row(self, values, value_input_option=None):
        if self.fail_writes:
            raise ConnectionError("write rejected")
        self.rows.append([str(v) for v in values])


class FakeSheetsClient:
    def __init__(self, templates=None, transactions=None):
        self.templates = FakeWorksheet(TEMPLATE_COLUMNS, templates)
        self.transactions = FakeWorksheet(TRANSACTION_COLUMNS, transactions)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_templates_sheet(self):
        return self.templates

    def get_transactions_sheet(self):
        return self.transactions

    def get_audit_sheet(self):
        return self.audit


def _template_row(**values):
    row = {
        "id": "netflix",
        "user_id": "user-1",
        "name": "Netflix",
        "amount": "500",
        "type": "expense",
        "frequency": "monthly",
        "start_date": "2024-01-01",
        "next_run_date": "2024-01-31",
        "category": "Entertainment",
        "payment_method": "UPI",
        "status": "active",
        "is_active": "",
        "next_date": "",
    }
    row.update(values)
    return [row[column] for column in TEMPLATE_COLUMNS]


class TestTemplateStore:
    """Tests for GoogleSheetsTemplateStore."""

    def test_list_active_maps_rows(self):
        client = FakeSheetsClient(templates=[_template_row()])
        store = GoogleSheetsTemplateStore(client)

        templates = asyncio.run(store.list_active("user-1"))

        assert len(templates) == 1
        template = templates[0]
        assert template.id == "netflix"
        assert template.amount == Decimal("500")
        assert template.anchor_date == date(2024, 1, 1)
        assert template.next_run_date == date(2024, 1, 31)

    def test_list_active_filters_user_and_status(self):
        client = FakeSheetsClient(templates=[
            _template_row(),
            _template_row(id="other", user_id="user-2"),
            _template_row(id="paused", status="paused"),
        ])
        store = GoogleSheetsTemplateStore(client)

        templates = asyncio.run(store.list_active("user-1"))

        assert [t.id for t in templates] == ["netflix"]

    def test_legacy_row(self):
        """Test a legacy row with is_active and next_date columns."""
        client = FakeSheetsClient(templates=[
            _template_row(status="", is_active="TRUE", next_run_date="", next_date="2024-02-10"),
        ])
        store = GoogleSheetsTemplateStore(client)

        template = asyncio.run(store.list_active("user-1"))[0]

        assert template.status == TemplateStatus.ACTIVE
        assert template.next_run_date == date(2024, 2, 10)

    def test_short_and_invalid_rows_are_tolerated(self):
        client = FakeSheetsClient(templates=[
            ["half", "user-1", "Half row"],
            _template_row(id="bad", amount="abc"),
            _template_row(),
        ])
        store = GoogleSheetsTemplateStore(client)

        templates = asyncio.run(store.list_active("user-1"))

        assert [t.id for t in templates] == ["bad", "netflix"]
        assert isinstance(templates[0], RejectedTemplate)
        assert "amount" in templates[0].reason
        assert isinstance(templates[1], RecurringTemplate)

    def test_list_failure_is_fatal(self):
        client = FakeSheetsClient(templates=[_template_row()])
        client.templates.fail_reads = True
        store = GoogleSheetsTemplateStore(client)

        with pytest.raises(FatalConnectivityError):
            asyncio.run(store.list_active("user-1"))

    def test_claim_swaps_matching_pointer(self):
        client = FakeSheetsClient(templates=[_template_row()])
        store = GoogleSheetsTemplateStore(client)

        claimed = asyncio.run(store.claim_next_run(
            "user-1", "netflix", expected=date(2024, 1, 31), new_date=date(2024, 3, 1)
        ))

        assert claimed is True
        column = TEMPLATE_COLUMNS.index("next_run_date")
        assert client.templates.rows[1][column] == "2024-03-01"

    def test_claim_rejects_stale_expectation(self):
        client = FakeSheetsClient(templates=[_template_row(next_run_date="2024-03-01")])
        store = GoogleSheetsTemplateStore(client)

        claimed = asyncio.run(store.claim_next_run(
            "user-1", "netflix", expected=date(2024, 1, 31), new_date=date(2024, 3, 1)
        ))

        assert claimed is False

    def test_update_writes_next_run_column(self):
        client = FakeSheetsClient(templates=[
            _template_row(id="first"),
            _template_row(),
        ])
        store = GoogleSheetsTemplateStore(client)

        asyncio.run(store.update_next_run_date("user-1", "netflix", date(2024, 3, 1)))

        template = asyncio.run(store.get_template("user-1", "netflix"))
        assert template.next_run_date == date(2024, 3, 1)
        first = asyncio.run(store.get_template("user-1", "first"))
        assert first.next_run_date == date(2024, 1, 31)

    def test_write_failure_is_transient(self):
        client = FakeSheetsClient(templates=[_template_row()])
        client.templates.fail_writes = True
        store = GoogleSheetsTemplateStore(client)

        with pytest.raises(TransientStoreError):
            asyncio.run(store.update_next_run_date("user-1", "netflix", date(2024, 3, 1)))

    def test_get_missing_template(self):
        store = GoogleSheetsTemplateStore(FakeSheetsClient())
        assert asyncio.run(store.get_template("user-1", "nope")) is None


class TestLedgerStore:
    """Tests for GoogleSheetsLedgerStore."""

    def _transaction(self):
        template = RecurringTemplate.from_record({
            "id": "netflix",
            "name": "Netflix",
            "amount": "500",
            "category": "Entertainment",
            "status": "active",
            "next_run_date": "2024-01-31",
        })
        return LedgerTransaction.from_template(
            "user-1",
            template,
            date(2024, 1, 31),
            created_at=datetime(2024, 1, 31, 0, 0, tzinfo=timezone.utc),
        )

    def test_insert_then_find(self):
        client = FakeSheetsClient()
        store = GoogleSheetsLedgerStore(client)
        txn = self._transaction()

        transaction_id = asyncio.run(store.insert_transaction("user-1", txn))

        assert transaction_id == txn.id
        assert asyncio.run(
            store.find_by_template_and_date("user-1", "netflix", date(2024, 1, 31))
        )
        assert not asyncio.run(
            store.find_by_template_and_date("user-1", "netflix", date(2024, 3, 1))
        )
        assert not asyncio.run(
            store.find_by_template_and_date("user-2", "netflix", date(2024, 1, 31))
        )

    def test_round_trip_through_rows(self):
        client = FakeSheetsClient()
        store = GoogleSheetsLedgerStore(client)
        txn = self._transaction()
        asyncio.run(store.insert_transaction("user-1", txn))

        listed = asyncio.run(store.list_transactions("user-1", template_id="netflix"))

        assert listed == [txn]

    def test_find_matches_timestamped_date_cells(self):
        """Test a date cell holding a timestamp still matches by calendar date."""
        row = [""] * len(TRANSACTION_COLUMNS)
        row[TRANSACTION_COLUMNS.index("user_id")] = "user-1"
        row[TRANSACTION_COLUMNS.index("recurring_template_id")] = "netflix"
        row[TRANSACTION_COLUMNS.index("date")] = "2024-01-31T10:30:00"
        store = GoogleSheetsLedgerStore(FakeSheetsClient(transactions=[row]))

        assert asyncio.run(
            store.find_by_template_and_date("user-1", "netflix", date(2024, 1, 31))
        )

    def test_insert_failure_is_transient(self):
        client = FakeSheetsClient()
        client.transactions.fail_writes = True
        store = GoogleSheetsLedgerStore(client)

        with pytest.raises(TransientStoreError):
            asyncio.run(store.insert_transaction("user-1", self._transaction()))

    def test_read_failure_is_transient(self):
        client = FakeSheetsClient()
        client.transactions.fail_reads = True
        store = GoogleSheetsLedgerStore(client)

        with pytest.raises(TransientStoreError):
            asyncio.run(
                store.find_by_template_and_date("user-1", "netflix", date(2024, 1, 31))
            )


class TestAuditStorage:
    """Tests for GoogleSheetsAuditStorage."""

    def test_append_and_query(self):
        client = FakeSheetsClient()
        storage = GoogleSheetsAuditStorage(client)
        correlation_id = uuid4()
        event = AuditEventBuilder.batch_completed(
            "user-1", {"created": 1, "skipped": 0, "errors": 0}, correlation_id
        )

        assert asyncio.run(storage.append_event(event)) is True

        events = asyncio.run(storage.get_events_by_correlation_id(correlation_id))
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == {"created": 1, "skipped": 0, "errors": 0}

    def test_append_failure_returns_false(self):
        client = FakeSheetsClient()
        client.audit.fail_writes = True
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEventBuilder.batch_started("user-1", "2024-01-31", True, uuid4())

        assert asyncio.run(storage.append_event(event)) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
