"""
Tests for the batch driver.

Integration-style: real Materializer, real recurrence math and cutover,
in-memory stores and a fixed clock.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from recurring_ledger.clock import FixedClock
from recurring_ledger.config.settings import SchedulerSettings
from recurring_ledger.models.audit import AuditEventType, AuditSeverity
from recurring_ledger.orchestrator import create_app_components, create_scheduler
from recurring_ledger.services.storage import (
    FatalConnectivityError,
    TransientStoreError,
)

from conftest import USER_ID, ist


def _run(scheduler):
    return asyncio.run(scheduler.run_batch(USER_ID))


def _transactions(ledger_store):
    return asyncio.run(ledger_store.list_transactions(USER_ID))


def _pointer(template_store, template_id="netflix"):
    return asyncio.run(template_store.get_template(USER_ID, template_id)).next_run_date


class TestBatchRun:
    """Tests for a normal batch pass."""

    def test_netflix_scenario(self, scheduler, template_store, ledger_store, make_record):
        """Test the due occurrence posts once and the pointer moves 30 days on."""
        template_store.add_record(USER_ID, make_record())

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 1, "skipped": 0, "errors": 0}
        transactions = _transactions(ledger_store)
        assert len(transactions) == 1
        assert transactions[0].amount == Decimal("500")
        assert transactions[0].transaction_date == date(2024, 1, 31)
        assert transactions[0].title == "Netflix"
        assert _pointer(template_store) == date(2024, 3, 1)

    def test_second_run_is_idempotent(
        self, scheduler, template_store, ledger_store, make_record
    ):
        """Test repeated runs on the same day never post twice."""
        template_store.add_record(USER_ID, make_record())

        _run(scheduler)
        second = _run(scheduler)
        third = _run(scheduler)

        assert second.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert third.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert len(_transactions(ledger_store)) == 1

    def test_follows_anchor_chain_over_time(
        self, scheduler, template_store, ledger_store, clock, make_record
    ):
        """Test daily runs through March post on 01-31, 03-01 and 03-31."""
        template_store.add_record(USER_ID, make_record())

        day = ist(2024, 1, 31, 6, 0)
        while day <= ist(2024, 4, 5, 6, 0):
            clock.set_time(day)
            _run(scheduler)
            day += timedelta(days=1)

        dates = [txn.transaction_date for txn in _transactions(ledger_store)]
        assert dates == [date(2024, 1, 31), date(2024, 3, 1), date(2024, 3, 31)]

    def test_overdue_template_posts_one_occurrence_per_run(
        self, scheduler, template_store, ledger_store, make_record
    ):
        """Test a template far behind catches up one occurrence per run."""
        template_store.add_record(USER_ID, make_record(
            frequency="daily", startDate="2024-01-01", nextRunDate="2024-01-01",
        ))

        stats = _run(scheduler)

        assert stats.created == 1
        assert _transactions(ledger_store)[0].transaction_date == date(2024, 1, 1)
        assert _pointer(template_store) == date(2024, 1, 2)

    def test_future_template_is_skipped(self, scheduler, template_store, make_record):
        template_store.add_record(USER_ID, make_record(nextRunDate="2024-02-15"))

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert _pointer(template_store) == date(2024, 2, 15)

    def test_other_users_templates_untouched(
        self, scheduler, template_store, ledger_store, make_record
    ):
        template_store.add_record("someone-else", make_record())

        stats = _run(scheduler)

        assert stats.total == 0
        assert asyncio.run(ledger_store.list_transactions("someone-else")) == []


class TestCutoverGate:
    """Tests for the 04:00 IST cutover."""

    def test_nothing_posts_before_cutover(
        self, scheduler, template_store, ledger_store, clock, make_record
    ):
        template_store.add_record(USER_ID, make_record())
        clock.set_time(ist(2024, 1, 31, 3, 30))

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert _transactions(ledger_store) == []

        clock.set_time(ist(2024, 1, 31, 4, 30))
        assert _run(scheduler).created == 1

    def test_utc_trigger_uses_ist_business_date(
        self, template_store, ledger_store, audit_logger, scheduler_settings, make_record
    ):
        """Test 22:00 UTC Jan 30 is too early and 23:00 UTC posts Jan 31."""
        template_store.add_record(USER_ID, make_record())
        clock = FixedClock(datetime(2024, 1, 30, 22, 0, tzinfo=timezone.utc))
        scheduler = create_scheduler(
            template_store,
            ledger_store,
            clock=clock,
            audit_logger=audit_logger,
            scheduler_settings=scheduler_settings,
        )

        assert _run(scheduler).skipped == 1

        clock.set_time(datetime(2024, 1, 30, 23, 0, tzinfo=timezone.utc))
        assert _run(scheduler).created == 1
        assert _transactions(ledger_store)[0].transaction_date == date(2024, 1, 31)


class TestEligibility:
    """Tests for which templates are eligible at all."""

    @pytest.mark.parametrize("status", ["paused", "cancelled"])
    def test_inactive_templates_never_post(
        self, scheduler, template_store, ledger_store, make_record, status
    ):
        template_store.add_record(USER_ID, make_record(status=status))

        stats = _run(scheduler)

        assert stats.created == 0
        assert _transactions(ledger_store) == []

    def test_legacy_is_active_flag(
        self, scheduler, template_store, ledger_store, make_record
    ):
        """Test a legacy record with isActive=True and no status still posts."""
        record = make_record(isActive=True)
        del record["status"]
        template_store.add_record(USER_ID, record)

        assert _run(scheduler).created == 1

    def test_unknown_status_with_active_flag_posts(
        self, scheduler, template_store, make_record
    ):
        """Test an unrecognized status defers to a truthy isActive flag."""
        template_store.add_record(
            USER_ID, make_record(status="archived", isActive=True)
        )

        assert _run(scheduler).created == 1

    def test_malformed_template_is_skipped(
        self, scheduler, template_store, audit_storage, make_record
    ):
        """Test a bad next run date is a data problem, not an error."""
        template_store.add_record(USER_ID, make_record(nextRunDate="not-a-date"))

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert any(
            e.event_type == AuditEventType.TEMPLATE_MALFORMED
            for e in audit_storage.events
        )

    def test_invalid_record_is_skipped(
        self, scheduler, template_store, audit_storage, make_record
    ):
        """Test an active record that fails validation is counted and audited."""
        template_store.add_record(USER_ID, make_record(id="broken", amount="-5"))
        template_store.add_record(USER_ID, make_record())

        assert _run(scheduler).to_dict() == {"created": 1, "skipped": 1, "errors": 0}
        malformed = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.TEMPLATE_MALFORMED
        ]
        assert [e.entity_id for e in malformed] == ["broken"]

    def test_unknown_frequency_is_skipped(
        self, scheduler, template_store, ledger_store, audit_storage, make_record
    ):
        template_store.add_record(USER_ID, make_record(frequency="biweekly"))

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 0, "skipped": 1, "errors": 0}
        assert _transactions(ledger_store) == []
        assert any(
            e.event_type == AuditEventType.TEMPLATE_MALFORMED
            for e in audit_storage.events
        )

    def test_invalid_paused_record_is_ignored(
        self, scheduler, template_store, make_record
    ):
        template_store.add_record(
            USER_ID, make_record(status="paused", frequency="biweekly")
        )

        assert _run(scheduler).to_dict() == {"created": 0, "skipped": 0, "errors": 0}


class TestFailureIsolation:
    """Tests for errors during a batch."""

    def test_failing_template_does_not_stop_batch(
        self, scheduler, template_store, ledger_store, audit_storage, make_record
    ):
        template_store.add_record(USER_ID, make_record(id="spotify", name="Spotify"))
        template_store.add_record(USER_ID, make_record())
        ledger_store.inject_failure("insert_transaction", TransientStoreError("quota"))

        stats = _run(scheduler)

        assert stats.to_dict() == {"created": 1, "skipped": 0, "errors": 1}
        assert [t.title for t in _transactions(ledger_store)] == ["Netflix"]
        completed = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.BATCH_COMPLETED
        ]
        assert completed[0].severity == AuditSeverity.WARNING

    def test_failed_occurrence_is_retried_next_run(
        self, scheduler, template_store, ledger_store, make_record
    ):
        template_store.add_record(USER_ID, make_record())
        ledger_store.inject_failure("insert_transaction", TransientStoreError("quota"))

        assert _run(scheduler).errors == 1
        assert _run(scheduler).created == 1
        assert len(_transactions(ledger_store)) == 1

    def test_unexpected_exception_is_isolated(
        self, scheduler, template_store, ledger_store, audit_storage, make_record
    ):
        template_store.add_record(USER_ID, make_record())
        ledger_store.inject_failure("find_by_template_and_date", RuntimeError("bug"))

        stats = _run(scheduler)

        assert stats.errors == 1
        assert any(
            e.event_type == AuditEventType.SYSTEM_ERROR for e in audit_storage.events
        )

    def test_fatal_listing_error_propagates(
        self, scheduler, template_store, audit_storage
    ):
        template_store.inject_failure("list_active", FatalConnectivityError("down"))

        with pytest.raises(FatalConnectivityError):
            _run(scheduler)

        assert audit_storage.events[-1].event_type == AuditEventType.BATCH_ABORTED

    def test_transient_listing_error_is_fatal_for_run(self, scheduler, template_store):
        """Test any listing failure aborts the run as a connectivity error."""
        template_store.inject_failure("list_active", TransientStoreError("timeout"))

        with pytest.raises(FatalConnectivityError):
            _run(scheduler)


class TestAuditTrail:
    def test_one_correlation_id_per_run(
        self, scheduler, template_store, audit_storage, make_record
    ):
        template_store.add_record(USER_ID, make_record())

        _run(scheduler)

        correlation_ids = {e.correlation_id for e in audit_storage.events}
        assert len(correlation_ids) == 1
        events = asyncio.run(
            audit_storage.get_events_by_correlation_id(correlation_ids.pop())
        )
        assert events[0].event_type == AuditEventType.BATCH_STARTED
        assert events[-1].event_type == AuditEventType.BATCH_COMPLETED


class TestPlainModeScheduler:
    def test_plain_mode_via_settings(
        self, template_store, ledger_store, clock, audit_logger, make_record
    ):
        template_store.add_record(USER_ID, make_record())
        scheduler = create_scheduler(
            template_store,
            ledger_store,
            clock=clock,
            audit_logger=audit_logger,
            scheduler_settings=SchedulerSettings(use_atomic_claims=False),
        )

        assert _run(scheduler).created == 1
        assert _run(scheduler).skipped == 1
        assert "claim_next_run" not in template_store.calls


class TestUpcoming:
    """Tests for the read-only upcoming preview."""

    def test_lists_occurrences_in_window(self, scheduler, template_store, make_record):
        template_store.add_record(USER_ID, make_record())
        template_store.add_record(USER_ID, make_record(
            id="gym", name="Gym", frequency="weekly",
            startDate="2024-01-27", nextRunDate="2024-02-03",
        ))
        template_store.add_record(USER_ID, make_record(
            id="insurance", name="Insurance", frequency="yearly",
            startDate="2023-06-01", nextRunDate="2024-06-01",
        ))

        upcoming = asyncio.run(scheduler.upcoming(USER_ID, within_days=7))

        assert [(t.id, d) for t, d in upcoming] == [
            ("netflix", date(2024, 1, 31)),
            ("gym", date(2024, 2, 3)),
        ]

    def test_preview_does_not_write(
        self, scheduler, template_store, ledger_store, make_record
    ):
        template_store.add_record(USER_ID, make_record())

        asyncio.run(scheduler.upcoming(USER_ID))

        assert _transactions(ledger_store) == []
        assert _pointer(template_store) == date(2024, 1, 31)


class TestAppComponents:
    def test_in_memory_components(self):
        scheduler, template_store, ledger_store = create_app_components(
            use_storage=False,
            clock=FixedClock(ist(2024, 1, 31, 5, 0)),
        )
        template_store.add_record(USER_ID, {
            "id": "rent",
            "name": "Rent",
            "amount": 15000,
            "category": "Housing",
            "status": "active",
            "next_run_date": "2024-01-31",
        })

        stats = asyncio.run(scheduler.run_batch(USER_ID))

        assert stats.created == 1
        assert len(asyncio.run(ledger_store.list_transactions(USER_ID))) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
