"""Shared pytest fixtures for recurring ledger tests."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from recurring_ledger.audit import AuditLogger
from recurring_ledger.clock import FixedClock
from recurring_ledger.config.settings import SchedulerSettings
from recurring_ledger.orchestrator import create_scheduler
from recurring_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryTemplateStore,
)


IST = ZoneInfo("Asia/Kolkata")
USER_ID = "user-1"


def ist(year, month, day, hour=12, minute=0) -> datetime:
    """An aware datetime in India Standard Time."""
    return datetime(year, month, day, hour, minute, tzinfo=IST)


def netflix_record(**overrides) -> dict:
    """The canonical 'Netflix ₹500/month' template record."""
    record = {
        "id": "netflix",
        "name": "Netflix",
        "amount": "500",
        "type": "expense",
        "frequency": "monthly",
        "startDate": "2024-01-01",
        "nextRunDate": "2024-01-31",
        "category": "Entertainment",
        "paymentMethod": "UPI",
        "status": "active",
    }
    record.update(overrides)
    return record


@pytest.fixture
def template_store():
    return InMemoryTemplateStore()


@pytest.fixture
def ledger_store():
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def clock():
    """Clock parked at 2024-01-31 05:00 IST (after the 04:00 cutover)."""
    return FixedClock(ist(2024, 1, 31, 5, 0))


@pytest.fixture
def scheduler_settings():
    return SchedulerSettings(
        cutover_hour=4,
        cutover_minute=0,
        reference_timezone="Asia/Kolkata",
        use_atomic_claims=True,
    )


@pytest.fixture
def scheduler(template_store, ledger_store, clock, audit_logger, scheduler_settings):
    return create_scheduler(
        template_store,
        ledger_store,
        clock=clock,
        audit_logger=audit_logger,
        scheduler_settings=scheduler_settings,
    )


@pytest.fixture
def make_record():
    """Factory for template records; keyword overrides replace fields."""
    return netflix_record


@pytest.fixture
def at_ist():
    """Factory for aware IST datetimes."""
    return ist
