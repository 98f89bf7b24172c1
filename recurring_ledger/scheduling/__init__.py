"""Scheduling package: recurrence arithmetic and the daily cutover."""

from recurring_ledger.scheduling.cutover import Cutover
from recurring_ledger.scheduling.recurrence import (
    MONTHLY_PERIOD_DAYS,
    anniversary,
    next_due,
    occurrences_between,
)

__all__ = [
    "Cutover",
    "MONTHLY_PERIOD_DAYS",
    "anniversary",
    "next_due",
    "occurrences_between",
]
