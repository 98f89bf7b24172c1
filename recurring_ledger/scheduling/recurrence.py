"""
Recurrence Calculator

Pure date arithmetic: given a template's anchor date, its frequency and a
reference date (normally the occurrence that was just materialized),
compute the next due date.

DESIGN DECISION: Monthly and yearly cadences are always recomputed from the
ANCHOR date, never by adding a period to the previous run. A late batch run
or a skipped day can therefore never make a template drift.

DESIGN DECISION: "Monthly" is a fixed 30-day period counted from the anchor,
not "same day next calendar month". Existing ledgers were generated with
this cadence, so it is preserved exactly even though it slides against the
calendar over a year (anchor 2024-01-01 runs on 01-31, 03-01, 03-31, ...).

All values are calendar dates; time-of-day never takes part.
"""

from datetime import date, timedelta
from typing import Union

from recurring_ledger.models.template import Frequency


MONTHLY_PERIOD_DAYS = 30


def next_due(
    anchor_date: date,
    frequency: Union[Frequency, str],
    reference_date: date,
) -> date:
    """
    Compute the next due date strictly after ``reference_date``.

    Args:
        anchor_date: The template's original start date
        frequency: daily, weekly, monthly or yearly
        reference_date: The occurrence just materialized (or "today")

    Returns:
        The next due date. Never earlier than ``anchor_date``.

    Raises:
        ValueError: If the frequency is unknown
    """
    frequency = Frequency(frequency)

    if frequency == Frequency.DAILY:
        candidate = reference_date + timedelta(days=1)
    elif frequency == Frequency.WEEKLY:
        candidate = reference_date + timedelta(days=7)
    elif frequency == Frequency.MONTHLY:
        candidate = _next_monthly(anchor_date, reference_date)
    else:
        candidate = _next_yearly(anchor_date, reference_date)

    # A reference before the anchor means the template hasn't started yet.
    return max(candidate, anchor_date)


def _next_monthly(anchor_date: date, reference_date: date) -> date:
    elapsed_days = (reference_date - anchor_date).days
    periods = elapsed_days // MONTHLY_PERIOD_DAYS
    candidate = anchor_date + timedelta(days=(periods + 1) * MONTHLY_PERIOD_DAYS)
    if candidate <= reference_date:
        candidate += timedelta(days=MONTHLY_PERIOD_DAYS)
    return candidate


def _next_yearly(anchor_date: date, reference_date: date) -> date:
    candidate = anniversary(anchor_date, reference_date.year)
    if candidate <= reference_date:
        candidate = anniversary(anchor_date, reference_date.year + 1)
    return candidate


def anniversary(anchor_date: date, year: int) -> date:
    """
    The anchor's month/day in ``year``.

    A February 29 anchor falls on February 28 in non-leap years, and
    returns to February 29 whenever the year is a leap year again.
    """
    try:
        return anchor_date.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


def occurrences_between(
    anchor_date: date,
    frequency: Union[Frequency, str],
    start: date,
    end: date,
) -> list[date]:
    """
    List every due date in ``[start, end]`` following the anchor chain.

    The first occurrence is the anchor itself; each following one is
    ``next_due`` of its predecessor, exactly as the batch would post them.
    """
    occurrences = []
    current = anchor_date
    while current <= end:
        if current >= start:
            occurrences.append(current)
        current = next_due(anchor_date, frequency, current)
    return occurrences
