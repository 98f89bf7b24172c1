"""
Daily Cutover

The cutover is a fixed local time (04:00 IST by default) acting as the
daily settlement boundary. Before it, nothing dated "today" may post, even
if the template is mathematically due; after it, the day is open.

"Today" is evaluated in the same reference timezone as the cutover, so a
batch triggered at 23:00 UTC on Jan 30 (04:30 IST Jan 31) posts Jan 31.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from recurring_ledger.config.settings import SchedulerSettings


class Cutover:
    """Evaluates instants against the daily cutover in a reference timezone."""

    def __init__(
        self,
        hour: int = 4,
        minute: int = 0,
        timezone_name: str = "Asia/Kolkata",
    ):
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"Invalid cutover time {hour:02d}:{minute:02d}")
        self._boundary = time(hour, minute)
        self._zone = ZoneInfo(timezone_name)

    @classmethod
    def from_settings(cls, settings: SchedulerSettings) -> "Cutover":
        return cls(
            hour=settings.cutover_hour,
            minute=settings.cutover_minute,
            timezone_name=settings.reference_timezone,
        )

    @property
    def boundary(self) -> time:
        return self._boundary

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def local_time(self, now: datetime) -> datetime:
        """Express ``now`` in the reference timezone (naive means UTC)."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self._zone)

    def business_today(self, now: datetime) -> date:
        """The calendar date in the reference timezone."""
        return self.local_time(now).date()

    def is_past(self, now: datetime) -> bool:
        """True once the local time has reached the cutover."""
        local = self.local_time(now)
        return (local.hour, local.minute) >= (self._boundary.hour, self._boundary.minute)

    def next_after(self, now: datetime) -> datetime:
        """
        The next cutover instant strictly after ``now``.

        Returned in the reference timezone; useful for telling an external
        trigger when to fire next.
        """
        local = self.local_time(now)
        candidate = datetime.combine(local.date(), self._boundary, tzinfo=self._zone)
        if candidate <= local:
            candidate = datetime.combine(
                local.date() + timedelta(days=1), self._boundary, tzinfo=self._zone
            )
        return candidate
