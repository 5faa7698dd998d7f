"""Local calendar-day handling for "today" and day-scoped round numbers."""

from __future__ import annotations

from datetime import UTC, date, datetime, tzinfo
from zoneinfo import ZoneInfo

LOCAL_TIMEZONE = "local"


def _system_timezone() -> tzinfo:
    return datetime.now().astimezone().tzinfo or UTC


class LedgerCalendar:
    """Map timestamps onto calendar days of a single configured time zone.

    Naive timestamps are interpreted as wall-clock time in that zone, which
    is how the CSV ``Timestamp`` column is written.
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz or _system_timezone()

    @classmethod
    def from_name(cls, name: str) -> LedgerCalendar:
        if name == LOCAL_TIMEZONE:
            return cls()
        return cls(ZoneInfo(name))

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(tz=self._tz)

    def localize(self, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            return ts.replace(tzinfo=self._tz)
        return ts.astimezone(self._tz)

    def day_of(self, ts: datetime) -> date:
        return self.localize(ts).date()

    def is_same_day(self, ts: datetime, now: datetime) -> bool:
        return self.day_of(ts) == self.day_of(now)
