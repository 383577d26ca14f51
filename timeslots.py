"""Conversions between absolute (UTC) timestamps and display-timezone slot keys.

Persisted times are always absolute UTC. A slot key names one hour cell of
the schedule in the organization's display timezone, e.g.
"2025-11-17_09". The display zone is expected to have no DST.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import NamedTuple, Optional

from config import DISPLAY_TZ

ONE_HOUR = timedelta(hours=1)


class SlotKey(NamedTuple):
    day: date
    hour: int

    def __str__(self) -> str:
        return f"{self.day.isoformat()}_{self.hour:02d}"

    @classmethod
    def parse(cls, text: str) -> "SlotKey":
        """Accepts "YYYY-MM-DD_HH" and the older "YYYY-MM-DD_HH:00" form."""
        try:
            day_part, hour_part = text.split("_", 1)
            hour_part, _, minutes = hour_part.partition(":")
            if minutes and int(minutes) != 0:
                raise ValueError("slot keys are whole hours")
            key = cls(date.fromisoformat(day_part), int(hour_part))
        except ValueError as e:
            raise ValueError(f"Invalid slot key {text!r}: {e}") from None
        if not 0 <= key.hour <= 23:
            raise ValueError(f"Invalid slot key {text!r}: hour out of range")
        return key


def as_utc(t: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def truncate_to_hour(t: datetime, tz: tzinfo = DISPLAY_TZ) -> datetime:
    """Start of the display-timezone hour containing t, as UTC."""
    local = as_utc(t).astimezone(tz)
    return local.replace(minute=0, second=0, microsecond=0).astimezone(timezone.utc)


def to_slot_key(t: datetime, tz: tzinfo = DISPLAY_TZ) -> SlotKey:
    local = as_utc(t).astimezone(tz)
    return SlotKey(local.date(), local.hour)


def to_absolute(key: SlotKey, tz: tzinfo = DISPLAY_TZ) -> datetime:
    local = datetime(key.day.year, key.day.month, key.day.day, key.hour, tzinfo=tz)
    return local.astimezone(timezone.utc)


def next_hour(key: SlotKey) -> SlotKey:
    if key.hour == 23:
        return SlotKey(key.day + timedelta(days=1), 0)
    return SlotKey(key.day, key.hour + 1)


def is_hour_aligned(t: datetime, tz: tzinfo = DISPLAY_TZ) -> bool:
    local = as_utc(t).astimezone(tz)
    return local.minute == 0 and local.second == 0 and local.microsecond == 0


def hours_between(start: datetime, end: datetime) -> int:
    """Whole hours in [start, end); callers check alignment first."""
    return int((as_utc(end) - as_utc(start)) // ONE_HOUR)


def iter_hours(start: datetime, end: datetime, tz: tzinfo = DISPLAY_TZ):
    """Yield every hour boundary from the hour containing start up to end."""
    cursor = truncate_to_hour(start, tz)
    end = as_utc(end)
    while cursor < end:
        yield cursor
        cursor += ONE_HOUR


def display_today(now: Optional[datetime] = None, tz: tzinfo = DISPLAY_TZ) -> date:
    now = now or datetime.now(timezone.utc)
    return as_utc(now).astimezone(tz).date()
