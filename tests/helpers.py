from datetime import date, datetime, timedelta

from models import AvailabilityWindow, DayOfWeek
from timeslots import SlotKey, display_today, to_absolute

WEEKDAYS = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
]

# A Monday
MONDAY = date(2025, 11, 17)
TUESDAY = MONDAY + timedelta(days=1)


def at(day: date, hour: int) -> datetime:
    """Absolute instant of a display-timezone hour."""
    return to_absolute(SlotKey(day, hour))


def office_hours(days=WEEKDAYS, start=9, end=17):
    return [AvailabilityWindow(day=d, start_hour=start, end_hour=end) for d in days]


def days_ahead(n: int) -> date:
    return display_today() + timedelta(days=n)


class RecordingSink:
    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)
