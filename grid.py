"""Materialize a resource's weekly availability into an hour grid.

The grid spans N display-timezone days starting at ``window_start`` and the
hours [min_hour, max_hour) covered by the union of the weekly windows, so
every day has the same width. Cells are stored in a 2-D list indexed by
(day_offset, hour_offset); SlotKey strings only appear when serializing.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from config import DISPLAY_TZ, SCHEDULE_DAYS
from models import LIVE_STATUSES, AvailabilityWindow, BookingStatus, DayOfWeek
from timeslots import ONE_HOUR, SlotKey, as_utc, iter_hours, to_absolute, to_slot_key

logger = logging.getLogger(__name__)

# Used when availability is configured but empty: nothing to take min/max of
DEFAULT_HOUR_RANGE = (0, 24)


class SlotState(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    UNAVAILABLE = "unavailable"


class BookedKind(str, Enum):
    APPROVED = "approved"
    PENDING_MINE = "pending_mine"
    PENDING_OTHER = "pending_other"


@dataclass
class Cell:
    state: SlotState
    kind: Optional[BookedKind] = None
    booking_id: Optional[int] = None
    requester_id: Optional[str] = None
    purpose: str = ""
    reason: str = ""
    is_start: bool = False
    is_end: bool = False

    @property
    def is_requestable(self) -> bool:
        return self.state is SlotState.AVAILABLE

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "kind": self.kind.value if self.kind else None,
            "booking_id": self.booking_id,
            "requester_id": self.requester_id,
            "purpose": self.purpose,
            "reason": self.reason,
            "is_start": self.is_start,
            "is_end": self.is_end,
            "is_requestable": self.is_requestable,
        }


@dataclass
class ScheduleGrid:
    days: List[date]
    start_hour: int
    end_hour: int
    configured: bool = True
    tz: tzinfo = DISPLAY_TZ
    cells: List[List[Cell]] = field(init=False)

    def __post_init__(self):
        self.cells = [
            [Cell(SlotState.UNAVAILABLE) for _ in self.hours] for _ in self.days
        ]
        self._day_index = {d: i for i, d in enumerate(self.days)}

    @property
    def hours(self) -> range:
        return range(self.start_hour, self.end_hour)

    @property
    def window_start(self) -> datetime:
        return to_absolute(SlotKey(self.days[0], 0), self.tz)

    @property
    def window_end(self) -> datetime:
        return to_absolute(SlotKey(self.days[-1] + timedelta(days=1), 0), self.tz)

    def _index(self, key: SlotKey) -> Optional[Tuple[int, int]]:
        day_idx = self._day_index.get(key.day)
        if day_idx is None or key.hour not in self.hours:
            return None
        return day_idx, key.hour - self.start_hour

    def __contains__(self, key: SlotKey) -> bool:
        return self._index(key) is not None

    def __getitem__(self, key: SlotKey) -> Cell:
        idx = self._index(key)
        if idx is None:
            raise KeyError(str(key))
        return self.cells[idx[0]][idx[1]]

    def __setitem__(self, key: SlotKey, cell: Cell) -> None:
        idx = self._index(key)
        if idx is None:
            raise KeyError(str(key))
        self.cells[idx[0]][idx[1]] = cell

    def get(self, key: SlotKey) -> Optional[Cell]:
        idx = self._index(key)
        return None if idx is None else self.cells[idx[0]][idx[1]]

    def keys(self) -> Iterator[SlotKey]:
        """Chronological order."""
        for day in self.days:
            for hour in self.hours:
                yield SlotKey(day, hour)

    def items(self) -> Iterator[Tuple[SlotKey, Cell]]:
        for key in self.keys():
            yield key, self[key]

    def is_requestable(self, key: SlotKey) -> bool:
        cell = self.get(key)
        return cell is not None and cell.is_requestable

    def day_index(self, day: date) -> int:
        return self._day_index[day]

    def counts(self) -> Dict[SlotState, int]:
        totals = {state: 0 for state in SlotState}
        for _, cell in self.items():
            totals[cell.state] += 1
        return totals

    def to_dict(self) -> Dict[str, dict]:
        return {str(key): cell.to_dict() for key, cell in self.items()}


def _clip(start: datetime, end: datetime, grid: ScheduleGrid) -> Tuple[datetime, datetime]:
    return max(as_utc(start), grid.window_start), min(as_utc(end), grid.window_end)


def build_grid(
    availability: Optional[List[AvailabilityWindow]],
    maintenance_periods: Iterable,
    bookings: Iterable,
    window_start: date,
    days: int = SCHEDULE_DAYS,
    viewer_id: Optional[str] = None,
    tz: tzinfo = DISPLAY_TZ,
) -> ScheduleGrid:
    """Build the dense schedule grid for one resource.

    ``maintenance_periods`` items need ``start``/``end``/``reason``;
    ``bookings`` items need ``id``, ``start_time``, ``end_time``, ``status``,
    ``requester_id`` and ``purpose``. Both may extend past the window.
    """
    day_list = [window_start + timedelta(days=i) for i in range(days)]

    if availability is None:
        logger.debug("No availability configured, returning empty grid")
        return ScheduleGrid(day_list, 0, 0, configured=False, tz=tz)

    by_day = {w.day: w for w in availability}

    # Step 1: global hour bound across all weekly windows
    if by_day:
        min_hour = min(w.start_hour for w in by_day.values())
        max_hour = max(w.end_hour for w in by_day.values())
    else:
        min_hour, max_hour = DEFAULT_HOUR_RANGE

    grid = ScheduleGrid(day_list, min_hour, max_hour, tz=tz)

    # Step 2: open the hours inside each day's weekly window
    for day_idx, day in enumerate(day_list):
        window = by_day.get(DayOfWeek.of(day))
        if window is None:
            continue
        for hour in range(window.start_hour, window.end_hour):
            grid.cells[day_idx][hour - min_hour] = Cell(SlotState.AVAILABLE)

    # Step 3: maintenance closes hours regardless of the weekly window
    for period in maintenance_periods:
        start, end = _clip(period.start, period.end, grid)
        for cursor in iter_hours(start, end, tz):
            key = to_slot_key(cursor, tz)
            if key in grid:
                grid[key] = Cell(SlotState.UNAVAILABLE, reason=period.reason or "Maintenance")

    # Step 4: live bookings; pending first so an approved mark wins on stale overlaps
    live = [b for b in bookings if b.status in LIVE_STATUSES]
    live.sort(key=lambda b: b.status == BookingStatus.APPROVED)
    for booking in live:
        if booking.status == BookingStatus.APPROVED:
            kind = BookedKind.APPROVED
        elif viewer_id is not None and booking.requester_id == viewer_id:
            kind = BookedKind.PENDING_MINE
        else:
            kind = BookedKind.PENDING_OTHER

        b_start, b_end = as_utc(booking.start_time), as_utc(booking.end_time)
        start, end = _clip(b_start, b_end, grid)
        for cursor in iter_hours(start, end, tz):
            key = to_slot_key(cursor, tz)
            cell = grid.get(key)
            if cell is None or cell.state is SlotState.UNAVAILABLE:
                continue
            if cell.kind is BookedKind.APPROVED:
                continue
            hidden = kind is BookedKind.PENDING_OTHER
            grid[key] = Cell(
                SlotState.BOOKED,
                kind=kind,
                booking_id=booking.id,
                requester_id=None if hidden else booking.requester_id,
                purpose="" if hidden else (booking.purpose or ""),
                is_start=cursor == b_start,
                is_end=cursor + ONE_HOUR == b_end,
            )

    return grid


@dataclass
class RequesterSlot:
    """One hour of a requester's own live booking, on whichever resource."""

    booking_id: int
    kind: BookedKind
    resource_id: int
    resource_name: str
    location: str
    purpose: str
    is_start: bool
    is_end: bool

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "kind": self.kind.value,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "location": self.location,
            "purpose": self.purpose,
            "is_start": self.is_start,
            "is_end": self.is_end,
        }


def build_requester_schedule(
    entries: Iterable[Tuple[Any, Any]],
    window_start: date,
    days: int = SCHEDULE_DAYS,
    tz: tzinfo = DISPLAY_TZ,
) -> Dict[SlotKey, List[RequesterSlot]]:
    """Hours held by one requester across resources, keyed by SlotKey.

    ``entries`` are (booking, resource) pairs. A key may hold more than one
    slot when the requester has parallel bookings on different resources.
    """
    lower = to_absolute(SlotKey(window_start, 0), tz)
    upper = lower + timedelta(days=days)

    schedule: Dict[SlotKey, List[RequesterSlot]] = {}
    for booking, resource in entries:
        if booking.status not in LIVE_STATUSES:
            continue
        kind = BookedKind.APPROVED if booking.status == BookingStatus.APPROVED else BookedKind.PENDING_MINE
        b_start, b_end = as_utc(booking.start_time), as_utc(booking.end_time)
        for cursor in iter_hours(max(b_start, lower), min(b_end, upper), tz):
            schedule.setdefault(to_slot_key(cursor, tz), []).append(
                RequesterSlot(
                    booking_id=booking.id,
                    kind=kind,
                    resource_id=resource.id,
                    resource_name=resource.name,
                    location=resource.location or "",
                    purpose=booking.purpose or "",
                    is_start=cursor == b_start,
                    is_end=cursor + ONE_HOUR == b_end,
                )
            )
    return dict(sorted(schedule.items()))
