"""Two-click slot range selection over a schedule grid.

Runs entirely in memory for a single viewer. The selection is advisory:
the backend re-checks every window at admission and never assumes the
displayed range is contiguous.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Set, Tuple

from grid import ScheduleGrid
from timeslots import SlotKey, next_hour, to_absolute


class SelectionState(str, Enum):
    EMPTY = "empty"
    ANCHORED = "anchored"
    RANGED = "ranged"


def format_duration(hours: int) -> str:
    """24 -> "1d", 26 -> "1d 2h", 3 -> "3h"."""
    days, rest = divmod(hours, 24)
    parts = []
    if days:
        parts.append(f"{days}d")
    if rest:
        parts.append(f"{rest}h")
    return " ".join(parts)


class SlotSelector:
    def __init__(self, grid: ScheduleGrid, max_hours: Optional[int] = None, allow_gaps: bool = True):
        self.grid = grid
        self.max_hours = max_hours
        # When False a range may not span a booked/unavailable cell
        self.allow_gaps = allow_gaps
        self.anchor: Optional[SlotKey] = None
        self.end: Optional[SlotKey] = None
        self.selected: Set[SlotKey] = set()

    @property
    def state(self) -> SelectionState:
        if self.anchor is None:
            return SelectionState.EMPTY
        if self.end is None:
            return SelectionState.ANCHORED
        return SelectionState.RANGED

    def click(self, key: SlotKey) -> SelectionState:
        if not self.grid.is_requestable(key):
            return self.state

        if self.anchor is None:
            self._anchor_at(key)
            return self.state

        if self.end is None:
            if key == self.anchor or not self._range_allowed(self.anchor, key):
                return self.state
            self.end = key
            self.selected = self.get_slots_between(self.anchor, key)
            return self.state

        # Ranged: the first click stays the anchor until a click precedes it
        if key <= self.anchor:
            self._anchor_at(key)
        elif self._range_allowed(self.anchor, key):
            self.end = key
            self.selected = self.get_slots_between(self.anchor, key)
        return self.state

    def _anchor_at(self, key: SlotKey) -> None:
        self.anchor = key
        self.end = None
        self.selected = {key}

    def _range_allowed(self, a: SlotKey, b: SlotKey) -> bool:
        start, end = min(a, b), max(a, b)
        if self.max_hours and self._hours(start, end) > self.max_hours:
            return False
        if not self.allow_gaps and self.has_blocked_between(start, end):
            return False
        return True

    def get_slots_between(self, a: SlotKey, b: SlotKey) -> Set[SlotKey]:
        start, end = min(a, b), max(a, b)
        return {
            key
            for key, cell in self.grid.items()
            if start <= key <= end and cell.is_requestable
        }

    def has_blocked_between(self, a: SlotKey, b: SlotKey) -> bool:
        start, end = min(a, b), max(a, b)
        return any(
            start < key < end and not cell.is_requestable for key, cell in self.grid.items()
        )

    def actual_start_end(self) -> Tuple[Optional[SlotKey], Optional[SlotKey]]:
        if self.anchor is None:
            return None, None
        if self.end is None:
            return self.anchor, None
        return min(self.anchor, self.end), max(self.anchor, self.end)

    def _hours(self, start: SlotKey, end: SlotKey) -> int:
        # A slot key is the start of its hour, hence the +1
        day_diff = self.grid.day_index(end.day) - self.grid.day_index(start.day)
        return day_diff * 24 + (end.hour + 1 - start.hour)

    def calculate_duration(self) -> Optional[int]:
        start, end = self.actual_start_end()
        if start is None:
            return None
        if end is None:
            return 1
        return self._hours(start, end)

    def to_window(self) -> Optional[Tuple[datetime, datetime]]:
        """Absolute [start, end) to submit for admission."""
        start, end = self.actual_start_end()
        if start is None:
            return None
        last = end or start
        return to_absolute(start, self.grid.tz), to_absolute(next_hour(last), self.grid.tz)

    def clear_selection(self) -> None:
        self.anchor = None
        self.end = None
        self.selected = set()
