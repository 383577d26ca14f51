from datetime import timedelta

import pytest

from grid import build_grid
from helpers import MONDAY, TUESDAY, at, office_hours
from models import Booking, BookingStatus
from selection import SelectionState, SlotSelector, format_duration
from timeslots import SlotKey

SATURDAY = MONDAY + timedelta(days=5)


def mon(hour):
    return SlotKey(MONDAY, hour)


@pytest.fixture
def grid():
    # Monday 12:00 is taken
    taken = Booking(
        id=1,
        resource_id=1,
        requester_id="bob",
        start_time=at(MONDAY, 12),
        end_time=at(MONDAY, 13),
        status=BookingStatus.APPROVED,
    )
    return build_grid(office_hours(), [], [taken], MONDAY)


@pytest.fixture
def selector(grid):
    return SlotSelector(grid)


def test_starts_empty(selector):
    assert selector.state is SelectionState.EMPTY
    assert selector.calculate_duration() is None
    assert selector.actual_start_end() == (None, None)
    assert selector.to_window() is None


def test_clicking_non_requestable_cells_is_a_no_op(selector):
    selector.click(mon(12))
    selector.click(SlotKey(SATURDAY, 10))
    selector.click(SlotKey(MONDAY, 20))
    assert selector.state is SelectionState.EMPTY

    selector.click(mon(10))
    selector.click(mon(12))
    assert selector.state is SelectionState.ANCHORED
    assert selector.anchor == mon(10)


def test_first_click_anchors(selector):
    assert selector.click(mon(10)) is SelectionState.ANCHORED
    assert selector.selected == {mon(10)}
    assert selector.calculate_duration() == 1


def test_same_slot_twice_stays_anchored(selector):
    selector.click(mon(9))
    selector.click(mon(9))
    assert selector.state is SelectionState.ANCHORED
    assert selector.actual_start_end() == (mon(9), None)
    assert selector.calculate_duration() == 1


def test_second_click_makes_a_range(selector):
    selector.click(mon(9))
    assert selector.click(mon(11)) is SelectionState.RANGED
    assert selector.actual_start_end() == (mon(9), mon(11))
    assert selector.selected == {mon(9), mon(10), mon(11)}
    assert selector.calculate_duration() == 3


def test_click_order_does_not_matter(selector):
    selector.click(mon(16))
    selector.click(mon(14))
    assert selector.actual_start_end() == (mon(14), mon(16))
    assert selector.calculate_duration() == 3


def test_range_skips_taken_cells(selector):
    selector.click(mon(10))
    selector.click(mon(14))
    assert selector.selected == {mon(10), mon(11), mon(13), mon(14)}
    assert selector.calculate_duration() == 5


def test_get_slots_between_is_inclusive_and_symmetric(selector):
    assert selector.get_slots_between(mon(13), mon(15)) == {mon(13), mon(14), mon(15)}
    assert selector.get_slots_between(mon(15), mon(13)) == {mon(13), mon(14), mon(15)}
    assert selector.get_slots_between(mon(12), mon(12)) == set()


def test_ranged_click_after_anchor_extends_or_shrinks(selector):
    selector.click(mon(9))
    selector.click(mon(11))

    selector.click(mon(15))
    assert selector.actual_start_end() == (mon(9), mon(15))

    selector.click(mon(10))
    assert selector.actual_start_end() == (mon(9), mon(10))
    assert selector.calculate_duration() == 2


def test_ranged_click_before_anchor_resets(selector):
    selector.click(mon(13))
    selector.click(mon(15))
    selector.click(mon(10))
    assert selector.state is SelectionState.ANCHORED
    assert selector.anchor == mon(10)
    assert selector.selected == {mon(10)}


def test_first_click_stays_the_anchor(selector):
    # Backwards range: anchor is 15, actual start is 13
    selector.click(mon(15))
    selector.click(mon(13))
    assert selector.actual_start_end() == (mon(13), mon(15))

    selector.click(mon(16))
    assert selector.actual_start_end() == (mon(15), mon(16))

    selector.click(mon(14))
    assert selector.state is SelectionState.ANCHORED
    assert selector.anchor == mon(14)


def test_clicking_the_anchor_in_a_range_collapses(selector):
    selector.click(mon(9))
    selector.click(mon(11))
    selector.click(mon(9))
    assert selector.state is SelectionState.ANCHORED
    assert selector.calculate_duration() == 1


def test_duration_across_days(selector):
    selector.click(mon(16))
    selector.click(SlotKey(TUESDAY, 10))
    # (1 * 24) + (10 + 1 - 16)
    assert selector.calculate_duration() == 19
    assert format_duration(selector.calculate_duration()) == "19h"


def test_max_hours_guard(grid):
    selector = SlotSelector(grid, max_hours=4)
    selector.click(mon(13))
    selector.click(mon(16))
    assert selector.state is SelectionState.RANGED
    assert selector.calculate_duration() == 4

    selector.clear_selection()
    selector.click(mon(9))
    selector.click(mon(13))
    assert selector.state is SelectionState.ANCHORED


def test_strict_mode_refuses_gaps(grid):
    selector = SlotSelector(grid, allow_gaps=False)
    selector.click(mon(10))
    selector.click(mon(14))
    assert selector.state is SelectionState.ANCHORED

    selector.click(mon(11))
    assert selector.state is SelectionState.RANGED
    assert selector.has_blocked_between(mon(10), mon(14))
    assert not selector.has_blocked_between(mon(10), mon(11))


def test_clear_selection(selector):
    selector.click(mon(9))
    selector.click(mon(10))
    selector.clear_selection()
    assert selector.state is SelectionState.EMPTY
    assert selector.selected == set()


def test_to_window_is_half_open(selector):
    selector.click(mon(10))
    assert selector.to_window() == (at(MONDAY, 10), at(MONDAY, 11))

    selector.click(mon(11))
    assert selector.to_window() == (at(MONDAY, 10), at(MONDAY, 12))


@pytest.mark.parametrize("hours, text", [(1, "1h"), (24, "1d"), (26, "1d 2h"), (49, "2d 1h")])
def test_format_duration(hours, text):
    assert format_duration(hours) == text
