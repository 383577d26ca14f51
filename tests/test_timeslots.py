from datetime import date, datetime, timedelta, timezone

import pytest

from config import DISPLAY_TZ
from timeslots import (
    SlotKey,
    hours_between,
    is_hour_aligned,
    iter_hours,
    next_hour,
    to_absolute,
    to_slot_key,
    truncate_to_hour,
)

UTC = timezone.utc


def test_utc_instant_maps_to_display_hour():
    # 03:30Z is 09:00 in +05:30
    t = datetime(2025, 11, 17, 3, 30, tzinfo=UTC)
    assert to_slot_key(t) == SlotKey(date(2025, 11, 17), 9)
    assert str(to_slot_key(t)) == "2025-11-17_09"


def test_slot_key_to_absolute():
    assert to_absolute(SlotKey(date(2025, 11, 17), 9)) == datetime(2025, 11, 17, 3, 30, tzinfo=UTC)


def test_display_midnight_is_previous_utc_day():
    assert to_absolute(SlotKey(date(2025, 11, 17), 0)) == datetime(2025, 11, 16, 18, 30, tzinfo=UTC)
    assert to_slot_key(datetime(2025, 11, 16, 18, 30, tzinfo=UTC)) == SlotKey(date(2025, 11, 17), 0)


@pytest.mark.parametrize(
    "t",
    [
        datetime(2025, 11, 17, 3, 30, tzinfo=UTC),
        datetime(2025, 11, 17, 3, 59, 59, 999999, tzinfo=UTC),
        datetime(2025, 11, 17, 4, 0, tzinfo=UTC),
        datetime(2025, 12, 31, 18, 29, tzinfo=UTC),
        datetime(2025, 12, 31, 18, 45, 12, tzinfo=UTC),
        datetime(2024, 2, 28, 20, 10, tzinfo=UTC),
        datetime(2025, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=-7))),
    ],
)
def test_round_trip_truncates_to_hour(t):
    assert to_absolute(to_slot_key(t)) == truncate_to_hour(t)


@pytest.mark.parametrize(
    "key, expected",
    [
        ("2025-11-17_09", "2025-11-17_10"),
        ("2025-11-17_23", "2025-11-18_00"),
        ("2025-01-31_23", "2025-02-01_00"),
        ("2024-02-28_23", "2024-02-29_00"),
        ("2025-02-28_23", "2025-03-01_00"),
        ("2025-12-31_23", "2026-01-01_00"),
    ],
)
def test_next_hour_rolls_over(key, expected):
    assert str(next_hour(SlotKey.parse(key))) == expected


def test_next_hour_agrees_with_absolute_arithmetic():
    key = SlotKey(date(2025, 12, 31), 23)
    assert to_absolute(next_hour(key)) == to_absolute(key) + timedelta(hours=1)


def test_hour_alignment_is_judged_in_display_timezone():
    assert is_hour_aligned(datetime(2025, 11, 17, 3, 30, tzinfo=UTC))
    assert not is_hour_aligned(datetime(2025, 11, 17, 4, 0, tzinfo=UTC))
    assert not is_hour_aligned(datetime(2025, 11, 17, 3, 30, 1, tzinfo=UTC))
    assert not is_hour_aligned(datetime(2025, 11, 17, 3, 30, 0, 1, tzinfo=UTC))


def test_hour_alignment_with_whole_hour_zone():
    assert is_hour_aligned(datetime(2025, 11, 17, 4, 0, tzinfo=UTC), UTC)
    assert not is_hour_aligned(datetime(2025, 11, 17, 3, 30, tzinfo=UTC), UTC)


def test_naive_values_are_read_as_utc():
    assert to_slot_key(datetime(2025, 11, 17, 3, 30)) == SlotKey(date(2025, 11, 17), 9)


def test_parse_accepts_legacy_minutes_suffix():
    assert SlotKey.parse("2025-11-17_09:00") == SlotKey(date(2025, 11, 17), 9)


@pytest.mark.parametrize("text", ["2025-11-17_24", "2025-11-17_09:30", "2025-11-17", "17-11-2025_09"])
def test_parse_rejects_bad_keys(text):
    with pytest.raises(ValueError):
        SlotKey.parse(text)


def test_keys_order_chronologically():
    assert SlotKey(date(2025, 11, 17), 23) < SlotKey(date(2025, 11, 18), 0)
    assert SlotKey(date(2025, 11, 17), 9) < SlotKey(date(2025, 11, 17), 10)


def test_hours_between_and_iter_hours():
    start = datetime(2025, 11, 17, 3, 30, tzinfo=UTC)
    end = start + timedelta(hours=3)
    assert hours_between(start, end) == 3
    assert list(iter_hours(start, end)) == [start + timedelta(hours=i) for i in range(3)]


def test_iter_hours_starts_at_containing_hour():
    start = datetime(2025, 11, 17, 3, 45, tzinfo=UTC)
    end = datetime(2025, 11, 17, 5, 0, tzinfo=UTC)
    assert list(iter_hours(start, end)) == [
        datetime(2025, 11, 17, 3, 30, tzinfo=UTC),
        datetime(2025, 11, 17, 4, 30, tzinfo=UTC),
    ]


def test_display_zone_is_a_fixed_offset():
    winter = DISPLAY_TZ.utcoffset(datetime(2025, 1, 15, 12))
    summer = DISPLAY_TZ.utcoffset(datetime(2025, 7, 15, 12))
    assert winter == summer == timedelta(hours=5, minutes=30)
