"""Tests for time parsing and the slot grid."""

import datetime as dt

import pytest

from conftest import at
from fieldplan.services.timeplan import SlotGrid, at_minutes, minutes_of_day, overlaps, parse_time_string


def test_parse_time_string():
    assert parse_time_string("07:30") == dt.time(7, 30)
    assert parse_time_string(" 9:05 ") == dt.time(9, 5)
    assert parse_time_string("16:00:00") == dt.time(16, 0)
    assert parse_time_string(dt.time(8)) == dt.time(8)


def test_minutes_round_trip(day):
    assert minutes_of_day(at(9, 15)) == 555
    assert at_minutes(day, 555.5) == at(9, 15) + dt.timedelta(seconds=30)


def test_overlaps_is_half_open():
    assert overlaps(at(9), at(10), at(9, 59), at(11))
    assert not overlaps(at(9), at(10), at(10), at(11))


def test_slot_index():
    grid = SlotGrid()
    assert grid.slot_index(at(8)) == 0
    assert grid.slot_index(at(18)) == 40
    assert grid.slot_index(at(9, 10)) is None
    assert grid.slot_index(at(7, 45)) is None
    assert grid.slot_index(at(18, 15)) is None


def test_slots_touching():
    grid = SlotGrid()
    assert list(grid.slots_touching(at(9), at(10))) == [4, 5, 6, 7]
    assert list(grid.slots_touching(at(9, 10), at(9, 20))) == [4, 5]
    assert list(grid.slots_touching(at(7), at(8, 10))) == [0]
    assert list(grid.slots_touching(at(17, 50), at(20))) == [39, 40]
    assert list(grid.slots_touching(at(10), at(10))) == []


@pytest.mark.parametrize("kwargs", [{"slot_minutes": 0}, {"start": dt.time(18), "end": dt.time(8)}])
def test_invalid_grid(kwargs):
    with pytest.raises(ValueError):
        SlotGrid(**kwargs)
