"""Tests for ScheduleIndex and ScheduleStore."""

import dataclasses
import datetime as dt

import pytest

from conftest import at, make_employee, make_task
from fieldplan.domain.errors import InvalidTask, UnknownEntity
from fieldplan.domain.models import TaskStatus, WorkingHours
from fieldplan.services.schedule_index import ScheduleIndex, ScheduleStore, compute_workload
from fieldplan.services.timeplan import SlotGrid
from fieldplan.validator import validate_task


@pytest.fixture
def employees():
    return [make_employee("e1"), make_employee("e2")]


def _store(employees, tasks, day, **kwargs):
    return ScheduleStore(employees, tasks, day, **kwargs)


def test_default_grid_has_41_slots(day):
    assert len(SlotGrid().slots(day)) == 41
    assert SlotGrid().slots(day)[-1] == at(18)


def test_overlapping_tasks_conflict(employees, day):
    tasks = [
        make_task("a", at(9), at(10)),
        make_task("b", at(9, 30), at(10, 30)),
    ]
    index = _store(employees, tasks, day).snapshot

    assert index.has_conflict("e1", at(9, 45))
    assert not index.has_conflict("e1", at(9, 15))
    assert [slot for slot, _ in index.conflicts("e1")] == [at(9, 30), at(9, 45)]


def test_back_to_back_tasks_never_conflict(employees, day):
    tasks = [
        make_task("a", at(9), at(10)),
        make_task("b", at(10), at(11)),
    ]
    index = _store(employees, tasks, day).snapshot

    assert not any(index.has_conflict("e1", slot) for slot in index.grid.slots(day))
    assert index.conflicts("e1") == []
    assert [t.task_id for t in index.tasks_at("e1", at(10))] == ["b"]


def test_tasks_at_off_grid_time(employees, day):
    tasks = [make_task("a", at(9), at(10))]
    index = _store(employees, tasks, day).snapshot

    assert [t.task_id for t in index.tasks_at("e1", at(9, 50))] == ["a"]
    assert index.tasks_at("e1", at(10, 5)) == ()
    assert [t.task_id for t in index.tasks_at("e1", at(19))] == []


def test_tasks_for_is_chronological_and_per_employee(employees, day):
    tasks = [
        make_task("late", at(14), at(15)),
        make_task("early", at(8), at(9)),
        make_task("shared", at(11), at(12), assigned=("e1", "e2")),
    ]
    index = _store(employees, tasks, day).snapshot

    assert [t.task_id for t in index.tasks_for("e1")] == ["early", "shared", "late"]
    assert [t.task_id for t in index.tasks_for("e2")] == ["shared"]
    assert index.tasks_for("e9") == ()


def test_other_days_are_not_indexed(employees, day):
    tomorrow = day + dt.timedelta(days=1)
    tasks = [
        make_task("today", at(9), at(10)),
        make_task("tomorrow", at(9, day=tomorrow), at(10, day=tomorrow)),
    ]
    store = _store(employees, tasks, day)

    assert not store.snapshot.has_task("tomorrow")
    other = store.index_for(tomorrow)
    assert [t.task_id for t in other.tasks_for("e1")] == ["tomorrow"]
    assert store.index_for(day) is store.snapshot


def test_workload_counts_estimated_minutes(employees, day):
    tasks = [
        make_task("a", at(8), at(16), duration=450),
        make_task("b", at(9), at(10), duration=60, assigned=("e2",)),
    ]
    index = _store(employees, tasks, day).snapshot

    load = index.workload("e1")
    assert load.total_minutes == 450
    assert not load.is_overloaded
    hypothetical = index.workload("e1", extra_minutes=60)
    assert hypothetical.percent_of_workday == pytest.approx(106.25)
    assert hypothetical.is_overloaded
    assert hypothetical.capped_efficiency == 100.0


def test_workload_uses_override_hours(employees, day):
    tasks = [make_task("a", at(9), at(10), duration=60)]
    override = WorkingHours(dt.time(8), dt.time(10))
    index = _store(employees, tasks, day, working_hours_override=override).snapshot

    assert index.workday_minutes("e1") == 120
    assert index.workload("e1").percent_of_workday == pytest.approx(50.0)


@pytest.mark.parametrize("minutes", [0, 30, 240, 480, 600])
def test_workload_is_monotone(minutes):
    assert compute_workload(minutes + 15, 480).percent_of_workday > compute_workload(minutes, 480).percent_of_workday


def test_commit_swaps_snapshot(employees, day):
    store = _store(employees, [make_task("a", at(9), at(10))], day)
    before = store.snapshot

    after = store.commit([store.snapshot.task("a").moved_to(at(11))])

    assert after.version == before.version + 1
    assert store.snapshot is after
    assert before.task("a").start_time == at(9)
    assert after.task("a").start_time == at(11)


def test_commit_unknown_task_changes_nothing(employees, day):
    store = _store(employees, [make_task("a", at(9), at(10))], day)
    before = store.snapshot

    with pytest.raises(UnknownEntity):
        store.commit([store.snapshot.task("a").moved_to(at(11)), make_task("ghost", at(9), at(10))])

    assert store.snapshot is before


def test_commit_check_can_abort(employees, day):
    store = _store(employees, [make_task("a", at(9), at(10))], day)
    before = store.snapshot

    def refuse(snapshot):
        raise RuntimeError("no")

    with pytest.raises(RuntimeError):
        store.commit([store.snapshot.task("a").moved_to(at(11))], check=refuse)
    assert store.snapshot is before


def test_commit_validates_tasks(employees, day):
    store = _store(employees, [make_task("a", at(9), at(10))], day, validate=validate_task)
    broken = dataclasses.replace(store.snapshot.task("a"), estimated_duration=0)

    with pytest.raises(InvalidTask):
        store.commit([broken])
    assert store.snapshot.version == 0


def test_cancelled_tasks_stay_in_index(employees, day):
    tasks = [make_task("a", at(9), at(10), status=TaskStatus.CANCELLED)]
    index = _store(employees, tasks, day).snapshot

    assert index.has_task("a")
    assert not index.task("a").is_routable


def test_unknown_lookups_raise(employees, day):
    index = ScheduleIndex.build([], employees, day)
    with pytest.raises(UnknownEntity):
        index.task("nope")
    with pytest.raises(UnknownEntity):
        index.employee("nobody")
