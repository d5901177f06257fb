"""Tests for the Planner facade: move validation, commits and optimization entry points."""

import pytest

from conftest import FlatProvider, at, make_employee, make_task
from fieldplan.domain.errors import UnknownEntity
from fieldplan.planner import Planner
from fieldplan.services.constraints import DecisionKind, RejectKind, WarningKind


@pytest.fixture
def planner(day):
    employees = [
        make_employee("e1"),
        make_employee("e2", skills=("cleaning", "algerens"), x=10.0),
        make_employee("e3", y=10.0),
        make_employee("e4", x=1.0, is_active=False),
    ]
    tasks = [
        make_task("t1", at(9), at(10), duration=60, x=1.0, assigned=("e1",)),
        make_task("t2", at(9), at(10), duration=60, x=9.0, assigned=("e2",)),
        make_task("s1", at(13), at(14), x=9.0, skills=("algerens",), assigned=("e2",)),
        make_task("o1", at(8), at(16), duration=450, y=10.0, assigned=("e3",)),
    ]
    return Planner(employees, tasks, day, provider=FlatProvider())


@pytest.fixture
def zigzag_planner(day, zigzag_tasks):
    return Planner([make_employee()], zigzag_tasks, day, provider=FlatProvider())


def test_missing_skill_is_rejected(planner):
    decision = planner.propose_move("s1", "e1", at(13))

    assert decision.kind is DecisionKind.REJECTED
    assert decision.reason is RejectKind.MISSING_SKILLS
    assert decision.missing_skills == ("algerens",)


@pytest.mark.parametrize("hour", [8, 10, 13, 17])
def test_skill_rejection_ignores_time(planner, hour):
    assert planner.propose_move("s1", "e1", at(hour)).kind is DecisionKind.REJECTED
    assert planner.propose_move("t1", "e2", at(hour)).kind is not DecisionKind.REJECTED


def test_overlapping_move_warns_about_conflict(planner):
    decision = planner.propose_move("t1", "e2", at(9, 30))

    assert decision.kind is DecisionKind.ALLOWED_WITH_WARNING
    assert decision.warning_kinds == {WarningKind.TIME_CONFLICT}
    assert decision.warnings[0].conflicting_task_ids == ("t2",)


def test_adjacent_move_is_allowed(planner):
    assert planner.propose_move("t1", "e2", at(10)).kind is DecisionKind.ALLOWED


def test_keeping_task_in_place_is_allowed(planner):
    assert planner.propose_move("t1", "e1", at(9)).kind is DecisionKind.ALLOWED


def test_overload_warning_reports_percent(planner):
    decision = planner.propose_move("t1", "e3", at(17))

    assert decision.kind is DecisionKind.ALLOWED_WITH_WARNING
    assert decision.warning_kinds == {WarningKind.OVERLOAD}
    assert decision.warnings[0].percent_of_workday == pytest.approx(106.25)


def test_unknown_ids_raise(planner):
    with pytest.raises(UnknownEntity):
        planner.propose_move("nope", "e1", at(9))
    with pytest.raises(UnknownEntity):
        planner.propose_move("t1", "nobody", at(9))


def test_warning_move_needs_confirmation(planner):
    before = planner.snapshot

    outcome = planner.move_task("t1", "e2", at(9, 30))

    assert not outcome.committed
    assert outcome.decision.requires_confirmation
    assert planner.snapshot is before


def test_confirmed_move_is_committed(planner):
    version = planner.snapshot.version
    outcome = planner.move_task("t1", "e2", at(9, 30), confirm=True)

    assert outcome.committed
    assert outcome.snapshot.version == version + 1
    moved = planner.snapshot.task("t1")
    assert moved.assigned_employees == ("e2",)
    assert moved.start_time == at(9, 30)
    assert moved.end_time == at(10, 30)
    assert planner.snapshot.tasks_for("e1") == ()
    assert planner.snapshot.has_conflict("e2", at(9, 45))


def test_rejected_move_is_never_committed(planner):
    before = planner.snapshot
    outcome = planner.move_task("s1", "e1", at(13), confirm=True)

    assert not outcome.committed
    assert outcome.decision.kind is DecisionKind.REJECTED
    assert planner.snapshot is before


def test_move_raises_target_workload(planner):
    before = planner.workload("e2").percent_of_workday
    planner.move_task("t1", "e2", at(10))
    assert planner.workload("e2").percent_of_workday > before
    assert planner.workload("e1").total_minutes == 0


def test_suggest_employees_orders_by_distance(planner):
    matches = planner.suggest_employees("t1")

    assert [m.employee.employee_id for m in matches] == ["e1", "e2", "e3"]
    assert matches[0].decision.kind is DecisionKind.ALLOWED
    assert matches[0].distance_m < matches[1].distance_m


def test_conflicts_listed_per_slot(planner):
    planner.move_task("t1", "e2", at(9, 30), confirm=True)
    slots = [slot for slot, _ in planner.conflicts("e2")]

    assert slots == [at(9, 30), at(9, 45)]


def test_run_and_apply_through_planner(zigzag_planner):
    suggestions = zigzag_planner.run_optimization()

    assert len(suggestions) == 1
    assert zigzag_planner.pending_suggestions == suggestions
    assert zigzag_planner.totals().distance_saved_m == pytest.approx(6000)

    zigzag_planner.apply_suggestion(suggestions[0])

    assert zigzag_planner.pending_suggestions == []
    assert zigzag_planner.snapshot.task("t2").start_time == at(8, 1)


def test_run_accepts_ui_settings(zigzag_planner):
    suggestion = zigzag_planner.run_optimization(settings={"prioritizeDistance": True, "prioritizeTime": False})[0]

    assert suggestion.optimized_route.cost == pytest.approx(5 + 0.25 * 95)


def test_run_rejects_other_day(zigzag_planner, day):
    with pytest.raises(ValueError):
        zigzag_planner.run_optimization(day=day.replace(day=day.day + 1))


def test_reject_suggestion(zigzag_planner):
    suggestion = zigzag_planner.run_optimization()[0]
    zigzag_planner.reject_suggestion(suggestion)
    assert zigzag_planner.pending_suggestions == []


def test_reorder_commits_manual_order(zigzag_planner):
    route = zigzag_planner.reorder("e1", ["t3", "t2", "t1"])

    assert route.task_ids == ("t3", "t2", "t1")
    snapshot = zigzag_planner.snapshot
    # 3 km out, back 2, then 4 further
    assert snapshot.task("t3").start_time == at(8, 3)
    assert snapshot.task("t2").start_time == at(8, 35)
    assert snapshot.task("t1").start_time == at(9, 9)
    assert snapshot.task("t1").end_time == at(9, 39)


def test_reorder_rejects_foreign_task(zigzag_planner):
    with pytest.raises(ValueError):
        zigzag_planner.reorder("e1", ["t1", "x9"])


def test_conflict_only_checks_the_drop_slot(day):
    employees = [make_employee("e1"), make_employee("e2")]
    tasks = [
        make_task("long", at(9), at(11), duration=120, assigned=("e1",)),
        make_task("next", at(10), at(11), assigned=("e2",)),
    ]
    planner = Planner(employees, tasks, day, provider=FlatProvider())

    assert planner.propose_move("long", "e2", at(9)).kind is DecisionKind.ALLOWED
    assert planner.propose_move("long", "e2", at(10)).warning_kinds == {WarningKind.TIME_CONFLICT}


def test_move_is_rechecked_against_live_schedule(planner, monkeypatch):
    store = planner.store
    original_commit = store.commit

    def commit_after_other_writer(updated, check=None):
        # another writer lands first: t1 now sits in e1's 11:00 slot
        original_commit([store.snapshot.task("t1").moved_to(at(11))])
        return original_commit(updated, check=check)

    monkeypatch.setattr(store, "commit", commit_after_other_writer)
    version = planner.snapshot.version

    outcome = planner.move_task("t2", "e1", at(11))

    assert not outcome.committed
    assert outcome.decision.warning_kinds == {WarningKind.TIME_CONFLICT}
    assert outcome.decision.warnings[0].conflicting_task_ids == ("t1",)
    assert planner.snapshot.version == version + 1
    assert planner.snapshot.task("t2").assigned_employees == ("e2",)


def test_move_still_valid_after_other_write_is_committed(planner, monkeypatch):
    store = planner.store
    original_commit = store.commit

    def commit_after_other_writer(updated, check=None):
        original_commit([store.snapshot.task("s1").moved_to(at(14))])
        return original_commit(updated, check=check)

    monkeypatch.setattr(store, "commit", commit_after_other_writer)

    outcome = planner.move_task("t2", "e1", at(11))

    assert outcome.committed
    assert planner.snapshot.task("t2").assigned_employees == ("e1",)
    assert planner.snapshot.task("s1").start_time == at(14)


def test_move_drops_stale_suggestion_without_provider_calls(zigzag_planner):
    zigzag_planner.run_optimization()
    calls = zigzag_planner.provider.calls

    outcome = zigzag_planner.move_task("t1", "e1", at(9), confirm=True)

    assert outcome.committed
    assert zigzag_planner.pending_suggestions == []
    assert zigzag_planner.provider.calls == calls


def test_reorder_does_not_search(zigzag_planner, monkeypatch):
    def no_search(*args, **kwargs):
        raise AssertionError("reorder must not run the optimizer search")

    monkeypatch.setattr(zigzag_planner.orchestrator.optimizer, "optimize", no_search)

    assert zigzag_planner.reorder("e1", ["t1", "t2", "t3"]).task_ids == ("t1", "t2", "t3")
