"""Tests for task validation, route checks and suggestion summaries."""

import dataclasses

import pytest

from conftest import FlatProvider, at, make_employee, make_task, matrix_for
from fieldplan.config import OptimizationSettings
from fieldplan.domain.errors import InvalidTask
from fieldplan.domain.models import Coordinate
from fieldplan.engine.route_optimizer import RouteOptimizer
from fieldplan.planner import Planner
from fieldplan.validator import (
    suggestions_frame,
    summarize_suggestions,
    validate_route,
    validate_task,
    validate_tasks,
)


@pytest.mark.parametrize(
    "changes, reason",
    [
        ({"estimated_duration": 0}, "duration"),
        ({"estimated_duration": float("nan")}, "duration"),
        ({"estimated_duration": -15}, "duration"),
        ({"end_time": at(9)}, "not after"),
        ({"location": Coordinate(float("nan"), 0.0)}, "NaN"),
        ({"location": Coordinate(95.0, 0.0)}, "out of range"),
        ({"task_id": ""}, "missing task id"),
    ],
)
def test_validate_task_rejects_malformed(changes, reason):
    task = dataclasses.replace(make_task("t1", at(9), at(10)), **changes)
    with pytest.raises(InvalidTask, match=reason):
        validate_task(task)


def test_validate_tasks_rejects_duplicates():
    tasks = [make_task("t1", at(9), at(10)), make_task("t1", at(11), at(12))]
    with pytest.raises(InvalidTask, match="duplicate"):
        validate_tasks(tasks)


def test_duration_longer_than_window_is_valid():
    validate_task(make_task("t1", at(9), at(9, 30), duration=90))


def _route(tasks, settings=None):
    emp = make_employee()
    settings = settings or OptimizationSettings()
    return RouteOptimizer().optimize(emp, tasks, matrix_for(emp, tasks), settings, tasks[0].day), emp, settings


def test_validate_route_flags_window_and_overlap(zigzag_tasks):
    result, emp, settings = _route(zigzag_tasks)
    route = result.optimized
    assert validate_route(route, emp, settings) == []

    # pull the second stop back onto the first one
    first, second = route.stops[0], route.stops[1]
    broken_stop = dataclasses.replace(
        second,
        task=second.task.retimed(at(9)),
        service_start=first.service_start,
    )
    broken = dataclasses.replace(route, stops=(first, broken_stop) + route.stops[2:])
    problems = validate_route(broken, emp, settings)

    assert any("overlaps previous stop" in p for p in problems)
    assert any("time window" in p for p in problems)


def test_validate_route_flags_missing_skills(zigzag_tasks):
    result, _, settings = _route(zigzag_tasks)
    other = make_employee(skills=("painting",))

    problems = validate_route(result.optimized, other, settings)

    assert len(problems) == 3
    assert all("lacks required skills" in p for p in problems)


def test_summary_of_no_suggestions():
    assert summarize_suggestions([]) == "No suggestions."
    assert suggestions_frame([]).empty


def test_summary_lists_totals(day, zigzag_tasks):
    planner = Planner([make_employee()], zigzag_tasks, day, provider=FlatProvider())
    text = summarize_suggestions(planner.run_optimization())

    assert text.startswith("Suggestions per employee:")
    assert "Total: 6.00 km saved, 6.0 min saved" in text
