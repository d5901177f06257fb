"""Tests for the OR-Tools routing model of one employee's day."""

from conftest import at, make_employee, make_task, matrix_for
from fieldplan.config import OptimizationSettings
from fieldplan.engine.route_optimizer import RouteOptimizer
from fieldplan.engine.routing_model import DayRoutingModel


def _model(tasks, settings=None, employee=None):
    employee = employee or make_employee()
    settings = settings or OptimizationSettings()
    problem = RouteOptimizer().prepare(employee, tasks, matrix_for(employee, tasks), settings, tasks[0].day)
    return DayRoutingModel(problem, settings.routing_solution_limit)


def test_solve_straightens_zigzag(zigzag_tasks):
    # t2, t3, t1 are positions 1, 2, 0
    assert _model(zigzag_tasks).solve() == [1, 2, 0]


def test_solve_from_best_order_keeps_it(zigzag_tasks):
    assert _model(zigzag_tasks).solve(initial=[1, 2, 0]) == [1, 2, 0]


def test_task_outside_working_hours_is_left_out():
    tasks = [
        make_task("ok", at(9), at(10), x=1.0),
        make_task("evening", at(17), at(18), x=1.0),
    ]
    assert _model(tasks).solve() == [0]


def test_drop_penalty_exceeds_any_route_cost(zigzag_tasks):
    model = _model(zigzag_tasks)
    worst = sum(max(row[b] for row in model.arc_cost) for b in range(1, len(zigzag_tasks) + 1))
    assert model.drop_penalty > worst


def test_soft_windows_add_lateness_to_penalty(zigzag_tasks):
    hard = _model(zigzag_tasks)
    soft = _model(zigzag_tasks, OptimizationSettings(respect_time_windows=False))

    assert soft.late_coefficient > 0
    assert soft.drop_penalty > hard.drop_penalty
