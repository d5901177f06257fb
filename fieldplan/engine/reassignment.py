"""Cross-employee task transfers selected with CP-SAT."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ortools.sat.python import cp_model

from fieldplan.domain.models import Employee, Improvements, Task, TaskTransfer
from fieldplan.services.distance import DistanceMatrix
from fieldplan.services.scoring import EPS, combined_route_metrics, compare_route_groups

from .base import BaseOptimizer, RouteOptimization

logger = logging.getLogger(__name__)

# objective coefficients are integer cost units of 1/1000
COST_SCALE = 1000

MatrixFor = Callable[[Employee, Sequence[Task]], DistanceMatrix]


def _reference_cost(base: RouteOptimization) -> float:
    """Best cost over the tasks the current route serves."""
    if base.improvements.tasks_recovered:
        return base.current.cost
    return base.optimized.cost


@dataclass(frozen=True)
class TransferCandidate:
    """Moving one task from donor to receiver, with both re-optimized routes."""

    transfer: TaskTransfer
    donor: RouteOptimization
    receiver: RouteOptimization
    gain: float
    improvements: Improvements

    @property
    def employee_ids(self) -> Tuple[str, str]:
        return self.transfer.from_employee_id, self.transfer.to_employee_id


class ReassignmentPlanner:
    """
    Finds task relocations between employees that lower the combined route cost.

    Every candidate is a single task moved from a donor to a receiver who has
    the skills for it. Both routes are re-optimized; a candidate survives only
    if all tasks that were scheduled stay scheduled, the pair's cost drops
    below what independent optimization already achieves, and neither the
    pair's distance nor its duration grows. A CP-SAT model then picks the
    best set in which every employee takes part in at most one transfer.
    """

    def __init__(
        self,
        optimizer: BaseOptimizer,
        time_limit_seconds: float = 10.0,
        random_seed: int = 0,
    ):
        self.optimizer = optimizer
        self.time_limit_seconds = time_limit_seconds
        self.random_seed = random_seed

    def candidates(
        self,
        employees: Sequence[Employee],
        tasks_by_employee: Mapping[str, Sequence[Task]],
        baselines: Mapping[str, RouteOptimization],
        settings,
        day: date,
        matrix_for: MatrixFor,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TransferCandidate]:
        """
        Enumerate feasible, profitable single-task transfers.

        Args:
            employees: Employees taking part (donors and receivers)
            tasks_by_employee: Routable tasks per employee id
            baselines: Per-employee optimization results on the same tasks
            settings: OptimizationSettings
            day: Planning day
            matrix_for: Builds the distance matrix for an employee and task list
            cancel_event: Set to abort

        Returns:
            Candidates in deterministic (donor, task, receiver) order
        """
        out: List[TransferCandidate] = []
        for donor in employees:
            base_a = baselines.get(donor.employee_id)
            if base_a is None:
                continue
            for task in base_a.current.tasks:
                # shared tasks stay with their crew
                if len(task.assigned_employees) != 1:
                    continue
                remaining = [t for t in tasks_by_employee[donor.employee_id] if t.task_id != task.task_id]
                donor_result = None
                for receiver in employees:
                    if receiver.employee_id == donor.employee_id:
                        continue
                    base_b = baselines.get(receiver.employee_id)
                    if base_b is None or not receiver.has_skills(task.required_skills):
                        continue
                    self.optimizer.check_cancelled(cancel_event)
                    if donor_result is None:
                        donor_result = self._reoptimize(donor, remaining, settings, day, matrix_for, cancel_event)
                    received = list(tasks_by_employee[receiver.employee_id]) + [task]
                    receiver_result = self._reoptimize(receiver, received, settings, day, matrix_for, cancel_event)
                    candidate = self._score(task, donor, receiver, base_a, base_b, donor_result, receiver_result)
                    if candidate is not None:
                        out.append(candidate)
        logger.debug("Reassignment: %d profitable transfer candidates", len(out))
        return out

    def _reoptimize(
        self,
        employee: Employee,
        tasks: Sequence[Task],
        settings,
        day: date,
        matrix_for: MatrixFor,
        cancel_event: Optional[threading.Event],
    ) -> RouteOptimization:
        return self.optimizer.optimize(
            employee,
            tasks,
            matrix_for(employee, tasks),
            settings,
            day,
            cancel_event=cancel_event,
        )

    @staticmethod
    def _score(
        task: Task,
        donor: Employee,
        receiver: Employee,
        base_a: RouteOptimization,
        base_b: RouteOptimization,
        donor_result: RouteOptimization,
        receiver_result: RouteOptimization,
    ) -> Optional[TransferCandidate]:
        new_a = donor_result.optimized
        new_b = receiver_result.optimized

        # nothing may fall out of (or newly enter) either route
        if set(new_a.task_ids) != set(base_a.current.task_ids) - {task.task_id}:
            return None
        if set(new_b.task_ids) != set(base_b.current.task_ids) | {task.task_id}:
            return None

        current = [base_a.current, base_b.current]
        proposed = [new_a, new_b]
        cur_d, cur_t, _, _ = combined_route_metrics(current)
        new_d, new_t, _, new_c = combined_route_metrics(proposed)
        if new_d > cur_d + EPS or new_t > cur_t + EPS:
            return None

        gain = _reference_cost(base_a) + _reference_cost(base_b) - new_c
        if gain <= 1.0 / COST_SCALE:
            return None

        return TransferCandidate(
            transfer=TaskTransfer(task.task_id, donor.employee_id, receiver.employee_id),
            donor=RouteOptimization(base_a.current, new_a, compare_route_groups([base_a.current], [new_a])),
            receiver=RouteOptimization(base_b.current, new_b, compare_route_groups([base_b.current], [new_b])),
            gain=gain,
            improvements=compare_route_groups(current, proposed),
        )

    def select(self, candidates: Sequence[TransferCandidate]) -> List[TransferCandidate]:
        """Best non-overlapping subset of candidates (each employee in at most one)."""
        if not candidates:
            return []

        model = cp_model.CpModel()
        chosen = [model.NewBoolVar(f"move_{i}_{c.transfer.task_id}") for i, c in enumerate(candidates)]

        by_employee: Dict[str, List[cp_model.IntVar]] = {}
        for var, candidate in zip(chosen, candidates):
            for emp_id in candidate.employee_ids:
                by_employee.setdefault(emp_id, []).append(var)
        for emp_id, variables in by_employee.items():
            if len(variables) > 1:
                model.Add(sum(variables) <= 1)

        model.Maximize(sum(var * int(round(c.gain * COST_SCALE)) for var, c in zip(chosen, candidates)))

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = self.time_limit_seconds
        solver.parameters.num_search_workers = 1
        solver.parameters.random_seed = self.random_seed

        status = solver.Solve(model)
        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            logger.warning("Reassignment model has no solution (status: %s)", solver.StatusName(status))
            return []

        picked = [c for var, c in zip(chosen, candidates) if solver.Value(var) == 1]
        logger.info(
            "Reassignment: %d of %d candidate transfers selected (status: %s)",
            len(picked),
            len(candidates),
            solver.StatusName(status),
        )
        return picked
