"""Base optimizer interface that route optimizers implement."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from fieldplan.domain.errors import OptimizationCancelled, UnassignableTask
from fieldplan.domain.models import Employee, Improvements, Route, Task
from fieldplan.services.distance import DistanceMatrix
from fieldplan.services.scoring import RouteProblem, visiting_order
from fieldplan.validator import validate_tasks


@dataclass(frozen=True)
class RouteOptimization:
    """Before/after routes for one employee plus the deltas between them."""

    current: Route
    optimized: Route
    improvements: Improvements

    @property
    def changed(self) -> bool:
        return self.current.task_ids != self.optimized.task_ids


class BaseOptimizer(ABC):
    """
    Abstract base class for single-employee route optimizers.

    Implementations must be deterministic and never return a route costlier
    than the current ordering.
    """

    name: str = "base"

    @abstractmethod
    def optimize(
        self,
        employee: Employee,
        tasks: Sequence[Task],
        matrix: DistanceMatrix,
        settings,
        day: date,
        order: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RouteOptimization:
        """
        Optimize the employee's route for the day.

        Args:
            employee: Employee whose route is optimized
            tasks: Tasks to route; ``matrix`` node ``i + 1`` is ``tasks[i]``
            matrix: Travel estimates, node 0 is the employee's start location
            settings: OptimizationSettings
            day: Planning day
            order: Current ordering by task id (default: chronological)
            cancel_event: Set to abort the search

        Returns:
            RouteOptimization with current and optimized routes

        Raises:
            UnassignableTask: If the employee lacks skills for any task
            InvalidTask: If a task is malformed
            OptimizationCancelled: If ``cancel_event`` is set during the search
        """

    @staticmethod
    def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled("Optimization cancelled")

    def prepare(
        self,
        employee: Employee,
        tasks: Sequence[Task],
        matrix: DistanceMatrix,
        settings,
        day: date,
    ) -> RouteProblem:
        """Validate the tasks and the employee's skills, then build the routing problem."""
        validate_tasks(tasks)
        missing = {
            t.task_id: list(employee.missing_skills(t.required_skills))
            for t in tasks
            if not employee.has_skills(t.required_skills)
        }
        if missing:
            raise UnassignableTask(employee.employee_id, missing)
        return RouteProblem(employee, tasks, matrix, settings, day)

    def simulate(
        self,
        employee: Employee,
        tasks: Sequence[Task],
        matrix: DistanceMatrix,
        settings,
        day: date,
        order: Optional[Sequence[str]] = None,
    ) -> Route:
        """The route that follows ``order`` (default: chronological), without searching."""
        problem = self.prepare(employee, tasks, matrix, settings, day)
        return problem.to_route(problem.evaluate(visiting_order(tasks, order), skip_infeasible=True))
