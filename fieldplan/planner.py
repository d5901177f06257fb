"""Planner - caller-facing facade over one planning day."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from fieldplan.config import OptimizationSettings, PlannerConfig
from fieldplan.domain.errors import MoveInvalidated
from fieldplan.domain.models import Employee, Improvements, OptimizationSuggestion, Route, Task
from fieldplan.engine.orchestrator import ApplyOutcome, Orchestrator, routable_tasks
from fieldplan.services.constraints import Decision, validate_move
from fieldplan.services.distance import DistanceProvider, build_provider, haversine_meters
from fieldplan.services.schedule_index import ScheduleIndex, ScheduleStore, Workload
from fieldplan.validator import validate_task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MoveOutcome:
    """Decision for a move and whether it was written to the schedule."""

    decision: Decision
    committed: bool
    snapshot: Optional[ScheduleIndex] = None


@dataclass(frozen=True)
class EmployeeMatch:
    """An employee ranked for a task by straight-line proximity."""

    employee: Employee
    distance_m: float
    decision: Decision


class Planner:
    """
    Entry point for UIs and batch callers.

    Owns the schedule store for ``day`` and the orchestrator that works on it.
    Move validation is pure and never touches the distance provider.
    """

    def __init__(
        self,
        employees: Iterable[Employee],
        tasks: Iterable[Task],
        day: date,
        config: PlannerConfig | None = None,
        provider: DistanceProvider | None = None,
    ):
        self.config = config or PlannerConfig()
        self.day = day
        self.store = ScheduleStore(
            employees,
            tasks,
            day,
            grid=self.config.slot_grid,
            working_hours_override=self.config.optimization.working_hours,
            validate=validate_task,
        )
        self.provider = provider or build_provider(self.config.distance)
        self.orchestrator = Orchestrator(self.store, self.provider, settings=self.config.optimization)

    @property
    def snapshot(self) -> ScheduleIndex:
        return self.store.snapshot

    # ------------------------------------------------------------------ moves

    def propose_move(
        self,
        task_id: str,
        target_employee_id: str,
        new_start_time: datetime,
        from_employee_id: Optional[str] = None,
    ) -> Decision:
        """
        Validate moving a task to an employee and start time, without applying it.

        ``from_employee_id`` defaults to the task's first assignee.

        Raises:
            UnknownEntity: If the task or employee is not known
            InvalidTask: If the task data is malformed
        """
        index = self.store.snapshot
        task = index.task(task_id)
        target = index.employee(target_employee_id)
        return validate_move(index, task, self._source(task, from_employee_id), target, new_start_time)

    def move_task(
        self,
        task_id: str,
        target_employee_id: str,
        new_start_time: datetime,
        from_employee_id: Optional[str] = None,
        confirm: bool = False,
    ) -> MoveOutcome:
        """
        Validate and, when permitted, commit a move.

        Rejected moves are never committed. Moves with warnings are committed
        only with ``confirm=True``. The move is validated again against the
        live schedule inside the commit; if another write changed the outcome
        in between, nothing is committed and the fresh decision is returned.
        Stale pending suggestions are dropped, not recomputed.
        """
        index = self.store.snapshot
        task = index.task(task_id)
        target = index.employee(target_employee_id)
        source = self._source(task, from_employee_id)
        decision = validate_move(index, task, source, target, new_start_time)
        if not decision.is_allowed:
            logger.info("Move of %s to %s rejected: %s", task_id, target_employee_id, decision.reason.value)
            return MoveOutcome(decision, committed=False)
        if decision.requires_confirmation and not confirm:
            return MoveOutcome(decision, committed=False)

        def check(live: ScheduleIndex) -> None:
            if live.version == index.version:
                return
            live_task = live.task(task_id)
            fresh = validate_move(live, live_task, source, live.employee(target_employee_id), new_start_time)
            if live_task != task or not fresh.is_allowed or (fresh.requires_confirmation and not confirm):
                raise MoveInvalidated(task_id, fresh)

        moved = task.with_assignment(source, target_employee_id).moved_to(new_start_time)
        try:
            snapshot = self.store.commit([moved], check=check)
        except MoveInvalidated as e:
            logger.info("Move of %s to %s not committed, schedule changed: %s", task_id, target_employee_id, e)
            return MoveOutcome(e.decision, committed=False)
        self.orchestrator.revalidate(snapshot, recompute=False)
        logger.info("Moved %s to %s at %s", task_id, target_employee_id, new_start_time.isoformat())
        return MoveOutcome(decision, committed=True, snapshot=snapshot)

    @staticmethod
    def _source(task: Task, from_employee_id: Optional[str]) -> Optional[str]:
        if from_employee_id is not None:
            return from_employee_id
        return task.assigned_employees[0] if task.assigned_employees else None

    def suggest_employees(self, task_id: str, new_start_time: Optional[datetime] = None) -> List[EmployeeMatch]:
        """
        Active employees ranked by straight-line distance to the task.

        Distance is measured from the live location when known, otherwise from
        the start location. Each match carries the move decision for that employee.
        """
        index = self.store.snapshot
        task = index.task(task_id)
        when = new_start_time or task.start_time
        source = self._source(task, None)
        matches = []
        for emp in index.employees:
            if not emp.is_active:
                continue
            origin = emp.current_location or emp.start_location
            matches.append(
                EmployeeMatch(
                    employee=emp,
                    distance_m=haversine_meters(origin, task.location),
                    decision=validate_move(index, task, source, emp, when),
                )
            )
        matches.sort(key=lambda m: (m.distance_m, m.employee.employee_id))
        return matches

    # ------------------------------------------------------------------ queries

    def workload(self, employee_id: str) -> Workload:
        return self.store.snapshot.workload(employee_id)

    def conflicts(self, employee_id: str):
        return self.store.snapshot.conflicts(employee_id)

    # ------------------------------------------------------------------ optimization

    def run_optimization(
        self,
        employee_ids: Optional[Iterable[str]] = None,
        day: Optional[date] = None,
        settings: OptimizationSettings | Mapping[str, Any] | None = None,
    ) -> List[OptimizationSuggestion]:
        """
        Optimize routes for the planning day.

        Args:
            employee_ids: Employees to optimize (default: all with two or more tasks)
            day: Must be the planner's day when given
            settings: OptimizationSettings, or a mapping of overrides (UI keys accepted)

        Returns:
            Pending suggestions of this run
        """
        if day is not None and day != self.day:
            raise ValueError(f"Planner is bound to {self.day.isoformat()}, got {day.isoformat()}")
        if settings is None or isinstance(settings, OptimizationSettings):
            resolved = settings
        else:
            resolved = self.config.optimization.merged(settings)
        return self.orchestrator.run(employee_ids, settings=resolved)

    def apply_suggestion(self, suggestion: OptimizationSuggestion) -> ApplyOutcome:
        return self.orchestrator.apply(suggestion)

    def reject_suggestion(self, suggestion: OptimizationSuggestion) -> None:
        self.orchestrator.reject(suggestion)

    def cancel_optimization(self) -> None:
        self.orchestrator.cancel()

    @property
    def pending_suggestions(self) -> List[OptimizationSuggestion]:
        return self.orchestrator.pending

    def totals(self) -> Improvements:
        return self.orchestrator.totals()

    # ------------------------------------------------------------------ manual reorder

    def reorder(self, employee_id: str, task_ids: Sequence[str], settings: OptimizationSettings | None = None) -> Route:
        """
        Commit a manually chosen visiting order for one employee.

        The order is simulated like any route; served tasks are pinned to their
        planned service start, unserved ones are left as they are and reported
        on the returned route.

        Raises:
            UnknownEntity: If the employee is not known
            ValueError: If ``task_ids`` names tasks the employee does not have
            UnassignableTask: If the employee lacks skills for a task
        """
        settings = settings or self.config.optimization
        index = self.store.snapshot
        employee = index.employee(employee_id)
        tasks = routable_tasks(index, employee_id)
        matrix = self.orchestrator.route_matrix(employee, tasks)
        route = self.orchestrator.optimizer.simulate(employee, tasks, matrix, settings, index.day, order=task_ids)

        retimed = [stop.task.retimed(stop.service_start) for stop in route.stops]
        if retimed:
            snapshot = self.store.commit(retimed)
            self.orchestrator.revalidate(snapshot, recompute=False)
        logger.info("Reordered %s: %s", employee_id, " > ".join(route.task_ids))
        return route
