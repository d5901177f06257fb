"""Orchestrator - runs route optimization across employees and manages suggestions."""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fieldplan.config import OptimizationSettings
from fieldplan.domain.errors import StaleSuggestion, UnassignableTask, UnknownEntity
from fieldplan.domain.models import Employee, Improvements, OptimizationSuggestion, Task
from fieldplan.services.distance import DistanceMatrix, DistanceProvider, FallbackDistanceProvider
from fieldplan.services.schedule_index import ScheduleIndex, ScheduleStore

from .base import BaseOptimizer, RouteOptimization
from .reassignment import ReassignmentPlanner, TransferCandidate
from .route_optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyOutcome:
    """Result of applying a suggestion."""

    snapshot: ScheduleIndex
    refreshed: Tuple[OptimizationSuggestion, ...] = ()
    dropped: Tuple[str, ...] = ()


def routable_tasks(index: ScheduleIndex, employee_id: str) -> Tuple[Task, ...]:
    """The employee's tasks that take a place in a route, chronological."""
    return tuple(t for t in index.tasks_for(employee_id) if t.is_routable)


class _RunMatrix:
    """One provider matrix per run; employee/task sub-matrices are sliced from it."""

    def __init__(self, provider: DistanceProvider, employees: Iterable[Employee], tasks: Iterable[Task]):
        points = []
        self._employee_node: Dict[str, int] = {}
        self._task_node: Dict[str, int] = {}
        for emp in employees:
            self._employee_node[emp.employee_id] = len(points)
            points.append(emp.start_location)
        for task in tasks:
            if task.task_id not in self._task_node:
                self._task_node[task.task_id] = len(points)
                points.append(task.location)
        self.matrix = DistanceMatrix.build(provider, points)

    def for_route(self, employee: Employee, tasks: Sequence[Task]) -> DistanceMatrix:
        nodes = [self._employee_node[employee.employee_id]] + [self._task_node[t.task_id] for t in tasks]
        return self.matrix.take(nodes)


class Orchestrator:
    """
    Orchestrator runs the route optimizer for many employees and keeps the
    resulting suggestions until they are applied or rejected.

    Jobs read an immutable schedule snapshot, so the store stays writable
    while a run is in flight. Starting a run cancels the previous one.
    """

    def __init__(
        self,
        store: ScheduleStore,
        provider: DistanceProvider,
        settings=None,
        optimizer: BaseOptimizer | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Owner of the authoritative task list
            provider: Distance provider; wrapped so failures degrade to straight-line
            settings: Default OptimizationSettings for runs
            optimizer: Single-employee optimizer (default: RouteOptimizer)
        """
        self.store = store
        self.provider = provider if isinstance(provider, FallbackDistanceProvider) else FallbackDistanceProvider(provider)
        self.settings = settings or OptimizationSettings()
        self.optimizer = optimizer or RouteOptimizer()
        self.failures: Dict[str, UnassignableTask] = {}

        self._lock = threading.RLock()
        self._pending: Dict[str, OptimizationSuggestion] = {}
        self._cancel_event = threading.Event()
        self._run_settings = self.settings
        self._run_counter = itertools.count(1)

    # ------------------------------------------------------------------ queries

    @property
    def pending(self) -> List[OptimizationSuggestion]:
        with self._lock:
            return list(self._pending.values())

    def totals(self) -> Improvements:
        """Summed improvements of all pending suggestions."""
        total = Improvements()
        for suggestion in self.pending:
            total = total + suggestion.improvements
        return total

    def route_matrix(self, employee: Employee, tasks: Sequence[Task]) -> DistanceMatrix:
        """Distance matrix for one employee's route (node 0 is the start location)."""
        return _RunMatrix(self.provider, [employee], tasks).for_route(employee, tasks)

    def cancel(self) -> None:
        """Abort the run in flight, if any; pending suggestions are kept."""
        self._cancel_event.set()

    # ------------------------------------------------------------------ run

    def run(
        self,
        employee_ids: Optional[Iterable[str]] = None,
        settings=None,
    ) -> List[OptimizationSuggestion]:
        """
        Optimize routes and replace the pending suggestions.

        Args:
            employee_ids: Employees to optimize (default: every active employee
                with at least two routable tasks)
            settings: OptimizationSettings for this run (default: orchestrator's)

        Returns:
            Suggestions that serve more tasks or whose cost saving exceeds the
            improvement threshold

        Raises:
            UnknownEntity: If an employee id is not known
            OptimizationCancelled: If the run is cancelled or superseded
        """
        with self._lock:
            self._cancel_event.set()
            cancel_event = threading.Event()
            self._cancel_event = cancel_event
            run_no = next(self._run_counter)

        settings = settings or self.settings
        snapshot = self.store.snapshot
        pool = self._select(snapshot, employee_ids, settings)
        tasks_by_employee = {e.employee_id: routable_tasks(snapshot, e.employee_id) for e in pool}

        logger.info("Optimization run %d: %d employees on %s", run_no, len(pool), snapshot.day)

        matrices = _RunMatrix(
            self.provider,
            pool,
            (t for tasks in tasks_by_employee.values() for t in tasks),
        )

        failures: Dict[str, UnassignableTask] = {}
        results: Dict[str, RouteOptimization] = {}
        with ThreadPoolExecutor(max_workers=settings.max_workers) as executor:
            futures = {
                emp.employee_id: executor.submit(
                    self.optimizer.optimize,
                    emp,
                    tasks_by_employee[emp.employee_id],
                    matrices.for_route(emp, tasks_by_employee[emp.employee_id]),
                    settings,
                    snapshot.day,
                    None,
                    cancel_event,
                )
                for emp in pool
            }
            for emp_id, future in futures.items():
                try:
                    results[emp_id] = future.result()
                except UnassignableTask as e:
                    logger.warning("Employee %s skipped: %s", emp_id, e)
                    failures[emp_id] = e

        suggestions: Dict[str, OptimizationSuggestion] = {}
        for emp in pool:
            result = results.get(emp.employee_id)
            if result is not None and self._worthwhile(result, settings):
                suggestions[emp.employee_id] = self._suggestion(run_no, emp, result, snapshot)

        if settings.allow_reassignment:
            planner = ReassignmentPlanner(self.optimizer)
            eligible = [e for e in pool if e.employee_id in results]
            candidates = planner.candidates(
                eligible,
                tasks_by_employee,
                results,
                settings,
                snapshot.day,
                matrices.for_route,
                cancel_event,
            )
            for candidate in planner.select(candidates):
                if candidate.improvements.cost_saved <= settings.improvement_threshold:
                    continue
                for emp_id in candidate.employee_ids:
                    suggestions.pop(emp_id, None)
                donor = snapshot.employee(candidate.transfer.from_employee_id)
                suggestions[donor.employee_id] = self._transfer_suggestion(run_no, donor, candidate, snapshot)

        ordered = [suggestions[e.employee_id] for e in pool if e.employee_id in suggestions]
        with self._lock:
            self.optimizer.check_cancelled(cancel_event)
            self.failures = failures
            self._run_settings = settings
            self._pending = {s.suggestion_id: s for s in ordered}

        logger.info(
            "Optimization run %d: %d suggestions, %d failures",
            run_no,
            len(ordered),
            len(failures),
        )
        return ordered

    def _select(self, snapshot: ScheduleIndex, employee_ids, settings) -> List[Employee]:
        if employee_ids is not None:
            return [snapshot.employee(emp_id) for emp_id in dict.fromkeys(employee_ids)]
        active = [e for e in snapshot.employees if e.is_active]
        if settings.allow_reassignment:
            return active
        return [e for e in active if len(routable_tasks(snapshot, e.employee_id)) >= 2]

    @staticmethod
    def _worthwhile(result: RouteOptimization, settings) -> bool:
        """Serving more tasks always counts; otherwise the saving must clear the threshold."""
        improvements = result.improvements
        return improvements.tasks_recovered > 0 or improvements.cost_saved > settings.improvement_threshold

    @staticmethod
    def _basis(snapshot: ScheduleIndex, employee_ids: Iterable[str]) -> Dict[str, Tuple[Task, ...]]:
        return {emp_id: routable_tasks(snapshot, emp_id) for emp_id in employee_ids}

    def _suggestion(
        self,
        run_no: int,
        employee: Employee,
        result: RouteOptimization,
        snapshot: ScheduleIndex,
    ) -> OptimizationSuggestion:
        return OptimizationSuggestion(
            suggestion_id=f"run{run_no}-{employee.employee_id}",
            employee_id=employee.employee_id,
            employee_name=employee.name,
            current_route=result.current,
            optimized_route=result.optimized,
            improvements=result.improvements,
            basis=self._basis(snapshot, [employee.employee_id]),
        )

    def _transfer_suggestion(
        self,
        run_no: int,
        donor: Employee,
        candidate: TransferCandidate,
        snapshot: ScheduleIndex,
    ) -> OptimizationSuggestion:
        return OptimizationSuggestion(
            suggestion_id=f"run{run_no}-{donor.employee_id}",
            employee_id=donor.employee_id,
            employee_name=donor.name,
            current_route=candidate.donor.current,
            optimized_route=candidate.donor.optimized,
            improvements=candidate.improvements,
            transfers=(candidate.transfer,),
            receiver_routes=((candidate.receiver.current, candidate.receiver.optimized),),
            basis=self._basis(snapshot, candidate.employee_ids),
        )

    # ------------------------------------------------------------------ apply / reject

    @staticmethod
    def _stale_employees(suggestion: OptimizationSuggestion, snapshot: ScheduleIndex) -> List[str]:
        """Employees whose routable tasks no longer match what the suggestion was built from."""
        return [emp_id for emp_id, tasks in suggestion.basis.items() if routable_tasks(snapshot, emp_id) != tasks]

    def _take_pending(self, suggestion: OptimizationSuggestion) -> OptimizationSuggestion:
        try:
            return self._pending[suggestion.suggestion_id]
        except KeyError:
            raise UnknownEntity("suggestion", suggestion.suggestion_id) from None

    @staticmethod
    def _updated_tasks(suggestion: OptimizationSuggestion) -> List[Task]:
        known = {t.task_id: t for tasks in suggestion.basis.values() for t in tasks}
        changes: Dict[str, Task] = {}

        def latest(task_id: str) -> Task:
            return changes.get(task_id) or known[task_id]

        for transfer in suggestion.transfers:
            changes[transfer.task_id] = latest(transfer.task_id).with_assignment(
                transfer.from_employee_id, transfer.to_employee_id
            )
        routes = [suggestion.optimized_route] + [proposed for _, proposed in suggestion.receiver_routes]
        for route in routes:
            for stop in route.stops:
                changes[stop.task.task_id] = latest(stop.task.task_id).retimed(stop.service_start)
        return list(changes.values())

    def apply(self, suggestion: OptimizationSuggestion) -> ApplyOutcome:
        """
        Commit a suggestion's order, timing and transfers in one step.

        Pending suggestions invalidated by the commit are recomputed (without
        reassignment) or dropped when no worthwhile improvement remains.

        Raises:
            UnknownEntity: If the suggestion is not pending
            StaleSuggestion: If the schedule changed since it was computed
        """
        with self._lock:
            suggestion = self._take_pending(suggestion)

            def check(live: ScheduleIndex) -> None:
                stale = self._stale_employees(suggestion, live)
                if stale:
                    raise StaleSuggestion(suggestion.suggestion_id, stale)

            try:
                snapshot = self.store.commit(self._updated_tasks(suggestion), check=check)
            except StaleSuggestion:
                self._pending.pop(suggestion.suggestion_id, None)
                raise
            self._pending.pop(suggestion.suggestion_id)
            logger.info(
                "Applied %s: %.1f m and %.1f min saved",
                suggestion.suggestion_id,
                suggestion.improvements.distance_saved_m,
                suggestion.improvements.time_saved_min,
            )
            refreshed, dropped = self.revalidate(snapshot)
        return ApplyOutcome(snapshot=snapshot, refreshed=tuple(refreshed), dropped=tuple(dropped))

    def reject(self, suggestion: OptimizationSuggestion) -> None:
        """Discard a pending suggestion; the schedule is untouched."""
        with self._lock:
            self._take_pending(suggestion)
            del self._pending[suggestion.suggestion_id]
        logger.info("Rejected %s", suggestion.suggestion_id)

    def revalidate(
        self,
        snapshot: Optional[ScheduleIndex] = None,
        recompute: bool = True,
    ) -> Tuple[List[OptimizationSuggestion], List[str]]:
        """
        Recompute pending suggestions the schedule has moved away from.

        Args:
            snapshot: Schedule to check against (default: the live one)
            recompute: When False, stale suggestions are dropped without
                touching the distance provider

        Returns:
            (refreshed suggestions, ids of dropped suggestions)
        """
        with self._lock:
            return self._revalidate(snapshot or self.store.snapshot, recompute)

    def _revalidate(
        self, snapshot: ScheduleIndex, recompute: bool
    ) -> Tuple[List[OptimizationSuggestion], List[str]]:
        refreshed: List[OptimizationSuggestion] = []
        dropped: List[str] = []
        settings = self._run_settings
        for sid, pending in list(self._pending.items()):
            if not self._stale_employees(pending, snapshot):
                continue
            replacement = None
            result = None
            # recomputed without reassignment; a stale transfer becomes a plain route suggestion
            employee = snapshot.employee(pending.employee_id)
            tasks = routable_tasks(snapshot, employee.employee_id)
            if recompute:
                try:
                    matrix = self.route_matrix(employee, tasks)
                    result = self.optimizer.optimize(employee, tasks, matrix, settings, snapshot.day)
                except UnassignableTask as e:
                    logger.warning("Dropping %s: %s", sid, e)
            if result is not None and self._worthwhile(result, settings):
                replacement = OptimizationSuggestion(
                    suggestion_id=sid,
                    employee_id=employee.employee_id,
                    employee_name=employee.name,
                    current_route=result.current,
                    optimized_route=result.optimized,
                    improvements=result.improvements,
                    basis=self._basis(snapshot, [employee.employee_id]),
                )
            if replacement is None:
                del self._pending[sid]
                dropped.append(sid)
            else:
                self._pending[sid] = replacement
                refreshed.append(replacement)
        if refreshed or dropped:
            logger.info("Revalidated pending suggestions: %d refreshed, %d dropped", len(refreshed), len(dropped))
        return refreshed, dropped
