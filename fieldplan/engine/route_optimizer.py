"""Deterministic single-employee route optimizer (TSP with time windows)."""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from fieldplan.domain.models import Employee, Task
from fieldplan.services.distance import DistanceMatrix
from fieldplan.services.scoring import EPS, Evaluation, RouteProblem, compare_routes, visiting_order

from .base import BaseOptimizer, RouteOptimization
from .routing_model import DayRoutingModel

logger = logging.getLogger(__name__)

COST_TOLERANCE = 1e-9

# label = (cost, clock after service, visiting order as task positions)
Label = Tuple[float, float, Tuple[int, ...]]


class RouteOptimizer(BaseOptimizer):
    """
    Reorders one employee's tasks to minimise ``alpha * km + beta * minutes``.

    The optimized route keeps every task the current order serves and adds
    any other task some feasible sequence can fit; only the rest stay
    unscheduled. Small days (up to ``exact_search_limit`` tasks) are solved
    exactly with a dynamic program over visited subsets that keeps Pareto
    labels on (cost, clock). Larger days go to an OR-Tools routing model.
    The routing model is also started from the current order with distance
    and duration capped at the current route's, so a same-task candidate
    never loses on either.
    """

    name = "tsptw"

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
        problem = self.prepare(employee, tasks, matrix, settings, day)
        current = problem.evaluate(visiting_order(tasks, order), skip_infeasible=True)
        best = current

        if len(tasks) >= 2:
            for candidate in self._candidates(problem, current, settings, cancel_event):
                if self._better(candidate, best, current):
                    best = candidate

        current_route = problem.to_route(current)
        optimized_route = current_route if best is current else problem.to_route(best)
        result = RouteOptimization(current_route, optimized_route, compare_routes(current_route, optimized_route))
        logger.debug(
            "Employee %s: %d -> %d stops, %d unscheduled, cost %.3f -> %.3f",
            employee.employee_id,
            len(current_route.stops),
            len(optimized_route.stops),
            len(optimized_route.unscheduled),
            current_route.cost,
            optimized_route.cost,
        )
        return result

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _acceptable(candidate: Evaluation, current: Evaluation) -> bool:
        """No worse than the current route on distance or duration."""
        return (
            candidate.distance_m <= current.distance_m + EPS
            and candidate.duration_min <= current.duration_min + EPS
        )

    def _better(self, candidate: Evaluation, best: Evaluation, current: Evaluation) -> bool:
        """
        Whether ``candidate`` should replace ``best``.

        Serving more tasks wins outright, but never at the price of a task the
        current route serves. Between routes serving the current tasks only,
        the cheaper one wins if it keeps distance and duration in check.
        """
        if not set(candidate.order) >= set(current.order):
            return False
        if len(candidate.order) != len(best.order):
            return len(candidate.order) > len(best.order)
        if len(candidate.order) == len(current.order) and not self._acceptable(candidate, current):
            return False
        return candidate.cost < best.cost - COST_TOLERANCE

    @staticmethod
    def _complete(problem: RouteProblem, path: Sequence[int]) -> Evaluation:
        """Simulate ``path`` and report every task it leaves out, chronologically."""
        visited = set(path)
        rest = [i for i in visiting_order(problem.tasks) if i not in visited]
        return problem.evaluate(list(path) + rest, skip_infeasible=True)

    def _candidates(
        self,
        problem: RouteProblem,
        current: Evaluation,
        settings,
        cancel_event: Optional[threading.Event],
    ) -> List[Evaluation]:
        self.check_cancelled(cancel_event)
        out: List[Evaluation] = []
        model = DayRoutingModel(problem, settings.routing_solution_limit)

        if len(problem) <= settings.exact_search_limit:
            path = self._exact(problem, current.order, cancel_event)
        else:
            path = model.solve()
        if path is not None:
            out.append(self._complete(problem, path))

        if current.order:
            self.check_cancelled(cancel_event)
            path = model.solve(initial=current.order)
            if path is not None:
                out.append(self._complete(problem, path))
        self.check_cancelled(cancel_event)
        return out

    # ------------------------------------------------------------------ exact

    def _exact(
        self,
        problem: RouteProblem,
        keep: Sequence[int],
        cancel_event: Optional[threading.Event],
    ) -> Optional[List[int]]:
        """
        Cheapest order over the largest servable set that contains ``keep``.

        Labels are keyed by (visited mask, last task); within a key only
        Pareto-optimal (cost, clock) labels survive.
        """
        m = len(problem)
        labels: Dict[Tuple[int, int], List[Label]] = {}

        for i in range(m):
            reason, start, late = problem.step(problem.day_start, 0, i)
            if reason is None:
                cost = problem.leg_cost(0, i) + problem.late_penalty * late
                self._add_label(labels, (1 << i, i), (cost, start + problem.service[i], (i,)))

        full = (1 << m) - 1
        for mask in range(1, full):
            if not mask & 0xFF:
                self.check_cancelled(cancel_event)
            for last in range(m):
                bucket = labels.get((mask, last))
                if not bucket:
                    continue
                pos = last + 1
                for nxt in range(m):
                    bit = 1 << nxt
                    if mask & bit:
                        continue
                    for cost, clock, path in bucket:
                        reason, start, late = problem.step(clock, pos, nxt)
                        if reason is not None:
                            continue
                        new_cost = cost + problem.leg_cost(pos, nxt) + problem.late_penalty * late
                        self._add_label(
                            labels,
                            (mask | bit, nxt),
                            (new_cost, start + problem.service[nxt], path + (nxt,)),
                        )

        keep_mask = 0
        for i in keep:
            keep_mask |= 1 << i
        finals = [
            (bin(mask).count("1"), label)
            for (mask, _), bucket in labels.items()
            if mask & keep_mask == keep_mask
            for label in bucket
        ]
        if not finals:
            return None
        _, (_, _, path) = min(finals, key=lambda f: (-f[0], f[1][0], f[1][2]))
        return list(path)

    @staticmethod
    def _add_label(labels: Dict[Tuple[int, int], List[Label]], key: Tuple[int, int], new: Label) -> None:
        bucket = labels.setdefault(key, [])
        cost, clock, _ = new
        for other_cost, other_clock, _ in bucket:
            if other_cost <= cost + COST_TOLERANCE and other_clock <= clock + EPS:
                return
        bucket[:] = [
            label for label in bucket if not (cost <= label[0] + COST_TOLERANCE and clock <= label[1] + EPS)
        ]
        bucket.append(new)
