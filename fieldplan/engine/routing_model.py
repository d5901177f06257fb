"""OR-Tools routing model of one employee's day."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from fieldplan.services.scoring import EPS, RouteProblem

logger = logging.getLogger(__name__)

# arc costs are integer cost units of 1/1000
COST_SCALE = 1000
# cumul values are whole seconds since midnight
HORIZON = 2 * 24 * 3600


def _seconds_up(minutes: float) -> int:
    return int(math.ceil(minutes * 60.0 - 1e-7))


def _seconds_down(minutes: float) -> int:
    return int(math.floor(minutes * 60.0 + 1e-7))


class DayRoutingModel:
    """
    Single-vehicle routing model over a RouteProblem.

    Node 0 is the start location and task ``i`` is node ``i + 1``; the route
    is open (arcs back to node 0 are free). Integer rounding is conservative:
    travel and window starts round up, window ends round down, so every route
    the solver returns is also feasible when re-simulated in minutes.
    Every task sits in its own disjunction with a penalty above the cost of
    serving all tasks, so the solver serves as many tasks as it can first.
    """

    def __init__(self, problem: RouteProblem, solution_limit: int):
        self.problem = problem
        self.solution_limit = solution_limit
        n = len(problem)
        minutes = problem.matrix.minutes
        meters = problem.matrix.meters
        service = [0.0] + problem.service

        self.arc_cost = [[0] * (n + 1) for _ in range(n + 1)]
        self.arc_time = [[0] * (n + 1) for _ in range(n + 1)]
        self.arc_meters = [[0] * (n + 1) for _ in range(n + 1)]
        self.arc_duration = [[0] * (n + 1) for _ in range(n + 1)]
        for a in range(n + 1):
            for b in range(1, n + 1):
                if a == b:
                    continue
                self.arc_cost[a][b] = int(round(problem.leg_cost(a, b - 1) * COST_SCALE))
                self.arc_time[a][b] = _seconds_up(service[a] + minutes[a][b])
                self.arc_meters[a][b] = int(round(meters[a][b]))
                self.arc_duration[a][b] = int(round((minutes[a][b] + service[b]) * 60.0))

        # soft windows: lateness per second in cost units
        self.late_coefficient = int(round(problem.late_penalty * COST_SCALE / 60.0))
        self.drop_penalty = 1 + sum(max(row[b] for row in self.arc_cost) for b in range(1, n + 1))
        if not problem.hard_windows:
            self.drop_penalty += n * self.late_coefficient * HORIZON

    def search_parameters(self):
        params = pywrapcp.DefaultRoutingSearchParameters()
        params.first_solution_strategy = routing_enums_pb2.FirstSolutionStrategy.PARALLEL_CHEAPEST_INSERTION
        params.local_search_metaheuristic = routing_enums_pb2.LocalSearchMetaheuristic.GREEDY_DESCENT
        # bounded by solution count rather than wall clock so runs repeat exactly
        params.solution_limit = self.solution_limit
        params.log_search = False
        return params

    def _path_total(self, table: List[List[int]], order: Sequence[int]) -> int:
        total = 0
        prev = 0
        for i in order:
            total += table[prev][i + 1]
            prev = i + 1
        return total

    def solve(self, initial: Optional[Sequence[int]] = None) -> Optional[List[int]]:
        """
        Solve for a visiting order (task positions).

        Args:
            initial: Start the local search from this order instead of building
                one; distance and duration are then capped at the initial
                route's values

        Returns:
            Visiting order, or None when the solver finds nothing
        """
        problem = self.problem
        n = len(problem)
        manager = pywrapcp.RoutingIndexManager(n + 1, 1, 0)
        routing = pywrapcp.RoutingModel(manager)

        def table_callback(table):
            def callback(from_index: int, to_index: int) -> int:
                return table[manager.IndexToNode(from_index)][manager.IndexToNode(to_index)]

            return routing.RegisterTransitCallback(callback)

        routing.SetArcCostEvaluatorOfAllVehicles(table_callback(self.arc_cost))

        routing.AddDimension(table_callback(self.arc_time), HORIZON, HORIZON, False, "Time")
        time_dimension = routing.GetDimensionOrDie("Time")
        day_start = _seconds_up(problem.day_start)
        time_dimension.CumulVar(routing.Start(0)).SetRange(day_start, day_start)

        for i in range(n):
            index = manager.NodeToIndex(i + 1)
            latest = problem.day_end - problem.service[i]
            if problem.hard_windows:
                latest = min(latest, problem.due[i] - EPS)
            lower, upper = _seconds_up(problem.ready[i]), _seconds_down(latest)
            if lower > upper:
                # cannot be served from any position
                routing.ActiveVar(index).SetValue(0)
            else:
                time_dimension.CumulVar(index).SetRange(lower, upper)
                if not problem.hard_windows and self.late_coefficient:
                    time_dimension.SetCumulVarSoftUpperBound(
                        index, _seconds_down(problem.due[i]), self.late_coefficient
                    )
            routing.AddDisjunction([index], self.drop_penalty)

        if problem.max_leg is not None:
            for a in range(n + 1):
                for b in range(1, n + 1):
                    if a != b and problem.matrix.minutes[a][b] > problem.max_leg + EPS:
                        routing.NextVar(manager.NodeToIndex(a)).RemoveValue(manager.NodeToIndex(b))

        if initial is not None:
            routing.AddDimension(
                table_callback(self.arc_meters), 0, self._path_total(self.arc_meters, initial), True, "Distance"
            )
            routing.AddDimension(
                table_callback(self.arc_duration), 0, self._path_total(self.arc_duration, initial), True, "Duration"
            )

        params = self.search_parameters()
        routing.CloseModelWithParameters(params)
        if initial is None:
            solution = routing.SolveWithParameters(params)
        else:
            start = routing.ReadAssignmentFromRoutes([[manager.NodeToIndex(i + 1) for i in initial]], True)
            if start is None:
                logger.debug("Current order is not a valid start for the routing model")
                return None
            solution = routing.SolveFromAssignmentWithParameters(start, params)

        if solution is None:
            logger.debug("Routing model found no solution for %s", problem.employee.employee_id)
            return None

        order = []
        index = solution.Value(routing.NextVar(routing.Start(0)))
        while not routing.IsEnd(index):
            order.append(manager.IndexToNode(index) - 1)
            index = solution.Value(routing.NextVar(index))
        return order
