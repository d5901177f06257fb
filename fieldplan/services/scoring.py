"""Route simulation, cost and efficiency metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence, Tuple

from fieldplan.domain.models import Employee, Improvements, Route, RouteStop, Task, UnscheduledTask

from .distance import DistanceMatrix
from .timeplan import minutes_of_day

EPS = 1e-6

REASON_TIME_WINDOW = "time_window"
REASON_WORKING_HOURS = "working_hours"
REASON_MAX_TRAVEL = "max_travel_time"


def route_efficiency(service_min: float, elapsed_min: float) -> float:
    """Productive share of elapsed time in percent, capped at 100."""
    if elapsed_min <= 0:
        return 0.0
    return min(100.0, 100.0 * service_min / elapsed_min)


def visiting_order(tasks: Sequence[Task], order: Optional[Sequence[str]] = None) -> List[int]:
    """
    Positions of ``tasks`` in visiting order.

    Tasks named in ``order`` come first, in that order; the rest follow
    chronologically by (start, id).

    Raises:
        ValueError: If ``order`` names a task not in ``tasks``
    """
    chronological = sorted(range(len(tasks)), key=lambda i: (tasks[i].start_time, tasks[i].task_id))
    if order is None:
        return chronological
    position = {t.task_id: i for i, t in enumerate(tasks)}
    unknown = [tid for tid in order if tid not in position]
    if unknown:
        raise ValueError(f"Order references unknown tasks: {', '.join(unknown)}")
    listed = [position[tid] for tid in dict.fromkeys(order)]
    seen = set(listed)
    return listed + [i for i in chronological if i not in seen]


@dataclass
class Evaluation:
    """Result of simulating one visiting order (indices into the problem's tasks)."""

    order: Tuple[int, ...]
    starts: List[float] = field(default_factory=list)
    arrivals: List[float] = field(default_factory=list)
    leg_meters: List[float] = field(default_factory=list)
    leg_minutes: List[float] = field(default_factory=list)
    lateness: List[float] = field(default_factory=list)
    unscheduled: List[Tuple[int, str]] = field(default_factory=list)
    feasible: bool = True
    distance_m: float = 0.0
    travel_min: float = 0.0
    service_min: float = 0.0
    late_min: float = 0.0
    elapsed_min: float = 0.0
    cost: float = 0.0

    @property
    def duration_min(self) -> float:
        return self.travel_min + self.service_min

    @property
    def efficiency(self) -> float:
        return route_efficiency(self.service_min, self.elapsed_min)


class RouteProblem:
    """
    One employee's day as a single-vehicle routing problem with time windows.

    Node 0 of the matrix is the employee's start location; task ``i`` is node
    ``i + 1``. Times are minutes since midnight of ``day``.
    """

    def __init__(
        self,
        employee: Employee,
        tasks: Sequence[Task],
        matrix: DistanceMatrix,
        settings,
        day: date,
    ):
        if len(matrix) != len(tasks) + 1:
            raise ValueError("Distance matrix must cover the start location plus every task")
        self.employee = employee
        self.tasks = list(tasks)
        self.matrix = matrix
        self.settings = settings
        self.day = day
        self.midnight = datetime.combine(day, time(0, 0))

        hours = settings.working_hours_for(employee)
        self.day_start = minutes_of_day(hours.start)
        self.day_end = minutes_of_day(hours.end)
        self.hard_windows = settings.respect_time_windows
        self.max_leg = settings.max_travel_time
        self.alpha, self.beta = settings.cost_weights()
        self.late_penalty = 0.0 if self.hard_windows else settings.late_penalty_per_minute

        self.ready = [self._minutes(t.start_time) for t in self.tasks]
        self.due = [self._minutes(t.end_time) for t in self.tasks]
        self.service = [float(t.estimated_duration) for t in self.tasks]

    def _minutes(self, when: datetime) -> float:
        return (when - self.midnight).total_seconds() / 60.0

    def at(self, minutes: float) -> datetime:
        return self.midnight + timedelta(minutes=minutes)

    def __len__(self) -> int:
        return len(self.tasks)

    def step(self, clock: float, pos: int, i: int) -> Tuple[Optional[str], float, float]:
        """
        Try to serve task ``i`` leaving node ``pos`` at ``clock``.

        Returns:
            (blocking reason or None, service start, lateness)
        """
        node = i + 1
        leg = self.matrix.minutes[pos][node]
        if self.max_leg is not None and leg > self.max_leg + EPS:
            return REASON_MAX_TRAVEL, 0.0, 0.0
        start = max(clock + leg, self.ready[i])
        late = 0.0
        if self.hard_windows:
            if start > self.due[i] - EPS:
                return REASON_TIME_WINDOW, start, 0.0
        elif start > self.due[i]:
            late = start - self.due[i]
        if start + self.service[i] > self.day_end + EPS:
            return REASON_WORKING_HOURS, start, late
        return None, start, late

    def leg_cost(self, pos: int, i: int) -> float:
        node = i + 1
        return self.alpha * self.matrix.meters[pos][node] / 1000.0 + self.beta * (
            self.matrix.minutes[pos][node] + self.service[i]
        )

    def evaluate(self, order: Sequence[int], skip_infeasible: bool = False) -> Evaluation:
        """Simulate ``order``; infeasible tasks are skipped (and recorded) or fail the order."""
        ev = Evaluation(order=tuple(order))
        clock = self.day_start
        pos = 0
        departure = None
        last_end = None
        served = []
        for i in order:
            reason, start, late = self.step(clock, pos, i)
            if reason is not None:
                if not skip_infeasible:
                    ev.feasible = False
                    ev.cost = float("inf")
                    return ev
                ev.unscheduled.append((i, reason))
                continue
            node = i + 1
            leg_m = self.matrix.meters[pos][node]
            leg_t = self.matrix.minutes[pos][node]
            if departure is None:
                departure = start - leg_t
            served.append(i)
            ev.arrivals.append(clock + leg_t)
            ev.starts.append(start)
            ev.leg_meters.append(leg_m)
            ev.leg_minutes.append(leg_t)
            ev.lateness.append(late)
            ev.distance_m += leg_m
            ev.travel_min += leg_t
            ev.service_min += self.service[i]
            ev.late_min += late
            ev.cost += self.leg_cost(pos, i) + self.late_penalty * late
            clock = start + self.service[i]
            last_end = clock
            pos = node
        ev.order = tuple(served)
        ev.elapsed_min = (last_end - departure) if served else 0.0
        return ev

    def to_route(self, ev: Evaluation) -> Route:
        stops = []
        for k, i in enumerate(ev.order):
            start = ev.starts[k]
            stops.append(
                RouteStop(
                    task=self.tasks[i],
                    arrival=self.at(ev.arrivals[k]),
                    service_start=self.at(start),
                    service_end=self.at(start + self.service[i]),
                    travel_meters=ev.leg_meters[k],
                    travel_minutes=ev.leg_minutes[k],
                    wait_minutes=max(0.0, start - ev.arrivals[k]),
                    late_minutes=ev.lateness[k],
                )
            )
        return Route(
            employee_id=self.employee.employee_id,
            day=self.day,
            stops=tuple(stops),
            unscheduled=tuple(UnscheduledTask(self.tasks[i], reason) for i, reason in ev.unscheduled),
            total_distance_m=ev.distance_m,
            total_duration_min=ev.duration_min,
            travel_min=ev.travel_min,
            service_min=ev.service_min,
            elapsed_min=ev.elapsed_min,
            late_min=ev.late_min,
            efficiency=ev.efficiency,
            cost=ev.cost,
        )


def compare_routes(current: Route, optimized: Route) -> Improvements:
    return Improvements(
        distance_saved_m=current.total_distance_m - optimized.total_distance_m,
        time_saved_min=current.total_duration_min - optimized.total_duration_min,
        efficiency_gain=optimized.efficiency - current.efficiency,
        cost_saved=current.cost - optimized.cost,
        tasks_recovered=len(optimized.stops) - len(current.stops),
    )


def combined_route_metrics(routes: Sequence[Route]) -> Tuple[float, float, float, float]:
    """(distance m, duration min, efficiency %, cost) over several routes together."""
    distance = sum(r.total_distance_m for r in routes)
    duration = sum(r.total_duration_min for r in routes)
    service = sum(r.service_min for r in routes)
    elapsed = sum(r.elapsed_min for r in routes)
    cost = sum(r.cost for r in routes)
    return distance, duration, route_efficiency(service, elapsed), cost


def compare_route_groups(current: Sequence[Route], proposed: Sequence[Route]) -> Improvements:
    cur_d, cur_t, cur_e, cur_c = combined_route_metrics(current)
    new_d, new_t, new_e, new_c = combined_route_metrics(proposed)
    return Improvements(
        distance_saved_m=cur_d - new_d,
        time_saved_min=cur_t - new_t,
        efficiency_gain=new_e - cur_e,
        cost_saved=cur_c - new_c,
        tasks_recovered=sum(len(r.stops) for r in proposed) - sum(len(r.stops) for r in current),
    )
