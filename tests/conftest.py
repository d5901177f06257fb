"""Pytest configuration and shared fixtures."""

import datetime as dt

import pytest

from fieldplan.config import OptimizationSettings
from fieldplan.domain.models import Coordinate, Employee, Task, WorkingHours
from fieldplan.services.distance import DistanceMatrix, DistanceProvider, TravelEstimate

DAY = dt.date(2025, 3, 10)


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


class FlatProvider(DistanceProvider):
    """Manhattan distance where one coordinate unit is 1 km, driven at 1 km per minute."""

    def __init__(self):
        self.calls = 0

    def distance(self, a, b):
        km = abs(a.lat - b.lat) + abs(a.lng - b.lng)
        return TravelEstimate(meters=km * 1000.0, seconds=km * 60.0)

    def matrix(self, points):
        self.calls += 1
        return super().matrix(points)


def at(hour, minute=0, day=DAY):
    return dt.datetime.combine(day, dt.time(hour, minute))


def make_employee(
    employee_id="e1",
    skills=("cleaning",),
    x=0.0,
    y=0.0,
    start="08:00",
    end="16:00",
    name=None,
    is_active=True,
):
    sh, sm = (int(p) for p in start.split(":"))
    eh, em = (int(p) for p in end.split(":"))
    return Employee(
        employee_id=employee_id,
        name=name or f"Employee {employee_id}",
        skills=tuple(skills),
        start_location=Coordinate(x, y),
        working_hours=WorkingHours(dt.time(sh, sm), dt.time(eh, em)),
        is_active=is_active,
    )


def make_task(
    task_id,
    start,
    end,
    duration=30,
    x=0.0,
    y=0.0,
    skills=("cleaning",),
    assigned=("e1",),
    **kwargs,
):
    return Task(
        task_id=task_id,
        title=f"Task {task_id}",
        required_skills=frozenset(skills),
        location=Coordinate(x, y),
        address=f"{task_id} street",
        start_time=start,
        end_time=end,
        estimated_duration=duration,
        assigned_employees=tuple(assigned),
        **kwargs,
    )


def matrix_for(employee, tasks, provider=None):
    provider = provider or FlatProvider()
    return DistanceMatrix.build(provider, [employee.start_location] + [t.location for t in tasks])


@pytest.fixture
def day():
    return DAY


@pytest.fixture
def flat_provider():
    return FlatProvider()


@pytest.fixture
def settings():
    return OptimizationSettings()


@pytest.fixture
def zigzag_tasks():
    """Three wide-window tasks whose id order zigzags along a line (5, 1, 3 km out)."""
    return [
        make_task("t1", at(8), at(16), x=5.0),
        make_task("t2", at(8), at(16), x=1.0),
        make_task("t3", at(8), at(16), x=3.0),
    ]
