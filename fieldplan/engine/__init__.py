"""Route optimization engine: single-employee optimizer, reassignment and orchestrator."""

from .base import BaseOptimizer, RouteOptimization
from .orchestrator import ApplyOutcome, Orchestrator
from .reassignment import ReassignmentPlanner, TransferCandidate
from .route_optimizer import RouteOptimizer
from .routing_model import DayRoutingModel

__all__ = [
    "BaseOptimizer",
    "RouteOptimization",
    "RouteOptimizer",
    "DayRoutingModel",
    "ReassignmentPlanner",
    "TransferCandidate",
    "Orchestrator",
    "ApplyOutcome",
]
