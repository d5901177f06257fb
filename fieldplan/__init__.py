"""Field-service planning core: task assignment, move validation and route optimization.

Modules:
- config: load planner configuration (JSON or YAML)
- domain: task/employee/route models and the error taxonomy
- services: schedule index, move validation, distance providers, route scoring
- engine: route optimizer, cross-employee reassignment, orchestrator
- planner: caller-facing facade over one planning day
- validator: input validation and suggestion reports
- io: CSV import/export
- cli: command-line interface entrypoints
"""

__all__ = [
    "config",
    "domain",
    "services",
    "engine",
    "planner",
    "validator",
    "io",
    "cli",
]
