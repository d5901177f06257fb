"""Configuration loading for the planner (YAML or JSON)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from fieldplan.domain.models import DEFAULT_WORKING_HOURS, WorkingHours
from fieldplan.services.timeplan import SlotGrid, parse_time_string


# UI wire names -> attribute names
_SETTINGS_ALIASES = {
    "prioritizeTime": "prioritize_time",
    "prioritizeDistance": "prioritize_distance",
    "respectTimeWindows": "respect_time_windows",
    "allowReassignment": "allow_reassignment",
    "maxTravelTime": "max_travel_time",
    "workingHours": "working_hours",
    "improvementThreshold": "improvement_threshold",
    "exactSearchLimit": "exact_search_limit",
}


def _parse_working_hours(value) -> Optional[WorkingHours]:
    if value is None or isinstance(value, WorkingHours):
        return value
    return WorkingHours(parse_time_string(value["start"]), parse_time_string(value["end"]))


@dataclass(frozen=True)
class OptimizationSettings:
    """Options consumed by the route optimizer and orchestrator.

    Cost weights are per kilometre (alpha) and per minute (beta). The
    prioritised dimension gets weight 1.0 and the other ``secondary_weight``;
    with both flags set they blend equally; with neither, time wins.
    """

    prioritize_time: bool = True
    prioritize_distance: bool = False
    respect_time_windows: bool = True
    allow_reassignment: bool = False
    max_travel_time: Optional[float] = 60.0
    working_hours: Optional[WorkingHours] = None
    improvement_threshold: float = 0.01
    exact_search_limit: int = 12
    secondary_weight: float = 0.25
    late_penalty_per_minute: float = 2.0
    max_workers: int = 4
    routing_solution_limit: int = 100

    def __post_init__(self):
        if self.max_travel_time is not None and self.max_travel_time <= 0:
            raise ValueError("max_travel_time must be positive")
        if self.improvement_threshold < 0:
            raise ValueError("improvement_threshold must be non-negative")
        if self.exact_search_limit < 0:
            raise ValueError("exact_search_limit must be non-negative")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.routing_solution_limit < 1:
            raise ValueError("routing_solution_limit must be at least 1")

    def cost_weights(self) -> Tuple[float, float]:
        """(alpha per km, beta per minute)."""
        if self.prioritize_distance and self.prioritize_time:
            return 1.0, 1.0
        if self.prioritize_distance:
            return 1.0, self.secondary_weight
        return self.secondary_weight, 1.0

    def working_hours_for(self, employee) -> WorkingHours:
        return self.working_hours or employee.working_hours

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "OptimizationSettings":
        """Build settings from snake_case or UI camelCase keys; unknown keys are ignored."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _SETTINGS_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
        if "working_hours" in kwargs:
            kwargs["working_hours"] = _parse_working_hours(kwargs["working_hours"])
        return cls(**kwargs)

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "OptimizationSettings":
        if not overrides:
            return self
        parsed = OptimizationSettings.from_dict(overrides)
        changes = {}
        for key in overrides:
            name = _SETTINGS_ALIASES.get(key, key)
            if hasattr(parsed, name):
                changes[name] = getattr(parsed, name)
        return replace(self, **changes)


@dataclass(frozen=True)
class DistanceConfig:
    osrm_url: Optional[str] = None
    profile: str = "driving"
    timeout_seconds: float = 10.0
    route_factor: float = 1.25
    average_speed_kmh: float = 40.0


@dataclass(frozen=True)
class PlannerConfig:
    default_working_hours: WorkingHours = DEFAULT_WORKING_HOURS
    slot_grid: SlotGrid = field(default_factory=SlotGrid)
    distance: DistanceConfig = field(default_factory=DistanceConfig)
    optimization: OptimizationSettings = field(default_factory=OptimizationSettings)


def _read_raw(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text) or {}
    return yaml.safe_load(text) or {}


def config_from_dict(raw: Mapping[str, Any]) -> PlannerConfig:
    """Build a PlannerConfig from a parsed mapping; missing sections use defaults."""
    cfg = PlannerConfig()

    if raw.get("working_hours"):
        cfg = replace(cfg, default_working_hours=_parse_working_hours(raw["working_hours"]))

    grid = raw.get("slot_grid") or {}
    if grid:
        cfg = replace(
            cfg,
            slot_grid=SlotGrid(
                start=parse_time_string(grid.get("start", "08:00")),
                end=parse_time_string(grid.get("end", "18:00")),
                slot_minutes=int(grid.get("slot_minutes", 15)),
            ),
        )

    dist = raw.get("distance") or {}
    if dist:
        known = {f.name for f in fields(DistanceConfig)}
        cfg = replace(cfg, distance=DistanceConfig(**{k: v for k, v in dist.items() if k in known}))

    opt = raw.get("optimization") or {}
    if opt:
        cfg = replace(cfg, optimization=OptimizationSettings.from_dict(opt))

    return cfg


def load_config(path: str | Path | None) -> PlannerConfig:
    """Load planner configuration from a YAML or JSON file (None -> defaults)."""
    if path is None:
        return PlannerConfig()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    return config_from_dict(_read_raw(path))
