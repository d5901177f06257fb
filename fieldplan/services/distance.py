"""Distance/travel-time providers with a straight-line fallback."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import requests

from fieldplan.domain.errors import ProviderUnavailable
from fieldplan.domain.models import Coordinate

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_008.8


@dataclass(frozen=True)
class TravelEstimate:
    meters: float
    seconds: float

    @property
    def minutes(self) -> float:
        return self.seconds / 60.0


def haversine_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres."""
    lat1, lon1, lat2, lon2 = map(math.radians, [a.lat, a.lng, b.lat, b.lng])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


class DistanceProvider(ABC):
    """Travel distance/duration between two coordinates."""

    @abstractmethod
    def distance(self, a: Coordinate, b: Coordinate) -> TravelEstimate:
        ...

    def matrix(self, points: Sequence[Coordinate]) -> List[List[TravelEstimate]]:
        """Full pairwise matrix; providers with a bulk API override this."""
        return [[self.distance(a, b) for b in points] for a in points]


class HaversineProvider(DistanceProvider):
    """
    Straight-line estimate: great-circle metres scaled by a road factor and a
    constant average speed.
    """

    def __init__(self, route_factor: float = 1.25, average_speed_kmh: float = 40.0):
        if route_factor <= 0 or average_speed_kmh <= 0:
            raise ValueError("route_factor and average_speed_kmh must be positive")
        self.route_factor = route_factor
        self.average_speed_kmh = average_speed_kmh

    def distance(self, a: Coordinate, b: Coordinate) -> TravelEstimate:
        meters = haversine_meters(a, b) * self.route_factor
        seconds = meters / (self.average_speed_kmh * 1000.0 / 3600.0)
        return TravelEstimate(meters=meters, seconds=seconds)


class OsrmDistanceProvider(DistanceProvider):
    """Client for an OSRM-compatible routing service (route and table APIs)."""

    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def _coord_str(points: Sequence[Coordinate]) -> str:
        # OSRM wants lon,lat
        return ";".join(f"{p.lng},{p.lat}" for p in points)

    def _get(self, url: str, params: dict) -> dict:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderUnavailable(f"OSRM request failed: {e}") from e
        if data.get("code") != "Ok":
            raise ProviderUnavailable(f"OSRM error: {data.get('code')} {data.get('message', '')}".strip())
        return data

    def distance(self, a: Coordinate, b: Coordinate) -> TravelEstimate:
        url = f"{self.base_url}/route/v1/{self.profile}/{self._coord_str([a, b])}"
        data = self._get(url, {"overview": "false"})
        routes = data.get("routes") or []
        if not routes:
            raise ProviderUnavailable("OSRM returned no route")
        return TravelEstimate(meters=float(routes[0]["distance"]), seconds=float(routes[0]["duration"]))

    def matrix(self, points: Sequence[Coordinate]) -> List[List[TravelEstimate]]:
        if len(points) < 2:
            return [[TravelEstimate(0.0, 0.0) for _ in points] for _ in points]
        url = f"{self.base_url}/table/v1/{self.profile}/{self._coord_str(points)}"
        data = self._get(url, {"annotations": "duration,distance"})
        distances = data.get("distances")
        durations = data.get("durations")
        if distances is None or durations is None:
            raise ProviderUnavailable("OSRM table response missing distances/durations")
        out = []
        for i in range(len(points)):
            row = []
            for j in range(len(points)):
                meters, seconds = distances[i][j], durations[i][j]
                if meters is None or seconds is None:
                    raise ProviderUnavailable(f"OSRM table has no route between points {i} and {j}")
                row.append(TravelEstimate(float(meters), float(seconds)))
            out.append(row)
        return out


class FallbackDistanceProvider(DistanceProvider):
    """Use ``primary``; on ProviderUnavailable degrade to ``fallback`` and log."""

    def __init__(self, primary: DistanceProvider, fallback: Optional[DistanceProvider] = None):
        self.primary = primary
        self.fallback = fallback or HaversineProvider()

    def distance(self, a: Coordinate, b: Coordinate) -> TravelEstimate:
        try:
            return self.primary.distance(a, b)
        except ProviderUnavailable as e:
            logger.warning("Distance provider unavailable, using straight-line estimate: %s", e)
            return self.fallback.distance(a, b)

    def matrix(self, points: Sequence[Coordinate]) -> List[List[TravelEstimate]]:
        try:
            return self.primary.matrix(points)
        except ProviderUnavailable as e:
            logger.warning("Distance matrix unavailable, using straight-line estimates: %s", e)
            return self.fallback.matrix(points)


class DistanceMatrix:
    """Precomputed travel estimates between a fixed list of points."""

    def __init__(self, points: Sequence[Coordinate], estimates: List[List[TravelEstimate]]):
        if len(estimates) != len(points) or any(len(row) != len(points) for row in estimates):
            raise ValueError("Distance matrix shape does not match point count")
        self.points = tuple(points)
        self.meters = [[e.meters if i != j else 0.0 for j, e in enumerate(row)] for i, row in enumerate(estimates)]
        self.minutes = [[e.minutes if i != j else 0.0 for j, e in enumerate(row)] for i, row in enumerate(estimates)]

    @classmethod
    def build(cls, provider: DistanceProvider, points: Sequence[Coordinate]) -> "DistanceMatrix":
        return cls(points, provider.matrix(points))

    def take(self, indices: Sequence[int]) -> "DistanceMatrix":
        """Sub-matrix over ``indices``, in that order."""
        sub = DistanceMatrix.__new__(DistanceMatrix)
        sub.points = tuple(self.points[i] for i in indices)
        sub.meters = [[self.meters[i][j] for j in indices] for i in indices]
        sub.minutes = [[self.minutes[i][j] for j in indices] for i in indices]
        return sub

    def __len__(self) -> int:
        return len(self.points)


def build_provider(distance_cfg) -> DistanceProvider:
    """Provider from a DistanceConfig: OSRM with haversine fallback, or haversine only."""
    straight_line = HaversineProvider(
        route_factor=distance_cfg.route_factor,
        average_speed_kmh=distance_cfg.average_speed_kmh,
    )
    if not distance_cfg.osrm_url:
        return straight_line
    osrm = OsrmDistanceProvider(
        distance_cfg.osrm_url,
        profile=distance_cfg.profile,
        timeout=distance_cfg.timeout_seconds,
    )
    return FallbackDistanceProvider(osrm, straight_line)
