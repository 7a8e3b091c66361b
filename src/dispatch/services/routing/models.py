"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class RouteStop:
    stop_id: str
    latitude: Optional[float]
    longitude: Optional[float]
    weight_kg: float = 0.0
    value: float = 0.0

    @property
    def is_geocoded(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class CandidateRoute:
    label: str
    sequence: List[str]
    total_distance_km: float
    fitness: float
    generations: int = 0


@dataclass(slots=True)
class RouteComparison:
    route_a: CandidateRoute
    route_b: CandidateRoute
    selected: str
    distance_improvement_km: float
    fitness_improvement: float
    refined: Optional[CandidateRoute] = None
    refinement_iterations: int = 0


@dataclass(slots=True)
class Route:
    """Advisory visiting plan for one batch: depot -> sequence -> depot."""

    sequence: List[str]
    unrouted_stop_ids: List[str]
    total_distance_km: float
    estimated_duration_hours: float
    optimization_score: float
    fitness: float
    fuel_cost_estimate: float
    generation_count: int = 0
    comparison: Optional[RouteComparison] = None
    interrupted: bool = False
    metadata: dict = field(default_factory=dict)

    @property
    def planned_stop_ids(self) -> List[str]:
        """Routed stops in visiting order followed by the stops without coordinates."""
        return [*self.sequence, *self.unrouted_stop_ids]

    @property
    def is_empty(self) -> bool:
        return not self.sequence and not self.unrouted_stop_ids
