"""Routing request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..services.routing.models import CandidateRoute, Route


class StopModel(BaseModel):
    stop_id: str
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    weight_kg: float = Field(0.0, ge=0)


class DepotModel(BaseModel):
    name: str = "Depot"
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class OptimizeRequest(BaseModel):
    stops: List[StopModel]
    depot: Optional[DepotModel] = Field(default=None, description="Defaults to the configured depot.")
    dual_route_comparison: bool = True
    population_size: Optional[int] = Field(None, ge=4, le=2000)
    max_generations: Optional[int] = Field(None, ge=1, le=10000)
    seed: Optional[int] = None
    time_limit_seconds: Optional[float] = Field(None, gt=0)

    @field_validator("stops")
    @classmethod
    def _unique_ids(cls, value: List[StopModel]) -> List[StopModel]:
        ids = [stop.stop_id for stop in value]
        if len(ids) != len(set(ids)):
            raise ValueError("stop_id values must be unique")
        return value


class CandidateRouteModel(BaseModel):
    label: str
    sequence: List[str]
    total_distance_km: float
    fitness: float
    generations: int

    @classmethod
    def from_candidate(cls, candidate: CandidateRoute) -> "CandidateRouteModel":
        return cls(
            label=candidate.label,
            sequence=list(candidate.sequence),
            total_distance_km=candidate.total_distance_km,
            fitness=candidate.fitness,
            generations=candidate.generations,
        )


class RouteComparisonModel(BaseModel):
    route_a: CandidateRouteModel
    route_b: CandidateRouteModel
    refined: Optional[CandidateRouteModel] = None
    selected: str
    distance_improvement_km: float
    fitness_improvement: float
    refinement_iterations: int


class RouteModel(BaseModel):
    batch_id: Optional[str] = None
    sequence: List[str]
    unrouted_stop_ids: List[str]
    total_distance_km: float
    estimated_duration_hours: float
    optimization_score: float
    fitness: float
    fuel_cost_estimate: float
    generation_count: int
    interrupted: bool
    comparison: Optional[RouteComparisonModel] = None

    @classmethod
    def from_route(cls, route: Route, *, batch_id: str | None = None) -> "RouteModel":
        comparison = None
        if route.comparison is not None:
            comparison = RouteComparisonModel(
                route_a=CandidateRouteModel.from_candidate(route.comparison.route_a),
                route_b=CandidateRouteModel.from_candidate(route.comparison.route_b),
                refined=CandidateRouteModel.from_candidate(route.comparison.refined)
                if route.comparison.refined
                else None,
                selected=route.comparison.selected,
                distance_improvement_km=route.comparison.distance_improvement_km,
                fitness_improvement=route.comparison.fitness_improvement,
                refinement_iterations=route.comparison.refinement_iterations,
            )
        return cls(
            batch_id=batch_id,
            sequence=list(route.sequence),
            unrouted_stop_ids=list(route.unrouted_stop_ids),
            total_distance_km=route.total_distance_km,
            estimated_duration_hours=route.estimated_duration_hours,
            optimization_score=route.optimization_score,
            fitness=route.fitness,
            fuel_cost_estimate=route.fuel_cost_estimate,
            generation_count=route.generation_count,
            interrupted=route.interrupted,
            comparison=comparison,
        )
