"""Ad-hoc route optimization endpoint."""

from __future__ import annotations

from dataclasses import replace

from fastapi import APIRouter, Depends, status

from ...models.domain import Depot
from ...schemas.routing import OptimizeRequest, RouteModel
from ...services.engine import DispatchEngine, get_engine
from ...services.routing import GeneticRouteOptimizer, RouteStop
from ..errors import to_http_exception

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("/optimize", response_model=RouteModel, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRequest, engine: DispatchEngine = Depends(get_engine)) -> RouteModel:
    config = replace(engine.routes.optimizer.config, dual_route_comparison=payload.dual_route_comparison)
    if payload.population_size is not None:
        config.population_size = payload.population_size
    if payload.max_generations is not None:
        config.max_generations = payload.max_generations
    if payload.seed is not None:
        config.seed = payload.seed
    if payload.time_limit_seconds is not None:
        config.time_limit_seconds = payload.time_limit_seconds

    depot = (
        Depot(name=payload.depot.name, latitude=payload.depot.latitude, longitude=payload.depot.longitude)
        if payload.depot
        else engine.routes.depot
    )
    stops = [
        RouteStop(stop_id=stop.stop_id, latitude=stop.latitude, longitude=stop.longitude, weight_kg=stop.weight_kg)
        for stop in payload.stops
    ]
    try:
        route = GeneticRouteOptimizer(config).optimize(depot, stops)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    return RouteModel.from_route(route)
