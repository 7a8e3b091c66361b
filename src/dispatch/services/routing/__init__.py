"""Route optimization services."""

from .models import CandidateRoute, Route, RouteComparison, RouteStop
from .optimizer import GeneticRouteOptimizer, OptimizerConfig
from .service import RouteService

__all__ = [
    "CandidateRoute",
    "GeneticRouteOptimizer",
    "OptimizerConfig",
    "Route",
    "RouteComparison",
    "RouteService",
    "RouteStop",
]
