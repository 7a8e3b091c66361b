"""Genetic-algorithm visit sequencing with dual-route comparison.

A route is ``depot -> stops in permutation order -> depot``. Two independent
searches (Route A and Route B, each with its own random generator and a
slightly different population size and mutation rate) produce two candidate
sequences; an order-crossover refinement between them may improve on both; the
candidate with the best fitness is returned together with a comparison record.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from ...config import settings
from ...models.domain import Depot
from ..geospatial import distance_matrix_km
from .models import CandidateRoute, Route, RouteComparison, RouteStop

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OptimizerConfig:
    population_size: int = settings.optimizer_population_size
    max_generations: int = settings.optimizer_max_generations
    mutation_rate: float = settings.optimizer_mutation_rate
    elite_count: int = settings.optimizer_elite_count
    tournament_size: int = 5
    patience: int = settings.optimizer_patience
    convergence_threshold_km: float = 0.001
    refinement_iterations: int = settings.optimizer_refinement_iterations
    dual_route_comparison: bool = True
    time_limit_seconds: Optional[float] = settings.optimizer_time_limit_seconds
    seed: Optional[int] = settings.optimizer_seed
    average_speed_kmh: float = settings.average_speed_kmh
    service_minutes_per_stop: float = settings.service_minutes_per_stop
    road_distance_factor: float = settings.road_distance_factor
    fuel_km_per_liter: float = settings.fuel_km_per_liter
    fuel_price_per_liter: float = settings.fuel_price_per_liter


@dataclass(slots=True)
class _SearchResult:
    permutation: np.ndarray
    distance_km: float
    generations: int
    interrupted: bool = False


@dataclass(slots=True)
class _Problem:
    stop_ids: list[str]
    matrix: np.ndarray
    deadline: Optional[float]
    cancel_event: Optional[threading.Event]
    history: list[float] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.stop_ids)


def tour_distances(population: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Closed-tour length for each row of stop indices (depot is index 0)."""

    population = np.atleast_2d(population)
    total = matrix[0, population[:, 0]] + matrix[population[:, -1], 0]
    if population.shape[1] > 1:
        total = total + matrix[population[:, :-1], population[:, 1:]].sum(axis=1)
    return total


def order_crossover(parent1: np.ndarray, parent2: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """OX: keep a contiguous slice of parent1, fill the rest in parent2's order."""

    size = len(parent1)
    if size < 2:
        return parent1.copy()
    start = int(rng.integers(0, size))
    end = int(rng.integers(start, size))
    child = np.empty(size, dtype=parent1.dtype)
    child[start : end + 1] = parent1[start : end + 1]
    taken = set(parent1[start : end + 1].tolist())
    fill = [gene for gene in parent2.tolist() if gene not in taken]
    positions = [index for index in range(size) if index < start or index > end]
    child[positions] = fill
    return child


def swap_mutation(route: np.ndarray, rate: float, rng: np.random.Generator) -> np.ndarray:
    mutated = route.copy()
    size = len(mutated)
    for i in range(size):
        if rng.random() < rate:
            j = int(rng.integers(0, size))
            mutated[i], mutated[j] = mutated[j], mutated[i]
    return mutated


def nearest_neighbor_route(matrix: np.ndarray, start: int = 0) -> np.ndarray:
    """Greedy tour over stop indices 1..n, beginning at ``start`` (0 = depot)."""

    size = matrix.shape[0] - 1
    remaining = set(range(1, size + 1))
    route: list[int] = []
    current = start
    if start != 0:
        route.append(start)
        remaining.discard(start)
    while remaining:
        current = min(remaining, key=lambda index: (matrix[current, index], index))
        route.append(current)
        remaining.discard(current)
    return np.asarray(route, dtype=np.int64)


class GeneticRouteOptimizer:
    def __init__(self, config: OptimizerConfig | None = None) -> None:
        self.config = config or OptimizerConfig()

    # Public API --------------------------------------------------------

    def optimize(
        self,
        depot: Depot,
        stops: Sequence[RouteStop],
        *,
        cancel_event: threading.Event | None = None,
        seed: Optional[int] = None,
    ) -> Route:
        """Order the geocoded stops into a closed tour from the depot.

        `seed` overrides the configured seed for this run only.
        """
        run_seed = seed if seed is not None else self.config.seed
        stop_ids = [stop.stop_id for stop in stops]
        if len(set(stop_ids)) != len(stop_ids):
            raise ValueError("Stop ids must be unique within a route.")

        valid = [stop for stop in stops if stop.is_geocoded]
        unrouted = [stop.stop_id for stop in stops if not stop.is_geocoded]
        if unrouted:
            logger.warning(f"{len(unrouted)} stops have no coordinates and are excluded from optimization")
        if not valid:
            return self._build_route([], unrouted, 0.0, 0.0, 0, None, False)

        points = [(depot.latitude, depot.longitude), *((stop.latitude, stop.longitude) for stop in valid)]
        matrix = distance_matrix_km(points) * self.config.road_distance_factor
        deadline = (
            time.monotonic() + self.config.time_limit_seconds if self.config.time_limit_seconds else None
        )
        problem = _Problem(
            stop_ids=[stop.stop_id for stop in valid],
            matrix=matrix,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        lower_bound = 2.0 * float(matrix[0, 1:].max())

        if problem.size <= 2:
            # Both orders of two stops have the same closed-tour length.
            permutation = np.arange(1, problem.size + 1)
            distance = float(tour_distances(permutation, matrix)[0])
            sequence = self._to_ids(problem, permutation)
            return self._build_route(sequence, unrouted, distance, lower_bound, 0, None, False)

        logger.info(f"Optimizing route over {problem.size} stops (dual comparison: {self.config.dual_route_comparison})")
        if self.config.dual_route_comparison:
            return self._optimize_dual(problem, unrouted, lower_bound, run_seed)

        rng = np.random.default_rng(run_seed)
        result = self._run_search(problem, self.config.population_size, self.config.mutation_rate, rng)
        return self._build_route(
            self._to_ids(problem, result.permutation),
            unrouted,
            result.distance_km,
            lower_bound,
            result.generations,
            None,
            result.interrupted,
        )

    def fitness(self, distance_km: float, stop_count: int) -> float:
        """Higher is better; strictly decreasing in distance."""
        duration = self._duration_hours(distance_km, stop_count)
        return 1000.0 / (1.0 + distance_km + duration)

    # Dual-route comparison --------------------------------------------

    def _optimize_dual(
        self, problem: _Problem, unrouted: list[str], lower_bound: float, seed: Optional[int]
    ) -> Route:
        config = self.config
        seed_a, seed_b, seed_refine = np.random.SeedSequence(seed).spawn(3)

        result_a = self._run_search(
            problem,
            max(4, int(config.population_size * 0.8)),
            config.mutation_rate * 0.8,
            np.random.default_rng(seed_a),
        )
        result_b = self._run_search(
            problem,
            max(4, int(config.population_size * 1.2)),
            min(1.0, config.mutation_rate * 1.2),
            np.random.default_rng(seed_b),
        )
        route_a = self._candidate("A", problem, result_a)
        route_b = self._candidate("B", problem, result_b)

        better, other = (result_a, result_b) if result_a.distance_km <= result_b.distance_km else (result_b, result_a)
        refined_perm, refined_distance = self._refine(problem, better.permutation, other.permutation, seed_refine)
        refined = CandidateRoute(
            label="crossover",
            sequence=self._to_ids(problem, refined_perm),
            total_distance_km=refined_distance,
            fitness=self.fitness(refined_distance, problem.size),
            generations=0,
        )

        parents_best = min(route_a.total_distance_km, route_b.total_distance_km)
        if refined.total_distance_km < parents_best - 1e-9:
            selected = refined
            rejected = route_a if route_a.total_distance_km <= route_b.total_distance_km else route_b
        elif route_a.fitness >= route_b.fitness:
            selected, rejected = route_a, route_b
        else:
            selected, rejected = route_b, route_a

        comparison = RouteComparison(
            route_a=route_a,
            route_b=route_b,
            selected=selected.label,
            distance_improvement_km=max(0.0, rejected.total_distance_km - selected.total_distance_km),
            fitness_improvement=selected.fitness - rejected.fitness,
            refined=refined,
            refinement_iterations=config.refinement_iterations,
        )
        logger.info(
            f"Route A {route_a.total_distance_km:.2f}km, Route B {route_b.total_distance_km:.2f}km, "
            f"crossover {refined.total_distance_km:.2f}km -> selected {selected.label}"
        )
        return self._build_route(
            list(selected.sequence),
            unrouted,
            selected.total_distance_km,
            lower_bound,
            max(result_a.generations, result_b.generations),
            comparison,
            result_a.interrupted or result_b.interrupted,
        )

    def _refine(
        self,
        problem: _Problem,
        parent1: np.ndarray,
        parent2: np.ndarray,
        seed: np.random.SeedSequence,
    ) -> tuple[np.ndarray, float]:
        rng = np.random.default_rng(seed)
        best = parent1.copy()
        best_distance = float(tour_distances(best, problem.matrix)[0])
        for _ in range(self.config.refinement_iterations):
            offspring = order_crossover(best, parent2, rng)
            distance = float(tour_distances(offspring, problem.matrix)[0])
            if distance < best_distance:
                best, best_distance = offspring, distance
        return best, best_distance

    # Search ------------------------------------------------------------

    def _run_search(
        self,
        problem: _Problem,
        population_size: int,
        mutation_rate: float,
        rng: np.random.Generator,
    ) -> _SearchResult:
        config = self.config
        population = self._initial_population(problem, population_size, rng)
        distances = tour_distances(population, problem.matrix)
        best_index = int(np.argmin(distances))
        best = population[best_index].copy()
        best_distance = float(distances[best_index])

        stagnation = 0
        generation = 0
        interrupted = False
        while generation < config.max_generations:
            if self._should_stop(problem):
                interrupted = True
                logger.info(f"Search interrupted at generation {generation}; keeping best {best_distance:.2f}km")
                break
            try:
                population = self._evolve(population, distances, population_size, mutation_rate, rng)
                distances = tour_distances(population, problem.matrix)
            except Exception:
                logger.exception(f"Search failed at generation {generation}; keeping best {best_distance:.2f}km")
                interrupted = True
                break
            generation += 1

            index = int(np.argmin(distances))
            candidate = float(distances[index])
            if candidate < best_distance - config.convergence_threshold_km:
                stagnation = 0
            else:
                stagnation += 1
            if candidate < best_distance:
                best = population[index].copy()
                best_distance = candidate
            if stagnation >= config.patience:
                logger.debug(f"Converged at generation {generation} with distance {best_distance:.2f}km")
                break

        return _SearchResult(best, best_distance, generation, interrupted)

    def _initial_population(self, problem: _Problem, population_size: int, rng: np.random.Generator) -> np.ndarray:
        size = problem.size
        members: list[np.ndarray] = [
            np.arange(1, size + 1, dtype=np.int64),
            nearest_neighbor_route(problem.matrix),
        ]
        greedy_starts = min(size, max(1, population_size // 10))
        for start in rng.choice(np.arange(1, size + 1), size=greedy_starts, replace=False):
            members.append(nearest_neighbor_route(problem.matrix, int(start)))
        while len(members) < population_size:
            members.append(rng.permutation(np.arange(1, size + 1, dtype=np.int64)))
        return np.stack(members[:population_size])

    def _evolve(
        self,
        population: np.ndarray,
        distances: np.ndarray,
        population_size: int,
        mutation_rate: float,
        rng: np.random.Generator,
    ) -> np.ndarray:
        elite_count = min(self.config.elite_count, population_size)
        order = np.argsort(distances, kind="stable")
        offspring: list[np.ndarray] = [population[index].copy() for index in order[:elite_count]]
        while len(offspring) < population_size:
            parent1 = population[self._tournament(distances, rng)]
            parent2 = population[self._tournament(distances, rng)]
            child = order_crossover(parent1, parent2, rng)
            offspring.append(swap_mutation(child, mutation_rate, rng))
        return np.stack(offspring)

    def _tournament(self, distances: np.ndarray, rng: np.random.Generator) -> int:
        contenders = rng.integers(0, len(distances), size=self.config.tournament_size)
        return int(contenders[np.argmin(distances[contenders])])

    def _should_stop(self, problem: _Problem) -> bool:
        if problem.cancel_event is not None and problem.cancel_event.is_set():
            return True
        return problem.deadline is not None and time.monotonic() >= problem.deadline

    # Reporting ---------------------------------------------------------

    def _candidate(self, label: str, problem: _Problem, result: _SearchResult) -> CandidateRoute:
        return CandidateRoute(
            label=label,
            sequence=self._to_ids(problem, result.permutation),
            total_distance_km=result.distance_km,
            fitness=self.fitness(result.distance_km, problem.size),
            generations=result.generations,
        )

    @staticmethod
    def _to_ids(problem: _Problem, permutation: np.ndarray) -> list[str]:
        return [problem.stop_ids[int(index) - 1] for index in permutation]

    def _duration_hours(self, distance_km: float, stop_count: int) -> float:
        return distance_km / self.config.average_speed_kmh + stop_count * self.config.service_minutes_per_stop / 60.0

    def optimization_score(self, distance_km: float, lower_bound_km: float) -> float:
        """0-100; the farthest-stop round trip over the actual length."""
        if distance_km <= 0:
            return 100.0
        return float(min(100.0, max(0.0, 100.0 * lower_bound_km / distance_km)))

    def _build_route(
        self,
        sequence: list[str],
        unrouted: list[str],
        distance_km: float,
        lower_bound_km: float,
        generations: int,
        comparison: Optional[RouteComparison],
        interrupted: bool,
    ) -> Route:
        stop_count = len(sequence) + len(unrouted)
        return Route(
            sequence=sequence,
            unrouted_stop_ids=unrouted,
            total_distance_km=distance_km,
            estimated_duration_hours=self._duration_hours(distance_km, stop_count) if stop_count else 0.0,
            optimization_score=self.optimization_score(distance_km, lower_bound_km) if sequence else 0.0,
            fitness=self.fitness(distance_km, len(sequence)) if sequence else 0.0,
            fuel_cost_estimate=distance_km / self.config.fuel_km_per_liter * self.config.fuel_price_per_liter,
            generation_count=generations,
            comparison=comparison,
            interrupted=interrupted,
        )
