"""Route orchestration: per-batch caching and background computation."""

from __future__ import annotations

import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import FINISHED_BATCH_STATES, Batch, Depot, Order
from ...persistence.filesystem import FileStorage
from ...persistence.repository import DispatchRepository
from ..outputs.route_formatter import route_to_csv, route_to_json
from .models import Route, RouteStop
from .optimizer import GeneticRouteOptimizer

logger = logging.getLogger(__name__)

Fingerprint = frozenset


def default_depot() -> Depot:
    return Depot(name=settings.depot_name, latitude=settings.depot_latitude, longitude=settings.depot_longitude)


def stops_from_orders(orders: Sequence[Order]) -> list[RouteStop]:
    ordered = sorted(orders, key=lambda order: order.order_id)
    return [
        RouteStop(
            stop_id=order.order_id,
            latitude=order.latitude,
            longitude=order.longitude,
            weight_kg=order.weight_kg,
            value=order.value,
        )
        for order in ordered
    ]


def stop_fingerprint(stops: Sequence[RouteStop]) -> Fingerprint:
    """Identity of a stop set: ids and locations only, never delivery state."""
    return frozenset((stop.stop_id, stop.latitude, stop.longitude) for stop in stops)


def fingerprint_seed(fingerprint: Fingerprint) -> int:
    """Stable optimizer seed for a stop set, identical across processes."""
    canonical = repr(sorted(fingerprint, key=lambda item: item[0]))
    digest = hashlib.sha256(canonical.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class RouteService:
    """Computes a batch's route once and reuses it until its stop set changes."""

    def __init__(
        self,
        repository: DispatchRepository,
        optimizer: GeneticRouteOptimizer | None = None,
        *,
        depot: Depot | None = None,
        storage: FileStorage | None = None,
        persist_reports: bool | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.repository = repository
        self.optimizer = optimizer or GeneticRouteOptimizer()
        self.depot = depot or default_depot()
        self.persist_reports = persist_reports if persist_reports is not None else settings.persist_route_reports
        self._storage = storage
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.optimizer_workers, thread_name_prefix="route"
        )
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[Fingerprint, Route]] = {}
        self._pending: dict[str, Future] = {}

    def stops_for_batch(self, batch_id: str) -> list[RouteStop]:
        self._require_batch(batch_id)
        return stops_from_orders(self.repository.list_batch_orders(batch_id))

    def cached_route(self, batch_id: str) -> Optional[Route]:
        """Return the cached route if the batch's stop set is unchanged."""
        stops = self.stops_for_batch(batch_id)
        with self._lock:
            entry = self._cache.get(batch_id)
        if entry is None or entry[0] != stop_fingerprint(stops):
            return None
        return entry[1]

    def route_for(self, batch_id: str) -> Route:
        cached = self.cached_route(batch_id)
        if cached is not None:
            return cached
        return self.compute(batch_id)

    def compute(self, batch_id: str) -> Route:
        """Optimize the batch's stops, seeded from the stop set when no seed is configured.

        Routes of finished batches are returned without being cached.
        """
        batch = self._require_batch(batch_id)
        stops = stops_from_orders(self.repository.list_batch_orders(batch_id))
        fingerprint = stop_fingerprint(stops)
        with self._lock:
            entry = self._cache.get(batch_id)
        if entry is not None and entry[0] == fingerprint:
            return entry[1]

        logger.info(f"Optimizing route for batch {batch_id} ({len(stops)} stops)")
        seed = self.optimizer.config.seed
        if seed is None:
            seed = fingerprint_seed(fingerprint)
        route = self.optimizer.optimize(self.depot, stops, seed=seed)
        route.metadata["batch_id"] = batch_id
        if batch.status not in FINISHED_BATCH_STATES:
            with self._lock:
                self._cache[batch_id] = (fingerprint, route)
        if self.persist_reports:
            self._persist(batch_id, route)
        return route

    def submit(self, batch_id: str) -> Future:
        """Compute in the background; concurrent submissions share one future."""
        with self._lock:
            pending = self._pending.get(batch_id)
            if pending is not None and not pending.done():
                return pending
            future = self._executor.submit(self._compute_logged, batch_id)
            self._pending[batch_id] = future
        future.add_done_callback(lambda done: self._forget_pending(batch_id, done))
        return future

    def invalidate(self, batch_id: str) -> None:
        """Drop the cached route, e.g. once the batch is delivered or cancelled."""
        with self._lock:
            self._cache.pop(batch_id, None)

    def cached_batch_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._cache)

    def pending_batch_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _require_batch(self, batch_id: str) -> Batch:
        batch = self.repository.get_batch(batch_id)
        if batch is None:
            raise LookupError(f"Batch {batch_id} not found")
        return batch

    def _forget_pending(self, batch_id: str, future: Future) -> None:
        with self._lock:
            if self._pending.get(batch_id) is future:
                del self._pending[batch_id]

    def _compute_logged(self, batch_id: str) -> Route:
        try:
            return self.compute(batch_id)
        except Exception:
            logger.exception(f"Route computation for batch {batch_id} failed")
            raise

    def _persist(self, batch_id: str, route: Route) -> None:
        try:
            storage = self._storage or FileStorage()
            run_dir = storage.make_run_directory(prefix=f"route_{batch_id}")
            storage.write_json(run_dir / "route.json", route_to_json(route, batch_id=batch_id))
            storage.write_csv(run_dir / "stops.csv", route_to_csv(route, batch_id=batch_id))
        except OSError as exc:
            logger.warning(f"Failed to write route report for batch {batch_id}: {exc}")
