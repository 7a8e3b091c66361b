"""Wiring of the dispatch services around one repository."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..db.supabase import get_supabase_client
from ..persistence.database import SupabaseRepository
from ..persistence.repository import DispatchRepository, InMemoryRepository
from .assignment import AssignmentScheduler
from .batching import BatchFormation, BatchMerger
from .clock import Clock, utc_now
from .dispatch import DispatchCycle, DispatchScheduler
from .notifications import Notifier, build_notifier
from .progress import DeliveryProgressTracker
from .routing import RouteService

logger = logging.getLogger(__name__)


class DispatchEngine:
    def __init__(
        self,
        repository: DispatchRepository,
        *,
        notifier: Notifier | None = None,
        route_service: RouteService | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.notifier = notifier or build_notifier()
        self.clock = clock
        self.formation = BatchFormation(repository, clock=clock)
        self.merger = BatchMerger(repository)
        self.assignment = AssignmentScheduler(repository, self.notifier, clock=clock)
        self.routes = route_service or RouteService(repository)
        self.tracker = DeliveryProgressTracker(repository, self.notifier)
        self.cycle = DispatchCycle(
            repository,
            formation=self.formation,
            merger=self.merger,
            scheduler=self.assignment,
            route_service=self.routes,
            clock=clock,
        )
        self.scheduler = DispatchScheduler(self.cycle)

    def release_batch(self, batch_id: str) -> None:
        """Drop per-batch state held in memory once the batch is finished."""
        self.routes.invalidate(batch_id)
        self.tracker.forget(batch_id)

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.routes.shutdown()
        close = getattr(self.notifier, "close", None)
        if close is not None:
            close()


def build_repository() -> DispatchRepository:
    client = get_supabase_client()
    if client is None:
        logger.warning("Supabase not configured - using the in-memory repository; data will not persist")
        return InMemoryRepository()
    return SupabaseRepository(client)


@lru_cache
def get_engine() -> DispatchEngine:
    return DispatchEngine(build_repository())
