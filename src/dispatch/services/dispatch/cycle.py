"""The recurring form -> promote -> merge -> assign pipeline."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional

from ...config import settings
from ...models.domain import BatchStatus, live_weight
from ...persistence.repository import DispatchRepository, PersistenceError
from ..assignment import AssignmentScheduler
from ..batching import BatchFormation, BatchMerger, FormationResult, MergePlan
from ..batching.lifecycle import can_transition
from ..clock import Clock, next_service_day_start, service_day, to_local, utc_now
from ..routing.service import RouteService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CycleReport:
    started_at: datetime
    formation: FormationResult = field(default_factory=FormationResult)
    promoted: list[str] = field(default_factory=list)
    merge: MergePlan = field(default_factory=MergePlan)
    assignments: dict[str, str] = field(default_factory=dict)
    routes_submitted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def consolidation_cutoff(now: datetime, *, cutoff_hour: int | None = None) -> Optional[datetime]:
    """The cutoff moment belonging to ``now``'s service day, in local time."""
    hour = settings.consolidation_cutoff_hour if cutoff_hour is None else cutoff_hour
    if hour is None:
        return None
    day = service_day(now)
    local = to_local(now)
    cutoff = datetime.combine(day, time(hour=hour), tzinfo=local.tzinfo)
    if hour < settings.service_day_start_hour:
        cutoff += timedelta(days=1)
    return cutoff


class DispatchCycle:
    def __init__(
        self,
        repository: DispatchRepository,
        *,
        formation: BatchFormation | None = None,
        merger: BatchMerger | None = None,
        scheduler: AssignmentScheduler | None = None,
        route_service: RouteService | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.formation = formation or BatchFormation(repository, clock=clock)
        self.merger = merger or BatchMerger(repository)
        self.scheduler = scheduler or AssignmentScheduler(repository, clock=clock)
        self.route_service = route_service
        self._lock = threading.Lock()

    def run_once(self) -> CycleReport:
        """Run every stage once. A failing stage is logged and the next stage still runs."""
        with self._lock:
            report = CycleReport(started_at=self.clock())
            try:
                report.formation = self.formation.form_pending()
            except Exception as exc:
                logger.exception("Batch formation stage failed")
                report.errors.append(f"formation: {exc}")
            try:
                report.promoted = self.promote()
            except Exception as exc:
                logger.exception("Promotion stage failed")
                report.errors.append(f"promotion: {exc}")
            try:
                report.merge = self.merger.merge_pass()
            except Exception as exc:
                logger.exception("Merge stage failed")
                report.errors.append(f"merge: {exc}")
            try:
                report.assignments = self.scheduler.assign_ready()
            except Exception as exc:
                logger.exception("Assignment stage failed")
                report.errors.append(f"assignment: {exc}")

            if self.route_service is not None:
                for batch_id in report.assignments:
                    self.route_service.submit(batch_id)
                    report.routes_submitted.append(batch_id)

        logger.info(
            f"Dispatch cycle: {len(report.formation.assignments)} orders batched, "
            f"{len(report.promoted)} promoted, {report.merge.merged_batch_count} merged, "
            f"{len(report.assignments)} assigned"
        )
        return report

    def promote(self) -> list[str]:
        """Move pending batches to ready_for_delivery.

        A batch is promoted when its live weight reaches the assignment
        threshold, or when it was opened before today's consolidation cutoff
        and the cutoff has passed.
        """
        now = self.clock()
        cutoff = consolidation_cutoff(now)
        past_cutoff = cutoff is not None and to_local(now) >= cutoff
        promoted: list[str] = []
        for batch in self.repository.list_batches([BatchStatus.PENDING]):
            if not can_transition(batch.status, BatchStatus.READY_FOR_DELIVERY):
                continue
            try:
                weight = live_weight(self.repository.list_batch_orders(batch.batch_id))
                if weight <= 0:
                    continue
                reached = weight >= self.scheduler.threshold_kg
                consolidated = past_cutoff and to_local(batch.created_at) < cutoff
                if not (reached or consolidated):
                    continue
                self.repository.update_batch(
                    batch.batch_id, status=BatchStatus.READY_FOR_DELIVERY, total_weight_kg=weight
                )
            except PersistenceError as exc:
                logger.error(f"Could not promote batch {batch.batch_id}: {exc}")
                continue
            promoted.append(batch.batch_id)
            logger.info(
                f"Batch {batch.batch_id} '{batch.locality}' ready for delivery "
                f"({weight:.1f}kg{', consolidation cutoff' if not reached else ''})"
            )
        return promoted


class DispatchScheduler:
    """Background thread running the cycle on an interval, on demand and at the day boundary."""

    def __init__(self, cycle: DispatchCycle, *, interval_seconds: float | None = None) -> None:
        self.cycle = cycle
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.cycle_interval_seconds
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[CycleReport] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="dispatch-cycle", daemon=True)
        self._thread.start()
        logger.info(f"Dispatch scheduler started (interval {self.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Dispatch scheduler stopped")

    def trigger(self) -> None:
        """Wake the loop now, e.g. after an order was approved."""
        self._wake.set()

    def seconds_until_next_run(self) -> float:
        now = self.cycle.clock()
        boundary = next_service_day_start(now)
        until_boundary = (boundary - to_local(now)).total_seconds()
        return max(0.0, min(float(self.interval_seconds), until_boundary))

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.last_report = self.cycle.run_once()
            except Exception:
                logger.exception("Dispatch cycle crashed; retrying on next tick")
            self._wake.wait(self.seconds_until_next_run())
            self._wake.clear()
