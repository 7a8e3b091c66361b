"""Driver assignment with a once-per-service-day rule."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import ACTIVE_BATCH_STATES, OPEN_BATCH_STATES, Batch, BatchStatus, Driver, live_weight
from ...persistence.repository import DispatchRepository
from ..clock import Clock, service_day, utc_now
from ..notifications import Notifier

logger = logging.getLogger(__name__)


class AssignmentScheduler:
    """Bind eligible batches to drivers who have not worked the current service day.

    Driver availability is derived from the live batch bindings on every call;
    nothing about "today" is cached between cycles.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        notifier: Notifier | None = None,
        *,
        threshold_kg: float | None = None,
        driver_role: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.notifier = notifier or Notifier()
        self.threshold_kg = threshold_kg if threshold_kg is not None else settings.assignment_threshold_kg
        self.driver_role = driver_role or settings.driver_role
        self.clock = clock
        self._lock = threading.Lock()

    def is_eligible(self, batch: Batch, *, enforce_threshold: bool = True) -> bool:
        if batch.status not in OPEN_BATCH_STATES or batch.driver_id:
            return False
        if not (batch.locality or "").strip():
            logger.warning(f"Batch {batch.batch_id} has no locality label; not assignable")
            return False
        if not enforce_threshold:
            return True
        weight = live_weight(self.repository.list_batch_orders(batch.batch_id))
        return weight >= self.threshold_kg

    def busy_driver_ids(self) -> set[str]:
        """Drivers already bound to an active batch within the current service day."""
        today = service_day(self.clock())
        busy: set[str] = set()
        for batch in self.repository.list_batches(ACTIVE_BATCH_STATES):
            if not batch.driver_id:
                continue
            bound_at = batch.assigned_at or batch.created_at
            if bound_at is not None and service_day(bound_at) == today:
                busy.add(batch.driver_id)
        return busy

    def available_drivers(self) -> list[Driver]:
        busy = self.busy_driver_ids()
        return [driver for driver in self.repository.list_drivers_by_role(self.driver_role) if driver.driver_id not in busy]

    def assign(self, batch: Batch) -> Optional[str]:
        """Bind the batch to the first available driver.

        Returns the driver id, or None when the batch is not eligible or every
        driver has already been used today.
        """
        with self._lock:
            current = self.repository.get_batch(batch.batch_id)
            if current is None or not self.is_eligible(current):
                return None
            drivers = self.available_drivers()
            if not drivers:
                logger.info(f"Batch {current.batch_id} is ready but no driver is available today")
                return None
            driver = drivers[0]
            self._bind(current, driver)
        self._notify_assigned(current.batch_id, driver)
        return driver.driver_id

    def assign_manually(self, batch_id: str, driver_id: str) -> Batch:
        """Operator override: bind a specific driver, skipping the weight threshold."""
        with self._lock:
            batch = self.repository.get_batch(batch_id)
            if batch is None:
                raise LookupError(f"Batch {batch_id} not found")
            if not self.is_eligible(batch, enforce_threshold=False):
                raise ValueError(f"Batch {batch_id} cannot be assigned in state '{batch.status.value}'")
            driver = next(
                (item for item in self.repository.list_drivers_by_role(self.driver_role) if item.driver_id == driver_id),
                None,
            )
            if driver is None:
                raise LookupError(f"Driver {driver_id} not found")
            if driver_id in self.busy_driver_ids():
                raise ValueError(f"Driver {driver_id} already has a batch for this service day")
            self._bind(batch, driver)
        self._notify_assigned(batch_id, driver)
        return self.repository.get_batch(batch_id)

    def assign_ready(self, batches: Sequence[Batch] | None = None) -> dict[str, str]:
        """Try every open batch, oldest first. Returns batch id -> driver id."""
        candidates = list(batches) if batches is not None else self.repository.list_batches(OPEN_BATCH_STATES)
        candidates.sort(key=lambda item: (item.created_at, item.batch_id))
        assigned: dict[str, str] = {}
        for batch in candidates:
            driver_id = self.assign(batch)
            if driver_id:
                assigned[batch.batch_id] = driver_id
        return assigned

    def _bind(self, batch: Batch, driver: Driver) -> None:
        now = self.clock()
        self.repository.update_batch(
            batch.batch_id,
            driver_id=driver.driver_id,
            status=BatchStatus.ASSIGNED,
            assigned_at=now,
            delivery_date=service_day(now),
        )
        logger.info(f"Batch {batch.batch_id} '{batch.locality}' assigned to driver {driver.name or driver.driver_id}")

    def _notify_assigned(self, batch_id: str, driver: Driver) -> None:
        try:
            batch = self.repository.get_batch(batch_id)
            if batch is not None:
                self.notifier.batch_assigned(batch, driver)
        except Exception:
            logger.exception(f"Assignment notification for batch {batch_id} failed; assignment kept")
