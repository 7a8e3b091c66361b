"""Driver-side delivery progress along an optimized route."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from ...models.domain import ACTIVE_BATCH_STATES, Batch, BatchStatus, DeliveryStatus, Order
from ...persistence.repository import DispatchRepository
from ..batching.lifecycle import ensure_transition
from ..notifications import Notifier
from ..routing.models import Route

logger = logging.getLogger(__name__)


class DeliveryPermissionError(PermissionError):
    """The caller is not the driver bound to the batch."""


@dataclass(slots=True)
class StopCompletion:
    batch_id: str
    stop_id: str
    already_completed: bool
    next_stop_id: Optional[str]
    completed_count: int
    total_stops: int
    batch_status: BatchStatus
    batch_completed: bool = False


@dataclass(slots=True)
class DeliveryProgress:
    batch_id: str
    status: BatchStatus
    driver_id: Optional[str]
    completed_stop_ids: list[str] = field(default_factory=list)
    remaining_stop_ids: list[str] = field(default_factory=list)
    next_stop_id: Optional[str] = None

    @property
    def total_stops(self) -> int:
        return len(self.completed_stop_ids) + len(self.remaining_stop_ids)

    @property
    def percent_complete(self) -> float:
        if not self.total_stops:
            return 0.0
        return round(100.0 * len(self.completed_stop_ids) / self.total_stops, 1)


def _planned_order(route: Route, orders: dict[str, Order]) -> list[str]:
    """Route order first; members the route does not know about go last."""
    planned = [stop_id for stop_id in route.planned_stop_ids if stop_id in orders]
    known = set(planned)
    planned.extend(sorted(order_id for order_id in orders if order_id not in known))
    return planned


class DeliveryProgressTracker:
    def __init__(self, repository: DispatchRepository, notifier: Notifier | None = None) -> None:
        self.repository = repository
        self.notifier = notifier or Notifier()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def complete_stop(self, batch_id: str, route: Route, stop_id: str, driver_id: str) -> StopCompletion:
        """Mark one stop delivered and report the next one.

        Completing an already delivered stop is a no-op that returns the
        current progress.
        """
        finalized: Optional[Batch] = None
        with self._lock_for(batch_id):
            batch = self.authorize(batch_id, driver_id)

            orders = {order.order_id: order for order in self.repository.list_batch_orders(batch_id)}
            if stop_id not in orders or stop_id not in route.planned_stop_ids:
                raise ValueError(f"Stop {stop_id} is not part of batch {batch_id}'s route")

            already = orders[stop_id].is_delivered
            if not already:
                if batch.status not in ACTIVE_BATCH_STATES:
                    raise ValueError(f"Batch {batch_id} is '{batch.status.value}'; stops cannot be completed")
                self.repository.update_order(stop_id, delivery_status=DeliveryStatus.DELIVERED)
                orders[stop_id].delivery_status = DeliveryStatus.DELIVERED
                logger.info(f"Stop {stop_id} of batch {batch_id} delivered by driver {driver_id}")

            status = batch.status
            if status == BatchStatus.ASSIGNED:
                ensure_transition(status, BatchStatus.DELIVERING)
                self.repository.update_batch(batch_id, status=BatchStatus.DELIVERING)
                status = BatchStatus.DELIVERING

            planned = _planned_order(route, orders)
            remaining = [item for item in planned if not orders[item].is_delivered]
            if not remaining and status in ACTIVE_BATCH_STATES:
                ensure_transition(status, BatchStatus.DELIVERED)
                self.repository.update_batch(batch_id, status=BatchStatus.DELIVERED)
                status = BatchStatus.DELIVERED
                finalized = self.repository.get_batch(batch_id)
                logger.info(f"Batch {batch_id} delivered: all {len(planned)} stops completed")

            result = StopCompletion(
                batch_id=batch_id,
                stop_id=stop_id,
                already_completed=already,
                next_stop_id=remaining[0] if remaining else None,
                completed_count=len(planned) - len(remaining),
                total_stops=len(planned),
                batch_status=status,
                batch_completed=finalized is not None,
            )

        if finalized is not None:
            try:
                self.notifier.batch_delivered(finalized)
            except Exception:
                logger.exception(f"Delivery notification for batch {batch_id} failed")
        return result

    def authorize(self, batch_id: str, driver_id: str) -> Batch:
        """Return the batch if `driver_id` is the driver bound to it."""
        batch = self._require_batch(batch_id)
        if not batch.driver_id or batch.driver_id != driver_id:
            raise DeliveryPermissionError(f"Driver {driver_id} is not assigned to batch {batch_id}")
        return batch

    def progress(self, batch_id: str, route: Route) -> DeliveryProgress:
        batch = self._require_batch(batch_id)
        orders = {order.order_id: order for order in self.repository.list_batch_orders(batch_id)}
        planned = _planned_order(route, orders)
        completed = [item for item in planned if orders[item].is_delivered]
        remaining = [item for item in planned if not orders[item].is_delivered]
        return DeliveryProgress(
            batch_id=batch_id,
            status=batch.status,
            driver_id=batch.driver_id,
            completed_stop_ids=completed,
            remaining_stop_ids=remaining,
            next_stop_id=remaining[0] if remaining else None,
        )

    def _require_batch(self, batch_id: str) -> Batch:
        batch = self.repository.get_batch(batch_id)
        if batch is None:
            raise LookupError(f"Batch {batch_id} not found")
        return batch

    def forget(self, batch_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(batch_id, None)

    def tracked_batch_ids(self) -> list[str]:
        with self._locks_guard:
            return sorted(self._locks)

    def _lock_for(self, batch_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(batch_id, threading.Lock())
