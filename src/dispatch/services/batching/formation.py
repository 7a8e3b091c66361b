"""Capacity-bounded batch formation for approved orders."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ...config import settings
from ...models.domain import Batch, BatchStatus, Order, live_weight
from ...persistence.repository import DispatchRepository, PersistenceError
from ..clock import Clock, utc_now

logger = logging.getLogger(__name__)


def normalize_locality(label: Optional[str]) -> str:
    return " ".join((label or "").split()).casefold()


@dataclass(slots=True)
class FormationResult:
    assignments: dict[str, str] = field(default_factory=dict)
    created_batches: list[str] = field(default_factory=list)
    skipped_orders: list[str] = field(default_factory=list)
    failed_orders: list[str] = field(default_factory=list)


class BatchFormation:
    """Place approved orders into an open batch for their locality."""

    def __init__(
        self,
        repository: DispatchRepository,
        *,
        capacity_kg: float | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.capacity_kg = capacity_kg if capacity_kg is not None else settings.batch_capacity_kg
        self.clock = clock

    def assign(self, order: Order) -> Optional[str]:
        """Add the order to a fitting pending batch, or open a new one.

        Returns the batch id, or None when the order cannot be batched.
        """
        locality = (order.locality or "").strip()
        if not locality:
            logger.warning(f"Order {order.order_id} has no locality label; leaving it unbatched")
            return None
        if order.weight_kg <= 0:
            logger.warning(
                f"Order {order.order_id} has a non-positive weight ({order.weight_kg}kg); leaving it unbatched"
            )
            return None
        if order.weight_kg > self.capacity_kg:
            logger.warning(
                f"Order {order.order_id} weighs {order.weight_kg:.1f}kg, above the "
                f"{self.capacity_kg:.0f}kg batch ceiling; leaving it unbatched"
            )
            return None

        target = self._find_open_batch(locality, order.weight_kg)
        if target is None:
            target = self.repository.create_batch(
                locality,
                created_at=self.clock(),
                max_weight_kg=self.capacity_kg,
            )
            logger.info(f"Opened batch {target.batch_id} for '{locality}'")

        self.repository.update_order(order.order_id, batch_id=target.batch_id)
        weight = self.refresh_weight(target.batch_id)
        logger.info(
            f"Order {order.order_id} ({order.weight_kg:.1f}kg) -> batch {target.batch_id} "
            f"'{target.locality}', now {weight:.1f}/{self.capacity_kg:.0f}kg"
        )
        return target.batch_id

    def form_pending(self) -> FormationResult:
        """Batch every approved order that does not have a batch yet."""
        result = FormationResult()
        known_batches = {batch.batch_id for batch in self.repository.list_batches([BatchStatus.PENDING])}

        for order in self.repository.list_approved_orders_without_batch():
            try:
                batch_id = self.assign(order)
            except PersistenceError as exc:
                logger.error(f"Failed to batch order {order.order_id}: {exc}")
                result.failed_orders.append(order.order_id)
                continue
            if batch_id is None:
                result.skipped_orders.append(order.order_id)
                continue
            result.assignments[order.order_id] = batch_id
            if batch_id not in known_batches:
                known_batches.add(batch_id)
                result.created_batches.append(batch_id)
        return result

    def refresh_weight(self, batch_id: str) -> float:
        """Recompute and store the batch weight from its current members."""
        weight = live_weight(self.repository.list_batch_orders(batch_id))
        self.repository.update_batch(batch_id, total_weight_kg=weight)
        return weight

    def _find_open_batch(self, locality: str, weight_kg: float) -> Optional[Batch]:
        key = normalize_locality(locality)
        candidates = [
            batch
            for batch in self.repository.list_batches([BatchStatus.PENDING])
            if normalize_locality(batch.locality) == key
        ]
        candidates.sort(key=lambda batch: (batch.created_at, batch.batch_id))
        for batch in candidates:
            current = live_weight(self.repository.list_batch_orders(batch.batch_id))
            if current + weight_kg <= self.capacity_kg:
                return batch
        return None
