"""Batch state machine."""

from __future__ import annotations

import logging

from ...models.domain import BatchStatus, DeliveryStatus, live_weight
from ...persistence.repository import DispatchRepository

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({BatchStatus.DELIVERED, BatchStatus.MERGED, BatchStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset(
        {BatchStatus.READY_FOR_DELIVERY, BatchStatus.ASSIGNED, BatchStatus.MERGED, BatchStatus.CANCELLED}
    ),
    BatchStatus.READY_FOR_DELIVERY: frozenset({BatchStatus.ASSIGNED, BatchStatus.MERGED, BatchStatus.CANCELLED}),
    BatchStatus.ASSIGNED: frozenset({BatchStatus.DELIVERING, BatchStatus.DELIVERED, BatchStatus.CANCELLED}),
    BatchStatus.DELIVERING: frozenset({BatchStatus.DELIVERED, BatchStatus.CANCELLED}),
    BatchStatus.DELIVERED: frozenset(),
    BatchStatus.MERGED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}


def can_transition(current: BatchStatus, target: BatchStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: BatchStatus, target: BatchStatus) -> None:
    if not can_transition(current, target):
        raise ValueError(f"Batch cannot move from '{current.value}' to '{target.value}'")


def cancel_batch(repository: DispatchRepository, batch_id: str) -> list[str]:
    """Cancel a batch and release its undelivered orders for re-batching.

    Returns the ids of the released orders.
    """
    batch = repository.get_batch(batch_id)
    if batch is None:
        raise LookupError(f"Batch {batch_id} not found")
    ensure_transition(batch.status, BatchStatus.CANCELLED)

    released: list[str] = []
    for order in repository.list_batch_orders(batch_id):
        if order.delivery_status == DeliveryStatus.DELIVERED:
            continue
        repository.update_order(order.order_id, batch_id=None)
        released.append(order.order_id)

    repository.update_batch(
        batch_id,
        status=BatchStatus.CANCELLED,
        total_weight_kg=live_weight(repository.list_batch_orders(batch_id)),
    )
    logger.info(f"Cancelled batch {batch_id}, released {len(released)} orders")
    return released
