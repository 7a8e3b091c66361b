"""Domain models for orders, batches, drivers and the depot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"


class BatchStatus(str, Enum):
    PENDING = "pending"
    READY_FOR_DELIVERY = "ready_for_delivery"
    ASSIGNED = "assigned"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    MERGED = "merged"
    CANCELLED = "cancelled"


OPEN_BATCH_STATES = (BatchStatus.PENDING, BatchStatus.READY_FOR_DELIVERY)
ACTIVE_BATCH_STATES = (BatchStatus.ASSIGNED, BatchStatus.DELIVERING)
FINISHED_BATCH_STATES = (BatchStatus.DELIVERED, BatchStatus.MERGED, BatchStatus.CANCELLED)


@dataclass(slots=True)
class Order:
    """An approved customer order waiting for, or travelling in, a batch."""

    order_id: str
    weight_kg: float
    value: float
    locality: Optional[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    batch_id: Optional[str] = None

    @property
    def is_geocoded(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_delivered(self) -> bool:
        return self.delivery_status == DeliveryStatus.DELIVERED


@dataclass(slots=True)
class Batch:
    """A capacity-bounded group of orders destined for one driver trip.

    ``total_weight_kg`` is the last persisted aggregate. Capacity decisions must
    use :func:`live_weight` over the member orders instead.
    """

    batch_id: str
    locality: str
    status: BatchStatus
    created_at: datetime
    order_ids: list[str] = field(default_factory=list)
    total_weight_kg: float = 0.0
    max_weight_kg: float = 5000.0
    driver_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    delivery_date: Optional[date] = None


@dataclass(slots=True)
class Driver:
    driver_id: str
    name: str
    role: str = "driver"


@dataclass(slots=True)
class Depot:
    """Represents the distribution center every route starts and ends at."""

    name: str
    latitude: float
    longitude: float


def live_weight(orders: list[Order]) -> float:
    """Sum of the member order weights; the authoritative batch weight."""

    return float(sum(order.weight_kg for order in orders))
