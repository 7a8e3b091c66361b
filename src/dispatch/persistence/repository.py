"""Persistence contract for the dispatch engine and its in-memory implementation."""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Iterable, Optional

from ..models.domain import (
    ApprovalStatus,
    Batch,
    BatchStatus,
    DeliveryStatus,
    Driver,
    Order,
)

UNSET: Any = object()


class PersistenceError(RuntimeError):
    """Raised when a single read or write against the store fails."""


class DispatchRepository(ABC):
    """Contract for the store holding orders, batches and drivers.

    Every write addresses exactly one order or batch so that callers can skip a
    single failed unit without abandoning the rest of a pass.
    """

    @abstractmethod
    def list_approved_orders_without_batch(self) -> list[Order]:
        raise NotImplementedError

    @abstractmethod
    def list_batches(self, states: Iterable[BatchStatus] | None = None) -> list[Batch]:
        raise NotImplementedError

    @abstractmethod
    def list_drivers_by_role(self, role: str) -> list[Driver]:
        raise NotImplementedError

    @abstractmethod
    def get_batch(self, batch_id: str) -> Optional[Batch]:
        raise NotImplementedError

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError

    @abstractmethod
    def list_batch_orders(self, batch_id: str) -> list[Order]:
        raise NotImplementedError

    @abstractmethod
    def create_batch(self, locality: str, *, created_at: datetime, max_weight_kg: float) -> Batch:
        raise NotImplementedError

    @abstractmethod
    def update_order(
        self,
        order_id: str,
        *,
        batch_id: Optional[str] = UNSET,
        delivery_status: Optional[DeliveryStatus] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_batch(
        self,
        batch_id: str,
        *,
        total_weight_kg: Optional[float] = None,
        locality: Optional[str] = None,
        status: Optional[BatchStatus] = None,
        driver_id: Optional[str] = UNSET,
        assigned_at: Optional[datetime] = UNSET,
        delivery_date: Optional[date] = UNSET,
    ) -> None:
        raise NotImplementedError


class InMemoryRepository(DispatchRepository):
    """Thread-safe dictionary-backed store used for local runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._orders: dict[str, Order] = {}
        self._batches: dict[str, Batch] = {}
        self._drivers: dict[str, Driver] = {}

    # Seeding helpers --------------------------------------------------

    def add_order(self, order: Order) -> Order:
        if order.weight_kg <= 0:
            raise ValueError(f"Order {order.order_id} must have a positive weight, got {order.weight_kg}")
        with self._lock:
            self._orders[order.order_id] = replace(order)
        return order

    def add_driver(self, driver: Driver) -> Driver:
        with self._lock:
            self._drivers[driver.driver_id] = replace(driver)
        return driver

    def set_order_weight(self, order_id: str, weight_kg: float) -> None:
        """Out-of-band weight edit, as made by the order management screens."""
        with self._lock:
            self._require_order(order_id).weight_kg = weight_kg

    # Reads -------------------------------------------------------------

    def list_approved_orders_without_batch(self) -> list[Order]:
        with self._lock:
            return [
                replace(order)
                for order in self._orders.values()
                if order.batch_id is None and order.approval_status == ApprovalStatus.APPROVED
            ]

    def list_batches(self, states: Iterable[BatchStatus] | None = None) -> list[Batch]:
        wanted = set(states) if states is not None else None
        with self._lock:
            return [
                self._snapshot(batch)
                for batch in self._batches.values()
                if wanted is None or batch.status in wanted
            ]

    def list_drivers_by_role(self, role: str) -> list[Driver]:
        with self._lock:
            return [replace(driver) for driver in self._drivers.values() if driver.role == role]

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        with self._lock:
            batch = self._batches.get(batch_id)
            return self._snapshot(batch) if batch else None

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return replace(order) if order else None

    def list_batch_orders(self, batch_id: str) -> list[Order]:
        with self._lock:
            return [
                replace(order)
                for order in self._orders.values()
                if order.batch_id == batch_id and order.approval_status == ApprovalStatus.APPROVED
            ]

    # Writes ------------------------------------------------------------

    def create_batch(self, locality: str, *, created_at: datetime, max_weight_kg: float) -> Batch:
        batch = Batch(
            batch_id=str(uuid.uuid4()),
            locality=locality,
            status=BatchStatus.PENDING,
            created_at=created_at,
            max_weight_kg=max_weight_kg,
        )
        with self._lock:
            self._batches[batch.batch_id] = batch
            return self._snapshot(batch)

    def update_order(
        self,
        order_id: str,
        *,
        batch_id: Optional[str] = UNSET,
        delivery_status: Optional[DeliveryStatus] = None,
    ) -> None:
        with self._lock:
            order = self._require_order(order_id)
            if batch_id is not UNSET:
                if batch_id is not None and batch_id not in self._batches:
                    raise PersistenceError(f"Batch {batch_id} does not exist")
                order.batch_id = batch_id
            if delivery_status is not None:
                order.delivery_status = delivery_status

    def update_batch(
        self,
        batch_id: str,
        *,
        total_weight_kg: Optional[float] = None,
        locality: Optional[str] = None,
        status: Optional[BatchStatus] = None,
        driver_id: Optional[str] = UNSET,
        assigned_at: Optional[datetime] = UNSET,
        delivery_date: Optional[date] = UNSET,
    ) -> None:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise PersistenceError(f"Batch {batch_id} does not exist")
            if total_weight_kg is not None:
                batch.total_weight_kg = total_weight_kg
            if locality is not None:
                batch.locality = locality
            if status is not None:
                batch.status = status
            if driver_id is not UNSET:
                batch.driver_id = driver_id
            if assigned_at is not UNSET:
                batch.assigned_at = assigned_at
            if delivery_date is not UNSET:
                batch.delivery_date = delivery_date

    # Internals ---------------------------------------------------------

    def _require_order(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise PersistenceError(f"Order {order_id} does not exist")
        return order

    def _snapshot(self, batch: Batch) -> Batch:
        members = [
            order.order_id
            for order in self._orders.values()
            if order.batch_id == batch.batch_id and order.approval_status == ApprovalStatus.APPROVED
        ]
        return replace(batch, order_ids=members)
