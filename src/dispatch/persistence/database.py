"""Supabase persistence for orders, batches and drivers."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional

from supabase import Client

from ..models.domain import (
    ApprovalStatus,
    Batch,
    BatchStatus,
    DeliveryStatus,
    Driver,
    Order,
)
from .repository import UNSET, DispatchRepository, PersistenceError

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "id, batch_id, total_weight, total, approval_status, delivery_status, delivery_address, "
    "items:order_items(quantity, product:products(weight))"
)
BATCH_COLUMNS = "id, barangay, total_weight, max_weight, status, driver_id, created_at, assigned_at, delivery_date"


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def order_weight_from_row(row: dict) -> float:
    """Weight of an order row, derived from its line items when they are present."""

    items = row.get("items") or []
    if items:
        total = 0.0
        for item in items:
            product = item.get("product") or {}
            total += (_coerce_float(product.get("weight")) or 0.0) * (_coerce_float(item.get("quantity")) or 0.0)
        return total
    return _coerce_float(row.get("total_weight")) or 0.0


def order_from_row(row: dict) -> Order:
    address = row.get("delivery_address") or {}
    locality = (address.get("barangay") or "").strip() or None
    return Order(
        order_id=str(row["id"]),
        weight_kg=order_weight_from_row(row),
        value=_coerce_float(row.get("total")) or 0.0,
        locality=locality,
        latitude=_coerce_float(address.get("latitude")),
        longitude=_coerce_float(address.get("longitude")),
        approval_status=ApprovalStatus(row.get("approval_status") or ApprovalStatus.PENDING.value),
        delivery_status=DeliveryStatus(row.get("delivery_status") or DeliveryStatus.PENDING.value),
        batch_id=str(row["batch_id"]) if row.get("batch_id") else None,
    )


def batch_from_row(row: dict, order_ids: list[str] | None = None) -> Batch:
    return Batch(
        batch_id=str(row["id"]),
        locality=row.get("barangay") or "",
        status=BatchStatus(row.get("status") or BatchStatus.PENDING.value),
        created_at=_parse_datetime(row.get("created_at")),
        order_ids=list(order_ids or []),
        total_weight_kg=_coerce_float(row.get("total_weight")) or 0.0,
        max_weight_kg=_coerce_float(row.get("max_weight")) or 0.0,
        driver_id=str(row["driver_id"]) if row.get("driver_id") else None,
        assigned_at=_parse_datetime(row.get("assigned_at")),
        delivery_date=_parse_date(row.get("delivery_date")),
    )


class SupabaseRepository(DispatchRepository):
    """Repository backed by the ``orders``, ``order_batches`` and ``profiles`` tables."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def _execute(self, query: Any, action: str) -> list[dict]:
        try:
            response = query.execute()
        except Exception as exc:
            raise PersistenceError(f"Supabase {action} failed: {exc}") from exc
        return list(response.data or [])

    def list_approved_orders_without_batch(self) -> list[Order]:
        rows = self._execute(
            self.client.table("orders")
            .select(ORDER_COLUMNS)
            .eq("approval_status", ApprovalStatus.APPROVED.value)
            .is_("batch_id", "null"),
            "order listing",
        )
        return [order_from_row(row) for row in rows]

    def list_batches(self, states: Iterable[BatchStatus] | None = None) -> list[Batch]:
        query = self.client.table("order_batches").select(BATCH_COLUMNS).order("created_at")
        if states is not None:
            query = query.in_("status", [state.value for state in states])
        rows = self._execute(query, "batch listing")
        if not rows:
            return []

        members: dict[str, list[str]] = {}
        member_rows = self._execute(
            self.client.table("orders")
            .select("id, batch_id")
            .eq("approval_status", ApprovalStatus.APPROVED.value)
            .in_("batch_id", [row["id"] for row in rows]),
            "batch membership listing",
        )
        for member in member_rows:
            members.setdefault(str(member["batch_id"]), []).append(str(member["id"]))
        return [batch_from_row(row, members.get(str(row["id"]))) for row in rows]

    def list_drivers_by_role(self, role: str) -> list[Driver]:
        rows = self._execute(
            self.client.table("profiles").select("id, name, role").eq("role", role).order("id"),
            "driver listing",
        )
        return [Driver(driver_id=str(row["id"]), name=row.get("name") or "", role=row.get("role") or role) for row in rows]

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        rows = self._execute(
            self.client.table("order_batches").select(BATCH_COLUMNS).eq("id", batch_id).limit(1),
            f"batch {batch_id} lookup",
        )
        if not rows:
            return None
        member_ids = [order.order_id for order in self.list_batch_orders(batch_id)]
        return batch_from_row(rows[0], member_ids)

    def get_order(self, order_id: str) -> Optional[Order]:
        rows = self._execute(
            self.client.table("orders").select(ORDER_COLUMNS).eq("id", order_id).limit(1),
            f"order {order_id} lookup",
        )
        return order_from_row(rows[0]) if rows else None

    def list_batch_orders(self, batch_id: str) -> list[Order]:
        rows = self._execute(
            self.client.table("orders")
            .select(ORDER_COLUMNS)
            .eq("batch_id", batch_id)
            .eq("approval_status", ApprovalStatus.APPROVED.value),
            f"batch {batch_id} orders listing",
        )
        return [order_from_row(row) for row in rows]

    def create_batch(self, locality: str, *, created_at: datetime, max_weight_kg: float) -> Batch:
        rows = self._execute(
            self.client.table("order_batches").insert(
                {
                    "barangay": locality,
                    "status": BatchStatus.PENDING.value,
                    "total_weight": 0,
                    "max_weight": max_weight_kg,
                    "created_at": created_at.isoformat(),
                }
            ),
            "batch creation",
        )
        if not rows:
            raise PersistenceError(f"Batch creation for '{locality}' returned no row")
        logger.info(f"Created batch {rows[0]['id']} for locality '{locality}'")
        return batch_from_row(rows[0])

    def update_order(
        self,
        order_id: str,
        *,
        batch_id: Optional[str] = UNSET,
        delivery_status: Optional[DeliveryStatus] = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if batch_id is not UNSET:
            payload["batch_id"] = batch_id
        if delivery_status is not None:
            payload["delivery_status"] = delivery_status.value
        if not payload:
            return
        self._execute(self.client.table("orders").update(payload).eq("id", order_id), f"order {order_id} update")

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
        payload: dict[str, Any] = {}
        if total_weight_kg is not None:
            payload["total_weight"] = total_weight_kg
        if locality is not None:
            payload["barangay"] = locality
        if status is not None:
            payload["status"] = status.value
        if driver_id is not UNSET:
            payload["driver_id"] = driver_id
        if assigned_at is not UNSET:
            payload["assigned_at"] = assigned_at.isoformat() if assigned_at else None
        if delivery_date is not UNSET:
            payload["delivery_date"] = delivery_date.isoformat() if delivery_date else None
        if not payload:
            return
        self._execute(
            self.client.table("order_batches").update(payload).eq("id", batch_id),
            f"batch {batch_id} update",
        )
