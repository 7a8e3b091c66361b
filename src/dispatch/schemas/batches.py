"""Batch and dispatch-cycle schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Batch, BatchStatus


class BatchModel(BaseModel):
    batch_id: str
    locality: str
    status: BatchStatus
    created_at: datetime
    order_ids: List[str]
    total_weight_kg: float
    max_weight_kg: float
    driver_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    delivery_date: Optional[date] = None

    @classmethod
    def from_batch(cls, batch: Batch, *, weight_kg: float | None = None) -> "BatchModel":
        return cls(
            batch_id=batch.batch_id,
            locality=batch.locality,
            status=batch.status,
            created_at=batch.created_at,
            order_ids=list(batch.order_ids),
            total_weight_kg=batch.total_weight_kg if weight_kg is None else weight_kg,
            max_weight_kg=batch.max_weight_kg,
            driver_id=batch.driver_id,
            assigned_at=batch.assigned_at,
            delivery_date=batch.delivery_date,
        )


class ManualAssignmentRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, description="Driver to bind to the batch.")


class CancelResponse(BaseModel):
    batch: BatchModel
    released_order_ids: List[str]


class MergeGroupModel(BaseModel):
    seed_batch_id: str
    label: str
    weight_kg: float
    absorbed_batch_ids: List[str]


class CycleReportModel(BaseModel):
    started_at: datetime
    batched_orders: Dict[str, str]
    created_batches: List[str]
    skipped_orders: List[str]
    failed_orders: List[str]
    promoted: List[str]
    merge_groups: List[MergeGroupModel]
    tombstoned: List[str]
    assignments: Dict[str, str]
    routes_submitted: List[str]
    errors: List[str]


class TriggerResponse(BaseModel):
    scheduler_running: bool
    triggered: bool
