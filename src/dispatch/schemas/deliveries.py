"""Delivery progress schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import BatchStatus


class CompleteStopRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)


class StopCompletionModel(BaseModel):
    batch_id: str
    stop_id: str
    already_completed: bool
    next_stop_id: Optional[str] = None
    completed_count: int
    total_stops: int
    batch_status: BatchStatus
    batch_completed: bool


class DeliveryProgressModel(BaseModel):
    batch_id: str
    status: BatchStatus
    driver_id: Optional[str] = None
    completed_stop_ids: List[str]
    remaining_stop_ids: List[str]
    next_stop_id: Optional[str] = None
    percent_complete: float
