"""Batch endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...models.domain import BatchStatus, live_weight
from ...schemas.batches import BatchModel, CancelResponse, ManualAssignmentRequest
from ...schemas.routing import RouteModel
from ...services.batching import cancel_batch
from ...services.engine import DispatchEngine, get_engine
from ..errors import to_http_exception

router = APIRouter(prefix="/batches", tags=["batches"])


def _batch_model(engine: DispatchEngine, batch_id: str) -> BatchModel:
    batch = engine.repository.get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Batch {batch_id} not found")
    weight = live_weight(engine.repository.list_batch_orders(batch_id))
    return BatchModel.from_batch(batch, weight_kg=weight)


@router.get("", response_model=List[BatchModel], status_code=status.HTTP_200_OK)
def list_batches(
    status_filter: Optional[BatchStatus] = Query(default=None, alias="status", description="Optional state filter"),
    engine: DispatchEngine = Depends(get_engine),
) -> List[BatchModel]:
    states = [status_filter] if status_filter else None
    batches = sorted(engine.repository.list_batches(states), key=lambda item: (item.created_at, item.batch_id))
    return [
        BatchModel.from_batch(batch, weight_kg=live_weight(engine.repository.list_batch_orders(batch.batch_id)))
        for batch in batches
    ]


@router.get("/{batch_id}", response_model=BatchModel, status_code=status.HTTP_200_OK)
def get_batch(batch_id: str, engine: DispatchEngine = Depends(get_engine)) -> BatchModel:
    return _batch_model(engine, batch_id)


@router.post("/{batch_id}/assign", response_model=BatchModel, status_code=status.HTTP_200_OK)
def assign_batch(
    batch_id: str,
    payload: ManualAssignmentRequest,
    engine: DispatchEngine = Depends(get_engine),
) -> BatchModel:
    try:
        engine.assignment.assign_manually(batch_id, payload.driver_id)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    engine.routes.submit(batch_id)
    return _batch_model(engine, batch_id)


@router.post("/{batch_id}/cancel", response_model=CancelResponse, status_code=status.HTTP_200_OK)
def cancel(batch_id: str, engine: DispatchEngine = Depends(get_engine)) -> CancelResponse:
    try:
        released = cancel_batch(engine.repository, batch_id)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    engine.release_batch(batch_id)
    return CancelResponse(batch=_batch_model(engine, batch_id), released_order_ids=released)


@router.get("/{batch_id}/route", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_batch_route(batch_id: str, engine: DispatchEngine = Depends(get_engine)) -> RouteModel:
    try:
        route = engine.routes.route_for(batch_id)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    return RouteModel.from_route(route, batch_id=batch_id)
