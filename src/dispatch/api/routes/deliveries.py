"""Driver delivery endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.deliveries import CompleteStopRequest, DeliveryProgressModel, StopCompletionModel
from ...services.engine import DispatchEngine, get_engine
from ..errors import to_http_exception

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.post(
    "/{batch_id}/stops/{order_id}/complete",
    response_model=StopCompletionModel,
    status_code=status.HTTP_200_OK,
)
def complete_stop(
    batch_id: str,
    order_id: str,
    payload: CompleteStopRequest,
    engine: DispatchEngine = Depends(get_engine),
) -> StopCompletionModel:
    try:
        engine.tracker.authorize(batch_id, payload.driver_id)
        route = engine.routes.route_for(batch_id)
        completion = engine.tracker.complete_stop(batch_id, route, order_id, payload.driver_id)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    if completion.batch_completed:
        engine.release_batch(batch_id)
    return StopCompletionModel(
        batch_id=completion.batch_id,
        stop_id=completion.stop_id,
        already_completed=completion.already_completed,
        next_stop_id=completion.next_stop_id,
        completed_count=completion.completed_count,
        total_stops=completion.total_stops,
        batch_status=completion.batch_status,
        batch_completed=completion.batch_completed,
    )


@router.get("/{batch_id}/progress", response_model=DeliveryProgressModel, status_code=status.HTTP_200_OK)
def get_progress(batch_id: str, engine: DispatchEngine = Depends(get_engine)) -> DeliveryProgressModel:
    try:
        route = engine.routes.route_for(batch_id)
        progress = engine.tracker.progress(batch_id, route)
    except Exception as exc:
        raise to_http_exception(exc) from exc
    return DeliveryProgressModel(
        batch_id=progress.batch_id,
        status=progress.status,
        driver_id=progress.driver_id,
        completed_stop_ids=progress.completed_stop_ids,
        remaining_stop_ids=progress.remaining_stop_ids,
        next_stop_id=progress.next_stop_id,
        percent_complete=progress.percent_complete,
    )
