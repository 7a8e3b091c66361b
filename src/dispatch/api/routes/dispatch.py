"""Dispatch cycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.batches import CycleReportModel, MergeGroupModel, TriggerResponse
from ...services.dispatch import CycleReport
from ...services.engine import DispatchEngine, get_engine
from ..errors import to_http_exception

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def _report_model(report: CycleReport) -> CycleReportModel:
    return CycleReportModel(
        started_at=report.started_at,
        batched_orders=dict(report.formation.assignments),
        created_batches=list(report.formation.created_batches),
        skipped_orders=list(report.formation.skipped_orders),
        failed_orders=list(report.formation.failed_orders),
        promoted=list(report.promoted),
        merge_groups=[
            MergeGroupModel(
                seed_batch_id=group.seed_batch_id,
                label=group.label,
                weight_kg=group.weight_kg,
                absorbed_batch_ids=[item.batch_id for item in group.absorbed],
            )
            for group in report.merge.groups
        ],
        tombstoned=list(report.merge.tombstoned),
        assignments=dict(report.assignments),
        routes_submitted=list(report.routes_submitted),
        errors=list(report.errors),
    )


@router.post("/cycle", response_model=CycleReportModel, status_code=status.HTTP_200_OK)
def run_cycle(engine: DispatchEngine = Depends(get_engine)) -> CycleReportModel:
    try:
        return _report_model(engine.cycle.run_once())
    except Exception as exc:
        raise to_http_exception(exc) from exc


@router.post("/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_cycle(engine: DispatchEngine = Depends(get_engine)) -> TriggerResponse:
    """Signal that new orders were approved."""
    running = engine.scheduler.running
    if running:
        engine.scheduler.trigger()
    return TriggerResponse(scheduler_running=running, triggered=running)
