"""Serializers for optimized routes."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from typing import Optional

from ..routing.models import Route


def route_to_json(route: Route, *, batch_id: Optional[str] = None) -> dict:
    return {
        "batch_id": batch_id,
        "sequence": list(route.sequence),
        "unrouted_stop_ids": list(route.unrouted_stop_ids),
        "total_distance_km": route.total_distance_km,
        "estimated_duration_hours": route.estimated_duration_hours,
        "optimization_score": route.optimization_score,
        "fitness": route.fitness,
        "fuel_cost_estimate": route.fuel_cost_estimate,
        "generation_count": route.generation_count,
        "interrupted": route.interrupted,
        "comparison": asdict(route.comparison) if route.comparison else None,
        "metadata": dict(route.metadata),
    }


def route_to_csv(route: Route, *, batch_id: Optional[str] = None) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "batch_id",
        "position",
        "stop_id",
        "routed",
        "total_distance_km",
        "estimated_duration_hours",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    routed = set(route.sequence)
    for position, stop_id in enumerate(route.planned_stop_ids, start=1):
        writer.writerow(
            {
                "batch_id": batch_id or "",
                "position": position,
                "stop_id": stop_id,
                "routed": stop_id in routed,
                "total_distance_km": round(route.total_distance_km, 3),
                "estimated_duration_hours": round(route.estimated_duration_hours, 3),
            }
        )
    return buffer.getvalue()
