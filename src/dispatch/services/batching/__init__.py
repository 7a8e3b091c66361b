"""Batch formation, merging and lifecycle helpers."""

from .formation import BatchFormation, FormationResult
from .lifecycle import cancel_batch, can_transition, ensure_transition
from .merger import BatchMerger, MergePlan

__all__ = [
    "BatchFormation",
    "FormationResult",
    "BatchMerger",
    "MergePlan",
    "cancel_batch",
    "can_transition",
    "ensure_transition",
]
