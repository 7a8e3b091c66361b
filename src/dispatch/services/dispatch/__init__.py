"""Dispatch cycle orchestration."""

from .cycle import CycleReport, DispatchCycle, DispatchScheduler, consolidation_cutoff

__all__ = ["CycleReport", "DispatchCycle", "DispatchScheduler", "consolidation_cutoff"]
