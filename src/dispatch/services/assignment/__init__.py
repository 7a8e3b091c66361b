"""Driver assignment services."""

from .scheduler import AssignmentScheduler

__all__ = ["AssignmentScheduler"]
