"""Delivery progress tracking."""

from .tracker import DeliveryPermissionError, DeliveryProgress, DeliveryProgressTracker, StopCompletion

__all__ = ["DeliveryPermissionError", "DeliveryProgress", "DeliveryProgressTracker", "StopCompletion"]
