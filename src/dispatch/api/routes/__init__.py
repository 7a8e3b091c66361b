"""Route group exports."""

from . import batches, deliveries, dispatch, health, routes

__all__ = ["batches", "deliveries", "dispatch", "health", "routes"]
