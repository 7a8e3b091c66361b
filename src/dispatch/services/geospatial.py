"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

import numpy as np
from shapely.geometry import MultiPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def centroid(points: Iterable[tuple[float, float]]) -> Optional[tuple[float, float]]:
    """Return the unweighted mean (lat, lon) of the points, or None when empty."""

    coords = [(lon, lat) for lat, lon in points]
    if not coords:
        return None
    # MultiPoint centroid is the arithmetic mean of its members.
    center = MultiPoint(coords).centroid
    return (center.y, center.x)


def distance_matrix_km(points: Sequence[tuple[float, float]]) -> np.ndarray:
    """Pairwise haversine distances (km) between (lat, lon) points."""

    if not points:
        return np.zeros((0, 0))
    coords = np.radians(np.asarray(points, dtype=float))
    lat = coords[:, 0][:, np.newaxis]
    lon = coords[:, 1][:, np.newaxis]

    d_phi = lat.T - lat
    d_lambda = lon.T - lon
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat) * np.cos(lat.T) * np.sin(d_lambda / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))
    matrix = EARTH_RADIUS_KM * c
    np.fill_diagonal(matrix, 0.0)
    return matrix
