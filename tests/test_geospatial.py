import numpy as np
import pytest

from dispatch.services.geospatial import centroid, distance_matrix_km, haversine_km


def test_haversine_zero_for_same_point():
    assert haversine_km(8.4542, 124.6319, 8.4542, 124.6319) == pytest.approx(0.0)


def test_haversine_one_degree_of_latitude():
    assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, rel=1e-3)


def test_haversine_is_symmetric():
    forward = haversine_km(8.480, 124.630, 8.475, 124.640)
    backward = haversine_km(8.475, 124.640, 8.480, 124.630)
    assert forward == pytest.approx(backward)
    assert 1.0 < forward < 1.5


def test_centroid_is_unweighted_mean():
    center = centroid([(8.0, 124.0), (9.0, 125.0), (8.5, 124.5)])
    assert center == pytest.approx((8.5, 124.5))


def test_centroid_of_nothing_is_none():
    assert centroid([]) is None


def test_distance_matrix_matches_haversine():
    points = [(8.4542, 124.6319), (8.48, 124.63), (8.50, 124.70)]
    matrix = distance_matrix_km(points)

    assert matrix.shape == (3, 3)
    assert np.allclose(np.diag(matrix), 0.0)
    assert np.allclose(matrix, matrix.T)
    assert matrix[0, 2] == pytest.approx(haversine_km(*points[0], *points[2]), rel=1e-9)


def test_distance_matrix_empty():
    assert distance_matrix_km([]).shape == (0, 0)
