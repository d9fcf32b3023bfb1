"""Tests for ear-clipping triangulation."""

import numpy as np
import pytest

from py_terragen.core.geometry import signed_area
from py_terragen.core.triangulation import PolygonTriangulator, triangulate_polygon


def regular_polygon(n, radius=5.0, clockwise=False):
    angles = np.linspace(0, 2 * np.pi, n, endpoint=False)
    if clockwise:
        angles = angles[::-1]
    return np.stack([radius * np.cos(angles), radius * np.sin(angles)], axis=1)


def triangle_areas(points, indices):
    """Signed areas of the triangles in ``indices``."""
    corners = np.asarray(points)[np.asarray(indices).reshape(-1, 3)]
    a, b, c = corners[:, 0], corners[:, 1], corners[:, 2]
    return 0.5 * ((b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0]))


class TestPolygonTriangulator:
    """Test ear clipping on simple polygons."""

    @pytest.mark.parametrize("n", [3, 4, 5, 8, 12, 32])
    @pytest.mark.parametrize("clockwise", [False, True])
    def test_convex_polygon(self, n, clockwise):
        points = regular_polygon(n, clockwise=clockwise)
        indices = triangulate_polygon(points)

        assert len(indices) == 3 * (n - 2)
        areas = triangle_areas(points, indices)
        assert np.abs(areas).sum() == pytest.approx(abs(signed_area(points)))

    @pytest.mark.parametrize("clockwise", [False, True])
    def test_output_winding_is_independent_of_input(self, clockwise):
        points = regular_polygon(6, clockwise=clockwise)
        areas = triangle_areas(points, triangulate_polygon(points))
        assert (areas < 0).all()

    def test_concave_polygon(self):
        # L shape
        points = [(0, 0), (4, 0), (4, 1), (1, 1), (1, 4), (0, 4)]
        indices = triangulate_polygon(points)

        assert len(indices) == 3 * 4
        areas = triangle_areas(points, indices)
        assert np.abs(areas).sum() == pytest.approx(7.0)

    def test_square_with_collinear_point(self):
        points = [(3, 3), (6, 3), (6, 6), (3, 6), (3, 4)]
        indices = triangulate_polygon(points)
        assert np.abs(triangle_areas(points, indices)).sum() == pytest.approx(9.0)

    def test_indices_are_valid(self):
        points = regular_polygon(10)
        faces = triangulate_polygon(points).reshape(-1, 3)
        assert faces.min() >= 0
        assert faces.max() < len(points)
        for face in faces:
            assert len(set(face)) == 3

    @pytest.mark.parametrize("points", [[], [(0, 0)], [(0, 0), (1, 1)]])
    def test_too_few_points(self, points):
        assert len(triangulate_polygon(points)) == 0

    def test_degenerate_polygon_returns_partial_result(self):
        points = [(0, 0), (1, 0), (2, 0), (3, 0)]
        indices = PolygonTriangulator(points).triangulate()
        assert len(indices) == 0

    def test_triangulator_keeps_points(self):
        triangulator = PolygonTriangulator([(0, 0), (1, 0), (0, 1)])
        assert triangulator.points.shape == (3, 2)
        np.testing.assert_array_equal(np.sort(triangulator.triangulate()), [0, 1, 2])
