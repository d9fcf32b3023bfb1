"""
Ear-clipping triangulation of simple polygons.
"""

from typing import List

import numpy as np
import structlog

from .geometry import as_points, signed_area

logger = structlog.get_logger()

# Ears whose doubled area does not exceed this are treated as degenerate
EAR_EPSILON = 1e-10


class PolygonTriangulator:
    """
    Triangulates a simple polygon by repeatedly clipping ears.

    The polygon may be given in either winding; clockwise rings are walked
    in reverse. The emitted index list is reversed at the end, so triangles
    come out with negative signed area in the input's coordinate frame
    (clockwise when y points up). The search gives up after ``2 * n``
    consecutive attempts without finding an ear and returns the triangles
    found so far.
    """

    def __init__(self, points):
        self.points = as_points(points)

    def _is_ear(self, ring: List[int], u: int, v: int, w: int) -> bool:
        a = self.points[ring[u]]
        b = self.points[ring[v]]
        c = self.points[ring[w]]

        doubled_area = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if doubled_area <= EAR_EPSILON:
            return False

        others = [ring[p] for p in range(len(ring)) if p not in (u, v, w)]
        if not others:
            return True

        p = self.points[others]
        # Cross products of each edge against the candidate point
        cross_a = (c[0] - b[0]) * (p[:, 1] - b[1]) - (c[1] - b[1]) * (p[:, 0] - b[0])
        cross_b = (a[0] - c[0]) * (p[:, 1] - c[1]) - (a[1] - c[1]) * (p[:, 0] - c[0])
        cross_c = (b[0] - a[0]) * (p[:, 1] - a[1]) - (b[1] - a[1]) * (p[:, 0] - a[0])
        inside = (cross_a > 0) & (cross_b > 0) & (cross_c > 0)
        return not inside.any()

    def triangulate(self) -> np.ndarray:
        """
        Compute the triangle index list.

        Returns:
            Flat int array of vertex indices, three per triangle; empty for
            fewer than 3 points
        """
        n = len(self.points)
        if n < 3:
            return np.zeros(0, dtype=np.int64)

        ring = list(range(n))
        if signed_area(self.points) < 0:
            ring.reverse()

        indices: List[int] = []
        remaining = n
        attempts = 2 * remaining
        v = remaining - 1

        while remaining > 2:
            if attempts <= 0:
                logger.warning(
                    "Triangulation stopped early",
                    vertices=n,
                    triangles=len(indices) // 3,
                )
                break
            attempts -= 1

            u = v if v < remaining else 0
            v = u + 1 if u + 1 < remaining else 0
            w = v + 1 if v + 1 < remaining else 0

            if self._is_ear(ring, u, v, w):
                indices.extend((ring[u], ring[v], ring[w]))
                del ring[v]
                remaining -= 1
                attempts = 2 * remaining

        indices.reverse()
        return np.asarray(indices, dtype=np.int64)


def triangulate_polygon(points) -> np.ndarray:
    """Triangulate a simple polygon, returning a flat index array."""
    return PolygonTriangulator(points).triangulate()
