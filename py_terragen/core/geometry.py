"""
Small geometric primitives shared by the mask and mesh modules.
"""

from typing import NamedTuple, Sequence

import numpy as np


class Rect(NamedTuple):
    """Axis-aligned rectangle given by its minimum corner and size."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x_min(self) -> float:
        return self.x

    @property
    def y_min(self) -> float:
        return self.y

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def center(self):
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return self.width * self.height


def as_points(points: Sequence, dims: int = 2) -> np.ndarray:
    """Convert a sequence of coordinate tuples into an ``(N, dims)`` float array."""
    array = np.asarray(points, dtype=np.float64)
    if array.size == 0:
        return np.zeros((0, dims), dtype=np.float64)
    return array.reshape(-1, dims)


def signed_area(points: np.ndarray) -> float:
    """
    Shoelace area of a closed polygon.

    Positive for counter-clockwise rings in a y-up frame.
    """
    if len(points) < 3:
        return 0.0
    x = points[:, 0]
    y = points[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def lerp(a, b, t):
    return a + (b - a) * t
