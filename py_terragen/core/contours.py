"""
Boundary extraction from raster masks.

This module implements:
- Moore-neighborhood boundary tracing in 8-connectivity
- Ramer-Douglas-Peucker simplification for contours and general polylines
"""

from typing import Iterable, List, Optional, Tuple

import numpy as np
import structlog

from ..config.settings import get_settings
from .raster_mask import RasterMask

logger = structlog.get_logger()

# Direction vectors: 0=right, 1=right-down, 2=down, 3=left-down,
# 4=left, 5=left-up, 6=up, 7=right-up (y grows downwards)
DIRECTIONS_X = (1, 1, 0, -1, -1, -1, 0, 1)
DIRECTIONS_Y = (0, 1, 1, 1, 0, -1, -1, -1)

# Contours shorter than this are never simplified
MIN_SIMPLIFY_POINTS = 10


def _perpendicular_distance(points: np.ndarray, start: np.ndarray, end: np.ndarray) -> np.ndarray:
    """Distance of each point from the infinite line through ``start`` and ``end``."""
    chord = end - start
    length = float(np.hypot(chord[0], chord[1]))
    offsets = points - start
    if length == 0.0:
        return np.hypot(offsets[:, 0], offsets[:, 1])
    cross = chord[0] * offsets[:, 1] - chord[1] * offsets[:, 0]
    return np.abs(cross) / length


def simplify_polyline(
    points, tolerance: float, keep: Optional[Iterable[int]] = None
) -> np.ndarray:
    """
    Simplify a polyline with the Ramer-Douglas-Peucker algorithm.

    Args:
        points: ``(N, 2)`` sequence of points
        tolerance: Maximum allowed deviation; points further than this from
            the chord of their section are kept
        keep: Extra indices that must survive simplification

    Returns:
        The retained points in their original order. Inputs with fewer
        than 3 points and non-positive tolerances are returned unchanged.
    """
    array = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(array) < 3 or tolerance <= 0:
        return array.copy()

    n = len(array)
    kept = np.zeros(n, dtype=bool)
    kept[0] = kept[-1] = True
    if keep is not None:
        for index in keep:
            if -n <= index < n:
                kept[index] = True

    # Iterative to stay clear of the recursion limit on long contours
    sections: List[Tuple[int, int]] = [(0, n - 1)]
    while sections:
        start, end = sections.pop()
        if end <= start + 1:
            continue

        distances = _perpendicular_distance(array[start + 1:end], array[start], array[end])
        offset = int(np.argmax(distances))
        if distances[offset] > tolerance:
            split = start + 1 + offset
            kept[split] = True
            sections.append((split, end))
            sections.append((start, split))

    return array[kept]


def find_start(binary: np.ndarray) -> Optional[Tuple[int, int]]:
    """
    First covered pixel, in row-major order, with an uncovered 4-neighbor.

    The outermost one-pixel frame is not searched.
    """
    height, width = binary.shape
    if width < 3 or height < 3:
        return None

    inner = binary[1:-1, 1:-1]
    touches_gap = (
        ~binary[:-2, 1:-1] | ~binary[2:, 1:-1] | ~binary[1:-1, :-2] | ~binary[1:-1, 2:]
    )
    candidates = np.flatnonzero(inner & touches_gap)
    if len(candidates) == 0:
        return None

    row, col = divmod(int(candidates[0]), width - 2)
    return col + 1, row + 1


def trace_boundary(
    binary: np.ndarray, start: Tuple[int, int], max_points: int
) -> List[Tuple[int, int]]:
    """
    Follow a boundary from ``start`` using Moore-neighborhood tracing.

    Each step scans the eight neighbors starting one step before the last
    successful direction and moves to the first covered, unvisited pixel.
    The trace ends on a dead end, after ``max_points`` points, or when it
    reaches the start pixel again.
    """
    height, width = binary.shape
    visited = np.zeros_like(binary, dtype=bool)
    start_x, start_y = start
    x, y = start
    direction = 0
    trace: List[Tuple[int, int]] = []

    while True:
        trace.append((x, y))
        visited[y, x] = True
        if len(trace) >= max_points:
            break

        next_step = None
        for i in range(8):
            candidate = (direction + 7 + i) % 8
            nx = x + DIRECTIONS_X[candidate]
            ny = y + DIRECTIONS_Y[candidate]
            if not (0 <= nx < width and 0 <= ny < height) or not binary[ny, nx]:
                continue
            if (nx, ny) == (start_x, start_y) and len(trace) >= 3:
                next_step = (nx, ny, candidate)
                break
            if not visited[ny, nx]:
                next_step = (nx, ny, candidate)
                break

        if next_step is None:
            break
        x, y, direction = next_step
        if (x, y) == (start_x, start_y):
            break

    return trace


class ContourExtractor:
    """Extracts simplified boundary contours from masks."""

    def __init__(
        self,
        threshold: Optional[float] = None,
        simplify_tolerance: Optional[float] = None,
        trace_cap: Optional[int] = None,
    ):
        """
        Initialize the extractor.

        Args:
            threshold: Alpha at or above which a pixel is inside the shape
            simplify_tolerance: RDP tolerance in pixels, 0 disables simplification
            trace_cap: Upper bound on traced points before simplification
        """
        settings = get_settings()
        self.threshold = settings.mask_threshold if threshold is None else threshold
        self.simplify_tolerance = (
            settings.simplify_tolerance if simplify_tolerance is None else simplify_tolerance
        )
        self.trace_cap = settings.contour_trace_cap if trace_cap is None else trace_cap

    def trace(self, mask: RasterMask) -> np.ndarray:
        """
        Trace the first boundary found in ``mask``.

        Returns:
            ``(N, 2)`` pixel coordinates; the four image corners when the
            mask has no boundary pixel away from the image frame
        """
        width, height = mask.width, mask.height
        binary = mask.binary(self.threshold)
        start = find_start(binary)

        if start is None:
            logger.debug("No contour start found", width=width, height=height)
            return np.array(
                [(0, 0), (width, 0), (width, height), (0, height)], dtype=np.float64
            )

        cap = min(2 * width * height, self.trace_cap)
        points = trace_boundary(binary, start, cap)
        if len(points) >= cap:
            logger.warning("Contour trace hit safety cap", cap=cap)
        return np.asarray(points, dtype=np.float64)

    def simplify(self, contour: np.ndarray) -> np.ndarray:
        if self.simplify_tolerance > 0 and len(contour) > MIN_SIMPLIFY_POINTS:
            return simplify_polyline(contour, self.simplify_tolerance)
        return contour

    def extract(self, mask: Optional[RasterMask]) -> np.ndarray:
        """Trace and simplify; a missing or empty mask yields no points."""
        if mask is None or mask.is_empty:
            return np.zeros((0, 2), dtype=np.float64)

        contour = self.simplify(self.trace(mask))
        logger.debug("Contour extracted", points=len(contour))
        return contour


def extract_contour(
    mask: Optional[RasterMask], threshold: float = 0.5, simplify_tolerance: float = 0.0
) -> np.ndarray:
    """Trace the boundary of ``mask`` and simplify it when ``simplify_tolerance`` is positive."""
    extractor = ContourExtractor(threshold=threshold, simplify_tolerance=simplify_tolerance)
    return extractor.extract(mask)
