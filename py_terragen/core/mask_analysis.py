"""
Mask analysis and comparison.

This module implements:
- Overlap metrics between two masks (IoU, Dice, precision, recall)
- Alpha-weighted centroid and principal orientation
- Bounding box, area and perimeter at a threshold
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import structlog
from scipy import ndimage

from .geometry import Rect
from .raster_mask import BINARY_THRESHOLD, CROSS, RasterMask, Resampler, resize

logger = structlog.get_logger()


@dataclass(frozen=True)
class SimilarityMetrics:
    """Overlap statistics of a predicted mask against a reference mask."""

    iou: float = 0.0
    dice: float = 0.0
    precision: float = 0.0
    recall: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _confusion_counts(
    mask_a: RasterMask, mask_b: RasterMask, resampler: Optional[Resampler] = None
) -> Tuple[int, int, int]:
    """True positive, false positive and false negative pixel counts (b against a)."""
    b = resize(mask_b, mask_a.width, mask_a.height, resampler)
    set_a = mask_a.alpha > BINARY_THRESHOLD
    set_b = b.alpha > BINARY_THRESHOLD

    tp = int(np.count_nonzero(set_a & set_b))
    fp = int(np.count_nonzero(~set_a & set_b))
    fn = int(np.count_nonzero(set_a & ~set_b))
    return tp, fp, fn


def detailed_similarity(
    mask_a: Optional[RasterMask],
    mask_b: Optional[RasterMask],
    resampler: Optional[Resampler] = None,
) -> SimilarityMetrics:
    """
    Compare two masks thresholded at 0.5.

    ``mask_a`` is the reference; ``mask_b`` is resampled to its size when
    they differ. A pixel is set when its alpha is strictly above 0.5.

    Args:
        mask_a: Reference mask
        mask_b: Predicted mask
        resampler: Resampler used to match sizes

    Returns:
        SimilarityMetrics; all zeros when either mask is missing or empty
    """
    if mask_a is None or mask_b is None:
        return SimilarityMetrics()
    if mask_a.is_empty:
        return SimilarityMetrics()

    tp, fp, fn = _confusion_counts(mask_a, mask_b, resampler)
    union = tp + fp + fn

    # Two fully transparent masks score 0, not 1
    iou = tp / union if union > 0 else 0.0
    dice = 2.0 * tp / (2 * tp + fp + fn) if tp > 0 else 0.0
    precision = tp / (tp + fp) if tp + fp > 0 else 0.0
    recall = tp / (tp + fn) if tp + fn > 0 else 0.0
    return SimilarityMetrics(iou=iou, dice=dice, precision=precision, recall=recall)


def similarity(
    mask_a: Optional[RasterMask],
    mask_b: Optional[RasterMask],
    resampler: Optional[Resampler] = None,
) -> float:
    """Intersection over union of two masks, in [0, 1]."""
    return detailed_similarity(mask_a, mask_b, resampler).iou


def center_of_mass(mask: Optional[RasterMask]) -> Tuple[float, float]:
    """
    Alpha-weighted centroid in normalized coordinates.

    Returns:
        ``(sum(x * a) / sum(a) / width, sum(y * a) / sum(a) / height)``,
        or (0.5, 0.5) for a missing or fully transparent mask
    """
    if mask is None or mask.is_empty:
        return (0.5, 0.5)

    alpha = mask.alpha
    total = float(alpha.sum())
    if total <= 0:
        return (0.5, 0.5)

    xs = np.arange(mask.width)
    ys = np.arange(mask.height)
    cx = float(alpha.sum(axis=0) @ xs) / total
    cy = float(alpha.sum(axis=1) @ ys) / total
    return (cx / mask.width, cy / mask.height)


def bounding_box(mask: Optional[RasterMask], threshold: float = BINARY_THRESHOLD) -> Rect:
    """
    Tight pixel box around pixels at or above ``threshold``.

    The box spans from the first to one past the last covered pixel. A
    mask with no covered pixels returns the full image rectangle; a
    missing mask returns a zero rectangle.
    """
    if mask is None:
        return Rect(0, 0, 0, 0)

    covered = mask.binary(threshold)
    if not covered.any():
        return Rect(0, 0, mask.width, mask.height)

    rows = np.flatnonzero(covered.any(axis=1))
    cols = np.flatnonzero(covered.any(axis=0))
    x_min, x_max = int(cols[0]), int(cols[-1])
    y_min, y_max = int(rows[0]), int(rows[-1])
    return Rect(x_min, y_min, x_max - x_min + 1, y_max - y_min + 1)


def orientation(mask: Optional[RasterMask]) -> float:
    """
    Principal axis angle in degrees from the alpha-weighted second moments.

    Returns 0 for empty masks and for shapes without a dominant axis.
    """
    if mask is None or mask.is_empty:
        return 0.0

    alpha = mask.alpha
    total = float(alpha.sum())
    if total <= 0:
        return 0.0

    ys, xs = np.mgrid[0:mask.height, 0:mask.width]
    cx = float((xs * alpha).sum()) / total
    cy = float((ys * alpha).sum()) / total
    dx = xs - cx
    dy = ys - cy

    mxx = float((dx * dx * alpha).sum()) / total
    myy = float((dy * dy * alpha).sum()) / total
    mxy = float((dx * dy * alpha).sum()) / total

    if abs(mxy) < 1e-6 and abs(mxx - myy) < 1e-6:
        return 0.0

    return math.degrees(0.5 * math.atan2(2.0 * mxy, mxx - myy))


def area(mask: Optional[RasterMask], threshold: float = BINARY_THRESHOLD) -> int:
    """Number of pixels at or above ``threshold``."""
    if mask is None:
        return 0
    return int(np.count_nonzero(mask.binary(threshold)))


def perimeter(mask: Optional[RasterMask], threshold: float = BINARY_THRESHOLD) -> int:
    """
    Number of covered pixels with an uncovered 4-neighbor.

    Pixels on the image border count as boundary pixels since the space
    outside the image is uncovered.
    """
    if mask is None or mask.is_empty:
        return 0

    covered = mask.binary(threshold)
    interior = ndimage.binary_erosion(covered, CROSS, border_value=0)
    return int(np.count_nonzero(covered & ~interior))


class MaskAnalyzer:
    """Runs the analysis functions with a shared threshold and resampler."""

    def __init__(self, threshold: float = BINARY_THRESHOLD, resampler: Optional[Resampler] = None):
        self.threshold = threshold
        self.resampler = resampler

    def similarity(self, mask_a, mask_b) -> float:
        return similarity(mask_a, mask_b, self.resampler)

    def detailed_similarity(self, mask_a, mask_b) -> SimilarityMetrics:
        return detailed_similarity(mask_a, mask_b, self.resampler)

    def center_of_mass(self, mask) -> Tuple[float, float]:
        return center_of_mass(mask)

    def bounding_box(self, mask) -> Rect:
        return bounding_box(mask, self.threshold)

    def orientation(self, mask) -> float:
        return orientation(mask)

    def area(self, mask) -> int:
        return area(mask, self.threshold)

    def perimeter(self, mask) -> int:
        return perimeter(mask, self.threshold)

    def summary(self, mask) -> Dict[str, object]:
        """All single-mask statistics in one dictionary."""
        stats = {
            "area": self.area(mask),
            "perimeter": self.perimeter(mask),
            "center_of_mass": self.center_of_mass(mask),
            "bounding_box": self.bounding_box(mask),
            "orientation": self.orientation(mask),
        }
        logger.debug("Mask analyzed", area=stats["area"], perimeter=stats["perimeter"])
        return stats
