"""Tests for mask analysis and comparison."""

import numpy as np
import pytest

from py_terragen.core import mask_analysis as ma
from py_terragen.core import raster_mask as rm
from py_terragen.core.geometry import Rect
from py_terragen.core.mask_analysis import MaskAnalyzer, SimilarityMetrics
from py_terragen.core.raster_mask import RasterMask


@pytest.fixture
def square():
    """10x10 mask with a 4x4 square at (3, 3)."""
    alpha = np.zeros((10, 10))
    alpha[3:7, 3:7] = 1.0
    return RasterMask(alpha)


class TestSimilarity:
    """Test overlap metrics."""

    def test_identical_masks(self, square):
        assert ma.similarity(square, square) == 1.0
        metrics = ma.detailed_similarity(square, square)
        assert metrics == SimilarityMetrics(iou=1.0, dice=1.0, precision=1.0, recall=1.0)

    def test_disjoint_masks(self):
        a = RasterMask([[1, 1, 0, 0]])
        b = RasterMask([[0, 0, 1, 1]])
        assert ma.similarity(a, b) == 0.0
        metrics = ma.detailed_similarity(a, b)
        assert metrics.dice == 0.0
        assert metrics.precision == 0.0
        assert metrics.recall == 0.0

    def test_partial_overlap(self):
        a = RasterMask([[1, 1, 1, 1, 0, 0]])
        b = RasterMask([[0, 0, 1, 1, 1, 1]])
        metrics = ma.detailed_similarity(a, b)
        assert metrics.iou == pytest.approx(2 / 6)
        assert metrics.dice == pytest.approx(0.5)
        assert metrics.precision == pytest.approx(0.5)
        assert metrics.recall == pytest.approx(0.5)

    def test_threshold_is_strict(self):
        a = RasterMask([[0.5, 1.0]])
        b = RasterMask([[1.0, 1.0]])
        metrics = ma.detailed_similarity(a, b)
        # 0.5 does not count as covered
        assert metrics.iou == pytest.approx(0.5)
        assert metrics.recall == 1.0

    def test_missing_masks(self, square):
        assert ma.detailed_similarity(None, square) == SimilarityMetrics()
        assert ma.detailed_similarity(square, None) == SimilarityMetrics()
        assert ma.similarity(None, None) == 0.0

    def test_transparent_masks_do_not_match(self):
        blank = rm.blank(6, 4)
        assert ma.similarity(blank, blank) == 0.0
        assert ma.detailed_similarity(blank, rm.blank(3, 2)) == SimilarityMetrics()

    def test_second_mask_is_resampled(self):
        a = rm.solid(8, 8)
        b = rm.solid(2, 2)
        assert ma.similarity(a, b) == 1.0

    def test_metrics_as_dict(self):
        metrics = SimilarityMetrics(iou=0.5, dice=0.25, precision=1.0, recall=0.0)
        assert metrics.as_dict() == {"iou": 0.5, "dice": 0.25, "precision": 1.0, "recall": 0.0}


class TestMoments:
    """Test centroid and orientation."""

    def test_center_of_single_pixel(self):
        alpha = np.zeros((5, 10))
        alpha[1, 3] = 1.0
        assert ma.center_of_mass(RasterMask(alpha)) == pytest.approx((0.3, 0.2))

    def test_center_of_empty_mask(self):
        assert ma.center_of_mass(RasterMask(np.zeros((4, 4)))) == (0.5, 0.5)
        assert ma.center_of_mass(None) == (0.5, 0.5)

    def test_center_is_alpha_weighted(self):
        mask = RasterMask([[1.0, 0.0, 0.0, 0.5]])
        cx, _ = ma.center_of_mass(mask)
        assert cx == pytest.approx((0 * 1.0 + 3 * 0.5) / 1.5 / 4)

    def test_horizontal_bar(self):
        alpha = np.zeros((9, 9))
        alpha[4, 1:8] = 1.0
        assert ma.orientation(RasterMask(alpha)) == pytest.approx(0.0)

    def test_vertical_bar(self):
        alpha = np.zeros((9, 9))
        alpha[1:8, 4] = 1.0
        assert ma.orientation(RasterMask(alpha)) == pytest.approx(90.0)

    def test_diagonal_line(self):
        alpha = np.eye(8)
        assert ma.orientation(RasterMask(alpha)) == pytest.approx(45.0)

    def test_symmetric_shape_has_no_orientation(self, square):
        assert ma.orientation(square) == 0.0

    def test_orientation_of_empty_mask(self):
        assert ma.orientation(RasterMask(np.zeros((3, 3)))) == 0.0
        assert ma.orientation(None) == 0.0


class TestExtent:
    """Test bounding box, area and perimeter."""

    def test_bounding_box(self, square):
        assert ma.bounding_box(square) == Rect(3, 3, 4, 4)

    def test_bounding_box_single_pixel(self):
        alpha = np.zeros((6, 6))
        alpha[2, 4] = 1.0
        assert ma.bounding_box(RasterMask(alpha)) == Rect(4, 2, 1, 1)

    def test_bounding_box_of_empty_mask_is_full_image(self):
        assert ma.bounding_box(RasterMask(np.zeros((5, 7)))) == Rect(0, 0, 7, 5)

    def test_bounding_box_of_missing_mask(self):
        assert ma.bounding_box(None) == Rect(0, 0, 0, 0)

    def test_bounding_box_threshold(self):
        mask = RasterMask([[0.2, 0.6, 0.9]])
        assert ma.bounding_box(mask, threshold=0.8) == Rect(2, 0, 1, 1)

    @pytest.mark.parametrize("threshold,expected", [(0.1, 3), (0.5, 2), (0.95, 0)])
    def test_area(self, threshold, expected):
        mask = RasterMask([[0.2, 0.5, 0.9]])
        assert ma.area(mask, threshold) == expected

    def test_perimeter_of_square(self, square):
        assert ma.perimeter(square) == 12

    def test_perimeter_counts_image_border(self):
        assert ma.perimeter(rm.solid(3, 3)) == 8
        assert ma.perimeter(rm.solid(1, 1)) == 1

    def test_perimeter_of_empty_mask(self):
        assert ma.perimeter(RasterMask(np.zeros((4, 4)))) == 0
        assert ma.perimeter(None) == 0


class TestMaskAnalyzer:
    """Test the analyzer facade."""

    def test_uses_threshold(self):
        mask = RasterMask([[0.2, 0.6, 0.9]])
        analyzer = MaskAnalyzer(threshold=0.8)
        assert analyzer.area(mask) == 1
        assert analyzer.bounding_box(mask) == Rect(2, 0, 1, 1)

    def test_summary(self, square):
        summary = MaskAnalyzer().summary(square)
        assert summary["area"] == 16
        assert summary["perimeter"] == 12
        assert summary["bounding_box"] == Rect(3, 3, 4, 4)
        assert summary["center_of_mass"] == pytest.approx((0.45, 0.45))
        assert summary["orientation"] == 0.0
