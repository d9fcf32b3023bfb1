"""
Compositing of detected features into global raster maps.

This module implements:
- Height maps built from per-feature masks with label-aware blend policies
- Segmentation maps built by "over" blending feature colors
- Labeled segmentation maps with one hard color per label
- Deterministic label colors for features without a usable color

Feature bounding boxes are given in pixels of the target raster; each
feature's mask is stretched over its box and sampled bilinearly.
"""

import colorsys
import re
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import structlog
from scipy import ndimage

from ..config.compositor_settings import CompositorSettings
from ..utils.instrumentation import Instrumentation, measure
from .geometry import Rect, lerp
from .raster_mask import RasterMask

logger = structlog.get_logger()

Color = Tuple[float, float, float, float]


class TerrainClass(str, Enum):
    """Blend policy of a feature on the height map."""

    WATER = "water"  # carves: min(current, height)
    ELEVATED = "elevated"  # raises: max(current, height)
    GROUND = "ground"  # linear blend


def classify_label(label: Optional[str], settings: Optional[CompositorSettings] = None) -> TerrainClass:
    """Map a free-form label onto a blend policy by keyword (case-insensitive)."""
    settings = settings or CompositorSettings()
    text = (label or "").lower()
    if any(keyword in text for keyword in settings.water_keywords):
        return TerrainClass.WATER
    if any(keyword in text for keyword in settings.elevated_keywords):
        return TerrainClass.ELEVATED
    return TerrainClass.GROUND


def label_words(label: Optional[str]) -> List[str]:
    return re.findall(r"[a-z]+", (label or "").lower())


def is_terrain_label(label: Optional[str], settings: Optional[CompositorSettings] = None) -> bool:
    """Whether any whole word of the label is a terrain keyword."""
    settings = settings or CompositorSettings()
    keywords = set(settings.terrain_keywords())
    return any(word in keywords for word in label_words(label))


@dataclass(frozen=True)
class Feature:
    """A detected feature placed on the target raster."""

    mask: Optional[RasterMask]
    bounding_box: Rect
    label: str = ""
    elevation: float = 0.0  # normalized height in [0, 1]
    area: Optional[float] = None  # pixel area, derived from mask and box when unset
    color: Optional[Color] = None  # RGBA in [0, 1]
    is_terrain: Optional[bool] = None  # inferred from the label when unset

    def __post_init__(self):
        if not isinstance(self.bounding_box, Rect):
            object.__setattr__(self, "bounding_box", Rect(*self.bounding_box))

    @property
    def effective_area(self) -> float:
        """Covered pixel area on the target raster."""
        if self.area is not None:
            return float(self.area)
        box_area = abs(self.bounding_box.area)
        if self.mask is None or self.mask.is_empty:
            return box_area
        return float(self.mask.alpha.mean()) * box_area


class LabelColorTable:
    """
    Stable colors for labels.

    Labels containing a known terrain class word use fixed colors; other labels get a hue derived
    from a CRC32 of the lowercase label, so the same label always maps to
    the same color.
    """

    def __init__(self, settings: Optional[CompositorSettings] = None):
        self.settings = settings or CompositorSettings()
        self._cache: Dict[Tuple[str, bool], Color] = {}

    def color_for(self, label: Optional[str], is_terrain: bool, alpha: Optional[float] = None) -> Color:
        """
        Color of ``label``.

        Args:
            label: Feature label
            is_terrain: Whether to pick from the terrain or the object hue range
            alpha: Alpha of the returned color, defaults to the segment alpha setting
        """
        key = ((label or "").lower(), bool(is_terrain))
        if key not in self._cache:
            self._cache[key] = self._generate(*key)
        r, g, b = self._cache[key][:3]
        if alpha is None:
            alpha = self.settings.default_segment_alpha
        return (r, g, b, alpha)

    def _generate(self, label: str, is_terrain: bool) -> Color:
        words = set(label_words(label))
        for keyword, (h, s, v) in self.settings.terrain_class_colors.items():
            if keyword in words:
                return (*colorsys.hsv_to_rgb(h, s, v), 1.0)

        fraction = zlib.crc32(label.encode("utf-8")) / 0xFFFFFFFF
        if is_terrain:
            low, high = self.settings.terrain_hue_range
            saturation, value = self.settings.terrain_saturation_value
        else:
            low, high = self.settings.object_hue_range
            saturation, value = self.settings.object_saturation_value
        hue = low + fraction * (high - low)
        return (*colorsys.hsv_to_rgb(hue, saturation, value), 1.0)


def _feature_window(feature: Feature, width: int, height: int):
    """
    Pixel window of a feature and the mask alpha sampled over it.

    Returns:
        ``(y0, y1, x0, x1, alpha)`` or None when the box misses the raster
    """
    box = feature.bounding_box
    if box.width <= 0 or box.height <= 0:
        logger.warning("Feature with empty bounding box skipped", label=feature.label)
        return None

    x0 = max(0, int(np.floor(box.x)))
    y0 = max(0, int(np.floor(box.y)))
    x1 = min(width, int(np.ceil(box.x + box.width)))
    y1 = min(height, int(np.ceil(box.y + box.height)))
    if x1 <= x0 or y1 <= y0:
        return None

    u = (np.arange(x0, x1) - box.x) / box.width
    v = (np.arange(y0, y1) - box.y) / box.height
    uu, vv = np.meshgrid(u, v)
    alpha = feature.mask.sample_bilinear(uu, vv)
    return y0, y1, x0, x1, alpha


class FeatureCompositor:
    """
    Composites features into height and segmentation maps.

    Args:
        settings: Compositing thresholds and label tables
        color_table: Label color source, shared between calls for stable colors
        instrumentation: Optional timing sink
    """

    def __init__(
        self,
        settings: Optional[CompositorSettings] = None,
        color_table: Optional[LabelColorTable] = None,
        instrumentation: Optional[Instrumentation] = None,
    ):
        self.settings = settings or CompositorSettings()
        self.color_table = color_table or LabelColorTable(self.settings)
        self.instrumentation = instrumentation

    def is_terrain(self, feature: Feature) -> bool:
        if feature.is_terrain is not None:
            return feature.is_terrain
        return is_terrain_label(feature.label, self.settings)

    def build_height_map(
        self,
        width: int,
        height: int,
        features: Optional[Iterable[Feature]],
        default_height: float = 0.0,
        smooth: bool = True,
    ) -> np.ndarray:
        """
        Composite feature elevations into a height map.

        Features are applied from lowest to highest elevation. Water
        labels can only lower the terrain, mountain and hill labels can
        only raise it, everything else blends linearly by mask alpha.

        Args:
            width: Output width in pixels
            height: Output height in pixels
            features: Features to composite
            default_height: Height of pixels no feature covers
            smooth: Apply a final 3x3 box blur

        Returns:
            ``(height, width)`` float array in [0, 1]
        """
        heights = np.full((max(0, height), max(0, width)), float(np.clip(default_height, 0.0, 1.0)))
        if heights.size == 0:
            logger.warning("Invalid height map size", width=width, height=height)
            return heights

        ordered = sorted(features or [], key=lambda f: f.elevation)
        skip_alpha = self.settings.skip_alpha

        with measure(self.instrumentation, "build_height_map", "compositing"):
            for feature in ordered:
                if feature.mask is None or feature.mask.is_empty:
                    logger.debug("Feature without mask skipped", label=feature.label)
                    continue
                window = _feature_window(feature, width, height)
                if window is None:
                    continue

                y0, y1, x0, x1, alpha = window
                current = heights[y0:y1, x0:x1]
                feature_height = float(np.clip(feature.elevation, 0.0, 1.0))
                policy = classify_label(feature.label, self.settings)

                if policy is TerrainClass.WATER:
                    blended = lerp(current, np.minimum(current, feature_height), alpha)
                elif policy is TerrainClass.ELEVATED:
                    blended = lerp(current, np.maximum(current, feature_height), alpha)
                else:
                    blended = lerp(current, feature_height, alpha)

                active = alpha >= skip_alpha
                current[active] = blended[active]

            if smooth:
                heights = self.smooth(heights)

        logger.info("Height map composited", width=width, height=height, features=len(ordered))
        return np.clip(heights, 0.0, 1.0)

    def smooth(self, heights: np.ndarray) -> np.ndarray:
        """Box blur that averages only over neighbors inside the raster."""
        size = self.settings.smoothing_kernel
        if size <= 1:
            return heights.copy()
        total = ndimage.uniform_filter(heights, size=size, mode="constant", cval=0.0)
        count = ndimage.uniform_filter(np.ones_like(heights), size=size, mode="constant", cval=0.0)
        return total / count

    def segment_color(self, feature: Feature) -> Color:
        """The feature's own color, or a generated one when it is missing or nearly transparent."""
        color = feature.color
        if color is not None:
            color = tuple(float(c) for c in color)
            if len(color) == 3:
                color = color + (1.0,)
            if color[3] >= self.settings.color_alpha_floor:
                return color
        return self.color_table.color_for(feature.label, self.is_terrain(feature))

    def build_segmentation_map(
        self, width: int, height: int, features: Optional[Iterable[Feature]]
    ) -> np.ndarray:
        """
        Composite feature colors into an RGBA segmentation map.

        Terrain features are drawn first and objects last; within each
        group features are drawn by ascending area, so larger features
        are drawn later and end up on top.

        Returns:
            ``(height, width, 4)`` float RGBA array, transparent where no
            feature was drawn
        """
        image = np.zeros((max(0, height), max(0, width), 4))
        if image.size == 0:
            logger.warning("Invalid segmentation map size", width=width, height=height)
            return image

        ordered = sorted(
            features or [], key=lambda f: (not self.is_terrain(f), f.effective_area)
        )

        with measure(self.instrumentation, "build_segmentation_map", "compositing"):
            for feature in ordered:
                if feature.mask is None or feature.mask.is_empty:
                    logger.debug("Segment without mask skipped", label=feature.label)
                    continue
                window = _feature_window(feature, width, height)
                if window is None:
                    continue

                y0, y1, x0, x1, mask_alpha = window
                self._blend_segment(image[y0:y1, x0:x1], mask_alpha, self.segment_color(feature))

        logger.info("Segmentation map composited", width=width, height=height, segments=len(ordered))
        return image

    def _blend_segment(self, region: np.ndarray, mask_alpha: np.ndarray, color: Color) -> None:
        """Blend ``color`` over ``region`` in place, weighted by the mask."""
        seg_rgb = np.asarray(color[:3])
        coverage = color[3] * mask_alpha
        current_rgb = region[..., :3]
        current_alpha = region[..., 3]

        result_alpha = coverage + current_alpha * (1.0 - coverage)
        weighted = (
            seg_rgb * coverage[..., None]
            + current_rgb * (current_alpha * (1.0 - coverage))[..., None]
        )
        result_rgb = np.divide(
            weighted,
            result_alpha[..., None],
            out=np.zeros_like(weighted),
            where=result_alpha[..., None] > 0,
        )

        write = (mask_alpha >= self.settings.skip_alpha) & (
            result_alpha > self.settings.write_threshold
        )
        region[write, :3] = result_rgb[write]
        region[write, 3] = result_alpha[write]

    def build_labeled_segmentation_map(
        self,
        width: int,
        height: int,
        features: Optional[Iterable[Feature]],
        class_colors: Optional[Dict[str, Sequence[float]]] = None,
    ) -> np.ndarray:
        """
        Paint each feature with one opaque color per label.

        Pixels where the sampled mask alpha exceeds 0.5 take the label's
        color; a feature without a mask fills its whole box. Labels missing
        from ``class_colors`` get a generated color.

        Returns:
            ``(height, width, 4)`` float RGBA array
        """
        image = np.zeros((max(0, height), max(0, width), 4))
        if image.size == 0:
            return image

        colors: Dict[str, Color] = {}
        for label, rgba in (class_colors or {}).items():
            rgba = tuple(float(c) for c in rgba)
            colors[label] = rgba if len(rgba) == 4 else rgba + (1.0,)

        for feature in features or []:
            if feature.label not in colors:
                colors[feature.label] = self.color_table.color_for(
                    feature.label, self.is_terrain(feature), alpha=1.0
                )
            color = np.asarray(colors[feature.label])

            if feature.mask is None:
                box = feature.bounding_box
                x0 = max(0, int(np.floor(box.x)))
                y0 = max(0, int(np.floor(box.y)))
                x1 = min(width, int(np.ceil(box.x_max)))
                y1 = min(height, int(np.ceil(box.y_max)))
                if x1 > x0 and y1 > y0:
                    image[y0:y1, x0:x1] = color
                continue

            window = _feature_window(feature, width, height)
            if window is None:
                continue
            y0, y1, x0, x1, mask_alpha = window
            region = image[y0:y1, x0:x1]
            region[mask_alpha > 0.5] = color

        return image


def build_height_map(
    width: int,
    height: int,
    features: Optional[Iterable[Feature]],
    default_height: float = 0.0,
    smooth: bool = True,
) -> np.ndarray:
    return FeatureCompositor().build_height_map(width, height, features, default_height, smooth)


def build_segmentation_map(
    width: int, height: int, features: Optional[Iterable[Feature]]
) -> np.ndarray:
    return FeatureCompositor().build_segmentation_map(width, height, features)
