"""
Raster masks and mask morphology.

This module implements:
- The immutable RasterMask alpha grid
- Procedural mask creation (solid, circular, rounded rectangle, polygon, gradient)
- Per-pixel blend operations between masks
- Binary erosion and dilation, separable Gaussian blur
- Resampling, inversion and channel extraction
- Masked blending of images

Pixel ``(x, y)`` lives at ``alpha[y, x]``; every operation returns a new mask.
"""

from enum import Enum
from typing import Callable, Optional, Sequence, Union

import numpy as np
import structlog
from scipy import ndimage

from .geometry import Rect, as_points

logger = structlog.get_logger()

# Alpha values are stored on a 2^-24 grid so that 1 - (1 - a) == a exactly.
ALPHA_RESOLUTION = float(2 ** 24)

BINARY_THRESHOLD = 0.5

Resampler = Callable[[np.ndarray, int, int], np.ndarray]


def quantize_alpha(values: np.ndarray) -> np.ndarray:
    """Clamp to [0, 1] and snap onto the alpha grid."""
    clipped = np.clip(np.nan_to_num(values, nan=0.0), 0.0, 1.0)
    return np.round(clipped * ALPHA_RESOLUTION) / ALPHA_RESOLUTION


def bilinear_resample(array: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Resample a 2D array to ``(height, width)`` with bilinear filtering.

    Pixel centers are aligned and edges are clamped, so upsampling a
    constant image stays constant.
    """
    width = max(0, int(width))
    height = max(0, int(height))
    src_h, src_w = array.shape
    if width == 0 or height == 0:
        return np.zeros((height, width), dtype=np.float64)
    if src_w == 0 or src_h == 0:
        return np.zeros((height, width), dtype=np.float64)
    if (src_w, src_h) == (width, height):
        return np.array(array, dtype=np.float64)

    ys = (np.arange(height) + 0.5) * (src_h / height) - 0.5
    xs = (np.arange(width) + 0.5) * (src_w / width) - 0.5
    grid_y, grid_x = np.meshgrid(ys, xs, indexing="ij")
    return ndimage.map_coordinates(
        np.asarray(array, dtype=np.float64), [grid_y, grid_x], order=1, mode="nearest"
    )


class RasterMask:
    """
    Immutable grid of alpha values in [0, 1].

    The backing array is read-only; operations in this module build new
    masks instead of editing existing ones.
    """

    __slots__ = ("_alpha",)

    def __init__(self, alpha):
        array = np.array(alpha, dtype=np.float64)
        if array.ndim != 2:
            raise ValueError(f"mask alpha must be 2-dimensional, got shape {array.shape}")
        array = quantize_alpha(array)
        array.setflags(write=False)
        self._alpha = array

    @property
    def alpha(self) -> np.ndarray:
        return self._alpha

    @property
    def width(self) -> int:
        return self._alpha.shape[1]

    @property
    def height(self) -> int:
        return self._alpha.shape[0]

    @property
    def is_empty(self) -> bool:
        """True for zero-sized masks."""
        return self._alpha.size == 0

    def binary(self, threshold: float = BINARY_THRESHOLD) -> np.ndarray:
        """Boolean grid of pixels at or above ``threshold``."""
        return self._alpha >= threshold

    def sample_bilinear(self, u, v):
        """
        Sample the mask at normalized texture coordinates.

        Args:
            u: Horizontal coordinate(s) in [0, 1], pixel centers at (i + 0.5) / width
            v: Vertical coordinate(s) in [0, 1]

        Returns:
            Interpolated alpha with the broadcast shape of ``u`` and ``v``;
            coordinates outside the mask clamp to the nearest edge.
        """
        u_arr, v_arr = np.broadcast_arrays(
            np.asarray(u, dtype=np.float64), np.asarray(v, dtype=np.float64)
        )
        if self.is_empty:
            result = np.zeros(u_arr.shape, dtype=np.float64)
        else:
            xs = u_arr * self.width - 0.5
            ys = v_arr * self.height - 0.5
            result = ndimage.map_coordinates(
                self._alpha, [ys.ravel(), xs.ravel()], order=1, mode="nearest"
            ).reshape(u_arr.shape)
        if result.ndim == 0:
            return float(result)
        return result

    def to_rgba(self) -> np.ndarray:
        """White RGBA image carrying the mask as its alpha channel."""
        image = np.ones((self.height, self.width, 4), dtype=np.float64)
        image[..., 3] = self._alpha
        return image

    def __repr__(self) -> str:
        return f"RasterMask(width={self.width}, height={self.height})"


def empty_mask() -> RasterMask:
    """The zero-sized mask returned when inputs are unusable."""
    return RasterMask(np.zeros((0, 0)))


def blank(width: int, height: int) -> RasterMask:
    """Fully transparent mask."""
    if width <= 0 or height <= 0:
        return empty_mask()
    return RasterMask(np.zeros((height, width)))


def _pixel_grid(width: int, height: int):
    ys, xs = np.mgrid[0:height, 0:width]
    return xs.astype(np.float64), ys.astype(np.float64)


def _edge_ramp(radius: float, distance: np.ndarray, feather: float) -> np.ndarray:
    """Alpha for a shape edge at ``radius``: linear ramp over ``feather`` or a hard step."""
    if feather > 0:
        return np.clip((radius - distance) / feather, 0.0, 1.0)
    return (distance <= radius).astype(np.float64)


def solid(width: int, height: int) -> RasterMask:
    """Fully opaque mask."""
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()
    return RasterMask(np.ones((height, width)))


def circular(width: int, height: int, feather: float = 0.0) -> RasterMask:
    """
    Disc centered in the image with radius ``min(width, height) / 2``.

    Args:
        width: Mask width in pixels
        height: Mask height in pixels
        feather: Width of the linear edge falloff, 0 for a hard edge
    """
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()

    cx = width / 2.0
    cy = height / 2.0
    radius = min(cx, cy)
    xs, ys = _pixel_grid(width, height)
    distance = np.hypot(xs - cx, ys - cy)
    return RasterMask(_edge_ramp(radius, distance, feather))


def rounded_rect(width: int, height: int, corner_radius: float, feather: float = 0.0) -> RasterMask:
    """
    Full-image rectangle with rounded corners.

    Pixels inside a corner square are measured against that corner's arc
    center; every other pixel is opaque. A non-positive radius gives a
    solid mask.
    """
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()
    if corner_radius <= 0:
        return solid(width, height)

    r = float(corner_radius)
    xs, ys = _pixel_grid(width, height)
    left = xs < r
    right = xs > width - r
    top = ys < r
    bottom = ys > height - r

    # First matching corner wins when corner squares overlap
    conditions = [left & top, right & top, left & bottom, right & bottom]
    centers = [(r, r), (width - r, r), (r, height - r), (width - r, height - r)]
    distances = [np.hypot(xs - cx, ys - cy) for cx, cy in centers]
    in_corner = np.any(conditions, axis=0)
    distance = np.select(conditions, distances, default=0.0)

    alpha = np.where(in_corner, _edge_ramp(r, distance, feather), 1.0)
    return RasterMask(alpha)


def _points_in_polygon(xs: np.ndarray, ys: np.ndarray, polygon: np.ndarray) -> np.ndarray:
    """Even-odd rule, evaluated for all pixels at once."""
    inside = np.zeros(xs.shape, dtype=bool)
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        crosses = (yi > ys) != (yj > ys)
        if yj != yi:
            x_cross = (xj - xi) * (ys - yi) / (yj - yi) + xi
            inside ^= crosses & (xs < x_cross)
        j = i
    return inside


def _distance_to_edges(xs: np.ndarray, ys: np.ndarray, polygon: np.ndarray) -> np.ndarray:
    """Distance from each pixel to the nearest polygon edge."""
    best = np.full(xs.shape, np.inf)
    n = len(polygon)
    j = n - 1
    for i in range(n):
        ax, ay = polygon[j]
        bx, by = polygon[i]
        abx, aby = bx - ax, by - ay
        length_sq = abx * abx + aby * aby
        if length_sq > 0:
            t = np.clip(((xs - ax) * abx + (ys - ay) * aby) / length_sq, 0.0, 1.0)
        else:
            t = np.zeros(xs.shape)
        best = np.minimum(best, np.hypot(xs - (ax + abx * t), ys - (ay + aby * t)))
        j = i
    return best


def polygon(points: Sequence, width: int, height: int, feather: float = 0.0) -> RasterMask:
    """
    Rasterize a polygon given in pixel coordinates.

    With feathering, alpha ramps from 0 at ``feather`` pixels outside the
    boundary up to 1 at ``feather`` pixels inside it.

    Raises:
        ValueError: If fewer than 3 points are given
    """
    if points is None or len(points) < 3:
        raise ValueError("At least 3 points are required to create a polygon mask")
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()

    ring = as_points(points)
    xs, ys = _pixel_grid(width, height)
    inside = _points_in_polygon(xs, ys, ring)

    if feather <= 0:
        return RasterMask(inside.astype(np.float64))

    distance = _distance_to_edges(xs, ys, ring)
    ramp = np.clip(distance / feather, 0.0, 1.0)
    alpha = np.where(inside, ramp, np.where(distance <= feather, 1.0 - ramp, 0.0))
    return RasterMask(alpha)


def box(width: int, height: int, bounds: Rect) -> RasterMask:
    """Opaque fill of ``bounds`` (pixel space) on a transparent mask."""
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()
    alpha = np.zeros((height, width))
    x0, y0, x1, y1 = _pixel_span(bounds, width, height)
    alpha[y0:y1, x0:x1] = 1.0
    return RasterMask(alpha)


def gradient(width: int, height: int, bounds: Rect, falloff_power: float = 2.0) -> RasterMask:
    """
    Elliptical falloff filling ``bounds``.

    Alpha is ``(1 - d) ** falloff_power`` where ``d`` is the distance to
    the box center normalized by the half extents.
    """
    if width <= 0 or height <= 0:
        logger.warning("Invalid mask size", width=width, height=height)
        return empty_mask()

    alpha = np.zeros((height, width))
    if bounds.width <= 0 or bounds.height <= 0:
        return RasterMask(alpha)

    x0, y0, x1, y1 = _pixel_span(bounds, width, height)
    cx, cy = bounds.center
    xs, ys = np.meshgrid(np.arange(x0, x1), np.arange(y0, y1))
    nx = (xs - cx) / (bounds.width / 2.0)
    ny = (ys - cy) / (bounds.height / 2.0)
    falloff = 1.0 - np.clip(np.hypot(nx, ny), 0.0, 1.0)
    alpha[y0:y1, x0:x1] = falloff ** falloff_power
    return RasterMask(alpha)


def _pixel_span(bounds: Rect, width: int, height: int):
    """Integer pixel range covered by ``bounds``, clipped to the image."""
    x0 = max(0, int(np.floor(bounds.x)))
    y0 = max(0, int(np.floor(bounds.y)))
    x1 = min(width, int(np.ceil(bounds.x + bounds.width)))
    y1 = min(height, int(np.ceil(bounds.y + bounds.height)))
    return x0, y0, max(x0, x1), max(y0, y1)


def crop(mask: Optional[RasterMask], bounds: Rect) -> Optional[RasterMask]:
    """Copy a sub-rectangle; the rectangle is clamped to keep at least one pixel."""
    if mask is None:
        return None
    if mask.is_empty:
        return empty_mask()

    x = min(max(int(np.floor(bounds.x)), 0), mask.width - 1)
    y = min(max(int(np.floor(bounds.y)), 0), mask.height - 1)
    w = min(max(int(np.floor(bounds.width)), 1), mask.width - x)
    h = min(max(int(np.floor(bounds.height)), 1), mask.height - y)
    return RasterMask(mask.alpha[y:y + h, x:x + w])


def from_height_threshold(height_image: Optional[np.ndarray], threshold: float = 0.5) -> RasterMask:
    """
    Binary mask of pixels whose red (or gray) value reaches ``threshold``.

    Args:
        height_image: Grayscale ``(H, W)`` or color ``(H, W, C)`` heightmap
        threshold: Height in [0, 1] required for inclusion
    """
    if height_image is None:
        logger.warning("Height image missing, returning empty mask")
        return empty_mask()

    heights = _channel(np.asarray(height_image), 0)
    return RasterMask((heights >= threshold).astype(np.float64))


class MaskBlendOperation(str, Enum):
    """Per-pixel operations for combining two masks."""

    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    MIN = "min"
    MAX = "max"
    AVERAGE = "average"
    DIFFERENCE = "difference"


_BLEND_FUNCTIONS = {
    MaskBlendOperation.ADD: lambda a, b: a + b,
    MaskBlendOperation.SUBTRACT: lambda a, b: a - b,
    MaskBlendOperation.MULTIPLY: lambda a, b: a * b,
    MaskBlendOperation.MIN: np.minimum,
    MaskBlendOperation.MAX: np.maximum,
    MaskBlendOperation.AVERAGE: lambda a, b: (a + b) / 2.0,
    MaskBlendOperation.DIFFERENCE: lambda a, b: np.abs(a - b),
}


def _blend_operation(operation) -> MaskBlendOperation:
    try:
        return MaskBlendOperation(operation)
    except ValueError:
        logger.warning("Unknown blend operation, using max", operation=operation)
        return MaskBlendOperation.MAX


def combine(
    mask_a: Optional[RasterMask],
    mask_b: Optional[RasterMask],
    operation: Union[MaskBlendOperation, str] = MaskBlendOperation.MAX,
    resampler: Optional[Resampler] = None,
) -> Optional[RasterMask]:
    """
    Combine two masks pixel by pixel.

    ``mask_b`` is resampled to the size of ``mask_a`` when they differ. A
    missing operand is treated as a transparent mask the size of the other.

    Args:
        mask_a: First operand, defines the output size
        mask_b: Second operand
        operation: Blend operation; unknown values behave as MAX
        resampler: Resampler used to match sizes

    Returns:
        Combined mask, or None if both operands are missing
    """
    if mask_a is None and mask_b is None:
        return None
    if mask_a is None:
        mask_a = RasterMask(np.zeros_like(mask_b.alpha))
    if mask_b is None:
        mask_b = RasterMask(np.zeros_like(mask_a.alpha))

    b = resize(mask_b, mask_a.width, mask_a.height, resampler).alpha
    blend = _BLEND_FUNCTIONS[_blend_operation(operation)]
    return RasterMask(blend(mask_a.alpha, b))


# 4-connected neighborhood
CROSS = ndimage.generate_binary_structure(2, 1)


def erode(mask: Optional[RasterMask], iterations: int = 1) -> Optional[RasterMask]:
    """
    Clear set pixels that touch an unset 4-neighbor.

    Each iteration reads the result of the previous one; pixels outside
    the image do not count as neighbors.
    """
    if mask is None or iterations <= 0 or mask.is_empty:
        return mask

    alpha = mask.alpha.copy()
    for _ in range(iterations):
        binary = alpha >= BINARY_THRESHOLD
        alpha[binary & ~ndimage.binary_erosion(binary, CROSS, border_value=1)] = 0.0
    return RasterMask(alpha)


def dilate(mask: Optional[RasterMask], iterations: int = 1) -> Optional[RasterMask]:
    """Set unset pixels that touch a set 4-neighbor."""
    if mask is None or iterations <= 0 or mask.is_empty:
        return mask

    alpha = mask.alpha.copy()
    for _ in range(iterations):
        binary = alpha >= BINARY_THRESHOLD
        alpha[~binary & ndimage.binary_dilation(binary, CROSS)] = 1.0
    return RasterMask(alpha)


def gaussian_kernel(size: int, sigma: float) -> np.ndarray:
    """Normalized 1D Gaussian kernel of odd ``size``."""
    offsets = np.arange(size) - size // 2
    kernel = np.exp(-(offsets ** 2) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


def blur(mask: Optional[RasterMask], kernel_size: int = 5, sigma: float = 1.0) -> Optional[RasterMask]:
    """
    Separable Gaussian blur, horizontal pass then vertical pass.

    Kernel weights that fall outside the image are dropped and the rest
    renormalized, so a solid mask stays solid up to its borders.

    Args:
        mask: Mask to blur
        kernel_size: Kernel width; sizes below 3 or even sizes become max(3, size + 1)
        sigma: Standard deviation in pixels
    """
    if mask is None:
        return None
    if mask.is_empty:
        return mask
    if sigma <= 0:
        logger.warning("Non-positive blur sigma, mask left unchanged", sigma=sigma)
        return mask

    if kernel_size < 3 or kernel_size % 2 == 0:
        kernel_size = max(3, kernel_size + 1)
    kernel = gaussian_kernel(kernel_size, sigma)

    result = mask.alpha
    weights = np.ones_like(result)
    for axis in (1, 0):
        total = ndimage.correlate1d(result, kernel, axis=axis, mode="constant", cval=0.0)
        norm = ndimage.correlate1d(weights, kernel, axis=axis, mode="constant", cval=0.0)
        result = np.divide(total, norm, out=np.zeros_like(total), where=norm > 0)
    return RasterMask(result)


def resize(
    mask: Optional[RasterMask], width: int, height: int, resampler: Optional[Resampler] = None
) -> Optional[RasterMask]:
    """Resample to ``width`` x ``height``; bilinear unless another resampler is given."""
    if mask is None:
        return None
    if width <= 0 or height <= 0:
        return empty_mask()
    if (mask.width, mask.height) == (width, height):
        return mask

    resampler = resampler or bilinear_resample
    resized = np.asarray(resampler(mask.alpha, width, height), dtype=np.float64)
    if resized.shape != (height, width):
        raise ValueError(
            f"resampler returned shape {resized.shape}, expected {(height, width)}"
        )
    return RasterMask(resized)


def invert(mask: Optional[RasterMask]) -> Optional[RasterMask]:
    """Swap covered and uncovered regions (alpha -> 1 - alpha)."""
    if mask is None:
        return None
    return RasterMask(1.0 - mask.alpha)


def _as_unit_float(image: np.ndarray) -> np.ndarray:
    if np.issubdtype(image.dtype, np.integer):
        return image.astype(np.float64) / float(np.iinfo(image.dtype).max)
    return image.astype(np.float64)


def _channel(image: np.ndarray, channel_index: int) -> np.ndarray:
    """One RGBA channel of a gray, gray+alpha, RGB or RGBA image."""
    image = _as_unit_float(image)
    if image.ndim == 2:
        if channel_index == 3:
            return np.ones(image.shape)
        return image

    channels = image.shape[2]
    if channel_index == 3:
        if channels >= 4:
            return image[..., 3]
        if channels == 2:
            return image[..., 1]
        return np.ones(image.shape[:2])
    if channels >= 3:
        return image[..., channel_index]
    return image[..., 0]


def extract_channel(image: Optional[np.ndarray], channel_index: int) -> Optional[RasterMask]:
    """
    Build a mask from one channel of an image.

    Args:
        image: ``(H, W)`` or ``(H, W, C)`` array, floats in [0, 1] or integers
        channel_index: 0=R, 1=G, 2=B, 3=A

    Returns:
        The channel as a mask, or None when no image is given

    Raises:
        ValueError: If ``channel_index`` is outside [0, 3]
    """
    if not 0 <= channel_index <= 3:
        raise ValueError(f"channel index must be in [0, 3], got {channel_index}")
    if image is None:
        return None

    image = np.asarray(image)
    if image.ndim not in (2, 3):
        raise ValueError(f"image must be 2- or 3-dimensional, got shape {image.shape}")
    return RasterMask(_channel(image, channel_index))


def _resample_image(image: np.ndarray, width: int, height: int, resampler: Resampler) -> np.ndarray:
    if image.shape[:2] == (height, width):
        return image
    if image.ndim == 2:
        return np.asarray(resampler(image, width, height), dtype=np.float64)
    return np.stack(
        [resampler(image[..., c], width, height) for c in range(image.shape[2])], axis=-1
    )


def combine_with_mask(
    background: Optional[np.ndarray],
    foreground: Optional[np.ndarray],
    mask: Optional[RasterMask],
    resampler: Optional[Resampler] = None,
) -> Optional[np.ndarray]:
    """
    Blend ``foreground`` over ``background`` using the mask alpha as blend factor.

    The foreground and the mask are resampled to the background size.
    A missing background yields the foreground, a missing foreground the
    background, and a missing mask the foreground.

    Args:
        background: ``(H, W)`` or ``(H, W, C)`` image
        foreground: Image with the same channel count as ``background``
        mask: Per-pixel blend factor, 0 keeps the background
        resampler: Resampler used to match sizes

    Raises:
        ValueError: If the images have different channel counts
    """
    if background is None:
        return foreground
    if foreground is None:
        return background
    if mask is None:
        return foreground

    background = _as_unit_float(np.asarray(background))
    foreground = _as_unit_float(np.asarray(foreground))
    if background.shape[2:] != foreground.shape[2:]:
        raise ValueError(
            f"channel mismatch: background {background.shape}, foreground {foreground.shape}"
        )

    height, width = background.shape[:2]
    resampler = resampler or bilinear_resample
    foreground = _resample_image(foreground, width, height, resampler)
    blend = resize(mask, width, height, resampler).alpha
    if blend.size == 0:
        return background
    if background.ndim == 3:
        blend = blend[..., None]
    return background + (foreground - background) * blend
