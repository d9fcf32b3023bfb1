"""
Settings for feature compositing.

This module defines the thresholds, label keyword tables and color
generation ranges used when features are composited into height and
segmentation maps.
"""

from typing import Dict, List, Tuple

from pydantic import BaseModel, Field, field_validator


class CompositorSettings(BaseModel):
    """Settings for height and segmentation map compositing."""

    # Sampling thresholds
    skip_alpha: float = Field(
        default=0.01, ge=0.0, le=1.0, description="Mask alpha below which a pixel is ignored"
    )
    write_threshold: float = Field(
        default=0.01, ge=0.0, le=1.0, description="Blended alpha required to write a color"
    )
    color_alpha_floor: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Feature colors with less alpha are replaced by generated ones",
    )

    # Smoothing
    smoothing_kernel: int = Field(default=3, ge=1, description="Box blur size applied to height maps")

    # Label classification (case-insensitive substring match)
    water_keywords: List[str] = Field(
        default=["water", "river", "lake", "ocean"],
        description="Labels that carve into the terrain",
    )
    elevated_keywords: List[str] = Field(
        default=["mountain", "hill"],
        description="Labels that raise the terrain",
    )

    # Whole-word labels that mark a segment as terrain
    terrain_labels: List[str] = Field(
        default=[
            "mountain", "hill", "water", "lake", "river", "ocean", "forest", "tree",
            "grass", "plain", "plateau", "valley", "canyon", "cliff", "beach", "desert",
            "snow", "ice", "swamp", "marsh", "meadow", "field", "dune", "rock",
            "boulder", "terrain", "land", "island", "peninsula", "bay", "coast",
            "shore", "woods", "ridge", "peak",
        ],
        description="Label words recognised as terrain",
    )

    # Known terrain classes and their HSV colors, matched by whole word; first match wins
    terrain_class_colors: Dict[str, Tuple[float, float, float]] = Field(
        default={
            "water": (0.6, 0.8, 0.9),
            "lake": (0.6, 0.8, 0.9),
            "river": (0.6, 0.8, 0.9),
            "ocean": (0.6, 0.8, 0.9),
            "mountain": (0.1, 0.5, 0.6),
            "hill": (0.1, 0.5, 0.6),
            "forest": (0.3, 0.7, 0.7),
            "tree": (0.3, 0.7, 0.7),
            "woods": (0.3, 0.7, 0.7),
            "grass": (0.25, 0.6, 0.8),
            "grassland": (0.25, 0.6, 0.8),
            "plain": (0.25, 0.6, 0.8),
            "sand": (0.12, 0.4, 0.9),
            "desert": (0.12, 0.4, 0.9),
            "beach": (0.12, 0.4, 0.9),
            "snow": (0.0, 0.1, 1.0),
            "ice": (0.0, 0.1, 1.0),
        },
        description="HSV colors of labels recognised as terrain",
    )

    # Generated colors
    default_segment_alpha: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Alpha of generated segment colors"
    )
    terrain_hue_range: Tuple[float, float] = Field(
        default=(0.2, 0.5), description="Hue range for generated terrain colors"
    )
    object_hue_range: Tuple[float, float] = Field(
        default=(0.4, 1.0), description="Hue range for generated object colors"
    )
    terrain_saturation_value: Tuple[float, float] = Field(default=(0.7, 0.8))
    object_saturation_value: Tuple[float, float] = Field(default=(0.8, 0.9))

    @field_validator("water_keywords", "elevated_keywords", "terrain_labels")
    @classmethod
    def lowercase_keywords(cls, value: List[str]) -> List[str]:
        return [keyword.lower() for keyword in value]

    @field_validator("terrain_hue_range", "object_hue_range")
    @classmethod
    def ordered_range(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        low, high = value
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError(f"hue range must be ordered within [0, 1], got {value}")
        return value

    @field_validator("terrain_class_colors")
    @classmethod
    def lowercase_classes(
        cls, value: Dict[str, Tuple[float, float, float]]
    ) -> Dict[str, Tuple[float, float, float]]:
        return {keyword.lower(): hsv for keyword, hsv in value.items()}

    def terrain_keywords(self) -> List[str]:
        """Every keyword that marks a label as terrain."""
        keywords = list(self.water_keywords) + list(self.elevated_keywords)
        for keyword in list(self.terrain_class_colors) + list(self.terrain_labels):
            if keyword not in keywords:
                keywords.append(keyword)
        return keywords
