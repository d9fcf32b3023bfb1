"""Configuration management."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Library settings, overridable through ``TERRAGEN_*`` environment variables."""

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="console", description="Log renderer: console or json")

    # Masks
    mask_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Alpha threshold for binary mask tests"
    )

    # Contours
    contour_trace_cap: int = Field(
        default=2000, gt=0, description="Upper bound on traced boundary points"
    )
    simplify_tolerance: float = Field(
        default=0.5, ge=0.0, description="Default polyline simplification tolerance in pixels"
    )

    # Meshes
    mesh_height_offset: float = Field(
        default=0.1, description="Height of mask meshes above the ground plane"
    )

    # Instrumentation
    slow_operation_ms: float = Field(
        default=250.0, gt=0.0, description="Duration after which an operation is reported"
    )

    class Config:
        env_file = ".env"
        env_prefix = "TERRAGEN_"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
