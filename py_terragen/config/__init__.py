"""
Configuration modules for mask processing and compositing.
"""

from .settings import Settings, get_settings
from .compositor_settings import CompositorSettings

__all__ = ["Settings", "get_settings", "CompositorSettings"]
