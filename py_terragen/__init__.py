"""
py-terragen: mask-to-geometry and raster compositing for terrain generation.
"""

__version__ = "0.1.0"
