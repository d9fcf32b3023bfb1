"""
Core mask, geometry and compositing functionality.
"""

from .geometry import Rect
from .raster_mask import MaskBlendOperation, RasterMask
from .mask_analysis import MaskAnalyzer, SimilarityMetrics
from .contours import ContourExtractor, extract_contour, simplify_polyline
from .triangulation import PolygonTriangulator, triangulate_polygon
from .mesh_builder import Mesh, MeshBuilder, mesh_from_mask
from .feature_compositor import Feature, FeatureCompositor, LabelColorTable, TerrainClass

__all__ = ['Rect', 'MaskBlendOperation', 'RasterMask',
           'MaskAnalyzer', 'SimilarityMetrics',
           'ContourExtractor', 'extract_contour', 'simplify_polyline',
           'PolygonTriangulator', 'triangulate_polygon',
           'Mesh', 'MeshBuilder', 'mesh_from_mask',
           'Feature', 'FeatureCompositor', 'LabelColorTable', 'TerrainClass']
