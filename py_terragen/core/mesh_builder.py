"""
Mesh construction and cleanup.

This module implements:
- Meshes from mask outlines placed inside a world-space box
- Grid meshes from height fields, heightmap images and water planes
- Vertex welding, interior-triangle removal, decimation and mesh merging

The ground plane is (x, z) with +y up. Triangles are wound so that
``cross(b - a, c - a)`` points up for ground-aligned geometry.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from ..config.settings import get_settings
from ..utils.instrumentation import Instrumentation, measure
from .contours import MIN_SIMPLIFY_POINTS, ContourExtractor, simplify_polyline
from .geometry import Rect, lerp
from .raster_mask import RasterMask, extract_channel
from .triangulation import triangulate_polygon

logger = structlog.get_logger()

UP = np.array([0.0, 1.0, 0.0])

# Fallback quad, wound to face +y
QUAD_TRIANGLES = (0, 2, 1, 0, 3, 2)
QUAD_UVS = ((0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0))

# Decimation keeps the mesh as is when the target is at least this share of it
DECIMATE_KEEP_RATIO = 0.9

# World units covered by one water texture tile
WATER_UV_TILE = 10.0


@dataclass
class Mesh:
    """Indexed triangle mesh."""

    vertices: np.ndarray  # (N, 3)
    triangles: np.ndarray  # flat, three indices per triangle
    uvs: Optional[np.ndarray] = None  # (N, 2)
    normals: Optional[np.ndarray] = None  # (N, 3)
    name: str = field(default="Mesh")

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1)
        if self.uvs is not None:
            self.uvs = np.asarray(self.uvs, dtype=np.float64).reshape(-1, 2)
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)

        if len(self.triangles) % 3 != 0:
            raise ValueError(f"triangle index count must be a multiple of 3, got {len(self.triangles)}")
        if len(self.triangles) and (
            self.triangles.min() < 0 or self.triangles.max() >= len(self.vertices)
        ):
            raise ValueError("triangle index out of range")
        for name, attribute in (("uvs", self.uvs), ("normals", self.normals)):
            if attribute is not None and len(attribute) != len(self.vertices):
                raise ValueError(f"{name} length does not match vertex count")

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles) // 3

    @property
    def faces(self) -> np.ndarray:
        """Triangles as an ``(M, 3)`` index array."""
        return self.triangles.reshape(-1, 3)

    @property
    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Minimum and maximum corners of the vertex positions."""
        if self.vertex_count == 0:
            return np.zeros(3), np.zeros(3)
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def face_normals(self) -> np.ndarray:
        """Unnormalized triangle normals; their length is twice the triangle area."""
        corners = self.vertices[self.faces]
        return np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0])

    def surface_area(self) -> float:
        if self.triangle_count == 0:
            return 0.0
        return 0.5 * float(np.linalg.norm(self.face_normals(), axis=1).sum())

    def recalculate_normals(self) -> "Mesh":
        """
        Return a copy with area-weighted vertex normals.

        Vertices not used by any triangle, or whose faces cancel out, get
        the up vector.
        """
        normals = np.zeros_like(self.vertices)
        if self.triangle_count:
            face_normals = self.face_normals()
            for corner in range(3):
                np.add.at(normals, self.faces[:, corner], face_normals)

        lengths = np.linalg.norm(normals, axis=1)
        degenerate = lengths < 1e-12
        normals[degenerate] = UP
        normals[~degenerate] /= lengths[~degenerate, None]
        return replace(self, normals=normals)

    def transformed(self, matrix: np.ndarray) -> "Mesh":
        """Apply a 4x4 affine transform to positions and normals."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"transform must be 4x4, got {matrix.shape}")

        homogeneous = np.hstack([self.vertices, np.ones((self.vertex_count, 1))])
        vertices = (homogeneous @ matrix.T)[:, :3]

        normals = self.normals
        if normals is not None:
            # Singular transforms collapse normals to zero instead of raising
            normal_matrix = np.linalg.pinv(matrix[:3, :3]).T
            normals = normals @ normal_matrix.T
            lengths = np.linalg.norm(normals, axis=1, keepdims=True)
            normals = np.divide(normals, lengths, out=np.tile(UP, (len(normals), 1)), where=lengths > 0)
        return replace(self, vertices=vertices, normals=normals)

    def copy(self) -> "Mesh":
        return Mesh(
            vertices=self.vertices.copy(),
            triangles=self.triangles.copy(),
            uvs=None if self.uvs is None else self.uvs.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            name=self.name,
        )


def fallback_quad(bounding_box: Rect, height_offset: float) -> Mesh:
    """Two-triangle quad covering ``bounding_box`` at ``height_offset``."""
    b = bounding_box
    vertices = [
        (b.x_min, height_offset, b.y_min),
        (b.x_max, height_offset, b.y_min),
        (b.x_max, height_offset, b.y_max),
        (b.x_min, height_offset, b.y_max),
    ]
    mesh = Mesh(vertices=vertices, triangles=QUAD_TRIANGLES, uvs=QUAD_UVS, name="FallbackQuad")
    return mesh.recalculate_normals()


def _box_uvs(vertices: np.ndarray, bounding_box: Rect) -> np.ndarray:
    """Planar UVs of the (x, z) positions normalized by the box."""
    uvs = np.zeros((len(vertices), 2))
    if bounding_box.width != 0:
        uvs[:, 0] = (vertices[:, 0] - bounding_box.x_min) / bounding_box.width
    if bounding_box.height != 0:
        uvs[:, 1] = (vertices[:, 2] - bounding_box.y_min) / bounding_box.height
    return uvs


def _grid_triangles(columns: int, rows: int) -> np.ndarray:
    """Two triangles per grid cell: (tl, bl, br) and (tl, br, tr)."""
    zs, xs = np.mgrid[0:rows - 1, 0:columns - 1]
    top_left = (zs * columns + xs).ravel()
    top_right = top_left + 1
    bottom_left = top_left + columns
    bottom_right = bottom_left + 1
    cells = np.stack(
        [top_left, bottom_left, bottom_right, top_left, bottom_right, top_right], axis=1
    )
    return cells.ravel()


def _terrain_extent(terrain_size: Sequence[float]) -> Tuple[float, float]:
    """World size along x and z from a 2-tuple ``(x, z)`` or a 3-tuple ``(x, y, z)``."""
    if len(terrain_size) not in (2, 3):
        raise ValueError(f"terrain size must have 2 or 3 components, got {len(terrain_size)}")
    return float(terrain_size[0]), float(terrain_size[-1])


def _grid_mesh(heights: np.ndarray, terrain_size, height_scale: float, name: str) -> Mesh:
    rows, columns = heights.shape
    size_x, size_z = _terrain_extent(terrain_size)
    nz, nx = np.meshgrid(
        np.linspace(0.0, 1.0, rows), np.linspace(0.0, 1.0, columns), indexing="ij"
    )
    vertices = np.stack(
        [nx.ravel() * size_x, heights.ravel() * height_scale, nz.ravel() * size_z], axis=1
    )
    uvs = np.stack([nx.ravel(), nz.ravel()], axis=1)
    mesh = Mesh(vertices=vertices, triangles=_grid_triangles(columns, rows), uvs=uvs, name=name)
    return mesh.recalculate_normals()


class MeshBuilder:
    """
    Builds meshes from masks and height data.

    Args:
        extractor: Contour extractor used for mask outlines
        instrumentation: Optional timing sink
    """

    def __init__(
        self,
        extractor: Optional[ContourExtractor] = None,
        instrumentation: Optional[Instrumentation] = None,
    ):
        self.extractor = extractor or ContourExtractor()
        self.instrumentation = instrumentation

    def from_mask(
        self,
        mask: Optional[RasterMask],
        bounding_box_world: Rect,
        simplify_tolerance: Optional[float] = None,
        height_offset: Optional[float] = None,
    ) -> Mesh:
        """
        Build a flat mesh from the outline of a mask.

        The traced contour is mapped into ``bounding_box_world`` on the
        ground plane: pixel x maps onto world x, pixel y onto world z.

        Args:
            mask: Mask whose outline is meshed
            bounding_box_world: World-space (x, z) box covered by the mask
            simplify_tolerance: RDP tolerance in pixels, applied to contours
                with more than 10 points
            height_offset: World y of the mesh

        Returns:
            The outline mesh, or a quad covering the box when no usable
            outline is found
        """
        settings = get_settings()
        if simplify_tolerance is None:
            simplify_tolerance = settings.simplify_tolerance
        if height_offset is None:
            height_offset = settings.mesh_height_offset

        if mask is None or mask.is_empty:
            logger.warning("Cannot create mesh from missing mask, using fallback quad")
            return fallback_quad(bounding_box_world, height_offset)

        with measure(self.instrumentation, "mesh_from_mask", "mesh"):
            contour = self.extractor.trace(mask)
            if len(contour) < 3:
                logger.warning("Insufficient contour points", points=len(contour))
                return fallback_quad(bounding_box_world, height_offset)

            if simplify_tolerance > 0 and len(contour) > MIN_SIMPLIFY_POINTS:
                contour = simplify_polyline(contour, simplify_tolerance)

            triangles = triangulate_polygon(contour)
            if len(triangles) < 3:
                logger.warning("Triangulation failed, using fallback quad", points=len(contour))
                return fallback_quad(bounding_box_world, height_offset)

            b = bounding_box_world
            xs = lerp(b.x_min, b.x_max, contour[:, 0] / mask.width)
            zs = lerp(b.y_min, b.y_max, contour[:, 1] / mask.height)
            vertices = np.stack([xs, np.full(len(contour), float(height_offset)), zs], axis=1)

            mesh = Mesh(
                vertices=vertices,
                triangles=triangles,
                uvs=_box_uvs(vertices, b),
                name="MaskMesh",
            )
            return mesh.recalculate_normals()

    def from_height_field(
        self, heights: Optional[np.ndarray], terrain_size, height_scale: float = 1.0
    ) -> Optional[Mesh]:
        """
        Build a terrain grid from a height array.

        Args:
            heights: ``(rows, columns)`` array, rows along z and columns along x
            terrain_size: World extent as ``(x, z)`` or ``(x, y, z)``
            height_scale: Multiplier applied to the stored heights

        Returns:
            Grid mesh, or None when the array has fewer than 2 rows or columns
        """
        if heights is None:
            logger.warning("Height field missing")
            return None

        heights = np.asarray(heights, dtype=np.float64)
        if heights.ndim != 2 or heights.shape[0] < 2 or heights.shape[1] < 2:
            logger.warning("Height field too small for a mesh", shape=heights.shape)
            return None

        with measure(self.instrumentation, "mesh_from_height_field", "mesh"):
            return _grid_mesh(heights, terrain_size, height_scale, "HeightFieldMesh")

    def from_heightmap(
        self,
        heightmap: Union[RasterMask, np.ndarray, None],
        terrain_size,
        height_scale: float = 1.0,
        resolution: int = 64,
    ) -> Optional[Mesh]:
        """
        Build a ``resolution`` x ``resolution`` terrain grid by sampling a heightmap.

        Heights are read bilinearly from a mask or from the red (or gray)
        channel of an image.
        """
        if heightmap is None:
            logger.warning("Heightmap missing")
            return None
        if not isinstance(heightmap, RasterMask):
            heightmap = extract_channel(heightmap, 0)

        resolution = max(2, int(resolution))
        samples = np.linspace(0.0, 1.0, resolution)
        u, v = np.meshgrid(samples, samples)

        with measure(self.instrumentation, "mesh_from_heightmap", "mesh"):
            heights = np.asarray(heightmap.sample_bilinear(u, v))
            return _grid_mesh(heights, terrain_size, height_scale, "TerrainMesh")

    def water_plane(self, terrain_size, water_height: float, resolution: int = 10) -> Mesh:
        """Flat grid at ``water_height`` with UVs tiled every 10 world units."""
        resolution = max(2, int(resolution))
        size_x, size_z = _terrain_extent(terrain_size)
        mesh = _grid_mesh(
            np.full((resolution, resolution), float(water_height)), terrain_size, 1.0, "WaterPlane"
        )
        mesh.uvs = mesh.uvs * np.array([size_x, size_z]) / WATER_UV_TILE
        return mesh


def mesh_from_mask(
    mask: Optional[RasterMask],
    bounding_box_world: Rect,
    simplify_tolerance: float = 0.5,
    height_offset: float = 0.1,
    instrumentation: Optional[Instrumentation] = None,
) -> Mesh:
    """Build a flat mesh from the outline of ``mask``; see ``MeshBuilder.from_mask``."""
    builder = MeshBuilder(instrumentation=instrumentation)
    return builder.from_mask(mask, bounding_box_world, simplify_tolerance, height_offset)


def mesh_from_height_field(
    heights: Optional[np.ndarray], terrain_size, height_scale: float = 1.0
) -> Optional[Mesh]:
    return MeshBuilder().from_height_field(heights, terrain_size, height_scale)


def mesh_from_heightmap(
    heightmap, terrain_size, height_scale: float = 1.0, resolution: int = 64
) -> Optional[Mesh]:
    return MeshBuilder().from_heightmap(heightmap, terrain_size, height_scale, resolution)


def water_plane_mesh(terrain_size, water_height: float, resolution: int = 10) -> Mesh:
    return MeshBuilder().water_plane(terrain_size, water_height, resolution)


def weld_vertices(mesh: Optional[Mesh]) -> Optional[Mesh]:
    """
    Merge vertices sharing position, normal and UV exactly.

    Only vertices referenced by triangles survive, in order of first use.
    A missing normal reads as the up vector and a missing UV as zero for
    the comparison. Meshes without normals get freshly computed ones.
    """
    if mesh is None:
        return None
    if mesh.triangle_count == 0:
        return Mesh(
            vertices=np.zeros((0, 3)),
            triangles=np.zeros(0, dtype=np.int64),
            uvs=None if mesh.uvs is None else np.zeros((0, 2)),
            normals=None if mesh.normals is None else np.zeros((0, 3)),
            name=mesh.name,
        )

    normals = mesh.normals if mesh.normals is not None else np.tile(UP, (mesh.vertex_count, 1))
    uvs = mesh.uvs if mesh.uvs is not None else np.zeros((mesh.vertex_count, 2))
    keys = np.hstack([mesh.vertices, normals, uvs])

    corner_keys = keys[mesh.triangles]
    _, first, inverse = np.unique(corner_keys, axis=0, return_index=True, return_inverse=True)
    inverse = inverse.reshape(-1)

    # Renumber unique keys by first appearance in the triangle list
    order = np.argsort(first, kind="stable")
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))
    source = mesh.triangles[first[order]]

    welded = Mesh(
        vertices=mesh.vertices[source],
        triangles=rank[inverse],
        uvs=None if mesh.uvs is None else mesh.uvs[source],
        normals=None if mesh.normals is None else mesh.normals[source],
        name=mesh.name,
    )
    logger.debug("Vertices welded", before=mesh.vertex_count, after=welded.vertex_count)

    if mesh.normals is None:
        welded = welded.recalculate_normals()
    return welded


def _edge_counts(faces: np.ndarray) -> np.ndarray:
    """Per-triangle undirected edge use counts, shaped like ``faces``."""
    edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
    edges.sort(axis=1)
    _, inverse, counts = np.unique(edges, axis=0, return_inverse=True, return_counts=True)
    per_edge = counts[inverse.reshape(-1)]
    return per_edge.reshape(3, -1).T


def remove_interior_triangles(mesh: Optional[Mesh]) -> Optional[Mesh]:
    """
    Keep only triangles that lie on the mesh boundary.

    A triangle survives when at least one of its edges is used by no other
    triangle. The result gets new normals and is welded.
    """
    if mesh is None:
        return None
    if mesh.triangle_count == 0:
        return mesh.copy()

    counts = _edge_counts(mesh.faces)
    boundary = (counts == 1).any(axis=1)
    kept = replace(mesh, triangles=mesh.faces[boundary].ravel()).recalculate_normals()
    logger.debug(
        "Interior triangles removed",
        before=mesh.triangle_count,
        after=kept.triangle_count,
    )
    return weld_vertices(kept)


def decimate(mesh: Optional[Mesh], quality: float) -> Optional[Mesh]:
    """
    Reduce the triangle count towards ``quality`` times the original.

    Args:
        mesh: Mesh to reduce
        quality: Share of triangles to keep, clamped to [0, 1]

    Returns:
        An unmodified copy when the target keeps at least 90% of the
        triangles; otherwise every triangle whose index is a multiple of
        ``original // (original - target)`` is dropped and the rest welded
    """
    if mesh is None:
        return None

    quality = min(max(quality, 0.0), 1.0)
    original = mesh.triangle_count
    target = int(np.floor(original * quality + 0.5))

    if original == 0 or target >= DECIMATE_KEEP_RATIO * original:
        return mesh.copy()

    stride = original // (original - target)
    keep = np.arange(original) % stride != 0
    reduced = replace(mesh, triangles=mesh.faces[keep].ravel())
    logger.debug("Mesh decimated", before=original, after=int(keep.sum()), target=target)
    return weld_vertices(reduced)


def combine_meshes(
    meshes: Optional[Sequence[Mesh]], transforms: Optional[Sequence[np.ndarray]]
) -> Optional[Mesh]:
    """
    Merge meshes into one, each placed by its 4x4 world transform.

    Returns:
        The combined mesh, or None when there are no meshes or the
        number of transforms differs from the number of meshes
    """
    if not meshes or transforms is None or len(transforms) != len(meshes):
        logger.warning(
            "Cannot combine meshes",
            meshes=0 if not meshes else len(meshes),
            transforms=None if transforms is None else len(transforms),
        )
        return None

    with_uvs = any(m.uvs is not None for m in meshes)
    vertices: List[np.ndarray] = []
    triangles: List[np.ndarray] = []
    normals: List[np.ndarray] = []
    uvs: List[np.ndarray] = []
    offset = 0

    for mesh, matrix in zip(meshes, transforms):
        if mesh.normals is None:
            mesh = mesh.recalculate_normals()
        placed = mesh.transformed(matrix)
        vertices.append(placed.vertices)
        normals.append(placed.normals)
        triangles.append(placed.triangles + offset)
        if with_uvs:
            uvs.append(placed.uvs if placed.uvs is not None else np.zeros((placed.vertex_count, 2)))
        offset += placed.vertex_count

    return Mesh(
        vertices=np.concatenate(vertices),
        triangles=np.concatenate(triangles),
        uvs=np.concatenate(uvs) if with_uvs else None,
        normals=np.concatenate(normals),
        name="CombinedMesh",
    )
