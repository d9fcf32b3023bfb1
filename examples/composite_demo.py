#!/usr/bin/env python3
"""
Simple demo script showing mask compositing and mesh generation.
"""

import numpy as np
from py_terragen.core import (
    Feature,
    FeatureCompositor,
    MaskAnalyzer,
    MeshBuilder,
    Rect,
    raster_mask as rm,
)
from py_terragen.core.mesh_builder import combine_meshes, weld_vertices
from py_terragen.utils import OperationTimer, configure_logging


def main():
    """Demonstrate compositing and meshing."""
    configure_logging(level="WARNING")
    print("Py-Terragen Compositing Demo")
    print("=" * 40)

    width, height = 128, 96
    timer = OperationTimer()

    # Detected features placed on the target raster
    lake = Feature(
        mask=rm.circular(32, 32, feather=4.0),
        bounding_box=Rect(10, 20, 40, 40),
        label="Lake",
        elevation=0.1,
    )
    mountain = Feature(
        mask=rm.gradient(48, 48, Rect(0, 0, 48, 48)),
        bounding_box=Rect(70, 10, 48, 48),
        label="Mountain",
        elevation=0.95,
    )
    forest = Feature(
        mask=rm.rounded_rect(40, 24, corner_radius=8.0, feather=2.0),
        bounding_box=Rect(40, 60, 60, 30),
        label="Pine forest",
        elevation=0.55,
    )
    house = Feature(
        mask=rm.solid(8, 8),
        bounding_box=Rect(60, 70, 8, 8),
        label="house",
        color=(0.9, 0.2, 0.2, 1.0),
    )
    features = [lake, mountain, forest, house]

    compositor = FeatureCompositor(instrumentation=timer)

    print("\nHeight map:")
    print("-" * 30)
    heights = compositor.build_height_map(width, height, features, default_height=0.4)
    print(f"  Shape: {heights.shape}")
    print(f"  Height range: {heights.min():.2f}-{heights.max():.2f}")
    print(f"  Average height: {heights.mean():.2f}")
    print(f"  Below default: {np.mean(heights < 0.4) * 100:.1f}%")

    print("\nSegmentation map:")
    print("-" * 30)
    segments = compositor.build_segmentation_map(width, height, features)
    covered = segments[..., 3] > 0
    print(f"  Covered pixels: {covered.sum()} ({covered.mean() * 100:.1f}%)")
    for feature in features:
        r, g, b, a = compositor.segment_color(feature)
        print(f"  {feature.label:12s} rgba=({r:.2f}, {g:.2f}, {b:.2f}, {a:.2f})")

    print("\nMask analysis:")
    print("-" * 30)
    analyzer = MaskAnalyzer()
    for feature in features:
        summary = analyzer.summary(feature.mask)
        print(
            f"  {feature.label:12s} area={summary['area']:5d} "
            f"perimeter={summary['perimeter']:4d} "
            f"orientation={summary['orientation']:6.1f}"
        )

    print("\nMeshes:")
    print("-" * 30)
    builder = MeshBuilder(instrumentation=timer)
    outline = builder.from_mask(lake.mask, lake.bounding_box)
    terrain = builder.from_height_field(heights[::4, ::4], (width, 1.0, height), height_scale=20.0)
    water = builder.water_plane((width, 1.0, height), water_height=3.0)
    print(f"  Lake outline: {outline.vertex_count} vertices, {outline.triangle_count} triangles")
    print(f"  Terrain: {terrain.vertex_count} vertices, {terrain.triangle_count} triangles")

    scene = combine_meshes([terrain, water], [np.eye(4), np.eye(4)])
    scene = weld_vertices(scene)
    print(f"  Combined scene: {scene.vertex_count} vertices, surface {scene.surface_area():.0f}")

    print()
    print(timer.report())


if __name__ == "__main__":
    main()
