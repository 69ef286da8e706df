#!/usr/bin/env python3
"""
vox2obj Demo Script

This script demonstrates the full conversion pipeline by:
1. Creating synthetic voxel models (no .vox files needed)
2. Converting them with and without coplanar face merging
3. Writing OBJ files for each variant
4. Printing statistics and comparisons

Run with: python examples/demo.py
"""

import sys
from pathlib import Path
import numpy as np
import time

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vox2obj import ConvertingOptions, Model, VoxModelConverter
from vox2obj.builder import BoxyMeshBuilder
from vox2obj.exterior import ExternalSpaceClassifier


def create_sphere(size: int = 16) -> Model:
    """
    Create a solid voxel sphere.

    Returns:
        Model centered in a size^3 volume
    """
    center = (size - 1) / 2
    radius = size / 2 - 1
    grid = np.indices((size, size, size)).reshape(3, -1).T
    inside = np.linalg.norm(grid - center, axis=1) <= radius
    return Model(voxels=grid[inside], size=(size, size, size), name="sphere")


def create_hollow_box(size: int = 12) -> Model:
    """
    Create a box with a sealed cavity; the cavity walls must not be meshed.
    """
    grid = np.indices((size, size, size)).reshape(3, -1).T
    shell = np.any((grid < 2) | (grid >= size - 2), axis=1)
    return Model(voxels=grid[shell], size=(size, size, size), name="hollow_box")


def create_stairs(steps: int = 6) -> Model:
    """Create a staircase placed away from the origin."""
    voxels = [
        (x, y, z)
        for x in range(steps)
        for y in range(3)
        for z in range(x + 1)
    ]
    return Model(
        voxels=voxels,
        size=(steps, 3, steps),
        global_position=[20.0, 0.0, 0.0],
        name="stairs",
    )


MODELS = {
    "sphere": [create_sphere(16)],
    "hollow_box": [create_hollow_box(12)],
    "scene": [create_sphere(8), create_stairs(6)],
}


def run_demo():
    """Run the demonstration."""
    print("=" * 60)
    print("vox2obj - Demo")
    print("=" * 60)

    # Create output directory
    output_dir = Path(__file__).parent / "output"
    loader = lambda path: MODELS[Path(path).stem]
    inputs = [f"{name}.vox" for name in MODELS]

    total_start = time.time()

    for greedy in (True, False):
        label = "greedy faces" if greedy else "per-voxel faces"
        print(f"\n--- Converting with {label} ---")

        options = ConvertingOptions(
            inputs,
            output_dir / ("greedy" if greedy else "per_voxel"),
            merge_coplanar_faces=greedy,
        )
        results = VoxModelConverter(options, model_loader=loader).convert_all()

        for result in results:
            print(f"  {result.input_path.stem}:")
            print(f"    Vertices: {result.vertex_count}")
            print(f"    Faces: {result.face_count}")
            print(f"    Time: {result.elapsed*1000:.1f}ms")
            print(f"    Saved: {result.output_path}")

    # Hidden cavity statistics
    box = create_hollow_box(12)
    external = ExternalSpaceClassifier().classify(box.coords)
    print(f"\n  Hollow box: {external.enclosed_void_count} enclosed cells never meshed")

    total_time = time.time() - total_start

    print("\n" + "=" * 60)
    print(f"Demo complete! Total time: {total_time:.2f}s")
    print(f"Output files in: {output_dir}")
    print("=" * 60)

    return 0


def benchmark_face_generation():
    """Benchmark boundary face generation."""
    print("\n--- Face Generation Benchmark ---\n")

    for size in [8, 16, 32, 64]:
        coords = np.indices((size, size, size)).reshape(3, -1).T

        start = time.time()
        greedy_mesh = BoxyMeshBuilder(merge_coplanar_faces=True).build(coords)
        greedy_time = time.time() - start

        start = time.time()
        naive_mesh = BoxyMeshBuilder(merge_coplanar_faces=False).build(coords)
        naive_time = time.time() - start

        print(f"Grid size: {size}x{size}x{size}")
        print(f"  Greedy:    {greedy_time*1000:.1f}ms, {greedy_mesh.vertex_count} verts")
        print(f"  Per-voxel: {naive_time*1000:.1f}ms, {naive_mesh.vertex_count} verts")
        print()


if __name__ == "__main__":
    run_demo()

    # Uncomment to run benchmark
    # benchmark_face_generation()
