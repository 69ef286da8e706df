"""
Command-Line Interface for vox2obj

Usage:
    vox2obj model.vox -o out/
    vox2obj scenes/*.vox -o out/ --mesh-type triangles --no-normals
    vox2obj huge.vox --occupancy sparse --workers 4 -v

"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from . import __version__
from .config import ConvertingOptions, MeshType, OccupancyStrategy
from .converter import ConversionResult, VoxModelConverter


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="vox2obj",
        description="Convert MagicaVoxel .vox scenes to Wavefront OBJ meshes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vox2obj castle.vox -o out/
      Write out/castle_converted.obj with quads and normals

  vox2obj a.vox b.vox -o out/ --mesh-type triangles
      Triangle-only output for both files

  vox2obj terrain.vox --occupancy sparse --no-greedy
      One face per voxel side, hash-set exterior fill

Mesh Types:
  quads      - Merge coplanar triangle pairs into quads (default)
  triangles  - Every face as a triangle
        """
    )

    # Input
    parser.add_argument(
        "input",
        nargs="+",
        help="Input .vox file(s)"
    )

    # Output
    parser.add_argument(
        "-o", "--output-dir",
        default=".",
        help="Output directory (default: current directory)"
    )

    parser.add_argument(
        "--mesh-type",
        choices=[t.value for t in MeshType],
        default=MeshType.QUADS.value,
        help="Face layout of the OBJ (default: quads)"
    )

    parser.add_argument(
        "--no-normals",
        action="store_true",
        help="Don't write vertex normals"
    )

    # Meshing settings
    parser.add_argument(
        "--no-greedy",
        action="store_true",
        help="Emit one face per visible voxel side (no coplanar face merging). "
             "Merged faces leave T-junctions on non-box shapes; this gives a closed mesh"
    )

    parser.add_argument(
        "--occupancy",
        choices=[s.value for s in OccupancyStrategy],
        default=OccupancyStrategy.DENSE.value,
        help="Exterior classification storage (default: dense)"
    )

    parser.add_argument(
        "--angle-tolerance",
        type=float,
        default=0.15,
        help="Max |cos| of a quad corner angle (default: 0.15)"
    )

    parser.add_argument(
        "--weld-epsilon",
        type=float,
        default=1e-6,
        help="Distance under which vertices are fused (default: 1e-6)"
    )

    parser.add_argument(
        "--no-up-axis-fix",
        action="store_true",
        help="Keep MagicaVoxel Z-up instead of rotating to Y-up"
    )

    # Batch processing
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Files converted in parallel (default: 1)"
    )

    # Misc
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output with per-stage statistics"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def build_options(args) -> ConvertingOptions:
    """Translate parsed arguments into conversion options."""
    return ConvertingOptions(
        input_paths=args.input,
        output_directory=args.output_dir,
        mesh_type=args.mesh_type,
        include_normals=not args.no_normals,
        merge_coplanar_faces=not args.no_greedy,
        occupancy=args.occupancy,
        right_angle_tolerance=args.angle_tolerance,
        weld_epsilon=args.weld_epsilon,
        correct_up_axis=not args.no_up_axis_fix,
        max_workers=args.workers,
    )


def print_result(result: ConversionResult):
    if result.success:
        print(f"[ok]      {result.input_path} -> {result.output_path} "
              f"({result.vertex_count} vertices, {result.face_count} faces)")
        for name in result.skipped_models:
            print(f"          skipped submodel: {name}")
    elif result.cancelled:
        print(f"[skipped] {result.input_path}")
    else:
        print(f"[failed]  {result.input_path}: {result.reason}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s"
    )

    try:
        options = build_options(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    start_time = time.time()
    results = VoxModelConverter(options).convert_all()
    elapsed = time.time() - start_time

    for result in results:
        print_result(result)

    failed = sum(1 for r in results if not r.success)
    print(f"\nConverted {len(results) - failed} of {len(results)} files in {elapsed:.2f}s")
    print(f"Output directory: {options.output_directory}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
