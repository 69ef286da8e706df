"""
Conversion Options

All knobs of the conversion pipeline live in one dataclass so that the CLI,
the batch converter and tests configure the pipeline the same way.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Union


OUTPUT_SUFFIX = "_converted.obj"

NORMAL_WEIGHTINGS = ("area", "angle", "uniform")


class MeshType(Enum):
    """Face layout of the exported OBJ."""
    TRIANGLES = "triangles"  # every face as a triangle
    QUADS = "quads"          # merge triangle pairs into quads where possible


class OccupancyStrategy(Enum):
    """Occupancy storage used by the external-space classifier."""
    DENSE = "dense"    # boolean volume, O(1) lookups, O(bbox volume) memory
    SPARSE = "sparse"  # hash set, memory proportional to reached cells


@dataclass
class ConvertingOptions:
    """
    Options for converting .vox files to OBJ.

    Attributes:
        input_paths: Source .vox files
        output_directory: Directory receiving {name}_converted.obj files
        mesh_type: Quad-preferred or triangle-only faces
        include_normals: Emit a vn block
        merge_coplanar_faces: Grow visible voxel faces into maximal rectangles
        occupancy: Dense or sparse exterior classification
        right_angle_tolerance: Max |cos| of a quad corner angle (0.15 ~ 81-99 deg)
        coplanar_tolerance: Max 1 - dot of two triangle normals merged into a quad
        weld_epsilon: Distance under which vertices are fused
        normal_weighting: "area", "angle" or "uniform"
        correct_up_axis: Rotate MagicaVoxel Z-up into OBJ Y-up
        max_workers: Files converted concurrently (1 = sequential)
    """

    input_paths: List[Union[str, Path]]
    output_directory: Union[str, Path]
    mesh_type: MeshType = MeshType.QUADS
    include_normals: bool = True
    merge_coplanar_faces: bool = True
    occupancy: OccupancyStrategy = OccupancyStrategy.DENSE
    right_angle_tolerance: float = 0.15
    coplanar_tolerance: float = 1e-3
    weld_epsilon: float = 1e-6
    normal_weighting: str = "area"
    correct_up_axis: bool = True
    max_workers: int = 1

    def __post_init__(self):
        """Coerce strings to paths/enums and validate ranges."""
        self.input_paths = [Path(p) for p in self.input_paths]
        self.output_directory = Path(self.output_directory)

        if isinstance(self.mesh_type, str):
            self.mesh_type = MeshType(self.mesh_type)
        if isinstance(self.occupancy, str):
            self.occupancy = OccupancyStrategy(self.occupancy)

        if not 0.0 <= self.right_angle_tolerance <= 1.0:
            raise ValueError(
                f"right_angle_tolerance must be in [0, 1], got {self.right_angle_tolerance}"
            )
        if not 0.0 <= self.coplanar_tolerance <= 2.0:
            raise ValueError(
                f"coplanar_tolerance must be in [0, 2], got {self.coplanar_tolerance}"
            )
        if self.weld_epsilon < 0:
            raise ValueError(f"weld_epsilon must be >= 0, got {self.weld_epsilon}")
        if self.normal_weighting not in NORMAL_WEIGHTINGS:
            raise ValueError(
                f"normal_weighting must be one of {NORMAL_WEIGHTINGS}, "
                f"got {self.normal_weighting!r}"
            )
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    def output_path_for(self, input_path: Union[str, Path]) -> Path:
        """Destination path for one input file."""
        return self.output_directory / f"{Path(input_path).stem}{OUTPUT_SUFFIX}"
