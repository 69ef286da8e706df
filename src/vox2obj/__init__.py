"""
vox2obj
=======

A voxel-to-mesh pipeline converting MagicaVoxel scenes into Wavefront OBJ.

This package turns dense voxel occupancy data into a block-faceted polygonal
surface: only the faces between solid voxels and the outside world are kept,
so sealed internal cavities never produce hidden geometry.

Key Features:
- Surface voxel filtering and flood-fill exterior classification (Numba JIT)
- Boxy mesh generation with optional greedy coplanar face merging
- Mesh welding with KD-tree vertex snapping and normal recomputation
- Opportunistic triangle-to-quad merging at export time
- Scene graph aware .vox reading with per-submodel rigid transforms
- Fault-isolated batch conversion, sequential or on a thread pool

Example Usage:
    from vox2obj import ConvertingOptions, VoxModelConverter

    options = ConvertingOptions(["castle.vox"], "out/")
    for result in VoxModelConverter(options).convert_all():
        print(result.status, result.output_path)
"""

__version__ = "1.0.0"
__author__ = "vox2obj Team"

from .config import ConvertingOptions, MeshType, OccupancyStrategy
from .errors import ConversionError, InputError, GeometryError, MeshValidityError, OutputError
from .models import BoundingBox, Model
from .mesh import Mesh
from .builder import BoxyMeshBuilder
from .quads import QuadMerger
from .welder import MeshWelder
from .transform import SubModelTransform
from .converter import ConversionResult, VoxModelConverter
from .exporters import OBJExporter, read_vox

__all__ = [
    "ConvertingOptions",
    "MeshType",
    "OccupancyStrategy",
    "ConversionError",
    "InputError",
    "GeometryError",
    "MeshValidityError",
    "OutputError",
    "BoundingBox",
    "Model",
    "Mesh",
    "BoxyMeshBuilder",
    "QuadMerger",
    "MeshWelder",
    "SubModelTransform",
    "ConversionResult",
    "VoxModelConverter",
    "OBJExporter",
    "read_vox",
]
