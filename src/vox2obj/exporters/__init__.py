"""
Import/export modules for the supported file formats.

Supported formats:
- MagicaVoxel (.vox) - Source scenes (read only)
- Wavefront (.obj) - Converted meshes (write only)
"""

from .obj_exporter import OBJExporter
from .vox_reader import read_vox

__all__ = ["OBJExporter", "read_vox"]
