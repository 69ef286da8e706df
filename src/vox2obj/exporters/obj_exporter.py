"""
Wavefront OBJ Format Exporter

OBJ is a universal text-based format supported by virtually all 3D software.
The output is deterministic for a given mesh:

- v lines (6 decimals) by ascending vertex id
- Optional vn lines in the same order
- Merged quads (f i j k l) in merge order
- Remaining triangles (f i j k) by ascending triangle id

Indices are 1-based and map ascending vertex ids to positions in the v
block. Every mesh face appears exactly once. Formatting never depends on the
process locale.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

from ..config import MeshType
from ..errors import GeometryError, OutputError
from ..mesh import Mesh
from ..quads import QuadMerger

logger = logging.getLogger(__name__)


class OBJExporter:
    """
    Export a mesh to Wavefront OBJ format.

    Usage:
        exporter = OBJExporter(mesh_type=MeshType.QUADS)
        exporter.export(mesh, "model_converted.obj")
    """

    def __init__(
        self,
        mesh_type: Union[str, MeshType] = MeshType.QUADS,
        include_normals: bool = True,
        merger: Optional[QuadMerger] = None
    ):
        """
        Initialize the exporter.

        Args:
            mesh_type: Quad-preferred or triangle-only faces
            include_normals: Whether to include vertex normals
            merger: Quad merger used for MeshType.QUADS
        """
        if isinstance(mesh_type, str):
            mesh_type = MeshType(mesh_type)

        self.mesh_type = mesh_type
        self.include_normals = include_normals
        self.merger = merger or QuadMerger()

    def serialize(self, mesh: Mesh) -> str:
        """
        Render a mesh as OBJ text.

        Args:
            mesh: Mesh to serialize (not modified)

        Returns:
            OBJ document, one element per line

        Raises:
            GeometryError: If the mesh has no vertices or no faces
        """
        vertex_ids = list(mesh.vertex_ids())
        if not vertex_ids or mesh.triangle_count == 0:
            raise GeometryError("Cannot export empty mesh")

        index: Dict[int, int] = {vid: i + 1 for i, vid in enumerate(vertex_ids)}
        lines: List[str] = []

        # Vertices
        for vid in vertex_ids:
            v = mesh.get_vertex(vid)
            lines.append(f"v {v[0]:.6f} {v[1]:.6f} {v[2]:.6f}")

        # Normals
        if self.include_normals and mesh.has_normals:
            for vid in vertex_ids:
                n = mesh.get_normal(vid)
                if n is None:
                    n = (0.0, 0.0, 0.0)
                lines.append(f"vn {n[0]:.6f} {n[1]:.6f} {n[2]:.6f}")

        # Faces
        if self.mesh_type == MeshType.QUADS:
            merged = self.merger.merge(mesh)
            for quad in merged.quads:
                i0, i1, i2, i3 = (index[v] for v in quad.vertices)
                lines.append(f"f {i0} {i1} {i2} {i3}")
            remaining = merged.triangles
        else:
            remaining = list(mesh.triangle_ids())

        for tid in remaining:
            a, b, c = mesh.get_triangle(tid)
            lines.append(f"f {index[a]} {index[b]} {index[c]}")

        return "\n".join(lines) + "\n"

    def export(self, mesh: Mesh, output_path: Union[str, Path]) -> int:
        """
        Export mesh to OBJ file.

        Args:
            mesh: Mesh to write
            output_path: Output file path (.obj)

        Returns:
            Number of faces written

        Raises:
            GeometryError: If the mesh is empty
            OutputError: If the file cannot be written
        """
        output_path = Path(output_path)
        content = self.serialize(mesh)

        try:
            with open(output_path, "w", encoding="ascii", newline="\n") as f:
                f.write(content)
        except OSError as e:
            raise OutputError(f"Cannot write {output_path}: {e}") from e

        # The first line is always a vertex, so every face line follows a newline
        face_count = content.count("\nf ")
        logger.debug("Wrote %s (%d vertices, %d faces)", output_path, mesh.vertex_count, face_count)
        return face_count
