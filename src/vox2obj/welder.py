"""
Mesh Welding

Cleanup pass run on every submodel mesh before it is placed in the scene.
The order of the steps matters:

1. Remove exact-duplicate triangles (same ids under rotation)
2. Merge coincident edges: fuse vertices closer than epsilon, closing cracks
   between independently generated faces
3. Compact: drop orphaned vertices and renumber ids contiguously
4. Recompute per-vertex normals from incident face normals
5. Validity check: report dangling references, non-manifold and boundary
   edges without aborting

Only structurally invalid input (a triangle naming a vertex that does not
exist) is fatal. Welding an already welded mesh changes nothing.
"""

from dataclasses import dataclass
from typing import Dict, Tuple
import logging
import numpy as np
from scipy.spatial import cKDTree

from .config import NORMAL_WEIGHTINGS
from .errors import MeshValidityError
from .mesh import EdgeIndex, Mesh, Triangle

logger = logging.getLogger(__name__)


# Fallback for vertices whose incident normals cancel out
DEFAULT_NORMAL = np.array([0.0, 1.0, 0.0])


@dataclass
class WeldReport:
    """Counts collected by one weld pass."""
    duplicate_triangles: int = 0
    merged_vertices: int = 0
    collapsed_triangles: int = 0
    removed_vertices: int = 0
    dangling_references: int = 0
    non_manifold_edges: int = 0
    boundary_edges: int = 0

    @property
    def is_closed(self) -> bool:
        """True when every edge has exactly two incident triangles."""
        return self.boundary_edges == 0 and self.non_manifold_edges == 0


def canonical_triangle(tri: Triangle) -> Triangle:
    """Rotate a triangle so its smallest id comes first (winding kept)."""
    i = tri.index(min(tri))
    return tri[i:] + tri[:i]


class MeshWelder:
    """
    In-place mesh cleanup.

    Usage:
        report = MeshWelder().weld(mesh)
    """

    def __init__(self, merge_epsilon: float = 1e-6, normal_weighting: str = "area"):
        """
        Initialize the welder.

        Args:
            merge_epsilon: Vertices closer than this are fused
            normal_weighting: "area", "angle" or "uniform" face weights
        """
        if normal_weighting not in NORMAL_WEIGHTINGS:
            raise ValueError(f"Unknown normal weighting: {normal_weighting}")

        self.merge_epsilon = merge_epsilon
        self.normal_weighting = normal_weighting

    def weld(self, mesh: Mesh) -> WeldReport:
        """
        Run all cleanup steps on a mesh.

        Raises:
            MeshValidityError: If a triangle references a missing vertex
        """
        self.ensure_structurally_valid(mesh)

        report = WeldReport()
        report.duplicate_triangles = self.remove_duplicate_triangles(mesh)
        report.merged_vertices, report.collapsed_triangles = self.merge_coincident_edges(mesh)
        report.removed_vertices = self.compact(mesh)
        self.recompute_normals(mesh)
        (report.dangling_references,
         report.non_manifold_edges,
         report.boundary_edges) = self.check_validity(mesh)

        logger.debug("Weld: %s", report)
        return report

    def ensure_structurally_valid(self, mesh: Mesh):
        for tid, tri in mesh.triangles():
            for vid in tri:
                if not mesh.is_vertex(vid):
                    raise MeshValidityError(
                        f"Triangle {tid} references nonexistent vertex {vid}"
                    )

    def remove_duplicate_triangles(self, mesh: Mesh) -> int:
        """Remove later copies of triangles with the same ids and winding."""
        seen = set()
        removed = 0

        for tid, tri in list(mesh.triangles()):
            key = canonical_triangle(tri)
            if key in seen:
                mesh.remove_triangle(tid)
                removed += 1
            else:
                seen.add(key)

        return removed

    def merge_coincident_edges(self, mesh: Mesh) -> Tuple[int, int]:
        """
        Fuse vertices within `merge_epsilon` onto the lowest id of their
        cluster, then drop triangles that collapsed or became duplicates.

        Returns:
            (vertices merged away, triangles removed)
        """
        ids = np.array(list(mesh.vertex_ids()), dtype=np.int64)
        if len(ids) < 2 or self.merge_epsilon <= 0:
            return 0, 0

        points = np.array([mesh.get_vertex(int(v)) for v in ids])
        pairs = cKDTree(points).query_pairs(r=self.merge_epsilon, output_type="ndarray")
        if len(pairs) == 0:
            return 0, 0

        parent = np.arange(len(ids))

        def find(i: int) -> int:
            root = i
            while parent[root] != root:
                root = parent[root]
            while parent[i] != root:
                parent[i], i = root, parent[i]
            return root

        for i, j in pairs.tolist():
            ri, rj = find(i), find(j)
            if ri != rj:
                parent[max(ri, rj)] = min(ri, rj)

        representative: Dict[int, int] = {}
        for i in range(len(ids)):
            root = find(i)
            if root != i:
                representative[int(ids[i])] = int(ids[root])

        seen = set()
        collapsed = 0
        for tid, tri in list(mesh.triangles()):
            fused = tuple(representative.get(v, v) for v in tri)
            if len(set(fused)) < 3:
                mesh.remove_triangle(tid)
                collapsed += 1
                continue

            key = canonical_triangle(fused)
            if key in seen:
                mesh.remove_triangle(tid)
                collapsed += 1
                continue
            seen.add(key)

            if fused != tri:
                mesh.set_triangle(tid, *fused)

        return len(representative), collapsed

    def compact(self, mesh: Mesh) -> int:
        """Renumber the mesh; returns the number of vertices dropped."""
        before = mesh.vertex_count
        mesh.compact()
        return before - mesh.vertex_count

    def recompute_normals(self, mesh: Mesh):
        """Weighted average of incident face normals per vertex."""
        ids = list(mesh.vertex_ids())
        data = mesh.to_arrays()
        faces = data.indices
        if len(faces) == 0:
            mesh.clear_normals()
            return

        vertices = data.vertices
        p0, p1, p2 = vertices[faces[:, 0]], vertices[faces[:, 1]], vertices[faces[:, 2]]

        # Cross product length is twice the triangle area
        cross = np.cross(p1 - p0, p2 - p0)
        lengths = np.linalg.norm(cross, axis=1)
        unit = np.divide(cross, lengths[:, None], out=np.zeros_like(cross),
                         where=lengths[:, None] > 0)

        accumulated = np.zeros_like(vertices)
        corners = ((p0, p1, p2), (p1, p2, p0), (p2, p0, p1))

        for k, (at, nxt, prev) in enumerate(corners):
            if self.normal_weighting == "area":
                contribution = cross
            elif self.normal_weighting == "uniform":
                contribution = unit
            else:
                contribution = unit * self._corner_angles(at, nxt, prev)[:, None]
            np.add.at(accumulated, faces[:, k], contribution)

        norms = np.linalg.norm(accumulated, axis=1)
        for i, vid in enumerate(ids):
            if norms[i] > 1e-12:
                mesh.set_normal(vid, accumulated[i] / norms[i])
            else:
                mesh.set_normal(vid, DEFAULT_NORMAL)

    @staticmethod
    def _corner_angles(at: np.ndarray, nxt: np.ndarray, prev: np.ndarray) -> np.ndarray:
        e1 = nxt - at
        e2 = prev - at
        denom = np.linalg.norm(e1, axis=1) * np.linalg.norm(e2, axis=1)
        dots = np.einsum("ij,ij->i", e1, e2)
        cosine = np.divide(dots, denom, out=np.ones_like(dots), where=denom > 0)
        return np.arccos(np.clip(cosine, -1.0, 1.0))

    def check_validity(self, mesh: Mesh) -> Tuple[int, int, int]:
        """
        Count anomalies without modifying the mesh.

        Returns:
            (dangling references, non-manifold edges, boundary edges)
        """
        dangling = sum(
            1 for _, tri in mesh.triangles() for vid in tri if not mesh.is_vertex(vid)
        )
        edges = EdgeIndex(mesh)
        non_manifold = len(edges.non_manifold_edges())
        boundary = len(edges.boundary_edges())

        if dangling:
            logger.warning("Mesh has %d dangling vertex references", dangling)
        if non_manifold:
            logger.warning("Mesh has %d non-manifold edges", non_manifold)
        if boundary:
            logger.debug("Mesh has %d boundary edges", boundary)

        return dangling, non_manifold, boundary
