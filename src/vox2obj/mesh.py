"""
Mutable Triangle Mesh

Mesh is the container that flows through the pipeline stages
(builder -> welder -> transform -> serializer). Each stage owns the mesh while
it works on it.

Vertices and triangles have stable integer ids: removing a triangle leaves a
hole in the id space until `compact()` renumbers everything contiguously.

Invariant: every live triangle references 3 distinct, live vertex ids.
"""

from collections import defaultdict
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple
import numpy as np

from .errors import GeometryError


Triangle = Tuple[int, int, int]
Edge = Tuple[int, int]


class MeshData(NamedTuple):
    """Read-only array snapshot of a mesh (live elements, ascending ids)."""
    vertices: np.ndarray     # (N, 3) float64 positions
    normals: np.ndarray      # (N, 3) float64 normals, zeros when absent
    indices: np.ndarray      # (M, 3) int64 triangle indices into `vertices`


class Mesh:
    """
    Append-ordered triangle mesh with stable vertex and triangle ids.

    Usage:
        mesh = Mesh()
        a = mesh.append_vertex((0, 0, 0))
        b = mesh.append_vertex((1, 0, 0))
        c = mesh.append_vertex((0, 1, 0))
        mesh.append_triangle(a, b, c)
    """

    def __init__(self):
        self._positions: List[Optional[np.ndarray]] = []
        self._normals: List[Optional[np.ndarray]] = []
        self._triangles: List[Optional[Triangle]] = []
        self._has_normals = False

    @classmethod
    def from_arrays(
        cls,
        vertices: np.ndarray,
        triangles: np.ndarray,
        normals: Optional[np.ndarray] = None
    ) -> "Mesh":
        """
        Build a mesh from vertex and triangle arrays.

        Raises:
            GeometryError: If a triangle is degenerate or references a missing vertex
        """
        mesh = cls()
        vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        for i, v in enumerate(vertices):
            mesh.append_vertex(v, None if normals is None else normals[i])
        for tri in np.asarray(triangles, dtype=np.int64).reshape(-1, 3):
            mesh.append_triangle(int(tri[0]), int(tri[1]), int(tri[2]))
        return mesh

    # -- vertices -----------------------------------------------------------

    def append_vertex(
        self,
        position: Sequence[float],
        normal: Optional[Sequence[float]] = None
    ) -> int:
        """Append a vertex and return its id."""
        self._positions.append(np.array(position, dtype=np.float64))
        self._normals.append(None if normal is None else np.array(normal, dtype=np.float64))
        if normal is not None:
            self._has_normals = True
        return len(self._positions) - 1

    def is_vertex(self, vid: int) -> bool:
        return 0 <= vid < len(self._positions) and self._positions[vid] is not None

    def get_vertex(self, vid: int) -> np.ndarray:
        if not self.is_vertex(vid):
            raise GeometryError(f"Invalid vertex id {vid}")
        return self._positions[vid]

    def set_vertex(self, vid: int, position: Sequence[float]):
        if not self.is_vertex(vid):
            raise GeometryError(f"Invalid vertex id {vid}")
        self._positions[vid] = np.array(position, dtype=np.float64)

    def vertex_ids(self) -> Iterator[int]:
        """Live vertex ids in ascending order."""
        return (vid for vid, p in enumerate(self._positions) if p is not None)

    @property
    def vertex_count(self) -> int:
        return sum(1 for p in self._positions if p is not None)

    # -- normals ------------------------------------------------------------

    @property
    def has_normals(self) -> bool:
        return self._has_normals

    def get_normal(self, vid: int) -> Optional[np.ndarray]:
        if not self.is_vertex(vid):
            raise GeometryError(f"Invalid vertex id {vid}")
        return self._normals[vid]

    def set_normal(self, vid: int, normal: Sequence[float]):
        if not self.is_vertex(vid):
            raise GeometryError(f"Invalid vertex id {vid}")
        self._normals[vid] = np.array(normal, dtype=np.float64)
        self._has_normals = True

    def clear_normals(self):
        self._normals = [None] * len(self._positions)
        self._has_normals = False

    # -- triangles ----------------------------------------------------------

    def append_triangle(self, a: int, b: int, c: int) -> int:
        """
        Append a triangle and return its id.

        Raises:
            GeometryError: If ids repeat or do not name live vertices
        """
        self._check_triangle(a, b, c)
        self._triangles.append((a, b, c))
        return len(self._triangles) - 1

    def set_triangle(self, tid: int, a: int, b: int, c: int):
        if not self.is_triangle(tid):
            raise GeometryError(f"Invalid triangle id {tid}")
        self._check_triangle(a, b, c)
        self._triangles[tid] = (a, b, c)

    def remove_triangle(self, tid: int):
        if not self.is_triangle(tid):
            raise GeometryError(f"Invalid triangle id {tid}")
        self._triangles[tid] = None

    def reverse_triangle(self, tid: int):
        """Flip the winding of a triangle."""
        a, b, c = self.get_triangle(tid)
        self._triangles[tid] = (a, c, b)

    def is_triangle(self, tid: int) -> bool:
        return 0 <= tid < len(self._triangles) and self._triangles[tid] is not None

    def get_triangle(self, tid: int) -> Triangle:
        if not self.is_triangle(tid):
            raise GeometryError(f"Invalid triangle id {tid}")
        return self._triangles[tid]

    def triangle_ids(self) -> Iterator[int]:
        """Live triangle ids in ascending order."""
        return (tid for tid, t in enumerate(self._triangles) if t is not None)

    def triangles(self) -> Iterator[Tuple[int, Triangle]]:
        """Yield (tid, (a, b, c)) for live triangles in ascending order."""
        return ((tid, t) for tid, t in enumerate(self._triangles) if t is not None)

    @property
    def triangle_count(self) -> int:
        return sum(1 for t in self._triangles if t is not None)

    def triangle_normal(self, tid: int) -> np.ndarray:
        """
        Unit normal of a triangle from its winding.

        Raises:
            GeometryError: If the triangle has zero area
        """
        a, b, c = self.get_triangle(tid)
        p0, p1, p2 = self._positions[a], self._positions[b], self._positions[c]
        n = np.cross(p1 - p0, p2 - p0)
        length = np.linalg.norm(n)
        if length < 1e-12:
            raise GeometryError(f"Triangle {tid} is degenerate")
        return n / length

    def _check_triangle(self, a: int, b: int, c: int):
        if a == b or b == c or a == c:
            raise GeometryError(f"Triangle ({a}, {b}, {c}) repeats a vertex")
        for vid in (a, b, c):
            if not self.is_vertex(vid):
                raise GeometryError(f"Triangle ({a}, {b}, {c}) references invalid vertex {vid}")

    # -- whole-mesh operations ------------------------------------------------

    def compact(self) -> Dict[int, int]:
        """
        Drop orphaned vertices and removed triangles, renumbering ids
        contiguously in their original order.

        Returns:
            Mapping from old vertex id to new vertex id
        """
        referenced = set()
        for t in self._triangles:
            if t is not None:
                referenced.update(t)

        remap: Dict[int, int] = {}
        positions, normals = [], []
        for vid, p in enumerate(self._positions):
            if p is None or vid not in referenced:
                continue
            remap[vid] = len(positions)
            positions.append(p)
            normals.append(self._normals[vid])

        self._positions = positions
        self._normals = normals
        self._triangles = [
            (remap[t[0]], remap[t[1]], remap[t[2]])
            for t in self._triangles if t is not None
        ]
        self._has_normals = any(n is not None for n in normals)
        return remap

    def append_mesh(self, other: "Mesh") -> Dict[int, int]:
        """
        Append another mesh's live vertices (fresh ids) and triangles.

        Returns:
            Mapping from the other mesh's vertex ids to ids in this mesh
        """
        remap: Dict[int, int] = {}
        for vid in other.vertex_ids():
            remap[vid] = self.append_vertex(other.get_vertex(vid), other.get_normal(vid))
        for _, (a, b, c) in other.triangles():
            self.append_triangle(remap[a], remap[b], remap[c])
        return remap

    def copy(self) -> "Mesh":
        clone = Mesh()
        clone._positions = [None if p is None else p.copy() for p in self._positions]
        clone._normals = [None if n is None else n.copy() for n in self._normals]
        clone._triangles = list(self._triangles)
        clone._has_normals = self._has_normals
        return clone

    def to_arrays(self) -> MeshData:
        """Snapshot live vertices/normals/triangles as arrays (ids compacted)."""
        ids = list(self.vertex_ids())
        index = {vid: i for i, vid in enumerate(ids)}

        vertices = np.array([self._positions[v] for v in ids], dtype=np.float64).reshape(-1, 3)
        normals = np.array(
            [self._normals[v] if self._normals[v] is not None else np.zeros(3) for v in ids],
            dtype=np.float64
        ).reshape(-1, 3)
        indices = np.array(
            [[index[a], index[b], index[c]] for _, (a, b, c) in self.triangles()],
            dtype=np.int64
        ).reshape(-1, 3)

        return MeshData(vertices=vertices, normals=normals, indices=indices)

    def __repr__(self) -> str:
        return f"Mesh(vertices={self.vertex_count}, triangles={self.triangle_count})"


class EdgeIndex:
    """Undirected edge -> incident triangle ids (ascending)."""

    def __init__(self, mesh: Mesh):
        self._edges: Dict[Edge, List[int]] = defaultdict(list)
        for tid, (a, b, c) in mesh.triangles():
            for u, v in ((a, b), (b, c), (c, a)):
                self._edges[self.key(u, v)].append(tid)

    @staticmethod
    def key(u: int, v: int) -> Edge:
        return (u, v) if u < v else (v, u)

    def incident(self, u: int, v: int) -> List[int]:
        return self._edges.get(self.key(u, v), [])

    def opposite(self, tid: int, u: int, v: int) -> Optional[int]:
        """
        The other triangle on edge (u, v), or None when the edge is a
        boundary or is shared by more than two triangles.
        """
        tris = self.incident(u, v)
        if len(tris) != 2:
            return None
        return tris[1] if tris[0] == tid else tris[0]

    def boundary_edges(self) -> List[Edge]:
        """Edges with a single incident triangle."""
        return [e for e, tris in self._edges.items() if len(tris) == 1]

    def non_manifold_edges(self) -> List[Edge]:
        """Edges shared by more than two triangles."""
        return [e for e, tris in self._edges.items() if len(tris) > 2]

    def __len__(self) -> int:
        return len(self._edges)
