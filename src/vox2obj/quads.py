"""
Quad Merging

Re-fuses pairs of edge-adjacent coplanar triangles into quads for a more
compact OBJ. The pass is greedy and single-shot:

1. Index every undirected edge to its incident triangles
2. For each unprocessed triangle (ascending id), try each of its 3 edges; the
   partner is the one other unprocessed triangle on that edge
3. Order the 4 corners counter-clockwise around the first triangle's normal
4. Accept only near-rectangular quads; everything else stays a triangle

Each triangle ends up in at most one quad, and no triangle is ever dropped.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import logging
import math
import numpy as np

from .errors import GeometryError
from .mesh import EdgeIndex, Mesh

logger = logging.getLogger(__name__)


# |cos| of a corner angle; 0.15 accepts angles between ~81 and ~99 degrees
RIGHT_ANGLE_COSINE_TOLERANCE = 0.15

# Squared length below which an edge or cross product counts as zero
LENGTH_EPSILON = 1e-12

# World axes tried in order when building a tangent for a normal
TANGENT_AXES = (
    np.array([0.0, 1.0, 0.0]),
    np.array([1.0, 0.0, 0.0]),
    np.array([0.0, 0.0, 1.0]),
)

@dataclass(frozen=True)
class Quad:
    """Four vertex ids in counter-clockwise order plus their source triangles."""
    vertices: Tuple[int, int, int, int]
    triangle_a: int
    triangle_b: int


@dataclass
class QuadMergeResult:
    """Outcome of a merge pass over a mesh."""
    quads: List[Quad] = field(default_factory=list)
    triangles: List[int] = field(default_factory=list)  # unmerged, ascending
    rejected: int = 0

    @property
    def face_count(self) -> int:
        return len(self.quads) + len(self.triangles)


def stable_tangent(normal: np.ndarray) -> np.ndarray:
    """Unit vector perpendicular to `normal`, from the least parallel world axis."""
    for axis in TANGENT_AXES:
        candidate = np.cross(normal, axis)
        if candidate.dot(candidate) > LENGTH_EPSILON:
            return candidate / np.linalg.norm(candidate)
    raise GeometryError(f"Cannot build a tangent for normal {normal.tolist()}")


def order_counter_clockwise(
    positions: np.ndarray,
    normal: np.ndarray
) -> List[int]:
    """
    Order points counter-clockwise seen from the tip of `normal`.

    Args:
        positions: (K, 3) points
        normal: Unit surface normal

    Returns:
        Indices into `positions` sorted by angle around their centroid
    """
    center = positions.mean(axis=0)
    tangent_u = stable_tangent(normal)
    tangent_v = np.cross(normal, tangent_u)
    tangent_v /= np.linalg.norm(tangent_v)

    offsets = positions - center
    angles = [
        math.atan2(float(d.dot(tangent_v)), float(d.dot(tangent_u)))
        for d in offsets
    ]
    return sorted(range(len(positions)), key=lambda i: angles[i])


def is_rectangular(
    positions: np.ndarray,
    tolerance: float = RIGHT_ANGLE_COSINE_TOLERANCE
) -> bool:
    """
    Check that an ordered quad has near-right angles at every corner.

    Degenerate (near-zero) edges fail the check.
    """
    count = len(positions)
    for i in range(count):
        previous = positions[(i - 1) % count]
        current = positions[i]
        nxt = positions[(i + 1) % count]

        to_previous = previous - current
        to_next = nxt - current
        if to_previous.dot(to_previous) < LENGTH_EPSILON or to_next.dot(to_next) < LENGTH_EPSILON:
            return False

        cosine = to_previous.dot(to_next) / (
            np.linalg.norm(to_previous) * np.linalg.norm(to_next)
        )
        if abs(cosine) > tolerance:
            return False

    return True


class QuadMerger:
    """
    Greedy edge-adjacency quad merger.

    Usage:
        result = QuadMerger().merge(mesh)
        for quad in result.quads: ...
        for tid in result.triangles: ...
    """

    def __init__(
        self,
        right_angle_tolerance: float = RIGHT_ANGLE_COSINE_TOLERANCE,
        coplanar_tolerance: float = 1e-3
    ):
        """
        Initialize the merger.

        Args:
            right_angle_tolerance: Max |cos| of any quad corner angle
            coplanar_tolerance: Max (1 - dot) between the two triangle normals
        """
        self.right_angle_tolerance = right_angle_tolerance
        self.coplanar_tolerance = coplanar_tolerance

    def merge(self, mesh: Mesh) -> QuadMergeResult:
        """
        Pair triangles of a mesh into quads. The mesh is not modified.

        Returns:
            QuadMergeResult with quads in discovery order and the leftover
            triangle ids in ascending order
        """
        edges = EdgeIndex(mesh)
        processed = set()
        result = QuadMergeResult()

        for tid, (a, b, c) in mesh.triangles():
            if tid in processed:
                continue

            for u, v in ((a, b), (b, c), (c, a)):
                partner = edges.opposite(tid, u, v)
                if partner is None or partner in processed:
                    continue

                quad = self.try_pair(mesh, tid, partner)
                if quad is None:
                    result.rejected += 1
                    continue

                result.quads.append(quad)
                processed.add(tid)
                processed.add(partner)
                break

        result.triangles = [tid for tid in mesh.triangle_ids() if tid not in processed]
        logger.debug(
            "Quad merge: %d quads, %d triangles left, %d pairs rejected",
            len(result.quads), len(result.triangles), result.rejected
        )
        return result

    def try_pair(self, mesh: Mesh, triangle_a: int, triangle_b: int) -> Optional[Quad]:
        """
        Attempt to fuse two triangles into a quad.

        Returns:
            The quad, or None if the pair does not form a near-rectangle
        """
        verts_a = mesh.get_triangle(triangle_a)
        verts_b = mesh.get_triangle(triangle_b)

        shared = [v for v in verts_a if v in verts_b]
        if len(shared) != 2:
            return None
        tip_a = next(v for v in verts_a if v not in shared)
        tip_b = next(v for v in verts_b if v not in shared)

        try:
            normal_a = mesh.triangle_normal(triangle_a)
            normal_b = mesh.triangle_normal(triangle_b)
        except GeometryError:
            return None

        if normal_a.dot(normal_b) < 1.0 - self.coplanar_tolerance:
            return None

        candidates = [shared[0], tip_a, shared[1], tip_b]
        positions = np.array([mesh.get_vertex(v) for v in candidates])
        order = order_counter_clockwise(positions, normal_a)
        ordered = positions[order]

        if not is_rectangular(ordered, self.right_angle_tolerance):
            return None

        return Quad(
            vertices=tuple(candidates[i] for i in order),
            triangle_a=triangle_a,
            triangle_b=triangle_b,
        )
