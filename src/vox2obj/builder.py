"""
Boxy Mesh Builder

Emits the block-faceted boundary of a voxel set:

1. Face Culling: a face is generated only between an occupied cell and a
   cell classified as external space (never toward an enclosed void)
2. Optional Greedy Sweep: visible faces of one direction and slice are grown
   into maximal rectangles before triangulation
3. Emit Geometry: each face becomes 2 triangles wound so that the normal
   points out of the solid

Vertices are deduplicated immediately through a position cache keyed on
epsilon-quantized coordinates, so faces that touch share vertex ids. The
quad merger relies on those shared ids for its edge adjacency lookups.
"""

from typing import Dict, Optional, Tuple
import logging
import numpy as np
from numba import njit

from .exterior import ExternalSpace, ExternalSpaceClassifier
from .mesh import Mesh
from .presence import NEIGHBOR_OFFSETS, PresenceGrid

logger = logging.getLogger(__name__)


# Unit cube corners, index = 4*x + 2*y + z
CUBE_CORNERS = np.array([
    [0, 0, 0],  # 0
    [0, 0, 1],  # 1
    [0, 1, 0],  # 2
    [0, 1, 1],  # 3
    [1, 0, 0],  # 4
    [1, 0, 1],  # 5
    [1, 1, 0],  # 6
    [1, 1, 1],  # 7
], dtype=np.float64)

# Corner order per face direction (same order as NEIGHBOR_OFFSETS).
# Triangles (0, 1, 2) and (0, 2, 3) of each entry wind counter-clockwise
# seen from outside, so their normals match the direction.
FACE_CORNERS = np.array([
    [0, 1, 3, 2],  # -X
    [4, 6, 7, 5],  # +X
    [0, 4, 5, 1],  # -Y
    [2, 3, 7, 6],  # +Y
    [0, 2, 6, 4],  # -Z
    [1, 5, 7, 3],  # +Z
], dtype=np.int64)


@njit(cache=True)
def _greedy_rectangles(mask: np.ndarray) -> np.ndarray:
    """
    Greedy rectangle cover of every 2D slice of a visibility volume.

    Args:
        mask: (S, N1, N2) boolean volume, slice axis first

    Returns:
        (R, 5) array of (slice, i, j, height, width) rectangles
    """
    ns, n1, n2 = mask.shape
    rects = np.zeros((ns * n1 * n2, 5), dtype=np.int64)
    count = 0

    for s in range(ns):
        used = np.zeros((n1, n2), dtype=np.bool_)
        for i in range(n1):
            j = 0
            while j < n2:
                if used[i, j] or not mask[s, i, j]:
                    j += 1
                    continue

                # Expand width (along j)
                width = 1
                while j + width < n2 and mask[s, i, j + width] and not used[i, j + width]:
                    width += 1

                # Expand height (along i), whole rows only
                height = 1
                done = False
                while i + height < n1 and not done:
                    for w in range(width):
                        if not mask[s, i + height, j + w] or used[i + height, j + w]:
                            done = True
                            break
                    if not done:
                        height += 1

                rects[count, 0] = s
                rects[count, 1] = i
                rects[count, 2] = j
                rects[count, 3] = height
                rects[count, 4] = width
                count += 1

                for h in range(height):
                    for w in range(width):
                        used[i + h, j + w] = True

                j += width

    return rects[:count]


class BoxyMeshBuilder:
    """
    Build a boundary mesh from voxel coordinates.

    Usage:
        builder = BoxyMeshBuilder()
        mesh = builder.build(coords)
    """

    def __init__(
        self,
        merge_coplanar_faces: bool = False,
        classifier: Optional[ExternalSpaceClassifier] = None,
        epsilon: float = 1e-6
    ):
        """
        Initialize the builder.

        Args:
            merge_coplanar_faces: Grow per-voxel faces into maximal rectangles
            classifier: Exterior classifier (dense by default)
            epsilon: Quantization step of the vertex cache
        """
        self.merge_coplanar_faces = merge_coplanar_faces
        self.classifier = classifier or ExternalSpaceClassifier()
        self.epsilon = epsilon

    def build(
        self,
        coords: np.ndarray,
        external: Optional[ExternalSpace] = None
    ) -> Mesh:
        """
        Generate the boundary mesh of a voxel set.

        Args:
            coords: (N, 3) voxel coordinates (extra columns are ignored)
            external: Precomputed classification; computed when omitted

        Returns:
            Mesh with 2 triangles per emitted face
        """
        coords = np.ascontiguousarray(np.asarray(coords)[:, :3], dtype=np.int64)
        mesh = Mesh()
        if len(coords) == 0:
            return mesh

        if external is None:
            external = self.classifier.classify(coords)

        cache: Dict[Tuple[int, int, int], int] = {}
        if self.merge_coplanar_faces:
            faces = self._emit_rectangles(mesh, cache, coords, external)
        else:
            faces = self._emit_voxel_faces(mesh, cache, coords, external)

        logger.debug(
            "Built %d faces, %d vertices from %d voxels",
            faces, mesh.vertex_count, len(coords)
        )
        return mesh

    def _emit_voxel_faces(
        self,
        mesh: Mesh,
        cache: Dict[Tuple[int, int, int], int],
        coords: np.ndarray,
        external: ExternalSpace
    ) -> int:
        """One face per voxel-direction pair facing external space."""
        # Sorted for output that does not depend on input voxel order
        order = np.lexsort((coords[:, 2], coords[:, 1], coords[:, 0]))
        unit = np.ones(3, dtype=np.float64)
        occupied = set(map(tuple, coords.tolist()))
        offsets = NEIGHBOR_OFFSETS.tolist()
        faces = 0

        for x, y, z in coords[order].tolist():
            for direction in range(6):
                dx, dy, dz = offsets[direction]
                neighbor = (x + dx, y + dy, z + dz)
                if neighbor in occupied or not external.contains(*neighbor):
                    continue
                if self._add_face(mesh, cache, np.array([x, y, z], dtype=np.float64),
                                  unit, direction):
                    faces += 1

        return faces

    def _emit_rectangles(
        self,
        mesh: Mesh,
        cache: Dict[Tuple[int, int, int], int],
        coords: np.ndarray,
        external: ExternalSpace
    ) -> int:
        """Maximal rectangles of visible faces, per direction and slice."""
        box = external.box
        occupied = PresenceGrid.from_bounding_box(coords, box).data
        outside = external.to_mask()
        origin = box.origin.astype(np.float64)
        faces = 0

        for direction in range(6):
            offset = NEIGHBOR_OFFSETS[direction]
            axis = int(np.flatnonzero(offset)[0])
            step = int(offset[axis])

            # visible[c] = occupied[c] and outside[c + offset]; the box margin
            # keeps occupied cells away from the wrapped border
            visible = occupied & np.roll(outside, -step, axis=axis)

            u, v = [a for a in range(3) if a != axis]
            sliced = np.ascontiguousarray(np.moveaxis(visible, axis, 0))
            rects = _greedy_rectangles(sliced)

            for s, i, j, height, width in rects.tolist():
                corner = np.zeros(3, dtype=np.float64)
                extent = np.ones(3, dtype=np.float64)
                corner[axis], corner[u], corner[v] = s, i, j
                extent[u], extent[v] = height, width
                if self._add_face(mesh, cache, corner + origin, extent, direction):
                    faces += 1

        return faces

    def _add_face(
        self,
        mesh: Mesh,
        cache: Dict[Tuple[int, int, int], int],
        corner: np.ndarray,
        extent: np.ndarray,
        direction: int
    ) -> bool:
        """Append one face (2 triangles); skip it if its corners collapse."""
        positions = corner + CUBE_CORNERS[FACE_CORNERS[direction]] * extent
        ids = [self._vertex_id(mesh, cache, p) for p in positions]

        if len(set(ids)) != 4:
            logger.warning(
                "Skipping degenerate face at %s direction %d", corner.tolist(), direction
            )
            return False

        mesh.append_triangle(ids[0], ids[1], ids[2])
        mesh.append_triangle(ids[0], ids[2], ids[3])
        return True

    def _vertex_id(
        self,
        mesh: Mesh,
        cache: Dict[Tuple[int, int, int], int],
        position: np.ndarray
    ) -> int:
        key = tuple(int(round(c / self.epsilon)) for c in position)
        vid = cache.get(key)
        if vid is None:
            vid = mesh.append_vertex(position)
            cache[key] = vid
        return vid
