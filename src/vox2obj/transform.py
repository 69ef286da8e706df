"""
Submodel Transforms and Scene Composition

Each submodel mesh is built in its local voxel space and then placed into
the scene with a rigid transform:

1. Global rotation matrix -> unit quaternion (trace method)
2. Compose with the fixed up-axis correction: MagicaVoxel is Z-up, OBJ
   consumers expect Y-up, so everything is rotated -90 degrees about X
3. Translation is the corrected global position
4. Rotate then translate every vertex (normals are only rotated)

Quaternions are stored as (w, x, y, z) numpy arrays.

MagicaVoxel rotations may be reflections (determinant -1). Such a matrix R
is written as -Q with Q a proper rotation: points are negated before Q is
applied and triangle winding is reversed so faces keep pointing outward.
"""

from dataclasses import dataclass, field
from typing import Iterable, Sequence, Tuple
import logging
import math
import numpy as np

from .errors import GeometryError
from .mesh import Mesh
from .models import Model

logger = logging.getLogger(__name__)


# Max deviation of R^T R from identity accepted as orthonormal
ORTHONORMAL_TOLERANCE = 1e-5

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def quaternion_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product q1 * q2 (apply q2 first, then q1)."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ])


def quaternion_from_axis_angle(axis: Sequence[float], degrees: float) -> np.ndarray:
    """Unit quaternion rotating `degrees` about `axis` (right-hand rule)."""
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / np.linalg.norm(axis)
    half = math.radians(degrees) / 2.0
    return np.concatenate([[math.cos(half)], axis * math.sin(half)])


def quaternion_to_matrix(q: np.ndarray) -> np.ndarray:
    """3x3 rotation matrix of a unit quaternion."""
    w, x, y, z = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ])


def matrix_to_quaternion(matrix: np.ndarray) -> np.ndarray:
    """
    Convert a proper rotation matrix to a unit quaternion.

    Uses the trace when it is positive, otherwise the dominant diagonal
    term, to keep the square root away from zero.

    Args:
        matrix: 3x3 orthonormal matrix with determinant +1

    Returns:
        (w, x, y, z) unit quaternion

    Raises:
        GeometryError: If the matrix is not a finite proper rotation
    """
    m = _check_orthonormal(matrix)
    if np.linalg.det(m) < 0:
        raise GeometryError("Matrix is a reflection, not a proper rotation")

    trace = m[0, 0] + m[1, 1] + m[2, 2]

    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2  # 4w
        w = 0.25 * s
        x = (m[2, 1] - m[1, 2]) / s
        y = (m[0, 2] - m[2, 0]) / s
        z = (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2  # 4x
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2  # 4y
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2  # 4z
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s

    q = np.array([w, x, y, z])
    return q / np.linalg.norm(q)


def decompose_rotation(matrix: np.ndarray) -> Tuple[np.ndarray, bool]:
    """
    Split an orthonormal matrix into a quaternion and a mirror flag.

    Returns:
        (quaternion of R or -R, True when R has determinant -1)

    Raises:
        GeometryError: If the matrix is not finite and orthonormal
    """
    m = _check_orthonormal(matrix)
    if np.linalg.det(m) < 0:
        return matrix_to_quaternion(-m), True
    return matrix_to_quaternion(m), False


def _check_orthonormal(matrix: np.ndarray) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (3, 3):
        raise GeometryError(f"Rotation must be 3x3, got shape {m.shape}")
    if not np.isfinite(m).all():
        raise GeometryError("Rotation matrix contains non-finite values")
    if np.abs(m.T @ m - np.eye(3)).max() > ORTHONORMAL_TOLERANCE:
        raise GeometryError(f"Rotation matrix is not orthonormal: {m.tolist()}")
    return m


# Z-up (MagicaVoxel) -> Y-up (OBJ): -90 degrees about X maps (x, y, z) to (x, z, -y)
UP_AXIS_CORRECTION = quaternion_from_axis_angle((1.0, 0.0, 0.0), -90.0)


@dataclass
class SubModelTransform:
    """
    Rigid placement of one submodel mesh.

    Attributes:
        rotation: (w, x, y, z) unit quaternion
        translation: World offset applied after rotation
        mirrored: Negate points before rotating (source had determinant -1)
    """

    rotation: np.ndarray = field(default_factory=lambda: IDENTITY_QUATERNION.copy())
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    mirrored: bool = False

    @classmethod
    def identity(cls) -> "SubModelTransform":
        return cls()

    @classmethod
    def from_model(cls, model: Model, correct_up_axis: bool = True) -> "SubModelTransform":
        """
        Build the scene transform of a model.

        Args:
            model: Source model with global rotation and position
            correct_up_axis: Compose with the Z-up -> Y-up correction

        Raises:
            GeometryError: On an invalid rotation or non-finite position
        """
        model_rotation, mirrored = decompose_rotation(model.global_rotation)

        position = np.asarray(model.global_position, dtype=np.float64)
        if position.shape != (3,) or not np.isfinite(position).all():
            raise GeometryError(f"Invalid global position {position.tolist()}")

        fix = UP_AXIS_CORRECTION if correct_up_axis else IDENTITY_QUATERNION
        rotation = quaternion_multiply(fix, model_rotation)
        rotation /= np.linalg.norm(rotation)
        translation = quaternion_to_matrix(fix) @ position

        return cls(rotation=rotation, translation=translation, mirrored=mirrored)

    @property
    def linear(self) -> np.ndarray:
        """3x3 linear part, including the mirror."""
        matrix = quaternion_to_matrix(self.rotation)
        return -matrix if self.mirrored else matrix

    def apply_to_points(self, points: np.ndarray) -> np.ndarray:
        """Rotate then translate (N, 3) points."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.linear.T + self.translation

    def apply_to_normals(self, normals: np.ndarray) -> np.ndarray:
        """Rotate (N, 3) normals; the mirror keeps outward normals outward."""
        normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        return normals @ self.linear.T


def apply_transform(mesh: Mesh, transform: SubModelTransform) -> Mesh:
    """
    Transform a mesh in place.

    Returns:
        The same mesh, for chaining
    """
    ids = list(mesh.vertex_ids())
    if not ids:
        return mesh

    positions = transform.apply_to_points([mesh.get_vertex(v) for v in ids])
    for vid, p in zip(ids, positions):
        mesh.set_vertex(vid, p)

    if mesh.has_normals:
        for vid in ids:
            normal = mesh.get_normal(vid)
            if normal is not None:
                mesh.set_normal(vid, transform.apply_to_normals(normal)[0])

    if transform.mirrored:
        for tid in list(mesh.triangle_ids()):
            mesh.reverse_triangle(tid)

    return mesh


def compose_meshes(meshes: Iterable[Mesh]) -> Mesh:
    """
    Append meshes into one, each with fresh vertex ids.

    Overlapping submodels are kept as they are.
    """
    combined = Mesh()
    for mesh in meshes:
        combined.append_mesh(mesh)
    logger.debug("Composed %r", combined)
    return combined
