"""
Voxel Model Data Structures

This module provides:
- BoundingBox: Inclusive integer extrema of a voxel set
- Model: One voxel submodel as read from a .vox scene

Voxels are stored as rows of an (N, 4) integer array: x, y, z, color index.
The color index travels with the voxel but is never used by the geometry.
"""

from dataclasses import dataclass, field
from typing import Tuple
import numpy as np

from .errors import InputError


@dataclass(frozen=True)
class BoundingBox:
    """
    Inclusive integer bounds of a voxel set.

    A single voxel at (2, 3, 4) has min == max on every axis and a
    shape of (1, 1, 1).
    """

    min_x: int
    max_x: int
    min_y: int
    max_y: int
    min_z: int
    max_z: int

    @classmethod
    def from_coords(cls, coords: np.ndarray) -> "BoundingBox":
        """
        Compute bounds of an (N, 3) coordinate array.

        Raises:
            InputError: If the array is empty
        """
        coords = np.asarray(coords)
        if len(coords) == 0:
            raise InputError("Cannot compute bounds of an empty voxel set")

        lo = coords.min(axis=0)
        hi = coords.max(axis=0)
        return cls(
            int(lo[0]), int(hi[0]),
            int(lo[1]), int(hi[1]),
            int(lo[2]), int(hi[2]),
        )

    def expanded(self, margin: int = 1) -> "BoundingBox":
        """Grow the box by `margin` cells on every side."""
        return BoundingBox(
            self.min_x - margin, self.max_x + margin,
            self.min_y - margin, self.max_y + margin,
            self.min_z - margin, self.max_z + margin,
        )

    @property
    def origin(self) -> np.ndarray:
        """Minimum corner (x, y, z)."""
        return np.array([self.min_x, self.min_y, self.min_z], dtype=np.int64)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Number of cells along each axis."""
        return (
            self.max_x - self.min_x + 1,
            self.max_y - self.min_y + 1,
            self.max_z - self.min_z + 1,
        )

    @property
    def volume(self) -> int:
        sx, sy, sz = self.shape
        return sx * sy * sz

    def contains(self, x: int, y: int, z: int) -> bool:
        """Check if a cell lies inside the box."""
        return (self.min_x <= x <= self.max_x and
                self.min_y <= y <= self.max_y and
                self.min_z <= z <= self.max_z)


@dataclass
class Model:
    """
    One voxel submodel with its placement in the scene.

    Coordinate system: local voxel space as stored in the .vox file
    (X-right, Y-back, Z-up). The global transform maps a local point p to
    global_rotation @ p + global_position.

    Attributes:
        voxels: (N, 4) int array of x, y, z, color index
        size: Local bounding dimensions (sx, sy, sz)
        global_position: World position of the local origin
        global_rotation: 3x3 world rotation matrix
        name: Label used in logs and reports
    """

    voxels: np.ndarray
    size: Tuple[int, int, int]
    global_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    global_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    name: str = "model"

    def __post_init__(self):
        voxels = np.asarray(self.voxels, dtype=np.int64)
        if voxels.size == 0:
            voxels = voxels.reshape(0, 4)
        if voxels.ndim != 2 or voxels.shape[1] not in (3, 4):
            raise InputError(
                f"Voxels must have shape (N, 3) or (N, 4), got {voxels.shape}"
            )
        if voxels.shape[1] == 3:
            # Pad a zero color index
            voxels = np.column_stack([voxels, np.zeros(len(voxels), dtype=np.int64)])

        self.voxels = voxels
        self.size = tuple(int(s) for s in self.size)
        self.global_position = np.asarray(self.global_position, dtype=np.float64)
        self.global_rotation = np.asarray(self.global_rotation, dtype=np.float64)

    @property
    def coords(self) -> np.ndarray:
        """(N, 3) int64 voxel coordinates."""
        return self.voxels[:, :3]

    @property
    def voxel_count(self) -> int:
        return len(self.voxels)

    def bounding_box(self) -> BoundingBox:
        """Tight bounds around the occupied voxels."""
        return BoundingBox.from_coords(self.coords)
