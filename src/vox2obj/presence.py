"""
Presence Grid and Surface Voxel Filter

A dense boolean volume answers "is this cell occupied?" in O(1), which makes
neighbor queries over a voxel set linear in the number of voxels.

The surface filter keeps only voxels with at least one of their 6
axis-aligned neighbors empty or out of bounds; interior voxels can never
contribute a boundary face.

Performance: the fill and neighbor scan are Numba-compiled.
"""

from typing import Optional, Sequence, Tuple
import logging
import numpy as np
from numba import njit

from .errors import InputError
from .models import BoundingBox, Model

logger = logging.getLogger(__name__)


# 6-connected neighbor offsets: -X, +X, -Y, +Y, -Z, +Z
NEIGHBOR_OFFSETS = np.array([
    [-1, 0, 0],
    [1, 0, 0],
    [0, -1, 0],
    [0, 1, 0],
    [0, 0, -1],
    [0, 0, 1],
], dtype=np.int64)


@njit(cache=True)
def _fill_grid(grid: np.ndarray, coords: np.ndarray, origin: np.ndarray):
    """Mark every coordinate (shifted by origin) as occupied."""
    for i in range(coords.shape[0]):
        grid[coords[i, 0] - origin[0],
             coords[i, 1] - origin[1],
             coords[i, 2] - origin[2]] = True


@njit(cache=True)
def _is_occupied(grid: np.ndarray, x: int, y: int, z: int) -> bool:
    """Occupancy lookup treating out-of-bounds cells as empty."""
    sx, sy, sz = grid.shape
    if x < 0 or x >= sx or y < 0 or y >= sy or z < 0 or z >= sz:
        return False
    return grid[x, y, z]


@njit(cache=True)
def _surface_mask(
    grid: np.ndarray,
    coords: np.ndarray,
    origin: np.ndarray,
    offsets: np.ndarray
) -> np.ndarray:
    """
    Flag voxels with at least one empty or out-of-bounds neighbor.

    Args:
        grid: Boolean occupancy volume
        coords: (N, 3) voxel coordinates
        origin: Grid origin subtracted from coords
        offsets: (6, 3) neighbor offsets

    Returns:
        (N,) boolean mask, True for surface voxels
    """
    n = coords.shape[0]
    mask = np.zeros(n, dtype=np.bool_)

    for i in range(n):
        x = coords[i, 0] - origin[0]
        y = coords[i, 1] - origin[1]
        z = coords[i, 2] - origin[2]
        for d in range(6):
            if not _is_occupied(grid, x + offsets[d, 0], y + offsets[d, 1], z + offsets[d, 2]):
                mask[i] = True
                break

    return mask


def check_within_size(coords: np.ndarray, size: Sequence[int]):
    """
    Raise InputError unless every coordinate satisfies 0 <= c < size.

    Works on the coordinates alone, so a huge declared size costs nothing.
    """
    size = tuple(int(s) for s in size)
    if len(size) != 3 or any(s <= 0 for s in size):
        raise InputError(f"Model dimensions must be 3 positive integers, got {size}")

    coords = np.asarray(coords, dtype=np.int64).reshape(-1, 3)
    if (coords < 0).any() or (coords >= np.array(size, dtype=np.int64)).any():
        raise InputError(f"Voxel coordinates exceed model dimensions {size}")


class PresenceGrid:
    """
    Dense occupancy lookup over a bounding volume.

    The grid covers `shape` cells starting at integer `origin`, so it can
    describe local model space (origin 0) as well as an expanded bounding
    box with negative coordinates.
    """

    def __init__(
        self,
        shape: Sequence[int],
        origin: Sequence[int] = (0, 0, 0)
    ):
        """
        Initialize an empty grid.

        Args:
            shape: Number of cells along x, y, z
            origin: Coordinate of cell [0, 0, 0]
        """
        shape = tuple(int(s) for s in shape)
        if len(shape) != 3 or any(s <= 0 for s in shape):
            raise InputError(f"Grid dimensions must be 3 positive integers, got {shape}")

        self.shape: Tuple[int, int, int] = shape
        self.origin = np.asarray(origin, dtype=np.int64)
        self._data = np.zeros(shape, dtype=np.bool_)

    @classmethod
    def from_coords(
        cls,
        coords: np.ndarray,
        shape: Sequence[int],
        origin: Sequence[int] = (0, 0, 0)
    ) -> "PresenceGrid":
        """
        Build a grid and mark the given coordinates occupied.

        Raises:
            InputError: If a coordinate falls outside the grid
        """
        grid = cls(shape, origin)
        coords = np.ascontiguousarray(coords, dtype=np.int64).reshape(-1, 3)

        if len(coords) > 0:
            local = coords - grid.origin
            if (local < 0).any() or (local >= np.array(grid.shape)).any():
                raise InputError(
                    f"Voxel coordinates exceed grid bounds {grid.shape} at origin "
                    f"{tuple(grid.origin)}"
                )
            _fill_grid(grid._data, coords, grid.origin)

        return grid

    @classmethod
    def from_bounding_box(cls, coords: np.ndarray, box: BoundingBox) -> "PresenceGrid":
        """Build a grid covering `box` (which may be expanded)."""
        return cls.from_coords(coords, box.shape, box.origin)

    @property
    def data(self) -> np.ndarray:
        """Raw boolean volume indexed relative to origin."""
        return self._data

    def is_inside(self, x: int, y: int, z: int) -> bool:
        """Check if a coordinate lies inside the grid."""
        lx, ly, lz = x - self.origin[0], y - self.origin[1], z - self.origin[2]
        sx, sy, sz = self.shape
        return 0 <= lx < sx and 0 <= ly < sy and 0 <= lz < sz

    def __getitem__(self, position: Sequence[int]) -> bool:
        """Occupancy at a coordinate; out-of-bounds reads as empty."""
        x, y, z = position
        if not self.is_inside(x, y, z):
            return False
        return bool(self._data[x - self.origin[0], y - self.origin[1], z - self.origin[2]])

    def count(self) -> int:
        """Number of occupied cells."""
        return int(self._data.sum())

    def surface_mask(self, coords: np.ndarray) -> np.ndarray:
        """Boolean mask of coordinates with an empty 6-neighbor."""
        coords = np.ascontiguousarray(coords, dtype=np.int64).reshape(-1, 3)
        if len(coords) == 0:
            return np.zeros(0, dtype=np.bool_)
        return _surface_mask(self._data, coords, self.origin, NEIGHBOR_OFFSETS)


class SurfaceVoxelFilter:
    """
    Reduce a voxel set to its boundary-adjacent voxels.

    Usage:
        surface = SurfaceVoxelFilter().filter(model)
    """

    def filter(self, model: Model) -> np.ndarray:
        """
        Filter the voxels of a model against its local dimensions.

        Args:
            model: Source model

        Returns:
            (M, 4) array of surface voxel rows, M <= N
        """
        return self.filter_voxels(model.voxels, model.size)

    def filter_voxels(
        self,
        voxels: np.ndarray,
        size: Optional[Sequence[int]] = None
    ) -> np.ndarray:
        """
        Filter voxel rows against bounding dimensions.

        Args:
            voxels: (N, 3) or (N, 4) voxel rows in local coordinates
            size: Local dimensions; defaults to the tight bounds of the voxels

        Returns:
            Surface voxel rows (same columns as the input)

        Raises:
            InputError: If a voxel lies outside `size`
        """
        voxels = np.asarray(voxels)
        if len(voxels) == 0:
            return voxels

        coords = voxels[:, :3]
        if size is not None:
            check_within_size(coords, size)

        # Cells outside the tight bounds are empty either way, so the grid
        # never needs to span the declared size
        box = BoundingBox.from_coords(coords)
        grid = PresenceGrid.from_bounding_box(coords, box)

        mask = grid.surface_mask(coords)
        logger.debug(
            "Surface filter kept %d of %d voxels", int(mask.sum()), len(voxels)
        )
        return voxels[mask]
