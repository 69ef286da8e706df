"""
External-Space Classification

A naive "emit a face wherever the neighbor is empty" rule would also expose
the walls of sealed internal cavities. Instead, empty space is flood filled
from outside the model:

1. Expand the voxel bounding box by one cell on every side, so the minimum
   corner is guaranteed empty and the model is surrounded by a connected shell
2. Breadth-first fill (6-connected, explicit queue) from that corner,
   stopping at occupied cells
3. Reached cells are external space; unreached empty cells are enclosed voids

The reached set is a reachability set, so it does not depend on traversal
order. Memory is bounded by the expanded volume (dense) or by the number of
reached cells (sparse).
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Set, Tuple, Union
import logging
import numpy as np
from numba import njit

from .config import OccupancyStrategy
from .errors import InputError
from .models import BoundingBox
from .presence import NEIGHBOR_OFFSETS, PresenceGrid

logger = logging.getLogger(__name__)


Cell = Tuple[int, int, int]


@njit(cache=True)
def _flood_fill_exterior(occupied: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    """
    Breadth-first flood fill of empty space from cell [0, 0, 0].

    Each cell is marked when enqueued, so it enters the queue at most once and
    a flat queue of the grid volume is always large enough.

    Args:
        occupied: Boolean occupancy volume (expanded bounds)
        offsets: (6, 3) neighbor offsets

    Returns:
        Boolean volume, True for cells reachable from the start corner
    """
    sx, sy, sz = occupied.shape
    external = np.zeros((sx, sy, sz), dtype=np.bool_)
    if occupied[0, 0, 0]:
        return external

    queue = np.empty(sx * sy * sz, dtype=np.int64)
    plane = sy * sz
    head = 0
    tail = 0

    external[0, 0, 0] = True
    queue[tail] = 0
    tail += 1

    while head < tail:
        idx = queue[head]
        head += 1
        x = idx // plane
        y = (idx % plane) // sz
        z = idx % sz

        for d in range(6):
            nx = x + offsets[d, 0]
            ny = y + offsets[d, 1]
            nz = z + offsets[d, 2]
            if nx < 0 or nx >= sx or ny < 0 or ny >= sy or nz < 0 or nz >= sz:
                continue
            if occupied[nx, ny, nz] or external[nx, ny, nz]:
                continue
            external[nx, ny, nz] = True
            queue[tail] = (nx * sy + ny) * sz + nz
            tail += 1

    return external


class ExternalSpace(ABC):
    """
    Result of an exterior classification over an expanded bounding box.

    Cells outside the expanded box are external by construction.
    """

    def __init__(self, box: BoundingBox, occupied_count: int, external_count: int):
        self.box = box
        self.occupied_count = occupied_count
        self.external_count = external_count

    @abstractmethod
    def contains(self, x: int, y: int, z: int) -> bool:
        """Check if a cell is external space."""

    @abstractmethod
    def to_mask(self) -> np.ndarray:
        """Boolean volume over `box`, True for external cells."""

    @property
    def enclosed_void_count(self) -> int:
        """Empty cells that cannot be reached from outside."""
        return self.box.volume - self.occupied_count - self.external_count


class DenseExternalSpace(ExternalSpace):
    """External space stored as a boolean volume."""

    def __init__(self, box: BoundingBox, mask: np.ndarray, occupied_count: int):
        super().__init__(box, occupied_count, int(mask.sum()))
        self._mask = mask

    def contains(self, x: int, y: int, z: int) -> bool:
        if not self.box.contains(x, y, z):
            return True
        return bool(self._mask[x - self.box.min_x, y - self.box.min_y, z - self.box.min_z])

    def to_mask(self) -> np.ndarray:
        return self._mask


class SparseExternalSpace(ExternalSpace):
    """External space stored as a set of reached cells."""

    def __init__(self, box: BoundingBox, cells: Set[Cell], occupied_count: int):
        super().__init__(box, occupied_count, len(cells))
        self._cells = cells

    def contains(self, x: int, y: int, z: int) -> bool:
        if not self.box.contains(x, y, z):
            return True
        return (x, y, z) in self._cells

    def to_mask(self) -> np.ndarray:
        mask = np.zeros(self.box.shape, dtype=np.bool_)
        if self._cells:
            cells = np.array(sorted(self._cells), dtype=np.int64) - self.box.origin
            mask[cells[:, 0], cells[:, 1], cells[:, 2]] = True
        return mask


class ExternalSpaceClassifier:
    """
    Flood-fill classifier separating exterior space from enclosed voids.

    Usage:
        classifier = ExternalSpaceClassifier()
        external = classifier.classify(coords)
        external.contains(x, y, z)
    """

    def __init__(
        self,
        strategy: Union[str, OccupancyStrategy] = OccupancyStrategy.DENSE,
        margin: int = 1
    ):
        """
        Initialize the classifier.

        Args:
            strategy: Dense volume or sparse hash-set occupancy
            margin: Cells added around the bounding box (must be >= 1)
        """
        if isinstance(strategy, str):
            strategy = OccupancyStrategy(strategy)
        if margin < 1:
            raise ValueError(f"margin must be >= 1, got {margin}")

        self.strategy = strategy
        self.margin = margin

    def classify(self, coords: np.ndarray) -> ExternalSpace:
        """
        Classify empty space around a voxel set.

        Args:
            coords: (N, 3) occupied voxel coordinates

        Returns:
            ExternalSpace over the expanded bounding box

        Raises:
            InputError: If the voxel set is empty
        """
        coords = np.ascontiguousarray(coords, dtype=np.int64).reshape(-1, 3)
        if len(coords) == 0:
            raise InputError("Cannot classify external space of an empty voxel set")

        box = BoundingBox.from_coords(coords).expanded(self.margin)

        if self.strategy == OccupancyStrategy.SPARSE:
            external = self._classify_sparse(coords, box)
        else:
            external = self._classify_dense(coords, box)

        logger.debug(
            "Exterior fill over %s cells: %d external, %d enclosed",
            box.shape, external.external_count, external.enclosed_void_count
        )
        return external

    def _classify_dense(self, coords: np.ndarray, box: BoundingBox) -> DenseExternalSpace:
        grid = PresenceGrid.from_bounding_box(coords, box)
        mask = _flood_fill_exterior(grid.data, NEIGHBOR_OFFSETS)
        return DenseExternalSpace(box, mask, grid.count())

    def _classify_sparse(self, coords: np.ndarray, box: BoundingBox) -> SparseExternalSpace:
        occupied = set(map(tuple, coords.tolist()))
        start = (box.min_x, box.min_y, box.min_z)
        offsets = [tuple(o) for o in NEIGHBOR_OFFSETS.tolist()]

        reached = {start}
        queue = deque([start])

        while queue:
            x, y, z = queue.popleft()
            for dx, dy, dz in offsets:
                nxt = (x + dx, y + dy, z + dz)
                if nxt in reached or nxt in occupied:
                    continue
                if not box.contains(*nxt):
                    continue
                reached.add(nxt)
                queue.append(nxt)

        return SparseExternalSpace(box, reached, len(occupied))
