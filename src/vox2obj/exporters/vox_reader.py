"""
MagicaVoxel .vox Format Reader

The .vox format is a RIFF-style chunk-based binary format used by MagicaVoxel.
It stores voxels as sparse data with a 256-color palette.

File Structure:
- Header: "VOX " (4 bytes) + version (4 bytes, int32)
- MAIN chunk (container)
  - SIZE / XYZI pairs: dimensions and voxels (x, y, z, color_index) per model
  - RGBA chunk: 256-color palette
  - nTRN / nGRP / nSHP: scene graph placing the models in the world

Every chunk is: id (4 bytes), content size, children size, content, children.
Unknown chunks (MATL, LAYR, rOBJ, ...) are skipped.

Scene graph transforms are accumulated from the root down to each shape.
MagicaVoxel translations locate the centre of a model, so the position
reported for a model is the world position of its local origin:
t - R @ (size // 2).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple, Union
import logging
import struct
import numpy as np

from ..errors import InputError
from ..models import Model

logger = logging.getLogger(__name__)


# VOX format constants
VOX_MAGIC = b'VOX '
CHUNK_HEADER = struct.Struct('<4sII')
MAX_MODEL_SIZE = 256  # Largest model edge MagicaVoxel writes


@dataclass
class VoxScene:
    """
    Parsed contents of a .vox file.

    Attributes:
        version: File format version
        models: Placed models in scene graph order
        palette: (256, 4) RGBA; entry k colors palette index k + 1
    """
    version: int
    models: List[Model] = field(default_factory=list)
    palette: np.ndarray = field(default_factory=lambda: default_palette())


def default_palette() -> np.ndarray:
    palette = np.zeros((256, 4), dtype=np.uint8)
    palette[:, 3] = 255  # Default opaque
    return palette


def decode_rotation(packed: int) -> np.ndarray:
    """
    Decode a packed MagicaVoxel rotation byte into a signed permutation matrix.

    Bits 0-1: column of the non-zero entry in row 0
    Bits 2-3: column of the non-zero entry in row 1
    Bits 4-6: sign of rows 0, 1, 2 (1 = negative)

    Raises:
        InputError: If both rows name the same column
    """
    first = packed & 0b11
    second = (packed >> 2) & 0b11
    if first > 2 or second > 2 or first == second:
        raise InputError(f"Invalid packed rotation {packed:#04x}")
    third = 3 - first - second

    matrix = np.zeros((3, 3))
    for row, col in enumerate((first, second, third)):
        matrix[row, col] = -1.0 if packed & (1 << (4 + row)) else 1.0
    return matrix


class _ByteReader:
    """Little-endian cursor over a chunk's content."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def int32(self) -> int:
        value, = struct.unpack_from('<i', self.data, self.offset)
        self.offset += 4
        return value

    def string(self) -> str:
        length = self.int32()
        if length < 0 or self.offset + length > len(self.data):
            raise InputError(f"String of length {length} runs past its chunk")
        value = self.data[self.offset:self.offset + length].decode('utf-8')
        self.offset += length
        return value

    def dict(self) -> Dict[str, str]:
        return {self.string(): self.string() for _ in range(self.int32())}


def read_vox_scene(file_path: Union[str, Path]) -> VoxScene:
    """
    Load a .vox file with its scene graph.

    Args:
        file_path: Path to .vox file

    Returns:
        VoxScene with one Model per placed shape

    Raises:
        InputError: If the file cannot be read or is malformed
    """
    file_path = Path(file_path)

    try:
        with open(file_path, 'rb') as f:
            data = f.read()
    except OSError as e:
        raise InputError(f"Cannot read {file_path}: {e}") from e

    try:
        return _parse(data, file_path.stem)
    except InputError:
        raise
    except (struct.error, UnicodeDecodeError, ValueError, KeyError, IndexError) as e:
        raise InputError(f"Malformed VOX file {file_path}: {e}") from e


def read_vox(file_path: Union[str, Path]) -> List[Model]:
    """Load the placed models of a .vox file."""
    return read_vox_scene(file_path).models


def _parse(data: bytes, stem: str) -> VoxScene:
    if data[:4] != VOX_MAGIC:
        raise InputError(f"Invalid VOX file: bad magic {data[:4]!r}")
    version, = struct.unpack_from('<i', data, 4)

    main_id, main_content, main_children = CHUNK_HEADER.unpack_from(data, 8)
    if main_id != b'MAIN':
        raise InputError("Expected MAIN chunk")

    offset = 8 + CHUNK_HEADER.size + main_content
    end = offset + main_children
    if end > len(data):
        raise InputError("MAIN chunk runs past end of file")

    scene = VoxScene(version=version)
    shapes: List[Tuple[Tuple[int, int, int], np.ndarray]] = []
    pending_size = None
    nodes: Dict[int, Tuple[bytes, _ByteReader]] = {}

    # Read child chunks
    while offset < end:
        chunk_id, content_size, children_size = CHUNK_HEADER.unpack_from(data, offset)
        start = offset + CHUNK_HEADER.size
        content = data[start:start + content_size]
        if len(content) != content_size:
            raise InputError(f"Chunk {chunk_id!r} runs past end of file")
        offset = start + content_size + children_size

        if chunk_id == b'SIZE':
            pending_size = struct.unpack_from('<iii', content)
            if any(not 1 <= s <= MAX_MODEL_SIZE for s in pending_size):
                raise InputError(
                    f"SIZE chunk declares {pending_size}, expected 1..{MAX_MODEL_SIZE} per axis"
                )

        elif chunk_id == b'XYZI':
            if pending_size is None:
                raise InputError("XYZI chunk without preceding SIZE chunk")
            num_voxels, = struct.unpack_from('<i', content)
            if num_voxels < 0 or 4 + num_voxels * 4 > len(content):
                raise InputError(f"XYZI chunk declares {num_voxels} voxels")
            voxels = np.frombuffer(content, dtype=np.uint8, count=num_voxels * 4, offset=4)
            shapes.append((pending_size, voxels.reshape(-1, 4).astype(np.int64)))
            pending_size = None

        elif chunk_id == b'RGBA':
            # 256 colors * 4 bytes
            scene.palette = np.frombuffer(content, dtype=np.uint8, count=1024).reshape(256, 4).copy()

        elif chunk_id in (b'nTRN', b'nGRP', b'nSHP'):
            reader = _ByteReader(content)
            nodes[reader.int32()] = (chunk_id, reader)

    if not shapes:
        raise InputError("VOX file contains no models")

    if nodes:
        scene.models = _place_models(nodes, shapes, stem)
    else:
        scene.models = [
            Model(voxels=voxels, size=size, name=f"{stem}_{i}")
            for i, (size, voxels) in enumerate(shapes)
        ]

    logger.debug(
        "Read %d models (%d shapes, %d scene nodes) from VOX v%d",
        len(scene.models), len(shapes), len(nodes), version
    )
    return scene


def _place_models(
    nodes: Dict[int, Tuple[bytes, _ByteReader]],
    shapes: List[Tuple[Tuple[int, int, int], np.ndarray]],
    stem: str
) -> List[Model]:
    """Walk the scene graph from node 0, accumulating transforms."""
    models = []
    # (node id, parent rotation, parent translation, inherited name)
    stack = [(0, np.eye(3), np.zeros(3), None)]
    visited = set()

    while stack:
        node_id, rotation, translation, name = stack.pop()
        if node_id in visited:
            raise InputError(f"Scene graph cycle at node {node_id}")
        visited.add(node_id)

        if node_id not in nodes:
            raise InputError(f"Scene graph references missing node {node_id}")
        kind, reader = nodes[node_id]
        attributes = reader.dict()

        if kind == b'nTRN':
            child = reader.int32()
            reader.int32()  # reserved
            reader.int32()  # layer id
            frames = [reader.dict() for _ in range(reader.int32())]
            frame = frames[0] if frames else {}

            local_rotation = decode_rotation(int(frame['_r'])) if '_r' in frame else np.eye(3)
            local_translation = (
                np.array([float(c) for c in frame['_t'].split()]) if '_t' in frame else np.zeros(3)
            )
            if local_translation.shape != (3,):
                raise InputError(f"Invalid translation {frame['_t']!r} at node {node_id}")

            stack.append((
                child,
                rotation @ local_rotation,
                rotation @ local_translation + translation,
                attributes.get('_name', name),
            ))

        elif kind == b'nGRP':
            children = [reader.int32() for _ in range(reader.int32())]
            # Reversed so children pop in file order
            for child in reversed(children):
                stack.append((child, rotation, translation, name))

        else:
            for _ in range(reader.int32()):
                model_id = reader.int32()
                reader.dict()  # model attributes
                if not 0 <= model_id < len(shapes):
                    raise InputError(f"Shape node {node_id} references missing model {model_id}")

                size, voxels = shapes[model_id]
                pivot = np.array(size, dtype=np.float64) // 2
                models.append(Model(
                    voxels=voxels,
                    size=size,
                    global_position=translation - rotation @ pivot,
                    global_rotation=rotation,
                    name=name or f"{stem}_{model_id}",
                ))

    return models
