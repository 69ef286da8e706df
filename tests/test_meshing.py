"""
Unit tests for the voxel-to-mesh stages.
"""

import sys
from pathlib import Path
import numpy as np
import unittest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vox2obj.builder import BoxyMeshBuilder
from vox2obj.config import OccupancyStrategy
from vox2obj.errors import GeometryError, InputError, MeshValidityError
from vox2obj.exterior import ExternalSpace, ExternalSpaceClassifier
from vox2obj.mesh import EdgeIndex, Mesh
from vox2obj.models import BoundingBox, Model
from vox2obj.presence import NEIGHBOR_OFFSETS, PresenceGrid, SurfaceVoxelFilter
from vox2obj.quads import QuadMerger, is_rectangular
from vox2obj.welder import MeshWelder


def solid_block(sx, sy, sz):
    """Coordinates of a solid sx*sy*sz block at the origin."""
    return np.array(
        [(x, y, z) for x in range(sx) for y in range(sy) for z in range(sz)],
        dtype=np.int64
    )


def hollow_cube():
    """3x3x3 block with its center cell removed (one sealed void)."""
    coords = solid_block(3, 3, 3)
    return coords[~np.all(coords == 1, axis=1)]


def assert_outward(mesh, center):
    """Every triangle normal points away from `center`."""
    for tid, (a, b, c) in mesh.triangles():
        centroid = (mesh.get_vertex(a) + mesh.get_vertex(b) + mesh.get_vertex(c)) / 3
        assert mesh.triangle_normal(tid).dot(centroid - center) > 0


class TestBoundingBox(unittest.TestCase):
    """Tests for BoundingBox."""

    def test_single_voxel(self):
        """Test bounds of one voxel."""
        box = BoundingBox.from_coords(np.array([[2, 3, 4]]))
        assert box.shape == (1, 1, 1)
        assert box.volume == 1

    def test_expanded(self):
        """Test margin expansion."""
        box = BoundingBox.from_coords(solid_block(2, 2, 2)).expanded(1)
        assert box.shape == (4, 4, 4)
        assert list(box.origin) == [-1, -1, -1]
        assert box.contains(-1, 2, 0)
        assert not box.contains(3, 0, 0)

    def test_empty(self):
        """Test that empty coordinates are rejected."""
        with self.assertRaises(InputError):
            BoundingBox.from_coords(np.zeros((0, 3)))

    def test_model_pads_color(self):
        """Test that (N, 3) voxels gain a color column."""
        model = Model(voxels=[[0, 0, 0], [1, 0, 0]], size=(2, 1, 1))
        assert model.voxels.shape == (2, 4)
        assert model.voxel_count == 2


class TestPresenceGrid(unittest.TestCase):
    """Tests for PresenceGrid and SurfaceVoxelFilter."""

    def test_lookup(self):
        """Test occupancy lookups inside and outside the grid."""
        grid = PresenceGrid.from_coords(np.array([[1, 1, 1]]), (3, 3, 3))
        assert grid[1, 1, 1]
        assert not grid[0, 0, 0]
        assert not grid[-1, 5, 0]  # Out of bounds reads as empty
        assert grid.count() == 1

    def test_origin_offset(self):
        """Test a grid whose origin is negative."""
        grid = PresenceGrid.from_coords(np.array([[-1, 0, 0]]), (2, 1, 1), origin=(-1, 0, 0))
        assert grid.is_inside(-1, 0, 0)
        assert grid[-1, 0, 0]
        assert not grid.is_inside(1, 0, 0)

    def test_out_of_bounds_voxel(self):
        """Test that a voxel outside the declared size is an input error."""
        with self.assertRaises(InputError):
            PresenceGrid.from_coords(np.array([[4, 0, 0]]), (4, 4, 4))

    def test_isolated_voxel_is_surface(self):
        """Test that a lone voxel is always kept."""
        voxels = np.array([[2, 2, 2, 7]])
        surface = SurfaceVoxelFilter().filter_voxels(voxels, (5, 5, 5))
        assert surface.tolist() == [[2, 2, 2, 7]]

    def test_huge_declared_size(self):
        """Test that the filter grid spans the voxels, not the declared size."""
        model = Model(voxels=[[0, 0, 0, 1]], size=(2_000_000, 2_000_000, 2_000_000))
        surface = SurfaceVoxelFilter().filter(model)
        assert surface.tolist() == [[0, 0, 0, 1]]

    def test_voxel_outside_declared_size(self):
        """Test that the filter rejects voxels beyond the model dimensions."""
        with self.assertRaises(InputError):
            SurfaceVoxelFilter().filter_voxels(np.array([[2, 0, 0, 1]]), (2, 2, 2))
        with self.assertRaises(InputError):
            SurfaceVoxelFilter().filter_voxels(np.array([[-1, 0, 0, 1]]), (2, 2, 2))

    def test_solid_block_drops_interior(self):
        """Test that only the hidden center of a 3x3x3 block is removed."""
        model = Model(voxels=solid_block(3, 3, 3), size=(3, 3, 3))
        surface = SurfaceVoxelFilter().filter(model)
        assert len(surface) == 26
        assert [1, 1, 1] not in surface[:, :3].tolist()

    def test_surface_property(self):
        """Test that a voxel is excluded exactly when all 6 neighbors are occupied."""
        rng = np.random.default_rng(7)
        occupied = rng.random((6, 6, 6)) < 0.7
        coords = np.argwhere(occupied)

        surface = SurfaceVoxelFilter().filter_voxels(coords, (6, 6, 6))
        kept = set(map(tuple, surface.tolist()))
        assert kept <= set(map(tuple, coords.tolist()))

        for x, y, z in coords.tolist():
            enclosed = True
            for dx, dy, dz in NEIGHBOR_OFFSETS.tolist():
                nx, ny, nz = x + dx, y + dy, z + dz
                inside = 0 <= nx < 6 and 0 <= ny < 6 and 0 <= nz < 6
                if not inside or not occupied[nx, ny, nz]:
                    enclosed = False
                    break
            assert ((x, y, z) in kept) == (not enclosed)


class TestExternalSpace(unittest.TestCase):
    """Tests for the flood-fill exterior classifier."""

    def test_sealed_void(self):
        """Test that a sealed cavity is not external space."""
        for strategy in (OccupancyStrategy.DENSE, OccupancyStrategy.SPARSE):
            external = ExternalSpaceClassifier(strategy).classify(hollow_cube())
            assert not external.contains(1, 1, 1)
            assert external.contains(-1, -1, -1)
            assert external.contains(100, 0, 0)  # Beyond the box
            assert external.enclosed_void_count == 1

    def test_open_cavity(self):
        """Test that a cavity with a hole to the outside is external."""
        coords = hollow_cube()
        coords = coords[~np.all(coords == [1, 1, 2], axis=1)]  # Open the top

        external = ExternalSpaceClassifier().classify(coords)
        assert external.contains(1, 1, 1)
        assert external.enclosed_void_count == 0

    def test_strategies_agree(self):
        """Test that dense and sparse classification give the same mask."""
        rng = np.random.default_rng(3)
        coords = np.argwhere(rng.random((7, 7, 7)) < 0.5)

        dense = ExternalSpaceClassifier("dense").classify(coords)
        sparse = ExternalSpaceClassifier("sparse").classify(coords)
        assert np.array_equal(dense.to_mask(), sparse.to_mask())
        assert dense.external_count == sparse.external_count

    def test_empty(self):
        """Test that an empty voxel set cannot be classified."""
        with self.assertRaises(InputError):
            ExternalSpaceClassifier().classify(np.zeros((0, 3)))

    def test_base_class_is_abstract(self):
        """Test that only the dense and sparse results can be created."""
        box = BoundingBox.from_coords(np.array([[0, 0, 0]]))
        with self.assertRaises(TypeError):
            ExternalSpace(box, 1, 0)


class TestMesh(unittest.TestCase):
    """Tests for the Mesh container."""

    def test_triangle_validation(self):
        """Test that invalid triangles are rejected."""
        mesh = Mesh()
        a = mesh.append_vertex((0, 0, 0))
        b = mesh.append_vertex((1, 0, 0))
        with self.assertRaises(GeometryError):
            mesh.append_triangle(a, b, b)
        with self.assertRaises(GeometryError):
            mesh.append_triangle(a, b, 5)

    def test_compact(self):
        """Test that compaction drops orphans and keeps order."""
        mesh = Mesh()
        for p in [(0, 0, 0), (9, 9, 9), (1, 0, 0), (0, 1, 0)]:
            mesh.append_vertex(p)
        tid = mesh.append_triangle(0, 2, 3)
        mesh.append_triangle(0, 3, 2)
        mesh.remove_triangle(tid)

        remap = mesh.compact()
        assert remap == {0: 0, 2: 1, 3: 2}
        assert mesh.vertex_count == 3
        assert list(mesh.triangles()) == [(0, (0, 2, 1))]

    def test_append_mesh(self):
        """Test that appended meshes get fresh ids."""
        mesh = Mesh.from_arrays([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]])
        mesh.append_mesh(mesh.copy())
        assert mesh.vertex_count == 6
        assert mesh.get_triangle(1) == (3, 4, 5)


class TestBoxyMeshBuilder(unittest.TestCase):
    """Tests for boundary face generation."""

    def test_single_voxel(self):
        """Test one voxel: 6 faces, 12 triangles, 8 shared vertices."""
        mesh = BoxyMeshBuilder().build(np.array([[0, 0, 0]]))
        assert mesh.triangle_count == 12
        assert mesh.vertex_count == 8
        assert_outward(mesh, np.array([0.5, 0.5, 0.5]))

    def test_closed_mesh(self):
        """Test that every edge of a voxel block has two triangles."""
        mesh = BoxyMeshBuilder().build(solid_block(2, 3, 1))
        edges = EdgeIndex(mesh)
        assert not edges.boundary_edges()
        assert not edges.non_manifold_edges()

    def test_no_faces_toward_void(self):
        """Test that a sealed void emits no faces."""
        mesh = BoxyMeshBuilder().build(hollow_cube())
        assert mesh.triangle_count == 6 * 9 * 2

        # Void faces would only have vertices strictly inside the hull
        for vid in mesh.vertex_ids():
            p = mesh.get_vertex(vid)
            assert np.any((p == 0) | (p == 3))

        assert_outward(mesh, np.array([1.5, 1.5, 1.5]))

    def test_greedy_block(self):
        """Test that coplanar merging turns a 2x2x2 block into 6 faces."""
        mesh = BoxyMeshBuilder(merge_coplanar_faces=True).build(solid_block(2, 2, 2))
        assert mesh.triangle_count == 12
        assert mesh.vertex_count == 8
        assert_outward(mesh, np.array([1.0, 1.0, 1.0]))

    def test_greedy_sealed_void(self):
        """Test that coplanar merging also skips sealed voids."""
        mesh = BoxyMeshBuilder(merge_coplanar_faces=True).build(hollow_cube())
        assert mesh.triangle_count == 12
        assert mesh.vertex_count == 8

    def test_order_independent(self):
        """Test that shuffled input gives the same mesh."""
        coords = solid_block(3, 2, 2)
        shuffled = coords[np.random.default_rng(1).permutation(len(coords))]

        first = BoxyMeshBuilder().build(coords).to_arrays()
        second = BoxyMeshBuilder().build(shuffled).to_arrays()
        assert np.array_equal(first.vertices, second.vertices)
        assert np.array_equal(first.indices, second.indices)


class TestQuadMerger(unittest.TestCase):
    """Tests for triangle-to-quad merging."""

    def square(self):
        return Mesh.from_arrays(
            [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
            [[0, 1, 2], [0, 2, 3]]
        )

    def test_square(self):
        """Test that two right triangles forming a square become one quad."""
        result = QuadMerger().merge(self.square())
        assert len(result.quads) == 1
        assert result.triangles == []

        quad = result.quads[0]
        assert sorted(quad.vertices) == [0, 1, 2, 3]
        assert {quad.triangle_a, quad.triangle_b} == {0, 1}

    def test_counter_clockwise(self):
        """Test that quad corners wind around the +Z normal."""
        mesh = self.square()
        quad = QuadMerger().merge(mesh).quads[0]
        p = np.array([mesh.get_vertex(v) for v in quad.vertices])
        normal = np.cross(p[1] - p[0], p[2] - p[0])
        assert normal[2] > 0

    def test_non_coplanar(self):
        """Test that a folded pair never merges."""
        mesh = Mesh.from_arrays(
            [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 1]],
            [[0, 1, 2], [0, 2, 3]]
        )
        result = QuadMerger().merge(mesh)
        assert result.quads == []
        assert result.triangles == [0, 1]

    def test_t_junction(self):
        """Test that triangles meeting at a T-junction never merge."""
        mesh = Mesh.from_arrays(
            [[0, 0, 0], [2, 0, 0], [2, 2, 0], [1, 0, 0], [1, -1, 0]],
            [[0, 1, 2], [0, 4, 3], [3, 4, 1]]
        )
        result = QuadMerger().merge(mesh)
        # The small triangles do share edge 3-4 but form a triangle, not a rectangle
        assert result.quads == []
        assert result.triangles == [0, 1, 2]

    def test_rhombus_rejected(self):
        """Test that a non-rectangular pair stays two triangles."""
        mesh = Mesh.from_arrays(
            [[0, 0, 0], [2, 0, 0], [3, 1, 0], [1, 1, 0]],
            [[0, 1, 2], [0, 2, 3]]
        )
        result = QuadMerger().merge(mesh)
        assert result.quads == []
        assert result.rejected > 0
        assert result.face_count == 2

    def test_single_voxel(self):
        """Test that a voxel's 12 triangles pair into 6 quads."""
        mesh = BoxyMeshBuilder().build(np.array([[0, 0, 0]]))
        result = QuadMerger().merge(mesh)
        assert len(result.quads) == 6
        assert result.triangles == []

        used = [t for q in result.quads for t in (q.triangle_a, q.triangle_b)]
        assert sorted(used) == list(range(12))

    def test_is_rectangular(self):
        """Test the corner angle check."""
        square = np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=float)
        assert is_rectangular(square)
        assert not is_rectangular(square[[0, 2, 1, 3]])  # Self-intersecting order


class TestMeshWelder(unittest.TestCase):
    """Tests for mesh welding."""

    def exploded_voxel(self):
        """Single voxel mesh where every triangle has its own 3 vertices."""
        data = BoxyMeshBuilder().build(np.array([[0, 0, 0]])).to_arrays()
        vertices = data.vertices[data.indices.reshape(-1)]
        indices = np.arange(len(vertices)).reshape(-1, 3)
        return Mesh.from_arrays(vertices, indices)

    def test_merges_coincident_vertices(self):
        """Test that split vertices are fused back into 8 corners."""
        mesh = self.exploded_voxel()
        assert mesh.vertex_count == 36

        report = MeshWelder().weld(mesh)
        assert mesh.vertex_count == 8
        assert mesh.triangle_count == 12
        assert report.merged_vertices == 28
        assert report.is_closed

    def test_idempotent(self):
        """Test that welding a welded mesh changes nothing."""
        mesh = self.exploded_voxel()
        welder = MeshWelder()
        welder.weld(mesh)
        before = mesh.to_arrays()

        report = welder.weld(mesh)
        after = mesh.to_arrays()

        assert report.duplicate_triangles == 0
        assert report.merged_vertices == 0
        assert report.collapsed_triangles == 0
        assert report.removed_vertices == 0
        assert np.array_equal(before.vertices, after.vertices)
        assert np.array_equal(before.indices, after.indices)
        assert np.allclose(before.normals, after.normals)

    def test_duplicate_triangles(self):
        """Test that rotated copies of a triangle are removed."""
        mesh = Mesh.from_arrays(
            [[0, 0, 0], [1, 0, 0], [0, 1, 0]],
            [[0, 1, 2], [1, 2, 0]]
        )
        report = MeshWelder().weld(mesh)
        assert report.duplicate_triangles == 1
        assert mesh.triangle_count == 1
        assert report.boundary_edges == 3

    def test_collapsed_triangle(self):
        """Test that a triangle whose corners fuse is dropped."""
        mesh = Mesh.from_arrays(
            [[0, 0, 0], [1, 0, 0], [0, 1, 0], [1e-9, 0, 0]],
            [[0, 1, 2], [0, 3, 2]]
        )
        report = MeshWelder().weld(mesh)
        assert report.collapsed_triangles == 1
        assert mesh.triangle_count == 1
        assert mesh.vertex_count == 3

    def test_merged_faces_leave_open_edges(self):
        """Test that coplanar merging on an L shape leaves T-junction edges."""
        coords = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]])

        per_voxel = BoxyMeshBuilder(merge_coplanar_faces=False).build(coords)
        assert MeshWelder().weld(per_voxel).is_closed

        merged = BoxyMeshBuilder(merge_coplanar_faces=True).build(coords)
        report = MeshWelder().weld(merged)
        assert report.boundary_edges > 0
        assert not report.is_closed

    def test_normals(self):
        """Test that angle-weighted corner normals point along the diagonal."""
        mesh = BoxyMeshBuilder().build(np.array([[0, 0, 0]]))
        MeshWelder(normal_weighting="angle").weld(mesh)

        center = np.array([0.5, 0.5, 0.5])
        for vid in mesh.vertex_ids():
            expected = (mesh.get_vertex(vid) - center) / np.linalg.norm(mesh.get_vertex(vid) - center)
            assert np.allclose(mesh.get_normal(vid), expected)

    def test_area_normals_outward(self):
        """Test that default normals are unit length and point outward."""
        mesh = BoxyMeshBuilder().build(solid_block(2, 2, 1))
        MeshWelder().weld(mesh)

        center = np.array([1.0, 1.0, 0.5])
        for vid in mesh.vertex_ids():
            normal = mesh.get_normal(vid)
            assert np.isclose(np.linalg.norm(normal), 1.0)
            assert normal.dot(mesh.get_vertex(vid) - center) > 0

    def test_dangling_reference(self):
        """Test that a triangle naming a missing vertex is fatal."""
        mesh = Mesh.from_arrays([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]])
        mesh._triangles.append((0, 1, 7))

        with self.assertRaises(MeshValidityError):
            MeshWelder().weld(mesh)


if __name__ == "__main__":
    unittest.main(verbosity=2)
