"""Tests for mesh_batcher module."""
import logging
import math

import numpy as np
import pytest
import trimesh

from draw_calls import DrawCall, SourceMesh
from materials import Material
from mesh_batcher import MeshBatcher
from mesh_data import BuildConfig, IndexFormat, MeshData, SubMeshDescriptor
from plane import Plane


def _build(batcher):
    mesh, materials = MeshData(), []
    batcher.build(mesh, materials)
    return mesh, materials


def _single_triangle(points, material, name="tri"):
    mesh = SourceMesh(
        name=name,
        vertices=np.array(points, dtype=float),
        normals=np.tile([0.0, 0.0, 1.0], (3, 1)),
        uv=np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
        indices=np.array([0, 1, 2]),
    )
    return DrawCall(transform=np.eye(4), mesh=mesh, materials=[material])


class TestBounds:
    """Axis-aligned bounds over all sub-meshes."""

    def test_empty_batcher_bounds_are_zero(self):
        lo, hi = MeshBatcher().bounds
        np.testing.assert_array_equal(lo, [0.0, 0.0, 0.0])
        np.testing.assert_array_equal(hi, [0.0, 0.0, 0.0])

    def test_bounds_span_all_vertices(self, red, blue):
        batcher = MeshBatcher.load_from([
            _single_triangle([[-1.0, 0.0, 2.0], [0.0, -1.0, 1.0], [0.5, -0.5, 1.0]], red),
            _single_triangle([[3.0, -4.0, 0.0], [0.0, -1.0, 1.0], [1.0, -1.0, 1.0]], blue),
        ])
        lo, hi = batcher.bounds
        np.testing.assert_allclose(lo, [-1.0, -4.0, 0.0])
        np.testing.assert_allclose(hi, [3.0, 0.0, 2.0])


class TestLoadFrom:
    """Batching source draw calls."""

    def test_loads_and_deduplicates(self, quad_draw_call, red):
        batcher = MeshBatcher.load_from([quad_draw_call])
        assert batcher.sub_mesh_ids == [1]
        assert batcher.material_for(1) is red
        assert batcher.vertex_count == 4
        assert batcher.triangles_of(1) == [(0, 1, 2), (0, 2, 3)]

    def test_triangle_soup_is_welded(self, red):
        soup = SourceMesh(
            name="soup",
            vertices=np.array([
                [0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0],
                [0.0, 0.0, 0.0], [1.0, 1.0, 0.0], [1.0, 0.0, 0.0],
            ]),
            indices=np.arange(6),
        )
        batcher = MeshBatcher.load_from([DrawCall(np.eye(4), soup, [red])])
        assert batcher.vertex_count == 4
        assert batcher.triangles_of(1) == [(0, 1, 2), (0, 2, 3)]

    def test_world_transform_applied(self, quad_mesh, red):
        transform = trimesh.transformations.translation_matrix([10.0, 0.0, 0.0])
        batcher = MeshBatcher.load_from([DrawCall(transform, quad_mesh, [red])])
        lo, hi = batcher.bounds
        np.testing.assert_allclose(lo, [10.0, 0.0, 0.0])
        np.testing.assert_allclose(hi, [11.0, 1.0, 0.0])
        # Normals are directions: translation does not move them
        for v in batcher.vertices_of(1):
            assert v.normal == (0.0, 0.0, 1.0)

    def test_scaled_transform_scales_normals_without_normalizing(self, quad_mesh, red):
        transform = np.diag([2.0, 2.0, 3.0, 1.0])
        batcher = MeshBatcher.load_from([DrawCall(transform, quad_mesh, [red])])
        for v in batcher.vertices_of(1):
            np.testing.assert_allclose(v.normal, [0.0, 0.0, 3.0])

    def test_material_shared_across_draw_calls(self, quad_mesh, red):
        shifted = trimesh.transformations.translation_matrix([2.0, 0.0, 0.0])
        batcher = MeshBatcher.load_from([
            DrawCall(np.eye(4), quad_mesh, [red]),
            DrawCall(shifted, quad_mesh, [red]),
        ])
        assert batcher.sub_mesh_ids == [1]
        assert batcher.vertex_count == 8
        assert batcher.triangle_count == 4

    def test_sub_meshes_get_ids_in_discovery_order(self, split_quad_mesh, red, blue):
        batcher = MeshBatcher.load_from([DrawCall(np.eye(4), split_quad_mesh, [blue, red])])
        assert batcher.sub_mesh_ids == [1, 2]
        assert batcher.material_for(1) is blue
        assert batcher.material_for(2) is red
        assert len(batcher.triangles_of(1)) == 1
        assert len(batcher.triangles_of(2)) == 1

    def test_too_few_materials_clamps_and_logs(self, split_quad_mesh, red, caplog):
        with caplog.at_level(logging.ERROR, logger="mesh_batcher"):
            batcher = MeshBatcher.load_from([DrawCall(np.eye(4), split_quad_mesh, [red])])
        assert "2 sub-meshes" in caplog.text
        assert batcher.sub_mesh_ids == [1]
        assert batcher.triangle_count == 1

    def test_unreadable_draw_call_skipped(self, quad_mesh, red, blue, caplog):
        broken = SourceMesh(
            name="locked", vertices=np.zeros((3, 3)), indices=[0, 1, 2], readable=False)
        with caplog.at_level(logging.ERROR, logger="draw_calls"):
            batcher = MeshBatcher.load_from([
                DrawCall(np.eye(4), broken, [blue]),
                DrawCall(np.eye(4), quad_mesh, [red]),
            ])
        assert "locked" in caplog.text
        assert batcher.materials == [red]
        assert batcher.triangle_count == 2

    def test_empty_source(self):
        batcher = MeshBatcher.load_from([])
        assert batcher.sub_mesh_ids == []


class TestAdd:
    """Merging one batcher into another."""

    def test_same_material_merges_into_one_sub_mesh(self, quad_mesh, red):
        a = MeshBatcher.load_from([DrawCall(np.eye(4), quad_mesh, [red])])
        shifted = trimesh.transformations.translation_matrix([0.0, 0.0, 1.0])
        b = MeshBatcher.load_from([DrawCall(shifted, quad_mesh, [red])])

        merged = MeshBatcher()
        merged.add(a)
        merged.add(b)
        assert merged.sub_mesh_ids == [1]
        assert merged.triangle_count == 4
        assert merged.vertex_count == 8

    def test_equal_but_distinct_materials_stay_separate(self, quad_mesh):
        first = Material(name="paint", properties={"albedo": (1.0, 1.0, 1.0)})
        second = Material(name="paint", properties={"albedo": (1.0, 1.0, 1.0)})
        merged = MeshBatcher()
        merged.add(MeshBatcher.load_from([DrawCall(np.eye(4), quad_mesh, [first])]))
        merged.add(MeshBatcher.load_from([DrawCall(np.eye(4), quad_mesh, [second])]))
        assert merged.sub_mesh_ids == [1, 2]
        assert merged.materials == [first, second]
        assert merged.materials[0] is first
        assert merged.materials[1] is second

    def test_adding_twice_deduplicates_vertices(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        merged = MeshBatcher()
        merged.add(source)
        merged.add(source)
        assert merged.vertex_count == 4
        assert merged.triangle_count == 4

    def test_merging_into_itself_doubles_geometry(self, red):
        batcher = MeshBatcher.load_from([
            _single_triangle([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], red),
        ])
        batcher.add(batcher, trimesh.transformations.translation_matrix([5.0, 0.0, 0.0]))

        assert batcher.sub_mesh_ids == [1]
        assert batcher.triangle_count == 2
        assert batcher.vertex_count == 6
        verts = batcher.vertices_of(1)
        for tri in batcher.triangles_of(1):
            assert all(0 <= i < len(verts) for i in tri)
        lo, hi = batcher.bounds
        np.testing.assert_allclose(lo, [0.0, 0.0, 0.0])
        np.testing.assert_allclose(hi, [6.0, 1.0, 0.0])

    def test_merging_into_itself_with_identity_deduplicates(self, quad_draw_call):
        batcher = MeshBatcher.load_from([quad_draw_call])
        batcher.add(batcher)
        assert batcher.vertex_count == 4
        assert batcher.triangle_count == 4

    def test_vertex_matrix_moves_points_and_directions(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        rotate = trimesh.transformations.rotation_matrix(math.pi / 2, [1.0, 0.0, 0.0])
        matrix = trimesh.transformations.translation_matrix([0.0, 0.0, 5.0]) @ rotate

        merged = MeshBatcher()
        merged.add(source, matrix)
        lo, hi = merged.bounds
        np.testing.assert_allclose(lo, [0.0, 0.0, 5.0], atol=1e-12)
        np.testing.assert_allclose(hi, [1.0, 0.0, 6.0], atol=1e-12)
        for v in merged.vertices_of(1):
            np.testing.assert_allclose(v.normal, [0.0, -1.0, 0.0], atol=1e-12)

    def test_texture_matrix_called_per_triangle_and_touches_uv_only(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        seen = []

        def texture_matrix(tri):
            seen.append(tri)
            return np.diag([2.0, 3.0, 1.0, 1.0])

        merged = MeshBatcher()
        merged.add(source, np.eye(4), texture_matrix)

        assert len(seen) == 2
        original = {v.position: v for v in source.vertices_of(1)}
        for v in merged.vertices_of(1):
            before = original[v.position]
            assert v.normal == before.normal
            np.testing.assert_allclose(v.tex_coord, [2.0 * before.tex_coord[0], 3.0 * before.tex_coord[1]])

    def test_texture_matrix_sees_transformed_triangle(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        shift = trimesh.transformations.translation_matrix([100.0, 0.0, 0.0])
        xs = []

        def texture_matrix(tri):
            xs.extend(v.position[0] for v in tri.vertices)
            return np.eye(4)

        MeshBatcher().add(source, shift, texture_matrix)
        assert min(xs) >= 100.0

    def test_per_triangle_texture_matrix_splits_shared_vertices(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        calls = iter([np.eye(4), trimesh.transformations.translation_matrix([0.5, 0.0, 0.0])])

        merged = MeshBatcher()
        merged.add(source, None, lambda tri: next(calls))
        # Vertices 0 and 2 are shared by both triangles but now differ in uv
        assert merged.vertex_count == 6

    def test_material_without_geometry_still_registered(self, red, blue, quad_mesh):
        empty_range = SourceMesh(
            name="partial",
            vertices=quad_mesh.vertices,
            indices=quad_mesh.indices,
            sub_meshes=[SubMeshDescriptor(0, 6), SubMeshDescriptor(6, 0)],
        )
        source = MeshBatcher.load_from([DrawCall(np.eye(4), empty_range, [red, blue])])
        merged = MeshBatcher()
        merged.add(source)

        assert merged.sub_mesh_ids == [1, 2]
        assert merged.vertices_of(2) == []
        assert merged.triangles_of(2) == []

        mesh, materials = _build(merged)
        assert materials == [red, blue]
        assert mesh.sub_meshes[1] == SubMeshDescriptor(6, 0)


class TestRotate:
    """Quaternion rotation of a whole batcher."""

    def test_rotate_quarter_turn_about_z(self, quad_draw_call, red):
        source = MeshBatcher.load_from([quad_draw_call])
        half = math.pi / 4
        rotated = source.rotate((math.cos(half), 0.0, 0.0, math.sin(half)))

        assert rotated.sub_mesh_ids == [1]
        assert rotated.material_for(1) is red
        assert rotated.triangles_of(1) == source.triangles_of(1)
        lo, hi = rotated.bounds
        np.testing.assert_allclose(lo, [-1.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(hi, [0.0, 1.0, 0.0], atol=1e-12)
        for before, after in zip(source.vertices_of(1), rotated.vertices_of(1)):
            assert after.tex_coord == before.tex_coord
            np.testing.assert_allclose(after.normal, [0.0, 0.0, 1.0], atol=1e-12)

    def test_rotate_does_not_mutate_source(self, quad_draw_call):
        source = MeshBatcher.load_from([quad_draw_call])
        before = source.vertices_of(1)
        source.rotate((0.0, 1.0, 0.0, 0.0))
        assert source.vertices_of(1) == before

    def test_rotate_drops_empty_sub_meshes_and_keeps_id_counter(self, quad_mesh, red, blue):
        empty_range = SourceMesh(
            name="partial",
            vertices=quad_mesh.vertices,
            indices=quad_mesh.indices,
            sub_meshes=[SubMeshDescriptor(0, 0), SubMeshDescriptor(0, 6)],
        )
        source = MeshBatcher.load_from([DrawCall(np.eye(4), empty_range, [red, blue])])
        rotated = source.rotate((1.0, 0.0, 0.0, 0.0))
        assert rotated.sub_mesh_ids == [2]

        green = Material(name="green")
        rotated.add(MeshBatcher.load_from([DrawCall(np.eye(4), quad_mesh, [green])]))
        assert rotated.sub_mesh_ids == [2, 3]


class TestClip:
    """Clipping a batcher against planes."""

    def test_clip_keeps_ahead_geometry(self, quad_draw_call, red):
        source = MeshBatcher.load_from([quad_draw_call])
        clipped = source.clip([Plane((-1.0, 0.0, 0.0), -0.5)])

        assert clipped.sub_mesh_ids == [1]
        assert clipped.material_for(1) is red
        lo, hi = clipped.bounds
        np.testing.assert_allclose(lo, [0.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(hi, [0.5, 1.0, 0.0], atol=1e-12)
        area = sum(t.area for t in clipped.iter_triangles(1))
        assert area == pytest.approx(0.5)

    def test_fully_clipped_sub_mesh_dropped(self, split_quad_mesh, red, blue):
        source = MeshBatcher.load_from([DrawCall(np.eye(4), split_quad_mesh, [red, blue])])
        # Sub-mesh 1 is the upper-left triangle (y >= x); keep y < x only.
        clipped = source.clip([Plane((1.0, -1.0, 0.0), 0.0)])
        assert clipped.sub_mesh_ids == [2]
        assert clipped.triangle_count == 1


class TestBuild:
    """Flattening into MeshData."""

    def test_empty_build(self):
        mesh, materials = _build(MeshBatcher())
        assert mesh.vertex_count == 0
        assert mesh.triangle_count == 0
        assert mesh.sub_meshes == []
        assert materials == []

    def test_sub_meshes_in_ascending_id_order(self, split_quad_mesh, red, blue):
        source = MeshBatcher.load_from([DrawCall(np.eye(4), split_quad_mesh, [blue, red])])
        mesh, materials = _build(source)

        assert materials == [blue, red]
        assert mesh.sub_meshes == [SubMeshDescriptor(0, 3), SubMeshDescriptor(3, 3)]
        assert mesh.vertex_count == 6
        # Second sub-mesh indices are offset by the first sub-mesh's 3 vertices
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 3, 4, 5])
        np.testing.assert_allclose(mesh.vertices[3:], [[0, 0, 0], [1, 1, 0], [1, 0, 0]])

    def test_materials_list_is_replaced(self, quad_draw_call, red, blue):
        mesh = MeshData()
        materials = [blue, blue, blue]
        MeshBatcher.load_from([quad_draw_call]).build(mesh, materials)
        assert materials == [red]

    def test_build_is_deterministic(self, split_quad_mesh, quad_mesh, red, blue):
        shifted = trimesh.transformations.translation_matrix([3.0, 0.0, 0.0])
        batcher = MeshBatcher.load_from([
            DrawCall(np.eye(4), split_quad_mesh, [red, blue]),
            DrawCall(shifted, quad_mesh, [blue]),
        ])
        first, first_materials = _build(batcher)
        second, second_materials = _build(batcher)

        assert first.vertices.tobytes() == second.vertices.tobytes()
        assert first.normals.tobytes() == second.normals.tobytes()
        assert first.uv.tobytes() == second.uv.tobytes()
        assert first.indices.tobytes() == second.indices.tobytes()
        assert first.sub_meshes == second.sub_meshes
        assert first_materials == second_materials

    def test_build_does_not_mutate_batcher(self, quad_draw_call):
        batcher = MeshBatcher.load_from([quad_draw_call])
        before = (batcher.vertices_of(1), batcher.triangles_of(1))
        _build(batcher)
        assert (batcher.vertices_of(1), batcher.triangles_of(1)) == before

    def test_narrow_indices_by_default(self, quad_draw_call):
        mesh, _ = _build(MeshBatcher.load_from([quad_draw_call]))
        assert mesh.index_format is IndexFormat.UINT16
        assert mesh.indices.dtype == np.uint16

    def test_threshold_from_config(self, quad_draw_call):
        mesh, materials = MeshData(), []
        batcher = MeshBatcher.load_from([quad_draw_call])
        batcher.build(mesh, materials, BuildConfig(wide_index_threshold=4, name="merged"))
        assert mesh.index_format is IndexFormat.UINT32
        assert mesh.indices.dtype == np.uint32
        assert mesh.name == "merged"

    def test_tangents_follow_u_direction(self, quad_draw_call):
        mesh, _ = _build(MeshBatcher.load_from([quad_draw_call]))
        assert mesh.tangents.shape == (4, 4)
        np.testing.assert_allclose(mesh.tangents[:, :3], np.tile([1.0, 0.0, 0.0], (4, 1)), atol=1e-6)
        np.testing.assert_array_equal(mesh.tangents[:, 3], np.ones(4))
