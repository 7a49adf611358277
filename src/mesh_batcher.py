"""
Material-keyed mesh batching.

A MeshBatcher accumulates triangles from many source meshes into one
deduplicated vertex list and triangle list per sub-mesh, where a sub-mesh is
everything drawn with the same Material handle. Sub-mesh ids are small
integers handed out in discovery order starting at 1; building visits them
in ascending order so repeated builds of the same input are identical.

Typical use:
    loaded = MeshBatcher.load_from(TrimeshSceneSource(scene))
    merged = MeshBatcher()
    merged.add(loaded, vertex_matrix, texture_matrix_fn)
    mesh, materials = MeshData(), []
    merged.build(mesh, materials)
"""
import logging
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from draw_calls import find_draw_calls
from materials import Material
from mesh_data import BuildConfig, MeshData, SubMeshDescriptor
from plane import Plane, cut_by_planes
from transforms import (
    as_matrix,
    quaternion_matrix,
    transform_directions,
    transform_points,
    transform_tex_coords,
)
from triangle import Triangle
from unique_list import UniqueList
from vertex import Vertex

logger = logging.getLogger(__name__)

IndexTriple = Tuple[int, int, int]
TextureMatrixFn = Callable[[Triangle], np.ndarray]


class MeshBatcher:
    """Per-material vertex and triangle lists, merged and flattened on demand."""

    def __init__(self):
        self._vertices: Dict[int, UniqueList[Vertex]] = {}
        self._triangles: Dict[int, List[IndexTriple]] = {}
        self._materials: Dict[int, Material] = {}
        self._next_sub_mesh = 1

    # ─── Introspection ───────────────────────────────────────────────────────

    @property
    def sub_mesh_ids(self) -> List[int]:
        return sorted(self._materials)

    @property
    def materials(self) -> List[Material]:
        """Materials in ascending sub-mesh id order."""
        return [self._materials[s] for s in self.sub_mesh_ids]

    def material_for(self, sub_mesh: int) -> Material:
        return self._materials[sub_mesh]

    def vertices_of(self, sub_mesh: int) -> List[Vertex]:
        return list(self._vertices.get(sub_mesh, ()))

    def triangles_of(self, sub_mesh: int) -> List[IndexTriple]:
        return list(self._triangles.get(sub_mesh, ()))

    @property
    def vertex_count(self) -> int:
        return sum(len(v) for v in self._vertices.values())

    @property
    def triangle_count(self) -> int:
        return sum(len(t) for t in self._triangles.values())

    def iter_triangles(self, sub_mesh: int) -> Iterator[Triangle]:
        verts = self._vertices.get(sub_mesh)
        if verts is None:
            return
        for i0, i1, i2 in self._triangles.get(sub_mesh, ()):
            yield Triangle(verts[i0], verts[i1], verts[i2])

    @property
    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned (min, max) of all vertex positions; zeros when empty."""
        chunks = [
            np.array([v.position for v in verts], dtype=float)
            for verts in self._vertices.values()
            if len(verts)
        ]
        if not chunks:
            return np.zeros(3), np.zeros(3)
        points = np.vstack(chunks)
        return points.min(axis=0), points.max(axis=0)

    # ─── Internal bookkeeping ────────────────────────────────────────────────

    def _allocate_sub_mesh(self, material: Material) -> int:
        sub_mesh = self._next_sub_mesh
        self._next_sub_mesh += 1
        self._materials[sub_mesh] = material
        return sub_mesh

    def _geometry_for(self, sub_mesh: int) -> Tuple[UniqueList[Vertex], List[IndexTriple]]:
        verts = self._vertices.get(sub_mesh)
        if verts is None:
            verts = self._vertices[sub_mesh] = UniqueList()
        tris = self._triangles.get(sub_mesh)
        if tris is None:
            tris = self._triangles[sub_mesh] = []
        return verts, tris

    def _non_empty_geometry(
        self, sub_mesh: int,
    ) -> Optional[Tuple[UniqueList[Vertex], List[IndexTriple]]]:
        verts = self._vertices.get(sub_mesh)
        tris = self._triangles.get(sub_mesh)
        if not verts or not tris:
            return None
        return verts, tris

    def _attribute_arrays(self, verts: UniqueList[Vertex]):
        positions = np.array([v.position for v in verts], dtype=float)
        normals = np.array([v.normal for v in verts], dtype=float)
        uvs = np.array([v.tex_coord for v in verts], dtype=float)
        return positions, normals, uvs

    # ─── Merging ─────────────────────────────────────────────────────────────

    def add(
        self,
        other: "MeshBatcher",
        vertex_matrix=None,
        texture_matrix: Optional[TextureMatrixFn] = None,
    ) -> None:
        """Merge *other*'s geometry into this batcher.

        Positions go through *vertex_matrix* as points and normals as
        directions. *texture_matrix* is called once per triangle with the
        already transformed triangle and its result is applied to that
        triangle's texture coordinates only. Both default to identity.
        Sub-meshes are matched by material identity; unseen materials get a
        new sub-mesh id even when they carry no geometry.
        """
        matrix = as_matrix(vertex_matrix)
        by_material: Dict[Material, int] = {m: s for s, m in self._materials.items()}

        for other_sub_mesh in other.sub_mesh_ids:
            material = other._materials[other_sub_mesh]
            sub_mesh = by_material.get(material)
            if sub_mesh is None:
                sub_mesh = self._allocate_sub_mesh(material)
                by_material[material] = sub_mesh

            geometry = other._non_empty_geometry(other_sub_mesh)
            if geometry is None:
                continue
            other_verts, other_tris = geometry
            # Snapshot first: *other* may be this batcher.
            other_tris = list(other_tris)
            verts, tris = self._geometry_for(sub_mesh)

            positions, normals, uvs = other._attribute_arrays(other_verts)
            positions = transform_points(positions, matrix)
            normals = transform_directions(normals, matrix)
            moved = [Vertex(p, n, uv) for p, n, uv in zip(positions, normals, uvs)]

            for i0, i1, i2 in other_tris:
                if texture_matrix is None:
                    tris.append((
                        verts.add_or_find(moved[i0]),
                        verts.add_or_find(moved[i1]),
                        verts.add_or_find(moved[i2]),
                    ))
                    continue

                corners = (i0, i1, i2)
                tri = Triangle(moved[i0], moved[i1], moved[i2])
                tex = transform_tex_coords(uvs[list(corners)], as_matrix(texture_matrix(tri)))
                tris.append(tuple(
                    verts.add_or_find(Vertex(positions[i], normals[i], tex[k]))
                    for k, i in enumerate(corners)
                ))

    def rotate(self, quaternion) -> "MeshBatcher":
        """Return a copy rotated by *quaternion* (w, x, y, z).

        Positions and normals rotate, texture coordinates do not. Sub-mesh
        ids and materials are kept; empty sub-meshes are dropped.
        """
        matrix = quaternion_matrix(quaternion)
        result = MeshBatcher()
        result._next_sub_mesh = self._next_sub_mesh

        for sub_mesh in self.sub_mesh_ids:
            geometry = self._non_empty_geometry(sub_mesh)
            if geometry is None:
                continue
            verts, tris = geometry

            positions, normals, uvs = self._attribute_arrays(verts)
            positions = transform_points(positions, matrix)
            normals = transform_directions(normals, matrix)
            rotated = [Vertex(p, n, uv) for p, n, uv in zip(positions, normals, uvs)]

            new_verts: UniqueList[Vertex] = UniqueList()
            new_tris = [
                (new_verts.add_or_find(rotated[i0]),
                 new_verts.add_or_find(rotated[i1]),
                 new_verts.add_or_find(rotated[i2]))
                for i0, i1, i2 in tris
            ]
            result._vertices[sub_mesh] = new_verts
            result._triangles[sub_mesh] = new_tris
            result._materials[sub_mesh] = self._materials[sub_mesh]

        return result

    def clip(self, planes: Sequence[Plane]) -> "MeshBatcher":
        """Return a copy keeping only geometry ahead of every plane.

        Sub-mesh ids and materials are kept; sub-meshes left without
        triangles are dropped.
        """
        result = MeshBatcher()
        result._next_sub_mesh = self._next_sub_mesh

        for sub_mesh in self.sub_mesh_ids:
            if self._non_empty_geometry(sub_mesh) is None:
                continue
            buffer = cut_by_planes(list(self.iter_triangles(sub_mesh)), planes)
            if not buffer:
                logger.debug("Sub-mesh %d fully clipped away", sub_mesh)
                continue

            verts, tris = result._geometry_for(sub_mesh)
            for tri in buffer:
                tris.append((
                    verts.add_or_find(tri.v0),
                    verts.add_or_find(tri.v1),
                    verts.add_or_find(tri.v2),
                ))
            result._materials[sub_mesh] = self._materials[sub_mesh]

        return result

    # ─── Loading ─────────────────────────────────────────────────────────────

    @classmethod
    def load_from(cls, root) -> "MeshBatcher":
        """Batch every draw call found beneath *root*.

        *root* is a DrawCallSource or an iterable of DrawCall. Vertices are
        moved to world space with each draw call's transform. Draw calls with
        more sub-meshes than materials are logged and truncated to the number
        of materials.
        """
        batcher = cls()
        by_material: Dict[Material, int] = {}
        draw_call_count = 0

        for call in find_draw_calls(root):
            draw_call_count += 1
            mesh = call.mesh
            sub_mesh_count = mesh.sub_mesh_count
            if sub_mesh_count > len(call.materials):
                logger.error(
                    "Mesh '%s' has %d sub-meshes, yet the number of materials "
                    "in the associated draw call is %d.",
                    mesh.name, sub_mesh_count, len(call.materials),
                )
                sub_mesh_count = len(call.materials)

            positions = transform_points(mesh.vertices, call.transform)
            normals = transform_directions(mesh.normals, call.transform)
            world: Dict[int, Vertex] = {}

            def world_vertex(index: int) -> Vertex:
                vertex = world.get(index)
                if vertex is None:
                    vertex = world[index] = Vertex(
                        positions[index], normals[index], mesh.uv[index])
                return vertex

            for s in range(sub_mesh_count):
                material = call.materials[s]
                sub_mesh = by_material.get(material)
                if sub_mesh is None:
                    sub_mesh = batcher._allocate_sub_mesh(material)
                    by_material[material] = sub_mesh

                verts, tris = batcher._geometry_for(sub_mesh)
                descriptor = mesh.get_sub_mesh(s)
                first = descriptor.index_start
                last = first + descriptor.index_count - 3
                for i in range(first, last + 1, 3):
                    a, b, c = mesh.indices[i:i + 3]
                    tris.append((
                        verts.add_or_find(world_vertex(int(a))),
                        verts.add_or_find(world_vertex(int(b))),
                        verts.add_or_find(world_vertex(int(c))),
                    ))

        logger.debug(
            "Loaded %d draw calls into %d sub-meshes (%d vertices, %d triangles)",
            draw_call_count, len(batcher._materials),
            batcher.vertex_count, batcher.triangle_count,
        )
        return batcher

    # ─── Output ──────────────────────────────────────────────────────────────

    def build(
        self,
        mesh: MeshData,
        shared_materials: List[Material],
        config: Optional[BuildConfig] = None,
    ) -> None:
        """Flatten all sub-meshes into *mesh* and their materials into *shared_materials*.

        Sub-meshes are written in ascending id order; shared_materials[i] is
        the material of mesh.sub_meshes[i]. Ids without geometry produce an
        empty index range. Existing content of both outputs is replaced.
        """
        shared_materials.clear()

        positions: List[np.ndarray] = []
        normals: List[np.ndarray] = []
        uvs: List[np.ndarray] = []
        indices: List[np.ndarray] = []
        descriptors: List[SubMeshDescriptor] = []
        vertex_offset = 0
        index_offset = 0

        for sub_mesh in self.sub_mesh_ids:
            verts = self._vertices.get(sub_mesh)
            tris = self._triangles.get(sub_mesh, [])

            if verts:
                p, n, uv = self._attribute_arrays(verts)
                positions.append(p)
                normals.append(n)
                uvs.append(uv)
            if tris:
                indices.append(np.asarray(tris, dtype=np.int64).reshape(-1) + vertex_offset)

            descriptors.append(SubMeshDescriptor(index_offset, 3 * len(tris)))
            shared_materials.append(self._materials[sub_mesh])
            vertex_offset += len(verts) if verts else 0
            index_offset += 3 * len(tris)

        mesh.set_buffers(
            np.vstack(positions) if positions else np.zeros((0, 3)),
            np.vstack(normals) if normals else np.zeros((0, 3)),
            np.vstack(uvs) if uvs else np.zeros((0, 2)),
            np.concatenate(indices) if indices else np.zeros(0, dtype=np.int64),
            descriptors,
            config,
        )
        logger.debug(
            "Built mesh '%s': %d vertices, %d triangles, %d sub-meshes, %s indices",
            mesh.name, mesh.vertex_count, mesh.triangle_count,
            mesh.sub_mesh_count, mesh.index_format.value,
        )
