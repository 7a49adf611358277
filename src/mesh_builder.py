"""Single-material procedural mesh builder with exact vertex deduplication."""
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from mesh_data import BuildConfig, MeshData, SubMeshDescriptor
from transforms import as_matrix, transform_directions, transform_points, transform_tex_coords
from vertex import Vec2, Vec3

logger = logging.getLogger(__name__)

VertexKey = Tuple[Vec3, Vec3, Vec2]


class MeshBuilder:
    """Collects vertices and quads for one sub-mesh.

    vertex_matrix moves positions (as points) and normals (as directions);
    texture_matrix moves uvs (as 2D points). Both apply at add_vertex time,
    so they can be changed between calls.
    """

    def __init__(self):
        self.vertex_matrix = np.eye(4)
        self.texture_matrix = np.eye(4)
        self._vertices: List[Vec3] = []
        self._normals: List[Vec3] = []
        self._uv: List[Vec2] = []
        self._triangles: List[int] = []
        self._existing: Dict[VertexKey, int] = {}

    @property
    def vertex_count(self) -> int:
        return len(self._vertices)

    @property
    def triangle_count(self) -> int:
        return len(self._triangles) // 3

    def add_vertex(self, position, normal, uv) -> int:
        """Transform and insert a vertex; returns the index of an identical one if present."""
        pos = transform_points([position], as_matrix(self.vertex_matrix))[0]
        nor = transform_directions([normal], as_matrix(self.vertex_matrix))[0]
        tex = transform_tex_coords([uv], as_matrix(self.texture_matrix))[0]
        key = (
            (float(pos[0]), float(pos[1]), float(pos[2])),
            (float(nor[0]), float(nor[1]), float(nor[2])),
            (float(tex[0]), float(tex[1])),
        )
        index = self._existing.get(key)
        if index is not None:
            return index

        index = len(self._vertices)
        self._vertices.append(key[0])
        self._normals.append(key[1])
        self._uv.append(key[2])
        self._existing[key] = index
        return index

    def add_triangle(self, a: int, b: int, c: int) -> None:
        for index in (a, b, c):
            if not 0 <= index < len(self._vertices):
                raise IndexError(f"Vertex index {index} out of range (have {len(self._vertices)})")
        self._triangles.extend((a, b, c))

    def add_quad(self, bottom_left: int, top_left: int, top_right: int, bottom_right: int) -> None:
        """Two counter-clockwise triangles for a quad given bottom-left first, clockwise."""
        self.add_triangle(bottom_left, top_left, top_right)
        self.add_triangle(bottom_left, top_right, bottom_right)

    def build(self, mesh: MeshData, config: Optional[BuildConfig] = None) -> None:
        """Write everything added so far into *mesh* as a single sub-mesh."""
        mesh.set_buffers(
            np.array(self._vertices, dtype=float).reshape(-1, 3),
            np.array(self._normals, dtype=float).reshape(-1, 3),
            np.array(self._uv, dtype=float).reshape(-1, 2),
            np.array(self._triangles, dtype=np.int64),
            [SubMeshDescriptor(0, len(self._triangles))],
            config,
        )
        logger.debug("Built mesh '%s': %d vertices, %d triangles",
                     mesh.name, mesh.vertex_count, mesh.triangle_count)
