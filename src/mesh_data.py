"""
Flat output mesh buffers consumed by a renderer.

MeshData holds interleavable per-vertex arrays (position, normal, uv,
tangent), one index buffer and the index ranges of each sub-mesh. Index
width follows the vertex count: 16-bit below the configured threshold,
32-bit at or above it.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np
import trimesh

logger = logging.getLogger(__name__)

UINT16_MAX = 65535

# UV-space triangles with a smaller determinant give no tangent direction.
_TANGENT_DET_EPSILON = 1e-6


class IndexFormat(Enum):
    """Width of the triangle index buffer."""
    UINT16 = "uint16"
    UINT32 = "uint32"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.uint16 if self is IndexFormat.UINT16 else np.uint32)


@dataclass(frozen=True)
class SubMeshDescriptor:
    """A contiguous range of the index buffer drawn with one material."""
    index_start: int
    index_count: int

    @property
    def index_stop(self) -> int:
        return self.index_start + self.index_count


@dataclass
class BuildConfig:
    """Options for flattening geometry into a MeshData."""
    recalculate_tangents: bool = True
    wide_index_threshold: int = UINT16_MAX
    name: Optional[str] = None


def _empty(columns: int) -> np.ndarray:
    return np.zeros((0, columns), dtype=np.float32)


@dataclass
class MeshData:
    """Renderer-facing mesh: flat vertex attributes plus sub-mesh ranges."""
    name: str = "mesh"
    vertices: np.ndarray = field(default_factory=lambda: _empty(3))
    normals: np.ndarray = field(default_factory=lambda: _empty(3))
    uv: np.ndarray = field(default_factory=lambda: _empty(2))
    tangents: np.ndarray = field(default_factory=lambda: _empty(4))
    indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint16))
    sub_meshes: List[SubMeshDescriptor] = field(default_factory=list)
    index_format: IndexFormat = IndexFormat.UINT16

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    @property
    def sub_mesh_count(self) -> int:
        return len(self.sub_meshes)

    def clear(self) -> None:
        self.vertices = _empty(3)
        self.normals = _empty(3)
        self.uv = _empty(2)
        self.tangents = _empty(4)
        self.indices = np.zeros(0, dtype=np.uint16)
        self.sub_meshes = []
        self.index_format = IndexFormat.UINT16

    def set_buffers(
        self,
        vertices,
        normals,
        uv,
        indices,
        sub_meshes: List[SubMeshDescriptor],
        config: Optional[BuildConfig] = None,
    ) -> None:
        """Replace all buffers, picking the index width and tangents per *config*."""
        if config is None:
            config = BuildConfig()

        self.clear()
        if config.name is not None:
            self.name = config.name

        self.vertices = np.asarray(vertices, dtype=np.float32).reshape(-1, 3)
        self.normals = np.asarray(normals, dtype=np.float32).reshape(-1, 3)
        self.uv = np.asarray(uv, dtype=np.float32).reshape(-1, 2)
        if not (len(self.vertices) == len(self.normals) == len(self.uv)):
            raise ValueError(
                f"Attribute length mismatch: {len(self.vertices)} positions, "
                f"{len(self.normals)} normals, {len(self.uv)} uvs"
            )

        if len(self.vertices) >= config.wide_index_threshold:
            self.index_format = IndexFormat.UINT32
            logger.debug("Mesh '%s' has %d vertices; using 32-bit indices",
                         self.name, len(self.vertices))
        self.indices = np.asarray(indices, dtype=np.int64).reshape(-1).astype(
            self.index_format.dtype)
        self.sub_meshes = list(sub_meshes)

        if config.recalculate_tangents:
            self.recalculate_tangents()
        else:
            self.tangents = np.zeros((len(self.vertices), 4), dtype=np.float32)

    def sub_mesh_faces(self, sub_mesh: int) -> np.ndarray:
        """(K, 3) triangle indices of one sub-mesh."""
        descriptor = self.sub_meshes[sub_mesh]
        return self.indices[descriptor.index_start:descriptor.index_stop].reshape(-1, 3)

    def recalculate_tangents(self) -> None:
        self.tangents = compute_tangents(self.vertices, self.normals, self.uv, self.indices)

    def copy(self) -> "MeshData":
        dest = MeshData()
        copy_mesh(self, dest)
        return dest

    def to_trimesh(self) -> trimesh.Trimesh:
        """All sub-meshes as a single trimesh, vertex order preserved."""
        return trimesh.Trimesh(
            vertices=self.vertices.astype(np.float64),
            faces=self.indices.astype(np.int64).reshape(-1, 3),
            vertex_normals=self.normals.astype(np.float64),
            visual=trimesh.visual.TextureVisuals(uv=self.uv.astype(np.float64)),
            process=False,
        )


def copy_mesh(src: MeshData, dest: MeshData) -> None:
    """Overwrite *dest* with *src*'s name and independent copies of its buffers."""
    dest.clear()
    dest.name = src.name
    dest.vertices = src.vertices.copy()
    dest.normals = src.normals.copy()
    dest.uv = src.uv.copy()
    dest.tangents = src.tangents.copy()
    dest.indices = src.indices.copy()
    dest.sub_meshes = list(src.sub_meshes)
    dest.index_format = src.index_format


def _perpendicular(normals: np.ndarray) -> np.ndarray:
    """A unit vector perpendicular to each row of *normals*."""
    axis = np.zeros_like(normals)
    use_x = np.abs(normals[:, 0]) < 0.9
    axis[use_x, 0] = 1.0
    axis[~use_x, 1] = 1.0
    perp = np.cross(axis, normals)
    length = np.linalg.norm(perp, axis=1)
    result = np.tile([1.0, 0.0, 0.0], (len(normals), 1))
    ok = length > 1e-12
    result[ok] = perp[ok] / length[ok, None]
    return result


def compute_tangents(vertices, normals, uv, indices) -> np.ndarray:
    """Per-vertex tangents (x, y, z, w) from triangle UV gradients.

    Accumulates the U (and V) direction of every triangle onto its vertices,
    orthogonalizes against the vertex normal and stores the bitangent
    handedness in w.
    """
    vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
    faces = np.asarray(indices, dtype=np.int64).reshape(-1, 3)
    n = len(vertices)
    if n == 0:
        return np.zeros((0, 4), dtype=np.float32)

    tan = np.zeros((n, 3))
    bitan = np.zeros((n, 3))
    if len(faces):
        p0, p1, p2 = vertices[faces[:, 0]], vertices[faces[:, 1]], vertices[faces[:, 2]]
        w0, w1, w2 = uv[faces[:, 0]], uv[faces[:, 1]], uv[faces[:, 2]]
        edge1 = p1 - p0
        edge2 = p2 - p0
        duv1 = w1 - w0
        duv2 = w2 - w0

        det = duv1[:, 0] * duv2[:, 1] - duv2[:, 0] * duv1[:, 1]
        valid = np.abs(det) > _TANGENT_DET_EPSILON
        r = np.zeros_like(det)
        r[valid] = 1.0 / det[valid]

        sdir = (edge1 * duv2[:, 1:2] - edge2 * duv1[:, 1:2]) * r[:, None]
        tdir = (edge2 * duv1[:, 0:1] - edge1 * duv2[:, 0:1]) * r[:, None]
        for corner in range(3):
            np.add.at(tan, faces[:, corner], sdir)
            np.add.at(bitan, faces[:, corner], tdir)

    normal_len = np.linalg.norm(normals, axis=1)
    unit_normals = np.zeros_like(normals)
    has_normal = normal_len > 1e-12
    unit_normals[has_normal] = normals[has_normal] / normal_len[has_normal, None]

    # Gram-Schmidt
    t = tan - unit_normals * np.sum(unit_normals * tan, axis=1)[:, None]
    t_len = np.linalg.norm(t, axis=1)
    good = t_len > 1e-12
    t[good] /= t_len[good, None]
    if not np.all(good):
        t[~good] = _perpendicular(unit_normals[~good])

    handedness = np.where(
        np.sum(np.cross(unit_normals, t) * bitan, axis=1) < 0.0, -1.0, 1.0)

    out = np.empty((n, 4), dtype=np.float32)
    out[:, :3] = t
    out[:, 3] = handedness
    return out
