"""
Source geometry enumeration for the mesh batcher.

A draw call is one (world transform, mesh, materials) triple: the mesh's
sub-mesh i is drawn with materials[i]. Draw calls come from a
DrawCallSource; TrimeshSceneSource adapts a trimesh.Scene so that scene
files loaded with trimesh can be batched directly.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np
import trimesh

from materials import DEFAULT_MATERIAL, Material
from mesh_data import SubMeshDescriptor
from transforms import as_matrix

logger = logging.getLogger(__name__)


@dataclass
class SourceMesh:
    """Host-side mesh data as authored: attributes, indices, sub-mesh ranges.

    Missing normals or uvs read as zeros. With no explicit sub_meshes the
    whole index buffer is a single sub-mesh.
    """
    name: str
    vertices: np.ndarray
    indices: np.ndarray
    normals: Optional[np.ndarray] = None
    uv: Optional[np.ndarray] = None
    sub_meshes: Optional[List[SubMeshDescriptor]] = None
    readable: bool = True

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=float).reshape(-1, 3)
        self.indices = np.asarray(self.indices, dtype=np.int64).reshape(-1)
        n = len(self.vertices)
        if self.normals is None:
            self.normals = np.zeros((n, 3))
        else:
            self.normals = np.asarray(self.normals, dtype=float).reshape(-1, 3)
        if self.uv is None:
            self.uv = np.zeros((n, 2))
        else:
            self.uv = np.asarray(self.uv, dtype=float).reshape(-1, 2)
        if self.sub_meshes is None:
            self.sub_meshes = [SubMeshDescriptor(0, len(self.indices))]

    @property
    def sub_mesh_count(self) -> int:
        return len(self.sub_meshes)

    def get_sub_mesh(self, index: int) -> SubMeshDescriptor:
        return self.sub_meshes[index]


@dataclass
class DrawCall:
    """One renderable: mesh placed by *transform*, sub-mesh i using materials[i]."""
    transform: np.ndarray
    mesh: Optional[SourceMesh]
    materials: Sequence[Material] = field(default_factory=list)

    def __post_init__(self):
        self.transform = as_matrix(self.transform)
        self.materials = list(self.materials)


class DrawCallSource(ABC):
    """Anything that can enumerate draw calls beneath some root object."""

    @abstractmethod
    def draw_calls(self) -> Iterable[DrawCall]:
        ...


def find_draw_calls(root: Union[DrawCallSource, Iterable[DrawCall]]) -> Iterator[DrawCall]:
    """Yield the usable draw calls of *root*.

    Draw calls without a mesh or with unreadable mesh data are logged and
    skipped; the rest are passed through unchanged.
    """
    calls = root.draw_calls() if isinstance(root, DrawCallSource) else root
    for call in calls:
        if call.mesh is None:
            logger.error("Draw call has no mesh")
            continue
        problem = _unreadable_reason(call.mesh)
        if problem is not None:
            logger.error("Could not read geometry data from mesh '%s': %s",
                         call.mesh.name, problem)
            continue
        yield call


def _unreadable_reason(mesh: SourceMesh) -> Optional[str]:
    if not mesh.readable:
        return "data is not accessible"
    n = len(mesh.vertices)
    if len(mesh.normals) != n or len(mesh.uv) != n:
        return (f"{n} vertices but {len(mesh.normals)} normals "
                f"and {len(mesh.uv)} uvs")
    if len(mesh.indices) and (mesh.indices.min() < 0 or mesh.indices.max() >= n):
        return f"indices reference vertices outside 0..{n - 1}"
    for descriptor in mesh.sub_meshes:
        if descriptor.index_start < 0 or descriptor.index_stop > len(mesh.indices):
            return (f"sub-mesh range {descriptor.index_start}+{descriptor.index_count} "
                    f"exceeds {len(mesh.indices)} indices")
    return None


class TrimeshSceneSource(DrawCallSource):
    """Draw calls for every triangle geometry node of a trimesh.Scene.

    Each distinct trimesh material object maps to one Material handle, so
    geometries sharing a material object share a sub-mesh when batched.
    Geometries without a material use DEFAULT_MATERIAL.
    """

    def __init__(self, scene: Union[trimesh.Scene, trimesh.Trimesh]):
        if isinstance(scene, trimesh.Trimesh):
            scene = trimesh.Scene(scene)
        self.scene = scene
        self._materials: Dict[int, Material] = {}
        self._meshes: Dict[str, SourceMesh] = {}

    def draw_calls(self) -> Iterator[DrawCall]:
        for node in self.scene.graph.nodes_geometry:
            transform, geometry_name = self.scene.graph[node]
            geometry = self.scene.geometry.get(geometry_name)
            if not isinstance(geometry, trimesh.Trimesh):
                logger.debug("Skipping non-triangle geometry '%s' at node '%s'",
                             geometry_name, node)
                continue
            yield DrawCall(
                transform=np.asarray(transform, dtype=float),
                mesh=self._source_mesh(geometry_name, geometry),
                materials=[self._material_for(geometry)],
            )

    def _source_mesh(self, name: str, geometry: trimesh.Trimesh) -> SourceMesh:
        cached = self._meshes.get(name)
        if cached is not None:
            return cached

        uv = None
        visual = geometry.visual
        if isinstance(visual, trimesh.visual.TextureVisuals) and visual.uv is not None:
            if len(visual.uv) == len(geometry.vertices):
                uv = np.asarray(visual.uv, dtype=float)
            else:
                logger.warning("Mesh '%s' has %d uvs for %d vertices; ignoring uvs",
                               name, len(visual.uv), len(geometry.vertices))

        mesh = SourceMesh(
            name=name,
            vertices=np.asarray(geometry.vertices, dtype=float),
            indices=np.asarray(geometry.faces, dtype=np.int64).reshape(-1),
            normals=np.asarray(geometry.vertex_normals, dtype=float),
            uv=uv,
        )
        self._meshes[name] = mesh
        return mesh

    def _material_for(self, geometry: trimesh.Trimesh) -> Material:
        source = getattr(geometry.visual, "material", None)
        if source is None:
            return DEFAULT_MATERIAL
        handle = self._materials.get(id(source))
        if handle is None:
            name = getattr(source, "name", None) or f"material_{len(self._materials)}"
            handle = Material(name=name, source=source)
            self._materials[id(source)] = handle
        return handle
