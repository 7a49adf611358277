"""
Shared test fixtures for the batching and clipping tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from draw_calls import DrawCall, SourceMesh
from materials import Material
from mesh_data import SubMeshDescriptor


@pytest.fixture
def red():
    return Material(name="red", properties={"albedo": (1.0, 0.0, 0.0)})


@pytest.fixture
def blue():
    return Material(name="blue", properties={"albedo": (0.0, 0.0, 1.0)})


@pytest.fixture
def quad_mesh():
    """Unit quad in the XY plane, facing +Z, uv == xy. Two triangles, one sub-mesh."""
    return SourceMesh(
        name="quad",
        vertices=np.array([
            [0.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [1.0, 1.0, 0.0],
            [1.0, 0.0, 0.0],
        ]),
        normals=np.tile([0.0, 0.0, 1.0], (4, 1)),
        uv=np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 1.0], [1.0, 0.0]]),
        indices=np.array([0, 1, 2, 0, 2, 3]),
    )


@pytest.fixture
def split_quad_mesh():
    """The unit quad with each triangle in its own sub-mesh."""
    return SourceMesh(
        name="split_quad",
        vertices=np.array([
            [0.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [1.0, 1.0, 0.0],
            [1.0, 0.0, 0.0],
        ]),
        normals=np.tile([0.0, 0.0, 1.0], (4, 1)),
        uv=np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 1.0], [1.0, 0.0]]),
        indices=np.array([0, 1, 2, 0, 2, 3]),
        sub_meshes=[SubMeshDescriptor(0, 3), SubMeshDescriptor(3, 3)],
    )


@pytest.fixture
def quad_draw_call(quad_mesh, red):
    return DrawCall(transform=np.eye(4), mesh=quad_mesh, materials=[red])
