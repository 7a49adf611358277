"""
4x4 affine transform helpers.

Transforms are plain (4, 4) numpy arrays in the column-vector convention
used by trimesh.transformations. Positions are transformed as points
(translation applied), normals as directions (upper 3x3 only), and texture
coordinates as 2D points lifted to (u, v, 0).
"""
from typing import Optional, Sequence

import numpy as np
import trimesh


def as_matrix(matrix: Optional[Sequence]) -> np.ndarray:
    """Validate *matrix* as a 4x4 float array; None means identity."""
    if matrix is None:
        return np.eye(4)
    m = np.asarray(matrix, dtype=float)
    if m.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 transform, got shape {m.shape}")
    return m


def transform_points(points, matrix) -> np.ndarray:
    """Apply *matrix* to (N, 3) points, including translation."""
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(points) == 0:
        return points
    return trimesh.transformations.transform_points(points, as_matrix(matrix))


def transform_directions(vectors, matrix) -> np.ndarray:
    """Apply the linear part of *matrix* to (N, 3) vectors. Not renormalized."""
    vectors = np.asarray(vectors, dtype=float).reshape(-1, 3)
    if len(vectors) == 0:
        return vectors
    return trimesh.transformations.transform_points(
        vectors, as_matrix(matrix), translate=False)


def transform_tex_coords(uvs, matrix) -> np.ndarray:
    """Apply *matrix* to (N, 2) texture coordinates treated as points."""
    uvs = np.asarray(uvs, dtype=float).reshape(-1, 2)
    if len(uvs) == 0:
        return uvs
    lifted = np.column_stack([uvs, np.zeros(len(uvs))])
    return transform_points(lifted, matrix)[:, :2]


def quaternion_matrix(quaternion) -> np.ndarray:
    """Rotation matrix for a quaternion given as (w, x, y, z)."""
    q = np.asarray(quaternion, dtype=float).reshape(-1)
    if q.shape != (4,):
        raise ValueError(f"Quaternion must have 4 components, got {q.shape}")
    return trimesh.transformations.quaternion_matrix(q)


def trs_matrix(translation=(0.0, 0.0, 0.0), quaternion=(1.0, 0.0, 0.0, 0.0),
               scale=(1.0, 1.0, 1.0)) -> np.ndarray:
    """Translate * rotate * scale, the usual local-to-world composition."""
    scale_m = np.diag([float(scale[0]), float(scale[1]), float(scale[2]), 1.0])
    return (trimesh.transformations.translation_matrix(translation)
            @ quaternion_matrix(quaternion)
            @ scale_m)
