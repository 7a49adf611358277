"""
Immutable vertex value type used as a deduplication key.

A Vertex bundles position, normal and texture coordinate as plain float
tuples so it can be hashed and compared structurally. Interpolation between
vertices is linear for position and texture coordinate and spherical for
the normal.
"""
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]

# Below this angle slerp degenerates to lerp.
_SLERP_MIN_ANGLE = 1e-6


def _vec3(values: Sequence[float]) -> Vec3:
    return (float(values[0]), float(values[1]), float(values[2]))


def _vec2(values: Sequence[float]) -> Vec2:
    return (float(values[0]), float(values[1]))


@dataclass(frozen=True)
class Vertex:
    """A mesh vertex. Equal iff position, normal and tex_coord are equal."""
    position: Vec3
    normal: Vec3 = (0.0, 0.0, 0.0)
    tex_coord: Vec2 = (0.0, 0.0)

    def __post_init__(self):
        object.__setattr__(self, "position", _vec3(self.position))
        object.__setattr__(self, "normal", _vec3(self.normal))
        object.__setattr__(self, "tex_coord", _vec2(self.tex_coord))

    @property
    def position_array(self) -> np.ndarray:
        return np.array(self.position, dtype=float)

    @property
    def normal_array(self) -> np.ndarray:
        return np.array(self.normal, dtype=float)

    @property
    def tex_coord_array(self) -> np.ndarray:
        return np.array(self.tex_coord, dtype=float)

    @staticmethod
    def lerp(start: "Vertex", end: "Vertex", t: float) -> "Vertex":
        """Interpolate between two vertices at parameter *t* in [0, 1]."""
        t = float(np.clip(t, 0.0, 1.0))
        p0, p1 = start.position_array, end.position_array
        uv0, uv1 = start.tex_coord_array, end.tex_coord_array
        return Vertex(
            p0 + (p1 - p0) * t,
            slerp_vectors(start.normal_array, end.normal_array, t),
            uv0 + (uv1 - uv0) * t,
        )


def slerp_vectors(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Spherically interpolate two 3D vectors.

    The direction is rotated along the great arc from *a* to *b* while the
    length is interpolated linearly. Zero-length inputs fall back to a plain
    linear interpolation.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    len_a = float(np.linalg.norm(a))
    len_b = float(np.linalg.norm(b))
    if len_a == 0.0 or len_b == 0.0:
        return a + (b - a) * t

    dir_a = a / len_a
    dir_b = b / len_b
    length = len_a + (len_b - len_a) * t
    cos_theta = float(np.clip(np.dot(dir_a, dir_b), -1.0, 1.0))
    theta = float(np.arccos(cos_theta))

    if theta < _SLERP_MIN_ANGLE:
        direction = dir_a + (dir_b - dir_a) * t
        return direction / np.linalg.norm(direction) * length

    if np.pi - theta < _SLERP_MIN_ANGLE:
        # Opposite directions: rotate about any axis perpendicular to a.
        axis = np.cross(dir_a, [1.0, 0.0, 0.0])
        if np.linalg.norm(axis) < 1e-6:
            axis = np.cross(dir_a, [0.0, 1.0, 0.0])
        axis /= np.linalg.norm(axis)
        angle = np.pi * t
        direction = dir_a * np.cos(angle) + np.cross(axis, dir_a) * np.sin(angle)
        return direction * length

    sin_theta = np.sin(theta)
    w_a = np.sin((1.0 - t) * theta) / sin_theta
    w_b = np.sin(t * theta) / sin_theta
    return (dir_a * w_a + dir_b * w_b) * length
