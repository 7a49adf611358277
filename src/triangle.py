"""Immutable triangle of three vertices."""
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from vertex import Vertex


@dataclass(frozen=True)
class Triangle:
    """Three vertices in winding order."""
    v0: Vertex
    v1: Vertex
    v2: Vertex

    @property
    def normal(self) -> np.ndarray:
        """Face normal from the vertex positions, not the vertex normals.

        Not normalized: its length is twice the triangle area.
        """
        p0 = self.v0.position_array
        return np.cross(self.v1.position_array - p0, self.v2.position_array - p0)

    @property
    def area(self) -> float:
        return 0.5 * float(np.linalg.norm(self.normal))

    @property
    def vertices(self) -> Tuple[Vertex, Vertex, Vertex]:
        return (self.v0, self.v1, self.v2)

    def ensure_winding_order_matches(self, normal) -> "Triangle":
        """Return a copy with reversed winding if this faces away from *normal*."""
        if float(np.dot(self.normal, np.asarray(normal, dtype=float))) >= 0.0:
            return self
        return Triangle(self.v0, self.v2, self.v1)
