"""
Half-space test and triangle clipping against an infinite plane.

A plane keeps the side its normal points to ("ahead"). Clipping a triangle
classifies its vertices by signed distance and returns the fragment(s) that
lie ahead of the plane, with positions and texture coordinates interpolated
linearly and normals spherically along the cut edges.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from triangle import Triangle
from vertex import Vec3, Vertex

logger = logging.getLogger(__name__)

DEFAULT_CLIP_EPSILON = float(np.finfo(np.float32).eps)


class ClipClassificationError(RuntimeError):
    """Raised when a clip result has no handler. Always a logic error."""
    pass


class TriangleIntersection(Enum):
    """How a triangle relates to a plane."""
    ALL_AHEAD = "all_ahead"
    TWO_AHEAD = "two_ahead"
    ONE_AHEAD = "one_ahead"
    NONE_AHEAD = "none_ahead"


ClipResult = Tuple[TriangleIntersection, Optional[Triangle], Optional[Triangle]]


@dataclass(frozen=True)
class Plane:
    """Plane ``dot(normal, p) == distance``; the kept side is along ``normal``."""
    normal: Vec3
    distance: float
    epsilon: float = field(default=DEFAULT_CLIP_EPSILON, compare=False)

    def __post_init__(self):
        n = np.asarray(self.normal, dtype=float).reshape(-1)
        if n.shape != (3,):
            raise ValueError(f"Plane normal must have 3 components, got {n.shape}")
        object.__setattr__(self, "normal", (float(n[0]), float(n[1]), float(n[2])))
        object.__setattr__(self, "distance", float(self.distance))

    @classmethod
    def from_point_normal(cls, point, normal, epsilon: float = DEFAULT_CLIP_EPSILON) -> "Plane":
        """Plane through *point* keeping the side *normal* points to."""
        n = np.asarray(normal, dtype=float)
        return cls(tuple(n), float(np.dot(n, np.asarray(point, dtype=float))), epsilon)

    def flipped(self) -> "Plane":
        """The same plane keeping the opposite half-space."""
        n = np.asarray(self.normal, dtype=float)
        return Plane(tuple(-n), -self.distance, self.epsilon)

    def signed_distance(self, point: Union[Vertex, Sequence[float]]) -> float:
        """Positive ahead of the plane, negative behind it."""
        if isinstance(point, Vertex):
            point = point.position
        return float(np.dot(self.normal, np.asarray(point, dtype=float))) - self.distance

    def is_ahead(self, point: Union[Vertex, Sequence[float]]) -> bool:
        return self.signed_distance(point) >= -self.epsilon

    def intersects(self, tri: Triangle) -> ClipResult:
        """Classify *tri* against this plane and compute the kept fragments.

        Returns (classification, first, second). ALL_AHEAD and NONE_AHEAD
        return no fragments (keep or drop the input as is). TWO_AHEAD returns
        two triangles covering the kept quad, ONE_AHEAD a single triangle with
        ``second`` set to None. Fragments keep the winding of *tri*.
        """
        v0, v1, v2 = tri.v0, tri.v1, tri.v2
        d0 = self.signed_distance(v0)
        d1 = self.signed_distance(v1)
        d2 = self.signed_distance(v2)

        # Sort so that d0 <= d1 <= d2. May flip the winding; fixed below.
        if d0 > d1:
            d0, d1, v0, v1 = d1, d0, v1, v0
        if d1 > d2:
            d1, d2, v1, v2 = d2, d1, v2, v1
            if d0 > d1:
                d0, d1, v0, v1 = d1, d0, v1, v0

        if d0 >= -self.epsilon:
            return TriangleIntersection.ALL_AHEAD, None, None

        if d2 <= self.epsilon:
            return TriangleIntersection.NONE_AHEAD, None, None

        n = tri.normal

        # v0 is behind and v2 is ahead. A middle vertex within epsilon of the
        # plane counts as on it and takes the single-triangle branch.
        if d1 > self.epsilon:
            l0 = Vertex.lerp(v0, v1, -d0 / (d1 - d0))
            l1 = Vertex.lerp(v0, v2, -d0 / (d2 - d0))
            first = Triangle(l0, v1, v2).ensure_winding_order_matches(n)
            second = Triangle(l0, v2, l1).ensure_winding_order_matches(n)
            return TriangleIntersection.TWO_AHEAD, first, second

        l0 = Vertex.lerp(v2, v0, d2 / (d2 - d0))
        l1 = Vertex.lerp(v2, v1, d2 / (d2 - d1))
        first = Triangle(l0, l1, v2).ensure_winding_order_matches(n)
        return TriangleIntersection.ONE_AHEAD, first, None

    def cut_triangles(self, tris: List[Triangle]) -> None:
        """Clip every triangle in *tris* in place, keeping what is ahead.

        Fragments inserted during the pass are not visited again.
        """
        k = 0
        while k < len(tris):
            kind, first, second = self.intersects(tris[k])
            if kind is TriangleIntersection.ALL_AHEAD:
                k += 1
            elif kind is TriangleIntersection.TWO_AHEAD:
                tris[k] = first
                tris.insert(k + 1, second)
                k += 2
            elif kind is TriangleIntersection.ONE_AHEAD:
                tris[k] = first
                k += 1
            elif kind is TriangleIntersection.NONE_AHEAD:
                del tris[k]
            else:
                raise ClipClassificationError(f"Unhandled triangle intersection: {kind!r}")


def cut_by_planes(tris: List[Triangle], planes: Sequence[Plane]) -> List[Triangle]:
    """Clip *tris* in place against each plane in turn and return the list."""
    before = len(tris)
    for plane in planes:
        if not tris:
            break
        plane.cut_triangles(tris)
    logger.debug("Clipped %d triangles against %d planes into %d", before, len(planes), len(tris))
    return tris
