"""Infinite plane primitive.

A plane is given by a point on it and a unit normal. Rays hit it where
``dot(point - origin, normal) / dot(direction, normal)`` is a valid ray
parameter; rays (almost) parallel to the plane never hit, even when they lie
inside it.

Texture coordinates are the hit point's offset from the plane's point,
projected on the ``u`` and ``v`` axes of the orthonormal basis built around
the normal, so they are unbounded.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.ray import Ray3F
    >>> from geokernel.geometry.plane import Plane3F
    >>> plane = Plane3F(point=(0, 0, 0), normal=(0, 1, 0))
    >>> plane.intersection_t(Ray3F(origin=(0, 5, 0), direction=(0, -1, 0)))
    5.0
"""

import math
from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.precision import F32, F64, Precision, as_direction, as_vector
from geokernel.geometry.bounds import BoundingBox3, bounding_box_type
from geokernel.geometry.shape import Shape3, ShapeBuffers, ShapeKind


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the plane intersection routines."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Hit3 = device.Hit3
    epsilon = device.epsilon
    ray_at = device.ray_at
    onb_from_w = device.onb_from_w
    hit_in_range = device.hit_in_range

    @ti.func
    def plane_hit(point: vec3, normal: vec3, ray: Ray3) -> real:
        """Ray parameter of the hit with a plane, or inf."""
        t = ti.cast(tm.inf, real)
        denominator = tm.dot(ray.direction, normal)
        if ti.abs(denominator) >= epsilon:
            candidate = tm.dot(point - ray.origin, normal) / denominator
            if hit_in_range(candidate, ray):
                t = candidate
        return t

    @ti.func
    def plane_surface(point: vec3, normal: vec3, ray: Ray3, t: real) -> Hit3:
        """Surface information at a plane hit found by :func:`plane_hit`."""
        hit_point = ray_at(ray, t)
        basis = onb_from_w(normal)
        offset = hit_point - point
        return Hit3(
            t=t,
            point=hit_point,
            normal=normal,
            shading_normal=normal,
            uv=vec2(tm.dot(offset, basis.u), tm.dot(offset, basis.v)),
            barycentric=vec3(0.0, 0.0, 0.0),
            front_face=tm.dot(ray.direction, normal) < 0.0,
            primitive=-1,
            basis=basis,
        )

    device.plane_hit = plane_hit
    device.plane_surface = plane_surface


# =============================================================================
# Host Plane
# =============================================================================


@dataclass(frozen=True, eq=False)
class Plane3(Shape3):
    """An infinite plane.

    Attributes:
        point: A point on the plane.
        normal: The unit normal (normalized at construction).

    Raises:
        ValueError: If the point is not finite or the normal is zero-length.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind] = ShapeKind.PLANE

    point: npt.NDArray[np.floating]
    normal: npt.NDArray[np.floating]

    def __post_init__(self):
        object.__setattr__(self, "point", as_vector(self.point, self.precision, "point"))
        object.__setattr__(self, "normal", as_direction(self.normal, self.precision, "normal"))

    @classmethod
    def from_points(cls, a: npt.ArrayLike, b: npt.ArrayLike, c: npt.ArrayLike) -> "Plane3":
        """The plane through three points, with normal ``(b - a) x (c - a)``.

        Raises:
            ValueError: If the points are collinear.
        """
        a = as_vector(a, F64, "a")
        b = as_vector(b, F64, "b")
        c = as_vector(c, F64, "c")
        normal = np.cross(b - a, c - a)
        if np.linalg.norm(normal) == 0.0:
            raise ValueError(f"points {a}, {b} and {c} are collinear")
        return cls(point=a, normal=normal)

    def compute_bounding_volume(self) -> BoundingBox3:
        """Infinite box, finite only along an axis the normal is aligned with."""
        minimum = np.full(3, -np.inf)
        maximum = np.full(3, np.inf)
        for axis in range(3):
            others = [k for k in range(3) if k != axis]
            if (self.normal[others] == 0.0).all():
                minimum[axis] = maximum[axis] = self.point[axis]
        return bounding_box_type(self.precision)(minimum=minimum, maximum=maximum)

    def surface_area(self) -> float:
        return math.inf

    def _pack(self) -> ShapeBuffers:
        return ShapeBuffers.create(self, first=self.point, second=self.normal)


class Plane3F(Plane3):
    """Single-precision plane."""

    precision = F32


class Plane3D(Plane3):
    """Double-precision plane."""

    precision = F64
