"""Axis-aligned rectangular cuboid primitive.

A cuboid is the solid box between two corners. Rays are clipped against it
with the slab method; the hit is the entry face when that is a valid hit and
the exit face otherwise (a ray starting inside the box).

Faces are numbered ``2 * axis + side``, where side 0 is the face at the
minimum coordinate (normal ``-axis``) and side 1 the face at the maximum
(normal ``+axis``). Texture coordinates are the hit point's position inside
the face, normalized to ``[0, 1]`` along the two axes following the face
axis cyclically.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.ray import Ray3F
    >>> from geokernel.geometry.cuboid import RectangularCuboid3F
    >>> box = RectangularCuboid3F(a=(-1, -1, -1), b=(1, 1, 1))
    >>> box.intersection(Ray3F(origin=(5, 0, 0), direction=(-1, 0, 0))).normal
    array([1., 0., 0.], dtype=float32)
"""

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.precision import F32, F64, Precision, as_vector
from geokernel.geometry.bounds import BoundingBox3, bounding_box_type
from geokernel.geometry.shape import Shape3, ShapeBuffers, ShapeKind


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register cuboid intersection and face sampling routines."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Hit3 = device.Hit3
    Sample3 = device.Sample3
    ray_at = device.ray_at
    onb_from_w = device.onb_from_w
    hit_in_range = device.hit_in_range
    slab_interval = device.slab_interval

    @ti.func
    def component(vector: vec3, axis: ti.i32) -> real:
        value = vector.x
        if axis == 1:
            value = vector.y
        elif axis == 2:
            value = vector.z
        return value

    @ti.func
    def face_normal(face: ti.i32) -> vec3:
        axis = face // 2
        sign = ti.select(face % 2 == 1, 1.0, -1.0)
        normal = vec3(0.0, 0.0, 0.0)
        for k in ti.static(range(3)):
            if axis == k:
                normal[k] = sign
        return normal

    @ti.func
    def cuboid_hit(minimum: vec3, maximum: vec3, ray: Ray3):
        """Slab test returning the entry face hit, else the exit face hit.

        Returns:
            Tuple of (t, face); t is inf and face -1 on a miss.
        """
        t_near, t_far, near_axis, far_axis = slab_interval(minimum, maximum, ray.origin, ray.direction)
        t = ti.cast(tm.inf, real)
        face = -1
        if t_near <= t_far:
            if near_axis >= 0 and hit_in_range(t_near, ray):
                t = t_near
                # Moving towards +axis enters through the minimum face.
                face = 2 * near_axis + ti.select(component(ray.direction, near_axis) > 0.0, 0, 1)
            elif far_axis >= 0 and hit_in_range(t_far, ray):
                t = t_far
                face = 2 * far_axis + ti.select(component(ray.direction, far_axis) > 0.0, 1, 0)
        return t, face

    @ti.func
    def cuboid_surface(minimum: vec3, maximum: vec3, ray: Ray3, t: real, face: ti.i32) -> Hit3:
        """Surface information at a cuboid hit found by :func:`cuboid_hit`."""
        hit_point = ray_at(ray, t)
        normal = face_normal(face)
        axis = face // 2
        extent = maximum - minimum
        uv = vec2(0.0, 0.0)
        for j in ti.static(range(2)):
            k = (axis + 1 + j) % 3
            size = component(extent, k)
            if size > 0.0:
                uv[j] = tm.clamp((component(hit_point, k) - component(minimum, k)) / size, 0.0, 1.0)
        return Hit3(
            t=t,
            point=hit_point,
            normal=normal,
            shading_normal=normal,
            uv=uv,
            barycentric=vec3(0.0, 0.0, 0.0),
            front_face=tm.dot(ray.direction, normal) < 0.0,
            primitive=-1,
            basis=onb_from_w(normal),
        )

    @ti.func
    def cuboid_sample(minimum: vec3, maximum: vec3, area: real, u1: real, u2: real) -> Sample3:
        """Pick a face by area, then sample it uniformly."""
        extent = maximum - minimum
        face_areas = vec3(extent.y * extent.z, extent.z * extent.x, extent.x * extent.y)
        target = u1 * area
        face = -1
        last_face = 0
        lower = ti.cast(0.0, real)
        upper = ti.cast(0.0, real)
        accumulated = ti.cast(0.0, real)
        for f in ti.static(range(6)):
            face_area = face_areas[f // 2]
            if face_area > 0.0:
                last_face = f
                if face == -1 and target < accumulated + face_area:
                    face = f
                    lower = accumulated
                    upper = accumulated + face_area
            accumulated += face_area
        if face == -1:
            # u1 rounded up to the full area.
            face = last_face
            lower = accumulated - component(face_areas, face // 2)
            upper = accumulated
        remapped = ti.cast(0.0, real)
        if upper > lower:
            remapped = tm.clamp((target - lower) / (upper - lower), 0.0, 1.0)

        axis = face // 2
        point = vec3(0.0, 0.0, 0.0)
        for k in ti.static(range(3)):
            if k == axis:
                point[k] = ti.select(face % 2 == 1, maximum[k], minimum[k])
            elif k == (axis + 1) % 3:
                point[k] = minimum[k] + remapped * extent[k]
            else:
                point[k] = minimum[k] + u2 * extent[k]
        return Sample3(valid=1, point=point, normal=face_normal(face), pdf=1.0 / area)

    device.cuboid_hit = cuboid_hit
    device.cuboid_surface = cuboid_surface
    device.cuboid_sample = cuboid_sample


# =============================================================================
# Host Rectangular Cuboid
# =============================================================================


@dataclass(frozen=True, eq=False)
class RectangularCuboid3(Shape3):
    """A solid axis-aligned box between two corners.

    The corners may be given in any order; they are reordered into
    ``minimum`` and ``maximum``.

    Attributes:
        a: First corner as given.
        b: Opposite corner as given.
        minimum: Component-wise minimum of the corners.
        maximum: Component-wise maximum of the corners.

    Raises:
        ValueError: If a corner is not finite or the box has no surface
            area.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind] = ShapeKind.RECTANGULAR_CUBOID

    a: npt.NDArray[np.floating]
    b: npt.NDArray[np.floating]
    minimum: npt.NDArray[np.floating] = field(init=False)
    maximum: npt.NDArray[np.floating] = field(init=False)

    def __post_init__(self):
        a = as_vector(self.a, self.precision, "a")
        b = as_vector(self.b, self.precision, "b")
        object.__setattr__(self, "a", a)
        object.__setattr__(self, "b", b)
        object.__setattr__(self, "minimum", as_vector(np.minimum(a, b), self.precision, "minimum"))
        object.__setattr__(self, "maximum", as_vector(np.maximum(a, b), self.precision, "maximum"))
        if self.surface_area() == 0.0:
            raise ValueError(f"cuboid between {a} and {b} has no surface area")

    @property
    def midpoint(self) -> npt.NDArray[np.floating]:
        return (self.minimum + self.maximum) * self.precision.dtype(0.5)

    def compute_bounding_volume(self) -> BoundingBox3:
        return bounding_box_type(self.precision)(minimum=self.minimum, maximum=self.maximum)

    def surface_area(self) -> float:
        dx, dy, dz = (self.maximum - self.minimum).astype(np.float64)
        return float(2.0 * (dx * dy + dy * dz + dz * dx))

    def contains(self, point: npt.ArrayLike) -> bool:
        """Whether a point lies in the solid box, faces included."""
        point = as_vector(point, self.precision, "point")
        return bool(((point >= self.minimum) & (point <= self.maximum)).all())

    def transform(self, matrix: npt.ArrayLike) -> "RectangularCuboid3":
        """The axis-aligned cuboid enclosing the transformed corners.

        Raises:
            ValueError: If the matrix maps a corner to infinity or flattens
                the cuboid.
        """
        box = self.compute_bounding_volume().transform(matrix)
        return type(self)(a=box.minimum, b=box.maximum)

    def _pack(self) -> ShapeBuffers:
        return ShapeBuffers.create(self, first=self.minimum, second=self.maximum)


class RectangularCuboid3F(RectangularCuboid3):
    """Single-precision rectangular cuboid."""

    precision = F32


class RectangularCuboid3D(RectangularCuboid3):
    """Double-precision rectangular cuboid."""

    precision = F64
