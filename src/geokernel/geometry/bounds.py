"""Bounding volumes: axis-aligned boxes and spheres.

Bounding volumes are conservative containers used to cull ray queries and to
summarize the extent of shapes. Two variants exist:

- :class:`BoundingBox3` is an axis-aligned box given by its minimum and
  maximum corners. Infinite extents are allowed (the bounds of a plane).
- :class:`BoundingSphere3` is a sphere given by its center and radius.

Ray tests run on the device: the slab method for boxes and the quadratic for
spheres. ``intersection_t`` returns the first ray parameter inside
``[t_min, t_max]`` at which the ray is inside the volume, which is ``t_min``
itself when the ray starts inside.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.ray import Ray3F
    >>> from geokernel.geometry.bounds import BoundingBox3F
    >>> box = BoundingBox3F(minimum=(-1, -1, -1), maximum=(1, 1, 1))
    >>> box.intersection_t(Ray3F(origin=(0, 0, 5), direction=(0, 0, -1)))
    4.0
"""

import math
from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar, Optional

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.device import get_device
from geokernel.core.precision import F32, F64, Precision, as_array, as_batch, as_scalar, as_vector
from geokernel.core.ray import RAY_COLUMNS, Ray3, pack_rays

# Packed layout of a bounding volume: kind, then box min/max or sphere
# center/radius.
BOX_KIND = 0
SPHERE_KIND = 1


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the slab test, the sphere interval and the volume kernels."""
    real = device.real
    vec3 = device.vec3
    Ray3 = device.Ray3
    load_ray = device.load_ray
    epsilon = device.epsilon

    @ti.func
    def slab_interval(minimum: vec3, maximum: vec3, origin: vec3, direction: vec3):
        """Clip a line against an axis-aligned box with the slab method.

        Axes the direction is parallel to do not clip the line; instead the
        origin must lie inside that slab or the interval is empty.

        Returns:
            Tuple of (t_near, t_far, near_axis, far_axis). The interval is
            empty when t_near > t_far. An axis is -1 when no slab clipped
            that end of the interval.
        """
        t_near = ti.cast(-tm.inf, real)
        t_far = ti.cast(tm.inf, real)
        near_axis = -1
        far_axis = -1
        for k in ti.static(range(3)):
            if direction[k] == 0.0:
                if origin[k] < minimum[k] or origin[k] > maximum[k]:
                    t_near = ti.cast(tm.inf, real)
                    t_far = ti.cast(-tm.inf, real)
            else:
                t_min_face = (minimum[k] - origin[k]) / direction[k]
                t_max_face = (maximum[k] - origin[k]) / direction[k]
                t0 = ti.min(t_min_face, t_max_face)
                t1 = ti.max(t_min_face, t_max_face)
                if t0 > t_near:
                    t_near = t0
                    near_axis = k
                if t1 < t_far:
                    t_far = t1
                    far_axis = k
        return t_near, t_far, near_axis, far_axis

    @ti.func
    def sphere_interval(center: vec3, radius: real, origin: vec3, direction: vec3):
        """Parameters where a line enters and leaves a sphere.

        Returns:
            Tuple of (t0, t1) with t0 <= t1, or (inf, -inf) on a miss.
        """
        oc = origin - center
        a = tm.dot(direction, direction)
        h = tm.dot(direction, oc)
        c = tm.dot(oc, oc) - radius * radius
        discriminant = h * h - a * c
        t0 = ti.cast(tm.inf, real)
        t1 = ti.cast(-tm.inf, real)
        if a > 0.0 and discriminant >= 0.0:
            sqrt_d = ti.sqrt(discriminant)
            # q has the sign of -h, so q / a and c / q never cancel.
            q = -(h + ti.select(h < 0.0, -sqrt_d, sqrt_d))
            if q == 0.0:
                t0 = 0.0
                t1 = 0.0
            else:
                root_a = q / a
                root_b = c / q
                t0 = ti.min(root_a, root_b)
                t1 = ti.max(root_a, root_b)
        return t0, t1

    @ti.func
    def volume_hit(volume: ti.template(), ray: Ray3) -> real:
        """First parameter in the ray's range inside the volume, or inf."""
        t_enter = ti.cast(tm.inf, real)
        t_leave = ti.cast(-tm.inf, real)
        first = vec3(volume[1], volume[2], volume[3])
        second = vec3(volume[4], volume[5], volume[6])
        if ti.cast(volume[0], ti.i32) == 0:
            box_near, box_far, _, _ = slab_interval(first, second, ray.origin, ray.direction)
            t_enter = box_near
            t_leave = box_far
        else:
            sphere_near, sphere_far = sphere_interval(first, second.x, ray.origin, ray.direction)
            t_enter = sphere_near
            t_leave = sphere_far
        t_enter = ti.max(t_enter, ray.t_min)
        t_leave = ti.min(t_leave, ray.t_max)
        result = ti.cast(tm.inf, real)
        if t_enter <= t_leave:
            result = t_enter
        return result

    @ti.func
    def volume_contains(volume: ti.template(), point: vec3) -> ti.i32:
        """Inclusive containment test with a relative epsilon slack."""
        inside = 1
        first = vec3(volume[1], volume[2], volume[3])
        second = vec3(volume[4], volume[5], volume[6])
        if ti.cast(volume[0], ti.i32) == 0:
            for k in ti.static(range(3)):
                low = first[k] - epsilon * ti.max(1.0, ti.abs(first[k]))
                high = second[k] + epsilon * ti.max(1.0, ti.abs(second[k]))
                if point[k] < low or point[k] > high:
                    inside = 0
        else:
            radius = second.x + epsilon * ti.max(1.0, second.x)
            offset = point - first
            if tm.dot(offset, offset) > radius * radius:
                inside = 0
        return inside

    @ti.kernel
    def volume_intersection_kernel(volume: ti.types.ndarray(), rays: ti.types.ndarray(), out: ti.types.ndarray()):
        for i in range(rays.shape[0]):
            out[i] = volume_hit(volume, load_ray(rays, i))

    @ti.kernel
    def volume_contains_kernel(volume: ti.types.ndarray(), points: ti.types.ndarray(), out: ti.types.ndarray()):
        for i in range(points.shape[0]):
            out[i] = volume_contains(volume, vec3(points[i, 0], points[i, 1], points[i, 2]))

    device.slab_interval = slab_interval
    device.sphere_interval = sphere_interval
    device.volume_intersection_kernel = volume_intersection_kernel
    device.volume_contains_kernel = volume_contains_kernel


# =============================================================================
# Host Bounding Volumes
# =============================================================================


class BoundingVolume3:
    """Shared behavior of bounding boxes and bounding spheres.

    Subclasses provide ``minimum`` and ``maximum`` corners, ``packed``,
    ``closest_point_to`` and the geometric measures.
    """

    precision: ClassVar[Precision] = F32

    @property
    def midpoint(self) -> npt.NDArray[np.floating]:
        """The point halfway between the minimum and maximum corners.

        Axes unbounded in both directions have their midpoint at zero.
        """
        with np.errstate(invalid="ignore"):
            midpoint = (self.minimum + self.maximum) * self.precision.dtype(0.5)
        return np.where(np.isnan(midpoint), self.precision.dtype(0.0), midpoint)

    def contains(self, point: npt.ArrayLike) -> bool:
        """Whether a point is inside the volume (boundary inclusive)."""
        return bool(self.contains_points(as_vector(point, self.precision, "point"))[0])

    def contains_points(self, points: npt.ArrayLike) -> npt.NDArray[np.bool_]:
        """Containment test for an ``(N, 3)`` array of points."""
        points = as_batch(points, self.precision, 3)
        out = np.zeros(points.shape[0], dtype=np.int32)
        get_device(self.precision).volume_contains_kernel(self.packed(), points, out)
        return out.astype(bool)

    def intersection_t(self, ray: Ray3) -> Optional[float]:
        """First ray parameter inside the volume, or ``None`` on a miss."""
        t = self._intersect(as_batch(ray.packed(), self.precision, RAY_COLUMNS))[0]
        return float(t) if math.isfinite(t) else None

    def intersects(self, ray: Ray3) -> bool:
        return self.intersection_t(ray) is not None

    def intersection_t_batch(
        self,
        origins: npt.ArrayLike,
        directions: npt.ArrayLike,
        t_min: npt.ArrayLike = 0.0,
        t_max: npt.ArrayLike = math.inf,
    ) -> npt.NDArray[np.floating]:
        """Ray test for a batch of rays; misses are reported as ``inf``."""
        return self._intersect(pack_rays(origins, directions, self.precision, t_min, t_max))

    def intersects_volume(self, other: "BoundingVolume3") -> bool:
        """Whether two volumes overlap.

        The other volume's point closest to this volume's midpoint is
        tested for containment.
        """
        return self.contains(other.closest_point_to(self.midpoint))

    def union(self, other: "BoundingVolume3") -> "BoundingVolume3":
        """The smallest box enclosing both volumes.

        :class:`BoundingSphere3` overrides this to return a sphere when both
        operands are spheres.
        """
        _check_same_precision(self, other)
        return bounding_box_type(self.precision)(
            minimum=np.minimum(self.minimum, other.minimum),
            maximum=np.maximum(self.maximum, other.maximum),
        )

    def _intersect(self, rays: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
        out = np.zeros(rays.shape[0], dtype=self.precision.dtype)
        get_device(self.precision).volume_intersection_kernel(self.packed(), rays, out)
        return out


@dataclass(frozen=True, eq=False)
class BoundingBox3(BoundingVolume3):
    """An axis-aligned bounding box.

    Attributes:
        minimum: The corner with the smallest coordinates.
        maximum: The corner with the largest coordinates.

    Raises:
        ValueError: If a coordinate is NaN or the minimum exceeds the
            maximum along an axis.
    """

    precision: ClassVar[Precision] = F32

    minimum: npt.NDArray[np.floating]
    maximum: npt.NDArray[np.floating]

    def __post_init__(self):
        minimum = as_array(self.minimum, self.precision, "minimum", shape=(3,), allow_infinite=True)
        maximum = as_array(self.maximum, self.precision, "maximum", shape=(3,), allow_infinite=True)
        if (minimum > maximum).any():
            raise ValueError(f"minimum {minimum} exceeds maximum {maximum}")
        object.__setattr__(self, "minimum", minimum)
        object.__setattr__(self, "maximum", maximum)

    @classmethod
    def from_points(cls, points: npt.ArrayLike) -> "BoundingBox3":
        """The tightest box around a non-empty ``(N, 3)`` set of points.

        Raises:
            ValueError: If no points are given.
        """
        points = as_array(points, cls.precision, "points", shape=(-1, 3), allow_infinite=True)
        if points.shape[0] == 0:
            raise ValueError("from_points requires at least one point")
        minimum = np.full(3, np.inf, dtype=cls.precision.dtype)
        maximum = np.full(3, -np.inf, dtype=cls.precision.dtype)
        for point in points:
            minimum = np.minimum(minimum, point)
            maximum = np.maximum(maximum, point)
        return cls(minimum=minimum, maximum=maximum)

    def corners(self) -> npt.NDArray[np.floating]:
        """The eight corners as an ``(8, 3)`` array."""
        lows_highs = np.stack([self.minimum, self.maximum])
        return np.array(
            [[lows_highs[(i >> k) & 1, k] for k in range(3)] for i in range(8)],
            dtype=self.precision.dtype,
        )

    def extent(self) -> npt.NDArray[np.floating]:
        return self.maximum - self.minimum

    def surface_area(self) -> float:
        """Surface area; infinite as soon as any extent is infinite."""
        dx, dy, dz = (float(e) for e in self.extent())
        if not all(math.isfinite(e) for e in (dx, dy, dz)):
            return math.inf
        return 2.0 * (dx * dy + dy * dz + dz * dx)

    def volume(self) -> float:
        """Volume; zero for a flat box even when another extent is infinite."""
        extent = [float(e) for e in self.extent()]
        if any(e == 0.0 for e in extent):
            return 0.0
        return math.prod(extent)

    def closest_point_to(self, point: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Clamp a point into the box."""
        return np.clip(as_vector(point, self.precision, "point"), self.minimum, self.maximum)

    def transform(self, matrix: npt.ArrayLike) -> "BoundingBox3":
        """The box around the eight transformed corners.

        Boxes with infinite extents transform to the fully infinite box.
        """
        m = as_array(matrix, F64, "matrix", shape=(4, 4))
        if not np.isfinite(self.extent()).all():
            return type(self)(minimum=np.full(3, -np.inf), maximum=np.full(3, np.inf))
        corners = np.hstack([self.corners().astype(np.float64), np.ones((8, 1))]) @ m.T
        if (corners[:, 3] == 0.0).any():
            raise ValueError("matrix maps a box corner to infinity")
        return type(self).from_points(corners[:, :3] / corners[:, 3:4])

    def packed(self) -> npt.NDArray[np.floating]:
        return np.concatenate([[BOX_KIND], self.minimum, self.maximum]).astype(self.precision.dtype)


@dataclass(frozen=True, eq=False)
class BoundingSphere3(BoundingVolume3):
    """A bounding sphere.

    Attributes:
        center: The center of the sphere.
        radius: The radius of the sphere (non-negative).

    Raises:
        ValueError: If the center is not finite or the radius is negative,
            NaN or infinite.
    """

    precision: ClassVar[Precision] = F32

    center: npt.NDArray[np.floating]
    radius: float

    def __post_init__(self):
        object.__setattr__(self, "center", as_vector(self.center, self.precision, "center"))
        radius = as_scalar(self.radius, self.precision, "radius")
        if radius < 0.0:
            raise ValueError(f"radius = {radius} is negative")
        object.__setattr__(self, "radius", radius)

    @property
    def minimum(self) -> npt.NDArray[np.floating]:
        return self.center - self.precision.dtype(self.radius)

    @property
    def maximum(self) -> npt.NDArray[np.floating]:
        return self.center + self.precision.dtype(self.radius)

    @property
    def midpoint(self) -> npt.NDArray[np.floating]:
        return self.center

    def surface_area(self) -> float:
        return 4.0 * math.pi * self.radius * self.radius

    def volume(self) -> float:
        return 4.0 / 3.0 * math.pi * self.radius**3

    def closest_point_to(self, point: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """The point itself if inside, else its projection onto the surface."""
        point = as_vector(point, self.precision, "point").astype(np.float64)
        offset = point - self.center
        distance = float(np.linalg.norm(offset))
        if distance <= self.radius:
            return point.astype(self.precision.dtype)
        return (self.center + offset * (self.radius / distance)).astype(self.precision.dtype)

    def union(self, other: BoundingVolume3) -> BoundingVolume3:
        """Enclosing sphere of two spheres; a box when mixed with a box."""
        if not isinstance(other, BoundingSphere3):
            return super().union(other)
        _check_same_precision(self, other)
        offset = other.center.astype(np.float64) - self.center
        distance = float(np.linalg.norm(offset))
        if distance + other.radius <= self.radius:
            return self
        if distance + self.radius <= other.radius:
            return other
        radius = 0.5 * (distance + self.radius + other.radius)
        center = (self.center + offset * ((radius - self.radius) / distance)).astype(self.precision.dtype)
        # The rounded center can drift further than the radius's last place,
        # so measure each sphere's reach from it, then round the radius up.
        for sphere in (self, other):
            reach = float(np.linalg.norm(center.astype(np.float64) - sphere.center.astype(np.float64)))
            radius = max(radius, reach + sphere.radius)
        radius = float(np.nextafter(self.precision.dtype(radius), self.precision.dtype(np.inf)))
        return type(self)(center=center, radius=radius)

    def transform(self, matrix: npt.ArrayLike) -> "BoundingSphere3":
        """Transform the center; scale the radius by the largest axis stretch."""
        m = as_array(matrix, F64, "matrix", shape=(4, 4))
        center = m @ np.append(self.center.astype(np.float64), 1.0)
        if center[3] == 0.0:
            raise ValueError("matrix maps the sphere center to infinity")
        scale = float(np.linalg.norm(m[:3, :3], axis=0).max())
        return type(self)(center=center[:3] / center[3], radius=self.radius * scale)

    def packed(self) -> npt.NDArray[np.floating]:
        return np.concatenate([[SPHERE_KIND], self.center, [self.radius, 0.0, 0.0]]).astype(self.precision.dtype)


class BoundingBox3F(BoundingBox3):
    """Single-precision axis-aligned bounding box."""

    precision = F32


class BoundingBox3D(BoundingBox3):
    """Double-precision axis-aligned bounding box."""

    precision = F64


class BoundingSphere3F(BoundingSphere3):
    """Single-precision bounding sphere."""

    precision = F32


class BoundingSphere3D(BoundingSphere3):
    """Double-precision bounding sphere."""

    precision = F64


_BOX_TYPES = {F32.name: BoundingBox3F, F64.name: BoundingBox3D}
_SPHERE_TYPES = {F32.name: BoundingSphere3F, F64.name: BoundingSphere3D}


def bounding_box_type(precision: Precision) -> type:
    """The :class:`BoundingBox3` subclass of a precision."""
    return _BOX_TYPES[precision.name]


def bounding_sphere_type(precision: Precision) -> type:
    """The :class:`BoundingSphere3` subclass of a precision."""
    return _SPHERE_TYPES[precision.name]


def _check_same_precision(first: BoundingVolume3, second: BoundingVolume3) -> None:
    if first.precision is not second.precision:
        raise ValueError(
            f"cannot combine {type(first).__name__} and {type(second).__name__} of different precision"
        )
