"""Ray data structure for host queries and device kernels.

A ray is an origin point, a unit direction and a closed parameter range
``[t_min, t_max]``. Host rays are immutable; every transform produces a new
ray. On the device a ray is a ``Ray3`` record of the namespace's precision.

Example:
    >>> from geokernel.core.ray import Ray3F
    >>> ray = Ray3F(origin=(0.0, 0.0, 5.0), direction=(0.0, 0.0, -2.0))
    >>> ray.direction
    array([ 0.,  0., -1.], dtype=float32)
    >>> ray.point_at(4.0)
    array([0., 0., 1.], dtype=float32)
"""

import math
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti

from .precision import F32, F64, Precision, as_array, as_direction, as_scalar, as_vector

# Column layout of packed rays: origin xyz, direction xyz, t_min, t_max.
RAY_COLUMNS = 8


# =============================================================================
# Device Records and Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the ``Ray3`` record and ray helpers on a device namespace."""
    real = device.real
    vec3 = device.vec3

    @ti.dataclass
    class Ray3:
        """A ray with origin, unit direction and parameter range.

        Attributes:
            origin: The starting point of the ray.
            direction: The unit direction of the ray.
            t_min: Smallest accepted ray parameter.
            t_max: Largest accepted ray parameter.
        """

        origin: vec3
        direction: vec3
        t_min: real
        t_max: real

    @ti.func
    def ray_at(ray: Ray3, t: real) -> vec3:
        """Compute the point ``origin + t * direction``."""
        return ray.origin + t * ray.direction

    @ti.func
    def load_ray(rays: ti.template(), i: ti.i32) -> Ray3:
        """Read row ``i`` of a packed ``(N, 8)`` ray array."""
        return Ray3(
            origin=vec3(rays[i, 0], rays[i, 1], rays[i, 2]),
            direction=vec3(rays[i, 3], rays[i, 4], rays[i, 5]),
            t_min=rays[i, 6],
            t_max=rays[i, 7],
        )

    device.Ray3 = Ray3
    device.ray_at = ray_at
    device.load_ray = load_ray


# =============================================================================
# Host Ray
# =============================================================================


@dataclass(frozen=True, eq=False)
class Ray3:
    """An immutable ray ``origin + t * direction`` for ``t`` in ``[t_min, t_max]``.

    The direction is normalized at construction. Use :class:`Ray3F` or
    :class:`Ray3D` to pick a precision.

    Attributes:
        origin: The starting point of the ray.
        direction: The unit direction of the ray.
        t_min: Smallest accepted ray parameter (non-negative).
        t_max: Largest accepted ray parameter (may be infinite).

    Raises:
        ValueError: If the origin or direction is not finite, the direction
            is zero-length, or the range is not ``0 <= t_min <= t_max``.
    """

    precision: ClassVar[Precision] = F32

    origin: npt.NDArray[np.floating]
    direction: npt.NDArray[np.floating]
    t_min: float = 0.0
    t_max: float = math.inf
    _packed: npt.NDArray[np.floating] = field(init=False, repr=False)

    def __post_init__(self):
        precision = self.precision
        object.__setattr__(self, "origin", as_vector(self.origin, precision, "origin"))
        object.__setattr__(self, "direction", as_direction(self.direction, precision, "direction"))
        t_min = as_scalar(self.t_min, precision, "t_min")
        t_max = as_scalar(self.t_max, precision, "t_max", allow_infinite=True)
        if t_min < 0.0:
            raise ValueError(f"t_min = {t_min} is negative")
        if t_min > t_max:
            raise ValueError(f"t_min = {t_min} is greater than t_max = {t_max}")
        object.__setattr__(self, "t_min", t_min)
        object.__setattr__(self, "t_max", t_max)

        packed = np.concatenate([self.origin, self.direction, [t_min, t_max]]).astype(precision.dtype)
        packed.setflags(write=False)
        object.__setattr__(self, "_packed", packed)

    def point_at(self, t: float) -> npt.NDArray[np.floating]:
        """Compute the point at parameter ``t`` along the ray."""
        return self.origin + self.precision.dtype(t) * self.direction

    def with_range(self, t_min: float, t_max: float) -> "Ray3":
        """Return a copy of this ray with a different parameter range."""
        return type(self)(self.origin, self.direction, t_min, t_max)

    def transform(self, matrix: npt.ArrayLike) -> "Ray3":
        """Transform the ray by a 4x4 matrix.

        The origin is transformed as a point (with homogeneous divide) and
        the direction as a vector. Because the new direction is normalized
        again, the parameter range is rescaled by the direction's length
        change so that it still bounds the same transformed points.

        Args:
            matrix: A 4x4 row-major matrix acting on column vectors.

        Returns:
            The transformed ray.

        Raises:
            ValueError: If the matrix is not 4x4 or maps the direction to
                zero.
        """
        m = as_array(matrix, F64, "matrix", shape=(4, 4))
        origin = m @ np.append(self.origin.astype(np.float64), 1.0)
        if origin[3] == 0.0:
            raise ValueError("matrix maps the ray origin to infinity")
        direction = m[:3, :3] @ self.direction.astype(np.float64)
        scale = float(np.linalg.norm(direction))
        if scale == 0.0:
            raise ValueError("matrix maps the ray direction to zero")
        return type(self)(origin[:3] / origin[3], direction, self.t_min * scale, self.t_max * scale)

    def packed(self) -> npt.NDArray[np.floating]:
        """The ray as one row of a packed ``(N, 8)`` ray array."""
        return self._packed


class Ray3F(Ray3):
    """Single-precision ray."""

    precision = F32


class Ray3D(Ray3):
    """Double-precision ray."""

    precision = F64


def pack_rays(
    origins: npt.ArrayLike,
    directions: npt.ArrayLike,
    precision: Precision,
    t_min: npt.ArrayLike = 0.0,
    t_max: npt.ArrayLike = math.inf,
) -> npt.NDArray[np.floating]:
    """Pack a batch of rays into an ``(N, 8)`` array for a kernel launch.

    Directions are normalized; zero-length directions are kept as zero
    vectors, which every intersection routine reports as a miss.

    Args:
        origins: Ray origins, shape ``(N, 3)`` or ``(3,)``.
        directions: Ray directions, same shape as ``origins``.
        precision: Precision of the packed array.
        t_min: Per-ray or shared minimum parameter.
        t_max: Per-ray or shared maximum parameter.

    Returns:
        A writeable C-contiguous array of the precision's dtype.
    """
    origins = np.atleast_2d(np.asarray(origins, dtype=np.float64))
    directions = np.atleast_2d(np.asarray(directions, dtype=np.float64))
    if origins.shape != directions.shape or origins.shape[1] != 3:
        raise ValueError(
            f"origins and directions must both have shape (N, 3), got {origins.shape} and {directions.shape}"
        )
    lengths = np.linalg.norm(directions, axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        units = np.where(lengths > 0.0, directions / lengths, 0.0)

    count = origins.shape[0]
    packed = np.empty((count, RAY_COLUMNS), dtype=precision.dtype)
    packed[:, 0:3] = origins
    packed[:, 3:6] = units
    packed[:, 6] = np.broadcast_to(np.asarray(t_min, dtype=np.float64), (count,))
    packed[:, 7] = np.broadcast_to(np.asarray(t_max, dtype=np.float64), (count,))
    return packed
