"""Sphere primitive with robust ray-sphere intersection and partial extents.

A sphere is given by its center and radius, and may be cut down to a partial
sphere by a maximum azimuth ``phi_max`` and a zenith range
``[theta_min, theta_max]`` measured from the local ``+z`` axis.

The ray-sphere intersection is found by solving:
    |origin + t * direction - center|^2 = radius^2

The roots come from the numerically stable form of the quadratic (see
:func:`geokernel.geometry.bounds.build_device`), which avoids catastrophic
cancellation when b^2 is nearly equal to 4ac. The nearest root that is a
valid hit and lies inside the sphere's extent wins; a near root outside a
partial sphere's extent falls back to the far root.

Texture coordinates are ``u = phi / phi_max`` and
``v = (theta - theta_min) / (theta_max - theta_min)``.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.ray import Ray3D
    >>> from geokernel.geometry.sphere import Sphere3D
    >>> sphere = Sphere3D(center=(0, 0, 0), radius=1.0)
    >>> hit = sphere.intersection(Ray3D(origin=(0, 0, 5), direction=(0, 0, -1)))
    >>> hit.t, hit.normal
    (4.0, array([0., 0., 1.]))
"""

import math
from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.precision import F32, F64, Precision, as_direction, as_scalar, as_vector
from geokernel.geometry.bounds import BoundingSphere3, bounding_sphere_type
from geokernel.geometry.shape import Shape3, ShapeBuffers, ShapeKind


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register sphere intersection and sampling routines."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Hit3 = device.Hit3
    Sample3 = device.Sample3
    ray_at = device.ray_at
    onb_from_w = device.onb_from_w
    onb_to_world = device.onb_to_world
    hit_in_range = device.hit_in_range
    sphere_interval = device.sphere_interval
    sample_cone_uniform = device.sample_cone_uniform
    pdf_cone_uniform = device.pdf_cone_uniform
    to_solid_angle = device.to_solid_angle
    pi = device.pi

    @ti.func
    def sphere_angles(local: vec3, radius: real):
        """Azimuth in [0, 2pi) and zenith angle of a point relative to the center.

        Points on the polar axis are nudged off it so phi stays defined.
        """
        x = local.x
        if x == 0.0 and local.y == 0.0:
            x = 1e-5 * radius
        phi = ti.atan2(local.y, x)
        if phi < 0.0:
            phi += 2.0 * pi()
        theta = ti.acos(tm.clamp(local.z / radius, -1.0, 1.0))
        return phi, theta

    @ti.func
    def sphere_accepts(
        local: vec3, radius: real, phi_max: real, theta_min: real, theta_max: real, partial: ti.i32
    ) -> ti.i32:
        """Whether a point on the full sphere lies inside the partial extent."""
        accepted = 1
        if partial != 0:
            phi, theta = sphere_angles(local, radius)
            accepted = phi <= phi_max and theta >= theta_min and theta <= theta_max
        return accepted

    @ti.func
    def sphere_hit(
        center: vec3,
        radius: real,
        phi_max: real,
        theta_min: real,
        theta_max: real,
        partial: ti.i32,
        ray: Ray3,
    ) -> real:
        """Smallest valid hit parameter with a (partial) sphere, or inf."""
        t0, t1 = sphere_interval(center, radius, ray.origin, ray.direction)
        t = ti.cast(tm.inf, real)
        if hit_in_range(t0, ray) and sphere_accepts(
            ray_at(ray, t0) - center, radius, phi_max, theta_min, theta_max, partial
        ):
            t = t0
        elif hit_in_range(t1, ray) and sphere_accepts(
            ray_at(ray, t1) - center, radius, phi_max, theta_min, theta_max, partial
        ):
            t = t1
        return t

    @ti.func
    def sphere_surface(
        center: vec3, radius: real, phi_max: real, theta_min: real, theta_max: real, ray: Ray3, t: real
    ) -> Hit3:
        """Surface information at a sphere hit found by :func:`sphere_hit`."""
        hit_point = ray_at(ray, t)
        local = hit_point - center
        normal = local / radius
        phi, theta = sphere_angles(local, radius)
        basis = onb_from_w(normal)
        return Hit3(
            t=t,
            point=hit_point,
            normal=normal,
            shading_normal=basis.w,
            uv=vec2(phi / phi_max, (theta - theta_min) / (theta_max - theta_min)),
            barycentric=vec3(0.0, 0.0, 0.0),
            front_face=tm.dot(ray.direction, normal) < 0.0,
            primitive=-1,
            basis=basis,
        )

    @ti.func
    def sphere_sample(
        center: vec3, radius: real, phi_max: real, theta_min: real, theta_max: real, area: real, u1: real, u2: real
    ) -> Sample3:
        """Uniformly sample the (partial) sphere surface by area."""
        cos_theta_min = ti.cos(theta_min)
        z = radius * (cos_theta_min - u1 * (cos_theta_min - ti.cos(theta_max)))
        ring = ti.sqrt(ti.max(0.0, radius * radius - z * z))
        phi = u2 * phi_max
        local = vec3(ring * ti.cos(phi), ring * ti.sin(phi), z)
        return Sample3(valid=1, point=center + local, normal=local / radius, pdf=1.0 / area)

    @ti.func
    def sphere_sample_from(
        center: vec3,
        radius: real,
        phi_max: real,
        theta_min: real,
        theta_max: real,
        partial: ti.i32,
        area: real,
        reference: vec3,
        u1: real,
        u2: real,
    ) -> Sample3:
        """Sample the sphere as seen from a reference point, pdf per solid angle.

        From outside a full sphere only the visible cap is sampled, uniformly
        in the cone of directions it subtends. Otherwise the area sample is
        converted to solid angle.
        """
        to_center = center - reference
        distance_squared = tm.dot(to_center, to_center)
        valid = 0
        point = vec3(0.0, 0.0, 0.0)
        normal = vec3(0.0, 0.0, 0.0)
        pdf = ti.cast(0.0, real)
        if partial == 0 and distance_squared > radius * radius:
            sin_theta_max_squared = radius * radius / distance_squared
            cos_theta_max = ti.sqrt(ti.max(0.0, 1.0 - sin_theta_max_squared))
            direction = onb_to_world(onb_from_w(to_center), sample_cone_uniform(u1, u2, cos_theta_max))
            t0, _ = sphere_interval(center, radius, reference, direction)
            if t0 == tm.inf:
                # Grazing direction that rounding pushed off the sphere.
                t0 = tm.dot(to_center, direction)
            point = reference + t0 * direction
            normal = tm.normalize(point - center)
            pdf = pdf_cone_uniform(cos_theta_max)
            valid = 1
        else:
            converted = to_solid_angle(
                sphere_sample(center, radius, phi_max, theta_min, theta_max, area, u1, u2), reference
            )
            valid = converted.valid
            point = converted.point
            normal = converted.normal
            pdf = converted.pdf
        return Sample3(valid=valid, point=point, normal=normal, pdf=pdf)

    device.sphere_hit = sphere_hit
    device.sphere_surface = sphere_surface
    device.sphere_sample = sphere_sample
    device.sphere_sample_from = sphere_sample_from


# =============================================================================
# Host Sphere
# =============================================================================


@dataclass(frozen=True, eq=False)
class Sphere3(Shape3):
    """A sphere, optionally restricted to a partial extent.

    Attributes:
        center: The center point of the sphere.
        radius: The radius of the sphere (positive).
        phi_max: Maximum azimuth in ``(0, 2pi]``.
        theta_min: Minimum zenith angle from ``+z`` in ``[0, pi)``.
        theta_max: Maximum zenith angle, ``theta_min < theta_max <= pi``.

    Raises:
        ValueError: If the radius is not positive or the extent is empty or
            out of range.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind] = ShapeKind.SPHERE

    center: npt.NDArray[np.floating]
    radius: float
    phi_max: float = 2.0 * math.pi
    theta_min: float = 0.0
    theta_max: float = math.pi

    def __post_init__(self):
        precision = self.precision
        object.__setattr__(self, "center", as_vector(self.center, precision, "center"))
        radius = as_scalar(self.radius, precision, "radius")
        if radius <= 0.0:
            raise ValueError(f"radius = {radius} must be positive")
        if not 0.0 < self.phi_max <= 2.0 * math.pi:
            raise ValueError(f"phi_max = {self.phi_max} is outside (0, 2pi]")
        if not 0.0 <= self.theta_min < self.theta_max <= math.pi:
            raise ValueError(f"zenith range [{self.theta_min}, {self.theta_max}] is empty or outside [0, pi]")
        object.__setattr__(self, "radius", radius)
        for name in ("phi_max", "theta_min", "theta_max"):
            object.__setattr__(self, name, as_scalar(getattr(self, name), precision, name))

    @property
    def is_partial(self) -> bool:
        return self.phi_max < 2.0 * math.pi or self.theta_min > 0.0 or self.theta_max < math.pi

    def compute_bounding_volume(self) -> BoundingSphere3:
        return bounding_sphere_type(self.precision)(center=self.center, radius=self.radius)

    def surface_area(self) -> float:
        return self.phi_max * self.radius**2 * (math.cos(self.theta_min) - math.cos(self.theta_max))

    def contains(self, point: npt.ArrayLike) -> bool:
        """Whether a point lies in the solid ball, boundary included.

        Partial extents are ignored; the test is against the full ball.
        """
        offset = as_vector(point, self.precision, "point").astype(np.float64) - self.center
        return float(offset @ offset) <= self.radius * self.radius

    def transform(self, matrix: npt.ArrayLike) -> "Sphere3":
        """Transform the center and scale the radius by the largest axis stretch.

        The partial extent is kept in the local axes, so rotations do not
        turn a partial sphere.

        Raises:
            ValueError: If the matrix maps the center to infinity or
                collapses the radius.
        """
        bound = self.compute_bounding_volume().transform(matrix)
        return type(self)(
            center=bound.center,
            radius=bound.radius,
            phi_max=self.phi_max,
            theta_min=self.theta_min,
            theta_max=self.theta_max,
        )

    def pdf_from(self, reference_point: npt.ArrayLike, point: npt.ArrayLike, normal: npt.ArrayLike) -> float:
        """Solid-angle density of ``sample_from`` picking a given surface point.

        From outside a full sphere this is the uniform density over the cone
        the sphere subtends; otherwise the area density converted to solid
        angle.
        """
        as_vector(point, self.precision, "point")
        as_direction(normal, self.precision, "normal")
        reference = as_vector(reference_point, self.precision, "reference_point").astype(np.float64)
        to_center = self.center - reference
        distance_squared = float(to_center @ to_center)
        radius_squared = self.radius * self.radius
        if self.is_partial or distance_squared <= radius_squared:
            return super().pdf_from(reference_point, point, normal)
        cos_theta_max = math.sqrt(max(0.0, 1.0 - radius_squared / distance_squared))
        if cos_theta_max >= 1.0:
            return 0.0
        return 1.0 / (2.0 * math.pi * (1.0 - cos_theta_max))

    def _pack(self) -> ShapeBuffers:
        return ShapeBuffers.create(
            self,
            first=self.center,
            radius=self.radius,
            phi_max=self.phi_max,
            theta_min=self.theta_min,
            theta_max=self.theta_max,
            partial=self.is_partial,
        )


class Sphere3F(Sphere3):
    """Single-precision sphere."""

    precision = F32


class Sphere3D(Sphere3):
    """Double-precision sphere."""

    precision = F64
