"""Triangle primitive with Moller-Trumbore intersection.

A triangle has vertices ``(a, b, c)`` and optional per-vertex normals and
texture coordinates. Hits report barycentric weights ``(b0, b1, b2)`` of
vertices ``(a, b, c)``, with ``b0 = 1 - b1 - b2``, and interpolate the vertex
data with them. Without vertex normals the shading normal is the geometric
normal ``normalize((b - a) x (c - a))``; without texture coordinates the
vertices map to ``(0, 0)``, ``(1, 0)`` and ``(0, 1)``.

On the device a triangle is an index triple into vertex arrays, so a
standalone :class:`Triangle3` is packed as a mesh of one triangle and goes
through the same routines as :class:`~geokernel.geometry.mesh.TriangleMesh3`.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.ray import Ray3D
    >>> from geokernel.geometry.triangle import Triangle3D
    >>> triangle = Triangle3D(a=(0, 0, 0), b=(1, 0, 0), c=(0, 1, 0))
    >>> hit = triangle.intersection(Ray3D(origin=(0.25, 0.25, 1), direction=(0, 0, -1)))
    >>> hit.barycentric
    array([0.5 , 0.25, 0.25])
"""

from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar, Optional

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.precision import F32, F64, Precision, as_array, as_vector
from geokernel.geometry.bounds import BoundingBox3, bounding_box_type
from geokernel.geometry.shape import Shape3, ShapeBuffers, ShapeKind

# Texture coordinates of (a, b, c) when none are given.
DEFAULT_TEXTURE_COORDINATES = ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0))


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register triangle intersection, interpolation and sampling routines."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Hit3 = device.Hit3
    Sample3 = device.Sample3
    epsilon = device.epsilon
    ray_at = device.ray_at
    onb_from_w = device.onb_from_w
    hit_in_range = device.hit_in_range
    sample_triangle_uniform = device.sample_triangle_uniform

    @ti.func
    def triangle_hit(a: vec3, b: vec3, c: vec3, ray: Ray3):
        """Moller-Trumbore ray-triangle intersection.

        The determinant is compared against ``epsilon * |e1 x e2|`` so the
        parallel-ray threshold is an angle, independent of triangle size.

        Returns:
            Tuple of (t, b1, b2); t is inf on a miss.
        """
        edge1 = b - a
        edge2 = c - a
        p = tm.cross(ray.direction, edge2)
        determinant = tm.dot(edge1, p)
        t = ti.cast(tm.inf, real)
        b1 = ti.cast(0.0, real)
        b2 = ti.cast(0.0, real)
        if determinant != 0.0 and ti.abs(determinant) >= epsilon * tm.length(tm.cross(edge1, edge2)):
            inverse = 1.0 / determinant
            s = ray.origin - a
            u = tm.dot(s, p) * inverse
            if u >= 0.0 and u <= 1.0:
                q = tm.cross(s, edge1)
                v = tm.dot(ray.direction, q) * inverse
                if v >= 0.0 and u + v <= 1.0:
                    candidate = tm.dot(edge2, q) * inverse
                    if hit_in_range(candidate, ray):
                        t = candidate
                        b1 = u
                        b2 = v
        return t, b1, b2

    @ti.func
    def triangle_normal(a: vec3, b: vec3, c: vec3) -> vec3:
        return tm.normalize(tm.cross(b - a, c - a))

    @ti.func
    def triangle_surface(
        a: vec3,
        b: vec3,
        c: vec3,
        normal_a: vec3,
        normal_b: vec3,
        normal_c: vec3,
        uv_a: vec2,
        uv_b: vec2,
        uv_c: vec2,
        has_normals: ti.i32,
        ray: Ray3,
        t: real,
        b1: real,
        b2: real,
        primitive: ti.i32,
    ) -> Hit3:
        """Surface information at a triangle hit found by :func:`triangle_hit`."""
        b0 = 1.0 - b1 - b2
        normal = triangle_normal(a, b, c)
        shading_normal = normal
        if has_normals != 0:
            interpolated = b0 * normal_a + b1 * normal_b + b2 * normal_c
            length_squared = tm.dot(interpolated, interpolated)
            if length_squared > 0.0:
                shading_normal = interpolated
                # Unit vertex normals are reproduced exactly at the vertices.
                if ti.abs(length_squared - 1.0) > epsilon:
                    shading_normal = interpolated / ti.sqrt(length_squared)
        return Hit3(
            t=t,
            point=ray_at(ray, t),
            normal=normal,
            shading_normal=shading_normal,
            uv=b0 * uv_a + b1 * uv_b + b2 * uv_c,
            barycentric=vec3(b0, b1, b2),
            front_face=tm.dot(ray.direction, normal) < 0.0,
            primitive=primitive,
            basis=onb_from_w(shading_normal),
        )

    @ti.func
    def triangle_sample(a: vec3, b: vec3, c: vec3, u1: real, u2: real, pdf: real) -> Sample3:
        """Uniformly sample a triangle by area with a caller-supplied density."""
        weights = sample_triangle_uniform(u1, u2)
        point = weights.x * a + weights.y * b + weights.z * c
        return Sample3(valid=1, point=point, normal=triangle_normal(a, b, c), pdf=pdf)

    device.triangle_hit = triangle_hit
    device.triangle_normal = triangle_normal
    device.triangle_surface = triangle_surface
    device.triangle_sample = triangle_sample


# =============================================================================
# Host Triangle
# =============================================================================


@dataclass(frozen=True, eq=False)
class Triangle3(Shape3):
    """A triangle with optional per-vertex normals and texture coordinates.

    Attributes:
        a: First vertex.
        b: Second vertex.
        c: Third vertex.
        normals: Optional ``(3, 3)`` vertex normals for ``(a, b, c)``.
        texture_coordinates: Optional ``(3, 2)`` texture coordinates.

    Raises:
        ValueError: If a vertex is not finite, the vertices are collinear or
            the vertex data has the wrong shape.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind] = ShapeKind.TRIANGLE

    a: npt.NDArray[np.floating]
    b: npt.NDArray[np.floating]
    c: npt.NDArray[np.floating]
    normals: Optional[npt.NDArray[np.floating]] = None
    texture_coordinates: Optional[npt.NDArray[np.floating]] = None

    def __post_init__(self):
        precision = self.precision
        for name in ("a", "b", "c"):
            object.__setattr__(self, name, as_vector(getattr(self, name), precision, name))
        if self.normals is not None:
            object.__setattr__(self, "normals", as_array(self.normals, precision, "normals", shape=(3, 3)))
        if self.texture_coordinates is not None:
            object.__setattr__(
                self,
                "texture_coordinates",
                as_array(self.texture_coordinates, precision, "texture_coordinates", shape=(3, 2)),
            )
        if self.surface_area() == 0.0:
            raise ValueError(f"triangle ({self.a}, {self.b}, {self.c}) is degenerate")

    @property
    def vertices(self) -> npt.NDArray[np.floating]:
        return np.stack([self.a, self.b, self.c])

    @property
    def geometric_normal(self) -> npt.NDArray[np.floating]:
        """Unit normal ``(b - a) x (c - a)``, following the winding order."""
        normal = np.cross((self.b - self.a).astype(np.float64), (self.c - self.a).astype(np.float64))
        return (normal / np.linalg.norm(normal)).astype(self.precision.dtype)

    def compute_bounding_volume(self) -> BoundingBox3:
        return bounding_box_type(self.precision).from_points(self.vertices)

    def surface_area(self) -> float:
        edge1 = (self.b - self.a).astype(np.float64)
        edge2 = (self.c - self.a).astype(np.float64)
        return 0.5 * float(np.linalg.norm(np.cross(edge1, edge2)))

    def _pack(self) -> ShapeBuffers:
        return ShapeBuffers.for_triangles(
            self,
            positions=self.vertices,
            indices=np.array([[0, 1, 2]]),
            normals=self.normals,
            texture_coordinates=self.texture_coordinates,
            areas=np.array([self.surface_area()]),
        )


class Triangle3F(Triangle3):
    """Single-precision triangle."""

    precision = F32


class Triangle3D(Triangle3):
    """Double-precision triangle."""

    precision = F64
