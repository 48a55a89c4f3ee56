"""Shape base class and device dispatch over the closed set of shapes.

Every shape is a :class:`ShapeKind` variant. Host shapes pack themselves once
into :class:`ShapeBuffers` (a tag row, a parameter row and the vertex arena)
and every query launches one of two kernels over those buffers:

- ``shape_intersection_kernel`` finds the closest hit with ``shape_hit`` and,
  when surface information is requested, evaluates it at that same hit, so
  ``intersection`` and ``intersection_t`` always agree.
- ``shape_sample_kernel`` samples the surface uniformly by area or, from a
  reference point, by solid angle.

Parameter row layout (``REAL_COLUMNS`` reals):

    ==========  ==============================================
    columns     content
    ==========  ==============================================
    0-2         plane point, sphere center, cuboid minimum
    3-5         plane normal, cuboid maximum
    6           sphere radius
    7-9         sphere phi_max, theta_min, theta_max
    10          surface area
    ==========  ==============================================

Tag row layout (``INT_COLUMNS`` int32): kind, has vertex normals, has
texture coordinates, triangle count, partial sphere flag.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from functools import cached_property
from types import SimpleNamespace
from typing import ClassVar, Optional

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.device import get_device
from geokernel.core.precision import F32, Precision, as_batch, as_direction, as_vector
from geokernel.core.ray import RAY_COLUMNS, Ray3, pack_rays
from geokernel.geometry.bounds import BoundingVolume3
from geokernel.geometry.records import (
    HIT_COLUMNS,
    SAMPLE_COLUMNS,
    Intersection3,
    Measure,
    SurfaceSample3,
    unpack_intersection,
    unpack_sample,
)

INT_COLUMNS = 5
REAL_COLUMNS = 11


class ShapeKind(IntEnum):
    """Enumeration of the shape variants."""

    PLANE = 0
    SPHERE = 1
    TRIANGLE = 2
    TRIANGLE_MESH = 3
    RECTANGULAR_CUBOID = 4


# =============================================================================
# Device Dispatch
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the shape record, the dispatch routines and the shape kernels."""
    real = device.real
    vec3 = device.vec3
    Ray3 = device.Ray3
    Sample3 = device.Sample3
    load_ray = device.load_ray
    miss_record = device.miss_record
    store_hit = device.store_hit
    store_sample = device.store_sample
    to_solid_angle = device.to_solid_angle
    plane_hit = device.plane_hit
    plane_surface = device.plane_surface
    sphere_hit = device.sphere_hit
    sphere_surface = device.sphere_surface
    sphere_sample = device.sphere_sample
    sphere_sample_from = device.sphere_sample_from
    mesh_hit = device.mesh_hit
    mesh_surface = device.mesh_surface
    mesh_sample = device.mesh_sample
    cuboid_hit = device.cuboid_hit
    cuboid_surface = device.cuboid_surface
    cuboid_sample = device.cuboid_sample

    plane = int(ShapeKind.PLANE)
    sphere = int(ShapeKind.SPHERE)
    cuboid = int(ShapeKind.RECTANGULAR_CUBOID)

    @ti.dataclass
    class ShapeData:
        """The tag and parameter rows of a packed shape."""

        kind: ti.i32
        has_normals: ti.i32
        has_uvs: ti.i32
        triangle_count: ti.i32
        partial: ti.i32
        first: vec3
        second: vec3
        radius: real
        phi_max: real
        theta_min: real
        theta_max: real
        area: real

    @ti.func
    def load_shape(ints: ti.template(), reals: ti.template()) -> ShapeData:
        return ShapeData(
            kind=ints[0],
            has_normals=ints[1],
            has_uvs=ints[2],
            triangle_count=ints[3],
            partial=ints[4],
            first=vec3(reals[0], reals[1], reals[2]),
            second=vec3(reals[3], reals[4], reals[5]),
            radius=reals[6],
            phi_max=reals[7],
            theta_min=reals[8],
            theta_max=reals[9],
            area=reals[10],
        )

    @ti.func
    def shape_hit(shape: ShapeData, positions: ti.template(), indices: ti.template(), ray: Ray3):
        """Closest valid hit of a ray with any shape variant.

        Returns:
            Tuple of (t, aux, b1, b2). t is inf on a miss; aux is the mesh
            triangle or cuboid face that was hit; b1 and b2 are barycentric
            weights of triangle hits.
        """
        t = ti.cast(tm.inf, real)
        aux = -1
        b1 = ti.cast(0.0, real)
        b2 = ti.cast(0.0, real)
        if shape.kind == plane:
            t = plane_hit(shape.first, shape.second, ray)
        elif shape.kind == sphere:
            t = sphere_hit(
                shape.first, shape.radius, shape.phi_max, shape.theta_min, shape.theta_max, shape.partial, ray
            )
        elif shape.kind == cuboid:
            cuboid_t, face = cuboid_hit(shape.first, shape.second, ray)
            t = cuboid_t
            aux = face
        else:
            mesh_t, triangle, mesh_b1, mesh_b2 = mesh_hit(positions, indices, shape.triangle_count, ray)
            t = mesh_t
            aux = triangle
            b1 = mesh_b1
            b2 = mesh_b2
        return t, aux, b1, b2

    @ti.func
    def store_surface(
        out: ti.template(),
        i: ti.i32,
        shape: ShapeData,
        positions: ti.template(),
        normals: ti.template(),
        uvs: ti.template(),
        indices: ti.template(),
        ray: Ray3,
        t: real,
        aux: ti.i32,
        b1: real,
        b2: real,
    ):
        """Write the surface information of a hit found by :func:`shape_hit`."""
        if shape.kind == plane:
            store_hit(out, i, plane_surface(shape.first, shape.second, ray, t))
        elif shape.kind == sphere:
            store_hit(
                out,
                i,
                sphere_surface(
                    shape.first, shape.radius, shape.phi_max, shape.theta_min, shape.theta_max, ray, t
                ),
            )
        elif shape.kind == cuboid:
            store_hit(out, i, cuboid_surface(shape.first, shape.second, ray, t, aux))
        else:
            store_hit(
                out,
                i,
                mesh_surface(
                    positions, normals, uvs, indices, shape.has_normals, shape.has_uvs, ray, t, aux, b1, b2
                ),
            )

    @ti.func
    def area_sample(
        shape: ShapeData, positions: ti.template(), indices: ti.template(), cdf: ti.template(), u1: real, u2: real
    ) -> Sample3:
        """Uniform area sample of a finite shape (a mesh when not a sphere or cuboid)."""
        valid = 0
        point = vec3(0.0, 0.0, 0.0)
        normal = vec3(0.0, 0.0, 0.0)
        pdf = ti.cast(0.0, real)
        if shape.kind == sphere:
            sample = sphere_sample(
                shape.first, shape.radius, shape.phi_max, shape.theta_min, shape.theta_max, shape.area, u1, u2
            )
            valid = sample.valid
            point = sample.point
            normal = sample.normal
            pdf = sample.pdf
        elif shape.kind == cuboid:
            sample = cuboid_sample(shape.first, shape.second, shape.area, u1, u2)
            valid = sample.valid
            point = sample.point
            normal = sample.normal
            pdf = sample.pdf
        elif shape.kind != plane:
            sample = mesh_sample(positions, indices, cdf, shape.triangle_count, shape.area, u1, u2)
            valid = sample.valid
            point = sample.point
            normal = sample.normal
            pdf = sample.pdf
        return Sample3(valid=valid, point=point, normal=normal, pdf=pdf)

    @ti.kernel
    def shape_intersection_kernel(
        ints: ti.types.ndarray(),
        reals: ti.types.ndarray(),
        positions: ti.types.ndarray(),
        normals: ti.types.ndarray(),
        uvs: ti.types.ndarray(),
        indices: ti.types.ndarray(),
        rays: ti.types.ndarray(),
        surface: ti.i32,
        out: ti.types.ndarray(),
    ):
        for i in range(rays.shape[0]):
            shape = load_shape(ints, reals)
            ray = load_ray(rays, i)
            t, aux, b1, b2 = shape_hit(shape, positions, indices, ray)
            if surface == 0:
                out[i, 0] = t
            elif t == tm.inf:
                store_hit(out, i, miss_record())
            else:
                store_surface(out, i, shape, positions, normals, uvs, indices, ray, t, aux, b1, b2)

    @ti.kernel
    def shape_sample_kernel(
        ints: ti.types.ndarray(),
        reals: ti.types.ndarray(),
        positions: ti.types.ndarray(),
        indices: ti.types.ndarray(),
        cdf: ti.types.ndarray(),
        references: ti.types.ndarray(),
        from_reference: ti.i32,
        uv: ti.types.ndarray(),
        out: ti.types.ndarray(),
    ):
        for i in range(uv.shape[0]):
            shape = load_shape(ints, reals)
            u1 = uv[i, 0]
            u2 = uv[i, 1]
            reference = vec3(references[i, 0], references[i, 1], references[i, 2])
            if from_reference == 0:
                store_sample(out, i, area_sample(shape, positions, indices, cdf, u1, u2))
            elif shape.kind == sphere:
                store_sample(
                    out,
                    i,
                    sphere_sample_from(
                        shape.first,
                        shape.radius,
                        shape.phi_max,
                        shape.theta_min,
                        shape.theta_max,
                        shape.partial,
                        shape.area,
                        reference,
                        u1,
                        u2,
                    ),
                )
            else:
                store_sample(out, i, to_solid_angle(area_sample(shape, positions, indices, cdf, u1, u2), reference))

    device.ShapeData = ShapeData
    device.load_shape = load_shape
    device.shape_hit = shape_hit
    device.shape_intersection_kernel = shape_intersection_kernel
    device.shape_sample_kernel = shape_sample_kernel


# =============================================================================
# Host Shape Buffers
# =============================================================================


@dataclass(frozen=True, eq=False)
class ShapeBuffers:
    """The arrays a shape is packed into for kernel launches.

    Shapes without vertex data carry one-row placeholder arrays so every
    kernel launch has the same signature.
    """

    ints: npt.NDArray[np.int32]
    reals: npt.NDArray[np.floating]
    positions: npt.NDArray[np.floating]
    normals: npt.NDArray[np.floating]
    uvs: npt.NDArray[np.floating]
    indices: npt.NDArray[np.int32]
    cdf: npt.NDArray[np.floating]

    @classmethod
    def create(
        cls,
        shape: "Shape3",
        first: npt.ArrayLike = (0.0, 0.0, 0.0),
        second: npt.ArrayLike = (0.0, 0.0, 0.0),
        radius: float = 0.0,
        phi_max: float = 0.0,
        theta_min: float = 0.0,
        theta_max: float = 0.0,
        partial: bool = False,
    ) -> "ShapeBuffers":
        """Pack an analytic shape (plane, sphere or cuboid)."""
        dtype = shape.precision.dtype
        reals = np.zeros(REAL_COLUMNS, dtype=dtype)
        reals[0:3] = first
        reals[3:6] = second
        reals[6:11] = (radius, phi_max, theta_min, theta_max, shape.surface_area())
        ints = np.array([int(shape.kind), 0, 0, 0, int(partial)], dtype=np.int32)
        return cls(
            ints=ints,
            reals=reals,
            positions=np.zeros((1, 3), dtype=dtype),
            normals=np.zeros((1, 3), dtype=dtype),
            uvs=np.zeros((1, 2), dtype=dtype),
            indices=np.zeros((1, 3), dtype=np.int32),
            cdf=np.ones(1, dtype=dtype),
        )

    @classmethod
    def for_triangles(
        cls,
        shape: "Shape3",
        positions: npt.NDArray[np.floating],
        indices: npt.NDArray[np.integer],
        normals: Optional[npt.NDArray[np.floating]],
        texture_coordinates: Optional[npt.NDArray[np.floating]],
        areas: npt.NDArray[np.float64],
    ) -> "ShapeBuffers":
        """Pack a triangle arena with its cumulative area table."""
        dtype = shape.precision.dtype
        total = float(areas.sum())
        cdf = np.cumsum(areas) / total
        cdf[-1] = 1.0
        vertex_count = positions.shape[0]
        reals = np.zeros(REAL_COLUMNS, dtype=dtype)
        reals[10] = total
        ints = np.array(
            [int(shape.kind), int(normals is not None), int(texture_coordinates is not None), indices.shape[0], 0],
            dtype=np.int32,
        )
        return cls(
            ints=ints,
            reals=reals,
            positions=np.ascontiguousarray(positions, dtype=dtype),
            normals=np.ascontiguousarray(normals if normals is not None else np.zeros((vertex_count, 3)), dtype=dtype),
            uvs=np.ascontiguousarray(
                texture_coordinates if texture_coordinates is not None else np.zeros((vertex_count, 2)), dtype=dtype
            ),
            indices=np.ascontiguousarray(indices, dtype=np.int32),
            cdf=np.ascontiguousarray(cdf, dtype=dtype),
        )


# =============================================================================
# Host Shape Base Class
# =============================================================================


def _canonical_pair(u1: float, u2: float) -> tuple[float, float]:
    for name, value in (("u1", u1), ("u2", u2)):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} = {value} is outside [0, 1]")
    return u1, u2


def _area_to_solid_angle(
    area_pdf: float, reference: npt.NDArray[np.float64], point: npt.NDArray[np.float64], normal: npt.NDArray[np.float64]
) -> float:
    offset = point - reference
    distance_squared = float(offset @ offset)
    if distance_squared == 0.0:
        return 0.0
    cosine = abs(float(normal @ offset)) / math.sqrt(distance_squared)
    if cosine == 0.0:
        return 0.0
    return area_pdf * distance_squared / cosine


class Shape3:
    """Queries shared by every shape variant.

    Subclasses are frozen dataclasses that set ``kind`` and implement
    ``compute_bounding_volume``, ``surface_area`` and ``_pack``. Every query
    runs on the device in the shape's precision; results are returned as
    plain floats, :class:`Intersection3` or :class:`SurfaceSample3` values.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind]

    def compute_bounding_volume(self) -> BoundingVolume3:
        """A tight bounding volume of the shape."""
        raise NotImplementedError

    def surface_area(self) -> float:
        raise NotImplementedError

    def _pack(self) -> ShapeBuffers:
        raise NotImplementedError

    @cached_property
    def _buffers(self) -> ShapeBuffers:
        return self._pack()

    def intersection_t(self, ray: Ray3) -> Optional[float]:
        """The smallest valid hit parameter, or ``None`` on a miss."""
        t = float(self._intersect(as_batch(ray.packed(), self.precision, RAY_COLUMNS), surface=False)[0, 0])
        return t if math.isfinite(t) else None

    def intersection(self, ray: Ray3) -> Optional[Intersection3]:
        """Full surface information at the closest hit, or ``None`` on a miss."""
        row = self._intersect(as_batch(ray.packed(), self.precision, RAY_COLUMNS), surface=True)[0]
        return unpack_intersection(
            row,
            self.precision,
            shape=self,
            ray=ray,
            has_barycentric=self.kind in (ShapeKind.TRIANGLE, ShapeKind.TRIANGLE_MESH),
            has_primitive=self.kind == ShapeKind.TRIANGLE_MESH,
        )

    def intersects(self, ray: Ray3) -> bool:
        return self.intersection_t(ray) is not None

    def intersection_t_batch(
        self,
        origins: npt.ArrayLike,
        directions: npt.ArrayLike,
        t_min: npt.ArrayLike = 0.0,
        t_max: npt.ArrayLike = math.inf,
    ) -> npt.NDArray[np.floating]:
        """Closest hit parameters for a batch of rays; misses are ``inf``.

        Zero-length directions are reported as misses.
        """
        rays = pack_rays(origins, directions, self.precision, t_min, t_max)
        return self._intersect(rays, surface=False)[:, 0]

    def sample(self, u1: float, u2: float) -> Optional[SurfaceSample3]:
        """Sample the surface uniformly by area (pdf ``1 / area``).

        Returns ``None`` for shapes of infinite area.
        """
        u1, u2 = _canonical_pair(u1, u2)
        row = self._sample(np.array([[u1, u2]]), references=None)[0]
        return unpack_sample(row, Measure.AREA)

    def sample_from(self, reference_point: npt.ArrayLike, u1: float, u2: float) -> Optional[SurfaceSample3]:
        """Sample the surface as seen from a reference point, pdf per solid angle.

        Returns ``None`` for shapes of infinite area and for samples seen
        edge-on from the reference point.
        """
        u1, u2 = _canonical_pair(u1, u2)
        reference = as_vector(reference_point, self.precision, "reference_point").reshape(1, 3)
        row = self._sample(np.array([[u1, u2]]), references=reference)[0]
        return unpack_sample(row, Measure.SOLID_ANGLE)

    def sample_batch(
        self, uv: npt.ArrayLike
    ) -> tuple[npt.NDArray[np.floating], npt.NDArray[np.floating], npt.NDArray[np.floating]]:
        """Uniform area samples for an ``(N, 2)`` array of canonical pairs.

        Returns:
            Tuple of (points, normals, pdfs). Rows without a sample (every
            row for an infinite shape) have a pdf of zero.
        """
        uv = as_batch(uv, self.precision, 2)
        if (uv < 0.0).any() or (uv > 1.0).any() or np.isnan(uv).any():
            raise ValueError("canonical pairs must lie in [0, 1]")
        out = self._sample(uv, references=None)
        return out[:, 1:4], out[:, 4:7], out[:, 7]

    def pdf_from(self, reference_point: npt.ArrayLike, point: npt.ArrayLike, normal: npt.ArrayLike) -> float:
        """Solid-angle density of ``sample_from`` picking a given surface point.

        Used to weigh a surface point found by other means, such as a ray
        hit, against samples from this shape. The density is the area
        density ``1 / area`` converted to solid angle as seen from the
        reference point.

        Args:
            reference_point: The point the shape is seen from.
            point: A point on the surface.
            normal: The surface normal at ``point``; normalized here.

        Returns:
            The density, or 0 for shapes of infinite area and for points
            seen edge-on or coinciding with the reference point.
        """
        reference = as_vector(reference_point, self.precision, "reference_point").astype(np.float64)
        point = as_vector(point, self.precision, "point").astype(np.float64)
        normal = as_direction(normal, self.precision, "normal").astype(np.float64)
        area = self.surface_area()
        if not math.isfinite(area):
            return 0.0
        return _area_to_solid_angle(1.0 / area, reference, point, normal)

    def _intersect(self, rays: npt.NDArray[np.floating], surface: bool) -> npt.NDArray[np.floating]:
        buffers = self._buffers
        out = np.zeros((rays.shape[0], HIT_COLUMNS if surface else 1), dtype=self.precision.dtype)
        get_device(self.precision).shape_intersection_kernel(
            buffers.ints,
            buffers.reals,
            buffers.positions,
            buffers.normals,
            buffers.uvs,
            buffers.indices,
            rays,
            1 if surface else 0,
            out,
        )
        return out

    def _sample(
        self, uv: npt.NDArray[np.floating], references: Optional[npt.NDArray[np.floating]]
    ) -> npt.NDArray[np.floating]:
        buffers = self._buffers
        dtype = self.precision.dtype
        uv = np.ascontiguousarray(uv, dtype=dtype)
        count = uv.shape[0]
        if references is None:
            reference_rows = np.zeros((count, 3), dtype=dtype)
        else:
            reference_rows = np.ascontiguousarray(np.broadcast_to(references, (count, 3)), dtype=dtype)
        out = np.zeros((count, SAMPLE_COLUMNS), dtype=dtype)
        get_device(self.precision).shape_sample_kernel(
            buffers.ints,
            buffers.reals,
            buffers.positions,
            buffers.indices,
            buffers.cdf,
            reference_rows,
            0 if references is None else 1,
            uv,
            out,
        )
        return out
