"""Intersection and surface sample records.

Device kernels report hits and samples as fixed-width rows of a real array;
this module owns that layout on both sides. On the device, ``Hit3`` and
``Sample3`` records are written row by row with :func:`store_hit` and
:func:`store_sample`; on the host, rows are unpacked into the immutable
:class:`Intersection3` and :class:`SurfaceSample3` values returned to
callers.

Row layout of a hit (``HIT_COLUMNS`` reals):

    ==========  ========================================
    columns     content
    ==========  ========================================
    0           t (inf on a miss)
    1-3         point
    4-6         geometric normal (outward)
    7-9         shading normal
    10-11       texture coordinates
    12-14       barycentric weights (triangles)
    15          front face flag
    16          primitive index (-1 if not a mesh)
    17-25       hit basis u, v, w
    ==========  ========================================
"""

import math
from dataclasses import dataclass
from enum import Enum
from types import SimpleNamespace
from typing import Any, Optional

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.onb import OrthonormalBasis33, basis_type
from geokernel.core.precision import Precision
from geokernel.core.ray import Ray3

HIT_COLUMNS = 26
SAMPLE_COLUMNS = 8


class Measure(str, Enum):
    """The measure a sample's probability density is expressed in."""

    AREA = "area"
    SOLID_ANGLE = "solid_angle"


# =============================================================================
# Device Records
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the ``Hit3`` and ``Sample3`` records and their row writers."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Onb3 = device.Onb3
    epsilon = device.epsilon

    @ti.dataclass
    class Hit3:
        """Surface information at a ray hit.

        Attributes:
            t: The ray parameter of the hit, inf on a miss.
            point: The hit point.
            normal: The outward geometric normal.
            shading_normal: The interpolated (or geometric) shading normal.
            uv: Texture coordinates.
            barycentric: Triangle weights for vertices (a, b, c).
            front_face: 1 if the ray arrives against the outward normal.
            primitive: Index of the mesh triangle that was hit, else -1.
            basis: Orthonormal basis with ``w`` along the shading normal.
        """

        t: real
        point: vec3
        normal: vec3
        shading_normal: vec3
        uv: vec2
        barycentric: vec3
        front_face: ti.i32
        primitive: ti.i32
        basis: Onb3

    @ti.dataclass
    class Sample3:
        """A point sampled on a surface.

        Attributes:
            valid: 1 if a sample was produced.
            point: The sampled point.
            normal: The outward surface normal at the point.
            pdf: Probability density (per area or per solid angle).
        """

        valid: ti.i32
        point: vec3
        normal: vec3
        pdf: real

    @ti.func
    def hit_in_range(t: real, ray: Ray3) -> ti.i32:
        """Whether ``t`` is a valid hit parameter; NaN never is."""
        return t > epsilon and t >= ray.t_min and t <= ray.t_max and t < tm.inf

    @ti.func
    def miss_record() -> Hit3:
        zero = vec3(0.0, 0.0, 0.0)
        return Hit3(
            t=tm.inf,
            point=zero,
            normal=zero,
            shading_normal=zero,
            uv=vec2(0.0, 0.0),
            barycentric=zero,
            front_face=0,
            primitive=-1,
            basis=Onb3(u=zero, v=zero, w=zero),
        )

    @ti.func
    def to_solid_angle(sample: Sample3, reference: vec3) -> Sample3:
        """Convert an area-measure sample to solid angle as seen from a point.

        The density becomes ``pdf * d^2 / |cos|``; samples seen edge-on or
        coinciding with the reference point are invalid.
        """
        offset = sample.point - reference
        distance_squared = tm.dot(offset, offset)
        valid = 0
        pdf = ti.cast(0.0, real)
        if sample.valid != 0 and distance_squared > 0.0:
            cosine = ti.abs(tm.dot(sample.normal, offset)) / ti.sqrt(distance_squared)
            if cosine > 0.0:
                valid = 1
                pdf = sample.pdf * distance_squared / cosine
        return Sample3(valid=valid, point=sample.point, normal=sample.normal, pdf=pdf)

    @ti.func
    def store_hit(out: ti.template(), i: ti.i32, hit: Hit3):
        out[i, 0] = hit.t
        for k in ti.static(range(3)):
            out[i, 1 + k] = hit.point[k]
            out[i, 4 + k] = hit.normal[k]
            out[i, 7 + k] = hit.shading_normal[k]
            out[i, 12 + k] = hit.barycentric[k]
            out[i, 17 + k] = hit.basis.u[k]
            out[i, 20 + k] = hit.basis.v[k]
            out[i, 23 + k] = hit.basis.w[k]
        out[i, 10] = hit.uv.x
        out[i, 11] = hit.uv.y
        out[i, 15] = ti.cast(hit.front_face, real)
        out[i, 16] = ti.cast(hit.primitive, real)

    @ti.func
    def store_sample(out: ti.template(), i: ti.i32, sample: Sample3):
        out[i, 0] = ti.cast(sample.valid, real)
        for k in ti.static(range(3)):
            out[i, 1 + k] = sample.point[k]
            out[i, 4 + k] = sample.normal[k]
        out[i, 7] = sample.pdf

    device.Hit3 = Hit3
    device.Sample3 = Sample3
    device.hit_in_range = hit_in_range
    device.miss_record = miss_record
    device.to_solid_angle = to_solid_angle
    device.store_hit = store_hit
    device.store_sample = store_sample


# =============================================================================
# Host Records
# =============================================================================


@dataclass(frozen=True, eq=False)
class Intersection3:
    """The result of a successful ray/shape intersection.

    Attributes:
        t: The ray parameter of the hit.
        point: The hit point.
        normal: The outward geometric normal.
        shading_normal: The shading normal (interpolated vertex normal for
            triangles, else the geometric normal).
        texture_coordinates: The ``(u, v)`` texture coordinates.
        basis: Orthonormal basis whose ``w`` is the shading normal.
        barycentric: Weights ``(b0, b1, b2)`` of vertices ``(a, b, c)`` for
            triangle hits, else ``None``.
        front_face: Whether the ray arrived from the outward side.
        primitive_index: The mesh triangle that was hit, else ``None``.
        shape: The shape that was hit.
        ray: The query ray.
    """

    t: float
    point: npt.NDArray[np.floating]
    normal: npt.NDArray[np.floating]
    shading_normal: npt.NDArray[np.floating]
    texture_coordinates: npt.NDArray[np.floating]
    basis: OrthonormalBasis33
    barycentric: Optional[npt.NDArray[np.floating]]
    front_face: bool
    primitive_index: Optional[int]
    shape: Any
    ray: Ray3


@dataclass(frozen=True, eq=False)
class SurfaceSample3:
    """A point sampled on a shape's surface.

    Attributes:
        point: The sampled point.
        normal: The outward surface normal at the point.
        pdf: The probability density of the sample.
        measure: Whether ``pdf`` is per unit area or per unit solid angle.
    """

    point: npt.NDArray[np.floating]
    normal: npt.NDArray[np.floating]
    pdf: float
    measure: Measure


def _frozen(values: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
    array = np.array(values, copy=True)
    array.setflags(write=False)
    return array


def unpack_intersection(
    row: npt.NDArray[np.floating],
    precision: Precision,
    shape: Any,
    ray: Ray3,
    has_barycentric: bool,
    has_primitive: bool,
) -> Optional[Intersection3]:
    """Turn one hit row into an :class:`Intersection3`, or ``None`` on a miss."""
    t = float(row[0])
    if not math.isfinite(t):
        return None
    return Intersection3(
        t=t,
        point=_frozen(row[1:4]),
        normal=_frozen(row[4:7]),
        shading_normal=_frozen(row[7:10]),
        texture_coordinates=_frozen(row[10:12]),
        basis=basis_type(precision)(u=row[17:20], v=row[20:23], w=row[23:26]),
        barycentric=_frozen(row[12:15]) if has_barycentric else None,
        front_face=bool(row[15]),
        primitive_index=int(row[16]) if has_primitive else None,
        shape=shape,
        ray=ray,
    )


def unpack_sample(row: npt.NDArray[np.floating], measure: Measure) -> Optional[SurfaceSample3]:
    """Turn one sample row into a :class:`SurfaceSample3`, or ``None`` if invalid."""
    if row[0] == 0.0:
        return None
    return SurfaceSample3(point=_frozen(row[1:4]), normal=_frozen(row[4:7]), pdf=float(row[7]), measure=measure)
