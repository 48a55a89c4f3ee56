"""Indexed triangle meshes.

A mesh owns its vertex arrays (positions, optional normals, optional texture
coordinates) and a ``(T, 3)`` array of vertex indices; triangles are index
triples into that storage, never separate objects.

Intersection is a linear scan over all triangles keeping the smallest valid
hit (ties go to the lowest triangle index). Sampling picks a triangle with
probability proportional to its area, through a binary search of the
cumulative area table, and then samples it uniformly, so the result is
uniform over the whole mesh with density ``1 / total_area``.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.geometry.mesh import TriangleMesh3F
    >>> quad = TriangleMesh3F(
    ...     positions=[(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0)],
    ...     indices=[(0, 1, 2), (0, 2, 3)],
    ... )
    >>> quad.surface_area()
    1.0
"""

import logging
from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar, Optional, Sequence

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.precision import F32, F64, Precision, as_array
from geokernel.geometry.bounds import BoundingBox3, bounding_box_type
from geokernel.geometry.shape import Shape3, ShapeBuffers, ShapeKind
from geokernel.geometry.triangle import DEFAULT_TEXTURE_COORDINATES, Triangle3, Triangle3D, Triangle3F

logger = logging.getLogger(__name__)

_TRIANGLE_TYPES = {F32.name: Triangle3F, F64.name: Triangle3D}


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the mesh scan, interpolation and area-weighted sampling."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    Ray3 = device.Ray3
    Hit3 = device.Hit3
    Sample3 = device.Sample3
    triangle_hit = device.triangle_hit
    triangle_surface = device.triangle_surface
    triangle_sample = device.triangle_sample

    @ti.func
    def load_vertex(array: ti.template(), indices: ti.template(), triangle: ti.i32, corner: ti.i32) -> vec3:
        row = indices[triangle, corner]
        return vec3(array[row, 0], array[row, 1], array[row, 2])

    @ti.func
    def load_uv(uvs: ti.template(), indices: ti.template(), triangle: ti.i32, corner: ti.i32) -> vec2:
        row = indices[triangle, corner]
        return vec2(uvs[row, 0], uvs[row, 1])

    @ti.func
    def mesh_hit(positions: ti.template(), indices: ti.template(), count: ti.i32, ray: Ray3):
        """Closest hit over all triangles of a mesh.

        Returns:
            Tuple of (t, triangle, b1, b2); t is inf and triangle -1 on a
            miss.
        """
        t = ti.cast(tm.inf, real)
        triangle = -1
        b1 = ti.cast(0.0, real)
        b2 = ti.cast(0.0, real)
        for j in range(count):
            candidate, u, v = triangle_hit(
                load_vertex(positions, indices, j, 0),
                load_vertex(positions, indices, j, 1),
                load_vertex(positions, indices, j, 2),
                ray,
            )
            if candidate < t:
                t = candidate
                triangle = j
                b1 = u
                b2 = v
        return t, triangle, b1, b2

    @ti.func
    def mesh_surface(
        positions: ti.template(),
        normals: ti.template(),
        uvs: ti.template(),
        indices: ti.template(),
        has_normals: ti.i32,
        has_uvs: ti.i32,
        ray: Ray3,
        t: real,
        triangle: ti.i32,
        b1: real,
        b2: real,
    ) -> Hit3:
        """Surface information at the mesh hit found by :func:`mesh_hit`."""
        uv_a = vec2(0.0, 0.0)
        uv_b = vec2(1.0, 0.0)
        uv_c = vec2(0.0, 1.0)
        if has_uvs != 0:
            uv_a = load_uv(uvs, indices, triangle, 0)
            uv_b = load_uv(uvs, indices, triangle, 1)
            uv_c = load_uv(uvs, indices, triangle, 2)
        return triangle_surface(
            load_vertex(positions, indices, triangle, 0),
            load_vertex(positions, indices, triangle, 1),
            load_vertex(positions, indices, triangle, 2),
            load_vertex(normals, indices, triangle, 0),
            load_vertex(normals, indices, triangle, 1),
            load_vertex(normals, indices, triangle, 2),
            uv_a,
            uv_b,
            uv_c,
            has_normals,
            ray,
            t,
            b1,
            b2,
            triangle,
        )

    @ti.func
    def mesh_sample(
        positions: ti.template(),
        indices: ti.template(),
        cdf: ti.template(),
        count: ti.i32,
        area: real,
        u1: real,
        u2: real,
    ) -> Sample3:
        """Pick a triangle by area, then sample it uniformly."""
        low = 0
        high = count - 1
        while low < high:
            middle = (low + high) // 2
            if cdf[middle] <= u1:
                low = middle + 1
            else:
                high = middle
        lower = ti.cast(0.0, real)
        if low > 0:
            lower = cdf[low - 1]
        # Reuse u1 inside the chosen triangle's slice of the table.
        # A slice can be empty when a tiny area rounds away in the table.
        width = cdf[low] - lower
        remapped = ti.cast(0.0, real)
        if width > 0.0:
            remapped = tm.clamp((u1 - lower) / width, 0.0, 1.0)
        return triangle_sample(
            load_vertex(positions, indices, low, 0),
            load_vertex(positions, indices, low, 1),
            load_vertex(positions, indices, low, 2),
            remapped,
            u2,
            1.0 / area,
        )

    device.mesh_hit = mesh_hit
    device.mesh_surface = mesh_surface
    device.mesh_sample = mesh_sample


# =============================================================================
# Host Triangle Mesh
# =============================================================================


@dataclass(frozen=True, eq=False)
class TriangleMesh3(Shape3):
    """An indexed triangle mesh.

    Attributes:
        positions: ``(V, 3)`` vertex positions.
        indices: ``(T, 3)`` vertex indices of each triangle.
        normals: Optional ``(V, 3)`` vertex normals.
        texture_coordinates: Optional ``(V, 2)`` vertex texture coordinates.

    Raises:
        ValueError: If the mesh has no triangles, an index is out of range,
            vertex data has the wrong shape, or a triangle is degenerate.
            Triangle errors name the offending triangle index.
    """

    precision: ClassVar[Precision] = F32
    kind: ClassVar[ShapeKind] = ShapeKind.TRIANGLE_MESH

    positions: npt.NDArray[np.floating]
    indices: npt.NDArray[np.int32]
    normals: Optional[npt.NDArray[np.floating]] = None
    texture_coordinates: Optional[npt.NDArray[np.floating]] = None

    def __post_init__(self):
        precision = self.precision
        positions = as_array(self.positions, precision, "positions", shape=(-1, 3))
        indices = np.array(self.indices, dtype=np.int64, copy=True)
        if indices.ndim != 2 or indices.shape[1] != 3 or indices.shape[0] == 0:
            raise ValueError(f"indices must have shape (T, 3) with T > 0, got {indices.shape}")
        for triangle, row in enumerate(indices):
            if (row < 0).any() or (row >= positions.shape[0]).any():
                raise ValueError(f"triangle {triangle} has vertex indices {row.tolist()} outside [0, {positions.shape[0]})")
        indices = indices.astype(np.int32)
        indices.setflags(write=False)
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "indices", indices)

        vertex_count = positions.shape[0]
        if self.normals is not None:
            normals = as_array(self.normals, precision, "normals", shape=(vertex_count, 3))
            object.__setattr__(self, "normals", normals)
        if self.texture_coordinates is not None:
            uvs = as_array(self.texture_coordinates, precision, "texture_coordinates", shape=(vertex_count, 2))
            object.__setattr__(self, "texture_coordinates", uvs)

        areas = self.triangle_areas()
        degenerate = np.flatnonzero(areas == 0.0)
        if degenerate.size:
            raise ValueError(f"triangle {int(degenerate[0])} is degenerate")

    @classmethod
    def from_triangles(cls, triangles: Sequence[Triangle3]) -> "TriangleMesh3":
        """Build a mesh owning copies of the vertex data of triangles.

        If some triangles carry vertex normals or texture coordinates, the
        others get their geometric normal or the default texture
        coordinates, so every triangle shades as it did on its own.

        Raises:
            ValueError: If no triangles are given.
        """
        triangles = list(triangles)
        if not triangles:
            raise ValueError("from_triangles requires at least one triangle")
        positions = np.concatenate([triangle.vertices for triangle in triangles])
        indices = np.arange(3 * len(triangles)).reshape(-1, 3)

        normals = None
        if any(triangle.normals is not None for triangle in triangles):
            normals = np.concatenate(
                [
                    triangle.normals if triangle.normals is not None else np.tile(triangle.geometric_normal, (3, 1))
                    for triangle in triangles
                ]
            )
        uvs = None
        if any(triangle.texture_coordinates is not None for triangle in triangles):
            uvs = np.concatenate(
                [
                    triangle.texture_coordinates
                    if triangle.texture_coordinates is not None
                    else np.array(DEFAULT_TEXTURE_COORDINATES)
                    for triangle in triangles
                ]
            )
        return cls(positions=positions, indices=indices, normals=normals, texture_coordinates=uvs)

    @property
    def triangle_count(self) -> int:
        return int(self.indices.shape[0])

    def triangle(self, index: int) -> Triangle3:
        """A standalone copy of one triangle with its vertex data."""
        if not 0 <= index < self.triangle_count:
            raise ValueError(f"triangle index {index} is outside [0, {self.triangle_count})")
        corners = self.indices[index]
        return _TRIANGLE_TYPES[self.precision.name](
            a=self.positions[corners[0]],
            b=self.positions[corners[1]],
            c=self.positions[corners[2]],
            normals=None if self.normals is None else self.normals[corners],
            texture_coordinates=None if self.texture_coordinates is None else self.texture_coordinates[corners],
        )

    def triangle_areas(self) -> npt.NDArray[np.float64]:
        corners = self.positions.astype(np.float64)[self.indices]
        cross = np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0])
        return 0.5 * np.linalg.norm(cross, axis=1)

    def compute_bounding_volume(self) -> BoundingBox3:
        """Union of the triangle boxes: the box around every referenced vertex."""
        return bounding_box_type(self.precision).from_points(self.positions[np.unique(self.indices)])

    def surface_area(self) -> float:
        return float(self.triangle_areas().sum())

    def _pack(self) -> ShapeBuffers:
        logger.debug("packing mesh with %d vertices and %d triangles", self.positions.shape[0], self.triangle_count)
        return ShapeBuffers.for_triangles(
            self,
            positions=self.positions,
            indices=self.indices,
            normals=self.normals,
            texture_coordinates=self.texture_coordinates,
            areas=self.triangle_areas(),
        )


class TriangleMesh3F(TriangleMesh3):
    """Single-precision triangle mesh."""

    precision = F32


class TriangleMesh3D(TriangleMesh3):
    """Double-precision triangle mesh."""

    precision = F64

