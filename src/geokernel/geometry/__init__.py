"""Bounding volumes and shapes.

Components:
    bounds: Axis-aligned boxes and bounding spheres
    records: Intersection and surface sample results
    shape: Shape base class and device dispatch
    plane, sphere, triangle, mesh, cuboid: The shape variants

Every shape answers the same queries: ``intersection_t``, ``intersection``,
``intersects``, ``compute_bounding_volume``, ``surface_area``, ``sample``,
``sample_from`` and ``pdf_from``. Spheres and cuboids also answer
``contains`` and ``transform``.
"""

from .bounds import (
    BoundingBox3,
    BoundingBox3D,
    BoundingBox3F,
    BoundingSphere3,
    BoundingSphere3D,
    BoundingSphere3F,
    BoundingVolume3,
)
from .cuboid import RectangularCuboid3, RectangularCuboid3D, RectangularCuboid3F
from .mesh import TriangleMesh3, TriangleMesh3D, TriangleMesh3F
from .plane import Plane3, Plane3D, Plane3F
from .records import Intersection3, Measure, SurfaceSample3
from .shape import Shape3, ShapeKind
from .sphere import Sphere3, Sphere3D, Sphere3F
from .triangle import Triangle3, Triangle3D, Triangle3F
