"""geokernel: a 3D geometry kernel on Taichi.

Rays, orthonormal bases, bounding volumes, shapes (plane, sphere, triangle,
triangle mesh, rectangular cuboid), surface sampling and coherent noise,
each in a single-precision (``...F``) and a double-precision (``...D``)
variant. Geometric math runs in Taichi kernels compiled once per precision;
call ``ti.init`` before the first query.

Subpackages:
    core: Precision descriptors, device namespaces, rays and bases
    geometry: Bounding volumes, shapes and intersection/sample records
    sampling: Distribution sampling and low-discrepancy sequences
    noise: Perlin and simplex noise with fractal sums
"""

from .core import (
    F32,
    F64,
    OrthonormalBasis33,
    OrthonormalBasis33D,
    OrthonormalBasis33F,
    Precision,
    Ray3,
    Ray3D,
    Ray3F,
    get_device,
)
from .geometry import (
    BoundingBox3,
    BoundingBox3D,
    BoundingBox3F,
    BoundingSphere3,
    BoundingSphere3D,
    BoundingSphere3F,
    BoundingVolume3,
    Intersection3,
    Measure,
    Plane3,
    Plane3D,
    Plane3F,
    RectangularCuboid3,
    RectangularCuboid3D,
    RectangularCuboid3F,
    Shape3,
    ShapeKind,
    Sphere3,
    Sphere3D,
    Sphere3F,
    SurfaceSample3,
    Triangle3,
    Triangle3D,
    Triangle3F,
    TriangleMesh3,
    TriangleMesh3D,
    TriangleMesh3F,
)
from .noise import NoiseAlgorithm, NoiseGenerator, NoiseGeneratorD, NoiseGeneratorF
from .sampling import Distribution, SampleGenerator, SampleGeneratorD, SampleGeneratorF

__version__ = "0.1.0"
