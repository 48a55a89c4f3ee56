"""Unit tests for the triangle shape.

Tests cover:
- Moller-Trumbore hits, misses and edge cases
- Barycentric weights and interpolated vertex data
- Sampling
"""

import math

import numpy as np
import pytest

from geokernel.core.ray import Ray3D, Ray3F
from geokernel.geometry.bounds import BoundingBox3
from geokernel.geometry.records import Measure
from geokernel.geometry.triangle import Triangle3D, Triangle3F

TRIANGLES = pytest.mark.parametrize(
    "Ray, Triangle", [(Ray3F, Triangle3F), (Ray3D, Triangle3D)], ids=["f32", "f64"]
)


def unit_triangle(Triangle, **kwargs):
    return Triangle(a=(0, 0, 0), b=(1, 0, 0), c=(0, 1, 0), **kwargs)


class TestTriangleConstruction:
    """Tests for triangle construction and measures."""

    @TRIANGLES
    def test_degenerate_rejected(self, Ray, Triangle):
        with pytest.raises(ValueError, match="degenerate"):
            Triangle(a=(0, 0, 0), b=(1, 1, 1), c=(2, 2, 2))

    @TRIANGLES
    def test_bad_normals_shape_rejected(self, Ray, Triangle):
        with pytest.raises(ValueError, match="normals"):
            unit_triangle(Triangle, normals=[(0, 0, 1), (0, 0, 1)])

    @TRIANGLES
    def test_measures(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        assert triangle.surface_area() == pytest.approx(0.5)
        np.testing.assert_allclose(triangle.geometric_normal, [0, 0, 1])
        volume = triangle.compute_bounding_volume()
        assert isinstance(volume, BoundingBox3)
        np.testing.assert_array_equal(volume.minimum, [0, 0, 0])
        np.testing.assert_array_equal(volume.maximum, [1, 1, 0])


class TestTriangleIntersection:
    """Tests for ray-triangle intersection."""

    @TRIANGLES
    def test_hit_with_barycentrics(self, Ray, Triangle, atol):
        triangle = unit_triangle(Triangle)
        hit = triangle.intersection(Ray(origin=(0.25, 0.25, 1), direction=(0, 0, -1)))
        assert hit.t == pytest.approx(1.0, abs=atol(Triangle))
        np.testing.assert_allclose(hit.barycentric, [0.5, 0.25, 0.25], atol=atol(Triangle))
        np.testing.assert_allclose(hit.point, [0.25, 0.25, 0], atol=atol(Triangle))
        np.testing.assert_allclose(hit.normal, [0, 0, 1], atol=atol(Triangle))
        assert hit.front_face
        assert hit.primitive_index is None

    @TRIANGLES
    def test_back_face_hit(self, Ray, Triangle):
        hit = unit_triangle(Triangle).intersection(Ray(origin=(0.2, 0.2, -1), direction=(0, 0, 1)))
        assert hit is not None
        assert not hit.front_face

    @TRIANGLES
    def test_miss_outside(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        assert triangle.intersection_t(Ray(origin=(0.8, 0.8, 1), direction=(0, 0, -1))) is None
        assert triangle.intersection_t(Ray(origin=(-0.1, 0.5, 1), direction=(0, 0, -1))) is None

    @TRIANGLES
    def test_parallel_ray_misses(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        assert triangle.intersection_t(Ray(origin=(-1, 0.25, 0), direction=(1, 0, 0))) is None

    @TRIANGLES
    def test_vertex_hit(self, Ray, Triangle, atol):
        hit = unit_triangle(Triangle).intersection(Ray(origin=(1, 0, 2), direction=(0, 0, -1)))
        assert hit is not None
        np.testing.assert_allclose(hit.barycentric, [0, 1, 0], atol=atol(Triangle))

    @TRIANGLES
    def test_range(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        assert triangle.intersection_t(Ray(origin=(0.25, 0.25, 1), direction=(0, 0, -1), t_max=0.5)) is None

    @TRIANGLES
    def test_default_texture_coordinates(self, Ray, Triangle, atol):
        hit = unit_triangle(Triangle).intersection(Ray(origin=(0.25, 0.25, 1), direction=(0, 0, -1)))
        # (0, 0), (1, 0), (0, 1) weighted by (0.5, 0.25, 0.25).
        np.testing.assert_allclose(hit.texture_coordinates, [0.25, 0.25], atol=atol(Triangle))

    @TRIANGLES
    def test_interpolated_texture_coordinates(self, Ray, Triangle, atol):
        triangle = unit_triangle(Triangle, texture_coordinates=[(0.5, 0.5), (1, 0.5), (0.5, 1)])
        hit = triangle.intersection(Ray(origin=(0.25, 0.25, 1), direction=(0, 0, -1)))
        np.testing.assert_allclose(hit.texture_coordinates, [0.625, 0.625], atol=atol(Triangle))

    @TRIANGLES
    def test_shading_normal_at_vertex_is_exact(self, Ray, Triangle, atol):
        tilted = np.array([0.0, 0.6, 0.8])
        triangle = unit_triangle(Triangle, normals=[tilted, (0, 0, 1), (0, 0, 1)])
        hit = triangle.intersection(Ray(origin=(1e-3, 1e-3, 1), direction=(0, 0, -1)))
        np.testing.assert_allclose(hit.shading_normal, tilted, atol=1e-2)
        np.testing.assert_allclose(hit.normal, [0, 0, 1], atol=atol(Triangle))
        np.testing.assert_allclose(hit.basis.w, hit.shading_normal, atol=atol(Triangle))

    @TRIANGLES
    def test_interpolated_normal_is_normalized(self, Ray, Triangle, atol):
        triangle = unit_triangle(Triangle, normals=[(1, 0, 0), (0, 1, 0), (0, 0, 1)])
        hit = triangle.intersection(Ray(origin=(1 / 3, 1 / 3, 1), direction=(0, 0, -1)))
        np.testing.assert_allclose(hit.shading_normal, np.ones(3) / math.sqrt(3.0), atol=atol(Triangle))


class TestTriangleSampling:
    """Tests for uniform triangle sampling."""

    @TRIANGLES
    def test_samples_inside_with_area_pdf(self, Ray, Triangle):
        triangle = Triangle(a=(0, 0, 0), b=(2, 0, 0), c=(0, 2, 0))
        points, normals, pdfs = triangle.sample_batch(np.random.default_rng(11).random((50, 2)))
        assert (points[:, 0] >= -1e-6).all()
        assert (points[:, 1] >= -1e-6).all()
        assert (points[:, 0] + points[:, 1] <= 2.0 + 1e-5).all()
        np.testing.assert_allclose(points[:, 2], 0.0, atol=1e-6)
        np.testing.assert_allclose(normals, np.tile([0, 0, 1], (50, 1)), atol=1e-6)
        np.testing.assert_allclose(pdfs, 0.5, rtol=1e-6)

    @TRIANGLES
    def test_sample_from_converts_to_solid_angle(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        sample = triangle.sample_from((0, 0, 1), 0.0, 0.0)
        # u1 = 0 maps to vertex a, straight below the reference point.
        np.testing.assert_allclose(sample.point, [0, 0, 0], atol=1e-6)
        assert sample.measure is Measure.SOLID_ANGLE
        assert sample.pdf == pytest.approx(2.0, rel=1e-5)

    @TRIANGLES
    def test_sample_from_edge_on_is_none(self, Ray, Triangle):
        triangle = unit_triangle(Triangle)
        assert triangle.sample_from((-1, 0, 0), 0.0, 0.0) is None
