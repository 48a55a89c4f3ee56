"""Unit tests for the plane shape."""

import math

import numpy as np
import pytest

from geokernel.core.ray import Ray3D, Ray3F
from geokernel.geometry.plane import Plane3D, Plane3F

PLANES = pytest.mark.parametrize("Ray, Plane", [(Ray3F, Plane3F), (Ray3D, Plane3D)], ids=["f32", "f64"])


class TestPlaneConstruction:
    """Tests for plane construction and measures."""

    @PLANES
    def test_normal_is_normalized(self, Ray, Plane, atol):
        plane = Plane(point=(0, 0, 0), normal=(0, 3, 0))
        np.testing.assert_allclose(plane.normal, [0, 1, 0], atol=atol(Plane))

    @PLANES
    def test_zero_normal_rejected(self, Ray, Plane):
        with pytest.raises(ValueError):
            Plane(point=(0, 0, 0), normal=(0, 0, 0))

    @PLANES
    def test_from_points(self, Ray, Plane, atol):
        plane = Plane.from_points((0, 0, 1), (1, 0, 1), (0, 1, 1))
        np.testing.assert_allclose(plane.normal, [0, 0, 1], atol=atol(Plane))
        np.testing.assert_allclose(plane.point, [0, 0, 1], atol=atol(Plane))

    @PLANES
    def test_from_collinear_points_rejected(self, Ray, Plane):
        with pytest.raises(ValueError, match="collinear"):
            Plane.from_points((0, 0, 0), (1, 1, 1), (2, 2, 2))

    @PLANES
    def test_infinite_area(self, Ray, Plane):
        assert Plane(point=(0, 0, 0), normal=(0, 1, 0)).surface_area() == math.inf

    @PLANES
    def test_bounding_volume_axis_aligned(self, Ray, Plane):
        volume = Plane(point=(1, 2, 3), normal=(0, 1, 0)).compute_bounding_volume()
        np.testing.assert_array_equal(volume.minimum, [-np.inf, 2, -np.inf])
        np.testing.assert_array_equal(volume.maximum, [np.inf, 2, np.inf])

    @PLANES
    def test_bounding_volume_oblique(self, Ray, Plane):
        volume = Plane(point=(0, 0, 0), normal=(1, 1, 0)).compute_bounding_volume()
        assert np.isinf(volume.minimum).all()
        assert np.isinf(volume.maximum).all()


class TestPlaneIntersection:
    """Tests for ray-plane intersection."""

    @PLANES
    def test_hit(self, Ray, Plane, atol):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        hit = plane.intersection(Ray(origin=(0, 5, 0), direction=(0, -1, 0)))
        assert hit.t == pytest.approx(5.0, abs=atol(Plane))
        np.testing.assert_allclose(hit.point, [0, 0, 0], atol=atol(Plane))
        np.testing.assert_allclose(hit.normal, [0, 1, 0], atol=atol(Plane))
        assert hit.front_face

    @PLANES
    def test_hit_from_below_is_back_face(self, Ray, Plane, atol):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        hit = plane.intersection(Ray(origin=(2, -3, 1), direction=(0, 1, 0)))
        assert hit.t == pytest.approx(3.0, abs=atol(Plane))
        assert not hit.front_face

    @PLANES
    def test_parallel_ray_misses(self, Ray, Plane):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        assert plane.intersection(Ray(origin=(0, 1, 0), direction=(1, 0, 0))) is None

    @PLANES
    def test_ray_inside_plane_misses(self, Ray, Plane):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        assert plane.intersection_t(Ray(origin=(0, 0, 0), direction=(1, 0, 0))) is None

    @PLANES
    def test_plane_behind_ray(self, Ray, Plane):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        assert plane.intersection_t(Ray(origin=(0, 5, 0), direction=(0, 1, 0))) is None

    @PLANES
    def test_origin_on_plane_is_not_a_hit(self, Ray, Plane):
        """Hits closer than epsilon are self-intersections."""
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        assert plane.intersection_t(Ray(origin=(0, 0, 0), direction=(0, 1, 0))) is None

    @PLANES
    def test_texture_coordinates_follow_basis(self, Ray, Plane, atol):
        plane = Plane(point=(1, 0, 1), normal=(0, 1, 0))
        hit = plane.intersection(Ray(origin=(3, 4, -2), direction=(0, -1, 0)))
        offset = hit.point - plane.point
        expected = [np.dot(offset, hit.basis.u), np.dot(offset, hit.basis.v)]
        np.testing.assert_allclose(hit.texture_coordinates, expected, atol=atol(Plane))
        np.testing.assert_allclose(hit.basis.w, [0, 1, 0], atol=atol(Plane))


class TestPlaneSampling:
    """An infinite plane cannot be sampled uniformly."""

    @PLANES
    def test_sample_is_none(self, Ray, Plane):
        plane = Plane(point=(0, 0, 0), normal=(0, 1, 0))
        assert plane.sample(0.5, 0.5) is None
        assert plane.sample_from((0, 1, 0), 0.5, 0.5) is None

    @PLANES
    def test_sample_batch_has_zero_pdf(self, Ray, Plane):
        _, _, pdfs = Plane(point=(0, 0, 0), normal=(0, 1, 0)).sample_batch([(0.1, 0.2), (0.3, 0.4)])
        np.testing.assert_array_equal(pdfs, [0.0, 0.0])
