"""Unit tests for the ray module.

Tests cover:
- Ray construction, normalization and validation
- point_at, with_range and transform
- Batch packing
- The device Ray3 record and ray_at function
"""

import math

import numpy as np
import pytest
import taichi as ti

from geokernel.core.device import get_device
from geokernel.core.precision import F32, F64
from geokernel.core.ray import RAY_COLUMNS, Ray3D, Ray3F, pack_rays

RAYS = pytest.mark.parametrize("Ray", [Ray3F, Ray3D], ids=["f32", "f64"])


class TestRayConstruction:
    """Tests for host ray construction."""

    @RAYS
    def test_direction_is_normalized(self, Ray, atol):
        ray = Ray(origin=(1.0, 2.0, 3.0), direction=(0.0, 0.0, -2.0))
        np.testing.assert_allclose(ray.direction, [0.0, 0.0, -1.0], atol=atol(Ray))
        assert ray.direction.dtype == Ray.precision.dtype

    @RAYS
    def test_default_range(self, Ray):
        ray = Ray(origin=(0, 0, 0), direction=(1, 0, 0))
        assert ray.t_min == 0.0
        assert ray.t_max == math.inf

    @RAYS
    def test_zero_direction_rejected(self, Ray):
        with pytest.raises(ValueError, match="zero-length"):
            Ray(origin=(0, 0, 0), direction=(0, 0, 0))

    @RAYS
    def test_nan_origin_rejected(self, Ray):
        with pytest.raises(ValueError):
            Ray(origin=(np.nan, 0, 0), direction=(1, 0, 0))

    @RAYS
    def test_inverted_range_rejected(self, Ray):
        with pytest.raises(ValueError, match="greater than"):
            Ray(origin=(0, 0, 0), direction=(1, 0, 0), t_min=2.0, t_max=1.0)

    @RAYS
    def test_negative_t_min_rejected(self, Ray):
        with pytest.raises(ValueError, match="negative"):
            Ray(origin=(0, 0, 0), direction=(1, 0, 0), t_min=-1.0)

    @RAYS
    def test_rays_are_immutable(self, Ray):
        ray = Ray(origin=(0, 0, 0), direction=(1, 0, 0))
        with pytest.raises(AttributeError):
            ray.t_max = 5.0
        with pytest.raises(ValueError):
            ray.origin[0] = 1.0


class TestRayOperations:
    """Tests for point_at, with_range and transform."""

    @RAYS
    def test_point_at(self, Ray, atol):
        ray = Ray(origin=(1.0, 0.0, 0.0), direction=(0.0, 1.0, 0.0))
        np.testing.assert_allclose(ray.point_at(5.0), [1.0, 5.0, 0.0], atol=atol(Ray))

    @RAYS
    def test_point_at_negative_t(self, Ray, atol):
        ray = Ray(origin=(0.0, 0.0, 0.0), direction=(1.0, 0.0, 0.0))
        np.testing.assert_allclose(ray.point_at(-2.0), [-2.0, 0.0, 0.0], atol=atol(Ray))

    @RAYS
    def test_with_range_keeps_geometry(self, Ray):
        ray = Ray(origin=(1, 2, 3), direction=(0, 1, 0))
        ranged = ray.with_range(1.0, 10.0)
        assert type(ranged) is Ray
        assert ranged.t_min == 1.0
        assert ranged.t_max == 10.0
        np.testing.assert_array_equal(ranged.origin, ray.origin)

    @RAYS
    def test_transform_translation(self, Ray, atol):
        matrix = np.eye(4)
        matrix[:3, 3] = (1.0, 2.0, 3.0)
        ray = Ray(origin=(0, 0, 0), direction=(1, 0, 0), t_max=4.0).transform(matrix)
        np.testing.assert_allclose(ray.origin, [1.0, 2.0, 3.0], atol=atol(Ray))
        np.testing.assert_allclose(ray.direction, [1.0, 0.0, 0.0], atol=atol(Ray))
        assert ray.t_max == pytest.approx(4.0)

    @RAYS
    def test_transform_scale_rescales_range(self, Ray, atol):
        matrix = np.diag([2.0, 2.0, 2.0, 1.0])
        ray = Ray(origin=(1, 0, 0), direction=(0, 1, 0), t_min=1.0, t_max=3.0)
        transformed = ray.transform(matrix)
        # The end points of the range map onto the transformed end points.
        np.testing.assert_allclose(transformed.point_at(transformed.t_max), [2.0, 6.0, 0.0], atol=atol(Ray))
        assert transformed.t_min == pytest.approx(2.0)

    @RAYS
    def test_packed_layout(self, Ray):
        ray = Ray(origin=(1, 2, 3), direction=(0, 0, 1), t_min=0.5, t_max=7.0)
        packed = ray.packed()
        assert packed.shape == (RAY_COLUMNS,)
        np.testing.assert_array_equal(packed, [1, 2, 3, 0, 0, 1, 0.5, 7.0])


class TestPackRays:
    """Tests for batch ray packing."""

    def test_normalizes_and_broadcasts_range(self):
        packed = pack_rays([(0, 0, 0), (1, 1, 1)], [(2, 0, 0), (0, 0, 3)], F64, t_max=5.0)
        assert packed.shape == (2, RAY_COLUMNS)
        np.testing.assert_allclose(packed[:, 3:6], [[1, 0, 0], [0, 0, 1]])
        np.testing.assert_array_equal(packed[:, 7], [5.0, 5.0])

    def test_zero_direction_kept_as_zero(self):
        packed = pack_rays([(0, 0, 0)], [(0, 0, 0)], F32)
        np.testing.assert_array_equal(packed[0, 3:6], [0, 0, 0])

    def test_mismatched_shapes_rejected(self):
        with pytest.raises(ValueError):
            pack_rays([(0, 0, 0)], [(1, 0, 0), (0, 1, 0)], F32)


class TestDeviceRay:
    """Tests for the device Ray3 record and ray_at."""

    @pytest.mark.parametrize("precision", [F32, F64], ids=["f32", "f64"])
    def test_ray_at_positive_t(self, precision):
        """Test ray_at computes the point along the ray."""
        device = get_device(precision)
        Ray3 = device.Ray3
        vec3 = device.vec3
        ray_at = device.ray_at
        result = ti.Vector.field(3, dtype=precision.real, shape=())

        @ti.kernel
        def test_kernel():
            ray = Ray3(origin=vec3(1.0, 0.0, 0.0), direction=vec3(0.0, 1.0, 0.0), t_min=0.0, t_max=1e30)
            result[None] = ray_at(ray, 5.0)

        test_kernel()
        r = result[None]
        assert abs(r[0] - 1.0) < 1e-6
        assert abs(r[1] - 5.0) < 1e-6
        assert abs(r[2]) < 1e-6

    def test_load_ray_reads_packed_row(self):
        """Test load_ray unpacks every column of a packed ray."""
        device = get_device(F64)
        load_ray = device.load_ray
        rays = pack_rays([(1.0, 2.0, 3.0)], [(0.0, 0.0, 1.0)], F64, t_min=0.25, t_max=9.0)
        out = np.zeros(RAY_COLUMNS)

        @ti.kernel
        def test_kernel(rays: ti.types.ndarray(), out: ti.types.ndarray()):
            for i in range(rays.shape[0]):
                ray = load_ray(rays, i)
                for k in ti.static(range(3)):
                    out[k] = ray.origin[k]
                    out[3 + k] = ray.direction[k]
                out[6] = ray.t_min
                out[7] = ray.t_max

        test_kernel(rays, out)
        np.testing.assert_array_equal(out, rays[0])
