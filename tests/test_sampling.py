"""Unit tests for the sample generator.

Tests cover:
- Disk, hemisphere, sphere, cone and triangle mappings and their densities
- Stratified and low-discrepancy point sets
- Multiple importance sampling weights
"""

import math

import numpy as np
import pytest
import taichi as ti

from geokernel.core.device import get_device
from geokernel.core.precision import F64
from geokernel.sampling.generator import Distribution, SampleGeneratorD, SampleGeneratorF

GENERATORS = pytest.mark.parametrize("Generator", [SampleGeneratorF, SampleGeneratorD], ids=["f32", "f64"])


def grid(count):
    """A ``count`` x ``count`` grid of canonical pairs inside [0, 1)."""
    values = (np.arange(count) + 0.5) / count
    u1, u2 = np.meshgrid(values, values)
    return u1.ravel(), u2.ravel()


class TestDiskSampling:
    """Tests for the disk mappings."""

    @GENERATORS
    def test_concentric_disk_center_and_edge(self, Generator, atol):
        np.testing.assert_allclose(Generator.concentric_disk(0.5, 0.5), [0, 0], atol=atol(Generator))
        np.testing.assert_allclose(Generator.concentric_disk(1.0, 0.5), [1, 0], atol=atol(Generator))

    @GENERATORS
    @pytest.mark.parametrize("method", ["concentric_disk", "uniform_disk"])
    def test_points_inside_unit_disk(self, Generator, method):
        u1, u2 = grid(16)
        points = getattr(Generator, method)(u1, u2)
        assert points.shape == (256, 2)
        assert (np.linalg.norm(points, axis=1) <= 1.0 + 1e-6).all()

    @GENERATORS
    def test_disk_pdf(self, Generator):
        assert Generator.disk_pdf() == pytest.approx(1.0 / math.pi)


class TestDirectionSampling:
    """Tests for hemisphere, sphere and cone mappings."""

    @GENERATORS
    @pytest.mark.parametrize(
        "distribution",
        [Distribution.HEMISPHERE_COSINE, Distribution.HEMISPHERE_POWER_COSINE, Distribution.HEMISPHERE_UNIFORM],
    )
    def test_hemisphere_samples_are_unit_and_upper(self, Generator, distribution):
        u1, u2 = grid(12)
        samples, pdfs = Generator.sample(distribution, u1, u2, parameter=20.0)
        np.testing.assert_allclose(np.linalg.norm(samples, axis=-1), 1.0, atol=1e-5)
        assert (samples[..., 2] >= 0.0).all()
        assert (pdfs > 0.0).all()

    @GENERATORS
    def test_cosine_pdf_matches_sample(self, Generator, atol):
        u1, u2 = grid(8)
        samples, pdfs = Generator.sample(Distribution.HEMISPHERE_COSINE, u1, u2)
        np.testing.assert_allclose(pdfs, samples[..., 2] / math.pi, atol=atol(Generator))
        np.testing.assert_allclose(
            Generator.hemisphere_cosine_pdf(samples[..., 2]), pdfs, atol=atol(Generator)
        )

    @GENERATORS
    def test_power_cosine_pdf(self, Generator):
        pdf = Generator.hemisphere_power_cosine_pdf(1.0, exponent=4.0)
        assert float(pdf) == pytest.approx(5.0 / (2.0 * math.pi), rel=1e-6)
        assert float(Generator.hemisphere_power_cosine_pdf(-0.5)) == 0.0

    @GENERATORS
    def test_sphere_uniform_covers_both_poles(self, Generator, atol):
        top = Generator.sphere_uniform(0.0, 0.3)
        bottom = Generator.sphere_uniform(1.0, 0.3)
        np.testing.assert_allclose(top, [0, 0, 1], atol=atol(Generator))
        np.testing.assert_allclose(bottom, [0, 0, -1], atol=atol(Generator))
        assert Generator.sphere_uniform_pdf() == pytest.approx(1.0 / (4.0 * math.pi))
        assert Generator.hemisphere_uniform_pdf() == pytest.approx(1.0 / (2.0 * math.pi))

    def test_double_precision_sphere_equator(self):
        # z = 0, phi = pi / 2: cos(phi) vanishes only with a 64-bit pi.
        sample = SampleGeneratorD.sphere_uniform(0.5, 0.25)
        assert abs(sample[0]) < 1e-12
        assert abs(sample[1] - 1.0) < 1e-12

    @GENERATORS
    def test_cone_samples_stay_inside(self, Generator):
        cos_theta_max = math.cos(0.3)
        u1, u2 = grid(10)
        samples = Generator.cone_uniform(u1, u2, cos_theta_max)
        assert (samples[..., 2] >= cos_theta_max - 1e-5).all()
        pdf = Generator.cone_uniform_pdf(cos_theta_max)
        assert float(pdf) == pytest.approx(1.0 / (2.0 * math.pi * (1.0 - cos_theta_max)), rel=1e-4)

    @GENERATORS
    def test_degenerate_cone_pdf_is_zero(self, Generator):
        assert float(Generator.cone_uniform_pdf(1.0)) == 0.0

    @GENERATORS
    def test_cone_parameter_validated(self, Generator):
        with pytest.raises(ValueError):
            Generator.cone_uniform(0.5, 0.5, 2.0)

    @GENERATORS
    def test_canonical_range_validated(self, Generator):
        with pytest.raises(ValueError, match="u1"):
            Generator.hemisphere_cosine(-0.1, 0.5)

    @GENERATORS
    def test_cosine_estimator_is_unbiased(self, Generator):
        """Integrating cos(theta) over the hemisphere with its own pdf gives pi."""
        rng = np.random.default_rng(1)
        uv = Generator.canonical_pairs(rng, 2000)
        samples, pdfs = Generator.sample(Distribution.HEMISPHERE_UNIFORM, uv[:, 0], uv[:, 1])
        estimate = np.mean(samples[:, 2] / pdfs)
        assert estimate == pytest.approx(math.pi, rel=0.05)


class TestTriangleSampling:
    """Tests for uniform barycentric coordinates."""

    @GENERATORS
    def test_barycentrics_sum_to_one(self, Generator):
        u1, u2 = grid(10)
        weights = Generator.triangle_uniform(u1, u2)
        np.testing.assert_allclose(weights.sum(axis=-1), 1.0, atol=1e-6)
        assert (weights >= -1e-6).all()

    @GENERATORS
    def test_corner(self, Generator):
        np.testing.assert_allclose(Generator.triangle_uniform(0.0, 0.0), [1, 0, 0])


class TestPointSets:
    """Tests for stratified, Hammersley and Halton points."""

    @GENERATORS
    def test_stratified_one_point_per_cell(self, Generator):
        nx, ny = 4, 3
        jitter = Generator.canonical_pairs(np.random.default_rng(2), nx * ny)
        points = Generator.stratified(nx, ny, jitter)
        cells = np.floor(points * [nx, ny]).astype(int)
        assert len({tuple(cell) for cell in cells}) == nx * ny
        assert (points < 1.0).all()

    @GENERATORS
    def test_stratified_stays_below_one(self, Generator):
        points = Generator.stratified(1, 1, [(1.0, 1.0)])
        assert (points < 1.0).all()
        assert points.max() == pytest.approx(1.0, abs=1e-6)

    @GENERATORS
    def test_stratified_offset(self, Generator):
        points = Generator.stratified(2, 2, [(0.5, 0.5)], offset=3)
        np.testing.assert_allclose(points, [[0.75, 0.75]])

    @GENERATORS
    def test_stratified_out_of_grid_rejected(self, Generator):
        with pytest.raises(ValueError):
            Generator.stratified(2, 2, np.zeros((5, 2)))

    @GENERATORS
    def test_radical_inverse(self, Generator):
        np.testing.assert_allclose(Generator.radical_inverse(2, [0, 1, 2, 3, 4]), [0, 0.5, 0.25, 0.75, 0.125])
        np.testing.assert_allclose(Generator.radical_inverse(3, [1, 2, 3]), [1 / 3, 2 / 3, 1 / 9], rtol=1e-6)

    @GENERATORS
    def test_radical_inverse_base_validated(self, Generator):
        with pytest.raises(ValueError):
            Generator.radical_inverse(5, [1])

    @GENERATORS
    def test_hammersley(self, Generator):
        points = Generator.hammersley(4)
        np.testing.assert_allclose(points, [[0, 0], [0.25, 0.5], [0.5, 0.25], [0.75, 0.75]])

    @GENERATORS
    def test_halton_is_deterministic(self, Generator):
        first = Generator.halton(np.arange(32))
        second = Generator.halton(np.arange(32))
        np.testing.assert_array_equal(first, second)
        assert ((first >= 0.0) & (first < 1.0)).all()


class TestHeuristics:
    """Tests for multiple importance sampling weights."""

    def test_balance_heuristic(self):
        assert SampleGeneratorD.balance_heuristic(1.0, 3.0) == pytest.approx(0.25)
        assert SampleGeneratorD.balance_heuristic(0.0, 0.0) == 0.0

    def test_power_heuristic(self):
        assert SampleGeneratorD.power_heuristic(1.0, 3.0) == pytest.approx(0.1)
        weights = SampleGeneratorD.power_heuristic(np.array([2.0, 1.0]), np.array([1.0, 2.0]))
        np.testing.assert_allclose(weights, [0.8, 0.2])

    def test_canonical_pairs_below_one(self):
        pairs = SampleGeneratorF.canonical_pairs(np.random.default_rng(0), 1000)
        assert pairs.dtype == np.float32
        assert ((pairs >= 0.0) & (pairs < 1.0)).all()


class TestDeviceSampling:
    """Tests for the device sampling functions used by shapes."""

    def test_sample_sphere_uniform_on_device(self):
        device = get_device(F64)
        sample_sphere_uniform = device.sample_sphere_uniform
        result = ti.Vector.field(3, dtype=ti.f64, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = sample_sphere_uniform(0.5, 0.25)

        test_kernel()
        r = result[None]
        # z = 1 - 2 u1 = 0, phi = 2 pi u2 = pi / 2.
        assert abs(r[0]) < 1e-12
        assert abs(r[1] - 1.0) < 1e-12
        assert abs(r[2]) < 1e-12
