"""Unit tests for the noise generator.

Tests cover:
- Permutation tables (reference and seeded)
- Perlin and simplex base noise
- Fractal, turbulence and fractional Brownian motion sums
- Setting and input validation
"""

import numpy as np
import pytest
import taichi as ti

from geokernel.core.device import get_device
from geokernel.core.precision import F64
from geokernel.noise.generator import (
    PERLIN_PERMUTATION,
    NoiseAlgorithm,
    NoiseGeneratorD,
    NoiseGeneratorF,
)

GENERATORS = pytest.mark.parametrize("Generator", [NoiseGeneratorF, NoiseGeneratorD], ids=["f32", "f64"])
ALGORITHMS = pytest.mark.parametrize("algorithm", list(NoiseAlgorithm), ids=lambda a: a.name.lower())


def random_points(count=200, columns=3, seed=5):
    return np.random.default_rng(seed).uniform(-20.0, 20.0, (count, columns))


class TestPermutation:
    """Tests for the permutation tables."""

    def test_reference_table_is_a_permutation(self):
        np.testing.assert_array_equal(np.sort(PERLIN_PERMUTATION), np.arange(256))
        assert 223 in PERLIN_PERMUTATION
        assert not PERLIN_PERMUTATION.flags.writeable

    @GENERATORS
    def test_default_uses_reference_table_doubled(self, Generator):
        permutation = Generator().permutation
        assert permutation.shape == (512,)
        np.testing.assert_array_equal(permutation[:256], PERLIN_PERMUTATION)
        np.testing.assert_array_equal(permutation[256:], PERLIN_PERMUTATION)
        assert not permutation.flags.writeable

    @GENERATORS
    def test_seeded_table(self, Generator):
        first = Generator(seed=3).permutation
        np.testing.assert_array_equal(np.sort(first[:256]), np.arange(256))
        np.testing.assert_array_equal(first, Generator(seed=3).permutation)
        assert not np.array_equal(first, Generator().permutation)
        assert not np.array_equal(first, Generator(seed=4).permutation)


class TestBaseNoise:
    """Tests for Perlin and simplex noise."""

    @GENERATORS
    def test_perlin_vanishes_on_lattice(self, Generator):
        generator = Generator()
        lattice = np.array([(0, 0, 0), (1, 2, 3), (-4, 7, 11), (300, -2, 5)], dtype=float)
        np.testing.assert_allclose(generator.noise(lattice), 0.0, atol=1e-6)
        assert generator.noise((1.0, 2.0)) == pytest.approx(0.0, abs=1e-6)

    def test_perlin_reference_value(self):
        # Value of Ken Perlin's reference implementation at this point.
        assert NoiseGeneratorD().noise((3.14, 42.0, 7.0)) == pytest.approx(0.136919958784, abs=1e-9)

    @GENERATORS
    @ALGORITHMS
    def test_values_in_range(self, Generator, algorithm):
        generator = Generator()
        for columns in (2, 3):
            values = generator.noise(random_points(columns=columns), algorithm=algorithm)
            assert values.shape == (200,)
            assert ((values >= -1.0) & (values <= 1.0)).all()
            # Coherent noise is not constant.
            assert values.std() > 0.05

    @GENERATORS
    @ALGORITHMS
    def test_deterministic(self, Generator, algorithm):
        points = random_points()
        first = Generator(seed=9).noise(points, algorithm=algorithm)
        second = Generator(seed=9).noise(points, algorithm=algorithm)
        np.testing.assert_array_equal(first, second)

    @GENERATORS
    @ALGORITHMS
    def test_seed_changes_values(self, Generator, algorithm):
        points = random_points()
        first = Generator(seed=1).noise(points, algorithm=algorithm)
        second = Generator(seed=2).noise(points, algorithm=algorithm)
        assert not np.allclose(first, second)

    @GENERATORS
    @ALGORITHMS
    def test_continuity(self, Generator, algorithm):
        generator = Generator()
        points = random_points(count=50)
        delta = generator.noise(points + 1e-3, algorithm=algorithm) - generator.noise(points, algorithm=algorithm)
        assert np.abs(delta).max() < 0.05

    @GENERATORS
    def test_single_point_returns_float(self, Generator):
        value = Generator().noise((0.3, 0.7, 0.1), algorithm=NoiseAlgorithm.SIMPLEX)
        assert isinstance(value, float)

    @GENERATORS
    def test_bad_point_shape_rejected(self, Generator):
        with pytest.raises(ValueError, match="points"):
            Generator().noise(np.zeros((4, 4)))


class TestFractalNoise:
    """Tests for the octave sums."""

    @GENERATORS
    def test_single_octave_fractal_is_scaled_noise(self, Generator, atol):
        generator = Generator(octaves=1, amplitude=0.75, frequency=0.5)
        points = random_points(count=20)
        expected = 0.75 * generator.noise(points * 0.5)
        np.testing.assert_allclose(generator.fractal(points), expected, atol=atol(Generator))

    @GENERATORS
    def test_octaves_scale_by_gain_and_lacunarity(self, Generator, atol):
        generator = Generator(octaves=2, amplitude=1.0, frequency=0.25, gain=0.5, lacunarity=2.0)
        points = random_points(count=20, columns=2)
        expected = generator.noise(points * 0.25) + 0.5 * generator.noise(points * 0.5)
        np.testing.assert_allclose(generator.fractal(points), expected, atol=atol(Generator))

    @GENERATORS
    @ALGORITHMS
    def test_turbulence_is_non_negative(self, Generator, algorithm):
        values = Generator(octaves=4).turbulence(random_points(), algorithm=algorithm)
        assert (values >= 0.0).all()

    @GENERATORS
    @ALGORITHMS
    def test_fbm_within_bounds(self, Generator, algorithm):
        generator = Generator(octaves=5, frequency=1.0)
        values = generator.fractional_brownian_motion(random_points(), 2.0, 6.0, algorithm=algorithm)
        assert ((values >= 2.0 - 1e-5) & (values <= 6.0 + 1e-5)).all()

    @GENERATORS
    def test_fbm_single_octave_remaps_noise(self, Generator, atol):
        generator = Generator(octaves=1, frequency=1.0)
        points = random_points(count=20)
        expected = generator.noise(points) * 5.0 + 5.0
        np.testing.assert_allclose(
            generator.fractional_brownian_motion(points, 0.0, 10.0), expected, atol=10 * atol(Generator)
        )

    @GENERATORS
    def test_fbm_bounds_validated(self, Generator):
        with pytest.raises(ValueError, match="exceeds"):
            Generator().fractional_brownian_motion((0.0, 0.0, 0.0), 1.0, -1.0)


class TestSettings:
    """Tests for generator settings validation."""

    @GENERATORS
    def test_defaults(self, Generator):
        generator = Generator()
        assert generator.octaves == 2
        assert generator.gain == pytest.approx(0.5)
        assert generator.lacunarity == pytest.approx(2.0)

    @GENERATORS
    @pytest.mark.parametrize("settings", [{"frequency": 0.0}, {"frequency": -1.0}, {"octaves": 0}])
    def test_invalid_settings_rejected(self, Generator, settings):
        with pytest.raises(ValueError):
            Generator(**settings)

    @GENERATORS
    def test_nan_setting_rejected(self, Generator):
        with pytest.raises(ValueError, match="amplitude"):
            Generator(amplitude=float("nan"))


class TestDeviceNoise:
    """Tests for the device noise functions."""

    def test_perlin_on_device_matches_host(self):
        device = get_device(F64)
        perlin_noise = device.perlin_noise
        vec3 = device.vec3
        generator = NoiseGeneratorD()
        permutation = ti.field(dtype=ti.i32, shape=512)
        permutation.from_numpy(np.array(generator.permutation))
        result = ti.field(dtype=ti.f64, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = perlin_noise(permutation, vec3(0.5, 1.25, -2.75))

        test_kernel()
        assert result[None] == pytest.approx(generator.noise((0.5, 1.25, -2.75)), abs=1e-12)
