"""Coherent noise: improved Perlin noise and simplex noise with fractal sums.

A :class:`NoiseGenerator` owns a permutation table of 0..255, doubled to 512
entries so lattice hashes never wrap, plus the same table reduced modulo 12
for simplex gradient selection. Without a seed the table is Ken Perlin's
reference permutation; with a seed it is a shuffle drawn from
``numpy.random.default_rng(seed)``. Tables are read-only once built and a
generator has no other state, so one generator can be shared freely.

Algorithms:
    PERLIN: Improved gradient noise over 3D points (2D points use z = 0).
    SIMPLEX: Simplex noise over 2D or 3D points.

Operations:
    noise: The base noise, clamped to [-1, 1].
    fractal: Sum of ``octaves`` layers, amplitude scaled by ``gain`` and
        frequency by ``lacunarity`` per layer.
    turbulence: Like fractal, summing absolute values.
    fractional_brownian_motion: Octave sum normalized by the total
        amplitude and remapped from [-1, 1] to [minimum, maximum].

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.noise.generator import NoiseAlgorithm, NoiseGeneratorD
    >>> generator = NoiseGeneratorD()
    >>> generator.noise((1.0, 2.0, 3.0))
    0.0
    >>> values = generator.fractal([(0.5, 0.5), (0.25, 0.75)], algorithm=NoiseAlgorithm.SIMPLEX)
"""

from dataclasses import dataclass, field
from enum import IntEnum
from types import SimpleNamespace
from typing import ClassVar, Optional, Union

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from geokernel.core.device import get_device
from geokernel.core.precision import F32, F64, Precision, as_array, as_scalar

# Ken Perlin's reference permutation from "Improving Noise" (2002).
PERLIN_PERMUTATION = np.array(
    [
        151, 160, 137, 91, 90, 15, 131, 13, 201, 95, 96, 53, 194, 233, 7, 225,
        140, 36, 103, 30, 69, 142, 8, 99, 37, 240, 21, 10, 23, 190, 6, 148,
        247, 120, 234, 75, 0, 26, 197, 62, 94, 252, 219, 203, 117, 35, 11, 32,
        57, 177, 33, 88, 237, 149, 56, 87, 174, 20, 125, 136, 171, 168, 68, 175,
        74, 165, 71, 134, 139, 48, 27, 166, 77, 146, 158, 231, 83, 111, 229, 122,
        60, 211, 133, 230, 220, 105, 92, 41, 55, 46, 245, 40, 244, 102, 143, 54,
        65, 25, 63, 161, 1, 216, 80, 73, 209, 76, 132, 187, 208, 89, 18, 169,
        200, 196, 135, 130, 116, 188, 159, 86, 164, 100, 109, 198, 173, 186, 3, 64,
        52, 217, 226, 250, 124, 123, 5, 202, 38, 147, 118, 126, 255, 82, 85, 212,
        207, 206, 59, 227, 47, 16, 58, 17, 182, 189, 28, 42, 223, 183, 170, 213,
        119, 248, 152, 2, 44, 154, 163, 70, 221, 153, 101, 155, 167, 43, 172, 9,
        129, 22, 39, 253, 19, 98, 108, 110, 79, 113, 224, 232, 178, 185, 112, 104,
        218, 246, 97, 228, 251, 34, 242, 193, 238, 210, 144, 12, 191, 179, 162, 241,
        81, 51, 145, 235, 249, 14, 239, 107, 49, 192, 214, 31, 181, 199, 106, 157,
        184, 84, 204, 176, 115, 121, 50, 45, 127, 4, 150, 254, 138, 236, 205, 93,
        222, 114, 67, 29, 24, 72, 243, 141, 128, 195, 78, 66, 215, 61, 156, 180,
    ],
    dtype=np.int32,
)  # fmt: skip
PERLIN_PERMUTATION.setflags(write=False)

class NoiseAlgorithm(IntEnum):
    """Enumeration of the base noise functions."""

    PERLIN = 0
    SIMPLEX = 1


class NoiseOperation(IntEnum):
    """Enumeration of the ways octaves of noise are combined."""

    NOISE = 0
    FRACTAL = 1
    TURBULENCE = 2
    FRACTIONAL_BROWNIAN_MOTION = 3


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the noise functions and the noise kernel."""
    real = device.real
    vec3 = device.vec3

    @ti.func
    def fade(t: real) -> real:
        """Perlin's quintic interpolant 6t^5 - 15t^4 + 10t^3."""
        return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)

    @ti.func
    def perlin_gradient(hash_value: ti.i32, x: real, y: real, z: real) -> real:
        """Dot product with one of 12 gradient directions (16 hash slots)."""
        h = hash_value & 15
        u = y
        if h < 8:
            u = x
        v = z
        if h < 4:
            v = y
        elif h == 12 or h == 14:
            v = x
        return ti.select((h & 1) == 0, u, -u) + ti.select((h & 2) == 0, v, -v)

    @ti.func
    def perlin_noise(permutation: ti.template(), p: vec3) -> real:
        floor_p = ti.floor(p)
        xi = ti.cast(floor_p.x, ti.i32) & 255
        yi = ti.cast(floor_p.y, ti.i32) & 255
        zi = ti.cast(floor_p.z, ti.i32) & 255
        x = p.x - floor_p.x
        y = p.y - floor_p.y
        z = p.z - floor_p.z
        u = fade(x)
        v = fade(y)
        w = fade(z)
        a = permutation[xi] + yi
        aa = permutation[a] + zi
        ab = permutation[a + 1] + zi
        b = permutation[xi + 1] + yi
        ba = permutation[b] + zi
        bb = permutation[b + 1] + zi
        return tm.mix(
            tm.mix(
                tm.mix(perlin_gradient(permutation[aa], x, y, z), perlin_gradient(permutation[ba], x - 1.0, y, z), u),
                tm.mix(
                    perlin_gradient(permutation[ab], x, y - 1.0, z),
                    perlin_gradient(permutation[bb], x - 1.0, y - 1.0, z),
                    u,
                ),
                v,
            ),
            tm.mix(
                tm.mix(
                    perlin_gradient(permutation[aa + 1], x, y, z - 1.0),
                    perlin_gradient(permutation[ba + 1], x - 1.0, y, z - 1.0),
                    u,
                ),
                tm.mix(
                    perlin_gradient(permutation[ab + 1], x, y - 1.0, z - 1.0),
                    perlin_gradient(permutation[bb + 1], x - 1.0, y - 1.0, z - 1.0),
                    u,
                ),
                v,
            ),
            w,
        )

    @ti.func
    def simplex_gradient(index: ti.i32) -> vec3:
        """Gradient ``index`` of the 12 cube-edge midpoints."""
        first = ti.cast(1 - 2 * (index & 1), real)
        second = ti.cast(1 - 2 * ((index >> 1) & 1), real)
        gradient = vec3(0.0, second, first)
        if index < 4:
            gradient = vec3(first, second, 0.0)
        elif index < 8:
            gradient = vec3(first, 0.0, second)
        return gradient

    @ti.func
    def simplex_corner(gradient_index: ti.i32, offset: vec3, radius_squared: real) -> real:
        t = radius_squared - tm.dot(offset, offset)
        contribution = ti.cast(0.0, real)
        if t > 0.0:
            t2 = t * t
            contribution = t2 * t2 * tm.dot(simplex_gradient(gradient_index), offset)
        return contribution

    @ti.func
    def simplex_noise_2d(permutation: ti.template(), permutation_mod12: ti.template(), x: real, y: real) -> real:
        # Skewing and unskewing factors of the 2D simplex grid.
        sqrt3 = ti.sqrt(ti.cast(3.0, real))
        skew = 0.5 * (sqrt3 - 1.0)
        unskew = (3.0 - sqrt3) / 6.0
        s = (x + y) * skew
        i = ti.cast(ti.floor(x + s), ti.i32)
        j = ti.cast(ti.floor(y + s), ti.i32)
        t = ti.cast(i + j, real) * unskew
        x0 = x - (ti.cast(i, real) - t)
        y0 = y - (ti.cast(j, real) - t)
        i1 = 0
        j1 = 1
        if x0 > y0:
            i1 = 1
            j1 = 0
        x1 = x0 - ti.cast(i1, real) + unskew
        y1 = y0 - ti.cast(j1, real) + unskew
        x2 = x0 - 1.0 + 2.0 * unskew
        y2 = y0 - 1.0 + 2.0 * unskew
        ii = i & 255
        jj = j & 255
        g0 = permutation_mod12[ii + permutation[jj]]
        g1 = permutation_mod12[ii + i1 + permutation[jj + j1]]
        g2 = permutation_mod12[ii + 1 + permutation[jj + 1]]
        n0 = simplex_corner(g0, vec3(x0, y0, 0.0), 0.5)
        n1 = simplex_corner(g1, vec3(x1, y1, 0.0), 0.5)
        n2 = simplex_corner(g2, vec3(x2, y2, 0.0), 0.5)
        return 70.0 * (n0 + n1 + n2)

    @ti.func
    def simplex_noise_3d(permutation: ti.template(), permutation_mod12: ti.template(), p: vec3) -> real:
        skew = ti.cast(1.0, real) / 3.0
        unskew = ti.cast(1.0, real) / 6.0
        s = (p.x + p.y + p.z) * skew
        i = ti.cast(ti.floor(p.x + s), ti.i32)
        j = ti.cast(ti.floor(p.y + s), ti.i32)
        k = ti.cast(ti.floor(p.z + s), ti.i32)
        t = ti.cast(i + j + k, real) * unskew
        d0 = p - vec3(ti.cast(i, real) - t, ti.cast(j, real) - t, ti.cast(k, real) - t)

        # The second corner steps along the largest offset, the third along
        # every offset but the smallest.
        x_ge_y = d0.x >= d0.y
        x_ge_z = d0.x >= d0.z
        y_ge_z = d0.y >= d0.z
        i1 = ti.select(x_ge_y and x_ge_z, 1, 0)
        j1 = ti.select(not x_ge_y and y_ge_z, 1, 0)
        k1 = 1 - i1 - j1
        i2 = ti.select(x_ge_y or x_ge_z, 1, 0)
        j2 = ti.select(not x_ge_y or y_ge_z, 1, 0)
        k2 = 2 - i2 - j2

        d1 = d0 - vec3(ti.cast(i1, real), ti.cast(j1, real), ti.cast(k1, real)) + unskew
        d2 = d0 - vec3(ti.cast(i2, real), ti.cast(j2, real), ti.cast(k2, real)) + 2.0 * unskew
        d3 = d0 - 1.0 + 3.0 * unskew
        ii = i & 255
        jj = j & 255
        kk = k & 255
        g0 = permutation_mod12[ii + permutation[jj + permutation[kk]]]
        g1 = permutation_mod12[ii + i1 + permutation[jj + j1 + permutation[kk + k1]]]
        g2 = permutation_mod12[ii + i2 + permutation[jj + j2 + permutation[kk + k2]]]
        g3 = permutation_mod12[ii + 1 + permutation[jj + 1 + permutation[kk + 1]]]
        radius_squared = ti.cast(3.0, real) / 5.0
        n0 = simplex_corner(g0, d0, radius_squared)
        n1 = simplex_corner(g1, d1, radius_squared)
        n2 = simplex_corner(g2, d2, radius_squared)
        n3 = simplex_corner(g3, d3, radius_squared)
        return 32.0 * (n0 + n1 + n2 + n3)

    @ti.func
    def base_noise(
        permutation: ti.template(), permutation_mod12: ti.template(), algorithm: ti.i32, dimensions: ti.i32, p: vec3
    ) -> real:
        value = ti.cast(0.0, real)
        if algorithm == 0:
            value = perlin_noise(permutation, p)
        elif dimensions == 2:
            value = simplex_noise_2d(permutation, permutation_mod12, p.x, p.y)
        else:
            value = simplex_noise_3d(permutation, permutation_mod12, p)
        return tm.clamp(value, -1.0, 1.0)

    @ti.kernel
    def noise_kernel(
        permutation: ti.types.ndarray(),
        permutation_mod12: ti.types.ndarray(),
        points: ti.types.ndarray(),
        algorithm: ti.i32,
        operation: ti.i32,
        settings: ti.types.ndarray(),
        octaves: ti.i32,
        out: ti.types.ndarray(),
    ):
        for i in range(points.shape[0]):
            dimensions = points.shape[1]
            p = vec3(points[i, 0], points[i, 1], 0.0)
            if dimensions == 3:
                p.z = points[i, 2]
            amplitude = settings[0]
            frequency = settings[1]
            gain = settings[2]
            lacunarity = settings[3]
            result = ti.cast(0.0, real)
            if operation == 0:
                result = base_noise(permutation, permutation_mod12, algorithm, dimensions, p)
            else:
                total_amplitude = ti.cast(0.0, real)
                if operation == 3:
                    amplitude = 1.0
                for _ in range(octaves):
                    value = base_noise(permutation, permutation_mod12, algorithm, dimensions, p * frequency)
                    if operation == 2:
                        value = ti.abs(value)
                    result += amplitude * value
                    total_amplitude += amplitude
                    amplitude *= gain
                    frequency *= lacunarity
                if operation == 3:
                    minimum = settings[4]
                    maximum = settings[5]
                    result = result / total_amplitude * (maximum - minimum) / 2.0 + (maximum + minimum) / 2.0
            out[i] = result

    device.perlin_noise = perlin_noise
    device.simplex_noise_2d = simplex_noise_2d
    device.simplex_noise_3d = simplex_noise_3d
    device.noise_kernel = noise_kernel


# =============================================================================
# Host Noise Generator
# =============================================================================


def _build_permutation(seed: Optional[int]) -> npt.NDArray[np.int32]:
    if seed is None:
        table = PERLIN_PERMUTATION
    else:
        table = np.random.default_rng(seed).permutation(256).astype(np.int32)
    doubled = np.concatenate([table, table]).astype(np.int32)
    doubled.setflags(write=False)
    return doubled


@dataclass(frozen=True, eq=False)
class NoiseGenerator:
    """Deterministic coherent noise with fixed fractal settings.

    Attributes:
        seed: ``None`` for Ken Perlin's reference permutation, else the seed
            of the shuffled permutation.
        amplitude: Amplitude of the first octave.
        frequency: Frequency of the first octave.
        gain: Amplitude multiplier between octaves.
        lacunarity: Frequency multiplier between octaves.
        octaves: Number of octaves summed by the fractal operations.

    Raises:
        ValueError: If a setting is not finite, ``frequency`` is not
            positive or ``octaves`` is less than one.
    """

    precision: ClassVar[Precision] = F32

    seed: Optional[int] = None
    amplitude: float = 0.5
    frequency: float = 0.2
    gain: float = 0.5
    lacunarity: float = 2.0
    octaves: int = 2
    _permutation: npt.NDArray[np.int32] = field(init=False, repr=False)
    _permutation_mod12: npt.NDArray[np.int32] = field(init=False, repr=False)

    def __post_init__(self):
        for name in ("amplitude", "frequency", "gain", "lacunarity"):
            object.__setattr__(self, name, as_scalar(getattr(self, name), self.precision, name))
        if self.frequency <= 0.0:
            raise ValueError(f"frequency = {self.frequency} must be positive")
        if self.octaves < 1:
            raise ValueError(f"octaves = {self.octaves} must be at least 1")
        permutation = _build_permutation(self.seed)
        permutation_mod12 = permutation % 12
        permutation_mod12.setflags(write=False)
        object.__setattr__(self, "_permutation", permutation)
        object.__setattr__(self, "_permutation_mod12", permutation_mod12)

    @property
    def permutation(self) -> npt.NDArray[np.int32]:
        """The read-only 512-entry permutation table."""
        return self._permutation

    def noise(
        self, points: npt.ArrayLike, algorithm: NoiseAlgorithm = NoiseAlgorithm.PERLIN
    ) -> Union[float, npt.NDArray[np.floating]]:
        """Base noise in [-1, 1] at one point or an ``(N, 2)``/``(N, 3)`` array."""
        return self._evaluate(points, algorithm, NoiseOperation.NOISE)

    def fractal(
        self, points: npt.ArrayLike, algorithm: NoiseAlgorithm = NoiseAlgorithm.PERLIN
    ) -> Union[float, npt.NDArray[np.floating]]:
        """Sum of ``octaves`` layers of noise."""
        return self._evaluate(points, algorithm, NoiseOperation.FRACTAL)

    def turbulence(
        self, points: npt.ArrayLike, algorithm: NoiseAlgorithm = NoiseAlgorithm.PERLIN
    ) -> Union[float, npt.NDArray[np.floating]]:
        """Sum of ``octaves`` layers of absolute noise."""
        return self._evaluate(points, algorithm, NoiseOperation.TURBULENCE)

    def fractional_brownian_motion(
        self,
        points: npt.ArrayLike,
        minimum: float = -1.0,
        maximum: float = 1.0,
        algorithm: NoiseAlgorithm = NoiseAlgorithm.PERLIN,
    ) -> Union[float, npt.NDArray[np.floating]]:
        """Octave sum with unit first amplitude, remapped to ``[minimum, maximum]``.

        The ``amplitude`` setting is not used; ``frequency``, ``gain``,
        ``lacunarity`` and ``octaves`` are.

        Raises:
            ValueError: If ``minimum`` exceeds ``maximum``.
        """
        if minimum > maximum:
            raise ValueError(f"minimum = {minimum} exceeds maximum = {maximum}")
        return self._evaluate(points, algorithm, NoiseOperation.FRACTIONAL_BROWNIAN_MOTION, minimum, maximum)

    def _evaluate(
        self,
        points: npt.ArrayLike,
        algorithm: NoiseAlgorithm,
        operation: NoiseOperation,
        minimum: float = -1.0,
        maximum: float = 1.0,
    ) -> Union[float, npt.NDArray[np.floating]]:
        array = as_array(points, self.precision, "points")
        single = array.ndim == 1
        if single:
            array = array.reshape(1, -1)
        if array.ndim != 2 or array.shape[1] not in (2, 3):
            raise ValueError(f"points must have shape (2,), (3,), (N, 2) or (N, 3), got {array.shape}")
        dtype = self.precision.dtype
        settings = np.array(
            [self.amplitude, self.frequency, self.gain, self.lacunarity, minimum, maximum], dtype=dtype
        )
        out = np.zeros(array.shape[0], dtype=dtype)
        get_device(self.precision).noise_kernel(
            self._permutation,
            self._permutation_mod12,
            np.array(array, copy=True, order="C"),
            int(algorithm),
            int(operation),
            settings,
            self.octaves,
            out,
        )
        return float(out[0]) if single else out


class NoiseGeneratorF(NoiseGenerator):
    """Single-precision noise generator."""

    precision = F32


class NoiseGeneratorD(NoiseGenerator):
    """Double-precision noise generator."""

    precision = F64
