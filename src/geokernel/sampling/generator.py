"""Deterministic sample generation for Monte Carlo integration.

Every routine here maps canonical coordinates ``(u1, u2)`` in ``[0, 1)``
(or an integer index) to a sample of a named distribution and exposes the
analytic probability density of that distribution. The routines never draw
random numbers themselves: identical inputs always produce identical
outputs, and randomness is supplied by the caller, for instance with
:meth:`SampleGenerator.canonical_pairs` and an explicit
``numpy.random.Generator``.

Distributions:
    CONCENTRIC_DISK: Shirley-Chiu mapping onto the unit disk, pdf 1/pi.
    UNIFORM_DISK: Polar mapping onto the unit disk, pdf 1/pi.
    HEMISPHERE_COSINE: Cosine-weighted +z hemisphere, pdf cos(theta)/pi.
    HEMISPHERE_POWER_COSINE: Phong lobe around +z, pdf (n+1)cos^n/(2pi).
    HEMISPHERE_UNIFORM: Uniform +z hemisphere, pdf 1/(2pi).
    SPHERE_UNIFORM: Uniform unit sphere, pdf 1/(4pi).
    CONE_UNIFORM: Uniform cone around +z, pdf 1/(2pi(1 - cos_max)).
    TRIANGLE_UNIFORM: Uniform barycentric coordinates, pdf 2.

The device routines are shared with shape sampling, so a sphere sampled by
area and a direction sampled on the unit sphere go through the same code.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> import numpy as np
    >>> from geokernel.sampling.generator import SampleGeneratorD
    >>> rng = np.random.default_rng(7)
    >>> uv = SampleGeneratorD.canonical_pairs(rng, 4)
    >>> directions = SampleGeneratorD.hemisphere_cosine(uv[:, 0], uv[:, 1])
    >>> pdfs = SampleGeneratorD.hemisphere_cosine_pdf(directions[:, 2])
"""

from enum import IntEnum
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti

from geokernel.core.device import get_device
from geokernel.core.precision import F32, F64, Precision


class Distribution(IntEnum):
    """Enumeration of the supported sample distributions."""

    CONCENTRIC_DISK = 0
    UNIFORM_DISK = 1
    HEMISPHERE_COSINE = 2
    HEMISPHERE_POWER_COSINE = 3
    HEMISPHERE_UNIFORM = 4
    SPHERE_UNIFORM = 5
    CONE_UNIFORM = 6
    TRIANGLE_UNIFORM = 7


class Sequence(IntEnum):
    """Enumeration of the supported low-discrepancy point sets."""

    HAMMERSLEY = 0
    HALTON = 1


# Default exponent of the power-cosine lobe.
DEFAULT_POWER_COSINE_EXPONENT = 20.0


# =============================================================================
# Device Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the sampling routines and kernels on a device namespace."""
    real = device.real
    vec2 = device.vec2
    vec3 = device.vec3
    pi = device.pi
    one_minus_epsilon = device.one_minus_epsilon

    @ti.func
    def sample_concentric_disk(u1: real, u2: real) -> vec2:
        """Map the unit square onto the unit disk preserving strata."""
        a = 2.0 * u1 - 1.0
        b = 2.0 * u2 - 1.0
        point = vec2(0.0, 0.0)
        if a != 0.0 or b != 0.0:
            r = a
            theta = (pi() / 4.0) * (b / a)
            if a * a <= b * b:
                r = b
                theta = pi() / 2.0 - (pi() / 4.0) * (a / b)
            point = vec2(r * ti.cos(theta), r * ti.sin(theta))
        return point

    @ti.func
    def sample_uniform_disk(u1: real, u2: real) -> vec2:
        r = ti.sqrt(u1)
        phi = 2.0 * pi() * u2
        return vec2(r * ti.cos(phi), r * ti.sin(phi))

    @ti.func
    def sample_hemisphere_cosine(u1: real, u2: real) -> vec3:
        """Malley's method: lift a concentric disk sample onto the hemisphere."""
        disk = sample_concentric_disk(u1, u2)
        z = ti.sqrt(ti.max(0.0, 1.0 - disk.x * disk.x - disk.y * disk.y))
        return vec3(disk.x, disk.y, z)

    @ti.func
    def sample_hemisphere_power_cosine(u1: real, u2: real, exponent: real) -> vec3:
        cos_theta = ti.pow(1.0 - u1, 1.0 / (exponent + 1.0))
        sin_theta = ti.sqrt(ti.max(0.0, 1.0 - cos_theta * cos_theta))
        phi = 2.0 * pi() * u2
        return vec3(ti.cos(phi) * sin_theta, ti.sin(phi) * sin_theta, cos_theta)

    @ti.func
    def sample_hemisphere_uniform(u1: real, u2: real) -> vec3:
        z = u1
        r = ti.sqrt(ti.max(0.0, 1.0 - z * z))
        phi = 2.0 * pi() * u2
        return vec3(ti.cos(phi) * r, ti.sin(phi) * r, z)

    @ti.func
    def sample_sphere_uniform(u1: real, u2: real) -> vec3:
        z = 1.0 - 2.0 * u1
        r = ti.sqrt(ti.max(0.0, 1.0 - z * z))
        phi = 2.0 * pi() * u2
        return vec3(ti.cos(phi) * r, ti.sin(phi) * r, z)

    @ti.func
    def sample_cone_uniform(u1: real, u2: real, cos_theta_max: real) -> vec3:
        cos_theta = 1.0 - u1 * (1.0 - cos_theta_max)
        sin_theta = ti.sqrt(ti.max(0.0, 1.0 - cos_theta * cos_theta))
        phi = 2.0 * pi() * u2
        return vec3(ti.cos(phi) * sin_theta, ti.sin(phi) * sin_theta, cos_theta)

    @ti.func
    def sample_triangle_uniform(u1: real, u2: real) -> vec3:
        """Uniform barycentric coordinates ``(b0, b1, b2)`` summing to one."""
        su = ti.sqrt(u1)
        b0 = 1.0 - su
        b1 = u2 * su
        return vec3(b0, b1, 1.0 - b0 - b1)

    @ti.func
    def pdf_hemisphere_cosine(cos_theta: real) -> real:
        return ti.max(cos_theta, 0.0) / pi()

    @ti.func
    def pdf_hemisphere_power_cosine(cos_theta: real, exponent: real) -> real:
        return (exponent + 1.0) * ti.pow(ti.max(cos_theta, 0.0), exponent) / (2.0 * pi())

    @ti.func
    def pdf_cone_uniform(cos_theta_max: real) -> real:
        pdf = ti.cast(0.0, real)
        if cos_theta_max < 1.0:
            pdf = 1.0 / (2.0 * pi() * (1.0 - cos_theta_max))
        return pdf

    @ti.func
    def radical_inverse(base: ti.i32, index: ti.i32) -> real:
        """Mirror the base-``base`` digits of ``index`` around the radix point."""
        inverse_base = ti.cast(1.0, real) / ti.cast(base, real)
        factor = inverse_base
        result = ti.cast(0.0, real)
        n = index
        while n > 0:
            digit = n % base
            result += ti.cast(digit, real) * factor
            factor *= inverse_base
            n = n // base
        return ti.min(result, one_minus_epsilon())

    @ti.func
    def stratified_sample(index: ti.i32, nx: ti.i32, ny: ti.i32, u1: real, u2: real) -> vec2:
        """Jitter a point inside cell ``index`` of an ``nx`` by ``ny`` grid (row-major)."""
        ix = index % nx
        iy = index // nx
        x = (ti.cast(ix, real) + u1) / ti.cast(nx, real)
        y = (ti.cast(iy, real) + u2) / ti.cast(ny, real)
        return vec2(ti.min(x, one_minus_epsilon()), ti.min(y, one_minus_epsilon()))

    @ti.kernel
    def distribution_kernel(mode: ti.i32, uv: ti.types.ndarray(), parameter: real, out: ti.types.ndarray()):
        for i in range(uv.shape[0]):
            u1 = uv[i, 0]
            u2 = uv[i, 1]
            sample = vec3(0.0, 0.0, 0.0)
            pdf = ti.cast(0.0, real)
            if mode == 0:
                disk = sample_concentric_disk(u1, u2)
                sample = vec3(disk.x, disk.y, 0.0)
                pdf = 1.0 / pi()
            elif mode == 1:
                disk = sample_uniform_disk(u1, u2)
                sample = vec3(disk.x, disk.y, 0.0)
                pdf = 1.0 / pi()
            elif mode == 2:
                sample = sample_hemisphere_cosine(u1, u2)
                pdf = pdf_hemisphere_cosine(sample.z)
            elif mode == 3:
                sample = sample_hemisphere_power_cosine(u1, u2, parameter)
                pdf = pdf_hemisphere_power_cosine(sample.z, parameter)
            elif mode == 4:
                sample = sample_hemisphere_uniform(u1, u2)
                pdf = 1.0 / (2.0 * pi())
            elif mode == 5:
                sample = sample_sphere_uniform(u1, u2)
                pdf = 1.0 / (4.0 * pi())
            elif mode == 6:
                sample = sample_cone_uniform(u1, u2, parameter)
                pdf = pdf_cone_uniform(parameter)
            else:
                sample = sample_triangle_uniform(u1, u2)
                pdf = 2.0
            out[i, 0] = sample.x
            out[i, 1] = sample.y
            out[i, 2] = sample.z
            out[i, 3] = pdf

    @ti.kernel
    def density_kernel(mode: ti.i32, values: ti.types.ndarray(), parameter: real, out: ti.types.ndarray()):
        for i in range(values.shape[0]):
            pdf = ti.cast(0.0, real)
            if mode == 2:
                pdf = pdf_hemisphere_cosine(values[i])
            elif mode == 3:
                pdf = pdf_hemisphere_power_cosine(values[i], parameter)
            elif mode == 6:
                pdf = pdf_cone_uniform(values[i])
            out[i] = pdf

    @ti.kernel
    def stratified_kernel(
        offset: ti.i32, nx: ti.i32, ny: ti.i32, uv: ti.types.ndarray(), out: ti.types.ndarray()
    ):
        for i in range(uv.shape[0]):
            point = stratified_sample(offset + i, nx, ny, uv[i, 0], uv[i, 1])
            out[i, 0] = point.x
            out[i, 1] = point.y

    @ti.kernel
    def sequence_kernel(mode: ti.i32, indices: ti.types.ndarray(), count: ti.i32, out: ti.types.ndarray()):
        for i in range(indices.shape[0]):
            index = indices[i]
            if mode == 0:
                out[i, 0] = ti.cast(index, real) / ti.cast(count, real)
                out[i, 1] = radical_inverse(2, index)
            else:
                out[i, 0] = radical_inverse(2, index)
                out[i, 1] = radical_inverse(3, index)

    device.sample_concentric_disk = sample_concentric_disk
    device.sample_uniform_disk = sample_uniform_disk
    device.sample_hemisphere_cosine = sample_hemisphere_cosine
    device.sample_hemisphere_power_cosine = sample_hemisphere_power_cosine
    device.sample_hemisphere_uniform = sample_hemisphere_uniform
    device.sample_sphere_uniform = sample_sphere_uniform
    device.sample_cone_uniform = sample_cone_uniform
    device.sample_triangle_uniform = sample_triangle_uniform
    device.pdf_hemisphere_cosine = pdf_hemisphere_cosine
    device.pdf_hemisphere_power_cosine = pdf_hemisphere_power_cosine
    device.pdf_cone_uniform = pdf_cone_uniform
    device.radical_inverse = radical_inverse
    device.stratified_sample = stratified_sample
    device.distribution_kernel = distribution_kernel
    device.density_kernel = density_kernel
    device.stratified_kernel = stratified_kernel
    device.sequence_kernel = sequence_kernel


# =============================================================================
# Host Sample Generator
# =============================================================================


def _canonical(values: npt.ArrayLike, name: str) -> npt.NDArray[np.float64]:
    array = np.asarray(values, dtype=np.float64)
    if np.isnan(array).any() or (array < 0.0).any() or (array > 1.0).any():
        raise ValueError(f"{name} must lie in [0, 1]")
    return array


class SampleGenerator:
    """Stateless sample generation for one precision.

    All methods are class methods; :class:`SampleGeneratorF` and
    :class:`SampleGeneratorD` select the precision. Inputs may be scalars or
    arrays and are broadcast against each other; outputs carry the broadcast
    shape followed by the sample dimension.
    """

    precision: ClassVar[Precision] = F32

    @classmethod
    def sample(
        cls,
        distribution: Distribution,
        u1: npt.ArrayLike,
        u2: npt.ArrayLike,
        parameter: float = 0.0,
    ) -> tuple[npt.NDArray[np.floating], npt.NDArray[np.floating]]:
        """Sample a distribution and return the samples with their densities.

        Args:
            distribution: Which distribution to sample.
            u1: First canonical coordinate(s) in ``[0, 1]``.
            u2: Second canonical coordinate(s) in ``[0, 1]``.
            parameter: The power-cosine exponent or the cone's
                ``cos_theta_max``; ignored by other distributions.

        Returns:
            A tuple ``(samples, pdfs)``. Samples have 3 components (disk
            samples have ``z = 0``; triangle samples are barycentric
            coordinates).

        Raises:
            ValueError: If a canonical coordinate lies outside ``[0, 1]``.
        """
        u1, u2 = np.broadcast_arrays(_canonical(u1, "u1"), _canonical(u2, "u2"))
        shape = u1.shape
        uv = np.ascontiguousarray(np.stack([u1.ravel(), u2.ravel()], axis=1), dtype=cls.precision.dtype)
        out = np.zeros((uv.shape[0], 4), dtype=cls.precision.dtype)
        get_device(cls.precision).distribution_kernel(int(distribution), uv, parameter, out)
        return out[:, :3].reshape(shape + (3,)), out[:, 3].reshape(shape)

    @classmethod
    def concentric_disk(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.CONCENTRIC_DISK, u1, u2)[0][..., :2]

    @classmethod
    def uniform_disk(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.UNIFORM_DISK, u1, u2)[0][..., :2]

    @classmethod
    def disk_pdf(cls) -> float:
        """Density of both disk mappings with respect to area."""
        return float(cls.precision.dtype(1.0 / np.pi))

    @classmethod
    def hemisphere_cosine(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.HEMISPHERE_COSINE, u1, u2)[0]

    @classmethod
    def hemisphere_cosine_pdf(cls, cos_theta: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls._density(Distribution.HEMISPHERE_COSINE, cos_theta)

    @classmethod
    def hemisphere_power_cosine(
        cls, u1: npt.ArrayLike, u2: npt.ArrayLike, exponent: float = DEFAULT_POWER_COSINE_EXPONENT
    ) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.HEMISPHERE_POWER_COSINE, u1, u2, exponent)[0]

    @classmethod
    def hemisphere_power_cosine_pdf(
        cls, cos_theta: npt.ArrayLike, exponent: float = DEFAULT_POWER_COSINE_EXPONENT
    ) -> npt.NDArray[np.floating]:
        return cls._density(Distribution.HEMISPHERE_POWER_COSINE, cos_theta, exponent)

    @classmethod
    def hemisphere_uniform(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.HEMISPHERE_UNIFORM, u1, u2)[0]

    @classmethod
    def hemisphere_uniform_pdf(cls) -> float:
        return float(cls.precision.dtype(1.0 / (2.0 * np.pi)))

    @classmethod
    def sphere_uniform(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        return cls.sample(Distribution.SPHERE_UNIFORM, u1, u2)[0]

    @classmethod
    def sphere_uniform_pdf(cls) -> float:
        return float(cls.precision.dtype(1.0 / (4.0 * np.pi)))

    @classmethod
    def cone_uniform(cls, u1: npt.ArrayLike, u2: npt.ArrayLike, cos_theta_max: float) -> npt.NDArray[np.floating]:
        """Sample directions uniformly inside a cone around ``+z``.

        Raises:
            ValueError: If ``cos_theta_max`` lies outside ``[-1, 1]``.
        """
        if not -1.0 <= cos_theta_max <= 1.0:
            raise ValueError(f"cos_theta_max = {cos_theta_max} is outside [-1, 1]")
        return cls.sample(Distribution.CONE_UNIFORM, u1, u2, cos_theta_max)[0]

    @classmethod
    def cone_uniform_pdf(cls, cos_theta_max: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Density of uniform cone sampling; zero for a degenerate cone."""
        return cls._density(Distribution.CONE_UNIFORM, cos_theta_max)

    @classmethod
    def triangle_uniform(cls, u1: npt.ArrayLike, u2: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Uniformly distributed barycentric coordinates ``(b0, b1, b2)``."""
        return cls.sample(Distribution.TRIANGLE_UNIFORM, u1, u2)[0]

    @classmethod
    def stratified(cls, nx: int, ny: int, jitter: npt.ArrayLike, offset: int = 0) -> npt.NDArray[np.floating]:
        """Jitter points inside the cells of an ``nx`` by ``ny`` grid.

        Args:
            nx: Number of columns.
            ny: Number of rows.
            jitter: Canonical offsets inside each cell, shape ``(N, 2)``.
                Row ``i`` jitters cell ``offset + i`` in row-major order.
            offset: Index of the first cell.

        Returns:
            An ``(N, 2)`` array of points in ``[0, 1)^2``.

        Raises:
            ValueError: If the grid is empty or the cells run past its end.
        """
        if nx < 1 or ny < 1:
            raise ValueError(f"grid must have at least one cell, got {nx}x{ny}")
        uv = np.ascontiguousarray(np.atleast_2d(_canonical(jitter, "jitter")), dtype=cls.precision.dtype)
        if uv.shape[1] != 2:
            raise ValueError(f"jitter must have shape (N, 2), got {uv.shape}")
        if offset < 0 or offset + uv.shape[0] > nx * ny:
            raise ValueError(f"cells {offset}..{offset + uv.shape[0] - 1} are outside the {nx}x{ny} grid")
        out = np.zeros((uv.shape[0], 2), dtype=cls.precision.dtype)
        get_device(cls.precision).stratified_kernel(offset, nx, ny, uv, out)
        return out

    @classmethod
    def radical_inverse(cls, base: int, indices: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Van der Corput radical inverse in base 2 or 3."""
        if base not in (2, 3):
            raise ValueError(f"base must be 2 or 3, got {base}")
        points = cls._sequence(Sequence.HALTON, indices, 1)
        return points[..., 0] if base == 2 else points[..., 1]

    @classmethod
    def hammersley(cls, count: int) -> npt.NDArray[np.floating]:
        """The ``count``-point Hammersley set ``(i / count, radical_inverse_2(i))``."""
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")
        return cls._sequence(Sequence.HAMMERSLEY, np.arange(count), count)

    @classmethod
    def halton(cls, indices: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Halton points in bases 2 and 3 for the given indices."""
        return cls._sequence(Sequence.HALTON, indices, 1)

    @staticmethod
    def balance_heuristic(pdf_a: npt.ArrayLike, pdf_b: npt.ArrayLike, count_a: int = 1, count_b: int = 1):
        """Multiple importance sampling weight of strategy A (balance heuristic)."""
        weight_a = count_a * np.asarray(pdf_a, dtype=np.float64)
        weight_b = count_b * np.asarray(pdf_b, dtype=np.float64)
        total = weight_a + weight_b
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(total > 0.0, weight_a / total, 0.0)

    @staticmethod
    def power_heuristic(pdf_a: npt.ArrayLike, pdf_b: npt.ArrayLike, count_a: int = 1, count_b: int = 1):
        """Multiple importance sampling weight of strategy A (power heuristic, beta = 2)."""
        weight_a = (count_a * np.asarray(pdf_a, dtype=np.float64)) ** 2
        weight_b = (count_b * np.asarray(pdf_b, dtype=np.float64)) ** 2
        total = weight_a + weight_b
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(total > 0.0, weight_a / total, 0.0)

    @classmethod
    def canonical_pairs(cls, rng: np.random.Generator, count: int) -> npt.NDArray[np.floating]:
        """Draw ``count`` canonical pairs in ``[0, 1)^2`` from a caller-owned generator."""
        pairs = rng.random((count, 2)).astype(cls.precision.dtype)
        # Rounding to single precision can produce exactly 1.0.
        return np.minimum(pairs, np.nextafter(cls.precision.dtype(1.0), cls.precision.dtype(0.0)))

    @classmethod
    def _density(
        cls, distribution: Distribution, values: npt.ArrayLike, parameter: float = 0.0
    ) -> npt.NDArray[np.floating]:
        values = np.asarray(values, dtype=cls.precision.dtype)
        flat = np.ascontiguousarray(values.ravel())
        out = np.zeros(flat.shape[0], dtype=cls.precision.dtype)
        get_device(cls.precision).density_kernel(int(distribution), flat, parameter, out)
        return out.reshape(values.shape)

    @classmethod
    def _sequence(cls, sequence: Sequence, indices: npt.ArrayLike, count: int) -> npt.NDArray[np.floating]:
        indices = np.asarray(indices)
        if (indices < 0).any():
            raise ValueError("sequence indices must be non-negative")
        flat = np.ascontiguousarray(indices.ravel(), dtype=np.int32)
        out = np.zeros((flat.shape[0], 2), dtype=cls.precision.dtype)
        get_device(cls.precision).sequence_kernel(int(sequence), flat, count, out)
        return out.reshape(indices.shape + (2,))


class SampleGeneratorF(SampleGenerator):
    """Single-precision sample generation."""

    precision = F32


class SampleGeneratorD(SampleGenerator):
    """Double-precision sample generation."""

    precision = F64
