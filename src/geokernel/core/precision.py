"""Floating-point precision descriptors and host-side array validation.

Every primitive in geokernel exists in a single-precision (``...F``) and a
double-precision (``...D``) variant. Both variants share one implementation:
the device code is generated per :class:`Precision` and the host classes
carry a ``precision`` class attribute that selects the dtype of every array
they store and every kernel they launch.

Example:
    >>> from geokernel.core.precision import F32, as_vector
    >>> as_vector((1, 2, 3), F32, "origin").dtype
    dtype('float32')
"""

from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt
import taichi as ti


@dataclass(frozen=True)
class Precision:
    """A floating-point precision shared by host arrays and device code.

    Attributes:
        name: Short identifier ("f32" or "f64"), also the device cache key.
        suffix: Class-name suffix of the variant ("F" or "D").
        real: Taichi scalar type used by the generated device code.
        dtype: Numpy dtype of every host array of this precision.
        epsilon: Minimum accepted hit distance (self-intersection offset) and
            the threshold below which a ray counts as parallel to a surface.
    """

    name: str
    suffix: str
    real: Any
    dtype: Any
    epsilon: float

    @property
    def max_value(self) -> float:
        """The largest finite value of this precision."""
        return float(np.finfo(self.dtype).max)

    @property
    def lowest_value(self) -> float:
        """The most negative finite value (the negated maximum).

        Not to be confused with ``np.finfo(dtype).tiny``, which is the
        smallest positive normal number.
        """
        return -self.max_value


F32 = Precision(name="f32", suffix="F", real=ti.f32, dtype=np.float32, epsilon=1e-4)
F64 = Precision(name="f64", suffix="D", real=ti.f64, dtype=np.float64, epsilon=1e-7)

PRECISIONS = (F32, F64)


def as_array(
    value: npt.ArrayLike,
    precision: Precision,
    name: str,
    shape: tuple[int, ...] | None = None,
    allow_infinite: bool = False,
) -> npt.NDArray[np.floating]:
    """Convert a value to a read-only array of the given precision.

    Args:
        value: Anything numpy can turn into a float array.
        precision: Target precision.
        name: Name used in error messages.
        shape: Expected shape. A ``-1`` entry matches any length.
        allow_infinite: Whether +/-inf entries are accepted.

    Returns:
        A C-contiguous, non-writeable array.

    Raises:
        ValueError: If the shape does not match or the values are NaN or
            (unless allowed) infinite.
    """
    array = np.array(value, dtype=precision.dtype, copy=True, order="C")
    if shape is not None:
        if array.ndim != len(shape) or any(
            expected != -1 and actual != expected for actual, expected in zip(array.shape, shape)
        ):
            raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
    if np.isnan(array).any():
        raise ValueError(f"{name} contains NaN: {array}")
    if not allow_infinite and not np.isfinite(array).all():
        raise ValueError(f"{name} must be finite, got {array}")
    array.setflags(write=False)
    return array


def as_vector(value: npt.ArrayLike, precision: Precision, name: str) -> npt.NDArray[np.floating]:
    """Convert a 3-component point or vector to a validated read-only array."""
    return as_array(value, precision, name, shape=(3,))


def as_direction(value: npt.ArrayLike, precision: Precision, name: str) -> npt.NDArray[np.floating]:
    """Convert a vector to a validated, normalized read-only array.

    Raises:
        ValueError: If the vector is zero-length, NaN or infinite.
    """
    vector = np.array(as_vector(value, precision, name), dtype=np.float64)
    length = float(np.linalg.norm(vector))
    if length == 0.0:
        raise ValueError(f"{name} must not be zero-length")
    unit = np.asarray(vector / length, dtype=precision.dtype)
    unit.setflags(write=False)
    return unit


def as_scalar(value: float, precision: Precision, name: str, allow_infinite: bool = False) -> float:
    """Round a scalar to the given precision, rejecting NaN and infinity."""
    scalar = float(precision.dtype(value))
    if np.isnan(scalar):
        raise ValueError(f"{name} must not be NaN")
    if not allow_infinite and not np.isfinite(scalar):
        raise ValueError(f"{name} must be finite, got {value}")
    return scalar


def as_batch(value: npt.ArrayLike, precision: Precision, columns: int) -> npt.NDArray[np.floating]:
    """Convert query input to a writeable ``(N, columns)`` array for a kernel launch."""
    array = np.ascontiguousarray(value, dtype=precision.dtype)
    if array.ndim == 1:
        array = array.reshape(1, -1)
    if array.ndim != 2 or array.shape[1] != columns:
        raise ValueError(f"expected an array of shape (N, {columns}), got {array.shape}")
    return np.array(array, copy=True, order="C")
