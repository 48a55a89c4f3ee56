"""Orthonormal bases for shading and sampling frames.

An orthonormal basis is three mutually perpendicular unit vectors
``(u, v, w)`` with ``u x v = w``. By convention ``w`` is the primary axis,
usually a surface normal, so a direction sampled around ``+z`` in the local
frame maps to world space as ``u * x + v * y + w * z``.

The bases are constructed on the device (the same routines shape
intersection uses to build hit frames) and returned to the host as
immutable :class:`OrthonormalBasis33` values.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.onb import OrthonormalBasis33F
    >>> basis = OrthonormalBasis33F.from_w((0.0, 0.0, 2.0))
    >>> basis.to_world((0.0, 0.0, 1.0))
    array([0., 0., 1.], dtype=float32)
"""

from dataclasses import dataclass
from types import SimpleNamespace
from typing import ClassVar

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from .device import get_device
from .precision import F32, F64, Precision, as_array, as_direction, as_vector


# =============================================================================
# Device Records and Functions
# =============================================================================


def build_device(device: SimpleNamespace) -> None:
    """Register the ``Onb3`` record, basis construction and the basis kernel."""
    vec3 = device.vec3
    epsilon = device.epsilon

    @ti.dataclass
    class Onb3:
        """An orthonormal basis with primary axis ``w``."""

        u: vec3
        v: vec3
        w: vec3

    @ti.func
    def perpendicular(w: vec3) -> vec3:
        """Pick a unit vector perpendicular to a unit vector ``w``.

        Zeroing the smallest-magnitude component of ``w`` before swapping
        the other two keeps the result well away from zero length.
        """
        abs_x = ti.abs(w.x)
        abs_y = ti.abs(w.y)
        abs_z = ti.abs(w.z)
        u = vec3(0.0, 0.0, 0.0)
        if abs_x <= abs_y and abs_x <= abs_z:
            u = vec3(0.0, w.z, -w.y)
        elif abs_y <= abs_z:
            u = vec3(-w.z, 0.0, w.x)
        else:
            u = vec3(w.y, -w.x, 0.0)
        return tm.normalize(u)

    @ti.func
    def onb_from_w(w: vec3) -> Onb3:
        """Build a basis around a (not necessarily unit) primary axis."""
        w_unit = tm.normalize(w)
        u = perpendicular(w_unit)
        v = tm.cross(w_unit, u)
        return Onb3(u=u, v=v, w=w_unit)

    @ti.func
    def onb_from_w_v(w: vec3, v_hint: vec3) -> Onb3:
        """Build a basis around ``w`` whose ``v`` axis follows a hint.

        The hint is made perpendicular to ``w`` by Gram-Schmidt. A hint
        parallel to ``w`` carries no information and falls back to
        :func:`onb_from_w`.
        """
        w_unit = tm.normalize(w)
        u = perpendicular(w_unit)
        v = tm.cross(w_unit, u)
        v_orthogonal = v_hint - tm.dot(v_hint, w_unit) * w_unit
        if tm.length(v_orthogonal) > epsilon * tm.length(v_hint):
            v = tm.normalize(v_orthogonal)
            u = tm.cross(v, w_unit)
        return Onb3(u=u, v=v, w=w_unit)

    @ti.func
    def onb_to_world(basis: Onb3, local: vec3) -> vec3:
        """Map a local-frame vector to world space."""
        return basis.u * local.x + basis.v * local.y + basis.w * local.z

    @ti.func
    def onb_to_local(basis: Onb3, world: vec3) -> vec3:
        """Map a world-space vector to the local frame."""
        return vec3(tm.dot(world, basis.u), tm.dot(world, basis.v), tm.dot(world, basis.w))

    @ti.kernel
    def onb_kernel(seeds: ti.types.ndarray(), use_hint: ti.i32, out: ti.types.ndarray()):
        for i in range(seeds.shape[0]):
            w = vec3(seeds[i, 0], seeds[i, 1], seeds[i, 2])
            hint = vec3(seeds[i, 3], seeds[i, 4], seeds[i, 5])
            if use_hint == 0:
                # A zero hint makes onb_from_w_v fall back to onb_from_w.
                hint = vec3(0.0, 0.0, 0.0)
            basis = onb_from_w_v(w, hint)
            for k in ti.static(range(3)):
                out[i, k] = basis.u[k]
                out[i, 3 + k] = basis.v[k]
                out[i, 6 + k] = basis.w[k]

    device.Onb3 = Onb3
    device.onb_from_w = onb_from_w
    device.onb_from_w_v = onb_from_w_v
    device.onb_to_world = onb_to_world
    device.onb_to_local = onb_to_local
    device.onb_kernel = onb_kernel


# =============================================================================
# Host Orthonormal Basis
# =============================================================================


@dataclass(frozen=True, eq=False)
class OrthonormalBasis33:
    """An immutable orthonormal basis ``(u, v, w)``.

    Use the ``from_*`` constructors to build a basis from seed vectors; the
    direct constructor only checks that the given axes are orthonormal.

    Attributes:
        u: First tangent axis.
        v: Second tangent axis.
        w: Primary axis (normal direction).

    Raises:
        ValueError: If the axes are not unit length or not mutually
            perpendicular within tolerance.
    """

    precision: ClassVar[Precision] = F32

    u: npt.NDArray[np.floating]
    v: npt.NDArray[np.floating]
    w: npt.NDArray[np.floating]

    def __post_init__(self):
        precision = self.precision
        for name in ("u", "v", "w"):
            object.__setattr__(self, name, as_vector(getattr(self, name), precision, name))

        tolerance = 10.0 * precision.epsilon
        axes = np.stack([self.u, self.v, self.w]).astype(np.float64)
        gram = axes @ axes.T
        if not np.allclose(gram, np.eye(3), atol=tolerance):
            raise ValueError(f"axes are not orthonormal (Gram matrix {gram.tolist()})")

    @classmethod
    def from_w(cls, w: npt.ArrayLike) -> "OrthonormalBasis33":
        """Build a basis around a primary axis ``w``.

        Raises:
            ValueError: If ``w`` is zero-length, NaN or infinite.
        """
        w = as_direction(w, cls.precision, "w")
        return cls._construct(np.concatenate([w, np.zeros(3)]), use_hint=False)

    @classmethod
    def from_w_v(cls, w: npt.ArrayLike, v: npt.ArrayLike) -> "OrthonormalBasis33":
        """Build a basis around ``w`` with ``v`` re-orthogonalized against it.

        Raises:
            ValueError: If either vector is zero-length, NaN or infinite.
        """
        w = as_direction(w, cls.precision, "w")
        v = as_direction(v, cls.precision, "v")
        return cls._construct(np.concatenate([w, v]), use_hint=True)

    @classmethod
    def from_eye_look_at(
        cls,
        eye: npt.ArrayLike,
        look_at: npt.ArrayLike,
        up: npt.ArrayLike = (0.0, 1.0, 0.0),
    ) -> "OrthonormalBasis33":
        """Build a camera-style basis whose ``w`` points from ``look_at`` to ``eye``.

        Raises:
            ValueError: If ``eye`` and ``look_at`` coincide.
        """
        eye = as_vector(eye, cls.precision, "eye")
        look_at = as_vector(look_at, cls.precision, "look_at")
        if np.array_equal(eye, look_at):
            raise ValueError("eye and look_at must differ")
        return cls.from_w_v(eye - look_at, up)

    @classmethod
    def _construct(cls, seed: npt.NDArray[np.floating], use_hint: bool) -> "OrthonormalBasis33":
        device = get_device(cls.precision)
        seeds = np.ascontiguousarray(seed.reshape(1, 6), dtype=cls.precision.dtype)
        out = np.zeros((1, 9), dtype=cls.precision.dtype)
        device.onb_kernel(seeds, 1 if use_hint else 0, out)
        return cls(u=out[0, 0:3], v=out[0, 3:6], w=out[0, 6:9])

    def matrix(self) -> npt.NDArray[np.floating]:
        """The 3x3 matrix whose rows are ``u``, ``v`` and ``w``."""
        return np.stack([self.u, self.v, self.w])

    def to_world(self, local: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Map local-frame vectors (shape ``(3,)`` or ``(N, 3)``) to world space."""
        return np.asarray(local, dtype=self.precision.dtype) @ self.matrix()

    def to_local(self, world: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """Map world-space vectors (shape ``(3,)`` or ``(N, 3)``) to the local frame."""
        return np.asarray(world, dtype=self.precision.dtype) @ self.matrix().T

    def flip_u(self) -> "OrthonormalBasis33":
        return type(self)(u=-self.u, v=self.v, w=self.w)

    def flip_v(self) -> "OrthonormalBasis33":
        return type(self)(u=self.u, v=-self.v, w=self.w)

    def flip_w(self) -> "OrthonormalBasis33":
        return type(self)(u=self.u, v=self.v, w=-self.w)

    def transform(self, matrix: npt.ArrayLike) -> "OrthonormalBasis33":
        """Transform the basis by the linear part of a 4x4 matrix.

        The transformed ``w`` and ``v`` axes seed a new basis, so the result
        is orthonormal even for non-rigid matrices.
        """
        linear = as_array(matrix, F64, "matrix", shape=(4, 4))[:3, :3]
        return type(self).from_w_v(linear @ self.w, linear @ self.v)


class OrthonormalBasis33F(OrthonormalBasis33):
    """Single-precision orthonormal basis."""

    precision = F32


class OrthonormalBasis33D(OrthonormalBasis33):
    """Double-precision orthonormal basis."""

    precision = F64


_BASIS_TYPES = {F32.name: OrthonormalBasis33F, F64.name: OrthonormalBasis33D}


def basis_type(precision: Precision) -> type:
    """The :class:`OrthonormalBasis33` subclass of a precision."""
    return _BASIS_TYPES[precision.name]
