"""Per-precision device namespaces.

All geometric math in geokernel is written once as Taichi functions inside
``build_device`` builders, one per module. A builder receives the namespace
of a single precision, reads the types and functions registered by earlier
builders, and registers its own ``@ti.dataclass`` records, ``@ti.func``
routines and ``@ti.kernel`` entry points on it.

Namespaces are built lazily, once per precision, and never modified
afterwards, so kernels compiled for one precision are shared by every host
object of that precision.

Taichi itself must be initialized by the caller (``ti.init``) before the
first kernel launch; building a namespace does not require it.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from geokernel.core.device import get_device
    >>> from geokernel.core.precision import F64
    >>> device = get_device(F64)
    >>> # device.Ray3, device.sphere_hit, device.shape_intersection_kernel, ...
"""

import logging
import threading
from types import SimpleNamespace

import numpy as np
import taichi as ti

from .precision import Precision

logger = logging.getLogger(__name__)

_devices: dict[str, SimpleNamespace] = {}
_devices_lock = threading.Lock()


def get_device(precision: Precision) -> SimpleNamespace:
    """Get the device namespace for a precision, building it on first use.

    Args:
        precision: The precision whose records, functions and kernels are
            requested.

    Returns:
        The shared, read-only namespace for that precision.
    """
    with _devices_lock:
        device = _devices.get(precision.name)
        if device is None:
            device = _build_device(precision)
            _devices[precision.name] = device
    return device


def _build_device(precision: Precision) -> SimpleNamespace:
    """Run every module builder, leaves first, for one precision."""
    # Builders import the host modules, which import this module.
    from geokernel.core import onb, ray
    from geokernel.geometry import bounds, cuboid, mesh, plane, records, shape, sphere, triangle
    from geokernel.noise import generator as noise
    from geokernel.sampling import generator as sampling

    real = precision.real
    device = SimpleNamespace(
        precision=precision,
        real=real,
        epsilon=precision.epsilon,
        vec2=ti.types.vector(2, real),
        vec3=ti.types.vector(3, real),
    )

    # Python float literals compile at Taichi's default float type, so
    # constants that are not exact in 32 bits are derived on the device.
    half_ulp = float(np.finfo(precision.dtype).epsneg)

    @ti.func
    def pi() -> real:
        return ti.acos(ti.cast(-1.0, real))

    @ti.func
    def one_minus_epsilon() -> real:
        """The largest value below one."""
        return ti.cast(1.0, real) - half_ulp

    device.pi = pi
    device.one_minus_epsilon = one_minus_epsilon

    builders = (
        ray.build_device,
        onb.build_device,
        sampling.build_device,
        bounds.build_device,
        records.build_device,
        plane.build_device,
        sphere.build_device,
        triangle.build_device,
        mesh.build_device,
        cuboid.build_device,
        shape.build_device,
        noise.build_device,
    )
    for build in builders:
        build(device)

    logger.debug("built %s device namespace with %d builders", precision.name, len(builders))
    return device
