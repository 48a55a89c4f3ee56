"""Core types shared by every geometry module.

Components:
    precision: F32/F64 descriptors and host array validation
    device: Per-precision namespaces of Taichi records, functions and kernels
    ray: Rays with a parameter range
    onb: Orthonormal bases
"""

from .device import get_device
from .onb import OrthonormalBasis33, OrthonormalBasis33D, OrthonormalBasis33F
from .precision import F32, F64, PRECISIONS, Precision
from .ray import Ray3, Ray3D, Ray3F, pack_rays
