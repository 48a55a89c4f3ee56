"""Pytest configuration for geokernel tests.

Taichi is initialized once per session; the per-precision device namespaces
are built lazily on first use and shared by every test after that.
"""

import pytest
import taichi as ti

from geokernel.core.precision import F32


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Using session scope prevents multiple ti.init() calls, which would
    invalidate the compiled kernels cached in the device namespaces.
    """
    ti.init(arch=ti.cpu, random_seed=42)
    yield


@pytest.fixture
def atol():
    """Absolute comparison tolerance for a class or object of either precision."""

    def lookup(variant):
        return 1e-4 if variant.precision is F32 else 1e-9

    return lookup
