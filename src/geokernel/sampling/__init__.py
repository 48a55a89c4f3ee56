"""Sampling of canonical distributions and low-discrepancy sequences."""

from .generator import (
    DEFAULT_POWER_COSINE_EXPONENT,
    Distribution,
    SampleGenerator,
    SampleGeneratorD,
    SampleGeneratorF,
    Sequence,
)
