"""Coherent noise generation."""

from .generator import NoiseAlgorithm, NoiseGenerator, NoiseGeneratorD, NoiseGeneratorF, NoiseOperation
