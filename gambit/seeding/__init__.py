"""Deterministic seeding for every stochastic component."""

from .random_context import (
    Component,
    RandomContext,
    SeedConfiguration,
    SeedValidationResult,
    derive_component_seed,
)

__all__ = [
    "Component",
    "RandomContext",
    "SeedConfiguration",
    "SeedValidationResult",
    "derive_component_seed",
]
