"""Environment interface and the reference Nim environment."""

from .gym_env import (
    GameEnvironment,
    GymGameEnvironment,
    NimEnv,
    StepResult,
    make_nim_environment,
)

__all__ = [
    "GameEnvironment",
    "GymGameEnvironment",
    "NimEnv",
    "StepResult",
    "make_nim_environment",
]
