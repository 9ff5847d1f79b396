from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

import numpy as np

from gambit.errors import SeedStateError

logger = logging.getLogger(__name__)

_MASK64 = 0xFFFF_FFFF_FFFF_FFFF
_MAX_SEED = 0x7FFF_FFFF_FFFF_FFFF


class Component(str, Enum):
    NEURAL_NETWORK = "neural_network"
    EXPLORATION = "exploration"
    REPLAY_BUFFER = "replay_buffer"
    DATA_GENERATION = "data_generation"
    GENERAL = "general"


ComponentName = Union[Component, str]


def _component_key(name: ComponentName) -> str:
    if isinstance(name, Component):
        return name.value
    if not name:
        raise ValueError("Component name must be a non-empty string.")
    return str(name)


def _name_digest(name: str) -> int:
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def derive_component_seed(master_seed: int, component: ComponentName) -> int:
    """Derive the seed of ``component`` from ``master_seed``.

    The result depends only on the two inputs, so every process derives the
    same seed, and distinct names hash to unrelated streams.
    """
    key = _component_key(component)
    sequence = np.random.SeedSequence([int(master_seed) & _MASK64, _name_digest(key)])
    word = int(sequence.generate_state(1, dtype=np.uint64)[0])
    return word & _MAX_SEED


@dataclass(frozen=True)
class SeedConfiguration:
    master_seed: int
    component_seeds: Dict[str, int] = field(default_factory=dict)
    is_deterministic: bool = True

    def to_dict(self) -> Dict[str, object]:
        return {
            "master_seed": self.master_seed,
            "component_seeds": dict(self.component_seeds),
            "is_deterministic": self.is_deterministic,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "SeedConfiguration":
        seeds = data.get("component_seeds") or {}
        return cls(
            master_seed=int(data["master_seed"]),
            component_seeds={str(k): int(v) for k, v in dict(seeds).items()},
            is_deterministic=bool(data.get("is_deterministic", True)),
        )


@dataclass
class SeedValidationResult:
    is_valid: bool
    issues: List[str]
    master_seed: Optional[int]
    component_seeds: Dict[str, int] = field(default_factory=dict)


class RandomContext:
    """Single source of randomness for one training process.

    Each named component owns an independent ``np.random.Generator`` derived
    from the master seed. Generators are not thread-safe: hand them to one
    worker, or draw per-worker seeds with :meth:`spawn_seeds`.
    """

    def __init__(self, master_seed: Optional[int] = None) -> None:
        self._lock = threading.RLock()
        self._master_seed: Optional[int] = None
        self._deterministic = False
        self._component_seeds: Dict[str, int] = {}
        self._generators: Dict[str, np.random.Generator] = {}
        if master_seed is not None:
            self.initialize_with_seed(master_seed)

    # ------------------------------------------------------------------
    def initialize_with_seed(self, master_seed: int) -> "RandomContext":
        master_seed = int(master_seed)
        with self._lock:
            self._reset(master_seed, deterministic=True)
        logger.info("Random context seeded with master seed %d", master_seed)
        return self

    def initialize_with_random_seed(self) -> "RandomContext":
        master_seed = secrets.randbits(63)
        with self._lock:
            self._reset(master_seed, deterministic=False)
        logger.info("Random context seeded non-deterministically (master seed %d)", master_seed)
        return self

    def _reset(self, master_seed: int, *, deterministic: bool) -> None:
        self._master_seed = master_seed
        self._deterministic = deterministic
        self._component_seeds = {}
        self._generators = {}
        for component in Component:
            self._register(component.value)

    def _register(self, key: str) -> np.random.Generator:
        seed = derive_component_seed(self._master_seed, key)
        self._component_seeds[key] = seed
        generator = np.random.default_rng(seed)
        self._generators[key] = generator
        return generator

    def _ensure_seeded(self) -> None:
        if self._master_seed is None:
            logger.warning("Random context used before seeding; falling back to a random master seed.")
            self.initialize_with_random_seed()

    # ------------------------------------------------------------------
    @property
    def master_seed(self) -> Optional[int]:
        return self._master_seed

    @property
    def is_deterministic(self) -> bool:
        return self._deterministic

    @property
    def is_seeded(self) -> bool:
        return self._master_seed is not None

    def generator(self, name: ComponentName) -> np.random.Generator:
        key = _component_key(name)
        with self._lock:
            self._ensure_seeded()
            existing = self._generators.get(key)
            if existing is not None:
                return existing
            return self._register(key)

    def neural_network_random(self) -> np.random.Generator:
        return self.generator(Component.NEURAL_NETWORK)

    def exploration_random(self) -> np.random.Generator:
        return self.generator(Component.EXPLORATION)

    def replay_buffer_random(self) -> np.random.Generator:
        return self.generator(Component.REPLAY_BUFFER)

    def data_generation_random(self) -> np.random.Generator:
        return self.generator(Component.DATA_GENERATION)

    def general_random(self) -> np.random.Generator:
        return self.generator(Component.GENERAL)

    def create_seeded_random(self, name: ComponentName) -> np.random.Generator:
        """Return a fresh generator for ``name``, independent of the shared one."""
        key = _component_key(name)
        with self._lock:
            self._ensure_seeded()
            seed = derive_component_seed(self._master_seed, key)
            self._component_seeds[key] = seed
        return np.random.default_rng(seed)

    def component_seed(self, name: ComponentName) -> int:
        key = _component_key(name)
        with self._lock:
            self._ensure_seeded()
            if key not in self._component_seeds:
                self._register(key)
            return self._component_seeds[key]

    def spawn_seeds(self, name: ComponentName, count: int) -> List[int]:
        if count < 0:
            raise ValueError("count must be non-negative.")
        with self._lock:
            generator = self.generator(name)
            values = generator.integers(0, 2**32, size=count, dtype=np.int64)
        return [int(v) for v in values]

    # ------------------------------------------------------------------
    def get_seed_configuration(self) -> SeedConfiguration:
        with self._lock:
            if self._master_seed is None:
                raise SeedStateError("Random context has not been seeded.")
            return SeedConfiguration(
                master_seed=self._master_seed,
                component_seeds=dict(self._component_seeds),
                is_deterministic=self._deterministic,
            )

    def restore_seed_configuration(self, config: SeedConfiguration) -> "RandomContext":
        with self._lock:
            self._reset(config.master_seed, deterministic=config.is_deterministic)
            for key in config.component_seeds:
                if key not in self._generators:
                    self._register(key)
        logger.info("Restored seed configuration (master seed %d)", config.master_seed)
        return self

    def validate_seed_consistency(self) -> SeedValidationResult:
        with self._lock:
            issues: List[str] = []
            seeds = dict(self._component_seeds)
            if self._master_seed is None:
                issues.append("No master seed has been set.")
            else:
                if not seeds:
                    issues.append("No component seeds have been derived.")
                if len(set(seeds.values())) != len(seeds):
                    issues.append("Duplicate component seeds detected.")
                for key, seed in sorted(seeds.items()):
                    expected = derive_component_seed(self._master_seed, key)
                    if seed != expected:
                        issues.append(
                            f"Seed for component '{key}' ({seed}) does not match its derivation ({expected})."
                        )
            return SeedValidationResult(
                is_valid=not issues,
                issues=issues,
                master_seed=self._master_seed,
                component_seeds=seeds,
            )

    def seed_summary(self) -> Dict[str, object]:
        with self._lock:
            return {
                "master_seed": self._master_seed,
                "is_deterministic": self._deterministic,
                "components": sorted(self._component_seeds),
                "component_count": len(self._component_seeds),
            }
