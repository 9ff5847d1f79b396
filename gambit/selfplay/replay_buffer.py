from __future__ import annotations

import heapq
import logging
import pickle
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from gambit.core import EnhancedExperience
from gambit.errors import BufferUnderflowError

logger = logging.getLogger(__name__)


class EvictionPolicy(str, Enum):
    OLDEST_FIRST = "oldest_first"
    LOWEST_QUALITY = "lowest_quality"
    RANDOM = "random"


class SamplingStrategy(str, Enum):
    UNIFORM = "uniform"
    RECENT = "recent"
    MIXED = "mixed"


@dataclass
class BufferStatistics:
    size: int
    capacity: int
    utilization: float
    average_quality: float
    total_added: int
    total_evicted: int
    from_wins: int
    from_draws: int
    phase_counts: Dict[str, int] = field(default_factory=dict)


class ExperienceReplayBuffer:
    """Bounded experience store shared by self-play workers and the learner.

    Entries live in a fixed set of slots; an insertion at capacity reuses the
    slot of the evicted entry. Every public method holds the lock for the
    duration of the call only.
    """

    def __init__(
        self,
        max_size: int,
        *,
        eviction: Union[EvictionPolicy, str] = EvictionPolicy.OLDEST_FIRST,
        sampling: Union[SamplingStrategy, str] = SamplingStrategy.UNIFORM,
        allow_partial: bool = False,
        recent_fraction: float = 0.5,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive.")
        if not 0.0 <= recent_fraction <= 1.0:
            raise ValueError("recent_fraction must be within [0, 1].")
        self.capacity = int(max_size)
        self.eviction = EvictionPolicy(eviction)
        self.sampling = SamplingStrategy(sampling)
        self.allow_partial = allow_partial
        self.recent_fraction = float(recent_fraction)
        self.rng = rng if rng is not None else np.random.default_rng()

        self._lock = threading.Lock()
        self._slots: List[EnhancedExperience] = []
        self._seqs: List[int] = []
        self._quality_heap: List[Tuple[float, int, int]] = []
        self._head = 0
        self._next_seq = 0
        self._evicted = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def size(self) -> int:
        return len(self)

    def is_full(self) -> bool:
        with self._lock:
            return len(self._slots) >= self.capacity

    def utilization(self) -> float:
        with self._lock:
            return len(self._slots) / self.capacity

    def clear(self) -> None:
        with self._lock:
            self._slots = []
            self._seqs = []
            self._quality_heap = []
            self._head = 0

    def add(self, experience: EnhancedExperience) -> None:
        with self._lock:
            self._add_locked(experience)

    def extend(self, experiences: Iterable[EnhancedExperience]) -> int:
        items = list(experiences)
        with self._lock:
            for experience in items:
                self._add_locked(experience)
        return len(items)

    def sample(
        self,
        n: int,
        rng: Optional[np.random.Generator] = None,
        *,
        strategy: Union[SamplingStrategy, str, None] = None,
    ) -> List[EnhancedExperience]:
        if n <= 0:
            raise ValueError("Sample size must be positive.")
        strategy = SamplingStrategy(strategy) if strategy is not None else self.sampling
        with self._lock:
            available = len(self._slots)
            if n > available:
                if not self.allow_partial:
                    raise BufferUnderflowError(n, available)
                n = available
            if n == 0:
                return []
            indices = self._sample_indices(n, rng if rng is not None else self.rng, strategy)
            return [self._slots[i] for i in indices]

    def snapshot(self) -> List[EnhancedExperience]:
        """Copy of the contents ordered from oldest to newest."""
        with self._lock:
            order = np.argsort(np.asarray(self._seqs, dtype=np.int64), kind="stable")
            return [self._slots[i] for i in order]

    def statistics(self) -> BufferStatistics:
        with self._lock:
            entries = list(self._slots)
            evicted = self._evicted
            added = self._next_seq
        phases = {"early": 0, "mid": 0, "end": 0}
        for exp in entries:
            phases[exp.phase] += 1
        average = float(np.mean([e.quality_score for e in entries])) if entries else 0.0
        return BufferStatistics(
            size=len(entries),
            capacity=self.capacity,
            utilization=len(entries) / self.capacity,
            average_quality=average,
            total_added=added,
            total_evicted=evicted,
            from_wins=sum(1 for e in entries if e.is_from_winning_game),
            from_draws=sum(1 for e in entries if e.is_from_draw_game),
            phase_counts=phases,
        )

    # ------------------------------------------------------------------
    def to_state(self) -> dict:
        with self._lock:
            order = np.argsort(np.asarray(self._seqs, dtype=np.int64), kind="stable")
            return {
                "capacity": self.capacity,
                "eviction": self.eviction.value,
                "sampling": self.sampling.value,
                "rng_state": self.rng.bit_generator.state,
                "experiences": [self._slots[i] for i in order],
            }

    def load_state(self, state: dict) -> None:
        experiences = state.get("experiences", [])
        for exp in experiences:
            if not isinstance(exp, EnhancedExperience):
                raise ValueError("Replay buffer state contains invalid experience type.")
        self.clear()
        self.extend(experiences)
        rng_state = state.get("rng_state")
        if rng_state is not None:
            self.rng = np.random.default_rng()
            self.rng.bit_generator.state = rng_state

    def save(self, path: str) -> None:
        with open(path, "wb") as fh:
            pickle.dump(self.to_state(), fh)

    @classmethod
    def load(cls, path: str, *, max_size: Optional[int] = None) -> "ExperienceReplayBuffer":
        with open(path, "rb") as fh:
            state = pickle.load(fh)
        buffer = cls(
            max_size or state.get("capacity", 0),
            eviction=state.get("eviction", EvictionPolicy.OLDEST_FIRST),
            sampling=state.get("sampling", SamplingStrategy.UNIFORM),
        )
        buffer.load_state(state)
        return buffer

    # ------------------------------------------------------------------
    def _add_locked(self, experience: EnhancedExperience) -> None:
        seq = self._next_seq
        self._next_seq += 1
        if len(self._slots) < self.capacity:
            slot = len(self._slots)
            self._slots.append(experience)
            self._seqs.append(seq)
        else:
            slot = self._victim_slot()
            self._slots[slot] = experience
            self._seqs[slot] = seq
            self._evicted += 1
        if self.eviction is EvictionPolicy.LOWEST_QUALITY:
            heapq.heappush(self._quality_heap, (experience.quality_score, seq, slot))

    def _victim_slot(self) -> int:
        if self.eviction is EvictionPolicy.LOWEST_QUALITY:
            _, _, slot = heapq.heappop(self._quality_heap)
            return slot
        if self.eviction is EvictionPolicy.RANDOM:
            return int(self.rng.integers(len(self._slots)))
        slot = self._head
        self._head = (self._head + 1) % self.capacity
        return slot

    def _recency_weights(self) -> np.ndarray:
        seqs = np.asarray(self._seqs, dtype=np.float64)
        weights = seqs - seqs.min() + 1.0
        return weights / weights.sum()

    def _sample_indices(
        self,
        n: int,
        rng: np.random.Generator,
        strategy: SamplingStrategy,
    ) -> np.ndarray:
        size = len(self._slots)
        if strategy is SamplingStrategy.UNIFORM:
            return rng.integers(0, size, size=n)
        weights = self._recency_weights()
        if strategy is SamplingStrategy.RECENT:
            return rng.choice(size, size=n, p=weights)
        use_recent = rng.random(n) < self.recent_fraction
        recent = rng.choice(size, size=n, p=weights)
        uniform = rng.integers(0, size, size=n)
        return np.where(use_recent, recent, uniform)
