from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np

from gambit.core import Experience


class Policy:
    """Policy interface choosing one of the valid actions of a state."""

    def select_action(self, state: Any, valid_actions: Sequence[Any]) -> Any:
        raise NotImplementedError

    def spawn(self, seed: Optional[int] = None) -> "Policy":
        """Return a copy of this policy for parallel execution."""
        return self

    def learn(self, experience: Experience) -> None:
        pass

    def get_training_metrics(self) -> Dict[str, float]:
        return {}

    def state_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def load_state(self, state: Dict[str, Any]) -> None:
        raise NotImplementedError

    def save(self, path: str) -> None:
        Path(path).write_text(json.dumps(self.state_dict()))

    def load(self, path: str) -> None:
        self.load_state(json.loads(Path(path).read_text()))


class RandomPolicy(Policy):
    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        self.rng = rng or np.random.default_rng()
        self.experiences_seen = 0

    def select_action(self, state: Any, valid_actions: Sequence[Any]) -> Any:
        if not valid_actions:
            raise ValueError("No valid actions to choose from.")
        return valid_actions[int(self.rng.integers(len(valid_actions)))]

    def spawn(self, seed: Optional[int] = None) -> "RandomPolicy":
        rng = np.random.default_rng(seed)
        return RandomPolicy(rng)

    def learn(self, experience: Experience) -> None:
        self.experiences_seen += 1

    def get_training_metrics(self) -> Dict[str, float]:
        return {"experiences_seen": float(self.experiences_seen)}

    def state_dict(self) -> Dict[str, Any]:
        return {"type": "random", "experiences_seen": self.experiences_seen}

    def load_state(self, state: Dict[str, Any]) -> None:
        if state.get("type") != "random":
            raise ValueError(f"Cannot load a '{state.get('type')}' policy into RandomPolicy.")
        self.experiences_seen = int(state.get("experiences_seen", 0))
