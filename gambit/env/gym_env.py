from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import gymnasium as gym
import numpy as np
from gymnasium import spaces

from gambit.core import GameOutcome, PlayerColor
from gambit.errors import InvalidActionError


@dataclass
class StepResult:
    next_state: Any
    reward: float
    done: bool
    info: Dict[str, Any] = field(default_factory=dict)


class GameEnvironment:
    """Two-player environment driven by the self-play orchestrator.

    ``step`` reports ``info["outcome"]`` on rules-terminal steps and may set
    ``info["invalid"]`` (or raise :class:`InvalidActionError`) for an action
    the rules reject.
    """

    def reset(self) -> Any:
        raise NotImplementedError

    def step(self, action: Any) -> StepResult:
        raise NotImplementedError

    def get_valid_actions(self, state: Any) -> List[Any]:
        raise NotImplementedError

    def position_evaluation(self) -> Optional[float]:
        return None

    def game_metrics(self) -> Dict[str, float]:
        return {}

    def final_position(self) -> str:
        return ""

    def close(self) -> None:
        pass


class NimEnv(gym.Env):
    """Single-pile Nim: players alternately take 1..max_take stones, the last take wins."""

    metadata = {"render_modes": ["ansi"], "render_fps": 4}

    def __init__(
        self,
        *,
        pile_size: int = 15,
        max_take: int = 3,
        enforce_legal_actions: bool = False,
        invalid_action_reward: float = -0.1,
        render_mode: Optional[str] = None,
    ) -> None:
        super().__init__()
        if pile_size <= 0 or max_take <= 0:
            raise ValueError("pile_size and max_take must be positive.")
        self.pile_size = pile_size
        self.max_take = max_take
        self._enforce_legal = enforce_legal_actions
        self.invalid_action_reward = invalid_action_reward
        self.render_mode = render_mode

        self.observation_space = spaces.Box(low=0.0, high=1.0, shape=(pile_size + 2,), dtype=np.float32)
        self.action_space = spaces.Discrete(max_take)

        self._pile = pile_size
        self._to_move = PlayerColor.WHITE
        self._moves = 0
        self._invalid_moves = 0

    @property
    def observation_size(self) -> int:
        return self.pile_size + 2

    def reset(self, *, seed: Optional[int] = None, options: Optional[Dict] = None):
        super().reset(seed=seed)
        self._pile = options.get("pile_size", self.pile_size) if options else self.pile_size
        self._to_move = PlayerColor.WHITE
        self._moves = 0
        self._invalid_moves = 0
        return self._build_observation(), self._build_info()

    def step(self, action_index: int):
        if not self.action_space.contains(int(action_index)):
            raise InvalidActionError(f"Action index {action_index} out of bounds.")

        take = int(action_index) + 1
        if take > self._pile:
            if self._enforce_legal:
                raise InvalidActionError(f"Cannot take {take} stones from a pile of {self._pile}.")
            self._invalid_moves += 1
            info = self._build_info()
            info["invalid"] = True
            return self._build_observation(), self.invalid_action_reward, False, False, info

        mover = self._to_move
        self._pile -= take
        self._moves += 1
        self._to_move = mover.opposite()

        info = self._build_info()
        terminated = self._pile == 0
        reward = 0.0
        if terminated:
            reward = 1.0
            info["outcome"] = GameOutcome.WHITE_WINS if mover is PlayerColor.WHITE else GameOutcome.BLACK_WINS
        return self._build_observation(), reward, terminated, False, info

    def legal_action_mask(self) -> np.ndarray:
        mask = np.zeros(self.action_space.n, dtype=np.int8)
        mask[: min(self._pile, self.max_take)] = 1
        return mask

    def position_evaluation(self) -> float:
        """Exact value for the player to move: +1 winning, -1 losing."""
        if self._pile == 0:
            return -1.0
        return -1.0 if self._pile % (self.max_take + 1) == 0 else 1.0

    def game_metrics(self) -> Dict[str, float]:
        return {
            "moves": float(self._moves),
            "invalid_moves": float(self._invalid_moves),
            "stones_left": float(self._pile),
        }

    def render(self):
        if self.render_mode != "ansi":
            raise NotImplementedError("Only 'ansi' render mode is supported.")
        return self._render_ascii()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _build_observation(self) -> np.ndarray:
        obs = np.zeros(self.pile_size + 2, dtype=np.float32)
        obs[min(self._pile, self.pile_size)] = 1.0
        obs[-1] = 1.0 if self._to_move is PlayerColor.BLACK else 0.0
        return obs

    def _build_info(self) -> Dict[str, Any]:
        return {"legal_action_mask": self.legal_action_mask(), "to_move": self._to_move}

    def _render_ascii(self) -> str:
        return f"{'|' * self._pile} ({self._pile} left, {self._to_move.value} to move)"


class GymGameEnvironment(GameEnvironment):
    """Adapts a gymnasium env exposing ``info["legal_action_mask"]``."""

    def __init__(self, env: gym.Env) -> None:
        self.env = env
        self._info: Dict[str, Any] = {}

    def reset(self) -> Any:
        observation, info = self.env.reset()
        self._info = info
        return observation

    def step(self, action: Any) -> StepResult:
        observation, reward, terminated, truncated, info = self.env.step(action)
        info = dict(info)
        if truncated and not terminated:
            info["truncated"] = True
        self._info = info
        return StepResult(
            next_state=observation,
            reward=float(reward),
            done=bool(terminated or truncated),
            info=info,
        )

    def get_valid_actions(self, state: Any) -> List[int]:
        mask = self._info.get("legal_action_mask")
        if mask is None:
            return list(range(self.env.action_space.n))
        return [int(i) for i in np.flatnonzero(mask)]

    def position_evaluation(self) -> Optional[float]:
        evaluate = getattr(self.env, "position_evaluation", None)
        return float(evaluate()) if evaluate is not None else None

    def game_metrics(self) -> Dict[str, float]:
        metrics = getattr(self.env, "game_metrics", None)
        return dict(metrics()) if metrics is not None else {}

    def final_position(self) -> str:
        if getattr(self.env, "render_mode", None) == "ansi":
            return str(self.env.render())
        return ""

    def close(self) -> None:
        self.env.close()


def make_nim_environment(**kwargs) -> GymGameEnvironment:
    kwargs.setdefault("render_mode", "ansi")
    return GymGameEnvironment(NimEnv(**kwargs))
