from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import torch
import torch.nn.functional as F

from gambit.core import Experience
from gambit.models import TorchPolicy

logger = logging.getLogger(__name__)


@dataclass
class LearnerConfig:
    learning_rate: float = 1e-3
    discount: float = 0.99
    grad_clip: Optional[float] = 1.0
    device: Optional[torch.device] = None
    dtype: torch.dtype = torch.float32


@dataclass
class LearnerUpdate:
    loss: float
    gradient_norm: float
    entropy: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "loss": self.loss,
            "gradient_norm": self.gradient_norm,
            "entropy": self.entropy,
        }


class Learner:
    """Consumes sampled batches and updates a policy."""

    def update(self, batch: Sequence[Experience]) -> LearnerUpdate:
        raise NotImplementedError

    def set_learning_rate(self, learning_rate: float) -> None:
        pass


class Trainer(Learner):
    """One-step temporal-difference learner for a :class:`TorchPolicy`.

    Rewards are from the mover's point of view and the next state belongs to
    the opponent, so the bootstrap term is negated.
    """

    def __init__(
        self,
        policy: TorchPolicy,
        config: Optional[LearnerConfig] = None,
    ) -> None:
        self.config = config or LearnerConfig()
        self.policy = policy
        self.device = self.config.device or policy.device
        self.dtype = self.config.dtype
        self.model = policy.net.to(device=self.device, dtype=self.dtype)
        self.optimizer = torch.optim.Adam(self.model.parameters(), lr=self.config.learning_rate)

    def set_learning_rate(self, learning_rate: float) -> None:
        for group in self.optimizer.param_groups:
            group["lr"] = float(learning_rate)
        self.config.learning_rate = float(learning_rate)

    def update(self, batch: Sequence[Experience]) -> LearnerUpdate:
        if not batch:
            raise ValueError("Cannot perform a training step on an empty batch.")

        states = self._tensor(np.stack([np.asarray(e.state, dtype=np.float32) for e in batch]))
        next_states = self._tensor(np.stack([np.asarray(e.next_state, dtype=np.float32) for e in batch]))
        actions = torch.as_tensor([int(e.action) for e in batch], device=self.device, dtype=torch.long)
        rewards = self._tensor(np.asarray([e.reward for e in batch], dtype=np.float32))
        dones = self._tensor(np.asarray([float(e.done) for e in batch], dtype=np.float32))

        self.model.train()
        values = self.model(states)
        chosen = values.gather(1, actions.unsqueeze(1)).squeeze(1)
        with torch.no_grad():
            next_values = self.model(next_states).max(dim=1).values
            target = rewards - self.config.discount * (1.0 - dones) * next_values

        loss = F.smooth_l1_loss(chosen, target)

        self.optimizer.zero_grad()
        loss.backward()
        max_norm = self.config.grad_clip if self.config.grad_clip and self.config.grad_clip > 0 else float("inf")
        grad_norm = torch.nn.utils.clip_grad_norm_(self.model.parameters(), max_norm)
        self.optimizer.step()
        self.model.eval()

        with torch.no_grad():
            probs = torch.softmax(values.detach(), dim=-1)
            entropy = -(probs * torch.log(probs.clamp_min(1e-12))).sum(dim=-1).mean()

        self.policy.update_count += 1
        return LearnerUpdate(
            loss=float(loss.detach().cpu().item()),
            gradient_norm=float(grad_norm.detach().cpu().item()),
            entropy=float(entropy.cpu().item()),
        )

    def _tensor(self, array: np.ndarray) -> torch.Tensor:
        return torch.from_numpy(array).to(device=self.device, dtype=self.dtype)
