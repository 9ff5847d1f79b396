from __future__ import annotations

import contextlib
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from gambit.core import Experience
from gambit.seeding import Component, RandomContext
from gambit.selfplay.policy import Policy


@dataclass
class PolicyNetConfig:
    input_size: int
    num_actions: int
    hidden_sizes: Tuple[int, ...] = (64, 64)

    def __post_init__(self) -> None:
        self.hidden_sizes = tuple(int(h) for h in self.hidden_sizes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyNetConfig":
        return cls(
            input_size=int(data["input_size"]),
            num_actions=int(data["num_actions"]),
            hidden_sizes=tuple(int(h) for h in data.get("hidden_sizes", (64, 64))),
        )


class PolicyNet(nn.Module):
    """MLP producing one action value per action index."""

    def __init__(self, config: PolicyNetConfig) -> None:
        super().__init__()
        self.config = config
        layers = []
        in_features = config.input_size
        for hidden in config.hidden_sizes:
            layers.append(nn.Linear(in_features, hidden))
            in_features = hidden
        self.hidden = nn.ModuleList(layers)
        self.head = nn.Linear(in_features, config.num_actions)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        for layer in self.hidden:
            x = F.relu(layer(x))
        return self.head(x)


@contextlib.contextmanager
def torch_seed_scope(context: RandomContext) -> Iterator[None]:
    """Seed torch from the neural-network component without leaking global RNG state."""
    seed = context.component_seed(Component.NEURAL_NETWORK)
    with torch.random.fork_rng(devices=[]):
        torch.manual_seed(seed)
        yield


def build_policy_net(config: PolicyNetConfig, context: Optional[RandomContext] = None) -> PolicyNet:
    if context is None:
        return PolicyNet(config)
    with torch_seed_scope(context):
        return PolicyNet(config)


class TorchPolicy(Policy):
    """Epsilon-greedy policy over the action values of a :class:`PolicyNet`.

    Spawned copies share the network, so they see weight updates made by the
    learner between self-play batches.
    """

    def __init__(
        self,
        net: PolicyNet,
        *,
        exploration_rate: float = 0.1,
        rng: Optional[np.random.Generator] = None,
        device: Optional[torch.device] = None,
    ) -> None:
        self.net = net
        self.device = device or torch.device("cpu")
        self.net.to(self.device)
        self.exploration_rate = float(exploration_rate)
        self.rng = rng or np.random.default_rng()
        self.update_count = 0
        self.experiences_seen = 0

    @torch.no_grad()
    def action_values(self, state: Any) -> np.ndarray:
        x = torch.as_tensor(np.asarray(state, dtype=np.float32), device=self.device).unsqueeze(0)
        return self.net(x)[0].cpu().numpy()

    def select_action(self, state: Any, valid_actions: Sequence[Any]) -> Any:
        if not valid_actions:
            raise ValueError("No valid actions to choose from.")
        if self.rng.random() < self.exploration_rate:
            return valid_actions[int(self.rng.integers(len(valid_actions)))]
        values = self.action_values(state)
        scores = [values[int(a)] for a in valid_actions]
        return valid_actions[int(np.argmax(scores))]

    def spawn(self, seed: Optional[int] = None) -> "TorchPolicy":
        clone = TorchPolicy(
            self.net,
            exploration_rate=self.exploration_rate,
            rng=np.random.default_rng(seed),
            device=self.device,
        )
        return clone

    def learn(self, experience: Experience) -> None:
        self.experiences_seen += 1

    def get_training_metrics(self) -> Dict[str, float]:
        with torch.no_grad():
            params = [p.detach().cpu().double() for p in self.net.parameters()]
            norm = float(torch.sqrt(sum((p ** 2).sum() for p in params)))
            checksum = float(sum(p.sum() for p in params))
        return {
            "parameter_count": float(sum(p.numel() for p in params)),
            "parameter_norm": norm,
            "parameter_checksum": checksum,
            "update_count": float(self.update_count),
            "experiences_seen": float(self.experiences_seen),
            "exploration_rate": self.exploration_rate,
        }

    # ------------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        return {
            "type": "torch",
            "config": asdict(self.net.config),
            "weights": {
                name: tensor.detach().cpu().tolist() for name, tensor in self.net.state_dict().items()
            },
            "exploration_rate": self.exploration_rate,
            "update_count": self.update_count,
            "experiences_seen": self.experiences_seen,
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        # Build and check every tensor before touching the live network.
        if state.get("type") != "torch":
            raise ValueError(f"Cannot load a '{state.get('type')}' policy into TorchPolicy.")
        config = PolicyNetConfig.from_dict(state["config"])
        if config != self.net.config:
            raise ValueError(f"Checkpoint network {config} does not match {self.net.config}.")
        current = self.net.state_dict()
        weights = state["weights"]
        if set(weights) != set(current):
            raise ValueError("Checkpoint weights do not match the network parameters.")
        loaded = {}
        for name, reference in current.items():
            tensor = torch.as_tensor(weights[name], dtype=reference.dtype)
            if tensor.shape != reference.shape:
                raise ValueError(
                    f"Shape mismatch for {name}: expected {tuple(reference.shape)}, got {tuple(tensor.shape)}"
                )
            loaded[name] = tensor
        exploration_rate = float(state.get("exploration_rate", self.exploration_rate))
        update_count = int(state.get("update_count", 0))
        experiences_seen = int(state.get("experiences_seen", 0))

        self.net.load_state_dict(loaded)
        self.exploration_rate = exploration_rate
        self.update_count = update_count
        self.experiences_seen = experiences_seen


def make_torch_policy(
    config: PolicyNetConfig,
    context: RandomContext,
    *,
    exploration_rate: float = 0.1,
    device: Optional[torch.device] = None,
) -> TorchPolicy:
    net = build_policy_net(config, context)
    return TorchPolicy(
        net,
        exploration_rate=exploration_rate,
        rng=context.create_seeded_random("policy"),
        device=device,
    )
