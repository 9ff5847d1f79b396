from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from gambit.errors import ConfigurationError
from gambit.selfplay import EvictionPolicy, SamplingStrategy, SelfPlayConfig


@dataclass
class BufferConfig:
    max_size: int = 50_000
    eviction: str = EvictionPolicy.OLDEST_FIRST.value
    recent_fraction: float = 0.5


@dataclass
class SessionConfig:
    controller_type: str = "self_play"
    iterations: int = 10
    games_per_iteration: int = 8
    max_steps_per_game: int = 200
    batch_size: int = 32
    training_batches_per_iteration: int = 4
    min_buffer_size: int = 0
    allow_partial_batches: bool = False
    sampling_strategy: str = SamplingStrategy.UNIFORM.value
    evaluation_games: int = 4
    checkpoint_frequency: int = 5
    checkpoint_dir: Optional[str] = None
    promotion_threshold: float = 0.55
    learning_rate: float = 1e-3
    exploration_rate: float = 0.1
    validation_sample_size: int = 0
    seed: Optional[int] = None
    deterministic: bool = False
    max_rollback_history: int = 10
    log_dir: Optional[str] = None
    self_play: SelfPlayConfig = field(default_factory=SelfPlayConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)

    def validate(self) -> List[str]:
        errors: List[str] = []
        if self.controller_type != "self_play":
            errors.append(f"unsupported controller_type '{self.controller_type}'")
        for name in ("iterations", "games_per_iteration", "max_steps_per_game", "batch_size"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be at least 1")
        for name in (
            "training_batches_per_iteration",
            "min_buffer_size",
            "evaluation_games",
            "checkpoint_frequency",
            "validation_sample_size",
        ):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be non-negative")
        if self.sampling_strategy not in {s.value for s in SamplingStrategy}:
            errors.append(f"unknown sampling_strategy '{self.sampling_strategy}'")
        if not 0.0 < self.learning_rate <= 1.0:
            errors.append("learning_rate must be within (0, 1]")
        if not 0.0 <= self.exploration_rate <= 1.0:
            errors.append("exploration_rate must be within [0, 1]")
        if not 0.0 <= self.promotion_threshold <= 1.0:
            errors.append("promotion_threshold must be within [0, 1]")
        if self.deterministic and self.seed is None:
            errors.append("deterministic mode requires a seed")
        if self.max_rollback_history < 1:
            errors.append("max_rollback_history must be at least 1")
        if self.buffer.max_size < 1:
            errors.append("buffer.max_size must be at least 1")
        if self.buffer.eviction not in {e.value for e in EvictionPolicy}:
            errors.append(f"unknown buffer.eviction '{self.buffer.eviction}'")
        errors.extend(f"self_play.{error}" for error in self.self_play.validate())
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        data = {to_snake_case(k): v for k, v in (data or {}).items()}
        nested = {
            "self_play": _build_section(SelfPlayConfig, data.pop("self_play", None), "self_play"),
            "buffer": _build_section(BufferConfig, data.pop("buffer", None), "buffer"),
        }
        return _build_section(cls, data, "session", **nested)


def _build_section(cls, data: Optional[Dict[str, Any]], section: str, **extra):
    data = {to_snake_case(k): v for k, v in (data or {}).items()}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {section} configuration keys: {', '.join(unknown)}")
    data.update(extra)
    return cls(**data)


def load_session_config(path: Union[str, Path]) -> SessionConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file {path} does not exist.")
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping.")
    return SessionConfig.from_dict(data)


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


# ----------------------------------------------------------------------
# Runtime-adjustable parameters
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ParameterRule:
    kind: type
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Tuple[str, ...] = ()

    def check(self, name: str, value: Any) -> Tuple[Any, Optional[str]]:
        value, error = self._coerce(name, value)
        if error:
            return value, error
        if self.minimum is not None and value < self.minimum:
            return value, f"{name} must be >= {self.minimum}, got {value}"
        if self.maximum is not None and value > self.maximum:
            return value, f"{name} must be <= {self.maximum}, got {value}"
        if self.choices and value not in self.choices:
            return value, f"{name} must be one of {', '.join(self.choices)}, got '{value}'"
        return value, None

    def _coerce(self, name: str, value: Any) -> Tuple[Any, Optional[str]]:
        if isinstance(value, bool):
            return value, f"{name} expects {self.kind.__name__}, got bool"
        if self.kind is str:
            if isinstance(value, str):
                return value.lower(), None
            return value, f"{name} expects str, got {type(value).__name__}"
        if isinstance(value, str):
            try:
                value = float(value) if self.kind is float else int(value)
            except ValueError:
                return value, f"{name} expects {self.kind.__name__}, got '{value}'"
        if self.kind is int:
            if isinstance(value, float) and not value.is_integer():
                return value, f"{name} expects int, got {value}"
            if not isinstance(value, (int, float)):
                return value, f"{name} expects int, got {type(value).__name__}"
            return int(value), None
        if not isinstance(value, (int, float)):
            return value, f"{name} expects float, got {type(value).__name__}"
        return float(value), None


PARAMETER_RULES: Dict[str, ParameterRule] = {
    "iterations": ParameterRule(int, 1, 1_000_000),
    "games_per_iteration": ParameterRule(int, 1, 100_000),
    "max_steps_per_game": ParameterRule(int, 1, 100_000),
    "batch_size": ParameterRule(int, 1, 100_000),
    "training_batches_per_iteration": ParameterRule(int, 0, 100_000),
    "evaluation_games": ParameterRule(int, 0, 100_000),
    "checkpoint_frequency": ParameterRule(int, 0, 100_000),
    "learning_rate": ParameterRule(float, 1e-8, 1.0),
    "exploration_rate": ParameterRule(float, 0.0, 1.0),
    "sampling_strategy": ParameterRule(str, choices=tuple(s.value for s in SamplingStrategy)),
}
