"""Self-play training orchestration engine."""

from . import checkpoint, core, env, evaluation, models, orchestration, seeding, selfplay, training
from .checkpoint import BackendType, CheckpointConfig, CheckpointManager, resolve_checkpoint_path
from .core import (
    EnhancedExperience,
    EpisodeTerminationReason,
    Experience,
    GameOutcome,
    OutcomeBucket,
    PlayerColor,
    SelfPlayGameResult,
)
from .env import GameEnvironment, NimEnv, make_nim_environment
from .evaluation import EvaluationResult, evaluate_policies
from .models import PolicyNet, PolicyNetConfig, TorchPolicy
from .orchestration import (
    ConfigurationUpdate,
    SessionConfig,
    TrainingLoopController,
    TrainingState,
    load_session_config,
)
from .seeding import Component, RandomContext, SeedConfiguration
from .selfplay import (
    EvictionPolicy,
    ExperienceReplayBuffer,
    Policy,
    RandomPolicy,
    SamplingStrategy,
    SelfPlayConfig,
    SelfPlayOrchestrator,
)
from .training import LearnerConfig, Trainer

__all__ = [
    "checkpoint",
    "core",
    "env",
    "evaluation",
    "models",
    "orchestration",
    "seeding",
    "selfplay",
    "training",
    "BackendType",
    "CheckpointConfig",
    "CheckpointManager",
    "resolve_checkpoint_path",
    "EnhancedExperience",
    "EpisodeTerminationReason",
    "Experience",
    "GameOutcome",
    "OutcomeBucket",
    "PlayerColor",
    "SelfPlayGameResult",
    "GameEnvironment",
    "NimEnv",
    "make_nim_environment",
    "EvaluationResult",
    "evaluate_policies",
    "PolicyNet",
    "PolicyNetConfig",
    "TorchPolicy",
    "ConfigurationUpdate",
    "SessionConfig",
    "TrainingLoopController",
    "TrainingState",
    "load_session_config",
    "Component",
    "RandomContext",
    "SeedConfiguration",
    "EvictionPolicy",
    "ExperienceReplayBuffer",
    "Policy",
    "RandomPolicy",
    "SamplingStrategy",
    "SelfPlayConfig",
    "SelfPlayOrchestrator",
    "LearnerConfig",
    "Trainer",
]
