"""Self-play game generation and the experience replay buffer."""

from .policy import Policy, RandomPolicy
from .replay_buffer import (
    BufferStatistics,
    EvictionPolicy,
    ExperienceReplayBuffer,
    SamplingStrategy,
)
from .self_play import (
    ExperienceQualityMetrics,
    SelfPlayConfig,
    SelfPlayOrchestrator,
    SelfPlayResults,
    SelfPlayStatistics,
    game_phase,
    quality_score,
    summarize_quality,
)

__all__ = [
    "Policy",
    "RandomPolicy",
    "BufferStatistics",
    "EvictionPolicy",
    "ExperienceReplayBuffer",
    "SamplingStrategy",
    "ExperienceQualityMetrics",
    "SelfPlayConfig",
    "SelfPlayOrchestrator",
    "SelfPlayResults",
    "SelfPlayStatistics",
    "game_phase",
    "quality_score",
    "summarize_quality",
]
