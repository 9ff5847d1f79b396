"""Core data model shared by the self-play engine."""

from .types import (
    EnhancedExperience,
    EpisodeTerminationReason,
    Experience,
    GameOutcome,
    OutcomeBucket,
    PlayerColor,
    SelfPlayGameResult,
    classify_game,
    coerce_outcome,
)

__all__ = [
    "Experience",
    "EnhancedExperience",
    "EpisodeTerminationReason",
    "GameOutcome",
    "OutcomeBucket",
    "PlayerColor",
    "SelfPlayGameResult",
    "classify_game",
    "coerce_outcome",
]
