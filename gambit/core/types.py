from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class GameOutcome(str, Enum):
    WHITE_WINS = "white_wins"
    BLACK_WINS = "black_wins"
    DRAW = "draw"
    ONGOING = "ongoing"

    @property
    def is_decisive(self) -> bool:
        return self in (GameOutcome.WHITE_WINS, GameOutcome.BLACK_WINS)

    def winner(self) -> Optional["PlayerColor"]:
        if self is GameOutcome.WHITE_WINS:
            return PlayerColor.WHITE
        if self is GameOutcome.BLACK_WINS:
            return PlayerColor.BLACK
        return None


class EpisodeTerminationReason(str, Enum):
    GAME_ENDED = "game_ended"
    STEP_LIMIT = "step_limit"
    MANUAL = "manual"


class PlayerColor(str, Enum):
    WHITE = "white"
    BLACK = "black"

    def opposite(self) -> "PlayerColor":
        return PlayerColor.BLACK if self is PlayerColor.WHITE else PlayerColor.WHITE


class OutcomeBucket(str, Enum):
    """Reporting bucket of a finished game.

    ``DRAW`` only holds games that the rules declared drawn; truncated and
    abandoned games have their own buckets.
    """

    WHITE_WINS = "white_wins"
    BLACK_WINS = "black_wins"
    DRAW = "draw"
    STEP_LIMIT = "step_limit"
    MANUAL = "manual"


@dataclass(frozen=True, eq=False)
class Experience:
    state: Any
    action: Any
    reward: float
    next_state: Any
    done: bool


@dataclass(frozen=True, eq=False)
class EnhancedExperience:
    state: Any
    action: Any
    reward: float
    next_state: Any
    done: bool
    game_id: int
    move_number: int
    player_color: PlayerColor
    game_outcome: GameOutcome
    termination_reason: EpisodeTerminationReason
    quality_score: float
    is_early_game: bool
    is_mid_game: bool
    is_end_game: bool
    is_from_winning_game: bool
    is_from_draw_game: bool
    game_metrics: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.quality_score <= 1.0:
            raise ValueError(f"quality_score must be within [0, 1], got {self.quality_score}")
        if self.move_number < 1:
            raise ValueError("move_number is 1-based.")
        if (self.is_early_game, self.is_mid_game, self.is_end_game).count(True) != 1:
            raise ValueError("Exactly one of early/mid/end game flags must be set.")
        if self.is_from_winning_game and self.is_from_draw_game:
            raise ValueError("An experience cannot come from both a won and a drawn game.")
        if self.game_outcome is GameOutcome.ONGOING:
            raise ValueError("Experiences are only built for finished games.")

    @property
    def phase(self) -> str:
        if self.is_early_game:
            return "early"
        if self.is_mid_game:
            return "mid"
        return "end"

    def to_experience(self) -> Experience:
        return Experience(
            state=self.state,
            action=self.action,
            reward=self.reward,
            next_state=self.next_state,
            done=self.done,
        )


@dataclass(frozen=True, eq=False)
class SelfPlayGameResult:
    game_id: int
    game_length: int
    game_outcome: GameOutcome
    termination_reason: EpisodeTerminationReason
    game_duration: float
    experiences: Tuple[EnhancedExperience, ...]
    game_metrics: Dict[str, float] = field(default_factory=dict)
    final_position: str = ""
    first_policy_color: PlayerColor = PlayerColor.WHITE

    def __post_init__(self) -> None:
        if self.game_outcome is GameOutcome.ONGOING:
            raise ValueError(f"Game {self.game_id} finished with outcome ONGOING.")
        if self.game_length < 0:
            raise ValueError("game_length must be non-negative.")

    @property
    def bucket(self) -> OutcomeBucket:
        return classify_game(self.game_outcome, self.termination_reason)

    @property
    def is_legitimate_draw(self) -> bool:
        return self.bucket is OutcomeBucket.DRAW


def classify_game(
    outcome: GameOutcome,
    termination_reason: EpisodeTerminationReason,
) -> OutcomeBucket:
    if termination_reason is EpisodeTerminationReason.STEP_LIMIT:
        return OutcomeBucket.STEP_LIMIT
    if termination_reason is EpisodeTerminationReason.MANUAL:
        return OutcomeBucket.MANUAL
    if outcome is GameOutcome.WHITE_WINS:
        return OutcomeBucket.WHITE_WINS
    if outcome is GameOutcome.BLACK_WINS:
        return OutcomeBucket.BLACK_WINS
    if outcome is GameOutcome.DRAW:
        return OutcomeBucket.DRAW
    raise ValueError("An ongoing game has no outcome bucket.")


def coerce_outcome(value: Any, default: GameOutcome = GameOutcome.DRAW) -> GameOutcome:
    if value is None:
        return default
    if isinstance(value, GameOutcome):
        return value
    return GameOutcome(str(value).lower())
