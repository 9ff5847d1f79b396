from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from gambit.core import EnhancedExperience
from gambit.selfplay.replay_buffer import ExperienceReplayBuffer


class ReplayDataError(ValueError):
    pass


def validate_experiences(batch: Sequence[EnhancedExperience]) -> None:
    for exp in batch:
        if not np.isfinite(np.asarray(exp.state, dtype=np.float64)).all():
            raise ReplayDataError(f"game {exp.game_id} move {exp.move_number}: state contains non-finite values")
        if not np.isfinite(np.asarray(exp.next_state, dtype=np.float64)).all():
            raise ReplayDataError(f"game {exp.game_id} move {exp.move_number}: next state contains non-finite values")
        if not np.isfinite(exp.reward):
            raise ReplayDataError(f"game {exp.game_id} move {exp.move_number}: reward is not finite")
        if not 0.0 <= exp.quality_score <= 1.0:
            raise ReplayDataError("quality score out of [0,1] range")
        if (exp.is_early_game, exp.is_mid_game, exp.is_end_game).count(True) != 1:
            raise ReplayDataError("experience must belong to exactly one game phase")
        if exp.is_from_winning_game and exp.is_from_draw_game:
            raise ReplayDataError("experience flagged as both won and drawn")


def validate_buffer_sample(
    buffer: ExperienceReplayBuffer,
    sample_size: int,
    rng: Optional[np.random.Generator] = None,
) -> None:
    if len(buffer) == 0 or sample_size <= 0:
        return
    size = min(sample_size, len(buffer))
    validate_experiences(buffer.sample(size, rng))
