from __future__ import annotations

from dataclasses import dataclass

from .match import EvaluationResult


@dataclass
class GatingDecision:
    promote: bool
    win_rate: float
    threshold: float
    min_games: int
    result: EvaluationResult


def gate_model(result: EvaluationResult, *, threshold: float, min_games: int) -> GatingDecision:
    """Decide promotion on wins over every game played.

    Step-limited and interrupted games count as non-wins here, so a candidate
    that only stalls cannot clear the threshold on a handful of decided games.
    """
    win_rate = result.wins / result.games_played if result.games_played else 0.0
    promote = result.games_played >= max(min_games, 1) and win_rate >= threshold
    return GatingDecision(
        promote=promote,
        win_rate=win_rate,
        threshold=threshold,
        min_games=min_games,
        result=result,
    )
