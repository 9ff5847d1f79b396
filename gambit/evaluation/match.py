from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from gambit.core import OutcomeBucket
from gambit.env import GameEnvironment
from gambit.seeding import RandomContext
from gambit.selfplay.policy import Policy
from gambit.selfplay.self_play import SelfPlayConfig, SelfPlayOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Match tally from the evaluated policy's point of view.

    Rates are taken over games that reached a rules-terminal result, so they
    sum to one whenever at least one game finished; truncated and abandoned
    games are reported separately.
    """

    games_played: int
    wins: int
    draws: int
    losses: int
    step_limited: int = 0
    manual: int = 0
    average_length: float = 0.0

    @property
    def decided_games(self) -> int:
        return self.wins + self.draws + self.losses

    def win_rate(self) -> float:
        return self.wins / self.decided_games if self.decided_games else 0.0

    def draw_rate(self) -> float:
        return self.draws / self.decided_games if self.decided_games else 0.0

    def loss_rate(self) -> float:
        return self.losses / self.decided_games if self.decided_games else 0.0

    def step_limit_rate(self) -> float:
        return self.step_limited / self.games_played if self.games_played else 0.0


def evaluate_policies(
    policy: Policy,
    baseline: Policy,
    *,
    games: int,
    env_factory: Callable[[], GameEnvironment],
    random_context: Optional[RandomContext] = None,
    max_steps_per_game: int = 200,
    max_concurrent_games: int = 1,
) -> EvaluationResult:
    """Play ``games`` games alternating colours; nothing is written to a buffer."""
    context = random_context or RandomContext().initialize_with_random_seed()
    orchestrator = SelfPlayOrchestrator(
        env_factory,
        context,
        buffer=None,
        config=SelfPlayConfig(
            max_concurrent_games=max_concurrent_games,
            max_steps_per_game=max_steps_per_game,
            progress_report_interval=0,
        ),
    )
    results = orchestrator.run_self_play_games(policy, baseline, games)

    wins = draws = losses = step_limited = manual = 0
    for game in results.game_results:
        bucket = game.bucket
        if bucket is OutcomeBucket.STEP_LIMIT:
            step_limited += 1
        elif bucket is OutcomeBucket.MANUAL:
            manual += 1
        elif bucket is OutcomeBucket.DRAW:
            draws += 1
        elif game.game_outcome.winner() is game.first_policy_color:
            wins += 1
        else:
            losses += 1

    result = EvaluationResult(
        games_played=results.total_games,
        wins=wins,
        draws=draws,
        losses=losses,
        step_limited=step_limited,
        manual=manual,
        average_length=results.average_game_length,
    )
    logger.info(
        "Evaluation: %d games, %d wins, %d draws, %d losses, %d step-limited",
        result.games_played,
        wins,
        draws,
        losses,
        step_limited,
    )
    return result

