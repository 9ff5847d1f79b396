import numpy as np
import pytest

from gambit.env import make_nim_environment
from gambit.evaluation import EvaluationResult, evaluate_policies
from gambit.seeding import RandomContext
from gambit.selfplay import Policy, RandomPolicy


class PerfectNimPolicy(Policy):
    """Leaves a multiple of four stones whenever possible."""

    def select_action(self, state, valid_actions):
        pile = int(np.argmax(np.asarray(state)[:-1]))
        take = pile % 4 or 1
        return take - 1 if take - 1 in valid_actions else valid_actions[0]


def test_rates_are_over_decided_games():
    result = EvaluationResult(games_played=10, wins=4, draws=2, losses=2, step_limited=2)
    assert result.decided_games == 8
    assert result.win_rate() + result.draw_rate() + result.loss_rate() == pytest.approx(1.0)
    assert result.win_rate() == pytest.approx(0.5)
    assert result.step_limit_rate() == pytest.approx(0.2)
    assert EvaluationResult(games_played=0, wins=0, draws=0, losses=0).win_rate() == 0.0


def test_evaluation_counts_every_game():
    result = evaluate_policies(
        RandomPolicy(),
        RandomPolicy(),
        games=6,
        env_factory=lambda: make_nim_environment(pile_size=5, max_take=3),
        random_context=RandomContext(8),
    )
    assert result.games_played == 6
    assert result.wins + result.draws + result.losses + result.step_limited + result.manual == 6
    assert result.draws == 0


def test_perfect_player_wins_every_game_it_opens():
    result = evaluate_policies(
        PerfectNimPolicy(),
        RandomPolicy(),
        games=8,
        env_factory=lambda: make_nim_environment(pile_size=5, max_take=3),
        random_context=RandomContext(9),
    )
    assert result.wins >= 4
    assert result.losses <= 4
