import gymnasium as gym
import numpy as np
import pytest

from gambit.core import GameOutcome, PlayerColor
from gambit.env import GymGameEnvironment, NimEnv, make_nim_environment
from gambit.errors import InvalidActionError


def test_reset_returns_valid_observation():
    env = NimEnv(pile_size=5, max_take=3)
    obs, info = env.reset()

    assert obs.shape == (env.observation_size,)
    assert obs[5] == 1.0
    assert obs[-1] == 0.0
    assert info["to_move"] is PlayerColor.WHITE
    np.testing.assert_array_equal(info["legal_action_mask"], [1, 1, 1])


def test_last_take_wins():
    env = NimEnv(pile_size=4, max_take=3)
    env.reset()
    _, reward, terminated, truncated, info = env.step(0)
    assert not terminated and not truncated
    assert info["to_move"] is PlayerColor.BLACK

    _, reward, terminated, _, info = env.step(2)
    assert terminated
    assert reward == 1.0
    assert info["outcome"] is GameOutcome.BLACK_WINS


def test_legal_mask_shrinks_with_pile():
    env = NimEnv(pile_size=2, max_take=3)
    env.reset()
    np.testing.assert_array_equal(env.legal_action_mask(), [1, 1, 0])


def test_illegal_take_is_flagged_or_rejected():
    env = NimEnv(pile_size=2, max_take=3, invalid_action_reward=-0.25)
    env.reset()
    obs, reward, terminated, _, info = env.step(2)
    assert info["invalid"]
    assert reward == -0.25
    assert not terminated
    assert info["to_move"] is PlayerColor.WHITE

    strict = NimEnv(pile_size=2, max_take=3, enforce_legal_actions=True)
    strict.reset()
    with pytest.raises(InvalidActionError):
        strict.step(2)
    with pytest.raises(InvalidActionError):
        strict.step(7)


def test_position_evaluation_matches_nim_theory():
    env = NimEnv(pile_size=8, max_take=3)
    env.reset()
    assert env.position_evaluation() == -1.0
    env.step(0)
    assert env.position_evaluation() == 1.0


def test_adapter_exposes_valid_actions_and_render():
    env = make_nim_environment(pile_size=3, max_take=3)
    state = env.reset()
    assert env.get_valid_actions(state) == [0, 1, 2]
    result = env.step(1)
    assert env.get_valid_actions(result.next_state) == [0]
    assert "1 left" in env.final_position()
    assert env.game_metrics()["moves"] == 1.0


def test_adapter_maps_truncation():
    env = GymGameEnvironment(gym.wrappers.TimeLimit(NimEnv(pile_size=20, max_take=1), max_episode_steps=2))
    env.reset()
    assert not env.step(0).done
    result = env.step(0)
    assert result.done
    assert result.info["truncated"]
    assert "outcome" not in result.info
