import numpy as np
import pytest
import torch

from gambit.models import PolicyNet, PolicyNetConfig, TorchPolicy, make_torch_policy
from gambit.seeding import RandomContext

CONFIG = PolicyNetConfig(input_size=7, num_actions=3, hidden_sizes=(16,))


def test_network_forward_shapes():
    model = PolicyNet(CONFIG)
    values = model(torch.randn(4, 7))
    assert values.shape == (4, 3)


def test_same_seed_builds_identical_networks():
    first = make_torch_policy(CONFIG, RandomContext(21))
    second = make_torch_policy(CONFIG, RandomContext(21))
    other = make_torch_policy(CONFIG, RandomContext(22))
    checksum = first.get_training_metrics()["parameter_checksum"]
    assert checksum == second.get_training_metrics()["parameter_checksum"]
    assert checksum != other.get_training_metrics()["parameter_checksum"]


def test_greedy_selection_stays_within_valid_actions():
    policy = make_torch_policy(CONFIG, RandomContext(1), exploration_rate=0.0)
    state = np.zeros(7, dtype=np.float32)
    for valid in ([0], [1, 2], [0, 1, 2]):
        assert policy.select_action(state, valid) in valid
    with pytest.raises(ValueError):
        policy.select_action(state, [])


def test_spawned_policy_shares_network():
    policy = make_torch_policy(CONFIG, RandomContext(2))
    clone = policy.spawn(5)
    assert clone.net is policy.net
    assert clone is not policy


def test_state_round_trip_restores_weights():
    source = make_torch_policy(CONFIG, RandomContext(3))
    source.update_count = 4
    target = make_torch_policy(CONFIG, RandomContext(4))
    target.load_state(source.state_dict())

    assert target.update_count == 4
    assert target.get_training_metrics()["parameter_checksum"] == pytest.approx(
        source.get_training_metrics()["parameter_checksum"]
    )


def test_load_state_is_all_or_nothing():
    policy = make_torch_policy(CONFIG, RandomContext(5))
    before = policy.get_training_metrics()["parameter_checksum"]

    state = make_torch_policy(CONFIG, RandomContext(6)).state_dict()
    state["weights"]["head.bias"] = [0.0] * 5
    with pytest.raises(ValueError):
        policy.load_state(state)
    assert policy.get_training_metrics()["parameter_checksum"] == before

    other = TorchPolicy(PolicyNet(PolicyNetConfig(input_size=7, num_actions=3, hidden_sizes=(8,))))
    with pytest.raises(ValueError):
        policy.load_state(other.state_dict())
    with pytest.raises(ValueError):
        policy.load_state({"type": "random"})
