import numpy as np
import pytest

from gambit.env import make_nim_environment
from gambit.models import PolicyNetConfig, make_torch_policy
from gambit.seeding import RandomContext
from gambit.selfplay import ExperienceReplayBuffer, SelfPlayOrchestrator
from gambit.training import LearnerConfig, Trainer


def collect_batch(policy, context, size=32):
    buffer = ExperienceReplayBuffer(512, rng=context.replay_buffer_random())
    orchestrator = SelfPlayOrchestrator(
        lambda: make_nim_environment(pile_size=6, max_take=3), context, buffer
    )
    orchestrator.run_self_play_games(policy, policy, 8)
    return buffer.sample(size)


def test_trainer_step_updates_parameters():
    context = RandomContext(10)
    policy = make_torch_policy(PolicyNetConfig(input_size=8, num_actions=3, hidden_sizes=(16,)), context)
    trainer = Trainer(policy, LearnerConfig(learning_rate=1e-2))
    batch = collect_batch(policy, context)

    before = policy.get_training_metrics()["parameter_checksum"]
    update = trainer.update(batch)

    assert np.isfinite(update.loss)
    assert update.gradient_norm >= 0.0
    assert update.entropy > 0.0
    assert policy.update_count == 1
    assert policy.get_training_metrics()["parameter_checksum"] != before
    assert set(update.as_dict()) == {"loss", "gradient_norm", "entropy"}


def test_trainer_rejects_empty_batch():
    policy = make_torch_policy(PolicyNetConfig(input_size=8, num_actions=3), RandomContext(11))
    with pytest.raises(ValueError):
        Trainer(policy).update([])


def test_learning_rate_can_be_adjusted():
    policy = make_torch_policy(PolicyNetConfig(input_size=8, num_actions=3), RandomContext(12))
    trainer = Trainer(policy)
    trainer.set_learning_rate(5e-4)
    assert all(group["lr"] == 5e-4 for group in trainer.optimizer.param_groups)
    assert trainer.config.learning_rate == 5e-4
