import numpy as np
import pytest

from gambit.errors import SeedStateError
from gambit.seeding import Component, RandomContext, SeedConfiguration, derive_component_seed


def test_same_master_seed_reproduces_draws():
    first = RandomContext(12345)
    second = RandomContext(12345)
    a = first.exploration_random().random(1000)
    b = second.exploration_random().random(1000)
    np.testing.assert_array_equal(a, b)


def test_components_get_distinct_streams():
    context = RandomContext(7)
    seeds = {component: context.component_seed(component) for component in Component}
    assert len(set(seeds.values())) == len(seeds)
    nn_draws = context.neural_network_random().random(16)
    buffer_draws = context.replay_buffer_random().random(16)
    assert not np.array_equal(nn_draws, buffer_draws)


def test_derivation_is_stable():
    assert derive_component_seed(42, "exploration") == derive_component_seed(42, Component.EXPLORATION)
    assert derive_component_seed(42, "exploration") != derive_component_seed(43, "exploration")
    assert 0 <= derive_component_seed(2**70, "general") < 2**63


def test_restore_seed_configuration_replays_stream():
    context = RandomContext(99)
    config = context.get_seed_configuration()
    expected = context.general_random().integers(0, 1000, size=20)

    restored = RandomContext().restore_seed_configuration(SeedConfiguration.from_dict(config.to_dict()))
    np.testing.assert_array_equal(restored.general_random().integers(0, 1000, size=20), expected)
    assert restored.master_seed == 99
    assert restored.is_deterministic


def test_seed_configuration_requires_seed():
    with pytest.raises(SeedStateError):
        RandomContext().get_seed_configuration()


def test_validate_seed_consistency():
    unseeded = RandomContext().validate_seed_consistency()
    assert not unseeded.is_valid

    context = RandomContext(5)
    context.create_seeded_random("policy")
    report = context.validate_seed_consistency()
    assert report.is_valid, report.issues
    assert "policy" in report.component_seeds

    random_context = RandomContext().initialize_with_random_seed()
    assert not random_context.is_deterministic
    assert random_context.validate_seed_consistency().is_valid


def test_create_seeded_random_is_independent_of_shared_generator():
    context = RandomContext(11)
    context.generator("evaluation").random(50)
    fresh = context.create_seeded_random("evaluation").random(5)
    np.testing.assert_array_equal(fresh, RandomContext(11).create_seeded_random("evaluation").random(5))


def test_spawn_seeds_are_reproducible():
    assert RandomContext(3).spawn_seeds("exploration", 8) == RandomContext(3).spawn_seeds("exploration", 8)
    with pytest.raises(ValueError):
        RandomContext(3).spawn_seeds("exploration", -1)


def test_reinitialising_discards_generator_position():
    context = RandomContext(12345)
    first = context.exploration_random().random(10)
    context.exploration_random().random(500)
    context.initialize_with_seed(12345)
    np.testing.assert_array_equal(context.exploration_random().random(10), first)
