import numpy as np
import pytest

from gambit.core import EnhancedExperience, EpisodeTerminationReason, GameOutcome, PlayerColor
from gambit.errors import BufferUnderflowError
from gambit.selfplay import EvictionPolicy, ExperienceReplayBuffer, SamplingStrategy


def make_experience(game_id: int, quality: float = 0.5) -> EnhancedExperience:
    return EnhancedExperience(
        state=np.full(3, game_id, dtype=np.float32),
        action=0,
        reward=0.0,
        next_state=np.zeros(3, dtype=np.float32),
        done=False,
        game_id=game_id,
        move_number=1,
        player_color=PlayerColor.WHITE,
        game_outcome=GameOutcome.DRAW,
        termination_reason=EpisodeTerminationReason.GAME_ENDED,
        quality_score=quality,
        is_early_game=False,
        is_mid_game=True,
        is_end_game=False,
        is_from_winning_game=False,
        is_from_draw_game=True,
    )


def test_buffer_never_exceeds_capacity():
    buffer = ExperienceReplayBuffer(10, rng=np.random.default_rng(0))
    for i in range(15):
        buffer.add(make_experience(i))
        assert len(buffer) == min(i + 1, 10)
    assert buffer.is_full()
    assert buffer.utilization() == 1.0
    stats = buffer.statistics()
    assert stats.total_added == 15
    assert stats.total_evicted == 5


def test_oldest_first_eviction_keeps_newest():
    buffer = ExperienceReplayBuffer(10, eviction=EvictionPolicy.OLDEST_FIRST)
    assert buffer.extend(make_experience(i) for i in range(15)) == 15
    assert [exp.game_id for exp in buffer.snapshot()] == list(range(5, 15))


def test_lowest_quality_eviction():
    buffer = ExperienceReplayBuffer(3, eviction="lowest_quality", rng=np.random.default_rng(12345))
    for game_id, quality in enumerate([0.9, 0.1, 0.5]):
        buffer.add(make_experience(game_id, quality))
    buffer.add(make_experience(3, 0.8))
    assert sorted(exp.quality_score for exp in buffer.snapshot()) == [0.5, 0.8, 0.9]


def test_lowest_quality_ties_evict_oldest():
    buffer = ExperienceReplayBuffer(2, eviction=EvictionPolicy.LOWEST_QUALITY)
    buffer.add(make_experience(0, 0.5))
    buffer.add(make_experience(1, 0.5))
    buffer.add(make_experience(2, 0.7))
    assert sorted(exp.game_id for exp in buffer.snapshot()) == [1, 2]


def test_sample_larger_than_buffer_raises():
    buffer = ExperienceReplayBuffer(10)
    buffer.extend(make_experience(i) for i in range(3))
    with pytest.raises(BufferUnderflowError) as excinfo:
        buffer.sample(5)
    assert excinfo.value.requested == 5
    assert excinfo.value.available == 3
    with pytest.raises(ValueError):
        buffer.sample(0)


def test_partial_sampling_returns_what_is_available():
    buffer = ExperienceReplayBuffer(10, allow_partial=True)
    assert buffer.sample(4) == []
    buffer.extend(make_experience(i) for i in range(3))
    assert len(buffer.sample(5)) == 3


def test_sampling_is_deterministic_for_a_seed():
    def draw(strategy):
        buffer = ExperienceReplayBuffer(50, rng=np.random.default_rng(7))
        buffer.extend(make_experience(i) for i in range(40))
        return [exp.game_id for exp in buffer.sample(16, strategy=strategy)]

    for strategy in SamplingStrategy:
        assert draw(strategy) == draw(strategy)


def test_consecutive_samples_advance_the_generator():
    buffer = ExperienceReplayBuffer(50, rng=np.random.default_rng(7))
    buffer.extend(make_experience(i) for i in range(40))

    first = [exp.game_id for exp in buffer.sample(16)]
    second = [exp.game_id for exp in buffer.sample(16)]

    assert first != second


def test_clear_keeps_capacity_and_accepts_new_entries():
    buffer = ExperienceReplayBuffer(5, eviction=EvictionPolicy.LOWEST_QUALITY, rng=np.random.default_rng(0))
    buffer.extend(make_experience(i, quality=0.1 * i) for i in range(5))

    buffer.clear()

    assert len(buffer) == 0
    assert buffer.capacity == 5
    assert not buffer.is_full()
    with pytest.raises(BufferUnderflowError):
        buffer.sample(1)

    buffer.extend(make_experience(i, quality=0.5) for i in range(10, 16))
    assert len(buffer) == 5
    assert sorted(exp.game_id for exp in buffer.snapshot()) == [11, 12, 13, 14, 15]


def test_recent_sampling_prefers_new_entries():
    buffer = ExperienceReplayBuffer(100, sampling=SamplingStrategy.RECENT, rng=np.random.default_rng(1))
    buffer.extend(make_experience(i) for i in range(100))
    ids = [exp.game_id for exp in buffer.sample(2000)]
    assert np.mean(ids) > 55


def test_save_and_load_round_trip(tmp_path):
    buffer = ExperienceReplayBuffer(5, eviction=EvictionPolicy.LOWEST_QUALITY)
    buffer.extend(make_experience(i, quality=i / 10) for i in range(5))
    path = tmp_path / "buffer.pkl"
    buffer.save(str(path))

    restored = ExperienceReplayBuffer.load(str(path))
    assert restored.capacity == 5
    assert restored.eviction is EvictionPolicy.LOWEST_QUALITY
    assert [exp.game_id for exp in restored.snapshot()] == [0, 1, 2, 3, 4]


def test_lowest_quality_keeps_the_best_entries():
    buffer = ExperienceReplayBuffer(10, eviction=EvictionPolicy.LOWEST_QUALITY, rng=np.random.default_rng(12345))
    qualities = [round(0.05 + i * 0.06, 2) for i in range(15)]
    for game_id, quality in enumerate(qualities):
        buffer.add(make_experience(game_id, quality))

    kept = sorted(exp.quality_score for exp in buffer.snapshot())
    assert kept == sorted(qualities)[-10:]
    assert buffer.statistics().total_evicted == 5
