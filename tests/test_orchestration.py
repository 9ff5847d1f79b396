import pytest

from gambit.env import make_nim_environment
from gambit.errors import TrainingSessionError
from gambit.evaluation import EvaluationResult
from gambit.models import PolicyNetConfig, make_torch_policy
from gambit.orchestration import (
    ConfigApplied,
    ConfigError,
    ConfigInvalid,
    ConfigurationUpdate,
    ConfigValid,
    SessionConfig,
    TrainingLoopController,
    TrainingState,
    aggregate_rates,
)
from gambit.selfplay import SelfPlayConfig
from gambit.training import LearnerConfig, Trainer

PILE_SIZE = 5


def nim_factory():
    return make_nim_environment(pile_size=PILE_SIZE, max_take=3)


def make_controller(env_factory=nim_factory):
    net_config = PolicyNetConfig(input_size=PILE_SIZE + 2, num_actions=3, hidden_sizes=(16,))
    return TrainingLoopController(
        env_factory=env_factory,
        policy_factory=lambda config, context: make_torch_policy(
            net_config, context, exploration_rate=config.exploration_rate
        ),
        learner_factory=lambda policy, config: Trainer(policy, LearnerConfig(learning_rate=config.learning_rate)),
    )


def small_config(**overrides) -> SessionConfig:
    fields = dict(
        iterations=2,
        games_per_iteration=4,
        batch_size=8,
        training_batches_per_iteration=2,
        evaluation_games=2,
        checkpoint_frequency=0,
        seed=123,
        deterministic=True,
        self_play=SelfPlayConfig(max_concurrent_games=2),
    )
    fields.update(overrides)
    return SessionConfig(**fields)


def test_blocking_run_completes_and_checkpoints(tmp_path):
    controller = make_controller()
    try:
        config = small_config(checkpoint_frequency=1, checkpoint_dir=str(tmp_path))
        result = controller.start(config, blocking=True)

        assert result.success
        assert controller.state is TrainingState.STOPPED
        assert controller.session.iterations_completed == 2
        assert controller.session.successful_games == 8
        assert len(controller.metrics_history) == 2
        last = controller.metrics_history[-1]
        assert last.games_played == 4
        assert last.win_rate + last.draw_rate + last.loss_rate == pytest.approx(1.0)
        assert last.checkpoint_version == 2
        assert len(list(tmp_path.glob("checkpoint_v*"))) == 2
        assert controller.get_status().buffer_size > 0
    finally:
        controller.close()


def test_control_commands_reject_invalid_states():
    controller = make_controller()
    assert not controller.pause().success
    assert not controller.resume().success
    assert not controller.stop().success
    assert not controller.restart().success
    assert isinstance(controller.rollback_configuration(), ConfigError)


def test_invalid_configuration_is_rejected():
    controller = make_controller()
    result = controller.start(small_config(iterations=0))
    assert not result.success
    assert "iterations" in result.message
    assert controller.state is TrainingState.STOPPED


def test_pause_resume_and_stop_background_session():
    controller = make_controller()
    try:
        assert controller.start(small_config(iterations=100_000)).success
        assert controller.pause().success
        assert controller.state is TrainingState.PAUSED
        assert not controller.pause().success
        assert controller.resume().success
        assert controller.state is TrainingState.RUNNING

        assert controller.stop().success
        assert controller.wait(timeout=0)
        assert controller.state is TrainingState.STOPPED
        assert controller.session.error_message is None
        assert controller.session.end_time is not None
    finally:
        controller.close()


def test_only_one_session_per_process():
    first = make_controller()
    second = make_controller()
    try:
        assert first.start(small_config(iterations=100_000)).success
        first.pause()
        result = second.start(small_config())
        assert not result.success
        assert "already active" in result.message

        assert first.stop().success
        assert second.start(small_config(iterations=1), blocking=True).success
    finally:
        first.close()
        second.close()


def test_restart_starts_a_new_session():
    controller = make_controller()
    try:
        first = controller.start(small_config(iterations=1, evaluation_games=0), blocking=True)
        second = controller.restart(blocking=True)
        assert second.success
        assert second.session_id != first.session_id
        assert controller.session.session_id == second.session_id
    finally:
        controller.close()


def test_session_without_successful_games_fails():
    def broken_factory():
        raise RuntimeError("no environment")

    controller = make_controller(env_factory=broken_factory)
    try:
        with pytest.raises(TrainingSessionError) as excinfo:
            controller.start(small_config(iterations=2), blocking=True)
        assert excinfo.value.session_id == controller.session.session_id
        assert controller.state is TrainingState.STOPPED
        assert controller.session.error_message
    finally:
        controller.close()


def test_background_failure_is_reported_by_wait():
    def broken_factory():
        raise RuntimeError("no environment")

    controller = make_controller(env_factory=broken_factory)
    try:
        assert controller.start(small_config(iterations=1)).success
        with pytest.raises(TrainingSessionError):
            controller.wait(timeout=30)
    finally:
        controller.close()


def test_adjust_and_roll_back_configuration():
    controller = make_controller()
    try:
        assert isinstance(
            controller.adjust_configuration(ConfigurationUpdate("learning_rate", 0.01)), ConfigError
        )
        controller.start(small_config(iterations=1, max_rollback_history=2), blocking=True)

        checked = controller.adjust_configuration(ConfigurationUpdate("batchSize", 4), validate_only=True)
        assert isinstance(checked, ConfigValid)
        assert controller.config.batch_size == 8

        invalid = controller.adjust_configuration(ConfigurationUpdate("learning_rate", 5.0))
        assert isinstance(invalid, ConfigInvalid)
        unknown = controller.adjust_configuration(ConfigurationUpdate("seed", 4))
        assert isinstance(unknown, ConfigInvalid)

        applied = controller.adjust_configuration(ConfigurationUpdate("learningRate", 0.01, "faster"))
        assert isinstance(applied, ConfigApplied)
        assert applied.change.old_value == 1e-3
        assert controller.config.learning_rate == 0.01
        controller.adjust_configuration(ConfigurationUpdate("batch_size", 16))
        controller.adjust_configuration(ConfigurationUpdate("batch_size", 32))

        assert isinstance(controller.rollback_configuration(), ConfigApplied)
        assert controller.config.batch_size == 16
        assert isinstance(controller.rollback_configuration(), ConfigApplied)
        assert controller.config.batch_size == 8
        # the learning rate change fell out of the bounded history
        assert isinstance(controller.rollback_configuration(), ConfigError)
        assert controller.config.learning_rate == 0.01
        assert len(controller.get_status().recent_changes) == 5
    finally:
        controller.close()


def test_aggregate_rates():
    assert aggregate_rates(0, 0, 0) == (0.0, 0.0, 0.0)
    assert aggregate_rates(2, 1, 1) == (0.5, 0.25, 0.25)


def test_mostly_step_limited_evaluation_is_not_promoted(tmp_path):
    controller = make_controller()
    stalled = EvaluationResult(games_played=8, wins=1, draws=0, losses=0, step_limited=7)
    controller._evaluate = lambda config: stalled
    try:
        config = small_config(
            iterations=1,
            evaluation_games=8,
            checkpoint_frequency=1,
            checkpoint_dir=str(tmp_path),
        )
        result = controller.start(config, blocking=True)

        assert result.success
        # One decided game won reads as a perfect rate, but gating counts every game played.
        assert controller.metrics_history[-1].win_rate == pytest.approx(1.0)
        (checkpoint,) = controller.checkpoint_manager.list_checkpoints()
        assert checkpoint.performance == pytest.approx(1 / 8)
        assert not checkpoint.metadata.is_best
    finally:
        controller.close()
