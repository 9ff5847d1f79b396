from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import numpy as np

from gambit.checkpoint import CheckpointConfig, CheckpointManager
from gambit.core import OutcomeBucket
from gambit.env import GameEnvironment
from gambit.errors import CheckpointError, TrainingSessionError
from gambit.evaluation import EvaluationResult, evaluate_policies, gate_model
from gambit.logging_utils import set_session_context
from gambit.seeding import RandomContext
from gambit.selfplay import (
    ExperienceReplayBuffer,
    Policy,
    RandomPolicy,
    SelfPlayOrchestrator,
    SelfPlayResults,
)
from gambit.training import Learner, LearnerUpdate
from gambit.validation import validate_buffer_sample

from .config import PARAMETER_RULES, SessionConfig, to_snake_case

try:
    from torch.utils.tensorboard import SummaryWriter
except ImportError:  # pragma: no cover
    SummaryWriter = None

logger = logging.getLogger(__name__)

PolicyFactory = Callable[[SessionConfig, RandomContext], Policy]
LearnerFactory = Callable[[Policy, SessionConfig], Learner]


class TrainingState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class TrainingSession:
    session_id: str
    config: SessionConfig
    start_time: float
    state: TrainingState = TrainingState.STARTING
    iterations_completed: int = 0
    successful_games: int = 0
    end_time: Optional[float] = None
    error_message: Optional[str] = None


# ----------------------------------------------------------------------
# Result types
# ----------------------------------------------------------------------
@dataclass
class ControlSuccess:
    message: str
    session_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return True


@dataclass
class ControlError:
    message: str

    @property
    def success(self) -> bool:
        return False


ControlResult = Union[ControlSuccess, ControlError]


@dataclass
class ConfigurationUpdate:
    parameter: str
    new_value: Any
    reason: str = ""


@dataclass
class ConfigurationChange:
    parameter: str
    old_value: Any
    new_value: Any
    reason: str
    timestamp: float
    rollback: bool = False


@dataclass
class ConfigApplied:
    message: str
    change: ConfigurationChange


@dataclass
class ConfigValid:
    message: str


@dataclass
class ConfigInvalid:
    errors: List[str]


@dataclass
class ConfigError:
    message: str


ConfigurationResult = Union[ConfigApplied, ConfigValid, ConfigInvalid, ConfigError]


@dataclass
class IterationMetrics:
    iteration: int
    games_played: int
    failed_games: int
    experiences_collected: int
    win_rate: float
    draw_rate: float
    loss_rate: float
    step_limit_rate: float
    average_game_length: float
    average_quality: float
    average_loss: float
    average_gradient_norm: float
    average_entropy: float
    training_updates: int
    buffer_size: int
    buffer_utilization: float
    evaluation_games: int
    self_play_duration: float
    training_duration: float
    evaluation_duration: float
    checkpoint_version: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrainingStatus:
    state: TrainingState
    session: Optional[TrainingSession]
    latest_metrics: Optional[IterationMetrics]
    recent_metrics: List[IterationMetrics] = field(default_factory=list)
    recent_changes: List[ConfigurationChange] = field(default_factory=list)
    buffer_size: int = 0


def aggregate_rates(wins: int, draws: int, losses: int) -> Tuple[float, float, float]:
    decided = wins + draws + losses
    if decided == 0:
        return 0.0, 0.0, 0.0
    return wins / decided, draws / decided, losses / decided


class PauseToken:
    """Pause and stop flags checked by the training loop between iterations."""

    def __init__(self) -> None:
        self._running = threading.Event()
        self._running.set()
        self.stop_event = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    @property
    def pause_requested(self) -> bool:
        return not self._running.is_set()

    def request_pause(self) -> None:
        self._running.clear()

    def request_resume(self) -> None:
        self._running.set()

    def request_stop(self) -> None:
        self.stop_event.set()
        self._running.set()

    def wait_if_paused(self) -> bool:
        """Block while paused; returns True when the loop should stop."""
        self._running.wait()
        return self.stop_event.is_set()


def _new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class TrainingLoopController:
    """Session state machine alternating self-play, learning and evaluation.

    Only one controller per process may hold an active session.
    """

    _registry_lock = threading.Lock()
    _active: Optional["TrainingLoopController"] = None

    def __init__(
        self,
        *,
        env_factory: Callable[[], GameEnvironment],
        policy_factory: PolicyFactory,
        learner_factory: LearnerFactory,
        random_context: Optional[RandomContext] = None,
        baseline_policy: Optional[Policy] = None,
        checkpoint_manager: Optional[CheckpointManager] = None,
    ) -> None:
        self.env_factory = env_factory
        self.policy_factory = policy_factory
        self.learner_factory = learner_factory
        self.random_context = random_context or RandomContext()
        self.baseline_policy = baseline_policy
        self.checkpoint_manager = checkpoint_manager

        self._lock = threading.RLock()
        self._state = TrainingState.STOPPED
        self._session: Optional[TrainingSession] = None
        self._config: Optional[SessionConfig] = None
        self._token = PauseToken()
        self._finished = threading.Event()
        self._finished.set()
        self._thread: Optional[threading.Thread] = None
        self._loop_ident: Optional[int] = None
        self._failure: Optional[TrainingSessionError] = None
        self._rollback_stack: Deque[ConfigurationChange] = deque(maxlen=10)

        self.configuration_history: List[ConfigurationChange] = []
        self.metrics_history: List[IterationMetrics] = []
        self.policy: Optional[Policy] = None
        self.learner: Optional[Learner] = None
        self.buffer: Optional[ExperienceReplayBuffer] = None
        self.orchestrator: Optional[SelfPlayOrchestrator] = None
        self.writer: Optional[SummaryWriter] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def state(self) -> TrainingState:
        return self._state

    @property
    def session(self) -> Optional[TrainingSession]:
        return self._session

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    def start(self, config: Optional[SessionConfig] = None, *, blocking: bool = False) -> ControlResult:
        config = config or SessionConfig()
        with self._lock:
            if self._state is not TrainingState.STOPPED:
                return ControlError(f"Cannot start training while {self._state.value}.")
            errors = config.validate()
            if errors:
                logger.warning("Rejected training configuration: %s", "; ".join(errors))
                return ControlError("Invalid configuration: " + "; ".join(errors))
            if not self._claim():
                return ControlError("Another training session is already active in this process.")
            session = TrainingSession(
                session_id=_new_session_id(),
                config=config,
                start_time=time.time(),
            )
            self._session = session
            self._config = config
            self._token = PauseToken()
            self._failure = None
            self._finished.clear()
            self._rollback_stack = deque(maxlen=config.max_rollback_history)
            self.configuration_history = []
            self.metrics_history = []
            self._set_state(TrainingState.STARTING)

        try:
            self._initialise(config)
        except Exception as exc:
            logger.exception("Failed to initialise training session %s", session.session_id)
            with self._lock:
                session.error_message = str(exc)
                session.end_time = time.time()
                self._set_state(TrainingState.STOPPED)
                self._release()
            self._finished.set()
            return ControlError(f"Failed to initialise training: {exc}")

        with self._lock:
            self._set_state(TrainingState.RUNNING)
        logger.info("Training session %s started (%d iterations)", session.session_id, config.iterations)

        if blocking:
            self._run_loop()
            if self._failure is not None:
                raise self._failure
            return ControlSuccess(f"Training session {session.session_id} finished.", session.session_id)

        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"training-{session.session_id}",
            daemon=True,
        )
        self._thread.start()
        return ControlSuccess("Training started.", session.session_id)

    def pause(self) -> ControlResult:
        with self._lock:
            if self._state is not TrainingState.RUNNING:
                return ControlError(f"Cannot pause training while {self._state.value}.")
            self._token.request_pause()
            self._set_state(TrainingState.PAUSED)
            session_id = self._session.session_id
        logger.info("Pause requested for session %s", session_id)
        return ControlSuccess("Training will pause at the next iteration boundary.", session_id)

    def resume(self) -> ControlResult:
        with self._lock:
            if self._state is not TrainingState.PAUSED:
                return ControlError(f"Cannot resume training while {self._state.value}.")
            self._token.request_resume()
            self._set_state(TrainingState.RUNNING)
            session_id = self._session.session_id
        logger.info("Resumed session %s", session_id)
        return ControlSuccess("Training resumed.", session_id)

    def stop(self, timeout: Optional[float] = 60.0) -> ControlResult:
        with self._lock:
            if self._state not in (TrainingState.STARTING, TrainingState.RUNNING, TrainingState.PAUSED):
                return ControlError(f"Cannot stop training while {self._state.value}.")
            self._token.request_stop()
            if self.orchestrator is not None:
                self.orchestrator.stop()
            session_id = self._session.session_id
        logger.info("Stop requested for session %s", session_id)
        if threading.get_ident() != self._loop_ident:
            if not self._finished.wait(timeout):
                return ControlError(f"Session {session_id} did not stop within {timeout} seconds.")
        return ControlSuccess("Training stopped.", session_id)

    def restart(self, new_config: Optional[SessionConfig] = None, *, blocking: bool = False) -> ControlResult:
        with self._lock:
            config = new_config or self._config
            active = self._state is not TrainingState.STOPPED
        if config is None:
            return ControlError("No configuration available to restart with.")
        if active:
            result = self.stop()
            if not result.success and self._state is not TrainingState.STOPPED:
                return result
        return self.start(config, blocking=blocking)

    def wait(self, timeout: Optional[float] = None) -> bool:
        finished = self._finished.wait(timeout)
        if finished and self._failure is not None:
            raise self._failure
        return finished

    def close(self) -> None:
        if self._state is not TrainingState.STOPPED:
            self.stop()
        if self.writer:
            self.writer.close()
            self.writer = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def adjust_configuration(
        self,
        update: ConfigurationUpdate,
        validate_only: bool = False,
    ) -> ConfigurationResult:
        try:
            name = to_snake_case(update.parameter)
            rule = PARAMETER_RULES.get(name)
            if rule is None:
                return ConfigInvalid([f"Unknown or non-adjustable parameter '{update.parameter}'."])
            value, error = rule.check(name, update.new_value)
            if error:
                return ConfigInvalid([error])
            if validate_only:
                return ConfigValid(f"{name}={value!r} is valid.")

            with self._lock:
                if self._config is None:
                    return ConfigError("No training configuration is loaded.")
                old_value = getattr(self._config, name)
                candidate = replace(self._config, **{name: value})
                errors = candidate.validate()
                if errors:
                    return ConfigInvalid(errors)
                self._install_config(candidate)
                change = ConfigurationChange(
                    parameter=name,
                    old_value=old_value,
                    new_value=value,
                    reason=update.reason,
                    timestamp=time.time(),
                )
                self._rollback_stack.append(change)
                self.configuration_history.append(change)
        except Exception as exc:
            logger.exception("Configuration adjustment of %s failed", update.parameter)
            return ConfigError(f"Failed to adjust {update.parameter}: {exc}")

        logger.info("Configuration %s changed from %r to %r (%s)", name, old_value, value, update.reason)
        return ConfigApplied(f"{name} changed from {old_value!r} to {value!r}.", change)

    def rollback_configuration(self) -> ConfigurationResult:
        with self._lock:
            if not self._rollback_stack:
                return ConfigError("No configuration changes to roll back.")
            change = self._rollback_stack.pop()
            current = getattr(self._config, change.parameter)
            self._install_config(replace(self._config, **{change.parameter: change.old_value}))
            record = ConfigurationChange(
                parameter=change.parameter,
                old_value=current,
                new_value=change.old_value,
                reason=f"rollback: {change.reason}" if change.reason else "rollback",
                timestamp=time.time(),
                rollback=True,
            )
            self.configuration_history.append(record)
        logger.info("Rolled back %s to %r", change.parameter, change.old_value)
        return ConfigApplied(f"{change.parameter} restored to {change.old_value!r}.", record)

    def get_status(self) -> TrainingStatus:
        with self._lock:
            return TrainingStatus(
                state=self._state,
                session=self._session,
                latest_metrics=self.metrics_history[-1] if self.metrics_history else None,
                recent_metrics=list(self.metrics_history[-10:]),
                recent_changes=list(self.configuration_history[-10:]),
                buffer_size=len(self.buffer) if self.buffer is not None else 0,
            )

    # ------------------------------------------------------------------
    # Iterations
    # ------------------------------------------------------------------
    def run_iteration(self) -> IterationMetrics:
        session = self._session
        with self._lock:
            config = self._config
        self._apply_runtime_config(config)
        iteration = session.iterations_completed + 1

        started = time.perf_counter()
        self_play = self.orchestrator.run_self_play_games(
            self.policy,
            self.policy,
            config.games_per_iteration,
            stop_event=self._token.stop_event,
        )
        session.successful_games += self_play.total_games
        for experience in self_play.experiences:
            self.policy.learn(experience)
        self_play_duration = time.perf_counter() - started

        started = time.perf_counter()
        updates = self._train(config)
        if config.validation_sample_size > 0:
            validate_buffer_sample(
                self.buffer,
                config.validation_sample_size,
                self.random_context.generator("validation"),
            )
        training_duration = time.perf_counter() - started

        started = time.perf_counter()
        evaluation = self._evaluate(config)
        evaluation_duration = time.perf_counter() - started

        metrics = self._build_metrics(
            iteration,
            self_play,
            updates,
            evaluation,
            (self_play_duration, training_duration, evaluation_duration),
        )
        session.iterations_completed = iteration
        self._maybe_checkpoint(config, metrics, evaluation)
        self.metrics_history.append(metrics)
        self._log_metrics(metrics)
        return metrics

    def _train(self, config: SessionConfig) -> List[LearnerUpdate]:
        updates: List[LearnerUpdate] = []
        for _ in range(config.training_batches_per_iteration):
            available = len(self.buffer)
            if available == 0 or available < config.min_buffer_size:
                break
            if available < config.batch_size and not config.allow_partial_batches:
                break
            batch = self.buffer.sample(config.batch_size, strategy=config.sampling_strategy)
            updates.append(self.learner.update(batch))
        return updates

    def _evaluate(self, config: SessionConfig) -> Optional[EvaluationResult]:
        if config.evaluation_games <= 0:
            return None
        return evaluate_policies(
            self.policy,
            self.baseline_policy,
            games=config.evaluation_games,
            env_factory=self.env_factory,
            random_context=self.random_context,
            max_steps_per_game=config.max_steps_per_game,
            max_concurrent_games=config.self_play.max_concurrent_games,
        )

    def _build_metrics(
        self,
        iteration: int,
        self_play: SelfPlayResults,
        updates: List[LearnerUpdate],
        evaluation: Optional[EvaluationResult],
        durations: Tuple[float, float, float],
    ) -> IterationMetrics:
        if evaluation is not None:
            win_rate, draw_rate, loss_rate = aggregate_rates(
                evaluation.wins, evaluation.draws, evaluation.losses
            )
        else:
            counts = self_play.outcome_counts
            win_rate, draw_rate, loss_rate = aggregate_rates(
                counts[OutcomeBucket.WHITE_WINS],
                counts[OutcomeBucket.DRAW],
                counts[OutcomeBucket.BLACK_WINS],
            )

        def mean(key: str) -> float:
            return float(np.mean([getattr(u, key) for u in updates])) if updates else 0.0

        return IterationMetrics(
            iteration=iteration,
            games_played=self_play.total_games,
            failed_games=self_play.failed_games,
            experiences_collected=self_play.total_experiences,
            win_rate=win_rate,
            draw_rate=draw_rate,
            loss_rate=loss_rate,
            step_limit_rate=self_play.step_limit_rate,
            average_game_length=self_play.average_game_length,
            average_quality=self_play.experience_quality_metrics.average_quality_score,
            average_loss=mean("loss"),
            average_gradient_norm=mean("gradient_norm"),
            average_entropy=mean("entropy"),
            training_updates=len(updates),
            buffer_size=len(self.buffer),
            buffer_utilization=self.buffer.utilization(),
            evaluation_games=evaluation.games_played if evaluation is not None else 0,
            self_play_duration=durations[0],
            training_duration=durations[1],
            evaluation_duration=durations[2],
        )

    def _maybe_checkpoint(
        self,
        config: SessionConfig,
        metrics: IterationMetrics,
        evaluation: Optional[EvaluationResult],
    ) -> None:
        if self.checkpoint_manager is None or config.checkpoint_frequency <= 0:
            return
        if metrics.iteration % config.checkpoint_frequency:
            return
        promote = False
        performance = metrics.win_rate
        if evaluation is not None:
            decision = gate_model(
                evaluation,
                threshold=config.promotion_threshold,
                min_games=config.evaluation_games,
            )
            best = self.checkpoint_manager.get_best_checkpoint()
            performance = decision.win_rate
            promote = decision.promote and (best is None or performance > best.performance)
        try:
            info = self.checkpoint_manager.create_checkpoint(
                self.policy,
                metrics.iteration,
                performance=performance,
                description=f"{self._session.session_id} iteration {metrics.iteration}",
                is_best=promote,
                seed_configuration=self.random_context.get_seed_configuration().to_dict(),
                training_configuration=config.to_dict(),
                additional_info={
                    "session_id": self._session.session_id,
                    "buffer_size": metrics.buffer_size,
                    "average_loss": metrics.average_loss,
                },
            )
        except (CheckpointError, OSError) as exc:
            logger.error("Checkpoint at iteration %d failed: %s", metrics.iteration, exc)
            return
        metrics.checkpoint_version = info.version

    def _log_metrics(self, metrics: IterationMetrics) -> None:
        logger.info(
            "Iteration %d: games=%d win=%.3f draw=%.3f loss=%.3f step_limit=%.3f loss_avg=%.4f buffer=%d",
            metrics.iteration,
            metrics.games_played,
            metrics.win_rate,
            metrics.draw_rate,
            metrics.loss_rate,
            metrics.step_limit_rate,
            metrics.average_loss,
            metrics.buffer_size,
        )
        if self.writer:
            for key, value in metrics.as_dict().items():
                if key != "iteration" and isinstance(value, (int, float)):
                    self.writer.add_scalar(f"training/{key}", value, metrics.iteration)
            self.writer.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _initialise(self, config: SessionConfig) -> None:
        context = self.random_context
        if config.seed is not None:
            context.initialize_with_seed(config.seed)
        elif not context.is_seeded:
            context.initialize_with_random_seed()
        if config.deterministic:
            report = context.validate_seed_consistency()
            if not report.is_valid:
                raise TrainingSessionError(
                    "Seed validation failed: " + "; ".join(report.issues),
                    self._session.session_id,
                )

        self.buffer = ExperienceReplayBuffer(
            config.buffer.max_size,
            eviction=config.buffer.eviction,
            sampling=config.sampling_strategy,
            allow_partial=config.allow_partial_batches,
            recent_fraction=config.buffer.recent_fraction,
            rng=context.replay_buffer_random(),
        )
        self.policy = self.policy_factory(config, context)
        self.learner = self.learner_factory(self.policy, config)
        self.orchestrator = SelfPlayOrchestrator(
            self.env_factory,
            context,
            self.buffer,
            config=replace(config.self_play, max_steps_per_game=config.max_steps_per_game),
        )
        if self.baseline_policy is None:
            self.baseline_policy = RandomPolicy(context.create_seeded_random("baseline"))
        if self.checkpoint_manager is None and config.checkpoint_dir:
            self.checkpoint_manager = CheckpointManager(CheckpointConfig(base_directory=config.checkpoint_dir))
        if config.log_dir and SummaryWriter is not None and self.writer is None:
            os.makedirs(config.log_dir, exist_ok=True)
            self.writer = SummaryWriter(log_dir=config.log_dir)

    def _apply_runtime_config(self, config: SessionConfig) -> None:
        self.learner.set_learning_rate(config.learning_rate)
        if hasattr(self.policy, "exploration_rate"):
            self.policy.exploration_rate = config.exploration_rate
        if self.orchestrator.config.max_steps_per_game != config.max_steps_per_game:
            self.orchestrator.config = replace(
                self.orchestrator.config, max_steps_per_game=config.max_steps_per_game
            )

    def _install_config(self, config: SessionConfig) -> None:
        self._config = config
        if self._session is not None:
            self._session.config = config

    def _run_loop(self) -> None:
        session = self._session
        self._loop_ident = threading.get_ident()
        set_session_context(session.session_id)
        exhausted = False
        try:
            while True:
                if self._token.wait_if_paused():
                    logger.info(
                        "Session %s stopping after %d iterations",
                        session.session_id,
                        session.iterations_completed,
                    )
                    break
                with self._lock:
                    total_iterations = self._config.iterations
                if session.iterations_completed >= total_iterations:
                    exhausted = True
                    break
                self.run_iteration()
            if exhausted and session.successful_games == 0:
                raise TrainingSessionError(
                    f"No successful self-play game after {session.iterations_completed} iterations.",
                    session.session_id,
                )
        except TrainingSessionError as exc:
            logger.error("Training session %s failed: %s", session.session_id, exc)
            session.error_message = str(exc)
            self._failure = exc
        except Exception as exc:
            logger.exception("Training session %s crashed", session.session_id)
            session.error_message = str(exc)
            failure = TrainingSessionError(f"Training loop crashed: {exc}", session.session_id)
            failure.__cause__ = exc
            self._failure = failure
        finally:
            with self._lock:
                session.end_time = time.time()
                self._set_state(TrainingState.STOPPED)
                self._release()
                self._loop_ident = None
            self._finished.set()
            set_session_context(None)
            logger.info("Training session %s ended", session.session_id)

    def _set_state(self, state: TrainingState) -> None:
        self._state = state
        if self._session is not None:
            self._session.state = state

    def _claim(self) -> bool:
        with TrainingLoopController._registry_lock:
            active = TrainingLoopController._active
            if active is not None and active is not self:
                return False
            TrainingLoopController._active = self
            return True

    def _release(self) -> None:
        with TrainingLoopController._registry_lock:
            if TrainingLoopController._active is self:
                TrainingLoopController._active = None
