from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from gambit.core import (
    EnhancedExperience,
    EpisodeTerminationReason,
    GameOutcome,
    OutcomeBucket,
    PlayerColor,
    SelfPlayGameResult,
    coerce_outcome,
)
from gambit.env import GameEnvironment, StepResult
from gambit.errors import InvalidActionError
from gambit.seeding import Component, RandomContext
from gambit.selfplay.policy import Policy
from gambit.selfplay.replay_buffer import ExperienceReplayBuffer

logger = logging.getLogger(__name__)


@dataclass
class SelfPlayConfig:
    max_concurrent_games: int = 4
    max_steps_per_game: int = 200
    win_reward: float = 1.0
    loss_reward: float = -1.0
    draw_reward: float = 0.0
    step_limit_penalty: float = -0.5
    invalid_action_reward: float = -0.1
    early_game_fraction: float = 0.3
    end_game_fraction: float = 0.7
    high_quality_threshold: float = 0.7
    low_quality_threshold: float = 0.4
    progress_report_interval: int = 10

    def validate(self) -> List[str]:
        errors = []
        if self.max_concurrent_games < 1:
            errors.append("max_concurrent_games must be at least 1")
        if self.max_steps_per_game < 1:
            errors.append("max_steps_per_game must be at least 1")
        if not 0.0 < self.early_game_fraction <= self.end_game_fraction < 1.0:
            errors.append("phase fractions must satisfy 0 < early <= end < 1")
        if not 0.0 <= self.low_quality_threshold <= self.high_quality_threshold <= 1.0:
            errors.append("quality thresholds must satisfy 0 <= low <= high <= 1")
        return errors


@dataclass
class ExperienceQualityMetrics:
    average_quality_score: float = 0.0
    high_quality_experiences: int = 0
    medium_quality_experiences: int = 0
    low_quality_experiences: int = 0
    experiences_from_wins: int = 0
    experiences_from_draws: int = 0
    experiences_from_incomplete: int = 0

    @property
    def total(self) -> int:
        return (
            self.high_quality_experiences
            + self.medium_quality_experiences
            + self.low_quality_experiences
        )


@dataclass
class SelfPlayResults:
    total_games: int
    total_experiences: int
    total_duration: float
    game_results: List[SelfPlayGameResult]
    outcome_counts: Dict[OutcomeBucket, int]
    average_game_length: float
    experience_quality_metrics: ExperienceQualityMetrics
    failed_games: int = 0

    def _rate(self, bucket: OutcomeBucket) -> float:
        return self.outcome_counts.get(bucket, 0) / self.total_games if self.total_games else 0.0

    @property
    def win_rate(self) -> float:
        return self._rate(OutcomeBucket.WHITE_WINS) + self._rate(OutcomeBucket.BLACK_WINS)

    @property
    def legitimate_draw_rate(self) -> float:
        return self._rate(OutcomeBucket.DRAW)

    @property
    def step_limit_rate(self) -> float:
        return self._rate(OutcomeBucket.STEP_LIMIT)

    @property
    def manual_rate(self) -> float:
        return self._rate(OutcomeBucket.MANUAL)

    @property
    def experiences(self) -> List[EnhancedExperience]:
        return [exp for game in self.game_results for exp in game.experiences]


@dataclass
class SelfPlayStatistics:
    batches: int = 0
    total_games: int = 0
    total_experiences: int = 0
    failed_games: int = 0
    outcome_counts: Dict[OutcomeBucket, int] = field(
        default_factory=lambda: {bucket: 0 for bucket in OutcomeBucket}
    )


@dataclass
class _Transition:
    state: Any
    action: Any
    reward: float
    next_state: Any
    done: bool
    player: PlayerColor
    evaluation: Optional[float]


def game_phase(move_index: int, game_length: int, config: SelfPlayConfig) -> Tuple[bool, bool, bool]:
    progress = move_index / game_length if game_length else 0.0
    if progress < config.early_game_fraction:
        return True, False, False
    if progress >= config.end_game_fraction:
        return False, False, True
    return False, True, False


def quality_score(
    outcome: GameOutcome,
    termination_reason: EpisodeTerminationReason,
    reward: float,
    is_end_game: bool,
    position_evaluation: Optional[float] = None,
) -> float:
    score = 0.5
    if termination_reason is EpisodeTerminationReason.GAME_ENDED:
        score += 0.3
        if outcome.is_decisive:
            score += 0.2
        elif outcome is GameOutcome.DRAW:
            score += 0.1
    elif termination_reason is EpisodeTerminationReason.STEP_LIMIT:
        score += 0.1
    if abs(reward) > 0.5:
        score += 0.1
    if abs(reward) > 1.0:
        score += 0.1
    if is_end_game:
        score += 0.1
    if position_evaluation is not None and np.isfinite(position_evaluation):
        score += 0.1 * min(abs(float(position_evaluation)), 1.0)
    return float(min(max(score, 0.0), 1.0))


def summarize_quality(
    experiences: Sequence[EnhancedExperience],
    config: SelfPlayConfig,
) -> ExperienceQualityMetrics:
    metrics = ExperienceQualityMetrics()
    if not experiences:
        return metrics
    for exp in experiences:
        if exp.quality_score >= config.high_quality_threshold:
            metrics.high_quality_experiences += 1
        elif exp.quality_score >= config.low_quality_threshold:
            metrics.medium_quality_experiences += 1
        else:
            metrics.low_quality_experiences += 1
        if exp.is_from_winning_game:
            metrics.experiences_from_wins += 1
        elif exp.is_from_draw_game:
            metrics.experiences_from_draws += 1
        if exp.termination_reason is not EpisodeTerminationReason.GAME_ENDED:
            metrics.experiences_from_incomplete += 1
    metrics.average_quality_score = float(np.mean([e.quality_score for e in experiences]))
    return metrics


class SelfPlayOrchestrator:
    """Plays batches of games between two policies and feeds the buffer."""

    def __init__(
        self,
        env_factory: Callable[[], GameEnvironment],
        random_context: RandomContext,
        buffer: Optional[ExperienceReplayBuffer] = None,
        *,
        config: Optional[SelfPlayConfig] = None,
    ) -> None:
        self.env_factory = env_factory
        self.random_context = random_context
        self.buffer = buffer
        self.config = config or SelfPlayConfig()
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self._statistics = SelfPlayStatistics()
        self._next_game_id = 1

    def stop(self) -> None:
        self._stop_event.set()

    def reset_stop(self) -> None:
        self._stop_event.clear()

    def get_current_statistics(self) -> SelfPlayStatistics:
        with self._stats_lock:
            return SelfPlayStatistics(
                batches=self._statistics.batches,
                total_games=self._statistics.total_games,
                total_experiences=self._statistics.total_experiences,
                failed_games=self._statistics.failed_games,
                outcome_counts=dict(self._statistics.outcome_counts),
            )

    def run_self_play_games(
        self,
        policy_a: Policy,
        policy_b: Policy,
        num_games: int,
        stop_event: Optional[threading.Event] = None,
    ) -> SelfPlayResults:
        if num_games < 0:
            raise ValueError("num_games must be non-negative.")
        config = self.config
        started = time.perf_counter()

        def should_stop() -> bool:
            return self._stop_event.is_set() or (stop_event is not None and stop_event.is_set())

        seeds = self.random_context.spawn_seeds(Component.EXPLORATION, num_games)
        first_id = self._next_game_id
        self._next_game_id += num_games

        completed: Dict[int, SelfPlayGameResult] = {}
        failed = 0
        workers = max(1, min(config.max_concurrent_games, num_games or 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="self-play") as executor:
            futures = {}
            for offset, seed in enumerate(seeds):
                game_id = first_id + offset
                seed_a, seed_b = (int(s) for s in np.random.default_rng(seed).integers(2**32, size=2))
                first_color = PlayerColor.WHITE if offset % 2 == 0 else PlayerColor.BLACK
                future = executor.submit(
                    self._run_game,
                    game_id,
                    policy_a,
                    policy_b,
                    (seed_a, seed_b),
                    first_color,
                    should_stop,
                )
                futures[future] = game_id

            for future in as_completed(futures):
                game_id = futures[future]
                try:
                    completed[game_id] = future.result()
                except Exception:
                    failed += 1
                    logger.exception("Self-play game %d failed; excluding it from the batch", game_id)
                    continue
                done = len(completed) + failed
                if config.progress_report_interval > 0 and done % config.progress_report_interval == 0:
                    logger.info("Self-play progress: %d/%d games", done, num_games)

        game_results = [completed[game_id] for game_id in sorted(completed)]
        experiences = [exp for game in game_results for exp in game.experiences]
        if self.buffer is not None and experiences:
            self.buffer.extend(experiences)

        outcome_counts = {bucket: 0 for bucket in OutcomeBucket}
        for game in game_results:
            outcome_counts[game.bucket] += 1

        total_games = len(game_results)
        results = SelfPlayResults(
            total_games=total_games,
            total_experiences=len(experiences),
            total_duration=time.perf_counter() - started,
            game_results=game_results,
            outcome_counts=outcome_counts,
            average_game_length=(
                sum(g.game_length for g in game_results) / total_games if total_games else 0.0
            ),
            experience_quality_metrics=summarize_quality(experiences, config),
            failed_games=failed,
        )
        self._record(results)
        logger.info(
            "Self-play batch finished: %d games (%d failed), %d experiences, buckets=%s",
            total_games,
            failed,
            len(experiences),
            {bucket.value: count for bucket, count in outcome_counts.items()},
        )
        return results

    # ------------------------------------------------------------------
    def _record(self, results: SelfPlayResults) -> None:
        with self._stats_lock:
            stats = self._statistics
            stats.batches += 1
            stats.total_games += results.total_games
            stats.total_experiences += results.total_experiences
            stats.failed_games += results.failed_games
            for bucket, count in results.outcome_counts.items():
                stats.outcome_counts[bucket] += count

    def _run_game(
        self,
        game_id: int,
        policy_a: Policy,
        policy_b: Policy,
        seeds: Tuple[int, int],
        first_color: PlayerColor,
        should_stop: Callable[[], bool],
    ) -> SelfPlayGameResult:
        # Spawning happens on the worker so a failing policy only costs this game.
        player_a = policy_a.spawn(seeds[0])
        player_b = policy_b.spawn(seeds[1])
        if first_color is PlayerColor.WHITE:
            white, black = player_a, player_b
        else:
            white, black = player_b, player_a
        return self._play_game(game_id, white, black, first_color, should_stop)

    def _play_game(
        self,
        game_id: int,
        white: Policy,
        black: Policy,
        first_color: PlayerColor,
        should_stop: Callable[[], bool],
    ) -> SelfPlayGameResult:
        config = self.config
        started = time.perf_counter()
        env = self.env_factory()
        try:
            state = env.reset()
            transitions: List[_Transition] = []
            mover = PlayerColor.WHITE
            outcome = GameOutcome.DRAW
            reason: Optional[EpisodeTerminationReason] = None
            last_info: Dict[str, Any] = {}

            while reason is None:
                if should_stop():
                    reason = EpisodeTerminationReason.MANUAL
                    break
                if len(transitions) >= config.max_steps_per_game:
                    reason = EpisodeTerminationReason.STEP_LIMIT
                    break
                valid_actions = list(env.get_valid_actions(state))
                if not valid_actions:
                    # The rules may have decided the game on the previous step without flagging done.
                    reason = EpisodeTerminationReason.GAME_ENDED
                    outcome = coerce_outcome(last_info.get("outcome"))
                    break

                policy = white if mover is PlayerColor.WHITE else black
                action = policy.select_action(state, valid_actions)
                try:
                    result = env.step(action)
                    invalid = bool(result.info.get("invalid", False))
                except InvalidActionError as exc:
                    logger.debug("Game %d: invalid action %r (%s)", game_id, action, exc)
                    result = StepResult(next_state=state, reward=0.0, done=False, info={"invalid": True})
                    invalid = True

                reward = config.invalid_action_reward if invalid else float(result.reward)
                transitions.append(
                    _Transition(
                        state=state,
                        action=action,
                        reward=reward,
                        next_state=result.next_state,
                        done=result.done,
                        player=mover,
                        evaluation=env.position_evaluation(),
                    )
                )
                state = result.next_state
                last_info = result.info

                if result.done:
                    if result.info.get("truncated"):
                        reason = EpisodeTerminationReason.STEP_LIMIT
                    else:
                        reason = EpisodeTerminationReason.GAME_ENDED
                        outcome = coerce_outcome(result.info.get("outcome"))
                elif "to_move" in result.info:
                    mover = PlayerColor(result.info["to_move"])
                elif not invalid:
                    mover = mover.opposite()

            self._finalize_terminal_reward(transitions, outcome, reason)
            experiences = self._enrich(game_id, transitions, outcome, reason)
            return SelfPlayGameResult(
                game_id=game_id,
                game_length=len(transitions),
                game_outcome=outcome,
                termination_reason=reason,
                game_duration=time.perf_counter() - started,
                experiences=tuple(experiences),
                game_metrics=env.game_metrics(),
                final_position=env.final_position(),
                first_policy_color=first_color,
            )
        finally:
            env.close()

    def _finalize_terminal_reward(
        self,
        transitions: List[_Transition],
        outcome: GameOutcome,
        reason: EpisodeTerminationReason,
    ) -> None:
        if not transitions:
            return
        last = transitions[-1]
        last.done = True
        config = self.config
        if reason is EpisodeTerminationReason.STEP_LIMIT:
            # Truncated games never receive the draw reward.
            last.reward = config.step_limit_penalty
        elif reason is EpisodeTerminationReason.GAME_ENDED:
            winner = outcome.winner()
            if winner is None:
                last.reward = config.draw_reward
            elif winner is last.player:
                last.reward = config.win_reward
            else:
                last.reward = config.loss_reward

    def _enrich(
        self,
        game_id: int,
        transitions: Sequence[_Transition],
        outcome: GameOutcome,
        reason: EpisodeTerminationReason,
    ) -> List[EnhancedExperience]:
        game_ended = reason is EpisodeTerminationReason.GAME_ENDED
        from_win = game_ended and outcome.is_decisive
        from_draw = game_ended and outcome is GameOutcome.DRAW
        length = len(transitions)
        experiences = []
        for index, step in enumerate(transitions):
            early, mid, end = game_phase(index, length, self.config)
            experiences.append(
                EnhancedExperience(
                    state=step.state,
                    action=step.action,
                    reward=step.reward,
                    next_state=step.next_state,
                    done=step.done,
                    game_id=game_id,
                    move_number=index + 1,
                    player_color=step.player,
                    game_outcome=outcome,
                    termination_reason=reason,
                    quality_score=quality_score(outcome, reason, step.reward, end, step.evaluation),
                    is_early_game=early,
                    is_mid_game=mid,
                    is_end_game=end,
                    is_from_winning_game=from_win,
                    is_from_draw_game=from_draw,
                )
            )
        return experiences
