#!/usr/bin/env python3
"""Run a self-play training session on the reference Nim environment."""

import argparse
import json
import logging
from pathlib import Path

from tqdm.auto import tqdm

from gambit.env import make_nim_environment
from gambit.logging_utils import setup_logging
from gambit.models import PolicyNetConfig, make_torch_policy
from gambit.orchestration import SessionConfig, TrainingLoopController, load_session_config
from gambit.seeding import RandomContext
from gambit.training import LearnerConfig, Trainer

logger = logging.getLogger("run_training")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", type=str, default="configs/nim.yaml")
    parser.add_argument("--iterations", type=int)
    parser.add_argument("--games-per-iteration", type=int)
    parser.add_argument("--max-steps-per-game", type=int)
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("--seed", type=int)
    parser.add_argument("--checkpoint-dir")
    parser.add_argument("--checkpoint-frequency", type=int)
    parser.add_argument("--log-dir")
    parser.add_argument("--pile-size", type=int, default=15)
    parser.add_argument("--max-take", type=int, default=3)
    parser.add_argument("--hidden-size", type=int, default=64)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-json", action="store_true")
    args = parser.parse_args()

    setup_logging(args.log_level, json_format=args.log_json, component="trainer")

    cfg_path = Path(args.config)
    config = load_session_config(cfg_path) if cfg_path.exists() else SessionConfig()
    overrides = {
        "iterations": args.iterations,
        "games_per_iteration": args.games_per_iteration,
        "max_steps_per_game": args.max_steps_per_game,
        "batch_size": args.batch_size,
        "seed": args.seed,
        "checkpoint_dir": args.checkpoint_dir,
        "checkpoint_frequency": args.checkpoint_frequency,
        "log_dir": args.log_dir,
    }
    config = SessionConfig.from_dict(
        {**config.to_dict(), **{k: v for k, v in overrides.items() if v is not None}}
    )
    if config.seed is not None:
        config.deterministic = True

    def env_factory():
        return make_nim_environment(pile_size=args.pile_size, max_take=args.max_take)

    net_config = PolicyNetConfig(
        input_size=args.pile_size + 2,
        num_actions=args.max_take,
        hidden_sizes=(args.hidden_size, args.hidden_size),
    )

    def policy_factory(session_config, context):
        return make_torch_policy(net_config, context, exploration_rate=session_config.exploration_rate)

    def learner_factory(policy, session_config):
        return Trainer(policy, LearnerConfig(learning_rate=session_config.learning_rate))

    controller = TrainingLoopController(
        env_factory=env_factory,
        policy_factory=policy_factory,
        learner_factory=learner_factory,
        random_context=RandomContext(),
    )
    result = controller.start(config)
    if not result.success:
        raise SystemExit(result.message)

    progress = tqdm(total=config.iterations, desc="Iterations")
    try:
        while not controller.wait(timeout=0.5):
            progress.n = controller.session.iterations_completed
            progress.refresh()
    except KeyboardInterrupt:
        logger.warning("Interrupted; stopping training")
        controller.stop()
    finally:
        progress.n = controller.session.iterations_completed
        progress.close()
        controller.close()

    for metrics in controller.metrics_history:
        print(json.dumps(metrics.as_dict(), indent=2))


if __name__ == "__main__":
    main()
