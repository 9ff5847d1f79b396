import pytest

from gambit.errors import ConfigurationError
from gambit.orchestration import PARAMETER_RULES, SessionConfig, load_session_config, to_snake_case


def test_load_session_config_from_yaml(tmp_path):
    path = tmp_path / "session.yaml"
    path.write_text(
        "iterations: 3\n"
        "gamesPerIteration: 5\n"
        "seed: 17\n"
        "deterministic: true\n"
        "self_play:\n"
        "  max_concurrent_games: 2\n"
        "  stepLimitPenalty: -0.25\n"
        "buffer:\n"
        "  max_size: 64\n"
        "  eviction: lowest_quality\n"
    )
    config = load_session_config(path)

    assert config.iterations == 3
    assert config.games_per_iteration == 5
    assert config.self_play.max_concurrent_games == 2
    assert config.self_play.step_limit_penalty == -0.25
    assert config.buffer.max_size == 64
    assert config.validate() == []


def test_unknown_keys_are_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        SessionConfig.from_dict({"iterations": 2, "episodes": 4})
    with pytest.raises(ConfigurationError):
        SessionConfig.from_dict({"buffer": {"capacity": 10}})
    with pytest.raises(ConfigurationError):
        load_session_config(tmp_path / "missing.yaml")


def test_validate_reports_every_problem():
    config = SessionConfig(iterations=0, deterministic=True, sampling_strategy="sideways")
    errors = config.validate()
    assert any("iterations" in error for error in errors)
    assert any("seed" in error for error in errors)
    assert any("sampling_strategy" in error for error in errors)


def test_to_dict_round_trip():
    config = SessionConfig(iterations=4, seed=3)
    assert SessionConfig.from_dict(config.to_dict()) == config


def test_parameter_rules_coerce_and_bound():
    assert to_snake_case("learningRate") == "learning_rate"
    assert PARAMETER_RULES["batch_size"].check("batch_size", "64") == (64, None)
    assert PARAMETER_RULES["learning_rate"].check("learning_rate", 0.01) == (0.01, None)
    _, error = PARAMETER_RULES["learning_rate"].check("learning_rate", 2.0)
    assert error is not None
    _, error = PARAMETER_RULES["batch_size"].check("batch_size", 1.5)
    assert error is not None
    _, error = PARAMETER_RULES["iterations"].check("iterations", True)
    assert error is not None
    assert PARAMETER_RULES["sampling_strategy"].check("sampling_strategy", "RECENT") == ("recent", None)
