from gambit.evaluation import EvaluationResult, gate_model


def make_result(wins: int, draws: int = 0, losses: int = 0, step_limited: int = 0) -> EvaluationResult:
    return EvaluationResult(
        games_played=wins + draws + losses + step_limited,
        wins=wins,
        draws=draws,
        losses=losses,
        step_limited=step_limited,
        average_length=10.0,
    )


def test_gate_model_promote():
    result = make_result(wins=30, losses=20)
    decision = gate_model(result, threshold=0.55, min_games=20)
    assert decision.promote
    assert decision.win_rate == 0.6


def test_gate_model_reject_due_to_games():
    result = make_result(wins=8, losses=2)
    decision = gate_model(result, threshold=0.55, min_games=20)
    assert not decision.promote


def test_gate_model_reject_due_to_winrate():
    result = make_result(wins=20, losses=20)
    decision = gate_model(result, threshold=0.55, min_games=20)
    assert not decision.promote


def test_step_limited_games_count_against_the_candidate():
    result = make_result(wins=1, step_limited=7)
    assert result.win_rate() == 1.0

    decision = gate_model(result, threshold=0.55, min_games=8)
    assert not decision.promote
    assert decision.win_rate == 1 / 8


def test_draws_are_not_wins():
    result = make_result(wins=10, draws=10)
    decision = gate_model(result, threshold=0.55, min_games=20)
    assert not decision.promote
    assert decision.win_rate == 0.5


def test_mixed_results_clear_threshold_over_all_games():
    result = make_result(wins=12, draws=3, losses=3, step_limited=2)
    decision = gate_model(result, threshold=0.55, min_games=20)
    assert decision.promote
    assert decision.win_rate == 0.6


def test_empty_evaluation_never_promotes():
    decision = gate_model(make_result(wins=0), threshold=0.0, min_games=0)
    assert not decision.promote
    assert decision.win_rate == 0.0
