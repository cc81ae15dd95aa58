from lotto_forecaster.budgets import (apply_model_settings_to_budgets, calibrate_runtime_budgets,
                                      mastery_attempt_budgets)
from lotto_forecaster.settings import resolve_settings


def test_small_history_full_mode():
    b = calibrate_runtime_budgets(100)
    assert b.monte_carlo_min_trials == 2400
    assert b.monte_carlo_max_trials == 12000
    assert b.genetic_generations == 54
    assert b.genetic_population == 144
    assert b.backtest_refresh_every == 8
    assert b.historical_echo_max_windows == 144
    assert b.historical_echo_top_matches == 3


def test_fast_mode_shrinks_budgets():
    full = calibrate_runtime_budgets(600)
    fast = calibrate_runtime_budgets(600, fast_mode=True)
    assert fast.monte_carlo_min_trials < full.monte_carlo_min_trials
    assert fast.genetic_population >= 36
    assert fast.historical_echo_top_matches == 2
    assert fast.monte_carlo_max_trials >= fast.monte_carlo_min_trials + 800


def test_latency_scale_is_clamped():
    slow = calibrate_runtime_budgets(100, target_latency_ms=100000)
    capped = calibrate_runtime_budgets(100, target_latency_ms=5000)
    assert slow == capped


def test_overrides_are_clamped():
    settings = resolve_settings({
        'monte_carlo_min_trials': 50,
        'monte_carlo_max_trials': 10,
        'genetic_generations': 1000,
        'backtest_refresh_every': 1,
    })
    tuned = apply_model_settings_to_budgets(calibrate_runtime_budgets(100), settings)
    assert tuned.monte_carlo_min_trials == 100
    assert tuned.monte_carlo_max_trials == 500
    assert tuned.genetic_generations == 250
    assert tuned.backtest_refresh_every == 2
    assert tuned.genetic_population == calibrate_runtime_budgets(100).genetic_population


def test_max_trials_never_below_min():
    settings = resolve_settings({'monte_carlo_min_trials': 5000, 'monte_carlo_max_trials': 600})
    tuned = apply_model_settings_to_budgets(calibrate_runtime_budgets(100), settings)
    assert tuned.monte_carlo_max_trials == tuned.monte_carlo_min_trials == 5000


def test_mastery_budgets_grow_every_six_attempts():
    base = calibrate_runtime_budgets(100, fast_mode=True)
    assert mastery_attempt_budgets(base, 1) == base
    assert mastery_attempt_budgets(base, 6) == base
    grown = mastery_attempt_budgets(base, 7)
    assert grown.monte_carlo_min_trials == base.monte_carlo_min_trials + 350
    assert grown.genetic_population == base.genetic_population + 10
    assert mastery_attempt_budgets(base, 1000) == mastery_attempt_budgets(base, 61)
