"""Runtime budget calibration: scales search effort with history size and latency target."""

from dataclasses import dataclass, replace
from typing import Optional

from .analysis import clamp_number, js_round

BASE_MONTE_CARLO_MIN_TRIALS = 2000
BASE_MONTE_CARLO_MAX_TRIALS = 10000
BASE_BACKTEST_REFRESH_EVERY = 8
BASE_HISTORICAL_ECHO_MAX_WINDOWS = 120
BASE_HISTORICAL_ECHO_TOP_MATCHES = 3
BASE_GENETIC_GENERATIONS = 45
BASE_GENETIC_POPULATION = 120
DEFAULT_TARGET_LATENCY_MS = 1400


@dataclass(frozen=True)
class RuntimeBudgets:
    monte_carlo_min_trials: int
    monte_carlo_max_trials: int
    genetic_generations: int
    genetic_population: int
    backtest_refresh_every: int
    historical_echo_max_windows: int
    historical_echo_top_matches: int


def calibrate_runtime_budgets(draw_count: int, fast_mode: bool = False,
                              target_latency_ms: Optional[float] = None) -> RuntimeBudgets:
    """Scale every search budget by history size, fast mode and latency target"""
    safe_count = max(1, draw_count)
    latency_scale = clamp_number(
        (target_latency_ms or DEFAULT_TARGET_LATENCY_MS) / DEFAULT_TARGET_LATENCY_MS, 0.65, 1.35
    )

    if safe_count <= 160:
        size_scale = 1.2
    elif safe_count <= 320:
        size_scale = 1.0
    elif safe_count <= 480:
        size_scale = 0.82
    else:
        size_scale = 0.65

    mode_scale = 0.38 if fast_mode else 1.0
    combined = size_scale * mode_scale * latency_scale

    mc_min = max(250, js_round(BASE_MONTE_CARLO_MIN_TRIALS * combined))
    mc_max = max(mc_min + 800, js_round(BASE_MONTE_CARLO_MAX_TRIALS * combined))
    if fast_mode:
        refresh_every = max(6, js_round(BASE_BACKTEST_REFRESH_EVERY + safe_count / 200))
    else:
        refresh_every = max(5, js_round(BASE_BACKTEST_REFRESH_EVERY + safe_count / 280))

    return RuntimeBudgets(
        monte_carlo_min_trials=mc_min,
        monte_carlo_max_trials=mc_max,
        genetic_generations=max(10, js_round(BASE_GENETIC_GENERATIONS * combined)),
        genetic_population=max(36, js_round(BASE_GENETIC_POPULATION * combined)),
        backtest_refresh_every=refresh_every,
        historical_echo_max_windows=max(
            28, js_round(BASE_HISTORICAL_ECHO_MAX_WINDOWS * (0.6 if fast_mode else size_scale))
        ),
        historical_echo_top_matches=(
            max(2, BASE_HISTORICAL_ECHO_TOP_MATCHES - 1) if fast_mode else BASE_HISTORICAL_ECHO_TOP_MATCHES
        ),
    )


def apply_model_settings_to_budgets(budgets: RuntimeBudgets, settings) -> RuntimeBudgets:
    """Apply explicit budget overrides from ModelSettings (None means keep calibrated)"""
    changes = {}
    if settings.monte_carlo_min_trials is not None:
        changes['monte_carlo_min_trials'] = js_round(clamp_number(settings.monte_carlo_min_trials, 100, 100000))
    if settings.monte_carlo_max_trials is not None:
        changes['monte_carlo_max_trials'] = js_round(clamp_number(settings.monte_carlo_max_trials, 500, 200000))
    if settings.genetic_generations is not None:
        changes['genetic_generations'] = js_round(clamp_number(settings.genetic_generations, 5, 250))
    if settings.genetic_population is not None:
        changes['genetic_population'] = js_round(clamp_number(settings.genetic_population, 20, 1000))
    if settings.backtest_refresh_every is not None:
        changes['backtest_refresh_every'] = js_round(clamp_number(settings.backtest_refresh_every, 2, 40))

    tuned = replace(budgets, **changes)
    if tuned.monte_carlo_max_trials < tuned.monte_carlo_min_trials:
        tuned = replace(tuned, monte_carlo_max_trials=tuned.monte_carlo_min_trials)
    return tuned


def mastery_attempt_budgets(budgets: RuntimeBudgets, attempt: int) -> RuntimeBudgets:
    """Grow search effort every 6 mastery attempts (10 stages max)"""
    boost = min(10, max(0, attempt - 1) // 6)
    return replace(
        budgets,
        monte_carlo_min_trials=js_round(clamp_number(budgets.monte_carlo_min_trials + boost * 350, 100, 120000)),
        monte_carlo_max_trials=js_round(clamp_number(budgets.monte_carlo_max_trials + boost * 1400, 500, 200000)),
        genetic_generations=js_round(clamp_number(budgets.genetic_generations + boost * 3, 5, 320)),
        genetic_population=js_round(clamp_number(budgets.genetic_population + boost * 10, 20, 1500)),
    )
