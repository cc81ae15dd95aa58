"""
PREDICTION PIPELINE
- Full run: adaptive backtest, then final ensemble scoring and candidates
- Refresh: regenerate candidates from an already trained backtest
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .analysis import FullDiagnostics
from .backtest import BacktestResult, backtest
from .budgets import RuntimeBudgets, apply_model_settings_to_budgets, calibrate_runtime_budgets
from .cache import DiagnosticsCache
from .candidates import CandidateOptions, PredictedSet, generate_candidate_sets, prepend_consensus_set
from .draws import DrawRecord, sort_chronologically
from .errors import PredictionError
from .reporting import NullReporter, Reporter, ScopedReporter
from .rng import seeded_random
from .scoring import (PROFILES_BY_NAME, BayesianResult, NumberScore, WeightProfile,
                      bayesian_smoothed, blend_composite_scores, scores_are_finite)
from .settings import ModelSettings, resolve_settings

SEED_HISTORY = 50
FINAL_CANDIDATES = 14
PUBLISHED_SETS = 10

NO_BIAS_WARNING = (
    "⚠️ No statistically significant bias detected in the current format era. "
    "Under fair lottery conditions, every combination is equally likely. "
    "These predictions are based on historical pattern analysis and should be treated as entertainment only."
)
REFRESH_PREFIX = "Candidate refresh completed using current trained state (no full retrain). "


@dataclass(frozen=True)
class PredictionOutput:
    sets: Tuple[PredictedSet, ...]
    backtest: BacktestResult
    scores: Tuple[NumberScore, ...]
    bayesian: Tuple[BayesianResult, ...]
    warning: str


def _or(value, fallback):
    return fallback if value is None else value


def score_prediction_quality(prediction: PredictionOutput) -> float:
    """Rank a prediction run, first-attempt quality ahead of mastery outcomes"""
    bt = prediction.backtest
    solved = bt.mastery_solved_sequences or 0
    first_solved = bt.mastery_first_attempt_solved or 0
    attempts = bt.mastery_total_attempts or 0
    fwd_six_hits = _or(bt.forward_only_six_match_hits, bt.six_match_hits)
    fwd_six_rate = _or(bt.forward_only_six_match_rate, bt.six_match_rate)
    fwd_overlap = _or(bt.forward_only_top6_overlap, bt.top6_overlap)
    fwd_hit_rate = _or(bt.forward_only_model_hit_rate, bt.model_hit_rate)
    fwd_four_hits = _or(bt.forward_only_four_plus_hits, bt.four_plus_hits)
    fwd_four_rate = _or(bt.forward_only_four_plus_rate, bt.four_plus_rate)
    attempts_per_sequence = attempts / bt.test_size if bt.test_size > 0 else attempts

    return (
        fwd_six_rate * 1_600_000
        + fwd_six_hits * 220_000
        + first_solved * 180_000
        + fwd_overlap * 10_000
        + fwd_hit_rate * 8_000
        + fwd_four_hits * 12_000
        + fwd_four_rate * 80_000
        + bt.max_observed_overlap * 250_000
        + bt.six_match_hits * 20_000
        + bt.six_match_rate * 30_000
        + solved * 15_000
        - attempts_per_sequence * 1_400
        - attempts * 2
        + bt.four_plus_hits * 2_000
        + bt.four_plus_rate * 8_000
        + bt.top6_overlap * 1_000
        + bt.model_hit_rate * 900
        + bt.improvement * 15
    )


def profile_overlap_map(prediction: PredictionOutput) -> Dict[str, float]:
    return prediction.backtest.profile_overlaps()


def bias_warning(diagnostics: FullDiagnostics, profile_name: str) -> str:
    if not diagnostics.bias_detected:
        return NO_BIAS_WARNING
    return ("⚠️ Some statistical deviations were detected in the current format era. "
            f"Optimized Profile: {profile_name}. "
            "Play responsibly.")


def weighted_final_profiles(bt: BacktestResult, settings: ModelSettings) -> List[Tuple[WeightProfile, float]]:
    """Learned profile plus the four best-performing presets, merged by name"""
    merged: Dict[str, List] = {}

    def add(profile: WeightProfile, weight: float):
        if profile.name in merged:
            merged[profile.name][1] += weight
        else:
            merged[profile.name] = [profile, weight]

    add(bt.final_best_profile, settings.learned_profile_weight)
    for ranked in bt.ranked_profiles(4):
        profile = PROFILES_BY_NAME.get(ranked.name)
        if profile is not None:
            add(profile, max(1, ranked.overlap) + settings.ranked_profile_bonus)
    return [(p, w) for p, w in merged.values()]


def _run_budgets(draw_count: int, settings: ModelSettings) -> RuntimeBudgets:
    calibrated = calibrate_runtime_budgets(draw_count, settings.fast_mode, settings.target_latency_ms)
    return apply_model_settings_to_budgets(calibrated, settings)


def build_final_artifacts(draws: Sequence[DrawRecord], diagnostics: FullDiagnostics, bt: BacktestResult,
                          settings: ModelSettings, budgets: RuntimeBudgets, cache: DiagnosticsCache,
                          seed_salt: str, reporter: Reporter, refresh_nonce: Optional[int] = None):
    """Final blended scores, published sets, Bayesian summary and warning"""
    refresh = refresh_nonce is not None
    reporter.progress(0.05, 'Selecting optimized profile')
    separator = f"|refresh:{refresh_nonce}|salt:{seed_salt}|" if refresh else f"|salt:{seed_salt}|"
    rng = seeded_random(separator.join(d.signature() for d in draws[-SEED_HISTORY:]))

    learned_profile = bt.final_best_profile
    learned_diag = bt.final_diagnostics
    weighted = weighted_final_profiles(bt, settings)

    reporter.progress(0.28, 'Scoring candidate numbers')

    def on_profile_scored(idx, total):
        done = (idx + 1) / total if total else 1
        reporter.progress(0.28 + done * 0.2, f"Scoring ensemble profile {idx + 1}/{total}")
        reporter.checkpoint()

    scores = blend_composite_scores(learned_diag, draws, weighted, on_profile_scored)
    if not scores_are_finite(scores):
        raise PredictionError('Composite scoring produced non-finite values')

    reporter.progress(0.5, 'Generating candidate sets')
    options = CandidateOptions(
        fast_mode=settings.fast_mode,
        include_monte_carlo=settings.include_monte_carlo,
        include_genetic=settings.include_genetic,
        include_historical_echo=settings.include_historical_echo,
        include_sliding_window=settings.include_sliding_window,
        runtime_budgets=budgets,
        diagnostics_cache=cache,
        checkpoint=reporter.checkpoint,
    )
    sets = generate_candidate_sets(scores, learned_diag, draws, FINAL_CANDIDATES, rng, options)
    sets = prepend_consensus_set(sets, scores, learned_diag)[:PUBLISHED_SETS]
    if not sets:
        raise PredictionError('No candidate sets were generated')

    reporter.progress(0.84, 'Computing Bayesian summary')
    bayesian = bayesian_smoothed(draws, diagnostics.pool_size)

    warning = bias_warning(learned_diag, learned_profile.name)
    if refresh:
        warning = REFRESH_PREFIX + warning
    reporter.progress(1, 'Candidate refresh complete' if refresh else 'Prediction complete')
    return tuple(sets), tuple(scores), tuple(bayesian), warning


def run_prediction(draws: Sequence[DrawRecord], diagnostics: FullDiagnostics,
                   settings: Optional[ModelSettings] = None,
                   reporter: Optional[Reporter] = None) -> PredictionOutput:
    """Backtest to warm up the learner, then publish the final candidate sets"""
    reporter = reporter or NullReporter()
    settings = resolve_settings(settings)
    reporter.progress(0.02, 'Preparing training window')

    era_draws = sort_chronologically(draws)
    budgets = _run_budgets(len(era_draws), settings)
    cache = DiagnosticsCache(220)
    logging.info(
        f"Training on {len(era_draws)} draws (pool {diagnostics.pool_size}, "
        f"{'mastery' if settings.mastery_backtest_mode else 'standard'} backtest)"
    )

    reporter.progress(0.08, 'Running adaptive backtest')
    bt = backtest(era_draws, diagnostics.pool_size, settings.train_ratio,
                  ScopedReporter(reporter, 0.08, 0.72), budgets, cache,
                  settings.random_seed_salt, settings)

    sets, scores, bayesian, warning = build_final_artifacts(
        era_draws, diagnostics, bt, settings, budgets, cache,
        settings.random_seed_salt, ScopedReporter(reporter, 0.82, 0.18)
    )
    return PredictionOutput(sets, bt, scores, bayesian, warning)


def refresh_prediction_candidates(draws: Sequence[DrawRecord], diagnostics: FullDiagnostics,
                                  base_prediction: PredictionOutput,
                                  settings: Optional[ModelSettings] = None,
                                  reporter: Optional[Reporter] = None,
                                  nonce: int = 1) -> PredictionOutput:
    """New candidate sets from the trained state without re-running the backtest.

    `nonce` distinguishes successive refreshes of the same history.
    """
    reporter = reporter or NullReporter()
    settings = resolve_settings(settings)
    reporter.progress(0.03, 'Preparing candidate refresh')

    era_draws = sort_chronologically(draws)
    budgets = _run_budgets(len(era_draws), settings)
    cache = DiagnosticsCache(120)

    base_bt = base_prediction.backtest
    if base_bt.final_diagnostics.pool_size == diagnostics.pool_size:
        reused = base_bt.final_diagnostics
    else:
        logging.warning(
            f"Pool size changed ({base_bt.final_diagnostics.pool_size} -> {diagnostics.pool_size}), "
            "refreshing against current diagnostics"
        )
        reused = diagnostics
    refreshed_bt = replace(base_bt, final_diagnostics=reused)

    sets, scores, bayesian, warning = build_final_artifacts(
        era_draws, reused, refreshed_bt, settings, budgets, cache,
        f"{settings.random_seed_salt}|refresh", ScopedReporter(reporter, 0.08, 0.9),
        refresh_nonce=nonce
    )
    return PredictionOutput(sets, refreshed_bt, scores, bayesian, warning)
