"""
MODEL EVALUATION
- Rolling walk-forward of the full prediction pipeline
- Fixed-profile ablation over the held-out tail
- Wilson / normal 95% intervals for the summary metrics
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .budgets import calibrate_runtime_budgets
from .cache import DiagnosticsCache
from .candidates import CandidateOptions, generate_candidate_sets, overlap_count
from .draws import K, DrawRecord
from .errors import DataError
from .predictor import run_prediction
from .reporting import NullReporter, Reporter
from .rng import seeded_random
from .scoring import WEIGHT_PROFILES, WeightProfile, composite_scoring
from .settings import ModelSettings


@dataclass(frozen=True)
class MetricSummary:
    samples: int
    avg_overlap: float
    avg_overlap_lower: float
    avg_overlap_upper: float
    hit_rate: float
    hit_rate_lower: float
    hit_rate_upper: float
    four_plus_rate: float
    four_plus_lower: float
    four_plus_upper: float
    elapsed_s: float


def wilson_interval(successes: int, total: int, z: float = 1.96) -> Tuple[float, float]:
    if total <= 0:
        return 0.0, 0.0
    p = successes / total
    z2 = z * z
    denominator = 1 + z2 / total
    center = (p + z2 / (2 * total)) / denominator
    margin = z * math.sqrt(p * (1 - p) / total + z2 / (4 * total * total)) / denominator
    return max(0.0, center - margin), min(1.0, center + margin)


def mean_interval_95(values: Sequence[float]) -> Tuple[float, float, float]:
    """(mean, lower, upper) from the sample standard deviation"""
    if len(values) == 0:
        return 0.0, 0.0, 0.0
    arr = np.asarray(values, dtype=float)
    avg = float(arr.mean())
    if len(arr) == 1:
        return avg, avg, avg
    margin = 1.96 * float(arr.std(ddof=1)) / math.sqrt(len(arr))
    return avg, avg - margin, avg + margin


def summarize_metrics(overlaps: Sequence[int], elapsed_s: float) -> MetricSummary:
    total = len(overlaps)
    avg, low, high = mean_interval_95(overlaps)
    hits = sum(1 for o in overlaps if o > 0)
    four_plus = sum(1 for o in overlaps if o >= 4)
    hit_low, hit_high = wilson_interval(hits, total)
    four_low, four_high = wilson_interval(four_plus, total)
    return MetricSummary(
        samples=total,
        avg_overlap=avg,
        avg_overlap_lower=low,
        avg_overlap_upper=high,
        hit_rate=hits / total if total else 0.0,
        hit_rate_lower=hit_low,
        hit_rate_upper=hit_high,
        four_plus_rate=four_plus / total if total else 0.0,
        four_plus_lower=four_low,
        four_plus_upper=four_high,
        elapsed_s=elapsed_s,
    )


# ======================
# WALK-FORWARD EVALUATION
# ======================
def evaluate_rolling_model(draws: Sequence[DrawRecord], window: int = 260, step: int = 4,
                           min_train: int = 140, max_evals: int = 70,
                           settings: Optional[ModelSettings] = None,
                           reporter: Optional[Reporter] = None) -> MetricSummary:
    """Run the full pipeline on each prior window and grade its top set"""
    reporter = reporter or NullReporter()
    start_idx = max(min_train, window)
    if len(draws) <= start_idx:
        raise DataError(f"Not enough draws for rolling evaluation. Need > {start_idx}, got {len(draws)}.")

    indices = list(range(start_idx, len(draws), step))
    if len(indices) > max_evals:
        indices = indices[-max_evals:]

    cache = DiagnosticsCache(220)
    overlaps = []
    started = time.monotonic()
    for pos, idx in enumerate(indices):
        reporter.checkpoint()
        history = list(draws[max(0, idx - window):idx])
        prediction = run_prediction(history, cache.get(history), settings)
        top_set = prediction.sets[0].numbers if prediction.sets else ()
        overlaps.append(overlap_count(top_set, draws[idx]))
        reporter.progress((pos + 1) / len(indices), f"Evaluating point {pos + 1}/{len(indices)}")

    summary = summarize_metrics(overlaps, time.monotonic() - started)
    logging.info(f"Rolling evaluation: {summary.samples} points, avg overlap {summary.avg_overlap:.3f}")
    return summary


def evaluate_single_profile(profile: WeightProfile, base_history: Sequence[DrawRecord],
                            test_draws: Sequence[DrawRecord]) -> MetricSummary:
    """Fixed profile, fast mode with every search heuristic off"""
    cache = DiagnosticsCache(220)
    history = list(base_history)
    budgets = calibrate_runtime_budgets(len(history), fast_mode=True)
    options = CandidateOptions(
        fast_mode=True,
        include_monte_carlo=False,
        include_genetic=False,
        include_sliding_window=False,
        include_historical_echo=False,
        runtime_budgets=budgets,
        diagnostics_cache=cache,
    )
    diagnostics = cache.get(history)
    overlaps = []
    started = time.monotonic()

    for i, target in enumerate(test_draws):
        scores = composite_scoring(diagnostics, history, profile)
        rng = seeded_random(f"{profile.name}:{len(history)}:{target.date}")
        sets = generate_candidate_sets(scores, diagnostics, history, 1, rng, options)
        top_set = sets[0].numbers if sets else [s.number for s in scores[:K]]
        overlaps.append(overlap_count(top_set, target))

        history.append(target)
        if i == len(test_draws) - 1 or (i + 1) % budgets.backtest_refresh_every == 0:
            diagnostics = cache.get(history)

    return summarize_metrics(overlaps, time.monotonic() - started)


def evaluate_profile_ablation(draws: Sequence[DrawRecord], min_train: int = 140) -> List[Dict]:
    """Every preset on the last 20% of history, best average overlap first"""
    split_idx = max(min_train, int(len(draws) * 0.8))
    if split_idx >= len(draws) - 1:
        raise DataError(f"Not enough test rows for profile ablation. Draws={len(draws)}, split={split_idx}.")

    base, tail = draws[:split_idx], draws[split_idx:]
    results = [
        {'profile_name': p.name, 'metrics': evaluate_single_profile(p, base, tail)}
        for p in WEIGHT_PROFILES
    ]
    results.sort(key=lambda r: r['metrics'].avg_overlap, reverse=True)
    return results
