"""
WALK-FORWARD BACKTEST / ONLINE LEARNING
- Initial profile sweep over a validation tail
- Standard mode: one graded prediction per held-out draw
- Mastery mode: bounded multi-attempt search per held-out draw, with
  first-attempt (forward-only) metrics tracked separately
- Rolling per-profile utility and power-weighted ensemble profile
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .analysis import FullDiagnostics, clamp_number
from .budgets import RuntimeBudgets, calibrate_runtime_budgets, mastery_attempt_budgets
from .cache import DiagnosticsCache
from .candidates import (CandidateOptions, fast_candidate_options, generate_candidate_sets,
                         match_utility, overlap_count, select_sequence_focused_top_set, seven_target)
from .draws import K, DrawRecord
from .reporting import NullReporter, Reporter, TraceEvent
from .rng import seeded_random
from .scoring import (WEIGHT_PROFILES, NumberScore, WeightProfile, blend_weight_profiles,
                      composite_scoring, ensemble_profile, overlaps_by_name, profile_from_name)
from .settings import ModelSettings, resolve_settings

VALIDATION_WINDOW = 50
TREND_WINDOW = 50
STEP_CANDIDATES = 12


@dataclass(frozen=True)
class RowDetail:
    date: str
    actual: Tuple[int, ...]
    bonus: int
    predicted_top6: Tuple[int, ...]
    overlap: int
    first_attempt_top6: Optional[Tuple[int, ...]] = None
    first_attempt_overlap: Optional[int] = None
    attempts_used: Optional[int] = None
    mastered: Optional[bool] = None


@dataclass(frozen=True)
class ProfilePerformance:
    name: str
    overlap: float


@dataclass(frozen=True)
class BacktestResult:
    mode: str  # 'standard' | 'mastery'
    train_size: int
    test_size: int
    model_hits: int
    baseline_hit_rate: float
    model_hit_rate: float
    improvement: float
    top6_overlap: float
    row_details: Tuple[RowDetail, ...]
    profile_performance: Tuple[ProfilePerformance, ...]
    final_diagnostics: FullDiagnostics
    final_best_profile: WeightProfile
    learning_trend: float = 0.0
    early_matches: float = 0.0
    recent_matches: float = 0.0
    four_plus_hits: int = 0
    four_plus_rate: float = 0.0
    max_observed_overlap: int = 0
    six_match_hits: int = 0
    six_match_rate: float = 0.0
    warm_start_applied: bool = False
    warm_start_profile_name: Optional[str] = None
    forward_only_model_hits: Optional[int] = None
    forward_only_model_hit_rate: Optional[float] = None
    forward_only_top6_overlap: Optional[float] = None
    forward_only_four_plus_hits: Optional[int] = None
    forward_only_four_plus_rate: Optional[float] = None
    forward_only_six_match_hits: Optional[int] = None
    forward_only_six_match_rate: Optional[float] = None
    mastery_target_match: Optional[int] = None
    mastery_total_attempts: Optional[int] = None
    mastery_solved_sequences: Optional[int] = None
    mastery_unresolved_sequences: Optional[int] = None
    mastery_first_attempt_solved: Optional[int] = None
    mastery_average_attempts: Optional[float] = None
    mastery_global_cap_reached: Optional[bool] = None

    def profile_overlaps(self) -> dict:
        return {p.name: p.overlap for p in self.profile_performance}

    def ranked_profiles(self, top_n: int = 4) -> List[ProfilePerformance]:
        return sorted(self.profile_performance, key=lambda p: p.overlap, reverse=True)[:top_n]


class _RollingProfile:
    """Per-preset utility over the last `window` held-out draws"""

    def __init__(self, name: str, overlap: float, window: int):
        self.name = name
        self.overlap = overlap
        self.window = window
        self.history: List[int] = []

    def push(self, utility: int):
        self.history.append(utility)
        if len(self.history) > self.window:
            self.history.pop(0)
        self.overlap = sum(self.history)

    def snapshot(self) -> ProfilePerformance:
        return ProfilePerformance(self.name, self.overlap)


def predict_step(scores: Sequence[NumberScore], diag: FullDiagnostics, history: Sequence[DrawRecord],
                 seed_key: str, options: CandidateOptions) -> List[int]:
    """One fast-mode prediction: candidates then the sequence-focused set"""
    candidates = generate_candidate_sets(scores, diag, history, STEP_CANDIDATES, seeded_random(seed_key), options)
    return select_sequence_focused_top_set(candidates, scores)


def _sorted_tuple(values) -> Tuple[int, ...]:
    return tuple(sorted(values))


def backtest(draws: Sequence[DrawRecord], n_pool: int, train_ratio: float = 0.8,
             reporter: Optional[Reporter] = None, budgets: Optional[RuntimeBudgets] = None,
             cache: Optional[DiagnosticsCache] = None, seed_salt: str = '',
             settings: Optional[ModelSettings] = None) -> BacktestResult:
    """Walk forward through the held-out tail, predicting then learning at each draw.

    Fewer than 2 draws yields a zero-metric result rather than an error.
    """
    reporter = reporter or NullReporter()
    settings = resolve_settings(settings)
    budgets = budgets or calibrate_runtime_budgets(len(draws), fast_mode=True)
    cache = cache or DiagnosticsCache(192)
    draws = list(draws)

    mastery = settings.mastery_backtest_mode
    target_match = settings.target_sequence_match
    per_sequence_cap = settings.attempts_per_sequence
    global_cap = settings.global_attempt_cap
    finite_sequence_cap = settings.mastery_max_attempts_per_sequence is not None
    progress_every = settings.mastery_progress_every_attempts

    warm_profile = settings.warm_start_profile if settings.warm_start_enabled else None
    warm_overlaps = overlaps_by_name(settings.warm_profile_overlaps)
    baseline = (K + 1) / n_pool

    def mastery_field(value):
        return value if mastery else None

    reporter.progress(0.02, 'Initializing backtest')
    if len(draws) < 2:
        logging.warning(f"Backtest skipped: only {len(draws)} draws available")
        diagnostics = cache.get(draws)
        reporter.progress(1, 'Backtest complete')
        return BacktestResult(
            mode='mastery' if mastery else 'standard',
            train_size=len(draws),
            test_size=0,
            model_hits=0,
            baseline_hit_rate=baseline,
            model_hit_rate=0.0,
            improvement=0.0,
            top6_overlap=0.0,
            row_details=(),
            profile_performance=tuple(
                ProfilePerformance(p.name, o) for p, o in zip(WEIGHT_PROFILES, warm_overlaps)
            ),
            final_diagnostics=diagnostics,
            final_best_profile=warm_profile or WEIGHT_PROFILES[0],
            warm_start_applied=warm_profile is not None,
            warm_start_profile_name=warm_profile.name if warm_profile else None,
            forward_only_model_hits=mastery_field(0),
            forward_only_model_hit_rate=mastery_field(0.0),
            forward_only_top6_overlap=mastery_field(0.0),
            forward_only_four_plus_hits=mastery_field(0),
            forward_only_four_plus_rate=mastery_field(0.0),
            forward_only_six_match_hits=mastery_field(0),
            forward_only_six_match_rate=mastery_field(0.0),
            mastery_target_match=mastery_field(target_match),
            mastery_total_attempts=mastery_field(0),
            mastery_solved_sequences=mastery_field(0),
            mastery_unresolved_sequences=mastery_field(0),
            mastery_first_attempt_solved=mastery_field(0),
            mastery_average_attempts=mastery_field(0.0),
            mastery_global_cap_reached=mastery_field(False),
        )

    split_idx = int(len(draws) * train_ratio)
    train_draws = draws[:split_idx]
    test_draws = draws[split_idx:]
    fast_options = fast_candidate_options(budgets, cache, reporter.checkpoint)
    refresh_every = budgets.backtest_refresh_every

    # ======================
    # INITIAL PROFILE SWEEP
    # ======================
    reporter.progress(0.08, 'Building initial diagnostics')
    current_diag = cache.get(train_draws)
    best_profile = warm_profile or WEIGHT_PROFILES[0]
    best_sweep = -1
    rolling = [_RollingProfile(p.name, o, settings.rolling_window) for p, o in zip(WEIGHT_PROFILES, warm_overlaps)]

    val_start = max(0, len(train_draws) - VALIDATION_WINDOW)
    val_train, val_test = train_draws[:val_start], train_draws[val_start:]
    if len(val_train) > VALIDATION_WINDOW:
        for profile_idx, profile in enumerate(WEIGHT_PROFILES):
            val_history = list(val_train)
            val_diag = cache.get(val_history)
            utility = 0
            for val_idx, d in enumerate(val_test):
                reporter.checkpoint()
                scores = composite_scoring(val_diag, val_history, profile)
                seed_key = f"val:{profile.name}:{len(val_history)}:{d.date}:{seed_salt}"
                picked = predict_step(scores, val_diag, val_history, seed_key, fast_options)
                utility += match_utility(overlap_count(picked, d))

                val_history.append(d)
                if val_idx == len(val_test) - 1 or (val_idx + 1) % refresh_every == 0:
                    val_diag = cache.get(val_history)

            if utility > best_sweep:
                best_sweep = utility
                best_profile = profile
            reporter.progress(0.12 + (profile_idx + 1) / len(WEIGHT_PROFILES) * 0.08,
                              f"Validating profile {profile_idx + 1}/{len(WEIGHT_PROFILES)}")
        logging.debug(f"Profile sweep winner: {best_profile.name} (utility {best_sweep})")

        if warm_profile is not None:
            best_profile = blend_weight_profiles('Warm Hybrid', warm_profile, best_profile,
                                                 settings.warm_hybrid_weight)
    else:
        reporter.progress(0.2, 'Validation skipped (insufficient train window)')

    # ======================
    # WALK-FORWARD LOOP
    # ======================
    hits = four_plus = six_hits = 0
    total_overlap = 0
    fwd_hits = fwd_four_plus = fwd_six = 0
    fwd_total = 0
    rows: List[RowDetail] = []
    total_attempts = solved = first_solved = 0
    cap_reached = False

    history = list(train_draws)
    n_test = len(test_draws)
    progress_interval = max(1, n_test // 40)
    mastery_options = CandidateOptions(
        fast_mode=settings.fast_mode,
        include_monte_carlo=settings.include_monte_carlo,
        include_genetic=settings.include_genetic,
        include_sliding_window=settings.include_sliding_window,
        include_historical_echo=settings.include_historical_echo,
        runtime_budgets=budgets,
        diagnostics_cache=cache,
        checkpoint=reporter.checkpoint,
    )

    for test_idx, test_draw in enumerate(test_draws):
        if mastery and total_attempts >= global_cap:
            cap_reached = True
            reporter.progress(0.97, f"Mastery attempt cap reached at sequence {test_idx}/{n_test}")
            break
        reporter.checkpoint()

        actual = _sorted_tuple(test_draw.numbers)
        target = seven_target(test_draw)
        first_set = None
        first_overlap = None
        attempts_used = 1
        mastered = False

        if mastery:
            best_set: List[int] = []
            best_overlap = -1
            sequence_profile = None
            attempts = 0
            previous_key = None
            stagnant = 0
            momentum = [0.0] * (n_pool + 1)
            ranked_names = [r.name for r in sorted(rolling, key=lambda r: r.overlap, reverse=True)[:4]]

            while best_overlap < target_match and attempts < per_sequence_cap and total_attempts < global_cap:
                reporter.checkpoint()
                profile = profile_from_name(ranked_names[attempts % max(1, len(ranked_names))], best_profile)
                attempt_rng = seeded_random(f"mastery:{test_draw.date}:{len(history)}:{attempts}:{seed_salt}")

                base_scores = composite_scoring(current_diag, history, profile)
                jitter = max(0.02, 0.12 - min(0.08, attempts * 0.003))
                adjusted = [
                    s.with_composite(s.composite_score + momentum[s.number] + (attempt_rng() - 0.5) * jitter)
                    for s in base_scores
                ]
                adjusted.sort(key=lambda s: s.composite_score, reverse=True)

                candidate_count = min(24, 16 + (attempts // 8) * 2 + min(4, stagnant))
                options = CandidateOptions(
                    fast_mode=mastery_options.fast_mode,
                    include_monte_carlo=mastery_options.include_monte_carlo,
                    include_genetic=mastery_options.include_genetic,
                    include_sliding_window=mastery_options.include_sliding_window,
                    include_historical_echo=mastery_options.include_historical_echo,
                    runtime_budgets=mastery_attempt_budgets(budgets, attempts + 1),
                    diagnostics_cache=cache,
                    checkpoint=reporter.checkpoint,
                )
                attempt_candidates = generate_candidate_sets(adjusted, current_diag, history,
                                                             candidate_count, attempt_rng, options)
                momentum_set = sorted(s.number for s in adjusted[:K])
                consensus_set = select_sequence_focused_top_set(attempt_candidates, adjusted)

                pool = [consensus_set, momentum_set]
                pool += [list(c.numbers) for c in attempt_candidates[:min(candidate_count, 18)]]
                unique, seen = [], set()
                for cand in pool:
                    key = _sorted_tuple(cand)
                    if key not in seen:
                        seen.add(key)
                        unique.append(list(key))

                if len(unique) <= 1 or attempts == 0:
                    selection = 0
                else:
                    selection = int(attempt_rng() * len(unique))
                attempt_set = unique[selection] if unique else sorted(consensus_set)
                attempt_overlap = sum(1 for n in attempt_set if n in target)

                attempts += 1
                total_attempts += 1
                if attempts == 1:
                    first_set = list(attempt_set)
                    first_overlap = attempt_overlap

                attempt_key = tuple(attempt_set)
                if attempt_key == previous_key:
                    stagnant += 1
                else:
                    stagnant = 0
                    previous_key = attempt_key

                for n in range(1, n_pool + 1):
                    momentum[n] *= 0.93
                by_number = {s.number: s.composite_score for s in adjusted}
                for n in attempt_set:
                    momentum[n] += 0.12 + clamp_number(by_number.get(n, 0.0) * 0.09, 0, 0.24)
                if stagnant >= 2:
                    for n in range(1, n_pool + 1):
                        momentum[n] += (attempt_rng() - 0.5) * 0.12

                if attempt_overlap > best_overlap:
                    best_overlap = attempt_overlap
                    best_set = list(attempt_set)
                    sequence_profile = profile

                if (attempts == 1 or attempts % progress_every == 0 or attempt_overlap >= target_match
                        or total_attempts >= global_cap or attempts >= per_sequence_cap):
                    reporter.trace(TraceEvent(
                        phase='mastery_attempt',
                        sequence_index=test_idx + 1,
                        sequence_total=n_test,
                        date=test_draw.date,
                        actual=actual,
                        bonus=test_draw.bonus,
                        predicted=_sorted_tuple(attempt_set),
                        overlap=attempt_overlap,
                        best_overlap=max(0, best_overlap),
                        attempts_used=attempts,
                        attempt_cap=per_sequence_cap if finite_sequence_cap else None,
                        profile_name=profile.name,
                    ))
                    if finite_sequence_cap:
                        within = min(1.0, attempts / max(1, per_sequence_cap))
                        cap_text = f"/{per_sequence_cap}"
                    else:
                        within = min(0.98, attempts / 25)
                        cap_text = ''
                    reporter.progress(
                        0.2 + (test_idx + within) / n_test * 0.75,
                        f"Mastery sequence {test_idx + 1}/{n_test} | attempt {attempts}{cap_text} "
                        f"| best {max(0, best_overlap)}/6"
                    )

            attempts_used = attempts
            selected = best_set
            overlap = max(0, best_overlap)
            mastered = overlap >= target_match
            if mastered:
                solved += 1
                if attempts == 1:
                    first_solved += 1
            if sequence_profile is not None:
                best_profile = sequence_profile
            if total_attempts >= global_cap:
                cap_reached = True
            if not selected:
                fallback = composite_scoring(current_diag, history, best_profile)
                selected = sorted(s.number for s in fallback[:K])
                overlap = sum(1 for n in selected if n in target)
            if first_set is None:
                first_set = list(selected)
                first_overlap = overlap
        else:
            scores = composite_scoring(current_diag, history, best_profile)
            seed_key = f"{test_draw.date}:{len(history)}:{best_profile.name}:{seed_salt}"
            selected = predict_step(scores, current_diag, history, seed_key, fast_options)
            overlap = sum(1 for n in selected if n in target)

        if overlap > 0:
            hits += 1
        if overlap >= 4:
            four_plus += 1
        if overlap >= 6:
            six_hits += 1
        total_overlap += overlap
        if mastery:
            fwd = first_overlap if first_overlap is not None else overlap
            fwd_total += fwd
            fwd_hits += fwd > 0
            fwd_four_plus += fwd >= 4
            fwd_six += fwd >= 6

        rows.append(RowDetail(
            date=test_draw.date,
            actual=actual,
            bonus=test_draw.bonus,
            predicted_top6=_sorted_tuple(set(selected)),
            overlap=overlap,
            first_attempt_top6=_sorted_tuple(first_set or selected) if mastery else None,
            first_attempt_overlap=(first_overlap if first_overlap is not None else overlap) if mastery else None,
            attempts_used=attempts_used if mastery else None,
            mastered=mastered if mastery else None,
        ))
        reporter.trace(TraceEvent(
            phase='backtest_row',
            sequence_index=test_idx + 1,
            sequence_total=n_test,
            date=test_draw.date,
            actual=actual,
            bonus=test_draw.bonus,
            predicted=_sorted_tuple(selected),
            overlap=overlap,
            best_overlap=max(0, overlap) if mastery else None,
            attempts_used=attempts_used if mastery else None,
            attempt_cap=(per_sequence_cap if finite_sequence_cap else None) if mastery else None,
        ))

        # Grade every preset on pre-outcome history only
        for profile, tracker in zip(WEIGHT_PROFILES, rolling):
            scores = composite_scoring(current_diag, history, profile)
            seed_key = f"{test_draw.date}:{len(history)}:{profile.name}:{seed_salt}"
            picked = predict_step(scores, current_diag, history, seed_key, fast_options)
            tracker.push(match_utility(sum(1 for n in set(picked) if n in target)))

        history.append(test_draw)
        if test_idx == n_test - 1 or (test_idx + 1) % refresh_every == 0:
            current_diag = cache.get(history)

        if len(history) % settings.ensemble_cadence == 0:
            best_profile = ensemble_profile([r.overlap for r in rolling], settings.ensemble_power)

        if test_idx == n_test - 1 or (test_idx + 1) % progress_interval == 0:
            if mastery:
                stage = f"Mastery sequence {test_idx + 1}/{n_test} | solved {solved}"
            else:
                stage = f"Backtesting draw {test_idx + 1}/{n_test}"
            reporter.progress(0.2 + (test_idx + 1) / n_test * 0.75, stage)

    # ======================
    # METRICS
    # ======================
    reporter.progress(0.97, 'Computing backtest metrics')
    processed = len(rows)
    avg_overlap = total_overlap / processed if processed else 0.0
    fwd_avg = fwd_total / processed if processed else 0.0
    model_hit_rate = avg_overlap / K

    early = recent = trend = 0.0
    if processed >= TREND_WINDOW * 2:
        early = sum(r.overlap for r in rows[:TREND_WINDOW]) / TREND_WINDOW
        recent = sum(r.overlap for r in rows[-TREND_WINDOW:]) / TREND_WINDOW
        trend = (recent - early) / early * 100 if early > 0 else 0.0

    def rate(count):
        return count / processed if processed else 0.0

    result = BacktestResult(
        mode='mastery' if mastery else 'standard',
        train_size=len(train_draws),
        test_size=processed,
        model_hits=hits,
        baseline_hit_rate=baseline,
        model_hit_rate=model_hit_rate,
        improvement=(model_hit_rate - baseline) / baseline * 100 if baseline > 0 else 0.0,
        top6_overlap=avg_overlap,
        row_details=tuple(rows),
        profile_performance=tuple(r.snapshot() for r in rolling),
        final_diagnostics=current_diag,
        final_best_profile=best_profile,
        learning_trend=trend,
        early_matches=early,
        recent_matches=recent,
        four_plus_hits=four_plus,
        four_plus_rate=rate(four_plus),
        max_observed_overlap=max((r.overlap for r in rows), default=0),
        six_match_hits=six_hits,
        six_match_rate=rate(six_hits),
        warm_start_applied=warm_profile is not None,
        warm_start_profile_name=warm_profile.name if warm_profile else None,
        forward_only_model_hits=mastery_field(int(fwd_hits)),
        forward_only_model_hit_rate=mastery_field(fwd_avg / K),
        forward_only_top6_overlap=mastery_field(fwd_avg),
        forward_only_four_plus_hits=mastery_field(int(fwd_four_plus)),
        forward_only_four_plus_rate=mastery_field(rate(fwd_four_plus)),
        forward_only_six_match_hits=mastery_field(int(fwd_six)),
        forward_only_six_match_rate=mastery_field(rate(fwd_six)),
        mastery_target_match=mastery_field(target_match),
        mastery_total_attempts=mastery_field(total_attempts),
        mastery_solved_sequences=mastery_field(solved),
        mastery_unresolved_sequences=mastery_field(max(0, processed - solved)),
        mastery_first_attempt_solved=mastery_field(first_solved),
        mastery_average_attempts=mastery_field(rate(total_attempts)),
        mastery_global_cap_reached=mastery_field(cap_reached),
    )
    logging.debug(
        f"Backtest ({result.mode}) train={result.train_size} test={processed} "
        f"hit-rate={model_hit_rate:.4f} baseline={baseline:.4f}"
    )
    reporter.progress(1, 'Backtest complete')
    return result
