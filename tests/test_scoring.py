import math

import pytest

from lotto_forecaster.analysis import run_full_diagnostics
from lotto_forecaster.draws import DrawRecord
from lotto_forecaster.scoring import (FACTORS, WEIGHT_PROFILES, WeightProfile, _SCALE_BANDS,
                                      bayesian_smoothed, blend_composite_scores, blend_weight_profiles,
                                      composite_scoring, derive_adaptive_signal_scale, ensemble_profile,
                                      overlaps_by_name, sanitize_weight_profile, scores_are_finite)


def test_composite_scoring_covers_pool(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    scores = composite_scoring(diag, synthetic_80)
    assert sorted(s.number for s in scores) == list(range(1, 53))
    composites = [s.composite_score for s in scores]
    assert composites == sorted(composites, reverse=True)
    assert scores_are_finite(scores)


def test_repeat_factor_marks_last_draw(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    repeat_only = WeightProfile('Repeat', repeat=1.0)
    scores = composite_scoring(diag, synthetic_80, repeat_only)
    top = {s.number for s in scores[:6]}
    assert top == set(synthetic_80[-1].numbers)


def test_bayesian_favours_recent_draws():
    draws = [
        DrawRecord('2024-01-01', (1, 2, 3, 4, 5, 6), 0),
        DrawRecord('2024-01-08', (7, 8, 9, 10, 11, 12), 0),
    ]
    posterior = {b.number: b for b in bayesian_smoothed(draws, 49)}
    assert posterior[7].weighted_count > posterior[1].weighted_count
    assert posterior[7].posterior > posterior[1].posterior
    assert posterior[1].raw_count == posterior[7].raw_count == 1
    assert sum(b.posterior for b in posterior.values()) == pytest.approx(1.0)


def test_adaptive_scale_stays_in_bands(synthetic_80):
    scale = derive_adaptive_signal_scale(run_full_diagnostics(synthetic_80))
    assert set(scale) == set(FACTORS)
    for factor, value in scale.items():
        low, high = _SCALE_BANDS[factor]
        assert low <= value <= high


def test_sanitize_empty_returns_fallback():
    fallback = WEIGHT_PROFILES[2]
    assert sanitize_weight_profile({}, fallback) is fallback
    assert sanitize_weight_profile({'gap': 0, 'pair': -3}, fallback) is fallback


def test_sanitize_clamps_and_normalises():
    profile = sanitize_weight_profile({'gap': 5, 'hotCold': 1.5}, WEIGHT_PROFILES[0])
    assert profile.name == 'Warm Start'
    assert profile.gap == pytest.approx(0.5)
    assert profile.hot_cold == pytest.approx(0.5)
    assert sum(profile.weights()) == pytest.approx(1.0)


def test_to_dict_uses_camel_case():
    data = WEIGHT_PROFILES[0].to_dict()
    assert 'hotCold' in data
    assert sanitize_weight_profile(data, WEIGHT_PROFILES[1]).name == 'Balanced'


def test_blend_weight_profiles():
    a = WeightProfile('A', gap=1.0)
    b = WeightProfile('B', pair=1.0)
    mixed = blend_weight_profiles('Hybrid', a, b, 0.65)
    assert mixed.name == 'Hybrid'
    assert mixed.gap == pytest.approx(0.65)
    assert mixed.pair == pytest.approx(0.35)


def test_ensemble_follows_the_only_scoring_profile():
    overlaps = [0.0] * len(WEIGHT_PROFILES)
    overlaps[2] = 10.0
    blended = ensemble_profile(overlaps)
    for factor in FACTORS:
        assert getattr(blended, factor) == pytest.approx(getattr(WEIGHT_PROFILES[2], factor))


def test_ensemble_power_sharpens_weights():
    overlaps = [1.0] * len(WEIGHT_PROFILES)
    overlaps[6] = 3.0
    flat = ensemble_profile(overlaps, power=1.0)
    sharp = ensemble_profile(overlaps, power=3.0)
    # Bias-Master carries the largest transition weight
    assert sharp.transition > flat.transition


def test_blend_composite_single_profile_matches_composite(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    calls = []
    blended = blend_composite_scores(diag, synthetic_80, [(WEIGHT_PROFILES[3], 1.0)],
                                     lambda i, n: calls.append((i, n)))
    direct = composite_scoring(diag, synthetic_80, WEIGHT_PROFILES[3])
    assert [s.number for s in blended] == [s.number for s in direct]
    assert blended[0].composite_score == pytest.approx(direct[0].composite_score)
    assert calls == [(0, 1)]


def test_blend_composite_without_profiles_uses_balanced(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    blended = blend_composite_scores(diag, synthetic_80, [])
    assert blended == composite_scoring(diag, synthetic_80, WEIGHT_PROFILES[0])


def test_overlaps_by_name():
    values = overlaps_by_name({'Balanced': 5, 'Gap-Target': 99999, 'Unknown': 3, 'Aggress-X': 'x'})
    assert values[0] == 5
    assert values[2] == 2000
    assert values[5] == 0
    assert len(values) == len(WEIGHT_PROFILES)
    assert all(math.isfinite(v) for v in values)
