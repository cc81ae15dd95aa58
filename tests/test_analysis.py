import math

import pytest

from lotto_forecaster.analysis import (FormatEra, chi_square_test, count_consecutive, detect_format,
                                       entropy_diagnostics, frequency_analysis, gap_analysis, get_group,
                                       group_breakdown, hot_cold_analysis, normal_cdf, odd_even_split,
                                       pair_analysis, pool_for_max, run_full_diagnostics,
                                       transition_analysis, triple_analysis)
from lotto_forecaster.draws import DrawRecord


def test_detect_format_empty():
    assert detect_format([]) == (52, [], [])


def test_pool_for_max():
    assert pool_for_max(12) == 49
    assert pool_for_max(49) == 49
    assert pool_for_max(50) == 52
    assert pool_for_max(53) == 58


def test_era_split_49_then_58(era_change_draws):
    n_pool, current, eras = detect_format(era_change_draws)
    assert n_pool == 58
    assert eras == [FormatEra(49, 0, 29, 30), FormatEra(58, 30, 59, 30)]
    assert current == era_change_draws[30:]

    diag = run_full_diagnostics(era_change_draws)
    assert diag.pool_size == 58
    assert diag.total_draws == 60
    assert diag.era_draw_count == 30
    assert len(diag.frequency) == 58


def test_frequency_counts_include_bonus(small_history):
    freq = frequency_analysis(small_history, 49)
    assert len(freq) == 49
    assert sum(f.count for f in freq) == 7 * len(small_history)
    by_number = {f.number: f for f in freq}
    assert by_number[11].count == 3
    assert by_number[11].expected == pytest.approx(5 * 7 / 49)


def test_hot_cold_window_larger_than_history(small_history):
    results = hot_cold_analysis(small_history, 49, window_size=20)
    # window clamps to the whole history, so nothing deviates from its own rate
    assert all(r.status == 'neutral' for r in results)


def test_pair_analysis_ranks_repeated_pair_first(small_history):
    pairs = pair_analysis(small_history, 49)
    assert (pairs[0].i, pairs[0].j, pairs[0].count) == (11, 19, 2)
    assert len(pairs) <= 30


def test_triples_use_seven_ball_draws(small_history):
    triples = triple_analysis(small_history)
    assert triples[0].count >= 1
    assert all(len(t.numbers) == 3 for t in triples)


def test_groups():
    assert get_group(13, 52) == 'Low'
    assert get_group(14, 52) == 'Medium'
    assert get_group(39, 52) == 'MedHigh'
    assert get_group(40, 52) == 'High'
    assert group_breakdown([1, 14, 27, 40, 50, 52], 52) == '1-1-1-3'


def test_gap_analysis(small_history):
    gaps = {g.number: g for g in gap_analysis(small_history, 49)}
    assert gaps[11].current_gap == 0
    assert gaps[11].avg_gap == pytest.approx(2.0)
    assert gaps[11].max_gap == 3
    # never drawn: current gap is the whole history
    assert gaps[4].current_gap == 5
    assert gaps[43].current_gap == 4


def test_chi_square_empty_is_uniform():
    result = chi_square_test([], 52)
    assert result.chi_square == 0.0
    assert result.degrees_of_freedom == 51
    assert result.p_value == 1.0
    assert result.is_uniform


def test_chi_square_flags_repeated_draw():
    draws = [DrawRecord(f"2024-01-{d:02d}", (1, 2, 3, 4, 5, 6), 0) for d in range(1, 29)]
    result = chi_square_test(draws, 49)
    assert not result.is_uniform
    assert result.p_value < 0.05


def test_normal_cdf():
    assert normal_cdf(0) == pytest.approx(0.5, abs=1e-6)
    assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
    assert normal_cdf(-9) == 0.0
    assert normal_cdf(9) == 1.0


def test_transition_successors(small_history):
    transitions = transition_analysis(small_history, 49)
    lag1_from_11 = next(t for t in transitions if t.lag == 1 and t.from_number == 11)
    assert len(lag1_from_11.to_numbers) == 10
    assert lag1_from_11.to_numbers[0].number == 1
    assert lag1_from_11.to_numbers[0].probability == pytest.approx(1 / 12)


def test_entropy_defaults_for_empty_history():
    ent = entropy_diagnostics([], 52)
    assert ent.normalized_entropy == 1
    assert ent.regime == 'neutral'


def test_entropy_structured_for_repeated_draw():
    draws = [DrawRecord(f"2024-01-{d:02d}", (1, 2, 3, 4, 5, 6), 7) for d in range(1, 29)]
    ent = entropy_diagnostics(draws, 49)
    assert ent.regime == 'structured'
    assert ent.normalized_entropy < 0.6


def test_full_diagnostics_on_synthetic(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    assert diag.pool_size == 52
    assert diag.total_draws == 80
    assert len(diag.gaps) == 52
    assert len(diag.autocorrelation) == 52
    assert math.isfinite(diag.chi_square.chi_square)
    assert diag.bias_detected == bool(diag.bias_reasons)


def test_full_diagnostics_on_empty_history():
    diag = run_full_diagnostics([])
    assert diag.pool_size == 52
    assert diag.total_draws == 0
    assert diag.chi_square.is_uniform


def test_balance_helpers():
    assert odd_even_split([1, 2, 3, 4, 5, 7]) == (4, 2)
    assert count_consecutive([1, 2, 3, 10, 11, 20]) == 3
