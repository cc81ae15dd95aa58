import pytest

from lotto_forecaster.draws import synthetic_draws
from lotto_forecaster.errors import DataError
from lotto_forecaster.evaluation import (evaluate_profile_ablation, evaluate_rolling_model,
                                         evaluate_single_profile, mean_interval_95, summarize_metrics,
                                         wilson_interval)
from lotto_forecaster.scoring import WEIGHT_PROFILES


def test_wilson_interval():
    assert wilson_interval(0, 0) == (0.0, 0.0)
    low, high = wilson_interval(5, 10)
    assert low == pytest.approx(0.2366, abs=1e-3)
    assert high == pytest.approx(0.7634, abs=1e-3)
    low, high = wilson_interval(0, 20)
    assert low == pytest.approx(0.0, abs=1e-9)
    assert 0 < high < 0.2


def test_mean_interval():
    assert mean_interval_95([]) == (0.0, 0.0, 0.0)
    assert mean_interval_95([3]) == (3.0, 3.0, 3.0)
    avg, low, high = mean_interval_95([1, 2, 3])
    assert avg == pytest.approx(2.0)
    assert high - avg == pytest.approx(1.96 / 3 ** 0.5)
    assert avg - low == pytest.approx(high - avg)


def test_summarize_metrics():
    m = summarize_metrics([0, 1, 4, 5], 1.5)
    assert m.samples == 4
    assert m.avg_overlap == pytest.approx(2.5)
    assert m.hit_rate == pytest.approx(0.75)
    assert m.four_plus_rate == pytest.approx(0.5)
    assert m.hit_rate_lower < m.hit_rate < m.hit_rate_upper
    assert m.elapsed_s == 1.5
    assert summarize_metrics([], 0).hit_rate == 0.0


def test_rolling_evaluation_needs_history():
    with pytest.raises(DataError):
        evaluate_rolling_model(synthetic_draws(100))


def test_rolling_evaluation_small_window(synthetic_80, fast_settings, recorder):
    m = evaluate_rolling_model(synthetic_80, window=40, step=10, min_train=40, max_evals=2,
                               settings=fast_settings, reporter=recorder)
    assert m.samples == 2
    assert 0 <= m.avg_overlap <= 6
    assert recorder.progress_events[-1] == (1.0, 'Evaluating point 2/2')


def test_single_profile(synthetic_80):
    m = evaluate_single_profile(WEIGHT_PROFILES[1], synthetic_80[:60], synthetic_80[60:])
    assert m.samples == 20


def test_ablation_ranks_every_profile(synthetic_80):
    results = evaluate_profile_ablation(synthetic_80, min_train=60)
    assert sorted(r['profile_name'] for r in results) == sorted(p.name for p in WEIGHT_PROFILES)
    averages = [r['metrics'].avg_overlap for r in results]
    assert averages == sorted(averages, reverse=True)
    assert all(r['metrics'].samples == 16 for r in results)


def test_ablation_needs_test_rows():
    with pytest.raises(DataError):
        evaluate_profile_ablation(synthetic_draws(100))
