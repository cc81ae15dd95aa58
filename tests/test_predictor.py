from dataclasses import replace

import pytest

from lotto_forecaster.analysis import run_full_diagnostics
from lotto_forecaster.backtest import backtest
from lotto_forecaster.draws import synthetic_draws
from lotto_forecaster.predictor import (NO_BIAS_WARNING, PUBLISHED_SETS, REFRESH_PREFIX, bias_warning,
                                        profile_overlap_map, refresh_prediction_candidates, run_prediction,
                                        weighted_final_profiles)
from lotto_forecaster.scoring import WEIGHT_PROFILES
from lotto_forecaster.settings import resolve_settings


@pytest.fixture
def prediction(synthetic_80, fast_settings):
    return run_prediction(synthetic_80, run_full_diagnostics(synthetic_80), fast_settings)


def test_prediction_shape(prediction):
    assert 1 <= len(prediction.sets) <= PUBLISHED_SETS
    assert len(prediction.scores) == 52
    assert len(prediction.bayesian) == 52
    composites = [s.composite_score for s in prediction.scores]
    assert composites == sorted(composites, reverse=True)
    assert prediction.sets[0].relative_lift == pytest.approx(1.0)
    assert prediction.backtest.test_size == 16


def test_prediction_is_deterministic(synthetic_80, fast_settings, prediction):
    again = run_prediction(synthetic_80, run_full_diagnostics(synthetic_80), fast_settings)
    assert [s.numbers for s in again.sets] == [s.numbers for s in prediction.sets]
    assert again.warning == prediction.warning


def test_prediction_reports_progress(synthetic_80, fast_settings, recorder):
    run_prediction(synthetic_80, run_full_diagnostics(synthetic_80), fast_settings, recorder)
    assert recorder.progress_events[0] == (0.02, 'Preparing training window')
    assert recorder.progress_events[-1][1] == 'Prediction complete'
    assert recorder.progress_events[-1][0] == pytest.approx(1.0)
    assert all(0 <= f <= 1 for f, _ in recorder.progress_events)


def test_refresh_keeps_trained_state(synthetic_80, fast_settings, prediction):
    diag = run_full_diagnostics(synthetic_80)
    refreshed = refresh_prediction_candidates(synthetic_80, diag, prediction, fast_settings, nonce=1)
    assert refreshed.warning.startswith(REFRESH_PREFIX)
    assert refreshed.backtest.row_details == prediction.backtest.row_details
    assert refreshed.backtest.final_best_profile == prediction.backtest.final_best_profile

    repeat = refresh_prediction_candidates(synthetic_80, diag, prediction, fast_settings, nonce=1)
    assert [s.numbers for s in repeat.sets] == [s.numbers for s in refreshed.sets]


def test_refresh_falls_back_on_pool_change(synthetic_80, fast_settings, prediction):
    wider = synthetic_draws(80, pool_size=58)
    wider_diag = run_full_diagnostics(wider)
    assert wider_diag.pool_size == 58
    refreshed = refresh_prediction_candidates(wider, wider_diag, prediction, fast_settings, nonce=2)
    assert refreshed.backtest.final_diagnostics.pool_size == 58
    assert len(refreshed.bayesian) == 58


def test_bias_warning_text(synthetic_80):
    diag = run_full_diagnostics(synthetic_80)
    assert bias_warning(replace(diag, bias_detected=False), 'Balanced') == NO_BIAS_WARNING
    text = bias_warning(replace(diag, bias_detected=True), 'Gap-Target')
    assert 'Optimized Profile: Gap-Target' in text


def test_weighted_final_profiles_merges_by_name():
    bt = backtest([], 52)
    weighted = weighted_final_profiles(bt, resolve_settings())
    assert [p.name for p, _ in weighted] == [p.name for p in WEIGHT_PROFILES[:4]]
    assert weighted[0][1] == pytest.approx(2.25 + 1.75)
    assert all(w == pytest.approx(1.75) for _, w in weighted[1:])


def test_profile_overlap_map_reads_the_backtest(prediction):
    overlaps = profile_overlap_map(prediction)
    assert set(overlaps) == {p.name for p in WEIGHT_PROFILES}
    assert overlaps == prediction.backtest.profile_overlaps()
