import json
from dataclasses import replace

import pytest

from lotto_forecaster.backtest import backtest
from lotto_forecaster.draws import DrawRecord
from lotto_forecaster.errors import StateError
from lotto_forecaster.predictor import PredictionOutput
from lotto_forecaster.scoring import WEIGHT_PROFILES, WeightProfile
from lotto_forecaster.state import (STATE_VERSION, LearningState, LearningStateStore, data_signature,
                                    state_from_prediction)


def _state(score=10.0, pool_size=49, profile=None):
    return LearningState(
        updated_at='2024-02-03T12:00:00',
        draw_count=5,
        pool_size=pool_size,
        data_signature='5:2024-01-06:2024-02-03:0000abcd',
        score=score,
        best_profile=profile or WeightProfile('Saved', gap=0.5, pair=0.5),
        profile_overlaps={'Balanced': 4.0, 'Gap-Target': 9.0},
    )


def test_data_signature(small_history):
    assert data_signature([]) == '0:::00000000'
    sig = data_signature(small_history)
    assert sig.startswith('5:2024-01-06:2024-02-03:')
    assert len(sig.rsplit(':', 1)[1]) == 8

    changed = list(small_history)
    changed[2] = DrawRecord('2024-01-20', (1, 9, 19, 28, 36, 45), 12)
    assert data_signature(changed) != sig


def test_state_serialises_with_camel_case_keys():
    data = _state().to_dict()
    assert data['version'] == STATE_VERSION
    assert data['poolSize'] == 49
    assert data['bestProfile']['name'] == 'Saved'
    assert 'hotCold' in data['bestProfile']
    restored = LearningState.from_dict(json.loads(json.dumps(data)))
    assert restored == _state()


def test_malformed_state_raises():
    data = _state().to_dict()
    del data['poolSize']
    with pytest.raises(StateError):
        LearningState.from_dict(data)


def test_store_load_missing_and_corrupt(tmp_path):
    store = LearningStateStore(tmp_path / 'state.json')
    assert store.load() is None
    store.path.write_text('{not json')
    with pytest.raises(StateError):
        store.load()
    store.path.write_text('[1, 2]')
    with pytest.raises(StateError):
        store.load()


def test_store_only_keeps_better_snapshots(tmp_path):
    store = LearningStateStore(tmp_path / 'nested' / 'state.json')
    assert store.save_if_better(_state(score=10.0))
    assert not store.save_if_better(_state(score=5.0))
    assert not store.save_if_better(_state(score=10.0))
    assert store.save_if_better(_state(score=12.5))
    assert store.load().score == 12.5
    # a different pool size is not comparable, so it replaces the snapshot
    assert store.save_if_better(_state(score=1.0, pool_size=58))
    assert store.load().pool_size == 58


def test_warm_start_for(tmp_path):
    store = LearningStateStore(tmp_path / 'state.json')
    assert store.warm_start_for(49) is None
    store.save_if_better(_state())
    assert store.warm_start_for(52) is None
    profile, overlaps = store.warm_start_for(49)
    assert profile.name == 'Saved'
    assert profile.gap == pytest.approx(0.5)
    assert overlaps == {'Balanced': 4.0, 'Gap-Target': 9.0}


def test_state_from_prediction(small_history):
    bt = replace(backtest([], 52), max_observed_overlap=2)
    state = state_from_prediction(PredictionOutput((), bt, (), (), ''), small_history)
    assert state.pool_size == 52
    assert state.draw_count == 5
    assert state.best_profile == WEIGHT_PROFILES[0]
    assert state.score == pytest.approx(500000.0)
    assert len(state.profile_overlaps) == len(WEIGHT_PROFILES)
    assert state.data_signature == data_signature(small_history)


def test_state_scores_with_predictor_helpers():
    import lotto_forecaster.state as state_module
    assert state_module.score_prediction_quality.__module__ == 'lotto_forecaster.predictor'
    assert state_module.profile_overlap_map.__module__ == 'lotto_forecaster.predictor'
