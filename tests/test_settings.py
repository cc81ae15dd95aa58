import pytest

from lotto_forecaster.errors import ConfigError
from lotto_forecaster.scoring import WEIGHT_PROFILES, WeightProfile
from lotto_forecaster.settings import (DEFAULT_CONFIG, UNBOUNDED_ATTEMPTS_PER_SEQUENCE, ModelSettings, load_config,
                                       resolve_settings, settings_from_config)


def test_defaults():
    s = resolve_settings()
    assert s.train_ratio == 0.8
    assert s.target_sequence_match == 5
    assert s.max_optimization_rounds == 10
    assert s.mastery_max_attempts_per_sequence is None
    assert s.attempts_per_sequence == UNBOUNDED_ATTEMPTS_PER_SEQUENCE
    assert s.monte_carlo_min_trials is None
    assert s.warm_start_profile is None
    assert s.warm_start_enabled is True


def test_defaults_agree_with_default_config():
    assert resolve_settings({}) == settings_from_config(DEFAULT_CONFIG)
    assert resolve_settings({}) == ModelSettings()


def test_resolve_accepts_model_settings():
    s = resolve_settings(ModelSettings(fast_mode=True, target_sequence_match=9))
    assert s.fast_mode is True
    assert s.target_sequence_match == 6


def test_clamps():
    s = resolve_settings({
        'train_ratio': 2,
        'target_sequence_match': 9,
        'mastery_max_attempts_per_sequence': 99999,
        'mastery_progress_every_attempts': 0,
        'warm_hybrid_weight': -1,
    })
    assert s.train_ratio == 0.95
    assert s.target_sequence_match == 6
    assert s.mastery_max_attempts_per_sequence == 2000
    assert s.mastery_progress_every_attempts == 1
    assert s.warm_hybrid_weight == 0.0


def test_zero_means_unbounded():
    s = resolve_settings({'max_optimization_rounds': 0, 'mastery_global_attempt_cap': 0})
    assert s.max_optimization_rounds is None
    assert s.mastery_global_attempt_cap is None


def test_unbounded_rounds_survive_overrides():
    s = resolve_settings({'max_optimization_rounds': 0})
    warm = s.with_overrides(warm_start_profile=WEIGHT_PROFILES[1], warm_profile_overlaps={'Balanced': 1.5})
    assert warm.max_optimization_rounds is None
    assert warm.warm_start_profile.name == WEIGHT_PROFILES[1].name
    assert resolve_settings({'max_optimization_rounds': None}).max_optimization_rounds is None
    assert resolve_settings({'max_optimization_rounds': ''}).max_optimization_rounds == 10


@pytest.mark.parametrize('salt, expected', [(0, '0'), (None, ''), ('abc', 'abc'), (1.5, '1.5')])
def test_seed_salt_keeps_falsy_values(salt, expected):
    assert resolve_settings({'random_seed_salt': salt}).random_seed_salt == expected


def test_string_flags_and_numbers():
    s = resolve_settings({'fast_mode': 'yes', 'include_genetic': 'off', 'genetic_generations': '12'})
    assert s.fast_mode is True
    assert s.include_genetic is False
    assert s.genetic_generations == 12


@pytest.mark.parametrize('raw', [
    {'train_ratio': 'lots'},
    {'ensemble_power': True},
    {'warm_profile_overlaps': [1, 2]},
    {'warm_profile_overlaps': {'Balanced': 'high'}},
    {'warm_profile_overlaps': {'Balanced': True}},
])
def test_invalid_values_raise(raw):
    with pytest.raises(ConfigError):
        resolve_settings(raw)


def test_warm_profile_is_sanitised():
    s = resolve_settings({'warm_start_profile': {'name': 'Saved', 'gap': 2, 'hotCold': 1}})
    assert isinstance(s.warm_start_profile, WeightProfile)
    assert s.warm_start_profile.name == 'Saved'
    assert s.warm_start_profile.gap == pytest.approx(0.6)
    assert s.warm_start_profile.hot_cold == pytest.approx(0.4)


def test_with_overrides_reclamps():
    s = resolve_settings().with_overrides(target_sequence_match=0, fast_mode=True)
    assert s.target_sequence_match == 1
    assert s.fast_mode is True


def test_settings_from_config_merges_sections():
    config = {'model': {'fast_mode': True}, 'ensemble': {'ensemble_cadence': 3}}
    s = settings_from_config(config)
    assert s.fast_mode is True
    assert s.ensemble_cadence == 3


def test_load_config_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / 'absent.yaml'))
    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_load_config_deep_merges(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("model:\n  fast_mode: true\noutput:\n  sets_to_show: 3\n")
    config = load_config(str(path))
    assert config['model']['fast_mode'] is True
    assert config['model']['train_ratio'] == 0.8
    assert config['output']['sets_to_show'] == 3
    assert DEFAULT_CONFIG['model']['fast_mode'] is False


def test_load_config_rejects_bad_yaml(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("model: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(str(path))
