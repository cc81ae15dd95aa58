"""Configuration: YAML defaults, deep merge and the resolved ModelSettings."""

import copy
import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import yaml

from .errors import ConfigError
from .scoring import WEIGHT_PROFILES, WeightProfile, sanitize_weight_profile

# ======================
# DEFAULT CONFIGURATION
# ======================
DEFAULT_CONFIG = {
    'data': {
        'historical_csv': 'data/draws.csv',
        'results_dir': 'results/',
        'state_path': 'results/learning_state.json'
    },
    'model': {
        'train_ratio': 0.8,
        'fast_mode': False,
        'continuous_training': False,
        'target_sequence_match': 5,
        'max_optimization_rounds': 10,  # 0 or None = run until the target is met
        'mastery_backtest_mode': False,
        'mastery_max_attempts_per_sequence': None,  # None or 0 = unbounded
        'mastery_global_attempt_cap': None,
        'mastery_progress_every_attempts': 8,
        'include_monte_carlo': True,
        'include_genetic': True,
        'include_historical_echo': True,
        'include_sliding_window': True,
        'monte_carlo_min_trials': None,  # None = calibrated from history size
        'monte_carlo_max_trials': None,
        'genetic_generations': None,
        'genetic_population': None,
        'backtest_refresh_every': None,
        'target_latency_ms': 1400,
        'warm_start_enabled': True,
        'random_seed_salt': ''
    },
    'ensemble': {
        'learned_profile_weight': 2.25,
        'ranked_profile_bonus': 0.75,
        'ensemble_power': 2.0,
        'ensemble_cadence': 5,
        'rolling_window': 50,
        'warm_hybrid_weight': 0.65
    },
    'worker': {
        'timeout_s': 4.5
    },
    'output': {
        'sets_to_show': 10,
        'rows_to_show': 10,
        'save_csv': True
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s %(levelname)s %(message)s'
    }
}

UNBOUNDED_ATTEMPTS_PER_SEQUENCE = 5000
UNBOUNDED_GLOBAL_ATTEMPTS = 250000


def _merge(base: Dict, override: Dict):
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _merge(base[k], v)
        else:
            base[k] = v


def load_config(config_path: str = 'config.yaml') -> Dict:
    """Load YAML config deep-merged over DEFAULT_CONFIG"""
    merged = copy.deepcopy(DEFAULT_CONFIG)
    path = Path(config_path)
    if not path.exists():
        logging.warning(f"Config {config_path} not found, using defaults")
        return merged

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {str(e)}")
    if not isinstance(config, dict):
        raise ConfigError(f"{config_path} must hold a mapping at top level")

    _merge(merged, config)
    return merged


# ======================
# RESOLVED SETTINGS
# ======================
_MODEL = DEFAULT_CONFIG['model']
_ENSEMBLE = DEFAULT_CONFIG['ensemble']


@dataclass(frozen=True)
class ModelSettings:
    """Resolved model options. Field defaults mirror DEFAULT_CONFIG."""
    train_ratio: float = _MODEL['train_ratio']
    fast_mode: bool = _MODEL['fast_mode']
    continuous_training: bool = _MODEL['continuous_training']
    target_sequence_match: int = _MODEL['target_sequence_match']
    max_optimization_rounds: Optional[int] = _MODEL['max_optimization_rounds']
    mastery_backtest_mode: bool = _MODEL['mastery_backtest_mode']
    mastery_max_attempts_per_sequence: Optional[int] = _MODEL['mastery_max_attempts_per_sequence']
    mastery_global_attempt_cap: Optional[int] = _MODEL['mastery_global_attempt_cap']
    mastery_progress_every_attempts: int = _MODEL['mastery_progress_every_attempts']
    include_monte_carlo: bool = _MODEL['include_monte_carlo']
    include_genetic: bool = _MODEL['include_genetic']
    include_historical_echo: bool = _MODEL['include_historical_echo']
    include_sliding_window: bool = _MODEL['include_sliding_window']
    monte_carlo_min_trials: Optional[int] = _MODEL['monte_carlo_min_trials']
    monte_carlo_max_trials: Optional[int] = _MODEL['monte_carlo_max_trials']
    genetic_generations: Optional[int] = _MODEL['genetic_generations']
    genetic_population: Optional[int] = _MODEL['genetic_population']
    backtest_refresh_every: Optional[int] = _MODEL['backtest_refresh_every']
    target_latency_ms: float = float(_MODEL['target_latency_ms'])
    warm_start_enabled: bool = _MODEL['warm_start_enabled']
    warm_start_profile: Optional[WeightProfile] = None
    warm_profile_overlaps: Dict[str, float] = field(default_factory=dict)
    random_seed_salt: str = _MODEL['random_seed_salt']
    learned_profile_weight: float = _ENSEMBLE['learned_profile_weight']
    ranked_profile_bonus: float = _ENSEMBLE['ranked_profile_bonus']
    ensemble_power: float = _ENSEMBLE['ensemble_power']
    ensemble_cadence: int = _ENSEMBLE['ensemble_cadence']
    rolling_window: int = _ENSEMBLE['rolling_window']
    warm_hybrid_weight: float = _ENSEMBLE['warm_hybrid_weight']

    @property
    def attempts_per_sequence(self) -> int:
        return self.mastery_max_attempts_per_sequence or UNBOUNDED_ATTEMPTS_PER_SEQUENCE

    @property
    def global_attempt_cap(self) -> int:
        return self.mastery_global_attempt_cap or UNBOUNDED_GLOBAL_ATTEMPTS

    def as_dict(self) -> Dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def with_overrides(self, **changes) -> 'ModelSettings':
        """Copy with `changes` applied, re-resolved so clamps still hold"""
        merged = self.as_dict()
        merged.update(changes)
        return resolve_settings(merged)


_DEFAULTS = ModelSettings()


def _to_float(key: str, value) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}")


def _number(raw: Dict, key: str, default):
    value = raw.get(key)
    if value is None or value == '':
        return default
    number = _to_float(key, value)
    if not math.isfinite(number):
        return default
    return number


def _clamped_int(raw: Dict, key: str, default, low: int, high: int):
    number = _number(raw, key, default)
    if number is None:
        return None
    return int(math.floor(min(high, max(low, number)) + 0.5))


def _optional_cap(raw: Dict, key: str, low: int, high: int) -> Optional[int]:
    """<=0 or missing means unbounded (None)"""
    number = _number(raw, key, None)
    if number is None or number <= 0:
        return None
    return int(math.floor(min(high, max(low, number)) + 0.5))


def _round_cap(raw: Dict) -> Optional[int]:
    """An explicit None, like 0, means run until the target is met"""
    if 'max_optimization_rounds' in raw and raw['max_optimization_rounds'] is None:
        return None
    rounds = _number(raw, 'max_optimization_rounds', _DEFAULTS.max_optimization_rounds)
    if rounds is None or rounds <= 0:
        return None
    return int(min(500, max(1, math.floor(rounds + 0.5))))


def _flag(raw: Dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def resolve_settings(raw=None) -> ModelSettings:
    """Apply every default and clamp in one place.

    Accepts the flat union of the `model` and `ensemble` config sections
    (see settings_from_config), ModelSettings.as_dict() output or a
    ModelSettings instance.
    """
    if isinstance(raw, ModelSettings):
        raw = raw.as_dict()
    raw = dict(raw or {})
    d = _DEFAULTS

    warm_profile = raw.get('warm_start_profile')
    if warm_profile:
        warm_profile = sanitize_weight_profile(warm_profile, WEIGHT_PROFILES[0])
    else:
        warm_profile = None

    overlaps = raw.get('warm_profile_overlaps') or {}
    if not isinstance(overlaps, dict):
        raise ConfigError(f"warm_profile_overlaps must be a mapping, got {type(overlaps).__name__}")

    def budget(key):
        value = _number(raw, key, None)
        return None if value is None else int(value)

    salt = raw.get('random_seed_salt')

    return ModelSettings(
        train_ratio=min(0.95, max(0.5, _number(raw, 'train_ratio', d.train_ratio))),
        fast_mode=_flag(raw, 'fast_mode', d.fast_mode),
        continuous_training=_flag(raw, 'continuous_training', d.continuous_training),
        target_sequence_match=_clamped_int(raw, 'target_sequence_match', d.target_sequence_match, 1, 6),
        max_optimization_rounds=_round_cap(raw),
        mastery_backtest_mode=_flag(raw, 'mastery_backtest_mode', d.mastery_backtest_mode),
        mastery_max_attempts_per_sequence=_optional_cap(raw, 'mastery_max_attempts_per_sequence', 1, 2000),
        mastery_global_attempt_cap=_optional_cap(raw, 'mastery_global_attempt_cap', 1, 1000000),
        mastery_progress_every_attempts=_clamped_int(raw, 'mastery_progress_every_attempts',
                                                     d.mastery_progress_every_attempts, 1, 1000),
        include_monte_carlo=_flag(raw, 'include_monte_carlo', d.include_monte_carlo),
        include_genetic=_flag(raw, 'include_genetic', d.include_genetic),
        include_historical_echo=_flag(raw, 'include_historical_echo', d.include_historical_echo),
        include_sliding_window=_flag(raw, 'include_sliding_window', d.include_sliding_window),
        monte_carlo_min_trials=budget('monte_carlo_min_trials'),
        monte_carlo_max_trials=budget('monte_carlo_max_trials'),
        genetic_generations=budget('genetic_generations'),
        genetic_population=budget('genetic_population'),
        backtest_refresh_every=budget('backtest_refresh_every'),
        target_latency_ms=_number(raw, 'target_latency_ms', d.target_latency_ms) or d.target_latency_ms,
        warm_start_enabled=_flag(raw, 'warm_start_enabled', d.warm_start_enabled),
        warm_start_profile=warm_profile,
        warm_profile_overlaps={str(k): _to_float(f"warm_profile_overlaps[{k!r}]", v or 0)
                               for k, v in overlaps.items()},
        random_seed_salt=d.random_seed_salt if salt is None else str(salt),
        learned_profile_weight=_number(raw, 'learned_profile_weight', d.learned_profile_weight),
        ranked_profile_bonus=_number(raw, 'ranked_profile_bonus', d.ranked_profile_bonus),
        ensemble_power=_number(raw, 'ensemble_power', d.ensemble_power),
        ensemble_cadence=_clamped_int(raw, 'ensemble_cadence', d.ensemble_cadence, 1, 1000),
        rolling_window=_clamped_int(raw, 'rolling_window', d.rolling_window, 1, 10000),
        warm_hybrid_weight=min(1.0, max(0.0, _number(raw, 'warm_hybrid_weight', d.warm_hybrid_weight))),
    )


def settings_from_config(config: Dict) -> ModelSettings:
    """Resolve ModelSettings from a loaded config dict"""
    flat = {}
    flat.update(config.get('model') or {})
    flat.update(config.get('ensemble') or {})
    return resolve_settings(flat)
