"""Lottery draw diagnostics, candidate set generation and adaptive walk-forward backtesting."""

from .analysis import FullDiagnostics, run_full_diagnostics
from .backtest import BacktestResult, backtest
from .draws import DrawRecord, build_draw, load_draws_csv, synthetic_draws
from .errors import ConfigError, DataError, ForecasterError, PredictionCancelled, PredictionError, StateError
from .predictor import PredictionOutput, refresh_prediction_candidates, run_prediction
from .settings import ModelSettings, load_config, resolve_settings

__version__ = '0.4.0'
