"""Exception hierarchy for the forecaster."""


class ForecasterError(Exception):
    """Base class for every error raised by lotto_forecaster"""


class ConfigError(ForecasterError):
    """Config file missing required structure or holding bad values"""


class DataError(ForecasterError):
    """Draw history could not be loaded or holds no valid rows"""


class PredictionError(ForecasterError):
    """A prediction or backtest run failed for the current request"""


class PredictionCancelled(ForecasterError):
    """Raised at a checkpoint once a newer request has superseded this one.

    Cancellation is not a failure: dispatchers drop the request silently.
    """


class StateError(ForecasterError):
    """Persisted learning state is unreadable"""
