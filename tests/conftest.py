import pytest

from lotto_forecaster.draws import DrawRecord, synthetic_draws
from lotto_forecaster.reporting import Reporter
from lotto_forecaster.settings import resolve_settings


@pytest.fixture
def synthetic_80():
    return synthetic_draws(80)


@pytest.fixture
def small_history():
    return [
        DrawRecord('2024-01-06', (3, 11, 19, 27, 35, 43), 8),
        DrawRecord('2024-01-13', (5, 11, 22, 30, 38, 47), 2),
        DrawRecord('2024-01-20', (1, 9, 19, 28, 36, 44), 12),
        DrawRecord('2024-01-27', (7, 14, 21, 28, 35, 42), 49),
        DrawRecord('2024-02-03', (2, 11, 19, 33, 40, 45), 6),
    ]


@pytest.fixture
def era_change_draws():
    """30 draws capped at 49, then 30 draws reaching into the 58 range"""
    early = [
        DrawRecord(f"2020-{1 + i // 28:02d}-{1 + i % 28:02d}",
                   tuple(sorted({(i * 7 + k * 8) % 49 + 1 for k in range(6)})), 0)
        for i in range(30)
    ]
    late = [
        DrawRecord(f"2022-{1 + i // 28:02d}-{1 + i % 28:02d}",
                   (1 + i % 5, 10 + i % 7, 20 + i % 9, 30 + i % 11, 44 + i % 3, 53 + i % 6), 0)
        for i in range(30)
    ]
    return early + late


@pytest.fixture
def fast_settings():
    """Small search budgets so full pipeline runs stay quick"""
    return resolve_settings({
        'fast_mode': True,
        'monte_carlo_min_trials': 100,
        'monte_carlo_max_trials': 500,
        'genetic_generations': 5,
        'genetic_population': 20,
        'include_historical_echo': False,
        'random_seed_salt': 'tests',
    })


class RecordingReporter(Reporter):
    def __init__(self):
        self.progress_events = []
        self.traces = []
        self.checkpoints = 0

    def progress(self, fraction, stage):
        self.progress_events.append((fraction, stage))

    def trace(self, event):
        self.traces.append(event)

    def checkpoint(self):
        self.checkpoints += 1


@pytest.fixture
def recorder():
    return RecordingReporter()
