"""Historical echo search: numbers drawn right after statistically similar windows."""

import math
from typing import List, Sequence

from .analysis import FullDiagnostics
from .cache import DiagnosticsCache
from .draws import DrawRecord

ECHO_WINDOW = 50
MAX_DISTANCE = 3.0
ECHO_FILL = 12


def diagnostic_profile(diag: FullDiagnostics):
    """(chi-square, significant lags, hot count, overdue count)"""
    return (
        diag.chi_square.chi_square,
        diag.significant_lags,
        len(diag.hot_numbers),
        len(diag.overdue_numbers),
    )


def profile_distance(a, b) -> float:
    # chi-square lives on a much larger scale than the counts
    return math.sqrt(
        ((a[0] - b[0]) / 20) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2 + (a[3] - b[3]) ** 2
    )


def find_historical_echoes(scores, diag: FullDiagnostics, draws: Sequence[DrawRecord],
                           budgets, cache: DiagnosticsCache) -> List[int]:
    """Collect follow-on numbers of the closest historical windows.

    Windows of a different pool size are skipped. The result is padded with
    the best composite scorers up to 12 numbers.
    """
    current = diagnostic_profile(diag)
    max_windows = max(1, budgets.historical_echo_max_windows)
    total_windows = max(0, len(draws) - ECHO_WINDOW - 1)
    stride = max(1, math.ceil(total_windows / max_windows))

    similar = []
    for i in range(0, len(draws) - ECHO_WINDOW - 1, stride):
        window_diag = cache.get(draws[i:i + ECHO_WINDOW])
        if window_diag.pool_size != diag.pool_size:
            continue
        dist = profile_distance(current, diagnostic_profile(window_diag))
        if dist < MAX_DISTANCE:
            similar.append((i, dist))
            if len(similar) > budgets.historical_echo_max_windows:
                similar.sort(key=lambda s: s[1])
                similar.pop()

    similar.sort(key=lambda s: s[1])

    echoes = []
    for index, _ in similar[:budgets.historical_echo_top_matches]:
        next_idx = index + ECHO_WINDOW
        if next_idx < len(draws):
            for n in draws[next_idx].numbers:
                if n not in echoes:
                    echoes.append(n)

    for s in scores:
        if len(echoes) >= ECHO_FILL:
            break
        if s.number not in echoes:
            echoes.append(s.number)
    return echoes
