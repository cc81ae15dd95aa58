"""
STATISTICAL DIAGNOSTICS ENGINE
- Format/era detection (6/49 -> 6/52 -> 6/58)
- Frequency, hot/cold, pair/triple/quadruple/quintuple co-occurrence
- Gaps, chi-square uniformity, lag-1 autocorrelation
- Positional frequency, multi-lag Markov transitions, entropy regime
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .draws import K, DrawRecord

GROUP_NAMES = ('Low', 'Medium', 'MedHigh', 'High')
HOT_COLD_THRESHOLD = 1.5
OVERDUE_RATIO = 1.5
DEFAULT_POOL = 52


# ======================
# RESULT TYPES
# ======================
@dataclass(frozen=True)
class FormatEra:
    pool_size: int
    start_index: int
    end_index: int
    draw_count: int


@dataclass(frozen=True)
class FrequencyResult:
    number: int
    count: int
    expected: float
    z_score: float
    frequency: float


@dataclass(frozen=True)
class HotColdResult:
    number: int
    recent_count: int
    all_time_freq: float
    recent_freq: float
    status: str  # 'hot' | 'cold' | 'neutral'
    delta: float


@dataclass(frozen=True)
class PairResult:
    i: int
    j: int
    count: int
    expected: float
    z_score: float


@dataclass(frozen=True)
class GroupPatternResult:
    pattern: str
    count: int
    percentage: float


@dataclass(frozen=True)
class GapResult:
    number: int
    current_gap: int
    avg_gap: float
    max_gap: int
    is_overdue: bool

    @property
    def ratio(self) -> float:
        return self.current_gap / self.avg_gap if self.avg_gap else 0.0


@dataclass(frozen=True)
class ChiSquareResult:
    chi_square: float
    degrees_of_freedom: int
    p_value: float
    is_uniform: bool


@dataclass(frozen=True)
class AutocorrResult:
    number: int
    lag1_corr: float
    is_significant: bool


@dataclass(frozen=True)
class DeltaResult:
    delta: int
    count: int
    percentage: float


@dataclass(frozen=True)
class ComboResult:
    """A co-occurring group of numbers (triple, quadruple or quintuple)"""
    numbers: Tuple[int, ...]
    count: int


@dataclass(frozen=True)
class PositionalFreq:
    position: int
    number_freqs: Dict[int, float]  # number -> percentage of draws


@dataclass(frozen=True)
class TransitionMatch:
    number: int
    count: int
    probability: float


@dataclass(frozen=True)
class TransitionResult:
    lag: int
    from_number: int
    to_numbers: Tuple[TransitionMatch, ...]


@dataclass(frozen=True)
class EntropyDiagnostics:
    normalized_entropy: float = 1.0
    concentration: float = 0.0
    entropy_trend: float = 0.0
    rolling_entropy: Tuple[float, ...] = ()
    window_size: int = 0
    regime: str = 'neutral'  # 'structured' | 'diffuse' | 'neutral'


@dataclass(frozen=True)
class FullDiagnostics:
    total_draws: int
    pool_size: int
    era_draw_count: int
    frequency: Tuple[FrequencyResult, ...]
    hot_cold: Tuple[HotColdResult, ...]
    top_pairs: Tuple[PairResult, ...]
    group_patterns: Tuple[GroupPatternResult, ...]
    gaps: Tuple[GapResult, ...]
    chi_square: ChiSquareResult
    autocorrelation: Tuple[AutocorrResult, ...]
    deltas: Tuple[DeltaResult, ...]
    top_triples: Tuple[ComboResult, ...]
    top_quadruples: Tuple[ComboResult, ...]
    top_quintets: Tuple[ComboResult, ...]
    positional_freq: Tuple[PositionalFreq, ...]
    transitions: Tuple[TransitionResult, ...]
    entropy: EntropyDiagnostics
    bias_detected: bool
    bias_reasons: Tuple[str, ...]
    eras: Tuple[FormatEra, ...]

    @property
    def hot_numbers(self) -> List[int]:
        return [h.number for h in self.hot_cold if h.status == 'hot']

    @property
    def cold_numbers(self) -> List[int]:
        return [h.number for h in self.hot_cold if h.status == 'cold']

    @property
    def overdue_numbers(self) -> List[int]:
        return [g.number for g in self.gaps if g.is_overdue]

    @property
    def significant_lags(self) -> int:
        return sum(1 for a in self.autocorrelation if a.is_significant)


# ======================
# FORMAT DETECTION
# ======================
def pool_for_max(max_value: int) -> int:
    if max_value > 52:
        return 58
    if max_value > 49:
        return 52
    return 49


def infer_draw_pool_size(draw: DrawRecord) -> int:
    return pool_for_max(max(*draw.numbers, draw.bonus or 0))


def detect_format(draws: Sequence[DrawRecord]) -> Tuple[int, List[DrawRecord], List[FormatEra]]:
    """Detect the current pool size and era boundaries.

    Returns:
        (current_n, current_era_draws, eras)
    Eras only split on a pool-size increase; formats never shrink.
    """
    if not draws:
        return DEFAULT_POOL, [], []

    recent = draws[-min(50, len(draws)):]
    recent_max = max(n for d in recent for n in d.all_numbers)
    current_n = pool_for_max(recent_max)

    eras = []
    era_start = 0
    last_pool = -1
    for i, draw in enumerate(draws):
        pool_at_i = infer_draw_pool_size(draw)
        if last_pool == -1:
            last_pool = pool_at_i
        elif pool_at_i > last_pool:
            eras.append(FormatEra(last_pool, era_start, i - 1, i - era_start))
            era_start = i
            last_pool = pool_at_i

    eras.append(FormatEra(current_n, era_start, len(draws) - 1, len(draws) - era_start))
    return current_n, list(draws[era_start:]), eras


# ======================
# FREQUENCY / HOT-COLD
# ======================
def _number_counts(draws: Sequence[DrawRecord], n_pool: int, include_bonus: bool = True) -> np.ndarray:
    """Occurrence counts indexed 0..N (slot 0 unused)"""
    counts = np.zeros(n_pool + 1, dtype=np.int64)
    for d in draws:
        nums = d.all_numbers if include_bonus else d.numbers
        for n in nums:
            if 0 < n <= n_pool:
                counts[n] += 1
    return counts


def frequency_analysis(draws: Sequence[DrawRecord], n_pool: int) -> List[FrequencyResult]:
    """Counts against a 7-of-N binomial model (mains + bonus)"""
    t = len(draws)
    k_analysis = K + 1
    counts = _number_counts(draws, n_pool)
    expected = t * k_analysis / n_pool
    std_dev = math.sqrt(t * (k_analysis / n_pool) * (1 - k_analysis / n_pool))
    return [
        FrequencyResult(
            number=i,
            count=int(counts[i]),
            expected=expected,
            z_score=(counts[i] - expected) / std_dev if std_dev > 0 else 0.0,
            frequency=counts[i] / t if t else 0.0,
        )
        for i in range(1, n_pool + 1)
    ]


def hot_cold_analysis(draws: Sequence[DrawRecord], n_pool: int, window_size: int = 20) -> List[HotColdResult]:
    """Z-score of the recent window against the all-time rate"""
    all_freq = frequency_analysis(draws, n_pool)
    window = min(window_size, len(draws))
    recent_counts = _number_counts(draws[len(draws) - window:], n_pool)

    results = []
    for f in all_freq:
        recent = int(recent_counts[f.number])
        p = f.frequency
        exp_window = window * p
        std_window = math.sqrt(window * p * (1 - p))
        z_recent = (recent - exp_window) / std_window if std_window > 0 else 0.0

        status = 'neutral'
        if z_recent > HOT_COLD_THRESHOLD:
            status = 'hot'
        elif z_recent < -HOT_COLD_THRESHOLD:
            status = 'cold'

        results.append(HotColdResult(
            number=f.number,
            recent_count=recent,
            all_time_freq=f.frequency,
            recent_freq=recent / window if window else 0.0,
            status=status,
            delta=z_recent,
        ))
    return results


# ======================
# COMBINATION ANALYSIS
# ======================
def pair_analysis(draws: Sequence[DrawRecord], n_pool: int, top_n: int = 30) -> List[PairResult]:
    """Main-number pair co-occurrence ranked by z-score"""
    t = len(draws)
    p_pair = (K * (K - 1)) / (n_pool * (n_pool - 1))
    expected = t * p_pair
    std_pair = math.sqrt(t * p_pair * (1 - p_pair))

    pair_counts = defaultdict(int)
    for d in draws:
        nums = [n for n in d.numbers if 0 < n <= n_pool]
        for pair in combinations(nums, 2):
            pair_counts[pair] += 1

    results = [
        PairResult(i, j, count, expected, (count - expected) / std_pair if std_pair > 0 else 0.0)
        for (i, j), count in pair_counts.items()
    ]
    results.sort(key=lambda p: p.z_score, reverse=True)
    return results[:top_n]


def combination_analysis(draws: Sequence[DrawRecord], size: int, top_n: int,
                         min_count: int = 1) -> List[ComboResult]:
    """Count every `size`-combination of the sorted 7-ball draw.

    Args:
        size: 3 for triples, 4 for quadruples, 5 for quintuples
        min_count: combos seen fewer times are dropped
    """
    counts = defaultdict(int)
    for d in draws:
        nums = sorted(d.all_numbers)
        for combo in combinations(nums, size):
            counts[combo] += 1

    results = [ComboResult(combo, c) for combo, c in counts.items() if c >= min_count]
    results.sort(key=lambda r: r.count, reverse=True)
    return results[:top_n]


def triple_analysis(draws: Sequence[DrawRecord], top_n: int = 50) -> List[ComboResult]:
    return combination_analysis(draws, 3, top_n)


def quadruple_analysis(draws: Sequence[DrawRecord], top_n: int = 20) -> List[ComboResult]:
    # Only repeats carry signal at this order
    return combination_analysis(draws, 4, top_n, min_count=2)


def quintet_analysis(draws: Sequence[DrawRecord], top_n: int = 10) -> List[ComboResult]:
    return combination_analysis(draws, 5, top_n, min_count=2)


# ======================
# GROUPS / DELTAS
# ======================
def get_group(n: int, n_pool: int = DEFAULT_POOL) -> str:
    """Quartile bucket of a number"""
    q = math.ceil(n_pool / 4)
    if n <= q:
        return 'Low'
    if n <= q * 2:
        return 'Medium'
    if n <= q * 3:
        return 'MedHigh'
    return 'High'


def group_breakdown(numbers: Sequence[int], n_pool: int) -> str:
    """Pattern string such as '1-2-2-1' (Low-Medium-MedHigh-High)"""
    groups = dict.fromkeys(GROUP_NAMES, 0)
    for n in numbers:
        groups[get_group(n, n_pool)] += 1
    return '-'.join(str(groups[g]) for g in GROUP_NAMES)


def group_analysis(draws: Sequence[DrawRecord], n_pool: int) -> List[GroupPatternResult]:
    t = len(draws)
    pattern_counts = defaultdict(int)
    for d in draws:
        pattern_counts[group_breakdown(d.all_numbers, n_pool)] += 1

    results = [GroupPatternResult(p, c, c / t * 100) for p, c in pattern_counts.items()]
    results.sort(key=lambda r: r.count, reverse=True)
    return results


def delta_analysis(draws: Sequence[DrawRecord]) -> List[DeltaResult]:
    """Histogram of adjacent gaps inside each sorted 7-ball draw"""
    delta_counts = defaultdict(int)
    total = 0
    for d in draws:
        nums = sorted(d.all_numbers)
        for a, b in zip(nums, nums[1:]):
            delta_counts[b - a] += 1
            total += 1

    results = [DeltaResult(delta, c, c / total * 100) for delta, c in delta_counts.items()]
    results.sort(key=lambda r: (-r.count, r.delta))
    return results


# ======================
# GAP ANALYSIS
# ======================
def gap_analysis(draws: Sequence[DrawRecord], n_pool: int) -> List[GapResult]:
    """Draws since last seen per number; overdue when > 1.5x the average gap"""
    t = len(draws)
    appearances = defaultdict(list)
    for idx, d in enumerate(draws):
        for n in d.all_numbers:
            appearances[n].append(idx)

    results = []
    for num in range(1, n_pool + 1):
        seen = appearances.get(num, [])
        gaps = [b - a for a, b in zip(seen, seen[1:])]
        current_gap = t - 1 - seen[-1] if seen else t
        avg_gap = sum(gaps) / len(gaps) if gaps else float(t)
        max_gap = max(gaps) if gaps else t
        results.append(GapResult(
            number=num,
            current_gap=current_gap,
            avg_gap=avg_gap,
            max_gap=max_gap,
            is_overdue=current_gap > avg_gap * OVERDUE_RATIO,
        ))
    return results


# ======================
# UNIFORMITY / SERIAL DEPENDENCE
# ======================
def normal_cdf(z: float) -> float:
    """Abramowitz-Stegun approximation"""
    if z < -8:
        return 0.0
    if z > 8:
        return 1.0
    a1, a2, a3, a4, a5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
    p = 0.3275911
    sign = -1 if z < 0 else 1
    x = abs(z) / math.sqrt(2)
    t = 1 / (1 + p * x)
    y = 1 - ((((a5 * t + a4) * t + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return 0.5 * (1 + sign * y)


def chi_square_p_value(chi_sq: float, df: int) -> float:
    """Wilson-Hilferty approximation of the upper tail"""
    z = (chi_sq / df) ** (1 / 3) - (1 - 2 / (9 * df))
    return 1 - normal_cdf(z / math.sqrt(2 / (9 * df)))


def chi_square_test(draws: Sequence[DrawRecord], n_pool: int) -> ChiSquareResult:
    t = len(draws)
    df = n_pool - 1
    expected = t * K / n_pool
    if expected <= 0:
        return ChiSquareResult(0.0, df, 1.0, True)

    counts = _number_counts(draws, n_pool, include_bonus=False)[1:]
    chi_sq = float(np.sum((counts - expected) ** 2 / expected))
    p_value = chi_square_p_value(chi_sq, df)
    return ChiSquareResult(chi_sq, df, p_value, p_value > 0.05)


def autocorrelation_analysis(draws: Sequence[DrawRecord], n_pool: int) -> List[AutocorrResult]:
    """Lag-1 serial correlation of each number's presence indicator"""
    t = len(draws)
    if t == 0:
        return [AutocorrResult(n, 0.0, False) for n in range(1, n_pool + 1)]

    x = np.zeros((t, n_pool + 1), dtype=float)
    for idx, d in enumerate(draws):
        for n in d.numbers:
            if 0 < n <= n_pool:
                x[idx, n] = 1.0
    centered = x - x.mean(axis=0)
    denom = np.sum(centered ** 2, axis=0)
    lagged = np.sum(centered[:-1] * centered[1:], axis=0)
    threshold = 2 / math.sqrt(t)

    results = []
    for n in range(1, n_pool + 1):
        lag1 = float(lagged[n] / denom[n]) if denom[n] > 0 else 0.0
        results.append(AutocorrResult(n, lag1, abs(lag1) > threshold))
    return results


# ======================
# POSITIONAL / TRANSITIONS
# ======================
def positional_frequency_analysis(draws: Sequence[DrawRecord]) -> List[PositionalFreq]:
    """Occupancy percentage of each number per rank in the sorted 7-tuple"""
    slots = K + 1
    counts = [defaultdict(int) for _ in range(slots)]
    for d in draws:
        for pos, n in enumerate(sorted(d.all_numbers)[:slots]):
            counts[pos][n] += 1

    total = len(draws) or 1
    return [
        PositionalFreq(pos + 1, {n: c / total * 100 for n, c in sorted(slot.items())})
        for pos, slot in enumerate(counts)
    ]


def transition_analysis(draws: Sequence[DrawRecord], n_pool: int, max_lag: int = 4,
                        top_n: int = 10) -> List[TransitionResult]:
    """Successor tables: number a in draw t -> numbers in draw t+lag"""
    results = []
    for lag in range(1, max_lag + 1):
        matrix = defaultdict(lambda: defaultdict(int))
        for t in range(len(draws) - lag):
            nxt = draws[t + lag].numbers
            for a in draws[t].numbers:
                row = matrix[a]
                for b in nxt:
                    row[b] += 1

        for i in range(1, n_pool + 1):
            if i not in matrix:
                continue
            row = matrix[i]
            total = sum(row.values())
            ranked = sorted(row.items(), key=lambda kv: (-kv[1], kv[0]))[:top_n]
            results.append(TransitionResult(
                lag, i, tuple(TransitionMatch(n, c, c / total) for n, c in ranked)
            ))
    return results


# ======================
# ENTROPY REGIME
# ======================
def js_round(value: float) -> int:
    """Round half up"""
    return int(math.floor(value + 0.5))


def clamp_unit(value: float) -> float:
    if not math.isfinite(value) or value < 0:
        return 0.0
    return min(value, 1.0)


def clamp_number(value: float, low: float, high: float) -> float:
    """Clamp to [low, high]; non-finite values collapse to `low`"""
    if value is None or not math.isfinite(value):
        return low
    return max(low, min(high, value))


def normalized_shannon_entropy(counts: np.ndarray, n_pool: int) -> float:
    total = counts[1:].sum()
    if total <= 0 or n_pool <= 1:
        return 1.0
    p = counts[1:][counts[1:] > 0] / total
    entropy = float(-np.sum(p * np.log2(p)))
    return clamp_unit(entropy / math.log2(n_pool))


def entropy_diagnostics(draws: Sequence[DrawRecord], n_pool: int) -> EntropyDiagnostics:
    """Rolling entropy, Herfindahl concentration and regime classification"""
    if not draws:
        return EntropyDiagnostics()

    t = len(draws)
    preferred = max(20, js_round(t * 0.22))
    window = max(8, min(t, preferred))
    stride = max(4, window // 3)

    rolling = []
    if t <= window:
        rolling.append(normalized_shannon_entropy(_number_counts(draws, n_pool), n_pool))
    else:
        for start in range(0, t - window + 1, stride):
            segment = draws[start:start + window]
            rolling.append(normalized_shannon_entropy(_number_counts(segment, n_pool), n_pool))
        tail_entropy = normalized_shannon_entropy(_number_counts(draws[t - window:], n_pool), n_pool)
        if not rolling or abs(rolling[-1] - tail_entropy) > 1e-6:
            rolling.append(tail_entropy)

    recent_counts = _number_counts(draws[t - window:], n_pool)
    normalized_entropy = normalized_shannon_entropy(recent_counts, n_pool)
    total_recent = recent_counts[1:].sum()
    hhi = float(np.sum((recent_counts[1:] / total_recent) ** 2)) if total_recent > 0 else 0.0
    uniform_hhi = 1 / max(1, n_pool)
    concentration = clamp_unit((hhi - uniform_hhi) / (1 - uniform_hhi))

    trend = 0.0
    if len(rolling) >= 2:
        split = max(1, len(rolling) // 2)
        early, late = rolling[:split], rolling[split:]
        trend = sum(late) / max(1, len(late)) - sum(early) / max(1, len(early))

    regime = 'neutral'
    if normalized_entropy <= 0.94 or (trend < -0.015 and concentration >= 0.08):
        regime = 'structured'
    elif normalized_entropy >= 0.98 and concentration <= 0.05 and trend >= -0.01:
        regime = 'diffuse'

    return EntropyDiagnostics(normalized_entropy, concentration, trend, tuple(rolling), window, regime)


# ======================
# FULL DIAGNOSTICS BUNDLE
# ======================
def run_full_diagnostics(draws: Sequence[DrawRecord]) -> FullDiagnostics:
    """Run every analysis over a chronological draw history.

    Bias claims (frequency, hot/cold, pairs, groups, gaps, chi-square,
    autocorrelation, entropy) stay inside the current era. Relationship
    analyses use every draw of the same pool size to widen the sample.
    """
    draws = list(draws)
    n_pool, current_draws, eras = detect_format(draws)

    same_pool = [d for d in draws if infer_draw_pool_size(d) == n_pool]
    relationship_draws = same_pool or current_draws

    freq = frequency_analysis(current_draws, n_pool)
    hot_cold = hot_cold_analysis(current_draws, n_pool, 20)
    pairs = pair_analysis(current_draws, n_pool, 30)
    groups = group_analysis(current_draws, n_pool)
    gaps = gap_analysis(current_draws, n_pool)
    chi = chi_square_test(current_draws, n_pool)
    autocorr = autocorrelation_analysis(current_draws, n_pool)

    deltas = delta_analysis(relationship_draws)
    triples = triple_analysis(relationship_draws, 50)
    quadruples = quadruple_analysis(relationship_draws, 20)
    quintets = quintet_analysis(relationship_draws, 10)
    positional = positional_frequency_analysis(relationship_draws)
    transitions = transition_analysis(relationship_draws, n_pool)
    entropy = entropy_diagnostics(current_draws, n_pool)

    sig_lags = sum(1 for a in autocorr if a.is_significant)
    reasons = []
    if not chi.is_uniform:
        reasons.append('Frequency imbalance (Chi-Square)')
    if sig_lags > 0:
        reasons.append(f'Sequential dependency ({sig_lags} lags)')
    if sum(1 for g in gaps if g.is_overdue) > n_pool * 0.2:
        reasons.append('High number of overdue values')
    if sum(1 for h in hot_cold if h.status == 'hot') < 3:
        reasons.append('Weak recent trend (Cold cycle)')
    if entropy.regime == 'structured':
        reasons.append('Entropy contraction (structured regime)')

    return FullDiagnostics(
        total_draws=len(draws),
        pool_size=n_pool,
        era_draw_count=len(current_draws),
        frequency=tuple(freq),
        hot_cold=tuple(hot_cold),
        top_pairs=tuple(pairs),
        group_patterns=tuple(groups),
        gaps=tuple(gaps),
        chi_square=chi,
        autocorrelation=tuple(autocorr),
        deltas=tuple(deltas),
        top_triples=tuple(triples),
        top_quadruples=tuple(quadruples),
        top_quintets=tuple(quintets),
        positional_freq=tuple(positional),
        transitions=tuple(transitions),
        entropy=entropy,
        bias_detected=bool(reasons),
        bias_reasons=tuple(reasons),
        eras=tuple(eras),
    )


# ======================
# SET BALANCE HELPERS
# ======================
def odd_even_split(numbers: Sequence[int]) -> Tuple[int, int]:
    odd = sum(1 for n in numbers if n % 2 != 0)
    return odd, len(numbers) - odd


def count_consecutive(numbers: Sequence[int]) -> int:
    """Adjacent +1 steps in an already sorted list"""
    return sum(1 for a, b in zip(numbers, numbers[1:]) if b == a + 1)
