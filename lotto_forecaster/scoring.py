"""
SCORING ENGINE
- Recency-weighted Bayesian posterior
- 8-factor per-number sub-scores blended by a weight profile
- Entropy-regime adaptive signal scaling
- Profile sanitising, hybridising and power-weighted ensembling
"""

import math
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .analysis import FullDiagnostics, clamp_number
from .draws import K, DrawRecord

FACTORS = ('bayesian', 'hot_cold', 'gap', 'pair', 'triple', 'positional', 'transition', 'repeat')

# camelCase spellings used by persisted JSON state
_CAMEL = {'hot_cold': 'hotCold'}


# ======================
# WEIGHT PROFILES
# ======================
@dataclass(frozen=True)
class WeightProfile:
    name: str
    bayesian: float = 0.0
    hot_cold: float = 0.0
    gap: float = 0.0
    pair: float = 0.0
    triple: float = 0.0
    positional: float = 0.0
    transition: float = 0.0
    repeat: float = 0.0

    def weights(self) -> Tuple[float, ...]:
        return tuple(getattr(self, f) for f in FACTORS)

    def to_dict(self) -> Dict:
        data = asdict(self)
        return {_CAMEL.get(k, k): v for k, v in data.items()}


WEIGHT_PROFILES = (
    WeightProfile('Balanced', 0.15, 0.15, 0.2, 0.15, 0.2, 0.1, 0.1, 0.1),
    WeightProfile('Trend-Focus', 0.1, 0.3, 0.1, 0.1, 0.15, 0.1, 0.05, 0.15),
    WeightProfile('Gap-Target', 0.1, 0.1, 0.4, 0.1, 0.15, 0.05, 0.05, 0.1),
    WeightProfile('Cluster-Heavy', 0.1, 0.1, 0.1, 0.25, 0.25, 0.1, 0.1, 0.1),
    WeightProfile('Bayesian-Pure', 0.5, 0.1, 0.05, 0.1, 0.1, 0.05, 0.1, 0.1),
    WeightProfile('Aggress-X', 0.05, 0.1, 0.1, 0.2, 0.2, 0.1, 0.15, 0.1),
    WeightProfile('Bias-Master', 0.0, 0.05, 0.05, 0.15, 0.15, 0.1, 0.4, 0.1),
)
PROFILES_BY_NAME = {p.name: p for p in WEIGHT_PROFILES}


def _raw_weight(raw, factor: str) -> float:
    if isinstance(raw, WeightProfile):
        return getattr(raw, factor)
    value = raw.get(factor, raw.get(_CAMEL.get(factor, factor), 0))
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def sanitize_weight_profile(raw, fallback: WeightProfile,
                            default_name: str = 'Warm Start') -> WeightProfile:
    """Clamp each weight to [0, 1.5] and renormalise to sum 1.

    `raw` may be a WeightProfile or a dict (snake_case or camelCase keys).
    An empty or all-zero input returns `fallback` unchanged.
    """
    if not raw:
        return fallback
    values = [clamp_number(_raw_weight(raw, f), 0, 1.5) for f in FACTORS]
    total = sum(values)
    if total <= 0:
        return fallback

    name = raw.name if isinstance(raw, WeightProfile) else raw.get('name')
    if not isinstance(name, str) or not name.strip():
        name = default_name
    return WeightProfile(name, *(v / total for v in values))


def blend_weight_profiles(name: str, primary: WeightProfile, secondary: WeightProfile,
                          primary_weight: float) -> WeightProfile:
    w_primary = clamp_number(primary_weight, 0, 1)
    w_secondary = 1 - w_primary
    mixed = {
        f: getattr(primary, f) * w_primary + getattr(secondary, f) * w_secondary
        for f in FACTORS
    }
    mixed['name'] = name
    return sanitize_weight_profile(mixed, secondary, name)


def ensemble_profile(overlaps: Sequence[float], power: float = 2.0,
                     name: str = 'Neural Ensemble') -> WeightProfile:
    """Blend the presets by rolling overlap ** power (favours the current experts).

    `overlaps` lines up with WEIGHT_PROFILES.
    """
    powered = [o ** power for o in overlaps]
    total_power = sum(powered) or 1
    blended = dict.fromkeys(FACTORS, 0.0)
    for profile, weight in zip(WEIGHT_PROFILES, powered):
        share = weight / total_power
        for f in FACTORS:
            blended[f] += getattr(profile, f) * share
    return WeightProfile(name, **blended)


# ======================
# BAYESIAN POSTERIOR
# ======================
@dataclass(frozen=True)
class BayesianResult:
    number: int
    posterior: float
    raw_count: int
    weighted_count: float


def bayesian_smoothed(draws: Sequence[DrawRecord], n_pool: int, alpha0: float = 1.0,
                      decay: float = 0.005) -> List[BayesianResult]:
    """Dirichlet-smoothed posterior over exponentially recency-weighted main counts"""
    t = len(draws)
    weighted = np.zeros(n_pool + 1)
    raw = np.zeros(n_pool + 1, dtype=np.int64)
    total_weight = 0.0
    for idx, d in enumerate(draws):
        w = math.exp(-decay * (t - 1 - idx))
        total_weight += w
        for n in d.numbers:
            if n <= n_pool:
                weighted[n] += w
                raw[n] += 1

    denominator = n_pool * alpha0 + total_weight * K
    return [
        BayesianResult(i, (alpha0 + weighted[i]) / denominator, int(raw[i]), float(weighted[i]))
        for i in range(1, n_pool + 1)
    ]


# ======================
# ADAPTIVE SIGNAL SCALE
# ======================
_SCALE_BANDS = {
    'bayesian': (0.65, 1.4),
    'hot_cold': (0.7, 1.45),
    'gap': (0.7, 1.35),
    'pair': (0.55, 1.55),
    'triple': (0.5, 1.65),
    'positional': (0.75, 1.25),
    'transition': (0.5, 1.7),
    'repeat': (0.7, 1.35),
}


def derive_adaptive_signal_scale(diagnostics: FullDiagnostics) -> Dict[str, float]:
    """Per-factor multiplier from the entropy regime.

    Structured history leans on pair/triple/transition/hot-cold evidence,
    diffuse history leans on the smoothed posterior and positional spread.
    """
    ent = diagnostics.entropy
    rising = max(0.0, ent.entropy_trend)
    structure = clamp_number((1 - ent.normalized_entropy) * 2.2 + ent.concentration * 0.85 - rising * 1.4, 0, 1)
    diffuse = clamp_number(
        (ent.normalized_entropy - 0.94) * 3.2 + (0.08 - ent.concentration) * 3.4 + rising * 1.6, 0, 1
    )

    scales = {
        'bayesian': 1 + diffuse * 0.18 - structure * 0.08,
        'hot_cold': 1 + structure * 0.22 - diffuse * 0.1,
        'gap': 1 + structure * 0.18 - diffuse * 0.06,
        'pair': 1 + structure * 0.34 - diffuse * 0.32,
        'triple': 1 + structure * 0.38 - diffuse * 0.34,
        'positional': 1 + diffuse * 0.08 - structure * 0.05,
        'transition': 1 + structure * 0.42 - diffuse * 0.35,
        'repeat': 1 + structure * 0.14 - diffuse * 0.08,
    }
    if ent.regime == 'structured':
        scales['pair'] += 0.08
        scales['triple'] += 0.1
        scales['transition'] += 0.1
        scales['hot_cold'] += 0.05
    elif ent.regime == 'diffuse':
        scales['bayesian'] += 0.08
        scales['positional'] += 0.04
        scales['pair'] -= 0.08
        scales['triple'] -= 0.1
        scales['transition'] -= 0.1

    return {f: clamp_number(v, *_SCALE_BANDS[f]) for f, v in scales.items()}


# ======================
# COMPOSITE SCORING
# ======================
@dataclass(frozen=True)
class NumberScore:
    number: int
    bayesian_score: float
    hot_cold_score: float
    gap_score: float
    pair_affinity_score: float
    triple_affinity_score: float
    positional_score: float
    transition_score: float
    repeat_number_score: float
    composite_score: float = 0.0

    def with_composite(self, value: float) -> 'NumberScore':
        return replace(self, composite_score=value)


def _min_max(values: np.ndarray) -> np.ndarray:
    low, high = values.min(), values.max()
    if high == low:
        return np.full(values.shape, 0.5)
    return (values - low) / (high - low)


def transition_scores(diagnostics: FullDiagnostics, draws: Sequence[DrawRecord],
                      max_lag: int = 4) -> np.ndarray:
    """Raw successor evidence per number: sum of probability^2 * 0.5^(lag-1)"""
    n_pool = diagnostics.pool_size
    by_key = {(t.lag, t.from_number): t for t in diagnostics.transitions}
    scores = np.zeros(n_pool + 1)
    for lag in range(1, max_lag + 1):
        if len(draws) < lag:
            continue
        lag_weight = 0.5 ** (lag - 1)
        for ln in draws[-lag].all_numbers:
            trans = by_key.get((lag, ln))
            if trans is None:
                continue
            for to in trans.to_numbers:
                if to.number <= n_pool:
                    scores[to.number] += to.probability ** 2 * lag_weight
    return scores


def composite_scoring(diagnostics: FullDiagnostics, draws: Sequence[DrawRecord],
                      profile: WeightProfile = WEIGHT_PROFILES[0]) -> List[NumberScore]:
    """Score every number 1..N and return them sorted by composite score (descending)"""
    n_pool = diagnostics.pool_size
    bayesian = bayesian_smoothed(draws, n_pool)
    posteriors = [b.posterior for b in bayesian]
    bayes_min, bayes_max = min(posteriors), max(posteriors)

    hc_map = {h.number: h for h in diagnostics.hot_cold}
    gap_map = {g.number: g for g in diagnostics.gaps}

    pair_affinity = np.zeros(n_pool + 1)
    for p in diagnostics.top_pairs:
        if p.z_score > 0:
            pair_affinity[p.i] += p.z_score
            pair_affinity[p.j] += p.z_score
    pair_affinity = _min_max(pair_affinity)

    triple_affinity = np.zeros(n_pool + 1)
    for t in diagnostics.top_triples:
        for n in t.numbers:
            if n <= n_pool:
                triple_affinity[n] += t.count
    triple_affinity = _min_max(triple_affinity)

    transitions = _min_max(transition_scores(diagnostics, draws))

    positional_raw = np.zeros(n_pool + 1)
    for pf in diagnostics.positional_freq:
        for n, pct in pf.number_freqs.items():
            if n <= n_pool:
                positional_raw[n] += pct

    last_numbers = set(draws[-1].numbers) if draws else set()
    scale = derive_adaptive_signal_scale(diagnostics)
    weights = {f: getattr(profile, f) or 0.0 for f in FACTORS}

    scores = []
    for i in range(1, n_pool + 1):
        posterior = posteriors[i - 1]
        bayesian_score = (posterior - bayes_min) / (bayes_max - bayes_min) if bayes_max > bayes_min else 0.5

        hc = hc_map.get(i)
        hot_cold_score = clamp_number((hc.delta + 3) / 6, 0, 1) if hc else 0.5

        gap = gap_map.get(i)
        gap_score = min(gap.current_gap / (gap.avg_gap or 1) / 3, 1.0) if gap else 0.5

        sub = {
            'bayesian': bayesian_score,
            'hot_cold': hot_cold_score,
            'gap': gap_score,
            'pair': float(pair_affinity[i]),
            'triple': float(triple_affinity[i]),
            'positional': float(min(positional_raw[i] / 60, 1.0)),
            'transition': float(transitions[i]),
            'repeat': 1.0 if i in last_numbers else 0.0,
        }
        composite = 0.0
        for f in FACTORS:
            # positional and repeat are already non-negative
            value = sub[f] if f in ('positional', 'repeat') else max(0.0, sub[f])
            composite += weights[f] * scale[f] * value

        scores.append(NumberScore(
            number=i,
            bayesian_score=bayesian_score,
            hot_cold_score=hot_cold_score,
            gap_score=gap_score,
            pair_affinity_score=sub['pair'],
            triple_affinity_score=sub['triple'],
            positional_score=sub['positional'],
            transition_score=sub['transition'],
            repeat_number_score=sub['repeat'],
            composite_score=composite,
        ))

    scores.sort(key=lambda s: s.composite_score, reverse=True)
    return scores


def blend_composite_scores(diagnostics: FullDiagnostics, draws: Sequence[DrawRecord],
                           weighted_profiles: Sequence[Tuple[WeightProfile, float]],
                           on_profile_scored: Optional[Callable[[int, int], None]] = None
                           ) -> List[NumberScore]:
    """Weighted average of the composite scores produced by several profiles.

    Sub-scores come from the first profile's run (they do not depend on weights).
    """
    if not weighted_profiles:
        return composite_scoring(diagnostics, draws, WEIGHT_PROFILES[0])

    snapshots = []
    for idx, (profile, weight) in enumerate(weighted_profiles):
        snapshots.append((max(0.0001, weight), composite_scoring(diagnostics, draws, profile)))
        if on_profile_scored is not None:
            on_profile_scored(idx, len(weighted_profiles))

    total_weight = sum(w for w, _ in snapshots) or 1
    blended = {s.number: 0.0 for s in snapshots[0][1]}
    for weight, scores in snapshots:
        for s in scores:
            if s.number in blended:
                blended[s.number] += s.composite_score * weight

    template = [s.with_composite(blended[s.number] / total_weight) for s in snapshots[0][1]]
    template.sort(key=lambda s: s.composite_score, reverse=True)
    return template


def scores_are_finite(scores: Sequence[NumberScore]) -> bool:
    return all(math.isfinite(s.composite_score) for s in scores)


def profile_from_name(name: str, fallback: WeightProfile = WEIGHT_PROFILES[0]) -> WeightProfile:
    return PROFILES_BY_NAME.get(name, fallback)


def overlaps_by_name(raw: Optional[Mapping[str, float]]) -> List[float]:
    """Warm-start overlaps aligned with WEIGHT_PROFILES, clamped to [0, 2000]"""
    raw = raw or {}
    out = []
    for p in WEIGHT_PROFILES:
        try:
            value = float(raw.get(p.name, 0) or 0)
        except (TypeError, ValueError):
            value = 0.0
        out.append(clamp_number(value, 0, 2000))
    return out
