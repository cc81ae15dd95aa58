"""
CANDIDATE GENERATOR
- Shared set scoring (relationship, transition, chain, density, balance, delta terms)
- Sixteen heuristics producing ranked 6-number sets
- Sequence-focused top-set selection used by the backtest loop
"""

from dataclasses import dataclass, replace
from itertools import combinations
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .analysis import (FullDiagnostics, GROUP_NAMES, clamp_number, count_consecutive, get_group,
                       group_breakdown, odd_even_split)
from .budgets import RuntimeBudgets, calibrate_runtime_budgets
from .cache import DiagnosticsCache
from .draws import K, DrawRecord
from .echo import find_historical_echoes
from .genetic import run_genetic_optimization
from .rng import SeededRandom
from .scoring import NumberScore

LAG1_MIN_SUPPORT = 2
LAG1_MAX_CONFIDENCE_TARGETS = 3
LAG1_CONFIDENCE_FLOOR = 0.02
LAG1_CONFIDENCE_RELATIVE = 0.75
MC_CHECKPOINT_EVERY = 500


@dataclass(frozen=True)
class PredictedSet:
    numbers: Tuple[int, ...]
    total_score: float
    group_breakdown: str
    relative_lift: float
    method: str

    @property
    def key(self) -> Tuple[int, ...]:
        return self.numbers


@dataclass(frozen=True)
class CandidateOptions:
    """Which optional heuristics run, and how much effort they get.

    Include flags left as None follow `not fast_mode`.
    """
    fast_mode: bool = False
    include_monte_carlo: Optional[bool] = None
    include_genetic: Optional[bool] = None
    include_sliding_window: Optional[bool] = None
    include_historical_echo: Optional[bool] = None
    runtime_budgets: Optional[RuntimeBudgets] = None
    diagnostics_cache: Optional[DiagnosticsCache] = None
    checkpoint: Optional[Callable[[], None]] = None

    def enabled(self, flag: Optional[bool]) -> bool:
        return (not self.fast_mode) if flag is None else flag


def fast_candidate_options(budgets: RuntimeBudgets, cache: DiagnosticsCache,
                           checkpoint: Optional[Callable[[], None]] = None) -> CandidateOptions:
    """Cheap configuration used inside backtest loops"""
    return CandidateOptions(
        fast_mode=True,
        include_monte_carlo=False,
        include_genetic=False,
        include_sliding_window=False,
        include_historical_echo=False,
        runtime_budgets=budgets,
        diagnostics_cache=cache,
        checkpoint=checkpoint,
    )


# ======================
# OVERLAP GRADING
# ======================
def seven_target(draw: DrawRecord) -> Set[int]:
    """Mains plus bonus: the 7-ball grading target"""
    return set(draw.all_numbers)


def overlap_count(numbers: Sequence[int], draw: DrawRecord) -> int:
    target = seven_target(draw)
    return sum(1 for n in set(numbers) if n in target)


def match_utility(overlap: int) -> int:
    """Superlinear reward for deep matches"""
    if overlap >= 6:
        return overlap + 26
    if overlap >= 5:
        return overlap + 11
    if overlap >= 4:
        return overlap + 5
    if overlap == 3:
        return overlap + 1
    return overlap


# ======================
# SET SCORING
# ======================
class ScoringLookup:
    """Pre-indexed views of scores and diagnostics used by set_score"""

    def __init__(self, scores: Sequence[NumberScore], diag: FullDiagnostics):
        self.score_by_number = {s.number: s for s in scores}
        self.pattern_pct = {g.pattern: g.percentage for g in diag.group_patterns}
        self.delta_pct = {d.delta: d.percentage for d in diag.deltas}

        self.combo_weight: Dict[Tuple[int, ...], float] = {}
        self.relationship_nodes: Set[int] = set()
        for t in diag.top_triples:
            self.combo_weight[t.numbers] = self.combo_weight.get(t.numbers, 0) + 1.5
            self.relationship_nodes.update(t.numbers)
        for q in diag.top_quadruples:
            self.combo_weight[q.numbers] = self.combo_weight.get(q.numbers, 0) + 1.5 ** 2
            self.relationship_nodes.update(q.numbers)
        for q in diag.top_quintets:
            self.combo_weight[q.numbers] = self.combo_weight.get(q.numbers, 0) + 1.5 ** 3
        self.has_quintets = bool(diag.top_quintets)

        self.lag1_by_from = {}
        self.high_confidence = {}
        for tr in diag.transitions:
            if tr.lag != 1:
                continue
            self.lag1_by_from[tr.from_number] = tr
            ordered = sorted(tr.to_numbers, key=lambda to: (-to.probability, -to.count))
            max_prob = ordered[0].probability if ordered else 0
            threshold = max(LAG1_CONFIDENCE_FLOOR, max_prob * LAG1_CONFIDENCE_RELATIVE)
            confident = [to.number for to in ordered
                         if to.count >= LAG1_MIN_SUPPORT and to.probability >= threshold]
            self.high_confidence[tr.from_number] = set(confident[:LAG1_MAX_CONFIDENCE_TARGETS])


def group_balance_score(numbers: Sequence[int], n_pool: int) -> float:
    counts = dict.fromkeys(GROUP_NAMES, 0)
    for n in numbers:
        counts[get_group(n, n_pool)] += 1
    ideal = K / 4
    deviation = sum((c - ideal) ** 2 for c in counts.values())
    return 1 - deviation / (K * K)


def balance_penalty(numbers: Sequence[int], n_pool: int) -> float:
    """Mean of odd/even, sum-range and consecutiveness penalties (each 0..1)"""
    odd, _ = odd_even_split(numbers)
    oe_penalty = 0.0
    if odd in (0, 6):
        oe_penalty = 1.0
    elif odd in (1, 5):
        oe_penalty = 0.5

    total = sum(numbers)
    sum_penalty = 1.0 if total < K * (n_pool / 4) or total > K * (n_pool * 0.75) else 0.0

    cons = count_consecutive(numbers)
    cons_penalty = 0.0
    if cons > 2:
        cons_penalty = 1.0
    elif cons == 2:
        cons_penalty = 0.4
    return (oe_penalty + sum_penalty + cons_penalty) / 3


def set_score(numbers: Sequence[int], lookup: ScoringLookup, n_pool: int) -> float:
    """Total score of a 6-number set under the current scores and diagnostics"""
    nums = sorted(numbers)
    composite_sum = sum(
        lookup.score_by_number[n].composite_score if n in lookup.score_by_number else 0.0
        for n in nums
    )
    group_bonus = group_balance_score(nums, n_pool) * 0.1
    pattern_bonus = lookup.pattern_pct.get(group_breakdown(nums, n_pool), 0) / 100 * 1.5

    relationship_bonus = 0.0
    for size in (3, 4, 5):
        if size == 5 and not lookup.has_quintets:
            continue
        for combo in combinations(nums, size):
            relationship_bonus += lookup.combo_weight.get(combo, 0)

    transition_bonus = 0.0
    for n in nums:
        ts = lookup.score_by_number[n].transition_score if n in lookup.score_by_number else 0.0
        if ts > 0.4:
            transition_bonus += ts ** 2

    chain_bonus = 0.0
    for a, b in combinations(nums, 2):
        if b in lookup.high_confidence.get(a, ()):
            chain_bonus += 1.5

    delta_penalty = 0.0
    for a, b in zip(nums, nums[1:]):
        pct = lookup.delta_pct.get(b - a)
        if not pct or pct < 1.0:
            delta_penalty += 0.3

    nodes = sum(1 for n in nums if n in lookup.relationship_nodes)
    density_bonus = 0.0
    if nodes >= 3:
        density_bonus += 2.0
    if nodes >= 4:
        density_bonus += 3.0
    if nodes >= 5:
        density_bonus += 5.0

    return (composite_sum + group_bonus + pattern_bonus + relationship_bonus + transition_bonus
            + chain_bonus + density_bonus - balance_penalty(nums, n_pool) * 2.0 - delta_penalty)


class SetScorer:
    """Memoised set_score keyed by the sorted tuple"""

    def __init__(self, scores: Sequence[NumberScore], diag: FullDiagnostics):
        self.lookup = ScoringLookup(scores, diag)
        self.n_pool = diag.pool_size
        self._memo: Dict[Tuple[int, ...], float] = {}

    def __call__(self, numbers: Sequence[int]) -> float:
        key = tuple(sorted(numbers))
        cached = self._memo.get(key)
        if cached is None:
            cached = set_score(key, self.lookup, self.n_pool)
            self._memo[key] = cached
        return cached


# ======================
# HEURISTICS
# ======================
def _fill(result: List[int], scores: Sequence[NumberScore], limit: int = K) -> List[int]:
    for s in scores:
        if len(result) >= limit:
            break
        if s.number not in result:
            result.append(s.number)
    return result


def _monte_carlo(scores: Sequence[NumberScore], diag: FullDiagnostics, draws: Sequence[DrawRecord],
                 rng: SeededRandom, budgets: RuntimeBudgets, scorer: SetScorer,
                 checkpoint: Optional[Callable[[], None]]) -> List[int]:
    """Composite-weighted sampling without replacement, with triple-seeded trials"""
    total_composite = sum(s.composite_score for s in scores)
    if total_composite > 0:
        probs = [s.composite_score / total_composite for s in scores]
    else:
        probs = [1 / max(1, len(scores))] * len(scores)

    max_trials = min(budgets.monte_carlo_max_trials,
                     max(budgets.monte_carlo_min_trials, len(draws) * 25))
    patience = max(1200, int(max_trials * 0.2))
    min_before_stop = int(max_trials * 0.35)
    seeds = diag.top_triples

    best, best_score, stale = [], float('-inf'), 0
    for trial in range(max_trials):
        if checkpoint is not None and trial % MC_CHECKPOINT_EVERY == 0:
            checkpoint()

        picked = []
        available = [(s.number, p) for s, p in zip(scores, probs)]
        if trial % 3 == 0 and seeds:
            seed = seeds[int(rng() * min(5, len(seeds)))]
            picked = list(seed.numbers)
            available = [a for a in available if a[0] not in picked]

        while len(picked) < K:
            r = rng() * sum(p for _, p in available)
            chosen = 0
            for i, (_, p) in enumerate(available):
                r -= p
                if r <= 0:
                    chosen = i
                    break
            picked.append(available.pop(chosen)[0])
        picked.sort()

        odd, _ = odd_even_split(picked)
        if odd in (0, 6):
            continue

        score = scorer(picked)
        if score > best_score:
            best, best_score, stale = picked, score, 0
        else:
            stale += 1
        if trial >= min_before_stop and stale >= patience:
            break

    return best if len(best) == K else [s.number for s in scores[:K]]


def _pattern_mimic(scores: Sequence[NumberScore], diag: FullDiagnostics) -> Optional[List[int]]:
    """Match the bucket counts of the most common historical group pattern"""
    if not diag.group_patterns:
        return None
    n_pool = diag.pool_size
    bits = [int(b) for b in diag.group_patterns[0].pattern.split('-')]
    by_group = {g: [s.number for s in scores if get_group(s.number, n_pool) == g] for g in GROUP_NAMES}

    result = []
    for count, group in zip(bits, GROUP_NAMES):
        result.extend(by_group[group][:count])
    # Patterns include the bonus ball, so most 7-ball patterns cannot produce exactly K
    return result if len(result) == K else None


def _chain_master(draws: Sequence[DrawRecord], lookup: ScoringLookup) -> Optional[List[int]]:
    """Two-step lag-1 walk from each number of the last draw"""
    if not draws:
        return None
    chain = {}
    for start in draws[-1].all_numbers:
        step1 = lookup.lag1_by_from.get(start)
        if step1 is None or not step1.to_numbers:
            continue
        next1 = step1.to_numbers[0].number
        chain[next1] = None
        step2 = lookup.lag1_by_from.get(next1)
        if step2 is not None and step2.to_numbers:
            chain[step2.to_numbers[0].number] = None
    return list(chain)[:K] if len(chain) >= K else None


def generate_candidate_sets(scores: Sequence[NumberScore], diagnostics: FullDiagnostics,
                            draws: Sequence[DrawRecord], num_sets: int = 10,
                            rng: Optional[SeededRandom] = None,
                            options: Optional[CandidateOptions] = None) -> List[PredictedSet]:
    """Run every enabled heuristic and return up to `num_sets` unique sets, best first"""
    options = options or CandidateOptions()
    rng = rng or SeededRandom(1)
    n_pool = diagnostics.pool_size
    budgets = options.runtime_budgets or calibrate_runtime_budgets(len(draws), options.fast_mode)
    scorer = SetScorer(scores, diagnostics)
    lookup = scorer.lookup
    candidates: List[PredictedSet] = []

    def add_set(nums: Sequence[int], method: str):
        ordered = tuple(sorted(list(nums)[:K]))
        candidates.append(PredictedSet(ordered, scorer(ordered), group_breakdown(ordered, n_pool), 0.0, method))

    top = [s.number for s in scores[:K]]

    # 1. Top Composite
    add_set(top, 'Top Composite')

    # 2. Group Balanced: best of each bucket, in order of first appearance
    best_in_group = {}
    for s in scores:
        best_in_group.setdefault(get_group(s.number, n_pool), s.number)
    add_set(_fill(list(best_in_group.values()), scores), 'Group Balanced')

    # 3. Hot + Overdue
    hot = sorted((h for h in diagnostics.hot_cold if h.status == 'hot'), key=lambda h: h.delta, reverse=True)
    overdue = sorted((g for g in diagnostics.gaps if g.is_overdue), key=lambda g: g.ratio, reverse=True)
    result = [h.number for h in hot[:3]]
    for g in overdue:
        if len(result) >= K:
            break
        if g.number not in result:
            result.append(g.number)
    add_set(_fill(result, scores), 'Hot + Overdue')

    # 4. Pair Affinity
    pair_set = []
    for p in diagnostics.top_pairs[:5]:
        for n in (p.i, p.j):
            if n not in pair_set and len(pair_set) < K:
                pair_set.append(n)
    add_set(_fill(pair_set, scores), 'Pair Affinity')

    # 5. Monte Carlo
    if options.enabled(options.include_monte_carlo):
        add_set(_monte_carlo(scores, diagnostics, draws, rng, budgets, scorer, options.checkpoint),
                'Monte Carlo Best')

    # 6. Pattern Mimic
    mimic = _pattern_mimic(scores, diagnostics)
    if mimic is not None:
        add_set(mimic, 'Pattern Mimic')

    # 7. Genetic
    if options.enabled(options.include_genetic):
        best = run_genetic_optimization([s.number for s in scores], scorer, rng,
                                        budgets.genetic_generations, budgets.genetic_population,
                                        options.checkpoint)
        add_set(best, 'Jackpot Target')

    # 8. Most Overdue
    by_ratio = sorted((g for g in diagnostics.gaps if g.avg_gap > 0), key=lambda g: g.ratio, reverse=True)
    add_set([g.number for g in by_ratio[:K]], 'Most Overdue')

    # 9. Frequency Leaders
    leaders = sorted(diagnostics.frequency, key=lambda f: f.count, reverse=True)
    add_set([f.number for f in leaders[:K]], 'Frequency Leaders')

    # 10. Markov Flow
    flow = []
    if draws:
        for seed in draws[-1].all_numbers:
            trans = lookup.lag1_by_from.get(seed)
            if trans is not None:
                for to in trans.to_numbers:
                    if to.number not in flow:
                        flow.append(to.number)
                    if len(flow) >= K:
                        break
            if len(flow) >= K:
                break
    add_set(_fill(flow, scores), 'Markov Flow')

    # 11. Bayesian Top
    bayes_sorted = sorted(scores, key=lambda s: s.bayesian_score, reverse=True)
    add_set([s.number for s in bayes_sorted[:K]], 'Bayesian Top')

    # 12. Cold Reversal
    cold = sorted((h for h in diagnostics.hot_cold if h.status == 'cold'), key=lambda h: h.delta)
    neutral = sorted((h for h in diagnostics.hot_cold if h.status == 'neutral'),
                     key=lambda h: h.all_time_freq, reverse=True)
    result = [h.number for h in cold[:4]]
    for h in neutral:
        if len(result) >= K:
            break
        if h.number not in result:
            result.append(h.number)
    add_set(_fill(result, scores), 'Cold Reversal')

    # 13. Sliding Window
    if options.enabled(options.include_sliding_window):
        for i in range(len(scores) - K + 1):
            add_set([s.number for s in scores[i:i + K]], 'Sliding Window High')

    # 14. Chain Master
    chain = _chain_master(draws, lookup)
    if chain is not None:
        add_set(chain, 'Chain Master')

    # 15. Consensus Pick
    appearances = [0] * (n_pool + 1)
    for c in candidates:
        for n in c.numbers:
            if n <= n_pool:
                appearances[n] += 1

    def consensus_rank(n: int) -> float:
        s = lookup.score_by_number.get(n)
        return appearances[n] * 10 + (s.composite_score if s else 0.0)

    ranked = sorted(range(1, n_pool + 1), key=consensus_rank, reverse=True)
    add_set(ranked[:K], 'Consensus Pick')

    # 16. Historical Echo
    if options.enabled(options.include_historical_echo):
        cache = options.diagnostics_cache or DiagnosticsCache(96)
        echoes = find_historical_echoes(scores, diagnostics, draws, budgets, cache)
        if len(echoes) >= K:
            add_set(echoes[:K], 'Historical Echo')

    max_score = max(c.total_score for c in candidates)
    lifted = [
        replace(c, relative_lift=c.total_score / max_score if max_score > 0 else 1.0)
        for c in candidates
    ]
    lifted.sort(key=lambda c: c.total_score, reverse=True)

    unique, seen = [], set()
    for c in lifted:
        if c.numbers not in seen:
            seen.add(c.numbers)
            unique.append(c)
    return unique[:num_sets]


# ======================
# CONSENSUS SELECTION
# ======================
def select_sequence_focused_top_set(candidates: Sequence[PredictedSet],
                                    scores: Sequence[NumberScore]) -> List[int]:
    """Blend rank-weighted candidate membership with a per-number prior.

    This is the single set graded against outcomes in the backtest.
    """
    fallback = sorted(s.number for s in scores[:K])
    if not candidates:
        return fallback

    weights: Dict[int, float] = {}
    composites = [s.composite_score for s in scores]
    min_c = min(composites)
    score_range = max(1e-9, max(composites) - min_c)

    for idx, cand in enumerate(candidates[:10]):
        lift = clamp_number(cand.relative_lift or 1, 0.35, 1.75)
        boost = 1.15 if 'Consensus' in cand.method or 'Jackpot' in cand.method else 1.0
        w = (1 / (idx + 1)) * lift * boost
        for n in cand.numbers:
            weights[n] = weights.get(n, 0.0) + w

    for s in scores:
        prior = ((s.composite_score - min_c) / score_range * 0.8
                 + max(0.0, s.transition_score) * 0.35
                 + max(0.0, s.triple_affinity_score) * 0.25)
        weights[s.number] = weights.get(s.number, 0.0) + prior

    ranked = sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))
    top_set = [n for n, _ in ranked[:K]]
    _fill(top_set, scores)
    return sorted(top_set[:K])


def prepend_consensus_set(sets: Sequence[PredictedSet], scores: Sequence[NumberScore],
                          diag: FullDiagnostics) -> List[PredictedSet]:
    """Put the sequence-focused set in the batch and recompute relative lift"""
    if not sets:
        return list(sets)

    consensus = tuple(select_sequence_focused_top_set(sets, scores))
    existing = next((s for s in sets if s.numbers == consensus), None)
    if existing is not None:
        ordered = [existing] + [s for s in sets if s is not existing]
    else:
        lookup = ScoringLookup(scores, diag)
        fresh = PredictedSet(consensus, set_score(consensus, lookup, diag.pool_size),
                             group_breakdown(consensus, diag.pool_size), 0.0, 'Sequence Consensus')
        ordered = ([fresh] + list(sets))[:len(sets)]

    ordered.sort(key=lambda s: s.total_score, reverse=True)
    best = max(max(s.total_score for s in ordered), 1e-9)
    return [replace(s, relative_lift=s.total_score / best) for s in ordered]
