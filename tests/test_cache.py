from lotto_forecaster.cache import DiagnosticsCache, draw_state_signature
from lotto_forecaster.draws import DrawRecord, synthetic_draws


def test_signature_of_empty_history():
    assert draw_state_signature([]) == '0'


def test_same_history_is_cached(synthetic_80):
    cache = DiagnosticsCache(16)
    first = cache.get(synthetic_80)
    second = cache.get(list(synthetic_80))
    assert first is second
    assert (cache.hits, cache.misses) == (1, 1)
    assert synthetic_80 in cache


def test_distinct_histories_of_equal_length_are_distinct(synthetic_80):
    cache = DiagnosticsCache(16)
    altered = list(synthetic_80)
    altered[-1] = DrawRecord(altered[-1].date, (1, 2, 3, 4, 5, 6), 7)
    a = cache.get(synthetic_80)
    b = cache.get(altered)
    assert a is not b
    assert a.chi_square.chi_square != b.chi_square.chi_square


def test_eviction_is_insertion_ordered():
    cache = DiagnosticsCache(8)
    draws = synthetic_draws(20)
    histories = [draws[:n] for n in range(1, 11)]
    for h in histories:
        cache.get(h)
    assert len(cache) == 8
    assert histories[0] not in cache
    assert histories[1] not in cache
    assert histories[-1] in cache


def test_minimum_capacity_and_clear():
    cache = DiagnosticsCache(2)
    assert cache.limit == 8
    cache.get(synthetic_draws(5))
    cache.clear()
    assert len(cache) == 0
