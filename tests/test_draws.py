import pytest

from lotto_forecaster.draws import (DrawRecord, build_draw, is_valid_draw, load_draws_csv,
                                    normalize_date, sort_chronologically, synthetic_draws)
from lotto_forecaster.errors import DataError


@pytest.mark.parametrize('raw, expected', [
    ('2024-03-09', '2024-03-09'),
    ('2024/3/9', '2024-03-09'),
    ('2024.03.09 20:00', '2024-03-09'),
    ('24-03-09', '2024-03-09'),
    ('09/03/2024', '2024-03-09'),
    ('12/31/2023', '2023-12-31'),  # day-first impossible, month-first fallback
    ('9/3/75', '1975-03-09'),
    ('09/03/05', '2009-03-05'),  # two-digit leading field reads as YY-MM-DD
])
def test_normalize_date_formats(raw, expected):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize('raw', ['', None, '2023-02-30', 'yesterday', '31/31/2024'])
def test_normalize_date_rejects(raw):
    assert normalize_date(raw) is None


def test_validity_filter():
    assert is_valid_draw([1, 2, 3, 4, 5, 6], 0)
    assert is_valid_draw([1, 2, 3, 4, 5, 6], 7)
    assert not is_valid_draw([1, 2, 3, 4, 5], 0)
    assert not is_valid_draw([1, 1, 3, 4, 5, 6], 0)
    assert not is_valid_draw([0, 2, 3, 4, 5, 6], 0)
    assert not is_valid_draw([1, 2, 3, 4, 5, 59], 0)
    assert not is_valid_draw([1, 2, 3, 4, 5, 6], 6)
    assert not is_valid_draw([1, 2, 3, 4, 5, 6], 60)


def test_build_draw_sorts_and_normalizes():
    draw = build_draw('09/03/2024', [30, 4, 12, 1, 50, 22], 5)
    assert draw == DrawRecord('2024-03-09', (1, 4, 12, 22, 30, 50), 5)
    assert draw.all_numbers == [1, 4, 12, 22, 30, 50, 5]
    assert draw.signature() == '2024-03-09:1-4-12-22-30-50:5'
    assert build_draw('bad', [1, 2, 3, 4, 5, 6]) is None
    assert build_draw('2024-03-09', [1, 2, 3, 4, 5, 'x']) is None


def test_bonus_zero_excluded_from_all_numbers():
    assert DrawRecord('2024-01-01', (1, 2, 3, 4, 5, 6), 0).all_numbers == [1, 2, 3, 4, 5, 6]


def test_synthetic_draws_deterministic_and_valid():
    draws = synthetic_draws(80)
    assert draws == synthetic_draws(80)
    assert len(draws) == 80
    assert draws[0].date == '2015-01-01'
    assert draws[1].date == '2015-01-08'
    for d in draws:
        assert is_valid_draw(d.numbers, d.bonus, 52)
        assert list(d.numbers) == sorted(d.numbers)


def test_load_draws_csv(tmp_path):
    path = tmp_path / 'draws.csv'
    path.write_text(
        'Draw Date,N1,N2,N3,N4,N5,N6,Bonus\n'
        '2024-01-13,5,11,22,30,38,47,2\n'
        '06/01/2024,3,11,19,27,35,43,8\n'
        '2024-01-20,1,1,19,28,36,44,12\n'
        '2024-01-27,7,14,21,28,35,x,49\n'
    )
    draws = load_draws_csv(str(path))
    assert [d.date for d in draws] == ['2024-01-06', '2024-01-13']
    assert draws[0].numbers == (3, 11, 19, 27, 35, 43)
    assert draws[0].bonus == 8


def test_load_draws_csv_errors(tmp_path):
    with pytest.raises(DataError):
        load_draws_csv(str(tmp_path / 'missing.csv'))

    bad = tmp_path / 'bad.csv'
    bad.write_text('date,a,b\n2024-01-01,1,2\n')
    with pytest.raises(DataError):
        load_draws_csv(str(bad))

    empty = tmp_path / 'empty.csv'
    empty.write_text('date,n1,n2,n3,n4,n5,n6\n2024-01-01,1,2,3,4,5,5\n')
    with pytest.raises(DataError):
        load_draws_csv(str(empty))


def test_sort_chronologically(small_history):
    shuffled = list(reversed(small_history))
    assert sort_chronologically(shuffled) == small_history
