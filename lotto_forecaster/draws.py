"""Draw records, the validity filter and a thin CSV adapter."""

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .errors import DataError

K = 6  # main numbers per draw
MAX_POOL = 58


@dataclass(frozen=True)
class DrawRecord:
    date: str
    numbers: Tuple[int, ...]
    bonus: int = 0

    @property
    def all_numbers(self) -> List[int]:
        """Mains plus the bonus (when present)"""
        return [n for n in (*self.numbers, self.bonus) if n > 0]

    def signature(self) -> str:
        return f"{self.date}:{'-'.join(map(str, self.numbers))}:{self.bonus}"


# ======================
# DATE NORMALIZATION
# ======================
_YMD = re.compile(r'^(\d{4})[/.-](\d{1,2})[/.-](\d{1,2})(?:[ T].*)?$')
_YMD_SHORT = re.compile(r'^(\d{2})[/.-](\d{1,2})[/.-](\d{1,2})(?:[ T].*)?$')
_DMY = re.compile(r'^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})(?:[ T].*)?$')
_DMY_SHORT = re.compile(r'^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2})(?:[ T].*)?$')


def _date_parts(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _pivot_year(year: int) -> int:
    # 00-69 => 2000-2069, 70-99 => 1970-1999
    return 1900 + year if year >= 70 else 2000 + year


def normalize_date(value) -> Optional[str]:
    """Flexible date parser returning ISO ``YYYY-MM-DD`` or None"""
    cleaned = str(value or '').strip()
    if not cleaned:
        return None

    match = _YMD.match(cleaned)
    if match:
        y, m, d = map(int, match.groups())
        return _date_parts(y, m, d)

    match = _YMD_SHORT.match(cleaned)
    if match:
        y, m, d = map(int, match.groups())
        return _date_parts(_pivot_year(y), m, d)

    for pattern, short in ((_DMY, False), (_DMY_SHORT, True)):
        match = pattern.match(cleaned)
        if match:
            first, second, year = map(int, match.groups())
            if short:
                year = _pivot_year(year)
            # Day-first, falling back to month-first when impossible
            return _date_parts(year, second, first) or _date_parts(year, first, second)

    return None


# ======================
# VALIDITY FILTER
# ======================
def is_valid_draw(numbers: Sequence[int], bonus: int = 0, pool_size: int = MAX_POOL) -> bool:
    """Exactly K distinct mains in [1, pool_size]; bonus 0 or in range and not a main"""
    if len(numbers) != K or len(set(numbers)) != K:
        return False
    if any(n < 1 or n > pool_size for n in numbers):
        return False
    if bonus == 0:
        return True
    return 1 <= bonus <= pool_size and bonus not in numbers


def build_draw(draw_date, numbers: Iterable[int], bonus: int = 0,
               pool_size: int = MAX_POOL) -> Optional[DrawRecord]:
    """Return a validated DrawRecord or None when the row breaks an invariant"""
    normalized = normalize_date(draw_date)
    if normalized is None:
        return None
    try:
        nums = [int(n) for n in numbers]
        bonus = int(bonus or 0)
    except (TypeError, ValueError):
        return None
    if not is_valid_draw(nums, bonus, pool_size):
        return None
    return DrawRecord(normalized, tuple(sorted(nums)), bonus)


def sort_chronologically(draws: Iterable[DrawRecord]) -> List[DrawRecord]:
    return sorted(draws, key=lambda d: d.date)


# ======================
# CSV ADAPTER
# ======================
_NUMBER_COLUMN = re.compile(r'^(?:number|num|n|ball)(\d+)$')


def _classify_columns(columns) -> Tuple[Optional[str], List[str], Optional[str]]:
    date_col, bonus_col, number_cols = None, None, []
    for col in columns:
        key = re.sub(r'[^a-z0-9]', '', str(col).lower())
        if date_col is None and 'date' in key:
            date_col = col
        elif key in ('bonus', 'bonusball', 'bonusnumber'):
            bonus_col = col
        elif _NUMBER_COLUMN.match(key):
            number_cols.append(col)
    number_cols.sort(key=lambda c: int(_NUMBER_COLUMN.match(
        re.sub(r'[^a-z0-9]', '', str(c).lower())).group(1)))
    return date_col, number_cols, bonus_col


def load_draws_csv(path: str) -> List[DrawRecord]:
    """Load draws from CSV, dropping rows that fail the validity filter.

    Expected columns: a ``date`` column, ``number1``..``number6`` (``n1`` or
    ``ball1`` spellings work too) and an optional ``bonus``.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise DataError(f"Draw file not found: {csv_path}")
    try:
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise DataError(f"Could not read {csv_path}: {str(e)}")

    date_col, number_cols, bonus_col = _classify_columns(df.columns)
    if date_col is None or len(number_cols) < K:
        raise DataError(
            f"{csv_path} needs a date column and {K} number columns, got {list(df.columns)}"
        )

    numbers = df[number_cols[:K]].apply(pd.to_numeric, errors='coerce')
    bonus = (pd.to_numeric(df[bonus_col], errors='coerce').fillna(0)
             if bonus_col else pd.Series(0, index=df.index))

    draws = []
    dropped = 0
    for idx in df.index:
        row = numbers.loc[idx]
        if row.isna().any():
            dropped += 1
            continue
        draw = build_draw(df.at[idx, date_col], row.astype(int).tolist(), int(bonus.loc[idx]))
        if draw is None:
            dropped += 1
            continue
        draws.append(draw)

    if dropped:
        logging.warning(f"Dropped {dropped} invalid draw rows from {csv_path.name}")
    if not draws:
        raise DataError(f"No valid draws found in {csv_path}")
    return sort_chronologically(draws)


def synthetic_draws(count: int, pool_size: int = 52, seed: int = 0x7F4A7C15) -> List[DrawRecord]:
    """Deterministic LCG history, one draw per week from 2015-01-01"""
    state = seed & 0xFFFFFFFF

    def next_int(upper: int) -> int:
        nonlocal state
        state = (state * 1664525 + 1013904223) & 0xFFFFFFFF
        return state % upper

    start = date(2015, 1, 1)
    draws = []
    for i in range(count):
        mains = set()
        while len(mains) < K:
            mains.add(next_int(pool_size) + 1)
        bonus = next_int(pool_size) + 1
        while bonus in mains:
            bonus = next_int(pool_size) + 1
        draw_date = (start + timedelta(days=7 * i)).isoformat()
        draws.append(DrawRecord(draw_date, tuple(sorted(mains)), bonus))
    return draws
