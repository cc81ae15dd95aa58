"""Seeded pseudo-random streams.

Every stochastic step in the engine draws from a ``SeededRandom`` derived
from a string key (draw date, history length, profile name, salt), so two
runs over the same history reproduce each other exactly.
"""

MASK_32 = 0xFFFFFFFF
FNV_OFFSET = 2166136261
FNV_PRIME = 16777619


def _imul(a: int, b: int) -> int:
    """32-bit wrapping multiply (unsigned result)"""
    return (a * b) & MASK_32


def hash_string_to_seed(value: str) -> int:
    """FNV-1a fold of the string's UTF-16 code units into a 32-bit seed"""
    h = FNV_OFFSET
    encoded = value.encode('utf-16-le')
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h ^= code_unit
        h = _imul(h, FNV_PRIME)
    return h & MASK_32


class SeededRandom:
    """Mulberry32 generator; calling the instance returns a float in [0, 1)."""

    def __init__(self, seed: int):
        self.state = (seed & MASK_32) or 1

    def __call__(self) -> float:
        self.state = (self.state + 0x6D2B79F5) & MASK_32
        t = self.state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK_32
        return ((t ^ (t >> 14)) & MASK_32) / 4294967296.0

    def randint(self, upper: int) -> int:
        """Integer in [0, upper)"""
        return int(self() * upper)

    def choice(self, items):
        return items[int(self() * len(items))]


def seeded_random(key: str) -> SeededRandom:
    return SeededRandom(hash_string_to_seed(key))
