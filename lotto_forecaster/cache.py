"""Bounded diagnostics cache keyed by the full draw-sequence fingerprint."""

import logging
from collections import OrderedDict
from typing import Sequence

from .analysis import FullDiagnostics, run_full_diagnostics
from .draws import DrawRecord


def draw_state_signature(draws: Sequence[DrawRecord]) -> str:
    """Full chronological content key (no hashing, so distinct histories never collide)"""
    if not draws:
        return '0'
    return '|'.join(d.signature() for d in draws)


class DiagnosticsCache:
    """Insertion-order bounded store of FullDiagnostics.

    Not thread-safe: only the single active computation touches it.
    """

    def __init__(self, max_entries: int = 128):
        self.limit = max(8, max_entries)
        self._store = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, draws: Sequence[DrawRecord]) -> FullDiagnostics:
        key = draw_state_signature(draws)
        cached = self._store.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        diagnostics = run_full_diagnostics(draws)
        self._store[key] = diagnostics
        while len(self._store) > self.limit:
            self._store.popitem(last=False)
        return diagnostics

    def clear(self):
        logging.debug(f"Clearing diagnostics cache ({len(self._store)} entries)")
        self._store.clear()

    def __len__(self):
        return len(self._store)

    def __contains__(self, draws) -> bool:
        return draw_state_signature(draws) in self._store
