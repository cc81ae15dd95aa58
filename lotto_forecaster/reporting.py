"""Progress/trace reporting and cooperative cancellation."""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Tuple

from .analysis import clamp_number, clamp_unit, js_round
from .errors import PredictionCancelled

TRACE_THROTTLE_S = 0.14


@dataclass(frozen=True)
class TraceEvent:
    phase: str  # 'mastery_attempt' | 'backtest_row'
    sequence_index: int
    sequence_total: int
    date: str
    actual: Tuple[int, ...]
    bonus: int
    predicted: Tuple[int, ...]
    overlap: int
    best_overlap: Optional[int] = None
    attempts_used: Optional[int] = None
    attempt_cap: Optional[int] = None
    profile_name: Optional[str] = None

    def to_dict(self) -> Dict:
        return {k: (list(v) if isinstance(v, tuple) else v) for k, v in asdict(self).items()}


# ======================
# REPORTERS
# ======================
class Reporter:
    """Capability object handed to every long-running component.

    progress() takes a fraction in [0, 1]; checkpoint() is the cancellation
    point and may raise PredictionCancelled.
    """

    def progress(self, fraction: float, stage: str):
        pass

    def trace(self, event: TraceEvent):
        pass

    def checkpoint(self):
        pass


class NullReporter(Reporter):
    pass


class ScopedReporter(Reporter):
    """Map a child's [0, 1] progress into [start, start + span] of the parent"""

    def __init__(self, parent: Reporter, start: float, span: float, prefix: str = ''):
        self.parent = parent
        self.start = start
        self.span = span
        self.prefix = prefix

    def progress(self, fraction: float, stage: str):
        self.parent.progress(self.start + clamp_unit(fraction) * self.span, self.prefix + stage)

    def trace(self, event: TraceEvent):
        self.parent.trace(event)

    def checkpoint(self):
        self.parent.checkpoint()


class LoggingReporter(Reporter):
    """Forward progress and traces to the log (CLI use)"""

    def __init__(self, token_view: Optional['TokenView'] = None):
        self.token_view = token_view
        self._last = (-1, '')

    def progress(self, fraction: float, stage: str):
        percent = round(clamp_unit(fraction) * 100)
        if (percent, stage) != self._last:
            self._last = (percent, stage)
            logging.info(f"[{percent:3d}%] {stage}")

    def trace(self, event: TraceEvent):
        logging.debug(
            f"{event.phase} {event.sequence_index}/{event.sequence_total} {event.date}: "
            f"predicted {list(event.predicted)} overlap {event.overlap}"
        )

    def checkpoint(self):
        if self.token_view is not None:
            self.token_view.raise_if_cancelled()


class ThrottledReporter(Reporter):
    """Task-side reporter emitting protocol responses.

    Percents are rounded and never regress within one stage. Traces closer
    than 140 ms apart are dropped unless they mark a milestone.
    """

    def __init__(self, emit: Callable[[Dict], None], request_id: int,
                 token_view: Optional['TokenView'] = None,
                 on_activity: Optional[Callable[[], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.emit = emit
        self.request_id = request_id
        self.token_view = token_view
        self.on_activity = on_activity
        self.clock = clock
        self.last_percent = -1
        self.last_stage = ''
        self._last_trace_at = None

    def _current(self) -> bool:
        return self.token_view is None or self.token_view.is_current()

    def _touch(self):
        if self.on_activity is not None:
            self.on_activity()

    def report_percent(self, percent: float, stage: str):
        self._touch()
        if not self._current():
            return
        rounded = js_round(clamp_number(percent, 0, 100))
        if stage == self.last_stage and rounded < self.last_percent + 1:
            return
        self.last_percent = rounded
        self.last_stage = stage
        self.emit({'request_id': self.request_id, 'type': 'progress', 'percent': rounded, 'stage': stage})

    def progress(self, fraction: float, stage: str):
        self.report_percent(clamp_unit(fraction) * 100, stage)

    def trace(self, event: TraceEvent):
        self._touch()
        if not self._current():
            return
        now = self.clock()
        attempt = event.attempts_used or 0
        milestone = (event.phase == 'backtest_row' or attempt <= 1
                     or attempt % 4 == 0 or event.overlap >= 4)
        if (not milestone and self._last_trace_at is not None
                and now - self._last_trace_at < TRACE_THROTTLE_S):
            return
        self._last_trace_at = now
        self.emit({
            'request_id': self.request_id,
            'type': 'trace',
            'percent': max(0, self.last_percent),
            'trace': event.to_dict(),
        })

    def checkpoint(self):
        self._touch()
        if self.token_view is not None:
            self.token_view.raise_if_cancelled()


# ======================
# CANCELLATION
# ======================
class CancellationToken:
    """Monotonic epoch plus the id of the request allowed to publish"""

    def __init__(self):
        self._lock = threading.Lock()
        self.epoch = 0
        self.active_request_id = 0

    def begin(self, request_id: int) -> 'TokenView':
        """Supersede whatever is running and hand out a view for `request_id`"""
        with self._lock:
            self.epoch += 1
            self.active_request_id = request_id
            return TokenView(self, self.epoch, request_id)

    def cancel(self, request_id: int):
        with self._lock:
            self.epoch += 1
            self.active_request_id = request_id

    def bind(self, request_id: int) -> 'TokenView':
        """View on the current epoch (no supersession)"""
        with self._lock:
            return TokenView(self, self.epoch, request_id)


class TokenView:
    def __init__(self, token: CancellationToken, epoch: int, request_id: int):
        self.token = token
        self.epoch = epoch
        self.request_id = request_id

    def is_current(self) -> bool:
        return self.token.epoch == self.epoch and self.token.active_request_id == self.request_id

    def raise_if_cancelled(self):
        if not self.is_current():
            raise PredictionCancelled(f"Request {self.request_id} superseded")
