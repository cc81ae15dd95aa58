"""
BACKGROUND PREDICTION TASKS
- Request/response protocol (predict, refresh_candidates, cancel)
- Continuous self-training rounds with warm-start carry-over
- Single-thread dispatcher with heartbeat watchdog and synchronous fallback
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from .analysis import clamp_number, js_round, run_full_diagnostics
from .draws import DrawRecord
from .errors import PredictionCancelled, PredictionError
from .predictor import (PredictionOutput, profile_overlap_map, refresh_prediction_candidates, run_prediction,
                        score_prediction_quality)
from .reporting import CancellationToken, Reporter, ScopedReporter, ThrottledReporter, TokenView
from .settings import DEFAULT_CONFIG, ModelSettings, resolve_settings

RATIO_OFFSETS = (-0.08, -0.04, 0.0, 0.04, 0.08)
DEFAULT_TIMEOUT_S = DEFAULT_CONFIG['worker']['timeout_s']

Emit = Callable[[Dict], None]


# ======================
# ROUND SCORING
# ======================
def max_overlap(prediction: PredictionOutput) -> int:
    bt = prediction.backtest
    if bt.max_observed_overlap is not None:
        return bt.max_observed_overlap
    return max((r.overlap for r in bt.row_details), default=0)


def _grown(value: Optional[int], step: float, low: float, high: float,
           deep: bool, deep_base: float, deep_step: float, deep_low: float) -> Optional[int]:
    if value is not None:
        return js_round(clamp_number(value + step, low, high))
    if deep:
        return js_round(clamp_number(deep_base + deep_step, deep_low, high))
    return None


def build_round_settings(base: ModelSettings, round_idx: int, attempt: int = 0) -> ModelSettings:
    """Vary the train split, latency and search budgets per round and attempt.

    Deep match mode (target 6, not fast) seeds large budgets even when the
    base settings leave them calibrated.
    """
    offset = RATIO_OFFSETS[(round_idx + attempt) % len(RATIO_OFFSETS)]
    deep = base.target_sequence_match >= 6 and not base.fast_mode
    r, a = round_idx, attempt

    return base.with_overrides(
        random_seed_salt=f"{base.random_seed_salt}round-{r}-attempt-{a}",
        train_ratio=clamp_number(base.train_ratio + offset, 0.5, 0.95),
        target_latency_ms=js_round(clamp_number(base.target_latency_ms + r * 140 + a * 90, 450, 12000)),
        monte_carlo_min_trials=_grown(base.monte_carlo_min_trials, r * 180 + a * 120, 100, 120000,
                                      deep, 3500, r * 260 + a * 220, 800),
        monte_carlo_max_trials=_grown(base.monte_carlo_max_trials, r * 360 + a * 240, 500, 200000,
                                      deep, 16000, r * 1200 + a * 900, 4000),
        genetic_generations=_grown(base.genetic_generations, r + a, 5, 300,
                                   deep, 65, r * 3 + a * 2, 20),
        genetic_population=_grown(base.genetic_population, r * 3 + a * 2, 20, 1500,
                                  deep, 180, r * 8 + a * 6, 40),
    )


def attempts_per_round(settings: ModelSettings) -> int:
    target = settings.target_sequence_match
    if settings.fast_mode:
        return 1
    if settings.mastery_backtest_mode:
        base = 5 if target >= 6 else 4
    else:
        base = 4 if target >= 6 else 3 if target >= 5 else 2

    latency = settings.target_latency_ms
    bonus = 2 if latency >= 3200 else 1 if latency >= 2400 else 0
    return max(1, min(8, base + bonus))


# ======================
# CONTINUOUS TRAINING
# ======================
def run_continuous_training(draws: List[DrawRecord], diagnostics, settings: ModelSettings,
                            reporter: Reporter,
                            on_round: Optional[Callable[[int, PredictionOutput, float, str], None]] = None
                            ) -> PredictionOutput:
    """Repeat prediction rounds, carrying the best profile forward as a warm start.

    Stops once the best max overlap reaches the target or the round cap runs out.
    """
    mastery = settings.mastery_backtest_mode
    target = settings.target_sequence_match
    max_rounds = settings.max_optimization_rounds
    bounded = max_rounds is not None
    cap_text = f"{max_rounds} rounds" if bounded else 'no round cap'
    if mastery:
        reporter.progress(0.22, f"Continuous mastery optimization enabled ({cap_text})")
    else:
        reporter.progress(0.22, f"Continuous self-training enabled ({cap_text})")

    per_round = attempts_per_round(settings)
    carried_profile = settings.warm_start_profile
    carried_overlaps = dict(settings.warm_profile_overlaps)
    best: Optional[PredictionOutput] = None
    best_overlap = -1
    best_quality = -math.inf

    round_idx = 0
    while not bounded or round_idx < max_rounds:
        reporter.checkpoint()
        round_no = round_idx + 1
        if bounded:
            start = 24 + round_idx / max_rounds * 68
            span = 68 / max(1, max_rounds)
        else:
            start, span = 28.0, 64.0
        attempt_span = span / per_round

        round_best = None
        round_overlap = -1
        round_quality = -math.inf
        for attempt in range(per_round):
            reporter.checkpoint()
            warm = settings.with_overrides(
                warm_start_enabled=carried_profile is not None,
                warm_start_profile=carried_profile,
                warm_profile_overlaps=carried_overlaps,
            )
            round_settings = build_round_settings(warm, round_idx, attempt)
            scoped = ScopedReporter(reporter, (start + attempt * attempt_span) / 100, attempt_span / 100,
                                    prefix=f"Round {round_no}.{attempt + 1}: ")
            prediction = run_prediction(draws, diagnostics, round_settings, scoped)

            overlap = max_overlap(prediction)
            quality = score_prediction_quality(prediction)
            logging.debug(f"Round {round_no}.{attempt + 1}: quality {quality:.1f}, max overlap {overlap}")
            if (round_best is None or quality > round_quality
                    or (quality == round_quality and overlap > round_overlap)):
                round_best, round_overlap, round_quality = prediction, overlap, quality

        if round_best is None:
            raise PredictionError(f"Round {round_no} failed to produce a candidate prediction")

        carried_profile = round_best.backtest.final_best_profile
        carried_overlaps = profile_overlap_map(round_best)

        if (best is None or round_quality > best_quality
                or (round_quality == best_quality and round_overlap > best_overlap)):
            best, best_overlap, best_quality = round_best, round_overlap, round_quality

        percent = min(96, js_round(24 + round_no / max_rounds * 68)) if bounded else 94
        if mastery:
            round_fwd = _or(round_best.backtest.forward_only_top6_overlap, round_best.backtest.top6_overlap)
            best_fwd = _or(best.backtest.forward_only_top6_overlap, best.backtest.top6_overlap)
            status = f"Round {round_no} complete | first-attempt {round_fwd:.2f}/6 | best {best_fwd:.2f}/6"
        else:
            status = f"Round {round_no} complete | current {round_overlap}/6 | best {max(0, best_overlap)}/6"
        logging.info(status)
        if on_round is not None:
            on_round(round_no, round_best, percent, status)
        reporter.progress(percent / 100, status)

        if best_overlap >= target:
            reporter.progress(0.99, f"Target reached ({best_overlap}/6). Publishing.")
            return best

        round_idx += 1
        next_percent = min(97, 24 + round_idx / max_rounds * 68) if bounded else 30
        reporter.progress(next_percent / 100, f"Continuing optimization... best overlap {max(0, best_overlap)}/6")

    if best is None:
        raise PredictionError('Continuous optimization did not produce any prediction')
    reporter.progress(0.99, 'Optimization cap reached. Publishing best result.')
    return best


# ======================
# TASK PROTOCOL
# ======================
class PredictionTask:
    """Executes one request at a time against a shared cancellation token.

    Responses are plain dicts carrying `request_id` and `type`; nothing is
    published for a request that has been superseded.
    """

    def __init__(self, token: Optional[CancellationToken] = None):
        self.token = token or CancellationToken()
        self.refresh_count = 0

    def handle(self, request: Dict, emit: Emit, on_activity: Optional[Callable[[], None]] = None):
        request_id = request.get('request_id', 0)
        kind = request.get('type') or 'predict'

        if kind == 'cancel':
            self.token.cancel(request_id)
            logging.info(f"Request {request_id}: training stopped")
            emit({'request_id': request_id, 'type': 'progress', 'percent': 0, 'stage': 'Training stopped.'})
            return

        view = self.token.begin(request_id)
        reporter = ThrottledReporter(emit, request_id, view, on_activity)
        try:
            if kind == 'refresh_candidates':
                self._refresh(request, view, reporter, emit)
            elif kind == 'predict':
                self._predict(request, view, reporter, emit)
            else:
                raise PredictionError(f"Unknown request type: {kind}")
        except PredictionCancelled:
            logging.info(f"Request {request_id} cancelled")
        except Exception as e:
            if not view.is_current():
                return
            logging.exception(f"Request {request_id} failed")
            emit({'request_id': request_id, 'type': 'error',
                  'error': f"Prediction failed: {str(e)}. See logs for details."})

    def _publish(self, view: TokenView, emit: Emit, kind: str, prediction: PredictionOutput, **extra):
        if not view.is_current():
            return
        response = {
            'request_id': view.request_id,
            'type': kind,
            'diagnostics': prediction.backtest.final_diagnostics,
            'prediction': prediction,
        }
        response.update(extra)
        emit(response)

    def _refresh(self, request: Dict, view: TokenView, reporter: ThrottledReporter, emit: Emit):
        reporter.report_percent(4, 'Preparing candidate refresh')
        base = request['base_prediction']
        draws = request['draws']
        diagnostics = request.get('diagnostics') or base.backtest.final_diagnostics or run_full_diagnostics(draws)
        self.refresh_count += 1
        prediction = refresh_prediction_candidates(
            draws, diagnostics, base, resolve_settings(request.get('settings')),
            ScopedReporter(reporter, 0.08, 0.88), nonce=self.refresh_count
        )
        if not view.is_current():
            return
        reporter.report_percent(99, 'Publishing refreshed candidates')
        self._publish(view, emit, 'refresh_result', prediction)

    def _predict(self, request: Dict, view: TokenView, reporter: ThrottledReporter, emit: Emit):
        draws = request['draws']
        settings = resolve_settings(request.get('settings'))
        reporter.report_percent(3, 'Loading training data')
        reporter.report_percent(10, 'Running diagnostics')
        diagnostics = run_full_diagnostics(draws)
        reporter.report_percent(28, 'Diagnostics complete')

        if settings.mastery_backtest_mode and not settings.continuous_training:
            reporter.report_percent(20, 'Sequence mastery backtest enabled')
            prediction = run_prediction(draws, diagnostics, settings, ScopedReporter(reporter, 0.20, 0.76))
            reporter.report_percent(99, 'Publishing mastery results')
            self._publish(view, emit, 'result', prediction)
            return

        if not settings.continuous_training:
            prediction = run_prediction(draws, diagnostics, settings, ScopedReporter(reporter, 0.28, 0.68))
            reporter.report_percent(99, 'Publishing results')
            self._publish(view, emit, 'result', prediction)
            return

        def on_round(round_no, prediction, percent, status):
            self._publish(view, emit, 'round_result', prediction,
                          round=round_no, percent=percent, stage=status)

        best = run_continuous_training(draws, diagnostics, settings, reporter, on_round)
        self._publish(view, emit, 'result', best)


# ======================
# DISPATCHER
# ======================
class PredictionDispatcher:
    """Run tasks on one background thread with a heartbeat watchdog.

    When the background task stays silent for longer than `timeout_s`, its
    token is superseded and the identical request is re-run on the caller
    thread. Status moves idle -> running -> done | error | stopped.
    """

    def __init__(self, emit: Emit, timeout_s: float = DEFAULT_TIMEOUT_S,
                 task: Optional[PredictionTask] = None, poll_interval: float = 0.05,
                 clock: Callable[[], float] = time.monotonic):
        self.emit = emit
        self.timeout_s = timeout_s
        self.task = task or PredictionTask()
        self.poll_interval = poll_interval
        self.clock = clock
        self.status = 'idle'
        self.fallback_used = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='prediction')
        self._lock = threading.Lock()
        self._heartbeat = self.clock()
        self._terminal: Optional[Dict] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()

    def shutdown(self):
        self._executor.shutdown(wait=False)

    def _beat(self):
        with self._lock:
            self._heartbeat = self.clock()

    def _silent_for(self) -> float:
        with self._lock:
            return self.clock() - self._heartbeat

    def _forward(self, response: Dict):
        kind = response.get('type')
        if kind in ('result', 'refresh_result', 'error'):
            self._terminal = response
            self.status = 'error' if kind == 'error' else 'done'
        self.emit(response)

    def run(self, request: Dict) -> Optional[Dict]:
        """Execute `request`, blocking until a terminal response (or none).

        Returns the result/refresh_result/error response, or None when the
        request was cancelled.
        """
        self.status = 'running'
        self.fallback_used = False
        self._terminal = None
        self._beat()
        future = self._executor.submit(self.task.handle, request, self._forward, self._beat)

        while True:
            done, _ = wait([future], timeout=self.poll_interval)
            if done:
                future.result()
                break
            if self._silent_for() > self.timeout_s:
                logging.warning(
                    f"Prediction worker silent for {self.timeout_s}s, "
                    f"re-running request {request.get('request_id', 0)} synchronously"
                )
                self.fallback_used = True
                self.task.handle(request, self._forward, self._beat)
                break

        if self._terminal is None:
            self.status = 'stopped'
        return self._terminal

    def cancel(self, request_id: int):
        self.task.handle({'request_id': request_id, 'type': 'cancel'}, self.emit)
        self.status = 'stopped'
