"""Command line entry point: diagnostics, training, ranked sets and CSV export."""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .analysis import FullDiagnostics, run_full_diagnostics
from .candidates import PredictedSet
from .draws import load_draws_csv, synthetic_draws
from .errors import ForecasterError, PredictionError
from .evaluation import MetricSummary, evaluate_profile_ablation, evaluate_rolling_model
from .predictor import PredictionOutput
from .reporting import LoggingReporter
from .settings import load_config, settings_from_config
from .state import LearningStateStore, state_from_prediction
from .worker import PredictionDispatcher

REQUEST_ID = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Lottery draw diagnostics and adaptive candidate generator')
    parser.add_argument('--config', default='config.yaml')
    source = parser.add_mutually_exclusive_group()
    source.add_argument('--data', help='Draw history CSV (overrides data.historical_csv)')
    source.add_argument('--synthetic', type=int, metavar='N', help='Use N generated draws instead of a file')
    parser.add_argument('--fast', action='store_true', help='Reduced search budgets')
    parser.add_argument('--mastery', action='store_true', help='Sequence mastery backtest')
    parser.add_argument('--continuous', action='store_true', help='Continuous self-training rounds')
    parser.add_argument('--rounds', type=int, help='Max optimization rounds (0 = until target)')
    parser.add_argument('--target', type=int, choices=range(1, 7), help='Target sequence match (1-6)')
    parser.add_argument('--salt', help='Random seed salt')
    parser.add_argument('--no-warm-start', action='store_true', help='Ignore the saved learning state')
    parser.add_argument('--no-save', action='store_true', help='Skip CSV export and state update')
    parser.add_argument('--evaluate', action='store_true', help='Rolling evaluation and profile ablation only')
    parser.add_argument('--quiet', action='store_true', help='Suppress console output')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    return parser


def apply_cli_overrides(config: Dict, args: argparse.Namespace) -> Dict:
    model = config['model']
    if args.fast:
        model['fast_mode'] = True
    if args.mastery:
        model['mastery_backtest_mode'] = True
    if args.continuous:
        model['continuous_training'] = True
    if args.rounds is not None:
        model['max_optimization_rounds'] = args.rounds
    if args.target is not None:
        model['target_sequence_match'] = args.target
    if args.salt is not None:
        model['random_seed_salt'] = args.salt
    if args.no_warm_start:
        model['warm_start_enabled'] = False
    if args.data:
        config['data']['historical_csv'] = args.data
    if args.no_save:
        config['output']['save_csv'] = False
    return config


def configure_logging(config: Dict, args: argparse.Namespace):
    level = config['logging'].get('level', 'INFO')
    if args.verbose:
        level = 'DEBUG'
    elif args.quiet:
        level = 'WARNING'
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO),
                        format=config['logging'].get('format'), force=True)


def save_results(sets: List[PredictedSet], results_dir: str) -> str:
    """Save ranked sets to CSV"""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = Path(results_dir) / f"sets_{timestamp}.csv"
    path.parent.mkdir(parents=True, exist_ok=True)

    pd.DataFrame({
        'rank': range(1, len(sets) + 1),
        'numbers': ['-'.join(map(str, s.numbers)) for s in sets],
        'method': [s.method for s in sets],
        'score': [round(s.total_score, 4) for s in sets],
        'relative_lift': [round(s.relative_lift, 4) for s in sets],
        'groups': [s.group_breakdown for s in sets],
        'generated_at': datetime.now()
    }).to_csv(path, index=False)

    return str(path)


# ======================
# CONSOLE OUTPUT
# ======================
def print_diagnostics(diag: FullDiagnostics):
    print("\n" + "=" * 50)
    print(" DRAW DIAGNOSTICS ".center(50, "="))
    print(f"\n📅 Current era: {diag.era_draw_count} of {diag.total_draws} draws (pool 1-{diag.pool_size})")
    if len(diag.eras) > 1:
        print(f"   Format changes detected: {', '.join(str(e.pool_size) for e in diag.eras)}")

    chi = diag.chi_square
    print(f"\n📐 Chi-square: {chi.chi_square:.2f} (df {chi.degrees_of_freedom}, p={chi.p_value:.4f})"
          f" {'uniform' if chi.is_uniform else 'NON-uniform'}")
    print(f"\n🔥 Hot Numbers: {', '.join(map(str, diag.hot_numbers)) or 'None'}")
    print(f"❄️ Cold Numbers: {', '.join(map(str, diag.cold_numbers)) or 'None'}")
    print(f"⏰ Overdue Numbers: {', '.join(map(str, diag.overdue_numbers)) or 'None'}")
    print(f"\n🌀 Entropy: {diag.entropy.normalized_entropy:.4f} ({diag.entropy.regime} regime)")

    if diag.top_pairs:
        print("\n🔢 Top Pairs:")
        for p in diag.top_pairs[:5]:
            print(f"- {p.i}-{p.j} (appeared {p.count} times, z={p.z_score:.2f})")

    if diag.bias_detected:
        print("\n⚠️ Bias indicators:")
        for reason in diag.bias_reasons:
            print(f"   • {reason}")
    else:
        print("\n✅ No significant bias detected")


def print_prediction(prediction: PredictionOutput, config: Dict):
    bt = prediction.backtest
    sets_to_show = config['output'].get('sets_to_show', 10)
    rows_to_show = config['output'].get('rows_to_show', 10)

    print("\n" + "=" * 50)
    print(" BACKTEST ".center(50, "="))
    print(f"\nMode: {bt.mode} | train {bt.train_size} | test {bt.test_size}")
    if bt.mode == 'mastery':
        print("Forward-only (first attempt, no outcome feedback):")
        print(f"   Avg overlap: {bt.forward_only_top6_overlap:.3f}/6 | "
              f"hit rate {bt.forward_only_model_hit_rate:.2%} | 4+ {bt.forward_only_four_plus_hits}")
        print(f"Mastery: solved {bt.mastery_solved_sequences}/{bt.test_size} "
              f"(first attempt {bt.mastery_first_attempt_solved}), "
              f"avg attempts {bt.mastery_average_attempts:.1f}"
              f"{' | global cap reached' if bt.mastery_global_cap_reached else ''}")
    print(f"   Avg overlap: {bt.top6_overlap:.3f}/6 | hit rate {bt.model_hit_rate:.2%} "
          f"vs baseline {bt.baseline_hit_rate:.2%} ({bt.improvement:+.1f}%)")
    print(f"   4+ hits: {bt.four_plus_hits} | 6 hits: {bt.six_match_hits} | max overlap {bt.max_observed_overlap}")
    if bt.test_size >= 100:
        print(f"   Learning trend: {bt.learning_trend:+.1f}% ({bt.early_matches:.2f} -> {bt.recent_matches:.2f})")
    print(f"   Optimized profile: {bt.final_best_profile.name}"
          f"{' (warm start)' if bt.warm_start_applied else ''}")

    if bt.row_details and rows_to_show:
        rows = pd.DataFrame([{
            'date': r.date,
            'actual': '-'.join(map(str, r.actual)) + (f" +{r.bonus}" if r.bonus else ''),
            'predicted': '-'.join(map(str, r.predicted_top6)),
            'overlap': r.overlap,
        } for r in bt.row_details[-rows_to_show:]])
        print(f"\nLast {len(rows)} graded draws:")
        print(rows.to_string(index=False))

    print("\n🎰 Recommended Number Sets:")
    for i, s in enumerate(prediction.sets[:sets_to_show], 1):
        print(f"Set {i}: {'-'.join(map(str, s.numbers))}")
        print(f"   • {s.method} | score {s.total_score:.3f} | lift {s.relative_lift:.2f} | groups {s.group_breakdown}")

    print(f"\n{prediction.warning}")
    print("\n" + "=" * 50)


def print_metric_summary(title: str, m: MetricSummary):
    print(f"\n{title}")
    print(f"  Samples: {m.samples}")
    print(f"  Avg overlap: {m.avg_overlap:.3f} (95% CI {m.avg_overlap_lower:.3f} - {m.avg_overlap_upper:.3f})")
    print(f"  Hit rate (>=1): {m.hit_rate:.1%} (95% CI {m.hit_rate_lower:.1%} - {m.hit_rate_upper:.1%})")
    print(f"  4+ rate: {m.four_plus_rate:.1%} (95% CI {m.four_plus_lower:.1%} - {m.four_plus_upper:.1%})")
    print(f"  Runtime: {m.elapsed_s:.2f}s")


def run_evaluation(draws, settings, quiet: bool):
    rolling = evaluate_rolling_model(draws, settings=settings, reporter=LoggingReporter())
    ablation = evaluate_profile_ablation(draws)
    if quiet:
        return
    print_metric_summary("Rolling walk-forward (current model)", rolling)
    print("\nProfile ablation ranking (rolling fixed-profile evaluation):")
    for i, entry in enumerate(ablation, 1):
        m = entry['metrics']
        print(f"  {i}. {entry['profile_name']} | avgOverlap={m.avg_overlap:.3f} | "
              f"hit={m.hit_rate:.1%} | 4+={m.four_plus_rate:.1%} | runtime={m.elapsed_s:.2f}s")


def _log_response(response: Dict, quiet: bool):
    kind = response.get('type')
    if kind == 'progress':
        logging.info(f"[{response['percent']:3d}%] {response['stage']}")
    elif kind == 'trace':
        trace = response['trace']
        logging.debug(f"{trace['phase']} {trace['sequence_index']}/{trace['sequence_total']} "
                      f"{trace['date']}: overlap {trace['overlap']}")
    elif kind == 'round_result' and not quiet:
        print(f"🔁 {response['stage']}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = None

    try:
        config = apply_cli_overrides(load_config(args.config), args)
        configure_logging(config, args)

        if args.synthetic:
            draws = synthetic_draws(args.synthetic)
        else:
            draws = load_draws_csv(config['data']['historical_csv'])
        logging.info(f"Loaded {len(draws)} valid draws")

        diagnostics = run_full_diagnostics(draws)
        if not args.quiet:
            print_diagnostics(diagnostics)

        settings = settings_from_config(config)
        store = LearningStateStore(config['data']['state_path'])
        if settings.warm_start_enabled:
            warm = store.warm_start_for(diagnostics.pool_size)
            if warm is not None:
                profile, overlaps = warm
                logging.info(f"Warm start from saved profile {profile.name}")
                settings = settings.with_overrides(warm_start_profile=profile, warm_profile_overlaps=overlaps)

        if args.evaluate:
            run_evaluation(draws, settings, args.quiet)
            return 0

        with PredictionDispatcher(lambda r: _log_response(r, args.quiet),
                                  timeout_s=config['worker']['timeout_s']) as dispatcher:
            request = {'request_id': REQUEST_ID, 'type': 'predict', 'draws': draws, 'settings': settings}
            try:
                response = dispatcher.run(request)
            except KeyboardInterrupt:
                dispatcher.cancel(REQUEST_ID)
                print("\n🛑 Training stopped.")
                return 1

        if response is None:
            print("\n🛑 Training stopped.")
            return 1
        if response['type'] == 'error':
            raise PredictionError(response['error'])

        prediction = response['prediction']
        if not args.quiet:
            print_prediction(prediction, config)

        if config['output'].get('save_csv', True):
            results_path = save_results(list(prediction.sets), config['data']['results_dir'])
            store.save_if_better(state_from_prediction(prediction, draws))
            if not args.quiet:
                print(f"\n💾 Results saved to: {results_path}")
        return 0

    except ForecasterError as e:
        print(f"\n❌ Error: {str(e)}")
        print("\nTroubleshooting:")
        print(f"1. Check {args.config} exists and is valid")
        data_path = config['data']['historical_csv'] if config else 'the draw CSV'
        print(f"2. Verify {data_path} has a date column and six number columns")
        print("3. Ensure every row has 6 distinct numbers within the game's pool (max 58)")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
