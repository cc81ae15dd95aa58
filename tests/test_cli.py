import pandas as pd
import pytest

from lotto_forecaster.cli import apply_cli_overrides, build_parser, main, save_results
from lotto_forecaster.candidates import PredictedSet
from lotto_forecaster.settings import DEFAULT_CONFIG, load_config


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "data:\n"
        f"  historical_csv: {tmp_path / 'draws.csv'}\n"
        f"  results_dir: {tmp_path / 'results'}\n"
        f"  state_path: {tmp_path / 'results' / 'state.json'}\n"
        "model:\n"
        "  monte_carlo_min_trials: 100\n"
        "  monte_carlo_max_trials: 500\n"
        "  genetic_generations: 5\n"
        "  genetic_population: 20\n"
        "  include_historical_echo: false\n"
        "worker:\n"
        "  timeout_s: 60\n"
    )
    return path


def test_parser_rejects_bad_target():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['--target', '7'])
    with pytest.raises(SystemExit):
        build_parser().parse_args(['--data', 'a.csv', '--synthetic', '10'])


def test_cli_overrides(config_path):
    args = build_parser().parse_args(['--fast', '--mastery', '--rounds', '0', '--salt', 'x',
                                      '--no-warm-start', '--no-save', '--data', 'other.csv'])
    config = apply_cli_overrides(load_config(str(config_path)), args)
    assert config['model']['fast_mode'] is True
    assert config['model']['mastery_backtest_mode'] is True
    assert config['model']['max_optimization_rounds'] == 0
    assert config['model']['random_seed_salt'] == 'x'
    assert config['model']['warm_start_enabled'] is False
    assert config['output']['save_csv'] is False
    assert config['data']['historical_csv'] == 'other.csv'
    assert DEFAULT_CONFIG['data']['historical_csv'] == 'data/draws.csv'


def test_save_results(tmp_path):
    sets = [PredictedSet((1, 2, 3, 4, 5, 6), 3.5, '6-0-0-0', 1.0, 'Top Composite'),
            PredictedSet((7, 14, 21, 28, 35, 42), 2.0, '1-2-1-2', 0.57, 'Pair Affinity')]
    path = save_results(sets, str(tmp_path / 'out'))
    df = pd.read_csv(path)
    assert list(df['rank']) == [1, 2]
    assert df.loc[0, 'numbers'] == '1-2-3-4-5-6'
    assert df.loc[1, 'method'] == 'Pair Affinity'


def test_main_end_to_end(config_path, tmp_path, capsys):
    code = main(['--config', str(config_path), '--synthetic', '60', '--fast', '--salt', 'cli'])
    assert code == 0
    out = capsys.readouterr().out
    assert 'DRAW DIAGNOSTICS' in out
    assert 'Recommended Number Sets' in out
    saved = list((tmp_path / 'results').glob('sets_*.csv'))
    assert len(saved) == 1
    assert (tmp_path / 'results' / 'state.json').exists()

    # the saved state is picked up as a warm start on the next run
    code = main(['--config', str(config_path), '--synthetic', '60', '--fast', '--quiet', '--no-save'])
    assert code == 0


def test_main_missing_data_file(config_path, capsys):
    code = main(['--config', str(config_path)])
    assert code == 1
    out = capsys.readouterr().out
    assert '❌ Error: Draw file not found' in out
    assert 'Troubleshooting:' in out
