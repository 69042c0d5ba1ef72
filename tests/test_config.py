from pathlib import Path

import pytest

from line3d.config import DEFAULT_CONFIG, load_config, merge_config
from line3d.main import build_parser, config_from_args


def test_merge_config_keeps_defaults():
    merged = merge_config(DEFAULT_CONFIG, {'matching': {'knn': 0}, 'extra': 1})

    assert merged['matching']['knn'] == 0
    assert merged['matching']['num_neighbors'] == DEFAULT_CONFIG['matching']['num_neighbors']
    assert merged['extra'] == 1
    assert DEFAULT_CONFIG['matching']['knn'] == 10


def test_load_partial_config(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("reconstruction:\n  visibility_t: 4\nruntime:\n  num_threads: 1\n")

    config = load_config(str(path))

    assert config['reconstruction']['visibility_t'] == 4
    assert config['reconstruction']['perform_diffusion'] is False
    assert config['runtime']['num_threads'] == 1
    assert config['thresholds'] == DEFAULT_CONFIG['thresholds']


def test_load_empty_config(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text("")

    assert load_config(str(path)) == DEFAULT_CONFIG


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / 'list.yaml'
    path.write_text("- 1\n- 2\n")

    with pytest.raises(ValueError):
        load_config(str(path))


def test_shipped_config_matches_defaults():
    path = Path(__file__).parent.parent / 'configs' / 'default.yaml'
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_command_line_overrides():
    args = build_parser().parse_args([
        '--images', 'imgs', '--colmap', 'sparse',
        '--max-lines', '500', '--visibility', '4', '--optimize', '--threads', '2'
    ])
    config = config_from_args(args)

    assert config['line_detector']['max_line_segments'] == 500
    assert config['reconstruction']['visibility_t'] == 4
    assert config['reconstruction']['use_optimizer'] is True
    assert config['reconstruction']['perform_diffusion'] is False
    assert config['runtime']['num_threads'] == 2


def test_command_line_needs_cameras():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['--images', 'imgs'])
