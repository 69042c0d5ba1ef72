"""
Configuration handling for the line3d pipeline.

The configuration is a nested dictionary. ``DEFAULT_CONFIG`` holds every
setting the pipeline understands; YAML files only need to list the values
they change.
"""

import copy
from typing import Dict, Optional

import yaml


DEFAULT_CONFIG = {
    'line_detector': {
        'type': 'lsd',
        'max_image_width': 1920,
        'max_line_segments': 3000,
        'min_length_factor': 0.005,
        'cache_dir': None
    },
    'undistortion': {
        'enable': False,
        'radial': [0.0, 0.0, 0.0],
        'tangential': [0.0, 0.0]
    },
    'matching': {
        'neighbors_by_worldpoints': True,
        'num_neighbors': 10,
        'sigma_position': 2.5,
        'sigma_angle': 10.0,
        'epipolar_overlap': 0.25,
        'min_baseline': 0.25,
        'knn': 10
    },
    'reconstruction': {
        'visibility_t': 3,
        'perform_diffusion': False,
        'collinearity_t': 2.0,
        'use_optimizer': False,
        'max_iter_optimizer': 100
    },
    'thresholds': {
        'min_similarity_3d': 0.25,
        'min_affinity': 0.25,
        'min_score_3d': 0.5,
        'min_best_score_3d': 0.75,
        'clustering_scale': 3.0
    },
    'runtime': {
        'num_threads': 4,
        'diffusion_device': 'cuda'
    },
    'output': {
        'save_txt': True,
        'save_obj': True,
        'save_stl': False,
        'save_ply': False,
        'save_plot': False
    }
}


def merge_config(base: Dict, override: Optional[Dict]) -> Dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    if not override:
        return merged

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value

    return merged


def load_config(config_path: str) -> Dict:
    """Load configuration from YAML file and fill in defaults."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if config is not None and not isinstance(config, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")

    return merge_config(DEFAULT_CONFIG, config)
